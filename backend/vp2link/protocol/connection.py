"""TCP connections to VP2 consoles.

One StationConnection per station, owned by a ConnectionManager instance.
A background read loop pushes every received chunk onto a queue; a command
consumes that queue until its reply is long enough or its deadline passes,
so no per-command listeners have to be attached and removed.

Teardown (peer close, socket error, idle timeout, explicit close) always
does three things: fails the outstanding command with ConnectionLost,
drops the connection from the registry, and releases the station lock.
"""

import asyncio
import logging
import socket
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from .constants import CONNECT_TIMEOUT, IDLE_TIMEOUT
from .errors import (
    CommandInProgress,
    CommandTimeout,
    ConnectError,
    ConnectionLost,
    ConnectTimeout,
)
from .lock import StationLockManager
from ..schemas.station import StationConfig

logger = logging.getLogger(__name__)

READ_CHUNK = 4096

# Queued by the read loop when the socket goes away
_CLOSED = object()


class StationConnection:
    """A live socket to one console. At most one command in flight."""

    def __init__(
        self,
        station: StationConfig,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        idle_timeout: float = IDLE_TIMEOUT,
        on_teardown: Optional[Callable[["StationConnection"], None]] = None,
        on_activity: Optional[Callable[[str], None]] = None,
    ):
        self.station = station
        self.idle_timeout = idle_timeout
        self.buffer = bytearray()
        self.close_reason: Optional[str] = None
        self._reader = reader
        self._writer = writer
        self._chunks: asyncio.Queue = asyncio.Queue()
        self._pending = False
        self._holds = 0
        self._idle_handle: Optional[asyncio.TimerHandle] = None
        self._closed = False
        self._on_teardown = on_teardown
        self._on_activity = on_activity
        self._read_task = asyncio.create_task(self._read_loop())
        self._arm_idle_timer()

    @property
    def station_id(self) -> str:
        return self.station.id

    @property
    def connected(self) -> bool:
        return not self._closed and not self._writer.is_closing()

    def touch(self) -> None:
        """Mark the station lock as still in use."""
        if self._on_activity is not None:
            self._on_activity(self.station_id)

    async def request(
        self,
        data: bytes,
        expected_length: int,
        timeout: float,
        description: str = "",
    ) -> bytes:
        """Write data and collect at least expected_length reply bytes.

        Returns the raw reply; validating it is the caller's job.
        """
        description = description or f"Binary ({len(data)} bytes)"
        if self._closed:
            raise ConnectionLost(
                f"Connection to {self.station_id} is closed ({self.close_reason})",
                station_id=self.station_id, command=description,
            )
        if self._pending:
            raise CommandInProgress(
                f"A command is already waiting for a reply from {self.station_id}",
                station_id=self.station_id, command=description,
            )

        self._pending = True
        self._disarm_idle_timer()
        try:
            self._discard_stale_input()
            logger.debug("TX %s: %s", self.station_id, data.hex())
            try:
                self._writer.write(data)
                await self._writer.drain()
            except OSError as e:
                self._teardown(f"write failed: {e}")
                raise ConnectionLost(
                    f"Write to {self.station_id} failed: {e}",
                    station_id=self.station_id, command=description,
                ) from e

            loop = asyncio.get_running_loop()
            deadline = loop.time() + timeout
            while len(self.buffer) < expected_length:
                remaining = deadline - loop.time()
                try:
                    if remaining <= 0:
                        raise asyncio.TimeoutError
                    chunk = await asyncio.wait_for(self._chunks.get(), timeout=remaining)
                except asyncio.TimeoutError:
                    raise CommandTimeout(
                        f"Timeout for command '{description}' on {self.station_id} "
                        f"({len(self.buffer)}/{expected_length} bytes): {self.buffer.hex()}",
                        station_id=self.station_id,
                        command=description,
                        buffer_hex=self.buffer.hex(),
                    ) from None
                if chunk is _CLOSED:
                    raise ConnectionLost(
                        f"Connection to {self.station_id} closed unexpectedly "
                        f"({self.close_reason})",
                        station_id=self.station_id,
                        command=description,
                        buffer_hex=self.buffer.hex(),
                    )
                self.buffer += chunk
            return bytes(self.buffer)
        finally:
            self._pending = False
            self._arm_idle_timer()

    def _discard_stale_input(self) -> None:
        self.buffer.clear()
        stale = bytearray()
        while not self._chunks.empty():
            chunk = self._chunks.get_nowait()
            if chunk is not _CLOSED:
                stale += chunk
        if stale:
            logger.debug("Discarded stale input from %s: %s", self.station_id, stale.hex())

    # --- Idle timer ---
    # Runs only while no command is outstanding and nobody holds the
    # connection open; restarts when a command finishes or data arrives.

    def _arm_idle_timer(self) -> None:
        self._disarm_idle_timer()
        if self._closed or self._pending or self._holds:
            return
        self._idle_handle = asyncio.get_running_loop().call_later(
            self.idle_timeout, self._on_idle,
        )

    def _disarm_idle_timer(self) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None

    def _on_idle(self) -> None:
        self._idle_handle = None
        if self._pending or self._holds:
            return
        self._teardown(f"idle for {self.idle_timeout}s")
        self._read_task.cancel()

    @contextmanager
    def hold_open(self) -> Iterator[None]:
        """Suspend the idle timer across a multi-command exchange."""
        self._holds += 1
        self._disarm_idle_timer()
        try:
            yield
        finally:
            self._holds -= 1
            self._arm_idle_timer()

    async def _read_loop(self) -> None:
        reason = "closed by peer"
        try:
            while True:
                chunk = await self._reader.read(READ_CHUNK)
                if not chunk:
                    break
                logger.debug("RX %s: %s", self.station_id, chunk.hex())
                self._chunks.put_nowait(chunk)
                if not self._pending:
                    self._arm_idle_timer()
        except asyncio.CancelledError:
            reason = "closed"
            raise
        except OSError as e:
            reason = f"socket error: {e}"
        finally:
            self._teardown(reason)

    def _teardown(self, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        self._disarm_idle_timer()
        self.close_reason = reason
        logger.info("Connection to %s closed: %s", self.station_id, reason)
        self._chunks.put_nowait(_CLOSED)
        self._writer.close()
        if self._on_teardown is not None:
            self._on_teardown(self)

    async def close(self) -> None:
        """Close the socket and wait for the read loop to finish."""
        if not self._read_task.done():
            self._read_task.cancel()
            try:
                await self._read_task
            except asyncio.CancelledError:
                pass
        self._teardown("closed")
        try:
            await self._writer.wait_closed()
        except OSError:
            pass


class ConnectionManager:
    """Registry of live console connections, keyed by station id."""

    def __init__(
        self,
        locks: StationLockManager,
        connect_timeout: float = CONNECT_TIMEOUT,
        idle_timeout: float = IDLE_TIMEOUT,
    ):
        self.locks = locks
        self.connect_timeout = connect_timeout
        self.idle_timeout = idle_timeout
        self._connections: dict[str, StationConnection] = {}
        self._opening: dict[str, asyncio.Lock] = {}

    def get(self, station_id: str) -> Optional[StationConnection]:
        return self._connections.get(station_id)

    def __len__(self) -> int:
        return len(self._connections)

    async def get_or_create(self, station: StationConfig) -> StationConnection:
        """Reuse a live connection or lock the station and open a new one."""
        opening = self._opening.setdefault(station.id, asyncio.Lock())
        async with opening:
            conn = self._connections.get(station.id)
            if conn is not None and conn.connected:
                return conn

            await self.locks.acquire(station)
            try:
                reader, writer = await asyncio.wait_for(
                    asyncio.open_connection(station.host, station.port),
                    timeout=self.connect_timeout,
                )
            except asyncio.TimeoutError:
                self.locks.release(station.id)
                raise ConnectTimeout(
                    f"TCP connect to {station.host}:{station.port} timed out",
                    station_id=station.id,
                ) from None
            except OSError as e:
                self.locks.release(station.id)
                raise ConnectError(
                    f"TCP connect to {station.host}:{station.port} failed: {e}",
                    station_id=station.id,
                ) from e

            sock = writer.get_extra_info("socket")
            if sock is not None:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)

            conn = StationConnection(
                station,
                reader,
                writer,
                idle_timeout=self.idle_timeout,
                on_teardown=self._forget,
                on_activity=self.locks.touch,
            )
            self._connections[station.id] = conn
            logger.info("Connected to %s (%s:%d)", station.id, station.host, station.port)
            return conn

    def _forget(self, conn: StationConnection) -> None:
        if self._connections.get(conn.station_id) is conn:
            del self._connections[conn.station_id]
        self.locks.release(conn.station_id)

    async def close(self, station_id: str) -> None:
        conn = self._connections.get(station_id)
        if conn is not None:
            await conn.close()

    async def close_all(self) -> None:
        for conn in list(self._connections.values()):
            await conn.close()
