"""Per-station exclusivity for console sessions.

A console handles one command session at a time. Each station gets a marker
file ``<lock_dir>/<station_id>.lock``; its mtime is the last time the holder
touched it. A marker older than the staleness horizon counts as free, so a
crashed holder cannot wedge the station for longer than a few seconds, and
an active holder keeps it fresh by touching it after every command.
Markers are created exclusively, so at most one contender wins a free
station.
"""

import asyncio
import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .constants import LOCK_ATTEMPTS, LOCK_RETRY_INTERVAL, LOCK_STALE_AFTER
from .errors import HostUnreachable, LockBusy
from .network import Probe
from ..schemas.station import StationConfig

logger = logging.getLogger(__name__)


class StationLockManager:
    """Grants one holder at a time per station id."""

    def __init__(
        self,
        lock_dir: str | Path,
        probe: Probe,
        stale_after: float = LOCK_STALE_AFTER,
        attempts: int = LOCK_ATTEMPTS,
        retry_interval: float = LOCK_RETRY_INTERVAL,
    ):
        self.lock_dir = Path(lock_dir)
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        self.probe = probe
        self.stale_after = stale_after
        self.attempts = attempts
        self.retry_interval = retry_interval
        self._released: dict[str, asyncio.Event] = {}

    def _path(self, station_id: str) -> Path:
        return self.lock_dir / f"{station_id}.lock"

    def lock_age(self, station_id: str) -> Optional[float]:
        """Seconds since the marker was last touched, or None if absent."""
        try:
            return time.time() - self._path(station_id).stat().st_mtime
        except FileNotFoundError:
            return None

    def is_free(self, station_id: str) -> bool:
        age = self.lock_age(station_id)
        return age is None or age > self.stale_after

    def touch(self, station_id: str) -> None:
        """Create or refresh the marker."""
        self._path(station_id).write_text(datetime.now(timezone.utc).isoformat())

    @staticmethod
    def _create(path: Path) -> bool:
        """Exclusively create path holding a timestamp. False if it exists."""
        try:
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w") as f:
            f.write(datetime.now(timezone.utc).isoformat())
        return True

    def take(self, station_id: str) -> bool:
        """Create the marker unless a fresh one exists. True when this caller got it.

        The marker is created with O_EXCL, so two contenders racing for a
        free station cannot both win. Removing a stale marker needs the
        ``.break`` file next to it, also created with O_EXCL, so only one
        contender at a time can clear it.
        """
        path = self._path(station_id)
        if self._create(path):
            return True
        age = self.lock_age(station_id)
        if age is not None and age <= self.stale_after:
            return False

        breaker = path.with_name(f"{path.name}.break")
        if not self._create(breaker):
            # Left behind by a contender that died mid-takeover
            try:
                if time.time() - breaker.stat().st_mtime > self.stale_after:
                    breaker.unlink(missing_ok=True)
            except FileNotFoundError:
                pass
            return False
        try:
            age = self.lock_age(station_id)
            if age is not None and age > self.stale_after:
                path.unlink(missing_ok=True)
                logger.info("Removed stale lock for %s (%.1fs old)", station_id, age)
        finally:
            breaker.unlink(missing_ok=True)
        return self._create(path)

    def release(self, station_id: str) -> None:
        """Remove the marker. No-op if it is already gone."""
        self._path(station_id).unlink(missing_ok=True)
        event = self._released.get(station_id)
        if event is not None:
            event.set()
        logger.debug("Lock released for %s", station_id)

    async def acquire(self, station: StationConfig) -> None:
        """Take the lock for station or raise HostUnreachable / LockBusy."""
        if not await self.probe(station):
            raise HostUnreachable(
                f"Station {station.id} ({station.host}) is not reachable",
                station_id=station.id,
            )

        event = self._released.setdefault(station.id, asyncio.Event())
        for attempt in range(1, self.attempts + 1):
            if self.take(station.id):
                logger.info(
                    "Lock acquired for %s (attempt %d/%d)", station.id, attempt, self.attempts,
                )
                return

            logger.warning(
                "Lock busy for %s (touched %.1fs ago), attempt %d/%d",
                station.id, self.lock_age(station.id) or 0.0, attempt, self.attempts,
            )
            if attempt < self.attempts:
                # Wakes early when a holder in this process releases.
                event.clear()
                try:
                    await asyncio.wait_for(event.wait(), timeout=self.retry_interval)
                except asyncio.TimeoutError:
                    pass

        raise LockBusy(
            f"Cannot acquire lock for {station.id} after {self.attempts} attempts",
            station_id=station.id,
        )
