"""High-level driver for one Vantage Pro2 console.

Wraps send_command() with the command catalogue: LOOP polling, clock,
EEPROM access, archive settings and the DMPAFT archive download. The
driver does not wake the console or manage the station lock; callers
hold a session around it (see services.station_service).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .commands import (
    build_bar_command,
    build_dmpaft_command,
    build_dmpaft_payload,
    build_eebrd_command,
    build_eebwr_command,
    build_eebwr_payload,
    build_eewr_command,
    build_gettime_command,
    build_lps_command,
    build_newsetup_command,
    build_setper_command,
    build_settime_command,
    build_start_command,
    build_time_payload,
    parse_time_payload,
)
from .connection import StationConnection
from .constants import (
    ACK,
    ARCHIVE_PAGE_DATA_SIZE,
    COMMAND_SPACING,
    LOOP_DATA_SIZE,
    WAKE_UP_SEQUENCE,
)
from .loop_packet import archive_timestamp, decode, decode_loop, split_archive_page
from .memory_map import (
    EEPROM_BLOCK_LENGTH,
    EEPROM_BLOCK_START,
    EepromSettings,
    parse_eeprom_settings,
)
from .station_types import PacketKind, RawReading
from .transport import send_command

logger = logging.getLogger(__name__)

OK = "<LF><CR>OK<LF><CR>"
MAX_ARCHIVE_PAGES = 50


@dataclass
class ArchiveRecord:
    """One decoded archive record with its console-local timestamp."""
    timestamp: datetime
    readings: dict[str, RawReading]


@dataclass
class ArchiveDownload:
    pages_available: int
    pages_read: int
    records: list[ArchiveRecord] = field(default_factory=list)

    @property
    def last_timestamp(self) -> Optional[datetime]:
        return max((r.timestamp for r in self.records), default=None)


class LinkDriver:
    """Console command catalogue over an open StationConnection."""

    def __init__(
        self,
        conn: StationConnection,
        timeout: float = 2.0,
        spacing: float = COMMAND_SPACING,
    ):
        self.conn = conn
        self.timeout = timeout
        self.spacing = spacing

    @property
    def station_id(self) -> str:
        return self.conn.station_id

    async def _send(self, command, answer_format: str = "", timeout: Optional[float] = None) -> bytes:
        return await send_command(
            self.conn, command, timeout or self.timeout, answer_format, self.spacing,
        )

    # --- Real-time data ---

    async def read_loop(self) -> dict[str, RawReading]:
        """One LOOP packet."""
        data = await self._send(build_lps_command(1, 1), f"<ACK>{LOOP_DATA_SIZE}<CRC>")
        return decode_loop(data, PacketKind.LOOP)

    async def read_loop2(self) -> dict[str, RawReading]:
        """One LOOP2 packet."""
        data = await self._send(build_lps_command(2, 1), f"<ACK>{LOOP_DATA_SIZE}<CRC>")
        return decode_loop(data, PacketKind.LOOP2)

    async def read_current(self) -> dict[str, RawReading]:
        """LOOP merged with LOOP2; LOOP2 wins where both carry a field."""
        readings = await self.read_loop()
        readings.update(
            (name, raw) for name, raw in (await self.read_loop2()).items() if not raw.missing
        )
        return readings

    # --- Clock ---

    async def get_time(self) -> datetime:
        """Console clock as a naive local datetime."""
        data = await self._send(build_gettime_command(), "<ACK>6<CRC>")
        return parse_time_payload(data)

    async def set_time(self, dt: datetime) -> None:
        await self._send(build_settime_command(), "<ACK>")
        await self._send(build_time_payload(dt), "<ACK>")
        logger.info("%s - Clock set to %s", self.station_id, dt.isoformat())

    # --- EEPROM ---

    async def read_eeprom(self, address: int, length: int) -> bytes:
        return await self._send(build_eebrd_command(address, length), f"<ACK>{length}<CRC>")

    async def read_settings(self) -> EepromSettings:
        block = await self.read_eeprom(EEPROM_BLOCK_START, EEPROM_BLOCK_LENGTH)
        return parse_eeprom_settings(block)

    async def write_eeprom_byte(self, address: int, value: int) -> None:
        await self._send(build_eewr_command(address, value), OK)
        logger.info("%s - EEPROM 0x%02X <- 0x%02X", self.station_id, address, value & 0xFF)

    async def write_eeprom_block(self, address: int, data: bytes) -> None:
        """Binary write. Re-sending after a CRC retry rewrites the same
        bytes, so the sequence is safe to repeat."""
        await self._send(build_eebwr_command(address, len(data)), "<ACK>")
        await self._send(build_eebwr_payload(data), "<ACK>")
        logger.info("%s - EEPROM 0x%02X <- %s", self.station_id, address, data.hex())

    async def new_setup(self) -> None:
        """Make the console reload its configuration after EEPROM writes."""
        await self._send(build_newsetup_command(), "<ACK>")

    # --- Archive settings ---

    async def set_archive_period(self, minutes: int) -> None:
        await self._send(build_setper_command(minutes), "<ACK>")

    async def start_archiving(self) -> None:
        await self._send(build_start_command(), OK)

    async def set_barometer(self, elevation_ft: int, barometer_thousandths: int = 0) -> None:
        await self._send(build_bar_command(barometer_thousandths, elevation_ft), OK)

    # --- Archive download ---

    async def download_archive(
        self,
        since: datetime,
        max_pages: int = MAX_ARCHIVE_PAGES,
    ) -> ArchiveDownload:
        """Download archive records newer than `since` (console local time).

        Reads at most max_pages pages so the console can go back to
        sampling; the rest is picked up on the next call.
        """
        await self._send(build_dmpaft_command(), "<ACK>")
        info = await self._send(build_dmpaft_payload(since), "<ACK>4<CRC>", timeout=3.0)
        pages = int.from_bytes(info[0:2], "little")
        first_record = info[2]
        logger.info(
            "%s - %d archive page(s) after %s, first record %d",
            self.station_id, pages, since.isoformat(), first_record,
        )

        download = ArchiveDownload(pages_available=pages, pages_read=0)
        for _ in range(min(pages, max_pages)):
            page = await self._send(bytes([ACK]), f"{ARCHIVE_PAGE_DATA_SIZE}<CRC>")
            sequence, records = split_archive_page(page)
            for slot, record in enumerate(records):
                if slot < first_record:
                    continue
                readings = decode(record, PacketKind.ARCHIVE)
                timestamp = archive_timestamp(readings["date"].value, readings["time"].value)
                if timestamp is None or timestamp <= since:
                    logger.debug(
                        "%s - Page %d slot %d skipped (%s)",
                        self.station_id, sequence, slot, timestamp,
                    )
                    continue
                download.records.append(ArchiveRecord(timestamp, readings))
            first_record = 0
            download.pages_read += 1

        # Abort the remaining transfer; the console answers like a wake-up
        await self._send(WAKE_UP_SEQUENCE, "2", timeout=1.2)
        logger.info(
            "%s - %d archive record(s) from %d/%d page(s)",
            self.station_id, len(download.records), download.pages_read, pages,
        )
        return download
