"""Station-level operations built on the link core.

Every operation runs inside session(): lock + connect, wake the console,
optionally light the screen, then close the connection (which releases
the station lock). Status fields produced by an operation are written to
the store before the session closes.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Optional

from ..config import Settings
from ..protocol.connection import ConnectionManager
from ..protocol.constants import TIME_SYNC_THRESHOLD, RainCollectorSize
from ..protocol.link_driver import LinkDriver
from ..protocol.lock import StationLockManager
from ..protocol.memory_map import (
    SETUP_LATITUDE_NORTH,
    SETUP_LONGITUDE_EAST,
    SETUP_RAIN_COLLECTOR_MASK,
    SETUP_RAIN_COLLECTOR_SHIFT,
    Eeprom,
    EepromChange,
    EepromSettings,
    encode_setting,
)
from ..protocol.network import make_probe
from ..protocol.transport import lamps, wake_up
from ..schemas.sensor import (
    ArchiveEntry,
    ArchiveResponse,
    CurrentConditionsResponse,
    StationTimeResponse,
)
from ..schemas.station import StationConfig
from .station_store import StationStore
from .timezones import davis_time_zone_index, gmt_offset_hundredths, local_now, station_zone
from .units import process_readings

logger = logging.getLogger(__name__)

FEET_PER_METER = 3.28084
DEFAULT_ARCHIVE_LOOKBACK = timedelta(days=30)


def _tenths(degrees: float) -> int:
    return round(degrees * 10)


def plan_settings_changes(current: EepromSettings, station: StationConfig) -> list[EepromChange]:
    """EEPROM changes needed to make the console match the station config.

    Only configured (non-None) values are compared.
    """
    changes = []
    setup = current.setup_bits
    new_setup = setup.raw

    if station.latitude is not None:
        desired = _tenths(station.latitude)
        if desired != current.latitude_tenths:
            changes.append(EepromChange(
                "latitude", Eeprom.LATITUDE, current.latitude_tenths, desired,
            ))
        if station.latitude >= 0:
            new_setup |= SETUP_LATITUDE_NORTH
        else:
            new_setup &= ~SETUP_LATITUDE_NORTH

    if station.longitude is not None:
        desired = _tenths(station.longitude)
        if desired != current.longitude_tenths:
            changes.append(EepromChange(
                "longitude", Eeprom.LONGITUDE, current.longitude_tenths, desired,
            ))
        if station.longitude >= 0:
            new_setup |= SETUP_LONGITUDE_EAST
        else:
            new_setup &= ~SETUP_LONGITUDE_EAST

    if station.elevation_m is not None:
        desired = round(station.elevation_m * FEET_PER_METER)
        if desired != current.elevation_ft:
            changes.append(EepromChange("elevation", Eeprom.ELEVATION, current.elevation_ft, desired))

    if station.timezone and station_zone(station.timezone) is not None:
        index = davis_time_zone_index(station.timezone)
        if index is not None:
            if current.use_gmt_offset or current.time_zone != index:
                changes.append(EepromChange("time_zone", Eeprom.TIME_ZONE, current.time_zone, index))
        else:
            offset = gmt_offset_hundredths(station.timezone)
            if not current.use_gmt_offset or current.gmt_offset != offset:
                changes.append(EepromChange("gmt_offset", Eeprom.GMT_OFFSET, current.gmt_offset, offset))

    if station.rain_season_start is not None and station.rain_season_start != current.rain_season_start:
        changes.append(EepromChange(
            "rain_season_start", Eeprom.RAIN_SEASON_START,
            current.rain_season_start, station.rain_season_start,
        ))

    if station.archive_interval is not None and station.archive_interval != current.archive_period:
        changes.append(EepromChange(
            "archive_interval", Eeprom.ARCHIVE_PERIOD,
            current.archive_period, station.archive_interval,
        ))

    if RainCollectorSize(station.rain_collector_size) != setup.rain_collector_size:
        new_setup = (new_setup & ~SETUP_RAIN_COLLECTOR_MASK) | (
            int(station.rain_collector_size) << SETUP_RAIN_COLLECTOR_SHIFT
        )
    new_setup &= 0xFF
    if new_setup != setup.raw:
        changes.append(EepromChange("setup_bits", Eeprom.SETUP_BITS, setup.raw, new_setup))

    return changes


class StationService:
    """Console operations for stations held in a StationStore."""

    def __init__(self, connections: ConnectionManager, store: StationStore, settings: Settings):
        self.connections = connections
        self.store = store
        self.settings = settings
        # In-process serialization; the lock manager covers other processes
        self._sessions: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_settings(cls, store: StationStore, settings: Settings) -> "StationService":
        locks = StationLockManager(
            settings.lock_dir,
            probe=make_probe(settings.probe_method, settings.probe_timeout),
            stale_after=settings.lock_stale_sec,
            attempts=settings.lock_retries,
            retry_interval=settings.lock_retry_interval,
        )
        connections = ConnectionManager(
            locks,
            connect_timeout=settings.connect_timeout,
            idle_timeout=settings.idle_timeout,
        )
        return cls(connections, store, settings)

    async def close(self) -> None:
        await self.connections.close_all()

    @asynccontextmanager
    async def session(
        self, station: StationConfig, with_lamps: bool = False,
    ) -> AsyncIterator[LinkDriver]:
        """Exclusive, awake console for the duration of the block."""
        async with self._sessions.setdefault(station.id, asyncio.Lock()):
            conn = await self.connections.get_or_create(station)
            try:
                await wake_up(conn)
                driver = LinkDriver(
                    conn,
                    timeout=self.settings.command_timeout,
                    spacing=self.settings.command_spacing,
                )
                if with_lamps:
                    async with lamps(conn, self.settings.command_timeout):
                        yield driver
                else:
                    yield driver
            finally:
                await self.connections.close(station.id)

    # --- Operations ---

    async def current_conditions(self, station_id: str) -> CurrentConditionsResponse:
        station = self.store.get(station_id)
        async with self.session(station) as driver:
            raw = await driver.read_current()
        return CurrentConditionsResponse(
            station_id=station.id,
            timestamp=datetime.now(timezone.utc),
            readings=process_readings(raw, station, self.settings.user_units()),
        )

    async def station_time(self, station_id: str) -> StationTimeResponse:
        """Console clock and its drift from the station's local time."""
        station = self.store.get(station_id)
        async with self.session(station) as driver:
            console_time = await driver.get_time()
            delta = abs((local_now(station.timezone) - console_time).total_seconds())
            self.store.update_status(station.id, delta_time_seconds=delta)
        logger.info("%s - Console time %s, drift %.1fs", station.id, console_time, delta)
        return StationTimeResponse(
            station_id=station.id, console_time=console_time, delta_time_seconds=delta,
        )

    async def sync_time(self, station_id: str) -> StationTimeResponse:
        """Set the console clock and time zone when it drifted too far."""
        station = self.store.get(station_id)
        async with self.session(station, with_lamps=True) as driver:
            console_time = await driver.get_time()
            delta = abs((local_now(station.timezone) - console_time).total_seconds())
            if delta <= TIME_SYNC_THRESHOLD:
                logger.info("%s - Drift %.2fs, clock already in sync", station.id, delta)
                self.store.update_status(station.id, delta_time_seconds=delta)
                return StationTimeResponse(
                    station_id=station.id, console_time=console_time, delta_time_seconds=delta,
                )

            logger.warning("%s - Drift %.2fs, setting clock and time zone", station.id, delta)
            await driver.set_time(local_now(station.timezone))
            await self._write_time_zone(driver, station)
            await driver.new_setup()
            self.store.update_status(station.id, delta_time_seconds=0.0)
        return StationTimeResponse(
            station_id=station.id, console_time=console_time,
            delta_time_seconds=delta, adjusted=True,
        )

    async def _write_time_zone(self, driver: LinkDriver, station: StationConfig) -> None:
        if station_zone(station.timezone) is None:
            logger.warning("%s - No valid time zone configured, keeping console setting", station.id)
            return
        index = davis_time_zone_index(station.timezone)
        if index is not None:
            await driver.write_eeprom_byte(Eeprom.TIME_ZONE.address, index)
            await driver.write_eeprom_byte(Eeprom.GMT_OR_ZONE.address, 0)
        else:
            offset = gmt_offset_hundredths(station.timezone)
            logger.info("%s - %s has no console preset, using GMT offset %d",
                        station.id, station.timezone, offset)
            await driver.write_eeprom_block(
                Eeprom.GMT_OFFSET.address, encode_setting(Eeprom.GMT_OFFSET, offset),
            )
            await driver.write_eeprom_byte(Eeprom.GMT_OR_ZONE.address, 1)

    async def read_settings(self, station_id: str) -> EepromSettings:
        station = self.store.get(station_id)
        async with self.session(station) as driver:
            return await driver.read_settings()

    async def sync_settings(self, station_id: str) -> list[EepromChange]:
        """Push configured settings to the console; returns what changed."""
        station = self.store.get(station_id)
        async with self.session(station, with_lamps=True) as driver:
            current = await driver.read_settings()
            changes = plan_settings_changes(current, station)
            if not changes:
                logger.info("%s - Console settings already in sync", station.id)
                return []

            for change in changes:
                logger.info("%s - %s: %s -> %s", station.id, change.parameter,
                            change.current, change.desired)
                await self._apply_change(driver, change)
            await driver.new_setup()
        return changes

    async def _apply_change(self, driver: LinkDriver, change: EepromChange) -> None:
        if change.parameter == "elevation":
            await driver.set_barometer(change.desired)
        elif change.parameter == "archive_interval":
            await driver.set_archive_period(change.desired)
            await driver.start_archiving()
        elif change.parameter == "time_zone":
            await driver.write_eeprom_byte(Eeprom.TIME_ZONE.address, change.desired)
            await driver.write_eeprom_byte(Eeprom.GMT_OR_ZONE.address, 0)
        elif change.parameter == "gmt_offset":
            await driver.write_eeprom_block(
                change.addr.address, encode_setting(change.addr, change.desired),
            )
            await driver.write_eeprom_byte(Eeprom.GMT_OR_ZONE.address, 1)
        elif change.addr.length == 1:
            await driver.write_eeprom_byte(change.addr.address, change.desired)
        else:
            await driver.write_eeprom_block(
                change.addr.address, encode_setting(change.addr, change.desired),
            )

    async def download_archive(
        self,
        station_id: str,
        since: Optional[datetime] = None,
    ) -> ArchiveResponse:
        """Archive records newer than `since`, by default the last one stored."""
        station = self.store.get(station_id)
        since = since or station.last_archive_date or (
            local_now(station.timezone) - DEFAULT_ARCHIVE_LOOKBACK
        )
        user_units = self.settings.user_units()
        async with self.session(station) as driver:
            download = await driver.download_archive(since, self.settings.archive_max_pages)
            if download.last_timestamp is not None:
                self.store.update_status(station.id, last_archive_date=download.last_timestamp)

        if download.pages_read < download.pages_available:
            logger.info(
                "%s - %d archive page(s) left for the next download",
                station.id, download.pages_available - download.pages_read,
            )
        return ArchiveResponse(
            station_id=station.id,
            since=since,
            last_archive_date=download.last_timestamp or station.last_archive_date,
            records=[
                ArchiveEntry(
                    timestamp=record.timestamp,
                    readings=process_readings(record.readings, station, user_units),
                )
                for record in download.records
            ],
        )
