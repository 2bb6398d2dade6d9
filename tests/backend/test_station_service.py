"""End-to-end station operations against a loopback console."""

import asyncio
import struct
from datetime import datetime, timedelta

import pytest

from vp2link.config import Settings
from vp2link.models.database import init_database, make_engine, make_session_factory
from vp2link.protocol.constants import LOOP_DATA_SIZE
from vp2link.protocol.crc import append_crc
from vp2link.protocol.errors import WakeUpFailed
from vp2link.protocol.loop_packet import pack_archive_timestamp
from vp2link.services.station_service import StationService
from vp2link.services.station_store import StationStore
from vp2link.services.timezones import local_now

from fake_console import FakeConsole, make_eeprom_block, make_station

WAKE = b"\x1b\n"
OK = b"\n\rOK\n\r"
ACK = b"\x06"


def loop_packet(packet_type: int, barometer: int, out_humidity: int) -> bytes:
    data = bytearray(LOOP_DATA_SIZE)
    data[0:3] = b"LOO"
    data[4] = packet_type
    struct.pack_into("<H", data, 7, barometer)
    data[33] = out_humidity
    return ACK + append_crc(bytes(data))


def archive_record(when: datetime, out_temp: int = 655) -> bytes:
    record = bytearray(52)
    date_word, time_word = pack_archive_timestamp(when)
    struct.pack_into("<HHh", record, 0, date_word, time_word, out_temp)
    record[23] = 80
    return bytes(record)


def time_reply(dt: datetime) -> bytes:
    data = bytes([dt.second, dt.minute, dt.hour, dt.day, dt.month, dt.year - 1900])
    return ACK + append_crc(data)


def run_service(tmp_path, replies, scenario, **station_fields):
    """Run scenario(service, store, console) with one station pointing at the console."""

    async def main():
        console = await FakeConsole(replies).start()
        settings = Settings(
            lock_dir=str(tmp_path / "locks"),
            db_path=str(tmp_path / "vp2link.db"),
            command_spacing=0,
            probe_method="tcp",
        )
        engine = make_engine(settings.database_url)
        init_database(engine)
        store = StationStore(make_session_factory(engine))
        store.save(make_station(console, **station_fields))
        service = StationService.from_settings(store, settings)
        try:
            return await scenario(service, store, console)
        finally:
            await service.close()
            await console.stop()

    return asyncio.run(main())


class TestCurrentConditions:
    def test_loop2_overrides_present_fields(self, tmp_path):
        replies = {
            WAKE: b"\n\r",
            b"LPS 1 1\n": loop_packet(0, barometer=29900, out_humidity=60),
            b"LPS 2 1\n": loop_packet(1, barometer=30120, out_humidity=255),
        }

        async def scenario(service, store, console):
            result = await service.current_conditions("vp2-test")
            locked = not service.connections.locks.is_free("vp2-test")
            return result, locked, len(service.connections)

        result, locked, open_connections = run_service(tmp_path, replies, scenario)
        assert result.station_id == "vp2-test"
        assert result.readings["barometer"].native.value == 30.12
        assert result.readings["outHumidity"].native.value == 60
        assert not locked
        assert open_connections == 0

    def test_sleeping_console(self, tmp_path):
        replies = {WAKE: None}

        async def scenario(service, store, console):
            with pytest.raises(WakeUpFailed):
                await service.current_conditions("vp2-test")
            return console.count(WAKE), service.connections.locks.is_free("vp2-test")

        assert run_service(tmp_path, replies, scenario) == (3, True)


class TestClock:
    def test_station_time_records_drift(self, tmp_path):
        console_time = local_now("Europe/Paris") - timedelta(hours=1)
        replies = {WAKE: b"\n\r", b"GETTIME\n": time_reply(console_time)}

        async def scenario(service, store, console):
            result = await service.station_time("vp2-test")
            return result, store.get("vp2-test")

        result, station = run_service(tmp_path, replies, scenario, timezone="Europe/Paris")
        assert 3590 < result.delta_time_seconds < 3610
        assert result.adjusted is False
        assert station.delta_time_seconds == result.delta_time_seconds

    def test_sync_time_sets_clock_and_zone(self, tmp_path):
        console_time = local_now("Europe/Paris") - timedelta(hours=1)
        replies = {
            WAKE: b"\n\r",
            b"LAMPS 1\n": OK,
            b"LAMPS 0\n": OK,
            b"GETTIME\n": time_reply(console_time),
            b"SETTIME\n": ACK,
            b"EEWR 11 15\n": OK,
            b"EEWR 16 00\n": OK,
            b"NEWSETUP\n": ACK,
        }

        async def scenario(service, store, console):
            result = await service.sync_time("vp2-test")
            return result, store.get("vp2-test"), console.received

        result, station, received = run_service(tmp_path, replies, scenario, timezone="Europe/Paris")
        assert result.adjusted is True
        assert station.delta_time_seconds == 0.0
        text = [r for r in received if r[:1].isalpha()]
        assert text == [
            b"LAMPS 1\n", b"GETTIME\n", b"SETTIME\n",
            b"EEWR 11 15\n", b"EEWR 16 00\n", b"NEWSETUP\n", b"LAMPS 0\n",
        ]

    def test_sync_time_writes_gmt_offset_without_preset(self, tmp_path):
        console_time = local_now("Asia/Kathmandu") - timedelta(hours=1)
        replies = {
            WAKE: b"\n\r",
            b"LAMPS 1\n": OK,
            b"LAMPS 0\n": OK,
            b"GETTIME\n": time_reply(console_time),
            b"SETTIME\n": ACK,
            b"EEBWR 14 02\n": ACK,
            b"EEWR 16 01\n": OK,
            b"NEWSETUP\n": ACK,
        }

        async def scenario(service, store, console):
            await service.sync_time("vp2-test")
            return console.received

        received = run_service(tmp_path, replies, scenario, timezone="Asia/Kathmandu")
        # +5:45 goes to the console as 575 hundredths of an hour
        block = append_crc(struct.pack("<h", 575))
        assert received.index(b"EEBWR 14 02\n") + 1 == received.index(block)
        assert received.index(block) < received.index(b"EEWR 16 01\n")

    def test_sync_time_in_tolerance(self, tmp_path):
        replies = {
            WAKE: b"\n\r",
            b"LAMPS 1\n": OK,
            b"LAMPS 0\n": OK,
            b"GETTIME\n": time_reply(local_now("Europe/Paris")),
        }

        async def scenario(service, store, console):
            return await service.sync_time("vp2-test"), console.count(b"SETTIME\n")

        result, settime = run_service(tmp_path, replies, scenario, timezone="Europe/Paris")
        assert result.adjusted is False
        assert settime == 0


class TestSettings:
    def test_sync_settings_writes_time_zone(self, tmp_path):
        replies = {
            WAKE: b"\n\r",
            b"LAMPS 1\n": OK,
            b"LAMPS 0\n": OK,
            b"EEBRD 01 2E\n": ACK + append_crc(make_eeprom_block(TIME_ZONE=10)),
            b"EEWR 11 15\n": OK,
            b"EEWR 16 00\n": OK,
            b"NEWSETUP\n": ACK,
        }

        async def scenario(service, store, console):
            changes = await service.sync_settings("vp2-test")
            return changes, console.count(b"NEWSETUP\n")

        changes, newsetup = run_service(
            tmp_path, replies, scenario,
            latitude=48.9, longitude=2.3, elevation_m=35.0, timezone="Europe/Paris",
            archive_interval=10, rain_season_start=1,
        )
        assert [(c.parameter, c.current, c.desired) for c in changes] == [("time_zone", 10, 21)]
        assert newsetup == 1

    def test_read_settings(self, tmp_path):
        replies = {WAKE: b"\n\r", b"EEBRD 01 2E\n": ACK + append_crc(make_eeprom_block())}

        async def scenario(service, store, console):
            return await service.read_settings("vp2-test")

        settings = run_service(tmp_path, replies, scenario)
        assert settings.latitude == 48.9
        assert settings.archive_period == 10


class TestArchiveDownload:
    def test_records_after_since(self, tmp_path):
        since = datetime(2025, 10, 2, 20, 0)
        date_word, time_word = pack_archive_timestamp(since)
        page = (
            b"\x00"
            + archive_record(datetime(2025, 10, 2, 19, 50))
            + archive_record(datetime(2025, 10, 2, 19, 55))
            + archive_record(since)
            + archive_record(datetime(2025, 10, 2, 20, 5))
            + archive_record(datetime(2025, 10, 2, 20, 10), out_temp=700)
            + bytes(4)
        )
        replies = {
            WAKE: b"\n\r",
            b"DMPAFT\n": ACK,
            append_crc(struct.pack("<HH", date_word, time_word)): ACK + append_crc(
                struct.pack("<HH", 1, 2)
            ),
            ACK: append_crc(page),
        }

        async def scenario(service, store, console):
            result = await service.download_archive("vp2-test", since)
            return result, store.get("vp2-test"), console.count(WAKE)

        result, station, wakes = run_service(tmp_path, replies, scenario)
        assert [r.timestamp for r in result.records] == [
            datetime(2025, 10, 2, 20, 5), datetime(2025, 10, 2, 20, 10),
        ]
        assert result.records[1].readings["outTemp"].native.value == 70.0
        assert result.last_archive_date == datetime(2025, 10, 2, 20, 10)
        assert station.last_archive_date == datetime(2025, 10, 2, 20, 10)
        # wake-up plus the closing escape
        assert wakes == 2
