"""Tests for EEPROM decoding and settings planning."""

import struct
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from vp2link.protocol.constants import RainCollectorSize
from vp2link.protocol.memory_map import Eeprom, SetupBits, encode_setting, parse_eeprom_settings
from vp2link.schemas.station import StationConfig
from vp2link.services.station_service import plan_settings_changes
from vp2link.services.timezones import (
    davis_time_zone_index,
    gmt_offset_hundredths,
    station_zone,
)

from fake_console import make_eeprom_block


def paris(**kwargs) -> StationConfig:
    values = dict(
        id="vp2-paris", host="192.0.2.5",
        latitude=48.9, longitude=2.3, elevation_m=35.0,
        timezone="Europe/Paris", archive_interval=10, rain_season_start=1,
    )
    values.update(kwargs)
    return StationConfig(**values)


class TestParseSettings:
    def test_decodes_block(self):
        settings = parse_eeprom_settings(make_eeprom_block(LATITUDE=-339, LONGITUDE=1512))
        assert settings.latitude == -33.9
        assert settings.longitude == 151.2
        assert settings.elevation_ft == 115
        assert settings.time_zone == 21
        assert settings.use_gmt_offset is False
        assert settings.archive_period == 10

    def test_short_block_rejected(self):
        with pytest.raises(ValueError):
            parse_eeprom_settings(bytes(20))

    def test_negative_gmt_offset(self):
        settings = parse_eeprom_settings(make_eeprom_block(GMT_OFFSET=-500, GMT_OR_ZONE=1))
        assert settings.gmt_offset == -500
        assert settings.use_gmt_offset is True

    def test_encode_is_little_endian(self):
        assert encode_setting(Eeprom.LATITUDE, -339) == struct.pack("<h", -339)
        assert encode_setting(Eeprom.ARCHIVE_PERIOD, 30) == b"\x1e"


class TestSetupBits:
    def test_rain_collector_and_hemispheres(self):
        bits = SetupBits.from_raw(0x40 | 0x10)
        assert bits.rain_collector_size == RainCollectorSize.MM_02
        assert bits.latitude_north is True
        assert bits.longitude_east is False

    def test_reserved_collector_value(self):
        assert SetupBits.from_raw(0x30).rain_collector_size == RainCollectorSize.IN_001


class TestPlanSettingsChanges:
    def test_in_sync(self):
        assert plan_settings_changes(parse_eeprom_settings(make_eeprom_block()), paris()) == []

    def test_unconfigured_values_are_ignored(self):
        station = StationConfig(id="bare", host="192.0.2.9")
        assert plan_settings_changes(parse_eeprom_settings(make_eeprom_block()), station) == []

    def test_latitude_and_hemisphere_bit(self):
        current = parse_eeprom_settings(make_eeprom_block())
        changes = {c.parameter: c for c in plan_settings_changes(current, paris(latitude=-33.9))}
        assert changes["latitude"].desired == -339
        assert changes["setup_bits"].desired == 0x80

    def test_elevation_in_feet(self):
        current = parse_eeprom_settings(make_eeprom_block())
        changes = plan_settings_changes(current, paris(elevation_m=100.0))
        assert [(c.parameter, c.desired) for c in changes] == [("elevation", 328)]

    def test_rain_collector_size(self):
        current = parse_eeprom_settings(make_eeprom_block())
        changes = plan_settings_changes(current, paris(rain_collector_size=RainCollectorSize.MM_01))
        assert [(c.parameter, c.current, c.desired) for c in changes] == [
            ("setup_bits", 0xC0, 0xE0),
        ]

    def test_archive_interval(self):
        current = parse_eeprom_settings(make_eeprom_block())
        changes = plan_settings_changes(current, paris(archive_interval=5))
        assert [(c.parameter, c.current, c.desired) for c in changes] == [
            ("archive_interval", 10, 5),
        ]

    def test_preset_time_zone(self):
        current = parse_eeprom_settings(make_eeprom_block(TIME_ZONE=10))
        changes = plan_settings_changes(current, paris())
        assert [(c.parameter, c.desired) for c in changes] == [("time_zone", 21)]

    def test_zone_without_preset_uses_gmt_offset(self):
        current = parse_eeprom_settings(make_eeprom_block())
        changes = plan_settings_changes(current, paris(timezone="Asia/Kathmandu"))
        assert [(c.parameter, c.desired) for c in changes] == [("gmt_offset", 575)]


class TestTimeZones:
    def test_preset_index(self):
        assert davis_time_zone_index("Europe/Paris") == 21
        assert davis_time_zone_index("America/New_York") == 10
        assert davis_time_zone_index("Asia/Kathmandu") is None

    def test_unknown_zone(self):
        assert station_zone("Mars/Olympus") is None
        assert station_zone(None) is None

    def test_standard_offset_ignores_dst(self):
        summer = datetime(2025, 7, 1, 12, tzinfo=ZoneInfo("America/New_York"))
        assert gmt_offset_hundredths("America/New_York", summer) == -500
        assert gmt_offset_hundredths("America/St_Johns", summer) == -350

    def test_fractional_offsets_in_hundredths_of_an_hour(self):
        assert gmt_offset_hundredths("Asia/Kathmandu") == 575
        assert gmt_offset_hundredths("Australia/Darwin") == 950
