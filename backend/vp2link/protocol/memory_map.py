"""Console EEPROM address map.

Each entry is (address, length, kind). These addresses are part of the
console protocol; the settings block read by EEBRD starts at 0x01.
Reference: Vantage Serial Protocol, rev 2.6, section XIII.
"""

import struct
from dataclasses import dataclass
from typing import Optional

from .constants import RainCollectorSize


@dataclass(frozen=True)
class EepromAddr:
    """An EEPROM setting location."""
    address: int
    length: int
    kind: str  # "uint8", "int16" or "uint16"


class Eeprom:
    # Factory calibration, read only
    BAR_GAIN = EepromAddr(0x01, 2, "uint16")
    BAR_OFFSET = EepromAddr(0x03, 2, "uint16")
    BAR_CAL = EepromAddr(0x05, 2, "uint16")
    HUM33 = EepromAddr(0x07, 2, "uint16")
    HUM80 = EepromAddr(0x09, 2, "uint16")

    LATITUDE = EepromAddr(0x0B, 2, "int16")  # tenths of a degree
    LONGITUDE = EepromAddr(0x0D, 2, "int16")  # tenths of a degree
    ELEVATION = EepromAddr(0x0F, 2, "uint16")  # feet
    TIME_ZONE = EepromAddr(0x11, 1, "uint8")
    GMT_OFFSET = EepromAddr(0x14, 2, "int16")  # hundredths of an hour
    GMT_OR_ZONE = EepromAddr(0x16, 1, "uint8")  # 1 = use GMT_OFFSET
    UNIT_BITS = EepromAddr(0x29, 1, "uint8")
    SETUP_BITS = EepromAddr(0x2B, 1, "uint8")
    RAIN_SEASON_START = EepromAddr(0x2C, 1, "uint8")
    ARCHIVE_PERIOD = EepromAddr(0x2D, 1, "uint8")


EEPROM_BLOCK_START = 0x01
EEPROM_BLOCK_LENGTH = 46

_STRUCT = {"uint8": "<B", "int16": "<h", "uint16": "<H"}

# Setup bits (0x2B)
SETUP_AM_PM = 0x01
SETUP_MONTH_DAY = 0x04
SETUP_WIND_CUP_LARGE = 0x08
SETUP_RAIN_COLLECTOR_MASK = 0x30
SETUP_RAIN_COLLECTOR_SHIFT = 4
SETUP_LATITUDE_NORTH = 0x40
SETUP_LONGITUDE_EAST = 0x80


def read_setting(block: bytes, addr: EepromAddr, start: int = EEPROM_BLOCK_START) -> int:
    """Read one setting from an EEPROM block that begins at `start`."""
    return struct.unpack_from(_STRUCT[addr.kind], block, addr.address - start)[0]


def encode_setting(addr: EepromAddr, value: int) -> bytes:
    """Little-endian bytes for writing value at addr."""
    return struct.pack(_STRUCT[addr.kind], value)


@dataclass
class UnitBits:
    raw: int
    barometer: int = 0
    temperature: int = 0
    elevation: int = 0
    rain: int = 0
    wind: int = 0

    @classmethod
    def from_raw(cls, raw: int) -> "UnitBits":
        return cls(
            raw=raw,
            barometer=raw & 0x03,
            temperature=(raw & 0x0C) >> 2,
            elevation=(raw & 0x10) >> 4,
            rain=(raw & 0x20) >> 5,
            wind=(raw & 0xC0) >> 6,
        )


@dataclass
class SetupBits:
    raw: int
    am_pm_mode: bool = False
    month_day_format: bool = False
    wind_cup_large: bool = False
    rain_collector_size: RainCollectorSize = RainCollectorSize.IN_001
    latitude_north: bool = True
    longitude_east: bool = True

    @classmethod
    def from_raw(cls, raw: int) -> "SetupBits":
        return cls(
            raw=raw,
            am_pm_mode=bool(raw & SETUP_AM_PM),
            month_day_format=bool(raw & SETUP_MONTH_DAY),
            wind_cup_large=bool(raw & SETUP_WIND_CUP_LARGE),
            rain_collector_size=RainCollectorSize(
                (raw & SETUP_RAIN_COLLECTOR_MASK) >> SETUP_RAIN_COLLECTOR_SHIFT
            ) if (raw & SETUP_RAIN_COLLECTOR_MASK) != SETUP_RAIN_COLLECTOR_MASK
            else RainCollectorSize.IN_001,
            latitude_north=bool(raw & SETUP_LATITUDE_NORTH),
            longitude_east=bool(raw & SETUP_LONGITUDE_EAST),
        )


@dataclass
class EepromSettings:
    """Settings decoded from the 46-byte block at 0x01."""
    latitude_tenths: int
    longitude_tenths: int
    elevation_ft: int
    time_zone: int
    gmt_offset: int
    use_gmt_offset: bool
    unit_bits: UnitBits
    setup_bits: SetupBits
    rain_season_start: int
    archive_period: int
    bar_cal: int = 0

    @property
    def latitude(self) -> float:
        return self.latitude_tenths / 10

    @property
    def longitude(self) -> float:
        return self.longitude_tenths / 10

    @property
    def elevation_m(self) -> float:
        return round(self.elevation_ft * 0.3048, 2)

    def as_dict(self) -> dict:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "elevation_ft": self.elevation_ft,
            "elevation_m": self.elevation_m,
            "time_zone": self.time_zone,
            "gmt_offset": self.gmt_offset,
            "use_gmt_offset": self.use_gmt_offset,
            "unit_bits": self.unit_bits.__dict__,
            "setup_bits": {
                **self.setup_bits.__dict__,
                "rain_collector_size": int(self.setup_bits.rain_collector_size),
            },
            "rain_season_start": self.rain_season_start,
            "archive_period": self.archive_period,
            "bar_cal": self.bar_cal,
        }


def parse_eeprom_settings(block: bytes) -> EepromSettings:
    """Decode the settings block returned by ``EEBRD 01 2E``."""
    if len(block) < EEPROM_BLOCK_LENGTH:
        raise ValueError(
            f"EEPROM block is {len(block)} bytes, expected {EEPROM_BLOCK_LENGTH}"
        )
    return EepromSettings(
        latitude_tenths=read_setting(block, Eeprom.LATITUDE),
        longitude_tenths=read_setting(block, Eeprom.LONGITUDE),
        elevation_ft=read_setting(block, Eeprom.ELEVATION),
        time_zone=read_setting(block, Eeprom.TIME_ZONE),
        gmt_offset=read_setting(block, Eeprom.GMT_OFFSET),
        use_gmt_offset=read_setting(block, Eeprom.GMT_OR_ZONE) == 1,
        unit_bits=UnitBits.from_raw(read_setting(block, Eeprom.UNIT_BITS)),
        setup_bits=SetupBits.from_raw(read_setting(block, Eeprom.SETUP_BITS)),
        rain_season_start=read_setting(block, Eeprom.RAIN_SEASON_START),
        archive_period=read_setting(block, Eeprom.ARCHIVE_PERIOD),
        bar_cal=read_setting(block, Eeprom.BAR_CAL),
    )


@dataclass(frozen=True)
class EepromChange:
    """One write needed to bring the console in line with the config."""
    parameter: str
    addr: Optional[EepromAddr]
    current: int
    desired: int
