"""Field layouts of the VP2 binary packets.

Each packet kind has a fixed table of fields. Offsets are relative to the
start of the data span returned by the transport (LOOP data begins with the
"LOO" header; archive offsets are relative to one 52-byte record).

Every entry carries its own "no sensor" sentinel: the console uses the
all-ones value of the field's encoding (255 / 65535 unsigned, -128 / -32768
signed), so the substitution has to be made per field.

Reference: Vantage Serial Protocol, rev 2.6, sections X.1, X.2 and X.4.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PacketKind(str, Enum):
    LOOP = "LOOP"
    LOOP2 = "LOOP2"
    ARCHIVE = "DMP"


class NativeUnit(str, Enum):
    """How a raw field is encoded on the wire."""
    F_TENTHS = "F_tenths"
    F_WHOLE = "F_whole"
    F_OFFSET_90 = "F_-90"
    INHG_THOUSANDTHS = "inHg_1000th"
    IN_HUNDREDTHS = "in_100th"
    IN_THOUSANDTHS = "in_1000th"
    RAIN_CLICKS = "clicks*cup_size"
    RAIN_RATE_CLICKS = "clicks*cup_size/h"
    MPH_WHOLE = "mph_whole"
    MPH_TENTHS = "mph_tenths"
    DEGREES = "degrees"
    DIRECTION_CODE = "direction_code"
    PERCENT = "percent"
    LEAF_WETNESS = "leaf_wetness"
    CENTIBARS = "cb"
    UV_TENTHS = "uv_tenths"
    WATTS_M2 = "w/m²"
    BATTERY = "((DataRaw * 3)/512) V"
    FORECAST_ICON = "ForecastNum"
    CLOCK_TIME = "time"
    ARCHIVE_DATE = "date"
    LOOP_DATE = "loop_date"
    BAR_TREND = "bar_trend"


_SENTINELS = {
    (1, False): 0xFF,
    (1, True): -128,
    (2, False): 0xFFFF,
    (2, True): -32768,
}


@dataclass(frozen=True)
class FieldSpec:
    """Definition of a single field within a packet."""
    name: str
    offset: int
    width: int  # bytes, 1 or 2
    signed: bool
    native_unit: NativeUnit
    sentinel: Optional[int] = None

    def __post_init__(self):
        if self.sentinel is None:
            object.__setattr__(self, "sentinel", _SENTINELS[(self.width, self.signed)])


@dataclass(frozen=True)
class RawReading:
    """A decoded field. value is None when the console reported no data."""
    value: Optional[int]
    native_unit: NativeUnit

    @property
    def missing(self) -> bool:
        return self.value is None


def _u8(name, offset, unit):
    return FieldSpec(name, offset, 1, False, unit)


def _s8(name, offset, unit):
    return FieldSpec(name, offset, 1, True, unit)


def _u16(name, offset, unit):
    return FieldSpec(name, offset, 2, False, unit)


def _s16(name, offset, unit):
    return FieldSpec(name, offset, 2, True, unit)


U = NativeUnit

# LOOP (LPS 1): 99 bytes on the wire, 97 data bytes + CRC
LOOP_FIELDS = (
    _s8("barTrend", 3, U.BAR_TREND),
    _u16("barometer", 7, U.INHG_THOUSANDTHS),
    _s16("inTemp", 9, U.F_TENTHS),
    _u8("inHumidity", 11, U.PERCENT),
    _s16("outTemp", 12, U.F_TENTHS),
    _u8("windSpeed", 14, U.MPH_WHOLE),
    _u8("avgWindSpeed10Min", 15, U.MPH_WHOLE),
    _u16("windDir", 16, U.DEGREES),
    _u8("outHumidity", 33, U.PERCENT),
    _u16("rainRate", 41, U.RAIN_RATE_CLICKS),
    _u8("uvIndex", 43, U.UV_TENTHS),
    _u16("solarRadiation", 44, U.WATTS_M2),
    _u16("stormRain", 46, U.RAIN_CLICKS),
    _u16("dayRain", 50, U.RAIN_CLICKS),
    _u16("monthRain", 52, U.RAIN_CLICKS),
    _u16("yearRain", 54, U.RAIN_CLICKS),
    _u16("dayET", 56, U.IN_THOUSANDTHS),
    _u16("monthET", 58, U.IN_HUNDREDTHS),
    _u16("yearET", 60, U.IN_HUNDREDTHS),
    _u16("batteryVoltage", 87, U.BATTERY),
    _u8("ForecastIcon", 89, U.FORECAST_ICON),
    _u16("sunrise", 91, U.CLOCK_TIME),
    _u16("sunset", 93, U.CLOCK_TIME),
)

# LOOP2 (LPS 2): same framing as LOOP, different body
LOOP2_FIELDS = (
    _s8("barTrend", 3, U.BAR_TREND),
    _u16("barometer", 7, U.INHG_THOUSANDTHS),
    _s16("inTemp", 9, U.F_TENTHS),
    _u8("inHumidity", 11, U.PERCENT),
    _s16("outTemp", 12, U.F_TENTHS),
    _u8("windSpeed", 14, U.MPH_WHOLE),
    _u16("windDir", 16, U.DEGREES),
    _u16("avgWindSpeed10Min", 18, U.MPH_TENTHS),
    _u16("avgWindSpeed2Min", 20, U.MPH_TENTHS),
    _u16("windGust10Min", 22, U.MPH_TENTHS),
    _u16("windGustDir10Min", 24, U.DEGREES),
    _s16("dewPoint", 30, U.F_WHOLE),
    _u8("outHumidity", 33, U.PERCENT),
    _s16("heatIndex", 35, U.F_WHOLE),
    _s16("windChill", 37, U.F_WHOLE),
    _s16("THSW", 39, U.F_WHOLE),
    _u16("rainRate", 41, U.RAIN_RATE_CLICKS),
    _u8("uvIndex", 43, U.UV_TENTHS),
    _u16("solarRadiation", 44, U.WATTS_M2),
    _u16("stormRain", 46, U.RAIN_CLICKS),
    _u16("dateStormRain", 48, U.LOOP_DATE),
    _u16("dayRain", 50, U.RAIN_CLICKS),
    _u16("last15MinRain", 52, U.RAIN_CLICKS),
    _u16("lastHourRain", 54, U.RAIN_CLICKS),
    _u16("dayET", 56, U.IN_THOUSANDTHS),
    _u16("last24HourRain", 58, U.RAIN_CLICKS),
)

# Archive record, revision B (52 bytes)
ARCHIVE_FIELDS = (
    _u16("date", 0, U.ARCHIVE_DATE),
    _u16("time", 2, U.CLOCK_TIME),
    _s16("outTemp", 4, U.F_TENTHS),
    _s16("outTempMax", 6, U.F_TENTHS),
    _s16("outTempMin", 8, U.F_TENTHS),
    _u16("rainFlow", 10, U.RAIN_CLICKS),
    _u16("rainRateMax", 12, U.RAIN_RATE_CLICKS),
    _u16("barometer", 14, U.INHG_THOUSANDTHS),
    _u16("solarRadiation", 16, U.WATTS_M2),
    _s16("inTemp", 20, U.F_TENTHS),
    _u8("inHumidity", 22, U.PERCENT),
    _u8("outHumidity", 23, U.PERCENT),
    _u8("windSpeed", 24, U.MPH_WHOLE),
    _u8("windSpeedMax", 25, U.MPH_WHOLE),
    _u8("windDirMax", 26, U.DIRECTION_CODE),
    _u8("windDir", 27, U.DIRECTION_CODE),
    _u8("uvIndex", 28, U.UV_TENTHS),
    _u8("ET", 29, U.IN_THOUSANDTHS),
    _u16("solarRadiationMax", 30, U.WATTS_M2),
    _u8("uvIndexMax", 32, U.UV_TENTHS),
    _u8("leafTemp1", 34, U.F_OFFSET_90),
    _u8("leafTemp2", 35, U.F_OFFSET_90),
    _u8("leafWetness1", 36, U.LEAF_WETNESS),
    _u8("leafWetness2", 37, U.LEAF_WETNESS),
    _u8("soilTemp1", 38, U.F_OFFSET_90),
    _u8("soilTemp2", 39, U.F_OFFSET_90),
    _u8("soilTemp3", 40, U.F_OFFSET_90),
    _u8("soilTemp4", 41, U.F_OFFSET_90),
    _u8("extraHumidity1", 43, U.PERCENT),
    _u8("extraHumidity2", 44, U.PERCENT),
    _u8("extraTemp1", 45, U.F_OFFSET_90),
    _u8("extraTemp2", 46, U.F_OFFSET_90),
    _u8("extraTemp3", 47, U.F_OFFSET_90),
    _u8("soilMoisture1", 48, U.CENTIBARS),
    _u8("soilMoisture2", 49, U.CENTIBARS),
    _u8("soilMoisture3", 50, U.CENTIBARS),
    _u8("soilMoisture4", 51, U.CENTIBARS),
)

PACKET_FIELDS = {
    PacketKind.LOOP: LOOP_FIELDS,
    PacketKind.LOOP2: LOOP2_FIELDS,
    PacketKind.ARCHIVE: ARCHIVE_FIELDS,
}
