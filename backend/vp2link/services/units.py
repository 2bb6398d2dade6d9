"""Unit conversion pipeline.

Raw field -> native engineering value (to_native) -> any unit of the
field's physical quantity (to_target_unit). Each field is converted on
its own so a missing sensor never affects its neighbours.

Native values by quantity:
  temperature  °F          rain      mm (from the rain cup size)
  pressure     inHg        rainRate  mm/h
  speed        mph         et        in
  direction    degrees     uv        index
"""

import logging
from typing import Callable, Optional, Union

from ..protocol.constants import RAIN_CLICK_MM, RainCollectorSize
from ..protocol.loop_packet import unpack_archive_date, unpack_loop_date
from ..protocol.station_types import NativeUnit, RawReading
from ..schemas.sensor import ConvertedReading, ValueWithUnit
from ..schemas.station import StationConfig

logger = logging.getLogger(__name__)

Value = Union[int, float, str, None]

CARDINALS = [
    "N", "NNE", "NE", "ENE", "E", "ESE", "SE", "SSE",
    "S", "SSW", "SW", "WSW", "W", "WNW", "NW", "NNW",
]

# Console forecast icon bitmaps (Vantage Serial Protocol, LOOP byte 89)
FORECAST_CLASSES = {
    8: "Sun",
    6: "PartialSun Cloud",
    2: "Cloud",
    3: "Cloud Rain",
    18: "Cloud Snow",
    19: "Cloud Rain Snow",
    7: "Partial Sun Cloud Rain",
    22: "Partial Sun Cloud Snow",
    23: "Partial Sun Cloud Rain Snow",
}

BAR_TRENDS = {
    -60: "Falling Rapidly",
    -20: "Falling Slowly",
    0: "Steady",
    20: "Rising Slowly",
    60: "Rising Rapidly",
}

# Above this the battery pack is absent and the reading is the supply voltage
BATTERY_MISSING_VOLTS = 4.7
BATTERY_FULL_VOLTS = 4.56


def degrees_to_cardinal(degrees: float) -> str:
    """16-point compass label. 0 means no wind data on the console."""
    if degrees == 0 or degrees > 360:
        return "N/A"
    return CARDINALS[round(degrees / 22.5) % 16]


def _battery_percent(volts: float) -> Union[float, str]:
    if volts > BATTERY_MISSING_VOLTS:
        return "BATTERY MISSING"
    return volts / BATTERY_FULL_VOLTS * 100


def _uv_burn_minutes(uv: float) -> Optional[float]:
    if uv <= 0:
        return None
    return 180 / (uv * uv)


# --- Native step ---

def _rain_mm(clicks: int, size: RainCollectorSize) -> float:
    # Rounded to the resolution of the cup
    digits = {RainCollectorSize.IN_001: 3, RainCollectorSize.MM_02: 2, RainCollectorSize.MM_01: 1}
    return round(clicks * RAIN_CLICK_MM[size], digits[size])


def _format_date(ymd: tuple[int, int, int]) -> str:
    year, month, day = ymd
    return f"{year:04d}/{month:02d}/{day:02d}"


def to_native(
    raw: int,
    native_unit: NativeUnit,
    calibration: Optional[StationConfig] = None,
) -> Value:
    """Scale a raw field value to its native engineering unit.

    The only calibration-dependent transform is rain: clicks are scaled by
    the station's rain collector cup size.
    """
    U = NativeUnit
    if native_unit == U.F_TENTHS:
        return raw / 10
    if native_unit == U.F_OFFSET_90:
        return raw - 90
    if native_unit == U.INHG_THOUSANDTHS:
        return raw / 1000
    if native_unit == U.IN_HUNDREDTHS:
        return raw / 100
    if native_unit == U.IN_THOUSANDTHS:
        return raw / 1000
    if native_unit in (U.RAIN_CLICKS, U.RAIN_RATE_CLICKS):
        size = calibration.rain_collector_size if calibration else RainCollectorSize.IN_001
        return _rain_mm(raw, RainCollectorSize(size))
    if native_unit == U.MPH_TENTHS:
        return raw / 10
    if native_unit == U.DIRECTION_CODE:
        # Code 0 is north; 360 keeps it apart from "no wind"
        return raw * 22.5 or 360.0
    if native_unit == U.UV_TENTHS:
        return raw / 10
    if native_unit == U.BATTERY:
        return round(raw * 3 / 512, 3)
    if native_unit == U.CLOCK_TIME:
        return f"{raw // 100:02d}:{raw % 100:02d}"
    if native_unit == U.ARCHIVE_DATE:
        return _format_date(unpack_archive_date(raw))
    if native_unit == U.LOOP_DATE:
        return _format_date(unpack_loop_date(raw))
    # F_WHOLE, MPH_WHOLE, DEGREES, PERCENT, WATTS_M2, FORECAST_ICON, ...
    return raw


NATIVE_UNIT_LABELS = {
    NativeUnit.F_TENTHS: "°F",
    NativeUnit.F_WHOLE: "°F",
    NativeUnit.F_OFFSET_90: "°F",
    NativeUnit.INHG_THOUSANDTHS: "inhg",
    NativeUnit.IN_HUNDREDTHS: "in",
    NativeUnit.IN_THOUSANDTHS: "in",
    NativeUnit.RAIN_CLICKS: "mm",
    NativeUnit.RAIN_RATE_CLICKS: "mm/h",
    NativeUnit.MPH_WHOLE: "mph",
    NativeUnit.MPH_TENTHS: "mph",
    NativeUnit.DEGREES: "°",
    NativeUnit.DIRECTION_CODE: "°",
    NativeUnit.PERCENT: "%",
    NativeUnit.LEAF_WETNESS: "index",
    NativeUnit.CENTIBARS: "cb",
    NativeUnit.UV_TENTHS: "index",
    NativeUnit.WATTS_M2: "w/m²",
    NativeUnit.BATTERY: "V",
    NativeUnit.FORECAST_ICON: "ForecastNum",
    NativeUnit.CLOCK_TIME: "hh:mm",
    NativeUnit.ARCHIVE_DATE: "yyyy/mm/dd",
    NativeUnit.LOOP_DATE: "yyyy/mm/dd",
    NativeUnit.BAR_TREND: "code",
}


# --- Target step ---

def _f_to_c(f: float) -> float:
    return (f - 32) * 5 / 9


CONVERSIONS: dict[str, dict[str, Callable[[Value], Value]]] = {
    "temperature": {
        "°C": _f_to_c,
        "°F": lambda f: f,
        "K": lambda f: _f_to_c(f) + 273.15,
    },
    "speed": {
        "mph": lambda mph: mph,
        "m/s": lambda mph: mph * 0.44704,
        "km/h": lambda mph: mph * 1.609344,
        "knots": lambda mph: mph * 0.868976,
    },
    "direction": {
        "°": lambda deg: deg,
        "cardinal": degrees_to_cardinal,
    },
    "pressure": {
        "inhg": lambda inhg: inhg,
        "hpa": lambda inhg: inhg * 33.8639,
        "mb": lambda inhg: inhg * 33.8639,
        "Bar": lambda inhg: inhg * 0.0338639,
    },
    "rain": {
        "mm": lambda mm: mm,
        "in": lambda mm: mm / 25.4,
        "l/m²": lambda mm: mm,
    },
    "rainRate": {
        "mm/h": lambda mm_h: mm_h,
        "in/h": lambda mm_h: mm_h / 25.4,
        "l/m²/h": lambda mm_h: mm_h,
    },
    "et": {
        "in": lambda inches: inches,
        "mm": lambda inches: inches * 25.4,
    },
    "uv": {
        "index": lambda uv: uv,
        "min": _uv_burn_minutes,
    },
    "irradiance": {
        "w/m²": lambda w: w,
    },
    "humidity": {
        "%": lambda h: h,
    },
    "leafWetness": {
        "index": lambda w: w,
    },
    "soilMoisture": {
        "cb": lambda cb: cb,
    },
    "voltage": {
        "V": lambda v: v,
        "%": _battery_percent,
    },
    "forecast": {
        "ForecastNum": lambda f: f,
        "ForecastClass": lambda f: FORECAST_CLASSES.get(f, "Unknown"),
    },
    # input yyyy/mm/dd
    "date": {
        "iso8601": lambda d: f"{d[0:4]}-{d[5:7]}-{d[8:10]}T",
        "yyyy-mm-dd": lambda d: f"{d[0:4]}-{d[5:7]}-{d[8:10]}",
        "yyyy/mm/dd": lambda d: d,
        "dd/mm/yyyy": lambda d: f"{d[8:10]}/{d[5:7]}/{d[0:4]}",
    },
    # input hh:mm
    "time": {
        "iso8601": lambda t: f"{t[0:2]}:{t[3:5]}:00.000Z",
        "hh:mm:ss": lambda t: f"{t[0:2]}:{t[3:5]}:00",
        "hh:mm": lambda t: t,
    },
    "trend": {
        "code": lambda c: c,
        "label": lambda c: BAR_TRENDS.get(c, "Unknown"),
    },
}

METRIC_UNITS = {
    "temperature": "K",
    "speed": "m/s",
    "direction": "°",
    "pressure": "hpa",
    "rain": "mm",
    "rainRate": "mm/h",
    "et": "mm",
    "uv": "index",
    "irradiance": "w/m²",
    "humidity": "%",
    "leafWetness": "index",
    "soilMoisture": "cb",
    "voltage": "V",
    "forecast": "ForecastClass",
    "date": "iso8601",
    "time": "iso8601",
    "trend": "label",
}


def _quantity_map() -> dict[str, str]:
    groups = {
        "temperature": [
            "inTemp", "outTemp", "outTempMax", "outTempMin", "dewPoint",
            "heatIndex", "windChill", "THSW", "leafTemp1", "leafTemp2",
            "soilTemp1", "soilTemp2", "soilTemp3", "soilTemp4",
            "extraTemp1", "extraTemp2", "extraTemp3",
        ],
        "humidity": ["inHumidity", "outHumidity", "extraHumidity1", "extraHumidity2"],
        "speed": [
            "windSpeed", "windSpeedMax", "avgWindSpeed10Min",
            "avgWindSpeed2Min", "windGust10Min",
        ],
        "direction": ["windDir", "windDirMax", "windGustDir10Min"],
        "pressure": ["barometer"],
        "trend": ["barTrend"],
        "rain": [
            "rainFlow", "stormRain", "dayRain", "monthRain", "yearRain",
            "last15MinRain", "lastHourRain", "last24HourRain",
        ],
        "rainRate": ["rainRate", "rainRateMax"],
        "et": ["ET", "dayET", "monthET", "yearET"],
        "uv": ["uvIndex", "uvIndexMax"],
        "irradiance": ["solarRadiation", "solarRadiationMax"],
        "leafWetness": ["leafWetness1", "leafWetness2"],
        "soilMoisture": ["soilMoisture1", "soilMoisture2", "soilMoisture3", "soilMoisture4"],
        "voltage": ["batteryVoltage"],
        "forecast": ["ForecastIcon"],
        "date": ["date", "dateStormRain"],
        "time": ["time", "sunrise", "sunset"],
    }
    return {name: quantity for quantity, names in groups.items() for name in names}


SENSOR_QUANTITY = _quantity_map()


def round_by_magnitude(value: Value) -> Value:
    """4/3/2/1/0 decimals for |v| < 1/10/100/1000/above. Strings pass through."""
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return value
    magnitude = abs(value)
    if magnitude < 1:
        digits = 4
    elif magnitude < 10:
        digits = 3
    elif magnitude < 100:
        digits = 2
    elif magnitude < 1000:
        digits = 1
    else:
        return int(round(value))
    return round(value, digits)


def to_target_unit(native_value: Value, quantity: Optional[str], target_unit: str) -> Value:
    """Convert a native value to target_unit.

    Unknown quantities or units are logged and returned unconverted.
    """
    table = CONVERSIONS.get(quantity) if quantity else None
    if table is None:
        logger.warning("No conversion table for quantity %s", quantity)
        return native_value
    convert = table.get(target_unit)
    if convert is None:
        logger.warning("No conversion from %s to %s", quantity, target_unit)
        return native_value
    if native_value is None:
        return None
    return round_by_magnitude(convert(native_value))


def convert_reading(
    name: str,
    raw: RawReading,
    station: Optional[StationConfig],
    user_units: dict[str, str],
) -> Optional[ConvertedReading]:
    """Native, metric and user views of one field. None when missing."""
    if raw.missing:
        return None

    native_value = to_native(raw.value, raw.native_unit, station)
    native_label = NATIVE_UNIT_LABELS.get(raw.native_unit, raw.native_unit.value)
    native = ValueWithUnit(value=native_value, unit=native_label)

    quantity = SENSOR_QUANTITY.get(name)
    if quantity is None:
        logger.warning("No physical quantity known for %s, keeping native value", name)
        return ConvertedReading(native=native, metric=native, user=native)

    metric_unit = METRIC_UNITS[quantity]
    user_unit = user_units.get(quantity) or metric_unit
    if user_unit not in CONVERSIONS[quantity]:
        logger.warning("Unknown %s unit %r for %s, using %s", quantity, user_unit, name, metric_unit)
        user_unit = metric_unit
    return ConvertedReading(
        native=native,
        metric=ValueWithUnit(
            value=to_target_unit(native_value, quantity, metric_unit), unit=metric_unit,
        ),
        user=ValueWithUnit(
            value=to_target_unit(native_value, quantity, user_unit), unit=user_unit,
        ),
    )


def process_readings(
    readings: dict[str, RawReading],
    station: Optional[StationConfig],
    user_units: dict[str, str],
) -> dict[str, ConvertedReading]:
    """Convert every present field; missing ones are left out."""
    processed = {}
    for name, raw in readings.items():
        converted = convert_reading(name, raw, station, user_units)
        if converted is not None:
            processed[name] = converted
    return processed
