"""Davis console time-zone presets.

The console stores either a preset index (EEPROM 0x11) or a raw GMT
offset (0x14, with 0x16 = 1). The raw offset is in hundredths of an
hour (+5:45 is 575); the preset list keeps the usual hours * 100 +
minutes notation for readability.
"""

from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# index: (GMT offset, IANA zones the preset stands for)
DAVIS_TIME_ZONES: dict[int, tuple[int, tuple[str, ...]]] = {
    0: (-1200, ("Pacific/Kwajalein", "Pacific/Majuro")),
    1: (-1100, ("Pacific/Midway", "Pacific/Pago_Pago", "Pacific/Niue")),
    2: (-1000, ("Pacific/Honolulu", "Pacific/Rarotonga", "Pacific/Tahiti")),
    3: (-900, ("America/Anchorage", "America/Juneau", "America/Nome")),
    4: (-800, ("America/Los_Angeles", "America/Vancouver", "America/Tijuana")),
    5: (-700, ("America/Denver", "America/Phoenix", "America/Edmonton")),
    6: (-600, ("America/Chicago", "America/Mexico_City", "America/Regina")),
    7: (-600, ("America/Matamoros",)),
    8: (-600, ("America/Guatemala", "America/El_Salvador", "America/Tegucigalpa")),
    9: (-500, ("America/Bogota", "America/Lima", "America/Guayaquil")),
    10: (-500, ("America/New_York", "America/Toronto", "America/Nassau")),
    11: (-400, ("America/Halifax", "America/Barbados", "Atlantic/Bermuda")),
    12: (-400, ("America/Caracas", "America/La_Paz", "America/Santiago")),
    13: (-330, ("America/St_Johns", "Canada/Newfoundland")),
    14: (-300, ("America/Sao_Paulo",)),
    15: (-300, ("America/Argentina/Buenos_Aires", "America/Cayenne", "America/Montevideo")),
    16: (-200, ("Atlantic/South_Georgia", "America/Noronha")),
    17: (-100, ("Atlantic/Azores", "Atlantic/Cape_Verde")),
    18: (0, ("Europe/London", "Europe/Dublin", "Europe/Lisbon")),
    19: (0, ("Africa/Casablanca", "Africa/Monrovia")),
    20: (100, ("Europe/Berlin", "Europe/Rome", "Europe/Amsterdam", "Europe/Stockholm")),
    21: (100, ("Europe/Paris", "Europe/Madrid", "Europe/Brussels", "Europe/Copenhagen")),
    22: (100, ("Europe/Prague", "Europe/Budapest", "Europe/Belgrade", "Europe/Ljubljana")),
    23: (200, ("Europe/Athens", "Europe/Helsinki", "Europe/Istanbul", "Europe/Minsk")),
    24: (200, ("Africa/Cairo",)),
    25: (200, ("Europe/Bucharest", "Europe/Chisinau", "Europe/Sofia")),
    26: (200, ("Africa/Johannesburg", "Africa/Harare", "Africa/Gaborone")),
    27: (200, ("Asia/Jerusalem", "Asia/Gaza", "Asia/Hebron")),
    28: (300, ("Asia/Baghdad", "Asia/Kuwait", "Asia/Riyadh", "Africa/Nairobi")),
    29: (300, ("Europe/Moscow", "Europe/Volgograd", "Europe/Samara")),
    30: (330, ("Asia/Tehran",)),
    31: (400, ("Asia/Dubai", "Asia/Muscat", "Asia/Baku", "Asia/Tbilisi")),
    32: (430, ("Asia/Kabul",)),
    33: (500, ("Asia/Karachi", "Asia/Tashkent", "Asia/Yekaterinburg")),
    34: (530, ("Asia/Kolkata", "Asia/Colombo")),
    35: (600, ("Asia/Almaty", "Asia/Dhaka", "Asia/Omsk")),
    36: (700, ("Asia/Bangkok", "Asia/Jakarta", "Asia/Ho_Chi_Minh", "Asia/Krasnoyarsk")),
    37: (800, ("Asia/Hong_Kong", "Asia/Shanghai", "Asia/Taipei", "Asia/Urumqi")),
    38: (800, ("Asia/Singapore", "Asia/Kuala_Lumpur", "Asia/Manila")),
    39: (900, ("Asia/Tokyo", "Asia/Seoul", "Asia/Pyongyang")),
    40: (930, ("Australia/Adelaide", "Australia/Broken_Hill")),
    41: (1000, ("Australia/Sydney", "Australia/Melbourne", "Australia/Hobart")),
    42: (1030, ("Australia/Lord_Howe",)),
    43: (1100, ("Pacific/Guadalcanal", "Pacific/Ponape")),
    44: (1200, ("Pacific/Auckland", "Pacific/Fiji", "Pacific/Funafuti")),
    45: (1245, ("Pacific/Chatham",)),
    46: (1300, ("Pacific/Tongatapu", "Pacific/Apia")),
}

_ZONE_INDEX = {
    zone: index
    for index, (_, zones) in DAVIS_TIME_ZONES.items()
    for zone in zones
}


def davis_time_zone_index(iana_zone: str) -> Optional[int]:
    """Preset index for an IANA zone, or None when no preset covers it."""
    return _ZONE_INDEX.get(iana_zone)


def station_zone(iana_zone: Optional[str]) -> Optional[ZoneInfo]:
    if not iana_zone:
        return None
    try:
        return ZoneInfo(iana_zone)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def gmt_offset_hundredths(iana_zone: str, when: Optional[datetime] = None) -> int:
    """Standard (non-DST) offset of the zone in hundredths of an hour,
    the unit of EEPROM 0x14: +5:45 is 575, -3:30 is -350."""
    zone = ZoneInfo(iana_zone)
    when = when or datetime.now(zone)
    local = when.astimezone(zone)
    offset = local.utcoffset() - (local.dst() or timedelta(0))
    minutes = int(offset.total_seconds() // 60)
    sign = -1 if minutes < 0 else 1
    hours, rest = divmod(abs(minutes), 60)
    return sign * (hours * 100 + rest * 100 // 60)


def local_now(iana_zone: Optional[str]) -> datetime:
    """Naive wall-clock time for the zone (host local time when unknown)."""
    zone = station_zone(iana_zone)
    if zone is None:
        return datetime.now()
    return datetime.now(zone).replace(tzinfo=None)
