"""Command builders for the Vantage Pro2 console protocol.

Text commands are returned as str; the transport appends the LF
terminator. Binary payloads are returned as bytes with their CRC
already appended and are sent verbatim.
Reference: Vantage Serial Protocol, rev 2.6, section VIII.
"""

import struct
from datetime import datetime

from .constants import ARCHIVE_INTERVALS
from .crc import append_crc
from .loop_packet import pack_archive_timestamp


def build_lps_command(loop_type: int = 1, n_packets: int = 1) -> str:
    """LPS <type> <n>: type is a bitmask, 1 = LOOP, 2 = LOOP2."""
    return f"LPS {loop_type} {n_packets}"


def build_gettime_command() -> str:
    return "GETTIME"


def build_settime_command() -> str:
    return "SETTIME"


def build_time_payload(dt: datetime) -> bytes:
    """sec, min, hour, day, month, year - 1900, then CRC."""
    return append_crc(bytes([dt.second, dt.minute, dt.hour, dt.day, dt.month, dt.year - 1900]))


def parse_time_payload(data: bytes) -> datetime:
    """Inverse of build_time_payload (CRC already stripped)."""
    sec, minute, hour, day, month, year = data[:6]
    return datetime(year + 1900, month, day, hour, minute, sec)


def build_dmpaft_command() -> str:
    return "DMPAFT"


def build_dmpaft_payload(since: datetime) -> bytes:
    """Date and time words, little-endian, then CRC."""
    date_word, time_word = pack_archive_timestamp(since)
    return append_crc(struct.pack("<HH", date_word, time_word))


def build_eebrd_command(address: int, length: int) -> str:
    """Binary EEPROM read; addresses and lengths are sent in hex."""
    return f"EEBRD {address:02X} {length:02X}"


def build_eewr_command(address: int, value: int) -> str:
    """Write one EEPROM byte."""
    return f"EEWR {address:02X} {value & 0xFF:02X}"


def build_eebwr_command(address: int, length: int) -> str:
    """Binary EEPROM write header; the data block follows separately."""
    return f"EEBWR {address:02X} {length:02X}"


def build_eebwr_payload(data: bytes) -> bytes:
    return append_crc(data)


def build_newsetup_command() -> str:
    return "NEWSETUP"


def build_lamps_command(on: bool) -> str:
    return f"LAMPS {1 if on else 0}"


def build_bar_command(barometer_thousandths: int, elevation_ft: int) -> str:
    """BAR=<bar> <elev>: a reading of 0 keeps the console's own value and
    only changes the elevation used for sea-level correction."""
    return f"BAR={barometer_thousandths} {elevation_ft}"


def build_setper_command(minutes: int) -> str:
    if minutes not in ARCHIVE_INTERVALS:
        raise ValueError(
            f"Archive interval must be one of {ARCHIVE_INTERVALS}, got {minutes}"
        )
    return f"SETPER {minutes}"


def build_start_command() -> str:
    """Resume archiving."""
    return "START"
