"""Binary telemetry decoder for LOOP, LOOP2 and archive (DMP) data.

Decoding is a straight table walk over station_types.PACKET_FIELDS:
little-endian reads at fixed offsets, with each field's sentinel turned
into a missing value. No other branching on packet content.

Reference: Vantage Serial Protocol, rev 2.6, section X.
"""

import logging
import struct
from datetime import datetime
from typing import Optional

from .constants import ARCHIVE_RECORD_SIZE, ARCHIVE_RECORDS_PER_PAGE, LOOP_DATA_SIZE
from .errors import ProtocolMismatch
from .station_types import PACKET_FIELDS, FieldSpec, PacketKind, RawReading

logger = logging.getLogger(__name__)

_FORMATS = {
    (1, False): "<B",
    (1, True): "<b",
    (2, False): "<H",
    (2, True): "<h",
}

LOOP_HEADER = b"LOO"


def read_field(data: bytes, field: FieldSpec) -> RawReading:
    """Read one field, substituting its sentinel with None."""
    value = struct.unpack_from(_FORMATS[(field.width, field.signed)], data, field.offset)[0]
    if value == field.sentinel:
        return RawReading(None, field.native_unit)
    return RawReading(value, field.native_unit)


def decode(data: bytes, kind: PacketKind) -> dict[str, RawReading]:
    """Decode a packet into {field name: RawReading}."""
    fields = PACKET_FIELDS[kind]
    needed = max(f.offset + f.width for f in fields)
    if len(data) < needed:
        raise ValueError(f"{kind.value} data is {len(data)} bytes, need at least {needed}")
    return {field.name: read_field(data, field) for field in fields}


def decode_loop(data: bytes, kind: PacketKind = PacketKind.LOOP) -> dict[str, RawReading]:
    """Decode LOOP / LOOP2 data (97 bytes, CRC already stripped).

    Byte 4 is the packet type: 0 for LOOP, 1 for LOOP2.
    """
    if len(data) < LOOP_DATA_SIZE or data[:3] != LOOP_HEADER:
        raise ProtocolMismatch(
            f"Not a {kind.value} packet: {bytes(data[:5]).hex()}", buffer_hex=bytes(data).hex(),
        )
    expected_type = 1 if kind == PacketKind.LOOP2 else 0
    if data[4] != expected_type:
        logger.warning(
            "%s packet type byte is %d, expected %d", kind.value, data[4], expected_type,
        )
    return decode(data, kind)


# --- Archive date/time packing ---

def unpack_archive_date(word: int) -> tuple[int, int, int]:
    """(year, month, day) from an archive date stamp.

    Bits 15-9: year - 2000, bits 8-5: month, bits 4-0: day.
    """
    return (word >> 9) + 2000, (word >> 5) & 0x0F, word & 0x1F


def unpack_archive_time(word: int) -> tuple[int, int]:
    """(hour, minute) from an archive time stamp (hour * 100 + minute)."""
    return word // 100, word % 100


def unpack_loop_date(word: int) -> tuple[int, int, int]:
    """(year, month, day) from a LOOP date (storm start).

    Bits 15-12: month, bits 11-7: day, bits 6-0: year - 2000.
    """
    return (word & 0x7F) + 2000, (word >> 12) & 0x0F, (word >> 7) & 0x1F


def archive_timestamp(date_word: Optional[int], time_word: Optional[int]) -> Optional[datetime]:
    """Console-local timestamp of an archive record, None for empty slots."""
    if date_word is None or time_word is None:
        return None
    year, month, day = unpack_archive_date(date_word)
    hour, minute = unpack_archive_time(time_word)
    try:
        return datetime(year, month, day, hour, minute)
    except ValueError:
        logger.debug("Invalid archive timestamp 0x%04X 0x%04X", date_word, time_word)
        return None


def pack_archive_timestamp(dt: datetime) -> tuple[int, int]:
    """(date_word, time_word) for DMPAFT."""
    date_word = (dt.year - 2000) * 512 + dt.month * 32 + dt.day
    time_word = dt.hour * 100 + dt.minute
    return date_word, time_word


def split_archive_page(page: bytes) -> tuple[int, list[bytes]]:
    """Split a DMP page (CRC stripped) into its sequence number and records.

    Layout: 1 sequence byte, 5 x 52-byte records, 4 unused bytes.
    """
    sequence = page[0]
    body = page[1:1 + ARCHIVE_RECORD_SIZE * ARCHIVE_RECORDS_PER_PAGE]
    records = [
        body[i * ARCHIVE_RECORD_SIZE:(i + 1) * ARCHIVE_RECORD_SIZE]
        for i in range(ARCHIVE_RECORDS_PER_PAGE)
    ]
    return sequence, [r for r in records if len(r) == ARCHIVE_RECORD_SIZE]
