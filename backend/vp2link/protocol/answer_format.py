"""Answer-format descriptors: what a console reply must look like.

A descriptor such as ``"<ACK>6<CRC>"`` is compiled into an ordered list of
segments the transport checks the reply against:

    <ACK>                 1 byte, must be 0x06
    <LF><CR>OK<LF><CR>    6 literal bytes "\\n\\rOK\\n\\r"
    <LF><CR>              2 literal bytes "\\n\\r"
    <CRC>                 2 bytes, big-endian CRC of the preceding data
    N (decimal)           N raw data bytes

Tokens are matched greedily left to right, longest literal first.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .constants import ACK, OK_REPLY
from .errors import InvalidFormat, ProtocolMismatch


class SegmentKind(str, Enum):
    ACK = "ACK"
    LITERAL = "LITERAL"
    DATA = "DATA"
    CRC = "CRC"


@dataclass(frozen=True)
class Segment:
    """One expected span of a console reply."""
    kind: SegmentKind
    length: int
    expected: Optional[bytes] = None


@dataclass(frozen=True)
class AnswerFormat:
    """Compiled descriptor. total_expected_length == sum of segment lengths."""
    descriptor: str
    segments: tuple[Segment, ...]
    total_expected_length: int
    expects_crc: bool
    data_length_for_crc: int


# Match order matters: the OK literal starts with the plain <LF><CR> token.
_LITERAL_TOKENS = (
    ("<ACK>", Segment(SegmentKind.ACK, 1, bytes([ACK]))),
    ("<LF><CR>OK<LF><CR>", Segment(SegmentKind.LITERAL, 6, OK_REPLY)),
    ("<LF><CR>", Segment(SegmentKind.LITERAL, 2, b"\n\r")),
    ("<CRC>", Segment(SegmentKind.CRC, 2)),
)

_DATA_TOKEN = re.compile(r"\d+")


def _next_segment(descriptor: str, pos: int) -> tuple[Segment, int]:
    for token, segment in _LITERAL_TOKENS:
        if descriptor.startswith(token, pos):
            return segment, pos + len(token)
    match = _DATA_TOKEN.match(descriptor, pos)
    if match:
        return Segment(SegmentKind.DATA, int(match.group())), match.end()
    raise InvalidFormat(
        f"Invalid answer format segment {descriptor[pos:]!r} in {descriptor!r}"
    )


def compile_answer_format(descriptor: str) -> AnswerFormat:
    """Compile a descriptor string. Raises InvalidFormat on unknown tokens."""
    segments = []
    pos = 0
    while pos < len(descriptor):
        segment, pos = _next_segment(descriptor, pos)
        segments.append(segment)

    return AnswerFormat(
        descriptor=descriptor,
        segments=tuple(segments),
        total_expected_length=sum(s.length for s in segments),
        expects_crc=any(s.kind == SegmentKind.CRC for s in segments),
        data_length_for_crc=sum(s.length for s in segments if s.kind == SegmentKind.DATA),
    )


def extract_payload(fmt: AnswerFormat, buffer: bytes) -> bytes:
    """Validate a complete reply against fmt and return its payload.

    The payload is every DATA span in order followed by every CRC span.
    Raises ProtocolMismatch on the first ACK or literal that does not match.
    """
    if len(buffer) < fmt.total_expected_length:
        raise ValueError(
            f"Reply has {len(buffer)} bytes, format {fmt.descriptor!r} "
            f"needs {fmt.total_expected_length}"
        )

    offset = 0
    data = bytearray()
    crc = bytearray()
    for segment in fmt.segments:
        chunk = buffer[offset:offset + segment.length]
        if segment.kind in (SegmentKind.ACK, SegmentKind.LITERAL):
            if chunk != segment.expected:
                raise ProtocolMismatch(
                    f"Expected {segment.kind.value} {segment.expected.hex()} at offset "
                    f"{offset}, got {bytes(chunk).hex()}",
                    buffer_hex=bytes(buffer).hex(),
                )
        elif segment.kind == SegmentKind.DATA:
            data += chunk
        else:
            crc += chunk
        offset += segment.length

    return bytes(data + crc)
