"""CRC-16/CCITT for the Vantage Pro2 serial protocol.

Polynomial 0x1021, initial value 0, MSB-first, no reflection. The console
sends the CRC high byte first, so running the accumulator over data + CRC
leaves 0 when nothing was corrupted.
"""

POLYNOMIAL = 0x1021


def _generate_crc_table() -> list[int]:
    """Generate the 256-entry lookup table from the CCITT polynomial."""
    table = []
    for i in range(256):
        crc = i << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = (crc << 1) ^ POLYNOMIAL
            else:
                crc = crc << 1
            crc &= 0xFFFF
        table.append(crc)
    return table


CRC_TABLE = _generate_crc_table()


def crc16(data: bytes) -> int:
    """CRC over a sequence of bytes."""
    crc = 0
    for byte in data:
        crc = (CRC_TABLE[((crc >> 8) ^ byte) & 0xFF] ^ (crc << 8)) & 0xFFFF
    return crc


def crc_bytes(data: bytes) -> bytes:
    """CRC of data as two bytes, high byte first."""
    crc = crc16(data)
    return bytes([crc >> 8, crc & 0xFF])


def append_crc(data: bytes) -> bytes:
    """Return data followed by its big-endian CRC, ready to send."""
    return bytes(data) + crc_bytes(data)


def crc_validate(data_with_crc: bytes) -> bool:
    """True if the trailing 2-byte CRC matches the preceding data."""
    return crc16(data_with_crc) == 0
