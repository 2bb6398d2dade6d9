"""Tests for console command builders."""

import struct
from datetime import datetime

import pytest

from vp2link.protocol.commands import (
    build_bar_command,
    build_dmpaft_payload,
    build_eebrd_command,
    build_eebwr_command,
    build_eebwr_payload,
    build_eewr_command,
    build_lamps_command,
    build_lps_command,
    build_setper_command,
    build_time_payload,
    parse_time_payload,
)
from vp2link.protocol.crc import crc16, crc_validate


class TestTextCommands:
    def test_lps(self):
        assert build_lps_command(2, 1) == "LPS 2 1"

    def test_eeprom_addresses_in_hex(self):
        assert build_eebrd_command(0x01, 46) == "EEBRD 01 2E"
        assert build_eewr_command(0x11, 21) == "EEWR 11 15"
        assert build_eebwr_command(0x14, 2) == "EEBWR 14 02"

    def test_eewr_masks_to_byte(self):
        assert build_eewr_command(0x2B, 0x1C0) == "EEWR 2B C0"

    def test_lamps(self):
        assert build_lamps_command(True) == "LAMPS 1"
        assert build_lamps_command(False) == "LAMPS 0"

    def test_bar_keeps_reading(self):
        assert build_bar_command(0, 115) == "BAR=0 115"

    def test_setper(self):
        assert build_setper_command(30) == "SETPER 30"
        with pytest.raises(ValueError):
            build_setper_command(7)


class TestBinaryPayloads:
    def test_time_payload(self):
        payload = build_time_payload(datetime(2023, 10, 27, 9, 58, 30))
        assert payload[:6] == bytes([30, 58, 9, 27, 10, 123])
        assert crc_validate(payload)
        assert int.from_bytes(payload[6:], "big") == crc16(payload[:6])

    def test_parse_time_payload(self):
        assert parse_time_payload(bytes([30, 58, 9, 27, 10, 123])) == datetime(2023, 10, 27, 9, 58, 30)

    def test_dmpaft_payload(self):
        payload = build_dmpaft_payload(datetime(2025, 10, 2, 21, 0))
        assert payload[:4] == struct.pack("<HH", 13122, 2100)
        assert crc_validate(payload)

    def test_eebwr_payload(self):
        payload = build_eebwr_payload(b"\x0c\xfe")
        assert payload[:2] == b"\x0c\xfe"
        assert len(payload) == 4
        assert crc_validate(payload)
