"""Tests for ROM bootloader command framing, checksum and response parsing."""

import struct

import pytest

from esp_usb_flasher.errors import ProtocolError
from esp_usb_flasher.protocol import commands, slip
from esp_usb_flasher.protocol.chunking import FlashBlock
from esp_usb_flasher.protocol.commands import (
    CHANGE_BAUDRATE,
    FLASH_BEGIN,
    FLASH_DATA,
    FLASH_END,
    SYNC,
    Direction,
    build_command,
    build_response,
    change_baudrate_command,
    checksum,
    flash_begin_command,
    flash_data_command,
    flash_end_command,
    parse_packet,
    parse_response,
    sync_command,
)


def unframe(frame: bytes) -> commands.Packet:
    return parse_packet(slip.decode(frame))


class TestChecksum:
    """XOR fold seeded with 0xEF."""

    def test_empty_data_returns_seed(self):
        assert checksum(b"") == 0xEF

    def test_single_byte(self):
        assert checksum(b"\xef") == 0x00
        assert checksum(b"\x00") == 0xEF

    def test_order_does_not_matter(self):
        data = bytes([0x12, 0x34, 0x56, 0x78, 0x9A])
        assert checksum(data) == checksum(bytes(reversed(data)))
        assert checksum(data) == checksum(data[2:] + data[:2])

    def test_pairs_cancel(self):
        assert checksum(b"\xaa\xaa\x55\x55") == 0xEF

    def test_custom_seed(self):
        assert checksum(b"\x01", seed=0) == 0x01


class TestBuildCommand:
    """Request header layout and validation."""

    def test_header_layout(self):
        packet = unframe(build_command(FLASH_BEGIN, b"\x01\x02\x03", 0))
        assert packet.direction == Direction.REQUEST
        assert packet.opcode == FLASH_BEGIN
        assert packet.payload == b"\x01\x02\x03"
        assert packet.checksum == 0

    def test_raw_bytes_little_endian(self):
        raw = slip.decode(build_command(0x03, b"\xaa" * 0x102, 0x12))
        assert raw[:8] == b"\x00\x03\x02\x01\x12\x00\x00\x00"

    def test_payload_is_escaped_on_the_wire(self):
        framed = build_command(FLASH_DATA, b"\xc0\xdb")
        assert framed.endswith(b"\xdb\xdc\xdb\xdd\xc0")

    def test_oversized_payload_rejected(self):
        with pytest.raises(ProtocolError):
            build_command(FLASH_DATA, bytes(0x10000))

    def test_max_payload_accepted(self):
        packet = unframe(build_command(FLASH_DATA, bytes(0xFFFF)))
        assert len(packet.payload) == 0xFFFF

    def test_opcode_must_fit_a_byte(self):
        with pytest.raises(ProtocolError):
            build_command(0x100)


class TestCommandBuilders:
    """Payloads of each bootloader command."""

    def test_sync_payload(self):
        packet = unframe(sync_command())
        assert packet.opcode == SYNC
        assert packet.payload == b"\x07\x07\x12\x20" + b"\x55" * 32
        assert packet.checksum == 0

    def test_flash_begin_fields(self):
        packet = unframe(flash_begin_command(3072, 3, 1024, 0x10000))
        assert packet.opcode == FLASH_BEGIN
        assert struct.unpack("<IIII", packet.payload) == (3072, 3, 1024, 0x10000)

    def test_flash_data_layout_and_checksum(self):
        data = bytes(range(16)) + b"\xff" * 1008
        packet = unframe(flash_data_command(FlashBlock(sequence=7, data=data)))
        assert packet.opcode == FLASH_DATA
        assert struct.unpack("<IIII", packet.payload[:16]) == (1024, 7, 0, 0)
        assert packet.payload[16:] == data
        assert packet.checksum == checksum(data)

    def test_flash_end_reboot_flag(self):
        """First payload byte 0 reboots, 1 stays in the bootloader."""
        assert unframe(flash_end_command(reboot=True)).payload == b"\x00\x00\x00\x00"
        assert unframe(flash_end_command(reboot=False)).payload == b"\x01\x00\x00\x00"

    def test_change_baudrate(self):
        packet = unframe(change_baudrate_command(460800))
        assert packet.opcode == CHANGE_BAUDRATE
        assert struct.unpack("<II", packet.payload) == (460800, 0)


class TestParseResponse:
    """Response decoding and rejection of malformed frames."""

    def test_success_response(self):
        response = parse_response(build_response(SYNC, b"\x00\x00", value=0x12345678))
        assert response.opcode == SYNC
        assert response.value == 0x12345678
        assert response.status == 0
        assert response.error == 0
        assert response.ok

    def test_error_response(self):
        response = parse_response(build_response(FLASH_DATA, b"\x01\x07\x00\x00"))
        assert not response.ok
        assert response.status == 0x01
        assert response.error == 0x07
        assert response.payload == b"\x01\x07\x00\x00"

    def test_escaped_value_field(self):
        """A value containing 0xC0 survives framing."""
        response = parse_response(build_response(FLASH_END, value=0xC0DBC0DB))
        assert response.value == 0xC0DBC0DB

    def test_trailing_bytes_beyond_length_ignored(self):
        raw = struct.pack("<BBHI", 1, FLASH_BEGIN, 2, 0) + b"\x00\x00\xaa\xbb"
        response = parse_response(slip.encode(raw))
        assert response.payload == b"\x00\x00"

    def test_request_is_not_a_response(self):
        with pytest.raises(ProtocolError, match="Expected response"):
            parse_response(sync_command())

    def test_short_frame_rejected(self):
        with pytest.raises(ProtocolError, match="too short"):
            parse_response(slip.encode(b"\x01\x08\x00"))

    def test_empty_frame_rejected(self):
        with pytest.raises(ProtocolError):
            parse_response(b"\xc0\xc0")

    def test_truncated_payload_rejected(self):
        raw = struct.pack("<BBHI", 1, FLASH_DATA, 4, 0) + b"\x00"
        with pytest.raises(ProtocolError, match="length mismatch"):
            parse_response(slip.encode(raw))

    def test_invalid_direction_rejected(self):
        raw = struct.pack("<BBHI", 7, SYNC, 0, 0)
        with pytest.raises(ProtocolError, match="direction"):
            parse_response(slip.encode(raw))


def test_opcode_names():
    assert commands.opcode_name(FLASH_BEGIN) == "FLASH_BEGIN"
    assert commands.opcode_name(0x42) == "0x42"
