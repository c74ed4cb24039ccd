"""
ROM Bootloader Command Codec

Builds request frames and parses response frames for the ESP ROM serial
bootloader. Every packet is SLIP-framed (see slip.py).

Request packet:
    [ 0x00 | opcode | len (u16 LE) | checksum (u32 LE) | payload ]

Response packet:
    [ 0x01 | opcode | len (u16 LE) | value (u32 LE) | payload ]

For flash commands the response payload is only status bytes:
status (0 = success), error code, then padding (2 or 4 bytes total
depending on chip).
"""

import struct
from dataclasses import dataclass
from enum import IntEnum

from esp_usb_flasher.errors import ProtocolError
from esp_usb_flasher.protocol import slip
from esp_usb_flasher.protocol.chunking import FlashBlock

# Opcodes
FLASH_BEGIN = 0x02
FLASH_DATA = 0x03
FLASH_END = 0x04
SYNC = 0x08
CHANGE_BAUDRATE = 0x0F

CHECKSUM_SEED = 0xEF
HEADER = struct.Struct("<BBHI")
HEADER_SIZE = HEADER.size  # 8
MAX_PAYLOAD = 0xFFFF

SYNC_MAGIC = b"\x07\x07\x12\x20"
SYNC_FILLER = 0x55
SYNC_PAYLOAD = SYNC_MAGIC + bytes([SYNC_FILLER]) * 32

OPCODE_NAMES = {
    FLASH_BEGIN: "FLASH_BEGIN",
    FLASH_DATA: "FLASH_DATA",
    FLASH_END: "FLASH_END",
    SYNC: "SYNC",
    CHANGE_BAUDRATE: "CHANGE_BAUDRATE",
}


class Direction(IntEnum):
    REQUEST = 0x00
    RESPONSE = 0x01


@dataclass(frozen=True)
class Packet:
    """Unframed command or response packet."""
    direction: Direction
    opcode: int
    payload: bytes = b""
    checksum: int = 0

    def to_bytes(self) -> bytes:
        return HEADER.pack(self.direction, self.opcode, len(self.payload), self.checksum) + self.payload


@dataclass(frozen=True)
class Response:
    """
    Parsed bootloader response.

    Attributes:
        opcode: Echo of the request opcode
        value: Header value field (register value for read commands)
        payload: Response data, status bytes included
        status: First payload byte, 0 on success
        error: Second payload byte, failure reason when status != 0
    """
    opcode: int
    value: int
    payload: bytes
    status: int
    error: int

    @property
    def ok(self) -> bool:
        return self.status == 0


def opcode_name(opcode: int) -> str:
    return OPCODE_NAMES.get(opcode, f"0x{opcode:02X}")


def checksum(data: bytes, seed: int = CHECKSUM_SEED) -> int:
    """
    Calculate the ROM bootloader data checksum.

    Sequential XOR of every byte, starting from the 0xEF seed. Only the
    FLASH_DATA command carries it; all other commands send zero.

    Args:
        data: Block payload bytes
        seed: Initial value (default 0xEF)

    Returns:
        8-bit checksum
    """
    state = seed
    for byte in data:
        state ^= byte
    return state & 0xFF


def build_command(opcode: int, payload: bytes = b"", chk: int = 0) -> bytes:
    """
    Build a SLIP-framed request.

    Args:
        opcode: Command byte
        payload: Command payload
        chk: Checksum field (only meaningful for FLASH_DATA)

    Returns:
        Framed bytes ready for the transport
    """
    if not (0 <= opcode <= 0xFF):
        raise ProtocolError(f"opcode must fit in uint8, got {opcode}")
    if len(payload) > MAX_PAYLOAD:
        raise ProtocolError(f"payload too large for uint16 length: {len(payload)} bytes")
    packet = Packet(Direction.REQUEST, opcode, bytes(payload), chk & 0xFFFFFFFF)
    return slip.encode(packet.to_bytes())


def parse_packet(raw: bytes) -> Packet:
    """Parse an unframed packet of either direction."""
    if len(raw) < HEADER_SIZE:
        raise ProtocolError(
            f"Packet too short ({len(raw)} bytes): {raw.hex() if raw else 'empty'}"
        )
    direction, opcode, length, chk = HEADER.unpack(raw[:HEADER_SIZE])
    if direction not in (Direction.REQUEST, Direction.RESPONSE):
        raise ProtocolError(f"Invalid direction byte 0x{direction:02X}")
    payload = raw[HEADER_SIZE:]
    if len(payload) < length:
        raise ProtocolError(
            f"Packet length mismatch: header says {length}, got {len(payload)} bytes"
        )
    return Packet(Direction(direction), opcode, payload[:length], chk)


def parse_response(framed: bytes) -> Response:
    """
    Parse a response frame.

    Accepts a SLIP-framed response (delimiters optional, escapes required).

    Returns:
        Response with opcode, value, payload and status bytes

    Raises:
        ProtocolError: If the frame is not a well-formed response
    """
    packet = parse_packet(slip.decode(framed))
    if packet.direction != Direction.RESPONSE:
        raise ProtocolError(f"Expected response, got request for {opcode_name(packet.opcode)}")
    status = packet.payload[0] if len(packet.payload) >= 1 else 0
    error = packet.payload[1] if len(packet.payload) >= 2 else 0
    return Response(
        opcode=packet.opcode,
        value=packet.checksum,
        payload=packet.payload,
        status=status,
        error=error,
    )


def build_response(opcode: int, payload: bytes = b"\x00\x00", value: int = 0) -> bytes:
    """Build a framed response, as the bootloader would send it."""
    packet = Packet(Direction.RESPONSE, opcode, bytes(payload), value)
    return slip.encode(packet.to_bytes())


def sync_command() -> bytes:
    """SYNC: 4 magic bytes followed by 32 x 0x55."""
    return build_command(SYNC, SYNC_PAYLOAD)


def flash_begin_command(erase_size: int, block_count: int, block_size: int, offset: int) -> bytes:
    """FLASH_BEGIN: erase size, block count, block size, flash offset (u32 LE each)."""
    return build_command(
        FLASH_BEGIN,
        struct.pack("<IIII", erase_size, block_count, block_size, offset),
    )


def flash_data_command(block: FlashBlock) -> bytes:
    """FLASH_DATA: data length, sequence, 8 reserved bytes, data; checksummed."""
    payload = struct.pack("<IIII", len(block.data), block.sequence, 0, 0) + block.data
    return build_command(FLASH_DATA, payload, checksum(block.data))


def flash_end_command(reboot: bool = True) -> bytes:
    """FLASH_END: first byte 0 reboots into the app, 1 stays in the bootloader."""
    return build_command(FLASH_END, struct.pack("<I", int(not reboot)))


def change_baudrate_command(new_baud: int, old_baud: int = 0) -> bytes:
    """CHANGE_BAUDRATE: new rate, current rate (0 when talking to the ROM)."""
    return build_command(CHANGE_BAUDRATE, struct.pack("<II", new_baud, old_baud))
