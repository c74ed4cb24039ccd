"""Bootloader protocol layer - framing, commands, chunking and transport."""

from .slip import FrameDecoder, encode as slip_encode, decode as slip_decode
from .chunking import FlashBlock, BlockPlan, plan_blocks, BLOCK_SIZE, ERASE_VALUE
from .commands import (
    Direction,
    Packet,
    Response,
    checksum,
    build_command,
    parse_response,
    sync_command,
    flash_begin_command,
    flash_data_command,
    flash_end_command,
    change_baudrate_command,
)
from .serial_transport import (
    Transport,
    SerialTransport,
    SerialConfig,
    PortInfo,
    list_serial_ports,
)
from .rom_loader import ROMLoader

__all__ = [
    # Framing
    "FrameDecoder",
    "slip_encode",
    "slip_decode",
    # Chunking
    "FlashBlock",
    "BlockPlan",
    "plan_blocks",
    "BLOCK_SIZE",
    "ERASE_VALUE",
    # Commands
    "Direction",
    "Packet",
    "Response",
    "checksum",
    "build_command",
    "parse_response",
    "sync_command",
    "flash_begin_command",
    "flash_data_command",
    "flash_end_command",
    "change_baudrate_command",
    # Transport
    "Transport",
    "SerialTransport",
    "SerialConfig",
    "PortInfo",
    "list_serial_ports",
    # Loader
    "ROMLoader",
]
