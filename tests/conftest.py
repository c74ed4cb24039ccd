"""Shared fixtures: a scripted ROM bootloader behind the Transport protocol."""

import time
from typing import List, Optional, Tuple

import pytest

from esp_usb_flasher.core.config import FlashConfig
from esp_usb_flasher.errors import TransportUnavailable, WriteRejected
from esp_usb_flasher.protocol import commands
from esp_usb_flasher.protocol.serial_transport import SerialConfig
from esp_usb_flasher.protocol.slip import FrameDecoder


class FakeBootloader:
    """
    In-memory Transport that answers like the ESP ROM.

    Every written frame is decoded and recorded; a response is queued for
    each command unless the device is told to stay silent.
    """

    def __init__(
        self,
        silent: bool = False,
        sync_after: int = 1,
        fail_open: bool = False,
        reject_write_after: Optional[int] = None,
        error_opcode: Optional[int] = None,
        erase_delay: float = 0.0,
    ):
        self.silent = silent
        self.sync_after = sync_after
        self.fail_open = fail_open
        self.reject_write_after = reject_write_after
        self.error_opcode = error_opcode
        self.erase_delay = erase_delay

        self.configs: List[SerialConfig] = []
        self.baudrates: List[int] = []
        self.packets: List[commands.Packet] = []
        self.writes = 0
        self.closed = 0
        self.is_open = False
        self._rx = bytearray()
        self._decoder = FrameDecoder()
        self._held: Optional[Tuple[float, bytes]] = None

    # Transport protocol

    def open(self, config: SerialConfig) -> None:
        self.configs.append(config)
        if self.fail_open:
            raise TransportUnavailable("Failed to open fake port: busy")
        self.is_open = True

    def close(self) -> None:
        self.closed += 1
        self.is_open = False

    def write(self, data: bytes) -> None:
        if self.reject_write_after is not None and self.writes >= self.reject_write_after:
            raise WriteRejected("Short write: 0/{} bytes".format(len(data)))
        self.writes += 1
        for frame in self._decoder.feed(data):
            packet = commands.parse_packet(frame)
            self.packets.append(packet)
            self._answer(packet)

    def read(self, max_bytes: int, timeout: float) -> bytes:
        if self._held is not None:
            ready_at, response = self._held
            if time.monotonic() >= ready_at:
                self._held = None
                self.queue(response)
            elif not self._rx:
                time.sleep(min(timeout, 0.01))
                return b""
        data = bytes(self._rx[:max_bytes])
        del self._rx[:max_bytes]
        return data

    def set_baudrate(self, baudrate: int) -> None:
        self.baudrates.append(baudrate)

    # Scripting helpers

    def queue(self, data: bytes) -> None:
        self._rx.extend(data)

    def _answer(self, packet: commands.Packet) -> None:
        if self.silent:
            return
        if packet.opcode == commands.SYNC:
            if self.opcodes().count(commands.SYNC) < self.sync_after:
                return
        if packet.opcode == self.error_opcode:
            response = commands.build_response(packet.opcode, b"\x01\x07")
        else:
            response = commands.build_response(packet.opcode)
        if packet.opcode == commands.FLASH_BEGIN and self.erase_delay:
            # Answered once the erase has finished
            self._held = (time.monotonic() + self.erase_delay, response)
        else:
            self.queue(response)

    def opcodes(self) -> List[int]:
        return [p.opcode for p in self.packets]

    def sent(self, opcode: int) -> List[commands.Packet]:
        return [p for p in self.packets if p.opcode == opcode]

    def data_blocks(self) -> List[Tuple[int, bytes]]:
        """(sequence, data) of every FLASH_DATA packet."""
        blocks = []
        for packet in self.sent(commands.FLASH_DATA):
            seq = int.from_bytes(packet.payload[4:8], "little")
            blocks.append((seq, packet.payload[16:]))
        return blocks


@pytest.fixture
def device():
    return FakeBootloader()


@pytest.fixture
def fast_config():
    """Session config with every delay removed."""
    return FlashConfig(
        sync_retry_delay=0,
        sync_read_timeout=0,
        response_timeout=0.05,
        baud_settle_delay=0,
        begin_settle_delay=0,
        block_delay=0,
        end_settle_delay=0,
    )


@pytest.fixture
def esp32_image():
    """2500-byte image with the ESP32 magic byte."""
    return bytes([0xE9]) + bytes(range(256)) * 9 + bytes(195)
