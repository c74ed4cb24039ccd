"""
ESP ROM Loader Command Exchange

Sends framed commands over a Transport and, when asked to, reads and checks
the bootloader's responses.

Protocol sequence driven by the flash session:
1. SYNC (repeated) -> any reply means the ROM is listening
2. CHANGE_BAUDRATE (optional) -> switch the port to the bulk rate
3. FLASH_BEGIN (erase size, block count, block size, offset) -> erase
4. FLASH_DATA per block, in sequence order
5. FLASH_END -> reboot into the new firmware
"""

import logging
import time
from collections import deque
from typing import Optional

from esp_usb_flasher.errors import ResponseMismatch, ProtocolError
from esp_usb_flasher.protocol import commands
from esp_usb_flasher.protocol.chunking import FlashBlock
from esp_usb_flasher.protocol.commands import Response, opcode_name
from esp_usb_flasher.protocol.serial_transport import Transport
from esp_usb_flasher.protocol.slip import FrameDecoder

logger = logging.getLogger(__name__)

READ_CHUNK = 256
DRAIN_TIMEOUT = 0.02
DRAIN_MAX_READS = 64

# FLASH_BEGIN is answered only after the region is erased
ERASE_REGION_TIMEOUT_PER_MB = 30.0

# Failure reasons reported in the second status byte
ROM_ERRORS = {
    0x05: "received message is invalid",
    0x06: "failed to act on received message",
    0x07: "invalid CRC in message",
    0x08: "flash write error",
    0x09: "flash read error",
    0x0A: "flash read length error",
    0x0B: "deflate error",
}


def timeout_per_mb(seconds_per_mb: float, size_bytes: int, minimum: float) -> float:
    """Scale a timeout with the amount of flash involved, never below minimum."""
    return max(minimum, seconds_per_mb * (size_bytes / 1e6))


class ROMLoader:
    """
    Command-level access to the ESP ROM bootloader over one Transport.

    The loader never sleeps between commands; pacing belongs to the caller.
    """

    def __init__(
        self,
        transport: Transport,
        verify_responses: bool = False,
        response_timeout: float = 3.0,
        erase_timeout_per_mb: float = ERASE_REGION_TIMEOUT_PER_MB,
    ):
        """
        Args:
            transport: Open transport owned by the current session
            verify_responses: Read and check a response after every command
            response_timeout: Seconds to wait for each response
            erase_timeout_per_mb: FLASH_BEGIN response wait per MB erased
                (at least response_timeout)
        """
        self.transport = transport
        self.verify_responses = verify_responses
        self.response_timeout = response_timeout
        self.erase_timeout_per_mb = erase_timeout_per_mb
        self._decoder = FrameDecoder()
        # Frames decoded but not yet consumed by read_response()
        self._pending = deque()

    def _send(self, frame: bytes) -> None:
        self.transport.write(frame)

    def read_any(self, timeout: float) -> bytes:
        """Single bounded read; b"" if the device stayed silent."""
        return self.transport.read(READ_CHUNK, timeout)

    def drain(self) -> int:
        """
        Discard pending input (extra SYNC replies, boot log noise).

        Returns:
            Number of bytes dropped
        """
        dropped = 0
        for _ in range(DRAIN_MAX_READS):
            junk = self.transport.read(READ_CHUNK, DRAIN_TIMEOUT)
            if not junk:
                break
            dropped += len(junk)
        self._decoder.reset()
        self._pending.clear()
        if dropped:
            logger.debug(f"Drained {dropped} bytes of pending input")
        return dropped

    def read_response(self, opcode: int, timeout: Optional[float] = None) -> Response:
        """
        Wait for the response to opcode.

        Late SYNC replies are skipped; the ROM answers one SYNC several times.
        Frames that arrive in the same read after the match are kept for the
        next call.

        Raises:
            ResponseMismatch: No response in time, or a response to another command
        """
        if timeout is None:
            timeout = self.response_timeout
        deadline = time.monotonic() + timeout
        while True:
            while self._pending:
                response = self._match(self._pending.popleft(), opcode)
                if response is not None:
                    return response
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ResponseMismatch(
                    f"No response to {opcode_name(opcode)} within {timeout:.2f}s",
                    details={"opcode": opcode},
                )
            data = self.transport.read(READ_CHUNK, remaining)
            self._pending.extend(self._decoder.feed(data))

    def _match(self, frame: bytes, opcode: int) -> Optional[Response]:
        try:
            response = commands.parse_response(frame)
        except ProtocolError as e:
            logger.debug(f"Ignoring malformed frame {frame.hex()}: {e}")
            return None
        if response.opcode == opcode:
            return response
        if response.opcode == commands.SYNC:
            logger.debug("Skipping late SYNC reply")
            return None
        raise ResponseMismatch(
            f"Expected response to {opcode_name(opcode)}, "
            f"got {opcode_name(response.opcode)}",
            details={"opcode": opcode, "received": response.opcode},
        )

    def check_response(self, response: Response, description: str) -> Response:
        """
        Fail if the bootloader reported an error.

        Raises:
            ResponseMismatch: status byte is non-zero
        """
        if not response.ok:
            reason = ROM_ERRORS.get(response.error, "unknown error")
            raise ResponseMismatch(
                f"Failed to {description}: status 0x{response.status:02X}, "
                f"error 0x{response.error:02X} ({reason})",
                details={"opcode": response.opcode, "status": response.status, "error": response.error},
            )
        return response

    def command(
        self,
        opcode: int,
        frame: bytes,
        description: str,
        timeout: Optional[float] = None,
    ) -> Optional[Response]:
        """
        Send a framed command and, in verify mode, check its response.

        Args:
            timeout: Response wait, defaults to response_timeout

        Returns:
            The checked Response, or None when responses are not verified
        """
        logger.debug(f"Sending {opcode_name(opcode)} ({len(frame)} framed bytes)")
        self._send(frame)
        if not self.verify_responses:
            return None
        response = self.read_response(opcode, timeout)
        return self.check_response(response, description)

    def send_sync(self) -> None:
        """Send one SYNC; the reply is collected with read_any()."""
        self._send(commands.sync_command())

    def change_baudrate(self, new_baud: int, old_baud: int = 0) -> Optional[Response]:
        return self.command(
            commands.CHANGE_BAUDRATE,
            commands.change_baudrate_command(new_baud, old_baud),
            f"change baud rate to {new_baud}",
        )

    def flash_begin(self, erase_size: int, block_count: int, block_size: int, offset: int) -> Optional[Response]:
        """Start a flash download; the ROM erases erase_size bytes at offset."""
        logger.info(
            f"Erasing {erase_size} bytes at 0x{offset:08X} "
            f"({block_count} blocks of {block_size})"
        )
        return self.command(
            commands.FLASH_BEGIN,
            commands.flash_begin_command(erase_size, block_count, block_size, offset),
            "enter flash download mode",
            timeout=timeout_per_mb(self.erase_timeout_per_mb, erase_size, self.response_timeout),
        )

    def flash_block(self, block: FlashBlock) -> Optional[Response]:
        return self.command(
            commands.FLASH_DATA,
            commands.flash_data_command(block),
            f"write flash block {block.sequence}",
        )

    def flash_finish(self, reboot: bool = True) -> Optional[Response]:
        """Leave flash mode, optionally rebooting into the new image."""
        logger.info("Leaving flash mode" + (" and rebooting" if reboot else ""))
        if reboot:
            # The ROM may reset before it answers
            self._send(commands.flash_end_command(reboot))
            return None
        return self.command(
            commands.FLASH_END,
            commands.flash_end_command(reboot),
            "leave flash mode",
        )
