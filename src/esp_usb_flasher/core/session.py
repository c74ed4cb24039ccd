"""
Flash session state machine.

Drives one firmware write end to end over an exclusively owned Transport:

    IDLE -> CONNECTING -> SYNCING -> ERASING -> WRITING -> FINALIZING -> DONE
                                                            (any) -> FAILED

Progress leaves the session only as FlashEvents yielded by run(); the
terminal FlashResult is available as session.result once run() finishes.
A session is single-use: the transport is closed when it ends, whatever
the outcome, and a second run() raises RuntimeError.
"""

import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional

from esp_usb_flasher.core.config import FlashConfig
from esp_usb_flasher.core.messages import MessageLevel
from esp_usb_flasher.core.results import FlashResult
from esp_usb_flasher.errors import (
    DeadlineExceeded,
    EmptyImage,
    ErrorKind,
    FlashCancelled,
    FlasherError,
    ProtocolViolation,
    SyncTimeout,
    TransportUnavailable,
    UnrecognizedImage,
)
from esp_usb_flasher.models.registry import CHIP_DESCRIPTIONS, ChipFamily, FlashAddress, detect_chip
from esp_usb_flasher.protocol.chunking import BlockPlan, plan_blocks
from esp_usb_flasher.protocol.rom_loader import ROMLoader
from esp_usb_flasher.protocol.serial_transport import SerialConfig, Transport

logger = logging.getLogger(__name__)

# Progress bands
PROGRESS_CONNECTED = 0.05
PROGRESS_SYNCED = 0.10
PROGRESS_WRITE_START = 0.10
PROGRESS_WRITE_END = 0.90


class FlashPhase(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    SYNCING = "syncing"
    ERASING = "erasing"
    WRITING = "writing"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (FlashPhase.DONE, FlashPhase.FAILED)


@dataclass(frozen=True)
class FlashEvent:
    """
    One status update from a running session.

    Attributes:
        phase: Phase the session was in when the event was emitted
        progress: Overall progress, 0.0 to 1.0 (reset to 0.0 on failure)
        message: Human-readable status line
        level: INFO for progress, WARN for non-fatal issues, ERROR on failure
        error_kind: Set on the FAILED event
    """
    phase: FlashPhase
    progress: float
    message: str
    level: MessageLevel = MessageLevel.INFO
    error_kind: Optional[ErrorKind] = None


class FlashSession:
    """
    Single-use firmware write over one Transport.

    Example:
        session = FlashSession(SerialTransport("/dev/ttyUSB0"), image, get_address("Application"))
        for event in session.run():
            print(f"{event.progress:.0%} {event.message}")
        print(session.result.to_summary())
    """

    def __init__(
        self,
        transport: Transport,
        image: bytes,
        address: FlashAddress,
        config: Optional[FlashConfig] = None,
        port: str = "",
    ):
        """
        Args:
            transport: Unopened transport; the session opens and closes it
            image: Firmware bytes
            address: Resolved flash target
            config: Session tunables (defaults to FlashConfig())
            port: Transport identifier, for reporting only
        """
        self.transport = transport
        self.image = bytes(image)
        self.address = address
        self.config = config or FlashConfig()
        self.port = port

        self.phase = FlashPhase.IDLE
        self.progress = 0.0
        self.chip = ChipFamily.UNKNOWN
        self.warnings: List[str] = []
        self.blocks_written = 0
        self.result: Optional[FlashResult] = None

        self._plan: Optional[BlockPlan] = None
        self._loader: Optional[ROMLoader] = None
        self._cancel = threading.Event()
        self._started = False
        self._transport_open = False
        self._started_at = 0.0

    def cancel(self) -> None:
        """
        Request cancellation; safe to call from another thread.

        Takes effect at the next phase or block boundary and interrupts any
        pending settle delay.
        """
        logger.info("Cancellation requested")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def _event(self, message: str, level: MessageLevel = MessageLevel.INFO) -> FlashEvent:
        return FlashEvent(self.phase, self.progress, message, level)

    def _enter(self, phase: FlashPhase, progress: Optional[float] = None) -> None:
        logger.debug(f"Phase {self.phase.value} -> {phase.value}")
        self.phase = phase
        if progress is not None:
            self.progress = progress

    def _checkpoint(self) -> None:
        if self._cancel.is_set():
            raise FlashCancelled(f"Flash cancelled during {self.phase.value}")
        deadline = self.config.deadline
        if deadline is not None and time.monotonic() - self._started_at > deadline:
            raise DeadlineExceeded(
                f"Flash did not finish within {deadline:.1f}s (stopped during {self.phase.value})"
            )

    def _wait(self, delay: float) -> None:
        """Cooperative delay that returns early on cancel."""
        if delay > 0 and self._cancel.wait(delay):
            raise FlashCancelled(f"Flash cancelled during {self.phase.value}")
        self._checkpoint()

    def _close_transport(self) -> None:
        if not self._transport_open:
            return
        self._transport_open = False
        try:
            self.transport.close()
        except Exception as e:
            logger.warning(f"Error closing transport: {e}")

    def _warn(self, message: str) -> FlashEvent:
        logger.warning(message)
        self.warnings.append(message)
        return self._event(message, MessageLevel.WARN)

    def run(self) -> Iterator[FlashEvent]:
        """
        Execute the session, yielding status events.

        The last event is DONE (progress 1.0) or FAILED (progress 0.0).
        Errors never escape; they end the session in FAILED and are kept in
        session.result. A KeyboardInterrupt is treated as cancel().

        Raises:
            RuntimeError: If the session has already been run
        """
        if self._started:
            raise RuntimeError("FlashSession is single-use; create a new session")
        self._started = True
        self._started_at = time.monotonic()

        try:
            yield from self._validate()
            yield from self._connect()
            yield from self._sync()
            yield from self._switch_baudrate()
            yield from self._erase()
            yield from self._write()
            yield from self._finalize()
        except FlasherError as e:
            yield self._fail(e)
        except KeyboardInterrupt:
            self._cancel.set()
            yield self._fail(FlashCancelled(f"Flash interrupted during {self.phase.value}"))
        except Exception as e:
            logger.exception("Flash session failed unexpectedly")
            yield self._fail(e)
        finally:
            self._close_transport()

    def execute(self) -> FlashResult:
        """Run to completion, discarding events, and return the result."""
        for _ in self.run():
            pass
        return self.result

    def _validate(self) -> Iterator[FlashEvent]:
        if not self.image:
            raise EmptyImage("Firmware image is empty")
        self.chip = detect_chip(self.image)
        self._plan = plan_blocks(self.image, self.config.block_size)

        if not self.chip.is_known:
            message = f"Unknown chip type. Magic byte: 0x{self.image[0]:02X}"
            if self.config.strict_chip:
                raise UnrecognizedImage(message, details={"magic": self.image[0]})
            yield self._warn(f"{message}; flashing anyway")
        yield self._event(
            f"Selected {self.chip.value} firmware ({len(self.image)} bytes, "
            f"{len(self._plan)} blocks) for {self.address}"
        )

    def _connect(self) -> Iterator[FlashEvent]:
        self._checkpoint()
        self._enter(FlashPhase.CONNECTING)
        baud = self.config.sync_baudrate
        yield self._event(f"Opening {self.port or 'transport'} at {baud} baud")
        try:
            self.transport.open(SerialConfig(baudrate=baud))
        except FlasherError:
            raise
        except Exception as e:
            raise TransportUnavailable(f"Failed to open {self.port or 'transport'}: {e}") from e
        self._transport_open = True
        self._loader = ROMLoader(
            self.transport,
            verify_responses=self.config.verify_responses,
            response_timeout=self.config.response_timeout,
            erase_timeout_per_mb=self.config.erase_timeout_per_mb,
        )
        self.progress = PROGRESS_CONNECTED
        yield self._event(f"Connected to {self.chip.value}. Preparing to flash...")

    def _sync(self) -> Iterator[FlashEvent]:
        self._checkpoint()
        self._enter(FlashPhase.SYNCING)
        attempts = self.config.sync_attempts
        yield self._event("Synchronizing with bootloader...")

        synced_on = 0
        for attempt in range(1, attempts + 1):
            self._checkpoint()
            self._loader.send_sync()
            self._wait(self.config.sync_retry_delay)
            reply = self._loader.read_any(self.config.sync_read_timeout)
            if reply:
                synced_on = attempt
                break
            logger.debug(f"Sync attempt {attempt}/{attempts}: no response")

        self.progress = PROGRESS_SYNCED
        if synced_on:
            self._loader.drain()
            yield self._event(f"Bootloader synchronized after {synced_on} attempt(s)")
            return

        message = f"No sync response after {attempts} attempts"
        if self.config.strict_sync:
            raise SyncTimeout(message, details={"attempts": attempts})
        yield self._warn(f"{message}; continuing as if the bootloader is listening")

    def _switch_baudrate(self) -> Iterator[FlashEvent]:
        if not self.config.switches_baudrate:
            return
        self._checkpoint()
        baud = self.config.write_baudrate
        yield self._event(f"Switching to {baud} baud")
        self._loader.change_baudrate(baud, 0)
        self._wait(self.config.baud_settle_delay)
        self.transport.set_baudrate(baud)
        self._loader.drain()

    def _erase(self) -> Iterator[FlashEvent]:
        self._checkpoint()
        self._enter(FlashPhase.ERASING)
        plan = self._plan
        erase_size = len(plan) * plan.block_size
        yield self._event(f"Erasing {erase_size} bytes at 0x{self.address.offset:08X}...")
        self._loader.flash_begin(erase_size, len(plan), plan.block_size, self.address.offset)
        self._wait(self.config.begin_settle_delay)

    def _write(self) -> Iterator[FlashEvent]:
        self._checkpoint()
        self._enter(FlashPhase.WRITING, PROGRESS_WRITE_START)
        plan = self._plan
        total = len(plan)
        band = PROGRESS_WRITE_END - PROGRESS_WRITE_START
        yield self._event(f"Writing firmware to {self.chip.value}...")

        for block in plan:
            self._checkpoint()
            if block.sequence != self.blocks_written:
                raise ProtocolViolation(
                    f"Block sequence {block.sequence} out of order (expected {self.blocks_written})",
                    details={"sequence": block.sequence, "expected": self.blocks_written},
                )
            self._loader.flash_block(block)
            self.blocks_written += 1
            self.progress = PROGRESS_WRITE_START + self.blocks_written / total * band
            logger.debug(f"Block {block.sequence} written ({self.blocks_written}/{total})")
            yield self._event(f"Wrote block {self.blocks_written}/{total}")
            if self.blocks_written < total:
                self._wait(self.config.block_delay)

        if plan.padding:
            logger.debug(f"Final block padded with {plan.padding} bytes of 0xFF")

    def _finalize(self) -> Iterator[FlashEvent]:
        self._checkpoint()
        self._enter(FlashPhase.FINALIZING)
        yield self._event("Finalizing...")
        try:
            self._loader.flash_finish(reboot=self.config.reboot)
            self._wait(self.config.end_settle_delay)
        finally:
            self._close_transport()

        self._enter(FlashPhase.DONE, 1.0)
        self.result = self._build_success()
        logger.info(
            f"Flashed {len(self.image)} bytes to 0x{self.address.offset:08X} ({self.chip.value})"
        )
        yield self._event(f"Flash successful! {self.chip.value} is ready.")

    def _build_success(self) -> FlashResult:
        result = FlashResult.success(
            operation="flash",
            address=self.address.name,
            offset=self.address.offset,
            size_bytes=len(self.image),
            port=self.port,
            chip=self.chip.value,
            blocks=self.blocks_written,
            warnings=list(self.warnings),
        )
        result.hashes["sha256"] = hashlib.sha256(self.image).hexdigest()
        result.metadata["chip_description"] = CHIP_DESCRIPTIONS[self.chip]
        result.metadata["padding"] = self._plan.padding
        return result

    def _fail(self, exc: BaseException) -> FlashEvent:
        self._close_transport()
        failed_in = self.phase
        self._enter(FlashPhase.FAILED, 0.0)
        self.result = FlashResult.from_error(
            "flash",
            exc,
            port=self.port,
            address=self.address.name,
            offset=self.address.offset,
            size_bytes=len(self.image),
            chip=self.chip.value,
            blocks=self.blocks_written,
            warnings=list(self.warnings),
        )
        self.result.metadata["failed_phase"] = failed_in.value
        logger.error(f"Flash failed during {failed_in.value}: {exc}")
        return FlashEvent(
            FlashPhase.FAILED,
            0.0,
            f"Flash failed: {exc}",
            MessageLevel.ERROR,
            self.result.error_kind,
        )
