"""
Core workflow actions for ESP USB Flasher.

This module exposes the functions the CLI (or any other front end) calls.
Hardware access always goes through a transport built by transport_factory
so callers and tests can swap the serial port for something else.
"""

import hashlib
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from esp_usb_flasher.core.config import PROBE_READ_TIMEOUT, FlashConfig
from esp_usb_flasher.core.results import FlashResult
from esp_usb_flasher.core.session import FlashEvent, FlashSession
from esp_usb_flasher.errors import EmptyImage, FlasherError
from esp_usb_flasher.models.registry import CHIP_DESCRIPTIONS, FlashAddress, detect_chip
from esp_usb_flasher.protocol import commands
from esp_usb_flasher.protocol.chunking import plan_blocks
from esp_usb_flasher.protocol.rom_loader import ROMLoader
from esp_usb_flasher.protocol.serial_transport import SerialConfig, SerialTransport, Transport

logger = logging.getLogger(__name__)

TransportFactory = Callable[[str], Transport]


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records: List[str] = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "esp_usb_flasher"):
    """Capture logs for core operations into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


def load_firmware(path: Union[str, Path]) -> bytes:
    """
    Read a firmware image from disk.

    Raises:
        FileNotFoundError: If the file doesn't exist
        EmptyImage: If the file is empty
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Firmware file not found: {path}")
    data = path.read_bytes()
    if not data:
        raise EmptyImage(f"Firmware file is empty: {path}")
    return data


def inspect_firmware(image: bytes, block_size: Optional[int] = None) -> Dict[str, Any]:
    """
    Describe an image without touching hardware.

    Returns:
        Dict with size, chip, magic byte, block count, padding and sha256
    """
    plan = plan_blocks(image, block_size or FlashConfig().block_size)
    chip = detect_chip(image)
    return {
        "size_bytes": len(image),
        "chip": chip.value,
        "chip_known": chip.is_known,
        "chip_description": CHIP_DESCRIPTIONS[chip],
        "magic": f"0x{image[0]:02X}" if image else "-",
        "block_size": plan.block_size,
        "blocks": len(plan),
        "padding": plan.padding,
        "sha256": hashlib.sha256(image).hexdigest(),
    }


def start_flash(
    port: str,
    firmware: bytes,
    address: FlashAddress,
    config: Optional[FlashConfig] = None,
    transport_factory: TransportFactory = SerialTransport,
    session_cb: Optional[Callable[[FlashSession], None]] = None,
) -> Iterator[Union[FlashEvent, FlashResult]]:
    """
    Flash firmware and stream status.

    Args:
        port: Transport identifier (serial port path)
        firmware: Image bytes, already loaded
        address: Resolved flash target
        config: Session tunables
        transport_factory: Builds an unopened Transport for port
        session_cb: Receives the session before it starts (to keep a handle
            for cancel())

    Yields:
        FlashEvent items, then exactly one FlashResult as the final record
    """
    session = FlashSession(
        transport_factory(port),
        firmware,
        address,
        config=config,
        port=port,
    )
    if session_cb:
        session_cb(session)
    yield from session.run()
    yield session.result


def flash_firmware(
    port: str,
    firmware: bytes,
    address: FlashAddress,
    config: Optional[FlashConfig] = None,
    transport_factory: TransportFactory = SerialTransport,
    progress_cb: Optional[Callable[[FlashEvent], None]] = None,
) -> FlashResult:
    """
    Flash firmware and return the outcome, with logs captured.

    Args:
        port: Serial port path
        firmware: Image bytes
        address: Resolved flash target
        config: Session tunables
        transport_factory: Builds an unopened Transport for port
        progress_cb: Optional callback for every FlashEvent

    Returns:
        FlashResult with:
            - ok: True if the image was written and finalized
            - size_bytes, offset, chip, blocks
            - hashes["sha256"]: hash of the image
            - error_kind / errors on failure
    """
    with _capture_logs() as logs:
        result: Optional[FlashResult] = None
        for item in start_flash(port, firmware, address, config, transport_factory):
            if isinstance(item, FlashResult):
                result = item
            elif progress_cb:
                progress_cb(item)
        result.logs = list(logs)
        return result


def probe_device(
    port: str,
    config: Optional[FlashConfig] = None,
    transport_factory: TransportFactory = SerialTransport,
    timeout: float = PROBE_READ_TIMEOUT,
) -> FlashResult:
    """
    Check whether a ROM bootloader answers on port.

    Opens the port at the sync rate, sends one SYNC and waits for any reply.
    Silence is reported in the result, not raised.

    Returns:
        FlashResult with metadata["responded"] and metadata["reply_hex"]
    """
    config = config or FlashConfig()
    with _capture_logs() as logs:
        transport = transport_factory(port)
        try:
            transport.open(SerialConfig(baudrate=config.sync_baudrate))
        except FlasherError as e:
            result = FlashResult.from_error("probe", e, port=port)
            result.logs = list(logs)
            return result

        try:
            loader = ROMLoader(transport)
            loader.send_sync()
            reply = loader.read_any(timeout)
            result = FlashResult.success("probe", port=port)
            result.metadata["responded"] = bool(reply)
            result.metadata["reply_hex"] = reply[:64].hex()
            if reply:
                try:
                    response = commands.parse_response(reply)
                    result.metadata["opcode"] = response.opcode
                except FlasherError:
                    logger.debug("Probe reply is not a single response frame")
                logger.info(f"Bootloader answered on {port}")
            else:
                result.add_warning(f"No sync response on {port} (no response received)")
        except FlasherError as e:
            logger.exception("probe_device failed")
            result = FlashResult.from_error("probe", e, port=port)
        finally:
            transport.close()

        result.logs = list(logs)
        return result
