"""
Core module for ESP USB Flasher.

This module provides the single source of truth for:
- Session configuration (config.py)
- Offset, target and baud rate parsing (parsing.py)
- Result objects (results.py)
- Standardized warnings/messages (messages.py)
- The flash session state machine (session.py)
- Flash/probe/inspect workflows (actions.py)

The CLI should call into this module rather than implementing its own logic.
"""

from .config import FlashConfig, SYNC_BAUDRATE, HIGH_SPEED_BAUDRATE
from .parsing import parse_offset, parse_target, parse_baudrate
from .results import FlashResult
from .messages import (
    MessageLevel,
    WarningCode,
    WarningItem,
    warnings_from_strings,
    result_to_warnings,
)
from .session import FlashPhase, FlashEvent, FlashSession
from .actions import (
    load_firmware,
    inspect_firmware,
    start_flash,
    flash_firmware,
    probe_device,
)

__all__ = [
    # Config
    "FlashConfig",
    "SYNC_BAUDRATE",
    "HIGH_SPEED_BAUDRATE",
    # Parsing
    "parse_offset",
    "parse_target",
    "parse_baudrate",
    # Results
    "FlashResult",
    # Messages
    "MessageLevel",
    "WarningCode",
    "WarningItem",
    "warnings_from_strings",
    "result_to_warnings",
    # Session
    "FlashPhase",
    "FlashEvent",
    "FlashSession",
    # Actions
    "load_firmware",
    "inspect_firmware",
    "start_flash",
    "flash_firmware",
    "probe_device",
]
