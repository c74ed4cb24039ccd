"""
Standardized warning and message system for ESP USB Flasher.

Provides structured warning items with stable codes and remediation hints
so the CLI (and any other front end) can display them consistently.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List

from esp_usb_flasher.errors import ErrorKind

if TYPE_CHECKING:
    from .results import FlashResult


class MessageLevel(Enum):
    """Severity level for messages."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class WarningCode(Enum):
    """Stable warning codes for known conditions."""
    # Connection
    W_PORT_UNAVAILABLE = "W_PORT_UNAVAILABLE"
    W_WRITE_REJECTED = "W_WRITE_REJECTED"
    W_SYNC_TIMEOUT = "W_SYNC_TIMEOUT"
    W_NO_RESPONSE = "W_NO_RESPONSE"

    # Image / address
    W_CHIP_UNKNOWN = "W_CHIP_UNKNOWN"
    W_EMPTY_IMAGE = "W_EMPTY_IMAGE"
    W_INVALID_ADDRESS = "W_INVALID_ADDRESS"
    W_DATA_PADDED = "W_DATA_PADDED"

    # Session
    W_PROTOCOL = "W_PROTOCOL"
    W_CANCELLED = "W_CANCELLED"
    W_DEADLINE = "W_DEADLINE"

    # Generic
    W_UNKNOWN = "W_UNKNOWN"


# Default remediation hints for each warning code
WARNING_REMEDIATIONS: Dict[WarningCode, str] = {
    WarningCode.W_PORT_UNAVAILABLE:
        "Check the USB cable and run the 'ports' command. Close other serial monitors.",
    WarningCode.W_WRITE_REJECTED:
        "The link dropped mid-transfer. Reconnect and flash again from the same offset.",
    WarningCode.W_SYNC_TIMEOUT:
        "Hold BOOT (GPIO0) while pressing RESET to enter the ROM bootloader.",
    WarningCode.W_NO_RESPONSE:
        "The bootloader did not answer as expected. Try a lower baud rate or --no-verify.",
    WarningCode.W_CHIP_UNKNOWN:
        "Make sure the file is a raw ESP .bin image built for this target.",
    WarningCode.W_EMPTY_IMAGE:
        "Select a non-empty firmware file.",
    WarningCode.W_INVALID_ADDRESS:
        "Use a catalog region name or a hex offset such as 0x10000.",
    WarningCode.W_DATA_PADDED:
        "The final block was padded with 0xFF to the block size.",
    WarningCode.W_PROTOCOL:
        "The transfer broke protocol rules. Re-flash the whole image.",
    WarningCode.W_CANCELLED:
        "Flash memory may be partially written. Re-flash before rebooting the device.",
    WarningCode.W_DEADLINE:
        "Increase --deadline or use a faster --write-baud.",
    WarningCode.W_UNKNOWN:
        "Check logs for more details.",
}

ERROR_KIND_CODES: Dict[ErrorKind, WarningCode] = {
    ErrorKind.TRANSPORT_UNAVAILABLE: WarningCode.W_PORT_UNAVAILABLE,
    ErrorKind.WRITE_REJECTED: WarningCode.W_WRITE_REJECTED,
    ErrorKind.SYNC_TIMEOUT: WarningCode.W_SYNC_TIMEOUT,
    ErrorKind.INVALID_ADDRESS: WarningCode.W_INVALID_ADDRESS,
    ErrorKind.EMPTY_IMAGE: WarningCode.W_EMPTY_IMAGE,
    ErrorKind.UNRECOGNIZED_IMAGE: WarningCode.W_CHIP_UNKNOWN,
    ErrorKind.RESPONSE_MISMATCH: WarningCode.W_NO_RESPONSE,
    ErrorKind.PROTOCOL_VIOLATION: WarningCode.W_PROTOCOL,
    ErrorKind.CANCELLED: WarningCode.W_CANCELLED,
    ErrorKind.DEADLINE_EXCEEDED: WarningCode.W_DEADLINE,
}


@dataclass
class WarningItem:
    """
    Structured warning message with stable code.

    Attributes:
        level: Severity (INFO, WARN, ERROR)
        code: Stable warning code for programmatic handling
        title: Short, user-facing title
        detail: Longer explanation of the issue
        remediation: Suggested action to resolve the issue
    """
    level: MessageLevel
    code: WarningCode
    title: str
    detail: str = ""
    remediation: str = ""

    def __post_init__(self):
        """Set default remediation if not provided."""
        if not self.remediation and self.code in WARNING_REMEDIATIONS:
            self.remediation = WARNING_REMEDIATIONS[self.code]

    @classmethod
    def warn(cls, code: WarningCode, title: str, detail: str = "") -> "WarningItem":
        """Create a WARN-level warning."""
        return cls(MessageLevel.WARN, code, title, detail)

    @classmethod
    def error(cls, code: WarningCode, title: str, detail: str = "") -> "WarningItem":
        """Create an ERROR-level warning."""
        return cls(MessageLevel.ERROR, code, title, detail)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON/display."""
        return {
            "level": self.level.value,
            "code": self.code.value,
            "title": self.title,
            "detail": self.detail,
            "remediation": self.remediation,
        }


def code_for_kind(kind: ErrorKind) -> WarningCode:
    return ERROR_KIND_CODES.get(kind, WarningCode.W_UNKNOWN)


def warnings_from_strings(
    warning_strings: List[str],
    default_level: MessageLevel = MessageLevel.WARN,
) -> List[WarningItem]:
    """
    Convert plain warning strings to WarningItem list.

    Attempts to detect known patterns and assign appropriate codes.
    """
    items = []

    for msg in warning_strings:
        msg_lower = msg.lower()

        if "sync" in msg_lower:
            code = WarningCode.W_SYNC_TIMEOUT
        elif "magic byte" in msg_lower or "chip" in msg_lower:
            code = WarningCode.W_CHIP_UNKNOWN
        elif "padded" in msg_lower:
            code = WarningCode.W_DATA_PADDED
        else:
            code = WarningCode.W_UNKNOWN

        items.append(WarningItem(level=default_level, code=code, title=msg))

    return items


def result_to_warnings(result: "FlashResult") -> List[WarningItem]:
    """
    Convert a FlashResult's warnings and errors to WarningItem list.

    Errors are coded from the result's error kind rather than its text.
    """
    items = warnings_from_strings(result.warnings, MessageLevel.WARN)

    for err in result.errors:
        code = code_for_kind(result.error_kind) if result.error_kind else WarningCode.W_UNKNOWN
        items.append(WarningItem.error(code, err))

    return items
