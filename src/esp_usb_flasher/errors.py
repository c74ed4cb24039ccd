"""
Error types shared by the protocol layer, the flash session and the CLI.

Every fatal condition carries an ErrorKind so callers (CLI, event stream
consumers) can react to the category without matching message text.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Stable error categories surfaced to callers."""
    TRANSPORT_UNAVAILABLE = "transport_unavailable"
    WRITE_REJECTED = "write_rejected"
    SYNC_TIMEOUT = "sync_timeout"
    INVALID_ADDRESS = "invalid_address"
    EMPTY_IMAGE = "empty_image"
    UNRECOGNIZED_IMAGE = "unrecognized_image"
    RESPONSE_MISMATCH = "response_mismatch"
    PROTOCOL_VIOLATION = "protocol_violation"
    CANCELLED = "cancelled"
    DEADLINE_EXCEEDED = "deadline_exceeded"


class FlasherError(Exception):
    """
    Base exception for flashing operations.

    Attributes:
        message: Human-readable explanation
        kind: Error category
        details: Additional context (offset, opcode, sequence, ...)
    """
    kind: ErrorKind = ErrorKind.PROTOCOL_VIOLATION

    def __init__(
        self,
        message: str,
        kind: Optional[ErrorKind] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        if kind is not None:
            self.kind = kind
        self.details = details or {}
        super().__init__(message)


class TransportError(FlasherError):
    """Base exception for transport layer errors"""
    kind = ErrorKind.TRANSPORT_UNAVAILABLE


class TransportUnavailable(TransportError):
    """Port could not be opened or configured"""
    kind = ErrorKind.TRANSPORT_UNAVAILABLE


class WriteRejected(TransportError):
    """Write failed or was incomplete mid-session"""
    kind = ErrorKind.WRITE_REJECTED


class ProtocolError(FlasherError):
    """Malformed command or response frame"""
    kind = ErrorKind.PROTOCOL_VIOLATION


class ProtocolViolation(ProtocolError):
    """Blocks sent out of order or otherwise against the bootloader's rules"""
    kind = ErrorKind.PROTOCOL_VIOLATION


class ResponseMismatch(ProtocolError):
    """Bootloader answered with the wrong opcode, a failure status, or not at all"""
    kind = ErrorKind.RESPONSE_MISMATCH


class SyncTimeout(FlasherError):
    """Bootloader never answered the sync command"""
    kind = ErrorKind.SYNC_TIMEOUT


class InvalidAddress(FlasherError, ValueError):
    """Unknown region name or unparsable custom offset"""
    kind = ErrorKind.INVALID_ADDRESS


class EmptyImage(FlasherError):
    """Firmware image has zero length"""
    kind = ErrorKind.EMPTY_IMAGE


class UnrecognizedImage(FlasherError):
    """Firmware magic byte matches no known chip family"""
    kind = ErrorKind.UNRECOGNIZED_IMAGE


class FlashCancelled(FlasherError):
    """Caller cancelled the session"""
    kind = ErrorKind.CANCELLED


class DeadlineExceeded(FlasherError):
    """Overall session deadline elapsed"""
    kind = ErrorKind.DEADLINE_EXCEEDED
