"""
Result objects for flash operations.

Provides the terminal record of a flash session: a success record
(address, size) or a failure record (error kind, message), with the
warnings and captured logs collected along the way.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from esp_usb_flasher.errors import ErrorKind, FlasherError


@dataclass
class FlashResult:
    """
    Outcome of one flash operation.

    CLI prints a readable summary; other callers can use to_dict().

    Attributes:
        ok: Whether the firmware was written and finalized
        operation: Name of the operation (e.g., "flash", "probe")
        port: Transport identifier
        address: Target region name
        offset: Target flash offset
        size_bytes: Firmware image size (before padding)
        chip: Detected chip family name
        blocks: Number of FLASH_DATA blocks sent
        hashes: Hash values of the image
        warnings: Non-fatal issues (sync timeout, unknown chip)
        error_kind: Category of the fatal error, if any
        errors: Messages of the fatal error(s)
        metadata: Additional operation-specific data
        logs: Captured log lines from the operation
    """
    ok: bool
    operation: str
    port: str = ""
    address: str = ""
    offset: Optional[int] = None
    size_bytes: int = 0
    chip: str = ""
    blocks: int = 0
    hashes: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    error_kind: Optional[ErrorKind] = None
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    def add_warning(self, message: str) -> None:
        """Add a warning message."""
        self.warnings.append(message)

    def add_error(self, message: str, kind: Optional[ErrorKind] = None) -> None:
        """Add an error message and mark result as failed."""
        self.errors.append(message)
        if kind is not None:
            self.error_kind = kind
        self.ok = False

    @property
    def message(self) -> str:
        """First error, or empty on success."""
        return self.errors[0] if self.errors else ""

    def to_summary(self) -> str:
        """
        Generate a human-readable summary string.

        Suitable for CLI output or simple logging.
        """
        status = "SUCCESS" if self.ok else "FAILED"
        lines = [f"[{status}] {self.operation}"]

        if self.port:
            lines.append(f"  Port: {self.port}")
        if self.address:
            if self.offset is not None:
                lines.append(f"  Address: {self.address} (0x{self.offset:08X})")
            else:
                lines.append(f"  Address: {self.address}")
        if self.size_bytes:
            lines.append(f"  Bytes: {self.size_bytes:,}")
        if self.chip:
            lines.append(f"  Chip: {self.chip}")

        for name, value in self.hashes.items():
            lines.append(f"  {name}: {value[:16]}...")

        if self.warnings:
            lines.append("  Warnings:")
            for warn in self.warnings:
                lines.append(f"    - {warn}")

        if self.errors:
            kind = f" ({self.error_kind.value})" if self.error_kind else ""
            lines.append(f"  Errors{kind}:")
            for err in self.errors:
                lines.append(f"    - {err}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "ok": self.ok,
            "operation": self.operation,
            "port": self.port,
            "address": self.address,
            "offset": self.offset,
            "size_bytes": self.size_bytes,
            "chip": self.chip,
            "blocks": self.blocks,
            "hashes": self.hashes,
            "warnings": self.warnings,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "errors": self.errors,
            "metadata": self.metadata,
            "logs": self.logs,
        }

    @classmethod
    def success(
        cls,
        operation: str,
        address: str = "",
        offset: Optional[int] = None,
        size_bytes: int = 0,
        **kwargs,
    ) -> "FlashResult":
        """Create a successful result."""
        return cls(
            ok=True,
            operation=operation,
            address=address,
            offset=offset,
            size_bytes=size_bytes,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        operation: str,
        error: str,
        kind: Optional[ErrorKind] = None,
        **kwargs,
    ) -> "FlashResult":
        """Create a failed result."""
        result = cls(ok=False, operation=operation, **kwargs)
        result.add_error(error, kind)
        return result

    @classmethod
    def from_error(cls, operation: str, exc: BaseException, **kwargs) -> "FlashResult":
        """Create a failed result from an exception, keeping its kind."""
        kind = exc.kind if isinstance(exc, FlasherError) else None
        return cls.failure(operation, str(exc), kind=kind, **kwargs)
