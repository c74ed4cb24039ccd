"""
Flash session configuration.

The module constants are the defaults; FlashConfig bundles them so the CLI
(or any other caller) can override a field without touching the others.
All delays and timeouts are in seconds.
"""

from dataclasses import dataclass, replace
from typing import Optional

from esp_usb_flasher.protocol.chunking import BLOCK_SIZE
from esp_usb_flasher.protocol.rom_loader import ERASE_REGION_TIMEOUT_PER_MB

SYNC_BAUDRATE = 115200
HIGH_SPEED_BAUDRATE = 460800

SYNC_ATTEMPTS = 10
SYNC_RETRY_DELAY = 0.05
SYNC_READ_TIMEOUT = 0.1
PROBE_READ_TIMEOUT = 0.5

RESPONSE_TIMEOUT = 3.0
BAUD_SETTLE_DELAY = 0.05
BEGIN_SETTLE_DELAY = 0.1
BLOCK_DELAY = 0.005
END_SETTLE_DELAY = 1.0


@dataclass(frozen=True)
class FlashConfig:
    """
    Tunables for one flash session.

    Attributes:
        sync_baudrate: Rate the port is opened at for sync/detect
        write_baudrate: Optional faster rate negotiated with CHANGE_BAUDRATE
            before bulk writing (None keeps sync_baudrate)
        block_size: FLASH_DATA payload size, constant for the session
        sync_attempts: Bounded sync retry count
        sync_retry_delay: Pause after each SYNC write
        sync_read_timeout: Wait for inbound bytes per sync attempt
        response_timeout: Wait for a command response when verifying
        erase_timeout_per_mb: FLASH_BEGIN response wait per MB erased when
            verifying (never below response_timeout)
        baud_settle_delay: Pause after CHANGE_BAUDRATE before switching
        begin_settle_delay: Pause after FLASH_BEGIN (erase)
        block_delay: Pause between FLASH_DATA blocks
        end_settle_delay: Pause after FLASH_END before closing
        strict_sync: Fail with SyncTimeout instead of warning and continuing
        strict_chip: Reject images whose magic byte is unknown
        verify_responses: Parse and check every command response
        reboot: FLASH_END runs the new firmware instead of staying in the bootloader
        deadline: Optional limit for the whole session
    """
    sync_baudrate: int = SYNC_BAUDRATE
    write_baudrate: Optional[int] = None
    block_size: int = BLOCK_SIZE
    sync_attempts: int = SYNC_ATTEMPTS
    sync_retry_delay: float = SYNC_RETRY_DELAY
    sync_read_timeout: float = SYNC_READ_TIMEOUT
    response_timeout: float = RESPONSE_TIMEOUT
    erase_timeout_per_mb: float = ERASE_REGION_TIMEOUT_PER_MB
    baud_settle_delay: float = BAUD_SETTLE_DELAY
    begin_settle_delay: float = BEGIN_SETTLE_DELAY
    block_delay: float = BLOCK_DELAY
    end_settle_delay: float = END_SETTLE_DELAY
    strict_sync: bool = False
    strict_chip: bool = False
    verify_responses: bool = False
    reboot: bool = True
    deadline: Optional[float] = None

    def __post_init__(self):
        if self.sync_baudrate <= 0:
            raise ValueError(f"sync_baudrate must be > 0, got {self.sync_baudrate}")
        if self.write_baudrate is not None and self.write_baudrate <= 0:
            raise ValueError(f"write_baudrate must be > 0, got {self.write_baudrate}")
        if self.block_size <= 0:
            raise ValueError(f"block_size must be > 0, got {self.block_size}")
        if self.sync_attempts < 1:
            raise ValueError(f"sync_attempts must be >= 1, got {self.sync_attempts}")
        for name in (
            "sync_retry_delay",
            "sync_read_timeout",
            "response_timeout",
            "erase_timeout_per_mb",
            "baud_settle_delay",
            "begin_settle_delay",
            "block_delay",
            "end_settle_delay",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if self.deadline is not None and self.deadline <= 0:
            raise ValueError(f"deadline must be > 0, got {self.deadline}")

    @property
    def switches_baudrate(self) -> bool:
        return self.write_baudrate is not None and self.write_baudrate != self.sync_baudrate

    def replace(self, **changes) -> "FlashConfig":
        """Return a copy with some fields changed (validated again)."""
        return replace(self, **changes)
