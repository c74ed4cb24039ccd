"""
Centralized parsing helpers for flash targets and baud rates.

The CLI (and any other front end) must import these helpers rather than
re-implement them.
"""

from typing import Optional

from esp_usb_flasher.models.registry import (
    CUSTOM,
    FlashAddress,
    parse_hex_offset,
    resolve_address,
)


def parse_offset(value: Optional[str]) -> int:
    """
    Parse a hex flash offset ("0x10000", "0X8000" or "8000").

    This is the single source of truth for offset parsing.

    Raises:
        InvalidAddress: If value cannot be parsed (never defaults silently).
    """
    return parse_hex_offset(value)


def parse_target(address: Optional[str], offset: Optional[str] = None) -> FlashAddress:
    """
    Resolve the flash target from a region name and/or a raw offset.

    A raw offset without a region name means the Custom region; a region
    name of Custom requires the offset.

    Examples:
        parse_target("Application")        -> Application @ 0x10000
        parse_target(None, "0x8000")       -> Custom @ 0x8000
        parse_target("custom", "1000")     -> Custom @ 0x1000

    Raises:
        InvalidAddress: Unknown region or bad offset
    """
    if not address:
        address = CUSTOM
    return resolve_address(address, offset)


def parse_baudrate(value: Optional[str]) -> Optional[int]:
    """
    Parse a baud rate; None or empty means "not set".

    Non-standard rates are accepted (USB bridges often support them) but
    must be positive integers.

    Raises:
        ValueError: If value is not a positive integer.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        baud = int(value)
    except ValueError:
        raise ValueError(f"Invalid baud rate '{value}'. Use an integer such as 115200.")
    if baud <= 0:
        raise ValueError(f"Invalid baud rate '{value}'. Must be greater than zero.")
    return baud
