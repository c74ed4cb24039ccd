"""
Flash address catalog and chip identity for ESP targets.

Provides a single source of truth for:
- Named flash regions (bootloader, partition table, application, ...)
- Custom offsets entered as hex text
- Chip family inference from a firmware image's magic byte

Usage:
    from esp_usb_flasher.models import (
        list_addresses, get_address, resolve_address, detect_chip
    )

    app = get_address("Application")            # offset 0x10000
    custom = resolve_address("Custom", "0x8000")  # offset 0x8000
    chip = detect_chip(firmware_bytes)           # ChipFamily.ESP32
"""

import string
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional

from esp_usb_flasher.errors import InvalidAddress

MAX_OFFSET = 0xFFFFFFFF
CUSTOM = "Custom"


@dataclass(frozen=True)
class FlashAddress:
    """Named flash region."""
    name: str
    offset: int
    description: str

    @property
    def is_custom(self) -> bool:
        return self.name == CUSTOM

    def __str__(self) -> str:
        return f"{self.name} @ 0x{self.offset:X}"


ADDRESS_CATALOG: Dict[str, FlashAddress] = {
    "Bootloader": FlashAddress(
        name="Bootloader",
        offset=0x1000,
        description="Second-stage bootloader (ESP32; ESP32-S3 uses 0x0)",
    ),
    "Partition Table": FlashAddress(
        name="Partition Table",
        offset=0x8000,
        description="Partition table",
    ),
    "NVS": FlashAddress(
        name="NVS",
        offset=0x9000,
        description="Non-volatile storage",
    ),
    "OTA Data": FlashAddress(
        name="OTA Data",
        offset=0xD000,
        description="OTA boot selection data",
    ),
    "PHY Init": FlashAddress(
        name="PHY Init",
        offset=0xF000,
        description="RF calibration data",
    ),
    "Application": FlashAddress(
        name="Application",
        offset=0x10000,
        description="Main application (factory partition)",
    ),
    CUSTOM: FlashAddress(
        name=CUSTOM,
        offset=0x0,
        description="User-supplied hex offset",
    ),
}


def _normalize(name: str) -> str:
    return "".join(ch for ch in name.lower() if ch.isalnum())


_ALIASES: Dict[str, str] = {_normalize(name): name for name in ADDRESS_CATALOG}


def list_addresses() -> List[FlashAddress]:
    """All catalog entries, in flash order with Custom last."""
    return list(ADDRESS_CATALOG.values())


def get_address(name: str) -> FlashAddress:
    """
    Look up a catalog entry by name.

    Matching ignores case, spaces, dashes and underscores
    ("partition_table" finds "Partition Table").

    Raises:
        InvalidAddress: If no entry has that name
    """
    key = _ALIASES.get(_normalize(name or ""))
    if key is None:
        valid = ", ".join(ADDRESS_CATALOG)
        raise InvalidAddress(f"Unknown flash region '{name}'. Valid regions: {valid}")
    return ADDRESS_CATALOG[key]


def parse_hex_offset(value: Optional[str]) -> int:
    """
    Parse a flash offset written in hexadecimal.

    Accepts "8000", "0x8000" or "0X8000" (surrounding whitespace ignored).

    Returns:
        Offset as a non-negative integer that fits in 32 bits

    Raises:
        InvalidAddress: If the text is empty, not hex, or out of range
    """
    if value is None:
        raise InvalidAddress("Custom offset is required")
    text = value.strip()
    if text[:2].lower() == "0x":
        text = text[2:]
    if not text or any(ch not in string.hexdigits for ch in text):
        raise InvalidAddress(
            f"Invalid offset '{value}'. Use hex such as 0x10000 or 10000.",
            details={"value": value},
        )
    offset = int(text, 16)
    if offset > MAX_OFFSET:
        raise InvalidAddress(
            f"Offset 0x{offset:X} does not fit in 32 bits",
            details={"value": value},
        )
    return offset


def resolve_address(name: str, custom_offset: Optional[str] = None) -> FlashAddress:
    """
    Resolve a region name (and, for Custom, its hex offset) to a FlashAddress.

    Args:
        name: Catalog name
        custom_offset: Hex text, required when name is Custom

    Raises:
        InvalidAddress: Unknown name or bad custom offset
    """
    entry = get_address(name)
    if entry.is_custom:
        return replace(entry, offset=parse_hex_offset(custom_offset))
    return entry


class ChipFamily(Enum):
    """Chip family inferred from the image magic byte."""
    ESP32 = "ESP32"
    ESP32S3 = "ESP32-S3"
    ESP8266 = "ESP8266"
    UNKNOWN = "Unknown"

    @property
    def is_known(self) -> bool:
        return self is not ChipFamily.UNKNOWN


MAGIC_BYTES: Dict[int, ChipFamily] = {
    0xE9: ChipFamily.ESP32,
    0x0C: ChipFamily.ESP32S3,
    0x09: ChipFamily.ESP32S3,
    0x2F: ChipFamily.ESP8266,
}

CHIP_DESCRIPTIONS: Dict[ChipFamily, str] = {
    ChipFamily.ESP32: "ESP32 family application image",
    ChipFamily.ESP32S3: "ESP32-S3 family image",
    ChipFamily.ESP8266: "ESP8266 family image",
    ChipFamily.UNKNOWN: "Unrecognized image; the magic byte matches no known family",
}


def detect_chip(image: bytes) -> ChipFamily:
    """
    Guess the target chip from byte 0 of a firmware image.

    Advisory only; flashing never depends on the answer.
    """
    if not image:
        return ChipFamily.UNKNOWN
    return MAGIC_BYTES.get(image[0], ChipFamily.UNKNOWN)
