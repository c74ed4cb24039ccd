"""
Flash address catalog and chip identity.

Provides a unified layer for region lookup, custom offsets and chip detection.
"""

from .registry import (
    FlashAddress,
    ChipFamily,
    ADDRESS_CATALOG,
    MAGIC_BYTES,
    CHIP_DESCRIPTIONS,
    CUSTOM,
    list_addresses,
    get_address,
    resolve_address,
    parse_hex_offset,
    detect_chip,
)

__all__ = [
    "FlashAddress",
    "ChipFamily",
    "ADDRESS_CATALOG",
    "MAGIC_BYTES",
    "CHIP_DESCRIPTIONS",
    "CUSTOM",
    "list_addresses",
    "get_address",
    "resolve_address",
    "parse_hex_offset",
    "detect_chip",
]
