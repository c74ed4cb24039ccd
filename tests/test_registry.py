"""Tests for the flash address catalog and chip detection."""

import pytest

from esp_usb_flasher.errors import ErrorKind, InvalidAddress
from esp_usb_flasher.models import (
    CUSTOM,
    ChipFamily,
    detect_chip,
    get_address,
    list_addresses,
    parse_hex_offset,
    resolve_address,
)


class TestCatalog:
    """Named region lookup."""

    def test_catalog_offsets(self):
        offsets = {entry.name: entry.offset for entry in list_addresses()}
        assert offsets["Bootloader"] == 0x1000
        assert offsets["Partition Table"] == 0x8000
        assert offsets["NVS"] == 0x9000
        assert offsets["OTA Data"] == 0xD000
        assert offsets["PHY Init"] == 0xF000
        assert offsets["Application"] == 0x10000

    def test_custom_is_last(self):
        entries = list_addresses()
        assert entries[-1].name == CUSTOM
        assert entries[-1].is_custom
        assert not any(e.is_custom for e in entries[:-1])

    def test_application_lookup(self):
        assert get_address("Application").offset == 0x10000

    @pytest.mark.parametrize("name", ["partition table", "PARTITION_TABLE", "partition-table", " Partition Table "])
    def test_lookup_ignores_case_and_separators(self, name):
        assert get_address(name).name == "Partition Table"

    def test_unknown_region(self):
        with pytest.raises(InvalidAddress) as exc:
            get_address("Firmware")
        assert "Valid regions" in str(exc.value)
        assert exc.value.kind == ErrorKind.INVALID_ADDRESS

    def test_invalid_address_is_value_error(self):
        with pytest.raises(ValueError):
            get_address("")

    def test_str_shows_name_and_offset(self):
        assert str(get_address("NVS")) == "NVS @ 0x9000"


class TestParseHexOffset:
    """Hex offset text for the Custom region."""

    @pytest.mark.parametrize(
        "text,expected",
        [("0x8000", 0x8000), ("0X8000", 0x8000), ("8000", 0x8000), (" 0x1000 ", 0x1000), ("0", 0), ("FFFFFFFF", 0xFFFFFFFF)],
    )
    def test_valid(self, text, expected):
        assert parse_hex_offset(text) == expected

    @pytest.mark.parametrize("text", ["zz", "", "0x", "-1", "0x0x10", "10 00", "100000000", None])
    def test_invalid(self, text):
        with pytest.raises(InvalidAddress):
            parse_hex_offset(text)


class TestResolveAddress:
    """Catalog entry or Custom with caller-supplied offset."""

    def test_named_region_ignores_custom_offset(self):
        assert resolve_address("Bootloader").offset == 0x1000

    def test_custom_takes_offset_from_text(self):
        target = resolve_address("Custom", "0x20000")
        assert target.name == CUSTOM
        assert target.offset == 0x20000

    def test_custom_does_not_change_catalog(self):
        resolve_address("Custom", "0x20000")
        assert get_address("Custom").offset == 0

    def test_custom_requires_offset(self):
        with pytest.raises(InvalidAddress):
            resolve_address("Custom")

    def test_custom_with_bad_offset(self):
        with pytest.raises(InvalidAddress):
            resolve_address("custom", "zz")


class TestDetectChip:
    """Chip family from the image magic byte."""

    @pytest.mark.parametrize(
        "magic,family",
        [(0xE9, ChipFamily.ESP32), (0x0C, ChipFamily.ESP32S3), (0x09, ChipFamily.ESP32S3), (0x2F, ChipFamily.ESP8266)],
    )
    def test_known_magic(self, magic, family):
        assert detect_chip(bytes([magic, 0x00, 0x00])) is family
        assert family.is_known

    def test_unknown_magic(self):
        assert detect_chip(b"\x00\x01") is ChipFamily.UNKNOWN
        assert not ChipFamily.UNKNOWN.is_known

    def test_empty_image(self):
        assert detect_chip(b"") is ChipFamily.UNKNOWN
