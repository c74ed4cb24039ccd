"""Tests for command exchange with the ROM bootloader."""

import pytest

from conftest import FakeBootloader
from esp_usb_flasher.errors import ErrorKind, ResponseMismatch
from esp_usb_flasher.protocol import commands
from esp_usb_flasher.protocol.chunking import FlashBlock
from esp_usb_flasher.protocol.commands import FLASH_BEGIN, FLASH_DATA, FLASH_END, SYNC, build_response
from esp_usb_flasher.protocol.rom_loader import ROMLoader, timeout_per_mb


def make_loader(device=None, verify=True, timeout=0.05):
    device = device or FakeBootloader()
    return device, ROMLoader(device, verify_responses=verify, response_timeout=timeout)


class TestReadResponse:
    """Matching responses to the command that was sent."""

    def test_matching_response(self):
        device, loader = make_loader(FakeBootloader(silent=True))
        device.queue(build_response(FLASH_BEGIN, b"\x00\x00", value=5))
        response = loader.read_response(FLASH_BEGIN)
        assert response.opcode == FLASH_BEGIN
        assert response.value == 5

    def test_late_sync_replies_are_skipped(self):
        device, loader = make_loader(FakeBootloader(silent=True))
        device.queue(build_response(SYNC) * 3 + build_response(FLASH_DATA))
        assert loader.read_response(FLASH_DATA).opcode == FLASH_DATA

    def test_noise_and_malformed_frames_are_ignored(self):
        device, loader = make_loader(FakeBootloader(silent=True))
        device.queue(b"boot:0x13\r\n" + b"\xc0\x01\x02\xc0" + build_response(FLASH_END))
        assert loader.read_response(FLASH_END).opcode == FLASH_END

    def test_response_to_other_command(self):
        device, loader = make_loader(FakeBootloader(silent=True))
        device.queue(build_response(FLASH_END))
        with pytest.raises(ResponseMismatch, match="Expected response to FLASH_DATA, got FLASH_END"):
            loader.read_response(FLASH_DATA)

    def test_timeout(self):
        _, loader = make_loader(FakeBootloader(silent=True), timeout=0.01)
        with pytest.raises(ResponseMismatch, match="No response to FLASH_BEGIN") as exc:
            loader.read_response(FLASH_BEGIN)
        assert exc.value.kind == ErrorKind.RESPONSE_MISMATCH


class TestCommands:
    """Sending commands with and without response checks."""

    def test_unverified_command_does_not_read(self):
        device, loader = make_loader(verify=False)
        assert loader.flash_begin(1024, 1, 1024, 0x10000) is None
        assert device.opcodes() == [FLASH_BEGIN]
        # the queued reply is still unread
        assert device.read(256, 0) != b""

    def test_verified_command_returns_response(self):
        device, loader = make_loader()
        response = loader.flash_block(FlashBlock(0, b"\x00" * 1024))
        assert response.ok
        assert device.opcodes() == [FLASH_DATA]

    def test_error_status_raises_with_rom_reason(self):
        device, loader = make_loader(FakeBootloader(error_opcode=FLASH_DATA))
        with pytest.raises(ResponseMismatch) as exc:
            loader.flash_block(FlashBlock(3, b"\x00" * 1024))
        assert "write flash block 3" in str(exc.value)
        assert "invalid CRC" in str(exc.value)
        assert exc.value.details["error"] == 0x07

    def test_flash_finish_with_reboot_skips_response(self):
        device, loader = make_loader(FakeBootloader(silent=True))
        assert loader.flash_finish(reboot=True) is None
        assert device.opcodes() == [FLASH_END]

    def test_flash_finish_without_reboot_is_verified(self):
        device, loader = make_loader()
        response = loader.flash_finish(reboot=False)
        assert response.opcode == FLASH_END
        assert device.sent(FLASH_END)[0].payload == b"\x01\x00\x00\x00"

    def test_change_baudrate(self):
        device, loader = make_loader()
        loader.change_baudrate(460800)
        assert device.opcodes() == [commands.CHANGE_BAUDRATE]


class TestSyncAndDrain:
    """Sync probing and input draining."""

    def test_send_sync_and_read_any(self):
        device, loader = make_loader()
        loader.send_sync()
        assert device.opcodes() == [SYNC]
        assert loader.read_any(0.1).startswith(b"\xc0\x01\x08")

    def test_read_any_silent(self):
        _, loader = make_loader(FakeBootloader(silent=True))
        assert loader.read_any(0.01) == b""

    def test_drain_counts_dropped_bytes(self):
        device, loader = make_loader(FakeBootloader(silent=True))
        device.queue(b"\x55" * 600)
        assert loader.drain() == 600
        assert loader.read_any(0.01) == b""

    def test_drain_discards_pending_frames(self):
        device, loader = make_loader(FakeBootloader(silent=True))
        device.queue(build_response(FLASH_DATA) * 2)
        loader.read_response(FLASH_DATA)
        loader.drain()
        with pytest.raises(ResponseMismatch, match="No response"):
            loader.read_response(FLASH_DATA, timeout=0.01)


class TestPendingFrames:
    """Responses decoded from one read are consumed in order."""

    def test_second_response_from_same_read_is_kept(self):
        device, loader = make_loader(FakeBootloader(silent=True))
        device.queue(build_response(FLASH_DATA, value=1) + build_response(FLASH_DATA, value=2))
        assert loader.read_response(FLASH_DATA).value == 1
        assert device.read(256, 0) == b""
        assert loader.read_response(FLASH_DATA).value == 2

    def test_mismatch_after_match_surfaces_on_next_read(self):
        device, loader = make_loader(FakeBootloader(silent=True))
        device.queue(build_response(FLASH_DATA) + build_response(FLASH_END))
        loader.read_response(FLASH_DATA)
        with pytest.raises(ResponseMismatch, match="got FLASH_END"):
            loader.read_response(FLASH_DATA)


class TestEraseTimeout:
    """FLASH_BEGIN waits longer for large erases."""

    def test_timeout_scales_with_size(self):
        assert timeout_per_mb(30.0, 2_000_000, 3.0) == pytest.approx(60.0)

    def test_timeout_never_below_minimum(self):
        assert timeout_per_mb(30.0, 4096, 3.0) == 3.0

    def test_flash_begin_waits_for_slow_erase(self):
        device = FakeBootloader(erase_delay=0.2)
        loader = ROMLoader(device, verify_responses=True, response_timeout=0.05, erase_timeout_per_mb=30.0)
        response = loader.flash_begin(65536, 64, 1024, 0x10000)
        assert response.opcode == FLASH_BEGIN

    def test_flash_begin_times_out_without_scaling(self):
        device = FakeBootloader(erase_delay=0.2)
        loader = ROMLoader(device, verify_responses=True, response_timeout=0.05, erase_timeout_per_mb=0)
        with pytest.raises(ResponseMismatch, match="No response to FLASH_BEGIN within 0.05s"):
            loader.flash_begin(65536, 64, 1024, 0x10000)
