"""
ESP USB Flasher - write firmware to ESP32-family chips through the ROM bootloader

SLIP framing, command encoding, bootloader sync and block transfer over a
serial link, with progress reporting.
"""

__version__ = "0.1.0"

from esp_usb_flasher.protocol import SerialTransport, ROMLoader
from esp_usb_flasher.core import FlashConfig, FlashSession, start_flash, flash_firmware

__all__ = [
    "SerialTransport",
    "ROMLoader",
    "FlashConfig",
    "FlashSession",
    "start_flash",
    "flash_firmware",
    "__version__",
]
