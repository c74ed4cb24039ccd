"""
Serial Transport Layer

Handles low-level serial communication with the ESP ROM bootloader.

This module provides:
- The Transport interface the flash session drives
- Serial port initialization and configuration (pyserial)
- Raw write / bounded read operations
- Serial port enumeration
"""

import logging
from dataclasses import dataclass, replace
from typing import List, Optional, Protocol, runtime_checkable

import serial
import serial.tools.list_ports

from esp_usb_flasher.errors import TransportError, TransportUnavailable, WriteRejected

logger = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 115200


@dataclass(frozen=True)
class SerialConfig:
    """Line settings for opening a transport (8N1 at the sync rate by default)."""
    baudrate: int = DEFAULT_BAUDRATE
    bytesize: int = 8
    parity: str = "N"
    stopbits: int = 1
    timeout: float = 0.1

    def with_baudrate(self, baudrate: int) -> "SerialConfig":
        return replace(self, baudrate=baudrate)


@runtime_checkable
class Transport(Protocol):
    """
    Byte pipe to the bootloader, exclusively owned by one flash session.

    read() returns b"" when nothing arrives within the timeout.
    """

    def open(self, config: SerialConfig) -> None: ...

    def write(self, data: bytes) -> None: ...

    def read(self, max_bytes: int, timeout: float) -> bytes: ...

    def set_baudrate(self, baudrate: int) -> None: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class PortInfo:
    """Serial port descriptor from enumeration."""
    device: str
    name: str
    description: str
    hwid: str = ""


def list_serial_ports() -> List[PortInfo]:
    """List serial ports visible to pyserial."""
    return [
        PortInfo(
            device=port.device,
            name=port.name or "-",
            description=port.description or "-",
            hwid=port.hwid or "",
        )
        for port in serial.tools.list_ports.comports()
    ]


class SerialTransport:
    """
    Serial transport for ESP ROM bootloaders.

    Handles:
    - Serial port management
    - Raw writes with short-write detection
    - Reads bounded by a per-call timeout
    - Baud rate switching on an open port

    Example:
        transport = SerialTransport(port="/dev/ttyUSB0")
        transport.open(SerialConfig(baudrate=115200))
        transport.write(sync_command())
        reply = transport.read(256, timeout=0.1)
        transport.close()
    """

    def __init__(self, port: str):
        """
        Initialize transport layer.

        Args:
            port: Serial port (e.g., "/dev/ttyUSB0", "COM3")
        """
        self.port = port
        self.config: Optional[SerialConfig] = None
        self.ser: Optional[serial.Serial] = None

    @property
    def is_open(self) -> bool:
        return bool(self.ser and self.ser.is_open)

    def open(self, config: SerialConfig) -> None:
        """
        Open serial port with the given line settings.

        Raises:
            TransportUnavailable: If port cannot be opened
        """
        try:
            self.ser = serial.Serial(
                port=self.port,
                baudrate=config.baudrate,
                bytesize=config.bytesize,
                parity=config.parity,
                stopbits=config.stopbits,
                timeout=config.timeout,
                write_timeout=max(config.timeout, 1.0),
            )
            # Clear any junk in buffer
            self.ser.reset_input_buffer()
            self.ser.reset_output_buffer()
        except (serial.SerialException, ValueError) as e:
            raise TransportUnavailable(
                f"Cannot open port {self.port}: {e}",
                details={"port": self.port, "baudrate": config.baudrate},
            )
        self.config = config
        logger.debug(f"Opened {self.port} at {config.baudrate} bps (timeout={config.timeout}s)")

    def close(self) -> None:
        """Close serial port."""
        if self.ser and self.ser.is_open:
            self.ser.close()
            logger.debug(f"Closed {self.port}")

    def write(self, data: bytes) -> None:
        """
        Send raw bytes.

        Raises:
            WriteRejected: If the port is closed, the write fails or is short
        """
        if not self.is_open:
            raise WriteRejected("Serial port not open")
        try:
            written = self.ser.write(data)
            self.ser.flush()
        except serial.SerialException as e:
            raise WriteRejected(f"Write error on {self.port}: {e}")
        if written != len(data):
            raise WriteRejected(f"Incomplete write: sent {written}/{len(data)} bytes")
        logger.debug(f">>> {data[:32].hex()}" + ("..." if len(data) > 32 else ""))

    def read(self, max_bytes: int, timeout: float) -> bytes:
        """
        Read whatever arrives within the timeout, up to max_bytes.

        Returns:
            Received bytes, or b"" on timeout

        Raises:
            TransportError: If the port is closed or the read fails
        """
        if not self.is_open:
            raise TransportError("Serial port not open")
        old_timeout = self.ser.timeout
        try:
            self.ser.timeout = timeout
            first = self.ser.read(1)
            if not first:
                return b""
            waiting = min(self.ser.in_waiting, max_bytes - 1)
            data = first + (self.ser.read(waiting) if waiting > 0 else b"")
        except serial.SerialException as e:
            raise TransportError(f"Read error on {self.port}: {e}")
        finally:
            self.ser.timeout = old_timeout
        logger.debug(f"<<< {data.hex()}")
        return data

    def set_baudrate(self, baudrate: int) -> None:
        """
        Change the baud rate of the open port.

        Raises:
            TransportUnavailable: If the driver rejects the rate
        """
        if not self.is_open:
            raise TransportError("Serial port not open")
        try:
            self.ser.baudrate = baudrate
            self.ser.reset_input_buffer()
        except (serial.SerialException, ValueError, IOError) as e:
            raise TransportUnavailable(
                f"Failed to set baud rate {baudrate} on {self.port}: {e}"
            )
        if self.config is not None:
            self.config = self.config.with_baudrate(baudrate)
        logger.debug(f"Switched {self.port} to {baudrate} bps")
