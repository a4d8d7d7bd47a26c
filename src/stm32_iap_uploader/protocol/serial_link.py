"""
Serial Link Layer

Handles low-level serial communication with an IAP bootloader.

This module provides:
- Serial port initialization and configuration
- Byte-level reads with per-call timeouts
- Raw writes
- Reset line toggling
"""

import os
import time
import logging
from typing import List, Optional

try:
    import serial
except ImportError:
    raise ImportError("PySerial required: pip install pyserial")

logger = logging.getLogger(__name__)

RESET_LINES = ("dtr", "rts")

# pyserial drives control lines and buffer flushes through ioctl/termios on
# POSIX, which raise OSError or termios.error rather than SerialException.
PORT_ERRORS = (serial.SerialException, OSError)
if os.name == "posix":
    import termios

    PORT_ERRORS += (termios.error,)


class SerialLinkError(Exception):
    """Serial port could not be opened, read or written"""
    pass


class LinkTimeout(Exception):
    """
    Nothing (or not enough) arrived before the read timeout.

    Not a SerialLinkError: a timeout means "no event yet", the link itself
    is still usable.

    Attributes:
        partial: Bytes received before the timeout expired
    """

    def __init__(self, message: str = "Read timeout", partial: bytes = b""):
        super().__init__(message)
        self.partial = partial


class SerialLink:
    """
    Serial link to a device running an IAP bootloader.

    Example:
        link = SerialLink(port="/dev/ttyUSB0", baudrate=115200)
        link.open()
        link.pulse_reset()
        bel = link.read_byte(timeout=0.5)
        link.write(b"\\x06")
        link.close()
    """

    def __init__(
        self,
        port: str,
        baudrate: int = 115200,
        timeout: Optional[float] = 0.05,
        reset_line: str = "dtr",
        reset_hold: float = 0.0,
    ):
        """
        Initialize link.

        Args:
            port: Serial port (e.g., "/dev/ttyUSB0", "COM3")
            baudrate: Serial baud rate (default 115200)
            timeout: Default read timeout in seconds (default 0.05, None blocks)
            reset_line: Control line wired to the MCU reset ("dtr" or "rts")
            reset_hold: Seconds to hold the line asserted (default 0, a pulse)
        """
        if reset_line not in RESET_LINES:
            raise ValueError(f"reset_line must be one of {RESET_LINES}, got {reset_line!r}")
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.reset_line = reset_line
        self.reset_hold = reset_hold
        self.ser: Optional[serial.Serial] = None

    def open(self) -> None:
        """
        Open serial port.

        Raises:
            SerialLinkError: If port cannot be opened
        """
        try:
            self.ser = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                bytesize=8,
                parity='N',
                stopbits=1,
                timeout=self.timeout,
                write_timeout=1.0 if self.timeout is None else max(self.timeout, 1.0),
            )
            self.ser.reset_input_buffer()
            self.ser.reset_output_buffer()

            logger.debug(
                f"Opened {self.port} at {self.baudrate} bps "
                f"(timeout={self.timeout}s, reset={self.reset_line})"
            )
        except PORT_ERRORS as e:
            if self.ser is not None:
                self.ser.close()
                self.ser = None
            raise SerialLinkError(f"Cannot open port {self.port}: {e}")

    def close(self) -> None:
        """Close serial port."""
        if self.ser and self.ser.is_open:
            self.ser.close()
            logger.debug(f"Closed {self.port}")

    def __enter__(self) -> "SerialLink":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return bool(self.ser and self.ser.is_open)

    def _require_open(self) -> serial.Serial:
        if not self.ser or not self.ser.is_open:
            raise SerialLinkError("Serial port not open")
        return self.ser

    def write(self, data: bytes) -> None:
        """
        Send raw bytes to the device.

        Raises:
            SerialLinkError: If write fails or is incomplete
        """
        ser = self._require_open()
        try:
            written = ser.write(data)
        except PORT_ERRORS as e:
            raise SerialLinkError(f"Write error: {e}")
        if written != len(data):
            raise SerialLinkError(
                f"Incomplete write: sent {written}/{len(data)} bytes"
            )
        logger.debug(f">>> {data.hex().upper()}")

    def read(self, size: int, timeout: Optional[float] = None) -> bytes:
        """
        Read up to ``size`` bytes.

        Args:
            size: Maximum number of bytes to read
            timeout: Optional timeout override (seconds)

        Returns:
            Bytes received, possibly fewer than requested (empty on timeout)

        Raises:
            SerialLinkError: If the port fails
        """
        ser = self._require_open()
        override = timeout is not None
        old_timeout = ser.timeout
        try:
            if override:
                ser.timeout = timeout
            data = ser.read(size)
        except PORT_ERRORS as e:
            raise SerialLinkError(f"Read error: {e}")
        finally:
            if override:
                ser.timeout = old_timeout

        if data:
            logger.debug(f"<<< {data.hex().upper()}")
        return data

    def read_byte(self, timeout: Optional[float] = None) -> int:
        """
        Read a single byte.

        Raises:
            LinkTimeout: If no byte arrived in time
            SerialLinkError: If the port fails
        """
        data = self.read(1, timeout)
        if not data:
            raise LinkTimeout("No byte received")
        return data[0]

    def read_exact(self, n: int, timeout: Optional[float] = None) -> bytes:
        """
        Read exactly ``n`` bytes.

        Raises:
            LinkTimeout: If fewer than ``n`` bytes arrived; the bytes that
                did arrive are available as ``partial``
            SerialLinkError: If the port fails
        """
        data = self.read(n, timeout)
        if len(data) < n:
            raise LinkTimeout(
                f"Expected {n} bytes, got {len(data)}", partial=data
            )
        return data

    def pulse_reset(self) -> None:
        """
        Assert then deassert the reset line so the device reboots into its
        bootloader.

        Raises:
            SerialLinkError: If the control line cannot be driven
        """
        ser = self._require_open()
        try:
            setattr(ser, self.reset_line, True)
            if self.reset_hold:
                time.sleep(self.reset_hold)
            setattr(ser, self.reset_line, False)
        except PORT_ERRORS as e:
            raise SerialLinkError(f"Cannot toggle {self.reset_line.upper()}: {e}")
        logger.debug(f"Pulsed {self.reset_line.upper()}")

    def drain(self) -> bytes:
        """
        Clear any pending data in receive buffer (with short timeout).

        Returns:
            Bytes that were drained (for logging)
        """
        junk = self.read(256, timeout=0.005)
        if junk:
            logger.debug(f"Drained {len(junk)} bytes of junk from buffer")
        return junk


def list_ports() -> List[dict]:
    """Enumerate serial ports as dicts (device, name, description)."""
    import serial.tools.list_ports

    return [
        {
            "device": port.device,
            "name": port.name or "-",
            "description": port.description or "-",
        }
        for port in serial.tools.list_ports.comports()
    ]


# Convenient module-level shortcut
def open_link(
    port: str,
    baudrate: int = 115200,
    timeout: Optional[float] = 0.05,
    reset_line: str = "dtr",
) -> SerialLink:
    """
    Open a serial link.

    Args:
        port: Serial port name
        baudrate: Baud rate (default 115200)
        timeout: Default read timeout in seconds (default 0.05)
        reset_line: Control line wired to the MCU reset

    Returns:
        SerialLink instance (already open)
    """
    link = SerialLink(port, baudrate, timeout, reset_line=reset_line)
    link.open()
    return link
