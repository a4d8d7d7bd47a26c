"""
Bulk firmware transfer over XMODEM.

The handshake leaves the device requesting XMODEM-CRC ('C'); framing,
CRC and retransmission are handled by the ``xmodem`` package. The
uploader only sees the BulkTransfer contract: ``send(link, source)``
returns the number of bytes sent or raises TransferError.
"""

import logging
from typing import BinaryIO, Callable, Optional, Protocol

try:
    import xmodem
except ImportError:
    raise ImportError("xmodem required: pip install xmodem")

logger = logging.getLogger(__name__)

XMODEM_MODES = {
    "xmodem": 128,
    "xmodem1k": 1024,
}

ProgressCallback = Callable[[int, int, int], None]


class TransferError(Exception):
    """Bulk transfer aborted (error budget exhausted or receiver cancelled)"""
    pass


class BulkTransfer(Protocol):
    """Anything that can push a firmware stream over an open link."""

    def send(self, link, source: BinaryIO) -> int:
        ...


class _CountingReader:
    """Wrap a binary stream and count the bytes handed out."""

    def __init__(self, stream: BinaryIO):
        self.stream = stream
        self.count = 0

    def read(self, size: int = -1) -> bytes:
        data = self.stream.read(size)
        self.count += len(data)
        return data


class XmodemTransfer:
    """
    XMODEM sender bound to a SerialLink.

    Example:
        transfer = XmodemTransfer(mode="xmodem1k", max_errors=16)
        with open("app.bin", "rb") as fh:
            sent = transfer.send(link, fh)
    """

    def __init__(
        self,
        *,
        mode: str = "xmodem",
        max_errors: int = 16,
        timeout: float = 10.0,
        callback: Optional[ProgressCallback] = None,
    ):
        """
        Args:
            mode: "xmodem" (128-byte blocks) or "xmodem1k" (1024-byte blocks)
            max_errors: Consecutive errors tolerated before aborting
            timeout: Seconds to wait for the receiver's answer to each packet
            callback: Progress callback(total_packets, success_count, error_count)
        """
        if mode not in XMODEM_MODES:
            raise ValueError(f"mode must be one of {sorted(XMODEM_MODES)}, got {mode!r}")
        if max_errors < 1:
            raise ValueError(f"max_errors must be >= 1, got {max_errors}")
        self.mode = mode
        self.max_errors = max_errors
        self.timeout = timeout
        self.callback = callback

    @property
    def packet_size(self) -> int:
        return XMODEM_MODES[self.mode]

    def send(self, link, source: BinaryIO) -> int:
        """
        Send ``source`` to the device.

        Returns:
            Number of firmware bytes sent (padding excluded)

        Raises:
            TransferError: If the transfer was aborted
            SerialLinkError: If the link fails mid-transfer
        """

        def getc(size, timeout=1):
            return link.read(size, timeout) or None

        def putc(data, timeout=1):
            link.write(data)
            return len(data)

        reader = _CountingReader(source)
        modem = xmodem.XMODEM(getc, putc, mode=self.mode)
        logger.info(
            f"Flashing binary ({self.mode}, {self.packet_size}-byte blocks, "
            f"max {self.max_errors} errors)"
        )
        ok = modem.send(
            reader,
            retry=self.max_errors,
            timeout=self.timeout,
            callback=self.callback,
        )
        if not ok:
            raise TransferError(
                f"XMODEM transfer aborted after {reader.count} bytes "
                f"(receiver cancelled or more than {self.max_errors} errors)"
            )

        logger.info(f"Flashing complete, {reader.count} bytes sent")
        return reader.count
