"""Device protocol layer - serial link, IAP handshake and XMODEM transfer."""

from .serial_link import (
    SerialLink,
    SerialLinkError,
    LinkTimeout,
    list_ports,
    open_link,
)
from .handshake import (
    HandshakeController,
    HandshakeSession,
    HandshakeState,
    FailureReason,
    BoundedWait,
    format_device_id,
    BEL,
    ACK,
    NAK,
    READY,
    DEVICE_ID_LEN,
)
from .xmodem_transfer import (
    BulkTransfer,
    XmodemTransfer,
    TransferError,
    XMODEM_MODES,
)

__all__ = [
    # Link
    "SerialLink",
    "SerialLinkError",
    "LinkTimeout",
    "list_ports",
    "open_link",
    # Handshake
    "HandshakeController",
    "HandshakeSession",
    "HandshakeState",
    "FailureReason",
    "BoundedWait",
    "format_device_id",
    "BEL",
    "ACK",
    "NAK",
    "READY",
    "DEVICE_ID_LEN",
    # Bulk transfer
    "BulkTransfer",
    "XmodemTransfer",
    "TransferError",
    "XMODEM_MODES",
]
