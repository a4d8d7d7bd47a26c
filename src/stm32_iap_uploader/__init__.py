"""
STM32 IAP Uploader - flash firmware through a UART IAP bootloader

Resets the target, checks its 6-byte MCU identifier, waits for the
bootloader's transfer request and sends the image over XMODEM.
"""

__version__ = "0.1.0"

from stm32_iap_uploader.protocol import SerialLink, HandshakeController, XmodemTransfer
from stm32_iap_uploader.core import FirmwareUploader, UploaderConfig

__all__ = [
    "SerialLink",
    "HandshakeController",
    "XmodemTransfer",
    "FirmwareUploader",
    "UploaderConfig",
    "__version__",
]
