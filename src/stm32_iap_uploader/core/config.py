"""
Uploader configuration.

Everything the handshake and transfer need beyond the port, the image and
the device id lives here, so tests and the CLI can vary it freely.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from stm32_iap_uploader.protocol.serial_link import RESET_LINES
from stm32_iap_uploader.protocol.xmodem_transfer import XMODEM_MODES

DEFAULT_BAUDRATE = 115200
DEFAULT_RETRIES = 3
DEFAULT_MAX_TRANSFER_ERRORS = 16


@dataclass
class UploaderConfig:
    """
    Attributes:
        baudrate: Serial baud rate
        poll_interval: Timeout of each individual read (seconds)
        retries: Reset/identify cycles allowed before validation fails
        bel_timeout: Ceiling for the BEL wait, None waits forever
        id_timeout: Ceiling for receiving the 6-byte id in one cycle
        ready_timeout: Ceiling for the 'C' wait (flash erase), None waits forever
        repulse_interval: Re-pulse reset when no BEL arrived for this long
        reset_line: Control line wired to the MCU reset ("dtr" or "rts")
        reset_hold: Seconds the reset line stays asserted
        xmodem_mode: "xmodem" or "xmodem1k"
        max_transfer_errors: Consecutive XMODEM errors tolerated
        transfer_timeout: Seconds to wait for the answer to each XMODEM packet
        max_image_size: Reject images larger than this (bytes), None = no limit
    """
    baudrate: int = DEFAULT_BAUDRATE
    poll_interval: float = 0.05
    retries: int = DEFAULT_RETRIES
    bel_timeout: Optional[float] = 10.0
    id_timeout: Optional[float] = 2.0
    ready_timeout: Optional[float] = 60.0
    repulse_interval: Optional[float] = None
    reset_line: str = "dtr"
    reset_hold: float = 0.0
    xmodem_mode: str = "xmodem"
    max_transfer_errors: int = DEFAULT_MAX_TRANSFER_ERRORS
    transfer_timeout: float = 10.0
    max_image_size: Optional[int] = None

    def __post_init__(self) -> None:
        if self.baudrate <= 0:
            raise ValueError(f"baudrate must be > 0, got {self.baudrate}")
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be > 0, got {self.poll_interval}")
        if self.retries < 1:
            raise ValueError(f"retries must be >= 1, got {self.retries}")
        for name in ("bel_timeout", "id_timeout", "ready_timeout", "repulse_interval"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be > 0 or None, got {value}")
        if self.reset_line not in RESET_LINES:
            raise ValueError(f"reset_line must be one of {RESET_LINES}, got {self.reset_line!r}")
        if self.reset_hold < 0:
            raise ValueError(f"reset_hold must be >= 0, got {self.reset_hold}")
        if self.xmodem_mode not in XMODEM_MODES:
            raise ValueError(
                f"xmodem_mode must be one of {sorted(XMODEM_MODES)}, got {self.xmodem_mode!r}"
            )
        if self.max_transfer_errors < 1:
            raise ValueError(f"max_transfer_errors must be >= 1, got {self.max_transfer_errors}")
        if self.transfer_timeout <= 0:
            raise ValueError(f"transfer_timeout must be > 0, got {self.transfer_timeout}")
        if self.max_image_size is not None and self.max_image_size <= 0:
            raise ValueError(f"max_image_size must be > 0 or None, got {self.max_image_size}")

    @property
    def unbounded_waits(self) -> list:
        """Names of waits that have no ceiling."""
        return [
            name for name in ("bel_timeout", "ready_timeout")
            if getattr(self, name) is None
        ]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
