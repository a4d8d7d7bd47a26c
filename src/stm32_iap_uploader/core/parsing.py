"""
Centralized parsing helpers for operator-supplied values.

The CLI wraps these and converts ValueError into typer.BadParameter.
"""

from typing import Optional

from stm32_iap_uploader.protocol.handshake import DEVICE_ID_LEN
from stm32_iap_uploader.protocol.serial_link import RESET_LINES

UNBOUNDED_WORDS = ("none", "unbounded", "inf", "infinite", "forever")


def parse_device_id(value: str) -> bytes:
    """
    Parse the expected device identifier.

    The bootloader reports exactly 6 ASCII bytes (e.g. "STM32F"); the value
    is compared byte-for-byte, so no trimming or case folding is applied.

    Raises:
        ValueError: If value is not exactly 6 ASCII characters.
    """
    try:
        raw = value.encode("ascii")
    except UnicodeEncodeError:
        raise ValueError(f"Invalid MCU type '{value}'. Use ASCII characters only.")
    if len(raw) != DEVICE_ID_LEN:
        raise ValueError(
            f"Invalid MCU type '{value}'. Expected exactly {DEVICE_ID_LEN} characters, "
            f"got {len(raw)} (e.g. STM32F)."
        )
    return raw


def parse_duration(value: Optional[str]) -> Optional[float]:
    """
    Parse a wait ceiling in seconds.

    Accepts:
        - Seconds: "30", "2.5"
        - "none", "unbounded", "inf" (and None) for no ceiling

    Returns:
        Seconds as float, or None for unbounded.

    Raises:
        ValueError: If value is not a positive number or an unbounded keyword.
    """
    if value is None:
        return None

    value = value.strip()
    if value.lower() in UNBOUNDED_WORDS:
        return None

    try:
        seconds = float(value)
    except ValueError:
        raise ValueError(
            f"Invalid duration '{value}'. Use seconds (30, 2.5) or 'none' for no limit."
        )
    if seconds <= 0:
        raise ValueError(f"Invalid duration '{value}'. Must be greater than zero.")
    return seconds


def parse_address(value: str) -> int:
    """
    Parse a flash address.

    Accepts decimal ("134217728"), 0x-prefixed hex ("0x08000000") or
    h-suffixed hex ("8000000h").

    Raises:
        ValueError: If value cannot be parsed.
    """
    text = value.strip()
    try:
        if text.lower().startswith("0x"):
            return int(text, 16)
        if text.lower().endswith("h"):
            return int(text[:-1], 16)
        return int(text)
    except ValueError:
        raise ValueError(
            f"Invalid address '{value}'. Use hex (0x08000000), suffix (8000000h) or decimal."
        )


def parse_reset_line(value: str) -> str:
    """Normalize a reset line name ("DTR"/"rts")."""
    line = value.strip().lower()
    if line not in RESET_LINES:
        raise ValueError(
            f"Invalid reset line '{value}'. Use one of: {', '.join(RESET_LINES)}."
        )
    return line
