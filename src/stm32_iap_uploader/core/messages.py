"""
Standardized warning and message system for the IAP uploader.

Provides structured warning items with stable codes so the CLI can show
the same remediation hints for the same conditions.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Dict, Any

from .results import OperationResult, Stage


class MessageLevel(Enum):
    """Severity level for messages."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class WarningCode(Enum):
    """Stable warning codes for known conditions."""
    # Connection
    W_SERIAL_ERROR = "W_SERIAL_ERROR"
    W_SERIAL_TIMEOUT = "W_SERIAL_TIMEOUT"

    # Handshake
    W_NO_BEL = "W_NO_BEL"
    W_DEVICE_MISMATCH = "W_DEVICE_MISMATCH"
    W_ID_INCOMPLETE = "W_ID_INCOMPLETE"
    W_READY_TIMEOUT = "W_READY_TIMEOUT"
    W_UNBOUNDED_WAIT = "W_UNBOUNDED_WAIT"

    # Transfer
    W_TRANSFER_FAILED = "W_TRANSFER_FAILED"

    # Image
    W_FIRMWARE_INVALID = "W_FIRMWARE_INVALID"
    W_VECTOR_TABLE = "W_VECTOR_TABLE"

    # Operation
    W_DRY_RUN = "W_DRY_RUN"

    # Generic
    W_UNKNOWN = "W_UNKNOWN"


# Default remediation hints for each warning code
WARNING_REMEDIATIONS: Dict[WarningCode, str] = {
    WarningCode.W_SERIAL_ERROR:
        "Close other serial apps (terminal, IDE monitor). Check USB cable and driver.",
    WarningCode.W_SERIAL_TIMEOUT:
        "Check TX/RX wiring and the baud rate.",
    WarningCode.W_NO_BEL:
        "Check that DTR/RTS is wired to NRST, or try --reset-line rts / --repulse.",
    WarningCode.W_DEVICE_MISMATCH:
        "Check --mcu-type against the identifier the bootloader reports.",
    WarningCode.W_ID_INCOMPLETE:
        "Device stopped mid-identifier. Check baud rate and line noise.",
    WarningCode.W_READY_TIMEOUT:
        "Flash erase may take longer on large parts. Raise --ready-timeout.",
    WarningCode.W_UNBOUNDED_WAIT:
        "A silent device will hang the upload. Press Ctrl+C to abort.",
    WarningCode.W_TRANSFER_FAILED:
        "Retry the upload. Lower the baud rate or raise --max-errors on noisy links.",
    WarningCode.W_FIRMWARE_INVALID:
        "Pass a raw .bin image (not .hex/.elf).",
    WarningCode.W_VECTOR_TABLE:
        "Image may be linked for a different start address. Check the linker script.",
    WarningCode.W_DRY_RUN:
        "Handshake only. Use 'upload' to flash the image.",
    WarningCode.W_UNKNOWN:
        "Re-run with --verbose for a byte-level trace.",
}


@dataclass
class WarningItem:
    """
    Structured warning message with stable code.

    Attributes:
        level: Severity (INFO, WARN, ERROR)
        code: Stable warning code for programmatic handling
        title: Short, user-facing title
        detail: Longer explanation of the issue
        remediation: Suggested action to resolve the issue
    """
    level: MessageLevel
    code: WarningCode
    title: str
    detail: str = ""
    remediation: str = ""

    def __post_init__(self):
        """Set default remediation if not provided."""
        if not self.remediation and self.code in WARNING_REMEDIATIONS:
            self.remediation = WARNING_REMEDIATIONS[self.code]

    @classmethod
    def info(cls, code: WarningCode, title: str, detail: str = "", remediation: str = "") -> "WarningItem":
        """Create an INFO-level warning."""
        return cls(MessageLevel.INFO, code, title, detail, remediation)

    @classmethod
    def warn(cls, code: WarningCode, title: str, detail: str = "", remediation: str = "") -> "WarningItem":
        """Create a WARN-level warning."""
        return cls(MessageLevel.WARN, code, title, detail, remediation)

    @classmethod
    def error(cls, code: WarningCode, title: str, detail: str = "", remediation: str = "") -> "WarningItem":
        """Create an ERROR-level warning."""
        return cls(MessageLevel.ERROR, code, title, detail, remediation)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON/display."""
        return {
            "level": self.level.value,
            "code": self.code.value,
            "title": self.title,
            "detail": self.detail,
            "remediation": self.remediation,
        }


def _code_for_text(msg: str) -> WarningCode:
    msg_lower = msg.lower()
    if "unbounded" in msg_lower or "no time limit" in msg_lower:
        return WarningCode.W_UNBOUNDED_WAIT
    if "vector table" in msg_lower or "reset handler" in msg_lower or "initial sp" in msg_lower:
        return WarningCode.W_VECTOR_TABLE
    if "handshake only" in msg_lower or "dry run" in msg_lower:
        return WarningCode.W_DRY_RUN
    if "timeout" in msg_lower:
        return WarningCode.W_SERIAL_TIMEOUT
    return WarningCode.W_UNKNOWN


def warnings_from_strings(
    warning_strings: List[str],
    default_level: MessageLevel = MessageLevel.WARN,
) -> List[WarningItem]:
    """
    Convert plain warning strings to WarningItem list.

    Attempts to detect known patterns and assign appropriate codes.
    """
    return [
        WarningItem(level=default_level, code=_code_for_text(msg), title=msg)
        for msg in warning_strings
    ]


def _code_for_error(result: OperationResult, err: str) -> WarningCode:
    reason = result.metadata.get("failure_reason", "")
    if result.stage is Stage.TRANSPORT:
        return WarningCode.W_SERIAL_ERROR
    if result.stage is Stage.INPUT:
        return WarningCode.W_FIRMWARE_INVALID
    if result.stage is Stage.TRANSFER:
        return WarningCode.W_TRANSFER_FAILED
    if reason == "id_timeout":
        return WarningCode.W_ID_INCOMPLETE
    if result.stage is Stage.IDENTITY:
        return WarningCode.W_DEVICE_MISMATCH
    if reason == "bel_timeout":
        return WarningCode.W_NO_BEL
    if reason == "ready_timeout":
        return WarningCode.W_READY_TIMEOUT
    return _code_for_text(err)


def result_to_warnings(result: OperationResult) -> List[WarningItem]:
    """
    Convert Result object's warnings and errors to WarningItem list.

    Args:
        result: OperationResult from core operations

    Returns:
        List of WarningItem objects
    """
    items = warnings_from_strings(result.warnings, MessageLevel.WARN)
    for err in result.errors:
        items.append(WarningItem.error(_code_for_error(result, err), err))
    return items

