"""
Core module for the IAP uploader.

This module provides the single source of truth for:
- Uploader configuration (config.py)
- Operator value parsing (parsing.py)
- Result objects and exit codes (results.py)
- Upload/probe/monitor workflows (actions.py)
- Standardized warnings/messages (messages.py)

The CLI should call into this module rather than implementing its own
logic.
"""

from .config import UploaderConfig
from .parsing import parse_device_id, parse_duration, parse_address, parse_reset_line
from .results import OperationResult, Stage, EXIT_CODES
from .messages import (
    MessageLevel,
    WarningCode,
    WarningItem,
    warnings_from_strings,
    result_to_warnings,
)
from .actions import (
    FirmwareUploader,
    check_image,
)

__all__ = [
    # Config
    "UploaderConfig",
    # Parsing
    "parse_device_id",
    "parse_duration",
    "parse_address",
    "parse_reset_line",
    # Results
    "OperationResult",
    "Stage",
    "EXIT_CODES",
    # Messages
    "MessageLevel",
    "WarningCode",
    "WarningItem",
    "warnings_from_strings",
    "result_to_warnings",
    # Actions
    "FirmwareUploader",
    "check_image",
]
