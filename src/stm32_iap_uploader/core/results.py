"""
Result objects for core operations.

Provides a unified result structure the CLI uses to display outcomes and
pick the process exit code.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Any, Optional


class Stage(Enum):
    """Stage an operation failed in."""
    INPUT = "input"
    TRANSPORT = "transport"
    IDENTITY = "identity"
    TIMEOUT = "timeout"
    TRANSFER = "transfer"


EXIT_OK = 0
EXIT_INPUT = 1
# 2 is left to Typer/Click usage errors
EXIT_TRANSPORT = 3
EXIT_IDENTITY = 4
EXIT_TIMEOUT = 5
EXIT_TRANSFER = 6

EXIT_CODES: Dict[Stage, int] = {
    Stage.INPUT: EXIT_INPUT,
    Stage.TRANSPORT: EXIT_TRANSPORT,
    Stage.IDENTITY: EXIT_IDENTITY,
    Stage.TIMEOUT: EXIT_TIMEOUT,
    Stage.TRANSFER: EXIT_TRANSFER,
}


@dataclass
class OperationResult:
    """
    Unified result object for all core operations.

    Attributes:
        ok: Whether the operation completed successfully
        operation: Name of the operation (e.g., "upload", "probe")
        stage: Stage that failed, None on success
        model: Device identifier the operation targeted
        port: Serial port used
        bytes_len: Number of firmware bytes sent
        hashes: Dict of hash values (sha256 of the image)
        warnings: Non-blocking issues encountered
        errors: Blocking errors that caused failure
        metadata: Additional operation-specific data
        logs: Captured log lines from the operation
    """
    ok: bool
    operation: str
    stage: Optional[Stage] = None
    model: str = ""
    port: str = ""
    bytes_len: int = 0
    hashes: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        """Process exit code: 0 only on success, one code per failure stage."""
        if self.ok:
            return EXIT_OK
        if self.stage is None:
            return EXIT_INPUT
        return EXIT_CODES[self.stage]

    def add_warning(self, message: str) -> None:
        """Add a warning message."""
        self.warnings.append(message)

    def add_error(self, message: str, stage: Optional[Stage] = None) -> None:
        """Add an error message and mark result as failed."""
        self.errors.append(message)
        self.ok = False
        if stage is not None:
            self.stage = stage

    def to_summary(self) -> str:
        """
        Generate a human-readable summary string.

        Suitable for CLI output or simple logging.
        """
        status = "SUCCESS" if self.ok else "FAILED"
        lines = [f"[{status}] {self.operation}"]

        if self.stage is not None:
            lines.append(f"  Stage: {self.stage.value}")
        if self.model:
            lines.append(f"  Device: {self.model}")
        if self.port:
            lines.append(f"  Port: {self.port}")
        if self.bytes_len:
            lines.append(f"  Bytes: {self.bytes_len:,}")

        if self.hashes:
            for name, value in self.hashes.items():
                lines.append(f"  {name}: {value[:16]}...")

        if self.warnings:
            lines.append("  Warnings:")
            for warn in self.warnings:
                lines.append(f"    - {warn}")

        if self.errors:
            lines.append("  Errors:")
            for err in self.errors:
                lines.append(f"    - {err}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "ok": self.ok,
            "operation": self.operation,
            "stage": self.stage.value if self.stage else None,
            "exit_code": self.exit_code,
            "model": self.model,
            "port": self.port,
            "bytes_len": self.bytes_len,
            "hashes": self.hashes,
            "warnings": self.warnings,
            "errors": self.errors,
            "metadata": self.metadata,
            "logs": self.logs,
        }

    @classmethod
    def success(
        cls,
        operation: str,
        model: str = "",
        bytes_len: int = 0,
        **kwargs,
    ) -> "OperationResult":
        """Create a successful result."""
        return cls(
            ok=True,
            operation=operation,
            model=model,
            bytes_len=bytes_len,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        operation: str,
        error: str,
        stage: Stage,
        model: str = "",
        **kwargs,
    ) -> "OperationResult":
        """Create a failed result."""
        result = cls(
            ok=False,
            operation=operation,
            stage=stage,
            model=model,
            **kwargs,
        )
        result.errors.append(error)
        return result
