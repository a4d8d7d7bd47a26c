"""
Firmware image handling for IAP uploads.

Provides:
- Loading a raw .bin image from disk (size, sha256)
- A sequential reader for the bulk transfer
- A Cortex-M vector table sanity check for the intended load address
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, Optional

FLASH_BASE = 0x08000000
SRAM_LOW = 0x20000000
SRAM_HIGH = 0x20080000


class FirmwareError(Exception):
    """Firmware image missing, unreadable or unusable."""


@dataclass(frozen=True)
class FirmwareImage:
    path: Path
    size: int
    sha256: str

    @classmethod
    def from_path(cls, path: str | Path, *, max_size: Optional[int] = None) -> "FirmwareImage":
        p = Path(path)
        if not p.exists():
            raise FirmwareError(f"Firmware file not found: {p}")
        if not p.is_file():
            raise FirmwareError(f"Firmware path is not a file: {p}")

        digest = hashlib.sha256()
        size = 0
        try:
            with p.open("rb") as fh:
                for chunk in iter(lambda: fh.read(65536), b""):
                    digest.update(chunk)
                    size += len(chunk)
        except OSError as exc:
            raise FirmwareError(f"Cannot read firmware {p}: {exc}") from exc

        if size == 0:
            raise FirmwareError(f"Firmware file is empty: {p}")
        if max_size is not None and size > max_size:
            raise FirmwareError(f"Firmware too large: {size} bytes (limit {max_size} bytes)")
        return cls(path=p, size=size, sha256=digest.hexdigest())

    def open(self) -> BinaryIO:
        """Open a sequential reader over the image."""
        try:
            return self.path.open("rb")
        except OSError as exc:
            raise FirmwareError(f"Cannot open firmware {self.path}: {exc}") from exc

    def read_header(self, length: int = 8) -> bytes:
        with self.open() as fh:
            return fh.read(length)


def analyze_vector_table(
    header: bytes,
    *,
    start_address: int = FLASH_BASE,
    image_len: Optional[int] = None,
) -> Dict[str, str]:
    """
    Heuristic validation for Cortex-M images.

    Only checks that the image *looks like* it is linked for
    `start_address`:
    - vector[0] initial SP should be in SRAM (0x2000_0000..0x2008_0000, broad)
    - vector[1] reset handler should be Thumb (LSB=1) and point inside the
      image once it is placed at `start_address`.
    """
    span = image_len if image_len is not None else len(header)
    res: Dict[str, str] = {
        "plausible": "no",
        "reason": "",
        "start_address": f"0x{start_address:08X}",
        "image_len": str(span),
    }
    if len(header) < 8:
        res["reason"] = "image too small to contain a vector table"
        return res

    sp, reset = struct.unpack_from("<II", header, 0)
    reset_addr = reset & ~1
    res["sp"] = f"0x{sp:08X}"
    res["reset"] = f"0x{reset:08X}"
    res["reset_addr"] = f"0x{reset_addr:08X}"
    res["reset_thumb"] = "yes" if (reset & 1) else "no"

    if not SRAM_LOW <= sp <= SRAM_HIGH:
        res["reason"] = f"initial SP not in expected SRAM range (0x{SRAM_LOW:08X}..0x{SRAM_HIGH:08X})"
        return res

    if (reset & 1) == 0:
        res["reason"] = "reset handler is not Thumb (LSB is 0)"
        return res

    low = start_address
    high = start_address + span
    if not (low <= reset_addr < high):
        res["reason"] = f"reset handler not within [{low:#010x}, {high:#010x})"
        return res

    res["plausible"] = "yes"
    res["reason"] = "vector table looks consistent for start address"
    return res

