"""Shared fakes: a scripted device link, a manual clock and a bulk transfer stub."""

import pytest

from stm32_iap_uploader.protocol.serial_link import LinkTimeout
from stm32_iap_uploader.protocol.xmodem_transfer import TransferError


class FakeClock:
    """Monotonic clock that only moves when a read times out."""

    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLink:
    """
    Device side of a serial link, driven by a script.

    Script items are bytes (delivered in order) or None (one read that
    times out). Once the script is exhausted every read times out.
    ``stale`` is input left over from before the port was opened; only
    drain() returns it.
    """

    MAX_IDLE_READS = 100_000

    def __init__(self, script=(), clock=None, fail_on_write=None, stale=b""):
        self.incoming = []
        for item in script:
            if item is None:
                self.incoming.append(None)
            elif isinstance(item, int):
                self.incoming.append(item)
            else:
                self.incoming.extend(item)
        self.clock = clock or FakeClock()
        self.fail_on_write = fail_on_write
        self.stale = bytes(stale)
        self.events = []
        self.writes = []
        self.resets = 0
        self.opened = False
        self.closed = False
        self._idle = 0

    @property
    def written(self) -> bytes:
        return b"".join(self.writes)

    def open(self) -> None:
        self.opened = True

    def close(self) -> None:
        self.closed = True

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def pulse_reset(self) -> None:
        self.resets += 1
        self.events.append("reset")

    def drain(self) -> bytes:
        junk, self.stale = self.stale, b""
        self.events.append("drain")
        return junk

    def write(self, data: bytes) -> None:
        if self.fail_on_write is not None:
            raise self.fail_on_write
        self.writes.append(bytes(data))

    def read(self, size, timeout=None) -> bytes:
        out = bytearray()
        while len(out) < size and self.incoming and self.incoming[0] is not None:
            out.append(self.incoming.pop(0))
        if len(out) < size:
            if self.incoming and self.incoming[0] is None:
                self.incoming.pop(0)
            self.clock.advance(timeout if timeout is not None else 0.05)
        if out:
            self._idle = 0
        else:
            self._idle += 1
            if self._idle > self.MAX_IDLE_READS:
                raise RuntimeError("device script exhausted and no deadline configured")
        return bytes(out)

    def read_byte(self, timeout=None) -> int:
        data = self.read(1, timeout)
        if not data:
            raise LinkTimeout("No byte received")
        return data[0]

    def read_exact(self, n, timeout=None) -> bytes:
        data = self.read(n, timeout)
        if len(data) < n:
            raise LinkTimeout(f"Expected {n} bytes, got {len(data)}", partial=data)
        return data


class FakeTransfer:
    """Records send() calls; returns the number of bytes read or raises."""

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def send(self, link, source) -> int:
        data = source.read()
        self.calls.append((link, data))
        if self.error is not None:
            raise TransferError(self.error)
        return len(data)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_link(clock):
    """Build a FakeLink sharing the test's clock."""

    def _make(script=(), **kwargs):
        return FakeLink(script, clock=clock, **kwargs)

    return _make


@pytest.fixture
def fake_transfer():
    return FakeTransfer()


@pytest.fixture
def failing_transfer():
    return FakeTransfer(error="XMODEM transfer aborted after 256 bytes (receiver cancelled or more than 16 errors)")


@pytest.fixture
def firmware_file(tmp_path):
    """A small raw image with a plausible Cortex-M vector table at 0x08000000."""
    header = (0x20005000).to_bytes(4, "little") + (0x08000101).to_bytes(4, "little")
    data = header + bytes(range(256)) * 2
    path = tmp_path / "app.bin"
    path.write_bytes(data)
    return path
