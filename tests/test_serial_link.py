"""Tests for the pyserial-backed link."""

import pytest
from unittest.mock import MagicMock

import serial

from stm32_iap_uploader.core.actions import FirmwareUploader
from stm32_iap_uploader.core.results import EXIT_TRANSPORT, Stage
from stm32_iap_uploader.protocol import serial_link
from stm32_iap_uploader.protocol.serial_link import (
    LinkTimeout,
    SerialLink,
    SerialLinkError,
    open_link,
)


class FakeSerial:
    """Minimal serial.Serial stand-in that records control line edges."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.timeout = kwargs.get("timeout")
        self.is_open = True
        self.rx = bytearray()
        self.tx = bytearray()
        self.line_edges = []
        self.read_timeouts = []
        self.short_write = False
        self.line_error = None
        self.reset_input_buffer = MagicMock()
        self.reset_output_buffer = MagicMock()

    def __setattr__(self, name, value):
        if name in ("dtr", "rts"):
            if self.line_error is not None:
                raise self.line_error
            self.line_edges.append((name, value))
        object.__setattr__(self, name, value)

    def read(self, size):
        self.read_timeouts.append(self.timeout)
        data = bytes(self.rx[:size])
        del self.rx[:size]
        return data

    def write(self, data):
        self.tx.extend(data)
        return len(data) - 1 if self.short_write else len(data)

    def close(self):
        self.is_open = False


@pytest.fixture
def fake_serial(monkeypatch):
    created = []

    def factory(**kwargs):
        port = FakeSerial(**kwargs)
        created.append(port)
        return port

    monkeypatch.setattr(serial_link.serial, "Serial", factory)
    return created


class TestOpenClose:
    def test_open_configures_8n1_and_clears_buffers(self, fake_serial):
        link = SerialLink("/dev/ttyUSB0", baudrate=57600, timeout=0.1)
        link.open()

        port = fake_serial[0]
        assert port.kwargs["port"] == "/dev/ttyUSB0"
        assert port.kwargs["baudrate"] == 57600
        assert port.kwargs["bytesize"] == 8
        assert port.kwargs["parity"] == "N"
        assert port.kwargs["stopbits"] == 1
        assert port.kwargs["timeout"] == 0.1
        port.reset_input_buffer.assert_called_once()
        port.reset_output_buffer.assert_called_once()
        assert link.is_open

    def test_open_failure_is_transport_error(self, monkeypatch):
        monkeypatch.setattr(
            serial_link.serial,
            "Serial",
            MagicMock(side_effect=serial.SerialException("could not open port")),
        )
        with pytest.raises(SerialLinkError, match="Cannot open port COM9"):
            SerialLink("COM9").open()

    def test_context_manager_closes(self, fake_serial):
        with SerialLink("/dev/ttyUSB0") as link:
            assert link.is_open
        assert not fake_serial[0].is_open

    def test_open_link_returns_open_link(self, fake_serial):
        link = open_link("/dev/ttyUSB0", 9600)
        assert link.is_open
        assert fake_serial[0].kwargs["baudrate"] == 9600

    def test_io_before_open_fails(self):
        link = SerialLink("/dev/ttyUSB0")
        with pytest.raises(SerialLinkError, match="not open"):
            link.write(b"\x06")
        with pytest.raises(SerialLinkError, match="not open"):
            link.pulse_reset()

    def test_invalid_reset_line(self):
        with pytest.raises(ValueError):
            SerialLink("/dev/ttyUSB0", reset_line="cts")


class TestReads:
    def test_read_byte(self, fake_serial):
        link = open_link("/dev/ttyUSB0")
        fake_serial[0].rx.extend(b"\x07")
        assert link.read_byte() == 0x07

    def test_read_byte_timeout_is_not_transport_error(self, fake_serial):
        link = open_link("/dev/ttyUSB0")
        with pytest.raises(LinkTimeout) as ei:
            link.read_byte(timeout=0.01)
        assert not isinstance(ei.value, SerialLinkError)

    def test_read_exact_reports_partial(self, fake_serial):
        link = open_link("/dev/ttyUSB0")
        fake_serial[0].rx.extend(b"STM")
        with pytest.raises(LinkTimeout) as ei:
            link.read_exact(6, timeout=0.2)
        assert ei.value.partial == b"STM"

    def test_read_exact_full(self, fake_serial):
        link = open_link("/dev/ttyUSB0")
        fake_serial[0].rx.extend(b"STM32F")
        assert link.read_exact(6) == b"STM32F"

    def test_timeout_override_is_restored(self, fake_serial):
        link = open_link("/dev/ttyUSB0", timeout=0.05)
        port = fake_serial[0]
        link.read(1, timeout=2.0)
        assert port.read_timeouts[-1] == 2.0
        assert port.timeout == 0.05

    def test_read_error_is_transport_error(self, fake_serial):
        link = open_link("/dev/ttyUSB0")
        object.__setattr__(
            fake_serial[0], "read", MagicMock(side_effect=serial.SerialException("device reports readiness to read but returned no data"))
        )
        with pytest.raises(SerialLinkError, match="Read error"):
            link.read(1)

    def test_drain_discards_pending(self, fake_serial):
        link = open_link("/dev/ttyUSB0")
        fake_serial[0].rx.extend(b"junk")
        assert link.drain() == b"junk"
        assert fake_serial[0].rx == bytearray()


class TestWrites:
    def test_write(self, fake_serial):
        link = open_link("/dev/ttyUSB0")
        link.write(b"\x06")
        assert bytes(fake_serial[0].tx) == b"\x06"

    def test_incomplete_write(self, fake_serial):
        link = open_link("/dev/ttyUSB0")
        fake_serial[0].short_write = True
        with pytest.raises(SerialLinkError, match="Incomplete write"):
            link.write(b"\x06\x06")


class TestPulseReset:
    def test_pulses_dtr(self, fake_serial):
        link = open_link("/dev/ttyUSB0")
        link.pulse_reset()
        assert fake_serial[0].line_edges == [("dtr", True), ("dtr", False)]

    def test_pulses_rts(self, fake_serial):
        link = SerialLink("/dev/ttyUSB0", reset_line="rts")
        link.open()
        link.pulse_reset()
        assert fake_serial[0].line_edges == [("rts", True), ("rts", False)]

    def test_control_line_ioctl_failure_is_transport_error(self, fake_serial):
        link = open_link("/dev/ttyUSB0")
        fake_serial[0].line_error = OSError(5, "Input/output error")
        with pytest.raises(SerialLinkError, match="Cannot toggle DTR"):
            link.pulse_reset()


class TestUnpluggedAdapter:
    """OS-level errors from pyserial surface as SerialLinkError."""

    def test_buffer_flush_failure_on_open(self, monkeypatch):
        created = []

        def factory(**kwargs):
            port = FakeSerial(**kwargs)
            port.reset_input_buffer = MagicMock(side_effect=OSError(5, "Input/output error"))
            created.append(port)
            return port

        monkeypatch.setattr(serial_link.serial, "Serial", factory)
        link = SerialLink("/dev/ttyUSB0")

        with pytest.raises(SerialLinkError, match="Cannot open port"):
            link.open()
        assert not created[0].is_open
        assert not link.is_open

    def test_read_oserror_is_transport_error(self, fake_serial):
        link = open_link("/dev/ttyUSB0")
        object.__setattr__(fake_serial[0], "read", MagicMock(side_effect=OSError(5, "Input/output error")))
        with pytest.raises(SerialLinkError, match="Read error"):
            link.read(1)

    def test_write_oserror_is_transport_error(self, fake_serial):
        link = open_link("/dev/ttyUSB0")
        object.__setattr__(fake_serial[0], "write", MagicMock(side_effect=OSError(5, "Input/output error")))
        with pytest.raises(SerialLinkError, match="Write error"):
            link.write(b"\x06")

    def test_upload_reports_transport_stage(self, monkeypatch, fake_serial, firmware_file):
        def failing_port(**kwargs):
            port = FakeSerial(**kwargs)
            port.line_error = OSError(5, "Input/output error")
            fake_serial.append(port)
            return port

        monkeypatch.setattr(serial_link.serial, "Serial", failing_port)

        result = FirmwareUploader().upload("/dev/ttyUSB0", str(firmware_file), b"STM32F")

        assert result.stage is Stage.TRANSPORT
        assert result.exit_code == EXIT_TRANSPORT
        assert "Input/output error" in result.errors[0]
        assert not fake_serial[0].is_open


class TestTimeoutOverride:
    def test_override_restored_when_default_is_blocking(self, fake_serial):
        link = open_link("/dev/ttyUSB0", timeout=None)
        port = fake_serial[0]

        link.read(1, timeout=0.2)
        link.read(1)

        assert port.read_timeouts == [0.2, None]
        assert port.timeout is None
        assert port.kwargs["write_timeout"] == 1.0
