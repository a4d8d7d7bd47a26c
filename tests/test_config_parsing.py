"""Tests for configuration validation and operator value parsing."""

import pytest

from stm32_iap_uploader.core.config import UploaderConfig
from stm32_iap_uploader.core.parsing import (
    parse_address,
    parse_device_id,
    parse_duration,
    parse_reset_line,
)


class TestParseDeviceId:
    def test_six_ascii_characters(self):
        assert parse_device_id("STM32F") == b"STM32F"

    def test_case_is_preserved(self):
        assert parse_device_id("stm32f") == b"stm32f"

    @pytest.mark.parametrize("value", ["", "STM32", "STM32F1", " STM32F"])
    def test_wrong_length_raises(self, value):
        with pytest.raises(ValueError, match="exactly 6"):
            parse_device_id(value)

    def test_non_ascii_raises(self):
        with pytest.raises(ValueError, match="ASCII"):
            parse_device_id("STM32É")


class TestParseDuration:
    def test_seconds(self):
        assert parse_duration("30") == 30.0
        assert parse_duration(" 2.5 ") == 2.5

    @pytest.mark.parametrize("value", [None, "none", "None", "unbounded", "inf", "forever"])
    def test_unbounded(self, value):
        assert parse_duration(value) is None

    @pytest.mark.parametrize("value", ["0", "-1", "soon", ""])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)


class TestParseAddress:
    def test_hex_prefix(self):
        assert parse_address("0x08004000") == 0x08004000
        assert parse_address("0X08004000") == 0x08004000

    def test_hex_suffix(self):
        assert parse_address("8004000h") == 0x08004000

    def test_decimal(self):
        assert parse_address("134217728") == 0x08000000

    def test_invalid(self):
        with pytest.raises(ValueError, match="Invalid address"):
            parse_address("flash")


class TestParseResetLine:
    def test_normalizes_case(self):
        assert parse_reset_line("DTR") == "dtr"
        assert parse_reset_line(" rts ") == "rts"

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_reset_line("cts")


class TestUploaderConfig:
    def test_defaults(self):
        cfg = UploaderConfig()
        assert cfg.baudrate == 115200
        assert cfg.retries == 3
        assert cfg.max_transfer_errors == 16
        assert cfg.ready_timeout is not None
        assert cfg.unbounded_waits == []

    def test_unbounded_waits_are_listed(self):
        cfg = UploaderConfig(bel_timeout=None, ready_timeout=None)
        assert cfg.unbounded_waits == ["bel_timeout", "ready_timeout"]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"baudrate": 0},
            {"retries": 0},
            {"poll_interval": 0},
            {"ready_timeout": 0},
            {"id_timeout": -1},
            {"reset_line": "cts"},
            {"xmodem_mode": "ymodem"},
            {"max_transfer_errors": 0},
            {"max_image_size": 0},
        ],
    )
    def test_invalid_values_raise(self, kwargs):
        with pytest.raises(ValueError):
            UploaderConfig(**kwargs)

    def test_to_dict(self):
        assert UploaderConfig(retries=5).to_dict()["retries"] == 5
