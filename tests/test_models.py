"""Tests for SessionConfig validation and environment loading."""

import pytest

from spectryx_lib import protocol
from spectryx_lib.models import Phase, SessionConfig


def test_defaults():
    """Test that defaults match the device protocol."""
    config = SessionConfig()

    assert config.device == "/dev/ttyUSB0"
    assert config.baud == 115200
    assert config.sample_period_s == 1.0
    assert config.settle_s == protocol.STARTUP_SETTLE_S
    assert config.debug is False


def test_watchdog_is_twelve_periods():
    """Test that the watchdog window scales with the sample period."""
    assert SessionConfig(sample_period_s=1.0).watchdog_s == 12.0
    assert SessionConfig(sample_period_s=0.5).watchdog_s == 6.0


@pytest.mark.parametrize("kwargs", [
    {"device": ""},
    {"baud": 0},
    {"sample_period_s": 0},
    {"sample_period_s": -1.0},
    {"watchdog_periods": 0},
    {"settle_s": -0.1},
    {"reset_pulse_s": -0.1},
])
def test_invalid_config_rejected(kwargs):
    """Test that nonsensical values are rejected at construction."""
    with pytest.raises(ValueError):
        SessionConfig(**kwargs)


def test_config_is_immutable():
    """Test that a config cannot be changed after construction."""
    config = SessionConfig()
    with pytest.raises(Exception):
        config.baud = 9600


def test_from_env(monkeypatch):
    """Test that SPECTRYX_* variables override the defaults."""
    monkeypatch.setenv("SPECTRYX_DEVICE", "FTDI_FT232R")
    monkeypatch.setenv("SPECTRYX_BAUD", "57600")
    monkeypatch.setenv("SPECTRYX_PERIOD_S", "0.25")
    monkeypatch.setenv("SPECTRYX_SETTLE_S", "0")
    monkeypatch.setenv("SPECTRYX_DEBUG", "true")

    config = SessionConfig.from_env()

    assert config.device == "FTDI_FT232R"
    assert config.baud == 57600
    assert config.sample_period_s == 0.25
    assert config.settle_s == 0.0
    assert config.debug is True
    assert config.watchdog_s == 3.0


def test_from_env_defaults(monkeypatch):
    """Test that unset variables fall back to the defaults."""
    for name in ("SPECTRYX_DEVICE", "SPECTRYX_BAUD", "SPECTRYX_PERIOD_S",
                 "SPECTRYX_SETTLE_S", "SPECTRYX_DEBUG"):
        monkeypatch.delenv(name, raising=False)

    assert SessionConfig.from_env() == SessionConfig()


def test_phase_values():
    """Test the phase names reported by the status endpoint."""
    assert Phase.AWAITING_SCALE.value == "awaiting_scale"
    assert Phase.AWAITING_SAMPLE.value == "awaiting_sample"
