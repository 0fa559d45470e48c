"""Data models for the Spectryx Blue monitor library."""

import os
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from spectryx_lib import protocol

# 640 integers; a tuple so a published vector can never be mutated in place
SampleVector = Tuple[int, ...]


class Phase(Enum):
    """Session state machine phases."""

    AWAITING_SCALE = "awaiting_scale"
    AWAITING_SAMPLE = "awaiting_sample"


@dataclass(frozen=True)
class SessionConfig:
    """Immutable configuration for a spectrometer session.

    Attributes:
        device: Absolute device path, or a substring of an entry in by_id_dir.
        baud: Serial baud rate.
        sample_period_s: Delay between consecutive device requests.
        watchdog_periods: Sample periods of silence before a reconnect is forced.
        reset_pulse_s: How long DTR is held low after opening the port.
        settle_s: Time allowed for the device to boot after a reset.
        debug: Log every line and vector at DEBUG level.
        by_id_dir: Directory of symlinks used to resolve non-path selectors.
    """

    device: str = protocol.DEFAULT_DEVICE
    baud: int = protocol.DEFAULT_BAUD
    sample_period_s: float = protocol.DEFAULT_SAMPLE_PERIOD_S
    watchdog_periods: int = protocol.WATCHDOG_PERIODS
    reset_pulse_s: float = protocol.RESET_PULSE_S
    settle_s: float = protocol.STARTUP_SETTLE_S
    debug: bool = False
    by_id_dir: str = protocol.SERIAL_BY_ID_DIR

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not self.device:
            raise ValueError("device selector must not be empty")
        if self.baud <= 0:
            raise ValueError(f"baud must be positive, got {self.baud}")
        if self.sample_period_s <= 0:
            raise ValueError(f"sample_period_s must be positive, got {self.sample_period_s}")
        if self.watchdog_periods < 1:
            raise ValueError(f"watchdog_periods must be >= 1, got {self.watchdog_periods}")
        if self.reset_pulse_s < 0 or self.settle_s < 0:
            raise ValueError("reset_pulse_s and settle_s must not be negative")

    @property
    def watchdog_s(self) -> float:
        """Seconds without a line before the session is considered stuck."""
        return self.sample_period_s * self.watchdog_periods

    @classmethod
    def from_env(cls) -> "SessionConfig":
        """Build a config from SPECTRYX_* environment variables.

        Reads SPECTRYX_DEVICE, SPECTRYX_BAUD, SPECTRYX_PERIOD_S,
        SPECTRYX_SETTLE_S and SPECTRYX_DEBUG. Unset variables fall back to
        the protocol defaults.
        """
        return cls(
            device=os.getenv("SPECTRYX_DEVICE", protocol.DEFAULT_DEVICE),
            baud=int(os.getenv("SPECTRYX_BAUD", str(protocol.DEFAULT_BAUD))),
            sample_period_s=float(
                os.getenv("SPECTRYX_PERIOD_S", str(protocol.DEFAULT_SAMPLE_PERIOD_S))
            ),
            settle_s=float(os.getenv("SPECTRYX_SETTLE_S", str(protocol.STARTUP_SETTLE_S))),
            debug=os.getenv("SPECTRYX_DEBUG", "0").lower() in ("1", "true", "yes", "on"),
        )


@dataclass(frozen=True)
class Snapshot:
    """Consistent view of the published state at one instant.

    Attributes:
        wavelengths: Last accepted scale, or None if none captured yet.
        intensities: Last accepted sample, or None if none captured yet.
        scale_captured_at: UTC time the scale was accepted.
        sample_captured_at: UTC time the sample was accepted.
        scales_accepted: Number of scales accepted since startup.
        samples_accepted: Number of samples accepted since startup.
    """

    wavelengths: Optional[SampleVector] = None
    intensities: Optional[SampleVector] = None
    scale_captured_at: Optional[datetime] = None
    sample_captured_at: Optional[datetime] = None
    scales_accepted: int = 0
    samples_accepted: int = 0


@dataclass(frozen=True)
class SessionStats:
    """Operational counters for a running session."""

    phase: Phase
    generation: int
    reconnects: int
    junk_lines: int
    stale_timeouts: int
    read_errors: int
    running: bool
