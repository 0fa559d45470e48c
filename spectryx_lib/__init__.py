"""
spectryx_lib - Monitoring library for the Spectryx Blue visual spectrum analyzer.

Polls the device over a serial link, validates its 640-value scale and
sample lines, and publishes the latest good readings.
"""

from spectryx_lib.errors import (
    AmbiguousDeviceError,
    DeviceOpenError,
    DeviceSelectionError,
    FatalSessionError,
    NoMatchingDeviceError,
    ParseError,
    ReadError,
    ShortReadError,
    SpectryxError,
    StaleDataError,
    WriteError,
)
from spectryx_lib.models import Phase, SessionConfig, Snapshot
from spectryx_lib.session import SpectrometerSession
from spectryx_lib.snapshot import SnapshotStore

__version__ = "0.1.0"

__all__ = [
    "SpectrometerSession",
    "SessionConfig",
    "SnapshotStore",
    "Snapshot",
    "Phase",
    "SpectryxError",
    "DeviceSelectionError",
    "AmbiguousDeviceError",
    "NoMatchingDeviceError",
    "DeviceOpenError",
    "ReadError",
    "ShortReadError",
    "WriteError",
    "ParseError",
    "StaleDataError",
    "FatalSessionError",
]
