"""Wire protocol constants for the Spectryx Blue spectrum analyzer.

The device speaks a minimal line protocol: single-byte commands in, one
comma-separated line of integers out per command.
"""

from typing import Final

# ============================================================================
# Commands (single byte, no terminator)
# ============================================================================

CMD_REQUEST_SCALE: Final[bytes] = b"w"  # Reply: 640 ascending wavelengths
CMD_REQUEST_SAMPLE: Final[bytes] = b"s"  # Reply: 640 intensities

# ============================================================================
# Line Format
# ============================================================================

LINE_TERMINATOR: Final[bytes] = b"\n"
FIELD_SEPARATOR: Final[str] = ","

# Uncorrupted output always carries exactly this many values
SAMPLE_LENGTH: Final[int] = 640

# Scale values are reported in tenths of a nanometre
WAVELENGTH_SCALE_DIVISOR: Final[int] = 10

# ============================================================================
# Device Discovery
# ============================================================================

SERIAL_BY_ID_DIR: Final[str] = "/dev/serial/by-id"

# ============================================================================
# Serial Settings
# ============================================================================

DEFAULT_DEVICE: Final[str] = "/dev/ttyUSB0"
DEFAULT_BAUD: Final[int] = 115200

# ============================================================================
# Timing
# ============================================================================

DEFAULT_SAMPLE_PERIOD_S: Final[float] = 1.0

# Watchdog fires after this many sample periods without a line
WATCHDOG_PERIODS: Final[int] = 12

# DTR held low for this long to reset the device after open
RESET_PULSE_S: Final[float] = 0.25

# No reliable "ready" signal exists, so wait this long after a reset
STARTUP_SETTLE_S: Final[float] = 3.0

# ============================================================================
# Threading
# ============================================================================

# Raw lines buffered between the reader thread and the session thread
LINE_QUEUE_SIZE: Final[int] = 2

# Retry interval for a reader blocked on a full queue
QUEUE_PUT_RETRY_S: Final[float] = 0.1
