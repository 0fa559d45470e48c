"""Fake serial port that simulates a Spectryx Blue spectrum analyzer.

The real device answers "w" with one line of 640 ascending wavelength
values and "s" with one line of 640 intensity values. This simulator
emulates that, plus the failure modes the monitor has to survive:
corrupted lines, silence, short reads and I/O errors.
"""

import logging
import queue
import random
import threading
from collections import deque
from typing import Deque, List, Optional, Sequence, Union

logger = logging.getLogger(__name__)

SAMPLE_LENGTH = 640

# Markers placed on the output queue in place of a line
_CANCEL = object()
_FAIL = object()


def make_scale(start: int = 3400, step: int = 10) -> List[int]:
    """Build a strictly ascending 640-value scale (tenths of a nanometre)."""
    return [start + i * step for i in range(SAMPLE_LENGTH)]


def make_sample(seed: int = 0) -> List[int]:
    """Build a 640-value intensity sample in no particular order."""
    rng = random.Random(seed)
    return [rng.randint(0, 4095) for _ in range(SAMPLE_LENGTH)]


def format_line(values: Sequence[Union[int, str]]) -> bytes:
    """Render values the way the device does: comma-separated, CRLF-terminated."""
    return (",".join(str(v) for v in values) + "\r\n").encode("ascii")


class FakeSpectrometer:
    """Deterministic simulator of the Spectryx Blue serial protocol.

    Attributes:
        scale: Values sent in reply to "w".
        commands: Every command byte received, in order.
        dtr_history: Every value assigned to dtr, in order.
        silent: When True, commands are recorded but never answered.
    """

    def __init__(
        self,
        scale: Optional[List[int]] = None,
        sample_seed: int = 0,
    ) -> None:
        """Initialize fake device.

        Args:
            scale: Wavelength scale to report. Defaults to make_scale().
            sample_seed: Seed for the generated intensity samples.
        """
        self.scale = scale if scale is not None else make_scale()
        self.commands: List[bytes] = []
        self.dtr_history: List[bool] = []
        self.silent = False
        self.is_open = True

        self._sample_seed = sample_seed
        self._samples_sent = 0
        self._dtr = True
        self._overrides: Deque[bytes] = deque()
        self._output_queue: "queue.Queue[object]" = queue.Queue()
        self._lock = threading.Lock()

    # ========================================================================
    # Serial Port Interface
    # ========================================================================

    @property
    def dtr(self) -> bool:
        return self._dtr

    @dtr.setter
    def dtr(self, value: bool) -> None:
        self._dtr = value
        self.dtr_history.append(value)

    def write(self, data: bytes) -> int:
        """Receive command bytes from the host and queue the replies."""
        if not self.is_open:
            raise OSError("Port is closed")

        for byte in data:
            cmd = bytes([byte])
            with self._lock:
                self.commands.append(cmd)
            self._handle_command(cmd)

        return len(data)

    def readline(self) -> bytes:
        """Block until a reply line is available.

        Returns:
            Line as bytes, or b"" when the read was cancelled or the port closed

        Raises:
            OSError: When a read failure was injected with fail_read()
        """
        if not self.is_open:
            raise OSError("Port is closed")

        item = self._output_queue.get()
        if item is _CANCEL:
            return b""
        if item is _FAIL:
            raise OSError("device reports readiness to read but returned no data")
        assert isinstance(item, bytes)
        return item

    def flush(self) -> None:
        """Flush output buffer (no-op for fake serial)."""
        pass

    def cancel_read(self) -> None:
        """Wake a blocked readline() with an empty result."""
        self._output_queue.put(_CANCEL)

    def close(self) -> None:
        """Close the fake port and wake any blocked reader."""
        self.is_open = False
        self._output_queue.put(_CANCEL)
        logger.debug("FakeSpectrometer closed")

    # ========================================================================
    # Fault Injection
    # ========================================================================

    def inject_reply(self, line: Union[bytes, str]) -> None:
        """Answer the next command with this raw line instead of real data."""
        if isinstance(line, str):
            line = line.encode("ascii")
        with self._lock:
            self._overrides.append(line)

    def emit(self, line: Union[bytes, str]) -> None:
        """Send an unsolicited raw line to the host."""
        if isinstance(line, str):
            line = line.encode("ascii")
        self._output_queue.put(line)

    def fail_read(self) -> None:
        """Make the next (or currently blocked) readline() raise an I/O error."""
        self._output_queue.put(_FAIL)

    def short_read(self) -> None:
        """Make the next (or currently blocked) readline() return nothing."""
        self._output_queue.put(_CANCEL)

    def count(self, cmd: bytes) -> int:
        """Number of times a command byte has been received."""
        with self._lock:
            return self.commands.count(cmd)

    # ========================================================================
    # Internal: Command Handling
    # ========================================================================

    def _handle_command(self, cmd: bytes) -> None:
        if self.silent:
            logger.debug(f"FakeSpectrometer ignoring {cmd!r} (silent)")
            return

        with self._lock:
            override = self._overrides.popleft() if self._overrides else None

        if override is not None:
            self._output_queue.put(override)
        elif cmd == b"w":
            self._output_queue.put(format_line(self.scale))
        elif cmd == b"s":
            self._samples_sent += 1
            self._output_queue.put(
                format_line(make_sample(self._sample_seed + self._samples_sent))
            )
        else:
            logger.debug(f"FakeSpectrometer unknown command {cmd!r}")
