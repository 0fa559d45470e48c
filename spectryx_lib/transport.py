"""Serial transport layer: device discovery, line reads and the reader thread."""

import logging
import os
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Optional, Protocol

from spectryx_lib import protocol
from spectryx_lib.errors import (
    AmbiguousDeviceError,
    DeviceOpenError,
    NoMatchingDeviceError,
    ReadError,
    ShortReadError,
    SpectryxError,
    WriteError,
)
from spectryx_lib.models import SessionConfig

logger = logging.getLogger(__name__)


class SerialLike(Protocol):
    """Protocol for serial port interface (allows test doubles)."""

    dtr: bool

    def write(self, data: bytes) -> int:
        """Write bytes to serial port."""
        ...

    def readline(self) -> bytes:
        """Read a line from serial port."""
        ...

    def flush(self) -> None:
        """Flush output buffer (force transmission)."""
        ...

    def close(self) -> None:
        """Close serial port."""
        ...

    @property
    def is_open(self) -> bool:
        """Check if port is open."""
        ...


def resolve_device(selector: str, by_id_dir: str = protocol.SERIAL_BY_ID_DIR) -> str:
    """Resolve a device selector to a device path.

    A selector starting with "/" is taken as a device filename. Anything
    else is matched as a substring against the symlinks in by_id_dir, and
    must match exactly one of them.

    Args:
        selector: Device path or by-id substring (e.g., "FTDI_FT232R")
        by_id_dir: Directory enumerating attached serial devices

    Returns:
        Absolute path of the selected device

    Raises:
        AmbiguousDeviceError: If more than one entry matches
        NoMatchingDeviceError: If nothing matches or by_id_dir is unreadable
    """
    if selector.startswith("/"):
        return selector

    try:
        entries = sorted(os.listdir(by_id_dir))
    except OSError as e:
        raise NoMatchingDeviceError(
            f"No match for {selector!r}: cannot list {by_id_dir}: {e}"
        ) from e

    match: Optional[str] = None
    for name in entries:
        if not os.path.islink(os.path.join(by_id_dir, name)):
            continue
        if selector not in name:
            continue
        if match is not None:
            raise AmbiguousDeviceError(
                f"Conflict {name!r} vs {match!r} for selection {selector!r}"
            )
        match = name

    if match is None:
        raise NoMatchingDeviceError(f"No match for {selector!r} in {by_id_dir}")

    return os.path.join(by_id_dir, match)


class Transport:
    """Wrapper around pyserial for the Spectryx line protocol.

    Reads block until a full newline-terminated line arrives, with no read
    timeout. Liveness is the session watchdog's job.
    """

    def __init__(self, serial_port: SerialLike, path: str = "") -> None:
        """Initialize transport with a serial port instance.

        Args:
            serial_port: Object implementing SerialLike protocol
                        (e.g., serial.Serial or FakeSpectrometer for testing)
            path: Device path, for log messages
        """
        self._port = serial_port
        self._path = path

    @classmethod
    def open(
        cls,
        port: str,
        baud: int = protocol.DEFAULT_BAUD,
        reset_pulse_s: float = protocol.RESET_PULSE_S,
    ) -> "Transport":
        """Open a real serial port in raw mode and reset the device.

        pyserial configures POSIX ports raw (non-canonical, no echo, no
        output processing); flow control is disabled explicitly.

        Args:
            port: Serial port device name (e.g., "/dev/ttyUSB0")
            baud: Baud rate. Default 115200.
            reset_pulse_s: Time DTR is held low during the reset pulse

        Returns:
            Transport instance wrapping opened serial port

        Raises:
            DeviceOpenError: If port cannot be opened or reset
        """
        try:
            import serial  # type: ignore
        except ImportError as e:
            raise DeviceOpenError("pyserial not installed. Run: pip install pyserial") from e

        try:
            ser = serial.Serial(
                port=port,
                baudrate=baud,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=None,
                rtscts=False,
                dsrdtr=False,
                xonxoff=False,
            )
        except Exception as e:
            raise DeviceOpenError(f"Failed to open {port} at {baud} baud: {e}") from e

        transport = cls(ser, path=port)
        try:
            transport.reset(reset_pulse_s)
        except Exception as e:
            ser.close()
            raise DeviceOpenError(f"Failed to reset {port}: {e}") from e

        logger.info(f"Opened serial port {port} at {baud} baud")
        return transport

    @property
    def path(self) -> str:
        """Device path this transport was opened on."""
        return self._path

    @property
    def is_open(self) -> bool:
        """Check if port is currently open."""
        return self._port.is_open

    def reset(self, pulse_s: float = protocol.RESET_PULSE_S) -> None:
        """Toggle DTR off and back on to force the device into a known state."""
        self._port.dtr = False
        time.sleep(pulse_s)
        self._port.dtr = True
        logger.debug(f"Reset pulse issued ({pulse_s:.3f}s)")

    def close(self) -> None:
        """Close the serial port, waking any thread blocked in readline()."""
        if not self._port.is_open:
            return
        cancel_read = getattr(self._port, "cancel_read", None)
        if cancel_read is not None:
            try:
                cancel_read()
            except Exception as e:
                logger.debug(f"cancel_read failed: {e}")
        self._port.close()
        logger.info(f"Closed serial port {self._path}")

    def write_cmd(self, cmd: bytes) -> None:
        """Write a single-byte device command (no terminator).

        Raises:
            WriteError: If port is closed or write fails
        """
        if not self._port.is_open:
            raise WriteError("Serial port is not open")

        try:
            self._port.write(cmd)
            self._port.flush()
            logger.debug(f"Sent command {cmd!r}")
        except Exception as e:
            raise WriteError(f"Failed to write {cmd!r}: {e}") from e

    def readline(self) -> str:
        """Block until one newline-terminated line is received.

        Returns:
            Decoded line, terminator included

        Raises:
            ShortReadError: If the port returned nothing or a partial line
            ReadError: If port is closed or the read itself fails
        """
        if not self._port.is_open:
            raise ReadError("Serial port is not open")

        try:
            line_bytes = self._port.readline()
        except Exception as e:
            raise ReadError(f"Failed to read line: {e}") from e

        if not line_bytes:
            raise ShortReadError("Read returned no data")
        if not line_bytes.endswith(protocol.LINE_TERMINATOR):
            raise ShortReadError(f"Read returned unterminated data ({len(line_bytes)} bytes)")

        return line_bytes.decode("ascii", errors="replace")


def open_transport(config: SessionConfig) -> Transport:
    """Resolve the configured selector and open it.

    Raises:
        DeviceSelectionError: If the selector is ambiguous or matches nothing
        DeviceOpenError: If the resolved device cannot be opened
    """
    path = resolve_device(config.device, config.by_id_dir)
    return Transport.open(path, config.baud, config.reset_pulse_s)


@dataclass(frozen=True)
class LineEvent:
    """One item on the reader-to-session queue.

    Exactly one of ``line`` and ``error`` is set. ``generation`` identifies
    the connection the event came from so events from a retired
    connection can be dropped.
    """

    generation: int
    line: Optional[str] = None
    error: Optional[SpectryxError] = None
    received_at: float = field(default_factory=time.monotonic)


class LineReader:
    """Background thread feeding raw lines from one connection into a queue.

    The reader owns no state besides its transport reference. It posts
    at most one error event and then exits; the session decides whether
    to reconnect.
    """

    def __init__(
        self,
        transport: Transport,
        lines: "queue.Queue[LineEvent]",
        generation: int,
        debug: bool = False,
    ) -> None:
        self._transport = transport
        self._lines = lines
        self._generation = generation
        self._debug = debug
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the reader thread."""
        self._thread = threading.Thread(
            target=self._read_loop,
            name=f"SpectryxReader-{self._generation}",
            daemon=True,
        )
        self._thread.start()
        logger.debug(f"Started line reader for generation {self._generation}")

    def retire(self) -> None:
        """Ask the reader to exit; it leaves once its blocked read returns."""
        self._stop_event.set()

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the reader thread to exit."""
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def is_alive(self) -> bool:
        """Check whether the reader thread is still running."""
        return self._thread is not None and self._thread.is_alive()

    def _read_loop(self) -> None:
        logger.debug(f"Line reader {self._generation} running (thread {threading.get_ident()})")

        while not self._stop_event.is_set():
            try:
                line = self._transport.readline()
            except SpectryxError as e:
                if not self._stop_event.is_set():
                    self._post(LineEvent(self._generation, error=e))
                break

            if self._debug:
                logger.debug(f"got: {line!r}")
            self._post(LineEvent(self._generation, line=line))

        logger.debug(f"Line reader {self._generation} stopped")

    def _post(self, event: LineEvent) -> None:
        """Put an event on the queue, giving up once retired."""
        while not self._stop_event.is_set():
            try:
                self._lines.put(event, timeout=protocol.QUEUE_PUT_RETRY_S)
                return
            except queue.Full:
                continue
