"""Device session: owns the serial connection and drives the scale/sample cycle."""

import logging
import queue
import threading
import time
from typing import Callable, Optional

from spectryx_lib import parsing, protocol
from spectryx_lib.errors import (
    FatalSessionError,
    ParseError,
    SpectryxError,
    StaleDataError,
    WriteError,
)
from spectryx_lib.models import Phase, SampleVector, SessionConfig, SessionStats
from spectryx_lib.snapshot import SnapshotStore
from spectryx_lib.transport import LineEvent, LineReader, Transport, open_transport

logger = logging.getLogger(__name__)

Opener = Callable[[SessionConfig], Transport]


class SpectrometerSession:
    """Monitors one Spectryx Blue device and publishes its latest readings.

    Two threads cooperate through a bounded queue of raw lines:

    - a LineReader blocks in the serial read and posts lines (or one error)
    - the session thread validates lines, applies them to the SnapshotStore
      and issues the next device command

    The first valid ascending line after each (re)connect becomes the
    wavelength scale. Every valid line after that replaces the intensity
    sample. If no line arrives within the watchdog window, or the device
    link fails, the connection is replaced and the cycle restarts from
    the scale. Published vectors survive a reconnect.
    """

    def __init__(
        self,
        config: SessionConfig,
        store: Optional[SnapshotStore] = None,
        opener: Optional[Opener] = None,
    ) -> None:
        """Initialize session.

        Args:
            config: Immutable session configuration.
            store: Snapshot store to publish into. A new one is created if None.
            opener: Callable returning an open Transport for a config.
                    Defaults to open_transport (resolve selector, open pyserial).
        """
        self._config = config
        self._store = store if store is not None else SnapshotStore()
        self._opener = opener if opener is not None else open_transport

        self._lines: "queue.Queue[LineEvent]" = queue.Queue(maxsize=protocol.LINE_QUEUE_SIZE)

        # Guarded by self._store.lock
        self._transport: Optional[Transport] = None

        self._reader: Optional[LineReader] = None
        self._generation = 0
        self._phase = Phase.AWAITING_SCALE
        self._accept_after = 0.0
        self._sample_logged = False

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._done_event = threading.Event()
        self._fatal: Optional[FatalSessionError] = None

        self._reconnects = 0
        self._junk_lines = 0
        self._stale_timeouts = 0
        self._read_errors = 0

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def start(self) -> None:
        """Open the device and start the reader and session threads.

        Raises:
            DeviceSelectionError: If the selector does not resolve to one device
            DeviceOpenError: If the device cannot be opened
            SpectryxError: If the session was already started
        """
        if self._thread is not None:
            raise SpectryxError("Session already started")

        logger.info(
            f"Starting session on {self._config.device!r} at {self._config.baud} baud, "
            f"period={self._config.sample_period_s}s, watchdog={self._config.watchdog_s}s"
        )
        self._attach(self._opener(self._config))

        self._thread = threading.Thread(
            target=self._run,
            name="SpectryxSession",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the session threads and close the device."""
        self._stop_event.set()
        self._wake()

        if self._reader is not None:
            self._reader.retire()

        with self._store.lock:
            transport = self._transport
            self._transport = None
        if transport is not None:
            self._close_quietly(transport)

        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Session thread did not stop cleanly")

        logger.info("Session stopped")

    def wait(self, timeout: Optional[float] = None) -> Optional[FatalSessionError]:
        """Block until the session thread ends.

        Returns:
            The FatalSessionError that ended the session, or None if it was
            stopped (or is still running when timeout expires)
        """
        self._done_event.wait(timeout=timeout)
        return self._fatal

    # ========================================================================
    # Data Access
    # ========================================================================

    def get_wavelengths(self) -> Optional[SampleVector]:
        """Get the current wavelength scale, or None if none captured yet."""
        return self._store.get_wavelengths()

    def get_intensities(self) -> Optional[SampleVector]:
        """Get the current intensity sample, or None if none captured yet."""
        return self._store.get_intensities()

    @property
    def store(self) -> SnapshotStore:
        """Snapshot store this session publishes into."""
        return self._store

    @property
    def config(self) -> SessionConfig:
        """Session configuration."""
        return self._config

    @property
    def phase(self) -> Phase:
        """Current state machine phase."""
        return self._phase

    @property
    def fatal_error(self) -> Optional[FatalSessionError]:
        """Error that ended the session, if any."""
        return self._fatal

    def is_running(self) -> bool:
        """Check if the session thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def stats(self) -> SessionStats:
        """Get a snapshot of the session counters."""
        return SessionStats(
            phase=self._phase,
            generation=self._generation,
            reconnects=self._reconnects,
            junk_lines=self._junk_lines,
            stale_timeouts=self._stale_timeouts,
            read_errors=self._read_errors,
            running=self.is_running(),
        )

    # ========================================================================
    # Internal: Session Thread
    # ========================================================================

    def _run(self) -> None:
        """Session thread: one pass per line, reconnect when told to."""
        logger.info(f"Session loop started (thread {threading.get_ident()})")

        try:
            failure = self._begin_connection()
            while not self._stop_event.is_set():
                if failure is not None:
                    failure = self._recover(failure)
                else:
                    failure = self._step()
        except FatalSessionError as e:
            self._fatal = e
            logger.critical(f"Session aborted: {e}")
        finally:
            self._done_event.set()

        logger.info("Session loop stopped")

    def _step(self) -> Optional[SpectryxError]:
        """Consume one queue event.

        Returns:
            The error that requires a reconnect, or None to keep going
        """
        try:
            event = self._lines.get(timeout=self._config.watchdog_s)
        except queue.Empty:
            self._stale_timeouts += 1
            return StaleDataError(f"No line received for {self._config.watchdog_s:.2f}s")

        if event.generation != self._generation:
            return None

        if event.error is not None:
            self._read_errors += 1
            return event.error

        if event.received_at < self._accept_after:
            logger.debug(f"Discarding line received during settle: {event.line!r}")
            return None

        if event.line is None:
            return None
        return self._handle_line(event.line)

    def _handle_line(self, line: str) -> Optional[SpectryxError]:
        """Validate a line, wait one period, then publish and request the next."""
        if self._config.debug:
            logger.debug(f"sample: {line!r}")

        vector: Optional[SampleVector] = None
        try:
            vector = parsing.parse_sample_line(
                line, require_ascending=self._phase is Phase.AWAITING_SCALE
            )
        except ParseError as e:
            self._junk_lines += 1
            logger.debug(f"Junk line in {self._phase.value}: {e}")

        if self._stop_event.wait(timeout=self._config.sample_period_s):
            return None

        try:
            self._apply(vector)
        except WriteError as e:
            return e
        return None

    def _apply(self, vector: Optional[SampleVector]) -> None:
        """Publish an accepted vector and issue the next request.

        Both happen under the store lock because the command goes out on the
        lock-protected connection handle.

        Raises:
            WriteError: If there is no open connection or the write fails
        """
        captured_scale = False
        first_sample = False

        with self._store.lock:
            if vector is not None:
                if self._phase is Phase.AWAITING_SCALE:
                    self._store.replace_wavelengths(vector)
                    self._phase = Phase.AWAITING_SAMPLE
                    captured_scale = True
                else:
                    self._store.replace_intensities(vector)
                    first_sample = not self._sample_logged
                    self._sample_logged = True

            self._request_locked()

        if captured_scale:
            logger.info(
                f"Wavelength scale captured: {vector[0]}..{vector[-1]} "
                f"(generation {self._generation})"
            )
        if first_sample:
            logger.info("Sample captured")
        if self._config.debug and vector is not None:
            logger.debug(f"numbers [{self._phase.value}]: {list(vector)}")

    def _request_locked(self) -> None:
        """Issue the command for the current phase. Caller holds the store lock."""
        if self._transport is None:
            raise WriteError("No open connection")

        if self._phase is Phase.AWAITING_SCALE:
            self._transport.write_cmd(protocol.CMD_REQUEST_SCALE)
        else:
            self._transport.write_cmd(protocol.CMD_REQUEST_SAMPLE)

    # ========================================================================
    # Internal: Connection Management
    # ========================================================================

    def _attach(self, transport: Transport) -> None:
        """Install a freshly opened transport and start its reader."""
        self._phase = Phase.AWAITING_SCALE
        self._accept_after = time.monotonic() + self._config.settle_s

        with self._store.lock:
            self._transport = transport
            self._generation += 1
            generation = self._generation

        self._reader = LineReader(transport, self._lines, generation, debug=self._config.debug)
        self._reader.start()

    def _begin_connection(self) -> Optional[WriteError]:
        """Let the device boot, then request the scale.

        Lines read before the settle deadline are discarded by _step.

        Returns:
            WriteError if the request could not be sent, else None
        """
        if self._stop_event.wait(timeout=self._config.settle_s):
            return None

        try:
            with self._store.lock:
                self._request_locked()
        except WriteError as e:
            return e

        logger.debug(f"Requested wavelength scale (generation {self._generation})")
        return None

    def _recover(self, failure: SpectryxError) -> Optional[SpectryxError]:
        """Replace the connection after a stale watchdog or an I/O failure.

        Raises:
            FatalSessionError: If the device cannot be reopened
        """
        if isinstance(failure, StaleDataError):
            logger.warning(f"{failure}; reconnecting")
        else:
            logger.warning(
                f"Device I/O failed: {failure}; reconnecting in "
                f"{self._config.sample_period_s}s"
            )
            if self._stop_event.wait(timeout=self._config.sample_period_s):
                return None

        self._reconnect()
        return self._begin_connection()

    def _reconnect(self) -> None:
        """Close the current handle and open a new one on the same selector.

        Raises:
            FatalSessionError: If the device cannot be reopened
        """
        self._reconnects += 1
        logger.info(f"Reconnecting to {self._config.device!r} (attempt {self._reconnects})")

        with self._store.lock:
            old = self._transport
            self._transport = None

        if self._reader is not None:
            self._reader.retire()
        if old is not None:
            self._close_quietly(old)

        try:
            transport = self._opener(self._config)
        except SpectryxError as e:
            raise FatalSessionError(
                f"Reconnect to {self._config.device!r} failed: {e}"
            ) from e

        if self._stop_event.is_set():
            self._close_quietly(transport)
            return

        self._attach(transport)

    def _close_quietly(self, transport: Transport) -> None:
        """Close a transport that is being discarded, logging any failure."""
        try:
            transport.close()
        except Exception as e:
            logger.warning(f"Error closing {transport.path or 'transport'}: {e}")

    def _wake(self) -> None:
        """Unblock the session thread's queue wait."""
        try:
            self._lines.put_nowait(LineEvent(generation=0))
        except queue.Full:
            pass
