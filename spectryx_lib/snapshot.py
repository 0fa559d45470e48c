"""Thread-safe store for the last known good scale and sample."""

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from spectryx_lib.models import SampleVector, Snapshot

logger = logging.getLogger(__name__)


class SnapshotStore:
    """Holds the published wavelength scale and intensity sample.

    Readers take the lock only long enough to copy a reference. Vectors are
    immutable tuples and are replaced wholesale, so a value handed to a
    caller can never change underneath it.

    The session also guards its connection handle with this same lock; the
    replace_* methods must be called with ``lock`` held.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._wavelengths: Optional[SampleVector] = None
        self._intensities: Optional[SampleVector] = None
        self._scale_captured_at: Optional[datetime] = None
        self._sample_captured_at: Optional[datetime] = None
        self._scales_accepted = 0
        self._samples_accepted = 0

    @property
    def lock(self) -> threading.Lock:
        """Lock shared by the store and the session's connection handle."""
        return self._lock

    def get_wavelengths(self) -> Optional[SampleVector]:
        """Get the current wavelength scale, or None if none captured yet."""
        with self._lock:
            return self._wavelengths

    def get_intensities(self) -> Optional[SampleVector]:
        """Get the current intensity sample, or None if none captured yet."""
        with self._lock:
            return self._intensities

    def snapshot(self) -> Snapshot:
        """Get both vectors and their metadata as one consistent view."""
        with self._lock:
            return Snapshot(
                wavelengths=self._wavelengths,
                intensities=self._intensities,
                scale_captured_at=self._scale_captured_at,
                sample_captured_at=self._sample_captured_at,
                scales_accepted=self._scales_accepted,
                samples_accepted=self._samples_accepted,
            )

    def replace_wavelengths(self, vector: SampleVector) -> None:
        """Publish a new scale. Caller must hold ``lock``."""
        self._wavelengths = tuple(vector)
        self._scale_captured_at = datetime.now(timezone.utc)
        self._scales_accepted += 1

    def replace_intensities(self, vector: SampleVector) -> None:
        """Publish a new sample. Caller must hold ``lock``."""
        self._intensities = tuple(vector)
        self._sample_captured_at = datetime.now(timezone.utc)
        self._samples_accepted += 1
