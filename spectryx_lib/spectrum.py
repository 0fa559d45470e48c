"""Tabular view of the current spectrum for export.

Pairs the published scale and sample position-wise into a pandas
DataFrame. Only the latest spectrum is represented; nothing is kept
between calls.
"""

from typing import Dict, List

import pandas as pd

from spectryx_lib import protocol
from spectryx_lib.models import Snapshot

# DataFrame schema: column names and their dtypes
SPECTRUM_SCHEMA = {
    "wavelength_nm": float,  # Scale value converted from tenths of a nanometre
    "intensity": int,  # Raw intensity count at that wavelength
}


def spectrum_rows(snapshot: Snapshot) -> List[Dict[str, float]]:
    """Pair scale and sample values into row dictionaries.

    Rows stop at the shorter of the two vectors. No rows are produced
    until both a scale and a sample have been captured.
    """
    if snapshot.wavelengths is None or snapshot.intensities is None:
        return []

    return [
        {
            "wavelength_nm": wavelength / protocol.WAVELENGTH_SCALE_DIVISOR,
            "intensity": intensity,
        }
        for wavelength, intensity in zip(snapshot.wavelengths, snapshot.intensities)
    ]


def snapshot_to_frame(snapshot: Snapshot) -> pd.DataFrame:
    """Build a DataFrame with SPECTRUM_SCHEMA columns from a snapshot.

    Returns:
        DataFrame with one row per pixel, or an empty frame with the schema
        columns if no complete spectrum is available
    """
    rows = spectrum_rows(snapshot)
    df = pd.DataFrame(rows, columns=list(SPECTRUM_SCHEMA.keys()))
    return df.astype(SPECTRUM_SCHEMA)
