"""Pure functions for validating spectrometer output lines."""

import logging
import re
from typing import Iterable, List, Optional, Tuple

from spectryx_lib import protocol
from spectryx_lib.errors import ParseError
from spectryx_lib.models import SampleVector

logger = logging.getLogger(__name__)

# Optional sign followed by ASCII digits, nothing else
_INTEGER_TOKEN = re.compile(r"[+-]?[0-9]+")


def parse_sample_line(line: str, require_ascending: bool) -> SampleVector:
    """Parse a device line into a 640-value vector.

    The device occasionally emits corrupted or truncated output under load
    and the protocol has no checksum, so length and ordering are the only
    structural checks available.

    Expected format: "<int>,<int>,...,<int>" (640 values)
    Example: "3400,3407,3414,...,10000"

    Args:
        line: Raw line from device. Whitespace around the whole line is
            trimmed; whitespace inside a token makes it junk.
        require_ascending: True while awaiting the wavelength scale, which
            must be strictly ascending. Samples may be in any order.

    Returns:
        Tuple of 640 integers

    Raises:
        ParseError: If any token is not a base-10 integer, the value count
            is not 640, or ascending order is required and not met
    """
    values: List[int] = []

    for token in line.strip().split(protocol.FIELD_SEPARATOR):
        if not _INTEGER_TOKEN.fullmatch(token):
            raise ParseError(f"Non-numeric token {token!r} in line")
        values.append(int(token, 10))

    if len(values) != protocol.SAMPLE_LENGTH:
        raise ParseError(
            f"Expected {protocol.SAMPLE_LENGTH} values, got {len(values)}"
        )

    if require_ascending and not is_strictly_ascending(values):
        raise ParseError("Scale line is not strictly ascending")

    return tuple(values)


def try_parse_sample_line(
    line: str, require_ascending: bool
) -> Tuple[Optional[SampleVector], bool]:
    """Non-raising variant of parse_sample_line.

    Returns:
        (vector, True) when the line is accepted, (None, False) for junk
    """
    try:
        return parse_sample_line(line, require_ascending), True
    except ParseError as e:
        logger.debug(f"Rejected line: {e}")
        return None, False


def is_strictly_ascending(values: Iterable[int]) -> bool:
    """Check that every value is greater than the one before it."""
    previous: Optional[int] = None
    for value in values:
        if previous is not None and value <= previous:
            return False
        previous = value
    return True
