"""Custom exceptions for the Spectryx Blue monitor library."""


class SpectryxError(Exception):
    """Base exception for all Spectryx library errors."""

    pass


class DeviceSelectionError(SpectryxError):
    """Raised when a device selector does not resolve to exactly one port."""

    pass


class AmbiguousDeviceError(DeviceSelectionError):
    """Raised when a selector substring matches more than one serial device."""

    pass


class NoMatchingDeviceError(DeviceSelectionError):
    """Raised when a selector substring matches no serial device."""

    pass


class DeviceOpenError(SpectryxError):
    """Raised when the serial port cannot be opened or configured."""

    pass


class ReadError(SpectryxError):
    """Raised when reading from the serial port fails (unplugged, I/O error)."""

    pass


class ShortReadError(ReadError):
    """Raised when a read returns nothing or an unterminated line without an I/O error."""

    pass


class WriteError(SpectryxError):
    """Raised when a device command cannot be written."""

    pass


class ParseError(SpectryxError):
    """Raised when a device line is junk (non-numeric, wrong length, wrong order)."""

    pass


class StaleDataError(SpectryxError):
    """Raised when the device has been silent for longer than the watchdog allows."""

    pass


class FatalSessionError(SpectryxError):
    """Raised when the session cannot reopen its device and has to give up.

    The session never terminates the process itself. Whoever started it
    decides what to do with this error.
    """

    pass
