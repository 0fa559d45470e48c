"""Tests for device resolution, the serial transport and the line reader."""

import os
import queue
import threading

import pytest
import serial

from fakes.fake_spectrometer import FakeSpectrometer, format_line, make_scale
from spectryx_lib.errors import (
    AmbiguousDeviceError,
    DeviceOpenError,
    DeviceSelectionError,
    NoMatchingDeviceError,
    ReadError,
    ShortReadError,
    WriteError,
)
from spectryx_lib.transport import LineEvent, LineReader, Transport, resolve_device


@pytest.fixture
def by_id_dir(tmp_path):
    """A fake /dev/serial/by-id with two FTDI symlinks and one plain file."""
    target = tmp_path / "ttyUSB0"
    target.write_text("")
    by_id = tmp_path / "by-id"
    by_id.mkdir()
    os.symlink(target, by_id / "usb-FTDI_FT232R_USB_UART_A1-if00-port0")
    os.symlink(target, by_id / "usb-FTDI_FT232R_USB_UART_B2-if00-port0")
    (by_id / "usb-Spectryx_plainfile").write_text("")
    return str(by_id)


# =============================================================================
# resolve_device
# =============================================================================

def test_absolute_path_used_verbatim(by_id_dir) -> None:
    """Test that a selector starting with / skips the by-id lookup."""
    assert resolve_device("/dev/ttyACM3", by_id_dir) == "/dev/ttyACM3"


def test_unique_substring_resolves(by_id_dir) -> None:
    """Test that a unique substring resolves to its by-id path."""
    path = resolve_device("UART_A1", by_id_dir)
    assert path == os.path.join(by_id_dir, "usb-FTDI_FT232R_USB_UART_A1-if00-port0")


def test_ambiguous_substring_rejected(by_id_dir) -> None:
    """Test that a substring matching two devices is an error."""
    with pytest.raises(AmbiguousDeviceError):
        resolve_device("FTDI", by_id_dir)


def test_no_match_rejected(by_id_dir) -> None:
    """Test that a substring matching nothing is an error."""
    with pytest.raises(NoMatchingDeviceError):
        resolve_device("Prolific", by_id_dir)


def test_non_symlink_entries_ignored(by_id_dir) -> None:
    """Test that regular files in the by-id directory never match."""
    with pytest.raises(NoMatchingDeviceError):
        resolve_device("Spectryx", by_id_dir)


def test_missing_by_id_dir(tmp_path) -> None:
    """Test that a missing by-id directory means no match."""
    with pytest.raises(NoMatchingDeviceError):
        resolve_device("FTDI", str(tmp_path / "nope"))


def test_selection_errors_share_base_class() -> None:
    """Test that both selection failures are DeviceSelectionError."""
    assert issubclass(AmbiguousDeviceError, DeviceSelectionError)
    assert issubclass(NoMatchingDeviceError, DeviceSelectionError)


# =============================================================================
# Transport
# =============================================================================

def test_readline_returns_terminated_line() -> None:
    """Test that a full line comes back decoded."""
    fake = FakeSpectrometer()
    transport = Transport(fake)

    transport.write_cmd(b"w")
    line = transport.readline()

    assert line.endswith("\n")
    assert line.strip().split(",")[0] == "3400"
    assert fake.commands == [b"w"]


def test_readline_short_read() -> None:
    """Test that an empty read is a ShortReadError."""
    fake = FakeSpectrometer()
    transport = Transport(fake)
    fake.short_read()

    with pytest.raises(ShortReadError):
        transport.readline()


def test_readline_unterminated_is_short_read() -> None:
    """Test that a line without a newline is not silently accepted."""
    fake = FakeSpectrometer()
    transport = Transport(fake)
    fake.emit(b"3400,3410,34")

    with pytest.raises(ShortReadError):
        transport.readline()


def test_readline_io_error_is_read_error() -> None:
    """Test that port exceptions become ReadError (not ShortReadError)."""
    fake = FakeSpectrometer()
    transport = Transport(fake)
    fake.fail_read()

    with pytest.raises(ReadError) as exc_info:
        transport.readline()

    assert not isinstance(exc_info.value, ShortReadError)
    assert isinstance(exc_info.value.__cause__, OSError)


def test_write_on_closed_port() -> None:
    """Test that writing after close raises WriteError."""
    fake = FakeSpectrometer()
    transport = Transport(fake)
    transport.close()

    assert not transport.is_open
    with pytest.raises(WriteError):
        transport.write_cmd(b"s")


def test_close_wakes_blocked_reader() -> None:
    """Test that close() unblocks a thread stuck in readline()."""
    fake = FakeSpectrometer()
    transport = Transport(fake)
    errors = []

    def read() -> None:
        try:
            transport.readline()
        except ReadError as e:
            errors.append(e)

    thread = threading.Thread(target=read)
    thread.start()
    transport.close()
    thread.join(timeout=2.0)

    assert not thread.is_alive()
    assert len(errors) == 1


def test_close_is_idempotent() -> None:
    """Test that closing twice is harmless."""
    transport = Transport(FakeSpectrometer())
    transport.close()
    transport.close()


def test_open_issues_reset_pulse(monkeypatch) -> None:
    """Test that open() configures the port and toggles DTR off then on."""
    fake = FakeSpectrometer()
    captured = {}

    def mock_serial(**kwargs):
        captured.update(kwargs)
        return fake

    monkeypatch.setattr(serial, "Serial", mock_serial)

    transport = Transport.open("/dev/fake", 115200, reset_pulse_s=0)

    assert transport.path == "/dev/fake"
    assert fake.dtr_history == [False, True]
    assert captured["baudrate"] == 115200
    assert captured["timeout"] is None
    assert captured["xonxoff"] is False


def test_open_failure_is_device_open_error(monkeypatch) -> None:
    """Test that pyserial failures become DeviceOpenError."""
    def mock_serial(**kwargs):
        raise serial.SerialException("could not open port /dev/fake")

    monkeypatch.setattr(serial, "Serial", mock_serial)

    with pytest.raises(DeviceOpenError, match="/dev/fake"):
        Transport.open("/dev/fake", 115200, reset_pulse_s=0)


# =============================================================================
# LineReader
# =============================================================================

def test_line_reader_posts_lines_then_one_error() -> None:
    """Test that the reader tags events with its generation and stops on error."""
    fake = FakeSpectrometer()
    lines: "queue.Queue[LineEvent]" = queue.Queue(maxsize=2)
    reader = LineReader(Transport(fake), lines, generation=7)
    reader.start()

    fake.emit(format_line(make_scale()))
    first = lines.get(timeout=2.0)
    assert first.generation == 7
    assert first.line is not None and first.error is None

    fake.fail_read()
    second = lines.get(timeout=2.0)
    assert second.generation == 7
    assert isinstance(second.error, ReadError)

    reader.join(timeout=2.0)
    assert not reader.is_alive()


def test_retired_reader_posts_nothing() -> None:
    """Test that a retired reader exits without reporting its closed port."""
    fake = FakeSpectrometer()
    transport = Transport(fake)
    lines: "queue.Queue[LineEvent]" = queue.Queue(maxsize=2)
    reader = LineReader(transport, lines, generation=1)
    reader.start()

    reader.retire()
    transport.close()
    reader.join(timeout=2.0)

    assert not reader.is_alive()
    assert lines.empty()
