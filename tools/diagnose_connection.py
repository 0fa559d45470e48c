"""Diagnose what happens during connection to a Spectryx Blue device."""

import os
import sys
import time

from spectryx_lib import protocol
from spectryx_lib.errors import SpectryxError
from spectryx_lib.parsing import try_parse_sample_line
from spectryx_lib.transport import Transport, resolve_device


def list_serial_devices(by_id_dir=protocol.SERIAL_BY_ID_DIR):
    """Print the by-id entries a selector substring can match."""
    print(f"\n=== Entries in {by_id_dir} ===")
    try:
        names = sorted(os.listdir(by_id_dir))
    except OSError as e:
        print(f"Cannot list {by_id_dir}: {e}")
        return
    for name in names:
        path = os.path.join(by_id_dir, name)
        target = os.path.realpath(path) if os.path.islink(path) else "(not a symlink)"
        print(f"  {name} -> {target}")


def request_and_report(transport, cmd, require_ascending):
    """Send one command and report whether the reply validates."""
    print(f"\n=== Sending {cmd!r} ===")
    transport.write_cmd(cmd)
    start = time.time()
    line = transport.readline()
    elapsed = time.time() - start

    tokens = line.strip().split(protocol.FIELD_SEPARATOR)
    vector, ok = try_parse_sample_line(line, require_ascending)
    print(f"RX after {elapsed:.2f}s: {len(line)} bytes, {len(tokens)} tokens")
    print(f"Preview: {line[:60]!r}")
    if ok:
        print(f"*** VALID ({vector[0]} .. {vector[-1]}) ***")
    else:
        print("*** JUNK LINE ***")


def diagnose_connection(selector=protocol.DEFAULT_DEVICE, baud=protocol.DEFAULT_BAUD):
    """Resolve, open, reset and query a device, printing each step."""
    list_serial_devices()

    print(f"\n=== Resolving {selector!r} ===")
    try:
        path = resolve_device(selector)
    except SpectryxError as e:
        print(f"*** {type(e).__name__}: {e} ***")
        return
    print(f"Resolved to {path}")

    print(f"\n=== Opening {path} at {baud} baud (with reset pulse) ===")
    try:
        transport = Transport.open(path, baud)
    except SpectryxError as e:
        print(f"*** {type(e).__name__}: {e} ***")
        return

    try:
        print(f"\n=== Waiting {protocol.STARTUP_SETTLE_S}s for device to boot ===")
        time.sleep(protocol.STARTUP_SETTLE_S)

        request_and_report(transport, protocol.CMD_REQUEST_SCALE, require_ascending=True)
        request_and_report(transport, protocol.CMD_REQUEST_SAMPLE, require_ascending=False)
    except SpectryxError as e:
        print(f"\n*** {type(e).__name__}: {e} ***")
        print("\nPossible reasons:")
        print("1. Device unplugged or held by another process")
        print("2. Wrong baud rate")
        print("3. Device still booting (try again)")
    finally:
        transport.close()
        print("\nPort closed")


if __name__ == "__main__":
    selector = sys.argv[1] if len(sys.argv) > 1 else protocol.DEFAULT_DEVICE
    baud = int(sys.argv[2]) if len(sys.argv) > 2 else protocol.DEFAULT_BAUD
    diagnose_connection(selector, baud)
