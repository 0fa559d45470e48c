"""Run the Spectryx Blue monitor: python -m api [--tty ...] [--addr host:port]."""

import argparse
import os

from spectryx_lib import protocol


def main() -> None:
    parser = argparse.ArgumentParser(description="Spectryx Blue spectrum analyzer monitor")
    parser.add_argument(
        "--tty",
        default=os.getenv("SPECTRYX_DEVICE", protocol.DEFAULT_DEVICE),
        help="device filename, or substring of a /dev/serial/by-id entry",
    )
    parser.add_argument("--baud", type=int, default=protocol.DEFAULT_BAUD, help="preferred baud rate")
    parser.add_argument(
        "--period",
        type=float,
        default=protocol.DEFAULT_SAMPLE_PERIOD_S,
        help="seconds between spectrum samples",
    )
    parser.add_argument("--addr", default="localhost:8080", help="webserver address")
    parser.add_argument("--static", default=".", help="directory of files served at /")
    parser.add_argument("--debug", action="store_true", help="enable for more log output")
    args = parser.parse_args()

    host, _, port = args.addr.rpartition(":")

    # api.main reads its configuration from the environment at import time
    os.environ["SPECTRYX_DEVICE"] = args.tty
    os.environ["SPECTRYX_BAUD"] = str(args.baud)
    os.environ["SPECTRYX_PERIOD_S"] = str(args.period)
    os.environ["SPECTRYX_DEBUG"] = "1" if args.debug else "0"
    os.environ["STATIC_DIR"] = args.static
    os.environ["API_HOST"] = host or "localhost"
    os.environ["API_PORT"] = port
    if args.debug:
        os.environ.setdefault("LOG_LEVEL", "DEBUG")

    import uvicorn

    uvicorn.run("api.main:app", host=host or "localhost", port=int(port))


if __name__ == "__main__":
    main()
