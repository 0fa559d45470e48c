"""FastAPI interface for the Spectryx Blue monitor.

Single-process, single-device lifecycle around one SpectrometerSession:
- GET /scale, GET /sample: latest wavelength scale / intensity sample
- POST /rpc: form-encoded JSON request/response used by the web client
- GET /spectrum, GET /export/csv: paired scale and sample
- POST /connect, POST /disconnect: manual session control

Query endpoints never report device errors; they return null until a
reading has been captured.

Error mapping (connect only):
- DeviceSelectionError → 404
- DeviceOpenError → 503
- Other SpectryxError → 400
"""

import io
import json
import logging
import os
import signal
import subprocess
import threading
from dataclasses import replace
from pathlib import Path
from threading import RLock
from typing import List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from spectryx_lib import SessionConfig, SpectrometerSession
from spectryx_lib.errors import DeviceOpenError, DeviceSelectionError, SpectryxError
from spectryx_lib.models import Snapshot
from spectryx_lib.spectrum import snapshot_to_frame, spectrum_rows

# =============================================================================
# Environment Configuration
# =============================================================================

API_HOST = os.getenv("API_HOST", "localhost")
API_PORT = int(os.getenv("API_PORT", "8080"))
AUTOSTART = os.getenv("SPECTRYX_AUTOSTART", "1").lower() in ("1", "true", "yes", "on")
STATIC_DIR = os.getenv("STATIC_DIR", ".")
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:8080,http://127.0.0.1:8080"
).split(",")

# Version tracking
API_VERSION = "0.1.0"
try:
    GIT_COMMIT = subprocess.check_output(["git", "rev-parse", "--short", "HEAD"], cwd=Path(__file__).parent.parent, stderr=subprocess.DEVNULL).decode().strip()
except Exception:
    GIT_COMMIT = "unknown"

# Configure logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# =============================================================================
# Global Singletons
# =============================================================================

_session: Optional[SpectrometerSession] = None
_lock = RLock()  # Protects session start/stop

# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="Spectryx Blue Monitor",
    description="Latest wavelength scale and intensity sample from a Spectryx Blue spectrum analyzer",
    version=API_VERSION
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# =============================================================================
# Request/Response Models
# =============================================================================

class ValuesResponse(BaseModel):
    """Response for GET /scale and GET /sample."""
    values: Optional[List[int]]


class RpcResponse(BaseModel):
    """Response for POST /rpc (field names match the web client)."""
    Error: str = ""
    Values: Optional[List[int]] = None


class SpectrumPoint(BaseModel):
    """One pixel of the paired spectrum."""
    wavelength_nm: float
    intensity: int


class StatusResponse(BaseModel):
    """Response for GET /status."""
    running: bool
    device: Optional[str]
    phase: Optional[str]
    generation: int
    reconnects: int
    junk_lines: int
    stale_timeouts: int
    read_errors: int
    scales_accepted: int
    samples_accepted: int
    scale_captured_at: Optional[str]
    sample_captured_at: Optional[str]
    fatal_error: Optional[str]


class ConnectResponse(BaseModel):
    """Response for POST /connect."""
    status: str
    device: str


# =============================================================================
# Exception Handlers
# =============================================================================

@app.exception_handler(DeviceSelectionError)
async def device_selection_handler(request, exc: DeviceSelectionError):
    """Map DeviceSelectionError to 404 Not Found."""
    logger.error(f"DeviceSelectionError: {exc}")
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(DeviceOpenError)
async def device_open_handler(request, exc: DeviceOpenError):
    """Map DeviceOpenError to 503 Service Unavailable."""
    logger.error(f"DeviceOpenError: {exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(SpectryxError)
async def spectryx_error_handler(request, exc: SpectryxError):
    """Map any other SpectryxError to 400 Bad Request."""
    logger.error(f"SpectryxError: {exc}")
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# =============================================================================
# Session Helpers
# =============================================================================

def _start_session(config: SessionConfig) -> SpectrometerSession:
    """Start a session and watch it for fatal errors.

    Raises:
        SpectryxError: If a session is already running
        DeviceSelectionError, DeviceOpenError: If the device cannot be opened
    """
    global _session

    with _lock:
        if _session is not None and _session.is_running():
            raise SpectryxError(f"Already connected to {_session.config.device!r}")

        if config.debug:
            logging.getLogger("spectryx_lib").setLevel(logging.DEBUG)

        session = SpectrometerSession(config)
        session.start()
        _session = session

    threading.Thread(
        target=_watch_session,
        args=(session,),
        name="SessionWatcher",
        daemon=True,
    ).start()
    return session


def _watch_session(session: SpectrometerSession) -> None:
    """Terminate the server when the session can no longer reach its device.

    The session itself never exits the process; this is the only place
    that decides to.
    """
    fatal = session.wait()
    if fatal is None:
        return
    logger.critical(f"Device session failed permanently: {fatal}. Shutting down.")
    os.kill(os.getpid(), signal.SIGTERM)


def _stop_session() -> None:
    global _session

    with _lock:
        if _session is not None:
            _session.stop()
            _session = None


def _rpc_command(req) -> Optional[str]:
    """Find the Cmd field, preferring an exact key match over a case-insensitive one."""
    if not isinstance(req, dict):
        return None
    if "Cmd" in req:
        return req["Cmd"]
    for key, value in req.items():
        if key.lower() == "cmd":
            return value
    return None


# =============================================================================
# Query Endpoints
# =============================================================================

@app.get("/scale", response_model=ValuesResponse)
async def get_scale():
    """Get the current wavelength scale, or null if none captured yet."""
    session = _session
    if session is None:
        return ValuesResponse(values=None)

    values = session.get_wavelengths()
    return ValuesResponse(values=list(values) if values is not None else None)


@app.get("/sample", response_model=ValuesResponse)
async def get_sample():
    """Get the current intensity sample, or null if none captured yet."""
    session = _session
    if session is None:
        return ValuesResponse(values=None)

    values = session.get_intensities()
    return ValuesResponse(values=list(values) if values is not None else None)


@app.post("/rpc", response_model=RpcResponse)
async def rpc(request: Request):
    """Form-encoded RPC for a browser client served from STATIC_DIR.

    Body: rpc={"Cmd": "scale"} or rpc={"Cmd": "sample"}. The JSON is sent
    unescaped by the client, and the Cmd key matches in any case.
    """
    form = await request.form()
    raw = form.get("rpc", "")

    try:
        req = json.loads(raw)
    except (TypeError, ValueError) as e:
        return RpcResponse(Error=str(e))

    cmd = _rpc_command(req)
    if cmd == "scale":
        values = _session.get_wavelengths() if _session else None
    elif cmd == "sample":
        values = _session.get_intensities() if _session else None
    else:
        return RpcResponse(Error="unsupported command")

    return RpcResponse(Values=list(values) if values is not None else None)


@app.get("/status", response_model=StatusResponse)
async def get_status():
    """Get session state, counters and capture times."""
    session = _session
    if session is None:
        return StatusResponse(
            running=False, device=None, phase=None, generation=0, reconnects=0,
            junk_lines=0, stale_timeouts=0, read_errors=0, scales_accepted=0,
            samples_accepted=0, scale_captured_at=None, sample_captured_at=None,
            fatal_error=None,
        )

    stats = session.stats()
    snapshot = session.store.snapshot()
    fatal = session.fatal_error

    return StatusResponse(
        running=stats.running,
        device=session.config.device,
        phase=stats.phase.value,
        generation=stats.generation,
        reconnects=stats.reconnects,
        junk_lines=stats.junk_lines,
        stale_timeouts=stats.stale_timeouts,
        read_errors=stats.read_errors,
        scales_accepted=snapshot.scales_accepted,
        samples_accepted=snapshot.samples_accepted,
        scale_captured_at=snapshot.scale_captured_at.isoformat() if snapshot.scale_captured_at else None,
        sample_captured_at=snapshot.sample_captured_at.isoformat() if snapshot.sample_captured_at else None,
        fatal_error=str(fatal) if fatal else None,
    )


@app.get("/spectrum", response_model=List[SpectrumPoint])
async def get_spectrum():
    """Get the current scale and sample paired per pixel (empty until both exist)."""
    session = _session
    if session is None:
        return []
    return spectrum_rows(session.store.snapshot())


@app.get("/export/csv")
async def export_csv():
    """Download the current spectrum as CSV (header only until both vectors exist)."""
    session = _session
    if session is None:
        df = snapshot_to_frame(Snapshot())
    else:
        df = snapshot_to_frame(session.store.snapshot())

    buffer = io.StringIO()
    df.to_csv(buffer, index=False)
    buffer.seek(0)

    return StreamingResponse(
        iter([buffer.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=spectrum.csv"},
    )


# =============================================================================
# Session Control
# =============================================================================

@app.post("/connect", response_model=ConnectResponse)
async def connect(
    device: Optional[str] = Query(None, description="Device path or /dev/serial/by-id substring"),
    baud: Optional[int] = Query(None, ge=1),
    period_s: Optional[float] = Query(None, gt=0),
):
    """Start monitoring a device. Unset parameters come from the environment."""
    config = SessionConfig.from_env()
    overrides = {}
    if device is not None:
        overrides["device"] = device
    if baud is not None:
        overrides["baud"] = baud
    if period_s is not None:
        overrides["sample_period_s"] = period_s
    if overrides:
        config = replace(config, **overrides)

    logger.info(f"Connecting to {config.device!r}...")
    _start_session(config)
    return ConnectResponse(status="connected", device=config.device)


@app.post("/disconnect")
async def disconnect():
    """Stop monitoring and close the device."""
    _stop_session()
    return {"status": "disconnected"}


# =============================================================================
# Health Check
# =============================================================================

@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "service": "Spectryx Blue Monitor",
        "version": API_VERSION,
        "status": "online"
    }


@app.get("/version")
async def version():
    """Version tracking endpoint for debugging and compatibility checks."""
    return {
        "api": API_VERSION,
        "git": GIT_COMMIT,
        "status": "online"
    }


# =============================================================================
# Startup/Shutdown Events
# =============================================================================

@app.on_event("startup")
async def startup_event():
    """Log configuration and start monitoring the configured device."""
    config = SessionConfig.from_env()

    logger.info("=" * 60)
    logger.info("Spectryx Blue Monitor started")
    logger.info(f"Version: {API_VERSION}")
    logger.info(f"Git Commit: {GIT_COMMIT}")
    logger.info(f"Host: {API_HOST}")
    logger.info(f"Port: {API_PORT}")
    logger.info(f"Device: {config.device}")
    logger.info(f"Baud: {config.baud}")
    logger.info(f"Sample Period: {config.sample_period_s}s")
    logger.info(f"Static Dir: {STATIC_DIR}")
    logger.info(f"Log Level: {LOG_LEVEL}")
    logger.info("=" * 60)

    if AUTOSTART:
        # Failing to open at startup is fatal; let it propagate to the server
        _start_session(config)


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the session on shutdown."""
    logger.info("Shutting down Spectryx Blue Monitor...")
    _stop_session()
    logger.info("Shutdown complete")


# Mounted last so API routes take precedence over files
if Path(STATIC_DIR).is_dir():
    app.mount("/", StaticFiles(directory=STATIC_DIR, html=True), name="static")
    logger.info(f"Static files mounted from {STATIC_DIR}")
