"""
funny-ip-etcd-detector — FastAPI Server
========================================

RESTful API for scanning etcd bolt stores for IPv4 addresses with
leading zeros.

Endpoints:
    POST /scan              Scan a store file (or data dir) on the server
    POST /scan/file         Upload a db file for scanning
    GET  /health            Health check / readiness probe

Run:
    uvicorn api:app --reload              # Dev (http://localhost:8000)
    uvicorn api:app --host 0.0.0.0        # Production

Docs:
    http://localhost:8000/docs             # Swagger UI (auto-generated)
    http://localhost:8000/redoc            # ReDoc (alternative)
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, UploadFile
from pydantic import BaseModel, Field

from funny_ip_detector import __version__
from funny_ip_detector.config import ScanConfig, is_under_root, resolve_db_path
from funny_ip_detector.exceptions import (
    BucketNotFoundError,
    DecodeError,
    InvalidStoreError,
    LockTimeoutError,
    ScanError,
    StoreOpenError,
)
from funny_ip_detector.models import Finding, ScanReport
from funny_ip_detector.scanner import scan_store

load_dotenv()

MAX_UPLOAD_BYTES = 256 * 1024 * 1024
_UPLOAD_CHUNK = 1024 * 1024


# ─── Application Lifespan (load configuration) ───────────────────────

_defaults: ScanConfig | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Read scan defaults from the environment on startup."""
    global _defaults  # noqa: PLW0603
    _defaults = ScanConfig.from_env()
    yield
    _defaults = None


# ─── FastAPI App ─────────────────────────────────────────────────────

app = FastAPI(
    title="funny-ip-etcd-detector API",
    description=(
        "Read-only forensic scan of etcd bolt stores. Finds dotted-decimal "
        "IPv4 addresses with leading zeros, which strict parsers reject."
    ),
    version=__version__,
    lifespan=lifespan,
)


# ─── Request / Response Schemas ─────────────────────────────────────


class ScanOptions(BaseModel):
    """Per-request overrides of the server's scan defaults."""

    bucket: Optional[str] = Field(default=None, min_length=1)
    limit: Optional[int] = Field(default=None, ge=0)
    decode: Optional[bool] = None
    match_all: Optional[bool] = None
    debug: Optional[bool] = None
    ascending: bool = False


class ScanRequest(ScanOptions):
    """Request body for the /scan endpoint."""

    path: str = Field(
        ...,
        min_length=1,
        description="A db file, or an etcd data dir (resolved to member/snap/db).",
        json_schema_extra={"example": "/var/lib/etcd"},
    )


class ScanResponse(BaseModel):
    """Structured scan report returned by the API."""

    store_path: str
    bucket: str
    is_valid: bool
    records_scanned: int
    invalid_count: int
    invalid_addresses: list[str]
    findings: list[Finding]
    diagnostics: list[str] = Field(description="Line-oriented output of the walk")

    model_config = {"json_schema_extra": {"example": {
        "store_path": "/var/lib/etcd/member/snap/db",
        "bucket": "key",
        "is_valid": False,
        "records_scanned": 1204,
        "invalid_count": 1,
        "invalid_addresses": ["10.001.20.30"],
        "findings": [
            {
                "severity": "ERROR",
                "code": "INVALID_IPV4_ADDRESS",
                "key": "/registry/services/specs/default/web",
                "revision": "{main:812 sub:0}",
                "addresses": ["10.001.20.30"],
                "message": "1 IPv4 address(es) with leading zeros; strict parsers reject these.",
            }
        ],
        "diagnostics": [
            "WARNING Invalid IPv4 addresses ['10.001.20.30'] on key: "
            "'/registry/services/specs/default/web'"
        ],
    }}}


class HealthResponse(BaseModel):
    status: str
    version: str
    lock_timeout: float


# ─── Helpers ─────────────────────────────────────────────────────────


def _get_defaults() -> ScanConfig:
    if _defaults is None:
        raise HTTPException(status_code=503, detail="Service not initialised")
    return _defaults


def _build_config(options: ScanOptions) -> ScanConfig:
    """Overlay request options on the server defaults."""
    defaults = _get_defaults()
    overrides = options.model_dump(exclude={"ascending", "path"}, exclude_none=True)
    overrides["reverse"] = not options.ascending
    return defaults.model_copy(update=overrides)


def _status_for(exc: ScanError) -> int:
    if isinstance(exc, LockTimeoutError):
        return 423
    if isinstance(exc, (StoreOpenError, BucketNotFoundError)):
        return 404
    if isinstance(exc, (DecodeError, InvalidStoreError)):
        return 422
    return 500


def _run_scan(path: str, config: ScanConfig, display_path: str | None = None) -> ScanResponse:
    """Run a scan, collecting diagnostics lines instead of printing them."""
    lines: list[str] = []
    try:
        report = scan_store(path, config, emit=lines.append)
    except ScanError as exc:
        raise HTTPException(
            status_code=_status_for(exc),
            detail={"code": exc.code, "message": exc.message, "details": exc.details},
        ) from exc
    return _build_response(report, lines, display_path)


def _build_response(report: ScanReport, lines: list[str], display_path: str | None) -> ScanResponse:
    """Convert the internal ScanReport to the API response schema."""
    return ScanResponse(
        store_path=display_path or report.store_path,
        bucket=report.bucket,
        is_valid=report.is_valid,
        records_scanned=report.records_scanned,
        invalid_count=len(report.invalid_addresses),
        invalid_addresses=report.invalid_addresses,
        findings=report.findings,
        diagnostics=lines,
    )


# ─── Endpoints ───────────────────────────────────────────────────────


@app.post(
    "/scan",
    summary="Scan a store on the server's filesystem",
    tags=["Scan"],
    responses={
        403: {"description": "Path is outside the configured data root"},
        404: {"description": "Store file or bucket not found"},
        422: {"description": "Store or record is malformed"},
        423: {"description": "Timed out waiting for the store's file lock"},
        503: {"description": "Service not yet initialised"},
    },
)
def scan(request: ScanRequest) -> ScanResponse:
    """Walk the bucket and report addresses with leading zeros.

    Returns a structured report with:
    - **is_valid**: `true` if no invalid address was seen
    - **findings**: one entry per record with invalid (or, with match_all, any) addresses
    - **diagnostics**: the same lines the CLI prints

    The path is opened on the server, which takes an exclusive lock on it for
    the length of the scan. Set FUNNY_IP_DATA_ROOT to confine requests to one
    directory; without it any readable file can be named.
    """
    config = _build_config(request)
    db_path = resolve_db_path(request.path)
    if config.data_root and not is_under_root(db_path, config.data_root):
        raise HTTPException(
            status_code=403,
            detail={
                "code": "PATH_NOT_ALLOWED",
                "message": f"{str(db_path)!r} is outside the data root",
                "details": {"path": str(db_path)},
            },
        )
    return _run_scan(str(db_path), config)


@app.post(
    "/scan/file",
    summary="Scan an uploaded db file",
    tags=["Scan"],
    responses={
        413: {"description": "File too large (max 256 MiB)"},
        422: {"description": "Upload is not a valid store or has malformed records"},
        404: {"description": "Bucket not found"},
        503: {"description": "Service not yet initialised"},
    },
)
async def scan_file(file: UploadFile) -> ScanResponse:
    """Upload a bolt db file (for example an etcd snapshot) and scan it with the server defaults."""
    if file.size and file.size > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large (max 256 MiB)")

    config = _build_config(ScanOptions())
    fd, tmp_path = tempfile.mkstemp(suffix=".db")
    try:
        written = 0
        with os.fdopen(fd, "wb") as out:
            while chunk := await file.read(_UPLOAD_CHUNK):
                written += len(chunk)
                if written > MAX_UPLOAD_BYTES:
                    raise HTTPException(status_code=413, detail="File too large (max 256 MiB)")
                out.write(chunk)
        return await asyncio.to_thread(_run_scan, tmp_path, config, file.filename or "upload.db")
    finally:
        os.unlink(tmp_path)


@app.get(
    "/health",
    summary="Health check",
    tags=["System"],
    responses={503: {"description": "Service not yet initialised"}},
)
def health_check() -> HealthResponse:
    """Returns service status and configuration info."""
    defaults = _get_defaults()
    return HealthResponse(
        status="healthy",
        version=__version__,
        lock_timeout=defaults.lock_timeout,
    )
