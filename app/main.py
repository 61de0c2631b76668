import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.core.config import (
    CRYPTO_BACKEND,
    MASTER_KEY_HEX,
    MAX_REQUEST_BYTES,
    MAX_REQUEST_JSON_DEPTH,
    KeyServerConfig,
)
from app.logging_config import configure_logging
from app.keyserver.api_models import (
    ERROR_HTTP_STATUS,
    ErrorCode,
    ErrorDetail,
    ErrorResponse,
    FetchKeyRequest,
)
from app.keyserver.crypto import load_crypto_backend
from app.keyserver.delivery import KeyDeliveryService
from app.keyserver.encoding import check_json_shape
from app.keyserver.exceptions import KeyServerError
from app.keyserver.pipeline import AuthorizationPipeline, to_error_detail
from app.keyserver.simulation import SimulationClient

configure_logging()
log = logging.getLogger("keyserver")

_pipeline: Optional[AuthorizationPipeline] = None


def build_pipeline(config: KeyServerConfig) -> AuthorizationPipeline:
    """Assemble the pipeline from process configuration.

    Raises:
        RuntimeError: Master key or crypto backend not configured.
    """
    if not MASTER_KEY_HEX:
        raise RuntimeError("KEYSERVER_MASTER_KEY is not set")
    if not CRYPTO_BACKEND:
        raise RuntimeError("KEYSERVER_CRYPTO_BACKEND is not set")
    delivery = KeyDeliveryService(
        master_key=bytes.fromhex(MASTER_KEY_HEX),
        backend=load_crypto_backend(CRYPTO_BACKEND),
    )
    return AuthorizationPipeline(
        config=config,
        simulation_client=SimulationClient.from_config(config),
        delivery=delivery,
    )


def get_pipeline() -> AuthorizationPipeline:
    """Get or create the pipeline singleton."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline(KeyServerConfig.from_env())
    return _pipeline


def set_pipeline(pipeline: Optional[AuthorizationPipeline]) -> None:
    """Replace the pipeline singleton (tests inject fakes here)."""
    global _pipeline
    _pipeline = pipeline


async def close_pipeline() -> None:
    """Close the pipeline singleton's simulation client, if one was built."""
    global _pipeline
    if _pipeline is not None:
        await _pipeline.aclose()
        _pipeline = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    log.info("Starting key server...")
    yield
    log.info("Shutting down key server...")
    await close_pipeline()
    log.info("Key server stopped")


app = FastAPI(title="Key Server", version="0.1.0", lifespan=lifespan)


def _error_response(detail: ErrorDetail, request_id: Optional[str] = None) -> JSONResponse:
    headers = {"x-request-id": request_id} if request_id else None
    return JSONResponse(
        status_code=ERROR_HTTP_STATUS.get(detail.code, 500),
        content=ErrorResponse(error=detail).model_dump(),
        headers=headers,
    )


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.middleware("http")
async def req_log(request: Request, call_next):
    start = time.time()
    route = request.url.path
    remote = request.client.host if request.client else "-"
    request.state.request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    resp = await call_next(request)
    duration_ms = int((time.time() - start) * 1000)
    log.info(f"request_complete status={resp.status_code} duration_ms={duration_ms}",
             extra={"request_id": request.state.request_id,
                    "route": route, "remote_addr": remote})
    return resp


async def _read_request(request: Request) -> FetchKeyRequest:
    """Read and validate the fetch-key body without the stdlib JSON decoder.

    Raises:
        KeyServerError: Body too large, nested too deeply or malformed.
    """
    declared = request.headers.get("content-length")
    if declared is not None:
        try:
            too_large = int(declared) > MAX_REQUEST_BYTES
        except ValueError:
            raise KeyServerError(ErrorCode.INVALID_REQUEST_FORMAT, "Invalid Content-Length header")
        if too_large:
            raise KeyServerError(
                ErrorCode.REQUEST_TOO_LARGE, f"Request body exceeds {MAX_REQUEST_BYTES} bytes"
            )

    body = await request.body()
    if len(body) > MAX_REQUEST_BYTES:
        raise KeyServerError(
            ErrorCode.REQUEST_TOO_LARGE, f"Request body exceeds {MAX_REQUEST_BYTES} bytes"
        )
    check_json_shape(
        body, "Request body", max_bytes=MAX_REQUEST_BYTES, max_depth=MAX_REQUEST_JSON_DEPTH
    )
    try:
        return FetchKeyRequest.model_validate_json(body)
    except ValidationError as e:
        raise KeyServerError(
            ErrorCode.INVALID_REQUEST_FORMAT,
            f"Request body is malformed: {e.error_count()} validation error(s)",
        )


@app.post("/v1/fetch_key_ethereum")
async def fetch_key_ethereum(request: Request):
    req_id = request.state.request_id
    log.debug("fetch_key_ethereum_called", extra={"request_id": req_id,
                                                 "route": "/v1/fetch_key_ethereum"})
    try:
        req = await _read_request(request)
    except KeyServerError as e:
        log.info(f"Fetch key request rejected: {e.code}: {e.message}",
                 extra={"request_id": req_id})
        return _error_response(to_error_detail(e), req_id)

    try:
        pipeline = get_pipeline()
    except (RuntimeError, ValueError, ImportError) as e:
        log.error(f"Key server is misconfigured: {e}", extra={"request_id": req_id})
        return _error_response(ErrorDetail(
            code=ErrorCode.INTERNAL_ERROR, message="Key server is not configured"
        ), req_id)

    try:
        resp = await pipeline.fetch_keys(req, request_id=req_id)
    except KeyServerError as e:
        return _error_response(to_error_detail(e), req_id)
    return JSONResponse(resp.model_dump(), headers={"x-request-id": req_id})


@app.get("/version")
def version():
    # GIT_SHA is injected at deploy time
    return {"git_sha": os.getenv("GIT_SHA", "unknown")}


@app.get("/admin")
def admin():
    """Return non-secret configuration for operator visibility.

    Gated by ADMIN_ENDPOINT_ENABLED (default: True for dev, False for prod).
    """
    from app.core.config import (
        ADMIN_ENDPOINT_ENABLED,
        SEAL_APPROVE_SIGNATURE,
        SESSION_KEY_TTL_MAX,
    )

    if not ADMIN_ENDPOINT_ENABLED:
        return JSONResponse(
            status_code=404,
            content={"detail": "Admin endpoint disabled"}
        )

    config = KeyServerConfig.from_env()
    return {
        "normative": {
            "session_key_ttl_max": SESSION_KEY_TTL_MAX,
            "seal_approve_signature": SEAL_APPROVE_SIGNATURE,
        },
        "policy": {
            "network_id": config.network_id,
            "allow_multi_contract_bundles": config.allow_multi_contract_bundles,
        },
        "simulation": {
            "url": config.simulation_url,
            "timeout_seconds": config.simulation_timeout,
            "access_key_configured": config.simulation_access_key is not None,
        },
        "limits": {
            "max_request_bytes": MAX_REQUEST_BYTES,
            "max_request_json_depth": MAX_REQUEST_JSON_DEPTH,
        },
        "environment": {
            "log_level": logging.getLogger().getEffectiveLevel(),
            "log_level_name": logging.getLevelName(logging.getLogger().getEffectiveLevel()),
        },
    }
