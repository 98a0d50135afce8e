from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import time
import uuid
from datetime import datetime, timezone
from .config import settings
from .db import close_pools
from .errors import BitAgoraError, http_status_for, user_message
from .logs import json_log
from .store import StoreError, get_store
from .routers.auth import router as auth_router
from .routers.business_stats import router as business_stats_router
from .routers.cart_sessions import router as cart_sessions_router
from .routers.crypto import router as crypto_router
from .routers.debug import router as debug_router
from .routers.employees import router as employees_router
from .routers.feature_flags import router as feature_flags_router
from .routers.lightning import router as lightning_router
from .routers.onboarding import router as onboarding_router
from .routers.payment_settings import router as payment_settings_router
from .routers.payments import router as payments_router
from .routers.products import router as products_router
from .routers.qr_providers import router as qr_providers_router
from .routers.tax_settings import router as tax_settings_router
from .routers.transactions import router as transactions_router
from .routers.users import router as users_router

SERVICE_NAME = "bitagora-pos-api"

app = FastAPI(title="BitAgora POS API", version=settings.api_version)
STARTED_AT_UTC = datetime.now(timezone.utc)


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


@app.exception_handler(BitAgoraError)
def _bitagora_error(req: Request, exc: BitAgoraError):
    status = http_status_for(exc)
    json_log(
        "warning" if status < 500 else "error",
        "http.request.domain_error",
        request_id=_current_request_id(req),
        path=req.url.path,
        error_type=exc.type.value,
        error=exc.message,
    )
    content = {"detail": user_message(exc), "error_type": exc.type.value}
    if settings.debug_enabled:
        content["error"] = exc.message
        if exc.details is not None:
            content["details"] = exc.details
    return JSONResponse(status_code=status, content=content)


@app.exception_handler(StoreError)
def _store_error(req: Request, exc: StoreError):
    json_log("error", "store.unavailable", request_id=_current_request_id(req), path=req.url.path, error=str(exc))
    content = {"detail": "store unavailable"}
    if settings.debug_enabled:
        content["error"] = str(exc)
    return JSONResponse(status_code=503, content=content)


@app.exception_handler(RequestValidationError)
def _request_validation_error(_req: Request, exc: Exception):
    content = {"detail": "validation failed"}
    if settings.debug_enabled and hasattr(exc, "errors"):
        content["errors"] = exc.errors()
    return JSONResponse(status_code=422, content=content)


@app.exception_handler(Exception)
def _unhandled_exception(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error=str(exc),
    )
    content = {"detail": "internal error", "request_id": rid}
    if settings.debug_enabled:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


# Correlation id + basic structured request logging.
@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.time()
    path = request.url.path
    method = request.method
    client_ip = (request.client.host if request.client else None)

    try:
        response = await call_next(request)
    except Exception as exc:
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "error",
            "http.request.error",
            request_id=rid,
            method=method,
            path=path,
            client_ip=client_ip,
            duration_ms=dur_ms,
            error=str(exc),
        )
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    if not path.startswith("/health"):
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "info",
            "http.request",
            request_id=rid,
            method=method,
            path=path,
            status_code=response.status_code,
            merchant_id=request.headers.get("X-Merchant-Id"),
            client_ip=client_ip,
            duration_ms=dur_ms,
        )
    return response

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(users_router)
app.include_router(auth_router)
app.include_router(employees_router)
app.include_router(products_router)
app.include_router(transactions_router)
app.include_router(cart_sessions_router)
app.include_router(business_stats_router)
app.include_router(tax_settings_router)
app.include_router(payment_settings_router)
app.include_router(qr_providers_router)
app.include_router(onboarding_router)
app.include_router(crypto_router)
app.include_router(lightning_router)
app.include_router(payments_router)
app.include_router(feature_flags_router)
# Dev-only helpers (route handlers self-disable outside local/dev).
app.include_router(debug_router)


@app.on_event("startup")
def _startup():
    ok, err = _store_health()
    if ok:
        json_log("info", "startup.store_ready", env=settings.env, version=settings.api_version, store=settings.store_backend)
    else:
        json_log("warning", "startup.store_probe_failed", env=settings.env, store=settings.store_backend, error=err)


@app.on_event("shutdown")
def _shutdown():
    close_pools()


@app.get("/")
def root():
    return {"status": "ok", "service": SERVICE_NAME}


def _store_health():
    try:
        if get_store().ping():
            return True, None
        return False, "store ping failed"
    except Exception as exc:
        return False, str(exc)


@app.get("/health")
def health(req: Request):
    request_id = _current_request_id(req)
    ok, err = _store_health()
    content = {
        "status": "ok" if ok else "degraded",
        "env": settings.env,
        "store": settings.store_backend,
        "store_status": "ok" if ok else "down",
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "started_at": STARTED_AT_UTC.isoformat(),
        "request_id": request_id,
    }
    if not ok:
        if settings.debug_enabled:
            content["error"] = err
        return JSONResponse(status_code=503, content=content)
    return content


@app.get("/health/live")
def health_live(req: Request):
    return {
        "status": "ok",
        "env": settings.env,
        "service": SERVICE_NAME,
        "request_id": _current_request_id(req),
    }


@app.get("/health/ready")
def health_ready(req: Request):
    request_id = _current_request_id(req)
    ok, err = _store_health()
    content = {
        "status": "ready" if ok else "degraded",
        "env": settings.env,
        "store": settings.store_backend,
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "request_id": request_id,
    }
    if not ok:
        if settings.debug_enabled:
            content["error"] = err
        return JSONResponse(status_code=503, content=content)
    return content


@app.get("/meta")
def meta():
    return {
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "env": settings.env,
        "store": settings.store_backend,
        "uptime_seconds": int((datetime.now(timezone.utc) - STARTED_AT_UTC).total_seconds()),
        "started_at": STARTED_AT_UTC.isoformat(),
    }
