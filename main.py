import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import sentry_sdk
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api import auth, gallery, photos, uploads, user
from app.core.errors import GalleryError
from app.core.logging_utils import configure_logging
from app.core.settings import settings
from app.models import AppErrorLog
from app.services.broadcast import build_broadcaster
from app.services.connections import get_registry
from app.services.moderation import build_moderator
from app.services.storage import LocalBlobStore, build_blob_store
from db import get_db

load_dotenv()

# Configure logging (console + rotating file; JSON by default)
configure_logging(settings)
logger = logging.getLogger("app")

if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        integrations=[StarletteIntegration()],
        traces_sample_rate=float(settings.SENTRY_TRACES_SAMPLE_RATE or 0.0),
        send_default_pii=False,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    await app.state.broadcaster.start()
    logger.info("app.startup", extra={"broadcast_backend": settings.BROADCAST_BACKEND})
    try:
        yield
    finally:
        await app.state.broadcaster.stop()
        logger.info("app.shutdown")


app = FastAPI(lifespan=lifespan)

# Collaborators live on app.state so routes (and tests) resolve them per request
app.state.blob_store = build_blob_store(settings)
app.state.moderator = build_moderator(settings)
app.state.broadcaster = build_broadcaster(settings, get_registry())

if isinstance(app.state.blob_store, LocalBlobStore):
    app.mount(
        "/storage",
        StaticFiles(directory=settings.LOCAL_STORAGE_ROOT, check_dir=False),
        name="storage",
    )

app.include_router(gallery.router)
app.include_router(photos.router)
app.include_router(uploads.router)
app.include_router(user.router)
app.include_router(auth.router)


@app.get("/health")
async def health():
    return {"ok": True, "connections": len(app.state.broadcaster.registry)}


# Request logging middleware with request id and user context
@app.middleware("http")
async def logging_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    start = time.perf_counter()
    duration_ms: Optional[int] = None
    # Stash request_id for downstream handlers
    request.state.request_id = request_id
    extra_ctx = {
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "client": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }
    logger.info("request.start", extra=extra_ctx)
    try:
        response = await call_next(request)
    except Exception:
        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.exception("request.error", extra={**extra_ctx, "duration_ms": duration_ms})
        # Re-raise to be handled by 500 handler
        raise

    duration_ms = int((time.perf_counter() - start) * 1000)
    response.headers["X-Request-ID"] = request_id
    logger.info(
        "request.end",
        extra={
            **extra_ctx,
            "user_id": getattr(request.state, "user_id", None),
            "status_code": response.status_code,
            "duration_ms": duration_ms,
        },
    )
    return response


def _record_error(
    request: Request,
    status: int,
    message: str,
    error_type: Optional[str] = None,
    stack: Optional[str] = None,
) -> None:
    """Best-effort write of an error to AppErrorLog; never masks the original error."""
    db_gen = get_db()
    try:
        db = next(db_gen)
        db.add(
            AppErrorLog(
                RequestID=getattr(request.state, "request_id", None),
                Path=str(request.url.path)[:500],
                Method=request.method,
                StatusCode=int(status),
                ErrorType=error_type,
                UserID=getattr(request.state, "user_id", None),
                ClientIP=request.client.host if request.client else None,
                UserAgent=(request.headers.get("user-agent") or "")[:255] or None,
                Message=message,
                StackTrace=stack,
            )
        )
        db.commit()
    except Exception:
        logger.warning("error_log.write_failed", exc_info=True)
    finally:
        db_gen.close()


def _json_error(request: Request, status: int, body: dict) -> JSONResponse:
    resp = JSONResponse(body, status_code=status)
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        resp.headers["X-Request-ID"] = str(request_id)
    return resp


@app.exception_handler(GalleryError)
async def gallery_error_handler(request: Request, exc: GalleryError):
    if exc.status_code >= 500:
        logger.error(
            "request.failed",
            extra={"path": request.url.path, "error": exc.error, "details": exc.details},
        )
    message = f"{exc.error}: {exc.details}" if exc.details else exc.error
    _record_error(request, exc.status_code, message, type(exc).__name__)
    return _json_error(request, exc.status_code, exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
    )
    _record_error(request, 400, f"Invalid input: {details}", "RequestValidationError")
    return _json_error(request, 400, {"error": "Invalid input", "details": details})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    status = exc.status_code or 500
    if status >= 400 and status != 404:
        _record_error(request, status, str(exc.detail), "HTTPException")
    return _json_error(request, status, {"error": str(exc.detail)})


@app.exception_handler(Exception)
async def server_error_handler(request: Request, exc: Exception):
    _record_error(
        request,
        500,
        str(exc),
        type(exc).__name__,
        "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    )
    return _json_error(request, 500, {"error": "Internal Server Error", "details": str(exc)})
