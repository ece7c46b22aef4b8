import os
import logging
import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from polihub.api.admin import router as admin_router
from polihub.api.auth import router as auth_router
from polihub.api.moderation import router as moderation_router
from polihub.api.posts import router as posts_router
from polihub.api.trust import router as trust_router
from polihub.core.api_response import (
    app_error_response,
    error_response,
    get_request_id,
    success_response_payload,
)
from polihub.core.errors import AppError, RateLimited, error_message
from polihub.core.metrics import increment_counter, prometheus_text, snapshot_metrics
from polihub.core.rate_limit import api_limiter, request_key
from polihub.core.security import require_permission
from polihub.db.models.staff import Staff
from polihub.db.session import SessionLocal
from polihub.services.staff import parse_admin_emails, sync_admin_staff

logger = logging.getLogger(__name__)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


@asynccontextmanager
async def lifespan(_: FastAPI):
    admin_emails = parse_admin_emails(os.getenv("ADMIN_EMAILS", ""))
    admin_password = os.getenv("ADMIN_PASSWORD")
    if admin_emails:
        db: Session = SessionLocal()
        try:
            result = sync_admin_staff(db, admin_emails, admin_password)
            logger.info(
                "admin_sync created=%s promoted=%s skipped=%s",
                result.created,
                result.promoted,
                result.skipped_create_without_password,
            )
        finally:
            db.close()
    yield


app = FastAPI(title="PoliHub API", lifespan=lifespan)
app.include_router(auth_router)
app.include_router(admin_router)
app.include_router(posts_router)
app.include_router(moderation_router)
app.include_router(trust_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _count_error(request: Request, status_code: int) -> None:
    increment_counter(
        "http_errors_total",
        code=str(status_code),
        path=request.url.path,
        method=request.method.upper(),
    )


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid4().hex
    request.state.request_id = request_id
    started_at = time.perf_counter()
    if request.url.path.startswith("/api/"):
        try:
            api_limiter.hit(request_key(request))
        except RateLimited as exc:
            _count_error(request, exc.status_code)
            response = app_error_response(request, exc)
            response.headers["X-Request-ID"] = request_id
            return response
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started_at) * 1000
    response.headers["X-Request-ID"] = request_id
    if request.url.path not in {"/metrics", "/metrics/prometheus"}:
        increment_counter(
            "http_requests_total",
            method=request.method.upper(),
            path=request.url.path,
            status=str(response.status_code),
        )
    logger.info(
        "http_request request_id=%s method=%s path=%s status=%s duration_ms=%.2f",
        request_id,
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
    )
    return response


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    _count_error(request, exc.status_code)
    if isinstance(exc, AppError):
        return app_error_response(request, exc)
    return error_response(
        request,
        exc.status_code,
        code=f"http_{exc.status_code}",
        message=error_message(exc.detail),
        details=exc.detail,
        headers=exc.headers,
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": str(err.get("msg", "")), "type": str(err.get("type", ""))}
        for err in exc.errors()
    ]


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    _count_error(request, 422)
    return error_response(
        request,
        422,
        code="validation_error",
        message="Validation error",
        details=jsonable_errors(exc),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    _count_error(request, 500)
    logger.exception("Unhandled error request_id=%s", get_request_id(request), exc_info=exc)
    return error_response(request, 500, code="internal_error", message="Internal server error")


@app.get("/health")
def health(request: Request):
    return {"ok": True, "status": "ok", "request_id": get_request_id(request)}


@app.get("/metrics")
def metrics(request: Request, _: Staff = Depends(require_permission("audit.view"))):
    return success_response_payload(request, data={"counters": snapshot_metrics()})


@app.get("/metrics/prometheus")
def metrics_prometheus():
    return PlainTextResponse(content=prometheus_text(), media_type="text/plain; version=0.0.4; charset=utf-8")
