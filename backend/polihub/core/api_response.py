from fastapi import Request
from fastapi.responses import JSONResponse

from polihub.core.errors import AppError, error_message


def get_request_id(request: Request) -> str:
    rid = getattr(request.state, "request_id", None)
    return str(rid) if rid else "-"


def _envelope(request: Request, ok: bool, **body) -> dict:
    return {"ok": ok, **body, "request_id": get_request_id(request)}


def success_response_payload(request: Request, *, data, meta: dict | None = None) -> dict:
    return _envelope(request, True, data=data, meta=meta or {})


def error_response_payload(request: Request, *, code: str, message: str, details=None) -> dict:
    return _envelope(request, False, error={"code": code, "message": message, "details": details})


def error_response(
    request: Request,
    status_code: int,
    *,
    code: str,
    message: str,
    details=None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_response_payload(request, code=code, message=message, details=details),
        headers=headers,
    )


def app_error_response(request: Request, exc: AppError) -> JSONResponse:
    """Envelope for a typed error; Retry-After and similar headers pass through."""
    return error_response(
        request,
        exc.status_code,
        code=exc.code,
        message=error_message(exc.detail),
        details=exc.detail,
        headers=exc.headers,
    )
