from fastapi import HTTPException, status


class AppError(HTTPException):
    """HTTPException with a stable machine-readable error code."""

    code = "error"
    status_code_default = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail="Request failed", *, headers: dict[str, str] | None = None):
        super().__init__(status_code=self.status_code_default, detail=detail, headers=headers)


class Unauthenticated(AppError):
    code = "unauthenticated"
    status_code_default = status.HTTP_401_UNAUTHORIZED

    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class Unauthorized(AppError):
    code = "unauthorized"
    status_code_default = status.HTTP_403_FORBIDDEN

    def __init__(self, permission: str | None = None, detail: str | None = None):
        self.permission = permission
        if detail is None:
            detail = f"Permission required: {permission}" if permission else "Insufficient permissions"
        super().__init__(detail)


class RateLimited(AppError):
    code = "rate_limited"
    status_code_default = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, retry_after: int, detail: str = "Too many requests. Try again later."):
        self.retry_after = max(1, int(retry_after))
        super().__init__(
            {"message": detail, "retry_after": self.retry_after},
            headers={"Retry-After": str(self.retry_after)},
        )


class ContentRejected(AppError):
    code = "content_rejected"
    status_code_default = 422

    def __init__(self, reasons: list[str], flag_id: int | None = None):
        self.reasons = list(reasons)
        self.flag_id = flag_id
        super().__init__({"message": "Content rejected", "reasons": self.reasons, "flag_id": flag_id})


class InputValidationError(AppError):
    code = "validation_error"
    status_code_default = status.HTTP_400_BAD_REQUEST


class AccountLocked(AppError):
    code = "account_locked"
    status_code_default = status.HTTP_423_LOCKED

    def __init__(self, locked_until: str | None = None):
        super().__init__({"message": "Account temporarily locked", "locked_until": locked_until})


def error_message(detail) -> str:
    if isinstance(detail, str):
        return detail
    if isinstance(detail, dict) and isinstance(detail.get("message"), str):
        return detail["message"]
    return "Request failed"
