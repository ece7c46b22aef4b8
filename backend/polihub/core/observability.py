import logging

from fastapi import Request

from polihub.core.api_response import get_request_id


def _principal_ref(request: Request) -> str:
    principal = getattr(request.state, "principal", None)
    if principal is None:
        return "-"
    return f"{principal.kind}:{principal.subject_id}"


def log_business_event(
    logger: logging.Logger,
    request: Request,
    *,
    event: str,
    **fields,
) -> None:
    request_id = get_request_id(request)
    chunks = [f"event={event}", f"request_id={request_id}", f"principal={_principal_ref(request)}"]
    for key, value in fields.items():
        chunks.append(f"{key}={value}")
    logger.info("business_event %s", " ".join(chunks))
