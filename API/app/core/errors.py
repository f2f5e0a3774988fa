import logging
import uuid

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class EntityNotFoundError(LookupError):
    """A local record addressed by a provider id does not exist (or is soft-deleted)."""

    def __init__(self, entity: str, external_id: str):
        self.entity = entity
        self.external_id = external_id
        super().__init__(f"{entity} with provider id {external_id} not found")


class IdentityProviderError(RuntimeError):
    pass


class CircuitOpenError(IdentityProviderError):
    pass


class WebhookSignatureError(ValueError):
    pass


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def error_response(
    request: Request,
    *,
    code: str,
    message: str,
    status_code: int,
    details=None,
    extra: dict | None = None,
) -> JSONResponse:
    payload = {
        "success": False,
        "error": message,
        "code": code,
        "request_id": get_request_id(request),
    }
    if details is not None:
        payload["details"] = details
    if extra:
        payload.update(extra)
    return JSONResponse(status_code=status_code, content=payload)


async def http_exception_handler(request: Request, exc: HTTPException):
    return error_response(
        request,
        code="http_error",
        message=str(exc.detail),
        status_code=exc.status_code,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return error_response(
        request,
        code="validation_error",
        message="Request validation failed",
        status_code=422,
        details=exc.errors(),
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception | request_id=%s", get_request_id(request), exc_info=exc)
    return error_response(
        request,
        code="internal_error",
        message="Internal server error",
        status_code=500,
    )


async def request_id_middleware(request: Request, call_next):
    incoming = request.headers.get("x-request-id")
    request.state.request_id = incoming or str(uuid.uuid4())
    response = await call_next(request)
    response.headers["x-request-id"] = request.state.request_id
    return response
