"""Error taxonomy and FastAPI exception handlers.

Every error leaves the API as ``{"message": ..., "code": ...}`` so clients can
branch on ``code`` (e.g. ``ALREADY_APPLIED`` vs ``MAX_APPLICANTS_REACHED``).
"""

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from .logging_config import get_logger

logger = get_logger("sasa.errors")


class MarketplaceError(Exception):
    """Base class for errors that map directly to an HTTP response."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "BAD_REQUEST"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"message": self.message, "code": self.code}


class NotFoundError(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class ForbiddenError(MarketplaceError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class InvalidStateError(MarketplaceError):
    """Operation is not valid for the current job/application status."""

    code = "INVALID_STATE"


class AlreadyAppliedError(MarketplaceError):
    code = "ALREADY_APPLIED"


class CapacityError(MarketplaceError):
    """The job already holds the maximum number of pending applications."""

    code = "MAX_APPLICANTS_REACHED"


class ConflictError(MarketplaceError):
    """Optimistic lock retries were exhausted."""

    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"


class ValidationFailedError(MarketplaceError):
    code = "VALIDATION_FAILED"

    def __init__(self, errors: list[dict], message: str = "Validation failed"):
        super().__init__(message)
        self.errors = errors

    def to_dict(self) -> dict:
        return {**super().to_dict(), "errors": self.errors}


def _field_errors(exc: RequestValidationError) -> list[dict]:
    errors = []
    for err in exc.errors():
        # Drop the leading "body"/"query" segment
        loc = [str(p) for p in err.get("loc", ())][1:]
        errors.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return errors


async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail, "code": f"HTTP_{exc.status_code}"},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = ValidationFailedError(_field_errors(exc))
    logger.info(f"{request.method} {request.url.path} | validation failed | {error.errors}")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
