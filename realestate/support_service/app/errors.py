"""Domain errors raised by the support case core and their HTTP mapping."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class SupportCaseError(Exception):
    """Base class for errors reported back to the caller."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class SupportValidationError(SupportCaseError):
    """A required field is missing or malformed."""

    status_code = status.HTTP_400_BAD_REQUEST


class SupportNotFoundError(SupportCaseError):
    """A referenced case or message does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class SupportAuthorizationError(SupportCaseError):
    """The caller may not see or act on the requested case or listing."""

    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, detail: str = "Forbidden") -> None:
        super().__init__(detail)


async def _support_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, SupportCaseError)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


async def _request_validation_handler(_request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, RequestValidationError)
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    logger.debug("Rejected malformed request: %s", errors)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid request", "errors": errors},
    )


def register_error_handlers(app: FastAPI) -> None:
    """Translate domain errors and request validation failures into responses."""

    app.add_exception_handler(SupportCaseError, _support_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
