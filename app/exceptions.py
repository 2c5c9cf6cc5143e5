"""
Error taxonomy for the booking engine.

Every error carries a stable ``kind`` tag and the HTTP status it maps to.
Routers and CRUD raise these; ``register_exception_handlers`` renders them as
``{"kind": ..., "detail": ..., **context}``.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from tortoise.exceptions import (
    DBConnectionError,
    IntegrityError,
    OperationalError,
    TransactionManagementError,
)

# ORM failures that are reported as StorageFault
STORAGE_ERRORS = (
    DBConnectionError,
    IntegrityError,
    OperationalError,
    TransactionManagementError,
)


class BookingError(Exception):
    kind = "booking_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "detail": self.message, **self.context}


class InvalidBookingRequest(BookingError):
    kind = "invalid_booking_request"


class ServiceUnavailable(InvalidBookingRequest):
    """A referenced catalog service is absent or inactive."""

    kind = "service_unavailable"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class ValidationFailed(BookingError):
    kind = "validation_failed"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class Unauthorized(BookingError):
    kind = "unauthorized"
    status_code = status.HTTP_403_FORBIDDEN


class InvalidTransitionTarget(BookingError):
    kind = "invalid_transition_target"


class NotFound(BookingError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class AlreadyRated(BookingError):
    kind = "already_rated"
    status_code = status.HTTP_409_CONFLICT


class NotCompleted(BookingError):
    kind = "not_completed"
    status_code = status.HTTP_409_CONFLICT


class StorageFault(BookingError):
    """
    Persistence failed. ``committed`` tells the caller whether the primary
    booking mutation is durable, ``step`` names what was being written.
    """

    kind = "storage_fault"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


async def _booking_error_handler(_: Request, exc: BookingError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code, content=jsonable_encoder(exc.to_dict())
    )


async def _request_validation_handler(
    _: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=jsonable_encoder(
            {"kind": ValidationFailed.kind, "detail": exc.errors()}
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, _booking_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _request_validation_handler)  # type: ignore[arg-type]
