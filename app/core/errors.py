import json
import uuid
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

T = TypeVar("T")


class AppError(Exception):
    """Base for errors that map onto an error envelope."""

    code = "APP_ERROR"
    status_code = 400

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(AppError):
    code = "NOT_FOUND"
    status_code = 404


class OwnershipError(NotFoundError):
    """The entity exists but belongs to another user."""

    code = "FORBIDDEN"
    status_code = 403


class InvalidInputError(AppError):
    code = "VALIDATION_ERROR"
    status_code = 422


class UnauthorizedError(AppError):
    code = "UNAUTHORIZED"
    status_code = 401


class RateLimitedError(AppError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429


class UpstreamError(AppError):
    code = "UPSTREAM_ERROR"
    status_code = 502


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: Any = None


class ApiResponse(BaseModel, Generic[T]):
    """Uniform result envelope returned by every public service operation."""

    success: bool
    data: T | None = None
    error: ErrorDetail | None = None
    timestamp: datetime

    # Set from the error class so routers can pick an HTTP status
    status_code: int = Field(default=200, exclude=True)

    @classmethod
    def ok(cls, data: Any = None) -> "ApiResponse":
        return cls(success=True, data=data, timestamp=datetime.now(timezone.utc))

    @classmethod
    def fail(cls, exc: AppError) -> "ApiResponse":
        return cls(
            success=False,
            error=ErrorDetail(code=exc.code, message=exc.message, details=exc.details),
            timestamp=datetime.now(timezone.utc),
            status_code=exc.status_code,
        )


def parse_input(schema: type[BaseModel], data: Any) -> Any:
    """Validate a mapping (or pass through a model) as ``schema``."""
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data)
    except PydanticValidationError as exc:
        raise InvalidInputError(
            "Invalid input", details=json.loads(exc.json(include_url=False))
        ) from exc


def parse_uuid(value: Any, label: str = "id") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise InvalidInputError(f"Invalid {label}: {value}") from exc
