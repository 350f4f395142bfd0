"""Shared base for API request/response models (camelCase on the wire)."""

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ErrorResponse(BaseModel):
    """Body of every non-2xx answer (see the exception handlers in api.main)."""

    error: str
    code: str
    details: dict[str, Any] | list[dict[str, Any]] | None = None


# Documented on every router so the OpenAPI schema names the error body
ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Invalid input (VALIDATION_ERROR)"},
    401: {"model": ErrorResponse, "description": "Missing or invalid credentials (UNAUTHORIZED)"},
    403: {"model": ErrorResponse, "description": "Not allowed for this caller (FORBIDDEN)"},
    404: {"model": ErrorResponse, "description": "Unknown or inactive resource (NOT_FOUND)"},
    409: {"model": ErrorResponse, "description": "Slot taken or state does not allow it"},
}
