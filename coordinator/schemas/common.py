"""Common schemas used across multiple endpoints."""

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Response model for errors."""
    detail: str
    code: str


class NotFoundResponse(BaseModel):
    """Response model for an upload that has not been started."""
    message: str
