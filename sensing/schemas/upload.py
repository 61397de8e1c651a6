"""Pydantic schemas for upload responses."""

from typing import Literal

from pydantic import BaseModel, Field


class InvalidPointSummary(BaseModel):
    """A rejected point as reported to the uploader."""
    index: int = Field(..., ge=0, description="Position of the point in the batch")
    persisted: bool = Field(..., description="Whether the point was kept")
    reason: str = Field(..., description="Why the point was rejected")


class UploadResponse(BaseModel):
    """Summary returned after a successful upload.

    Example:
        {
            "result": "success",
            "valid_count": 2,
            "duplicate_count": 1,
            "invalid_points": [{"index": 3, "persisted": false, "reason": "..."}]
        }
    """
    result: Literal["success"] = "success"
    valid_count: int = Field(..., ge=0)
    duplicate_count: int = Field(..., ge=0)
    invalid_points: list[InvalidPointSummary] = Field(default_factory=list)


class ErrorEntry(BaseModel):
    code: str
    text: str


class ErrorResponse(BaseModel):
    """Body of every failed request."""
    result: Literal["failure"] = "failure"
    errors: list[ErrorEntry]
