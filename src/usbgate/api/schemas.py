"""
Pydantic schemas for API request/response validation.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class HealthCheck(BaseModel):
    """Health check response."""

    status: str = "healthy"
    version: str
    uptime_seconds: float
    audit_enabled: bool


class RuleSchema(BaseModel):
    """One identity rule."""

    vendor_id: str = Field(..., pattern=r"^[0-9a-f]{4}$")
    product_id: str = Field(..., pattern=r"^[0-9a-f]{4}$")


class RuleListResponse(BaseModel):
    """Current allow-list."""

    rules: list[RuleSchema]
    count: int
    limit: int


class SerialListResponse(BaseModel):
    """Current blocked serials."""

    serials: list[str]
    count: int
    limit: int


class RuleSubmission(BaseModel):
    """Raw ``"VID PID"`` lines to add."""

    lines: list[str] = Field(..., min_length=1)


class SerialSubmission(BaseModel):
    """Serials to block."""

    serials: list[str] = Field(..., min_length=1)


class SubmissionResultSchema(BaseModel):
    """Outcome of one submitted entry."""

    text: str
    accepted: bool
    value: str | None = None
    error: str | None = None
    ignored: bool = False


class SubmissionResponse(BaseModel):
    """Outcome of a batch submission."""

    accepted: int
    rejected: int
    results: list[SubmissionResultSchema]


class DecisionResponse(BaseModel):
    """One logged decision."""

    id: int
    timestamp: datetime
    vendor_id: str
    product_id: str
    serial: str | None = None
    decision: str
    reason: str | None = None
    source: str
    identified: bool = True

    model_config = {"from_attributes": True}


class DecisionListResponse(BaseModel):
    """Paginated decision log."""

    decisions: list[DecisionResponse]
    total: int
    offset: int
    limit: int
