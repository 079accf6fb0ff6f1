"""
Pydantic request / response schemas for the HTTP and Kafka surfaces.
Kept separate from the domain dataclasses in models.py.
"""
from typing import Any, Optional

from pydantic import BaseModel, Field


# ──────────────────────────── Triggers ────────────────────────────────────

class UserSnapshots(BaseModel):
    """Before / after images of a users/{uid} document."""
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None


class UserChangeEvent(UserSnapshots):
    """Kafka message on the user-changes topic."""
    user_id: str = Field(..., min_length=1)


class SyncResult(BaseModel):
    success: bool
    updated: int


# ──────────────────────────── Backfill ────────────────────────────────────

class BackfillResponse(BaseModel):
    success: bool
    message: str
    details: Optional[dict[str, Any]] = None


class ErrorResponse(BaseModel):
    error: str
