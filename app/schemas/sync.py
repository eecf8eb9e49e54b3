"""Editor sync request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, model_validator

from app.models.analytics import ActivityState, EntityType


class TimeEntry(BaseModel):
    """One aggregated activity interval reported by an editor client."""

    entity: str = Field(min_length=1)
    type: EntityType
    state: ActivityState = Field(validation_alias=AliasChoices("state", "category"))
    start_time: int = Field(ge=0, description="Epoch milliseconds.")
    end_time: int = Field(ge=0, description="Epoch milliseconds.")
    project: str = ""
    branch: str = ""
    language: str = ""
    dependencies: str = ""
    machine_name_id: str = Field(min_length=1, max_length=255)
    line_additions: int = Field(default=0, ge=0)
    line_deletions: int = Field(default=0, ge=0)
    lines: int = Field(default=0, ge=0)
    is_write: bool = False

    @model_validator(mode="after")
    def check_interval(self) -> TimeEntry:
        """Reject intervals that end before they start."""
        if self.end_time < self.start_time:
            raise ValueError("end_time must not be earlier than start_time")
        return self


class SyncRequest(BaseModel):
    """Batch of raw entries; each entry is validated independently."""

    data: list[dict[str, Any]] = Field(max_length=10000)
    start: datetime | None = None
    end: datetime | None = None
    timezone: str = Field(default="UTC", max_length=64)


class SyncResult(BaseModel):
    """Outcome of one sync batch."""

    synced_count: int
    errors: list[str] = Field(default_factory=list)
