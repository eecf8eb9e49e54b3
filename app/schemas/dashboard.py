"""Dashboard widget request schemas."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field


class UserWidgetCreate(BaseModel):
    """Place a catalog widget on the caller's dashboard."""

    widget_id: int = Field(ge=1, validation_alias=AliasChoices("widgetId", "widget_id"))
    props: dict[str, Any] | None = None


class UserWidgetUpdate(BaseModel):
    props: dict[str, Any]


class WidgetPosition(BaseModel):
    user_widget_id: UUID = Field(
        validation_alias=AliasChoices("usersHasWidgetsId", "userWidgetId", "user_widget_id")
    )
    position: int = Field(ge=0)


class WidgetPositionsUpdate(BaseModel):
    """New positions for some or all of the caller's placed widgets."""

    widgets: list[WidgetPosition] = Field(min_length=1, max_length=100)
