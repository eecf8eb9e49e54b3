"""ORM model exports."""

from app.models.analytics import (
    ActivityState,
    AggregatedPulse,
    ApiKeyEventLog,
    ApiKeyEventType,
    AuthEventType,
    AuthLog,
    AuthProvider,
    EntityType,
    SyncEventLog,
)
from app.models.session import UserSession
from app.models.user import User
from app.models.widget import UserWidget, Widget

__all__ = [
    "ActivityState",
    "AggregatedPulse",
    "ApiKeyEventLog",
    "ApiKeyEventType",
    "AuthEventType",
    "AuthLog",
    "AuthProvider",
    "EntityType",
    "SyncEventLog",
    "User",
    "UserSession",
    "UserWidget",
    "Widget",
]
