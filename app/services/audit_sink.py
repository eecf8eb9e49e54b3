"""Non-blocking batched audit logging into the analytical store."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from functools import lru_cache
from typing import Any

import structlog
from sqlalchemy import Table, distinct, func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import get_settings
from app.core.devices import DeviceInfo
from app.db.session import get_analytics_session_factory
from app.models.analytics import (
    SESSION_EVENT_TYPES,
    ApiKeyEventLog,
    ApiKeyEventType,
    AuthEventType,
    AuthLog,
    AuthProvider,
    SyncEventLog,
)

logger = structlog.get_logger(__name__)

DEFAULT_COUNTRY_CODE = "UN"
DEFAULT_CITY = "Unknown"


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class AuthEvent:
    """Authentication or session lifecycle fact awaiting persistence."""

    user_id: int
    event_type: AuthEventType
    success: bool
    email: str = ""
    provider: AuthProvider = AuthProvider.GOOGLE
    ip_address: str = "unknown"
    user_agent: str = ""
    device: DeviceInfo = field(default_factory=DeviceInfo)
    session_id: str | None = None
    error_message: str | None = None
    timestamp: datetime | None = None


@dataclass(frozen=True)
class ApiKeyEvent:
    """API key lifecycle fact awaiting persistence."""

    user_id: int
    event_type: ApiKeyEventType
    ip_address: str = "unknown"
    user_agent: str = ""
    device: DeviceInfo = field(default_factory=DeviceInfo)
    timestamp: datetime | None = None


@dataclass(frozen=True)
class SyncEvent:
    """Outcome of one synchronization request awaiting persistence."""

    user_id: int
    entries_count: int
    sync_duration_ms: int
    success: bool
    error_message: str | None = None
    machine_name_id: str = "server"
    timestamp: datetime | None = None


@dataclass(frozen=True)
class _QueuedRow:
    table: Table
    values: dict[str, Any]


def _iso_date(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _distinct_values(rows: Sequence[Any], attribute: str) -> set[str]:
    values: set[str] = set()
    for row in rows:
        values.update(item for item in (getattr(row, attribute) or []) if item)
    return values


class AuditSink:
    """Queue audit facts in-process and bulk-insert them from a background worker.

    Recording never awaits persistence and never raises. The drain worker wakes
    every ``flush_interval_seconds``, writes batches of up to ``batch_size`` rows
    until the queue is empty, then idles again. A batch that fails to insert is
    logged and dropped.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        batch_size: int = 100,
        flush_interval_seconds: float = 5.0,
        max_queue_size: int = 10000,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._batch_size = batch_size
        self._flush_interval_seconds = flush_interval_seconds
        self._queue: asyncio.Queue[_QueuedRow] = asyncio.Queue(maxsize=max_queue_size)
        self._now = now or _now
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the drain worker on the running event loop."""
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info("audit_sink_started", batch_size=self._batch_size)

    async def stop(self) -> None:
        """Stop the drain worker and flush whatever is still queued once."""
        if self._task is not None:
            self._stopping.set()
            await self._task
            self._task = None
        while not self._queue.empty():
            await self.flush()
        logger.info("audit_sink_stopped")

    def record(self, event: AuthEvent) -> None:
        """Queue an authentication or session lifecycle event."""
        device = event.device
        self._enqueue(
            AuthLog.__table__,
            {
                "timestamp": event.timestamp or self._now(),
                "user_id": event.user_id,
                "email": event.email,
                "success": event.success,
                "ip_address": event.ip_address,
                "user_agent": event.user_agent,
                "country_code": DEFAULT_COUNTRY_CODE,
                "city": DEFAULT_CITY,
                "provider": event.provider.value,
                "error_message": event.error_message or "",
                "session_id": event.session_id or "",
                "event_type": event.event_type.value,
                "device_name": device.device_name,
                "device_type": device.device_type,
                "browser": device.browser,
                "os": device.os,
            },
        )

    def record_api_key_event(self, event: ApiKeyEvent) -> None:
        """Queue an API key lifecycle event."""
        device = event.device
        self._enqueue(
            ApiKeyEventLog.__table__,
            {
                "timestamp": event.timestamp or self._now(),
                "user_id": event.user_id,
                "event_type": event.event_type.value,
                "ip_address": event.ip_address,
                "user_agent": event.user_agent,
                "country_code": "",
                "city": "",
                "device_name": device.device_name,
                "device_type": device.device_type,
                "browser": device.browser,
                "os": device.os,
            },
        )

    def record_sync_event(self, event: SyncEvent) -> None:
        """Queue a synchronization outcome."""
        self._enqueue(
            SyncEventLog.__table__,
            {
                "timestamp": event.timestamp or self._now(),
                "user_id": event.user_id,
                "machine_name_id": event.machine_name_id,
                "entries_count": event.entries_count,
                "sync_duration_ms": event.sync_duration_ms,
                "success": event.success,
                "error_message": event.error_message or "",
            },
        )

    async def flush(self) -> int:
        """Write one batch of queued rows and return how many were persisted."""
        batch: list[_QueuedRow] = []
        while len(batch) < self._batch_size and not self._queue.empty():
            batch.append(self._queue.get_nowait())
        if not batch:
            return 0

        rows_by_table: dict[Table, list[dict[str, Any]]] = defaultdict(list)
        for queued in batch:
            rows_by_table[queued.table].append(queued.values)

        try:
            async with self._session_factory() as db:
                for table, rows in rows_by_table.items():
                    await db.execute(insert(table), rows)
                await db.commit()
        except Exception as exc:
            logger.error(
                "audit_batch_failed",
                dropped=len(batch),
                tables=sorted(table.name for table in rows_by_table),
                error=str(exc),
            )
            return 0
        logger.debug("audit_batch_written", count=len(batch))
        return len(batch)

    async def get_stats(
        self, db: AsyncSession, user_id: int, start: datetime, end: datetime
    ) -> dict[str, Any]:
        """Aggregate a user's authentication events per day and outcome."""
        day = func.date(AuthLog.timestamp).label("date")
        statement = (
            select(
                day,
                AuthLog.success,
                func.count().label("attempts"),
                func.array_agg(distinct(AuthLog.ip_address)).label("unique_ips"),
                func.array_agg(distinct(AuthLog.user_agent)).label("unique_user_agents"),
                func.array_agg(distinct(AuthLog.country_code)).label("countries"),
                func.array_agg(distinct(AuthLog.device_type)).label("device_types"),
            )
            .where(
                AuthLog.user_id == user_id,
                AuthLog.timestamp >= start,
                AuthLog.timestamp <= end,
            )
            .group_by(day, AuthLog.success)
            .order_by(day.desc())
        )
        rows = (await db.execute(statement)).all()
        stats = [
            {
                "date": _iso_date(row.date),
                "success": bool(row.success),
                "attempts": int(row.attempts),
                "uniqueIps": list(row.unique_ips or []),
                "uniqueUserAgents": list(row.unique_user_agents or []),
                "countries": list(row.countries or []),
            }
            for row in rows
        ]
        return {
            "stats": stats,
            "totalSuccess": sum(int(row.attempts) for row in rows if row.success),
            "totalFailure": sum(int(row.attempts) for row in rows if not row.success),
            "uniqueIPs": len(_distinct_values(rows, "unique_ips")),
            "uniqueCountries": len(_distinct_values(rows, "countries")),
            "uniqueDevices": len(_distinct_values(rows, "device_types")),
        }

    async def get_session_stats(
        self, db: AsyncSession, user_id: int, start: datetime, end: datetime
    ) -> dict[str, Any]:
        """Aggregate a user's session lifecycle events per day and event type."""
        day = func.date(AuthLog.timestamp).label("date")
        statement = (
            select(
                day,
                AuthLog.event_type,
                func.count().label("events"),
                func.array_agg(distinct(AuthLog.device_name)).label("devices"),
                func.array_agg(distinct(AuthLog.ip_address)).label("unique_ips"),
            )
            .where(
                AuthLog.user_id == user_id,
                AuthLog.event_type.in_(SESSION_EVENT_TYPES),
                AuthLog.timestamp >= start,
                AuthLog.timestamp <= end,
            )
            .group_by(day, AuthLog.event_type)
            .order_by(day.desc())
        )
        rows = (await db.execute(statement)).all()
        totals = {event_type.value: 0 for event_type in SESSION_EVENT_TYPES}
        for row in rows:
            totals[AuthEventType(row.event_type).value] += int(row.events)
        return {
            "stats": [
                {
                    "date": _iso_date(row.date),
                    "eventType": AuthEventType(row.event_type).value,
                    "events": int(row.events),
                }
                for row in rows
            ],
            "totals": totals,
            "uniqueDevices": len(_distinct_values(rows, "devices")),
            "uniqueIPs": len(_distinct_values(rows, "unique_ips")),
        }

    async def get_recent_events(
        self,
        db: AsyncSession,
        user_id: int,
        limit: int = 10,
        event_types: Sequence[AuthEventType] | None = None,
    ) -> list[dict[str, Any]]:
        """Return a user's most recent authentication events, newest first."""
        statement = select(AuthLog).where(AuthLog.user_id == user_id)
        if event_types:
            statement = statement.where(AuthLog.event_type.in_(event_types))
        statement = statement.order_by(AuthLog.timestamp.desc()).limit(limit)
        events = (await db.execute(statement)).scalars().all()
        return [
            {
                "timestamp": event.timestamp.isoformat(),
                "eventType": AuthEventType(event.event_type).value,
                "success": event.success,
                "provider": AuthProvider(event.provider).value,
                "ipAddress": event.ip_address,
                "userAgent": event.user_agent,
                "countryCode": event.country_code,
                "city": event.city,
                "sessionId": event.session_id or None,
                "errorMessage": event.error_message or None,
                "deviceName": event.device_name,
                "deviceType": event.device_type,
                "browser": event.browser,
                "os": event.os,
            }
            for event in events
        ]

    async def get_api_key_stats(
        self, db: AsyncSession, user_id: int, start: datetime, end: datetime
    ) -> dict[str, Any]:
        """Aggregate a user's API key events per day and event type."""
        day = func.date(ApiKeyEventLog.timestamp).label("date")
        statement = (
            select(day, ApiKeyEventLog.event_type, func.count().label("event_count"))
            .where(
                ApiKeyEventLog.user_id == user_id,
                ApiKeyEventLog.timestamp >= start,
                ApiKeyEventLog.timestamp <= end,
            )
            .group_by(day, ApiKeyEventLog.event_type)
            .order_by(day.desc())
        )
        rows = (await db.execute(statement)).all()
        totals = {event_type.value: 0 for event_type in ApiKeyEventType}
        for row in rows:
            totals[ApiKeyEventType(row.event_type).value] += int(row.event_count)
        return {
            "stats": [
                {
                    "date": _iso_date(row.date),
                    "eventType": ApiKeyEventType(row.event_type).value,
                    "eventCount": int(row.event_count),
                }
                for row in rows
            ],
            "totals": totals,
        }

    async def get_recent_api_key_events(
        self, db: AsyncSession, user_id: int, limit: int = 10
    ) -> list[dict[str, Any]]:
        """Return a user's most recent API key events, newest first."""
        statement = (
            select(ApiKeyEventLog)
            .where(ApiKeyEventLog.user_id == user_id)
            .order_by(ApiKeyEventLog.timestamp.desc())
            .limit(limit)
        )
        events = (await db.execute(statement)).scalars().all()
        return [
            {
                "timestamp": event.timestamp.isoformat(),
                "eventType": ApiKeyEventType(event.event_type).value,
                "ipAddress": event.ip_address,
                "userAgent": event.user_agent,
                "deviceName": event.device_name,
                "browser": event.browser,
                "os": event.os,
            }
            for event in events
        ]

    def _enqueue(self, table: Table, values: dict[str, Any]) -> None:
        try:
            self._queue.put_nowait(_QueuedRow(table=table, values=values))
        except asyncio.QueueFull:
            logger.warning("audit_queue_full", table=table.name, user_id=values.get("user_id"))

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(
                    self._stopping.wait(), timeout=self._flush_interval_seconds
                )
            except TimeoutError:
                pass
            while not self._queue.empty():
                await self.flush()


@lru_cache
def get_audit_sink() -> AuditSink:
    """Create and cache the process-wide audit sink."""
    settings = get_settings()
    return AuditSink(
        session_factory=get_analytics_session_factory(),
        batch_size=settings.analytics.batch_size,
        flush_interval_seconds=settings.analytics.flush_interval_seconds,
        max_queue_size=settings.analytics.queue_max_size,
    )
