"""Editor activity ingestion."""

from __future__ import annotations

import time
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

import structlog
from pydantic import ValidationError
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.analytics import AggregatedPulse
from app.schemas.sync import SyncRequest, SyncResult, TimeEntry
from app.services.audit_sink import AuditSink, SyncEvent, get_audit_sink

logger = structlog.get_logger(__name__)


class SyncServiceError(Exception):
    """Raised when a validated batch cannot be persisted."""

    def __init__(self, detail: str, code: str, status_code: int) -> None:
        super().__init__(detail)
        self.detail = detail
        self.code = code
        self.status_code = status_code


def _from_millis(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def _describe(index: int, exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid entry")
    return f"Entry {index}: {location}: {message}" if location else f"Entry {index}: {message}"


class SyncService:
    """Validate entries one by one and bulk-insert the valid ones."""

    def __init__(self, audit_sink: AuditSink) -> None:
        self._audit_sink = audit_sink

    def validate_entries(
        self, raw_entries: list[dict[str, Any]]
    ) -> tuple[list[TimeEntry], list[str]]:
        """Split raw entries into valid models and readable error messages."""
        entries: list[TimeEntry] = []
        errors: list[str] = []
        for index, raw in enumerate(raw_entries):
            try:
                entries.append(TimeEntry.model_validate(raw))
            except ValidationError as exc:
                errors.append(_describe(index, exc))
        return entries, errors

    async def sync(self, db: AsyncSession, user_id: int, payload: SyncRequest) -> SyncResult:
        """Persist the valid subset of a batch and audit the outcome.

        Raises SyncServiceError when the insert fails; nothing from the batch is
        kept in that case.
        """
        started = time.perf_counter()
        entries, errors = self.validate_entries(payload.data)
        rows = [self._row(user_id, entry, payload.timezone) for entry in entries]
        if rows:
            try:
                await db.execute(insert(AggregatedPulse), rows)
                await db.commit()
            except Exception as exc:
                await db.rollback()
                logger.error("sync_insert_failed", user_id=user_id, entries=len(rows), error=str(exc))
                self._record(user_id, len(payload.data), started, False, "Failed to store entries")
                raise SyncServiceError(
                    "Failed to synchronize time entries.", "sync_failed", 500
                ) from exc

        success = not errors or bool(rows)
        self._record(
            user_id,
            len(payload.data),
            started,
            success,
            f"{len(errors)} invalid entries" if errors else None,
        )
        logger.info("sync_completed", user_id=user_id, synced=len(rows), rejected=len(errors))
        return SyncResult(synced_count=len(rows), errors=errors)

    @staticmethod
    def _row(user_id: int, entry: TimeEntry, timezone: str) -> dict[str, Any]:
        return {
            "user_id": user_id,
            "entity": entry.entity,
            "type": entry.type,
            "state": entry.state,
            "start_time": _from_millis(entry.start_time),
            "end_time": _from_millis(entry.end_time),
            "project": entry.project,
            "branch": entry.branch,
            "language": entry.language,
            "dependencies": entry.dependencies,
            "machine_name_id": entry.machine_name_id,
            "line_additions": entry.line_additions,
            "line_deletions": entry.line_deletions,
            "lines": entry.lines,
            "is_write": entry.is_write,
            "timezone": timezone,
        }

    def _record(
        self,
        user_id: int,
        entries_count: int,
        started: float,
        success: bool,
        error_message: str | None,
    ) -> None:
        self._audit_sink.record_sync_event(
            SyncEvent(
                user_id=user_id,
                entries_count=entries_count,
                sync_duration_ms=int((time.perf_counter() - started) * 1000),
                success=success,
                error_message=error_message,
            )
        )


@lru_cache
def get_sync_service() -> SyncService:
    """Create and cache the sync service."""
    return SyncService(audit_sink=get_audit_sink())
