"""Read-side coding statistics over synchronized activity pulses."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import UTC, date, datetime, timedelta
from functools import lru_cache
from typing import Any

from sqlalchemy import String, func, select, type_coerce
from sqlalchemy.dialects.postgresql import ARRAY, aggregate_order_by
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.analytics import AggregatedPulse
from app.schemas.stats import Aggregation, PulseFormat, TimeRange, TopEntity

TOP_ITEMS_LIMIT = 5
GROUPED_TOP_ITEMS = 4
GROUPED_PERIODS = 7
MERGE_GAP_SECONDS = 300
OTHERS = "Others"
DEFAULT_WEEKDAY_WEEKS = 4
WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

RANGE_DAYS = {
    TimeRange.DAY: 1,
    TimeRange.WEEK: 7,
    TimeRange.MONTH: 30,
    TimeRange.YEAR: 365,
    TimeRange.ALL: 3650,
}
DEFAULT_AGGREGATION = {
    TimeRange.DAY: Aggregation.DAILY,
    TimeRange.WEEK: Aggregation.WEEKLY,
    TimeRange.MONTH: Aggregation.MONTHLY,
    TimeRange.YEAR: Aggregation.YEARLY,
    TimeRange.ALL: Aggregation.TOTAL,
}
_TRUNC_UNITS = {
    Aggregation.DAILY: "day",
    Aggregation.WEEKLY: "week",
    Aggregation.MONTHLY: "month",
    Aggregation.YEARLY: "year",
}
_ENTITY_COLUMNS = {
    TopEntity.LANGUAGES: AggregatedPulse.language,
    TopEntity.IDES: AggregatedPulse.entity,
    TopEntity.PROJECTS: AggregatedPulse.project,
    TopEntity.MACHINES: AggregatedPulse.machine_name_id,
}

_duration_seconds = func.extract("epoch", AggregatedPulse.end_time - AggregatedPulse.start_time)


def _now() -> datetime:
    return datetime.now(UTC)


def format_duration(hours: float) -> str:
    """Render fractional hours as ``Xh Ym Zs``."""
    total_seconds = round(hours * 3600)
    return f"{total_seconds // 3600}h {(total_seconds % 3600) // 60}m {total_seconds % 60}s"


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _months_ago(moment: datetime, months: int) -> datetime:
    month_index = moment.year * 12 + moment.month - 1 - months
    return _start_of_day(moment).replace(year=month_index // 12, month=month_index % 12 + 1, day=1)


def calendar_window_start(time_range: TimeRange, now: datetime) -> datetime | None:
    """Return the start of the current calendar day/week/month/year."""
    today = _start_of_day(now)
    if time_range is TimeRange.DAY:
        return today
    if time_range is TimeRange.WEEK:
        return today - timedelta(days=today.weekday())
    if time_range is TimeRange.MONTH:
        return today.replace(day=1)
    if time_range is TimeRange.YEAR:
        return today.replace(month=1, day=1)
    return None


def merge_close_pulses(
    pulses: Sequence[dict[str, Any]], gap_seconds: int = MERGE_GAP_SECONDS
) -> list[dict[str, Any]]:
    """Collapse chronologically sorted pulses separated by less than ``gap_seconds``.

    Each input row needs ``start``, ``end`` (datetimes), ``project``, and ``language``.
    Output ``time`` is in whole minutes.
    """
    timeline: list[dict[str, Any]] = []
    for pulse in sorted(pulses, key=lambda row: row["start"]):
        if timeline:
            last = timeline[-1]
            gap = (pulse["start"] - last["end"]).total_seconds()
            if gap < gap_seconds:
                last["end"] = max(last["end"], pulse["end"])
                last["time"] = round((last["end"] - last["start"]).total_seconds() / 60)
                continue
        timeline.append(
            {
                "start": pulse["start"],
                "end": pulse["end"],
                "project": pulse["project"],
                "language": pulse["language"],
                "time": round((pulse["end"] - pulse["start"]).total_seconds() / 60),
            }
        )
    return timeline


def fold_others(items: list[dict[str, Any]], keep: int = GROUPED_TOP_ITEMS) -> list[dict[str, Any]]:
    """Keep the ``keep`` largest items and fold the rest into one ``Others`` item."""
    ranked = sorted(items, key=lambda item: item["time"], reverse=True)
    if len(ranked) <= keep:
        return ranked
    top, rest = ranked[:keep], ranked[keep:]
    others_time = sum(item["time"] for item in rest)
    if others_time <= 0:
        return top
    latest = max(rest, key=lambda item: item["lastUsed"])
    others: dict[str, Any] = {
        "name": OTHERS,
        "time": others_time,
        "formattedTime": format_duration(others_time / 3600),
        "lastUsed": latest["lastUsed"],
    }
    if latest.get("lastProject"):
        others["lastProject"] = latest["lastProject"]
    return [*top, others]


def state_shares(totals: Sequence[tuple[str | None, float]]) -> dict[str, float]:
    """Convert per-state seconds into shares of the total, rounded to 2 decimals."""
    grand_total = sum(float(seconds or 0) for _, seconds in totals)
    if grand_total <= 0:
        return {}
    return {
        (state or "unknown"): round(float(seconds or 0) / grand_total, 2)
        for state, seconds in totals
    }


def weekday_averages(totals: Sequence[tuple[int, float]], weeks: int) -> list[dict[str, Any]]:
    """Average hours per ISO weekday (1 is Monday) over ``weeks`` weeks, Monday first."""
    seconds_by_day = {int(day): float(seconds or 0) for day, seconds in totals}
    return [
        {
            "weekDay": name,
            "averageHoursWorked": round(seconds_by_day.get(index, 0.0) / 3600 / weeks, 2),
        }
        for index, name in enumerate(WEEKDAYS, start=1)
    ]


def _iso(value: datetime | date) -> str:
    return value.isoformat()


class StatsService:
    """Compose grouped aggregate queries and reshape rows for the dashboard."""

    def __init__(self, now: Callable[[], datetime] | None = None) -> None:
        self._now = now or _now

    async def get_coding_hours(
        self,
        db: AsyncSession,
        user_id: int,
        aggregation: Aggregation,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Sum coding hours per period, or over the whole window for ``total``."""
        filters = self._explicit_filters(user_id, start, end)
        if aggregation is Aggregation.TOTAL:
            statement = select(func.coalesce(func.sum(_duration_seconds), 0)).where(*filters)
            seconds = float((await db.execute(statement)).scalar_one())
            label = (end or self._now()).date()
            return [{"date": _iso(label), "hours": round(seconds / 3600, 2)}]

        period = func.date_trunc(_TRUNC_UNITS[aggregation], AggregatedPulse.start_time).label(
            "period"
        )
        statement = (
            select(period, func.sum(_duration_seconds).label("seconds"))
            .where(*filters)
            .group_by(period)
            .order_by(period)
        )
        rows = (await db.execute(statement)).all()
        return [
            {"date": _iso(row.period.date()), "hours": round(float(row.seconds or 0) / 3600, 2)}
            for row in rows
        ]

    async def get_coding_time(
        self,
        db: AsyncSession,
        user_id: int,
        time_range: TimeRange = TimeRange.MONTH,
        start: datetime | None = None,
        end: datetime | None = None,
        aggregation: Aggregation | None = None,
    ) -> dict[str, Any]:
        """Total coding seconds and pulse count in a rolling window."""
        if start is None or end is None:
            end = self._now()
            start = end - timedelta(days=RANGE_DAYS[time_range])
        statement = select(
            func.coalesce(func.sum(_duration_seconds), 0).label("seconds"),
            func.count().label("pulse_count"),
        ).where(
            AggregatedPulse.user_id == user_id,
            AggregatedPulse.start_time >= start,
            AggregatedPulse.end_time <= end,
        )
        row = (await db.execute(statement)).one()
        seconds = int(round(float(row.seconds or 0)))
        return {
            "hours": round(seconds / 3600),
            "seconds": seconds,
            "pulseCount": int(row.pulse_count or 0),
            "timeRange": time_range.value,
            "aggregation": (aggregation or DEFAULT_AGGREGATION[time_range]).value,
        }

    async def get_top_items(
        self,
        db: AsyncSession,
        user_id: int,
        entity: TopEntity,
        time_range: TimeRange = TimeRange.DAY,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = TOP_ITEMS_LIMIT,
    ) -> dict[str, Any]:
        """Rank the user's languages, editors, projects, or machines by time spent."""
        column = _ENTITY_COLUMNS[entity]
        filters = [
            *self._window_filters(user_id, time_range, start, end),
            column != "",
        ]
        total_seconds = func.sum(_duration_seconds).label("total_seconds")
        statement = (
            select(
                column.label("name"),
                total_seconds,
                func.max(AggregatedPulse.end_time).label("last_used"),
                self._last_project().label("last_project"),
            )
            .where(*filters)
            .group_by(column)
            .order_by(total_seconds.desc())
            .limit(limit)
        )
        rows = (await db.execute(statement)).all()
        return {
            "timeRange": time_range.value,
            entity.value: [self._top_item(row, entity) for row in rows],
        }

    async def get_top_items_grouped_by_time(
        self,
        db: AsyncSession,
        user_id: int,
        entity: TopEntity,
        time_range: TimeRange = TimeRange.DAY,
    ) -> dict[str, Any]:
        """Top items for each of the last seven days, weeks, or months, oldest first."""
        if time_range not in (TimeRange.DAY, TimeRange.WEEK, TimeRange.MONTH):
            time_range = TimeRange.DAY
        now = self._now()
        if time_range is TimeRange.WEEK:
            unit, since = "week", now - timedelta(weeks=GROUPED_PERIODS)
        elif time_range is TimeRange.MONTH:
            unit, since = "month", _months_ago(now, GROUPED_PERIODS)
        else:
            unit, since = "day", now - timedelta(days=GROUPED_PERIODS)

        column = _ENTITY_COLUMNS[entity]
        period = func.date_trunc(unit, AggregatedPulse.start_time).label("period_start")
        total_seconds = func.sum(_duration_seconds).label("total_seconds")
        statement = (
            select(
                period,
                column.label("name"),
                total_seconds,
                func.max(AggregatedPulse.end_time).label("last_used"),
                self._last_project().label("last_project"),
            )
            .where(
                AggregatedPulse.user_id == user_id,
                AggregatedPulse.start_time >= since,
                column != "",
            )
            .group_by(period, column)
            .order_by(period, total_seconds.desc())
        )
        rows = (await db.execute(statement)).all()

        periods: dict[date, list[dict[str, Any]]] = {}
        for row in rows:
            periods.setdefault(row.period_start.date(), []).append(self._top_item(row, entity))
        return {
            "timeRange": time_range.value,
            entity.value: [
                {"period": self._period_label(period_start, time_range), "items": fold_others(items)}
                for period_start, items in sorted(periods.items())
            ],
        }

    async def get_pulses(
        self,
        db: AsyncSession,
        user_id: int,
        time_range: TimeRange = TimeRange.DAY,
        start: datetime | None = None,
        end: datetime | None = None,
        response_format: PulseFormat = PulseFormat.DEFAULT,
    ) -> list[dict[str, Any]]:
        """List pulses newest first, or today's merged timeline for the dashboard."""
        if response_format is PulseFormat.DASHBOARD:
            filters = [
                AggregatedPulse.user_id == user_id,
                AggregatedPulse.start_time >= _start_of_day(self._now()),
            ]
        else:
            filters = self._window_filters(user_id, time_range, start, end)
        statement = (
            select(
                AggregatedPulse.project,
                AggregatedPulse.language,
                AggregatedPulse.state,
                AggregatedPulse.start_time,
                AggregatedPulse.end_time,
            )
            .where(*filters)
            .order_by(AggregatedPulse.start_time.desc())
        )
        rows = (await db.execute(statement)).all()
        pulses = [
            {
                "start": row.start_time,
                "end": row.end_time,
                "project": row.project,
                "language": row.language,
                "time": round((row.end_time - row.start_time).total_seconds() / 60),
            }
            for row in rows
        ]
        if response_format is PulseFormat.DASHBOARD:
            pulses = merge_close_pulses(pulses)
        return [{**pulse, "start": _iso(pulse["start"]), "end": _iso(pulse["end"])} for pulse in pulses]

    async def get_pulse_states(
        self,
        db: AsyncSession,
        user_id: int,
        time_range: TimeRange = TimeRange.DAY,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, float]:
        """Share of time spent per activity state."""
        filters = [AggregatedPulse.user_id == user_id]
        if start is not None and end is not None:
            filters += [AggregatedPulse.start_time >= start, AggregatedPulse.end_time <= end]
        elif time_range is not TimeRange.ALL:
            filters.append(
                AggregatedPulse.start_time >= self._now() - timedelta(days=RANGE_DAYS[time_range])
            )
        total_time = func.sum(_duration_seconds).label("total_time")
        statement = (
            select(AggregatedPulse.state, total_time)
            .where(*filters)
            .group_by(AggregatedPulse.state)
            .order_by(total_time.desc())
        )
        rows = (await db.execute(statement)).all()
        return state_shares([(_enum_value(row.state), row.total_time) for row in rows])

    async def get_projects(
        self,
        db: AsyncSession,
        user_id: int,
        time_range: TimeRange = TimeRange.MONTH,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Per-project totals in whole minutes, largest first."""
        duration = func.sum(_duration_seconds).label("duration")
        statement = (
            select(AggregatedPulse.project, duration)
            .where(*self._window_filters(user_id, time_range, start, end))
            .group_by(AggregatedPulse.project)
            .order_by(duration.desc())
        )
        rows = (await db.execute(statement)).all()
        return [
            {"name": row.project, "duration": round(float(row.duration or 0) / 60)} for row in rows
        ]

    async def get_todays_activity(self, db: AsyncSession, user_id: int) -> dict[str, Any]:
        """Today's merged timeline with activity-state shares and total coding time."""
        now = self._now()
        today = _start_of_day(now)
        timeline = await self.get_pulses(db, user_id, response_format=PulseFormat.DASHBOARD)
        states = await self.get_pulse_states(db, user_id, start=today, end=now)
        coding_time = await self.get_coding_time(
            db, user_id, time_range=TimeRange.DAY, start=today, end=now
        )
        return {
            "date": _iso(today.date()),
            "timeline": timeline,
            "states": states,
            "totalSeconds": coding_time["seconds"],
            "formattedTime": format_duration(coding_time["seconds"] / 3600),
        }

    async def get_most_active_weekday(
        self, db: AsyncSession, user_id: int, weeks: int = DEFAULT_WEEKDAY_WEEKS
    ) -> dict[str, Any]:
        """Weekday with the highest average coding hours over the last ``weeks`` weeks.

        ``weekDay`` is ``None`` when nothing was recorded in the window.
        """
        since = _start_of_day(self._now()) - timedelta(weeks=weeks)
        weekday = func.extract("isodow", AggregatedPulse.start_time).label("weekday")
        statement = (
            select(weekday, func.sum(_duration_seconds).label("seconds"))
            .where(AggregatedPulse.user_id == user_id, AggregatedPulse.start_time >= since)
            .group_by(weekday)
        )
        rows = (await db.execute(statement)).all()
        averages = weekday_averages([(row.weekday, row.seconds) for row in rows], weeks)
        busiest = max(averages, key=lambda item: item["averageHoursWorked"])
        if busiest["averageHoursWorked"] <= 0:
            busiest = {"weekDay": None, "averageHoursWorked": 0.0}
        return {**busiest, "weeks": weeks, "weekdays": averages}

    def _explicit_filters(
        self, user_id: int, start: datetime | None, end: datetime | None
    ) -> list[Any]:
        filters: list[Any] = [AggregatedPulse.user_id == user_id]
        if start is not None:
            filters.append(AggregatedPulse.start_time >= start)
        if end is not None:
            filters.append(AggregatedPulse.end_time <= end)
        return filters

    def _window_filters(
        self,
        user_id: int,
        time_range: TimeRange,
        start: datetime | None,
        end: datetime | None,
    ) -> list[Any]:
        """Explicit bounds win; otherwise use the current calendar period."""
        if start is not None or end is not None:
            return self._explicit_filters(user_id, start, end)
        filters: list[Any] = [AggregatedPulse.user_id == user_id]
        window_start = calendar_window_start(time_range, self._now())
        if window_start is not None:
            filters.append(AggregatedPulse.start_time >= window_start)
        return filters

    @staticmethod
    def _last_project():
        """Project of the most recently ended pulse in the group."""
        ordered = func.array_agg(
            aggregate_order_by(AggregatedPulse.project, AggregatedPulse.end_time.desc())
        )
        return type_coerce(ordered, ARRAY(String))[1]

    @staticmethod
    def _top_item(row: Any, entity: TopEntity) -> dict[str, Any]:
        seconds = int(round(float(row.total_seconds or 0)))
        item: dict[str, Any] = {
            "name": row.name,
            "time": seconds,
            "formattedTime": format_duration(seconds / 3600),
            "lastUsed": _iso(row.last_used),
        }
        if entity is not TopEntity.PROJECTS:
            item["lastProject"] = row.last_project
        return item

    @staticmethod
    def _period_label(period_start: date, time_range: TimeRange) -> str | dict[str, str]:
        if time_range is TimeRange.WEEK:
            return {
                "startDate": _iso(period_start),
                "endDate": _iso(period_start + timedelta(days=6)),
            }
        if time_range is TimeRange.MONTH:
            return period_start.strftime("%B %Y")
        return _iso(period_start)


def _enum_value(value: Any) -> str | None:
    return getattr(value, "value", value)


@lru_cache
def get_stats_service() -> StatsService:
    """Create and cache the stats service."""
    return StatsService()
