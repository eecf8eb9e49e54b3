"""Coding statistics query parameter types."""

from __future__ import annotations

from enum import Enum


class TimeRange(str, Enum):
    """Rolling or calendar window a statistic is computed over."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    ALL = "all"


class Aggregation(str, Enum):
    """Bucket size for coding-hours series."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    TOTAL = "total"


class TopEntity(str, Enum):
    """Dimensions that top-item rankings can be grouped by."""

    LANGUAGES = "languages"
    IDES = "ides"
    PROJECTS = "projects"
    MACHINES = "machines"


class PulseFormat(str, Enum):
    DEFAULT = "default"
    DASHBOARD = "dashboard"
