"""Datetime helpers."""

from __future__ import annotations

import os
from datetime import datetime, timedelta

import pendulum

DEFAULT_TZ = "America/Toronto"


def timezone_name() -> str:
    return os.environ.get("TIMEZONE", DEFAULT_TZ)


def utc_now() -> datetime:
    """Naive UTC timestamp, the form sync_runs stores."""
    now = pendulum.now("UTC")
    return datetime(now.year, now.month, now.day, now.hour, now.minute, now.second, now.microsecond)


def minutes_ago(minutes: float, *, now: datetime | None = None) -> datetime:
    return (now or utc_now()) - timedelta(minutes=minutes)


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return pendulum.instance(value, tz="UTC").to_iso8601_string()
