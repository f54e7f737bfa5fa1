"""Utility functions for the Growth Co-Pilot agent."""

import html
import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def today_run_date() -> str:
    """Today's run date (UTC) as YYYY-MM-DD."""
    return utc_now().date().isoformat()


def parse_run_date(value: str) -> str:
    """Validate a YYYY-MM-DD run date and return it normalised.

    Raises:
        ValueError: If the value is not a calendar date
    """
    return date.fromisoformat(value.strip()).isoformat()


def start_of_day_iso(run_date: str) -> str:
    """Midnight UTC of the given run date as an ISO timestamp."""
    day = date.fromisoformat(run_date)
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc).isoformat()


def days_ago(days: int, today: Optional[str] = None) -> str:
    """Date ``days`` before today (or ``today``) as YYYY-MM-DD."""
    base = date.fromisoformat(today) if today else utc_now().date()
    return (base - timedelta(days=days)).isoformat()


_BREAK_TAGS = re.compile(r"<br\s*/?>|</p>|</li>", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]+>")
_WHITESPACE_RUN = re.compile(r"\s{2,}")


def strip_html(markup: str) -> str:
    """Strip HTML tags and entities and collapse whitespace."""
    if not markup:
        return ""
    text = _BREAK_TAGS.sub("\n", markup)
    text = _ANY_TAG.sub(" ", text)
    text = html.unescape(text)
    text = text.replace("\xa0", " ")
    return _WHITESPACE_RUN.sub(" ", text).strip()
