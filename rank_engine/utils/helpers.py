"""General-purpose helper utilities for rank tracking."""

from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlparse


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime.

    SQLite hands back naive datetimes; everything we write is UTC, so a
    naive value is interpreted as UTC rather than local time.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_bounds(value: datetime) -> tuple[datetime, datetime]:
    """Return the ``[start, end)`` UTC calendar-day window containing ``value``."""
    value = ensure_utc(value)
    start = value.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def month_start(year: int, month: int) -> datetime:
    return datetime(year, month, 1, tzinfo=timezone.utc)


def shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    """Move ``(year, month)`` by ``delta`` months (negative goes back).

    Examples:
        >>> shift_month(2025, 1, -1)
        (2024, 12)
        >>> shift_month(2025, 11, 3)
        (2026, 2)
    """
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def normalize_domain(url: str) -> str:
    """Reduce a URL or bare host to a comparable hostname.

    Strips the scheme, any leading ``www.``, path, port and letter case.

    Examples:
        >>> normalize_domain("https://www.Example.com/page")
        'example.com'
        >>> normalize_domain("example.com")
        'example.com'
    """
    if not url:
        return ""
    raw = str(url).strip()
    try:
        parsed = urlparse(raw if "://" in raw else "http://" + raw)
        host = parsed.hostname or ""
    except ValueError:
        host = raw.split("/")[0]
    return host.lower().removeprefix("www.")


def domain_matches(result_url: str, target_domain: str) -> bool:
    """Whether a SERP result URL belongs to ``target_domain``.

    A match is exact host equality, or the target appearing inside the
    result host so that subdomains (``blog.example.com``) still count.
    """
    target = normalize_domain(target_domain)
    host = normalize_domain(result_url)
    if not host or not target:
        return False
    return host == target or target in host


def round_or_none(value: Optional[float], digits: int = 1) -> Optional[float]:
    if value is None:
        return None
    return round(value, digits)
