"""Text, location, work-mode and date normalisation shared by fetchers."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone

from bs4 import BeautifulSoup

from jobhunt.models import (
    WORK_MODE_HYBRID,
    WORK_MODE_ONSITE,
    WORK_MODE_REMOTE,
    WORK_MODE_UNKNOWN,
)

logger = logging.getLogger(__name__)

_WS_RE = re.compile(r"\s+")
_LOCATION_PREFIX_RE = re.compile(r"^\s*(?:job\s+)?locations?\s*:\s*", re.IGNORECASE)

# Epoch values at or above this are milliseconds.
_EPOCH_MS_THRESHOLD = 1_000_000_000_000


def clean_text(text: str | None) -> str:
    """Collapse runs of whitespace and trim."""
    if not text:
        return ""
    return _WS_RE.sub(" ", text).strip()


def html_to_text(html: str | None, separator: str = "\n") -> str:
    """Convert HTML content to plain text."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    return soup.get_text(separator=separator, strip=True)


def first_non_empty(*values: str | None) -> str:
    for value in values:
        if value and str(value).strip():
            return str(value).strip()
    return ""


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit]


def normalize_location(raw: str | None) -> str:
    """Tidy a free-text location.

    "Location: Austin, TX, austin" -> "Austin, TX"
    """
    loc = clean_text(raw)
    if not loc:
        return ""
    loc = _LOCATION_PREFIX_RE.sub("", loc)

    seen: set[str] = set()
    parts: list[str] = []
    for part in loc.split(","):
        part = part.strip()
        if not part or part.lower() in seen:
            continue
        seen.add(part.lower())
        parts.append(part)
    return ", ".join(parts)


def infer_work_mode(*texts: str | None) -> str:
    """Guess Remote/Hybrid/Onsite from any of the given texts."""
    blob = " ".join(t for t in texts if t).lower()
    if "remote" in blob:
        return WORK_MODE_REMOTE
    if "hybrid" in blob:
        return WORK_MODE_HYBRID
    if "on-site" in blob or "onsite" in blob or "on site" in blob:
        return WORK_MODE_ONSITE
    return WORK_MODE_UNKNOWN


def from_epoch(value: int | float) -> datetime:
    if value >= _EPOCH_MS_THRESHOLD:
        value = value / 1000.0
    return datetime.fromtimestamp(value, tz=timezone.utc)


def parse_posted_date(value: str | int | float | None) -> datetime | None:
    """Parse a posted date into an aware datetime.

    Handles various formats:
    - ISO 8601: "2026-02-01", "2026-02-01T00:00:00Z", "2026-02-01T00:00:00.000Z"
    - Epoch seconds or milliseconds, as numbers or digit strings
    - Relative: "30+ days ago", "2 days ago", "today", "yesterday"
    - Month day: "Feb 1, 2026", "February 1, 2026"

    Returns None if parsing fails.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return from_epoch(value)

    date_str = value.strip()
    if date_str.isdigit():
        return from_epoch(int(date_str))

    lowered = date_str.lower()

    if "today" in lowered or "just posted" in lowered:
        return datetime.now(timezone.utc)
    if "yesterday" in lowered:
        return datetime.now(timezone.utc) - timedelta(days=1)

    days_ago_match = re.search(r"(\d+)\+?\s*days?\s*ago", lowered)
    if days_ago_match:
        return datetime.now(timezone.utc) - timedelta(days=int(days_ago_match.group(1)))

    weeks_ago_match = re.search(r"(\d+)\+?\s*weeks?\s*ago", lowered)
    if weeks_ago_match:
        return datetime.now(timezone.utc) - timedelta(weeks=int(weeks_ago_match.group(1)))

    months_ago_match = re.search(r"(\d+)\+?\s*months?\s*ago", lowered)
    if months_ago_match:
        return datetime.now(timezone.utc) - timedelta(days=int(months_ago_match.group(1)) * 30)

    iso = date_str[:-1] + "+00:00" if date_str.endswith("Z") else date_str
    try:
        parsed = datetime.fromisoformat(iso)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    except ValueError:
        pass

    for fmt in [
        "%b %d, %Y",
        "%B %d, %Y",
        "%d %b %Y",
        "%d %B %Y",
        "%m/%d/%Y",
        "%m-%d-%Y",
    ]:
        try:
            return datetime.strptime(date_str, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    logger.debug("Could not parse date: %r", date_str)
    return None
