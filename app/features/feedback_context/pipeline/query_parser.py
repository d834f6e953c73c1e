"""
Best-effort filter extraction from an official's free-text question.

This is a heuristic layer, not a language parser. Anything it cannot find is
left unset, and an unset filter means "no filter". It never raises.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta

from ..domain.models import IssueCategory, QueryFilters
from . import keywords as keyword_extractor

ISSUE_KEYWORDS: dict[IssueCategory, tuple[str, ...]] = {
    IssueCategory.ROAD: ("road", "street", "pothole", "pavement"),
    IssueCategory.WATER: ("water", "pipe", "leak", "plumbing"),
    IssueCategory.ELECTRICITY: ("electricity", "power", "outage", "blackout"),
    IssueCategory.WASTE: ("waste", "trash", "garbage", "recycling"),
    IssueCategory.SAFETY: ("safety", "crime", "security", "police"),
    IssueCategory.EDUCATION: ("education", "school", "teacher", "student"),
    IssueCategory.HEALTH: ("health", "hospital", "clinic", "doctor"),
}

_LOCATION_RE = re.compile(
    r"\bfrom\s+([A-Za-z][A-Za-z\s]*?)"
    r"(?=\s+(?:related|about|concerning|regarding"
    r"|this|last|past|latest|recent|in|during|since)\b"
    r"|\s*[?.!,;]|\s*$)",
    re.IGNORECASE,
)
_TIMEFRAME_RE = re.compile(
    r"(latest|recent|past\s+\d+\s+days|this\s+week|this\s+month|last\s+\d+\s+weeks)",
    re.IGNORECASE,
)
_DAYS_RE = re.compile(r"past\s+(\d+)\s+days", re.IGNORECASE)
_WEEKS_RE = re.compile(r"last\s+(\d+)\s+weeks", re.IGNORECASE)


def extract_location(query: str) -> str | None:
    match = _LOCATION_RE.search(query)
    if not match:
        return None
    location = " ".join(match.group(1).split())
    return location or None


def extract_issue_category(query: str) -> IssueCategory | None:
    lowered = query.lower()
    for category, words in ISSUE_KEYWORDS.items():
        if any(word in lowered for word in words):
            return category
    return None


def extract_timeframe(query: str, now: datetime) -> tuple[str | None, datetime | None]:
    """Return the matched timeframe label and the window start it implies."""
    match = _TIMEFRAME_RE.search(query)
    if not match:
        return None, None

    label = " ".join(match.group(1).lower().split())
    if label == "this week":
        start = now - timedelta(days=now.weekday())
        return label, start.replace(hour=0, minute=0, second=0, microsecond=0)
    if label == "this month":
        return label, now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if days := _DAYS_RE.fullmatch(label):
        return label, now - timedelta(days=int(days.group(1)))
    if weeks := _WEEKS_RE.fullmatch(label):
        return label, now - timedelta(weeks=int(weeks.group(1)))
    # "latest" / "recent" only shape the framing, not the window
    return label, None


def classify_query(query: str) -> str:
    lowered = query.lower()
    if "trend" in lowered or "pattern" in lowered:
        return "trend"
    if "count" in lowered or "how many" in lowered:
        return "count"
    if "urgent" in lowered or "priority" in lowered:
        return "urgent"
    return "general"


def parse(query: str | None, now: datetime | None = None) -> QueryFilters:
    text = query or ""
    label, since = extract_timeframe(text, now or datetime.now(UTC))
    return QueryFilters(
        keywords=tuple(keyword_extractor.extract(text)),
        location=extract_location(text),
        issue_category=extract_issue_category(text),
        since=since,
        timeframe_label=label,
        query_type=classify_query(text),
    )
