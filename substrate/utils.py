"""Utility functions for the substrate context store."""

import json
import re
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

SHORT_ID_LENGTH = 8

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


def generate_id() -> str:
    """Generate a new random identifier.

    Returns:
        A UUID4 string.
    """
    return str(uuid.uuid4())


def short_id(item_id: str, length: int = SHORT_ID_LENGTH) -> str:
    """Shorten an identifier for display."""
    return item_id[:length]


def now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string.

    Millisecond precision with a ``Z`` suffix keeps string order and
    chronological order identical, which the SQL comparisons rely on.
    """
    return format_timestamp(datetime.now(timezone.utc))


def format_timestamp(moment: datetime) -> str:
    """Format a datetime in the storage timestamp format."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware datetime.

    Args:
        value: Timestamp string; naive values are treated as UTC.

    Returns:
        Aware datetime, or None if the value is empty or unparseable.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_tags(tags: str | list[str] | None) -> list[str]:
    """Parse tags from various input formats.

    Args:
        tags: Tags as comma-separated string, list, or None.

    Returns:
        List of normalized, de-duplicated tag strings in first-seen order.
    """
    if tags is None:
        return []
    raw = tags if isinstance(tags, list) else tags.split(",")
    result: list[str] = []
    for tag in raw:
        normalized = str(tag).strip().lower()
        if normalized and normalized not in result:
            result.append(normalized)
    return result


def tags_to_json(tags: str | list[str] | None) -> str:
    """Convert tags to JSON string for storage."""
    return json.dumps(parse_tags(tags))


def json_to_tags(json_str: str | None) -> list[str]:
    """Parse JSON string back to tag list.

    Args:
        json_str: JSON array string or None.

    Returns:
        List of tags.
    """
    if not json_str:
        return []
    try:
        value = json.loads(json_str)
    except json.JSONDecodeError:
        return []
    return value if isinstance(value, list) else []


def meta_to_json(meta: dict[str, Any] | None) -> str:
    """Convert a metadata mapping to JSON string for storage."""
    return json.dumps(meta or {})


def json_to_meta(json_str: str | None) -> dict[str, Any]:
    """Parse JSON string back to a metadata mapping."""
    if not json_str:
        return {}
    try:
        value = json.loads(json_str)
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


def normalize_path(path: str | Path) -> str:
    """Return the absolute, user-expanded form of a filesystem path."""
    return str(Path(path).expanduser().resolve())


def normalize_text(text: str) -> str:
    """Lowercase, trim, and collapse internal whitespace."""
    return re.sub(r"\s+", " ", text.lower().strip())


def create_brief(content: str, max_length: int = 80) -> str:
    """Create a one-line preview of content.

    Args:
        content: The full content text.
        max_length: Maximum length of the preview.

    Returns:
        Single-line content with ellipsis if truncated.
    """
    content = " ".join(content.split())
    if len(content) <= max_length:
        return content
    truncated = content[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > max_length // 2:
        truncated = truncated[:last_space]
    return truncated.rstrip() + "..."


def escape_like_pattern(text: str) -> str:
    """Escape special characters for SQLite LIKE patterns.

    Args:
        text: Raw search text.

    Returns:
        Text with %, _, and \\ escaped for use in LIKE queries.
    """
    # Escape backslash first, then the LIKE wildcards
    text = text.replace("\\", "\\\\")
    text = text.replace("%", "\\%")
    text = text.replace("_", "\\_")
    return text


def format_duration(started_at: str, ended_at: str | None = None) -> str:
    """Format the elapsed time between two timestamps.

    Args:
        started_at: Start timestamp.
        ended_at: End timestamp; defaults to now.

    Returns:
        Duration as "Xh Ym" or "Ym".
    """
    start = parse_timestamp(started_at)
    end = parse_timestamp(ended_at) if ended_at else datetime.now(timezone.utc)
    if start is None or end is None:
        return "0m"
    minutes = max(0, int((end - start).total_seconds() // 60))
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def is_uuid(value: str | None) -> bool:
    """Check whether a string is a UUID in canonical 8-4-4-4-12 form."""
    return bool(value and UUID_PATTERN.match(value))


def hours_ago(hours: float) -> str:
    """Return the storage timestamp ``hours`` before now."""
    return format_timestamp(datetime.now(timezone.utc) - timedelta(hours=hours))


def format_time_ago(timestamp: str) -> str:
    """Describe how long ago a timestamp was.

    Returns:
        "just now", "Xm ago", "Xh ago", or the date for anything older
        than a day.
    """
    moment = parse_timestamp(timestamp)
    if moment is None:
        return timestamp
    minutes = int((datetime.now(timezone.utc) - moment).total_seconds() // 60)
    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if minutes < 24 * 60:
        return f"{minutes // 60}h ago"
    return moment.date().isoformat()
