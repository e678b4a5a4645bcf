"""Content fingerprints and TTL checks backing the elaboration cache."""
from __future__ import annotations

import hashlib
from datetime import datetime, timedelta, timezone

DEFAULT_TTL_HOURS = 24


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def content_hash(content) -> str:
    """SHA-256 hex digest of the trimmed content; ``""`` for empty or non-string input."""
    if not isinstance(content, str) or not content:
        return ""
    return hashlib.sha256(content.strip().encode("utf-8")).hexdigest()


def _coerce_timestamp(value: datetime | str) -> datetime | None:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def is_cache_valid(
    last_updated_at: datetime | str | None,
    ttl_hours: float = DEFAULT_TTL_HOURS,
    *,
    now: datetime | None = None,
) -> bool:
    """True while the entry is strictly younger than ``ttl_hours``.

    Future timestamps count as valid (negative age).
    """
    if last_updated_at is None:
        return False
    updated_at = _coerce_timestamp(last_updated_at)
    if updated_at is None:
        return False
    current = now or _utc_now()
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return (current - updated_at) < timedelta(hours=ttl_hours)


def is_elaboration_fresh(
    stored_hash: str | None,
    body: str | None,
    last_updated_at: datetime | str | None,
    ttl_hours: float = DEFAULT_TTL_HOURS,
    *,
    now: datetime | None = None,
) -> bool:
    """Both the content fingerprint and the TTL must hold."""
    if not stored_hash or stored_hash != content_hash(body):
        return False
    return is_cache_valid(last_updated_at, ttl_hours, now=now)


def age_hours(last_updated_at: datetime | str | None, *, now: datetime | None = None) -> float | None:
    updated_at = _coerce_timestamp(last_updated_at) if last_updated_at is not None else None
    if updated_at is None:
        return None
    current = now or _utc_now()
    return round((current - updated_at).total_seconds() / 3600, 2)
