"""Raw feed entry -> canonical darkweb_mentions row (pure)."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Optional

from threatfeed.ingestion.record_types import CanonicalRecord, RawFeedRecord


UNKNOWN = "unknown"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 or RFC 2822 -> aware datetime (naive means UTC); None if unparseable."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        s = str(value).strip()
        if not s:
            return None
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(s)
        except ValueError:
            # RFC 2822, e.g. "Tue, 03 Jun 2025 10:00:00 GMT"
            try:
                parsed = parsedate_to_datetime(s)
            except (TypeError, ValueError, IndexError):
                return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _or_default(value: Optional[str], default: str) -> str:
    if value is None or not str(value).strip():
        return default
    return str(value)


def normalize_record(
    raw: RawFeedRecord,
    *,
    now: Optional[datetime] = None,
    uuid_factory: Callable[[], Any] = uuid.uuid4,
) -> CanonicalRecord:
    """Map one raw entry to a canonical record; never raises on missing fields."""
    record_uuid = raw.uuid.strip() if raw.uuid and raw.uuid.strip() else str(uuid_factory())
    timestamp = parse_timestamp(raw.timestamp) or now or datetime.now(timezone.utc)
    return CanonicalRecord(
        uuid=record_uuid,
        message=raw.message or "",
        category=_or_default(raw.category, UNKNOWN),
        network=_or_default(raw.network, UNKNOWN),
        timestamp=timestamp,
        metadata=json.dumps(raw.fields, ensure_ascii=False, default=str),
    )
