"""Cursor pagination helpers for list views.

Cursors are a (timestamp, id) pair so ordering stays stable when several rows
share a timestamp. They are opaque to callers: URL-safe base64 of a small
JSON object.
"""

import base64
import binascii
import json
import logging
from datetime import datetime
from typing import Any, Sequence

from inspection_sync.config import settings
from inspection_sync.schemas import PageInfo, PaginatedResult

logger = logging.getLogger(__name__)


class CursorData:
    """Decoded cursor position."""

    def __init__(self, timestamp: str, id: str):
        self.timestamp = timestamp
        self.id = id


def encode_cursor(timestamp: datetime | str, id: str) -> str:
    if isinstance(timestamp, datetime):
        timestamp = timestamp.isoformat()
    raw = json.dumps({"timestamp": timestamp, "id": id}).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_cursor(cursor: str) -> CursorData | None:
    """Decode a cursor string. Returns None if the cursor is invalid."""
    try:
        data = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
    except (binascii.Error, ValueError, UnicodeError) as exc:
        logger.warning("Failed to decode cursor %r: %s", cursor, exc)
        return None

    if not isinstance(data, dict) or not data.get("timestamp") or not data.get("id"):
        logger.warning("Invalid cursor data - missing fields: %r", cursor)
        return None

    return CursorData(timestamp=str(data["timestamp"]), id=str(data["id"]))


def _field(record: Any, name: str) -> Any:
    if isinstance(record, dict):
        return record[name]
    return getattr(record, name)


def cursor_from_record(
    record: Any,
    timestamp_field: str = "created_at",
    id_field: str = "id",
) -> str:
    """Create a cursor from a row, model, or dict."""
    return encode_cursor(_field(record, timestamp_field), str(_field(record, id_field)))


def get_valid_page_size(limit: int | None = None) -> int:
    if not limit:
        return settings.DEFAULT_PAGE_SIZE
    return max(settings.MIN_PAGE_SIZE, min(settings.MAX_PAGE_SIZE, limit))


def process_paginated_results(
    rows: Sequence[Any],
    limit: int,
    cursor: str | None,
    timestamp_field: str = "created_at",
    id_field: str = "id",
) -> PaginatedResult:
    """Build a page from rows fetched with ``limit + 1``.

    The extra row only signals that another page exists; it is not returned.
    """
    has_more = len(rows) > limit
    page = list(rows[:limit]) if has_more else list(rows)

    return PaginatedResult(
        data=page,
        page_info=PageInfo(
            has_next_page=has_more,
            has_previous_page=bool(cursor),
            start_cursor=cursor_from_record(page[0], timestamp_field, id_field) if page else None,
            end_cursor=cursor_from_record(page[-1], timestamp_field, id_field) if page else None,
        ),
    )


def empty_paginated_result() -> PaginatedResult:
    return PaginatedResult(data=[], page_info=PageInfo())
