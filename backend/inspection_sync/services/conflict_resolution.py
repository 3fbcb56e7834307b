"""Field-level merge of a local draft against the remote responses.

Pure functions, no I/O. Each of response_value, severity and notes is merged
on its own:

1. identical on both sides: keep it
2. present on one side only: the present side wins, whatever the timestamps
3. present on both and different: the configured strategy decides;
   newest-wins compares the local field_updated_at with the remote
   updated_at (falling back to created_at); a side with no timestamp
   counts as edited now

Media never merges field by field. Local paths are files that have not been
uploaded yet, so the local list is always kept as-is.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from inspection_sync.models.enums import ConflictStrategy, FieldWinner
from inspection_sync.schemas.inspection import (
    ConflictField,
    LocalResponse,
    MergedResponse,
    MergeSummary,
    RemoteResponse,
    ResponseConflict,
    TemplateItem,
)

logger = logging.getLogger(__name__)

MERGED_FIELDS = ("response_value", "severity", "notes")


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _plain(value: Any) -> Any:
    # Severity enums compare by their stored string
    return getattr(value, "value", value)


def server_timestamp(server: RemoteResponse) -> datetime | None:
    return _as_utc(server.updated_at or server.created_at)


def is_newer(first: datetime | None, second: datetime | None) -> bool:
    """True when ``first`` is strictly later than ``second``.

    A missing timestamp counts as older than any real one.
    """
    first, second = _as_utc(first), _as_utc(second)
    if first is None:
        return False
    if second is None:
        return True
    return first > second


def merge_field(
    local_value: Any,
    server_value: Any,
    local_timestamp: datetime | None,
    server_timestamp: datetime | None,
    strategy: ConflictStrategy = ConflictStrategy.NEWEST_WINS,
) -> tuple[Any, FieldWinner]:
    """Merge one field. Returns the kept value and which side it came from."""
    if _plain(local_value) == _plain(server_value):
        return local_value, FieldWinner.SAME

    if local_value is None:
        return server_value, FieldWinner.SERVER
    if server_value is None:
        return local_value, FieldWinner.LOCAL

    if strategy == ConflictStrategy.LOCAL_WINS:
        return local_value, FieldWinner.LOCAL
    if strategy == ConflictStrategy.SERVER_WINS:
        return server_value, FieldWinner.SERVER

    # newest-wins; a missing timestamp counts as now, a tie goes to the system of record
    now = datetime.now(timezone.utc)
    if is_newer(local_timestamp or now, server_timestamp or now):
        return local_value, FieldWinner.LOCAL
    return server_value, FieldWinner.SERVER


def merge_response(
    template_item_id: str,
    local: LocalResponse | None,
    server: RemoteResponse | None,
    strategy: ConflictStrategy = ConflictStrategy.NEWEST_WINS,
) -> MergedResponse:
    """Merge one template item's local and remote state."""
    if local is None and server is None:
        return MergedResponse(template_item_id=template_item_id)

    if local is None:
        return MergedResponse(
            template_item_id=template_item_id,
            response_value=server.response_value,
            severity=server.severity,
            notes=server.notes,
            field_updated_at=server_timestamp(server),
            server_wins=list(MERGED_FIELDS),
        )

    if server is None:
        return MergedResponse(
            template_item_id=template_item_id,
            response_value=local.response_value,
            severity=local.severity,
            notes=local.notes,
            photos=list(local.photos),
            videos=list(local.videos),
            uploaded_media=list(local.uploaded_media),
            field_updated_at=local.field_updated_at,
            local_wins=list(MERGED_FIELDS),
        )

    local_ts = _as_utc(local.field_updated_at)
    server_ts = server_timestamp(server)

    merged = MergedResponse(
        template_item_id=template_item_id,
        photos=list(local.photos),
        videos=list(local.videos),
        uploaded_media=list(local.uploaded_media),
    )
    for field in MERGED_FIELDS:
        local_value = getattr(local, field)
        server_value = getattr(server, field)
        value, winner = merge_field(local_value, server_value, local_ts, server_ts, strategy)
        setattr(merged, field, value)

        if winner == FieldWinner.LOCAL:
            merged.local_wins.append(field)
        elif winner == FieldWinner.SERVER:
            merged.server_wins.append(field)

        if local_value is not None and server_value is not None and winner != FieldWinner.SAME:
            merged.had_conflicts = True

    merged.field_updated_at = local_ts if is_newer(local_ts, server_ts) else server_ts or local_ts

    return merged


def detect_conflicts(
    local: LocalResponse,
    server: RemoteResponse,
    item_label: str,
) -> ResponseConflict | None:
    """List the fields where both sides hold different non-null values."""
    local_ts = _as_utc(local.field_updated_at)
    server_ts = server_timestamp(server)

    conflicts = []
    for field in MERGED_FIELDS:
        local_value = getattr(local, field)
        server_value = getattr(server, field)
        if local_value is None or server_value is None:
            continue
        if _plain(local_value) == _plain(server_value):
            continue
        conflicts.append(ConflictField(
            field=field,
            local_value=_plain(local_value),
            server_value=_plain(server_value),
            local_timestamp=local_ts,
            server_timestamp=server_ts,
        ))

    if not conflicts:
        return None

    return ResponseConflict(
        template_item_id=local.template_item_id,
        item_label=item_label,
        conflicts=conflicts,
    )


def merge_all_responses(
    local_responses: Iterable[LocalResponse],
    server_responses: Iterable[RemoteResponse],
    template_items: Iterable[TemplateItem],
    strategy: ConflictStrategy = ConflictStrategy.NEWEST_WINS,
) -> MergeSummary:
    """Produce exactly one merged response per template item, in template order."""
    local_map = {r.template_item_id: r for r in local_responses}
    server_map = {r.template_item_id: r for r in server_responses}

    merged: list[MergedResponse] = []
    conflict_count = 0
    local_win_count = 0
    server_win_count = 0

    for item in template_items:
        result = merge_response(
            item.id,
            local_map.get(item.id),
            server_map.get(item.id),
            strategy,
        )
        if result.had_conflicts:
            conflict_count += 1
            logger.info(
                "Resolved conflict on item %s (%s): local=%s server=%s",
                item.id,
                item.label,
                result.local_wins,
                result.server_wins,
            )
        local_win_count += len(result.local_wins)
        server_win_count += len(result.server_wins)
        merged.append(result)

    return MergeSummary(
        merged=merged,
        conflict_count=conflict_count,
        local_win_count=local_win_count,
        server_win_count=server_win_count,
    )
