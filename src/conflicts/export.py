"""Conflict export as CSV or JSON byte streams.

Rows are read page by page from the store so large tenants never load the
full conflict table into memory.
"""

from __future__ import annotations

import csv
import io
import json
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any

from src.conflicts.errors import ValidationError
from src.conflicts.store import ConflictFilters, StoreScope
from src.core.models import Conflict

EXPORT_FORMATS = ("csv", "json")

CSV_COLUMNS = [
    "id",
    "type",
    "severity",
    "status",
    "entity_type",
    "entity_id",
    "detected_at",
    "resolved_at",
    "strategy",
    "chosen_source",
    "ignored_reason",
]

MEDIA_TYPES = {"csv": "text/csv", "json": "application/json"}


def check_format(fmt: str) -> str:
    """Normalize an export format name.

    Raises:
        ValidationError: If the format is not csv or json.
    """
    normalized = (fmt or "").lower()
    if normalized not in EXPORT_FORMATS:
        raise ValidationError(f"Unsupported export format '{fmt}'. Expected one of: {', '.join(EXPORT_FORMATS)}")
    return normalized


def conflict_row(conflict: Conflict) -> dict[str, Any]:
    """Flatten a conflict into one export row."""
    resolution = conflict.resolution or {}
    return {
        "id": str(conflict.id),
        "type": conflict.conflict_type.value,
        "severity": conflict.severity.value,
        "status": conflict.status.value,
        "entity_type": conflict.entity_type,
        "entity_id": conflict.entity_id,
        "detected_at": conflict.detected_at.isoformat() if conflict.detected_at else "",
        "resolved_at": conflict.resolved_at.isoformat() if conflict.resolved_at else "",
        "strategy": conflict.resolution_strategy or "",
        "chosen_source": resolution.get("chosen_source") or "",
        "ignored_reason": conflict.ignored_reason or "",
    }


def conflict_document(conflict: Conflict) -> dict[str, Any]:
    """Full JSON representation of a conflict for the JSON export."""
    row = conflict_row(conflict)
    row.update(
        {
            "field_group": conflict.field_group,
            "local_snapshot": conflict.local_snapshot,
            "remote_snapshot": conflict.remote_snapshot,
            "field_deltas": conflict.field_deltas,
            "resolution": conflict.resolution,
            "resolved_by": conflict.resolved_by,
        }
    )
    return row


def _csv_line(values: list[Any]) -> bytes:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(values)
    return output.getvalue().encode("utf-8")


async def stream_export(
    store_scope: StoreScope,
    tenant_id: str,
    fmt: str,
    filters: ConflictFilters,
    page_size: int = 500,
) -> AsyncIterator[bytes]:
    """Yield the export body in chunks.

    Call :func:`check_format` first; this generator assumes a valid format.
    """
    async with store_scope() as store:
        offset = 0
        items, total = await store.list_conflicts(tenant_id, filters, page_size, offset)

        if fmt == "csv":
            yield _csv_line(CSV_COLUMNS)
        else:
            header = {
                "exported_at": datetime.now(UTC).isoformat(),
                "tenant_id": tenant_id,
                "filters": filters.to_json(),
                "total": total,
            }
            # Open the document and leave the conflicts array unterminated.
            yield json.dumps(header)[:-1].encode("utf-8") + b', "conflicts": ['

        first = True
        while items:
            for conflict in items:
                if fmt == "csv":
                    row = conflict_row(conflict)
                    yield _csv_line([row[column] for column in CSV_COLUMNS])
                else:
                    prefix = b"" if first else b", "
                    yield prefix + json.dumps(conflict_document(conflict), default=str).encode("utf-8")
                first = False

            offset += len(items)
            if offset >= total or len(items) < page_size:
                break
            items, total = await store.list_conflicts(tenant_id, filters, page_size, offset)

        if fmt == "json":
            yield b"]}"
