"""Conflict metrics aggregated from the store on every read."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from src.conflicts.resolver import AUTO_ACTOR
from src.conflicts.store import ConflictStore
from src.core.models import ConflictStatus


@dataclass
class MetricsSummary:
    """Point-in-time metrics for one tenant.

    ``resolution_rate`` is resolved / (resolved + ignored + pending), 0.0
    when the tenant has no conflicts. ``average_resolution_seconds`` is the
    mean detection-to-resolution time of resolved conflicts, None until
    one is resolved.
    """

    tenant_id: str
    total_conflicts: int = 0
    pending_conflicts: int = 0
    resolved_conflicts: int = 0
    ignored_conflicts: int = 0
    resolution_rate: float = 0.0
    by_type: dict[str, int] = field(default_factory=dict)
    by_severity: dict[str, int] = field(default_factory=dict)
    by_status: dict[str, int] = field(default_factory=dict)
    by_strategy: dict[str, int] = field(default_factory=dict)
    auto_resolved: int = 0
    manual_resolved: int = 0
    oldest_pending_detected_at: datetime | None = None
    detected_last_24h: int = 0
    average_resolution_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.oldest_pending_detected_at is not None:
            data["oldest_pending_detected_at"] = self.oldest_pending_detected_at.isoformat()
        return data


def _bump(counter: dict[str, int], key: str, amount: int) -> None:
    counter[key] = counter.get(key, 0) + amount


async def summarize(store: ConflictStore, tenant_id: str, now: datetime | None = None) -> MetricsSummary:
    """Compute metrics for a tenant from grouped counts."""
    now = now or datetime.now(UTC)
    summary = MetricsSummary(tenant_id=tenant_id)

    for row in await store.metric_rows(tenant_id):
        summary.total_conflicts += row.count
        _bump(summary.by_type, row.conflict_type.value, row.count)
        _bump(summary.by_severity, row.severity.value, row.count)
        _bump(summary.by_status, row.status.value, row.count)

        if row.status == ConflictStatus.PENDING:
            summary.pending_conflicts += row.count
        elif row.status == ConflictStatus.IGNORED:
            summary.ignored_conflicts += row.count
        else:
            summary.resolved_conflicts += row.count
            if row.resolution_strategy:
                _bump(summary.by_strategy, row.resolution_strategy, row.count)
            if row.resolved_by == AUTO_ACTOR:
                summary.auto_resolved += row.count
            else:
                summary.manual_resolved += row.count

    if summary.total_conflicts:
        summary.resolution_rate = round(summary.resolved_conflicts / summary.total_conflicts, 4)

    summary.oldest_pending_detected_at = await store.oldest_pending_detected_at(tenant_id)
    summary.detected_last_24h = await store.count_detected_since(tenant_id, now - timedelta(hours=24))
    average = await store.average_resolution_seconds(tenant_id)
    summary.average_resolution_seconds = round(average, 1) if average is not None else None
    return summary
