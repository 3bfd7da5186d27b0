"""Conflict detection and resolution routes.

Exposes detection, the pending-conflict queue, single and bulk resolution,
metrics, audit history, export and tenant resolution policies for catalog/ERP
conflicts. Engine errors
are translated to HTTP statuses in one place (``_http_error``).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from src.api.deps import get_conflict_engine
from src.api.schemas.conflict import (
    AuditEntryRead,
    BulkResolveRequest,
    BulkResultRead,
    ConflictListResponse,
    ConflictRead,
    DetectionSummaryRead,
    DetectRequest,
    HistoryResponse,
    IgnoreRequest,
    MetricsRead,
    PolicyRead,
    PolicyUpdateRequest,
    PreviewRead,
    PreviewRequest,
    ResolveRequest,
    StrategyRead,
)
from src.conflicts.engine import ConflictEngine
from src.conflicts.errors import (
    ConflictEngineError,
    ConflictStateError,
    DetectionSourceUnavailable,
    NotFoundError,
    PolicyUnavailable,
    ValidationError,
    WriteFailure,
)
from src.conflicts.export import MEDIA_TYPES
from src.conflicts.store import ConflictFilters
from src.core.models import Conflict, ConflictAuditEntry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["conflicts"])

_ERROR_STATUS: dict[type[ConflictEngineError], int] = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictStateError: status.HTTP_409_CONFLICT,
    WriteFailure: status.HTTP_502_BAD_GATEWAY,
    DetectionSourceUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    PolicyUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _http_error(exc: ConflictEngineError) -> HTTPException:
    """Map an engine error to an HTTPException."""
    status_code = next(
        (code for kind, code in _ERROR_STATUS.items() if isinstance(exc, kind)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    detail: dict[str, Any] = {"code": exc.code, "message": str(exc)}
    if isinstance(exc, ConflictStateError):
        detail["current_status"] = exc.current_status
    return HTTPException(status_code=status_code, detail=detail)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _conflict_to_read(obj: Conflict) -> ConflictRead:
    """Convert a Conflict ORM instance to a read schema."""
    return ConflictRead(
        id=str(obj.id),
        tenant_id=obj.tenant_id,
        entity_type=obj.entity_type,
        entity_id=obj.entity_id,
        field_group=obj.field_group,
        type=str(obj.conflict_type),
        severity=str(obj.severity),
        status=str(obj.status),
        local_snapshot=obj.local_snapshot,
        remote_snapshot=obj.remote_snapshot,
        field_deltas=obj.field_deltas or [],
        version=obj.version,
        resolution=obj.resolution,
        resolution_strategy=obj.resolution_strategy,
        resolved_by=obj.resolved_by,
        ignored_reason=obj.ignored_reason,
        detected_at=obj.detected_at.isoformat(),
        resolved_at=_iso(obj.resolved_at),
        ignored_at=_iso(obj.ignored_at),
    )


def _audit_to_read(entry: ConflictAuditEntry) -> AuditEntryRead:
    return AuditEntryRead(
        id=str(entry.id),
        conflict_id=str(entry.conflict_id),
        action=str(entry.action),
        actor=entry.actor,
        strategy=entry.strategy,
        chosen_source=entry.chosen_source,
        reason=entry.reason,
        rationale=entry.rationale,
        before_value=entry.before_value,
        after_value=entry.after_value,
        created_at=_iso(entry.created_at),
    )


# ---------------------------------------------------------------------------
# POST /api/v1/tenants/{tenant_id}/conflicts/detect
# ---------------------------------------------------------------------------


@router.post(
    "/tenants/{tenant_id}/conflicts/detect",
    response_model=DetectionSummaryRead,
    summary="Run conflict detection for a tenant",
)
async def detect_conflicts(
    tenant_id: str,
    body: DetectRequest | None = None,
    engine: ConflictEngine = Depends(get_conflict_engine),
) -> dict[str, Any]:
    """Compare catalog and ERP snapshots and record divergences.

    Entities whose ERP copy cannot be fetched are reported as warnings;
    detection continues for the rest.
    """
    entity_type = body.entity_type if body else None
    try:
        summary = await engine.detect_conflicts(tenant_id, entity_type)
    except ConflictEngineError as exc:
        raise _http_error(exc) from exc
    return asdict(summary)


# ---------------------------------------------------------------------------
# GET /api/v1/tenants/{tenant_id}/conflicts
# ---------------------------------------------------------------------------


@router.get(
    "/tenants/{tenant_id}/conflicts",
    response_model=ConflictListResponse,
    summary="List conflicts for a tenant",
)
async def list_conflicts(
    tenant_id: str,
    engine: ConflictEngine = Depends(get_conflict_engine),
    conflict_status: str | None = Query(None, alias="status", description="pending, resolved or ignored"),
    conflict_type: str | None = Query(None, alias="type", description="Filter by conflict type"),
    severity: str | None = Query(None, description="Filter by severity"),
    entity_type: str | None = Query(None, description="Filter by entity type"),
    entity_id: str | None = Query(None, description="Filter by entity id"),
    detected_from: datetime | None = Query(None, description="Detected at or after"),
    detected_to: datetime | None = Query(None, description="Detected at or before"),
    limit: int = Query(50, ge=1, le=500, description="Page size"),
    offset: int = Query(0, ge=0, description="Page offset"),
) -> dict[str, Any]:
    """Return conflicts with filtering and pagination, newest first."""
    try:
        filters = ConflictFilters.parse(
            status=conflict_status,
            conflict_type=conflict_type,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
            detected_from=detected_from,
            detected_to=detected_to,
        )
        items, total = await engine.list_conflicts(tenant_id, filters, limit, offset)
    except ConflictEngineError as exc:
        raise _http_error(exc) from exc

    return {
        "items": [_conflict_to_read(c) for c in items],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


# ---------------------------------------------------------------------------
# GET /api/v1/tenants/{tenant_id}/conflicts/metrics
# ---------------------------------------------------------------------------


@router.get(
    "/tenants/{tenant_id}/conflicts/metrics",
    response_model=MetricsRead,
    summary="Conflict metrics for a tenant",
)
async def get_metrics(
    tenant_id: str,
    engine: ConflictEngine = Depends(get_conflict_engine),
) -> dict[str, Any]:
    summary = await engine.get_metrics(tenant_id)
    return summary.to_dict()


# ---------------------------------------------------------------------------
# GET /api/v1/tenants/{tenant_id}/conflicts/export
# ---------------------------------------------------------------------------


@router.get(
    "/tenants/{tenant_id}/conflicts/export",
    summary="Export conflicts as CSV or JSON",
)
async def export_conflicts(
    tenant_id: str,
    engine: ConflictEngine = Depends(get_conflict_engine),
    fmt: str = Query("csv", alias="format", description="csv or json"),
    conflict_status: str | None = Query(None, alias="status"),
    conflict_type: str | None = Query(None, alias="type"),
    severity: str | None = Query(None),
    entity_type: str | None = Query(None),
    detected_from: datetime | None = Query(None),
    detected_to: datetime | None = Query(None),
) -> StreamingResponse:
    """Stream every matching conflict. CSV rows are flat; JSON keeps snapshots."""
    try:
        filters = ConflictFilters.parse(
            status=conflict_status,
            conflict_type=conflict_type,
            severity=severity,
            entity_type=entity_type,
            detected_from=detected_from,
            detected_to=detected_to,
        )
        stream = engine.export_conflicts(tenant_id, fmt, filters)
    except ConflictEngineError as exc:
        raise _http_error(exc) from exc

    extension = fmt.lower()
    return StreamingResponse(
        stream,
        media_type=MEDIA_TYPES[extension],
        headers={"Content-Disposition": f"attachment; filename=conflicts_{tenant_id}.{extension}"},
    )


# ---------------------------------------------------------------------------
# GET /api/v1/tenants/{tenant_id}/conflicts/history
# ---------------------------------------------------------------------------


@router.get(
    "/tenants/{tenant_id}/conflicts/history",
    response_model=HistoryResponse,
    summary="Resolution audit history for a tenant",
)
async def list_history(
    tenant_id: str,
    engine: ConflictEngine = Depends(get_conflict_engine),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> dict[str, Any]:
    entries, total = await engine.list_history(tenant_id, limit, offset)
    return {
        "items": [_audit_to_read(e) for e in entries],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


# ---------------------------------------------------------------------------
# POST /api/v1/tenants/{tenant_id}/conflicts/auto-resolve
# ---------------------------------------------------------------------------


@router.post(
    "/tenants/{tenant_id}/conflicts/auto-resolve",
    response_model=BulkResultRead,
    summary="Auto-resolve low-risk pending conflicts",
)
async def auto_resolve(
    tenant_id: str,
    engine: ConflictEngine = Depends(get_conflict_engine),
) -> dict[str, Any]:
    """Resolve pending conflicts whose type the tenant policy marks as safe."""
    try:
        result = await engine.auto_resolve(tenant_id)
    except ConflictEngineError as exc:
        raise _http_error(exc) from exc
    return result.to_dict()


# ---------------------------------------------------------------------------
# POST /api/v1/tenants/{tenant_id}/conflicts/bulk-resolve
# ---------------------------------------------------------------------------


@router.post(
    "/tenants/{tenant_id}/conflicts/bulk-resolve",
    response_model=BulkResultRead,
    summary="Resolve many conflicts with one strategy",
)
async def bulk_resolve(
    tenant_id: str,
    body: BulkResolveRequest,
    engine: ConflictEngine = Depends(get_conflict_engine),
) -> dict[str, Any]:
    """Resolve a list of conflict ids, or every pending conflict matching filters.

    Per-item failures are reported in the result; the request itself only
    fails when the strategy or filters are invalid.
    """
    try:
        if body.conflict_ids is not None:
            result = await engine.bulk_resolve(
                tenant_id,
                body.conflict_ids,
                body.strategy,
                actor=body.actor,
                reason=body.reason,
                chosen_source=body.chosen_source,
                dry_run=body.dry_run,
            )
        else:
            assert body.filters is not None
            filters = ConflictFilters.parse(
                conflict_type=body.filters.type,
                severity=body.filters.severity,
                entity_type=body.filters.entity_type,
            )
            result = await engine.bulk_resolve_matching(
                tenant_id,
                filters,
                body.strategy,
                actor=body.actor,
                reason=body.reason,
                chosen_source=body.chosen_source,
                dry_run=body.dry_run,
            )
    except ConflictEngineError as exc:
        raise _http_error(exc) from exc
    return result.to_dict()


# ---------------------------------------------------------------------------
# /api/v1/tenants/{tenant_id}/conflicts/policy
# ---------------------------------------------------------------------------


@router.get(
    "/tenants/{tenant_id}/conflicts/policy",
    response_model=PolicyRead,
    summary="Get the effective resolution policy for a tenant",
)
async def get_policy(
    tenant_id: str,
    engine: ConflictEngine = Depends(get_conflict_engine),
) -> dict[str, Any]:
    try:
        policy = await engine.get_policy(tenant_id)
    except ConflictEngineError as exc:
        raise _http_error(exc) from exc
    return {"tenant_id": tenant_id, "policy": policy.model_dump(mode="json")}


@router.put(
    "/tenants/{tenant_id}/conflicts/policy",
    response_model=PolicyRead,
    summary="Replace a tenant's resolution policy overrides",
)
async def update_policy(
    tenant_id: str,
    body: PolicyUpdateRequest,
    engine: ConflictEngine = Depends(get_conflict_engine),
) -> dict[str, Any]:
    """Validate and store tolerance, strategy and precedence overrides.

    Invalid overrides are rejected with 422 and the stored policy is left
    unchanged.
    """
    try:
        policy = await engine.update_policy(tenant_id, body.overrides, actor=body.actor)
    except ConflictEngineError as exc:
        raise _http_error(exc) from exc
    return {"tenant_id": tenant_id, "policy": policy.model_dump(mode="json")}


# ---------------------------------------------------------------------------
# GET /api/v1/conflicts/strategies
# ---------------------------------------------------------------------------


@router.get(
    "/conflicts/strategies",
    response_model=list[StrategyRead],
    summary="List available resolution strategies",
)
async def list_strategies(
    engine: ConflictEngine = Depends(get_conflict_engine),
) -> list[dict[str, str]]:
    return engine.list_strategies()


# ---------------------------------------------------------------------------
# /api/v1/conflicts/{conflict_id}
# ---------------------------------------------------------------------------


@router.get(
    "/conflicts/{conflict_id}",
    response_model=ConflictRead,
    summary="Get a conflict",
)
async def get_conflict(
    conflict_id: uuid.UUID,
    engine: ConflictEngine = Depends(get_conflict_engine),
) -> ConflictRead:
    try:
        conflict = await engine.get_conflict(conflict_id)
    except ConflictEngineError as exc:
        raise _http_error(exc) from exc
    return _conflict_to_read(conflict)


@router.post(
    "/conflicts/{conflict_id}/resolve",
    response_model=ConflictRead,
    summary="Resolve a conflict",
)
async def resolve_conflict(
    conflict_id: uuid.UUID,
    body: ResolveRequest,
    engine: ConflictEngine = Depends(get_conflict_engine),
) -> ConflictRead:
    """Apply a strategy, write the result to the catalog and close the conflict.

    Returns 409 with ``current_status`` when the conflict is no longer
    pending and 502 when the catalog rejects the write (the conflict then
    stays pending).
    """
    try:
        conflict = await engine.resolve_conflict(
            conflict_id,
            strategy=body.strategy,
            chosen_source=body.chosen_source,
            reason=body.reason,
            actor=body.actor,
        )
    except ConflictEngineError as exc:
        raise _http_error(exc) from exc
    return _conflict_to_read(conflict)


@router.post(
    "/conflicts/{conflict_id}/preview",
    response_model=PreviewRead,
    summary="Preview a resolution without applying it",
)
async def preview_resolution(
    conflict_id: uuid.UUID,
    body: PreviewRequest | None = None,
    engine: ConflictEngine = Depends(get_conflict_engine),
) -> PreviewRead:
    body = body or PreviewRequest()
    try:
        outcome = await engine.preview_resolution(conflict_id, body.strategy, body.chosen_source)
    except ConflictEngineError as exc:
        raise _http_error(exc) from exc
    return PreviewRead(
        conflict_id=str(conflict_id),
        strategy=outcome.strategy.value,
        chosen_source=outcome.chosen_source.value,
        resolved_value=outcome.resolved_value,
        rationale=outcome.rationale,
    )


@router.post(
    "/conflicts/{conflict_id}/ignore",
    response_model=ConflictRead,
    summary="Ignore a conflict",
)
async def ignore_conflict(
    conflict_id: uuid.UUID,
    body: IgnoreRequest,
    engine: ConflictEngine = Depends(get_conflict_engine),
) -> ConflictRead:
    """Close a conflict without writing to the catalog. A reason is required."""
    try:
        conflict = await engine.ignore_conflict(conflict_id, body.reason, actor=body.actor)
    except ConflictEngineError as exc:
        raise _http_error(exc) from exc
    return _conflict_to_read(conflict)
