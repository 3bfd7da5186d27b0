"""Pydantic schemas for the conflict engine API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, model_validator


class ConflictRead(BaseModel):
    """Schema for reading a conflict."""

    id: str
    tenant_id: str
    entity_type: str
    entity_id: str
    field_group: str
    type: str
    severity: str
    status: str
    local_snapshot: dict[str, Any]
    remote_snapshot: dict[str, Any]
    field_deltas: list[dict[str, Any]] = Field(default_factory=list)
    version: int
    resolution: dict[str, Any] | None = None
    resolution_strategy: str | None = None
    resolved_by: str | None = None
    ignored_reason: str | None = None
    detected_at: str
    resolved_at: str | None = None
    ignored_at: str | None = None


class ConflictListResponse(BaseModel):
    """Paginated list of conflicts."""

    items: list[ConflictRead]
    total: int
    limit: int
    offset: int


class DetectRequest(BaseModel):
    """Body for POST /tenants/{tenant_id}/conflicts/detect."""

    entity_type: str | None = None


class DetectionSummaryRead(BaseModel):
    tenant_id: str
    created: int
    refreshed: int
    unchanged: int
    entities_scanned: int
    auto_resolved: int = 0
    warnings: list[str] = Field(default_factory=list)
    unavailable_entities: list[str] = Field(default_factory=list)
    unavailable_entity_types: list[str] = Field(default_factory=list)


class ResolveRequest(BaseModel):
    """Body for POST /conflicts/{conflict_id}/resolve.

    ``strategy`` defaults to the tenant policy's choice for the conflict
    type. ``chosen_source`` overrides the source precedence.
    """

    strategy: str | None = None
    chosen_source: str | None = None
    reason: str | None = Field(default=None, max_length=2000)
    actor: str = Field(default="system", min_length=1, max_length=255)


class PreviewRequest(BaseModel):
    strategy: str | None = None
    chosen_source: str | None = None


class PreviewRead(BaseModel):
    conflict_id: str
    strategy: str
    chosen_source: str
    resolved_value: dict[str, Any]
    rationale: str


class IgnoreRequest(BaseModel):
    """Body for POST /conflicts/{conflict_id}/ignore. The reason must not be blank."""

    reason: str = Field(max_length=2000)
    actor: str = Field(default="system", min_length=1, max_length=255)


class BulkFiltersIn(BaseModel):
    """Selection of pending conflicts for a filter-based bulk resolution."""

    type: str | None = None
    severity: str | None = None
    entity_type: str | None = None


class BulkResolveRequest(BaseModel):
    """Body for POST /tenants/{tenant_id}/conflicts/bulk-resolve.

    Exactly one of ``conflict_ids`` or ``filters`` must be given.
    """

    conflict_ids: list[str] | None = Field(default=None, max_length=1000)
    filters: BulkFiltersIn | None = None
    strategy: str
    chosen_source: str | None = None
    reason: str | None = Field(default=None, max_length=2000)
    actor: str = Field(default="system", min_length=1, max_length=255)
    dry_run: bool = False

    @model_validator(mode="after")
    def check_selection(self) -> BulkResolveRequest:
        if (self.conflict_ids is None) == (self.filters is None):
            raise ValueError("Provide exactly one of conflict_ids or filters")
        return self


class BulkFailureRead(BaseModel):
    conflict_id: str
    error: str
    detail: str


class BulkResultRead(BaseModel):
    resolved: int
    failed: int
    skipped: int
    total: int
    dry_run: bool = False
    failures: list[BulkFailureRead] = Field(default_factory=list)
    skipped_ids: list[str] = Field(default_factory=list)
    previews: list[dict[str, Any]] = Field(default_factory=list)


class MetricsRead(BaseModel):
    tenant_id: str
    total_conflicts: int
    pending_conflicts: int
    resolved_conflicts: int
    ignored_conflicts: int
    resolution_rate: float
    by_type: dict[str, int]
    by_severity: dict[str, int]
    by_status: dict[str, int]
    by_strategy: dict[str, int]
    auto_resolved: int
    manual_resolved: int
    oldest_pending_detected_at: str | None = None
    detected_last_24h: int
    average_resolution_seconds: float | None = None


class AuditEntryRead(BaseModel):
    id: str
    conflict_id: str
    action: str
    actor: str
    strategy: str | None = None
    chosen_source: str | None = None
    reason: str | None = None
    rationale: str | None = None
    before_value: dict[str, Any] | None = None
    after_value: dict[str, Any] | None = None
    created_at: str | None = None


class HistoryResponse(BaseModel):
    items: list[AuditEntryRead]
    total: int
    limit: int
    offset: int


class StrategyRead(BaseModel):
    name: str
    description: str


class PolicyRead(BaseModel):
    """Effective resolution policy for a tenant."""

    tenant_id: str
    policy: dict[str, Any]


class PolicyUpdateRequest(BaseModel):
    """Body for PUT /tenants/{tenant_id}/conflicts/policy.

    ``overrides`` carries only the keys that differ from the service-wide
    defaults and replaces any overrides stored before. An empty mapping
    restores the defaults.
    """

    overrides: dict[str, Any] = Field(default_factory=dict)
    actor: str = Field(default="system", min_length=1, max_length=255)
