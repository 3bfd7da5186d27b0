"""Conflict engine facade.

Wires the detector, resolver, bulk coordinator, metrics and export over
one store scope and one set of collaborators. The API layer talks only to
this class.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.conflicts.bulk import BulkCoordinator, BulkResult
from src.conflicts.detector import ConflictDetector, DetectionSummary
from src.conflicts.errors import NotFoundError, ValidationError
from src.conflicts.export import check_format, stream_export
from src.conflicts.metrics import MetricsSummary, summarize
from src.conflicts.policy import ResolutionPolicy, SqlPolicyProvider, default_policy
from src.conflicts.ports import CanonicalStore, PolicyProvider, RemoteSourceClient
from src.conflicts.resolver import AUTO_ACTOR, ConflictResolver, parse_conflict_id
from src.conflicts.store import ConflictFilters, StoreScope, sql_store_scope
from src.conflicts.strategies import StrategyName, StrategyOutcome, list_strategies, parse_strategy_name
from src.core.config import Settings
from src.core.models import Conflict, ConflictAuditEntry, ConflictStatus, Severity

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500


def _check_page(limit: int, offset: int) -> None:
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if offset < 0:
        raise ValidationError("offset must not be negative")


class ConflictEngine:
    """Entry point for every conflict operation."""

    def __init__(
        self,
        store_scope: StoreScope,
        catalog: CanonicalStore,
        remote: RemoteSourceClient,
        policies: PolicyProvider,
        detection_concurrency: int = 16,
        bulk_concurrency: int = 8,
        auto_resolve_on_detect: bool = False,
        export_page_size: int = 500,
    ) -> None:
        self._store_scope = store_scope
        self._policies = policies
        self._auto_resolve_on_detect = auto_resolve_on_detect
        self._export_page_size = export_page_size
        self.detector = ConflictDetector(store_scope, catalog, remote, policies, detection_concurrency)
        self.resolver = ConflictResolver(store_scope, catalog, policies)
        self.bulk = BulkCoordinator(self.resolver, bulk_concurrency)

    # -- Detection ------------------------------------------------------------

    async def detect_conflicts(self, tenant_id: str, entity_type: str | None = None) -> DetectionSummary:
        summary = await self.detector.detect(tenant_id, entity_type)
        if self._auto_resolve_on_detect:
            result = await self.auto_resolve(tenant_id)
            summary.auto_resolved = result.resolved
        return summary

    # -- Queries --------------------------------------------------------------

    async def list_conflicts(
        self,
        tenant_id: str,
        filters: ConflictFilters | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Conflict], int]:
        _check_page(limit, offset)
        async with self._store_scope() as store:
            return await store.list_conflicts(tenant_id, filters or ConflictFilters(), limit, offset)

    async def get_conflict(self, conflict_id: str | uuid.UUID) -> Conflict:
        cid = parse_conflict_id(conflict_id)
        async with self._store_scope() as store:
            conflict = await store.get(cid)
        if conflict is None:
            raise NotFoundError(cid)
        return conflict

    async def get_metrics(self, tenant_id: str) -> MetricsSummary:
        async with self._store_scope() as store:
            return await summarize(store, tenant_id)

    async def list_history(
        self, tenant_id: str, limit: int = 50, offset: int = 0
    ) -> tuple[list[ConflictAuditEntry], int]:
        _check_page(limit, offset)
        async with self._store_scope() as store:
            return await store.list_history(tenant_id, limit, offset)

    def list_strategies(self) -> list[dict[str, str]]:
        return list_strategies()

    # -- Policy ---------------------------------------------------------------

    async def get_policy(self, tenant_id: str) -> ResolutionPolicy:
        return await self._policies.get(tenant_id)

    async def update_policy(self, tenant_id: str, overrides: dict[str, Any], actor: str = "system") -> ResolutionPolicy:
        """Replace the tenant's policy overrides; the next detection and resolution use them."""
        policy = await self._policies.update(tenant_id, overrides)
        logger.info("Resolution policy for tenant %s changed by %s", tenant_id, actor)
        return policy

    # -- Resolution -----------------------------------------------------------

    async def resolve_conflict(
        self,
        conflict_id: str | uuid.UUID,
        strategy: str | None = None,
        chosen_source: str | None = None,
        reason: str | None = None,
        actor: str = "system",
    ) -> Conflict:
        return await self.resolver.resolve(conflict_id, strategy, chosen_source, reason, actor)

    async def preview_resolution(
        self,
        conflict_id: str | uuid.UUID,
        strategy: str | None = None,
        chosen_source: str | None = None,
    ) -> StrategyOutcome:
        return await self.resolver.preview(conflict_id, strategy, chosen_source)

    async def ignore_conflict(self, conflict_id: str | uuid.UUID, reason: str, actor: str = "system") -> Conflict:
        return await self.resolver.ignore(conflict_id, reason, actor)

    async def bulk_resolve(
        self,
        tenant_id: str,
        conflict_ids: list[str | uuid.UUID],
        strategy: str,
        actor: str = "system",
        reason: str | None = None,
        chosen_source: str | None = None,
        dry_run: bool = False,
    ) -> BulkResult:
        return await self.bulk.bulk_resolve(tenant_id, conflict_ids, strategy, actor, reason, chosen_source, dry_run)

    async def bulk_resolve_matching(
        self,
        tenant_id: str,
        filters: ConflictFilters,
        strategy: str,
        actor: str = "system",
        reason: str | None = None,
        chosen_source: str | None = None,
        dry_run: bool = False,
    ) -> BulkResult:
        """Resolve every pending conflict of a tenant that matches ``filters``."""
        name = parse_strategy_name(strategy)
        async with self._store_scope() as store:
            ids = await store.list_pending_ids(tenant_id, filters)
        logger.info("Bulk resolving %d pending conflicts for tenant %s", len(ids), tenant_id)
        return await self.bulk.bulk_resolve(tenant_id, list(ids), name, actor, reason, chosen_source, dry_run)

    async def auto_resolve(self, tenant_id: str) -> BulkResult:
        """Resolve low-risk pending conflicts with the policy's default strategy.

        Eligible conflicts have a type listed in ``auto_resolve_types`` and a
        severity below HIGH.
        """
        policy = await self._policies.get(tenant_id)
        by_strategy: dict[StrategyName, list[uuid.UUID]] = {}

        async with self._store_scope() as store:
            for conflict_type in sorted(policy.auto_resolve_types):
                for severity in (Severity.LOW, Severity.MEDIUM):
                    filters = ConflictFilters(
                        status=ConflictStatus.PENDING, conflict_type=conflict_type, severity=severity
                    )
                    ids = await store.list_pending_ids(tenant_id, filters)
                    by_strategy.setdefault(policy.strategy_for(conflict_type), []).extend(ids)

        result = BulkResult()
        for strategy, ids in by_strategy.items():
            if ids:
                result.merge(await self.bulk.bulk_resolve(tenant_id, list(ids), strategy, actor=AUTO_ACTOR))

        logger.info(
            "Auto resolution for tenant %s: %d resolved, %d failed, %d skipped",
            tenant_id,
            result.resolved,
            result.failed,
            result.skipped,
        )
        return result

    # -- Export ---------------------------------------------------------------

    def export_conflicts(
        self,
        tenant_id: str,
        fmt: str = "csv",
        filters: ConflictFilters | None = None,
    ) -> AsyncIterator[bytes]:
        """Return the export body as an async byte stream.

        The format is checked before the stream is created so that callers
        see ``ValidationError`` up front.
        """
        normalized = check_format(fmt)
        return stream_export(
            self._store_scope,
            tenant_id,
            normalized,
            filters or ConflictFilters(),
            self._export_page_size,
        )


def build_engine(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    catalog: CanonicalStore,
    remote: RemoteSourceClient,
    policies: PolicyProvider | None = None,
) -> ConflictEngine:
    """Build an engine backed by PostgreSQL with policies from settings."""
    return ConflictEngine(
        store_scope=sql_store_scope(session_factory),
        catalog=catalog,
        remote=remote,
        policies=policies or SqlPolicyProvider(session_factory, default_policy(settings)),
        detection_concurrency=settings.conflict_detection_concurrency,
        bulk_concurrency=settings.conflict_bulk_concurrency,
        auto_resolve_on_detect=settings.conflict_auto_resolve_on_detect,
        export_page_size=settings.conflict_export_page_size,
    )
