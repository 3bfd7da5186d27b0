"""Conflict detector: compares catalog and ERP snapshots for a tenant.

For each linked entity the detector reads the local (canonical) and remote
(ERP) snapshots, splits the comparison into field groups and classifies
every group that diverges beyond tolerance:

- ``price`` and ``stock``: one numeric field each, banded by relative delta;
- ``product_data``: all configured text fields compared together.

Each divergence is upserted under its natural key
``(tenant_id, entity_type, entity_id, field_group)``. Re-running detection
on unchanged data leaves existing conflicts untouched.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from src.conflicts.classifier import Classification, FieldDelta, classify, relative_delta
from src.conflicts.errors import DetectionSourceUnavailable
from src.conflicts.policy import ResolutionPolicy
from src.conflicts.ports import CanonicalStore, PolicyProvider, RemoteSourceClient, Snapshot, to_number
from src.conflicts.store import StoreScope
from src.core.models import Conflict, ConflictStatus

logger = logging.getLogger(__name__)

MAX_UPSERT_ATTEMPTS = 3


class UpsertOutcome(enum.StrEnum):
    CREATED = "created"
    REFRESHED = "refreshed"
    UNCHANGED = "unchanged"
    CONTENDED = "contended"


@dataclass(frozen=True)
class Candidate:
    """A divergence ready to be persisted."""

    entity_type: str
    entity_id: str
    classification: Classification
    local: Snapshot
    remote: Snapshot
    deltas: list[FieldDelta]

    @property
    def field_group(self) -> str:
        return self.classification.field_group


@dataclass
class DetectionSummary:
    """Counters returned by one detection run."""

    tenant_id: str
    created: int = 0
    refreshed: int = 0
    unchanged: int = 0
    entities_scanned: int = 0
    warnings: list[str] = field(default_factory=list)
    unavailable_entities: list[str] = field(default_factory=list)
    unavailable_entity_types: list[str] = field(default_factory=list)
    auto_resolved: int = 0

    def record(self, outcome: UpsertOutcome, candidate: Candidate) -> None:
        if outcome == UpsertOutcome.CREATED:
            self.created += 1
        elif outcome == UpsertOutcome.REFRESHED:
            self.refreshed += 1
        elif outcome == UpsertOutcome.UNCHANGED:
            self.unchanged += 1
        else:
            self.warnings.append(
                f"Gave up refreshing {candidate.entity_type}#{candidate.entity_id} "
                f"({candidate.field_group}) after concurrent updates"
            )


def _normalize_text(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def build_candidates(local: Snapshot, remote: Snapshot, policy: ResolutionPolicy) -> list[Candidate]:
    """Compare two snapshots field group by field group.

    Numeric fields missing or non-numeric on either side are not compared.
    Text values are compared after trimming whitespace; empty and missing
    are treated alike.
    """
    candidates: list[Candidate] = []

    for name, bands in policy.numeric_fields.items():
        lv = to_number(local.values.get(name))
        rv = to_number(remote.values.get(name))
        if lv is None or rv is None:
            if name in local.values or name in remote.values:
                logger.debug("Skipping non-comparable %s for %s#%s", name, local.entity_type, local.entity_id)
            continue
        delta = relative_delta(lv, rv)
        if delta == 0 or delta < bands.tolerance:
            continue
        deltas = [FieldDelta(name, local.values[name], remote.values[name], relative_delta=delta)]
        candidates.append(
            Candidate(
                entity_type=local.entity_type,
                entity_id=local.entity_id,
                classification=classify(deltas, policy),
                local=local.project([name]),
                remote=remote.project([name]),
                deltas=deltas,
            )
        )

    text_deltas = [
        FieldDelta(name, local.values.get(name), remote.values.get(name))
        for name in policy.text_fields
        if _normalize_text(local.values.get(name)) != _normalize_text(remote.values.get(name))
    ]
    if text_deltas:
        candidates.append(
            Candidate(
                entity_type=local.entity_type,
                entity_id=local.entity_id,
                classification=classify(text_deltas, policy),
                local=local.project(policy.text_fields),
                remote=remote.project(policy.text_fields),
                deltas=text_deltas,
            )
        )

    return candidates


def _same_observation(existing: Conflict, candidate: Candidate) -> bool:
    return (
        existing.local_snapshot.get("values") == candidate.local.to_json()["values"]
        and existing.remote_snapshot.get("values") == candidate.remote.to_json()["values"]
        and existing.conflict_type == candidate.classification.conflict_type
        and existing.severity == candidate.classification.severity
    )


class ConflictDetector:
    """Scans a tenant's linked entities and records divergences."""

    def __init__(
        self,
        store_scope: StoreScope,
        catalog: CanonicalStore,
        remote: RemoteSourceClient,
        policies: PolicyProvider,
        max_concurrency: int = 16,
    ) -> None:
        self._store_scope = store_scope
        self._catalog = catalog
        self._remote = remote
        self._policies = policies
        self._max_concurrency = max_concurrency

    async def detect(self, tenant_id: str, entity_type: str | None = None) -> DetectionSummary:
        """Run one detection pass.

        Args:
            tenant_id: Tenant to scan.
            entity_type: Restrict the scan to one entity type; defaults to
                every type listed in the tenant policy.

        Returns:
            Summary of created, refreshed and unchanged conflicts. Entities
            whose remote copy could not be fetched, and entity types the
            catalog could not list, are reported as warnings.

        Raises:
            PolicyUnavailable: If the tenant policy cannot be loaded.
        """
        policy = await self._policies.get(tenant_id)
        entity_types = [entity_type] if entity_type else list(policy.entity_types)
        summary = DetectionSummary(tenant_id=tenant_id)
        sem = asyncio.Semaphore(self._max_concurrency)

        async def _scan_with_sem(etype: str, entity_id: str) -> list[tuple[UpsertOutcome, Candidate]]:
            async with sem:
                return await self._scan_entity(tenant_id, etype, entity_id, policy)

        for etype in entity_types:
            try:
                entity_ids = await self._catalog.list_entity_ids(tenant_id, etype)
            except Exception as exc:
                logger.exception("Listing %s entities failed for tenant %s", etype, tenant_id)
                summary.unavailable_entity_types.append(etype)
                summary.warnings.append(f"Could not list {etype} entities: {exc}")
                continue

            results = await asyncio.gather(
                *[_scan_with_sem(etype, entity_id) for entity_id in entity_ids],
                return_exceptions=True,
            )

            for entity_id, result in zip(entity_ids, results, strict=True):
                summary.entities_scanned += 1
                if isinstance(result, DetectionSourceUnavailable):
                    logger.warning("Remote unavailable for %s#%s: %s", etype, entity_id, result)
                    summary.unavailable_entities.append(f"{etype}#{entity_id}")
                    summary.warnings.append(str(result))
                elif isinstance(result, Exception):
                    logger.error("Detection failed for %s#%s: %s", etype, entity_id, result, exc_info=result)
                    summary.warnings.append(f"Detection failed for {etype}#{entity_id}: {result}")
                elif isinstance(result, BaseException):
                    raise result
                else:
                    for outcome, candidate in result:
                        summary.record(outcome, candidate)

        logger.info(
            "Detection for tenant %s: %d scanned, %d created, %d refreshed, %d unchanged, %d warnings",
            tenant_id,
            summary.entities_scanned,
            summary.created,
            summary.refreshed,
            summary.unchanged,
            len(summary.warnings),
        )
        return summary

    async def _scan_entity(
        self,
        tenant_id: str,
        entity_type: str,
        entity_id: str,
        policy: ResolutionPolicy,
    ) -> list[tuple[UpsertOutcome, Candidate]]:
        local, remote = await asyncio.gather(
            self._catalog.read(tenant_id, entity_type, entity_id),
            self._remote.fetch(tenant_id, entity_type, entity_id),
        )
        if local is None or remote is None:
            logger.debug(
                "Skipping %s#%s: missing on %s side",
                entity_type,
                entity_id,
                "local" if local is None else "remote",
            )
            return []

        outcomes = []
        for candidate in build_candidates(local, remote, policy):
            outcomes.append((await self._upsert(tenant_id, candidate), candidate))
        return outcomes

    async def _upsert(self, tenant_id: str, candidate: Candidate) -> UpsertOutcome:
        """Insert or refresh the pending conflict for a candidate.

        A lost insert race or a stale version re-reads the winner and tries
        again, at most ``MAX_UPSERT_ATTEMPTS`` times.
        """
        local_json = candidate.local.to_json()
        remote_json = candidate.remote.to_json()
        deltas_json = [delta.to_json() for delta in candidate.deltas]

        for _ in range(MAX_UPSERT_ATTEMPTS):
            now = datetime.now(UTC)
            async with self._store_scope() as store:
                existing = await store.find_pending(
                    tenant_id, candidate.entity_type, candidate.entity_id, candidate.field_group
                )

                if existing is None:
                    conflict = Conflict(
                        id=uuid.uuid4(),
                        tenant_id=tenant_id,
                        entity_type=candidate.entity_type,
                        entity_id=candidate.entity_id,
                        field_group=candidate.field_group,
                        conflict_type=candidate.classification.conflict_type,
                        severity=candidate.classification.severity,
                        status=ConflictStatus.PENDING,
                        local_snapshot=local_json,
                        remote_snapshot=remote_json,
                        field_deltas=deltas_json,
                        version=1,
                        detected_at=now,
                    )
                    if await store.insert_pending(conflict):
                        logger.info(
                            "Detected %s conflict (%s) for %s#%s, tenant %s",
                            conflict.conflict_type,
                            conflict.severity,
                            candidate.entity_type,
                            candidate.entity_id,
                            tenant_id,
                        )
                        return UpsertOutcome.CREATED
                    continue

                if _same_observation(existing, candidate):
                    return UpsertOutcome.UNCHANGED

                refreshed = await store.refresh_snapshots(
                    existing.id,
                    existing.version,
                    {
                        "local_snapshot": local_json,
                        "remote_snapshot": remote_json,
                        "field_deltas": deltas_json,
                        "conflict_type": candidate.classification.conflict_type,
                        "severity": candidate.classification.severity,
                        "detected_at": now,
                    },
                )
                if refreshed:
                    return UpsertOutcome.REFRESHED

        logger.warning(
            "Upsert contended for %s#%s (%s), tenant %s",
            candidate.entity_type,
            candidate.entity_id,
            candidate.field_group,
            tenant_id,
        )
        return UpsertOutcome.CONTENDED
