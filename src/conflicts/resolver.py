"""Conflict resolver: applies a strategy, writes the result, closes the conflict.

Resolution order:

1. validate inputs (strategy name, source override, ignore reason);
2. load and lock the conflict, rejecting unknown ids and non-pending
   conflicts;
3. compute the outcome from the snapshots captured at detection time;
4. write the resolved value to the canonical store;
5. transition the conflict with a conditional update and append the audit
   entry in the same transaction.

A failed canonical write leaves the conflict pending. The row lock is held
until the transition commits, so when two callers race on the same conflict
only the first writes to the canonical store; the other then finds it
terminal and receives ``ConflictStateError``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from src.conflicts.errors import (
    ConflictEngineError,
    ConflictStateError,
    NotFoundError,
    ValidationError,
    WriteFailure,
)
from src.conflicts.ports import CanonicalStore, PolicyProvider, Snapshot
from src.conflicts.store import ConflictStore, StoreScope
from src.conflicts.strategies import (
    StrategyName,
    StrategyOutcome,
    apply_strategy,
    parse_chosen_source,
    parse_strategy_name,
)
from src.core.models import (
    ChosenSource,
    Conflict,
    ConflictAuditAction,
    ConflictAuditEntry,
    ConflictStatus,
)

logger = logging.getLogger(__name__)

# Actor recorded for resolutions made by auto resolution.
AUTO_ACTOR = "auto"


def parse_conflict_id(value: str | uuid.UUID) -> uuid.UUID:
    """Validate a conflict id.

    Raises:
        ValidationError: If the value is not a UUID.
    """
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ValidationError(f"Invalid conflict id '{value}'") from None


def snapshots_of(conflict: Conflict) -> tuple[Snapshot, Snapshot]:
    """Rebuild the local and remote snapshots stored on a conflict."""
    return (
        Snapshot.from_json(conflict.entity_type, conflict.entity_id, conflict.local_snapshot),
        Snapshot.from_json(conflict.entity_type, conflict.entity_id, conflict.remote_snapshot),
    )


class ConflictResolver:
    """Resolves and ignores individual conflicts."""

    def __init__(
        self,
        store_scope: StoreScope,
        catalog: CanonicalStore,
        policies: PolicyProvider,
    ) -> None:
        self._store_scope = store_scope
        self._catalog = catalog
        self._policies = policies

    async def _load_pending(
        self,
        store: ConflictStore,
        conflict_id: uuid.UUID,
        tenant_id: str | None = None,
        lock: bool = False,
    ) -> Conflict:
        conflict = await (store.get_for_update(conflict_id) if lock else store.get(conflict_id))
        # Another tenant's conflict is reported exactly like a missing one.
        if conflict is None or (tenant_id is not None and conflict.tenant_id != tenant_id):
            raise NotFoundError(conflict_id)
        if conflict.status != ConflictStatus.PENDING:
            raise ConflictStateError(conflict_id, conflict.status.value)
        return conflict

    async def _outcome(
        self,
        conflict: Conflict,
        strategy: StrategyName | None,
        chosen_source: ChosenSource | None,
    ) -> StrategyOutcome:
        policy = await self._policies.get(conflict.tenant_id)
        name = strategy or policy.strategy_for(conflict.conflict_type)
        local, remote = snapshots_of(conflict)
        return apply_strategy(name, local, remote, policy, chosen_source=chosen_source)

    async def _lost_race(self, store: ConflictStore, conflict_id: uuid.UUID) -> ConflictStateError:
        current = await store.get(conflict_id)
        current_status = current.status.value if current is not None else "unknown"
        logger.warning("Conflict %s changed concurrently, now %s", conflict_id, current_status)
        return ConflictStateError(conflict_id, current_status)

    async def preview(
        self,
        conflict_id: str | uuid.UUID,
        strategy: str | None = None,
        chosen_source: str | None = None,
        tenant_id: str | None = None,
    ) -> StrategyOutcome:
        """Compute the outcome a resolution would produce, without writing anything.

        When ``tenant_id`` is given, conflicts of other tenants are not found.
        """
        name = parse_strategy_name(strategy) if strategy is not None else None
        override = parse_chosen_source(chosen_source)
        cid = parse_conflict_id(conflict_id)

        async with self._store_scope() as store:
            conflict = await self._load_pending(store, cid, tenant_id)
            return await self._outcome(conflict, name, override)

    async def resolve(
        self,
        conflict_id: str | uuid.UUID,
        strategy: str | None = None,
        chosen_source: str | None = None,
        reason: str | None = None,
        actor: str = "system",
        tenant_id: str | None = None,
    ) -> Conflict:
        """Resolve a pending conflict.

        Args:
            conflict_id: Conflict to resolve.
            strategy: Strategy name; defaults to the tenant policy's choice
                for the conflict type.
            chosen_source: Manual precedence override (``local``/``remote``).
            reason: Optional free-text justification kept in the audit log.
            actor: Who is resolving.
            tenant_id: When given, conflicts of other tenants are not found.

        Returns:
            The conflict as persisted after the transition.

        Raises:
            ValidationError: Unknown strategy, bad source override or bad id.
            NotFoundError: No such conflict.
            ConflictStateError: The conflict is no longer pending.
            WriteFailure: The canonical store rejected the value.
        """
        name = parse_strategy_name(strategy) if strategy is not None else None
        override = parse_chosen_source(chosen_source)
        cid = parse_conflict_id(conflict_id)

        async with self._store_scope() as store:
            conflict = await self._load_pending(store, cid, tenant_id, lock=True)
            outcome = await self._outcome(conflict, name, override)
            await self._write_canonical(conflict, outcome)

            now = datetime.now(UTC)
            resolution: dict[str, Any] = {
                "strategy": outcome.strategy.value,
                "chosen_source": outcome.chosen_source.value,
                "resolved_value": outcome.resolved_value,
                "rationale": outcome.rationale,
                "reason": reason,
            }
            transitioned = await store.transition(
                cid,
                {
                    "status": ConflictStatus.RESOLVED,
                    "resolution": resolution,
                    "resolution_strategy": outcome.strategy.value,
                    "resolved_by": actor,
                    "resolved_at": now,
                },
            )
            if not transitioned:
                raise await self._lost_race(store, cid)

            await store.append_audit(
                ConflictAuditEntry(
                    id=uuid.uuid4(),
                    conflict_id=cid,
                    tenant_id=conflict.tenant_id,
                    action=ConflictAuditAction.AUTO_RESOLVED if actor == AUTO_ACTOR else ConflictAuditAction.RESOLVED,
                    actor=actor,
                    strategy=outcome.strategy.value,
                    chosen_source=outcome.chosen_source.value,
                    reason=reason,
                    rationale=outcome.rationale,
                    before_value={
                        "local": conflict.local_snapshot.get("values"),
                        "remote": conflict.remote_snapshot.get("values"),
                    },
                    after_value=outcome.resolved_value,
                    created_at=now,
                )
            )
            resolved = await store.get(cid)

        logger.info(
            "Resolved conflict %s with %s (%s) by %s",
            cid,
            outcome.strategy,
            outcome.chosen_source,
            actor,
        )
        return resolved

    async def ignore(self, conflict_id: str | uuid.UUID, reason: str, actor: str = "system") -> Conflict:
        """Mark a pending conflict as ignored. No canonical write happens.

        Raises:
            ValidationError: Empty reason or bad id.
            NotFoundError: No such conflict.
            ConflictStateError: The conflict is no longer pending.
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("An ignore reason is required")
        cid = parse_conflict_id(conflict_id)

        async with self._store_scope() as store:
            conflict = await self._load_pending(store, cid, lock=True)
            now = datetime.now(UTC)
            transitioned = await store.transition(
                cid,
                {
                    "status": ConflictStatus.IGNORED,
                    "ignored_reason": reason,
                    "ignored_at": now,
                },
            )
            if not transitioned:
                raise await self._lost_race(store, cid)

            await store.append_audit(
                ConflictAuditEntry(
                    id=uuid.uuid4(),
                    conflict_id=cid,
                    tenant_id=conflict.tenant_id,
                    action=ConflictAuditAction.IGNORED,
                    actor=actor,
                    reason=reason,
                    before_value={"status": ConflictStatus.PENDING.value},
                    after_value={"status": ConflictStatus.IGNORED.value},
                    created_at=now,
                )
            )
            ignored = await store.get(cid)

        logger.info("Ignored conflict %s by %s: %s", cid, actor, reason)
        return ignored

    async def _write_canonical(self, conflict: Conflict, outcome: StrategyOutcome) -> None:
        try:
            accepted = await self._catalog.write(
                conflict.tenant_id,
                conflict.entity_type,
                conflict.entity_id,
                outcome.resolved_value,
            )
        except ConflictEngineError:
            raise
        except Exception as exc:
            logger.exception("Canonical write raised for conflict %s", conflict.id)
            raise WriteFailure(conflict.id, str(exc)) from exc

        if not accepted:
            logger.warning("Canonical store rejected write for conflict %s", conflict.id)
            raise WriteFailure(conflict.id, "rejected by canonical store")
