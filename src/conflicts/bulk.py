"""Bulk resolution over many conflicts with a bounded worker pool.

Each id is resolved independently in its own unit of work, so one failure
never affects the others. Per-item errors are collected into the result:

- a conflict that is no longer pending is *skipped*;
- an unknown id, a rejected canonical write or any unexpected error is
  *failed*.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any

from src.conflicts.errors import ConflictEngineError, ConflictStateError
from src.conflicts.resolver import ConflictResolver, parse_conflict_id
from src.conflicts.strategies import StrategyOutcome, parse_chosen_source, parse_strategy_name

logger = logging.getLogger(__name__)


@dataclass
class BulkFailure:
    conflict_id: str
    error: str
    detail: str


@dataclass
class BulkResult:
    """Aggregate outcome of a bulk resolution.

    In a dry run ``resolved`` counts conflicts that would be resolved and
    ``previews`` carries the computed outcomes.
    """

    resolved: int = 0
    failed: int = 0
    skipped: int = 0
    dry_run: bool = False
    failures: list[BulkFailure] = field(default_factory=list)
    skipped_ids: list[str] = field(default_factory=list)
    previews: list[dict[str, Any]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.resolved + self.failed + self.skipped

    def merge(self, other: BulkResult) -> None:
        self.resolved += other.resolved
        self.failed += other.failed
        self.skipped += other.skipped
        self.failures.extend(other.failures)
        self.skipped_ids.extend(other.skipped_ids)
        self.previews.extend(other.previews)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["total"] = self.total
        return data


def _dedupe(conflict_ids: list[str | uuid.UUID]) -> list[str]:
    return list(dict.fromkeys(str(cid) for cid in conflict_ids))


class BulkCoordinator:
    """Runs resolutions concurrently through a ``ConflictResolver``."""

    def __init__(self, resolver: ConflictResolver, max_concurrency: int = 8) -> None:
        self._resolver = resolver
        self._max_concurrency = max_concurrency

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
        """Resolve many conflicts with one strategy.

        The strategy and source override are validated before any work
        starts; an invalid value raises ``ValidationError`` and nothing is
        touched. Duplicate ids are processed once. Ids that belong to another
        tenant fail as ``not_found``.
        """
        name = parse_strategy_name(strategy)
        parse_chosen_source(chosen_source)
        ids = _dedupe(conflict_ids)
        sem = asyncio.Semaphore(self._max_concurrency)

        async def _one(raw_id: str) -> Any:
            async with sem:
                if dry_run:
                    return await self._resolver.preview(raw_id, name, chosen_source, tenant_id=tenant_id)
                return await self._resolver.resolve(
                    raw_id, name, chosen_source=chosen_source, reason=reason, actor=actor, tenant_id=tenant_id
                )

        results = await asyncio.gather(*[_one(raw_id) for raw_id in ids], return_exceptions=True)

        summary = BulkResult(dry_run=dry_run)
        for raw_id, result in zip(ids, results, strict=True):
            if isinstance(result, ConflictStateError):
                summary.skipped += 1
                summary.skipped_ids.append(raw_id)
            elif isinstance(result, ConflictEngineError):
                summary.failed += 1
                summary.failures.append(BulkFailure(raw_id, result.code, str(result)))
            elif isinstance(result, Exception):
                logger.error("Unexpected error resolving conflict %s: %s", raw_id, result)
                summary.failed += 1
                summary.failures.append(BulkFailure(raw_id, "unexpected_error", str(result)))
            elif isinstance(result, BaseException):
                raise result
            else:
                summary.resolved += 1
                if dry_run:
                    summary.previews.append(_preview_to_dict(raw_id, result))

        logger.info(
            "Bulk %s for tenant %s with %s: %d resolved, %d failed, %d skipped",
            "preview" if dry_run else "resolve",
            tenant_id,
            name,
            summary.resolved,
            summary.failed,
            summary.skipped,
        )
        return summary


def _preview_to_dict(raw_id: str, outcome: StrategyOutcome) -> dict[str, Any]:
    return {
        "conflict_id": str(parse_conflict_id(raw_id)),
        "strategy": outcome.strategy.value,
        "chosen_source": outcome.chosen_source.value,
        "resolved_value": outcome.resolved_value,
        "rationale": outcome.rationale,
    }

