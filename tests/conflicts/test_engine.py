"""BDD-style tests for the engine facade.

Scenario 1: Auto resolution only touches low-risk conflict types.
Scenario 2: Listing supports filters and bounded pagination.
Scenario 3: Bulk resolution by filter selects matching pending conflicts.
Scenario 4: History lists audit entries newest first.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from src.conflicts.engine import ConflictEngine, build_engine
from src.conflicts.errors import NotFoundError, ValidationError
from src.conflicts.policy import SqlPolicyProvider, StaticPolicyProvider
from src.conflicts.store import ConflictFilters
from src.core.models import ConflictAuditAction, ConflictStatus, ConflictType, Severity
from tests.conflicts.fakes import TENANT, FakeCatalog, FakeRemote, InMemoryConflictDB, make_conflict, product

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _stock_minor(entity_id: str, severity: Severity = Severity.LOW):
    return make_conflict(
        entity_id=entity_id,
        conflict_type=ConflictType.STOCK_MINOR,
        severity=severity,
        local={"stock": 20},
        remote={"stock": 17},
    )


class TestScenario1AutoResolve:
    """Scenario 1: Auto resolution only touches low-risk conflict types."""

    @pytest.mark.asyncio
    async def test_only_minor_types_resolved(self, engine: ConflictEngine, db: InMemoryConflictDB) -> None:
        """Given a stock_minor, a price_minor and a price_major conflict
        When auto resolution runs
        Then only the minor ones are resolved, by the auto actor.
        """
        stock = db.add(_stock_minor("1"))
        price_minor = db.add(
            make_conflict(
                entity_id="2",
                conflict_type=ConflictType.PRICE_MINOR,
                severity=Severity.MEDIUM,
                remote={"price": 110.0},
            )
        )
        price_major = db.add(make_conflict(entity_id="3"))

        result = await engine.auto_resolve(TENANT)

        assert result.resolved == 2
        assert stock.status == ConflictStatus.RESOLVED
        assert stock.resolved_by == "auto"
        assert stock.resolution_strategy == "value_based"
        assert price_minor.status == ConflictStatus.RESOLVED
        assert price_minor.resolution_strategy == "source_priority"
        assert price_major.status == ConflictStatus.PENDING
        assert {e.action for e in db.audit} == {ConflictAuditAction.AUTO_RESOLVED}

        metrics = await engine.get_metrics(TENANT)
        assert metrics.auto_resolved == 2
        assert metrics.manual_resolved == 0

    @pytest.mark.asyncio
    async def test_auto_resolve_on_detect(self, db: InMemoryConflictDB) -> None:
        catalog = FakeCatalog([product("7", stock=20, price=100.0)])
        remote = FakeRemote([product("7", stock=17, price=100.0)])
        engine = ConflictEngine(
            store_scope=db.scope,
            catalog=catalog,
            remote=remote,
            policies=StaticPolicyProvider(),
            auto_resolve_on_detect=True,
        )

        summary = await engine.detect_conflicts(TENANT)

        assert summary.created == 1
        assert summary.auto_resolved == 1
        assert catalog.writes == [(TENANT, "product", "7", {"stock": 20})]


class TestScenario2Listing:
    """Scenario 2: Listing supports filters and bounded pagination."""

    @pytest.mark.asyncio
    async def test_filters_and_total(self, engine: ConflictEngine, db: InMemoryConflictDB) -> None:
        db.add(make_conflict(entity_id="1", detected_at=NOW))
        db.add(make_conflict(entity_id="2", detected_at=NOW - timedelta(hours=1)))
        db.add(_stock_minor("3"))

        items, total = await engine.list_conflicts(
            TENANT, ConflictFilters(conflict_type=ConflictType.PRICE_MAJOR), limit=1
        )

        assert total == 2
        assert [c.entity_id for c in items] == ["1"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("limit", "offset"), [(0, 0), (501, 0), (10, -1)])
    async def test_bad_page_rejected(self, engine: ConflictEngine, limit: int, offset: int) -> None:
        with pytest.raises(ValidationError):
            await engine.list_conflicts(TENANT, limit=limit, offset=offset)

    @pytest.mark.asyncio
    async def test_get_conflict(self, engine: ConflictEngine, db: InMemoryConflictDB) -> None:
        conflict = db.add(make_conflict())

        assert await engine.get_conflict(str(conflict.id)) is conflict

    @pytest.mark.asyncio
    async def test_get_unknown_conflict(self, engine: ConflictEngine) -> None:
        with pytest.raises(NotFoundError):
            await engine.get_conflict("00000000-0000-0000-0000-000000000000")

    def test_strategies(self, engine: ConflictEngine) -> None:
        assert len(engine.list_strategies()) == 4


class TestScenario3BulkByFilter:
    """Scenario 3: Bulk resolution by filter selects matching pending conflicts."""

    @pytest.mark.asyncio
    async def test_resolves_only_matching(self, engine: ConflictEngine, db: InMemoryConflictDB) -> None:
        minors = [db.add(_stock_minor(str(i))) for i in range(3)]
        major = db.add(make_conflict(entity_id="9"))

        result = await engine.bulk_resolve_matching(
            TENANT, ConflictFilters(conflict_type=ConflictType.STOCK_MINOR), "value_based", actor="carol"
        )

        assert result.resolved == 3
        assert all(c.status == ConflictStatus.RESOLVED for c in minors)
        assert major.status == ConflictStatus.PENDING

    @pytest.mark.asyncio
    async def test_invalid_strategy(self, engine: ConflictEngine) -> None:
        with pytest.raises(ValidationError):
            await engine.bulk_resolve_matching(TENANT, ConflictFilters(), "coin_flip")


class TestScenario4History:
    """Scenario 4: History lists audit entries newest first."""

    @pytest.mark.asyncio
    async def test_newest_first(self, engine: ConflictEngine, db: InMemoryConflictDB, catalog) -> None:
        first = db.add(make_conflict(entity_id="1"))
        second = db.add(make_conflict(entity_id="2"))
        await engine.resolve_conflict(first.id, "source_priority")
        await engine.ignore_conflict(second.id, "not relevant")

        entries, total = await engine.list_history(TENANT)

        assert total == 2
        assert [e.conflict_id for e in entries] == [second.id, first.id]
        assert entries[0].action == ConflictAuditAction.IGNORED


class TestBuildEngine:
    def test_wired_from_settings(self, test_settings, mock_session_factory) -> None:
        engine = build_engine(test_settings, mock_session_factory, FakeCatalog(), FakeRemote())

        assert isinstance(engine, ConflictEngine)
        assert isinstance(engine._policies, SqlPolicyProvider)
        assert engine.bulk._max_concurrency == test_settings.conflict_bulk_concurrency
