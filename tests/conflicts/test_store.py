"""Tests for the SQL conflict store and conflict filters (mocked session)."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from src.conflicts.errors import ValidationError
from src.conflicts.store import ConflictFilters, SqlConflictStore, sql_store_scope
from src.core.models import ConflictStatus, ConflictType, Severity
from tests.conflicts.fakes import make_conflict


class _Savepoint:
    """Async context manager standing in for ``session.begin_nested()``."""

    async def __aenter__(self) -> _Savepoint:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        return None


def _executed_sql(session: AsyncMock) -> str:
    return str(session.execute.call_args[0][0])


class TestInsertPending:
    @pytest.mark.asyncio
    async def test_insert_succeeds(self, mock_db_session: AsyncMock) -> None:
        mock_db_session.begin_nested = MagicMock(return_value=_Savepoint())
        conflict = make_conflict()

        assert await SqlConflictStore(mock_db_session).insert_pending(conflict) is True
        mock_db_session.add.assert_called_once_with(conflict)
        mock_db_session.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unique_violation_reports_lost_race(self, mock_db_session: AsyncMock) -> None:
        mock_db_session.begin_nested = MagicMock(return_value=_Savepoint())
        mock_db_session.flush = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("duplicate key")))

        assert await SqlConflictStore(mock_db_session).insert_pending(make_conflict()) is False


class TestConditionalUpdates:
    @pytest.mark.asyncio
    async def test_transition_guards_on_pending(self, mock_db_session: AsyncMock) -> None:
        store = SqlConflictStore(mock_db_session)

        assert await store.transition(make_conflict().id, {"status": ConflictStatus.RESOLVED}) is True
        sql = _executed_sql(mock_db_session)
        assert sql.startswith("UPDATE conflicts")
        assert "conflicts.status" in sql

    @pytest.mark.asyncio
    async def test_transition_reports_no_row(self, mock_db_session: AsyncMock) -> None:
        mock_db_session.execute.return_value.rowcount = 0

        store = SqlConflictStore(mock_db_session)

        assert await store.transition(make_conflict().id, {"status": ConflictStatus.IGNORED}) is False

    @pytest.mark.asyncio
    async def test_refresh_checks_version(self, mock_db_session: AsyncMock) -> None:
        store = SqlConflictStore(mock_db_session)

        assert await store.refresh_snapshots(make_conflict().id, 3, {"severity": Severity.LOW}) is True
        assert "conflicts.version" in _executed_sql(mock_db_session)

        mock_db_session.execute.return_value.rowcount = 0
        assert await store.refresh_snapshots(make_conflict().id, 3, {"severity": Severity.LOW}) is False

    @pytest.mark.asyncio
    async def test_get_for_update_locks_row(self, mock_db_session: AsyncMock) -> None:
        conflict = make_conflict()
        mock_db_session.execute.return_value.scalar_one_or_none.return_value = conflict

        assert await SqlConflictStore(mock_db_session).get_for_update(conflict.id) is conflict
        assert _executed_sql(mock_db_session).endswith("FOR UPDATE")


class TestMetricQueries:
    @pytest.mark.asyncio
    async def test_average_resolution_over_resolved_rows(self, mock_db_session: AsyncMock) -> None:
        mock_db_session.execute.return_value.scalar.return_value = 42.5

        assert await SqlConflictStore(mock_db_session).average_resolution_seconds("tenant-a") == 42.5
        sql = _executed_sql(mock_db_session)
        assert "avg(" in sql
        assert "conflicts.resolved_at - conflicts.detected_at" in sql

    @pytest.mark.asyncio
    async def test_average_resolution_empty(self, mock_db_session: AsyncMock) -> None:
        mock_db_session.execute.return_value.scalar.return_value = None

        assert await SqlConflictStore(mock_db_session).average_resolution_seconds("tenant-a") is None


class TestConflictFilters:
    def test_parse_values(self) -> None:
        filters = ConflictFilters.parse(status="pending", conflict_type="price_major", severity="high")

        assert filters.status == ConflictStatus.PENDING
        assert filters.conflict_type == ConflictType.PRICE_MAJOR
        assert filters.severity == Severity.HIGH
        assert filters.to_json() == {"status": "pending", "conflict_type": "price_major", "severity": "high"}

    def test_empty_strings_ignored(self) -> None:
        assert ConflictFilters.parse(status="", entity_type="") == ConflictFilters()

    @pytest.mark.parametrize("kwargs", [{"status": "done"}, {"conflict_type": "price"}, {"severity": "urgent"}])
    def test_unknown_values_rejected(self, kwargs: dict) -> None:
        with pytest.raises(ValidationError):
            ConflictFilters.parse(**kwargs)

    def test_inverted_range_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ConflictFilters.parse(
                detected_from=datetime(2026, 2, 1, tzinfo=UTC),
                detected_to=datetime(2026, 1, 1, tzinfo=UTC),
            )

    def test_matches(self) -> None:
        conflict = make_conflict(detected_at=datetime(2026, 1, 15, tzinfo=UTC))

        assert ConflictFilters(severity=Severity.HIGH).matches(conflict)
        assert not ConflictFilters(status=ConflictStatus.RESOLVED).matches(conflict)
        assert not ConflictFilters(detected_from=datetime(2026, 2, 1, tzinfo=UTC)).matches(conflict)

    def test_clauses_scope_to_tenant(self) -> None:
        clauses = ConflictFilters(status=ConflictStatus.PENDING, entity_id="42").clauses("tenant-a")

        assert len(clauses) == 3


class TestSqlStoreScope:
    @pytest.mark.asyncio
    async def test_commits_on_success(self, mock_db_session: AsyncMock, mock_session_factory) -> None:
        async with sql_store_scope(mock_session_factory)() as store:
            assert isinstance(store, SqlConflictStore)

        mock_db_session.commit.assert_awaited_once()
        mock_db_session.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rolls_back_on_error(self, mock_db_session: AsyncMock, mock_session_factory) -> None:
        with pytest.raises(RuntimeError):
            async with sql_store_scope(mock_session_factory)():
                raise RuntimeError("boom")

        mock_db_session.rollback.assert_awaited_once()
        mock_db_session.commit.assert_not_awaited()
