"""Tests for CSV and JSON conflict export."""

from __future__ import annotations

import csv
import io
import json
from datetime import UTC, datetime, timedelta

import pytest

from src.conflicts.engine import ConflictEngine
from src.conflicts.errors import ValidationError
from src.conflicts.export import CSV_COLUMNS
from src.conflicts.store import ConflictFilters
from src.core.models import ConflictStatus
from tests.conflicts.fakes import TENANT, InMemoryConflictDB, make_conflict

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


async def _collect(stream) -> bytes:
    return b"".join([chunk async for chunk in stream])


def _seed(db: InMemoryConflictDB, count: int) -> None:
    for i in range(count):
        db.add(make_conflict(entity_id=str(i), detected_at=NOW - timedelta(minutes=i)))


class TestCsvExport:
    @pytest.mark.asyncio
    async def test_header_and_rows(self, engine: ConflictEngine, db: InMemoryConflictDB) -> None:
        _seed(db, 1)

        body = await _collect(engine.export_conflicts(TENANT, "csv"))

        rows = list(csv.DictReader(io.StringIO(body.decode("utf-8"))))
        assert list(rows[0].keys()) == CSV_COLUMNS
        assert rows[0]["type"] == "price_major"
        assert rows[0]["status"] == "pending"
        assert rows[0]["entity_id"] == "0"

    @pytest.mark.asyncio
    async def test_paginates_through_every_row(self, engine: ConflictEngine, db: InMemoryConflictDB) -> None:
        """Given 5 conflicts and a page size of 2
        When exported
        Then every conflict appears exactly once, newest first.
        """
        _seed(db, 5)

        body = await _collect(engine.export_conflicts(TENANT, "CSV"))

        rows = list(csv.DictReader(io.StringIO(body.decode("utf-8"))))
        assert [r["entity_id"] for r in rows] == ["0", "1", "2", "3", "4"]

    @pytest.mark.asyncio
    async def test_status_filter(self, engine: ConflictEngine, db: InMemoryConflictDB) -> None:
        _seed(db, 2)
        db.add(make_conflict(entity_id="99", status=ConflictStatus.IGNORED))

        body = await _collect(engine.export_conflicts(TENANT, "csv", ConflictFilters(status=ConflictStatus.IGNORED)))

        rows = list(csv.DictReader(io.StringIO(body.decode("utf-8"))))
        assert [r["entity_id"] for r in rows] == ["99"]


class TestJsonExport:
    @pytest.mark.asyncio
    async def test_document_parses(self, engine: ConflictEngine, db: InMemoryConflictDB) -> None:
        _seed(db, 3)

        body = await _collect(engine.export_conflicts(TENANT, "json", ConflictFilters(status=ConflictStatus.PENDING)))

        document = json.loads(body)
        assert document["tenant_id"] == TENANT
        assert document["total"] == 3
        assert document["filters"] == {"status": "pending"}
        assert len(document["conflicts"]) == 3
        assert document["conflicts"][0]["local_snapshot"]["values"] == {"price": 100.0}

    @pytest.mark.asyncio
    async def test_empty_export_is_valid_json(self, engine: ConflictEngine) -> None:
        body = await _collect(engine.export_conflicts(TENANT, "json"))

        document = json.loads(body)
        assert document["total"] == 0
        assert document["conflicts"] == []


def test_unknown_format_rejected_up_front(engine: ConflictEngine, db: InMemoryConflictDB) -> None:
    with pytest.raises(ValidationError):
        engine.export_conflicts(TENANT, "xml")
    assert db.scopes_opened == 0
