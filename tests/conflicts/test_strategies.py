"""Tests for the resolution strategies."""

from __future__ import annotations

import copy
from datetime import UTC, datetime, timedelta

import pytest

from src.conflicts.errors import ValidationError
from src.conflicts.policy import ResolutionPolicy
from src.conflicts.strategies import (
    FieldRule,
    StrategyName,
    apply_strategy,
    list_strategies,
    parse_chosen_source,
    parse_strategy_name,
)
from src.core.models import ChosenSource
from tests.conflicts.fakes import product

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class TestSourcePriority:
    def test_remote_wins_by_default(self) -> None:
        """Given the default precedence, the ERP value is chosen."""
        outcome = apply_strategy(
            StrategyName.SOURCE_PRIORITY, product("42", price=100.0), product("42", price=150.0), ResolutionPolicy()
        )
        assert outcome.resolved_value == {"price": 150.0}
        assert outcome.chosen_source == ChosenSource.REMOTE
        assert "tenant precedence" in outcome.rationale

    def test_manual_override_picks_local(self) -> None:
        outcome = apply_strategy(
            StrategyName.SOURCE_PRIORITY,
            product("42", price=100.0),
            product("42", price=150.0),
            ResolutionPolicy(),
            chosen_source=ChosenSource.LOCAL,
        )
        assert outcome.resolved_value == {"price": 100.0}
        assert outcome.chosen_source == ChosenSource.LOCAL
        assert "manual override" in outcome.rationale

    def test_tenant_precedence_local(self) -> None:
        policy = ResolutionPolicy(source_precedence="local")
        outcome = apply_strategy(
            StrategyName.SOURCE_PRIORITY, product("42", price=100.0), product("42", price=150.0), policy
        )
        assert outcome.chosen_source == ChosenSource.LOCAL


class TestTimestampPriority:
    def test_newer_snapshot_wins(self) -> None:
        local = product("42", updated_at=NOW, price=100.0)
        remote = product("42", updated_at=NOW - timedelta(hours=1), price=150.0)

        outcome = apply_strategy(StrategyName.TIMESTAMP_PRIORITY, local, remote, ResolutionPolicy())

        assert outcome.chosen_source == ChosenSource.LOCAL
        assert outcome.resolved_value == {"price": 100.0}
        assert "more recent" in outcome.rationale

    def test_tie_falls_back_to_precedence(self) -> None:
        local = product("42", updated_at=NOW, price=100.0)
        remote = product("42", updated_at=NOW, price=150.0)

        outcome = apply_strategy(StrategyName.TIMESTAMP_PRIORITY, local, remote, ResolutionPolicy())

        assert outcome.strategy == StrategyName.TIMESTAMP_PRIORITY
        assert outcome.chosen_source == ChosenSource.REMOTE
        assert outcome.rationale.startswith("timestamps tie;")

    def test_missing_timestamp_falls_back_to_precedence(self) -> None:
        local = product("42", updated_at=NOW, price=100.0)
        remote = product("42", price=150.0)

        outcome = apply_strategy(StrategyName.TIMESTAMP_PRIORITY, local, remote, ResolutionPolicy())

        assert outcome.chosen_source == ChosenSource.REMOTE
        assert outcome.rationale.startswith("timestamp missing;")


class TestSmartMerge:
    def test_fields_resolved_independently(self) -> None:
        """Given per-field rules, each field comes from its own source."""
        local = product("42", name="Widget", description="Hand-written copy", brand="Acme", price=100.0)
        remote = product("42", name="Widget Pro", description="ERP text", brand="Acme", price=95.0)

        outcome = apply_strategy(StrategyName.SMART_MERGE, local, remote, ResolutionPolicy())

        assert outcome.resolved_value == {
            "name": "Widget Pro",
            "description": "Hand-written copy",
            "brand": "Acme",
            "price": 95.0,
        }
        assert outcome.chosen_source == ChosenSource.MERGED
        assert "description: local by field rule" in outcome.rationale

    def test_key_present_on_one_side_is_kept(self) -> None:
        local = product("42", name="Widget", sku="W-1")
        remote = product("42", name="Widget", category="Tools")

        outcome = apply_strategy(StrategyName.SMART_MERGE, local, remote, ResolutionPolicy())

        assert outcome.resolved_value == {"name": "Widget", "sku": "W-1", "category": "Tools"}

    def test_non_empty_rule(self) -> None:
        policy = ResolutionPolicy(field_rules={"name": FieldRule.NON_EMPTY})
        local = product("42", name="Widget")
        remote = product("42", name="  ")

        outcome = apply_strategy(StrategyName.SMART_MERGE, local, remote, policy)

        assert outcome.resolved_value == {"name": "Widget"}
        assert outcome.chosen_source == ChosenSource.LOCAL

    def test_identical_snapshots(self) -> None:
        outcome = apply_strategy(
            StrategyName.SMART_MERGE, product("42", name="A"), product("42", name="A"), ResolutionPolicy()
        )
        assert outcome.resolved_value == {"name": "A"}
        assert outcome.rationale == "snapshots are identical"

    def test_higher_rule_reads_numeric_strings(self) -> None:
        policy = ResolutionPolicy(field_rules={"stock": FieldRule.HIGHER})
        outcome = apply_strategy(
            StrategyName.SMART_MERGE, product("42", stock="9.5"), product("42", stock="10"), policy
        )
        assert outcome.resolved_value == {"stock": "10"}
        assert "stock: higher value" in outcome.rationale


class TestValueBased:
    def test_higher_stock_wins(self) -> None:
        outcome = apply_strategy(
            StrategyName.VALUE_BASED, product("42", stock=20), product("42", stock=12), ResolutionPolicy()
        )
        assert outcome.resolved_value == {"stock": 20}
        assert outcome.chosen_source == ChosenSource.LOCAL
        assert "overselling" in outcome.rationale

    def test_lower_price_wins_by_default(self) -> None:
        outcome = apply_strategy(
            StrategyName.VALUE_BASED, product("42", price=100.0), product("42", price=90.0), ResolutionPolicy()
        )
        assert outcome.resolved_value == {"price": 90.0}
        assert "lower price" in outcome.rationale

    def test_higher_price_rule(self) -> None:
        policy = ResolutionPolicy(price_rule="higher")
        outcome = apply_strategy(
            StrategyName.VALUE_BASED, product("42", price=100.0), product("42", price=90.0), policy
        )
        assert outcome.resolved_value == {"price": 100.0}

    def test_numeric_strings_compared_as_numbers(self) -> None:
        """Given stock reported as text by one source, the higher figure still wins."""
        outcome = apply_strategy(
            StrategyName.VALUE_BASED, product("42", stock="20"), product("42", stock=12), ResolutionPolicy()
        )
        assert outcome.resolved_value == {"stock": "20"}
        assert outcome.chosen_source == ChosenSource.LOCAL

    def test_unparseable_number_falls_back_to_precedence(self) -> None:
        outcome = apply_strategy(
            StrategyName.VALUE_BASED, product("42", stock="lots"), product("42", stock=12), ResolutionPolicy()
        )
        assert outcome.resolved_value == {"stock": 12}
        assert "precedence" in outcome.rationale

    def test_non_empty_value_wins(self) -> None:
        outcome = apply_strategy(
            StrategyName.VALUE_BASED,
            product("42", description=None),
            product("42", description="From ERP"),
            ResolutionPolicy(),
        )
        assert outcome.resolved_value == {"description": "From ERP"}
        assert outcome.chosen_source == ChosenSource.REMOTE


class TestPurity:
    @pytest.mark.parametrize("name", list(StrategyName))
    def test_inputs_not_mutated(self, name: StrategyName) -> None:
        local = product("42", updated_at=NOW, name="A", price=100.0, tags=["x"])
        remote = product("42", updated_at=NOW, name="B", price=120.0, tags=["y"])
        local_before = copy.deepcopy(local.values)
        remote_before = copy.deepcopy(remote.values)

        outcome = apply_strategy(name, local, remote, ResolutionPolicy())
        outcome.resolved_value["tags"].append("z")

        assert local.values == local_before
        assert remote.values == remote_before


class TestParsing:
    def test_unknown_strategy_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Unknown strategy"):
            parse_strategy_name("coin_flip")

    def test_known_strategy_parsed(self) -> None:
        assert parse_strategy_name("smart_merge") == StrategyName.SMART_MERGE

    @pytest.mark.parametrize("value", ["merged", "erp", ""])
    def test_invalid_source_rejected(self, value: str) -> None:
        with pytest.raises(ValidationError):
            parse_chosen_source(value)

    def test_source_none_passes(self) -> None:
        assert parse_chosen_source(None) is None
        assert parse_chosen_source("local") == ChosenSource.LOCAL

    def test_list_strategies(self) -> None:
        strategies = list_strategies()
        assert [s["name"] for s in strategies] == [
            "timestamp_priority",
            "source_priority",
            "smart_merge",
            "value_based",
        ]
        assert all(s["description"] for s in strategies)
