"""Tests for conflict classification and severity banding."""

from __future__ import annotations

import pytest

from src.conflicts.classifier import (
    FieldDelta,
    classify,
    numeric_severity,
    relative_delta,
    text_severity,
)
from src.conflicts.errors import ValidationError
from src.conflicts.policy import NumericFieldPolicy, ResolutionPolicy
from src.core.models import ConflictType, Severity


def _price(local: float, remote: float) -> list[FieldDelta]:
    return [FieldDelta("price", local, remote, relative_delta=relative_delta(local, remote))]


def _stock(local: float, remote: float) -> list[FieldDelta]:
    return [FieldDelta("stock", local, remote, relative_delta=relative_delta(local, remote))]


class TestRelativeDelta:
    def test_measured_against_local(self) -> None:
        assert relative_delta(100, 150) == 0.5
        assert relative_delta(20, 18) == 0.1

    def test_zero_local_uses_remote(self) -> None:
        assert relative_delta(0, 5) == 1.0

    def test_both_zero_is_zero(self) -> None:
        assert relative_delta(0, 0) == 0.0


class TestNumericSeverity:
    BANDS = NumericFieldPolicy(tolerance=0.05, medium_from=0.05, high_above=0.20)

    @pytest.mark.parametrize(
        ("delta", "expected"),
        [
            (0.0, Severity.LOW),
            (0.049, Severity.LOW),
            (0.05, Severity.MEDIUM),
            (0.20, Severity.MEDIUM),
            (0.2001, Severity.HIGH),
            (3.0, Severity.HIGH),
        ],
    )
    def test_band_boundaries(self, delta: float, expected: Severity) -> None:
        assert numeric_severity(delta, self.BANDS) == expected

    def test_severity_is_monotonic_in_delta(self) -> None:
        deltas = [i / 100 for i in range(0, 101)]
        ranks = [numeric_severity(d, self.BANDS).rank for d in deltas]
        assert ranks == sorted(ranks)


class TestClassify:
    def test_large_price_divergence_is_major_high(self) -> None:
        result = classify(_price(100.0, 150.0), ResolutionPolicy())
        assert result.conflict_type == ConflictType.PRICE_MAJOR
        assert result.severity == Severity.HIGH
        assert result.field_group == "price"

    def test_medium_price_divergence_is_minor(self) -> None:
        result = classify(_price(100.0, 110.0), ResolutionPolicy())
        assert result.conflict_type == ConflictType.PRICE_MINOR
        assert result.severity == Severity.MEDIUM

    def test_stock_at_tolerance_is_minor_low(self) -> None:
        result = classify(_stock(20, 18), ResolutionPolicy())
        assert result.conflict_type == ConflictType.STOCK_MINOR
        assert result.severity == Severity.LOW

    def test_major_iff_high(self) -> None:
        policy = ResolutionPolicy()
        for remote in (101.0, 105.0, 119.0, 120.0, 121.0, 300.0):
            result = classify(_price(100.0, remote), policy)
            assert (result.conflict_type == ConflictType.PRICE_MAJOR) == (result.severity == Severity.HIGH)

    def test_text_fields_are_product_data(self) -> None:
        deltas = [FieldDelta("name", "Widget", "Widget Pro")]
        result = classify(deltas, ResolutionPolicy())
        assert result.conflict_type == ConflictType.PRODUCT_DATA
        assert result.severity == Severity.LOW
        assert result.field_group == "product_data"

    def test_text_severity_grows_with_field_count(self) -> None:
        assert text_severity(1) == Severity.LOW
        assert text_severity(2) == Severity.MEDIUM
        assert text_severity(3) == Severity.MEDIUM
        assert text_severity(4) == Severity.HIGH

    def test_empty_divergence_rejected(self) -> None:
        with pytest.raises(ValidationError):
            classify([], ResolutionPolicy())

    def test_mixed_groups_rejected(self) -> None:
        deltas = _price(100.0, 150.0) + [FieldDelta("name", "a", "b")]
        with pytest.raises(ValidationError):
            classify(deltas, ResolutionPolicy())

    def test_numeric_field_without_policy_rejected(self) -> None:
        deltas = [FieldDelta("weight", 1.0, 2.0, relative_delta=1.0)]
        with pytest.raises(ValidationError):
            classify(deltas, ResolutionPolicy())
