"""Resolution strategies for catalog/ERP conflicts.

Strategies are pure: they read the two snapshots captured at detection
time plus the tenant policy, and return the value to write together with a
rationale. Nothing is mutated, so callers can preview a resolution before
committing it.

The set of strategies is closed. ``apply_strategy`` matches exhaustively on
``StrategyName`` and unknown names are rejected by ``parse_strategy_name``.
"""

from __future__ import annotations

import copy
import enum
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, assert_never

from src.conflicts.errors import ValidationError
from src.conflicts.ports import Snapshot, to_number
from src.core.models import ChosenSource

if TYPE_CHECKING:
    from src.conflicts.policy import ResolutionPolicy


class StrategyName(enum.StrEnum):
    """The closed set of resolution strategies."""

    TIMESTAMP_PRIORITY = "timestamp_priority"
    SOURCE_PRIORITY = "source_priority"
    SMART_MERGE = "smart_merge"
    VALUE_BASED = "value_based"


class FieldRule(enum.StrEnum):
    """Per-field sub-rules used by smart merge."""

    LOCAL = "local"
    REMOTE = "remote"
    HIGHER = "higher"
    LOWER = "lower"
    NON_EMPTY = "non_empty"


STRATEGY_DESCRIPTIONS: dict[StrategyName, str] = {
    StrategyName.TIMESTAMP_PRIORITY: "The most recently modified snapshot wins; ties fall back to source priority",
    StrategyName.SOURCE_PRIORITY: "A fixed source (local or remote) always wins",
    StrategyName.SMART_MERGE: "Each differing field is resolved on its own using per-field rules",
    StrategyName.VALUE_BASED: "Value heuristics: prefer non-empty values, the higher stock and the configured price",
}


@dataclass(frozen=True)
class StrategyOutcome:
    """Result of applying a strategy to a conflict.

    Attributes:
        strategy: Strategy that produced the outcome.
        resolved_value: Field values to write to the canonical store.
        chosen_source: Side the value came from (MERGED when mixed).
        rationale: Human-readable explanation.
    """

    strategy: StrategyName
    resolved_value: dict[str, Any]
    chosen_source: ChosenSource
    rationale: str


def parse_strategy_name(name: str | StrategyName) -> StrategyName:
    """Validate a strategy name.

    Raises:
        ValidationError: If the name is not one of the known strategies.
    """
    try:
        return StrategyName(name)
    except ValueError:
        known = ", ".join(s.value for s in StrategyName)
        raise ValidationError(f"Unknown strategy '{name}'. Expected one of: {known}") from None


def parse_chosen_source(source: str | ChosenSource | None) -> ChosenSource | None:
    """Validate a manual source override; only ``local`` and ``remote`` are allowed."""
    if source is None:
        return None
    try:
        parsed = ChosenSource(source)
    except ValueError:
        parsed = None
    if parsed not in (ChosenSource.LOCAL, ChosenSource.REMOTE):
        raise ValidationError(f"Invalid chosen source '{source}'. Expected 'local' or 'remote'")
    return parsed


def list_strategies() -> list[dict[str, str]]:
    """Describe every available strategy."""
    return [{"name": name.value, "description": STRATEGY_DESCRIPTIONS[name]} for name in StrategyName]


def apply_strategy(
    name: StrategyName,
    local: Snapshot,
    remote: Snapshot,
    policy: ResolutionPolicy,
    *,
    chosen_source: ChosenSource | None = None,
) -> StrategyOutcome:
    """Apply one strategy to a pair of snapshots.

    Args:
        name: Strategy to apply.
        local: Canonical-side snapshot captured at detection time.
        remote: ERP-side snapshot captured at detection time.
        policy: Tenant policy supplying precedence and field rules.
        chosen_source: Manual precedence override (local or remote).

    Returns:
        The outcome; inputs are left untouched.
    """
    match name:
        case StrategyName.TIMESTAMP_PRIORITY:
            return _timestamp_priority(local, remote, policy, chosen_source)
        case StrategyName.SOURCE_PRIORITY:
            return _source_priority(local, remote, policy, chosen_source)
        case StrategyName.SMART_MERGE:
            return _smart_merge(local, remote, policy, chosen_source)
        case StrategyName.VALUE_BASED:
            return _value_based(local, remote, policy, chosen_source)
        case _:
            assert_never(name)


# ---------------------------------------------------------------------------
# Wholesale strategies
# ---------------------------------------------------------------------------


def _precedence(policy: ResolutionPolicy, override: ChosenSource | None) -> ChosenSource:
    if override is not None:
        return override
    return ChosenSource(policy.source_precedence)


def _pick(source: ChosenSource, local: Snapshot, remote: Snapshot) -> Snapshot:
    return local if source == ChosenSource.LOCAL else remote


def _source_priority(
    local: Snapshot,
    remote: Snapshot,
    policy: ResolutionPolicy,
    override: ChosenSource | None,
) -> StrategyOutcome:
    source = _precedence(policy, override)
    origin = "manual override" if override is not None else "tenant precedence"
    return StrategyOutcome(
        strategy=StrategyName.SOURCE_PRIORITY,
        resolved_value=copy.deepcopy(_pick(source, local, remote).values),
        chosen_source=source,
        rationale=f"{source.value} source wins by {origin}",
    )


def _timestamp_priority(
    local: Snapshot,
    remote: Snapshot,
    policy: ResolutionPolicy,
    override: ChosenSource | None,
) -> StrategyOutcome:
    if local.updated_at is not None and remote.updated_at is not None and local.updated_at != remote.updated_at:
        source = ChosenSource.LOCAL if local.updated_at > remote.updated_at else ChosenSource.REMOTE
        winner = _pick(source, local, remote)
        return StrategyOutcome(
            strategy=StrategyName.TIMESTAMP_PRIORITY,
            resolved_value=copy.deepcopy(winner.values),
            chosen_source=source,
            rationale=f"{source.value} snapshot is more recent ({winner.updated_at.isoformat()})",
        )

    fallback = _source_priority(local, remote, policy, override)
    reason = "timestamps tie" if local.updated_at is not None and remote.updated_at is not None else "timestamp missing"
    return StrategyOutcome(
        strategy=StrategyName.TIMESTAMP_PRIORITY,
        resolved_value=fallback.resolved_value,
        chosen_source=fallback.chosen_source,
        rationale=f"{reason}; {fallback.rationale}",
    )


# ---------------------------------------------------------------------------
# Field-by-field strategies
# ---------------------------------------------------------------------------


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _field_names(local: Snapshot, remote: Snapshot) -> list[str]:
    names = list(local.values)
    names.extend(name for name in remote.values if name not in local.values)
    return names


def _merge_fields(
    strategy: StrategyName,
    local: Snapshot,
    remote: Snapshot,
    precedence: ChosenSource,
    decide: Callable[[str, Any, Any], tuple[ChosenSource, str] | None],
) -> StrategyOutcome:
    """Resolve each differing field with ``decide(name, lv, rv)``.

    ``decide`` returns ``(source, note)`` or None to fall back to precedence.
    Identical fields are copied through untouched.
    """
    resolved: dict[str, Any] = {}
    sources: set[ChosenSource] = set()
    notes: list[str] = []

    for name in _field_names(local, remote):
        in_local = name in local.values
        in_remote = name in remote.values
        lv = local.values.get(name)
        rv = remote.values.get(name)

        if in_local and in_remote and lv == rv:
            resolved[name] = copy.deepcopy(lv)
            continue

        decision = decide(name, lv, rv)
        if decision is None:
            source, note = precedence, f"{precedence.value} by precedence"
        else:
            source, note = decision

        if source == ChosenSource.LOCAL and not in_local:
            source = ChosenSource.REMOTE
        elif source == ChosenSource.REMOTE and not in_remote:
            source = ChosenSource.LOCAL

        resolved[name] = copy.deepcopy(lv if source == ChosenSource.LOCAL else rv)
        sources.add(source)
        notes.append(f"{name}: {note}")

    if not sources:
        chosen = precedence
    elif len(sources) == 1:
        chosen = next(iter(sources))
    else:
        chosen = ChosenSource.MERGED

    rationale = "; ".join(notes) if notes else "snapshots are identical"
    return StrategyOutcome(strategy=strategy, resolved_value=resolved, chosen_source=chosen, rationale=rationale)


def _numeric_pick(lv: Any, rv: Any, prefer_higher: bool) -> ChosenSource | None:
    ln, rn = to_number(lv), to_number(rv)
    if ln is None or rn is None:
        return None
    if prefer_higher:
        return ChosenSource.LOCAL if ln >= rn else ChosenSource.REMOTE
    return ChosenSource.LOCAL if ln <= rn else ChosenSource.REMOTE


def _non_empty_pick(lv: Any, rv: Any) -> ChosenSource | None:
    if _is_empty(lv) and not _is_empty(rv):
        return ChosenSource.REMOTE
    if _is_empty(rv) and not _is_empty(lv):
        return ChosenSource.LOCAL
    return None


def _smart_merge(
    local: Snapshot,
    remote: Snapshot,
    policy: ResolutionPolicy,
    override: ChosenSource | None,
) -> StrategyOutcome:
    def decide(name: str, lv: Any, rv: Any) -> tuple[ChosenSource, str] | None:
        rule = policy.field_rules.get(name)
        if rule is None:
            return None
        if rule == FieldRule.LOCAL:
            return ChosenSource.LOCAL, "local by field rule"
        if rule == FieldRule.REMOTE:
            return ChosenSource.REMOTE, "remote by field rule"
        if rule in (FieldRule.HIGHER, FieldRule.LOWER):
            picked = _numeric_pick(lv, rv, prefer_higher=rule == FieldRule.HIGHER)
            return (picked, f"{rule.value} value") if picked else None
        picked = _non_empty_pick(lv, rv)
        return (picked, "non-empty value") if picked else None

    return _merge_fields(StrategyName.SMART_MERGE, local, remote, _precedence(policy, override), decide)


def _value_based(
    local: Snapshot,
    remote: Snapshot,
    policy: ResolutionPolicy,
    override: ChosenSource | None,
) -> StrategyOutcome:
    def decide(name: str, lv: Any, rv: Any) -> tuple[ChosenSource, str] | None:
        picked = _non_empty_pick(lv, rv)
        if picked is not None:
            return picked, "only non-empty value"
        if name == "price":
            picked = _numeric_pick(lv, rv, prefer_higher=policy.price_rule == "higher")
            return (picked, f"{policy.price_rule} price") if picked else None
        picked = _numeric_pick(lv, rv, prefer_higher=True)
        if picked is not None:
            return picked, "higher value avoids overselling" if name == "stock" else "higher value"
        return None

    return _merge_fields(StrategyName.VALUE_BASED, local, remote, _precedence(policy, override), decide)
