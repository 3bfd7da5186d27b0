"""Conflict classifier: assigns a type and severity to a divergence.

Numeric fields (price, stock) are banded by relative delta using the
tenant policy. Non-numeric mismatches are always ``product_data`` with a
severity derived from how many fields differ.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from src.conflicts.errors import ValidationError
from src.conflicts.policy import NUMERIC_FIELD_TYPES, NumericFieldPolicy, ResolutionPolicy
from src.core.models import ConflictType, Severity

# Number of differing text fields at which severity steps up.
TEXT_MEDIUM_FIELDS = 2
TEXT_HIGH_FIELDS = 4


@dataclass(frozen=True)
class FieldDelta:
    """One field that differs between the local and remote snapshots.

    ``relative_delta`` is set for numeric fields only.
    """

    field: str
    local_value: Any
    remote_value: Any
    relative_delta: float | None = None

    @property
    def is_numeric(self) -> bool:
        return self.relative_delta is not None

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {"field": self.field, "local": self.local_value, "remote": self.remote_value}
        if self.relative_delta is not None:
            data["relative_delta"] = round(self.relative_delta, 6)
        return data


@dataclass(frozen=True)
class Classification:
    """Type and severity assigned to one divergence."""

    conflict_type: ConflictType
    severity: Severity

    @property
    def field_group(self) -> str:
        return self.conflict_type.field_group


def relative_delta(local: float, remote: float) -> float:
    """Relative difference measured against the local value.

    When the local value is zero the remote value is the base; two zeros
    are a zero delta.
    """
    base = abs(local) if local else abs(remote)
    if not base:
        return 0.0
    return abs(local - remote) / base


def numeric_severity(delta: float, bands: NumericFieldPolicy) -> Severity:
    """Band a relative delta: low < medium_from <= medium <= high_above < high."""
    if delta > bands.high_above:
        return Severity.HIGH
    if delta >= bands.medium_from:
        return Severity.MEDIUM
    return Severity.LOW


def text_severity(differing_fields: int) -> Severity:
    if differing_fields >= TEXT_HIGH_FIELDS:
        return Severity.HIGH
    if differing_fields >= TEXT_MEDIUM_FIELDS:
        return Severity.MEDIUM
    return Severity.LOW


def classify(field_deltas: list[FieldDelta], policy: ResolutionPolicy) -> Classification:
    """Assign exactly one (type, severity) pair to a divergence.

    ``field_deltas`` must all belong to one field group: a single numeric
    field, or any number of non-numeric fields.

    Raises:
        ValidationError: If the deltas are empty or mix field groups.
    """
    if not field_deltas:
        raise ValidationError("Cannot classify an empty divergence")

    numeric = [d for d in field_deltas if d.is_numeric]
    if numeric:
        if len(field_deltas) != 1:
            raise ValidationError("A numeric divergence must carry exactly one field")
        delta = numeric[0]
        if delta.field not in NUMERIC_FIELD_TYPES or delta.field not in policy.numeric_fields:
            raise ValidationError(f"No numeric policy for field '{delta.field}'")
        severity = numeric_severity(delta.relative_delta or 0.0, policy.numeric_fields[delta.field])
        minor, major = NUMERIC_FIELD_TYPES[delta.field]
        return Classification(conflict_type=major if severity == Severity.HIGH else minor, severity=severity)

    return Classification(conflict_type=ConflictType.PRODUCT_DATA, severity=text_severity(len(field_deltas)))
