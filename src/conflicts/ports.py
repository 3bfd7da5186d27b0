"""Collaborator interfaces consumed by the conflict engine.

The canonical catalog, the ERP integration and the tenant policy source
live outside the engine. They are described here as protocols so the
engine can be wired against HTTP clients in production and in-memory
fakes in tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from src.conflicts.policy import ResolutionPolicy


def to_number(value: Any) -> float | None:
    """Coerce a snapshot value to a float; numeric strings such as ``"100.00"`` count.

    Booleans, blanks and anything unparseable return None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float | Decimal):
        return float(value)
    if isinstance(value, str):
        try:
            return float(Decimal(value.strip()))
        except (InvalidOperation, ValueError):
            return None
    return None


def _json_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class Snapshot:
    """A point-in-time copy of one entity as seen by one source.

    Attributes:
        entity_type: Business entity type, e.g. ``product``.
        entity_id: Identifier of the entity inside the tenant catalog.
        values: Field name to value mapping.
        updated_at: Last-modified timestamp reported by the source.
    """

    entity_type: str
    entity_id: str
    values: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None

    def project(self, fields: list[str] | tuple[str, ...]) -> Snapshot:
        """Return a copy restricted to ``fields`` (missing fields are left out)."""
        return Snapshot(
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            values={name: self.values[name] for name in fields if name in self.values},
            updated_at=self.updated_at,
        )

    def to_json(self) -> dict[str, Any]:
        """Serialize for storage in a conflict row."""
        return {
            "values": {name: _json_value(value) for name, value in self.values.items()},
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_json(cls, entity_type: str, entity_id: str, data: dict[str, Any]) -> Snapshot:
        """Rebuild a snapshot stored by :meth:`to_json`."""
        updated_at = data.get("updated_at")
        return cls(
            entity_type=entity_type,
            entity_id=entity_id,
            values=dict(data.get("values") or {}),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )


@runtime_checkable
class CanonicalStore(Protocol):
    """The tenant's commerce catalog (system of record)."""

    async def list_entity_ids(self, tenant_id: str, entity_type: str) -> list[str]:
        """Return ids of all entities of a type that are linked to the ERP."""
        ...

    async def read(self, tenant_id: str, entity_type: str, entity_id: str) -> Snapshot | None:
        """Return the current local snapshot, or None if the entity is gone."""
        ...

    async def write(self, tenant_id: str, entity_type: str, entity_id: str, values: dict[str, Any]) -> bool:
        """Overwrite the given fields. Returns False when the write was rejected."""
        ...


@runtime_checkable
class RemoteSourceClient(Protocol):
    """Read-only access to the ERP copy of an entity."""

    async def fetch(self, tenant_id: str, entity_type: str, entity_id: str) -> Snapshot | None:
        """Return the remote snapshot, or None if the ERP has no such entity.

        Raises:
            DetectionSourceUnavailable: If the ERP cannot be reached.
        """
        ...


@runtime_checkable
class PolicyProvider(Protocol):
    """Per-tenant resolution policy lookup."""

    async def get(self, tenant_id: str) -> ResolutionPolicy:
        """Return the effective policy for a tenant."""
        ...

    async def update(self, tenant_id: str, overrides: dict[str, Any]) -> ResolutionPolicy:
        """Replace a tenant's overrides and return the new effective policy.

        Raises:
            ValidationError: If the overrides do not form a valid policy.
        """
        ...
