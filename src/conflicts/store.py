"""Conflict persistence with conditional writes.

Every state change goes through a guarded UPDATE so that concurrent
detection, resolution and bulk workers cannot overwrite each other:

- ``insert_pending`` relies on the partial unique index over the pending
  natural key and reports a lost race as ``False``;
- ``refresh_snapshots`` only applies when the row is still pending and its
  ``version`` matches what the caller read;
- ``get_for_update`` locks the row for resolve and ignore, so only one
  caller reaches the canonical write;
- ``transition`` only applies while the row is pending, so a terminal
  status is never overwritten.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import extract, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.conflicts.errors import ValidationError
from src.core.database import session_scope
from src.core.models import Conflict, ConflictAuditEntry, ConflictStatus, ConflictType, Severity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConflictFilters:
    """Optional filters for listing, exporting and bulk selection."""

    status: ConflictStatus | None = None
    conflict_type: ConflictType | None = None
    severity: Severity | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    detected_from: datetime | None = None
    detected_to: datetime | None = None

    @classmethod
    def parse(
        cls,
        *,
        status: str | None = None,
        conflict_type: str | None = None,
        severity: str | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        detected_from: datetime | None = None,
        detected_to: datetime | None = None,
    ) -> ConflictFilters:
        """Build filters from raw strings.

        Raises:
            ValidationError: If an enum value is unknown or the date range is inverted.
        """
        if detected_from and detected_to and detected_from > detected_to:
            raise ValidationError("detected_from must not be after detected_to")
        return cls(
            status=_parse_enum(ConflictStatus, "status", status),
            conflict_type=_parse_enum(ConflictType, "type", conflict_type),
            severity=_parse_enum(Severity, "severity", severity),
            entity_type=entity_type or None,
            entity_id=entity_id or None,
            detected_from=detected_from,
            detected_to=detected_to,
        )

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for key, value in self.__dict__.items():
            if value is None:
                continue
            data[key] = value.isoformat() if isinstance(value, datetime) else str(value)
        return data

    def matches(self, conflict: Conflict) -> bool:
        """In-memory equivalent of :meth:`clauses`."""
        if self.status is not None and conflict.status != self.status:
            return False
        if self.conflict_type is not None and conflict.conflict_type != self.conflict_type:
            return False
        if self.severity is not None and conflict.severity != self.severity:
            return False
        if self.entity_type is not None and conflict.entity_type != self.entity_type:
            return False
        if self.entity_id is not None and conflict.entity_id != self.entity_id:
            return False
        if self.detected_from is not None and conflict.detected_at < self.detected_from:
            return False
        return not (self.detected_to is not None and conflict.detected_at > self.detected_to)

    def clauses(self, tenant_id: str) -> list[Any]:
        filters: list[Any] = [Conflict.tenant_id == tenant_id]
        if self.status is not None:
            filters.append(Conflict.status == self.status)
        if self.conflict_type is not None:
            filters.append(Conflict.conflict_type == self.conflict_type)
        if self.severity is not None:
            filters.append(Conflict.severity == self.severity)
        if self.entity_type is not None:
            filters.append(Conflict.entity_type == self.entity_type)
        if self.entity_id is not None:
            filters.append(Conflict.entity_id == self.entity_id)
        if self.detected_from is not None:
            filters.append(Conflict.detected_at >= self.detected_from)
        if self.detected_to is not None:
            filters.append(Conflict.detected_at <= self.detected_to)
        return filters


def _parse_enum(enum_cls: Any, label: str, value: str | None) -> Any:
    if value is None or value == "":
        return None
    try:
        return enum_cls(value)
    except ValueError:
        known = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {label} '{value}'. Expected one of: {known}") from None


@dataclass(frozen=True)
class MetricRow:
    """One grouped count row used by the metrics aggregator."""

    status: ConflictStatus
    conflict_type: ConflictType
    severity: Severity
    resolution_strategy: str | None
    resolved_by: str | None
    count: int


class ConflictStore(Protocol):
    """Storage operations the engine needs; one instance per unit of work."""

    async def get(self, conflict_id: uuid.UUID) -> Conflict | None: ...

    async def get_for_update(self, conflict_id: uuid.UUID) -> Conflict | None: ...

    async def find_pending(
        self, tenant_id: str, entity_type: str, entity_id: str, field_group: str
    ) -> Conflict | None: ...

    async def insert_pending(self, conflict: Conflict) -> bool: ...

    async def refresh_snapshots(
        self, conflict_id: uuid.UUID, expected_version: int, values: dict[str, Any]
    ) -> bool: ...

    async def transition(self, conflict_id: uuid.UUID, values: dict[str, Any]) -> bool: ...

    async def append_audit(self, entry: ConflictAuditEntry) -> None: ...

    async def list_conflicts(
        self, tenant_id: str, filters: ConflictFilters, limit: int, offset: int
    ) -> tuple[list[Conflict], int]: ...

    async def list_pending_ids(self, tenant_id: str, filters: ConflictFilters) -> list[uuid.UUID]: ...

    async def metric_rows(self, tenant_id: str) -> list[MetricRow]: ...

    async def oldest_pending_detected_at(self, tenant_id: str) -> datetime | None: ...

    async def count_detected_since(self, tenant_id: str, since: datetime) -> int: ...

    async def average_resolution_seconds(self, tenant_id: str) -> float | None: ...

    async def list_history(
        self, tenant_id: str, limit: int, offset: int
    ) -> tuple[list[ConflictAuditEntry], int]: ...


StoreScope = Callable[[], AbstractAsyncContextManager[ConflictStore]]


class SqlConflictStore:
    """ConflictStore backed by an SQLAlchemy async session."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, conflict_id: uuid.UUID) -> Conflict | None:
        query = (
            select(Conflict)
            .where(Conflict.id == conflict_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def get_for_update(self, conflict_id: uuid.UUID) -> Conflict | None:
        """Read a conflict and hold its row lock until the unit of work ends.

        Concurrent resolve/ignore calls on the same conflict queue here, so
        the loser sees the committed terminal status before it can touch the
        canonical store.
        """
        query = (
            select(Conflict)
            .where(Conflict.id == conflict_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def find_pending(
        self, tenant_id: str, entity_type: str, entity_id: str, field_group: str
    ) -> Conflict | None:
        query = (
            select(Conflict)
            .where(
                Conflict.tenant_id == tenant_id,
                Conflict.entity_type == entity_type,
                Conflict.entity_id == entity_id,
                Conflict.field_group == field_group,
                Conflict.status == ConflictStatus.PENDING,
            )
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def insert_pending(self, conflict: Conflict) -> bool:
        """Insert a new pending conflict; False when another writer got there first."""
        try:
            async with self._session.begin_nested():
                self._session.add(conflict)
                await self._session.flush()
        except IntegrityError:
            logger.info(
                "Pending conflict already exists for %s#%s (%s), tenant %s",
                conflict.entity_type,
                conflict.entity_id,
                conflict.field_group,
                conflict.tenant_id,
            )
            return False
        return True

    async def refresh_snapshots(
        self, conflict_id: uuid.UUID, expected_version: int, values: dict[str, Any]
    ) -> bool:
        stmt = (
            update(Conflict)
            .where(
                Conflict.id == conflict_id,
                Conflict.status == ConflictStatus.PENDING,
                Conflict.version == expected_version,
            )
            .values(**values, version=Conflict.version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def transition(self, conflict_id: uuid.UUID, values: dict[str, Any]) -> bool:
        """Move a pending conflict to a terminal status; False if it is no longer pending."""
        stmt = (
            update(Conflict)
            .where(Conflict.id == conflict_id, Conflict.status == ConflictStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def append_audit(self, entry: ConflictAuditEntry) -> None:
        self._session.add(entry)
        await self._session.flush()

    async def list_conflicts(
        self, tenant_id: str, filters: ConflictFilters, limit: int, offset: int
    ) -> tuple[list[Conflict], int]:
        clauses = filters.clauses(tenant_id)

        count_q = select(func.count()).select_from(Conflict).where(*clauses)
        total = (await self._session.execute(count_q)).scalar() or 0

        query = (
            select(Conflict)
            .where(*clauses)
            .order_by(Conflict.detected_at.desc(), Conflict.id)
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(query)
        return list(result.scalars().all()), total

    async def list_pending_ids(self, tenant_id: str, filters: ConflictFilters) -> list[uuid.UUID]:
        clauses = filters.clauses(tenant_id)
        clauses.append(Conflict.status == ConflictStatus.PENDING)
        query = select(Conflict.id).where(*clauses).order_by(Conflict.detected_at.asc())
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def metric_rows(self, tenant_id: str) -> list[MetricRow]:
        query = (
            select(
                Conflict.status,
                Conflict.conflict_type,
                Conflict.severity,
                Conflict.resolution_strategy,
                Conflict.resolved_by,
                func.count(),
            )
            .where(Conflict.tenant_id == tenant_id)
            .group_by(
                Conflict.status,
                Conflict.conflict_type,
                Conflict.severity,
                Conflict.resolution_strategy,
                Conflict.resolved_by,
            )
        )
        result = await self._session.execute(query)
        return [
            MetricRow(
                status=row[0],
                conflict_type=row[1],
                severity=row[2],
                resolution_strategy=row[3],
                resolved_by=row[4],
                count=row[5],
            )
            for row in result.all()
        ]

    async def oldest_pending_detected_at(self, tenant_id: str) -> datetime | None:
        query = select(func.min(Conflict.detected_at)).where(
            Conflict.tenant_id == tenant_id,
            Conflict.status == ConflictStatus.PENDING,
        )
        return (await self._session.execute(query)).scalar()

    async def count_detected_since(self, tenant_id: str, since: datetime) -> int:
        query = (
            select(func.count())
            .select_from(Conflict)
            .where(Conflict.tenant_id == tenant_id, Conflict.detected_at >= since)
        )
        return (await self._session.execute(query)).scalar() or 0

    async def average_resolution_seconds(self, tenant_id: str) -> float | None:
        """Mean time from detection to resolution over resolved conflicts."""
        elapsed = extract("epoch", Conflict.resolved_at - Conflict.detected_at)
        query = select(func.avg(elapsed)).where(
            Conflict.tenant_id == tenant_id,
            Conflict.status == ConflictStatus.RESOLVED,
            Conflict.resolved_at.is_not(None),
        )
        value = (await self._session.execute(query)).scalar()
        return float(value) if value is not None else None

    async def list_history(
        self, tenant_id: str, limit: int, offset: int
    ) -> tuple[list[ConflictAuditEntry], int]:
        count_q = (
            select(func.count())
            .select_from(ConflictAuditEntry)
            .where(ConflictAuditEntry.tenant_id == tenant_id)
        )
        total = (await self._session.execute(count_q)).scalar() or 0

        query = (
            select(ConflictAuditEntry)
            .where(ConflictAuditEntry.tenant_id == tenant_id)
            .order_by(ConflictAuditEntry.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(query)
        return list(result.scalars().all()), total


def sql_store_scope(session_factory: async_sessionmaker[AsyncSession]) -> StoreScope:
    """Return a factory opening one transactional ``SqlConflictStore`` per call."""

    @asynccontextmanager
    async def scope() -> AsyncIterator[ConflictStore]:
        async with session_scope(session_factory) as session:
            yield SqlConflictStore(session)

    return scope
