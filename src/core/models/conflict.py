"""Conflict model for catalog/ERP divergence tracking and resolution.

A Conflict records one detected divergence between the local catalog copy
of an entity and its ERP counterpart. Rows are never deleted: resolved and
ignored conflicts remain as audit history.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Enum, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database import Base


class ConflictType(enum.StrEnum):
    """Conflict types. Numeric fields carry a magnitude qualifier."""

    PRODUCT_DATA = "product_data"
    PRICE_MINOR = "price_minor"
    PRICE_MAJOR = "price_major"
    STOCK_MINOR = "stock_minor"
    STOCK_MAJOR = "stock_major"

    @property
    def field_group(self) -> str:
        """Family of the type: ``price``, ``stock`` or ``product_data``."""
        if self is ConflictType.PRODUCT_DATA:
            return "product_data"
        return self.value.rsplit("_", 1)[0]


class Severity(enum.StrEnum):
    """Coarse ranking of divergence magnitude."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2}


class ConflictStatus(enum.StrEnum):
    """Conflict lifecycle states. RESOLVED and IGNORED are terminal."""

    PENDING = "pending"
    RESOLVED = "resolved"
    IGNORED = "ignored"


class ChosenSource(enum.StrEnum):
    """Which side a resolution took its value from."""

    LOCAL = "local"
    REMOTE = "remote"
    MERGED = "merged"


class Conflict(Base):
    """A divergence between the canonical catalog and the ERP for one entity.

    The natural key ``(tenant_id, entity_type, entity_id, field_group)`` is
    unique among pending rows, enforced by a partial unique index so that
    concurrent detection runs cannot both insert.
    """

    __tablename__ = "conflicts"
    __table_args__ = (
        Index("ix_conflicts_tenant_status", "tenant_id", "status"),
        Index("ix_conflicts_type_severity", "conflict_type", "severity"),
        Index("ix_conflicts_entity", "entity_type", "entity_id"),
        Index("ix_conflicts_status_detected_at", "status", "detected_at"),
        Index(
            "uq_conflicts_pending_key",
            "tenant_id",
            "entity_type",
            "entity_id",
            "field_group",
            unique=True,
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    field_group: Mapped[str] = mapped_column(String(32), nullable=False)
    conflict_type: Mapped[ConflictType] = mapped_column(
        Enum(ConflictType, values_callable=lambda e: [x.value for x in e]), nullable=False
    )
    severity: Mapped[Severity] = mapped_column(
        Enum(Severity, values_callable=lambda e: [x.value for x in e]), nullable=False
    )
    status: Mapped[ConflictStatus] = mapped_column(
        Enum(ConflictStatus, values_callable=lambda e: [x.value for x in e]),
        default=ConflictStatus.PENDING,
        nullable=False,
    )
    local_snapshot: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    remote_snapshot: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    field_deltas: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False, default=list)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    resolution: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    resolution_strategy: Mapped[str | None] = mapped_column(String(32), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ignored_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ignored_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    @property
    def is_pending(self) -> bool:
        return self.status == ConflictStatus.PENDING

    def __repr__(self) -> str:
        return (
            f"<Conflict(id={self.id}, tenant={self.tenant_id}, "
            f"entity={self.entity_type}#{self.entity_id}, type={self.conflict_type}, "
            f"status={self.status})>"
        )
