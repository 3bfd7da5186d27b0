"""Audit models: ConflictAuditAction enum, ConflictAuditEntry."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Enum, ForeignKey, Index, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database import Base


class ConflictAuditAction(enum.StrEnum):
    """Audit log action types for conflict transitions."""

    RESOLVED = "resolved"
    AUTO_RESOLVED = "auto_resolved"
    IGNORED = "ignored"


class ConflictAuditEntry(Base):
    """Immutable audit trail entry for a conflict transition.

    Written in the same transaction as the status change it describes.
    """

    __tablename__ = "conflict_audit_log"
    __table_args__ = (
        Index("ix_conflict_audit_log_conflict_id", "conflict_id"),
        Index("ix_conflict_audit_log_tenant_created", "tenant_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conflict_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("conflicts.id", ondelete="RESTRICT"), nullable=False
    )
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[ConflictAuditAction] = mapped_column(
        Enum(ConflictAuditAction, values_callable=lambda e: [x.value for x in e]), nullable=False
    )
    actor: Mapped[str] = mapped_column(String(255), nullable=False, default="system")
    strategy: Mapped[str | None] = mapped_column(String(32), nullable=True)
    chosen_source: Mapped[str | None] = mapped_column(String(16), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rationale: Mapped[str | None] = mapped_column(Text, nullable=True)
    before_value: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    after_value: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<ConflictAuditEntry(id={self.id}, conflict={self.conflict_id}, action={self.action})>"
