"""Tenant resolution policy storage."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database import Base


class TenantResolutionPolicy(Base):
    """Per-tenant overrides for tolerances, strategies and precedence.

    The ``policy`` document only needs to carry the keys a tenant changes;
    everything else falls back to the service-wide defaults.
    """

    __tablename__ = "tenant_resolution_policies"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    policy: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<TenantResolutionPolicy(tenant_id={self.tenant_id})>"
