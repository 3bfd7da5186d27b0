"""SQLAlchemy models for the conflict engine.

This package re-exports all models and enums from domain-specific modules
so that code can use ``from src.core.models import X``.
"""

from src.core.models.audit import ConflictAuditAction, ConflictAuditEntry
from src.core.models.conflict import (
    ChosenSource,
    Conflict,
    ConflictStatus,
    ConflictType,
    Severity,
)
from src.core.models.policy import TenantResolutionPolicy

__all__ = [
    "ChosenSource",
    "Conflict",
    "ConflictAuditAction",
    "ConflictAuditEntry",
    "ConflictStatus",
    "ConflictType",
    "Severity",
    "TenantResolutionPolicy",
]
