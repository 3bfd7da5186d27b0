"""Tenant resolution policy: tolerances, severity bands and strategy defaults.

The policy is pure data. The detector reads tolerances and bands from it,
the strategies read precedence and per-field rules, and the resolver reads
the default strategy for each conflict type.

Boundary rules:
- a numeric divergence is conflict-worthy when ``delta >= tolerance``;
- severity is LOW below ``medium_from``, MEDIUM from ``medium_from`` up to
  and including ``high_above``, HIGH strictly above ``high_above``.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.conflicts.errors import PolicyUnavailable, ValidationError
from src.conflicts.strategies import FieldRule, StrategyName
from src.core.config import Settings
from src.core.database import session_scope
from src.core.models import ConflictType, TenantResolutionPolicy

logger = logging.getLogger(__name__)

# Numeric fields map onto the magnitude-qualified conflict types.
NUMERIC_FIELD_TYPES: dict[str, tuple[ConflictType, ConflictType]] = {
    "price": (ConflictType.PRICE_MINOR, ConflictType.PRICE_MAJOR),
    "stock": (ConflictType.STOCK_MINOR, ConflictType.STOCK_MAJOR),
}

DEFAULT_TEXT_FIELDS = ("name", "description", "category", "sku", "brand", "status")


class NumericFieldPolicy(BaseModel):
    """Tolerance and severity bands for one numeric field (fractions, 0.05 = 5%)."""

    model_config = ConfigDict(frozen=True)

    tolerance: float = Field(ge=0.0, le=1.0)
    medium_from: float = Field(default=0.05, ge=0.0)
    high_above: float = Field(default=0.20, ge=0.0)

    @model_validator(mode="after")
    def check_bands(self) -> NumericFieldPolicy:
        if self.medium_from > self.high_above:
            raise ValueError("medium_from must not exceed high_above")
        return self


class ResolutionPolicy(BaseModel):
    """Effective resolution policy for one tenant."""

    model_config = ConfigDict(frozen=True)

    numeric_fields: dict[str, NumericFieldPolicy] = Field(
        default_factory=lambda: {
            "price": NumericFieldPolicy(tolerance=0.05, medium_from=0.05, high_above=0.20),
            "stock": NumericFieldPolicy(tolerance=0.10, medium_from=0.25, high_above=0.50),
        }
    )
    text_fields: tuple[str, ...] = DEFAULT_TEXT_FIELDS
    default_strategies: dict[ConflictType, StrategyName] = Field(
        default_factory=lambda: {
            ConflictType.PRODUCT_DATA: StrategyName.SMART_MERGE,
            ConflictType.PRICE_MINOR: StrategyName.SOURCE_PRIORITY,
            ConflictType.PRICE_MAJOR: StrategyName.SOURCE_PRIORITY,
            ConflictType.STOCK_MINOR: StrategyName.VALUE_BASED,
            ConflictType.STOCK_MAJOR: StrategyName.VALUE_BASED,
        }
    )
    source_precedence: Literal["local", "remote"] = "remote"
    field_rules: dict[str, FieldRule] = Field(
        default_factory=lambda: {"price": FieldRule.REMOTE, "description": FieldRule.LOCAL}
    )
    price_rule: Literal["higher", "lower"] = "lower"
    auto_resolve_types: frozenset[ConflictType] = frozenset({ConflictType.PRICE_MINOR, ConflictType.STOCK_MINOR})
    entity_types: tuple[str, ...] = ("product",)

    @field_validator("numeric_fields")
    @classmethod
    def check_numeric_fields(cls, v: dict[str, NumericFieldPolicy]) -> dict[str, NumericFieldPolicy]:
        unknown = set(v) - set(NUMERIC_FIELD_TYPES)
        if unknown:
            raise ValueError(f"unsupported numeric fields: {sorted(unknown)}")
        return v

    def strategy_for(self, conflict_type: ConflictType) -> StrategyName:
        """Default strategy for a conflict type, falling back to source priority."""
        return self.default_strategies.get(conflict_type, StrategyName.SOURCE_PRIORITY)

    def merged_with(self, overrides: dict[str, Any]) -> ResolutionPolicy:
        """Return a copy with ``overrides`` applied on top of this policy.

        Nested mappings (numeric_fields, default_strategies, field_rules) are
        merged key by key; everything else is replaced.

        Raises:
            ValidationError: If the merged document is not a valid policy.
        """
        unknown = set(overrides) - set(type(self).model_fields)
        if unknown:
            raise ValidationError(f"Unknown policy keys: {sorted(unknown)}")
        base = self.model_dump(mode="json")
        for key, value in overrides.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                merged = dict(base[key])
                for sub_key, sub_value in value.items():
                    if isinstance(sub_value, dict) and isinstance(merged.get(sub_key), dict):
                        merged[sub_key] = {**merged[sub_key], **sub_value}
                    else:
                        merged[sub_key] = sub_value
                base[key] = merged
            else:
                base[key] = value
        try:
            return ResolutionPolicy.model_validate(base)
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid resolution policy: {exc}") from exc


def default_policy(settings: Settings) -> ResolutionPolicy:
    """Build the service-wide default policy from settings."""
    return ResolutionPolicy().merged_with(
        {
            "numeric_fields": {
                "price": {"tolerance": settings.conflict_price_tolerance},
                "stock": {"tolerance": settings.conflict_stock_tolerance},
            },
            "source_precedence": settings.conflict_source_precedence,
        }
    )


class StaticPolicyProvider:
    """Policy provider backed by an in-process mapping."""

    def __init__(
        self,
        default: ResolutionPolicy | None = None,
        overrides: dict[str, ResolutionPolicy] | None = None,
    ) -> None:
        self._default = default or ResolutionPolicy()
        self._overrides = dict(overrides or {})

    async def get(self, tenant_id: str) -> ResolutionPolicy:
        return self._overrides.get(tenant_id, self._default)

    async def update(self, tenant_id: str, overrides: dict[str, Any]) -> ResolutionPolicy:
        policy = self._default.merged_with(overrides)
        self._overrides[tenant_id] = policy
        return policy


class SqlPolicyProvider:
    """Policy provider reading tenant overrides from ``tenant_resolution_policies``."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        default: ResolutionPolicy,
    ) -> None:
        self._session_factory = session_factory
        self._default = default

    async def get(self, tenant_id: str) -> ResolutionPolicy:
        """Return the tenant policy.

        Raises:
            PolicyUnavailable: If the policy table cannot be read.
            ValidationError: If the stored override is not a valid policy.
        """
        try:
            async with self._session_factory() as session:
                row = await session.get(TenantResolutionPolicy, tenant_id)
                overrides = dict(row.policy) if row is not None and row.policy else None
        except SQLAlchemyError as exc:
            logger.exception("Failed to load resolution policy for tenant %s", tenant_id)
            raise PolicyUnavailable(tenant_id, str(exc)) from exc

        if not overrides:
            return self._default

        try:
            return self._default.merged_with(overrides)
        except ValidationError:
            logger.error("Rejecting invalid resolution policy for tenant %s", tenant_id)
            raise

    async def update(self, tenant_id: str, overrides: dict[str, Any]) -> ResolutionPolicy:
        """Validate ``overrides`` against the default policy and store them.

        The stored document replaces any previous overrides for the tenant;
        an empty document restores the defaults.

        Raises:
            ValidationError: If the merged document is not a valid policy.
            PolicyUnavailable: If the policy table cannot be written.
        """
        policy = self._default.merged_with(overrides)
        try:
            async with session_scope(self._session_factory) as session:
                row = await session.get(TenantResolutionPolicy, tenant_id)
                if row is None:
                    session.add(TenantResolutionPolicy(tenant_id=tenant_id, policy=dict(overrides)))
                else:
                    row.policy = dict(overrides)
        except SQLAlchemyError as exc:
            logger.exception("Failed to store resolution policy for tenant %s", tenant_id)
            raise PolicyUnavailable(tenant_id, str(exc)) from exc

        logger.info("Updated resolution policy for tenant %s: %s", tenant_id, sorted(overrides))
        return policy
