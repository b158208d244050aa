"""Effective claim-limit resolution.

Resolution order, first match wins:
  1. the user's personal ``claim_limit`` override
  2. the per-role default in ``ClaimConfig.role_claim_limits``
  3. ``ClaimConfig.default_claim_limit``
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from claimdesk.common.constants import LimitSource
from claimdesk.common.exceptions import InfrastructureException
from claimdesk.config import settings
from claimdesk.limits.models import CONFIG_ROW_ID, ClaimConfig
from claimdesk.users.models import User

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value or 0))


@dataclass(frozen=True)
class EffectiveLimit:
    amount: Decimal
    source: LimitSource


async def get_config(db: AsyncSession) -> ClaimConfig:
    """Return the singleton config row, creating it on first read."""
    try:
        config = await db.get(ClaimConfig, CONFIG_ROW_ID)
        if config is None:
            config = await _create_config(db)
    except SQLAlchemyError as exc:
        raise InfrastructureException("Claim limit configuration is unavailable.") from exc
    return config


async def _create_config(db: AsyncSession) -> ClaimConfig:
    # A duplicate insert must not abort the caller's transaction
    try:
        async with db.begin_nested():
            config = ClaimConfig(
                id=CONFIG_ROW_ID,
                default_claim_limit=settings.DEFAULT_CLAIM_LIMIT,
                role_claim_limits={},
            )
            db.add(config)
        return config
    except IntegrityError:
        logger.info("claim config row created concurrently, re-reading")
        result = await db.execute(select(ClaimConfig).where(ClaimConfig.id == CONFIG_ROW_ID))
        return result.scalar_one()


def resolve_from_config(user: User, config: ClaimConfig) -> EffectiveLimit:
    if user.claim_limit is not None:
        return EffectiveLimit(as_decimal(user.claim_limit), LimitSource.override)
    role_limits = config.role_claim_limits or {}
    role_value = role_limits.get(user.role.value)
    if role_value is not None:
        return EffectiveLimit(as_decimal(role_value), LimitSource.role)
    return EffectiveLimit(as_decimal(config.default_claim_limit), LimitSource.default)


async def resolve(db: AsyncSession, user: User) -> EffectiveLimit:
    if user.claim_limit is not None:
        return EffectiveLimit(as_decimal(user.claim_limit), LimitSource.override)
    return resolve_from_config(user, await get_config(db))


async def effective_limit(db: AsyncSession, user: User) -> Decimal:
    return (await resolve(db, user)).amount


def remaining_for(limit: Decimal, used: Decimal) -> Decimal:
    """``max(limit - used, 0)``."""
    return max(as_decimal(limit) - as_decimal(used), ZERO)


async def remaining(db: AsyncSession, user: User) -> Decimal:
    return remaining_for(await effective_limit(db, user), user.used_claim_amount)

