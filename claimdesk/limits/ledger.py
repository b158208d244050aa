"""Usage ledger — the persisted per-user total counted against the claim limit.

Every mutation is a single SQL ``UPDATE`` evaluated by the database
(``used = used + :amount``), never a Python read-modify-write, so two
requests touching the same user cannot lose an update. ``try_reserve``
folds the limit check into the same statement; submit relies on it so that
concurrent submissions cannot jointly overshoot the limit.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from claimdesk.claims.models import Claim
from claimdesk.common.constants import COUNTED_STATUSES, UserRole
from claimdesk.common.exceptions import NotFoundException
from claimdesk.limits.resolver import ZERO, as_decimal
from claimdesk.users.models import User

logger = logging.getLogger(__name__)

_NO_SYNC = {"synchronize_session": False}


async def increment(db: AsyncSession, user_id: uuid.UUID, amount: Decimal) -> None:
    """Add *amount* to the user's counter. No-op for non-positive amounts."""
    amount = as_decimal(amount)
    if amount <= ZERO:
        return
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(used_claim_amount=User.used_claim_amount + amount)
        .execution_options(**_NO_SYNC)
    )
    logger.debug("ledger increment user=%s amount=%s", user_id, amount)


async def try_reserve(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: Decimal,
    limit: Decimal,
) -> bool:
    """Atomically add *amount* only if the result stays within *limit*.

    Returns False (and changes nothing) when the increment would exceed the
    limit. A non-positive amount always succeeds without a write.
    """
    amount = as_decimal(amount)
    if amount <= ZERO:
        return True
    result = await db.execute(
        update(User)
        .where(
            User.id == user_id,
            User.used_claim_amount + amount <= as_decimal(limit),
        )
        .values(used_claim_amount=User.used_claim_amount + amount)
        .execution_options(**_NO_SYNC)
    )
    reserved = result.rowcount == 1
    logger.debug(
        "ledger reserve user=%s amount=%s limit=%s reserved=%s",
        user_id, amount, limit, reserved,
    )
    return reserved


async def decrement(db: AsyncSession, user_id: uuid.UUID, amount: Decimal) -> None:
    """Subtract *amount* from the user's counter, never going below zero."""
    amount = as_decimal(amount)
    if amount <= ZERO:
        return
    result = await db.execute(
        update(User)
        .where(User.id == user_id, User.used_claim_amount >= amount)
        .values(used_claim_amount=User.used_claim_amount - amount)
        .execution_options(**_NO_SYNC)
    )
    if result.rowcount == 1:
        logger.debug("ledger decrement user=%s amount=%s", user_id, amount)
        return
    # Counter already below the amount (e.g. after a manual reset): clamp.
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(used_claim_amount=ZERO)
        .execution_options(**_NO_SYNC)
    )
    logger.warning(
        "ledger decrement clamped to zero user=%s amount=%s", user_id, amount,
    )


async def set_used(db: AsyncSession, user_id: uuid.UUID, amount: Decimal) -> None:
    """Overwrite the counter (manual finance/admin edit)."""
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(used_claim_amount=as_decimal(amount))
        .execution_options(**_NO_SYNC)
    )
    logger.info("ledger set user=%s used=%s", user_id, amount)


async def recompute(db: AsyncSession, user_id: uuid.UUID) -> Decimal:
    """Rebuild the counter from the user's claims and store it.

    Sums claims in a counted status. Claims submitted before the user's
    last usage reset are left out so a reset is not undone.
    """
    reset_at = (
        await db.execute(select(User.usage_reset_at).where(User.id == user_id))
    ).one_or_none()
    if reset_at is None:
        raise NotFoundException("User", str(user_id))
    cutoff: Optional[datetime] = reset_at[0]

    stmt = select(func.coalesce(func.sum(Claim.amount), 0)).where(
        Claim.user_id == user_id,
        Claim.status.in_(COUNTED_STATUSES),
    )
    if cutoff is not None:
        stmt = stmt.where(Claim.submitted_at >= cutoff)
    total = as_decimal((await db.execute(stmt)).scalar_one())

    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(used_claim_amount=total)
        .execution_options(**_NO_SYNC)
    )
    logger.info("ledger recompute user=%s used=%s", user_id, total)
    return total


async def reset_all(
    db: AsyncSession,
    role: Optional[UserRole] = None,
    now: Optional[datetime] = None,
) -> int:
    """Zero the counter for every user (or every user of *role*).

    Stamps ``usage_reset_at`` and clears ``counted_in_usage`` on the affected
    users' claims, so later rejections do not decrement forgotten usage and
    ``recompute`` does not restore it. Returns the number of users reset.
    """
    now = now or datetime.now(timezone.utc)
    role = UserRole(role) if role is not None else None
    user_filter = []
    if role is not None:
        user_filter.append(User.role == role)

    result = await db.execute(
        update(User)
        .where(*user_filter)
        .values(used_claim_amount=ZERO, usage_reset_at=now)
        .execution_options(**_NO_SYNC)
    )
    affected = result.rowcount

    claim_filter = [Claim.counted_in_usage.is_(True)]
    if role is not None:
        claim_filter.append(
            Claim.user_id.in_(select(User.id).where(*user_filter))
        )
    await db.execute(
        update(Claim)
        .where(*claim_filter)
        .values(counted_in_usage=False)
        .execution_options(**_NO_SYNC)
    )
    logger.info(
        "ledger reset role=%s users=%s", role.value if role else "all", affected,
    )
    return affected
