"""Periodic usage reset.

The reset policy on ``ClaimConfig`` is a cycle (monthly / quarterly /
yearly) anchored at ``reset_anchor_date``. Cycle boundaries fall on the
anchor date plus whole cycles; a reset is due when the most recent boundary
is later than ``last_reset_at``. The job is idempotent within a cycle, so a
cron entry can run it as often as convenient.
"""

from __future__ import annotations

import calendar
import logging
import uuid
from datetime import date, datetime, time, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from claimdesk.common.audit import create_audit_entry
from claimdesk.common.constants import ResetCycle, UserRole
from claimdesk.limits import ledger
from claimdesk.limits.models import ClaimConfig, ClaimUsageResetLog
from claimdesk.limits.resolver import get_config

logger = logging.getLogger(__name__)

CYCLE_MONTHS: dict[ResetCycle, int] = {
    ResetCycle.monthly: 1,
    ResetCycle.quarterly: 3,
    ResetCycle.yearly: 12,
}


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def add_months(day: date, months: int) -> date:
    """Shift *day* by *months*, clamping to the last day of the target month."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def last_boundary(cycle: ResetCycle, anchor: date, now: datetime) -> Optional[datetime]:
    """Most recent cycle boundary at or before *now* (None if before the anchor)."""
    step = CYCLE_MONTHS.get(ResetCycle(cycle))
    if step is None:
        return None
    now = _as_utc(now)
    today = now.date()
    if today < anchor:
        return None

    months_elapsed = (today.year - anchor.year) * 12 + (today.month - anchor.month)
    k = months_elapsed // step
    boundary = add_months(anchor, k * step)
    if boundary > today:
        boundary = add_months(anchor, (k - 1) * step)
    return datetime.combine(boundary, time.min, tzinfo=timezone.utc)


def is_reset_due(config: ClaimConfig, now: datetime) -> bool:
    if config.reset_cycle == ResetCycle.none or config.reset_anchor_date is None:
        return False
    boundary = last_boundary(config.reset_cycle, config.reset_anchor_date, now)
    if boundary is None:
        return False
    if config.last_reset_at is None:
        return True
    return _as_utc(config.last_reset_at) < boundary


async def perform_reset(
    db: AsyncSession,
    *,
    role: Optional[UserRole] = None,
    actor_id: Optional[uuid.UUID] = None,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ClaimUsageResetLog:
    """Reset usage counters, stamp the config and write a reset log entry."""
    now = now or datetime.now(timezone.utc)
    affected = await ledger.reset_all(db, role=role, now=now)

    config = await get_config(db)
    if role is None:
        config.last_reset_at = now

    log = ClaimUsageResetLog(
        run_at=now,
        role_filter=UserRole(role).value if role is not None else None,
        total_users_affected=affected,
        triggered_by=actor_id,
        note=note,
    )
    db.add(log)
    await db.flush()

    await create_audit_entry(
        db,
        action="reset_usage",
        entity_type="claim_config",
        actor_id=actor_id,
        new_values={
            "role": log.role_filter,
            "total_users_affected": affected,
        },
    )
    return log


async def run_scheduled_reset(
    db: AsyncSession,
    now: Optional[datetime] = None,
    *,
    force: bool = False,
) -> Optional[ClaimUsageResetLog]:
    """Run the periodic reset if the configured cycle says one is due."""
    now = now or datetime.now(timezone.utc)
    config = await get_config(db)
    if not force and not is_reset_due(config, now):
        logger.info(
            "usage reset not due (cycle=%s anchor=%s last=%s)",
            config.reset_cycle.value, config.reset_anchor_date, config.last_reset_at,
        )
        return None

    log = await perform_reset(
        db,
        note=f"scheduled {config.reset_cycle.value} reset" if not force else "forced reset",
        now=now,
    )
    logger.info("usage reset complete: %s users affected", log.total_users_affected)
    return log
