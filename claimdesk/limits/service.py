"""Claim-limit configuration service — defaults, overrides, resets."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from claimdesk.common.audit import create_audit_entry
from claimdesk.common.constants import ResetCycle, UserRole
from claimdesk.limits import ledger
from claimdesk.limits.models import ClaimConfig, ClaimUsageResetLog
from claimdesk.limits.reset_job import perform_reset
from claimdesk.limits.resolver import as_decimal, get_config
from claimdesk.users.models import User


class LimitConfigService:
    """Finance/admin operations on limits and the usage ledger."""

    @staticmethod
    async def get_config(db: AsyncSession) -> ClaimConfig:
        return await get_config(db)

    @staticmethod
    async def set_default_limit(
        db: AsyncSession, actor: User, limit: Decimal,
    ) -> ClaimConfig:
        config = await get_config(db)
        old = str(config.default_claim_limit)
        config.default_claim_limit = as_decimal(limit)
        config.updated_by = actor.id
        await db.flush()

        await create_audit_entry(
            db,
            action="set_default_limit",
            entity_type="claim_config",
            actor_id=actor.id,
            old_values={"default_claim_limit": old},
            new_values={"default_claim_limit": str(limit)},
        )
        return config

    @staticmethod
    async def set_role_limit(
        db: AsyncSession, actor: User, role: UserRole, limit: Optional[Decimal],
    ) -> ClaimConfig:
        """Set or (with ``None``) remove the default limit for *role*."""
        config = await get_config(db)
        role = UserRole(role)
        role_limits = dict(config.role_claim_limits or {})
        old = role_limits.get(role.value)
        if limit is None:
            role_limits.pop(role.value, None)
        else:
            role_limits[role.value] = str(as_decimal(limit))
        # JSON columns are not mutation-tracked; assign a new dict
        config.role_claim_limits = role_limits
        config.updated_by = actor.id
        await db.flush()

        await create_audit_entry(
            db,
            action="set_role_limit",
            entity_type="claim_config",
            actor_id=actor.id,
            old_values={role.value: old},
            new_values={role.value: role_limits.get(role.value)},
        )
        return config

    @staticmethod
    async def set_user_limit(
        db: AsyncSession,
        actor: User,
        user: User,
        limit: Optional[Decimal],
        used: Optional[Decimal] = None,
    ) -> User:
        """Set or clear a personal override; optionally overwrite usage."""
        old_values = {
            "claim_limit": str(user.claim_limit) if user.claim_limit is not None else None,
        }
        user.claim_limit = as_decimal(limit) if limit is not None else None
        await db.flush()
        new_values = {"claim_limit": str(user.claim_limit) if user.claim_limit is not None else None}
        if used is not None:
            await ledger.set_used(db, user.id, used)
            new_values["used_claim_amount"] = str(used)
        await db.refresh(user)

        await create_audit_entry(
            db,
            action="set_user_limit",
            entity_type="user",
            entity_id=user.id,
            actor_id=actor.id,
            old_values=old_values,
            new_values=new_values,
        )
        return user

    @staticmethod
    async def set_reset_policy(
        db: AsyncSession, actor: User, cycle: ResetCycle, anchor_date: Optional[date],
    ) -> ClaimConfig:
        config = await get_config(db)
        old = {
            "reset_cycle": config.reset_cycle.value,
            "reset_anchor_date": config.reset_anchor_date.isoformat() if config.reset_anchor_date else None,
        }
        config.reset_cycle = ResetCycle(cycle)
        config.reset_anchor_date = anchor_date
        config.updated_by = actor.id
        await db.flush()

        await create_audit_entry(
            db,
            action="set_reset_policy",
            entity_type="claim_config",
            actor_id=actor.id,
            old_values=old,
            new_values={
                "reset_cycle": config.reset_cycle.value,
                "reset_anchor_date": anchor_date.isoformat() if anchor_date else None,
            },
        )
        return config

    @staticmethod
    async def reset_usage(
        db: AsyncSession,
        actor: User,
        role: Optional[UserRole] = None,
        note: Optional[str] = None,
    ) -> ClaimUsageResetLog:
        """Manual reset of usage counters for everyone or one role."""
        return await perform_reset(db, role=role, actor_id=actor.id, note=note or "manual reset")

    @staticmethod
    async def recompute_user_usage(
        db: AsyncSession, actor: User, user_id: uuid.UUID,
    ) -> Decimal:
        total = await ledger.recompute(db, user_id)
        await create_audit_entry(
            db,
            action="recompute_usage",
            entity_type="user",
            entity_id=user_id,
            actor_id=actor.id,
            new_values={"used_claim_amount": str(total)},
        )
        return total
