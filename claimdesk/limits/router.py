"""Claim-limit configuration router (Finance/Admin only)."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from claimdesk.auth.dependencies import require_role
from claimdesk.common.constants import UserRole
from claimdesk.database import get_db
from claimdesk.limits.schemas import (
    ClaimConfigOut,
    DefaultLimitUpdate,
    ResetPolicyUpdate,
    RoleLimitUpdate,
    UsageResetOut,
    UsageResetRequest,
    UserLimitByEmail,
)
from claimdesk.limits.service import LimitConfigService
from claimdesk.users.models import User
from claimdesk.users.schemas import UserOut
from claimdesk.users.service import UserService

router = APIRouter(prefix="", tags=["config"])

_finance_or_admin = require_role(UserRole.finance, UserRole.admin)


# ── GET / ────────────────────────────────────────────────────────────

@router.get("/", response_model=ClaimConfigOut)
async def get_config(
    user: User = Depends(_finance_or_admin),
    db: AsyncSession = Depends(get_db),
):
    config = await LimitConfigService.get_config(db)
    return ClaimConfigOut.model_validate(config)


# ── PUT /default-limit ───────────────────────────────────────────────

@router.put("/default-limit", response_model=ClaimConfigOut)
async def set_default_limit(
    body: DefaultLimitUpdate,
    user: User = Depends(_finance_or_admin),
    db: AsyncSession = Depends(get_db),
):
    config = await LimitConfigService.set_default_limit(db, user, body.default_limit)
    await db.commit()
    return ClaimConfigOut.model_validate(config)


# ── PUT /role-limit ──────────────────────────────────────────────────

@router.put("/role-limit", response_model=ClaimConfigOut)
async def set_role_limit(
    body: RoleLimitUpdate,
    user: User = Depends(_finance_or_admin),
    db: AsyncSession = Depends(get_db),
):
    """Set a per-role default limit; ``limit: null`` removes it."""
    config = await LimitConfigService.set_role_limit(db, user, body.role, body.limit)
    await db.commit()
    return ClaimConfigOut.model_validate(config)


# ── PUT /user-limit ──────────────────────────────────────────────────

@router.put("/user-limit", response_model=UserOut)
async def set_user_limit(
    body: UserLimitByEmail,
    user: User = Depends(_finance_or_admin),
    db: AsyncSession = Depends(get_db),
):
    """Override a user's limit by email, optionally overwriting usage."""
    target = await UserService.get_user_by_email(db, body.email)
    target = await LimitConfigService.set_user_limit(db, user, target, body.limit, used=body.used)
    await db.commit()
    return UserOut.model_validate(target)


# ── PUT /reset-policy ────────────────────────────────────────────────

@router.put("/reset-policy", response_model=ClaimConfigOut)
async def set_reset_policy(
    body: ResetPolicyUpdate,
    user: User = Depends(_finance_or_admin),
    db: AsyncSession = Depends(get_db),
):
    config = await LimitConfigService.set_reset_policy(db, user, body.cycle, body.anchor_date)
    await db.commit()
    return ClaimConfigOut.model_validate(config)


# ── POST /reset-usage ────────────────────────────────────────────────

@router.post("/reset-usage", response_model=UsageResetOut)
async def reset_usage(
    body: UsageResetRequest = UsageResetRequest(),
    user: User = Depends(_finance_or_admin),
    db: AsyncSession = Depends(get_db),
):
    """Zero usage counters for everyone, or for one role."""
    log = await LimitConfigService.reset_usage(db, user, role=body.role, note=body.note)
    await db.commit()
    return UsageResetOut.model_validate(log)
