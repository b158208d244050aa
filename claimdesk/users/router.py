"""Users router — lookups, claim-limit view and per-user limit edits."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from claimdesk.auth.dependencies import get_current_user, require_role
from claimdesk.common.constants import UserRole
from claimdesk.database import get_db
from claimdesk.limits.service import LimitConfigService
from claimdesk.users.models import User
from claimdesk.users.schemas import (
    ClaimLimitOut,
    UsageRecomputeOut,
    UserBrief,
    UserLimitUpdate,
    UserOut,
)
from claimdesk.users.service import UserService

router = APIRouter(prefix="", tags=["users"])


# ── GET /managers ────────────────────────────────────────────────────

@router.get("/managers", response_model=list[UserBrief])
async def list_managers(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Active managers that can be named as a claim reviewer."""
    managers = await UserService.list_managers(db)
    return [UserBrief.model_validate(m) for m in managers]


# ── GET /{user_id} ───────────────────────────────────────────────────

@router.get("/{user_id}", response_model=UserOut)
async def get_user(
    user_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    target = await UserService.get_visible_user(db, user_id, user)
    return UserOut.model_validate(target)


# ── GET /{user_id}/claim-limit ───────────────────────────────────────

@router.get("/{user_id}/claim-limit", response_model=ClaimLimitOut)
async def get_claim_limit(
    user_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Effective claim limit, where it comes from and what is left."""
    return await UserService.get_claim_limit(db, user_id, user)


# ── PATCH /{user_id}/limit ───────────────────────────────────────────

@router.patch("/{user_id}/limit", response_model=UserOut)
async def update_user_limit(
    user_id: uuid.UUID,
    body: UserLimitUpdate,
    user: User = Depends(require_role(UserRole.finance, UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    """Set or clear a personal claim-limit override (Finance/Admin only)."""
    target = await UserService.get_user(db, user_id)
    target = await LimitConfigService.set_user_limit(db, user, target, body.claim_limit)
    await db.commit()
    return UserOut.model_validate(target)


# ── POST /{user_id}/recompute-usage ──────────────────────────────────

@router.post("/{user_id}/recompute-usage", response_model=UsageRecomputeOut)
async def recompute_usage(
    user_id: uuid.UUID,
    user: User = Depends(require_role(UserRole.finance, UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    """Rebuild a user's usage counter from their counted claims."""
    total = await LimitConfigService.recompute_user_usage(db, user, user_id)
    await db.commit()
    return UsageRecomputeOut(user_id=user_id, used_claim_amount=total)
