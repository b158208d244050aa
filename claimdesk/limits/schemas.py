"""Claim-limit configuration Pydantic v2 schemas."""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from claimdesk.common.constants import ResetCycle, UserRole


class ClaimConfigOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    default_claim_limit: Decimal
    role_claim_limits: dict[str, Decimal] = {}
    reset_cycle: ResetCycle = ResetCycle.none
    reset_anchor_date: Optional[date] = None
    last_reset_at: Optional[datetime] = None
    updated_by: Optional[uuid.UUID] = None
    updated_at: Optional[datetime] = None


class DefaultLimitUpdate(BaseModel):
    default_limit: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)


class RoleLimitUpdate(BaseModel):
    """Set a per-role default; ``limit: null`` removes it."""

    role: UserRole
    limit: Optional[Decimal] = Field(..., ge=0, max_digits=12, decimal_places=2)


class UserLimitByEmail(BaseModel):
    """Finance/admin override of a user's limit, optionally with usage."""

    email: EmailStr
    limit: Optional[Decimal] = Field(..., ge=0, max_digits=12, decimal_places=2)
    used: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)


class ResetPolicyUpdate(BaseModel):
    cycle: ResetCycle
    anchor_date: Optional[date] = None

    @model_validator(mode="after")
    def _anchor_required(self) -> "ResetPolicyUpdate":
        if self.cycle != ResetCycle.none and self.anchor_date is None:
            raise ValueError("anchor_date is required when a reset cycle is set")
        return self


class UsageResetRequest(BaseModel):
    role: Optional[UserRole] = None
    note: Optional[str] = Field(None, max_length=1000)


class UsageResetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    run_at: datetime
    role_filter: Optional[str] = None
    total_users_affected: int
    triggered_by: Optional[uuid.UUID] = None
    note: Optional[str] = None
