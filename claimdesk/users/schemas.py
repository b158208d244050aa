"""Users Pydantic v2 schemas — request/response validation."""

import uuid
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from claimdesk.common.constants import LimitSource, UserRole


class UserBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: str
    role: UserRole


class UserOut(BaseModel):
    """Full user representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: str
    role: UserRole
    manager_id: Optional[uuid.UUID] = None
    claim_limit: Optional[Decimal] = None
    used_claim_amount: Decimal = Decimal("0")
    is_active: bool = True


class ClaimLimitOut(BaseModel):
    user_id: uuid.UUID
    effective_claim_limit: Decimal
    source: LimitSource
    used_claim_amount: Decimal
    remaining_claim_limit: Decimal


class UserLimitUpdate(BaseModel):
    """Set (or clear with ``null``) a personal claim-limit override."""

    claim_limit: Optional[Decimal] = Field(..., ge=0, max_digits=12, decimal_places=2)


class UsageRecomputeOut(BaseModel):
    user_id: uuid.UUID
    used_claim_amount: Decimal
