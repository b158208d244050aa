"""Claims Pydantic v2 schemas — request/response validation."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from claimdesk.common.constants import ClaimStatus, UserRole
from claimdesk.common.pagination import PaginationMeta
from claimdesk.users.schemas import UserBrief


# ═════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════


class ClaimCreate(BaseModel):
    """Create a claim; ``submit`` sends it for review straight away."""

    title: str = Field(..., max_length=140)
    amount: Decimal = Field(..., max_digits=12, decimal_places=2)
    receipt: str = Field(..., max_length=500)
    description: Optional[str] = Field(None, max_length=2000)
    manager: Optional[uuid.UUID] = None
    submit: bool = False


class ClaimUpdate(BaseModel):
    """Edit a draft claim. Only managers may change ``manager``."""

    title: Optional[str] = Field(None, max_length=140)
    amount: Optional[Decimal] = Field(None, max_digits=12, decimal_places=2)
    receipt: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = Field(None, max_length=2000)
    manager: Optional[uuid.UUID] = None


class RejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


# ═════════════════════════════════════════════════════════════════════
# Responses
# ═════════════════════════════════════════════════════════════════════


class ClaimOut(BaseModel):
    """Full claim representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    manager_id: Optional[uuid.UUID] = None
    owner_role: UserRole
    title: str
    description: Optional[str] = None
    amount: Decimal
    receipt: str
    status: ClaimStatus
    counted_in_usage: bool = False
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    reimbursed_at: Optional[datetime] = None
    manager_reviewer_id: Optional[uuid.UUID] = None
    finance_reviewer_id: Optional[uuid.UUID] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ClaimEnvelope(BaseModel):
    """A claim plus the owner's limit position after create/submit."""

    claim: ClaimOut
    effective_claim_limit: Decimal
    remaining_claim_limit: Decimal


class ClaimDetailOut(BaseModel):
    claim: ClaimOut
    creator: Optional[UserBrief] = None


class ClaimManagerOut(BaseModel):
    claim_id: uuid.UUID
    manager: Optional[UserBrief] = None


class ClaimListResponse(BaseModel):
    data: List[ClaimOut]
    meta: PaginationMeta
    effective_claim_limit: Optional[Decimal] = None
    remaining_claim_limit: Optional[Decimal] = None


class ReceiptUploadOut(BaseModel):
    url: str
    filename: str
