"""Claims router — creation, draft edits and the approval workflow.

All endpoints require authentication.
"""

import os
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from claimdesk.auth.dependencies import get_current_user, require_role
from claimdesk.claims import storage
from claimdesk.claims.schemas import (
    ClaimCreate,
    ClaimDetailOut,
    ClaimEnvelope,
    ClaimListResponse,
    ClaimManagerOut,
    ClaimOut,
    ClaimUpdate,
    ReceiptUploadOut,
    RejectRequest,
)
from claimdesk.claims.service import ClaimResult, ClaimService
from claimdesk.common.constants import ClaimStatus, UserRole
from claimdesk.common.pagination import PaginationParams
from claimdesk.database import get_db
from claimdesk.users.models import User
from claimdesk.users.schemas import UserBrief

router = APIRouter(prefix="", tags=["claims"])


def _envelope(result: ClaimResult) -> ClaimEnvelope:
    return ClaimEnvelope(
        claim=ClaimOut.model_validate(result.claim),
        effective_claim_limit=result.effective_limit,
        remaining_claim_limit=result.remaining,
    )


# ── POST / ───────────────────────────────────────────────────────────

@router.post("/", response_model=ClaimEnvelope, status_code=201)
async def create_claim(
    body: ClaimCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Create a draft claim (or submit it immediately with ``submit``)."""
    result = await ClaimService.create_claim(
        db,
        user,
        title=body.title,
        amount=body.amount,
        receipt=body.receipt,
        description=body.description,
        reviewer_id=body.manager,
        submit=body.submit,
    )
    await db.commit()
    return _envelope(result)


# ── GET /mine ────────────────────────────────────────────────────────

@router.get("/mine", response_model=ClaimListResponse)
async def my_claims(
    status: Optional[ClaimStatus] = Query(None),
    params: PaginationParams = Depends(),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List the current user's claims with their remaining balance."""
    claims, meta = await ClaimService.list_my_claims(db, user, params, status=status)
    limit, remaining = await ClaimService.limit_position(db, user)
    return ClaimListResponse(
        data=[ClaimOut.model_validate(c) for c in claims],
        meta=meta,
        effective_claim_limit=limit,
        remaining_claim_limit=remaining,
    )


# ── GET /manager ─────────────────────────────────────────────────────

@router.get("/manager", response_model=ClaimListResponse)
async def manager_queue(
    status: Optional[ClaimStatus] = Query(None),
    params: PaginationParams = Depends(),
    user: User = Depends(require_role(UserRole.manager, UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    """Claims awaiting (or past) review by the current manager."""
    claims, meta = await ClaimService.list_for_manager(db, user, params, status=status)
    return ClaimListResponse(
        data=[ClaimOut.model_validate(c) for c in claims],
        meta=meta,
    )


# ── GET /finance ─────────────────────────────────────────────────────

@router.get("/finance", response_model=ClaimListResponse)
async def finance_queue(
    status: Optional[ClaimStatus] = Query(None),
    params: PaginationParams = Depends(),
    user: User = Depends(require_role(UserRole.finance, UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    """Approved claims waiting for reimbursement (or already reimbursed)."""
    claims, meta = await ClaimService.list_for_finance(db, params, status=status)
    return ClaimListResponse(
        data=[ClaimOut.model_validate(c) for c in claims],
        meta=meta,
    )


# ── POST /upload-receipt ─────────────────────────────────────────────

@router.post("/upload-receipt", response_model=ReceiptUploadOut, status_code=201)
async def upload_receipt(
    file: UploadFile = File(...),
    user: User = Depends(get_current_user),
):
    """Upload a receipt file. Returns the URL to reference in a claim."""
    contents = await file.read()
    url = storage.save_receipt(contents, file.filename, file.content_type)
    return ReceiptUploadOut(url=url, filename=os.path.basename(url))


# ── GET /{claim_id} ──────────────────────────────────────────────────

@router.get("/{claim_id}", response_model=ClaimDetailOut)
async def get_claim(
    claim_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get a claim with its creator."""
    claim, owner = await ClaimService.get_claim_for_actor(db, claim_id, user)
    return ClaimDetailOut(
        claim=ClaimOut.model_validate(claim),
        creator=UserBrief.model_validate(owner) if owner else None,
    )


# ── GET /{claim_id}/manager ──────────────────────────────────────────

@router.get("/{claim_id}/manager", response_model=ClaimManagerOut)
async def get_claim_manager(
    claim_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The reviewer snapshot assigned to a claim."""
    manager = await ClaimService.get_claim_manager(db, claim_id, user)
    return ClaimManagerOut(
        claim_id=claim_id,
        manager=UserBrief.model_validate(manager) if manager else None,
    )


# ── PATCH /{claim_id} ────────────────────────────────────────────────

@router.patch("/{claim_id}", response_model=ClaimOut)
async def update_claim(
    claim_id: uuid.UUID,
    body: ClaimUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Update a draft claim (owner only)."""
    update_data = body.model_dump(exclude_unset=True)
    if "manager" in update_data:
        update_data["reviewer_id"] = update_data.pop("manager")
    claim, released = await ClaimService.update_draft_claim(db, claim_id, user, **update_data)
    await db.commit()
    storage.delete_receipt(released)
    await db.refresh(claim)
    return ClaimOut.model_validate(claim)


# ── DELETE /{claim_id} ───────────────────────────────────────────────

@router.delete("/{claim_id}", status_code=204)
async def delete_claim(
    claim_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Delete a draft claim (owner only)."""
    released = await ClaimService.delete_draft_claim(db, claim_id, user)
    await db.commit()
    storage.delete_receipt(released)


# ── PUT /{claim_id}/submit ───────────────────────────────────────────

@router.put("/{claim_id}/submit", response_model=ClaimEnvelope)
async def submit_claim(
    claim_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Submit a draft claim, charging it against the owner's limit."""
    result = await ClaimService.submit_claim(db, claim_id, user)
    await db.commit()
    return _envelope(result)


# ── PUT /{claim_id}/approve ──────────────────────────────────────────

@router.put("/{claim_id}/approve", response_model=ClaimOut)
async def approve_claim(
    claim_id: uuid.UUID,
    user: User = Depends(require_role(UserRole.manager, UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    """Approve a submitted claim (Manager/Admin only)."""
    claim = await ClaimService.approve_claim(db, claim_id, user)
    await db.commit()
    await db.refresh(claim)
    return ClaimOut.model_validate(claim)


# ── PUT /{claim_id}/reject ───────────────────────────────────────────

@router.put("/{claim_id}/reject", response_model=ClaimOut)
async def reject_claim(
    claim_id: uuid.UUID,
    body: RejectRequest = RejectRequest(),
    user: User = Depends(require_role(UserRole.manager, UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    """Reject a submitted claim (Manager/Admin only)."""
    claim = await ClaimService.reject_claim(db, claim_id, user, reason=body.reason)
    await db.commit()
    await db.refresh(claim)
    return ClaimOut.model_validate(claim)


# ── PUT /{claim_id}/reimburse ────────────────────────────────────────

@router.put("/{claim_id}/reimburse", response_model=ClaimOut)
async def reimburse_claim(
    claim_id: uuid.UUID,
    user: User = Depends(require_role(UserRole.finance, UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    """Mark an approved claim as reimbursed (Finance/Admin only)."""
    claim = await ClaimService.reimburse_claim(db, claim_id, user)
    await db.commit()
    await db.refresh(claim)
    return ClaimOut.model_validate(claim)


# ── PUT /{claim_id}/reject-finance ───────────────────────────────────

@router.put("/{claim_id}/reject-finance", response_model=ClaimOut)
async def finance_reject_claim(
    claim_id: uuid.UUID,
    body: RejectRequest = RejectRequest(),
    user: User = Depends(require_role(UserRole.finance, UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    """Reject an approved claim at the finance stage (Finance/Admin only)."""
    claim = await ClaimService.finance_reject_claim(db, claim_id, user, reason=body.reason)
    await db.commit()
    await db.refresh(claim)
    return ClaimOut.model_validate(claim)
