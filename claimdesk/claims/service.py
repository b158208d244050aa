"""Claims service layer — creation, draft edits and the approval workflow.

Business logic:
  - Reviewer snapshot on creation (employee → supervisor, manager → chosen
    reviewer or supervisor, admin → none)
  - Limit enforcement on submit through the usage ledger's atomic reserve
  - Manager approve/reject, finance reimburse/reject with ledger reversal
  - Reviewer queues for managers and finance

Every status change is a conditional ``UPDATE … WHERE status = :expected``
so a transition that lost a race with another reviewer fails instead of
being applied twice. Ledger writes happen in the same session as the status
change and are reversed explicitly if the status update does not land.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy import exists, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from claimdesk.claims import policy
from claimdesk.claims.models import Claim
from claimdesk.claims.state_machine import ensure_transition, transition_to, transition_values
from claimdesk.common.audit import create_audit_entry
from claimdesk.common.constants import (
    FINANCE_QUEUE_STATUSES,
    MANAGER_QUEUE_STATUSES,
    ClaimStatus,
    UserRole,
)
from claimdesk.common.exceptions import (
    InvalidTransitionException,
    LimitExceededException,
    NotFoundException,
    ValidationException,
)
from claimdesk.common.pagination import PaginationMeta, PaginationParams, paginate
from claimdesk.limits import ledger, resolver
from claimdesk.users.models import User

logger = logging.getLogger(__name__)

_NO_SYNC = {"synchronize_session": False}


@dataclass
class ClaimResult:
    """A claim plus the owner's limit position after the operation."""

    claim: Claim
    effective_limit: Decimal
    remaining: Decimal


def _parse_amount(value: Any, errors: dict[str, list[str]]) -> Optional[Decimal]:
    try:
        amount = resolver.as_decimal(value)
    except (InvalidOperation, ValueError):
        errors.setdefault("amount", []).append("Amount must be a number.")
        return None
    if not amount.is_finite() or amount <= 0:
        errors.setdefault("amount", []).append("Amount must be greater than 0.")
        return None
    return amount


class ClaimService:
    """Business logic for claim operations."""

    # ── Lookups ───────────────────────────────────────────────────────

    @staticmethod
    async def get_claim(db: AsyncSession, claim_id: uuid.UUID) -> Claim:
        """Get a single claim by ID."""
        result = await db.execute(select(Claim).where(Claim.id == claim_id))
        claim = result.scalar_one_or_none()
        if not claim:
            raise NotFoundException("Claim", str(claim_id))
        return claim

    @staticmethod
    async def _get_user(db: AsyncSession, user_id: Optional[uuid.UUID]) -> Optional[User]:
        if user_id is None:
            return None
        result = await db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def limit_position(db: AsyncSession, user: User) -> tuple[Decimal, Decimal]:
        """Return ``(effective_limit, remaining)`` from freshly read usage."""
        await db.refresh(user)
        limit = await resolver.effective_limit(db, user)
        return limit, resolver.remaining_for(limit, user.used_claim_amount)

    @staticmethod
    async def _result(db: AsyncSession, claim: Claim, owner: User) -> ClaimResult:
        await db.refresh(claim)
        limit, remaining = await ClaimService.limit_position(db, owner)
        return ClaimResult(claim=claim, effective_limit=limit, remaining=remaining)

    @staticmethod
    async def _raise_limit_exceeded(
        db: AsyncSession, owner: User, amount: Decimal, limit: Decimal,
    ) -> None:
        await db.refresh(owner)
        remaining = resolver.remaining_for(limit, owner.used_claim_amount)
        logger.info(
            "claim limit exceeded user=%s amount=%s remaining=%s", owner.id, amount, remaining,
        )
        raise LimitExceededException(amount=amount, remaining=remaining, effective_limit=limit)

    # ── Reviewer snapshot ─────────────────────────────────────────────

    @staticmethod
    async def _resolve_reviewer(
        db: AsyncSession,
        owner: User,
        reviewer_id: Optional[uuid.UUID],
    ) -> Optional[uuid.UUID]:
        """Pick the manager snapshot stored on a new claim."""
        if owner.role == UserRole.admin:
            return None
        if owner.role == UserRole.employee:
            if reviewer_id is not None and reviewer_id != owner.manager_id:
                raise ValidationException(
                    {"manager": ["Employees cannot choose a reviewer; claims go to their manager."]}
                )
            return owner.manager_id
        # Manager: explicit reviewer or own supervisor
        if reviewer_id is None:
            return owner.manager_id
        return await ClaimService._validate_manager_reviewer(db, owner, reviewer_id)

    @staticmethod
    async def _validate_manager_reviewer(
        db: AsyncSession, owner: User, reviewer_id: uuid.UUID,
    ) -> uuid.UUID:
        if reviewer_id == owner.id:
            raise ValidationException({"manager": ["You cannot assign yourself as reviewer."]})
        reviewer = await ClaimService._get_user(db, reviewer_id)
        if reviewer is None or not reviewer.is_active or reviewer.role != UserRole.manager:
            raise ValidationException(
                {"manager": ["Reviewer must be an active user with the manager role."]}
            )
        return reviewer.id

    # ── Create ────────────────────────────────────────────────────────

    @staticmethod
    async def create_claim(
        db: AsyncSession,
        owner: User,
        *,
        title: Optional[str],
        amount: Any,
        receipt: Optional[str],
        description: Optional[str] = None,
        reviewer_id: Optional[uuid.UUID] = None,
        submit: bool = False,
    ) -> ClaimResult:
        """Create a draft claim, or a submitted one when *submit* is set.

        With *submit* the limit is reserved before the row is inserted, so a
        claim that would exceed the limit is never persisted.
        """
        policy.enforce(policy.can_create(owner))

        errors: dict[str, list[str]] = {}
        if not title or not title.strip():
            errors["title"] = ["Title is required."]
        parsed_amount = _parse_amount(amount, errors)
        if not receipt:
            errors["receipt"] = ["Receipt file is required."]
        if errors:
            raise ValidationException(errors)

        manager_id = await ClaimService._resolve_reviewer(db, owner, reviewer_id)
        limit = await resolver.effective_limit(db, owner)

        if submit and not await ledger.try_reserve(db, owner.id, parsed_amount, limit):
            await ClaimService._raise_limit_exceeded(db, owner, parsed_amount, limit)

        now = datetime.now(timezone.utc)
        claim = Claim(
            user_id=owner.id,
            manager_id=manager_id,
            owner_role=owner.role,
            title=title.strip(),
            description=description,
            amount=parsed_amount,
            receipt=receipt,
            status=ClaimStatus.draft,
            counted_in_usage=False,
            created_at=now,
            updated_at=now,
        )
        if submit:
            transition_to(claim, ClaimStatus.submitted, now)
            claim.counted_in_usage = True
        db.add(claim)
        await db.flush()

        await create_audit_entry(
            db,
            action="create",
            entity_type="claim",
            entity_id=claim.id,
            actor_id=owner.id,
            new_values={
                "title": claim.title,
                "amount": str(parsed_amount),
                "status": claim.status.value,
                "manager_id": str(manager_id) if manager_id else None,
            },
        )
        logger.info(
            "claim created id=%s user=%s amount=%s status=%s",
            claim.id, owner.id, parsed_amount, claim.status.value,
        )
        return await ClaimService._result(db, claim, owner)

    # ── Draft edits ───────────────────────────────────────────────────

    @staticmethod
    async def _get_own_draft(db: AsyncSession, claim_id: uuid.UUID, actor: User) -> Claim:
        claim = await ClaimService.get_claim(db, claim_id)
        policy.enforce(policy.can_edit_draft(actor, claim))
        if claim.status != ClaimStatus.draft:
            raise ValidationException(
                {"status": [f"Only draft claims can be modified (status is '{claim.status.value}')."]}
            )
        return claim

    @staticmethod
    async def _released_receipt(db: AsyncSession, reference: Optional[str]) -> Optional[str]:
        """Return *reference* if no claim points at it any more, else None."""
        if not reference:
            return None
        in_use = await db.scalar(select(exists().where(Claim.receipt == reference)))
        return None if in_use else reference

    @staticmethod
    async def update_draft_claim(
        db: AsyncSession,
        claim_id: uuid.UUID,
        actor: User,
        **fields: Any,
    ) -> tuple[Claim, Optional[str]]:
        """Update title, description, amount, receipt or reviewer of a draft.

        Returns the claim and the replaced receipt reference when no other
        claim still uses it. The caller removes that file after commit.
        """
        claim = await ClaimService._get_own_draft(db, claim_id, actor)

        errors: dict[str, list[str]] = {}
        changes: dict[str, Any] = {}
        if fields.get("title") is not None:
            if not fields["title"].strip():
                errors["title"] = ["Title cannot be blank."]
            else:
                changes["title"] = fields["title"].strip()
        if fields.get("description") is not None:
            changes["description"] = fields["description"]
        if fields.get("amount") is not None:
            parsed = _parse_amount(fields["amount"], errors)
            if parsed is not None:
                changes["amount"] = parsed
        if fields.get("receipt") is not None:
            changes["receipt"] = fields["receipt"]
        if fields.get("reviewer_id") is not None:
            if actor.role != UserRole.manager:
                errors["manager"] = ["Only managers can choose a reviewer."]
            else:
                changes["manager_id"] = await ClaimService._validate_manager_reviewer(
                    db, actor, fields["reviewer_id"],
                )
        if errors:
            raise ValidationException(errors)

        old_values = {k: str(getattr(claim, k)) for k in changes}
        old_receipt = claim.receipt
        for field, value in changes.items():
            setattr(claim, field, value)
        claim.updated_at = datetime.now(timezone.utc)
        await db.flush()

        released = None
        if "receipt" in changes and old_receipt != claim.receipt:
            released = await ClaimService._released_receipt(db, old_receipt)

        await create_audit_entry(
            db,
            action="update",
            entity_type="claim",
            entity_id=claim.id,
            actor_id=actor.id,
            old_values=old_values,
            new_values={k: str(v) for k, v in changes.items()},
        )
        return claim, released

    @staticmethod
    async def delete_draft_claim(
        db: AsyncSession,
        claim_id: uuid.UUID,
        actor: User,
    ) -> Optional[str]:
        """Delete a draft.

        Returns its receipt reference when no other claim uses the file, so
        the caller can remove it once the delete is committed.
        """
        claim = await ClaimService._get_own_draft(db, claim_id, actor)
        receipt = claim.receipt
        old_values = {"title": claim.title, "amount": str(claim.amount)}
        await db.delete(claim)
        await db.flush()

        released = await ClaimService._released_receipt(db, receipt)

        await create_audit_entry(
            db,
            action="delete",
            entity_type="claim",
            entity_id=claim_id,
            actor_id=actor.id,
            old_values=old_values,
        )
        return released

    # ── Submit ────────────────────────────────────────────────────────

    @staticmethod
    async def submit_claim(
        db: AsyncSession,
        claim_id: uuid.UUID,
        actor: User,
    ) -> ClaimResult:
        """Submit a draft, charging its amount to the owner's usage once."""
        claim = await ClaimService.get_claim(db, claim_id)
        policy.enforce(policy.can_submit(actor, claim))
        ensure_transition(claim.status, ClaimStatus.submitted)
        if claim.counted_in_usage:
            raise InvalidTransitionException(
                claim.status, ClaimStatus.submitted,
                detail="Claim is already counted against the claim limit.",
            )

        amount = resolver.as_decimal(claim.amount)
        limit = await resolver.effective_limit(db, actor)
        if not await ledger.try_reserve(db, actor.id, amount, limit):
            await ClaimService._raise_limit_exceeded(db, actor, amount, limit)

        values = transition_values(ClaimStatus.draft, ClaimStatus.submitted)
        values["counted_in_usage"] = True
        result = await db.execute(
            update(Claim)
            .where(
                Claim.id == claim.id,
                Claim.status == ClaimStatus.draft,
                Claim.counted_in_usage.is_(False),
            )
            .values(**values)
            .execution_options(**_NO_SYNC)
        )
        if result.rowcount != 1:
            # Another request submitted (or deleted) the claim first.
            await ledger.decrement(db, actor.id, amount)
            await db.refresh(claim)
            raise InvalidTransitionException(
                claim.status, ClaimStatus.submitted,
                detail="Claim status changed while it was being submitted.",
            )

        await create_audit_entry(
            db,
            action="submit",
            entity_type="claim",
            entity_id=claim.id,
            actor_id=actor.id,
            old_values={"status": ClaimStatus.draft.value},
            new_values={"status": ClaimStatus.submitted.value, "amount": str(amount)},
        )
        logger.info("claim submitted id=%s user=%s amount=%s", claim.id, actor.id, amount)
        return await ClaimService._result(db, claim, actor)

    # ── Transitions ───────────────────────────────────────────────────

    @staticmethod
    def _require_status(claim: Claim, expected: ClaimStatus, target: ClaimStatus) -> None:
        ensure_transition(claim.status, target)
        if claim.status != expected:
            raise InvalidTransitionException(
                claim.status, target,
                detail=f"Only {expected.value} claims can be moved to '{target.value}' here.",
            )

    @staticmethod
    async def _transition(
        db: AsyncSession,
        claim: Claim,
        expected: ClaimStatus,
        target: ClaimStatus,
        extra: dict[str, Any],
        *,
        counted: Optional[bool] = None,
    ) -> bool:
        """Apply *expected* → *target* only if the stored status still matches."""
        values = transition_values(expected, target)
        values.update(extra)
        criteria = [Claim.id == claim.id, Claim.status == expected]
        if counted is not None:
            criteria.append(Claim.counted_in_usage.is_(counted))
        result = await db.execute(
            update(Claim).where(*criteria).values(**values).execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1

    @staticmethod
    async def _lost_race(db: AsyncSession, claim: Claim, target: ClaimStatus) -> None:
        await db.refresh(claim)
        raise InvalidTransitionException(
            claim.status, target,
            detail=f"Claim status changed to '{claim.status.value}' before this action completed.",
        )

    @staticmethod
    async def _audit_transition(
        db: AsyncSession, claim: Claim, actor: User, action: str,
        old: ClaimStatus, new: ClaimStatus, **extra: Any,
    ) -> None:
        await create_audit_entry(
            db,
            action=action,
            entity_type="claim",
            entity_id=claim.id,
            actor_id=actor.id,
            old_values={"status": old.value},
            new_values={"status": new.value, **extra},
        )
        logger.info("claim %s id=%s by=%s", action, claim.id, actor.id)

    @staticmethod
    async def approve_claim(
        db: AsyncSession,
        claim_id: uuid.UUID,
        actor: User,
    ) -> Claim:
        """Manager/admin approval of a submitted claim."""
        claim = await ClaimService.get_claim(db, claim_id)
        owner = await ClaimService._get_user(db, claim.user_id)
        policy.enforce(policy.can_manager_review(actor, claim, owner))
        ClaimService._require_status(claim, ClaimStatus.submitted, ClaimStatus.approved)

        applied = await ClaimService._transition(
            db, claim, ClaimStatus.submitted, ClaimStatus.approved,
            {"manager_reviewer_id": actor.id},
        )
        if not applied:
            await ClaimService._lost_race(db, claim, ClaimStatus.approved)

        await db.refresh(claim)
        await ClaimService._audit_transition(
            db, claim, actor, "approve", ClaimStatus.submitted, ClaimStatus.approved,
        )
        return claim

    @staticmethod
    async def _reject(
        db: AsyncSession,
        claim: Claim,
        actor: User,
        expected: ClaimStatus,
        reviewer_field: str,
        reason: Optional[str],
    ) -> Claim:
        """Reject from *expected*, reversing the usage charge if it is counted."""
        extra = {
            reviewer_field: actor.id,
            "rejection_reason": reason or "",
            "counted_in_usage": False,
        }
        reversed_charge = await ClaimService._transition(
            db, claim, expected, ClaimStatus.rejected, extra, counted=True,
        )
        if reversed_charge:
            await ledger.decrement(db, claim.user_id, claim.amount)
        elif not await ClaimService._transition(
            db, claim, expected, ClaimStatus.rejected, extra, counted=False,
        ):
            await ClaimService._lost_race(db, claim, ClaimStatus.rejected)

        await db.refresh(claim)
        await ClaimService._audit_transition(
            db, claim, actor, "reject", expected, ClaimStatus.rejected,
            reason=reason or "", usage_reversed=reversed_charge,
        )
        return claim

    @staticmethod
    async def reject_claim(
        db: AsyncSession,
        claim_id: uuid.UUID,
        actor: User,
        reason: Optional[str] = None,
    ) -> Claim:
        """Manager/admin rejection of a submitted claim."""
        claim = await ClaimService.get_claim(db, claim_id)
        owner = await ClaimService._get_user(db, claim.user_id)
        policy.enforce(policy.can_manager_review(actor, claim, owner))
        ClaimService._require_status(claim, ClaimStatus.submitted, ClaimStatus.rejected)
        return await ClaimService._reject(
            db, claim, actor, ClaimStatus.submitted, "manager_reviewer_id", reason,
        )

    @staticmethod
    async def reimburse_claim(
        db: AsyncSession,
        claim_id: uuid.UUID,
        actor: User,
    ) -> Claim:
        """Finance/admin reimbursement; usage was already counted at submit."""
        claim = await ClaimService.get_claim(db, claim_id)
        policy.enforce(policy.can_finance_review(actor, claim))
        ClaimService._require_status(claim, ClaimStatus.approved, ClaimStatus.reimbursed)

        applied = await ClaimService._transition(
            db, claim, ClaimStatus.approved, ClaimStatus.reimbursed,
            {"finance_reviewer_id": actor.id},
        )
        if not applied:
            await ClaimService._lost_race(db, claim, ClaimStatus.reimbursed)

        await db.refresh(claim)
        await ClaimService._audit_transition(
            db, claim, actor, "reimburse", ClaimStatus.approved, ClaimStatus.reimbursed,
        )
        return claim

    @staticmethod
    async def finance_reject_claim(
        db: AsyncSession,
        claim_id: uuid.UUID,
        actor: User,
        reason: Optional[str] = None,
    ) -> Claim:
        """Finance/admin rejection of an approved claim."""
        claim = await ClaimService.get_claim(db, claim_id)
        policy.enforce(policy.can_finance_review(actor, claim))
        ClaimService._require_status(claim, ClaimStatus.approved, ClaimStatus.rejected)
        return await ClaimService._reject(
            db, claim, actor, ClaimStatus.approved, "finance_reviewer_id", reason,
        )

    # ── Read ──────────────────────────────────────────────────────────

    @staticmethod
    async def get_claim_for_actor(
        db: AsyncSession,
        claim_id: uuid.UUID,
        actor: User,
    ) -> tuple[Claim, Optional[User]]:
        """Return the claim and its creator if *actor* may view it."""
        claim = await ClaimService.get_claim(db, claim_id)
        owner = await ClaimService._get_user(db, claim.user_id)
        policy.enforce(policy.can_view(actor, claim, owner))
        return claim, owner

    @staticmethod
    async def get_claim_manager(
        db: AsyncSession,
        claim_id: uuid.UUID,
        actor: User,
    ) -> Optional[User]:
        """Return the reviewer snapshot of a claim (None if unassigned)."""
        claim, _owner = await ClaimService.get_claim_for_actor(db, claim_id, actor)
        return await ClaimService._get_user(db, claim.manager_id)

    @staticmethod
    async def list_my_claims(
        db: AsyncSession,
        actor: User,
        params: PaginationParams,
        status: Optional[ClaimStatus] = None,
    ) -> tuple[list[Claim], PaginationMeta]:
        stmt = select(Claim).where(Claim.user_id == actor.id)
        if status is not None:
            stmt = stmt.where(Claim.status == status)
        stmt = stmt.order_by(Claim.created_at.desc())
        return await paginate(db, stmt, params)

    @staticmethod
    async def list_for_manager(
        db: AsyncSession,
        actor: User,
        params: PaginationParams,
        status: Optional[ClaimStatus] = None,
    ) -> tuple[list[Claim], PaginationMeta]:
        """Claims the actor reviews: snapshot reviewer or direct reports.

        Defaults to ``submitted``; admins see every claim in the status.
        """
        status = ClaimService._queue_status(status, MANAGER_QUEUE_STATUSES, ClaimStatus.submitted)
        stmt = select(Claim).where(Claim.status == status)
        if actor.role != UserRole.admin:
            reports = select(User.id).where(User.manager_id == actor.id)
            stmt = stmt.where(
                Claim.user_id != actor.id,
                or_(Claim.manager_id == actor.id, Claim.user_id.in_(reports)),
            )
        stmt = stmt.order_by(Claim.created_at.desc())
        return await paginate(db, stmt, params)

    @staticmethod
    async def list_for_finance(
        db: AsyncSession,
        params: PaginationParams,
        status: Optional[ClaimStatus] = None,
    ) -> tuple[list[Claim], PaginationMeta]:
        """Approved (default) or reimbursed claims for finance."""
        status = ClaimService._queue_status(status, FINANCE_QUEUE_STATUSES, ClaimStatus.approved)
        stmt = (
            select(Claim)
            .where(Claim.status == status)
            .order_by(Claim.created_at.desc())
        )
        return await paginate(db, stmt, params)

    @staticmethod
    def _queue_status(
        status: Optional[ClaimStatus],
        allowed: tuple[ClaimStatus, ...],
        default: ClaimStatus,
    ) -> ClaimStatus:
        if status is None:
            return default
        if status not in allowed:
            raise ValidationException(
                {"status": [f"Invalid status filter. Allowed: {[s.value for s in allowed]}."]}
            )
        return ClaimStatus(status)
