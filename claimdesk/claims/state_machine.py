"""Claim lifecycle state machine.

    draft ──► submitted ──► approved ──► reimbursed
                  │             │
                  └──► rejected ◄┘

``rejected`` and ``reimbursed`` are terminal. The functions here only decide
whether a move is legal and which columns it stamps; usage-ledger side
effects belong to ``claimdesk.claims.service``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from claimdesk.claims.models import Claim
from claimdesk.common.constants import ClaimStatus
from claimdesk.common.exceptions import InvalidTransitionException

ALLOWED_TRANSITIONS: dict[ClaimStatus, frozenset[ClaimStatus]] = {
    ClaimStatus.draft: frozenset({ClaimStatus.submitted}),
    ClaimStatus.submitted: frozenset({ClaimStatus.approved, ClaimStatus.rejected}),
    ClaimStatus.approved: frozenset({ClaimStatus.reimbursed, ClaimStatus.rejected}),
    ClaimStatus.rejected: frozenset(),
    ClaimStatus.reimbursed: frozenset(),
}

# Column stamped when a claim enters the given status
TIMESTAMP_FIELDS: dict[ClaimStatus, str] = {
    ClaimStatus.submitted: "submitted_at",
    ClaimStatus.approved: "approved_at",
    ClaimStatus.rejected: "rejected_at",
    ClaimStatus.reimbursed: "reimbursed_at",
}


def can_transition(current: ClaimStatus, target: ClaimStatus) -> bool:
    return ClaimStatus(target) in ALLOWED_TRANSITIONS[ClaimStatus(current)]


def is_terminal(status: ClaimStatus) -> bool:
    return not ALLOWED_TRANSITIONS[ClaimStatus(status)]


def ensure_transition(current: ClaimStatus, target: ClaimStatus) -> None:
    """Raise ``InvalidTransitionException`` unless *current* → *target* is allowed."""
    if not can_transition(current, target):
        raise InvalidTransitionException(current, target)


def transition_values(
    current: ClaimStatus,
    target: ClaimStatus,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Validate the move and return the column values it writes.

    Used to build the conditional ``UPDATE … WHERE status = :current``
    issued by the claim service.
    """
    ensure_transition(current, target)
    target = ClaimStatus(target)
    now = now or datetime.now(timezone.utc)
    return {
        "status": target,
        TIMESTAMP_FIELDS[target]: now,
        "updated_at": now,
    }


def transition_to(claim: Claim, target: ClaimStatus, now: Optional[datetime] = None) -> Claim:
    """Move an in-memory claim to *target*, stamping the matching timestamp."""
    for field, value in transition_values(claim.status, target, now).items():
        setattr(claim, field, value)
    return claim
