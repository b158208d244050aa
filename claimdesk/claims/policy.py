"""Per-action authorization policy for claims.

Each check takes the acting user and the claim (plus the claim owner where
the org chart matters) and returns a ``PolicyDecision``. Routers and the
claim service call ``enforce`` to turn a denial into a 403. Status checks
are not made here; those belong to the state machine.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from claimdesk.claims.models import Claim
from claimdesk.common.constants import CLAIMANT_ROLES, UserRole
from claimdesk.common.exceptions import ForbiddenException
from claimdesk.users.models import User


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    reason: str
    message: str = ""

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = PolicyDecision(True, "allowed")


def _deny(reason: str, message: str) -> PolicyDecision:
    return PolicyDecision(False, reason, message)


def enforce(decision: PolicyDecision) -> None:
    """Raise ``ForbiddenException`` carrying the denial reason code."""
    if not decision.allowed:
        raise ForbiddenException(detail=decision.message, reason=decision.reason)


# ── Owner actions ───────────────────────────────────────────────────

def can_create(actor: User) -> PolicyDecision:
    if actor.role not in CLAIMANT_ROLES:
        return _deny("role_not_permitted", f"Role '{actor.role.value}' cannot create claims.")
    return ALLOW


def can_submit(actor: User, claim: Claim) -> PolicyDecision:
    if claim.user_id != actor.id:
        return _deny("not_owner", "Only the claim owner can submit this claim.")
    return ALLOW


def can_edit_draft(actor: User, claim: Claim) -> PolicyDecision:
    if claim.user_id != actor.id:
        return _deny("not_owner", "Only the claim owner can modify this claim.")
    return ALLOW


# ── Reviewer actions ────────────────────────────────────────────────

def is_direct_supervisor(actor: User, owner: Optional[User]) -> bool:
    return owner is not None and owner.manager_id is not None and owner.manager_id == actor.id


def can_manager_review(actor: User, claim: Claim, owner: Optional[User]) -> PolicyDecision:
    """Approve/reject on the manager path.

    Admins may act on any claim, including ones with no assigned reviewer.
    A manager may never review their own claim; otherwise they must be the
    employee owner's direct supervisor or the snapshot reviewer.
    """
    if actor.role == UserRole.admin:
        return ALLOW
    if actor.role != UserRole.manager:
        return _deny(
            "role_not_permitted",
            f"Role '{actor.role.value}' cannot approve or reject claims.",
        )
    if claim.user_id == actor.id:
        return _deny("self_review", "Managers cannot approve or reject their own claims.")
    if claim.owner_role == UserRole.employee and is_direct_supervisor(actor, owner):
        return ALLOW
    if claim.manager_id is not None and claim.manager_id == actor.id:
        return ALLOW
    return _deny("not_assigned_reviewer", "You are not the assigned reviewer for this claim.")


def can_finance_review(actor: User, claim: Claim) -> PolicyDecision:
    """Reimburse or finance-reject."""
    if actor.role in (UserRole.finance, UserRole.admin):
        return ALLOW
    return _deny(
        "role_not_permitted",
        f"Role '{actor.role.value}' cannot reimburse or finance-reject claims.",
    )


# ── Read access ─────────────────────────────────────────────────────

def can_view(actor: User, claim: Claim, owner: Optional[User]) -> PolicyDecision:
    if actor.role in (UserRole.finance, UserRole.admin):
        return ALLOW
    if claim.user_id == actor.id:
        return ALLOW
    if actor.role == UserRole.manager and (
        claim.manager_id == actor.id or is_direct_supervisor(actor, owner)
    ):
        return ALLOW
    return _deny("not_related", "Not authorized to view this claim.")


def can_view_limit(actor: User, subject: User) -> PolicyDecision:
    if actor.role in (UserRole.finance, UserRole.admin):
        return ALLOW
    if actor.id == subject.id or is_direct_supervisor(actor, subject):
        return ALLOW
    return _deny("not_related", "Not authorized to view this user's claim limit.")


def can_view_user(actor: User, subject: User) -> PolicyDecision:
    """Self, own manager, direct reports, finance and admin."""
    if actor.role in (UserRole.finance, UserRole.admin):
        return ALLOW
    if actor.id == subject.id or actor.manager_id == subject.id:
        return ALLOW
    if is_direct_supervisor(actor, subject):
        return ALLOW
    return _deny("not_related", "Not authorized to view this user.")
