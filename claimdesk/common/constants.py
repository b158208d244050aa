"""Enums and constants for ClaimDesk — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    finance = "finance"
    admin = "admin"


# ── Claims ──────────────────────────────────────────────────────────

class ClaimStatus(str, enum.Enum):
    draft = "draft"
    submitted = "submitted"
    approved = "approved"
    rejected = "rejected"
    reimbursed = "reimbursed"


# Statuses whose amount counts against the owner's claim limit
COUNTED_STATUSES: tuple[ClaimStatus, ...] = (
    ClaimStatus.submitted,
    ClaimStatus.approved,
    ClaimStatus.reimbursed,
)

# Status filters exposed on the reviewer queues
MANAGER_QUEUE_STATUSES: tuple[ClaimStatus, ...] = (
    ClaimStatus.submitted,
    ClaimStatus.approved,
    ClaimStatus.rejected,
)
FINANCE_QUEUE_STATUSES: tuple[ClaimStatus, ...] = (
    ClaimStatus.approved,
    ClaimStatus.reimbursed,
)


# ── Limits ──────────────────────────────────────────────────────────

class ResetCycle(str, enum.Enum):
    none = "none"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"


class LimitSource(str, enum.Enum):
    override = "override"
    role = "role"
    default = "default"


# Roles allowed to own claims
CLAIMANT_ROLES: frozenset[UserRole] = frozenset(
    {UserRole.employee, UserRole.manager, UserRole.admin}
)

# ── Misc constants ──────────────────────────────────────────────────

RECEIPT_CONTENT_TYPES = frozenset(
    {"image/jpeg", "image/png", "image/gif", "image/webp", "application/pdf"}
)
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 10
