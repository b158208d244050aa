"""Claims ORM model: Claim.

SQLAlchemy 2.0 async-compatible models.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from claimdesk.common.constants import ClaimStatus, UserRole
from claimdesk.database import Base


class Claim(Base):
    """Expense reimbursement request moving through the approval lifecycle."""

    __tablename__ = "claims"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id"),
        nullable=False,
    )
    # Reviewer snapshot taken at creation; None means no assigned reviewer
    manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True,
    )
    owner_role: Mapped[UserRole] = mapped_column(
        sa.Enum(UserRole, name="user_role"), nullable=False,
    )
    title: Mapped[str] = mapped_column(sa.String(140), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.String(2000))
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), nullable=False)
    receipt: Mapped[str] = mapped_column(sa.String(500), nullable=False)
    status: Mapped[ClaimStatus] = mapped_column(
        sa.Enum(ClaimStatus, name="claim_status"),
        nullable=False,
        default=ClaimStatus.draft,
    )
    counted_in_usage: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False,
    )
    submitted_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    rejected_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    reimbursed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    manager_reviewer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True,
    )
    finance_reviewer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True,
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.String(1000))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        sa.CheckConstraint("amount > 0", name="ck_claims_amount_positive"),
        sa.Index("ix_claims_user_status_created", "user_id", "status", "created_at"),
        sa.Index("ix_claims_status_created", "status", "created_at"),
        sa.Index("ix_claims_manager_status", "manager_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Claim {self.id} '{self.title[:30]}' {self.amount} {self.status.value}>"
