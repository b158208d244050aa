"""Claim-limit ORM models: ClaimConfig (singleton), ClaimUsageResetLog."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from claimdesk.common.constants import ResetCycle
from claimdesk.database import Base

CONFIG_ROW_ID = 1


class ClaimConfig(Base):
    """Global and per-role default claim limits plus the usage reset policy.

    A single row (``id == CONFIG_ROW_ID``) is created lazily on first read.
    ``role_claim_limits`` maps role value → decimal string.
    """

    __tablename__ = "claim_config"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, default=CONFIG_ROW_ID)
    default_claim_limit: Mapped[Decimal] = mapped_column(
        sa.Numeric(12, 2), nullable=False,
    )
    role_claim_limits: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    reset_cycle: Mapped[ResetCycle] = mapped_column(
        sa.Enum(ResetCycle, name="reset_cycle"),
        nullable=False,
        default=ResetCycle.none,
    )
    reset_anchor_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    last_reset_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True),
    )
    updated_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<ClaimConfig default={self.default_claim_limit} cycle={self.reset_cycle.value}>"


class ClaimUsageResetLog(Base):
    """One row per usage reset run, manual or scheduled."""

    __tablename__ = "claim_usage_reset_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    run_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc),
    )
    role_filter: Mapped[Optional[str]] = mapped_column(sa.String(20))
    total_users_affected: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    triggered_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True,
    )
    note: Mapped[Optional[str]] = mapped_column(sa.Text)

    __table_args__ = (
        sa.Index("ix_claim_usage_reset_logs_run_at", "run_at"),
    )
