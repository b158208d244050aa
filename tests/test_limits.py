"""Limit resolver, usage ledger and periodic reset — service-level tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import insert, select

from claimdesk.claims.models import Claim
from claimdesk.common.audit import AuditTrail
from claimdesk.common.constants import ClaimStatus, LimitSource, ResetCycle, UserRole
from claimdesk.common.exceptions import NotFoundException
from claimdesk.limits import ledger, resolver
from claimdesk.limits.models import CONFIG_ROW_ID, ClaimConfig, ClaimUsageResetLog
from claimdesk.limits.reset_job import (
    add_months,
    is_reset_due,
    last_boundary,
    perform_reset,
    run_scheduled_reset,
)
from claimdesk.limits.service import LimitConfigService
from tests.conftest import add_claim, add_user

UTC = timezone.utc


# ═════════════════════════════════════════════════════════════════════
# 1. LIMIT RESOLVER
# ═════════════════════════════════════════════════════════════════════


class TestResolver:

    async def test_config_created_lazily_with_default(self, db):
        config = await resolver.get_config(db)
        assert config.default_claim_limit == Decimal("500")
        assert config.reset_cycle == ResetCycle.none
        again = await resolver.get_config(db)
        assert again is config

    async def test_config_created_concurrently_is_reread(self, db, monkeypatch):
        await db.execute(
            insert(ClaimConfig).values(
                id=CONFIG_ROW_ID, default_claim_limit=Decimal("750"), role_claim_limits={},
            )
        )

        async def not_found_yet(*args, **kwargs):
            return None

        # The first lookup misses, as if the other request had not committed yet.
        monkeypatch.setattr(db, "get", not_found_yet)
        config = await resolver.get_config(db)
        assert config.default_claim_limit == Decimal("750")

        user = await add_user(db)
        assert user.id is not None

    async def test_global_default(self, db):
        user = await add_user(db)
        effective = await resolver.resolve(db, user)
        assert effective.amount == Decimal("500")
        assert effective.source == LimitSource.default

    async def test_role_default_beats_global(self, db):
        admin = await add_user(db, role=UserRole.admin)
        mgr = await add_user(db, role=UserRole.manager)
        emp = await add_user(db)
        await LimitConfigService.set_role_limit(db, admin, UserRole.manager, Decimal("900"))

        effective = await resolver.resolve(db, mgr)
        assert effective.amount == Decimal("900")
        assert effective.source == LimitSource.role
        assert await resolver.effective_limit(db, emp) == Decimal("500")

    async def test_override_beats_role_default(self, db):
        admin = await add_user(db, role=UserRole.admin)
        mgr = await add_user(db, role=UserRole.manager, claim_limit=Decimal("50"))
        await LimitConfigService.set_role_limit(db, admin, UserRole.manager, Decimal("900"))

        effective = await resolver.resolve(db, mgr)
        assert effective.amount == Decimal("50")
        assert effective.source == LimitSource.override

    async def test_zero_override_is_respected(self, db):
        user = await add_user(db, claim_limit=Decimal("0"))
        assert await resolver.effective_limit(db, user) == Decimal("0")

    async def test_remaining_never_negative(self, db):
        user = await add_user(db, claim_limit=Decimal("100"), used_claim_amount=Decimal("150"))
        assert await resolver.remaining(db, user) == Decimal("0")
        assert resolver.remaining_for(Decimal("100"), Decimal("40")) == Decimal("60")


# ═════════════════════════════════════════════════════════════════════
# 2. USAGE LEDGER
# ═════════════════════════════════════════════════════════════════════


class TestLedger:

    async def test_increment_and_decrement(self, db):
        user = await add_user(db)
        await ledger.increment(db, user.id, Decimal("120"))
        await ledger.increment(db, user.id, Decimal("30.50"))
        await ledger.decrement(db, user.id, Decimal("20"))
        await db.refresh(user)
        assert user.used_claim_amount == Decimal("130.50")

    async def test_increment_ignores_non_positive(self, db):
        user = await add_user(db)
        await ledger.increment(db, user.id, Decimal("0"))
        await ledger.increment(db, user.id, Decimal("-5"))
        await db.refresh(user)
        assert user.used_claim_amount == Decimal("0")

    async def test_decrement_clamps_at_zero(self, db, caplog):
        user = await add_user(db, used_claim_amount=Decimal("40"))
        with caplog.at_level("WARNING", logger="claimdesk.limits.ledger"):
            await ledger.decrement(db, user.id, Decimal("100"))
        await db.refresh(user)
        assert user.used_claim_amount == Decimal("0")
        assert "clamped" in caplog.text

    async def test_try_reserve_within_limit(self, db):
        user = await add_user(db, used_claim_amount=Decimal("100"))
        assert await ledger.try_reserve(db, user.id, Decimal("400"), Decimal("500"))
        await db.refresh(user)
        assert user.used_claim_amount == Decimal("500")

    async def test_try_reserve_refuses_overshoot(self, db):
        user = await add_user(db, used_claim_amount=Decimal("100"))
        assert not await ledger.try_reserve(db, user.id, Decimal("400.01"), Decimal("500"))
        await db.refresh(user)
        assert user.used_claim_amount == Decimal("100")

    async def test_sequential_reserves_cannot_jointly_overshoot(self, db):
        user = await add_user(db)
        results = [
            await ledger.try_reserve(db, user.id, Decimal("300"), Decimal("500"))
            for _ in range(3)
        ]
        assert results == [True, False, False]
        await db.refresh(user)
        assert user.used_claim_amount == Decimal("300")

    async def test_recompute_sums_counted_statuses(self, db):
        user = await add_user(db, used_claim_amount=Decimal("999"))
        for status, amount in [
            (ClaimStatus.draft, "10"),
            (ClaimStatus.submitted, "20"),
            (ClaimStatus.approved, "30"),
            (ClaimStatus.reimbursed, "40"),
            (ClaimStatus.rejected, "50"),
        ]:
            await add_claim(db, user, status=status, amount=Decimal(amount))

        total = await ledger.recompute(db, user.id)
        assert total == Decimal("90")
        await db.refresh(user)
        assert user.used_claim_amount == Decimal("90")

    async def test_recompute_respects_reset_cutoff(self, db):
        user = await add_user(db)
        before = datetime.now(UTC) - timedelta(days=10)
        await add_claim(db, user, status=ClaimStatus.approved, amount=Decimal("200"), submitted_at=before)

        await ledger.reset_all(db)
        await add_claim(db, user, status=ClaimStatus.submitted, amount=Decimal("75"),
                        submitted_at=datetime.now(UTC) + timedelta(seconds=1))

        assert await ledger.recompute(db, user.id) == Decimal("75")

    async def test_recompute_unknown_user(self, db):
        import uuid
        with pytest.raises(NotFoundException):
            await ledger.recompute(db, uuid.uuid4())

    async def test_reset_all_by_role(self, db):
        emp = await add_user(db, used_claim_amount=Decimal("100"))
        mgr = await add_user(db, role=UserRole.manager, used_claim_amount=Decimal("200"))
        emp_claim = await add_claim(db, emp, status=ClaimStatus.submitted, counted_in_usage=True)
        mgr_claim = await add_claim(db, mgr, status=ClaimStatus.submitted, counted_in_usage=True)

        affected = await ledger.reset_all(db, role=UserRole.employee)
        assert affected == 1

        for obj in (emp, mgr, emp_claim, mgr_claim):
            await db.refresh(obj)
        assert emp.used_claim_amount == Decimal("0")
        assert emp.usage_reset_at is not None
        assert mgr.used_claim_amount == Decimal("200")
        assert emp_claim.counted_in_usage is False
        assert mgr_claim.counted_in_usage is True


# ═════════════════════════════════════════════════════════════════════
# 3. PERIODIC RESET
# ═════════════════════════════════════════════════════════════════════


class TestResetSchedule:

    def test_add_months_clamps_day(self):
        assert add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
        assert add_months(date(2026, 11, 15), 3) == date(2027, 2, 15)

    def test_last_boundary_yearly(self):
        now = datetime(2026, 10, 18, 12, tzinfo=UTC)
        assert last_boundary(ResetCycle.yearly, date(2025, 1, 1), now) == datetime(2026, 1, 1, tzinfo=UTC)
        assert last_boundary(ResetCycle.yearly, date(2025, 11, 1), now) == datetime(2025, 11, 1, tzinfo=UTC)

    def test_last_boundary_quarterly_and_monthly(self):
        now = datetime(2026, 10, 18, tzinfo=UTC)
        assert last_boundary(ResetCycle.quarterly, date(2026, 1, 20), now) == datetime(2026, 7, 20, tzinfo=UTC)
        assert last_boundary(ResetCycle.monthly, date(2026, 1, 18), now) == datetime(2026, 10, 18, tzinfo=UTC)

    def test_last_boundary_before_anchor_or_no_cycle(self):
        now = datetime(2026, 10, 18, tzinfo=UTC)
        assert last_boundary(ResetCycle.monthly, date(2027, 1, 1), now) is None
        assert last_boundary(ResetCycle.none, date(2026, 1, 1), now) is None

    async def test_is_reset_due(self, db):
        config = await resolver.get_config(db)
        now = datetime(2026, 10, 18, tzinfo=UTC)
        assert not is_reset_due(config, now)

        config.reset_cycle = ResetCycle.monthly
        config.reset_anchor_date = date(2026, 1, 1)
        assert is_reset_due(config, now)

        config.last_reset_at = datetime(2026, 10, 1, 0, 5, tzinfo=UTC)
        assert not is_reset_due(config, now)
        assert is_reset_due(config, datetime(2026, 11, 1, tzinfo=UTC))

    async def test_scheduled_reset_runs_once_per_cycle(self, db):
        admin = await add_user(db, role=UserRole.admin)
        emp = await add_user(db, used_claim_amount=Decimal("300"))
        await LimitConfigService.set_reset_policy(db, admin, ResetCycle.yearly, date(2026, 1, 1))

        now = datetime(2026, 10, 18, tzinfo=UTC)
        log = await run_scheduled_reset(db, now)
        assert log is not None
        assert log.total_users_affected == 2
        await db.refresh(emp)
        assert emp.used_claim_amount == Decimal("0")

        assert await run_scheduled_reset(db, now + timedelta(days=1)) is None
        logs = (await db.execute(select(ClaimUsageResetLog))).scalars().all()
        assert len(logs) == 1

    async def test_forced_reset_ignores_schedule(self, db):
        await add_user(db, used_claim_amount=Decimal("10"))
        log = await run_scheduled_reset(db, force=True)
        assert log is not None
        assert log.note == "forced reset"

    async def test_role_reset_does_not_stamp_config(self, db):
        admin = await add_user(db, role=UserRole.admin)
        log = await perform_reset(db, role=UserRole.manager, actor_id=admin.id)
        assert log.role_filter == "manager"
        config = await resolver.get_config(db)
        assert config.last_reset_at is None

        audit = (await db.execute(
            select(AuditTrail).where(AuditTrail.action == "reset_usage")
        )).scalars().all()
        assert len(audit) == 1
        assert audit[0].actor_id == admin.id


# ═════════════════════════════════════════════════════════════════════
# 4. CONFIG SERVICE
# ═════════════════════════════════════════════════════════════════════


class TestConfigService:

    async def test_set_default_limit_records_actor(self, db):
        admin = await add_user(db, role=UserRole.admin)
        config = await LimitConfigService.set_default_limit(db, admin, Decimal("750"))
        assert config.default_claim_limit == Decimal("750")
        assert config.updated_by == admin.id

    async def test_remove_role_limit(self, db):
        fin = await add_user(db, role=UserRole.finance)
        await LimitConfigService.set_role_limit(db, fin, UserRole.employee, Decimal("300"))
        config = await LimitConfigService.set_role_limit(db, fin, UserRole.employee, None)
        assert "employee" not in config.role_claim_limits

    async def test_set_user_limit_with_used(self, db):
        fin = await add_user(db, role=UserRole.finance)
        emp = await add_user(db, used_claim_amount=Decimal("80"))
        emp = await LimitConfigService.set_user_limit(db, fin, emp, Decimal("1000"), used=Decimal("25"))
        assert emp.claim_limit == Decimal("1000")
        assert emp.used_claim_amount == Decimal("25")

        emp = await LimitConfigService.set_user_limit(db, fin, emp, None)
        assert emp.claim_limit is None
        assert emp.used_claim_amount == Decimal("25")

    async def test_recompute_user_usage_audited(self, db):
        fin = await add_user(db, role=UserRole.finance)
        emp = await add_user(db, used_claim_amount=Decimal("5"))
        await add_claim(db, emp, status=ClaimStatus.approved, amount=Decimal("60"))

        total = await LimitConfigService.recompute_user_usage(db, fin, emp.id)
        assert total == Decimal("60")
        entry = (await db.execute(
            select(AuditTrail).where(AuditTrail.action == "recompute_usage")
        )).scalar_one()
        assert entry.entity_id == emp.id
