"""Claim-limit configuration endpoints (/api/v1/config)."""

from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import select

from claimdesk.common.constants import UserRole
from claimdesk.limits.models import ClaimUsageResetLog
from claimdesk.users.models import User
from tests.conftest import TestSessionFactory, auth_headers_for, reload, seed_user

BASE = "/api/v1/config"


@pytest.fixture
async def finance():
    return await seed_user(name="Finance", role=UserRole.finance)


@pytest.fixture
async def admin():
    return await seed_user(name="Admin", role=UserRole.admin)


class TestConfigRead:

    async def test_get_config_defaults(self, client, finance):
        resp = await client.get(f"{BASE}/", headers=auth_headers_for(finance))
        assert resp.status_code == 200
        data = resp.json()
        assert Decimal(data["default_claim_limit"]) == Decimal("500")
        assert data["role_claim_limits"] == {}
        assert data["reset_cycle"] == "none"

    @pytest.mark.parametrize("role", [UserRole.employee, UserRole.manager])
    async def test_non_finance_forbidden(self, client, role):
        user = await seed_user(role=role)
        resp = await client.get(f"{BASE}/", headers=auth_headers_for(user))
        assert resp.status_code == 403


class TestLimits:

    async def test_default_limit_must_be_positive(self, client, admin):
        resp = await client.put(
            f"{BASE}/default-limit", json={"default_limit": "0"}, headers=auth_headers_for(admin),
        )
        assert resp.status_code == 400

    async def test_default_limit_applies_to_users(self, client, admin):
        emp = await seed_user()
        resp = await client.put(
            f"{BASE}/default-limit", json={"default_limit": "800"}, headers=auth_headers_for(admin),
        )
        assert resp.status_code == 200
        assert resp.json()["updated_by"] == str(admin.id)

        resp = await client.get(
            f"/api/v1/users/{emp.id}/claim-limit", headers=auth_headers_for(emp),
        )
        assert Decimal(resp.json()["effective_claim_limit"]) == Decimal("800")

    async def test_role_limit_set_and_clear(self, client, finance):
        mgr = await seed_user(role=UserRole.manager)
        headers = auth_headers_for(finance)

        resp = await client.put(
            f"{BASE}/role-limit", json={"role": "manager", "limit": "1200"}, headers=headers,
        )
        assert resp.status_code == 200
        assert Decimal(resp.json()["role_claim_limits"]["manager"]) == Decimal("1200")

        resp = await client.get(f"/api/v1/users/{mgr.id}/claim-limit", headers=auth_headers_for(mgr))
        assert resp.json()["source"] == "role"
        assert Decimal(resp.json()["effective_claim_limit"]) == Decimal("1200")

        resp = await client.put(
            f"{BASE}/role-limit", json={"role": "manager", "limit": None}, headers=headers,
        )
        assert resp.json()["role_claim_limits"] == {}

    async def test_unknown_role_is_400(self, client, finance):
        resp = await client.put(
            f"{BASE}/role-limit", json={"role": "intern", "limit": "10"},
            headers=auth_headers_for(finance),
        )
        assert resp.status_code == 400

    async def test_user_limit_by_email(self, client, finance):
        emp = await seed_user(email="ravi.k@claimdesk.io", used_claim_amount=Decimal("90"))
        resp = await client.put(
            f"{BASE}/user-limit",
            json={"email": "Ravi.K@claimdesk.io", "limit": "250", "used": "10"},
            headers=auth_headers_for(finance),
        )
        assert resp.status_code == 200
        assert Decimal(resp.json()["claim_limit"]) == Decimal("250")
        assert Decimal(resp.json()["used_claim_amount"]) == Decimal("10")

        fresh = await reload(User, emp.id)
        assert fresh.used_claim_amount == Decimal("10")

    async def test_user_limit_unknown_email(self, client, finance):
        resp = await client.put(
            f"{BASE}/user-limit",
            json={"email": "nobody@claimdesk.io", "limit": "250"},
            headers=auth_headers_for(finance),
        )
        assert resp.status_code == 404


class TestResets:

    async def test_reset_policy_requires_anchor(self, client, admin):
        resp = await client.put(
            f"{BASE}/reset-policy", json={"cycle": "yearly"}, headers=auth_headers_for(admin),
        )
        assert resp.status_code == 400

    async def test_reset_policy_saved(self, client, admin):
        resp = await client.put(
            f"{BASE}/reset-policy",
            json={"cycle": "quarterly", "anchor_date": "2026-01-01"},
            headers=auth_headers_for(admin),
        )
        assert resp.status_code == 200
        assert resp.json()["reset_cycle"] == "quarterly"
        assert resp.json()["reset_anchor_date"] == "2026-01-01"

    async def test_manual_reset_by_role(self, client, finance):
        emp = await seed_user(used_claim_amount=Decimal("300"))
        mgr = await seed_user(role=UserRole.manager, used_claim_amount=Decimal("200"))

        resp = await client.post(
            f"{BASE}/reset-usage", json={"role": "employee", "note": "Q3 close"},
            headers=auth_headers_for(finance),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["role_filter"] == "employee"
        assert data["total_users_affected"] == 1
        assert data["triggered_by"] == str(finance.id)

        assert (await reload(User, emp.id)).used_claim_amount == Decimal("0")
        assert (await reload(User, mgr.id)).used_claim_amount == Decimal("200")

    async def test_manual_reset_everyone(self, client, admin):
        await seed_user(used_claim_amount=Decimal("300"))
        resp = await client.post(f"{BASE}/reset-usage", headers=auth_headers_for(admin))
        assert resp.status_code == 200
        assert resp.json()["total_users_affected"] == 2

        async with TestSessionFactory() as session:
            logs = (await session.execute(select(ClaimUsageResetLog))).scalars().all()
        assert len(logs) == 1
        assert logs[0].note == "manual reset"
