#!/usr/bin/env python3
"""Claim usage reset — cron entry point for the periodic usage reset.

Safe to run as often as convenient: the reset only happens once per
configured cycle (see ``PUT /api/v1/config/reset-policy``).

Usage:
    python scripts/reset_claim_usage.py                 # reset if due
    python scripts/reset_claim_usage.py --force         # reset everyone now
    python scripts/reset_claim_usage.py --role manager  # reset one role now
    python scripts/reset_claim_usage.py --status        # show policy, no writes

Requires .env at project root (DATABASE_URL, JWT_SECRET).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

# ── Path setup ────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from dotenv import load_dotenv

# Load .env before claimdesk.config reads the environment
load_dotenv(PROJECT_ROOT / ".env")

from claimdesk.common.constants import UserRole
from claimdesk.database import async_session_factory, engine
from claimdesk.limits.reset_job import is_reset_due, perform_reset, run_scheduled_reset
from claimdesk.limits.resolver import get_config
from claimdesk.main import configure_logging

logger = logging.getLogger("reset_claim_usage")


async def show_status() -> int:
    async with async_session_factory() as session:
        config = await get_config(session)
        due = is_reset_due(config, datetime.now(timezone.utc))
        await session.commit()
    logger.info(
        "cycle=%s anchor=%s last_reset=%s due=%s",
        config.reset_cycle.value, config.reset_anchor_date, config.last_reset_at, due,
    )
    return 0


async def run(force: bool = False, role: str | None = None) -> int:
    async with async_session_factory() as session:
        try:
            if role:
                log = await perform_reset(
                    session, role=UserRole(role), note=f"manual {role} reset (script)",
                )
            else:
                log = await run_scheduled_reset(session, force=force)
            await session.commit()
        except Exception:
            await session.rollback()
            logger.exception("usage reset failed")
            return 1

    if log is None:
        logger.info("nothing to do")
    else:
        logger.info(
            "reset %s users (role=%s) at %s",
            log.total_users_affected, log.role_filter or "all", log.run_at.isoformat(),
        )
    return 0


async def _main(args: argparse.Namespace) -> int:
    try:
        if args.status:
            return await show_status()
        return await run(force=args.force, role=args.role)
    finally:
        await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Reset claim usage counters according to the configured cycle",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Cron schedule (recommended):
    15 0 * * *    (daily just after midnight; resets only when a cycle boundary passed)
""",
    )
    parser.add_argument("--force", action="store_true", help="Reset everyone even if not due")
    parser.add_argument(
        "--role",
        choices=[r.value for r in UserRole],
        help="Reset only users with this role (always runs)",
    )
    parser.add_argument("--status", action="store_true", help="Show reset policy and exit")
    args = parser.parse_args()

    configure_logging()
    sys.exit(asyncio.run(_main(args)))


if __name__ == "__main__":
    main()
