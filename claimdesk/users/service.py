"""Users service layer — lookups and the claim-limit view."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from claimdesk.claims import policy
from claimdesk.common.constants import UserRole
from claimdesk.common.exceptions import NotFoundException
from claimdesk.limits import resolver
from claimdesk.users.models import User
from claimdesk.users.schemas import ClaimLimitOut


class UserService:
    """Read-side operations on users."""

    @staticmethod
    async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User:
        result = await db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundException("User", str(user_id))
        return user

    @staticmethod
    async def get_user_by_email(db: AsyncSession, email: str) -> User:
        result = await db.execute(
            select(User).where(User.email == email.strip().lower())
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundException("User", email)
        return user

    @staticmethod
    async def get_visible_user(
        db: AsyncSession, user_id: uuid.UUID, actor: User,
    ) -> User:
        user = await UserService.get_user(db, user_id)
        policy.enforce(policy.can_view_user(actor, user))
        return user

    @staticmethod
    async def list_managers(db: AsyncSession) -> list[User]:
        """Active managers, used to pick a reviewer for a manager's own claim."""
        result = await db.execute(
            select(User)
            .where(User.role == UserRole.manager, User.is_active.is_(True))
            .order_by(User.name)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_claim_limit(
        db: AsyncSession, user_id: uuid.UUID, actor: User,
    ) -> ClaimLimitOut:
        """Effective limit, its source and the remaining balance for a user."""
        user = await UserService.get_user(db, user_id)
        policy.enforce(policy.can_view_limit(actor, user))
        await db.refresh(user)
        effective = await resolver.resolve(db, user)
        return ClaimLimitOut(
            user_id=user.id,
            effective_claim_limit=effective.amount,
            source=effective.source,
            used_claim_amount=resolver.as_decimal(user.used_claim_amount),
            remaining_claim_limit=resolver.remaining_for(effective.amount, user.used_claim_amount),
        )
