"""
Pairbond: User lookup used by the match engine.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User


class UserDirectory:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: int) -> User | None:
        return await self.session.get(User, user_id)

    async def find_active(self, user_id: int) -> User | None:
        """Return the user when it exists and is active, else ``None``."""
        stmt = select(User).where(User.id == user_id, User.is_active.is_(True))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_active_many(self, user_ids: list[int]) -> dict[int, User]:
        if not user_ids:
            return {}
        stmt = select(User).where(User.id.in_(user_ids), User.is_active.is_(True))
        result = await self.session.execute(stmt)
        return {u.id: u for u in result.scalars().all()}
