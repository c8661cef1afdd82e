"""
Pairbond: Counter Ledger

Signed, zero-floored adjustments of the per-user ``total_likes``,
``total_matches`` and ``total_rejects`` counters.  Adjustments are issued
as single ``UPDATE`` statements inside the caller's transaction, so they
commit or roll back together with the interaction writes.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User

logger = structlog.get_logger("pairbond.counter_ledger")


@dataclass(frozen=True)
class CounterDelta:
    """Signed change to a user's three interaction counters."""

    likes: int = 0
    matches: int = 0
    rejects: int = 0

    @property
    def is_zero(self) -> bool:
        return self.likes == 0 and self.matches == 0 and self.rejects == 0

    def __add__(self, other: "CounterDelta") -> "CounterDelta":
        return CounterDelta(
            likes=self.likes + other.likes,
            matches=self.matches + other.matches,
            rejects=self.rejects + other.rejects,
        )


@dataclass(frozen=True)
class CounterTotals:
    likes: int
    matches: int
    rejects: int


def _clamped(column, delta: int):
    return case((column + delta < 0, 0), else_=column + delta)


class CounterLedger:
    """Applies counter deltas for users within an open transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def adjust(self, user_id: int, delta: CounterDelta) -> None:
        """Apply ``delta`` to ``user_id``'s counters, flooring each at zero."""
        if delta.is_zero:
            return

        values = {}
        if delta.likes:
            values["total_likes"] = _clamped(User.total_likes, delta.likes)
        if delta.matches:
            values["total_matches"] = _clamped(User.total_matches, delta.matches)
        if delta.rejects:
            values["total_rejects"] = _clamped(User.total_rejects, delta.rejects)

        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)

        logger.debug(
            "counters_adjusted",
            user_id=user_id,
            likes=delta.likes,
            matches=delta.matches,
            rejects=delta.rejects,
        )

    async def totals(self, user_id: int) -> CounterTotals | None:
        """Read the current counters straight from the database."""
        stmt = select(
            User.total_likes, User.total_matches, User.total_rejects
        ).where(User.id == user_id)
        row = (await self.session.execute(stmt)).one_or_none()
        if row is None:
            return None
        return CounterTotals(likes=row[0], matches=row[1], rejects=row[2])
