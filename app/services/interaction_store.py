"""
Pairbond: Interaction Store

Persistence access for directed ``UserInteraction`` rows.  The store never
opens or commits a transaction itself: callers (the match engine) wrap
every read and write in one transaction spanning both directions of a
pair.

Lock ordering
-------------
Both directions of a pair are always locked in ascending ``(actor_id,
target_id)`` key order, regardless of which side is acting.  Before the
interaction rows, the two ``pb_users`` rows are locked in ascending id
order; that serialises the pair even when neither interaction row exists
yet (``SELECT ... FOR UPDATE`` cannot lock an absent row).
"""

from __future__ import annotations

import enum

import structlog
from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.interaction import InteractionAction, UserInteraction
from app.models.user import User

logger = structlog.get_logger("pairbond.interaction_store")


class InteractionState(str, enum.Enum):
    """Explicit state of one directed pair, including row absence."""

    NONE = "none"
    LIKE = "like"
    REJECT = "reject"
    MATCH = "match"


def state_of(row: UserInteraction | None) -> InteractionState:
    """Map a (possibly absent) interaction row to its state."""
    if row is None:
        return InteractionState.NONE
    return InteractionState(row.action.value)


def lock_order(user_a_id: int, user_b_id: int) -> list[tuple[int, int]]:
    """Return both directed row keys of a pair in global lock order."""
    return sorted([(user_a_id, user_b_id), (user_b_id, user_a_id)])


class InteractionStore:
    """Read/write access to directed interaction rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, actor_id: int, target_id: int) -> UserInteraction | None:
        stmt = select(UserInteraction).where(
            UserInteraction.actor_id == actor_id,
            UserInteraction.target_id == target_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def lock_pair(
        self, actor_id: int, target_id: int
    ) -> tuple[UserInteraction | None, UserInteraction | None]:
        """Lock both directions of a pair and return ``(forward, reverse)``.

        Forward is ``actor -> target``; reverse is ``target -> actor``.
        Rows are re-read from the database (``populate_existing``) so the
        caller decides on the state as of its own lock acquisition.
        """
        user_ids = sorted({actor_id, target_id})
        await self.session.execute(
            select(User.id)
            .where(User.id.in_(user_ids))
            .order_by(User.id)
            .with_for_update()
        )

        keys = lock_order(actor_id, target_id)
        stmt = (
            select(UserInteraction)
            .where(
                or_(
                    *(
                        and_(
                            UserInteraction.actor_id == a,
                            UserInteraction.target_id == t,
                        )
                        for a, t in keys
                    )
                )
            )
            .order_by(UserInteraction.actor_id, UserInteraction.target_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)

        forward: UserInteraction | None = None
        reverse: UserInteraction | None = None
        for row in result.scalars():
            if row.actor_id == actor_id:
                forward = row
            else:
                reverse = row

        logger.debug(
            "pair_locked",
            actor_id=actor_id,
            target_id=target_id,
            forward=state_of(forward).value,
            reverse=state_of(reverse).value,
        )
        return forward, reverse

    async def upsert(
        self,
        actor_id: int,
        target_id: int,
        action: InteractionAction,
        is_mutual: bool,
    ) -> UserInteraction:
        """Create the row for ``(actor_id, target_id)`` or update it in place."""
        if actor_id == target_id:
            raise ValueError("An interaction needs two distinct users")
        if is_mutual != (action == InteractionAction.MATCH):
            raise ValueError(
                f"is_mutual={is_mutual} is inconsistent with action={action.value!r}"
            )

        row = await self.session.get(UserInteraction, (actor_id, target_id))
        if row is None:
            row = UserInteraction(
                actor_id=actor_id,
                target_id=target_id,
                action=action,
                is_mutual=is_mutual,
            )
            self.session.add(row)
        else:
            row.action = action
            row.is_mutual = is_mutual

        await self.session.flush()
        return row

    async def list_matches(self, user_id: int) -> list[UserInteraction]:
        """Forward match rows owned by ``user_id``, newest first."""
        stmt = (
            select(UserInteraction)
            .where(
                UserInteraction.actor_id == user_id,
                UserInteraction.action == InteractionAction.MATCH,
                UserInteraction.is_mutual.is_(True),
            )
            .order_by(
                func.coalesce(
                    UserInteraction.updated_at, UserInteraction.created_at
                ).desc(),
                UserInteraction.target_id,
            )
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
