"""
Pairbond: Chat Identity Resolver

Finds or creates the single chat row for an unordered user pair.

Canonical ordering: when exactly one side is a bot, the bot is
``participant_1``; otherwise the smaller user id is.  Together with the
``uq_chat_participants`` constraint this allows at most one chat per pair.

Creation is attempted inside a SAVEPOINT.  When a concurrent caller wins
the race the insert hits the unique constraint, the savepoint is rolled
back and the now-existing row is returned, leaving the caller's outer
transaction usable.
"""

from __future__ import annotations

from typing import NamedTuple

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import InteractionValidationError, TargetNotFoundError
from app.models.chat import Chat, ChatStatus
from app.models.user import User

logger = structlog.get_logger("pairbond.chat_service")


class ChatCreation(NamedTuple):
    chat: Chat
    created: bool


def canonical_pair(user_a: User, user_b: User) -> tuple[int, int]:
    """Return ``(participant_1_id, participant_2_id)`` for two users."""
    if user_a.is_bot != user_b.is_bot:
        bot, other = (user_a, user_b) if user_a.is_bot else (user_b, user_a)
        return bot.id, other.id
    return (user_a.id, user_b.id) if user_a.id < user_b.id else (user_b.id, user_a.id)


class ChatIdentityResolver:
    """Deterministic find-or-create of pair chats."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_or_create(self, user_a: User, user_b: User) -> ChatCreation:
        """Return the pair's chat, creating it with zeroed state if absent."""
        if user_a.id == user_b.id:
            raise InteractionValidationError(
                "A chat needs two distinct users.",
                details={"user_id": user_a.id},
            )

        p1, p2 = canonical_pair(user_a, user_b)
        log = logger.bind(participant_1_id=p1, participant_2_id=p2)

        chat = await self._find(p1, p2)
        if chat is not None:
            return ChatCreation(chat=chat, created=False)

        chat = await self._try_insert(p1, p2)
        if chat is not None:
            log.info("chat_created", chat_id=chat.id)
            return ChatCreation(chat=chat, created=True)

        # Lost the insert race: the winner's row is committed by now.
        chat = await self._find(p1, p2)
        if chat is None:
            raise RuntimeError(
                f"Chat insert for ({p1}, {p2}) conflicted but no row was found"
            )
        log.info("chat_create_race_resolved", chat_id=chat.id)
        return ChatCreation(chat=chat, created=False)

    async def get_or_create_by_ids(self, user_a_id: int, user_b_id: int) -> ChatCreation:
        """Variant for callers that only hold ids (e.g. the chat subsystem)."""
        if user_a_id == user_b_id:
            raise InteractionValidationError(
                "A chat needs two distinct users.",
                details={"user_id": user_a_id},
            )
        users = {}
        for uid in (user_a_id, user_b_id):
            user = await self.session.get(User, uid)
            if user is None:
                raise TargetNotFoundError(f"User {uid} not found.", details={"user_id": uid})
            users[uid] = user
        return await self.get_or_create(users[user_a_id], users[user_b_id])

    async def find_for_pair(self, user_a: User, user_b: User) -> Chat | None:
        """Look up the pair's chat without creating it."""
        if user_a.id == user_b.id:
            return None
        return await self._find(*canonical_pair(user_a, user_b))

    async def _find(self, participant_1_id: int, participant_2_id: int) -> Chat | None:
        stmt = select(Chat).where(
            Chat.participant_1_id == participant_1_id,
            Chat.participant_2_id == participant_2_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _try_insert(self, participant_1_id: int, participant_2_id: int) -> Chat | None:
        """Insert a fresh chat; ``None`` means the pair already has one."""
        chat = Chat(
            participant_1_id=participant_1_id,
            participant_2_id=participant_2_id,
            last_message_id=None,
            last_message_time=None,
            unread_count_p1=0,
            unread_count_p2=0,
            is_pin_p1=False,
            is_pin_p2=False,
            is_block=False,
            chat_status_p1=ChatStatus.ACTIVE,
            chat_status_p2=ChatStatus.ACTIVE,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(chat)
        except IntegrityError:
            return None
        return chat
