"""
Pairbond: Match Engine

Turns a ``like`` or ``reject`` between two users into a persisted,
mutually consistent relationship:

  1. Validate the request (self-target, target exists and is active).
  2. Lock the pair (users rows, then both interaction rows, in a fixed
     global order) and read the forward/reverse states.
  3. Decide the transition with a pure function of those states.
  4. Apply interaction writes, counter deltas and chat creation inside
     one transaction, then commit.
  5. After commit, schedule the bot-match push notification.

State per directed pair: none -> like -> match, and independently
-> reject.  Neither match nor reject is terminal.

Counter rules (acting user unless stated):
  like:   none -> +1 like;  reject -> +1 like, -1 reject;
          a newly formed match -> +1 match for BOTH users.
  reject: like/match -> -1 like, +1 reject;  none -> +1 reject;
          breaking a match -> -1 match for BOTH users;
          reject -> no-op (idempotent).
All decrements are floored at zero by the counter ledger.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import (
    InteractionConflictError,
    InteractionValidationError,
    TargetNotFoundError,
)
from app.models.interaction import InteractionAction
from app.models.user import User, UserType
from app.services.chat_service import ChatIdentityResolver
from app.services.counter_ledger import CounterDelta, CounterLedger
from app.services.interaction_store import InteractionState, InteractionStore, state_of
from app.services.notification_service import (
    NotificationDispatcher,
    NullNotificationDispatcher,
    schedule_match_notification,
)
from app.services.user_directory import UserDirectory

logger = structlog.get_logger("pairbond.match_engine")


# ──────────────────────────────────────────────────────────────────────────────
# Transitions
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Transition:
    """What a like/reject does to one pair.

    ``reverse_action`` of ``None`` leaves the reverse row untouched.
    """

    forward_action: InteractionAction
    reverse_action: InteractionAction | None = None
    actor_delta: CounterDelta = field(default_factory=CounterDelta)
    target_delta: CounterDelta = field(default_factory=CounterDelta)
    new_match: bool = False
    broke_match: bool = False

    @property
    def is_match(self) -> bool:
        return self.forward_action == InteractionAction.MATCH


def decide_like(
    forward: InteractionState,
    reverse: InteractionState,
    target_is_bot: bool,
    allow_existing_like: bool = False,
) -> Transition:
    """Decide the outcome of ``actor`` liking ``target``.

    Raises ``InteractionConflictError`` when the actor already likes or is
    matched with the target (unless ``allow_existing_like`` lets an
    existing like be promoted, as the explicit bot-match endpoint does).
    """
    if forward == InteractionState.NONE:
        actor_delta = CounterDelta(likes=1)
    elif forward == InteractionState.REJECT:
        actor_delta = CounterDelta(likes=1, rejects=-1)
    elif forward == InteractionState.LIKE:
        if not allow_existing_like:
            raise InteractionConflictError(
                "You have already liked this user.",
                details={"state": forward.value},
            )
        actor_delta = CounterDelta()
    elif forward == InteractionState.MATCH:
        raise InteractionConflictError(
            "You are already matched with this user.",
            details={"state": forward.value},
        )
    else:
        raise AssertionError(f"Unhandled forward state {forward!r}")

    if reverse in (InteractionState.NONE, InteractionState.REJECT):
        reciprocated = False
    elif reverse in (InteractionState.LIKE, InteractionState.MATCH):
        reciprocated = True
    else:
        raise AssertionError(f"Unhandled reverse state {reverse!r}")

    if not (target_is_bot or reciprocated):
        return Transition(
            forward_action=InteractionAction.LIKE,
            actor_delta=actor_delta,
        )

    new_match = not (
        forward == InteractionState.MATCH and reverse == InteractionState.MATCH
    )
    match_delta = CounterDelta(matches=1) if new_match else CounterDelta()
    return Transition(
        forward_action=InteractionAction.MATCH,
        reverse_action=InteractionAction.MATCH,
        actor_delta=actor_delta + match_delta,
        target_delta=match_delta,
        new_match=new_match,
    )


def decide_reject(
    forward: InteractionState,
    reverse: InteractionState,
) -> Transition | None:
    """Decide the outcome of ``actor`` rejecting ``target``.

    Returns ``None`` when the actor already rejects the target.
    """
    if forward == InteractionState.REJECT:
        return None
    if forward == InteractionState.NONE:
        actor_delta = CounterDelta(rejects=1)
    elif forward in (InteractionState.LIKE, InteractionState.MATCH):
        actor_delta = CounterDelta(likes=-1, rejects=1)
    else:
        raise AssertionError(f"Unhandled forward state {forward!r}")

    was_matched = InteractionState.MATCH in (forward, reverse)
    if not was_matched:
        return Transition(
            forward_action=InteractionAction.REJECT,
            actor_delta=actor_delta,
        )

    # The other side's like survives the break.
    reverse_action = (
        InteractionAction.LIKE if reverse != InteractionState.NONE else None
    )
    return Transition(
        forward_action=InteractionAction.REJECT,
        reverse_action=reverse_action,
        actor_delta=actor_delta + CounterDelta(matches=-1),
        target_delta=CounterDelta(matches=-1),
        broke_match=True,
    )


# ──────────────────────────────────────────────────────────────────────────────
# Results
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class LikeResult:
    target_user_id: int
    target_type: UserType
    is_match: bool
    is_new_match: bool
    chat_id: int | None = None


@dataclass(frozen=True)
class RejectResult:
    target_user_id: int
    changed: bool
    broke_match: bool = False


# ──────────────────────────────────────────────────────────────────────────────
# Engine
# ──────────────────────────────────────────────────────────────────────────────

class MatchEngine:
    """Like/reject state machine over one ``AsyncSession``.

    The engine owns the transaction boundary of each operation: it commits
    on success and rolls back on any error, so a failure leaves no partial
    interaction, counter or chat state behind.
    """

    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self.session = session
        self.users = UserDirectory(session)
        self.store = InteractionStore(session)
        self.ledger = CounterLedger(session)
        self.chats = ChatIdentityResolver(session)
        self.notifier = notifier or NullNotificationDispatcher()

    # ── Public API ────────────────────────────────────────────────────────

    async def like(self, actor_id: int, target_id: int) -> LikeResult:
        """Record ``actor_id`` liking ``target_id``.

        A like on a bot is an instant match; a like on a real user matches
        only when that user already likes the actor.

        Returns
        -------
        LikeResult
            ``is_match`` and the pair's ``chat_id`` when a match formed.
        """
        log = logger.bind(actor_id=actor_id, target_id=target_id)
        log.info("like_start")

        try:
            actor, target = await self._load_pair(actor_id, target_id)
            forward, reverse = await self._lock_states(actor_id, target_id)
            transition = decide_like(forward, reverse, target_is_bot=target.is_bot)
            result = await self._apply_like(actor, target, transition)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        self._after_commit(actor, target, result)
        log.info(
            "like_complete",
            is_match=result.is_match,
            is_new_match=result.is_new_match,
            chat_id=result.chat_id,
        )
        return result

    async def match_bot(self, actor_id: int, target_id: int) -> LikeResult:
        """Explicitly match ``actor_id`` with the bot ``target_id``.

        Unlike :meth:`like`, an existing match is not an error: the call
        returns ``is_new_match=False`` with the pair's chat.
        """
        log = logger.bind(actor_id=actor_id, target_id=target_id)
        log.info("match_bot_start")

        try:
            actor, target = await self._load_pair(actor_id, target_id)
            if not target.is_bot:
                raise InteractionValidationError(
                    "You can only match directly with bot profiles.",
                    details={"target_user_id": target_id},
                )
            forward, reverse = await self._lock_states(actor_id, target_id)

            if forward == InteractionState.MATCH:
                if reverse != InteractionState.MATCH:
                    await self.store.upsert(
                        target.id, actor.id, InteractionAction.MATCH, True
                    )
                creation = await self.chats.get_or_create(actor, target)
                result = LikeResult(
                    target_user_id=target.id,
                    target_type=target.type,
                    is_match=True,
                    is_new_match=False,
                    chat_id=creation.chat.id,
                )
            else:
                transition = decide_like(
                    forward, reverse, target_is_bot=True, allow_existing_like=True
                )
                result = await self._apply_like(actor, target, transition)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        self._after_commit(actor, target, result)
        log.info("match_bot_complete", is_new_match=result.is_new_match)
        return result

    async def reject(self, actor_id: int, target_id: int) -> RejectResult:
        """Record ``actor_id`` rejecting ``target_id``.

        Idempotent: rejecting an already rejected user changes nothing.
        Rejecting a matched user breaks the match; the other side's row
        drops back to ``like`` and both match counters decrease.  Chats are
        left untouched.
        """
        log = logger.bind(actor_id=actor_id, target_id=target_id)
        log.info("reject_start")

        try:
            actor, target = await self._load_pair(actor_id, target_id)
            forward, reverse = await self._lock_states(actor_id, target_id)
            transition = decide_reject(forward, reverse)

            if transition is None:
                await self.session.commit()
                log.info("reject_noop", reason="already_rejected")
                return RejectResult(target_user_id=target.id, changed=False)

            await self._apply(actor, target, transition)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        if transition.broke_match:
            log.info("match_broken")
        log.info("reject_complete")
        return RejectResult(
            target_user_id=target.id,
            changed=True,
            broke_match=transition.broke_match,
        )

    # ── Internals ─────────────────────────────────────────────────────────

    async def _load_pair(self, actor_id: int, target_id: int) -> tuple[User, User]:
        if actor_id == target_id:
            raise InteractionValidationError(
                "You cannot interact with yourself.",
                details={"target_user_id": target_id},
            )

        target = await self.users.find_active(target_id)
        if target is None:
            raise TargetNotFoundError(
                "Target user not found or inactive.",
                details={"target_user_id": target_id},
            )

        actor = await self.users.get(actor_id)
        if actor is None:
            raise InteractionValidationError(
                "Acting user does not exist.",
                details={"actor_id": actor_id},
            )
        return actor, target

    async def _lock_states(
        self, actor_id: int, target_id: int
    ) -> tuple[InteractionState, InteractionState]:
        forward_row, reverse_row = await self.store.lock_pair(actor_id, target_id)
        return state_of(forward_row), state_of(reverse_row)

    async def _apply(self, actor: User, target: User, transition: Transition) -> None:
        await self.store.upsert(
            actor.id,
            target.id,
            transition.forward_action,
            transition.forward_action == InteractionAction.MATCH,
        )
        if transition.reverse_action is not None:
            await self.store.upsert(
                target.id,
                actor.id,
                transition.reverse_action,
                transition.reverse_action == InteractionAction.MATCH,
            )
        await self.ledger.adjust(actor.id, transition.actor_delta)
        await self.ledger.adjust(target.id, transition.target_delta)

    async def _apply_like(
        self, actor: User, target: User, transition: Transition
    ) -> LikeResult:
        await self._apply(actor, target, transition)

        chat_id = None
        if transition.new_match:
            creation = await self.chats.get_or_create(actor, target)
            chat_id = creation.chat.id
            logger.info(
                "match_formed",
                actor_id=actor.id,
                target_id=target.id,
                target_type=target.type.value,
                chat_id=chat_id,
                chat_created=creation.created,
            )

        return LikeResult(
            target_user_id=target.id,
            target_type=target.type,
            is_match=transition.is_match,
            is_new_match=transition.new_match,
            chat_id=chat_id,
        )

    def _after_commit(self, actor: User, target: User, result: LikeResult) -> None:
        if result.is_new_match and target.is_bot:
            schedule_match_notification(
                self.notifier,
                actor_id=actor.id,
                bot_id=target.id,
                chat_id=result.chat_id,
                bot_name=target.username,
            )
