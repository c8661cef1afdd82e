"""Tests for the MatchEngine: like/reject transitions, counters and chats."""
import pytest
from unittest.mock import AsyncMock, patch
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.exceptions import (
    InteractionConflictError,
    InteractionValidationError,
    TargetNotFoundError,
)
from app.models.chat import Chat
from app.models.interaction import InteractionAction
from app.services.counter_ledger import CounterDelta, CounterLedger, CounterTotals
from app.services.interaction_store import InteractionState as S, InteractionStore
from app.services.match_engine import MatchEngine, decide_like, decide_reject
from app.services.notification_service import drain_pending_dispatches


async def _totals(session, user_id):
    return await CounterLedger(session).totals(user_id)


async def _row(session, actor_id, target_id):
    return await InteractionStore(session).get(actor_id, target_id)


async def _chats(session):
    return (await session.execute(select(Chat))).scalars().all()


@pytest.fixture
def notifier():
    mock = AsyncMock()
    mock.notify_match = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def engine(db_session, notifier):
    return MatchEngine(db_session, notifier=notifier)


# ──────────────────────────────────────────────────────────────────────────────
# Pure transition rules
# ──────────────────────────────────────────────────────────────────────────────

class TestDecideLike:

    def test_first_like_on_real_user(self):
        t = decide_like(S.NONE, S.NONE, target_is_bot=False)
        assert t.forward_action == InteractionAction.LIKE
        assert t.reverse_action is None
        assert t.actor_delta == CounterDelta(likes=1)
        assert t.target_delta == CounterDelta()
        assert not t.new_match

    def test_reciprocated_like_matches_both_sides(self):
        t = decide_like(S.NONE, S.LIKE, target_is_bot=False)
        assert t.forward_action == InteractionAction.MATCH
        assert t.reverse_action == InteractionAction.MATCH
        assert t.actor_delta == CounterDelta(likes=1, matches=1)
        assert t.target_delta == CounterDelta(matches=1)
        assert t.new_match

    def test_bot_target_is_instant_match(self):
        t = decide_like(S.NONE, S.NONE, target_is_bot=True)
        assert t.is_match and t.new_match

    def test_like_after_reject_swaps_counters(self):
        t = decide_like(S.REJECT, S.NONE, target_is_bot=False)
        assert t.actor_delta == CounterDelta(likes=1, rejects=-1)

    def test_reverse_reject_does_not_match(self):
        t = decide_like(S.NONE, S.REJECT, target_is_bot=False)
        assert t.forward_action == InteractionAction.LIKE

    @pytest.mark.parametrize("forward", [S.LIKE, S.MATCH])
    def test_duplicate_like_conflicts(self, forward):
        with pytest.raises(InteractionConflictError):
            decide_like(forward, S.NONE, target_is_bot=False)

    def test_existing_like_promoted_when_allowed(self):
        t = decide_like(S.LIKE, S.NONE, target_is_bot=True, allow_existing_like=True)
        assert t.actor_delta == CounterDelta(matches=1)
        assert t.new_match


class TestDecideReject:

    def test_repeat_reject_is_noop(self):
        assert decide_reject(S.REJECT, S.LIKE) is None

    def test_first_reject(self):
        t = decide_reject(S.NONE, S.NONE)
        assert t.forward_action == InteractionAction.REJECT
        assert t.actor_delta == CounterDelta(rejects=1)
        assert t.reverse_action is None

    def test_reject_after_like(self):
        t = decide_reject(S.LIKE, S.REJECT)
        assert t.actor_delta == CounterDelta(likes=-1, rejects=1)
        assert not t.broke_match

    def test_reject_breaks_match(self):
        t = decide_reject(S.MATCH, S.MATCH)
        assert t.reverse_action == InteractionAction.LIKE
        assert t.actor_delta == CounterDelta(likes=-1, matches=-1, rejects=1)
        assert t.target_delta == CounterDelta(matches=-1)
        assert t.broke_match


# ──────────────────────────────────────────────────────────────────────────────
# Engine against a real schema
# ──────────────────────────────────────────────────────────────────────────────

class TestLikeBot:

    @pytest.mark.asyncio
    async def test_like_bot_is_instant_match_with_bot_first_chat(
        self, db_session, make_user, engine, notifier
    ):
        """a=1 real, b=2 bot: is_match, chat (p1=2, p2=1), total_matches[1]=1."""
        await make_user(1)
        await make_user(2, bot=True)

        result = await engine.like(1, 2)
        await drain_pending_dispatches()

        assert result.is_match is True
        assert result.chat_id is not None
        chats = await _chats(db_session)
        assert len(chats) == 1
        assert (chats[0].participant_1_id, chats[0].participant_2_id) == (2, 1)
        assert chats[0].id == result.chat_id
        assert await _totals(db_session, 1) == CounterTotals(likes=1, matches=1, rejects=0)
        assert (await _totals(db_session, 2)).matches == 1

        for actor, target in ((1, 2), (2, 1)):
            row = await _row(db_session, actor, target)
            assert row.action == InteractionAction.MATCH and row.is_mutual is True

        notifier.notify_match.assert_awaited_once_with(
            1, 2, result.chat_id, bot_name="bot_2"
        )

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_undo_match(
        self, db_session, make_user, engine, notifier
    ):
        await make_user(1)
        await make_user(2, bot=True)
        notifier.notify_match.side_effect = RuntimeError("push queue down")

        result = await engine.like(1, 2)
        await drain_pending_dispatches()

        assert result.is_match is True
        assert (await _row(db_session, 1, 2)).action == InteractionAction.MATCH
        assert (await _totals(db_session, 1)).matches == 1

    @pytest.mark.asyncio
    async def test_real_match_does_not_notify(self, db_session, make_user, engine, notifier):
        await make_user(1)
        await make_user(3)

        await engine.like(1, 3)
        await engine.like(3, 1)
        await drain_pending_dispatches()

        notifier.notify_match.assert_not_awaited()


class TestLikeRealUsers:

    @pytest.mark.asyncio
    async def test_mutual_like_scenario(self, db_session, make_user, engine):
        """a=1, b=3 real: like(1->3) no match; like(3->1) match; both total_matches=1."""
        await make_user(1)
        await make_user(3)

        first = await engine.like(1, 3)
        assert first.is_match is False
        assert first.chat_id is None
        assert await _chats(db_session) == []

        second = await engine.like(3, 1)
        assert second.is_match is True
        assert second.chat_id is not None

        for actor, target in ((1, 3), (3, 1)):
            row = await _row(db_session, actor, target)
            assert row.action == InteractionAction.MATCH
            assert row.is_mutual is True

        assert await _totals(db_session, 1) == CounterTotals(likes=1, matches=1, rejects=0)
        assert await _totals(db_session, 3) == CounterTotals(likes=1, matches=1, rejects=0)

        chats = await _chats(db_session)
        assert len(chats) == 1
        assert (chats[0].participant_1_id, chats[0].participant_2_id) == (1, 3)

    @pytest.mark.asyncio
    async def test_duplicate_like_is_conflict_without_writes(
        self, db_session, make_user, engine
    ):
        await make_user(1)
        await make_user(3)
        await engine.like(1, 3)

        with pytest.raises(InteractionConflictError):
            await engine.like(1, 3)

        assert await _totals(db_session, 1) == CounterTotals(likes=1, matches=0, rejects=0)

    @pytest.mark.asyncio
    async def test_like_when_already_matched_is_conflict(self, db_session, make_user, engine):
        await make_user(1)
        await make_user(2, bot=True)
        await engine.like(1, 2)

        with pytest.raises(InteractionConflictError):
            await engine.like(1, 2)
        assert (await _totals(db_session, 1)).matches == 1

    @pytest.mark.asyncio
    async def test_like_after_reject(self, db_session, make_user, engine):
        await make_user(1)
        await make_user(3)
        await engine.reject(1, 3)

        result = await engine.like(1, 3)

        assert result.is_match is False
        assert await _totals(db_session, 1) == CounterTotals(likes=1, matches=0, rejects=0)


class TestValidation:

    @pytest.mark.asyncio
    async def test_self_target(self, make_user, engine):
        await make_user(1)
        with pytest.raises(InteractionValidationError):
            await engine.like(1, 1)
        with pytest.raises(InteractionValidationError):
            await engine.reject(1, 1)

    @pytest.mark.asyncio
    async def test_missing_target(self, make_user, engine):
        await make_user(1)
        with pytest.raises(TargetNotFoundError):
            await engine.like(1, 42)
        with pytest.raises(TargetNotFoundError):
            await engine.reject(1, 42)

    @pytest.mark.asyncio
    async def test_inactive_target(self, db_session, make_user, engine):
        await make_user(1)
        await make_user(3, is_active=False)

        with pytest.raises(TargetNotFoundError):
            await engine.like(1, 3)
        assert await _row(db_session, 1, 3) is None


class TestReject:

    @pytest.mark.asyncio
    async def test_reject_is_idempotent(self, db_session, make_user, engine):
        await make_user(1)
        await make_user(3)

        first = await engine.reject(1, 3)
        second = await engine.reject(1, 3)
        third = await engine.reject(1, 3)

        assert first.changed is True
        assert second.changed is False and third.changed is False
        assert await _totals(db_session, 1) == CounterTotals(likes=0, matches=0, rejects=1)
        row = await _row(db_session, 1, 3)
        assert row.action == InteractionAction.REJECT and row.is_mutual is False

    @pytest.mark.asyncio
    async def test_reject_after_like_moves_counter(self, db_session, make_user, engine):
        await make_user(1)
        await make_user(3)
        await engine.like(1, 3)

        await engine.reject(1, 3)

        assert await _totals(db_session, 1) == CounterTotals(likes=0, matches=0, rejects=1)

    @pytest.mark.asyncio
    async def test_reject_breaks_match(self, db_session, make_user, engine):
        """Continuing the mutual scenario: reject(1->3) unmatches both users."""
        await make_user(1)
        await make_user(3)
        await engine.like(1, 3)
        await engine.like(3, 1)
        chat_count = len(await _chats(db_session))

        result = await engine.reject(1, 3)

        assert result.broke_match is True
        assert (await _totals(db_session, 1)).matches == 0
        assert (await _totals(db_session, 3)).matches == 0
        assert await _totals(db_session, 1) == CounterTotals(likes=0, matches=0, rejects=1)

        reverse = await _row(db_session, 3, 1)
        assert reverse.action == InteractionAction.LIKE
        assert reverse.is_mutual is False
        forward = await _row(db_session, 1, 3)
        assert forward.action == InteractionAction.REJECT

        # Chats are left to the chat subsystem.
        assert len(await _chats(db_session)) == chat_count

    @pytest.mark.asyncio
    async def test_rematch_after_break_reuses_chat(self, db_session, make_user, engine):
        await make_user(1)
        await make_user(3)
        await engine.like(1, 3)
        original = await engine.like(3, 1)
        await engine.reject(1, 3)

        again = await engine.like(1, 3)

        assert again.is_match is True
        assert again.chat_id == original.chat_id
        assert len(await _chats(db_session)) == 1
        assert (await _totals(db_session, 1)).matches == 1
        assert (await _totals(db_session, 3)).matches == 1

    @pytest.mark.asyncio
    async def test_reject_bot_match(self, db_session, make_user, engine):
        await make_user(1)
        await make_user(2, bot=True)
        await engine.like(1, 2)

        await engine.reject(1, 2)

        assert (await _row(db_session, 2, 1)).action == InteractionAction.LIKE
        assert (await _totals(db_session, 1)).matches == 0
        assert (await _totals(db_session, 2)).matches == 0


class TestCountersNeverNegative:

    @pytest.mark.asyncio
    async def test_long_sequence_keeps_counters_non_negative(
        self, db_session, make_user, engine
    ):
        await make_user(1)
        await make_user(2, bot=True)
        await make_user(3)

        steps = [
            ("reject", 1, 3), ("like", 1, 3), ("reject", 1, 3), ("reject", 3, 1),
            ("like", 3, 1), ("like", 1, 3), ("reject", 3, 1), ("like", 1, 2),
            ("reject", 1, 2), ("like", 1, 2), ("reject", 1, 2), ("reject", 1, 2),
        ]
        for op, actor, target in steps:
            try:
                await getattr(engine, op)(actor, target)
            except InteractionConflictError:
                pass
            for uid in (1, 2, 3):
                totals = await _totals(db_session, uid)
                assert min(totals.likes, totals.matches, totals.rejects) >= 0


class TestMatchBot:

    @pytest.mark.asyncio
    async def test_explicit_match_then_repeat(self, db_session, make_user, engine):
        await make_user(1)
        await make_user(2, bot=True)

        first = await engine.match_bot(1, 2)
        second = await engine.match_bot(1, 2)

        assert first.is_new_match is True
        assert second.is_new_match is False
        assert second.chat_id == first.chat_id
        assert (await _totals(db_session, 1)).matches == 1

    @pytest.mark.asyncio
    async def test_explicit_match_requires_bot(self, make_user, engine):
        await make_user(1)
        await make_user(3)
        with pytest.raises(InteractionValidationError):
            await engine.match_bot(1, 3)


class TestAtomicity:

    @pytest.mark.asyncio
    async def test_storage_failure_rolls_back_everything(
        self, db_session, make_user, engine, notifier
    ):
        await make_user(1)
        await make_user(2, bot=True)

        with patch.object(
            engine.chats,
            "get_or_create",
            side_effect=OperationalError("INSERT", {}, Exception("disk I/O error")),
        ):
            with pytest.raises(OperationalError):
                await engine.like(1, 2)
        await drain_pending_dispatches()

        assert await _row(db_session, 1, 2) is None
        assert await _row(db_session, 2, 1) is None
        assert await _totals(db_session, 1) == CounterTotals(likes=0, matches=0, rejects=0)
        assert await _totals(db_session, 2) == CounterTotals(likes=0, matches=0, rejects=0)
        count = (await db_session.execute(select(func.count()).select_from(Chat))).scalar_one()
        assert count == 0
        notifier.notify_match.assert_not_awaited()
