"""
Pairbond: Match Notification Dispatch

The push subsystem lives outside this service.  On a newly formed bot
match we hand it a JSON payload on a Redis list; delivery, fan-out and
device tokens are its concern.

Dispatch is fire-and-forget: it is scheduled after the match transaction
commits, failures are logged and swallowed, and a match is never rolled
back because a notification could not be queued.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Protocol

import structlog

from app.config import get_settings

logger = structlog.get_logger("pairbond.notification_service")

MATCH_EVENT = "BOT_MATCH"


class NotificationDispatcher(Protocol):
    async def notify_match(
        self,
        actor_id: int,
        bot_id: int,
        chat_id: int | None,
        *,
        bot_name: str | None = None,
    ) -> None:
        ...


def build_match_payload(
    actor_id: int,
    bot_id: int,
    chat_id: int | None,
    bot_name: str | None = None,
) -> dict[str, Any]:
    """Assemble the push payload for a bot match."""
    name = (bot_name or "").strip() or "someone"
    return {
        "sender_id": bot_id,
        "receiver_id": actor_id,
        "type": "match",
        "title": "It's a Match!",
        "content": f"You matched with {name}. Start chatting now!",
        "data": {
            "event": MATCH_EVENT,
            "chat_id": chat_id,
            "target_user_id": bot_id,
            "target_type": "bot",
            "target_name": name,
        },
    }


class RedisNotificationDispatcher:
    """Queues match notifications on a Redis list for the push worker."""

    def __init__(self, redis_client: Any, queue_key: str | None = None) -> None:
        self.redis = redis_client
        self.queue_key = queue_key or get_settings().NOTIFICATION_QUEUE_KEY

    async def notify_match(
        self,
        actor_id: int,
        bot_id: int,
        chat_id: int | None,
        *,
        bot_name: str | None = None,
    ) -> None:
        payload = build_match_payload(actor_id, bot_id, chat_id, bot_name)
        await self.redis.lpush(self.queue_key, json.dumps(payload))
        logger.info(
            "match_notification_queued",
            actor_id=actor_id,
            bot_id=bot_id,
            chat_id=chat_id,
            queue=self.queue_key,
        )


class NullNotificationDispatcher:
    """Used when notifications are disabled or Redis is unavailable."""

    async def notify_match(
        self,
        actor_id: int,
        bot_id: int,
        chat_id: int | None,
        *,
        bot_name: str | None = None,
    ) -> None:
        logger.debug("match_notification_skipped", actor_id=actor_id, bot_id=bot_id)


# ──────────────────────────────────────────────────────────────────────────────
# Background scheduling
# ──────────────────────────────────────────────────────────────────────────────

_pending: set[asyncio.Task] = set()


async def _dispatch_safely(
    dispatcher: NotificationDispatcher,
    actor_id: int,
    bot_id: int,
    chat_id: int | None,
    bot_name: str | None,
) -> None:
    try:
        await dispatcher.notify_match(actor_id, bot_id, chat_id, bot_name=bot_name)
    except Exception:
        logger.exception(
            "notification_dispatch_failed",
            actor_id=actor_id,
            bot_id=bot_id,
            chat_id=chat_id,
        )


def schedule_match_notification(
    dispatcher: NotificationDispatcher,
    actor_id: int,
    bot_id: int,
    chat_id: int | None,
    bot_name: str | None = None,
) -> asyncio.Task:
    """Run the dispatch in the background and keep a reference until done."""
    task = asyncio.create_task(
        _dispatch_safely(dispatcher, actor_id, bot_id, chat_id, bot_name)
    )
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task


def pending_dispatch_count() -> int:
    return len(_pending)


async def drain_pending_dispatches(timeout: float = 5.0) -> None:
    """Wait for queued dispatches to finish; used on shutdown and in tests."""
    if not _pending:
        return
    done, not_done = await asyncio.wait(set(_pending), timeout=timeout)
    if not_done:
        logger.warning("notification_drain_timeout", remaining=len(not_done))
