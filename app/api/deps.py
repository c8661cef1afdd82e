"""
Pairbond: Shared API dependencies

Bearer-session resolution and the notification dispatcher used by the
match engine.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_db
from app.exceptions import AuthenticationError
from app.models.session import (
    SESSION_STATUS_ACTIVE,
    SESSION_STATUS_EXPIRED,
    UserSession,
)
from app.services.notification_service import (
    NotificationDispatcher,
    NullNotificationDispatcher,
    RedisNotificationDispatcher,
)

logger = structlog.get_logger("pairbond.api.deps")


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; treat them as UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


async def resolve_session(
    db: AsyncSession,
    authorization: str | None,
    now: datetime | None = None,
) -> int:
    """Return the user id behind ``Authorization: Bearer <token>``.

    Expired sessions are flagged (status 2) and refused; the sliding
    ``last_activity_at`` is refreshed once per ``SESSION_IDLE_MINUTES`` and
    committed at once, so a later rollback of the request does not undo it.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError("Missing or invalid Authorization header")

    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise AuthenticationError("Missing or invalid Authorization header")

    stmt = select(UserSession).where(
        UserSession.session_token == token,
        UserSession.status == SESSION_STATUS_ACTIVE,
    )
    session = (await db.execute(stmt)).scalar_one_or_none()
    if session is None:
        raise AuthenticationError("Invalid session")

    now = now or datetime.now(timezone.utc)

    if session.expires_at is not None and _as_aware(session.expires_at) < now:
        session.status = SESSION_STATUS_EXPIRED
        await db.commit()
        logger.info("session_expired", user_id=session.user_id)
        raise AuthenticationError("Session expired")

    idle = timedelta(minutes=get_settings().SESSION_IDLE_MINUTES)
    last = session.last_activity_at
    if idle > timedelta(0) and (last is None or now - _as_aware(last) >= idle):
        session.last_activity_at = now
        await db.commit()

    return session.user_id


async def get_current_user_id(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> int:
    """FastAPI dependency returning the authenticated user id (401 otherwise)."""
    try:
        return await resolve_session(db, request.headers.get("authorization"))
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
        ) from exc


def get_notification_dispatcher(request: Request) -> NotificationDispatcher:
    """Redis-backed dispatcher when notifications are on and Redis is up."""
    redis_client = getattr(request.app.state, "redis", None)
    if not get_settings().NOTIFICATIONS_ENABLED or redis_client is None:
        return NullNotificationDispatcher()
    return RedisNotificationDispatcher(redis_client)
