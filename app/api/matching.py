"""
Pairbond: Interactions API

Like / reject / explicit bot match for the authenticated user, and the
paginated list of that user's matches.
"""

from __future__ import annotations

import math

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user_id, get_notification_dispatcher
from app.config import get_settings
from app.database import get_db
from app.exceptions import PairbondError
from app.schemas.interaction import (
    BotMatchResponse,
    InteractionRequest,
    LikeResponse,
    MatchedUser,
    MatchListItem,
    MatchListResponse,
    Pagination,
    RejectResponse,
)
from app.services.chat_service import ChatIdentityResolver
from app.services.interaction_store import InteractionStore
from app.services.match_engine import MatchEngine
from app.services.notification_service import NotificationDispatcher
from app.services.user_directory import UserDirectory

logger = structlog.get_logger("pairbond.api.matching")

router = APIRouter()


def _http_error(exc: PairbondError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


def _get_engine(
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> MatchEngine:
    return MatchEngine(db, notifier=notifier)


# ──────────────────────────────────────────────────────────────────────────────
# POST /like: Like a user
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/like",
    response_model=LikeResponse,
    summary="Like a user",
)
async def like_user(
    payload: InteractionRequest,
    actor_id: int = Depends(get_current_user_id),
    engine: MatchEngine = Depends(_get_engine),
) -> LikeResponse:
    """Like the target user.  Bots match instantly; real users match once
    both sides have liked each other."""
    try:
        result = await engine.like(actor_id, payload.target_user_id)
    except PairbondError as exc:
        logger.info(
            "like_refused",
            actor_id=actor_id,
            target_id=payload.target_user_id,
            reason=exc.message,
        )
        raise _http_error(exc) from exc

    return LikeResponse(
        is_match=result.is_match,
        chat_id=result.chat_id,
        target_user_id=result.target_user_id,
        target_type=result.target_type,
    )


# ──────────────────────────────────────────────────────────────────────────────
# POST /reject: Reject a user
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/reject",
    response_model=RejectResponse,
    summary="Reject a user",
)
async def reject_user(
    payload: InteractionRequest,
    actor_id: int = Depends(get_current_user_id),
    engine: MatchEngine = Depends(_get_engine),
) -> RejectResponse:
    """Reject the target user.  Repeating a reject is a no-op."""
    try:
        await engine.reject(actor_id, payload.target_user_id)
    except PairbondError as exc:
        logger.info(
            "reject_refused",
            actor_id=actor_id,
            target_id=payload.target_user_id,
            reason=exc.message,
        )
        raise _http_error(exc) from exc

    return RejectResponse()


# ──────────────────────────────────────────────────────────────────────────────
# POST /match: Explicit match with a bot
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/match",
    response_model=BotMatchResponse,
    summary="Match with a bot profile",
)
async def match_bot(
    payload: InteractionRequest,
    actor_id: int = Depends(get_current_user_id),
    engine: MatchEngine = Depends(_get_engine),
) -> BotMatchResponse:
    try:
        result = await engine.match_bot(actor_id, payload.target_user_id)
    except PairbondError as exc:
        raise _http_error(exc) from exc

    return BotMatchResponse(
        is_new_match=result.is_new_match,
        chat_id=result.chat_id,
        target_user_id=result.target_user_id,
    )


# ──────────────────────────────────────────────────────────────────────────────
# GET /matches: List the current user's matches
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/matches",
    response_model=MatchListResponse,
    summary="List matches of the current user",
)
async def list_matches(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    actor_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> MatchListResponse:
    """Return matched partners, most recent first, each with the pair's
    chat id when one exists."""
    max_limit = get_settings().MATCHES_PAGE_LIMIT_MAX
    if limit > max_limit:
        raise HTTPException(
            status_code=422,
            detail=f"limit must be <= {max_limit}",
        )

    log = logger.bind(user_id=actor_id)
    log.info("list_matches", page=page, limit=limit)

    directory = UserDirectory(db)
    me = await directory.get(actor_id)
    if me is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found.",
        )

    rows = await InteractionStore(db).list_matches(actor_id)
    partners = await directory.find_active_many([r.target_id for r in rows])
    rows = [r for r in rows if r.target_id in partners]

    total_items = len(rows)
    offset = (page - 1) * limit
    chats = ChatIdentityResolver(db)

    items: list[MatchListItem] = []
    for row in rows[offset:offset + limit]:
        partner = partners[row.target_id]
        chat = await chats.find_for_pair(me, partner)
        items.append(MatchListItem(
            user=MatchedUser.model_validate(partner),
            matched_at=row.updated_at or row.created_at,
            chat_id=chat.id if chat is not None else None,
        ))

    log.info("list_matches_complete", count=len(items), total=total_items)
    return MatchListResponse(
        matches=items,
        pagination=Pagination(
            page=page,
            limit=limit,
            total_items=total_items,
            total_pages=math.ceil(total_items / limit),
        ),
    )
