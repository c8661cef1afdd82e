"""
Pairbond: Chat model.

One row per unordered user pair.  ``participant_1_id`` is the bot when
exactly one side is a bot, otherwise the smaller user id.
"""

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class ChatStatus(str, enum.Enum):
    ACTIVE = "active"
    BLOCKED = "blocked"
    DELETED = "deleted"


def _chat_status_column() -> Mapped[ChatStatus]:
    return mapped_column(
        Enum(
            ChatStatus,
            name="chat_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        default=ChatStatus.ACTIVE,
        server_default=ChatStatus.ACTIVE.value,
        index=True,
        nullable=False,
    )


class Chat(Base):
    __tablename__ = "pb_chats"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        UniqueConstraint(
            "participant_1_id", "participant_2_id", name="uq_chat_participants"
        ),
        CheckConstraint(
            "participant_1_id <> participant_2_id", name="ck_chat_distinct_participants"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participant_1_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("pb_users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    participant_2_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("pb_users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    last_message_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_message_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), index=True, nullable=True
    )
    unread_count_p1: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    unread_count_p2: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    is_pin_p1: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    is_pin_p2: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    is_block: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    chat_status_p1: Mapped[ChatStatus] = _chat_status_column()
    chat_status_p2: Mapped[ChatStatus] = _chat_status_column()
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Chat {self.id} p1={self.participant_1_id} p2={self.participant_2_id}>"
