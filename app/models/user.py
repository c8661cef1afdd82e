"""
Pairbond: User model.

Carries the three aggregate interaction counters that only the match
engine adjusts.
"""

import enum
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Enum, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class UserType(str, enum.Enum):
    BOT = "bot"
    REAL = "real"


class User(Base):
    __tablename__ = "pb_users"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        CheckConstraint("total_likes >= 0", name="ck_users_total_likes_non_negative"),
        CheckConstraint("total_matches >= 0", name="ck_users_total_matches_non_negative"),
        CheckConstraint("total_rejects >= 0", name="ck_users_total_rejects_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(
        String(50), unique=True, index=True, nullable=False
    )
    email: Mapped[str] = mapped_column(
        String(100), unique=True, index=True, nullable=False
    )
    type: Mapped[UserType] = mapped_column(
        Enum(
            UserType,
            name="user_type",
            values_callable=lambda e: [m.value for m in e],
        ),
        default=UserType.REAL,
        server_default=UserType.REAL.value,
        index=True,
        nullable=False,
    )
    avatar: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true", index=True, nullable=False
    )

    # ── Counters (owned by the counter ledger) ─────────────────────
    total_likes: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    total_matches: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    total_rejects: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    @property
    def is_bot(self) -> bool:
        return self.type == UserType.BOT

    def __repr__(self) -> str:
        return f"<User {self.username!r} id={self.id} type={self.type.value}>"
