"""
Pairbond: Bearer session model.

Sessions are issued by the auth flow; this service only resolves them.
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, SmallInteger, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base

SESSION_STATUS_ACTIVE = 1
SESSION_STATUS_EXPIRED = 2


class UserSession(Base):
    __tablename__ = "pb_user_sessions"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("pb_users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    session_token: Mapped[str] = mapped_column(
        String(255), unique=True, index=True, nullable=False
    )
    status: Mapped[int] = mapped_column(
        SmallInteger,
        default=SESSION_STATUS_ACTIVE,
        server_default=str(SESSION_STATUS_ACTIVE),
        nullable=False,
        comment="1 active / 2 expired",
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_activity_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<UserSession user={self.user_id} status={self.status}>"
