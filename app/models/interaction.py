"""
Pairbond: Directed user interaction model.

One row per ordered (actor, target) pair.  Row absence means the actor
has never acted on the target; rows are mutated in place, never deleted.
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
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class InteractionAction(str, enum.Enum):
    LIKE = "like"
    REJECT = "reject"
    MATCH = "match"


class UserInteraction(Base):
    __tablename__ = "pb_user_interactions"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        CheckConstraint("actor_id <> target_id", name="ck_interaction_not_self"),
        CheckConstraint(
            "(action = 'match') = is_mutual", name="ck_interaction_mutual_iff_match"
        ),
    )

    actor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("pb_users.id", ondelete="CASCADE"), primary_key=True
    )
    target_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("pb_users.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    action: Mapped[InteractionAction] = mapped_column(
        Enum(
            InteractionAction,
            name="interaction_action",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    is_mutual: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<UserInteraction {self.actor_id} -> {self.target_id} "
            f"action={self.action.value!r} mutual={self.is_mutual}>"
        )
