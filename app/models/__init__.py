"""
Pairbond: ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from app.models.user import User, UserType
from app.models.session import UserSession
from app.models.interaction import InteractionAction, UserInteraction
from app.models.chat import Chat, ChatStatus

__all__ = [
    "User",
    "UserType",
    "UserSession",
    "InteractionAction",
    "UserInteraction",
    "Chat",
    "ChatStatus",
]
