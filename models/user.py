"""
Provides the User model: identity, plan tier and usage counters.

The row is the system of record for everything the quota guard decides on.
Session claims are never trusted for plan or usage; they are re-read here.

Attributes
----------
auth_subject : sqlalchemy.Column
    Subject claim of the identity provider's session token.
email : sqlalchemy.Column
    Unique email address; matched against the plan override list.
plan : sqlalchemy.Column
    Stored billing tier. ``None`` means the default tier.
messages_used_today : sqlalchemy.Column
    Messages consumed on ``last_reset_date`` in the anchor timezone.
last_reset_date : sqlalchemy.Column
    Local date (in ``reset_timezone``) the daily counter belongs to.
timezone : sqlalchemy.Column
    Display preference chosen by the user. Does not affect quota resets.
reset_timezone : sqlalchemy.Column
    Server-held anchor deciding day boundaries for the daily counter.
total_messages : sqlalchemy.Column
    Lifetime number of completed turns.
"""

from sqlalchemy import Boolean, Column, Date, Integer, String
from sqlalchemy.orm import relationship

from .base import BaseModel


class User(BaseModel):
    """
    Represents a user of the chat product.

    :ivar auth_subject: Identity-provider subject for the user.
    :type auth_subject: str
    :ivar email: Email address of the user. It must be unique.
    :type email: str
    :ivar name: Display name. Optional.
    :type name: str
    :ivar is_active: Indicates whether the user account is active.
    :type is_active: bool
    """

    __tablename__ = "users"

    auth_subject = Column(String(255), unique=True, nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(100))
    is_active = Column(Boolean, default=True, nullable=False)

    plan = Column(String(20), nullable=True)
    messages_used_today = Column(Integer, default=0, nullable=False)
    last_reset_date = Column(Date, nullable=True)
    timezone = Column(String(100), default="UTC", nullable=False)
    reset_timezone = Column(String(100), nullable=True)
    total_messages = Column(Integer, default=0, nullable=False)

    # Relationships
    chat_conversations = relationship(
        "ChatConversation", back_populates="user", cascade="all, delete-orphan"
    )
