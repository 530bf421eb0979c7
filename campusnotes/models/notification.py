"""Notification model — per-recipient in-app notifications."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from campusnotes.database import Base
from campusnotes.models.user import User, utcnow


class NotificationType(str, enum.Enum):
    NEW_NOTE = "new_note"
    NOTE_LIKED = "note_liked"
    POST_REPLY = "post_reply"
    POST_UPVOTE = "post_upvote"
    NOTE_DOWNLOADED = "note_downloaded"
    ADMIN_MESSAGE = "admin_message"


class RelatedType(str, enum.Enum):
    NOTE = "note"
    POST = "post"
    CHAT = "chat"


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_recipient_created", "recipient_id", "created_at"),
        Index("ix_notifications_recipient_read", "recipient_id", "is_read"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    recipient_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sender_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    type: Mapped[NotificationType] = mapped_column(Enum(NotificationType), nullable=False)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    message: Mapped[str] = mapped_column(String(500), nullable=False)

    # ── Typed payload reference ──
    related_type: Mapped[Optional[RelatedType]] = mapped_column(Enum(RelatedType))
    related_id: Mapped[Optional[int]] = mapped_column(Integer)

    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    sender: Mapped[Optional[User]] = relationship(
        "User", foreign_keys=[sender_id], lazy="raise"
    )
