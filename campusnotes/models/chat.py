"""Chat models — semester/general room messages, reactions and read receipts."""

import enum
from datetime import datetime
from typing import List, Optional

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from campusnotes.database import Base
from campusnotes.models.user import User, utcnow

TOMBSTONE = "This message was deleted"


class MessageKind(str, enum.Enum):
    TEXT = "text"
    FILE = "file"
    IMAGE = "image"


class ChatMessage(Base):
    """
    A message posted to ``general`` or to one semester room.
    ``room`` stores the bare tag ("general" or "1".."8"), never the channel name.
    """
    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("ix_chat_messages_room_created", "room", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    room: Mapped[str] = mapped_column(String(10), nullable=False)
    sender_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    body: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[MessageKind] = mapped_column(Enum(MessageKind), default=MessageKind.TEXT)
    file_url: Mapped[Optional[str]] = mapped_column(String(500))
    file_name: Mapped[Optional[str]] = mapped_column(String(255))
    reply_to_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("chat_messages.id", ondelete="SET NULL")
    )

    is_edited: Mapped[bool] = mapped_column(Boolean, default=False)
    edited_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True
    )

    # ── Relationships ──
    sender: Mapped[User] = relationship("User", lazy="raise")
    reply_to: Mapped[Optional["ChatMessage"]] = relationship(
        "ChatMessage", remote_side=[id], lazy="raise"
    )
    reactions: Mapped[List["ChatReaction"]] = relationship(
        "ChatReaction",
        order_by="ChatReaction.id",
        cascade="all, delete-orphan",
        lazy="raise",
    )


class ChatReaction(Base):
    """One (user, emoji) pair on a message. The triple is unique."""
    __tablename__ = "chat_reactions"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", "emoji", name="uq_chat_reaction"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    message_id: Mapped[int] = mapped_column(
        ForeignKey("chat_messages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    emoji: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )


class ChatReadReceipt(Base):
    __tablename__ = "chat_read_receipts"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_chat_read_receipt"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    message_id: Mapped[int] = mapped_column(
        ForeignKey("chat_messages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    read_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
