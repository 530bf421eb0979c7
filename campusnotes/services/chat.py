"""
Chat service — persistence side of the message broker.

Every operation authorizes the room first, then validates, then writes.
Errors are raised from ``campusnotes.errors`` and nothing is written when
one is raised. Broadcasting is left to the socket layer.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, delete, desc, exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from campusnotes.config import settings
from campusnotes.database import clamp_page, insert_ignore
from campusnotes.errors import AuthorizationError, NotFoundError, ValidationError
from campusnotes.models.chat import TOMBSTONE, ChatMessage, ChatReaction, ChatReadReceipt, MessageKind
from campusnotes.models.user import utcnow
from campusnotes.realtime.rooms import ConnectionUser, authorize

logger = logging.getLogger(__name__)

MAX_EMOJI_LENGTH = 16


# ═══════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def require_room(user: ConnectionUser, room) -> str:
    """Return the stored room tag, or raise if ``user`` may not use it."""
    tag = authorize(user, room)
    if tag is None:
        logger.warning("User %s denied access to room %r", user.id, room)
        raise AuthorizationError("Access denied to this room")
    return tag


def validate_body(body) -> str:
    body = (body or "").strip()
    if not body:
        raise ValidationError("Message cannot be empty")
    if len(body) > settings.CHAT_MAX_MESSAGE_LENGTH:
        raise ValidationError(
            f"Message cannot exceed {settings.CHAT_MAX_MESSAGE_LENGTH} characters"
        )
    return body


def validate_emoji(emoji) -> str:
    emoji = (emoji or "").strip()
    if (
        not emoji
        or len(emoji) > MAX_EMOJI_LENGTH
        or any(ch.isspace() for ch in emoji)
        or emoji.isascii()
    ):
        raise ValidationError("Invalid emoji")
    return emoji


def _message_query():
    return select(ChatMessage).options(
        selectinload(ChatMessage.sender),
        selectinload(ChatMessage.reply_to).selectinload(ChatMessage.sender),
        selectinload(ChatMessage.reactions),
    )


async def get_message(db: AsyncSession, message_id: int) -> ChatMessage:
    """Load a message with sender, reply preview and reactions resolved."""
    result = await db.execute(
        _message_query()
        .where(ChatMessage.id == message_id)
        .execution_options(populate_existing=True)
    )
    message = result.scalar_one_or_none()
    if message is None:
        raise NotFoundError("Message not found")
    return message


# ═══════════════════════════════════════════════════════════════
#  Serialization
# ═══════════════════════════════════════════════════════════════

def serialize_reaction(reaction: ChatReaction) -> dict:
    return {
        "userId": reaction.user_id,
        "emoji": reaction.emoji,
        "createdAt": iso(reaction.created_at),
    }


def serialize_message(message: ChatMessage) -> dict:
    """The fully resolved message pushed to clients and returned by history."""
    sender = message.sender
    reply = None
    if message.reply_to is not None:
        reply = {
            "id": message.reply_to.id,
            "message": message.reply_to.body,
            "sender": {
                "id": message.reply_to.sender.id,
                "name": message.reply_to.sender.full_name,
            },
        }
    return {
        "id": message.id,
        "room": message.room,
        "sender": {
            "id": sender.id,
            "name": sender.full_name,
            "avatar": sender.avatar_url,
        },
        "message": message.body,
        "messageType": message.kind.value,
        "fileUrl": message.file_url,
        "fileName": message.file_name,
        "replyTo": reply,
        "isEdited": message.is_edited,
        "editedAt": iso(message.edited_at),
        "isDeleted": message.is_deleted,
        "reactions": [serialize_reaction(r) for r in message.reactions],
        "createdAt": iso(message.created_at),
    }


# ═══════════════════════════════════════════════════════════════
#  Broker operations
# ═══════════════════════════════════════════════════════════════

async def send_message(
    db: AsyncSession,
    user: ConnectionUser,
    room,
    body,
    kind: str = "text",
    reply_to: Optional[int] = None,
    file_url: Optional[str] = None,
    file_name: Optional[str] = None,
) -> ChatMessage:
    tag = require_room(user, room)
    body = validate_body(body)
    try:
        kind = MessageKind(kind or MessageKind.TEXT)
    except ValueError:
        raise ValidationError("Invalid message type")

    if reply_to is not None:
        original = await db.get(ChatMessage, reply_to)
        # Replies never quote across rooms
        if original is None or original.room != tag:
            raise NotFoundError("Original message not found")

    message = ChatMessage(
        room=tag,
        sender_id=user.id,
        body=body,
        kind=kind,
        file_url=file_url,
        file_name=file_name,
        reply_to_id=reply_to,
    )
    db.add(message)
    await db.commit()
    return await get_message(db, message.id)


async def edit_message(
    db: AsyncSession,
    user: ConnectionUser,
    message_id: int,
    new_body,
    now: Optional[datetime] = None,
) -> ChatMessage:
    message = await get_message(db, message_id)
    require_room(user, message.room)
    if message.sender_id != user.id:
        raise AuthorizationError("You can only edit your own messages")
    if message.is_deleted:
        raise ValidationError("Cannot edit a deleted message")

    now = now or utcnow()
    window = timedelta(minutes=settings.CHAT_EDIT_WINDOW_MINUTES)
    if now - as_utc(message.created_at) > window:
        raise AuthorizationError("Edit window expired")

    message.body = validate_body(new_body)
    message.is_edited = True
    message.edited_at = now
    await db.commit()
    return await get_message(db, message_id)


async def delete_message(db: AsyncSession, user: ConnectionUser, message_id: int) -> ChatMessage:
    """Soft delete: the row stays, the body becomes the tombstone."""
    message = await get_message(db, message_id)
    require_room(user, message.room)
    if message.sender_id != user.id and not user.is_admin:
        raise AuthorizationError("You can only delete your own messages")

    if not message.is_deleted:
        message.is_deleted = True
        message.body = TOMBSTONE
        await db.commit()
    return message


async def list_reactions(db: AsyncSession, message_id: int) -> List[ChatReaction]:
    result = await db.execute(
        select(ChatReaction)
        .where(ChatReaction.message_id == message_id)
        .order_by(ChatReaction.id)
    )
    return list(result.scalars().all())


async def toggle_reaction(
    db: AsyncSession,
    user: ConnectionUser,
    message_id: int,
    emoji,
) -> Tuple[ChatMessage, List[ChatReaction], bool]:
    """
    Add the (user, emoji) pair if absent, remove it if present.

    Returns the message, its reactions in insertion order, and whether
    the pair was added.
    """
    emoji = validate_emoji(emoji)
    message = await get_message(db, message_id)
    require_room(user, message.room)
    if message.is_deleted:
        raise ValidationError("Cannot react to a deleted message")

    removed = await db.execute(
        delete(ChatReaction).where(
            ChatReaction.message_id == message_id,
            ChatReaction.user_id == user.id,
            ChatReaction.emoji == emoji,
        )
    )
    added = removed.rowcount == 0
    if added:
        await db.execute(
            insert_ignore(db, ChatReaction, [{
                "message_id": message_id,
                "user_id": user.id,
                "emoji": emoji,
                "created_at": utcnow(),
            }])
        )
    await db.commit()
    return message, await list_reactions(db, message_id), added


# ═══════════════════════════════════════════════════════════════
#  History & read state
# ═══════════════════════════════════════════════════════════════

async def get_history(
    db: AsyncSession,
    user: ConnectionUser,
    room,
    page: Optional[int] = None,
    limit: Optional[int] = None,
) -> Tuple[List[ChatMessage], Dict[str, int]]:
    """
    One page of a room, oldest first within the page.

    Page 1 holds the newest messages. Soft-deleted messages are included
    with their tombstone body.
    """
    tag = require_room(user, room)
    page, limit = clamp_page(page, limit, settings.CHAT_PAGE_SIZE, settings.CHAT_MAX_PAGE_SIZE)

    total = (await db.execute(
        select(func.count(ChatMessage.id)).where(ChatMessage.room == tag)
    )).scalar() or 0

    result = await db.execute(
        _message_query()
        .where(ChatMessage.room == tag)
        .order_by(desc(ChatMessage.created_at), desc(ChatMessage.id))
        .offset((page - 1) * limit)
        .limit(limit)
    )
    messages = list(result.scalars().all())
    messages.reverse()  # chronological order for UI display

    pagination = {
        "currentPage": page,
        "limit": limit,
        "totalPages": (total + limit - 1) // limit,
        "totalMessages": total,
    }
    return messages, pagination


def _unread_clause(user: ConnectionUser, tag: str):
    receipt = exists().where(
        ChatReadReceipt.message_id == ChatMessage.id,
        ChatReadReceipt.user_id == user.id,
    )
    return and_(
        ChatMessage.room == tag,
        ChatMessage.is_deleted == False,  # noqa: E712
        ChatMessage.sender_id != user.id,
        ~receipt,
    )


async def unread_count(db: AsyncSession, user: ConnectionUser, room) -> int:
    """Messages from others, not deleted, that ``user`` has no receipt for."""
    tag = require_room(user, room)
    result = await db.execute(
        select(func.count(ChatMessage.id)).where(_unread_clause(user, tag))
    )
    return result.scalar() or 0


async def mark_room_read(db: AsyncSession, user: ConnectionUser, room) -> int:
    """Record one receipt per unread message. Returns how many were marked."""
    tag = require_room(user, room)
    result = await db.execute(select(ChatMessage.id).where(_unread_clause(user, tag)))
    message_ids = list(result.scalars().all())
    if message_ids:
        now = utcnow()
        await db.execute(
            insert_ignore(db, ChatReadReceipt, [
                {"message_id": mid, "user_id": user.id, "read_at": now}
                for mid in message_ids
            ])
        )
        await db.commit()
    return len(message_ids)
