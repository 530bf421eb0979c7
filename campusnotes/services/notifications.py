"""
Notification dispatcher — persist a notification, then push it once to the
recipient's private room.

The stored row is the durable record. The push is best effort: an offline
recipient simply misses the event and catches up through the REST listing.
"""

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from campusnotes.errors import NotFoundError
from campusnotes.models.chat import ChatMessage
from campusnotes.models.notification import Notification, NotificationType, RelatedType
from campusnotes.models.user import User
from campusnotes.realtime.manager import ConnectionManager, manager
from campusnotes.realtime.rooms import can_access
from campusnotes.services.chat import iso

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 140


async def chat_previews(db: AsyncSession, message_ids: Iterable[int]) -> Dict[int, dict]:
    """Display fields for chat payload references, keyed by message id."""
    ids = set(message_ids)
    if not ids:
        return {}
    result = await db.execute(
        select(ChatMessage)
        .options(selectinload(ChatMessage.sender))
        .where(ChatMessage.id.in_(ids))
    )
    return {
        m.id: {
            "id": m.id,
            "room": m.room,
            "message": m.body[:PREVIEW_LENGTH],
            "senderName": m.sender.full_name,
        }
        for m in result.scalars()
    }


def serialize_notification(
    notification: Notification,
    previews: Optional[Dict[int, dict]] = None,
    semester: Optional[str] = None,
) -> dict:
    """
    Client payload for one notification.

    A chat reference is expanded with its preview only when the recipient's
    ``semester`` can read the message's room; otherwise just ``{type, id}``.
    """
    related = None
    if notification.related_type is not None and notification.related_id is not None:
        related = {"type": notification.related_type.value, "id": notification.related_id}
        preview = (previews or {}).get(notification.related_id)
        if (notification.related_type == RelatedType.CHAT and preview
                and can_access(semester, preview["room"]) is not None):
            related.update(preview)

    sender = notification.sender
    return {
        "id": notification.id,
        "type": notification.type.value,
        "title": notification.title,
        "message": notification.message,
        "sender": {"id": sender.id, "name": sender.full_name, "avatar": sender.avatar_url} if sender else None,
        "related": related,
        "isRead": notification.is_read,
        "readAt": iso(notification.read_at),
        "createdAt": iso(notification.created_at),
    }


async def resolve(db: AsyncSession, notifications: List[Notification]) -> List[dict]:
    """Serialize notifications, resolving chat payloads in bulk."""
    chat_ids = [n.related_id for n in notifications
                if n.related_type == RelatedType.CHAT and n.related_id is not None]
    if not chat_ids:
        return [serialize_notification(n) for n in notifications]

    previews = await chat_previews(db, chat_ids)
    semesters = dict((await db.execute(
        select(User.id, User.semester).where(User.id.in_({n.recipient_id for n in notifications}))
    )).all())
    return [serialize_notification(n, previews, semesters.get(n.recipient_id)) for n in notifications]


async def _load(db: AsyncSession, ids: List[int]) -> List[Notification]:
    result = await db.execute(
        select(Notification)
        .options(selectinload(Notification.sender))
        .where(Notification.id.in_(ids))
        .order_by(Notification.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def _push(connections: ConnectionManager, notification: Notification, payload: dict) -> None:
    delivered = await connections.send_to_user(
        notification.recipient_id,
        "notification",
        {"type": notification.type.value, "data": payload},
    )
    if not delivered:
        logger.debug("Recipient %s offline; notification %s not pushed",
                     notification.recipient_id, notification.id)


async def create_notification(
    db: AsyncSession,
    recipient_id: int,
    type: NotificationType,
    title: str,
    message: str,
    sender_id: Optional[int] = None,
    related_type: Optional[RelatedType] = None,
    related_id: Optional[int] = None,
    connections: ConnectionManager = manager,
) -> dict:
    """
    Persist exactly one notification row and attempt one push.

    Returns the resolved notification as pushed.
    """
    if await db.get(User, recipient_id) is None:
        raise NotFoundError("Recipient not found")
    if sender_id is not None and await db.get(User, sender_id) is None:
        raise NotFoundError("Sender not found")

    notification = Notification(
        recipient_id=recipient_id,
        sender_id=sender_id,
        type=NotificationType(type),
        title=title,
        message=message,
        related_type=related_type,
        related_id=related_id,
    )
    db.add(notification)
    await db.commit()

    notification = (await _load(db, [notification.id]))[0]
    payload = (await resolve(db, [notification]))[0]
    await _push(connections, notification, payload)
    return payload


async def notify_semester(
    db: AsyncSession,
    semester: str,
    type: NotificationType,
    title: str,
    message: str,
    sender_id: Optional[int] = None,
    related_type: Optional[RelatedType] = None,
    related_id: Optional[int] = None,
    connections: ConnectionManager = manager,
) -> int:
    """
    Bulk fan-out to every active user of a semester except the sender,
    e.g. when a note is uploaded. One row and one push attempt per user.
    """
    query = select(User.id).where(User.semester == semester, User.is_active == True)  # noqa: E712
    if sender_id is not None:
        query = query.where(User.id != sender_id)
    recipients = list((await db.execute(query)).scalars().all())
    if not recipients:
        return 0

    rows = [
        Notification(
            recipient_id=recipient_id,
            sender_id=sender_id,
            type=NotificationType(type),
            title=title,
            message=message,
            related_type=related_type,
            related_id=related_id,
        )
        for recipient_id in recipients
    ]
    db.add_all(rows)
    await db.commit()

    notifications = await _load(db, [n.id for n in rows])
    payloads = await resolve(db, notifications)
    for notification, payload in zip(notifications, payloads):
        await _push(connections, notification, payload)
    logger.info("Notified %d users in semester %s (%s)", len(notifications), semester, type)
    return len(notifications)
