"""Notifications router — list, count, create, read, and delete."""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy import delete, desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from campusnotes.config import settings
from campusnotes.database import MAX_ID, clamp_page, get_db
from campusnotes.errors import AuthorizationError, NotFoundError, ValidationError
from campusnotes.models.notification import Notification, NotificationType, RelatedType
from campusnotes.models.user import User
from campusnotes.routers.auth import get_current_user
from campusnotes.schemas.notification import NotificationCreate
from campusnotes.realtime.rooms import connection_user
from campusnotes.services import chat
from campusnotes.services import notifications as dispatcher

router = APIRouter(prefix="/notifications", tags=["notifications"])


async def _owned(db: AsyncSession, notif_id: int, user: User) -> Notification:
    result = await db.execute(
        select(Notification)
        .options(selectinload(Notification.sender))
        .where(
            Notification.id == notif_id,
            Notification.recipient_id == user.id,
        )
    )
    notif = result.scalar_one_or_none()
    if not notif:
        raise NotFoundError("Notification not found")
    return notif


@router.get("")
async def get_notifications(
    page: int = Query(1),
    limit: Optional[int] = Query(None),
    unread_only: bool = False,
    type: Optional[NotificationType] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Paginated notifications for the current user, newest first."""
    page, limit = clamp_page(page, limit, settings.NOTIFICATION_PAGE_SIZE, settings.NOTIFICATION_MAX_PAGE_SIZE)

    filters = [Notification.recipient_id == current_user.id]
    if unread_only:
        filters.append(Notification.is_read == False)  # noqa: E712
    if type is not None:
        filters.append(Notification.type == type)

    total = (await db.execute(select(func.count(Notification.id)).where(*filters))).scalar() or 0

    result = await db.execute(
        select(Notification)
        .options(selectinload(Notification.sender))
        .where(*filters)
        .order_by(desc(Notification.created_at), desc(Notification.id))
        .offset((page - 1) * limit)
        .limit(limit)
    )
    notifs = list(result.scalars().all())

    return {
        "success": True,
        "data": {
            "notifications": await dispatcher.resolve(db, notifs),
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        },
    }


@router.get("/count")
async def get_notification_count(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Total, unread, and per-type counts for the current user."""
    mine = Notification.recipient_id == current_user.id

    total = (await db.execute(select(func.count(Notification.id)).where(mine))).scalar() or 0
    unread = (await db.execute(
        select(func.count(Notification.id)).where(mine, Notification.is_read == False)  # noqa: E712
    )).scalar() or 0
    by_type = await db.execute(
        select(Notification.type, func.count(Notification.id))
        .where(mine)
        .group_by(Notification.type)
    )

    return {
        "success": True,
        "data": {
            "total": total,
            "unread": unread,
            "byType": {row[0].value: row[1] for row in by_type.all()},
        },
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_notification(
    body: NotificationCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a notification and push it to the recipient if they are online.

    The sender is the caller; only admins may send on behalf of someone else
    or send ``admin_message`` notifications. A chat reference must point at a
    message in a room the caller can read.
    """
    sender_id = current_user.id if body.sender is None else body.sender
    if not current_user.is_admin:
        if sender_id != current_user.id:
            raise AuthorizationError("You can only send notifications as yourself")
        if body.type == NotificationType.ADMIN_MESSAGE:
            raise AuthorizationError("Only admins can send admin messages")

    if body.related_type == RelatedType.CHAT:
        if body.related_id is None:
            raise ValidationError("Chat reference requires a message id")
        message = await chat.get_message(db, body.related_id)
        chat.require_room(connection_user(current_user), message.room)

    payload = await dispatcher.create_notification(
        db,
        recipient_id=body.recipient,
        sender_id=sender_id,
        type=body.type,
        title=body.title,
        message=body.message,
        related_type=body.related_type,
        related_id=body.related_id,
    )
    return {"success": True, "data": payload}


@router.put("/mark-all-read")
async def mark_all_read(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Mark all notifications as read for the current user."""
    result = await db.execute(
        update(Notification)
        .where(
            Notification.recipient_id == current_user.id,
            Notification.is_read == False,  # noqa: E712
        )
        .values(is_read=True, read_at=datetime.now(timezone.utc))
    )
    await db.commit()
    return {"success": True, "data": {"modifiedCount": result.rowcount}}


@router.delete("/clear-read")
async def clear_read(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Read-sweep: delete the current user's read notifications."""
    result = await db.execute(
        delete(Notification).where(
            Notification.recipient_id == current_user.id,
            Notification.is_read == True,  # noqa: E712
        )
    )
    await db.commit()
    return {"success": True, "data": {"deletedCount": result.rowcount}}


@router.put("/{notif_id}/read")
async def mark_read(
    notif_id: int = Path(ge=1, le=MAX_ID),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Mark a single notification as read."""
    notif = await _owned(db, notif_id, current_user)
    if not notif.is_read:
        notif.is_read = True
        notif.read_at = datetime.now(timezone.utc)
        await db.commit()
    return {"success": True, "data": (await dispatcher.resolve(db, [notif]))[0]}


@router.delete("/{notif_id}")
async def delete_notification(
    notif_id: int = Path(ge=1, le=MAX_ID),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Delete one of the current user's notifications."""
    notif = await _owned(db, notif_id, current_user)
    await db.delete(notif)
    await db.commit()
    return {"success": True, "message": "Notification deleted"}
