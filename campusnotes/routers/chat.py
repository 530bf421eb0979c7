"""
Chat router — paginated room history, read state, and the WebSocket endpoint.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession

from campusnotes.database import async_session, get_db
from campusnotes.errors import AuthenticationError
from campusnotes.realtime.events import broker
from campusnotes.realtime.manager import manager
from campusnotes.realtime.rooms import ConnectionUser, connection_user
from campusnotes.routers.auth import authenticate_token, get_connection_user
from campusnotes.services import chat

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


# ==============================================================================
# WebSocket Endpoint
# ==============================================================================

def _handshake_token(websocket: WebSocket, token: Optional[str]) -> Optional[str]:
    """Token from ``?token=`` or an ``Authorization: Bearer`` header."""
    if token:
        return token
    header = websocket.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


@router.websocket("/ws")
async def websocket_chat_endpoint(websocket: WebSocket, token: Optional[str] = None):
    """
    Authenticate the handshake, subscribe the connection to its rooms, then
    dispatch JSON event frames until the client goes away.
    """
    try:
        async with async_session() as db:
            user = await authenticate_token(db, _handshake_token(websocket, token))
    except AuthenticationError as exc:
        logger.warning("Socket handshake rejected from %s", websocket.client)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message)
        return

    connection = await manager.connect(websocket, connection_user(user))
    logger.info("User %s (%s) connected", user.full_name, user.id)
    await broker.on_connect(connection)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                await connection.emit("error", {"message": "Malformed event"})
                continue
            await broker.dispatch(connection, frame)
    except WebSocketDisconnect:
        pass
    finally:
        await broker.on_disconnect(connection)
        logger.info("User %s (%s) disconnected", user.full_name, user.id)


# ==============================================================================
# HTTP Routes (History and read state)
# ==============================================================================

@router.get("/{room}")
async def get_chat_history(
    room: str,
    page: int = Query(1),
    limit: Optional[int] = Query(None),
    user: ConnectionUser = Depends(get_connection_user),
    db: AsyncSession = Depends(get_db),
):
    """One page of a room's messages, oldest first within the page."""
    messages, pagination = await chat.get_history(db, user, room, page=page, limit=limit)
    return {
        "success": True,
        "data": {
            "messages": [chat.serialize_message(m) for m in messages],
            "pagination": pagination,
        },
    }


@router.get("/{room}/unread")
async def get_unread_count(
    room: str,
    user: ConnectionUser = Depends(get_connection_user),
    db: AsyncSession = Depends(get_db),
):
    count = await chat.unread_count(db, user, room)
    return {"success": True, "data": {"room": room, "unread": count}}


@router.post("/{room}/read")
async def mark_room_read(
    room: str,
    user: ConnectionUser = Depends(get_connection_user),
    db: AsyncSession = Depends(get_db),
):
    """Record a read receipt for every unread message in the room."""
    marked = await chat.mark_room_read(db, user, room)
    return {"success": True, "data": {"room": room, "marked": marked}}
