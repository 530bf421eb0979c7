"""
Socket event dispatcher — routes client events to the chat service and
fans the results out to rooms.

Frames are JSON envelopes ``{"event": <name>, "data": <payload>}``.
Each event runs in its own database session; a failure is reported to the
calling connection only and never touches other connections.
"""

import logging
from typing import Awaitable, Callable, Dict

from pydantic import ValidationError as PayloadError
from sqlalchemy.exc import SQLAlchemyError

from campusnotes.database import async_session
from campusnotes.errors import AuthorizationError, CampusNotesError
from campusnotes.realtime.manager import Connection, ConnectionManager, manager
from campusnotes.realtime.rooms import authorize, channel_for, room_tag, semester_room
from campusnotes.schemas.chat import DeleteMessageIn, EditMessageIn, ReactionIn, SendMessageIn, TypingIn
from campusnotes.services import chat

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, object], Awaitable[None]]


def _room_arg(data) -> str:
    """``join-room``/``leave-room`` accept a bare string or ``{"room": ...}``."""
    if isinstance(data, dict):
        data = data.get("room", data.get("semesterId"))
    return "" if data is None else str(data)


class ChatBroker:
    def __init__(self, connections: ConnectionManager, session_factory=async_session):
        self.connections = connections
        self.session_factory = session_factory
        self.handlers: Dict[str, Handler] = {
            "join-room": self.join_room,
            "leave-room": self.leave_room,
            "send-message": self.send_message,
            "edit-message": self.edit_message,
            "delete-message": self.delete_message,
            "add-reaction": self.add_reaction,
            "typing-start": self.typing_start,
            "typing-stop": self.typing_stop,
        }

    # ── Lifecycle ──

    async def on_connect(self, connection: Connection) -> None:
        user = connection.user
        await self.connections.broadcast(
            "user-connected",
            {"userId": user.id, "userName": user.name},
            semester_room(user.semester),
            skip=connection,
        )

    async def on_disconnect(self, connection: Connection) -> None:
        user = connection.user
        self.connections.disconnect(connection)
        await self.connections.broadcast(
            "user-disconnected",
            {"userId": user.id, "userName": user.name},
            semester_room(user.semester),
        )

    # ── Dispatch ──

    async def dispatch(self, connection: Connection, frame) -> None:
        """Run one client event to completion, reporting failures to the caller only."""
        if not isinstance(frame, dict):
            await connection.emit("error", {"message": "Malformed event"})
            return

        event = frame.get("event")
        if not isinstance(event, str):
            await connection.emit("error", {"message": "Malformed event"})
            return
        handler = self.handlers.get(event)
        if handler is None:
            await connection.emit("error", {"message": f"Unknown event: {event}"})
            return

        try:
            await handler(connection, frame.get("data"))
        except CampusNotesError as exc:
            logger.info("Event %s from user %s rejected: %s", event, connection.user.id, exc.message)
            await connection.emit("error", {"message": exc.message})
        except PayloadError as exc:
            logger.info("Event %s from user %s has an invalid payload: %s", event, connection.user.id, exc)
            await connection.emit("error", {"message": "Invalid payload"})
        except SQLAlchemyError:
            logger.exception("Socket event error (%s)", event)
            await connection.emit("error", {"message": "Action failed"})
        except Exception:
            logger.exception("Unexpected error handling %s from user %s", event, connection.user.id)
            await connection.emit("error", {"message": "Action failed"})

    # ── Rooms ──

    async def join_room(self, connection: Connection, data) -> None:
        tag = authorize(connection.user, _room_arg(data))
        if tag is None:
            # Silently ignored so clients cannot probe for rooms
            logger.debug("User %s join-room %r ignored", connection.user.id, data)
            return
        self.connections.join(connection, channel_for(tag))

    async def leave_room(self, connection: Connection, data) -> None:
        room = _room_arg(data)
        if room not in connection.rooms:
            tag = room_tag(room)
            room = channel_for(tag) if tag else room
        if room in connection.rooms:
            self.connections.leave(connection, room)

    # ── Messages ──

    async def send_message(self, connection: Connection, data) -> None:
        payload = SendMessageIn.model_validate(data)
        async with self.session_factory() as db:
            message = await chat.send_message(
                db,
                connection.user,
                payload.room,
                payload.message,
                kind=payload.message_type,
                reply_to=payload.reply_to,
                file_url=payload.file_url,
                file_name=payload.file_name,
            )
            resolved = chat.serialize_message(message)
        await self.connections.broadcast("new-message", resolved, channel_for(message.room))

    async def edit_message(self, connection: Connection, data) -> None:
        payload = EditMessageIn.model_validate(data)
        async with self.session_factory() as db:
            message = await chat.edit_message(db, connection.user, payload.message_id, payload.new_message)
            resolved = chat.serialize_message(message)
        await self.connections.broadcast("message-edited", resolved, channel_for(message.room))

    async def delete_message(self, connection: Connection, data) -> None:
        payload = DeleteMessageIn.model_validate(data)
        async with self.session_factory() as db:
            message = await chat.delete_message(db, connection.user, payload.message_id)
        await self.connections.broadcast(
            "message-deleted",
            {"messageId": message.id, "room": message.room},
            channel_for(message.room),
        )

    async def add_reaction(self, connection: Connection, data) -> None:
        payload = ReactionIn.model_validate(data)
        async with self.session_factory() as db:
            message, reactions, _ = await chat.toggle_reaction(
                db, connection.user, payload.message_id, payload.emoji
            )
        await self.connections.broadcast(
            "reaction-updated",
            {"messageId": message.id, "reactions": [chat.serialize_reaction(r) for r in reactions]},
            channel_for(message.room),
        )

    # ── Presence ──

    async def _typing(self, connection: Connection, data, is_typing: bool) -> None:
        payload = TypingIn.model_validate(data)
        tag = authorize(connection.user, payload.room)
        if tag is None:
            raise AuthorizationError("Access denied to this room")
        await self.connections.broadcast(
            "user-typing",
            {"userId": connection.user.id, "userName": connection.user.name, "isTyping": is_typing},
            channel_for(tag),
            skip=connection,
        )

    async def typing_start(self, connection: Connection, data) -> None:
        await self._typing(connection, data, True)

    async def typing_stop(self, connection: Connection, data) -> None:
        await self._typing(connection, data, False)


broker = ChatBroker(manager)
