"""
Connection registry — which socket holds which rooms.

This is the only in-process mutable state. Rooms with no members are
dropped as soon as the last connection leaves.
"""

import logging
from typing import Dict, Optional, Set

from fastapi import WebSocket

from campusnotes.realtime.rooms import GENERAL, ConnectionUser, semester_room, user_room

logger = logging.getLogger(__name__)


class Connection:
    """One authenticated socket and the rooms it currently holds."""

    def __init__(self, websocket: WebSocket, user: ConnectionUser):
        self.websocket = websocket
        self.user = user
        self.rooms: Set[str] = set()

    async def emit(self, event: str, data) -> None:
        await self.websocket.send_json({"event": event, "data": data})

    def __repr__(self) -> str:
        return f"<Connection user={self.user.id} rooms={sorted(self.rooms)}>"


class ConnectionManager:
    def __init__(self):
        # Maps room name to the connections subscribed to it
        self.rooms: Dict[str, Set[Connection]] = {}

    async def connect(self, websocket: WebSocket, user: ConnectionUser) -> Connection:
        """Accept the socket and subscribe it to its three default rooms."""
        await websocket.accept()
        connection = Connection(websocket, user)
        for room in (GENERAL, semester_room(user.semester), user_room(user.id)):
            self.join(connection, room)
        return connection

    def disconnect(self, connection: Connection) -> None:
        for room in list(connection.rooms):
            self.leave(connection, room)

    def join(self, connection: Connection, room: str) -> None:
        self.rooms.setdefault(room, set()).add(connection)
        connection.rooms.add(room)

    def leave(self, connection: Connection, room: str) -> None:
        connection.rooms.discard(room)
        members = self.rooms.get(room)
        if members is None:
            return
        members.discard(connection)
        if not members:
            del self.rooms[room]

    def members(self, room: str) -> Set[Connection]:
        return set(self.rooms.get(room, ()))

    async def broadcast(
        self,
        event: str,
        data,
        room: str,
        skip: Optional[Connection] = None,
    ) -> int:
        """
        Send ``event`` to every connection in ``room`` except ``skip``.

        Best effort: a socket that fails to send is dropped from the
        registry and the event is not retried. Returns the delivery count.
        """
        delivered = 0
        for connection in self.members(room):
            if connection is skip:
                continue
            try:
                await connection.emit(event, data)
                delivered += 1
            except Exception as exc:
                logger.warning("Dropping connection for user %s after send failure: %s",
                               connection.user.id, exc)
                self.disconnect(connection)
        return delivered

    async def send_to_user(self, user_id: int, event: str, data) -> int:
        """Push to a user's private room. Offline users simply receive nothing."""
        return await self.broadcast(event, data, user_room(user_id))


manager = ConnectionManager()
