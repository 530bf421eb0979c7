"""
Room naming and the single room-authorization predicate.

Rooms are derived, never stored:
    general          – everyone
    semester-<n>     – users whose profile semester is n
    user-<id>        – private notification channel for one user
"""

from dataclasses import dataclass
from typing import Optional

from campusnotes.models.user import SEMESTERS

GENERAL = "general"
SEMESTER_PREFIX = "semester-"
USER_PREFIX = "user-"


@dataclass(frozen=True)
class ConnectionUser:
    """Identity attached to an authenticated connection."""
    id: int
    name: str
    semester: str
    is_admin: bool = False
    avatar_url: Optional[str] = None


def semester_room(semester: str) -> str:
    return f"{SEMESTER_PREFIX}{semester}"


def user_room(user_id: int) -> str:
    return f"{USER_PREFIX}{user_id}"


def room_tag(room) -> Optional[str]:
    """
    Normalise a client-supplied room id to its stored tag.

    Accepts "general", a bare semester ("3") or the channel form ("semester-3").
    Returns None for anything else, including private ``user-`` rooms.
    """
    if room is None:
        return None
    room = str(room).strip()
    if room == GENERAL:
        return GENERAL
    if room.startswith(SEMESTER_PREFIX):
        room = room[len(SEMESTER_PREFIX):]
    if room in SEMESTERS:
        return room
    return None


def channel_for(tag: str) -> str:
    """Broadcast channel for a stored room tag."""
    return GENERAL if tag == GENERAL else semester_room(tag)


def can_access(semester: Optional[str], room) -> Optional[str]:
    """Room tag if a member of ``semester`` may read ``room``, else None."""
    tag = room_tag(room)
    if tag is None:
        return None
    if tag == GENERAL or tag == semester:
        return tag
    return None


def authorize(user: ConnectionUser, room) -> Optional[str]:
    """
    Return the room tag if ``user`` may read and publish there, else None.

    Only ``general`` and the user's own semester room are allowed, whatever
    room id the client claims.
    """
    return can_access(user.semester, room)


def connection_user(user) -> ConnectionUser:
    """Snapshot the fields of a ``User`` row that a connection needs."""
    return ConnectionUser(
        id=user.id,
        name=user.full_name,
        semester=user.semester,
        is_admin=user.is_admin,
        avatar_url=user.avatar_url,
    )
