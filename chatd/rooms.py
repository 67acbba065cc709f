"""Room membership for the chat hub.

A room exists exactly while it has members: it is created by the first join
and dropped when its last member leaves or disconnects. The default room
(empty name) is never stored; its membership is every registered session.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .constants import DEFAULT_ROOM
from .errors import AlreadyMember, NotMember, RoomNotFound
from .util import normalize_room_name

if TYPE_CHECKING:
    from .service import HubService
    from .session import Session


class RoomManager:
    """Manages room memberships. Every method takes the hub state lock."""

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("chatd.rooms")
        self.rooms: dict[str, set[Session]] = {}

    def clear_all(self) -> None:
        with self.hub._state_lock:
            self.rooms.clear()

    def join(self, room: str, session: Session) -> str:
        """Add ``session`` to ``room``, creating the room if needed."""
        with self.hub._state_lock:
            room = normalize_room_name(
                room, max_chars=int(self.hub.config.max_room_name_len)
            )
            members = self.rooms.get(room)
            if members is not None and session in members:
                raise AlreadyMember(room)

            if members is None:
                members = self.rooms[room] = set()
                self.log.info("Room created %s", room)
            members.add(session)
            return room

    def leave(self, room: str, session: Session) -> None:
        with self.hub._state_lock:
            members = self.rooms.get(room)
            if members is None:
                raise RoomNotFound(room)
            if session not in members:
                raise NotMember(room)
            self.remove_member(room, session)

    def remove_member(self, room: str, session: Session) -> None:
        """Remove a session from a room, dropping the room once it is empty."""
        with self.hub._state_lock:
            members = self.rooms.get(room)
            if members is None:
                return
            members.discard(session)
            if not members:
                self.rooms.pop(room, None)
                self.log.info("Room emptied %s", room)

    def remove_member_from_all(self, session: Session) -> int:
        """Remove a session from all rooms. Returns number of rooms left."""
        with self.hub._state_lock:
            rooms_to_leave = [r for r, members in self.rooms.items() if session in members]
            for room in rooms_to_leave:
                self.remove_member(room, session)
            return len(rooms_to_leave)

    def list_rooms(self) -> list[str]:
        """Snapshot of the names of all non-empty rooms."""
        with self.hub._state_lock:
            return sorted(self.rooms.keys())

    def get_room_members(self, room: str) -> set[Session]:
        """Copy of the sessions in ``room``; the default room means everyone."""
        with self.hub._state_lock:
            if room == DEFAULT_ROOM:
                return set(self.hub.session_manager.registered())
            members = self.rooms.get(room)
            if members is None:
                raise RoomNotFound(room)
            return set(members)

    def members_of(self, room: str) -> list[str]:
        """Display names in ``room``; the default room lists every registered name."""
        with self.hub._state_lock:
            if room == DEFAULT_ROOM:
                return sorted(self.hub.session_manager.names())
            return sorted(
                s.display_name
                for s in self.get_room_members(room)
                if s.display_name is not None
            )

    def is_member(self, room: str, session: Session) -> bool:
        with self.hub._state_lock:
            if room == DEFAULT_ROOM:
                return session.welcomed
            return session in self.rooms.get(room, ())

    def get_stats(self) -> dict[str, object]:
        with self.hub._state_lock:
            rooms_total = len(self.rooms)
            memberships = sum(len(v) for v in self.rooms.values())
            top_rooms = sorted(
                ((room, len(members)) for room, members in self.rooms.items()),
                key=lambda x: (-x[1], x[0]),
            )[:5]
        return {
            "rooms_total": rooms_total,
            "memberships": memberships,
            "top_rooms": top_rooms,
        }
