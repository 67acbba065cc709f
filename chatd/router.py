from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .constants import DEFAULT_ROOM
from .envelope import (
    Envelope,
    Error,
    Greeting,
    JoinRoom,
    LeaveRoom,
    RequestRoomList,
    RequestRoomMemberList,
    RoomList,
    RoomMemberList,
    Said,
    Say,
    Whisper,
    make_whispered,
)
from .errors import NotMember, RegistryError, RoomNotFound

if TYPE_CHECKING:
    from .service import HubService
    from .session import Session

EMPTY_MESSAGE = "Cannot send an empty message."


class MessageRouter:
    """
    Handles request dispatch for greeted sessions.

    This class is responsible for:
    - Dispatching classified messages by variant (join, leave, lists, say, whisper)
    - Broadcasting ``said`` to the default room or a named room
    - Resolving whisper recipients
    - Connect/disconnect notices

    Every read-verify-send sequence holds the hub state lock from the
    registry lookup through the last delivery, so no join, leave or
    disconnect can interleave with an in-flight broadcast. Deliveries block on
    each peer's socket while the lock is held; a stalled peer delays other
    registry operations but cannot corrupt them.
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("chatd.router")

    def route(self, session: Session, msg: Envelope) -> None:
        """Dispatch one request from an active session and send its reply."""
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug("RX peer=%s type=%s", session.label, msg.type)

        if isinstance(msg, JoinRoom):
            self.join(session, msg)
        elif isinstance(msg, LeaveRoom):
            self.leave(session, msg)
        elif isinstance(msg, RequestRoomList):
            self.room_list(session)
        elif isinstance(msg, RequestRoomMemberList):
            self.member_list(session, msg.name)
        elif isinstance(msg, Say):
            self.speak(msg.room, msg.message, session)
        elif isinstance(msg, Whisper):
            self._handle_whisper(session, msg)
        elif isinstance(msg, Greeting):
            self.hub.message_helper.error(session, "Already greeted.")
        else:
            self.hub.message_helper.error(session, f"Unexpected message type {msg.type}.")

    def join(self, session: Session, msg: JoinRoom) -> None:
        try:
            room = self.hub.room_manager.join(msg.name, session)
        except RegistryError as e:
            self.hub.message_helper.error(session, str(e))
            return

        self.hub.stats_manager.inc("joins")
        self.log.info("Join room=%s peer=%s", room, session.label)
        self.hub.message_helper.success(session, f"Joined room {room}.")

    def leave(self, session: Session, msg: LeaveRoom) -> None:
        if msg.name == DEFAULT_ROOM:
            self.hub.message_helper.error(session, "You cannot leave the default room.")
            return

        try:
            self.hub.room_manager.leave(msg.name, session)
        except RegistryError as e:
            self.hub.message_helper.error(session, str(e))
            return

        self.hub.stats_manager.inc("parts")
        self.log.info("Leave room=%s peer=%s", msg.name, session.label)
        self.hub.message_helper.success(session, f"Left room {msg.name}.")

    def room_list(self, session: Session) -> None:
        rooms = self.hub.room_manager.list_rooms()
        self.hub.message_helper.send(session, RoomList(rooms=rooms))

    def member_list(self, session: Session, room: str) -> None:
        try:
            members = self.hub.room_manager.members_of(room)
        except RoomNotFound as e:
            self.hub.message_helper.error(session, str(e))
            return
        self.hub.message_helper.send(session, RoomMemberList(room=room, members=members))

    def speak(self, room: str, message: str, sender: Session) -> int:
        """
        Broadcast ``message`` from ``sender`` to ``room``.

        The empty room name means every registered session. A named room must
        exist and contain the sender. The sender never receives its own
        ``said``; failures are reported to the sender as ``error``. Returns the
        number of sessions the message was delivered to.
        """
        if not message:
            self.hub.message_helper.error(sender, EMPTY_MESSAGE)
            return 0

        try:
            with self.hub._state_lock:
                if room == DEFAULT_ROOM:
                    targets = self.hub.session_manager.registered()
                else:
                    targets = self.hub.room_manager.get_room_members(room)
                    if not self.hub.room_manager.is_member(room, sender):
                        raise NotMember(room)

                said = Said(room=room, message=message, sender=sender.display_name or "")
                delivered = self.hub.message_helper.broadcast(targets, said, exclude=sender)
        except RegistryError as e:
            self.hub.message_helper.error(sender, str(e))
            return 0

        self.hub.stats_manager.inc("msgs_forwarded", delivered)
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "Said room=%r peer=%s recipients=%s", room, sender.label, delivered
            )
        return delivered

    def whisper(
        self, to: str, sender: Session, message: str
    ) -> tuple[Session, Envelope]:
        """
        Resolve a whisper to (target session, message to deliver to it).

        When ``to`` is not a registered name the target is the sender and the
        message is the error. Must be called with the state lock held if the
        caller delivers the result.
        """
        if not message:
            return sender, Error(message=EMPTY_MESSAGE)

        recipient = self.hub.session_manager.get_by_name(to)
        if recipient is None:
            return sender, Error(message=f"Could not find a client named {to}.")

        return recipient, make_whispered(to, sender.display_name or "", message)

    def _handle_whisper(self, session: Session, msg: Whisper) -> None:
        with self.hub._state_lock:
            target, out = self.whisper(msg.to, session, msg.message)
            if isinstance(out, Error):
                self.hub.stats_manager.inc("errors_sent")
            else:
                self.hub.stats_manager.inc("whispers")

            if target is session:
                self.hub.message_helper.send(session, out)
            else:
                self.hub.message_helper.deliver(target, out)

    def notify_connected(self, session: Session) -> int:
        """Tell every other registered session that ``session`` connected."""
        return self.hub.message_helper.notice_all(
            f"{session.display_name} connected.", exclude=session
        )

    def notify_disconnected(self, name: str) -> int:
        return self.hub.message_helper.notice_all(f"{name} disconnected.")
