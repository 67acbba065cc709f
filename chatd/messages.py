"""Message sending utilities for the chat hub."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from .envelope import Envelope, Error, GreetingDecline, Notice, Success
from .errors import ConnectionFault

if TYPE_CHECKING:
    from .service import HubService
    from .session import Session


class MessageHelper:
    """
    Helper methods for sending messages.

    Replies to the session that made a request go through ``send`` and let a
    ConnectionFault propagate so that session's lifecycle ends. Deliveries to
    other sessions go through ``deliver``, which logs a fault and carries on;
    the faulted session's own thread notices the dead socket and cleans up.
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = hub.log

    def send(self, session: Session, msg: Envelope) -> None:
        """Send a message immediately; faults propagate."""
        session.send(msg)

    def deliver(self, session: Session, msg: Envelope) -> bool:
        """Send a message to a session other than the requester."""
        try:
            session.send(msg)
        except ConnectionFault as e:
            self.log.warning("Send failed peer=%s type=%s err=%s", session.label, msg.type, e)
            return False
        return True

    def broadcast(
        self,
        sessions: Iterable[Session],
        msg: Envelope,
        *,
        exclude: Session | None = None,
    ) -> int:
        """Deliver ``msg`` to every session but ``exclude``; returns deliveries made."""
        delivered = 0
        for other in sessions:
            if other is exclude:
                continue
            if self.deliver(other, msg):
                delivered += 1
        return delivered

    def notice_all(self, text: str, *, exclude: Session | None = None) -> int:
        """Notice to every registered session, under the state lock."""
        with self.hub._state_lock:
            return self.broadcast(
                self.hub.session_manager.registered(), Notice(message=text), exclude=exclude
            )

    def notice_to(self, session: Session, text: str) -> None:
        self.send(session, Notice(message=text))

    def success(self, session: Session, text: str) -> None:
        self.send(session, Success(message=text))

    def error(self, session: Session, text: str) -> None:
        self.hub.stats_manager.inc("errors_sent")
        self.send(session, Error(message=text))

    def decline(self, session: Session, reason: str) -> None:
        self.hub.stats_manager.inc("greetings_declined")
        self.log.info("Declined greeting peer=%s reason=%r", session.label, reason)
        self.send(session, GreetingDecline(reason=reason))
