from __future__ import annotations

import logging
import signal
import socket
import threading
import time
from typing import Any

from .codec import DecodeOutcome
from .commands import CommandHandler
from .config import HubRuntimeConfig
from .constants import PROTOCOL_VERSION
from .envelope import Disconnect, Greeting, GreetingAccept, Notice, classify
from .errors import ConnectionFault, RegistryError
from .messages import MessageHelper
from .rooms import RoomManager
from .router import MessageRouter
from .session import Session, SessionManager
from .stats import StatsManager


class HubService:
    """
    TCP chat hub: accept loop, per-connection lifecycle and shared registry.

    Each accepted socket gets its own thread which runs
    greeting -> active -> closed. Cleanup runs exactly once per session no
    matter which exit path ends it.
    """

    def __init__(self, config: HubRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("chatd.hub")

        # The directory and the room mapping are read and mutated from every
        # connection thread and the operator console. Guard them with a
        # single re-entrant lock.
        self._state_lock = threading.RLock()

        self._shutdown = threading.Event()

        self.stats_manager = StatsManager(self)
        self.message_helper = MessageHelper(self)

        # Directory (display name -> session)
        self.session_manager = SessionManager(self)

        # Rooms (room name -> member sessions)
        self.room_manager = RoomManager(self)

        self.router = MessageRouter(self)

        # Operator console
        self.command_handler = CommandHandler(self)

        self._listener: socket.socket | None = None
        self._accept_thread: threading.Thread | None = None
        self._console_thread: threading.Thread | None = None

    @property
    def address(self) -> tuple[Any, ...] | None:
        """The bound listening address, once started."""
        if self._listener is None:
            return None
        return self._listener.getsockname()

    def start(self) -> None:
        self.stats_manager.set_start_time()
        self._listener = socket.create_server(
            (self.config.host, int(self.config.port)), backlog=int(self.config.backlog)
        )
        self.log.info(
            "Hub listening address=%s protocol_version=%s", self.address, PROTOCOL_VERSION
        )
        self.log.info(
            "Policy display_name_max_chars=%s max_room_name_len=%s max_frame_bytes=%s",
            self.config.display_name_max_chars,
            self.config.max_room_name_len,
            self.config.max_frame_bytes,
        )

        self._accept_thread = threading.Thread(
            target=self._accept_loop, name="chatd-accept", daemon=True
        )
        self._accept_thread.start()

        if self.config.console:
            self._console_thread = threading.Thread(
                target=self.command_handler.run_console, name="chatd-console", daemon=True
            )
            self._console_thread.start()

    def run_forever(self) -> None:
        if self._listener is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        while not self._shutdown.is_set():
            time.sleep(0.25)

    def stop(self) -> None:
        if self._shutdown.is_set():
            return
        self._shutdown.set()
        self.log.info("Stopping hub")

        listener = self._listener
        if listener is not None:
            try:
                # Wakes a thread blocked in accept().
                listener.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            listener.close()

        with self._state_lock:
            sessions = self.session_manager.clear_all()
            self.room_manager.clear_all()

        for session in sessions:
            session.shutdown()

    @property
    def stopped(self) -> bool:
        return self._shutdown.is_set()

    def _accept_loop(self) -> None:
        listener = self._listener
        assert listener is not None
        while not self._shutdown.is_set():
            try:
                sock, addr = listener.accept()
            except OSError:
                if self._shutdown.is_set():
                    break
                self.log.exception("Accept failed")
                time.sleep(0.1)
                continue

            self.stats_manager.inc("connections")
            thread = threading.Thread(
                target=self._serve,
                args=(sock, addr),
                name=f"chatd-conn-{addr[0]}:{addr[1]}",
                daemon=True,
            )
            thread.start()

    def _serve(self, sock: socket.socket, addr: Any) -> None:
        session = Session(
            sock,
            addr,
            max_frame_bytes=self.config.max_frame_bytes,
            recv_chunk_bytes=self.config.recv_chunk_bytes,
            stats=self.stats_manager,
        )
        self.serve_session(session)

    def serve_session(self, session: Session) -> None:
        """Run one session's lifecycle to completion on the calling thread."""
        self.session_manager.add(session)
        self.log.info("Connection accepted peer=%s", session.label)
        if self._shutdown.is_set():
            self.close_session(session)
            return
        try:
            if self._greeting_loop(session):
                self._active_loop(session)
        except ConnectionFault as e:
            self.log.info("Connection fault peer=%s err=%s", session.label, e)
        except Exception:
            self.log.exception("Unhandled error in session peer=%s", session.label)
        finally:
            self.close_session(session)

    def _greeting_loop(self, session: Session) -> bool:
        """Wait for a greeting. Returns True once the session is registered."""
        while True:
            record = session.receive()
            if record is DecodeOutcome.END_OF_STREAM:
                self.log.info("Peer left before greeting peer=%s", session.label)
                return False
            if record is DecodeOutcome.MALFORMED:
                continue

            msg = classify(record)
            if not isinstance(msg, Greeting):
                # Only a greeting advances the handshake.
                self.log.debug(
                    "Ignoring type=%r before greeting peer=%s",
                    record.get("type"),
                    session.label,
                )
                continue

            return self._greet(session, msg)

    def _greet(self, session: Session, msg: Greeting) -> bool:
        if msg.version != PROTOCOL_VERSION:
            self.message_helper.decline(
                session,
                f"Incompatible version. This server speaks version {PROTOCOL_VERSION}.",
            )
            return False

        reason: str | None = None
        with self._state_lock:
            try:
                self.session_manager.register_name(msg.display_name, session)
            except RegistryError as e:
                reason = str(e)
            else:
                # Registration, connect notices and the accept are one unit so
                # every peer sees the notice exactly when the name is live.
                self.router.notify_connected(session)
                self.message_helper.send(session, GreetingAccept())

        if reason is not None:
            self.message_helper.decline(session, reason)
            return False

        self.stats_manager.inc("greetings_accepted")
        self.log.info("Greeted peer=%s version=%s", session.label, msg.version)

        if self.config.motd:
            self.message_helper.notice_to(session, self.config.motd)
        return True

    def _active_loop(self, session: Session) -> None:
        while True:
            record = session.receive()
            if record is DecodeOutcome.END_OF_STREAM:
                return
            if record is DecodeOutcome.MALFORMED:
                continue

            msg = classify(record)
            if msg is None:
                self.log.warning(
                    "Unrecognized message peer=%s type=%r", session.label, record.get("type")
                )
                self.message_helper.error(session, "Unrecognized message.")
                continue

            if isinstance(msg, Disconnect):
                self.log.info("Disconnect requested peer=%s", session.label)
                return

            self.router.route(session, msg)

    def close_session(self, session: Session) -> None:
        """Unregister ``session``, announce its departure and close its socket.

        Idempotent: only the first call does anything.
        """
        with self._state_lock:
            if session.closed:
                return
            session.closed = True
            name, rooms_left = self.session_manager.unregister(session)
            if name is not None:
                self.router.notify_disconnected(name)

        session.close()
        self.log.info("Connection closed peer=%s rooms_left=%s", session.label, rooms_left)

    def kick(self, name: str, reason: str | None = None) -> bool:
        """Force-disconnect a registered session.

        The socket is shut down; the session's own thread sees end of stream
        and runs the normal cleanup.
        """
        with self._state_lock:
            session = self.session_manager.get_by_name(name)
            if session is None:
                return False
            text = "You have been disconnected by the server operator."
            if reason:
                text = f"{text} Reason: {reason}"
            self.message_helper.deliver(session, Notice(message=text))
            session.shutdown()

        self.stats_manager.inc("kicks")
        self.log.info("Kicked %s reason=%r", name, reason)
        return True

    def announce(self, text: str) -> int:
        return self.message_helper.notice_all(text)
