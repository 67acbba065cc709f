from __future__ import annotations

import logging
import socket
import threading
from typing import TYPE_CHECKING, Any

from .codec import DecodeOutcome, FrameReader, FrameTooLarge, decode, encode
from .constants import MAX_FRAME_BYTES, RECV_CHUNK_BYTES
from .envelope import Envelope, make_envelope
from .errors import ConnectionFault, NameTaken
from .util import normalize_display_name

if TYPE_CHECKING:
    from .service import HubService
    from .stats import StatsManager


class Session:
    """One accepted connection: its socket, framing state and display name.

    The receive path belongs to the session's own thread. ``send`` may be
    called from any thread; writes are serialized by a per-session lock.
    """

    def __init__(
        self,
        sock: socket.socket,
        peer: Any = None,
        *,
        max_frame_bytes: int = MAX_FRAME_BYTES,
        recv_chunk_bytes: int = RECV_CHUNK_BYTES,
        stats: StatsManager | None = None,
    ) -> None:
        self.sock = sock
        self.peer = peer
        self.stats = stats
        self.log = logging.getLogger("chatd.session")

        # Set once by SessionManager.register_name and never changed after.
        self.display_name: str | None = None
        self.welcomed = False
        # Set by the hub when cleanup has run (guarded by the hub state lock).
        self.closed = False

        self._send_lock = threading.Lock()
        self._reader = FrameReader(
            sock, max_frame_bytes=max_frame_bytes, recv_chunk_bytes=recv_chunk_bytes
        )

    def __repr__(self) -> str:
        return f"<Session {self.label}>"

    @property
    def label(self) -> str:
        name = self.display_name or "-"
        if isinstance(self.peer, tuple) and len(self.peer) >= 2:
            return f"{name}@{self.peer[0]}:{self.peer[1]}"
        return name

    def send(self, msg: Envelope) -> None:
        payload = encode(make_envelope(msg))
        with self._send_lock:
            try:
                self.sock.sendall(payload)
            except OSError as e:
                raise ConnectionFault(f"send to {self.label} failed: {e}") from e
        if self.stats is not None:
            self.stats.inc("bytes_out", len(payload))

    def receive(self) -> dict[str, Any] | DecodeOutcome:
        """Read and parse the next frame.

        Returns the decoded record, ``DecodeOutcome.END_OF_STREAM`` once the
        peer is gone or sends a blank frame, or ``DecodeOutcome.MALFORMED``
        for a frame that is not a JSON object. Malformed frames are logged
        here.
        """
        try:
            frame = self._reader.read_frame()
        except FrameTooLarge as e:
            self._count_bad()
            self.log.warning("Discarded oversize frame peer=%s: %s", self.label, e)
            return DecodeOutcome.MALFORMED
        except OSError as e:
            self.log.info("Receive failed peer=%s err=%s", self.label, e)
            return DecodeOutcome.END_OF_STREAM

        if frame is None:
            return DecodeOutcome.END_OF_STREAM

        # A blank frame is how a peer signals it is done.
        if not frame.strip():
            self.log.debug("Blank frame, treating as end of stream peer=%s", self.label)
            return DecodeOutcome.END_OF_STREAM

        if self.stats is not None:
            self.stats.inc("frames_in")
            self.stats.inc("bytes_in", len(frame) + 1)

        try:
            record = decode(frame)
        except (ValueError, RecursionError) as e:
            self._count_bad()
            self.log.warning(
                "Received a message that was not JSON; ignored peer=%s bytes=%s err=%s",
                self.label,
                len(frame),
                e,
            )
            return DecodeOutcome.MALFORMED

        if not isinstance(record, dict):
            self._count_bad()
            self.log.warning(
                "Received JSON that was not an object; ignored peer=%s type=%s",
                self.label,
                type(record).__name__,
            )
            return DecodeOutcome.MALFORMED

        return record

    def _count_bad(self) -> None:
        if self.stats is not None:
            self.stats.inc("frames_bad")

    def shutdown(self) -> None:
        """Stop both directions; a pending receive then sees end of stream."""
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Already disconnected.
            pass

    def close(self) -> None:
        self.shutdown()
        self.sock.close()


class SessionManager:
    """
    Directory of live sessions.

    Tracks every accepted session and indexes the greeted ones by display
    name. Every method takes the hub state lock, which also guards the room
    mapping, so directory and rooms always change together.
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("chatd.session")
        self.sessions: set[Session] = set()
        self._index_by_name: dict[str, Session] = {}

    def add(self, session: Session) -> None:
        with self.hub._state_lock:
            self.sessions.add(session)

    def register_name(self, name: Any, session: Session) -> str:
        """Claim ``name`` for ``session``.

        Raises InvalidName for a blank or whitespace-containing name and
        NameTaken when another live session holds it.
        """
        with self.hub._state_lock:
            if session.display_name is not None:
                raise RuntimeError(f"{session!r} already has a display name")

            name = normalize_display_name(
                name, max_chars=int(self.hub.config.display_name_max_chars)
            )
            if name in self._index_by_name:
                raise NameTaken(name)

            self._index_by_name[name] = session
            session.display_name = name
            session.welcomed = True
            self.sessions.add(session)
            self.log.info("Registered display name %s peer=%s", name, session.label)
            return name

    def unregister(self, session: Session) -> tuple[str | None, int]:
        """
        Remove ``session`` from the directory and from every room.

        Returns (display_name, rooms_left). Safe to call more than once; later
        calls find nothing to remove.
        """
        with self.hub._state_lock:
            self.sessions.discard(session)
            name = session.display_name
            if name is None or self._index_by_name.get(name) is not session:
                return None, 0

            self._index_by_name.pop(name, None)
            rooms_left = self.hub.room_manager.remove_member_from_all(session)
            self.log.info(
                "Unregistered display name %s rooms_left=%s", name, rooms_left
            )
            return name, rooms_left

    def get_by_name(self, name: str) -> Session | None:
        with self.hub._state_lock:
            return self._index_by_name.get(name)

    def names(self) -> list[str]:
        """Snapshot of every registered display name."""
        with self.hub._state_lock:
            return list(self._index_by_name.keys())

    def registered(self) -> list[Session]:
        with self.hub._state_lock:
            return list(self._index_by_name.values())

    def clear_all(self) -> list[Session]:
        """
        Forget every session and return them for teardown.
        """
        with self.hub._state_lock:
            sessions = list(self.sessions)
            self.sessions.clear()
            self._index_by_name.clear()
            return sessions

    def get_stats(self) -> dict[str, int]:
        with self.hub._state_lock:
            total = len(self.sessions)
            registered = len(self._index_by_name)
        return {"total": total, "registered": registered, "greeting": total - registered}
