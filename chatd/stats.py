"""Statistics tracking and reporting for the chat hub."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .service import HubService


class StatsManager:
    """
    Manages hub statistics collection and reporting.

    Tracks counters for:
    - Connections and handshakes
    - Frames and bytes in/out
    - Room joins/parts
    - Messages and whispers forwarded
    - Errors sent and operator kicks

    Counters have their own lock: they are bumped from inside session send
    paths, which must never wait on the hub state lock.
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self._lock = threading.Lock()

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "connections": 0,
            "greetings_accepted": 0,
            "greetings_declined": 0,
            "frames_in": 0,
            "frames_bad": 0,
            "bytes_in": 0,
            "bytes_out": 0,
            "joins": 0,
            "parts": 0,
            "msgs_forwarded": 0,
            "whispers": 0,
            "errors_sent": 0,
            "kicks": 0,
        }

    def set_start_time(self) -> None:
        """Set the start time for uptime calculations."""
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        """Increment a counter by the given delta."""
        with self._lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return int(self._counters.get(key, 0))

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def format_stats(self) -> str:
        """Format current statistics as a human-readable string."""
        from . import __version__

        now_mono = time.monotonic()
        started_mono = self.started_monotonic
        uptime_s = (now_mono - started_mono) if started_mono is not None else 0.0

        with self.hub._state_lock:
            session_stats = self.hub.session_manager.get_stats()
            room_stats = self.hub.room_manager.get_stats()
        c = self.snapshot()

        lines: list[str] = []
        lines.append(f"chatd {__version__} stats")
        lines.append(f"uptime_s={uptime_s:.1f}")
        lines.append(
            f"clients_total={session_stats['total']} "
            f"clients_registered={session_stats['registered']} "
            f"clients_greeting={session_stats['greeting']}"
        )
        lines.append(
            f"rooms={room_stats['rooms_total']} memberships={room_stats['memberships']}"
        )

        top_rooms = room_stats["top_rooms"]
        if top_rooms:
            lines.append("top_rooms=" + ", ".join(f"{r}:{n}" for r, n in top_rooms))

        lines.append(
            f"limits: display_name_max_chars={self.hub.config.display_name_max_chars} "
            f"max_room_name_len={self.hub.config.max_room_name_len} "
            f"max_frame_bytes={self.hub.config.max_frame_bytes}"
        )
        lines.append(
            "io: frames_in={} frames_bad={} bytes_in={} bytes_out={}".format(
                c.get("frames_in", 0),
                c.get("frames_bad", 0),
                c.get("bytes_in", 0),
                c.get("bytes_out", 0),
            )
        )
        lines.append(
            "handshakes: connections={} accepted={} declined={}".format(
                c.get("connections", 0),
                c.get("greetings_accepted", 0),
                c.get("greetings_declined", 0),
            )
        )
        lines.append(
            "events: joins={} parts={} msgs_fwd={} whispers={} errors_sent={} kicks={}".format(
                c.get("joins", 0),
                c.get("parts", 0),
                c.get("msgs_forwarded", 0),
                c.get("whispers", 0),
                c.get("errors_sent", 0),
                c.get("kicks", 0),
            )
        )

        return "\n".join(lines)
