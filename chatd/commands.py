"""Command handling for the chatd operator console."""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, TextIO

from chatd.errors import RegistryError

if TYPE_CHECKING:
    from chatd.service import HubService

CONSOLE_PROMPT = "server> "

HELP_TEXT = """Commands:
  help                 show this help
  stats                hub statistics
  who [room]           registered names, or members of a room
  rooms                rooms with members
  kick <name> [reason] disconnect a client
  announce <text>      send a notice to every client
  quit | exit          stop the server"""


class CommandHandler:
    """Handles operator console commands for the chat hub.

    The console runs on its own thread and only touches shared state through
    the hub's registry methods, which take the state lock.
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("chatd.commands")

    def run_console(
        self, stdin: TextIO | None = None, stdout: TextIO | None = None
    ) -> None:
        """Read operator commands until quit or end of input."""
        stdin = stdin if stdin is not None else sys.stdin
        stdout = stdout if stdout is not None else sys.stdout

        self._prompt(stdout)
        for line in stdin:
            if not self.handle_operator_command(line, stdout):
                return
            if self.hub.stopped:
                return
            self._prompt(stdout)
        self.log.debug("Console input closed")

    def _prompt(self, stdout: TextIO) -> None:
        stdout.write(CONSOLE_PROMPT)
        stdout.flush()

    def handle_operator_command(self, text: str, stdout: TextIO) -> bool:
        """Handle one console line.

        Returns False when the console should stop reading (quit/exit).
        """
        cmdline = text.strip()
        if cmdline.startswith("/"):
            cmdline = cmdline[1:].lstrip()

        parts = cmdline.split()
        if not parts:
            return True

        cmd = parts[0].lower()
        args = parts[1:]

        def out(line: str) -> None:
            print(line, file=stdout)

        if cmd in ("quit", "exit"):
            self.log.info("Operator requested shutdown")
            self.hub.stop()
            return False

        if cmd == "help":
            out(HELP_TEXT)
            return True

        if cmd == "stats":
            out(self.hub.stats_manager.format_stats())
            return True

        if cmd == "rooms":
            with self.hub._state_lock:
                rooms = [
                    (room, len(self.hub.room_manager.get_room_members(room)))
                    for room in self.hub.room_manager.list_rooms()
                ]
            if not rooms:
                out("No rooms.")
                return True
            for room, count in rooms:
                out(f"  {room} ({count})")
            return True

        if cmd in ("who", "names"):
            room = args[0] if args else ""
            try:
                names = self.hub.room_manager.members_of(room)
            except RegistryError as e:
                out(str(e))
                return True
            label = f"room {room}" if room else "the server"
            if not names:
                out(f"Nobody is in {label}.")
                return True
            out(f"{len(names)} in {label}: " + ", ".join(names))
            return True

        if cmd == "kick":
            if not args:
                out("usage: kick <name> [reason]")
                return True
            reason = " ".join(args[1:]) or None
            if self.hub.kick(args[0], reason):
                out(f"Kicked {args[0]}.")
            else:
                out(f"Could not find a client named {args[0]}.")
            return True

        if cmd == "announce":
            # Keep the operator's spacing: take everything after the command word.
            message = cmdline[len(parts[0]):].strip()
            if not message:
                out("usage: announce <text>")
                return True
            delivered = self.hub.announce(message)
            out(f"Announced to {delivered} client(s).")
            return True

        out("Unrecognized command.")
        return True
