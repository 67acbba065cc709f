"""Interactive command-line client for chatd.

Reads lines from stdin and maps slash commands onto protocol messages while a
listener prints whatever the server sends.
"""

from __future__ import annotations

import argparse
import logging
import re
import socket
import sys
import threading
from dataclasses import replace
from typing import TextIO

from .cli import parse_port
from .codec import DecodeOutcome
from .config import HubRuntimeConfig
from .constants import DEFAULT_PORT, DEFAULT_ROOM, PROTOCOL_VERSION
from .envelope import (
    Disconnect,
    Envelope,
    Error,
    Greeting,
    GreetingAccept,
    GreetingDecline,
    JoinRoom,
    LeaveRoom,
    Notice,
    RequestRoomList,
    RequestRoomMemberList,
    RoomList,
    RoomMemberList,
    Said,
    Say,
    Success,
    Whisper,
    Whispered,
    classify,
)
from .errors import ConnectionFault
from .logging_config import configure_logging
from .session import Session

_JOIN = re.compile(r"^/join\s+(?P<room>\S+)$")
_LEAVE = re.compile(r"^/leave\s+(?P<room>\S+)$")
_ROOMS = re.compile(r"^/rooms$")
_MEMBERS = re.compile(r"^/members(?:\s+(?P<room>\S+))?$")
_SAY = re.compile(r"^/say\s+(?P<room>\S+)\s+(?P<message>.+)$")
_WHISPER = re.compile(r"^/w\s+(?P<name>\S+)\s+(?P<message>.+)$")
_QUIT = re.compile(r"^/(?:quit|exit)$", re.IGNORECASE)


class CommandError(ValueError):
    pass


def parse_command(line: str) -> Envelope | None:
    """Map one line of user input to the message it sends.

    Returns None for a blank line and ``Disconnect`` for /quit or /exit.
    Raises CommandError for a slash command that is not understood.
    """
    text = line.strip()
    if not text:
        return None

    if not text.startswith("/"):
        return Say(room=DEFAULT_ROOM, message=text)

    if _QUIT.match(text):
        return Disconnect()

    m = _JOIN.match(text)
    if m:
        return JoinRoom(name=m.group("room"))

    m = _LEAVE.match(text)
    if m:
        return LeaveRoom(name=m.group("room"))

    if _ROOMS.match(text):
        return RequestRoomList()

    m = _MEMBERS.match(text)
    if m:
        return RequestRoomMemberList(name=m.group("room") or DEFAULT_ROOM)

    m = _SAY.match(text)
    if m:
        return Say(room=m.group("room"), message=m.group("message"))

    m = _WHISPER.match(text)
    if m:
        return Whisper(to=m.group("name"), message=m.group("message"))

    raise CommandError("Unrecognized command.")


def format_message(msg: Envelope) -> str | None:
    """One display line for an inbound message, or None to show nothing."""
    if isinstance(msg, Said):
        if msg.room == DEFAULT_ROOM:
            return f"{msg.sender}: {msg.message}"
        return f"[{msg.room}] {msg.sender}: {msg.message}"
    if isinstance(msg, Whispered):
        return f"{msg.from_} whispers: {msg.message}"
    if isinstance(msg, Notice):
        return f"* {msg.message}"
    if isinstance(msg, Error):
        return f"Error: {msg.message}"
    if isinstance(msg, Success):
        return msg.message
    if isinstance(msg, RoomList):
        if not msg.rooms:
            return "No rooms."
        return "Rooms: " + ", ".join(msg.rooms)
    if isinstance(msg, RoomMemberList):
        label = f"room {msg.room}" if msg.room else "the server"
        return f"Members of {label}: " + ", ".join(msg.members)
    return None


class ChatClient:
    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        *,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> None:
        self.host = host
        self.port = int(port)
        self.stdin = stdin if stdin is not None else sys.stdin
        self.stdout = stdout if stdout is not None else sys.stdout
        self.stderr = stderr if stderr is not None else sys.stderr
        self.log = logging.getLogger("chatd.client")
        self.session: Session | None = None
        self._quitting = threading.Event()

    def connect(self) -> None:
        sock = socket.create_connection((self.host, self.port))
        self.session = Session(sock, (self.host, self.port))

    def greet(self, display_name: str) -> GreetingAccept:
        """Send a greeting and wait for the server's answer.

        Raises PermissionError with the server's reason on decline and
        ConnectionError if the server hangs up first.
        """
        assert self.session is not None
        self.session.send(Greeting(version=PROTOCOL_VERSION, displayName=display_name))
        while True:
            record = self.session.receive()
            if record is DecodeOutcome.END_OF_STREAM:
                raise ConnectionError("Connection closed during greeting.")
            if record is DecodeOutcome.MALFORMED:
                continue
            msg = classify(record)
            if isinstance(msg, GreetingAccept):
                return msg
            if isinstance(msg, GreetingDecline):
                raise PermissionError(msg.reason)

    def listen(self) -> None:
        """Print inbound messages until the connection ends."""
        assert self.session is not None
        while True:
            record = self.session.receive()
            if record is DecodeOutcome.END_OF_STREAM:
                return
            if record is DecodeOutcome.MALFORMED:
                continue
            msg = classify(record)
            if msg is None:
                self.log.warning("Unrecognized message from server type=%r", record.get("type"))
                continue
            line = format_message(msg)
            if line is not None:
                print(line, file=self.stdout, flush=True)

    def prompt(self) -> None:
        """Send one message per input line until /quit or end of input."""
        assert self.session is not None
        try:
            for line in self.stdin:
                try:
                    msg = parse_command(line)
                except CommandError as e:
                    print(str(e), file=self.stderr, flush=True)
                    continue
                if msg is None:
                    continue
                if isinstance(msg, Disconnect):
                    break
                self.session.send(msg)
            self.quit()
        except ConnectionFault as e:
            self.log.debug("Send failed: %s", e)
            self.session.shutdown()

    def quit(self) -> None:
        assert self.session is not None
        self._quitting.set()
        try:
            self.session.send(Disconnect())
        except ConnectionFault:
            pass
        self.session.shutdown()

    def _close(self) -> None:
        if self.session is not None:
            self.session.close()

    def start(self, display_name: str) -> int:
        """Connect, greet and run until the session ends. Returns an exit status."""
        try:
            self.connect()
            self.greet(display_name)
        except PermissionError as e:
            self._close()
            print(f"Server declined: {e}", file=self.stderr)
            return 1
        except OSError as e:
            self._close()
            print(f"Could not connect to {self.host}:{self.port}: {e}", file=self.stderr)
            return 1

        prompt_thread = threading.Thread(target=self.prompt, name="chatc-prompt", daemon=True)
        prompt_thread.start()
        self.listen()

        self._close()
        if self._quitting.is_set():
            return 0
        print("Connection lost.", file=self.stderr)
        return 1


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="chatc", description="Connect to a chat server")
    p.add_argument("host", help="Server address")
    p.add_argument("port", nargs="?", default=None, help=f"Server port (default: {DEFAULT_PORT})")
    p.add_argument("--name", default=None, help="Display name (prompted for when omitted)")
    p.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    return p


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)
    port = parse_port(args.port) if args.port is not None else DEFAULT_PORT

    configure_logging(replace(HubRuntimeConfig(), log_level=str(args.log_level)))

    name = args.name
    if name is None:
        try:
            name = input("Display name: ").strip()
        except EOFError:
            raise SystemExit(1)

    raise SystemExit(ChatClient(args.host, port).start(name))


if __name__ == "__main__":
    main()
