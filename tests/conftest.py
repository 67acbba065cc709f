from __future__ import annotations

import socket
from collections.abc import Iterator

import pytest

from chatd.codec import FrameReader, decode, encode
from chatd.config import HubRuntimeConfig
from chatd.constants import PROTOCOL_VERSION
from chatd.service import HubService
from chatd.session import Session

TIMEOUT_S = 5.0


class WireClient:
    """Speaks the raw wire protocol to a running hub."""

    def __init__(self, address) -> None:
        self.sock = socket.create_connection(address[:2], timeout=TIMEOUT_S)
        self.reader = FrameReader(self.sock)

    def send(self, record: dict) -> None:
        self.sock.sendall(encode(record))

    def send_raw(self, data: bytes) -> None:
        self.sock.sendall(data)

    def recv(self) -> dict | None:
        frame = self.reader.read_frame()
        if frame is None:
            return None
        return decode(frame)

    def greet(self, name: str, version: str = PROTOCOL_VERSION) -> dict | None:
        self.send({"type": "greeting", "version": version, "displayName": name})
        return self.recv()

    def sync(self) -> list[dict]:
        """Round-trip a room list request; return everything received before it.

        Frames are delivered in order on one connection, so anything the hub
        wrote to this client before answering is returned here.
        """
        self.send({"type": "requestRoomList"})
        received: list[dict] = []
        while True:
            record = self.recv()
            assert record is not None, "connection closed during sync"
            if record.get("type") == "roomList":
                return received
            received.append(record)

    def close(self) -> None:
        self.sock.close()


class Peer:
    """The far end of a socketpair-backed Session."""

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock
        self.reader = FrameReader(sock)

    def pending(self) -> list[dict]:
        """Every complete frame already written to this peer."""
        self.sock.settimeout(0.0)
        frames: list[dict] = []
        try:
            while True:
                frame = self.reader.read_frame()
                if frame is None:
                    break
                frames.append(decode(frame))
        except BlockingIOError:
            pass
        finally:
            self.sock.settimeout(TIMEOUT_S)
        return frames


@pytest.fixture
def hub() -> Iterator[HubService]:
    svc = HubService(HubRuntimeConfig(host="127.0.0.1", port=0, console=False))
    svc.start()
    yield svc
    svc.stop()


@pytest.fixture
def connect(hub: HubService):
    clients: list[WireClient] = []

    def _connect(name: str | None = None) -> WireClient:
        client = WireClient(hub.address)
        clients.append(client)
        if name is not None:
            reply = client.greet(name)
            assert reply == {"type": "greetingResponse", "response": "accept"}
        return client

    yield _connect
    for client in clients:
        client.close()


@pytest.fixture
def offline_hub() -> HubService:
    """A hub whose registry is used directly, without a listening socket."""
    return HubService(HubRuntimeConfig(console=False))


@pytest.fixture
def make_session(offline_hub: HubService):
    pairs: list[tuple[socket.socket, socket.socket]] = []

    def _make(name: str | None = None) -> tuple[Session, Peer]:
        a, b = socket.socketpair()
        b.settimeout(TIMEOUT_S)
        pairs.append((a, b))
        session = Session(a, stats=offline_hub.stats_manager)
        offline_hub.session_manager.add(session)
        if name is not None:
            offline_hub.session_manager.register_name(name, session)
        return session, Peer(b)

    yield _make
    for a, b in pairs:
        a.close()
        b.close()
