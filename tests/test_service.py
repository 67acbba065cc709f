import socket
import threading

import pytest

from chatd.codec import FrameReader, decode, encode
from chatd.config import HubRuntimeConfig
from chatd.service import HubService

ACCEPT = {"type": "greetingResponse", "response": "accept"}


def _notice(text: str) -> dict:
    return {"type": "notice", "message": text}


def test_greeting_with_matching_version_is_accepted(connect) -> None:
    alice = connect()
    assert alice.greet("alice") == ACCEPT


def test_greeting_with_other_version_is_declined_and_closed(connect) -> None:
    client = connect()
    assert client.greet("alice", version="0.2") == {
        "type": "greetingResponse",
        "response": "decline",
        "reason": "Incompatible version. This server speaks version 0.1.",
    }
    assert client.recv() is None


def test_duplicate_display_name_is_declined(connect) -> None:
    connect("alice")
    second = connect()
    assert second.greet("alice") == {
        "type": "greetingResponse",
        "response": "decline",
        "reason": "Display name is already in use. Please choose another.",
    }
    assert second.recv() is None


@pytest.mark.parametrize("name", ["", "two words", "tab\there"])
def test_invalid_display_name_is_declined(connect, name) -> None:
    client = connect()
    reply = client.greet(name)
    assert reply["type"] == "greetingResponse"
    assert reply["response"] == "decline"
    assert reply["reason"].startswith("Invalid display name.")


def test_messages_before_greeting_are_ignored(connect) -> None:
    client = connect()
    client.send({"type": "say", "room": "", "message": "too early"})
    client.send({"type": "requestRoomList"})
    client.send_raw(b"not json\0")
    client.send({"type": "greeting", "version": "x.y", "displayName": "alice"})
    assert client.greet("alice") == ACCEPT


def test_connect_notice_reaches_earlier_clients(connect) -> None:
    alice = connect("alice")
    bob = connect("bob")

    assert alice.sync() == [_notice("bob connected.")]
    assert bob.sync() == []


def test_room_messages_reach_members_only(connect) -> None:
    alice = connect("alice")
    bob = connect("bob")
    carol = connect("carol")
    alice.sync()
    bob.sync()

    alice.send({"type": "joinRoom", "name": "lobby"})
    assert alice.recv() == {"type": "success", "message": "Joined room lobby."}
    bob.send({"type": "joinRoom", "name": "lobby"})
    assert bob.recv() == {"type": "success", "message": "Joined room lobby."}

    alice.send({"type": "say", "room": "lobby", "message": "hi"})

    assert bob.recv() == {"type": "said", "room": "lobby", "message": "hi", "sender": "alice"}
    assert alice.sync() == []
    assert carol.sync() == []


def test_default_room_message_reaches_every_other_client(connect) -> None:
    alice = connect("alice")
    bob = connect("bob")
    alice.sync()

    bob.send({"type": "say", "room": "", "message": "hello"})

    assert alice.recv() == {"type": "said", "room": "", "message": "hello", "sender": "bob"}
    assert bob.sync() == []


def test_default_room_member_list_names_every_client(connect) -> None:
    alice = connect("alice")
    connect("bob")
    alice.sync()

    alice.send({"type": "requestRoomMemberList", "name": ""})
    assert alice.recv() == {"type": "roomMemberList", "room": "", "members": ["alice", "bob"]}


def test_room_list_tracks_membership(connect) -> None:
    alice = connect("alice")

    alice.send({"type": "requestRoomList"})
    assert alice.recv() == {"type": "roomList", "rooms": []}

    alice.send({"type": "joinRoom", "name": "lobby"})
    alice.recv()
    alice.send({"type": "requestRoomList"})
    assert alice.recv() == {"type": "roomList", "rooms": ["lobby"]}

    alice.send({"type": "leaveRoom", "name": "lobby"})
    assert alice.recv() == {"type": "success", "message": "Left room lobby."}
    alice.send({"type": "requestRoomList"})
    assert alice.recv() == {"type": "roomList", "rooms": []}


def test_whisper_to_unknown_client_errors_to_sender(connect) -> None:
    alice = connect("alice")
    bob = connect("bob")
    alice.sync()

    alice.send({"type": "whisper", "to": "carol", "message": "hey"})

    assert alice.recv() == {"type": "error", "message": "Could not find a client named carol."}
    assert bob.sync() == []


def test_whisper_reaches_only_the_recipient(connect) -> None:
    alice = connect("alice")
    bob = connect("bob")
    carol = connect("carol")
    alice.sync()
    bob.sync()

    alice.send({"type": "whisper", "to": "bob", "message": "psst"})

    assert bob.recv() == {"type": "whispered", "to": "bob", "from": "alice", "message": "psst"}
    assert alice.sync() == []
    assert carol.sync() == []


def test_request_errors_keep_the_connection_open(connect) -> None:
    alice = connect("alice")

    alice.send({"type": "leaveRoom", "name": "nowhere"})
    assert alice.recv() == {"type": "error", "message": "Room nowhere does not exist."}
    alice.send({"type": "say", "room": "nowhere", "message": "hi"})
    assert alice.recv() == {"type": "error", "message": "Room nowhere does not exist."}
    alice.send({"type": "say", "room": "", "message": ""})
    assert alice.recv() == {"type": "error", "message": "Cannot send an empty message."}

    assert alice.sync() == []


def test_malformed_frames_are_skipped(connect) -> None:
    alice = connect("alice")
    alice.send_raw(b"{broken\0")
    alice.send_raw(b"[1,2]\0")
    alice.send_raw(b"\xff\xfe\0")
    assert alice.sync() == []


def test_unrecognized_message_gets_an_error(connect) -> None:
    alice = connect("alice")
    alice.send({"type": "dance"})
    assert alice.recv() == {"type": "error", "message": "Unrecognized message."}
    alice.send({"type": "say", "room": ""})
    assert alice.recv() == {"type": "error", "message": "Unrecognized message."}


def test_second_greeting_is_rejected(connect) -> None:
    alice = connect("alice")
    alice.send({"type": "greeting", "version": "0.1", "displayName": "other"})
    assert alice.recv() == {"type": "error", "message": "Already greeted."}


def test_disconnect_message_closes_and_notifies(hub, connect) -> None:
    alice = connect("alice")
    bob = connect("bob")
    alice.send({"type": "joinRoom", "name": "lobby"})
    alice.sync()

    alice.send({"type": "disconnect"})
    assert alice.recv() is None

    assert bob.sync() == [_notice("alice disconnected.")]
    assert hub.room_manager.list_rooms() == []
    assert hub.session_manager.get_by_name("alice") is None


def test_end_of_stream_cleans_up_like_disconnect(hub, connect) -> None:
    alice = connect("alice")
    bob = connect("bob")
    alice.sync()
    alice.send({"type": "joinRoom", "name": "lobby"})
    assert alice.recv() == {"type": "success", "message": "Joined room lobby."}

    alice.sock.shutdown(socket.SHUT_WR)
    assert alice.recv() is None

    assert bob.sync() == [_notice("alice disconnected.")]
    assert hub.room_manager.list_rooms() == []


def test_display_name_is_free_again_after_disconnect(connect) -> None:
    alice = connect("alice")
    alice.send({"type": "disconnect"})
    assert alice.recv() is None

    again = connect()
    assert again.greet("alice") == ACCEPT


def test_unfinished_frame_at_end_of_stream_is_still_handled(hub, connect) -> None:
    alice = connect("alice")
    bob = connect("bob")
    alice.sync()

    bob.send_raw(b'{"type":"say","room":"","message":"last words"}')
    bob.sock.shutdown(socket.SHUT_WR)

    assert alice.recv() == {
        "type": "said",
        "room": "",
        "message": "last words",
        "sender": "bob",
    }
    assert alice.recv() == _notice("bob disconnected.")


def test_kick_disconnects_with_notice(hub, connect) -> None:
    alice = connect("alice")
    bob = connect("bob")
    alice.sync()

    assert hub.kick("bob", "flooding") is True
    assert bob.recv() == _notice(
        "You have been disconnected by the server operator. Reason: flooding"
    )
    assert bob.recv() is None
    assert alice.recv() == _notice("bob disconnected.")
    assert hub.kick("bob") is False
    assert hub.stats_manager.get("kicks") == 1


def test_announce_reaches_every_registered_client(hub, connect) -> None:
    alice = connect("alice")
    bob = connect("bob")
    waiting = connect()
    alice.sync()

    assert hub.announce("maintenance at noon") == 2
    assert alice.recv() == _notice("maintenance at noon")
    assert bob.recv() == _notice("maintenance at noon")
    assert waiting.greet("carol") == ACCEPT


def test_stop_closes_every_connection(hub, connect) -> None:
    alice = connect("alice")
    bob = connect("bob")

    hub.stop()

    assert alice.recv() == _notice("bob connected.")
    assert alice.recv() is None
    assert bob.recv() is None
    assert hub.stopped


def test_motd_follows_greeting_accept() -> None:
    svc = HubService(
        HubRuntimeConfig(host="127.0.0.1", port=0, console=False, motd="Welcome aboard.")
    )
    svc.start()
    sock = socket.create_connection(svc.address[:2], timeout=5.0)
    try:
        reader = FrameReader(sock)
        sock.sendall(encode({"type": "greeting", "version": "0.1", "displayName": "alice"}))
        assert decode(reader.read_frame()) == ACCEPT
        assert decode(reader.read_frame()) == _notice("Welcome aboard.")
    finally:
        sock.close()
        svc.stop()


def test_stats_count_session_activity(hub, connect) -> None:
    alice = connect("alice")
    rejected = connect()
    rejected.greet("alice")
    alice.send({"type": "joinRoom", "name": "lobby"})
    alice.send({"type": "whisper", "to": "nobody", "message": "hi"})
    alice.sync()

    stats = hub.stats_manager.snapshot()
    assert stats["connections"] == 2
    assert stats["greetings_accepted"] == 1
    assert stats["greetings_declined"] == 1
    assert stats["joins"] == 1
    assert stats["errors_sent"] == 1


def test_blank_frame_ends_the_session(hub, connect) -> None:
    alice = connect("alice")
    bob = connect("bob")
    alice.sync()

    bob.send_raw(b"\0")
    assert bob.recv() is None

    assert alice.sync() == [_notice("bob disconnected.")]
    assert hub.session_manager.get_by_name("bob") is None


def test_close_session_twice_cleans_up_once(offline_hub, make_session) -> None:
    alice, _ = make_session("alice")
    _, bob_peer = make_session("bob")
    offline_hub.room_manager.join("lobby", alice)
    offline_hub.room_manager.join("dev", alice)

    offline_hub.close_session(alice)
    offline_hub.close_session(alice)

    assert bob_peer.pending() == [_notice("alice disconnected.")]
    assert offline_hub.session_manager.unregister(alice) == (None, 0)
    assert offline_hub.room_manager.list_rooms() == []
    assert offline_hub.session_manager.names() == ["bob"]


def test_concurrent_close_session_notifies_once(offline_hub, make_session) -> None:
    alice, _ = make_session("alice")
    _, bob_peer = make_session("bob")
    offline_hub.room_manager.join("lobby", alice)
    barrier = threading.Barrier(4)

    def close() -> None:
        barrier.wait()
        offline_hub.close_session(alice)

    threads = [threading.Thread(target=close) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5.0)

    assert bob_peer.pending() == [_notice("alice disconnected.")]
    assert offline_hub.room_manager.list_rooms() == []


def test_kick_racing_disconnect_notifies_once(hub, connect) -> None:
    alice = connect("alice")
    bob = connect("bob")
    alice.sync()

    bob.send({"type": "disconnect"})
    hub.kick("bob")
    try:
        while bob.recv() is not None:
            pass
    except ConnectionResetError:
        pass

    assert alice.recv() == _notice("bob disconnected.")
    assert alice.sync() == []
    assert hub.session_manager.get_by_name("bob") is None
