"""
Tests for the Relay Service

Tests for the session handler including:
- join / chat dispatch and room-info broadcasts
- Error envelopes for protocol errors
- Rate limiting, oversized frames and slow consumer eviction
- Disconnect cleanup
"""

import asyncio
import json

import pytest
from websockets.protocol import State

from relay import (
    EventKind,
    RateLimiter,
    RelayService,
    SessionEvent,
)


class MockTransport:
    """Mock transport exposing the write buffer size."""

    def __init__(self):
        self.buffered = 0
        self.aborted = False

    def get_write_buffer_size(self):
        return self.buffered

    def abort(self):
        self.aborted = True


class MockWebSocket:
    """Mock WebSocket for testing."""

    def __init__(self):
        self.sent_messages = []
        self.state = State.OPEN
        self.transport = MockTransport()
        self.close_code = None
        self.close_reason = None

    async def send(self, message):
        self.sent_messages.append(message)

    async def close(self, code=1000, reason=""):
        self.state = State.CLOSED
        self.close_code = code
        self.close_reason = reason

    def received(self, message_type=None):
        messages = [json.loads(m) for m in self.sent_messages]
        if message_type is None:
            return messages
        return [m for m in messages if m["type"] == message_type]


class StalledWebSocket(MockWebSocket):
    """Mock WebSocket whose sends never finish, like a peer that stopped reading."""

    def __init__(self):
        super().__init__()
        self.unblock = asyncio.Event()

    async def send(self, message):
        self.sent_messages.append(message)
        await self.unblock.wait()


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


@pytest.fixture
def service():
    # Generous limit so tests can send freely
    return RelayService(rate_limiter=RateLimiter(max_messages=1000))


async def settle():
    # Sends run as background tasks
    for _ in range(3):
        await asyncio.sleep(0)


def open_connection(service, websocket=None):
    websocket = websocket or MockWebSocket()
    connection = service.connect(websocket)
    return connection.connection_id, websocket


async def send(service, connection_id, message_type, payload):
    raw = json.dumps({"type": message_type, "payload": payload})
    await service.dispatch(SessionEvent(EventKind.MESSAGE, connection_id, raw))
    await settle()


async def join(service, connection_id, room_id, name, password=None):
    payload = {"roomId": room_id, "name": name}
    if password is not None:
        payload["password"] = password
    await send(service, connection_id, "join", payload)


# Join Tests


@pytest.mark.asyncio
async def test_join_broadcasts_room_info(service):
    alice_id, alice = open_connection(service)

    await join(service, alice_id, "lobby", "alice")

    assert alice.received() == [
        {"type": "room-info", "payload": {"users": ["alice"], "count": 1}}
    ]
    assert service.room_store.room_count == 1


@pytest.mark.asyncio
async def test_second_join_updates_everyone(service):
    alice_id, alice = open_connection(service)
    bob_id, bob = open_connection(service)

    await join(service, alice_id, "lobby", "alice")
    await join(service, bob_id, "lobby", "bob")

    expected = {"type": "room-info", "payload": {"users": ["alice", "bob"], "count": 2}}
    assert alice.received()[-1] == expected
    assert bob.received() == [expected]


@pytest.mark.asyncio
async def test_join_errors_are_reported(service):
    alice_id, alice = open_connection(service)
    bob_id, bob = open_connection(service)
    carol_id, carol = open_connection(service)

    await join(service, alice_id, "vault", "Alice", "s3cret")
    await join(service, bob_id, "vault", "bob", "nope")
    await join(service, carol_id, "vault", "ALICE", "s3cret")

    assert bob.received() == [{"type": "error", "message": "Wrong password"}]
    assert carol.received() == [{"type": "error", "message": "Name taken"}]
    assert service.room_store.get_room("vault").member_names == ["Alice"]
    # Failed joins leave the connection open and registered
    assert bob_id in service.registry
    assert bob.close_code is None


@pytest.mark.asyncio
async def test_double_join_is_rejected(service):
    alice_id, alice = open_connection(service)

    await join(service, alice_id, "lobby", "alice")
    await join(service, alice_id, "games", "alice")

    assert alice.received()[-1] == {"type": "error", "message": "Already joined"}
    assert service.room_store.get_room("games") is None


@pytest.mark.asyncio
async def test_join_missing_fields(service):
    alice_id, alice = open_connection(service)

    await send(service, alice_id, "join", {"roomId": "lobby"})

    assert alice.received() == [{"type": "error", "message": "Missing fields"}]


# Chat Tests


@pytest.mark.asyncio
async def test_chat_fans_out_to_all_members(service):
    sockets = {}
    for name in ("alice", "bob", "carol"):
        connection_id, websocket = open_connection(service)
        await join(service, connection_id, "lobby", name)
        sockets[name] = (connection_id, websocket)

    alice_id, _ = sockets["alice"]
    await send(
        service, alice_id, "chat", {"message": "hello", "sender": "mallory"}
    )

    payloads = [ws.received("chat")[0]["payload"] for _, ws in sockets.values()]
    assert len(payloads) == 3
    assert all(p == payloads[0] for p in payloads)
    assert payloads[0]["sender"] == "alice"
    assert payloads[0]["message"] == "hello"
    assert payloads[0]["timestamp"]
    assert "file" not in payloads[0]


@pytest.mark.asyncio
async def test_chat_does_not_leak_between_rooms(service):
    alice_id, alice = open_connection(service)
    bob_id, bob = open_connection(service)
    await join(service, alice_id, "lobby", "alice")
    await join(service, bob_id, "games", "bob")

    await send(service, alice_id, "chat", {"message": "hi"})

    assert len(alice.received("chat")) == 1
    assert bob.received("chat") == []


@pytest.mark.asyncio
async def test_chat_relays_file_verbatim(service):
    alice_id, alice = open_connection(service)
    await join(service, alice_id, "lobby", "alice")
    file = {
        "name": "notes.txt",
        "type": "text/plain",
        "size": 5,
        "data": "data:text/plain;base64,aGVsbG8=",
    }

    await send(service, alice_id, "chat", {"file": file})

    payload = alice.received("chat")[0]["payload"]
    assert payload["file"] == file
    assert payload["message"] == ""


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload,reason",
    [
        ({"message": "   "}, "Empty message"),
        ({"message": "x" * 10_001}, "Message too long"),
        ({"message": "hi", "file": {"name": "a"}}, "Invalid file"),
    ],
)
async def test_chat_errors_are_reported(service, payload, reason):
    alice_id, alice = open_connection(service)
    await join(service, alice_id, "lobby", "alice")

    await send(service, alice_id, "chat", payload)

    assert alice.received()[-1] == {"type": "error", "message": reason}
    assert alice.received("chat") == []


@pytest.mark.asyncio
async def test_chat_before_join(service):
    alice_id, alice = open_connection(service)

    await send(service, alice_id, "chat", {"message": "hi"})

    assert alice.received() == [{"type": "error", "message": "Not in a room"}]


# Envelope Parsing Tests


@pytest.mark.asyncio
async def test_invalid_json(service):
    alice_id, alice = open_connection(service)

    await service.dispatch(SessionEvent(EventKind.MESSAGE, alice_id, "{nope"))
    await settle()

    assert alice.received() == [{"type": "error", "message": "Invalid JSON"}]
    assert alice_id in service.registry


@pytest.mark.asyncio
async def test_invalid_utf8_bytes(service):
    alice_id, alice = open_connection(service)

    await service.dispatch(SessionEvent(EventKind.MESSAGE, alice_id, b"\xff\xfe"))
    await settle()

    assert alice.received() == [{"type": "error", "message": "Invalid JSON"}]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw",
    [
        "[1, 2]",
        json.dumps({"payload": {}}),
        json.dumps({"type": "join", "payload": "lobby"}),
    ],
)
async def test_malformed_envelope(service, raw):
    alice_id, alice = open_connection(service)

    await service.dispatch(SessionEvent(EventKind.MESSAGE, alice_id, raw))
    await settle()

    assert alice.received() == [{"type": "error", "message": "Invalid message"}]


@pytest.mark.asyncio
async def test_unknown_type_is_ignored(service):
    alice_id, alice = open_connection(service)

    await send(service, alice_id, "typing", {})

    assert alice.sent_messages == []


@pytest.mark.asyncio
async def test_message_for_unknown_connection_is_ignored(service):
    await service.dispatch(SessionEvent(EventKind.MESSAGE, 999, "{}"))


# Rate Limit Tests


@pytest.mark.asyncio
async def test_rate_limit_rejects_sixth_message():
    clock = FakeClock()
    service = RelayService(
        rate_limiter=RateLimiter(window_ms=1000, max_messages=5, clock=clock)
    )
    alice_id, alice = open_connection(service)

    await join(service, alice_id, "lobby", "alice")
    for i in range(5):
        await send(service, alice_id, "chat", {"message": f"msg {i}"})

    assert len(alice.received("room-info")) == 1
    assert len(alice.received("chat")) == 4
    assert alice.received()[-1] == {"type": "error", "message": "Rate limit exceeded"}

    clock.advance(1001)
    await send(service, alice_id, "chat", {"message": "later"})

    assert alice.received()[-1]["type"] == "chat"
    assert alice.received()[-1]["payload"]["message"] == "later"


# Size Cap Tests


@pytest.mark.asyncio
async def test_oversized_frame_closes_connection():
    service = RelayService(max_message_size=100)
    alice_id, alice = open_connection(service)
    bob_id, bob = open_connection(service)
    await join(service, alice_id, "lobby", "alice")
    await join(service, bob_id, "lobby", "bob")
    alice.sent_messages.clear()

    await service.dispatch(SessionEvent(EventKind.MESSAGE, bob_id, "x" * 101))
    await settle()

    assert bob.received("error") == []
    assert bob.close_code == 1009
    assert bob.close_reason == "Message too large"
    assert bob_id not in service.registry
    assert alice.received() == [
        {"type": "room-info", "payload": {"users": ["alice"], "count": 1}}
    ]


@pytest.mark.asyncio
async def test_frame_at_size_cap_is_processed():
    service = RelayService(max_message_size=100)
    alice_id, alice = open_connection(service)

    raw = json.dumps({"type": "noop", "payload": {}})
    raw = raw + " " * (100 - len(raw))
    await service.dispatch(SessionEvent(EventKind.MESSAGE, alice_id, raw))

    assert alice.close_code is None
    assert alice_id in service.registry


# Backpressure Tests


@pytest.mark.asyncio
async def test_slow_consumer_is_evicted(service):
    sockets = {}
    for name in ("alice", "bob", "carol"):
        connection_id, websocket = open_connection(service)
        await join(service, connection_id, "lobby", name)
        sockets[name] = (connection_id, websocket)
    carol_id, carol = sockets["carol"]
    carol.sent_messages.clear()
    carol.transport.buffered = 8 * 1024 * 1024 + 1

    alice_id, alice = sockets["alice"]
    await send(service, alice_id, "chat", {"message": "hi"})

    assert carol.sent_messages == []
    assert carol.close_code == 1008
    assert carol.close_reason == "Client too slow"
    assert carol_id not in service.registry
    assert service.room_store.get_room("lobby").member_names == ["alice", "bob"]

    for _, websocket in (sockets["alice"], sockets["bob"]):
        assert websocket.received("chat")[0]["payload"]["message"] == "hi"
        assert websocket.received("room-info")[-1]["payload"] == {
            "users": ["alice", "bob"],
            "count": 2,
        }


@pytest.mark.asyncio
async def test_stalled_receiver_does_not_block_sender(service):
    alice_id, alice = open_connection(service)
    carol_id, carol = open_connection(service, StalledWebSocket())
    await join(service, alice_id, "lobby", "alice")
    await join(service, carol_id, "lobby", "carol")

    for i in range(3):
        await asyncio.wait_for(
            send(service, alice_id, "chat", {"message": f"msg {i}"}), 1
        )

    assert [m["payload"]["message"] for m in alice.received("chat")] == [
        "msg 0",
        "msg 1",
        "msg 2",
    ]
    assert len(carol.received("chat")) == 3

    # Carol's buffer passes the ceiling; the next delivery evicts her
    carol.transport.buffered = 8 * 1024 * 1024 + 1
    await asyncio.wait_for(send(service, alice_id, "chat", {"message": "next"}), 1)

    assert carol.close_code == 1008
    assert carol_id not in service.registry
    assert alice.received("chat")[-1]["payload"]["message"] == "next"
    assert alice.received()[-1]["payload"] == {"users": ["alice"], "count": 1}
    carol.unblock.set()


@pytest.mark.asyncio
async def test_closed_socket_is_skipped(service):
    alice_id, alice = open_connection(service)
    bob_id, bob = open_connection(service)
    await join(service, alice_id, "lobby", "alice")
    await join(service, bob_id, "lobby", "bob")
    bob.sent_messages.clear()
    bob.state = State.CLOSING

    await send(service, alice_id, "chat", {"message": "hi"})

    assert bob.sent_messages == []
    assert bob_id in service.registry
    assert len(alice.received("chat")) == 1


# Disconnect Tests


@pytest.mark.asyncio
async def test_sole_member_disconnect_deletes_room(service):
    alice_id, alice = open_connection(service)
    await join(service, alice_id, "lobby", "alice")
    alice.sent_messages.clear()

    await service.dispatch(SessionEvent(EventKind.CLOSE, alice_id))
    await settle()

    assert service.room_store.get_room("lobby") is None
    assert alice.sent_messages == []
    assert len(service.registry) == 0


@pytest.mark.asyncio
async def test_member_disconnect_broadcasts_once(service):
    sockets = {}
    for name in ("alice", "bob", "carol"):
        connection_id, websocket = open_connection(service)
        await join(service, connection_id, "lobby", name)
        sockets[name] = (connection_id, websocket)
    for _, websocket in sockets.values():
        websocket.sent_messages.clear()

    bob_id, bob = sockets["bob"]
    await service.dispatch(SessionEvent(EventKind.CLOSE, bob_id))
    await settle()

    expected = [
        {"type": "room-info", "payload": {"users": ["alice", "carol"], "count": 2}}
    ]
    assert sockets["alice"][1].received() == expected
    assert sockets["carol"][1].received() == expected
    assert bob.sent_messages == []


@pytest.mark.asyncio
async def test_close_is_idempotent(service):
    alice_id, alice = open_connection(service)
    bob_id, bob = open_connection(service)
    await join(service, alice_id, "lobby", "alice")
    await join(service, bob_id, "lobby", "bob")
    alice.sent_messages.clear()

    await service.dispatch(SessionEvent(EventKind.CLOSE, bob_id))
    await service.dispatch(SessionEvent(EventKind.CLOSE, bob_id))
    await settle()

    assert len(alice.received("room-info")) == 1


@pytest.mark.asyncio
async def test_close_without_room(service):
    alice_id, alice = open_connection(service)

    await service.dispatch(SessionEvent(EventKind.CLOSE, alice_id))

    assert alice_id not in service.registry
    assert alice.sent_messages == []
