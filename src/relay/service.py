"""
Relay Service

Session handler for the room chat relay. Every input for a connection
(inbound frame, close, pong, heartbeat tick) becomes a SessionEvent and
goes through ``RelayService.dispatch``.

Supports:
    - join
    - chat

Architecture:
    - Single asyncio event loop, so state updates never interleave
    - Member lists are snapshotted before any send
    - Sends and heartbeat probes run as background tasks, so a peer that
      stops reading never stalls a handler or the sweep
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Dict, Iterable, Optional, Set

from websockets.exceptions import ConnectionClosed

from .connection_registry import Connection, ConnectionRegistry, SweepResult
from .errors import RelayError
from .rate_limiter import RateLimiter
from .room_state import Member, RoomStore
from .schemas import (
    CLOSE_MESSAGE_TOO_BIG,
    CLOSE_POLICY_VIOLATION,
    CLOSE_REASON_TOO_LARGE,
    CLOSE_REASON_TOO_SLOW,
    create_chat_broadcast,
    create_error_response,
    create_room_info_event,
)
from .utils.broadcast import (
    MAX_BUFFERED_AMOUNT,
    broadcast,
    deliver,
    is_over_ceiling,
)
from .utils.validation import MAX_MESSAGE_SIZE, frame_size

logger = logging.getLogger(__name__)


class EventKind(Enum):
    """Inputs that drive a connection's state machine."""

    MESSAGE = "message"
    CLOSE = "close"
    PROBE_ACK = "probe_ack"
    SWEEP_TICK = "sweep_tick"


@dataclass
class SessionEvent:
    """
    One input to the session handler.

    Attributes:
        kind: What happened
        connection_id: Affected connection, None for SWEEP_TICK
        data: Raw frame for MESSAGE, optional reason for CLOSE
    """

    kind: EventKind
    connection_id: Optional[int] = None
    data: Any = None


class RelayService:
    """
    Main relay service for handling events from clients.
    """

    def __init__(
        self,
        registry: Optional[ConnectionRegistry] = None,
        room_store: Optional[RoomStore] = None,
        rate_limiter: Optional[RateLimiter] = None,
        max_message_size: int = MAX_MESSAGE_SIZE,
        max_buffered: int = MAX_BUFFERED_AMOUNT,
    ):
        """
        Initialize the relay service.

        Args:
            registry: Registry of live connections
            room_store: Store holding rooms and membership
            rate_limiter: Per-connection inbound rate limiter
            max_message_size: Inbound frame cap in bytes
            max_buffered: Outbound buffer ceiling in bytes
        """
        self.registry = registry or ConnectionRegistry()
        self.room_store = room_store or RoomStore()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.max_message_size = max_message_size
        self.max_buffered = max_buffered
        self._background: Set[asyncio.Task] = set()

    def connect(self, websocket) -> Connection:
        """Register a newly accepted WebSocket."""
        connection = self.registry.register(
            websocket, self.rate_limiter.new_state()
        )
        logger.info(
            f"Connection {connection.connection_id} opened "
            f"({len(self.registry)} connected)"
        )
        return connection

    async def dispatch(self, event: SessionEvent):
        """
        Entry point for every session event.

        Args:
            event: The event to process
        """
        if event.kind is EventKind.MESSAGE:
            await self.handle_message(event.connection_id, event.data)
        elif event.kind is EventKind.CLOSE:
            await self.handle_close(event.connection_id, event.data)
        elif event.kind is EventKind.PROBE_ACK:
            self.registry.mark_alive(event.connection_id)
        elif event.kind is EventKind.SWEEP_TICK:
            await self.sweep_and_terminate()

    async def handle_message(self, connection_id: int, raw):
        """
        Process one inbound frame.

        Order: rate limit, size cap, JSON decode, type dispatch.
        """
        connection = self.registry.get(connection_id)
        if connection is None:
            return

        if not self.rate_limiter.admit(connection):
            await self.send_error(connection, "Rate limit exceeded")
            return

        size = frame_size(raw)
        if size > self.max_message_size:
            logger.warning(
                f"Connection {connection_id} sent {size} byte frame, "
                f"closing"
            )
            await self.force_close(
                connection, CLOSE_MESSAGE_TOO_BIG, CLOSE_REASON_TOO_LARGE
            )
            return

        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            message = json.loads(raw)
        except (ValueError, RecursionError) as e:
            logger.debug(f"Invalid JSON from connection {connection_id}: {e}")
            await self.send_error(connection, "Invalid JSON")
            return

        if (
            not isinstance(message, dict)
            or not message.get("type")
            or not isinstance(message.get("payload"), dict)
        ):
            await self.send_error(connection, "Invalid message")
            return

        message_type = message["type"]
        payload = message["payload"]

        try:
            if message_type == "join":
                await self.handle_join(connection, payload)
            elif message_type == "chat":
                await self.handle_chat(connection, payload)
            else:
                logger.debug(
                    f"Ignoring unknown message type {message_type!r} "
                    f"from connection {connection_id}"
                )
        except RelayError as e:
            logger.info(
                f"Rejected {message_type} from connection "
                f"{connection_id}: {e.message}"
            )
            await self.send_error(connection, e.message)
        except Exception as e:
            logger.error(
                f"Error processing {message_type} from connection "
                f"{connection_id}: {e}"
            )
            await self.send_error(connection, "Internal server error")

    async def handle_join(self, connection: Connection, payload: Dict):
        """
        Handle a join request.

        Expected payload format:
        {
            "roomId": "...",
            "name": "...",
            "password": "..."   (optional)
        }
        """
        room = self.room_store.join(
            connection.connection_id,
            payload.get("roomId"),
            payload.get("name"),
            payload.get("password", ""),
        )
        await self.broadcast_room_info(room.room_id)

    async def handle_chat(self, connection: Connection, payload: Dict):
        """
        Handle a chat message.

        Expected payload format:
        {
            "message": "...",   (optional)
            "file": {"name", "type", "size", "data"}   (optional)
        }
        """
        chat_payload = self.room_store.chat(
            connection.connection_id,
            payload.get("message"),
            payload.get("file"),
        )
        room = self.room_store.room_of(connection.connection_id)
        await self.broadcast_to_members(
            list(room.members), create_chat_broadcast(chat_payload)
        )

    async def handle_close(
        self, connection_id: int, reason: Optional[str] = None
    ):
        """
        Clean up after a connection, however it ended.

        Safe to call more than once for the same connection.
        """
        connection = self.registry.unregister(connection_id)
        result = self.room_store.leave(connection_id)

        if connection is not None:
            logger.info(
                f"Connection {connection_id} closed"
                f"{f' ({reason})' if reason else ''} "
                f"({len(self.registry)} connected)"
            )

        if result is not None and not result.room_deleted:
            await self.broadcast_room_info(result.room_id)

    async def sweep_and_terminate(self) -> SweepResult:
        """
        Run one heartbeat cycle.

        Connections that never answered the previous probe are
        terminated; every other connection gets a new probe.
        """
        result = self.registry.sweep()

        for connection in result.expired:
            await self.terminate(connection)

        for connection in result.probed:
            if connection.connection_id not in self.registry:
                continue
            if is_over_ceiling(connection, self.max_buffered):
                await self.evict(connection)
            else:
                self._spawn(self._probe(connection))

        logger.debug(
            f"Heartbeat sweep: {len(result.expired)} terminated, "
            f"{len(result.probed)} probed"
        )
        return result

    async def terminate(self, connection: Connection):
        """Drop an unresponsive connection without a close handshake."""
        logger.info(
            f"Connection {connection.connection_id} missed heartbeat, "
            f"terminating"
        )
        await self.handle_close(connection.connection_id, "heartbeat timeout")
        connection.websocket.transport.abort()

    async def force_close(self, connection: Connection, code: int, reason: str):
        """
        Close a connection with a close code.

        Membership cleanup runs immediately; the close handshake is left
        to finish in the background.
        """
        await self.handle_close(connection.connection_id, reason)
        self._spawn(connection.websocket.close(code, reason))

    async def evict(self, connection: Connection):
        """Disconnect a receiver whose outbound buffer is over the ceiling."""
        await self.force_close(
            connection, CLOSE_POLICY_VIOLATION, CLOSE_REASON_TOO_SLOW
        )

    async def broadcast_room_info(self, room_id: str):
        """Send the current member list to everyone in a room."""
        members = self.room_store.members_of(room_id)
        if not members:
            return
        event = create_room_info_event([member.name for member in members])
        await self.broadcast_to_members(members, event)

    async def broadcast_to_members(
        self, members: Iterable[Member], message: Dict[str, Any]
    ) -> int:
        """
        Broadcast an envelope to a snapshot of room members.

        Returns:
            int: Number of members the envelope was handed to
        """
        connections = []
        for member in members:
            connection = self.registry.get(member.connection_id)
            if connection is not None:
                connections.append(connection)
        return await broadcast(
            connections, message, self.evict, self._spawn, self.max_buffered
        )

    async def send_error(self, connection: Connection, error_message: str):
        """
        Send an error response to a single connection.

        Args:
            connection: The target connection
            error_message: Human readable reason
        """
        response = create_error_response(error_message)
        await deliver(
            connection,
            json.dumps(response),
            self.evict,
            self._spawn,
            self.max_buffered,
        )

    async def _probe(self, connection: Connection):
        try:
            pong_waiter = await connection.websocket.ping()
        except ConnectionClosed:
            return
        pong_waiter.add_done_callback(
            partial(self._on_pong, connection.connection_id)
        )

    def _on_pong(self, connection_id: int, pong_waiter: asyncio.Future):
        if pong_waiter.cancelled() or pong_waiter.exception() is not None:
            return
        self._spawn(
            self.dispatch(SessionEvent(EventKind.PROBE_ACK, connection_id))
        )

    def _spawn(self, coro):
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task
