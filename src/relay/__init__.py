"""
Relay Server Package

This package provides the room chat relay: the room and connection
registries, rate limiting, broadcast delivery and the WebSocket server.
"""

from .connection_registry import (
    Connection,
    ConnectionRegistry,
    Liveness,
    SweepResult,
    HEARTBEAT_INTERVAL,
)
from .errors import (
    RelayError,
    JoinError,
    JoinErrorCode,
    ChatError,
    ChatErrorCode,
)
from .rate_limiter import (
    RateLimiter,
    RateLimitState,
    RATE_LIMIT_WINDOW,
    RATE_LIMIT_MAX,
)
from .room_state import (
    RoomStore,
    Room,
    Member,
    LeaveResult,
    MAX_ROOMS,
    MAX_USERS_PER_ROOM,
)
from .service import RelayService, SessionEvent, EventKind
from .websocket_server import WebSocketServer

__all__ = [
    "Connection",
    "ConnectionRegistry",
    "Liveness",
    "SweepResult",
    "HEARTBEAT_INTERVAL",
    "RelayError",
    "JoinError",
    "JoinErrorCode",
    "ChatError",
    "ChatErrorCode",
    "RateLimiter",
    "RateLimitState",
    "RATE_LIMIT_WINDOW",
    "RATE_LIMIT_MAX",
    "RoomStore",
    "Room",
    "Member",
    "LeaveResult",
    "MAX_ROOMS",
    "MAX_USERS_PER_ROOM",
    "RelayService",
    "SessionEvent",
    "EventKind",
    "WebSocketServer",
]
