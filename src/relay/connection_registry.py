"""
Connection Registry

Tracks every live WebSocket connection together with its liveness and
rate limit state. Connections are keyed by a stable integer id rather
than by the socket object.
"""

import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .rate_limiter import RateLimitState

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 30  # seconds between liveness sweeps


class Liveness(Enum):
    """Heartbeat state of a connection."""

    ALIVE = "alive"
    PENDING = "pending"  # probe sent, awaiting pong


@dataclass
class Connection:
    """
    A live client connection.

    Attributes:
        connection_id: Stable identifier used as key in all registries
        websocket: The underlying WebSocket handle
        liveness: Current heartbeat state
        rate_limit: Fixed window counter for inbound messages
    """

    connection_id: int
    websocket: Any
    liveness: Liveness = Liveness.ALIVE
    rate_limit: RateLimitState = field(default_factory=RateLimitState)

    @property
    def is_alive(self) -> bool:
        return self.liveness is Liveness.ALIVE


@dataclass
class SweepResult:
    """
    Outcome of one heartbeat sweep.

    Attributes:
        expired: Connections that missed the previous probe
        probed: Connections now pending a fresh probe
    """

    expired: List[Connection] = field(default_factory=list)
    probed: List[Connection] = field(default_factory=list)


class ConnectionRegistry:
    """
    Owns all Connection records for their lifetime.

    Room membership refers to connections only by ``connection_id``.
    """

    def __init__(self):
        """Initialize an empty registry."""
        self._connections: Dict[int, Connection] = {}
        self._ids = itertools.count(1)

    def register(
        self, websocket: Any, rate_limit: Optional[RateLimitState] = None
    ) -> Connection:
        """
        Register a new connection.

        Args:
            websocket: The WebSocket handle
            rate_limit: Optional initial rate limit state

        Returns:
            The created Connection
        """
        connection = Connection(
            connection_id=next(self._ids),
            websocket=websocket,
            rate_limit=rate_limit or RateLimitState(),
        )
        self._connections[connection.connection_id] = connection
        logger.debug(f"Registered connection {connection.connection_id}")
        return connection

    def get(self, connection_id: int) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def mark_alive(self, connection_id: int) -> bool:
        """
        Record a pong for a connection.

        Returns:
            True if the connection exists, False otherwise
        """
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        connection.liveness = Liveness.ALIVE
        return True

    def sweep(self) -> SweepResult:
        """
        Advance every connection's heartbeat state by one cycle.

        Connections still PENDING from the previous cycle are reported as
        expired and left for the caller to terminate. All others become
        PENDING and are reported as needing a probe.
        """
        result = SweepResult()
        for connection in list(self._connections.values()):
            if connection.liveness is Liveness.PENDING:
                result.expired.append(connection)
            else:
                connection.liveness = Liveness.PENDING
                result.probed.append(connection)
        return result

    def unregister(self, connection_id: int) -> Optional[Connection]:
        """
        Remove a connection and its rate limit state.

        Returns:
            The removed Connection, or None if it was not registered
        """
        connection = self._connections.pop(connection_id, None)
        if connection is not None:
            logger.debug(f"Unregistered connection {connection_id}")
        return connection

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: int) -> bool:
        return connection_id in self._connections
