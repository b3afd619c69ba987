"""
Broadcast Utilities

Contains utility functions for delivering envelopes to connections.
Each recipient is served independently; a slow or closed socket never
holds up the others.

Sends run as background tasks, so callers never wait for a peer's
transport to drain.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable

from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

logger = logging.getLogger(__name__)

MAX_BUFFERED_AMOUNT = 8 * 1024 * 1024  # 8 MiB outbound ceiling

EvictCallback = Callable[[Any], Awaitable[None]]
SpawnCallback = Callable[[Awaitable[Any]], Any]


def buffered_amount(websocket) -> int:
    """Bytes queued in the socket's transport but not yet written."""
    return websocket.transport.get_write_buffer_size()


def is_over_ceiling(connection, max_buffered: int = MAX_BUFFERED_AMOUNT) -> bool:
    """Check a connection's outbound buffer against the ceiling."""
    pending = buffered_amount(connection.websocket)
    if pending > max_buffered:
        logger.warning(
            f"Connection {connection.connection_id} too slow "
            f"({pending} bytes buffered), disconnecting"
        )
        return True
    return False


async def send_frame(connection, message_json: str):
    """Send one frame, ignoring sockets that closed in the meantime."""
    try:
        await connection.websocket.send(message_json)
    except ConnectionClosed:
        logger.debug(
            f"Connection {connection.connection_id} closed before delivery"
        )


async def deliver(
    connection,
    message_json: str,
    on_evict: EvictCallback,
    spawn: SpawnCallback,
    max_buffered: int = MAX_BUFFERED_AMOUNT,
) -> bool:
    """
    Send a serialized envelope to one connection.

    Sockets that are not open are skipped. Sockets whose outbound buffer
    already exceeds ``max_buffered`` are handed to ``on_evict`` instead.
    Otherwise the send is scheduled with ``spawn`` and not awaited.

    Args:
        connection: Target Connection
        message_json: Serialized envelope
        on_evict: Coroutine function called with a too-slow connection
        spawn: Schedules the send coroutine as a background task
        max_buffered: Outbound buffer ceiling in bytes

    Returns:
        bool: True if the frame was handed to the socket
    """
    if connection.websocket.state is not State.OPEN:
        return False

    if is_over_ceiling(connection, max_buffered):
        await on_evict(connection)
        return False

    spawn(send_frame(connection, message_json))
    return True


async def broadcast(
    connections: Iterable,
    message: Dict[str, Any],
    on_evict: EvictCallback,
    spawn: SpawnCallback,
    max_buffered: int = MAX_BUFFERED_AMOUNT,
) -> int:
    """
    Send the same envelope to every connection.

    The envelope is serialized once. Failures are logged per recipient
    and never raised.

    Args:
        connections: Recipients, usually a room's member snapshot
        message: Envelope to broadcast
        on_evict: Coroutine function called with a too-slow connection
        spawn: Schedules each send coroutine as a background task
        max_buffered: Outbound buffer ceiling in bytes

    Returns:
        int: Number of recipients the frame was handed to
    """
    recipients = list(connections)
    if not recipients:
        return 0

    message_json = json.dumps(message)
    results = await asyncio.gather(
        *(
            deliver(connection, message_json, on_evict, spawn, max_buffered)
            for connection in recipients
        ),
        return_exceptions=True,
    )

    delivered = 0
    for connection, result in zip(recipients, results):
        if isinstance(result, Exception):
            logger.error(
                f"Failed to deliver {message.get('type')} to connection "
                f"{connection.connection_id}: {result}"
            )
        elif result:
            delivered += 1
    return delivered
