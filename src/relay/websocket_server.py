"""
WebSocket Server for the Relay

Accepts WebSocket connections and feeds their frames and close events
into the relay service.
"""

import logging
from typing import Optional

from websockets.exceptions import ConnectionClosed
from websockets.asyncio.server import Server, ServerConnection, serve

from .service import EventKind, RelayService, SessionEvent

logger = logging.getLogger(__name__)


class WebSocketServer:
    """
    WebSocket server for handling client connections.

    The library's keepalive is disabled; liveness is driven by the
    service's heartbeat sweep instead.
    """

    def __init__(self, service: RelayService, host: str, port: int):
        """
        Initialize the WebSocket server.

        Args:
            service: The relay service handling session events
            host: Host address to bind to
            port: Port to listen on, 0 for an ephemeral port
        """
        self.service = service
        self.host = host
        self.port = port
        self.server: Optional[Server] = None

    async def start(self):
        """Start the WebSocket server."""
        self.server = await serve(
            self.handle_client,
            self.host,
            self.port,
            ping_interval=None,
            # Frames between the two limits are closed by the service
            max_size=self.service.max_message_size * 2,
            # Sends are background tasks, so pausing at this mark only
            # parks them until eviction
            write_limit=self.service.max_buffered,
        )
        if self.port == 0:
            self.port = self.server.sockets[0].getsockname()[1]
        logger.info(f"WebSocket server started on ws://{self.host}:{self.port}")

    async def stop(self):
        """Stop the WebSocket server."""
        if self.server:
            self.server.close()
            await self.server.wait_closed()
            logger.info("WebSocket server stopped")

    async def handle_client(self, websocket: ServerConnection):
        """
        Handle a client connection.

        Args:
            websocket: The WebSocket connection
        """
        connection = self.service.connect(websocket)
        connection_id = connection.connection_id
        reason = None

        try:
            async for message in websocket:
                await self.service.dispatch(
                    SessionEvent(EventKind.MESSAGE, connection_id, message)
                )
        except ConnectionClosed as e:
            reason = f"code {e.rcvd.code}" if e.rcvd else "no close frame"
        except Exception as e:
            logger.error(f"Error handling connection {connection_id}: {e}")
            reason = "handler error"
        finally:
            await self.service.dispatch(
                SessionEvent(EventKind.CLOSE, connection_id, reason)
            )
