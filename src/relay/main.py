#!/usr/bin/env python3
"""
Room Chat Relay Server

A WebSocket relay that broadcasts chat messages to everyone in a room.
"""

import asyncio
import logging
import os
import sys

from .connection_registry import HEARTBEAT_INTERVAL
from .service import EventKind, RelayService, SessionEvent
from .websocket_server import WebSocketServer

# Configure logging
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


async def run_server(host: str, port: int):
    """
    Run the relay server until cancelled.

    Args:
        host: WebSocket host address to bind to
        port: WebSocket port to listen on
    """
    service = RelayService()
    ws_server = WebSocketServer(service, host, port)

    await ws_server.start()
    logger.info(f"Relay listening on ws://{host}:{ws_server.port}")

    heartbeat_task = asyncio.create_task(heartbeat_monitor(service))

    # Keep server running
    try:
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        logger.info("Server shutdown requested")
    finally:
        heartbeat_task.cancel()
        try:
            await heartbeat_task
        except asyncio.CancelledError:
            pass
        await ws_server.stop()
        logger.info("Relay server stopped")


async def heartbeat_monitor(
    service: RelayService, interval: float = HEARTBEAT_INTERVAL
):
    """
    Periodic task driving the heartbeat sweep.

    Runs every ``interval`` seconds. Connections that did not answer the
    previous probe are terminated, the rest are probed again.

    Args:
        service: The relay service
        interval: Seconds between sweeps
    """
    logger.info("Starting heartbeat monitor task")

    while True:
        try:
            await asyncio.sleep(interval)
            await service.dispatch(SessionEvent(EventKind.SWEEP_TICK))
        except asyncio.CancelledError:
            logger.info("Heartbeat monitor task cancelled")
            raise
        except Exception as e:
            logger.error(f"Error in heartbeat monitor: {e}")


def main():
    """Main entry point for the relay server."""
    logger.info("Starting room chat relay...")

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8080"))

    try:
        asyncio.run(run_server(host, port))
    except KeyboardInterrupt:
        logger.info("Shutting down relay server...")
        sys.exit(0)


if __name__ == "__main__":
    main()
