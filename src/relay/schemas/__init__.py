"""
Schemas for the Relay

This module contains builders for the outbound envelopes: chat
broadcasts, room-info events and error responses.
"""

from .messages import (
    create_chat_payload,
    create_chat_broadcast,
)
from .events import create_room_info_event
from .responses import (
    create_error_response,
    CLOSE_POLICY_VIOLATION,
    CLOSE_MESSAGE_TOO_BIG,
    CLOSE_REASON_TOO_SLOW,
    CLOSE_REASON_TOO_LARGE,
)

__all__ = [
    "create_chat_payload",
    "create_chat_broadcast",
    "create_room_info_event",
    "create_error_response",
    "CLOSE_POLICY_VIOLATION",
    "CLOSE_MESSAGE_TOO_BIG",
    "CLOSE_REASON_TOO_SLOW",
    "CLOSE_REASON_TOO_LARGE",
]
