"""
Utilities for the Relay

This module contains utility functions for common operations
like broadcasting and validation.
"""

from .broadcast import broadcast, deliver, is_over_ceiling, MAX_BUFFERED_AMOUNT
from .validation import (
    frame_size,
    has_text,
    normalize_identifier,
    validate_file_payload,
    validate_message_content,
    MAX_FILE_SIZE,
    MAX_MESSAGE_LENGTH,
    MAX_MESSAGE_SIZE,
    MAX_NAME_LENGTH,
    MAX_ROOM_ID_LENGTH,
)

__all__ = [
    "broadcast",
    "deliver",
    "is_over_ceiling",
    "frame_size",
    "has_text",
    "normalize_identifier",
    "validate_file_payload",
    "validate_message_content",
    "MAX_BUFFERED_AMOUNT",
    "MAX_FILE_SIZE",
    "MAX_MESSAGE_LENGTH",
    "MAX_MESSAGE_SIZE",
    "MAX_NAME_LENGTH",
    "MAX_ROOM_ID_LENGTH",
]
