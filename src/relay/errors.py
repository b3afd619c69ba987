"""
Error Types for the Relay

Room store operations raise these errors; the session handler translates
them into ``error`` envelopes for the offending connection.
"""

from enum import Enum
from typing import Optional


class JoinErrorCode(Enum):
    """Reasons a join request can be rejected."""

    ALREADY_JOINED = "Already joined"
    MISSING_FIELDS = "Missing fields"
    INVALID_ROOM_OR_NAME = "Invalid room or name"
    SERVER_FULL = "Server full"
    WRONG_PASSWORD = "Wrong password"
    ROOM_FULL = "Room full"
    NAME_TAKEN = "Name taken"


class ChatErrorCode(Enum):
    """Reasons a chat message can be rejected."""

    NOT_IN_ROOM = "Not in a room"
    EMPTY_MESSAGE = "Empty message"
    MESSAGE_TOO_LONG = "Message too long"
    INVALID_FILE = "Invalid file"


class RelayError(Exception):
    """
    Base class for recoverable protocol errors.

    Attributes:
        error_code: Enum member identifying the failure
        message: Human readable reason sent to the client
    """

    def __init__(self, error_code: Enum, message: Optional[str] = None):
        self.error_code = error_code
        self.message = message or error_code.value
        super().__init__(self.message)


class JoinError(RelayError):
    """Raised when a connection cannot join a room."""


class ChatError(RelayError):
    """Raised when a chat message cannot be relayed."""
