"""
Response Schema Definitions

Contains functions for creating responses sent to a single connection.
"""

from typing import Any, Dict

# WebSocket close codes for forced disconnects
CLOSE_POLICY_VIOLATION = 1008
CLOSE_MESSAGE_TOO_BIG = 1009

CLOSE_REASON_TOO_SLOW = "Client too slow"
CLOSE_REASON_TOO_LARGE = "Message too large"


def create_error_response(error_message: str) -> Dict[str, Any]:
    """
    Create an error response.

    Args:
        error_message: Human readable reason

    Returns:
        dict: Error response
    """
    return {
        "type": "error",
        "message": error_message,
    }
