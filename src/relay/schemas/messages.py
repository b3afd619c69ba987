"""
Message Schema Definitions

Contains functions for creating standardized chat message structures.
"""

from typing import Any, Dict, Optional


def create_chat_payload(
    sender: str,
    message: str,
    timestamp: str,
    file: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Create a chat payload.

    Args:
        sender: Display name resolved from room membership
        message: Message text, possibly empty when a file is attached
        timestamp: ISO 8601 timestamp assigned by the server
        file: Optional inline file object, relayed verbatim

    Returns:
        dict: Chat payload
    """
    payload = {
        "sender": sender,
        "message": message,
        "timestamp": timestamp,
    }
    if file is not None:
        payload["file"] = file
    return payload


def create_chat_broadcast(chat_payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Create a chat broadcast envelope.

    Args:
        chat_payload: Payload from create_chat_payload

    Returns:
        dict: Broadcast message
    """
    return {
        "type": "chat",
        "payload": chat_payload,
    }
