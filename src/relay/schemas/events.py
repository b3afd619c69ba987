"""
Event Schema Definitions

Contains functions for creating room membership events.
"""

from typing import Any, Dict, List


def create_room_info_event(users: List[str]) -> Dict[str, Any]:
    """
    Create a room-info event.

    Sent to every member after a join and after a leave that leaves the
    room non-empty.

    Args:
        users: Member display names in join order

    Returns:
        dict: Event broadcast
    """
    return {
        "type": "room-info",
        "payload": {
            "users": list(users),
            "count": len(users),
        },
    }
