"""
Room State Management for the Relay

This module manages the in-memory state of all rooms. Rooms are created
lazily on the first successful join and deleted as soon as their last
member leaves.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .errors import ChatError, ChatErrorCode, JoinError, JoinErrorCode
from .schemas.messages import create_chat_payload
from .utils.validation import (
    MAX_FILE_SIZE,
    MAX_MESSAGE_LENGTH,
    MAX_NAME_LENGTH,
    MAX_ROOM_ID_LENGTH,
    has_text,
    normalize_identifier,
    validate_file_payload,
    validate_message_content,
)

logger = logging.getLogger(__name__)

# Configuration constants for room management
MAX_ROOMS = 1_000
MAX_USERS_PER_ROOM = 50
ANONYMOUS_SENDER = "Anonymous"


@dataclass
class Member:
    """
    A connection's participation in a room.

    Attributes:
        connection_id: Id of the member's connection
        name: Display name, unique case-insensitively within the room
        joined_at: ISO 8601 timestamp when the member joined
    """

    connection_id: int
    name: str
    joined_at: str = ""

    def __post_init__(self):
        """Initialize the join timestamp if not set."""
        if not self.joined_at:
            self.joined_at = datetime.now(timezone.utc).isoformat()


@dataclass
class Room:
    """
    Represents a chat room.

    Attributes:
        room_id: Normalised room identifier
        password: Plaintext password, None when the room is open
        members: Members in join order
        created_at: ISO 8601 timestamp when the room was created
    """

    room_id: str
    password: Optional[str] = None
    members: List[Member] = field(default_factory=list)
    created_at: str = ""

    def __post_init__(self):
        """Initialize the creation timestamp if not set."""
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()

    @property
    def member_names(self) -> List[str]:
        return [member.name for member in self.members]

    @property
    def connection_ids(self) -> List[int]:
        return [member.connection_id for member in self.members]

    def find_member(self, connection_id: int) -> Optional[Member]:
        for member in self.members:
            if member.connection_id == connection_id:
                return member
        return None

    def has_name(self, name: str) -> bool:
        """Check for a case-insensitive name collision."""
        lowered = name.lower()
        return any(member.name.lower() == lowered for member in self.members)

    def to_dict(self) -> Dict[str, Any]:
        """Convert room to dictionary for serialization."""
        return {
            "room_id": self.room_id,
            "member_count": len(self.members),
            "has_password": bool(self.password),
            "created_at": self.created_at,
        }


@dataclass
class LeaveResult:
    """
    Outcome of removing a connection from its room.

    Attributes:
        room_id: Room the connection was in
        name: Display name of the departed member
        remaining: Snapshot of the members still in the room
        room_deleted: True if the room was emptied and removed
    """

    room_id: str
    name: str
    remaining: List[Member]
    room_deleted: bool


class RoomStore:
    """
    Registry of rooms and the connection to room mapping.

    All methods are synchronous; callers on the event loop get atomic
    updates without extra locking.
    """

    def __init__(
        self,
        max_rooms: int = MAX_ROOMS,
        max_members: int = MAX_USERS_PER_ROOM,
        max_message_length: int = MAX_MESSAGE_LENGTH,
        max_file_size: int = MAX_FILE_SIZE,
    ):
        """
        Initialize the room store.

        Args:
            max_rooms: Maximum number of concurrent rooms
            max_members: Maximum members per room
            max_message_length: Maximum chat text length in characters
            max_file_size: Maximum declared file size in bytes
        """
        self.max_rooms = max_rooms
        self.max_members = max_members
        self.max_message_length = max_message_length
        self.max_file_size = max_file_size
        self._rooms: Dict[str, Room] = {}
        self._connection_rooms: Dict[int, str] = {}

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    def get_room(self, room_id: str) -> Optional[Room]:
        """
        Get a room by its ID.

        Args:
            room_id: The room ID to look up

        Returns:
            The Room object if found, None otherwise
        """
        return self._rooms.get(room_id)

    def room_of(self, connection_id: int) -> Optional[Room]:
        """Return the room a connection is in, if any."""
        room_id = self._connection_rooms.get(connection_id)
        if room_id is None:
            return None
        return self._rooms.get(room_id)

    def members_of(self, room_id: str) -> List[Member]:
        """Return a snapshot of a room's members."""
        room = self._rooms.get(room_id)
        return list(room.members) if room else []

    def list_rooms(self) -> List[Dict]:
        """
        Get a list of all rooms.

        Returns:
            List of room dictionaries with metadata
        """
        return [room.to_dict() for room in self._rooms.values()]

    def join(
        self,
        connection_id: int,
        room_id: Any,
        name: Any,
        password: Any = "",
    ) -> Room:
        """
        Add a connection to a room, creating the room if needed.

        Args:
            connection_id: The joining connection
            room_id: Raw room identifier from the client
            name: Raw display name from the client
            password: Raw password, empty for an open room

        Returns:
            The joined Room

        Raises:
            JoinError: If the join is rejected
        """
        if connection_id in self._connection_rooms:
            raise JoinError(JoinErrorCode.ALREADY_JOINED)

        if not room_id or not name:
            raise JoinError(JoinErrorCode.MISSING_FIELDS)

        room_id = normalize_identifier(room_id, MAX_ROOM_ID_LENGTH)
        name = normalize_identifier(name, MAX_NAME_LENGTH)
        password = "" if password is None else str(password)

        if not room_id or not name:
            raise JoinError(JoinErrorCode.INVALID_ROOM_OR_NAME)

        room = self._rooms.get(room_id)

        if room is None:
            if len(self._rooms) >= self.max_rooms:
                raise JoinError(JoinErrorCode.SERVER_FULL)
            room = Room(room_id=room_id, password=password or None)
            self._rooms[room_id] = room
            logger.info(
                f"Created room '{room_id}'"
                f"{' (password protected)' if room.password else ''}"
            )
        else:
            # Plain equality, the password is never hashed
            if room.password and room.password != password:
                raise JoinError(JoinErrorCode.WRONG_PASSWORD)
            if len(room.members) >= self.max_members:
                raise JoinError(JoinErrorCode.ROOM_FULL)
            if room.has_name(name):
                raise JoinError(JoinErrorCode.NAME_TAKEN)

        room.members.append(Member(connection_id=connection_id, name=name))
        self._connection_rooms[connection_id] = room_id
        logger.info(
            f"Connection {connection_id} joined room '{room_id}' as {name} "
            f"({len(room.members)} members)"
        )
        return room

    def leave(self, connection_id: int) -> Optional[LeaveResult]:
        """
        Remove a connection from its room.

        Deletes the room when it becomes empty.

        Args:
            connection_id: The departing connection

        Returns:
            LeaveResult, or None if the connection was not in a room
        """
        room_id = self._connection_rooms.pop(connection_id, None)
        if room_id is None:
            return None

        room = self._rooms.get(room_id)
        if room is None:
            return None

        member = room.find_member(connection_id)
        room.members = [
            m for m in room.members if m.connection_id != connection_id
        ]

        room_deleted = not room.members
        if room_deleted:
            del self._rooms[room_id]
            logger.info(f"Deleted empty room '{room_id}'")

        name = member.name if member else ANONYMOUS_SENDER
        logger.info(f"Connection {connection_id} ({name}) left room '{room_id}'")
        return LeaveResult(
            room_id=room_id,
            name=name,
            remaining=list(room.members),
            room_deleted=room_deleted,
        )

    def chat(
        self, connection_id: int, message: Any = None, file: Any = None
    ) -> Dict[str, Any]:
        """
        Validate a chat message and build its broadcast payload.

        Args:
            connection_id: The sending connection
            message: Optional message text
            file: Optional inline file object

        Returns:
            dict: Chat payload with sender, message, optional file and
            a freshly assigned timestamp

        Raises:
            ChatError: If the message is rejected
        """
        room = self.room_of(connection_id)
        if room is None:
            raise ChatError(ChatErrorCode.NOT_IN_ROOM)

        if not has_text(message) and file is None:
            raise ChatError(ChatErrorCode.EMPTY_MESSAGE)

        is_valid, reason = validate_message_content(
            message, self.max_message_length
        )
        if not is_valid:
            logger.debug(f"Rejected message from {connection_id}: {reason}")
            raise ChatError(ChatErrorCode.MESSAGE_TOO_LONG)

        if file is not None:
            is_valid, reason = validate_file_payload(file, self.max_file_size)
            if not is_valid:
                logger.debug(f"Rejected file from {connection_id}: {reason}")
                raise ChatError(ChatErrorCode.INVALID_FILE)

        member = room.find_member(connection_id)
        sender = member.name if member else ANONYMOUS_SENDER

        return create_chat_payload(
            sender=sender,
            message="" if message is None else str(message),
            file=file,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
