"""
Validation Utilities

Contains utility functions for normalising identifiers and validating
chat message content and inline file payloads.
"""

from typing import Any, Optional, Tuple, Union

# Validation constants
MAX_MESSAGE_SIZE = 4_000_000  # bytes per inbound frame
MAX_ROOM_ID_LENGTH = 50
MAX_NAME_LENGTH = 20
MAX_MESSAGE_LENGTH = 10_000
MAX_FILE_SIZE = 2 * 1024 * 1024  # 2 MiB, declared size

FILE_STRING_FIELDS = ("name", "type", "data")


def frame_size(raw: Union[str, bytes]) -> int:
    """Size of an inbound frame in bytes."""
    if isinstance(raw, str):
        return len(raw.encode("utf-8"))
    return len(raw)


def normalize_identifier(value: Any, max_length: int) -> str:
    """
    Normalise a user supplied room id or display name.

    Args:
        value: Raw value from the client payload
        max_length: Maximum number of characters kept

    Returns:
        The trimmed and truncated string, possibly empty
    """
    return str(value).strip()[:max_length]


def validate_message_content(
    content: Any, max_length: int = MAX_MESSAGE_LENGTH
) -> Tuple[bool, Optional[str]]:
    """
    Validate message content.

    Args:
        content: The message content to validate, None when absent
        max_length: Maximum number of characters allowed

    Returns:
        tuple: (is_valid, error_message)
            - is_valid: True if content is valid, False otherwise
            - error_message: Error message if invalid, None if valid
    """
    if content is None:
        return True, None

    if len(str(content)) > max_length:
        return False, f"Message too long (max {max_length} characters)"

    return True, None


def has_text(content: Any) -> bool:
    """Return True if the content has non-whitespace text."""
    return bool(content) and bool(str(content).strip())


def validate_file_payload(
    file: Any, max_size: int = MAX_FILE_SIZE
) -> Tuple[bool, Optional[str]]:
    """
    Validate the shape of an inline file payload.

    Only the declared ``size`` is checked; ``data`` is relayed verbatim
    and never decoded.

    Args:
        file: The file object from the chat payload
        max_size: Maximum declared size in bytes

    Returns:
        tuple: (is_valid, error_message)
    """
    if not isinstance(file, dict):
        return False, "File must be an object"

    for field_name in FILE_STRING_FIELDS:
        if not isinstance(file.get(field_name), str):
            return False, f"File field '{field_name}' must be a string"

    size = file.get("size")
    # bool is an int subclass
    if isinstance(size, bool) or not isinstance(size, (int, float)):
        return False, "File field 'size' must be a number"

    if size > max_size:
        return False, f"File too large (max {max_size} bytes)"

    return True, None
