"""OSS input validation helpers for osslite.

These functions enforce OSS naming and parameter rules independently of
any HTTP handler, so they can be unit-tested in isolation. Each raises
an ``OSSError`` subclass on invalid input.
"""

import re

from osslite.errors import InvalidArgument, InvalidBucketName, InvalidObjectName

# OSS bucket naming rules:
#   - 3-63 characters
#   - lowercase letters, digits and hyphens
#   - must start and end with a letter or digit
_BUCKET_RE = re.compile(r"^[a-z0-9][a-z0-9\-]{1,61}[a-z0-9]$")

_MAX_KEY_BYTES = 1023
_MAX_MAX_KEYS = 1000


def validate_bucket_name(name: str) -> None:
    """Validate an OSS bucket name.

    Args:
        name: The candidate bucket name.

    Raises:
        InvalidBucketName: If the name violates a bucket naming rule.
    """
    if not _BUCKET_RE.match(name):
        raise InvalidBucketName(name)


def validate_object_key(key: str) -> None:
    """Validate an OSS object key.

    Args:
        key: The object key string.

    Raises:
        InvalidObjectName: If the key is empty, longer than 1023 UTF-8
            bytes, starts with a slash or backslash, or has a
            ``.`` or ``..`` path segment.
    """
    if not key:
        raise InvalidObjectName("Object name must not be empty.")
    if len(key.encode("utf-8")) > _MAX_KEY_BYTES:
        raise InvalidObjectName("Object name is too long.")
    if key[0] in ("/", "\\"):
        raise InvalidObjectName("Object name must not start with '/' or '\\'.")
    if any(segment in (".", "..") for segment in key.replace("\\", "/").split("/")):
        raise InvalidObjectName("Object name must not contain '.' or '..' path segments.")


def validate_max_keys(value: str) -> int:
    """Validate and parse the ``max-keys`` query parameter.

    Args:
        value: The raw string value from the query string.

    Returns:
        An integer in the range [1, 1000].

    Raises:
        InvalidArgument: If the value is not a valid integer or is out of range.
    """
    try:
        n = int(value)
    except (ValueError, TypeError):
        raise InvalidArgument(f"Argument max-keys must be an integer between 1 and {_MAX_MAX_KEYS}")

    if n < 1 or n > _MAX_MAX_KEYS:
        raise InvalidArgument(f"Argument max-keys must be an integer between 1 and {_MAX_MAX_KEYS}")

    return n


def validate_append_position(value: str | None) -> int:
    """Validate and parse the ``position`` query parameter of an append.

    Args:
        value: The raw string value from the query string.

    Returns:
        A non-negative integer offset.

    Raises:
        InvalidArgument: If the value is missing, not an integer or negative.
    """
    if value is None or value == "":
        raise InvalidArgument("Append position is required.")
    try:
        n = int(value)
    except ValueError:
        raise InvalidArgument("Append position must be a non-negative integer.")
    if n < 0:
        raise InvalidArgument("Append position must be a non-negative integer.")
    return n


def validate_part_number(value: str | None, max_part_number: int) -> int:
    """Validate and parse the ``partNumber`` query parameter.

    Args:
        value: The raw string value from the query string.
        max_part_number: The highest part number accepted.

    Returns:
        The part number.

    Raises:
        InvalidArgument: If the value is not an integer in [1, max_part_number].
    """
    message = f"Part number must be an integer between 1 and {max_part_number}."
    try:
        n = int(value) if value is not None else 0
    except ValueError:
        raise InvalidArgument(message)
    if n < 1 or n > max_part_number:
        raise InvalidArgument(message)
    return n
