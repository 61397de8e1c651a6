"""Validation of upload request parameters.

Identifiers, versions and flags arrive as strings from the request layer;
each validator returns the decoded value, None when the value is missing,
or raises InvalidParameterError.
"""

import re
from datetime import datetime, timezone
from typing import Any, Optional

from sensing.errors import InvalidParameterError

# Observer ids are reverse-DNS style, e.g. "edu.ucla.cens.mobility".
OBSERVER_ID_PATTERN = re.compile(r"^([a-zA-Z]{1}[\w]*)(\.[a-zA-Z]{1}[\w]*)+$")
# Stream and survey ids are plain identifiers.
SIMPLE_ID_PATTERN = re.compile(r"^[a-zA-Z][\w.\-]*$")

_TRUE_VALUES = {"true"}
_FALSE_VALUES = {"false"}


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def validate_observer_id(value: Optional[str]) -> Optional[str]:
    """Validate an observer id.

    Example:
        >>> validate_observer_id(" org.example.mobility ")
        'org.example.mobility'
    """
    if _is_blank(value):
        return None

    trimmed = value.strip()
    if not OBSERVER_ID_PATTERN.match(trimmed):
        raise InvalidParameterError("observer_id", f"The observer ID is invalid: {value}")
    return trimmed


def validate_simple_id(value: Optional[str], parameter: str) -> Optional[str]:
    """Validate a stream or survey id."""
    if _is_blank(value):
        return None

    trimmed = value.strip()
    if not SIMPLE_ID_PATTERN.match(trimmed):
        raise InvalidParameterError(parameter, f"The {parameter} is invalid: {value}")
    return trimmed


def validate_version(value: Optional[str], parameter: str) -> Optional[int]:
    """Validate a definition version: a non-negative integer."""
    if _is_blank(value):
        return None

    try:
        version = int(value.strip())
    except ValueError:
        raise InvalidParameterError(parameter, f"The value is not a valid number: {value}")

    if version < 0:
        raise InvalidParameterError(parameter, f"The version cannot be negative: {value}")
    return version


def decode_boolean(value: Optional[str], parameter: str) -> Optional[bool]:
    """Decode "true"/"false" (case-insensitive)."""
    if _is_blank(value):
        return None

    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise InvalidParameterError(parameter, f"The value is not a valid boolean: {value}")


def parse_timestamp(value: Any) -> datetime:
    """Decode a timestamp into an aware UTC datetime.

    Accepts ISO-8601 strings (a trailing 'Z' is allowed, a missing offset
    means UTC), epoch milliseconds, or datetime objects.

    Raises:
        ValueError: If the value is not a timestamp
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            parsed = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError) as e:
            raise ValueError(f"timestamp out of range: {value}") from e
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"not a timestamp: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError as e:
        raise ValueError(f"timestamp out of range: {value}") from e
