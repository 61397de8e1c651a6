"""Sentinels recorded when a survey item carries no real value."""

from enum import Enum
from typing import Any, Optional


class NoResponse(Enum):
    """Reason a prompt has no value.

    SKIPPED is the participant's choice and is only valid for skippable
    prompts. The others mean the platform did not collect an answer.
    """
    SKIPPED = "SKIPPED"
    NOT_DISPLAYED = "NOT_DISPLAYED"
    PROMPT_NOT_ENABLED = "PROMPT_NOT_ENABLED"
    MEDIA_NOT_UPLOADED = "MEDIA_NOT_UPLOADED"

    @classmethod
    def decode(cls, value: Any) -> Optional["NoResponse"]:
        """Return the sentinel named by ``value``, or None if it names none."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls.__members__.get(value)
        return None

    def __str__(self) -> str:
        return self.name
