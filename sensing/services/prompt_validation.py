"""Response value validation for survey prompts.

Each prompt type has one validator in the dispatch table below. A validator
takes the raw submitted value and returns its canonical form: the value the
survey validator records and conditions are evaluated against.
"""

import json
import math
import re
import uuid
from datetime import datetime
from typing import Any, Callable, Union

from sensing.errors import InvalidResponseValueError
from sensing.logging_config import get_logger
from sensing.no_response import NoResponse
from sensing.schemas.survey import Prompt, PromptType
from sensing.services.parameters import parse_timestamp

logger = get_logger(__name__)


def _fail(prompt: Prompt, value: Any, message: str) -> InvalidResponseValueError:
    return InvalidResponseValueError(prompt.id, value, message)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _decode_key(value: Any) -> Union[int, None]:
    """Decode a choice key given as an int or a string of digits."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip()
        # isdigit() also admits superscripts and other digits int() rejects.
        if text.isascii() and text.isdigit():
            return int(text)
    return None


def _split_list(prompt: Prompt, value: Any) -> list:
    """Accept a JSON list, or a comma-separated string of entries."""
    if isinstance(value, list):
        entries = value
    elif isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                entries = json.loads(text)
            except json.JSONDecodeError:
                raise _fail(prompt, value, "is not a valid list")
            if not isinstance(entries, list):
                raise _fail(prompt, value, "is not a valid list")
        else:
            entries = [entry.strip() for entry in text.split(",") if entry.strip()]
    else:
        raise _fail(prompt, value, "must be a list of choices")

    if not entries:
        raise _fail(prompt, value, "at least one choice must be selected")
    return entries


def _validate_text(prompt: Prompt, value: Any) -> str:
    if not isinstance(value, str):
        raise _fail(prompt, value, "must be a string")

    normalized = value.strip()
    props = prompt.properties
    min_length = props.min_length if props.min_length is not None else 1

    if len(normalized) < min_length:
        raise _fail(prompt, value, f"must be at least {min_length} characters")
    if props.max_length is not None and len(normalized) > props.max_length:
        raise _fail(prompt, value, f"must be no more than {props.max_length} characters")
    if props.pattern is not None and not re.match(props.pattern, normalized):
        raise _fail(prompt, value, "does not match the required format")

    return normalized


def _validate_number(prompt: Prompt, value: Any) -> Union[int, float]:
    if _is_number(value):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            number = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                raise _fail(prompt, value, "is not a number")
    else:
        raise _fail(prompt, value, "is not a number")

    if isinstance(number, float) and not math.isfinite(number):
        raise _fail(prompt, value, "must be a finite number")

    props = prompt.properties
    if props.whole_number:
        if isinstance(number, float):
            if not number.is_integer():
                raise _fail(prompt, value, "must be a whole number")
            number = int(number)

    if prompt.type == PromptType.HOURS_BEFORE_NOW and number < 0:
        raise _fail(prompt, value, "cannot be negative")
    if props.min is not None and number < props.min:
        raise _fail(prompt, value, f"must be at least {props.min:g}")
    if props.max is not None and number > props.max:
        raise _fail(prompt, value, f"must be at most {props.max:g}")

    return number


def _validate_single_choice(prompt: Prompt, value: Any) -> int:
    key = _decode_key(value)
    if key is None or key not in prompt.properties.choice_keys():
        raise _fail(prompt, value, "is not one of the prompt's choices")
    return key


def _validate_single_choice_custom(prompt: Prompt, value: Any) -> Union[int, str]:
    key = _decode_key(value)
    if key is not None:
        if key not in prompt.properties.choice_keys():
            raise _fail(prompt, value, "is not one of the prompt's choices")
        return key
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise _fail(prompt, value, "must be a choice key or a custom label")


def _validate_multi_choice(prompt: Prompt, value: Any) -> list[int]:
    keys = [_decode_key(entry) for entry in _split_list(prompt, value)]
    valid_keys = prompt.properties.choice_keys()

    if any(key is None or key not in valid_keys for key in keys):
        raise _fail(prompt, value, "contains a value that is not one of the prompt's choices")
    if len(keys) != len(set(keys)):
        raise _fail(prompt, value, "contains the same choice more than once")
    return keys


def _validate_multi_choice_custom(prompt: Prompt, value: Any) -> list[Union[int, str]]:
    valid_keys = prompt.properties.choice_keys()
    selected: list[Union[int, str]] = []

    for entry in _split_list(prompt, value):
        key = _decode_key(entry)
        if key is not None:
            if key not in valid_keys:
                raise _fail(prompt, value, f"choice key {key} is not defined")
            selected.append(key)
        elif isinstance(entry, str) and entry.strip():
            selected.append(entry.strip())
        else:
            raise _fail(prompt, value, "entries must be choice keys or custom labels")

    if len(selected) != len(set(selected)):
        raise _fail(prompt, value, "contains the same choice more than once")
    return selected


def _validate_media(prompt: Prompt, value: Any) -> uuid.UUID:
    # The value references uploaded media by id; it never embeds the media.
    if isinstance(value, uuid.UUID):
        return value
    if isinstance(value, str):
        try:
            return uuid.UUID(value.strip())
        except ValueError:
            pass
    raise _fail(prompt, value, "is not a media identifier (UUID)")


def _validate_remote_activity(prompt: Prompt, value: Any) -> list[dict]:
    runs = value
    if isinstance(value, str):
        try:
            runs = json.loads(value)
        except json.JSONDecodeError:
            raise _fail(prompt, value, "is not a list of activity runs")

    if not isinstance(runs, list):
        raise _fail(prompt, value, "is not a list of activity runs")

    for run in runs:
        if not isinstance(run, dict) or not _is_number(run.get("score")):
            raise _fail(prompt, value, "every run must be an object with a numeric 'score'")

    props = prompt.properties
    if len(runs) < props.min_runs:
        raise _fail(prompt, value, f"at least {props.min_runs} runs are required")
    if len(runs) > props.retries + 1:
        raise _fail(prompt, value, f"at most {props.retries + 1} runs are allowed")
    return runs


def _validate_timestamp(prompt: Prompt, value: Any) -> datetime:
    try:
        return parse_timestamp(value)
    except ValueError:
        raise _fail(prompt, value, "is not a valid timestamp")


_VALIDATORS: dict[PromptType, Callable[[Prompt, Any], Any]] = {
    PromptType.TEXT: _validate_text,
    PromptType.NUMBER: _validate_number,
    PromptType.HOURS_BEFORE_NOW: _validate_number,
    PromptType.SINGLE_CHOICE: _validate_single_choice,
    PromptType.SINGLE_CHOICE_CUSTOM: _validate_single_choice_custom,
    PromptType.MULTI_CHOICE: _validate_multi_choice,
    PromptType.MULTI_CHOICE_CUSTOM: _validate_multi_choice_custom,
    PromptType.PHOTO: _validate_media,
    PromptType.VIDEO: _validate_media,
    PromptType.AUDIO: _validate_media,
    PromptType.REMOTE_ACTIVITY: _validate_remote_activity,
    PromptType.TIMESTAMP: _validate_timestamp,
}


class PromptValidator:
    """Validates and encodes prompt response values."""

    @staticmethod
    def validate(prompt: Prompt, value: Any) -> Any:
        """Validate a raw response value against a prompt.

        Strings naming a no-response sentinel are decoded first. SKIPPED is
        only accepted for skippable prompts; the other sentinels are always
        accepted because they record that the platform, not the participant,
        did not collect a value.

        Args:
            prompt: Prompt definition
            value: Raw value as submitted

        Returns:
            The canonical value, or a NoResponse sentinel

        Raises:
            InvalidResponseValueError: If the value does not conform

        Example:
            >>> prompt = Prompt(id="age", type=PromptType.NUMBER)
            >>> PromptValidator.validate(prompt, "42")
            42
        """
        if value is None:
            raise _fail(prompt, value, "no response was given")

        sentinel = NoResponse.decode(value)
        if sentinel is not None:
            if sentinel is NoResponse.SKIPPED and not prompt.skippable:
                raise _fail(prompt, value, "was skipped, but it is not skippable")
            return sentinel

        return _VALIDATORS[prompt.type](prompt, value)

    @staticmethod
    def encode(value: Any) -> Any:
        """Encode a canonical value as JSON-compatible data.

        The encoded form validates back to an equivalent canonical value.
        """
        if isinstance(value, NoResponse):
            return value.name
        if isinstance(value, uuid.UUID):
            return str(value)
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, list):
            return [PromptValidator.encode(entry) for entry in value]
        if isinstance(value, dict):
            return {key: PromptValidator.encode(entry) for key, entry in value.items()}
        return value
