"""Unit tests for prompt response validation.

Tests each prompt type's validator, no-response handling and encoding.
"""

import uuid
from datetime import datetime, timezone

import pytest

from sensing.errors import InvalidResponseValueError
from sensing.no_response import NoResponse
from sensing.schemas.survey import Prompt, PromptType
from sensing.services.prompt_validation import PromptValidator


def make_prompt(prompt_type: str, skippable: bool = False, **properties) -> Prompt:
    return Prompt(id="q", type=prompt_type, skippable=skippable, properties=properties)


CHOICES = [
    {"key": 0, "label": "Never"},
    {"key": 1, "label": "Sometimes"},
    {"key": 2, "label": "Often"},
]


class TestNoResponseValues:
    """Tests for sentinel values submitted instead of an answer."""

    def test_skipped_accepted_when_skippable(self):
        prompt = make_prompt("number", skippable=True)

        assert PromptValidator.validate(prompt, "SKIPPED") is NoResponse.SKIPPED

    def test_skipped_rejected_when_not_skippable(self):
        prompt = make_prompt("number")

        with pytest.raises(InvalidResponseValueError) as exc_info:
            PromptValidator.validate(prompt, "SKIPPED")

        assert "not skippable" in exc_info.value.message
        assert exc_info.value.prompt_id == "q"

    def test_platform_sentinels_always_accepted(self):
        prompt = make_prompt("photo")

        assert PromptValidator.validate(prompt, "MEDIA_NOT_UPLOADED") is NoResponse.MEDIA_NOT_UPLOADED
        assert PromptValidator.validate(prompt, "NOT_DISPLAYED") is NoResponse.NOT_DISPLAYED
        assert PromptValidator.validate(prompt, "PROMPT_NOT_ENABLED") is NoResponse.PROMPT_NOT_ENABLED

    def test_null_is_not_a_response(self):
        with pytest.raises(InvalidResponseValueError) as exc_info:
            PromptValidator.validate(make_prompt("text"), None)

        assert "no response was given" in exc_info.value.message


class TestTextValidation:
    """Tests for text prompts."""

    def test_valid_text_is_trimmed(self):
        assert PromptValidator.validate(make_prompt("text"), "  hello ") == "hello"

    def test_empty_text_rejected(self):
        with pytest.raises(InvalidResponseValueError):
            PromptValidator.validate(make_prompt("text"), "   ")

    def test_length_bounds(self):
        prompt = make_prompt("text", min_length=3, max_length=5)

        assert PromptValidator.validate(prompt, "abcd") == "abcd"
        with pytest.raises(InvalidResponseValueError):
            PromptValidator.validate(prompt, "ab")
        with pytest.raises(InvalidResponseValueError):
            PromptValidator.validate(prompt, "abcdef")

    def test_pattern(self):
        prompt = make_prompt("text", pattern=r"^\d{5}$")

        assert PromptValidator.validate(prompt, "98101") == "98101"
        with pytest.raises(InvalidResponseValueError):
            PromptValidator.validate(prompt, "9810")

    def test_non_string_rejected(self):
        with pytest.raises(InvalidResponseValueError):
            PromptValidator.validate(make_prompt("text"), 42)


class TestNumberValidation:
    """Tests for number and hours_before_now prompts."""

    def test_numbers_and_numeric_strings(self):
        prompt = make_prompt("number")

        assert PromptValidator.validate(prompt, 7) == 7
        assert PromptValidator.validate(prompt, 2.5) == 2.5
        assert PromptValidator.validate(prompt, "42") == 42
        assert PromptValidator.validate(prompt, " 3.25 ") == 3.25

    def test_range(self):
        prompt = make_prompt("number", min=0, max=10)

        assert PromptValidator.validate(prompt, 0) == 0
        assert PromptValidator.validate(prompt, 10) == 10
        with pytest.raises(InvalidResponseValueError) as exc_info:
            PromptValidator.validate(prompt, 11)
        assert "at most 10" in exc_info.value.message
        with pytest.raises(InvalidResponseValueError):
            PromptValidator.validate(prompt, -1)

    def test_whole_number(self):
        prompt = make_prompt("number", whole_number=True)

        assert PromptValidator.validate(prompt, 4.0) == 4
        assert isinstance(PromptValidator.validate(prompt, 4.0), int)
        with pytest.raises(InvalidResponseValueError):
            PromptValidator.validate(prompt, 4.5)

    def test_rejects_non_numbers(self):
        prompt = make_prompt("number")

        for value in ("abc", True, [1], "nan", float("inf")):
            with pytest.raises(InvalidResponseValueError):
                PromptValidator.validate(prompt, value)

    def test_hours_before_now_cannot_be_negative(self):
        prompt = make_prompt("hours_before_now")

        assert PromptValidator.validate(prompt, 3) == 3
        with pytest.raises(InvalidResponseValueError):
            PromptValidator.validate(prompt, -2)


class TestChoiceValidation:
    """Tests for single and multiple choice prompts."""

    def test_single_choice(self):
        prompt = make_prompt("single_choice", choices=CHOICES)

        assert PromptValidator.validate(prompt, 1) == 1
        assert PromptValidator.validate(prompt, "2") == 2

    def test_single_choice_unknown_key(self):
        prompt = make_prompt("single_choice", choices=CHOICES)

        with pytest.raises(InvalidResponseValueError):
            PromptValidator.validate(prompt, 5)
        with pytest.raises(InvalidResponseValueError):
            PromptValidator.validate(prompt, "Often")

    def test_non_ascii_digits_are_not_keys(self):
        prompt = make_prompt("single_choice", choices=CHOICES)

        with pytest.raises(InvalidResponseValueError):
            PromptValidator.validate(prompt, "\u00b2")

        custom = make_prompt("multi_choice_custom", choices=CHOICES)
        assert PromptValidator.validate(custom, ["\u00b2"]) == ["\u00b2"]

    def test_single_choice_custom_accepts_label(self):
        prompt = make_prompt("single_choice_custom", choices=CHOICES)

        assert PromptValidator.validate(prompt, 0) == 0
        assert PromptValidator.validate(prompt, " Daily ") == "Daily"
        with pytest.raises(InvalidResponseValueError):
            PromptValidator.validate(prompt, 9)

    def test_multi_choice_forms(self):
        prompt = make_prompt("multi_choice", choices=CHOICES)

        assert PromptValidator.validate(prompt, [0, 2]) == [0, 2]
        assert PromptValidator.validate(prompt, "[1, 2]") == [1, 2]
        assert PromptValidator.validate(prompt, "0,1") == [0, 1]

    def test_multi_choice_rejects_duplicates_and_unknown(self):
        prompt = make_prompt("multi_choice", choices=CHOICES)

        with pytest.raises(InvalidResponseValueError) as exc_info:
            PromptValidator.validate(prompt, [1, 1])
        assert "more than once" in exc_info.value.message

        with pytest.raises(InvalidResponseValueError):
            PromptValidator.validate(prompt, [1, 7])

        with pytest.raises(InvalidResponseValueError):
            PromptValidator.validate(prompt, [])

    def test_multi_choice_custom(self):
        prompt = make_prompt("multi_choice_custom", choices=CHOICES)

        assert PromptValidator.validate(prompt, [0, "Hiking"]) == [0, "Hiking"]
        with pytest.raises(InvalidResponseValueError):
            PromptValidator.validate(prompt, [0, 8])


class TestOtherTypes:
    """Tests for media, remote activity and timestamp prompts."""

    def test_media_requires_uuid(self):
        prompt = make_prompt("photo")
        media_id = uuid.uuid4()

        assert PromptValidator.validate(prompt, str(media_id)) == media_id
        with pytest.raises(InvalidResponseValueError):
            PromptValidator.validate(prompt, "not-a-uuid")

    def test_remote_activity_runs(self):
        prompt = make_prompt("remote_activity", min_runs=1, retries=1)
        runs = [{"score": 0.5}, {"score": 0.75, "duration": 12}]

        assert PromptValidator.validate(prompt, runs) == runs
        assert PromptValidator.validate(prompt, '[{"score": 1}]') == [{"score": 1}]

    def test_remote_activity_run_counts(self):
        prompt = make_prompt("remote_activity", min_runs=1, retries=1)

        with pytest.raises(InvalidResponseValueError):
            PromptValidator.validate(prompt, [])
        with pytest.raises(InvalidResponseValueError):
            PromptValidator.validate(prompt, [{"score": 1}] * 3)
        with pytest.raises(InvalidResponseValueError):
            PromptValidator.validate(prompt, [{"points": 1}])

    def test_timestamp(self):
        prompt = make_prompt("timestamp")

        assert PromptValidator.validate(prompt, "2024-03-01T08:30:00Z") == datetime(
            2024, 3, 1, 8, 30, tzinfo=timezone.utc
        )
        with pytest.raises(InvalidResponseValueError):
            PromptValidator.validate(prompt, "yesterday")


class TestEncoding:
    """Tests for encoding canonical values."""

    def test_encoded_values_validate_to_the_same_value(self):
        media_id = uuid.uuid4()
        cases = [
            (make_prompt("number"), 7),
            (make_prompt("multi_choice_custom", choices=CHOICES), [2, "Other"]),
            (make_prompt("video"), media_id),
            (make_prompt("timestamp"), datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)),
            (make_prompt("text", skippable=True), NoResponse.SKIPPED),
        ]

        for prompt, value in cases:
            encoded = PromptValidator.encode(value)
            assert PromptValidator.validate(prompt, encoded) == value

    def test_encode_nested(self):
        media_id = uuid.uuid4()
        encoded = PromptValidator.encode({
            "p1": NoResponse.NOT_DISPLAYED,
            "set": [{"photo": media_id}],
        })

        assert encoded == {"p1": "NOT_DISPLAYED", "set": [{"photo": str(media_id)}]}
