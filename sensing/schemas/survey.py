"""Pydantic schemas for survey definitions.

A survey is an ordered tree of items: prompts, and repeatable sets that group
prompts answered any number of times. Definitions are immutable once loaded.
"""

import keyword
import re
from enum import Enum
from typing import Annotated, Any, Iterator, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    field_validator,
    model_validator,
)

from sensing.errors import MalformedConditionError
from sensing.no_response import NoResponse
from sensing.services.conditions import ConditionEvaluator

ITEM_ID_PATTERN = r"^[A-Za-z_][A-Za-z0-9_]*$"

# Names a condition would read as something other than an item id.
RESERVED_ITEM_IDS = frozenset(member.name for member in NoResponse)


def _is_reserved_id(item_id: str) -> bool:
    return (
        item_id in RESERVED_ITEM_IDS
        or keyword.iskeyword(item_id)
        or item_id.lower() in ("and", "or")
    )


class PromptType(str, Enum):
    """Valid prompt types in survey definitions."""
    TEXT = "text"
    NUMBER = "number"
    HOURS_BEFORE_NOW = "hours_before_now"
    SINGLE_CHOICE = "single_choice"
    SINGLE_CHOICE_CUSTOM = "single_choice_custom"
    MULTI_CHOICE = "multi_choice"
    MULTI_CHOICE_CUSTOM = "multi_choice_custom"
    PHOTO = "photo"
    VIDEO = "video"
    AUDIO = "audio"
    REMOTE_ACTIVITY = "remote_activity"
    TIMESTAMP = "timestamp"


CHOICE_TYPES = frozenset({
    PromptType.SINGLE_CHOICE,
    PromptType.SINGLE_CHOICE_CUSTOM,
    PromptType.MULTI_CHOICE,
    PromptType.MULTI_CHOICE_CUSTOM,
})
MEDIA_TYPES = frozenset({PromptType.PHOTO, PromptType.VIDEO, PromptType.AUDIO})

# Values of these prompts cannot appear in conditions.
UNCONDITIONABLE_TYPES = MEDIA_TYPES | {PromptType.REMOTE_ACTIVITY}


class ChoiceOption(BaseModel):
    """A single choice option for choice-type prompts.

    Attributes:
        key: Value submitted by the client
        label: Text shown to the participant
        value: Optional numeric value attached to the choice
    """
    model_config = ConfigDict(frozen=True)

    key: int = Field(..., ge=0, description="Key submitted as the response")
    label: str = Field(..., min_length=1, description="Display text for choice")
    value: Optional[float] = Field(None, description="Numeric value of the choice")


class PromptProperties(BaseModel):
    """Type-specific constraints of a prompt.

    Different prompt types use different fields:
    - number, hours_before_now: min, max, whole_number
    - text: min_length, max_length, pattern
    - *choice*: choices
    - photo: max_dimension (pixels; a client-side constraint only)
    - video, audio: max_seconds
    - remote_activity: min_runs, retries
    """
    model_config = ConfigDict(frozen=True)

    min: Optional[float] = Field(None, description="Smallest accepted number")
    max: Optional[float] = Field(None, description="Largest accepted number")
    whole_number: bool = Field(False, description="Only integers are accepted")
    min_length: Optional[int] = Field(None, ge=0, description="Minimum text length")
    max_length: Optional[int] = Field(None, ge=1, description="Maximum text length")
    pattern: Optional[str] = Field(None, description="Regex the text must match")
    choices: Optional[list[ChoiceOption]] = Field(None, description="Valid choices")
    max_dimension: Optional[int] = Field(None, ge=0, description="Maximum photo dimension")
    max_seconds: Optional[int] = Field(None, ge=0, description="Maximum recording length")
    min_runs: int = Field(0, ge=0, description="Runs a remote activity must report")
    retries: int = Field(0, ge=0, description="Extra runs a remote activity may report")

    @model_validator(mode="after")
    def validate_ranges(self):
        """Ensure the bounds are consistent."""
        if self.min is not None and self.max is not None and self.max < self.min:
            raise ValueError("max must be >= min")
        if (
            self.min_length is not None
            and self.max_length is not None
            and self.max_length < self.min_length
        ):
            raise ValueError("max_length must be >= min_length")
        if self.pattern is not None:
            try:
                re.compile(self.pattern)
            except re.error as e:
                raise ValueError(f"Invalid pattern: {e}")
        if self.choices is not None:
            keys = [choice.key for choice in self.choices]
            if len(keys) != len(set(keys)):
                raise ValueError(f"Duplicate choice keys: {keys}")
        return self

    def choice_keys(self) -> set[int]:
        return {choice.key for choice in self.choices or []}


class Prompt(BaseModel):
    """A single question within a survey.

    Attributes:
        id: Unique identifier within the survey, usable in conditions
        type: Prompt type selecting the validation rules
        text: Question text
        condition: Optional expression over earlier responses
        skippable: Whether the participant may skip the prompt
        properties: Type-specific constraints
        index: Position among its siblings, assigned on load
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., pattern=ITEM_ID_PATTERN, description="Prompt identifier")
    type: PromptType = Field(..., description="Prompt type")
    text: str = Field("", description="Question text")
    condition: Optional[str] = Field(None, min_length=1, description="Display condition")
    skippable: bool = Field(False, description="Whether the prompt may be skipped")
    properties: PromptProperties = Field(default_factory=PromptProperties)
    index: int = Field(0, ge=0, description="Position in the parent's item list")

    @model_validator(mode="after")
    def validate_prompt_requirements(self):
        """Validate type-specific requirements."""
        props = self.properties

        if self.type in CHOICE_TYPES and not props.choices:
            raise ValueError(f"Choice prompt '{self.id}' must have properties.choices")

        if self.type == PromptType.HOURS_BEFORE_NOW and props.min is not None and props.min < 0:
            raise ValueError(f"Prompt '{self.id}': hours before now cannot be negative")

        if self.type == PromptType.REMOTE_ACTIVITY and props.min_runs > props.retries + 1:
            raise ValueError(
                f"Prompt '{self.id}': min_runs cannot exceed the number of allowed runs"
            )

        return self


class RepeatableSet(BaseModel):
    """A group of items answered once per iteration.

    The number of iterations is chosen by the participant; the response is
    a list with one map of child responses per iteration.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., pattern=ITEM_ID_PATTERN, description="Set identifier")
    text: str = Field("", description="Text shown before each iteration")
    condition: Optional[str] = Field(None, min_length=1, description="Display condition")
    skippable: bool = Field(False, description="Whether the set may be skipped")
    items: list["SurveyItem"] = Field(..., min_length=1)
    index: int = Field(0, ge=0, description="Position in the parent's item list")

    @field_validator("items")
    @classmethod
    def assign_indexes(cls, v):
        return _with_indexes(v)


def _item_kind(value: Any) -> str:
    if isinstance(value, dict):
        return "repeatable_set" if "items" in value else "prompt"
    return "repeatable_set" if isinstance(value, RepeatableSet) else "prompt"


SurveyItem = Annotated[
    Union[
        Annotated[Prompt, Tag("prompt")],
        Annotated[RepeatableSet, Tag("repeatable_set")],
    ],
    Discriminator(_item_kind),
]

RepeatableSet.model_rebuild()


def _with_indexes(items):
    return [item.model_copy(update={"index": i}) for i, item in enumerate(items)]


class Survey(BaseModel):
    """Complete survey definition, identified by ``(id, version)``.

    Attributes:
        id: Survey identifier
        version: Survey version
        name: Human-readable survey name
        description: Survey description
        items: Ordered survey items
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., pattern=r"^[A-Za-z0-9_.\-]+$", description="Survey identifier")
    version: int = Field(..., ge=0, description="Survey version")
    name: str = Field(..., min_length=1, description="Survey name")
    description: str = Field("", description="Survey description")
    items: list[SurveyItem] = Field(..., min_length=1)

    @field_validator("items")
    @classmethod
    def assign_indexes(cls, v):
        return _with_indexes(v)

    @model_validator(mode="after")
    def validate_survey_structure(self):
        """Validate item ids and condition references.

        Item ids must be unique across the whole tree. A condition may only
        refer to prompts that come before it: earlier items at the top level,
        or earlier siblings and enclosing-scope items inside a repeatable set.
        """
        seen_ids: list[str] = [item.id for item in self.iter_items()]
        if len(seen_ids) != len(set(seen_ids)):
            duplicates = sorted({sid for sid in seen_ids if seen_ids.count(sid) > 1})
            raise ValueError(f"Duplicate item IDs found: {duplicates}")

        reserved = sorted(sid for sid in seen_ids if _is_reserved_id(sid))
        if reserved:
            raise ValueError(f"Item IDs cannot be reserved words: {reserved}")

        _check_condition_scope(self.items, {})
        return self

    def iter_items(self) -> Iterator[Union[Prompt, RepeatableSet]]:
        """Yield every item in the tree, depth first, in definition order."""
        def walk(items):
            for item in items:
                yield item
                if isinstance(item, RepeatableSet):
                    yield from walk(item.items)

        return walk(self.items)

    def get_item(self, item_id: str) -> Optional[Union[Prompt, RepeatableSet]]:
        """Get an item anywhere in the tree by id.

        Returns:
            The item if found, None otherwise
        """
        for item in self.iter_items():
            if item.id == item_id:
                return item
        return None


def _check_condition_scope(items, visible: dict) -> None:
    """Reject conditions referring to unknown, later or unconditionable items."""
    visible = dict(visible)
    for item in items:
        if item.condition is not None:
            try:
                referenced = ConditionEvaluator.referenced_items(item.condition)
            except MalformedConditionError as e:
                raise ValueError(e.message)
            unknown = referenced - visible.keys()
            if unknown:
                raise ValueError(
                    f"Condition of '{item.id}' references items that are not "
                    f"defined before it: {sorted(unknown)}"
                )
            unusable = sorted(ref for ref in referenced if not visible[ref])
            if unusable:
                raise ValueError(
                    f"Condition of '{item.id}' references items whose values "
                    f"cannot be compared: {unusable}"
                )

        if isinstance(item, RepeatableSet):
            _check_condition_scope(item.items, visible)
            visible[item.id] = False
        else:
            visible[item.id] = item.type not in UNCONDITIONABLE_TYPES


__all__ = [
    "NoResponse",
    "PromptType",
    "ChoiceOption",
    "PromptProperties",
    "Prompt",
    "RepeatableSet",
    "SurveyItem",
    "Survey",
]
