"""Pydantic schemas for definitions and API responses.

This package contains the survey and observer definition models and the
upload response models.
"""

from sensing.schemas.survey import (
    NoResponse,
    PromptType,
    ChoiceOption,
    PromptProperties,
    Prompt,
    RepeatableSet,
    SurveyItem,
    Survey,
)
from sensing.schemas.observer import (
    ObjectNode,
    ArrayNode,
    StringNode,
    NumberNode,
    BooleanNode,
    SchemaNode,
    StreamMetadata,
    Stream,
    Observer,
)
from sensing.schemas.upload import (
    InvalidPointSummary,
    UploadResponse,
    ErrorEntry,
    ErrorResponse,
)

__all__ = [
    "NoResponse",
    "PromptType",
    "ChoiceOption",
    "PromptProperties",
    "Prompt",
    "RepeatableSet",
    "SurveyItem",
    "Survey",
    "ObjectNode",
    "ArrayNode",
    "StringNode",
    "NumberNode",
    "BooleanNode",
    "SchemaNode",
    "StreamMetadata",
    "Stream",
    "Observer",
    "InvalidPointSummary",
    "UploadResponse",
    "ErrorEntry",
    "ErrorResponse",
]
