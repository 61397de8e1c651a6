"""Pydantic schemas for observer definitions.

An observer is a passive data source (an app or a sensor) that produces one
or more streams. Each stream declares the shape of its data points as a tree
of schema nodes, and which metadata its points carry.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from sensing.services.parameters import OBSERVER_ID_PATTERN, SIMPLE_ID_PATTERN


class _Node(BaseModel):
    """Fields shared by all schema nodes.

    Attributes:
        name: Field name when the node is a member of an object
        optional: Whether an object may omit this field
        doc: Free-text description
    """
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = Field(None, min_length=1, description="Field name")
    optional: bool = Field(False, description="Field may be omitted")
    doc: Optional[str] = Field(None, description="Description")


class ObjectNode(_Node):
    """An object with named fields."""
    type: Literal["object"]
    fields: list["SchemaNode"] = Field(default_factory=list)
    additional_fields: bool = Field(False, description="Undeclared fields are allowed")

    @model_validator(mode="after")
    def validate_fields(self):
        """Every field must be named, and names must be unique."""
        names = [field.name for field in self.fields]
        if any(name is None for name in names):
            raise ValueError("Every field of an object must have a name")
        if len(names) != len(set(names)):
            duplicates = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"Duplicate field names: {duplicates}")
        return self


class ArrayNode(_Node):
    """An array whose elements all match one schema."""
    type: Literal["array"]
    items: "SchemaNode"


class StringNode(_Node):
    type: Literal["string"]
    enum: Optional[list[str]] = Field(None, min_length=1, description="Allowed values")


class NumberNode(_Node):
    type: Literal["number"]
    enum: Optional[list[float]] = Field(None, min_length=1, description="Allowed values")


class BooleanNode(_Node):
    type: Literal["boolean"]


SchemaNode = Annotated[
    Union[ObjectNode, ArrayNode, StringNode, NumberNode, BooleanNode],
    Field(discriminator="type"),
]

ObjectNode.model_rebuild()
ArrayNode.model_rebuild()


class StreamMetadata(BaseModel):
    """Metadata a stream's points carry.

    Every point must carry a timestamp.

    Attributes:
        location: Points must carry a location
        custom: Additional metadata keys points may carry
    """
    model_config = ConfigDict(frozen=True)

    location: bool = Field(False, description="Location is required")
    custom: list[str] = Field(default_factory=list, description="Extra metadata keys")


class Stream(BaseModel):
    """One typed channel of data produced by an observer.

    Attributes:
        id: Stream identifier, unique within the observer
        version: Stream version
        name: Human-readable name
        description: Description
        metadata: Metadata requirements
        data_schema: Shape of each point's data (``schema`` in definitions)
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., pattern=SIMPLE_ID_PATTERN.pattern, description="Stream identifier")
    version: int = Field(..., ge=0, description="Stream version")
    name: str = Field("", description="Stream name")
    description: str = Field("", description="Stream description")
    metadata: StreamMetadata = Field(default_factory=StreamMetadata)
    data_schema: SchemaNode = Field(..., alias="schema")


class Observer(BaseModel):
    """Complete observer definition, identified by ``(id, version)``."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., pattern=OBSERVER_ID_PATTERN.pattern, description="Observer identifier")
    version: int = Field(..., ge=0, description="Observer version")
    name: str = Field(..., min_length=1, description="Observer name")
    description: str = Field("", description="Observer description")
    streams: list[Stream] = Field(..., min_length=1)

    @model_validator(mode="after")
    def validate_streams(self):
        """Each (stream id, version) pair may only be defined once."""
        keys = [(stream.id, stream.version) for stream in self.streams]
        if len(keys) != len(set(keys)):
            duplicates = sorted({k for k in keys if keys.count(k) > 1})
            raise ValueError(f"Duplicate streams found: {duplicates}")
        return self

    def get_stream(self, stream_id: str, version: int) -> Optional[Stream]:
        """Get a stream by id and version.

        Returns:
            Stream if found, None otherwise
        """
        for stream in self.streams:
            if stream.id == stream_id and stream.version == version:
                return stream
        return None
