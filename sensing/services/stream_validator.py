"""Stream data point validation.

Checks an uploaded data point's metadata and data against the stream it
belongs to, returning the canonical point.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional

from sensing.errors import SchemaMismatchError
from sensing.logging_config import get_logger
from sensing.schemas.observer import (
    ArrayNode,
    BooleanNode,
    NumberNode,
    ObjectNode,
    SchemaNode,
    Stream,
    StringNode,
)
from sensing.services.parameters import parse_timestamp

logger = get_logger(__name__)

POINT_KEYS = frozenset({"stream_id", "stream_version", "metadata", "data"})
LOCATION_KEYS = frozenset({"latitude", "longitude", "accuracy", "provider"})


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    provider: Optional[str] = None

    def to_dict(self) -> dict:
        result = {"latitude": self.latitude, "longitude": self.longitude}
        if self.accuracy is not None:
            result["accuracy"] = self.accuracy
        if self.provider is not None:
            result["provider"] = self.provider
        return result


@dataclass
class StreamPoint:
    """A validated stream data point.

    Attributes:
        stream_id: Stream the point belongs to
        stream_version: Version of that stream
        timestamp: When the point was recorded, in UTC
        location: Where the point was recorded, if known
        data: Validated data, shaped by the stream's schema
        custom_metadata: Additional metadata declared by the stream
    """
    stream_id: str
    stream_version: int
    timestamp: datetime
    location: Optional[Location]
    data: Any
    custom_metadata: dict = field(default_factory=dict)

    @property
    def identity(self) -> tuple:
        """Key under which two points count as the same observation."""
        location = (
            (self.location.latitude, self.location.longitude) if self.location else None
        )
        return (self.stream_id, self.stream_version, self.timestamp, location)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _validate_object(node: ObjectNode, value: Any, path: str) -> dict:
    if not isinstance(value, Mapping):
        raise SchemaMismatchError(path, "expected an object")

    result = {}
    for child in node.fields:
        child_path = f"{path}.{child.name}"
        if child.name not in value:
            if child.optional:
                continue
            raise SchemaMismatchError(child_path, "required field is missing")
        child_value = value[child.name]
        if child_value is None and child.optional:
            result[child.name] = None
            continue
        result[child.name] = validate_node(child, child_value, child_path)

    extra = set(value) - {child.name for child in node.fields}
    if extra:
        if not node.additional_fields:
            raise SchemaMismatchError(path, f"unknown fields: {', '.join(sorted(extra))}")
        for key in extra:
            result[key] = value[key]

    return result


def _validate_array(node: ArrayNode, value: Any, path: str) -> list:
    if not isinstance(value, list):
        raise SchemaMismatchError(path, "expected an array")
    return [validate_node(node.items, element, f"{path}[{i}]") for i, element in enumerate(value)]


def _validate_string(node: StringNode, value: Any, path: str) -> str:
    if not isinstance(value, str):
        raise SchemaMismatchError(path, "expected a string")
    if node.enum is not None and value not in node.enum:
        raise SchemaMismatchError(path, f"'{value}' is not one of {node.enum}")
    return value


def _validate_number(node: NumberNode, value: Any, path: str) -> float:
    if not _is_number(value):
        raise SchemaMismatchError(path, "expected a number")
    try:
        finite = math.isfinite(value)
    except OverflowError:
        finite = False
    if not finite:
        raise SchemaMismatchError(path, "expected a finite number")
    if node.enum is not None and value not in node.enum:
        raise SchemaMismatchError(path, f"{value} is not one of {node.enum}")
    return value


def _validate_boolean(node: BooleanNode, value: Any, path: str) -> bool:
    if not isinstance(value, bool):
        raise SchemaMismatchError(path, "expected a boolean")
    return value


_NODE_VALIDATORS: dict[str, Callable[[Any, Any, str], Any]] = {
    "object": _validate_object,
    "array": _validate_array,
    "string": _validate_string,
    "number": _validate_number,
    "boolean": _validate_boolean,
}


def validate_node(node: SchemaNode, value: Any, path: str = "data") -> Any:
    """Validate a value against a schema node.

    Raises:
        SchemaMismatchError: If the value does not match
    """
    return _NODE_VALIDATORS[node.type](node, value, path)


def _validate_location(value: Any) -> Location:
    if not isinstance(value, Mapping):
        raise SchemaMismatchError("metadata.location", "expected an object")

    extra = set(value) - LOCATION_KEYS
    if extra:
        raise SchemaMismatchError(
            "metadata.location", f"unknown fields: {', '.join(sorted(extra))}"
        )

    latitude = value.get("latitude")
    longitude = value.get("longitude")
    if not _is_number(latitude) or not -90 <= latitude <= 90:
        raise SchemaMismatchError("metadata.location.latitude", "must be between -90 and 90")
    if not _is_number(longitude) or not -180 <= longitude <= 180:
        raise SchemaMismatchError("metadata.location.longitude", "must be between -180 and 180")

    accuracy = value.get("accuracy")
    if accuracy is not None and (not _is_number(accuracy) or accuracy < 0):
        raise SchemaMismatchError("metadata.location.accuracy", "must be a non-negative number")

    provider = value.get("provider")
    if provider is not None and not isinstance(provider, str):
        raise SchemaMismatchError("metadata.location.provider", "must be a string")

    return Location(latitude, longitude, accuracy, provider)


def validate_metadata(
    metadata: Any,
    require_location: bool = False,
    custom: Iterable[str] = (),
) -> tuple[datetime, Optional[Location], dict]:
    """Validate the metadata attached to an uploaded point.

    A timestamp is always required; it is what duplicate detection keys on.

    Returns:
        Tuple of (UTC timestamp, location or None, custom metadata)

    Raises:
        SchemaMismatchError: If the metadata is missing or malformed
    """
    if not isinstance(metadata, Mapping):
        raise SchemaMismatchError("metadata", "required object is missing")

    if "timestamp" not in metadata:
        raise SchemaMismatchError("metadata.timestamp", "required field is missing")
    try:
        timestamp = parse_timestamp(metadata["timestamp"])
    except ValueError:
        raise SchemaMismatchError("metadata.timestamp", "is not a valid timestamp")

    location = None
    if metadata.get("location") is not None:
        location = _validate_location(metadata["location"])
    elif require_location:
        raise SchemaMismatchError("metadata.location", "required field is missing")

    custom = list(custom)
    unknown = set(metadata) - {"timestamp", "location"} - set(custom)
    if unknown:
        raise SchemaMismatchError("metadata", f"unknown fields: {', '.join(sorted(unknown))}")

    return timestamp, location, {key: metadata[key] for key in custom if key in metadata}


class StreamValidator:
    """Service for validating data points against stream definitions."""

    @staticmethod
    def validate_point(stream: Stream, point: Mapping[str, Any]) -> StreamPoint:
        """Validate one data point.

        Args:
            stream: Stream the point claims to belong to
            point: Raw point with "metadata" and "data"

        Returns:
            The validated point

        Raises:
            SchemaMismatchError: If the metadata or the data do not match
        """
        extra = set(point) - POINT_KEYS
        if extra:
            raise SchemaMismatchError("point", f"unknown fields: {', '.join(sorted(extra))}")

        timestamp, location, custom = validate_metadata(
            point.get("metadata"),
            require_location=stream.metadata.location,
            custom=stream.metadata.custom,
        )

        if "data" not in point:
            raise SchemaMismatchError("data", "required field is missing")
        data = validate_node(stream.data_schema, point["data"], "data")

        return StreamPoint(
            stream_id=stream.id,
            stream_version=stream.version,
            timestamp=timestamp,
            location=location,
            data=data,
            custom_metadata=custom,
        )
