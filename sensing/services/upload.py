"""Batch upload pipeline.

Classifies every point of an uploaded batch as valid, invalid or duplicate,
then hands the valid (and, on request, the invalid) points to storage. A
malformed point never aborts the batch; a corrupt definition or a storage
failure does.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional, Union

from sensing.errors import InvalidBatchError, InvalidPointError
from sensing.logging_config import get_logger
from sensing.schemas.observer import Observer
from sensing.schemas.survey import Survey
from sensing.services.collaborators import Definition, DuplicateIndex, PointSink
from sensing.services.stream_validator import (
    Location,
    StreamPoint,
    StreamValidator,
    validate_metadata,
)
from sensing.services.survey_validator import SurveyValidator

logger = get_logger(__name__)

SURVEY_POINT_KEYS = frozenset({"survey_id", "survey_version", "metadata", "responses"})


@dataclass
class SurveyPoint:
    """A validated survey response.

    Attributes:
        survey_id: Survey the response answers
        survey_version: Version of that survey
        timestamp: When the survey was taken, in UTC
        location: Where the survey was taken, if known
        responses: Validated responses keyed by item id
    """
    survey_id: str
    survey_version: int
    timestamp: datetime
    location: Optional[Location]
    responses: dict

    @property
    def identity(self) -> tuple:
        """Key under which two responses count as the same submission."""
        location = (
            (self.location.latitude, self.location.longitude) if self.location else None
        )
        return (self.survey_id, self.survey_version, self.timestamp, location)


@dataclass
class InvalidPoint:
    """A rejected point, reported back to the client.

    Attributes:
        index: Position of the point in the uploaded batch
        reason: Why the point was rejected
        persisted: Whether the point is kept for later inspection
        raw: The point as uploaded
    """
    index: int
    reason: str
    persisted: bool
    raw: Any = None

    def to_dict(self) -> dict:
        return {"index": self.index, "persisted": self.persisted, "reason": self.reason}


@dataclass
class UploadResult:
    """Outcome of one upload."""
    valid_points: list = field(default_factory=list)
    invalid_points: list[InvalidPoint] = field(default_factory=list)
    duplicate_count: int = 0

    @property
    def valid_count(self) -> int:
        return len(self.valid_points)

    def summary(self) -> dict:
        return {
            "valid_count": self.valid_count,
            "duplicate_count": self.duplicate_count,
            "invalid_points": [point.to_dict() for point in self.invalid_points],
        }


def parse_batch(data: Union[str, bytes]) -> Iterator[Any]:
    """Decode an uploaded batch into its points.

    Raises:
        InvalidBatchError: If the data is not a JSON array
    """
    try:
        decoded = json.loads(data)
    except (ValueError, RecursionError) as e:
        # JSONDecodeError and UnicodeDecodeError are ValueErrors, as is an
        # integer longer than the interpreter's digit limit.
        raise InvalidBatchError(f"The data is not valid JSON: {e}")

    if not isinstance(decoded, list):
        raise InvalidBatchError("The data must be a JSON array of points.")
    return iter(decoded)


def _decode_version(value: Any) -> Optional[int]:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.isascii() and text.isdigit():
            return int(text)
    return None


def _validate_stream_point(observer: Observer, point: Mapping[str, Any]) -> StreamPoint:
    stream_id = point.get("stream_id")
    if not isinstance(stream_id, str) or not stream_id:
        raise InvalidPointError("The point's stream_id is missing or not a string.")

    stream_version = _decode_version(point.get("stream_version"))
    if stream_version is None:
        raise InvalidPointError("The point's stream_version is missing or not an integer.")

    stream = observer.get_stream(stream_id, stream_version)
    if stream is None:
        raise InvalidPointError(
            f"The observer has no stream '{stream_id}' with version {stream_version}."
        )

    return StreamValidator.validate_point(stream, point)


def _validate_survey_point(survey: Survey, point: Mapping[str, Any]) -> SurveyPoint:
    extra = set(point) - SURVEY_POINT_KEYS
    if extra:
        raise InvalidPointError(f"Unknown fields in survey response: {', '.join(sorted(extra))}")

    if "survey_id" in point and point["survey_id"] != survey.id:
        raise InvalidPointError(f"The response is for another survey: {point['survey_id']}")
    if "survey_version" in point and _decode_version(point["survey_version"]) != survey.version:
        raise InvalidPointError(
            f"The response is for another survey version: {point['survey_version']}"
        )

    timestamp, location, _ = validate_metadata(point.get("metadata"))

    responses = point.get("responses")
    if not isinstance(responses, Mapping):
        raise InvalidPointError("The survey response has no responses object.")

    return SurveyPoint(
        survey_id=survey.id,
        survey_version=survey.version,
        timestamp=timestamp,
        location=location,
        responses=SurveyValidator.validate(survey, responses),
    )


_POINT_VALIDATORS: dict[type, Callable[[Any, Mapping[str, Any]], Any]] = {
    Observer: _validate_stream_point,
    Survey: _validate_survey_point,
}


class UploadPipeline:
    """Validates, deduplicates and stores uploaded batches.

    Args:
        duplicate_index: Lookup of points stored by earlier uploads
        sink: Storage for the classified points
        max_points: Largest batch accepted, None for no limit
    """

    def __init__(
        self,
        duplicate_index: DuplicateIndex,
        sink: PointSink,
        max_points: Optional[int] = None,
    ):
        self.duplicate_index = duplicate_index
        self.sink = sink
        self.max_points = max_points

    def classify(
        self,
        definition: Definition,
        raw_points: Iterable[Any],
        preserve_invalid_points: bool = False,
    ) -> tuple[list, list[InvalidPoint], int]:
        """Validate every point of a batch.

        The batch is consumed once, in order. Points repeating an earlier
        point of the same batch are dropped.

        Returns:
            Tuple of (valid points in batch order, invalid points in batch
            order, number of in-batch duplicates)

        Raises:
            InvalidBatchError: If the batch exceeds ``max_points``
            MalformedConditionError: If a survey condition is invalid
        """
        validate = _POINT_VALIDATORS[type(definition)]
        valid: list = []
        invalid: list[InvalidPoint] = []
        seen: set[tuple] = set()
        duplicates = 0

        for index, raw in enumerate(raw_points):
            if self.max_points is not None and index >= self.max_points:
                raise InvalidBatchError(
                    f"The batch contains more than {self.max_points} points."
                )

            try:
                if not isinstance(raw, Mapping):
                    raise InvalidPointError("The point is not a JSON object.")
                point = validate(definition, raw)
            except InvalidPointError as e:
                logger.debug(f"Point {index} rejected: {e.message}")
                invalid.append(InvalidPoint(index, e.message, preserve_invalid_points, raw))
                continue

            if point.identity in seen:
                duplicates += 1
                continue
            seen.add(point.identity)
            valid.append(point)

        return valid, invalid, duplicates

    def upload(
        self,
        owner_id: str,
        definition: Definition,
        raw_points: Iterable[Any],
        preserve_invalid_points: bool = False,
    ) -> UploadResult:
        """Classify a batch and store the result.

        Nothing is stored until the whole batch has been classified.
        Previously stored points are looked up with a single call to the
        duplicate index.

        Args:
            owner_id: User the points belong to
            definition: Observer or survey the points were collected with
            raw_points: Decoded points, consumed once
            preserve_invalid_points: Also store rejected points

        Returns:
            UploadResult with the stored points, the rejected points and the
            number of duplicates

        Raises:
            InvalidBatchError: If the batch exceeds ``max_points``
            MalformedConditionError: If a survey condition is invalid
            DataAccessError: If storage fails
        """
        id_field = "observer_id" if isinstance(definition, Observer) else "survey_id"
        log_extra = {"owner_id": owner_id, id_field: definition.id}

        valid, invalid, duplicates = self.classify(
            definition, raw_points, preserve_invalid_points
        )

        if valid:
            existing = self.duplicate_index.find_existing(
                owner_id, definition, {point.identity for point in valid}
            )
            if existing:
                kept = [point for point in valid if point.identity not in existing]
                duplicates += len(valid) - len(kept)
                valid = kept

        logger.info(
            f"Classified upload for {definition.id} v{definition.version}: "
            f"{len(valid)} valid, {duplicates} duplicate, {len(invalid)} invalid",
            extra=log_extra,
        )

        self.sink.store(owner_id, definition, valid)
        if preserve_invalid_points and invalid:
            self.sink.store_invalid(owner_id, definition, invalid)

        return UploadResult(
            valid_points=valid,
            invalid_points=invalid,
            duplicate_count=duplicates,
        )
