"""SQLAlchemy implementations of the upload pipeline's storage collaborators.

Both work inside the caller's session and never commit: the request that
owns the session decides whether the upload is committed.
"""

from datetime import datetime, timezone
from typing import Optional, Sequence, Set

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sensing.errors import DataAccessError
from sensing.logging_config import get_logger
from sensing.models.invalid_point import InvalidPointRecord
from sensing.models.stream_point import StreamDataPoint
from sensing.models.survey_response import SurveyResponseRecord
from sensing.schemas.observer import Observer
from sensing.services.collaborators import Definition, DuplicateIndex, PointSink
from sensing.services.prompt_validation import PromptValidator

logger = get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _coordinates(latitude: Optional[float], longitude: Optional[float]) -> Optional[tuple]:
    if latitude is None or longitude is None:
        return None
    return (latitude, longitude)


class SqlDuplicateIndex(DuplicateIndex):
    """Finds previously stored points with a single query per upload.

    Args:
        db: Database session
    """

    def __init__(self, db: Session):
        self.db = db

    def find_existing(self, owner_id: str, definition: Definition, keys: Set[tuple]) -> Set[tuple]:
        """Return the keys already stored for this owner and definition.

        Raises:
            DataAccessError: If the query fails
        """
        if not keys:
            return set()

        timestamps = {key[2] for key in keys}
        if isinstance(definition, Observer):
            stream_ids = {key[0] for key in keys}
            query = select(
                StreamDataPoint.stream_id,
                StreamDataPoint.stream_version,
                StreamDataPoint.timestamp,
                StreamDataPoint.latitude,
                StreamDataPoint.longitude,
            ).where(
                StreamDataPoint.owner_id == owner_id,
                StreamDataPoint.observer_id == definition.id,
                StreamDataPoint.stream_id.in_(stream_ids),
                StreamDataPoint.timestamp.in_(timestamps),
            )
        else:
            query = select(
                SurveyResponseRecord.survey_id,
                SurveyResponseRecord.survey_version,
                SurveyResponseRecord.timestamp,
                SurveyResponseRecord.latitude,
                SurveyResponseRecord.longitude,
            ).where(
                SurveyResponseRecord.owner_id == owner_id,
                SurveyResponseRecord.survey_id == definition.id,
                SurveyResponseRecord.survey_version == definition.version,
                SurveyResponseRecord.timestamp.in_(timestamps),
            )

        try:
            rows = self.db.execute(query).all()
        except SQLAlchemyError as e:
            logger.error(f"Duplicate lookup failed for {definition.id}: {e}")
            raise DataAccessError("Failed to look up existing points.", e)

        stored = {
            (row[0], row[1], _as_utc(row[2]), _coordinates(row[3], row[4]))
            for row in rows
        }
        return keys & stored


class SqlPointSink(PointSink):
    """Adds classified points to the caller's session.

    Args:
        db: Database session
    """

    def __init__(self, db: Session):
        self.db = db

    def _add_all(self, records: list, description: str) -> None:
        try:
            self.db.add_all(records)
            self.db.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to store {description}: {e}")
            raise DataAccessError(f"Failed to store {description}.", e)

    def store(self, owner_id: str, definition: Definition, points: Sequence) -> None:
        """Store validated stream points or survey responses.

        Raises:
            DataAccessError: If the insert fails
        """
        if not points:
            return

        if isinstance(definition, Observer):
            records = [
                StreamDataPoint(
                    owner_id=owner_id,
                    observer_id=definition.id,
                    observer_version=definition.version,
                    stream_id=point.stream_id,
                    stream_version=point.stream_version,
                    timestamp=point.timestamp,
                    latitude=point.location.latitude if point.location else None,
                    longitude=point.location.longitude if point.location else None,
                    location=point.location.to_dict() if point.location else None,
                    custom_metadata=point.custom_metadata,
                    data=point.data,
                )
                for point in points
            ]
        else:
            records = [
                SurveyResponseRecord(
                    owner_id=owner_id,
                    survey_id=point.survey_id,
                    survey_version=point.survey_version,
                    timestamp=point.timestamp,
                    latitude=point.location.latitude if point.location else None,
                    longitude=point.location.longitude if point.location else None,
                    location=point.location.to_dict() if point.location else None,
                    responses=PromptValidator.encode(point.responses),
                )
                for point in points
            ]

        self._add_all(records, f"{len(records)} points")
        logger.debug(f"Stored {len(records)} points for {definition.id}")

    def store_invalid(self, owner_id: str, definition: Definition, invalid_points: Sequence) -> None:
        """Store rejected points for later inspection.

        Raises:
            DataAccessError: If the insert fails
        """
        if not invalid_points:
            return

        kind = "observer" if isinstance(definition, Observer) else "survey"
        records = [
            InvalidPointRecord(
                owner_id=owner_id,
                definition_kind=kind,
                definition_id=definition.id,
                definition_version=definition.version,
                point_index=point.index,
                reason=point.reason,
                raw=point.raw,
            )
            for point in invalid_points
        ]
        self._add_all(records, f"{len(records)} invalid points")
