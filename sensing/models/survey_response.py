"""SurveyResponseRecord model for storing validated survey responses."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    Index,
    String,
    Integer,
    Float,
    DateTime,
    JSON,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from sensing.models.database import Base


class SurveyResponseRecord(Base):
    """Model for storing one submitted survey.

    Responses are stored in their encoded form: values that were not given
    are stored as the name of their no-response marker (e.g. "SKIPPED").

    Attributes:
        id: Primary key
        owner_id: User who took the survey
        survey_id: Survey identifier
        survey_version: Survey version
        timestamp: When the survey was taken (UTC)
        latitude: Latitude of the survey's location, if any
        longitude: Longitude of the survey's location, if any
        location: Full location metadata, if any
        responses: Validated responses keyed by item id
        uploaded_at: When the response was stored
    """

    __tablename__ = "survey_responses"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    owner_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="User who took the survey"
    )
    survey_id: Mapped[str] = mapped_column(String(100), nullable=False)
    survey_version: Mapped[int] = mapped_column(Integer, nullable=False)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the survey was taken"
    )
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    location: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    responses: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        comment="Encoded responses keyed by item id"
    )

    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        Index("idx_survey_response_identity", "owner_id", "survey_id", "survey_version", "timestamp"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<SurveyResponseRecord(id={self.id}, "
            f"owner_id={self.owner_id}, "
            f"survey={self.survey_id} v{self.survey_version}, "
            f"timestamp={self.timestamp})>"
        )
