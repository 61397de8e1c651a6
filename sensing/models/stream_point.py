"""StreamDataPoint model for storing validated stream data.

Each row is one data point uploaded by a user for one stream of an observer.
"""

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


class StreamDataPoint(Base):
    """Model for storing stream data points.

    Points are unique per owner on (stream_id, stream_version, timestamp,
    latitude, longitude); the upload pipeline filters duplicates before
    inserting.

    Attributes:
        id: Primary key
        owner_id: User who uploaded the point
        observer_id: Observer that produced the point
        observer_version: Version of that observer
        stream_id: Stream the point belongs to
        stream_version: Version of that stream
        timestamp: When the point was recorded (UTC)
        latitude: Latitude of the point's location, if any
        longitude: Longitude of the point's location, if any
        location: Full location metadata, if any
        custom_metadata: Additional metadata declared by the stream
        data: Validated point data
        uploaded_at: When the point was stored
    """

    __tablename__ = "stream_data_points"

    # Primary Key
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Ownership
    owner_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="User who uploaded the point"
    )

    # Definition Identification
    observer_id: Mapped[str] = mapped_column(String(255), nullable=False)
    observer_version: Mapped[int] = mapped_column(Integer, nullable=False)
    stream_id: Mapped[str] = mapped_column(String(100), nullable=False)
    stream_version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Metadata
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the point was recorded"
    )
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    location: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    custom_metadata: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Additional metadata declared by the stream"
    )

    # Payload
    data: Mapped[Any] = mapped_column(
        JSON,
        nullable=False,
        comment="Point data validated against the stream schema"
    )

    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    # Indexes
    __table_args__ = (
        # Duplicate lookups filter on these columns
        Index("idx_stream_point_identity", "owner_id", "stream_id", "stream_version", "timestamp"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<StreamDataPoint(id={self.id}, "
            f"owner_id={self.owner_id}, "
            f"stream={self.stream_id} v{self.stream_version}, "
            f"timestamp={self.timestamp})>"
        )
