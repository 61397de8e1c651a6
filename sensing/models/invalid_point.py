"""InvalidPointRecord model for keeping rejected points.

Rejected points are only kept when the uploader asks for it, so that they
can be inspected and repaired later.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    String,
    Integer,
    Text,
    DateTime,
    JSON,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from sensing.models.database import Base


class InvalidPointRecord(Base):
    """Model for storing a rejected point.

    Attributes:
        id: Primary key
        owner_id: User who uploaded the point
        definition_kind: "observer" or "survey"
        definition_id: Observer or survey identifier
        definition_version: Observer or survey version
        point_index: Position of the point in its upload
        reason: Why the point was rejected
        raw: The point as uploaded
        uploaded_at: When the point was stored
    """

    __tablename__ = "invalid_points"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    owner_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    definition_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    definition_id: Mapped[str] = mapped_column(String(255), nullable=False)
    definition_version: Mapped[int] = mapped_column(Integer, nullable=False)

    point_index: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Position of the point in its upload"
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    raw: Mapped[Any] = mapped_column(JSON, nullable=True)

    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    def __repr__(self) -> str:
        return (
            f"<InvalidPointRecord(id={self.id}, "
            f"definition={self.definition_id} v{self.definition_version}, "
            f"point_index={self.point_index})>"
        )
