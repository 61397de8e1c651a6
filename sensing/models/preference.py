"""Preference model for runtime-adjustable service settings."""

from datetime import datetime

from sqlalchemy import (
    String,
    Text,
    DateTime,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from sensing.models.database import Base


class Preference(Base):
    """Model for a single key-value preference.

    Preferences are read through the preference cache, so changes take
    effect once the cached snapshot expires.

    Attributes:
        key: Preference name (primary key)
        value: Preference value as text
        updated_at: Last update timestamp
    """

    __tablename__ = "preferences"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    def __repr__(self) -> str:
        return f"<Preference(key={self.key}, value={self.value})>"
