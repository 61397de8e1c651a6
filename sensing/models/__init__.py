"""Database models and session management.

This package contains all SQLAlchemy ORM models and database utilities.
"""

from sensing.models.database import Base, engine, SessionLocal, create_tables, get_db
from sensing.models.stream_point import StreamDataPoint
from sensing.models.survey_response import SurveyResponseRecord
from sensing.models.invalid_point import InvalidPointRecord
from sensing.models.preference import Preference

__all__ = [
    "Base",
    "engine",
    "SessionLocal",
    "create_tables",
    "get_db",
    "StreamDataPoint",
    "SurveyResponseRecord",
    "InvalidPointRecord",
    "Preference",
]
