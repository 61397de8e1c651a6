"""Pytest configuration and shared fixtures.

This module provides fixtures and configuration used across all tests.
"""

import os
from typing import Generator

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Set required environment variables for tests BEFORE importing sensing modules
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "development")

from sensing.models.database import Base
from sensing.schemas.observer import Observer
from sensing.schemas.survey import Survey


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine with SQLite in-memory database.

    A single shared connection keeps the in-memory database alive across
    sessions and threads (the API tests run handlers in a thread pool).
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)

    yield engine

    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session_factory(db_engine):
    """Session factory bound to the test engine."""
    return sessionmaker(
        bind=db_engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest.fixture(scope="function")
def db_session(db_session_factory) -> Generator[Session, None, None]:
    """Create a test database session, rolled back after each test."""
    session = db_session_factory()

    yield session

    session.rollback()
    session.close()


@pytest.fixture
def sample_owner_id() -> str:
    return "participant-001"


@pytest.fixture
def mood_survey() -> Survey:
    """Survey with a skippable number prompt and a conditional follow-up.

    Items:
        p1: number 0-10, skippable
        p2: text, displayed when p1 > 5
    """
    return Survey.model_validate({
        "id": "mood",
        "version": 1,
        "name": "Mood",
        "items": [
            {
                "id": "p1",
                "type": "number",
                "text": "How do you feel (0-10)?",
                "skippable": True,
                "properties": {"min": 0, "max": 10, "whole_number": True},
            },
            {
                "id": "p2",
                "type": "text",
                "text": "What made today good?",
                "condition": "p1 > 5",
            },
        ],
    })


@pytest.fixture
def mobility_observer() -> Observer:
    """Observer with one stream carrying a mode string and a speed number."""
    return Observer.model_validate({
        "id": "org.example.mobility",
        "version": 1,
        "name": "Mobility",
        "streams": [
            {
                "id": "mode",
                "version": 1,
                "schema": {
                    "type": "object",
                    "fields": [
                        {"name": "mode", "type": "string", "enum": ["still", "walk", "run"]},
                        {"name": "speed", "type": "number", "optional": True},
                    ],
                },
            },
            {
                "id": "battery",
                "version": 2,
                "metadata": {"location": True},
                "schema": {"type": "number"},
            },
        ],
    })
