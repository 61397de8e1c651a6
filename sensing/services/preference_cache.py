"""Time-expiring cache of service preferences.

Preferences are small key-value settings kept in the database so they can
be changed without a redeploy. Readers are served from an in-memory
snapshot that is replaced wholesale when it expires.
"""

import threading
import time
from typing import Callable, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sensing.config import get_settings
from sensing.errors import CacheMissError, DataAccessError
from sensing.logging_config import get_logger
from sensing.models.database import SessionLocal
from sensing.models.preference import Preference

logger = get_logger(__name__)

MIN_REFRESH_INTERVAL = 1.0

PreferenceSource = Callable[[], Mapping[str, str]]


class PreferenceCache:
    """Key-value cache refreshed from a source at a fixed interval.

    Only one thread refreshes at a time. Other readers keep using the
    previous snapshot until the new one is swapped in. When a refresh fails
    the previous snapshot stays in use and the next lookup tries again.

    Args:
        source: Callable returning the full current key-value mapping
        refresh_interval: Seconds a snapshot stays fresh, at least 1
        clock: Monotonic clock returning seconds

    Raises:
        ValueError: If the refresh interval is shorter than one second
    """

    def __init__(
        self,
        source: PreferenceSource,
        refresh_interval: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if refresh_interval < MIN_REFRESH_INTERVAL:
            raise ValueError(
                f"The refresh interval must be at least {MIN_REFRESH_INTERVAL} second."
            )

        self._source = source
        self._refresh_interval = refresh_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: Optional[dict[str, str]] = None
        self._expires_at = 0.0

    def _is_stale(self) -> bool:
        return self._snapshot is None or self._clock() >= self._expires_at

    def _refresh(self) -> dict[str, str]:
        with self._lock:
            # Another thread may have refreshed while this one waited.
            if not self._is_stale():
                return self._snapshot

            try:
                snapshot = dict(self._source())
            except Exception as e:
                if self._snapshot is None:
                    raise
                logger.warning(f"Preference refresh failed, keeping previous values: {e}")
                return self._snapshot

            self._snapshot = snapshot
            self._expires_at = self._clock() + self._refresh_interval
            logger.debug(f"Preference cache refreshed with {len(snapshot)} keys")
            return snapshot

    def _current(self) -> dict[str, str]:
        snapshot = self._snapshot
        if snapshot is None or self._clock() >= self._expires_at:
            snapshot = self._refresh()
        return snapshot

    def lookup(self, key: str) -> str:
        """Get the value of a key.

        Raises:
            CacheMissError: If the key is unknown
        """
        snapshot = self._current()
        if key not in snapshot:
            raise CacheMissError(f"Unknown preference: {key}")
        return snapshot[key]

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get the value of a key, or ``default`` if it is unknown."""
        return self._current().get(key, default)

    def keys(self) -> set[str]:
        return set(self._current())

    def invalidate(self) -> None:
        """Force a refresh on the next lookup."""
        with self._lock:
            self._expires_at = 0.0


def sql_preference_source(session_factory: Callable[[], Session]) -> PreferenceSource:
    """Build a preference source reading the preferences table.

    Args:
        session_factory: Callable returning a new database session

    Returns:
        Callable loading every preference as a dict
    """

    def load() -> dict[str, str]:
        session = session_factory()
        try:
            rows = session.execute(select(Preference.key, Preference.value)).all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to load preferences: {e}")
            raise DataAccessError("Failed to load preferences.", e)
        finally:
            session.close()
        return {key: value for key, value in rows}

    return load


# Global singleton instance
_cache_instance: Optional[PreferenceCache] = None


def get_preference_cache() -> PreferenceCache:
    """Get global PreferenceCache instance.

    Creates singleton instance on first call, backed by the preferences
    table and refreshed at the configured interval.
    """
    global _cache_instance
    if _cache_instance is None:
        _cache_instance = PreferenceCache(
            sql_preference_source(SessionLocal),
            get_settings().preference_refresh_seconds,
        )
    return _cache_instance
