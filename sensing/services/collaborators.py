"""Interfaces of the storage collaborators used by the upload pipeline.

Implementations are expected to raise DataAccessError on storage failures;
the pipeline never retries.
"""

from abc import ABC, abstractmethod
from typing import Sequence, Set, Union

from sensing.schemas.observer import Observer
from sensing.schemas.survey import Survey

Definition = Union[Observer, Survey]


class DuplicateIndex(ABC):
    """Looks up points that were already stored by earlier uploads."""

    @abstractmethod
    def find_existing(
        self, owner_id: str, definition: Definition, keys: Set[tuple]
    ) -> Set[tuple]:
        """Return the subset of ``keys`` already stored for this owner.

        Called at most once per upload with every candidate key.
        """


class PointSink(ABC):
    """Persists classified points once a whole batch has been classified."""

    @abstractmethod
    def store(self, owner_id: str, definition: Definition, points: Sequence) -> None:
        """Store the valid points of a batch."""

    @abstractmethod
    def store_invalid(self, owner_id: str, definition: Definition, invalid_points: Sequence) -> None:
        """Store rejected points with their reasons."""
