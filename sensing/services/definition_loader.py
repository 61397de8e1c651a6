"""Definition loader service with caching and validation.

This module loads observer and survey definitions from YAML files, validates
them against Pydantic schemas, and caches the results. Definitions are
immutable once published, so a cached definition never expires.

Layout of the definitions directory:
    observers/{observer_id}-{version}.yaml
    surveys/{survey_id}-{version}.yaml

JSON files with the same names are also accepted.
"""

from functools import lru_cache
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import ValidationError

from sensing.config import get_settings
from sensing.errors import DefinitionInvalidError, DefinitionNotFoundError
from sensing.logging_config import get_logger
from sensing.schemas.observer import Observer
from sensing.schemas.survey import Survey

logger = get_logger(__name__)

_EXTENSIONS = (".yaml", ".yml", ".json")


class DefinitionLoader:
    """Service for loading and caching observer and survey definitions.

    Args:
        definitions_dir: Root directory of the definition files
    """

    def __init__(self, definitions_dir: Union[str, Path]):
        self.definitions_dir = Path(definitions_dir)

        if not self.definitions_dir.exists():
            logger.warning(f"Definitions directory not found: {self.definitions_dir}")

    def _find_file(self, kind: str, definition_id: str, version: int) -> Optional[Path]:
        for extension in _EXTENSIONS:
            path = self.definitions_dir / kind / f"{definition_id}-{version}{extension}"
            if path.is_file():
                return path
        return None

    def _read(self, kind: str, definition_id: str, version: int) -> Any:
        path = self._find_file(kind, definition_id, version)
        if path is None:
            logger.warning(f"Definition not found: {kind}/{definition_id} version {version}")
            raise DefinitionNotFoundError(
                f"No {kind[:-1]} '{definition_id}' with version {version} exists."
            )

        try:
            with open(path, "r") as f:
                raw_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"YAML parsing error for {path}: {e}")
            raise DefinitionInvalidError(f"Invalid YAML in {kind[:-1]} '{definition_id}': {e}")
        except OSError as e:
            logger.error(f"Error reading definition file {path}: {e}")
            raise DefinitionInvalidError(f"Error reading {kind[:-1]} '{definition_id}': {e}")

        if not isinstance(raw_data, dict):
            raise DefinitionInvalidError(
                f"The {kind[:-1]} file for '{definition_id}' does not contain a mapping."
            )
        return raw_data

    def _check_identity(self, definition, definition_id: str, version: int) -> None:
        if definition.id != definition_id or definition.version != version:
            raise DefinitionInvalidError(
                f"File for '{definition_id}' version {version} defines "
                f"'{definition.id}' version {definition.version}."
            )

    @lru_cache(maxsize=None)
    def load_observer(self, observer_id: str, version: int) -> Observer:
        """Load and validate an observer definition.

        Args:
            observer_id: Observer identifier
            version: Observer version

        Returns:
            Validated Observer

        Raises:
            DefinitionNotFoundError: If no such observer exists
            DefinitionInvalidError: If the file cannot be parsed or validated

        Example:
            >>> loader = DefinitionLoader("./definitions")
            >>> observer = loader.load_observer("org.example.phone", 1)
            >>> [stream.id for stream in observer.streams]
            ['accelerometer', 'battery']
        """
        raw_data = self._read("observers", observer_id, version)
        try:
            observer = Observer.model_validate(raw_data)
        except ValidationError as e:
            logger.error(f"Validation error for observer {observer_id}: {e}")
            raise DefinitionInvalidError(f"Validation failed for observer '{observer_id}': {e}")

        self._check_identity(observer, observer_id, version)
        logger.info(f"Loaded observer: {observer_id} (version {version})")
        return observer

    @lru_cache(maxsize=None)
    def load_survey(self, survey_id: str, version: int) -> Survey:
        """Load and validate a survey definition.

        Validation includes the static check of every condition, so a
        loaded survey never refers forward or to an unknown item.

        Raises:
            DefinitionNotFoundError: If no such survey exists
            DefinitionInvalidError: If the file cannot be parsed or validated
        """
        raw_data = self._read("surveys", survey_id, version)
        try:
            survey = Survey.model_validate(raw_data)
        except ValidationError as e:
            logger.error(f"Validation error for survey {survey_id}: {e}")
            raise DefinitionInvalidError(f"Validation failed for survey '{survey_id}': {e}")

        self._check_identity(survey, survey_id, version)
        logger.info(f"Loaded survey: {survey_id} (version {version})")
        return survey

    def list_definitions(self, kind: str) -> list[tuple[str, int]]:
        """List the available definitions of one kind.

        Args:
            kind: "observers" or "surveys"

        Returns:
            Sorted list of (id, version) pairs
        """
        directory = self.definitions_dir / kind
        if not directory.exists():
            return []

        found = set()
        for path in directory.iterdir():
            if path.suffix not in _EXTENSIONS:
                continue
            definition_id, _, version = path.stem.rpartition("-")
            if definition_id and version.isdigit():
                found.add((definition_id, int(version)))

        logger.debug(f"Found {len(found)} {kind}")
        return sorted(found)

    def clear_cache(self):
        """Clear the definition caches."""
        self.load_observer.cache_clear()
        self.load_survey.cache_clear()
        logger.info("Definition cache cleared")


# Global singleton instance
_loader_instance: Optional[DefinitionLoader] = None


def get_definition_loader() -> DefinitionLoader:
    """Get global DefinitionLoader instance.

    Creates singleton instance on first call, reading from the configured
    definitions directory.
    """
    global _loader_instance
    if _loader_instance is None:
        _loader_instance = DefinitionLoader(get_settings().definitions_dir)
    return _loader_instance
