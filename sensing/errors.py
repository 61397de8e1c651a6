"""Error taxonomy for the upload validation service.

Every error carries a stable ``code`` and a human-readable message so the
request layer can translate it into a transport-level response.
"""

from typing import Any, Iterable, Optional


class SensingError(Exception):
    """Base class for all service errors."""

    code = "server_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        """Render the error as a response entry."""
        return {"code": self.code, "text": self.message}


class DefinitionNotFoundError(SensingError):
    """Raised when a survey or observer definition does not exist."""

    code = "definition_not_found"
    status_code = 404


class DefinitionInvalidError(SensingError):
    """Raised when a stored definition cannot be parsed or validated."""

    code = "definition_invalid"
    status_code = 500


class MalformedConditionError(SensingError):
    """Raised when a condition is unparseable, mistyped or references an
    item that has not been answered yet."""

    code = "malformed_condition"
    status_code = 500

    def __init__(self, condition: str, message: str):
        super().__init__(f"Invalid condition '{condition}': {message}")
        self.condition = condition


class InvalidPointError(SensingError):
    """Raised when a single uploaded point is malformed."""

    code = "invalid_point"


class InvalidResponseValueError(InvalidPointError):
    """Raised when a response value does not conform to its prompt."""

    code = "invalid_response_value"

    def __init__(self, prompt_id: str, value: Any, message: str):
        super().__init__(f"Prompt '{prompt_id}': {message} (value: {value!r})")
        self.prompt_id = prompt_id
        self.value = value


class UnexpectedResponseError(InvalidPointError):
    """Raised when a survey response contains keys the survey does not define."""

    code = "unexpected_response"

    def __init__(self, keys: Iterable[str]):
        self.keys = sorted(keys)
        super().__init__(f"Responses given for unknown survey items: {', '.join(self.keys)}")


class SchemaMismatchError(InvalidPointError):
    """Raised when a data point does not match its stream's schema."""

    code = "schema_mismatch"

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path


class InvalidBatchError(SensingError):
    """Raised when an uploaded batch is not a JSON array at all."""

    code = "invalid_batch"


class InvalidParameterError(SensingError):
    """Raised when a request parameter fails validation."""

    code = "invalid_parameter"

    def __init__(self, parameter: str, message: str):
        super().__init__(message)
        self.parameter = parameter


class DataAccessError(SensingError):
    """Raised by storage collaborators. Never retried."""

    code = "data_access"
    status_code = 500

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.__cause__ = cause


class CacheMissError(SensingError):
    """Raised when a key is not present in a key-value cache."""

    code = "cache_miss"
    status_code = 500
