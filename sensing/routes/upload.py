"""Upload endpoints for stream data and survey responses.

Both endpoints accept form-encoded requests whose ``data`` field holds a
JSON array of points. The uploading user is identified by the
``X-User-Id`` header; authenticating that user happens upstream.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Form, Header
from sqlalchemy.orm import Session

from sensing.config import get_settings
from sensing.errors import InvalidParameterError
from sensing.logging_config import get_logger
from sensing.models.database import get_db
from sensing.schemas.upload import ErrorResponse, UploadResponse
from sensing.services.collaborators import Definition
from sensing.services.definition_loader import DefinitionLoader, get_definition_loader
from sensing.services.parameters import (
    decode_boolean,
    validate_observer_id,
    validate_simple_id,
    validate_version,
)
from sensing.services.point_store import SqlDuplicateIndex, SqlPointSink
from sensing.services.preference_cache import PreferenceCache, get_preference_cache
from sensing.services.upload import UploadPipeline, parse_batch

logger = get_logger(__name__)

router = APIRouter()

DEFAULT_PRESERVE_INVALID_POINTS_KEY = "default_preserve_invalid_points"

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid parameters or batch"},
    404: {"model": ErrorResponse, "description": "Unknown observer or survey"},
}


def _required(value, parameter: str, description: str):
    if value is None:
        raise InvalidParameterError(parameter, f"The {description} is missing.")
    return value


def _owner(x_user_id: Optional[str]) -> str:
    if x_user_id is None or not x_user_id.strip():
        raise InvalidParameterError("user", "The X-User-Id header is missing.")
    return x_user_id.strip()


def _preserve_invalid_points(value: Optional[str], preferences: PreferenceCache) -> bool:
    """Decode the request flag, falling back to the configured default."""
    preserve = decode_boolean(value, "preserve_invalid_points")
    if preserve is None:
        default = preferences.get(DEFAULT_PRESERVE_INVALID_POINTS_KEY)
        preserve = decode_boolean(default, DEFAULT_PRESERVE_INVALID_POINTS_KEY) or False
    return preserve


def _run_upload(
    db: Session,
    owner_id: str,
    definition: Definition,
    data: str,
    preserve_invalid_points: bool,
) -> UploadResponse:
    """Run the pipeline inside the request's transaction.

    Nothing is committed unless the whole upload succeeds.
    """
    points = parse_batch(data)
    pipeline = UploadPipeline(
        SqlDuplicateIndex(db),
        SqlPointSink(db),
        max_points=get_settings().max_upload_points,
    )

    try:
        result = pipeline.upload(owner_id, definition, points, preserve_invalid_points)
        db.commit()
    except Exception:
        db.rollback()
        raise

    return UploadResponse(**result.summary())


@router.post("/streams/upload", response_model=UploadResponse, responses=ERROR_RESPONSES)
def upload_stream_data(
    observer_id: Annotated[Optional[str], Form()] = None,
    observer_version: Annotated[Optional[str], Form()] = None,
    data: Annotated[Optional[str], Form()] = None,
    preserve_invalid_points: Annotated[Optional[str], Form()] = None,
    x_user_id: Annotated[Optional[str], Header()] = None,
    db: Session = Depends(get_db),
    loader: DefinitionLoader = Depends(get_definition_loader),
    preferences: PreferenceCache = Depends(get_preference_cache),
) -> UploadResponse:
    """Upload a batch of stream data points for one observer.

    Form fields:
        observer_id: Reverse-DNS observer identifier
        observer_version: Observer version
        data: JSON array of points
        preserve_invalid_points: "true" to keep rejected points

    Returns:
        UploadResponse: Counts of stored and duplicate points, and the
        rejected points with their reasons

    Raises:
        InvalidParameterError: If a parameter is missing or malformed
        InvalidBatchError: If ``data`` is not a JSON array
        DefinitionNotFoundError: If the observer does not exist
    """
    owner_id = _owner(x_user_id)
    observer_id = _required(validate_observer_id(observer_id), "observer_id", "observer ID")
    version = _required(
        validate_version(observer_version, "observer_version"),
        "observer_version",
        "observer version",
    )
    data = _required(data, "data", "data")
    preserve = _preserve_invalid_points(preserve_invalid_points, preferences)

    observer = loader.load_observer(observer_id, version)

    logger.info(
        f"Stream upload from {owner_id} for {observer_id} v{version}",
        extra={"owner_id": owner_id, "observer_id": observer_id},
    )
    return _run_upload(db, owner_id, observer, data, preserve)


@router.post("/surveys/upload", response_model=UploadResponse, responses=ERROR_RESPONSES)
def upload_survey_responses(
    survey_id: Annotated[Optional[str], Form()] = None,
    survey_version: Annotated[Optional[str], Form()] = None,
    data: Annotated[Optional[str], Form()] = None,
    preserve_invalid_points: Annotated[Optional[str], Form()] = None,
    x_user_id: Annotated[Optional[str], Header()] = None,
    db: Session = Depends(get_db),
    loader: DefinitionLoader = Depends(get_definition_loader),
    preferences: PreferenceCache = Depends(get_preference_cache),
) -> UploadResponse:
    """Upload a batch of responses to one survey.

    Form fields mirror the stream upload, with ``survey_id`` and
    ``survey_version`` naming the survey.
    """
    owner_id = _owner(x_user_id)
    survey_id = _required(validate_simple_id(survey_id, "survey_id"), "survey_id", "survey ID")
    version = _required(
        validate_version(survey_version, "survey_version"),
        "survey_version",
        "survey version",
    )
    data = _required(data, "data", "data")
    preserve = _preserve_invalid_points(preserve_invalid_points, preferences)

    survey = loader.load_survey(survey_id, version)

    logger.info(
        f"Survey upload from {owner_id} for {survey_id} v{version}",
        extra={"owner_id": owner_id, "survey_id": survey_id},
    )
    return _run_upload(db, owner_id, survey, data, preserve)
