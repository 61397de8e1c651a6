"""Health check endpoint for monitoring and deployment verification."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sensing.models.database import get_db
from sensing.logging_config import get_logger
from sensing.services.definition_loader import DefinitionLoader, get_definition_loader

logger = get_logger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(
    db: Session = Depends(get_db),
    loader: DefinitionLoader = Depends(get_definition_loader),
):
    """Health check endpoint.

    Verifies that the database answers and reports how many definitions
    are available.

    Example response:
        {
            "status": "healthy",
            "database": "connected",
            "observers": 2,
            "surveys": 5
        }
    """
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "disconnected"},
        )

    logger.debug("Health check passed")
    return {
        "status": "healthy",
        "database": "connected",
        "observers": len(loader.list_definitions("observers")),
        "surveys": len(loader.list_definitions("surveys")),
    }
