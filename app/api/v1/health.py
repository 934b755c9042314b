"""Health check endpoint with optional database connectivity check."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.database import check_db_connected, get_db
from app.schemas.health import HealthResponse

router = APIRouter()


@router.get("", response_model=HealthResponse)
def get_health(
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> HealthResponse:
    """
    Return service health status and database connectivity.
    Used by the gateway and load balancers.
    """
    db_status = "connected" if check_db_connected(db) else "disconnected"

    return HealthResponse(
        ok=True,
        service=settings.SERVICE_NAME,
        environment=settings.APP_ENV,
        database=db_status,
    )
