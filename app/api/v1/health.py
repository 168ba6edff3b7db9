"""Health check endpoint with record store connectivity check."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.database import check_db_connected, count_records, get_db
from app.schemas.health import HealthResponse

router = APIRouter()


@router.get("/", response_model=HealthResponse)
def get_health(
    request: Request,
    db: Annotated[Session, Depends(get_db)],
) -> HealthResponse:
    """
    Return service health status and database connectivity.
    Used by load balancers and monitoring.
    """
    connected = check_db_connected(db)

    return HealthResponse(
        status="ok",
        environment=request.app.state.settings.APP_ENV,
        database="connected" if connected else "disconnected",
        records=count_records(db) if connected else None,
    )
