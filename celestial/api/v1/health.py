"""Health check: credential store connectivity and mail transport mode."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from celestial.core.config import Settings, get_settings
from celestial.core.database import check_db_connected, get_db
from celestial.schemas.health import HealthResponse

router = APIRouter()


@router.get("/", response_model=HealthResponse)
def get_health(
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> HealthResponse:
    """
    Report "degraded" when the database is unreachable; load balancers
    should stop routing login traffic here in that case.
    """
    connected = check_db_connected(db)
    return HealthResponse(
        status="ok" if connected else "degraded",
        environment=settings.APP_ENV,
        database="connected" if connected else "disconnected",
        mail="smtp" if settings.MAIL_HOST else "log-only",
    )
