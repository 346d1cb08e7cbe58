"""Liveness and dependency status for AuthCore."""

from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from app.core import check_db_connection, settings

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    mail: str


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        status.HTTP_200_OK: {"description": "Database reachable"},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"description": "Database unreachable"},
    },
)
async def health_check(response: Response) -> HealthResponse:
    """Report database connectivity and whether outbound mail is set up.

    Only the database decides the status code. Missing SMTP settings leave
    the service usable (messages are dropped), so mail is informational.
    """
    db_ok = await check_db_connection()
    if not db_ok:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="healthy" if db_ok else "unhealthy",
        version=settings.app_version,
        database="connected" if db_ok else "disconnected",
        mail="configured" if settings.mail_configured else "not_configured",
    )
