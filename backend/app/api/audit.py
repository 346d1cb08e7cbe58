"""Operator audit trail API (Admin only)."""

import logging
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import get_db
from app.schemas.auth import AuditLogListResponse, AuditLogResponse
from app.services.audit import AuditService, get_audit_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    event: str | None = Query(None, description="Filter by event type, e.g. LOGIN_FAILED"),
    user_id: UUID | None = Query(None, description="Filter by actor"),
    level: Literal["info", "warning", "error"] | None = Query(
        None, description="Filter by severity"
    ),
    limit: int = Query(50, ge=1, le=200, description="Items per page"),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    audit: AuditService = Depends(get_audit_service),
) -> AuditLogListResponse:
    """List security audit events, newest first."""
    items, total = await audit.list_events(
        db,
        event=event.upper() if event else None,
        user_id=user_id,
        level=level,
        limit=limit,
        offset=offset,
    )
    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(item) for item in items],
        total=total,
        limit=limit,
        offset=offset,
    )
