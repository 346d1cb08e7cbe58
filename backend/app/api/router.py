"""AuthCore API Router - aggregates all API routes."""

from fastapi import APIRouter, Depends

from app.api import audit, auth, health, mfa
from app.api.guard import auth_guard

# Every route passes through the auth guard; its policy table decides
# which ones are public.
api_router = APIRouter(dependencies=[Depends(auth_guard)])

# Include routers
api_router.include_router(health.router)
api_router.include_router(auth.router)
api_router.include_router(mfa.router)
api_router.include_router(audit.router)
