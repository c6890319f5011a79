"""Main API router that includes all endpoint routers."""

from fastapi import APIRouter, Depends

from app.api.deps import require_internal_key
from app.api.v1 import bookings, internal

api_router = APIRouter()

# Bookings (web tier, internal API key)
api_router.include_router(
    bookings.router,
    prefix="/bookings",
    tags=["Bookings"],
    dependencies=[Depends(require_internal_key)],
)

# Internal (scheduler, cron secret)
api_router.include_router(internal.router, prefix="/internal", tags=["Internal"])
