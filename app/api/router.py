"""
Main API router
"""
from fastapi import APIRouter

from app.api.v1 import (
    health,
    version,
    devices,
    sync_batches,
    enrollment,
)

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(version.router, tags=["version"])
api_router.include_router(devices.router, prefix="/biometric-devices", tags=["biometric-devices"])
api_router.include_router(sync_batches.router, prefix="/sync-batches", tags=["sync-batches"])
api_router.include_router(enrollment.router, prefix="/enrollment-sessions", tags=["enrollment"])
