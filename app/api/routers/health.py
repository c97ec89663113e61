"""Health check router."""

import shutil

from fastapi import APIRouter

from app.config import VERSION, settings
from app.services import build_service

router = APIRouter()


@router.get("/health")
async def health_check():
    """Return health status plus toolchain availability and tracked job count."""
    return {
        "status": "ok",
        "maven": "available" if shutil.which(settings.MAVEN_EXECUTABLE) else "missing",
        "builds": len(build_service.get_tracker()),
    }


@router.get("/health/version")
async def health_version() -> dict:
    """Return application version."""
    return {"version": VERSION}
