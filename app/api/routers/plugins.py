"""Plugins router -- generate a plugin and poll its build progress."""

import logging

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.api.rate_limit import generate_limiter
from app.errors import JobNotFoundError, RunError
from app.services import build_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["plugins"])


class GeneratePluginRequest(BaseModel):
    """Request body for generating a plugin.

    Fields are optional here so that missing values produce the same
    ``{success: false, message}`` 400 as invalid ones.
    """
    prompt: str | None = None
    token: str | None = None
    buildId: str | None = None


def _failure(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, **extra},
    )


def _client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


# ── POST /api/generate-plugin ────────────────────────────────────────────


@router.post("/generate-plugin")
async def generate_plugin(body: GeneratePluginRequest, request: Request):
    """Generate, build and (if needed) repair a plugin; blocks until done."""
    if not generate_limiter.is_allowed(_client_key(request)):
        return _failure(429, "Too many plugin generation requests, please try again later")

    try:
        result = await build_service.generate_plugin(body.prompt, body.token, build_id=body.buildId)
    except RunError as exc:
        return _failure(
            exc.status_code,
            str(exc),
            buildId=exc.job_id or None,
            log=exc.raw_log or None,
        )

    return {
        "success": True,
        "message": result.message,
        "jarPath": result.artifact_path,
        "outputDir": result.project_dir,
        "processingTime": f"{result.elapsed_s:.2f}s",
        "log": result.raw_log,
        "buildId": result.job_id,
        "fixAttempts": result.fix_attempts,
        "degraded": result.degraded,
    }


# ── GET /api/build-status/{build_id} ─────────────────────────────────────


@router.get("/build-status/{build_id}")
async def build_status(build_id: str):
    """Live status of a tracked build."""
    try:
        status = build_service.get_build_status(build_id)
    except JobNotFoundError:
        return _failure(404, f"Build {build_id} not found")
    return {"success": True, **status}


# ── GET /api/build-logs?id= ──────────────────────────────────────────────


@router.get("/build-logs")
async def build_logs(id: str | None = Query(default=None)):
    """Captured log lines of a build, live or from its persisted run log."""
    if not id:
        return _failure(400, "Build ID is required")
    try:
        logs = build_service.get_build_logs(id)
    except JobNotFoundError:
        return _failure(404, f"Build {id} not found")
    return {"success": True, **logs}
