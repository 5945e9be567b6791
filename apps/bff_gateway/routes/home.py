"""Service info and liveness endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from apps.bff_gateway import config

router = APIRouter()


@router.get("/")
async def home() -> dict[str, str]:
    """Service info for health checks and endpoint discovery."""
    return {
        "service": "OAuth BFF Gateway",
        "version": config.SERVICE_VERSION,
        "status": "UP",
        "login": "GET /login-start",
        "user": "GET /me (authenticated)",
        "logout": "POST /logout (authenticated)",
    }


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy", "service": config.SERVICE_NAME}
