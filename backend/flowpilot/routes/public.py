# /flowpilot/routes/public.py

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest
from datetime import datetime, timezone

from flowpilot.config.settings import settings
from flowpilot.utils.dependencies import verify_metrics_access
from flowpilot.services.session_service import session_service

# Unauthenticated endpoints: service banner, health checks and the
# (optionally key-protected) Prometheus scrape endpoint.

router = APIRouter()

@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "status": "operational",
        "environment": settings.environment
    }

@router.get("/health", summary="Basic Health Check")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc),
        "sessions": len(session_service.list_sessions()),
        "validation_mode": settings.ai_validation_mode,
    }

@router.get("/health/live", summary="Liveness Probe")
async def liveness_check():
    return {"status": "alive"}


@router.get("/metrics", tags=["Monitoring"])
async def metrics(request: Request, _: bool = Depends(verify_metrics_access)):
    """Prometheus metrics endpoint."""
    return PlainTextResponse(generate_latest(), media_type="text/plain")
