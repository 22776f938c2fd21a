# /flowpilot/utils/dependencies.py

import secrets
import structlog
from fastapi import HTTPException, Request

from flowpilot.config.settings import settings
from flowpilot.models.session import SessionState
from flowpilot.services.session_service import session_service, SessionNotFoundError
from flowpilot.utils.logging import bind_session_context
from flowpilot.utils.request_utils import get_remote_address

log = structlog.get_logger(__name__)


async def verify_metrics_access(request: Request):
    if settings.api_key:
        provided_key = request.headers.get("X-API-KEY")
        if not (provided_key and secrets.compare_digest(provided_key, settings.api_key)):
            log.warning("Rejected metrics request.", client=get_remote_address(request))
            raise HTTPException(status_code=403, detail="Invalid or missing API key")


async def get_session_or_404(session_id: str) -> SessionState:
    try:
        session = session_service.get_session(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    # Every log line for the rest of this request carries the session
    bind_session_context(session_id)
    return session
