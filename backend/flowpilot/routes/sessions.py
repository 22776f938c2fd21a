# /flowpilot/routes/sessions.py

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from flowpilot.config.settings import settings
from flowpilot.models.api import APIResponse, CreateSessionRequest, ProcessResponseRequest
from flowpilot.models.flow import Flow
from flowpilot.models.session import SessionState, StaleSessionError
from flowpilot.services.session_service import session_service, SessionNotFoundError, PlanNotFoundError
from flowpilot.utils.dependencies import get_session_or_404
from flowpilot.utils.rate_limiter import limiter

# Session endpoints: a client opens a session, posts raw model output to it
# turn by turn, and approves or discards staged plans.

log = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/sessions",
    tags=["Sessions"],
)


def _stale(exc: StaleSessionError) -> HTTPException:
    log.warning(
        "Stale session write rejected.",
        session_id=exc.session_id,
        expected_version=exc.expected_version,
        actual_version=exc.actual_version,
    )
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.post("", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def create_session(request: Request, body: CreateSessionRequest):
    """Open a session, optionally seeded with an existing workflow."""
    workflow = None
    if body.workflow is not None:
        try:
            workflow = Flow.model_validate(body.workflow)
        except ValidationError as e:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=[f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()],
            )

    session = session_service.create_session(workflow=workflow)
    log.info("Session opened.", session_id=session.session_id, seeded=workflow is not None)
    return APIResponse(
        success=True,
        message="Session created",
        data=session_service.export_session(session.session_id),
        version=settings.api_version,
    )


@router.get("/{session_id}", response_model=APIResponse)
async def get_session(session: SessionState = Depends(get_session_or_404)):
    return APIResponse(
        success=True,
        message="Session retrieved",
        data=session_service.export_session(session.session_id),
        version=settings.api_version,
    )


@router.delete("/{session_id}", response_model=APIResponse)
async def delete_session(session_id: str):
    try:
        session_service.delete_session(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Session not found: {session_id}")
    return APIResponse(success=True, message="Session deleted", version=settings.api_version)


@router.post("/{session_id}/responses", response_model=APIResponse)
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def process_response(
    request: Request,
    body: ProcessResponseRequest,
    session: SessionState = Depends(get_session_or_404),
):
    """
    Route one raw model response against the session.

    Unparseable output answers 422 with the parser's errors. A parsed intent
    that fails validation or patching answers 200 with success=false and the
    session left as it was.
    """
    try:
        result = session_service.process_response(
            session.session_id,
            body.content,
            preview=body.preview,
            expected_version=body.expected_version,
        )
    except StaleSessionError as e:
        raise _stale(e)

    payload = result.to_payload()
    if result.parse_errors:
        log.info("Model response rejected by parser.", errors=len(result.parse_errors))
        response = APIResponse(
            success=False,
            message=result.message,
            data=payload,
            version=settings.api_version,
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=response.model_dump(mode="json"),
        )

    log.info(
        "Model response routed.",
        mode=result.mode,
        success=result.success,
        preview=result.is_preview,
    )
    return APIResponse(
        success=result.success,
        message=result.message,
        data=payload,
        version=settings.api_version,
    )


@router.post("/{session_id}/plans/{plan_id}/approve", response_model=APIResponse)
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def approve_plan(request: Request, plan_id: str, session: SessionState = Depends(get_session_or_404)):
    try:
        result = session_service.approve_plan(session.session_id, plan_id)
    except PlanNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Plan not found: {plan_id}")
    except StaleSessionError as e:
        raise _stale(e)

    log.info("Plan approval handled.", plan_id=plan_id, success=result.success)
    return APIResponse(
        success=result.success,
        message=result.message,
        data=result.to_payload(),
        version=settings.api_version,
    )


@router.delete("/{session_id}/plans/{plan_id}", response_model=APIResponse)
async def discard_plan(plan_id: str, session: SessionState = Depends(get_session_or_404)):
    try:
        session_service.discard_plan(session.session_id, plan_id)
    except PlanNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Plan not found: {plan_id}")
    return APIResponse(success=True, message="Plan discarded", version=settings.api_version)
