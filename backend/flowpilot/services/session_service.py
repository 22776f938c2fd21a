# /flowpilot/services/session_service.py

"""
In-memory session store and turn runner.

One process owns its sessions. Each session carries an optimistic version
counter; callers pass the version they read and a concurrent write turns
their request into a StaleSessionError instead of a silent overwrite.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import Field

from flowpilot.models.flow import Flow
from flowpilot.models.intents import CreateIntent, EditIntent
from flowpilot.models.session import HandlerResult, PendingPlan, SessionState
from flowpilot.services.response_parser import (
    extract_conversational_message,
    parse_ai_response,
    summarize_intent,
)
from flowpilot.services.response_router import ResponseRouter, response_router
from flowpilot.utils.metrics import active_sessions_gauge, ai_parse_failures_counter
from flowpilot.workflows.normalizer import normalize_workflow

logger = logging.getLogger(__name__)


class SessionNotFoundError(KeyError):
    pass


class PlanNotFoundError(KeyError):
    pass


class TurnResult(HandlerResult):
    """HandlerResult plus what the turn produced for the caller."""
    mode: Optional[str] = None
    plan_id: Optional[str] = Field(default=None, alias="planId")
    is_preview: bool = Field(default=False, alias="isPreview")
    friendly_message: str = Field(default="", alias="friendlyMessage", description="Prose the model wrote before its JSON")
    parse_errors: List[str] = Field(default_factory=list, alias="parseErrors")


class SessionService:
    def __init__(self, router: Optional[ResponseRouter] = None):
        self.router = router or response_router
        self._sessions: Dict[str, SessionState] = {}

    # --- Session lifecycle ---

    def create_session(self, workflow: Optional[Flow] = None, session_id: Optional[str] = None) -> SessionState:
        session = SessionState(session_id=session_id) if session_id else SessionState()
        if workflow is not None:
            workflow = workflow.model_copy(deep=True)
            normalize_workflow(workflow)
            session.commit(None, workflow=workflow, metadata={"workflow_name": workflow.name})
        self._sessions[session.session_id] = session
        active_sessions_gauge.set(len(self._sessions))
        logger.info("Created session %s", session.session_id)
        return session

    def get_session(self, session_id: str) -> SessionState:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(session_id)

    def get_or_create_session(self, session_id: str) -> SessionState:
        if session_id in self._sessions:
            return self._sessions[session_id]
        return self.create_session(session_id=session_id)

    def delete_session(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is None:
            raise SessionNotFoundError(session_id)
        active_sessions_gauge.set(len(self._sessions))
        logger.info("Deleted session %s", session_id)

    def list_sessions(self) -> List[SessionState]:
        return list(self._sessions.values())

    def clear(self) -> int:
        count = len(self._sessions)
        self._sessions.clear()
        active_sessions_gauge.set(0)
        return count

    # --- Turns ---

    def process_response(
        self,
        session_id: str,
        content: str,
        preview: bool = False,
        expected_version: Optional[int] = None,
    ) -> TurnResult:
        """
        Parse raw AI text and route it against the session.

        With preview=True a successful create/edit is stored as the session's
        pending plan instead of being committed.
        """
        session = self.get_session(session_id)
        friendly_message = extract_conversational_message(content)

        parsed = parse_ai_response(content)
        if not parsed["success"]:
            ai_parse_failures_counter.inc()
            return TurnResult(
                success=False,
                workflow=session.workflow,
                message="Could not understand the AI response",
                errors=parsed["errors"],
                parse_errors=parsed["errors"],
                friendly_message=friendly_message,
            )

        intent = parsed["intent"]
        logger.info("Session %s: %s", session_id, summarize_intent(intent))

        # Edits made before the user approves a pending plan build on that plan
        base_workflow = None
        if isinstance(intent, EditIntent) and session.workflow is None and session.pending_plan is not None:
            base_workflow = session.pending_plan.workflow

        result = self.router.handle(
            intent,
            session,
            apply_to_session=not preview,
            expected_version=expected_version,
            base_workflow=base_workflow,
        )

        plan_id = None
        is_preview = preview and isinstance(intent, (CreateIntent, EditIntent))
        if is_preview and result.success:
            plan = PendingPlan(
                mode=intent.mode,
                workflow=result.workflow,
                message=result.message,
                assumptions=intent.assumptions,
                base_version=session.workflow_version,
            )
            session.stage_plan(plan)
            plan_id = plan.plan_id
            logger.info("Session %s: staged plan %s", session_id, plan_id)

        return TurnResult(
            **dict(result),
            mode=intent.mode,
            plan_id=plan_id,
            is_preview=is_preview,
            friendly_message=friendly_message,
        )

    async def run_turn(
        self,
        session_id: str,
        fetch_response: Callable[[], Awaitable[str]],
        preview: bool = False,
    ) -> TurnResult:
        """
        Await the model call, then process its output.

        The session version is captured before awaiting: cancellation leaves
        the session untouched (CancelledError propagates) and a commit that
        lands while the call is in flight makes this turn stale.
        """
        session = self.get_session(session_id)
        version = session.version
        content = await fetch_response()
        return self.process_response(session_id, content, preview=preview, expected_version=version)

    # --- Pending plans ---

    def approve_plan(self, session_id: str, plan_id: str) -> HandlerResult:
        session = self.get_session(session_id)
        plan = self._get_plan(session, plan_id)
        return self.router.commit_plan(plan, session)

    def discard_plan(self, session_id: str, plan_id: str) -> None:
        session = self.get_session(session_id)
        self._get_plan(session, plan_id)
        session.clear_plan()
        logger.info("Session %s: discarded plan %s", session_id, plan_id)

    def _get_plan(self, session: SessionState, plan_id: str) -> PendingPlan:
        plan = session.pending_plan
        if plan is None or plan.plan_id != plan_id:
            raise PlanNotFoundError(plan_id)
        return plan

    # --- Export ---

    def export_session(self, session_id: str) -> Dict[str, Any]:
        session = self.get_session(session_id)
        return session.model_dump(mode="json", by_alias=True, exclude_none=True)


session_service = SessionService()
