# /flowpilot/models/session.py

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4
from pydantic import BaseModel, ConfigDict, Field

from flowpilot.models.flow import Flow
from flowpilot.models.intents import ClarifyQuestion, SuggestedAction


IntentMode = Literal["create", "edit", "clarify", "reject", "respond"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StaleSessionError(Exception):
    """Raised when a session write is based on an outdated session version."""

    def __init__(self, session_id: str, expected_version: int, actual_version: int):
        self.session_id = session_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Session {session_id} is at version {actual_version}, expected {expected_version}"
        )


class SessionMetadata(BaseModel):
    """Turn-level bookkeeping kept alongside the committed workflow."""
    model_config = ConfigDict(populate_by_name=True)

    workflow_name: Optional[str] = Field(default=None, alias="workflowName")
    last_mode: Optional[IntentMode] = Field(default=None, alias="lastMode")
    clarifications_pending: Optional[bool] = Field(default=None, alias="clarificationsPending")


class PendingPlan(BaseModel):
    """
    A validated workflow proposed by the AI but not yet approved by the user.

    The document is stored exactly as it was shown in the preview so that
    approving it commits the same bytes the user saw.
    """
    model_config = ConfigDict(populate_by_name=True)

    plan_id: str = Field(default_factory=lambda: f"plan_{uuid4().hex}", alias="planId")
    mode: Literal["create", "edit"]
    workflow: Flow
    message: str = ""
    assumptions: List[str] = Field(default_factory=list)
    base_version: int = Field(..., alias="baseVersion", description="Session workflow_version the plan was derived from")
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")


class SessionState(BaseModel):
    """
    Per-conversation record: the committed workflow plus turn metadata.

    Every change to the workflow or metadata goes through commit(), which
    checks and bumps the optimistic version counter.
    Pending plans are checked against workflow_version instead, so a
    conversational turn in between does not invalidate them.
    """
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(default_factory=lambda: uuid4().hex, alias="sessionId")
    workflow: Optional[Flow] = None
    metadata: SessionMetadata = Field(default_factory=SessionMetadata)
    pending_plan: Optional[PendingPlan] = Field(default=None, alias="pendingPlan")
    version: int = Field(default=0, description="Bumped by every commit, metadata-only ones included")
    workflow_version: int = Field(default=0, alias="workflowVersion", description="Bumped only when the workflow is replaced")
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")
    updated_at: datetime = Field(default_factory=utc_now, alias="updatedAt")

    def check_version(self, expected_version: Optional[int]) -> None:
        if expected_version is not None and expected_version != self.version:
            raise StaleSessionError(self.session_id, expected_version, self.version)

    def check_workflow_version(self, expected_version: int) -> None:
        if expected_version != self.workflow_version:
            raise StaleSessionError(self.session_id, expected_version, self.workflow_version)

    def commit(
        self,
        expected_version: Optional[int],
        *,
        workflow: Optional[Flow] = None,
        metadata: Optional[Dict[str, Any]] = None,
        clear_pending_plan: bool = False,
    ) -> int:
        """
        Apply a workflow replacement and/or metadata update in one step.

        `metadata` maps SessionMetadata attribute names to new values.
        Returns the new version.
        """
        self.check_version(expected_version)

        new_metadata = self.metadata
        if metadata:
            new_metadata = self.metadata.model_copy(update=metadata)

        if workflow is not None:
            self.workflow = workflow
            self.workflow_version += 1
        self.metadata = new_metadata
        if clear_pending_plan:
            self.pending_plan = None
        self.version += 1
        self.updated_at = utc_now()
        return self.version

    def stage_plan(self, plan: PendingPlan) -> None:
        # One pending plan per session; a newer preview replaces the older one
        self.pending_plan = plan

    def clear_plan(self) -> None:
        self.pending_plan = None


class HandlerResult(BaseModel):
    """Outcome of routing one intent against a session."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    workflow: Optional[Flow] = None
    message: str = ""
    errors: List[str] = Field(default_factory=list)
    clarifications: List[ClarifyQuestion] = Field(default_factory=list)
    suggested_actions: List[SuggestedAction] = Field(default_factory=list, alias="suggestedActions")
    applied: bool = Field(default=False, description="True when the workflow was committed to the session")
    session_version: Optional[int] = Field(default=None, alias="sessionVersion")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
