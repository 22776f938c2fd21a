# /flowpilot/services/response_router.py

"""
Routes a parsed AI intent against a session.

States: no workflow / workflow committed, with orthogonal metadata
(`last_mode`, `clarifications_pending`). The `apply_to_session` flag is the
preview/commit switch for create and edit: a preview validates and returns the
candidate workflow without touching the session, and approving the preview
later commits that same document through commit_plan().

Any failure leaves the committed workflow unchanged. Session writes happen in
a single SessionState.commit() call at the end of each transition.
"""

import logging
from typing import Callable, Optional

from flowpilot.config.settings import ValidationMode, settings
from flowpilot.models.flow import Flow
from flowpilot.models.intents import (
    ClarifyIntent,
    CreateIntent,
    EditIntent,
    Intent,
    RejectIntent,
    RespondIntent,
)
from flowpilot.models.session import HandlerResult, PendingPlan, SessionState, StaleSessionError
from flowpilot.utils.metrics import (
    ai_intents_counter,
    session_commits_counter,
    stale_session_counter,
    workflow_operations_counter,
    workflow_validation_counter,
)
from flowpilot.workflows.engine import ApplyResult, apply_operations, failed_operation_errors
from flowpilot.workflows.normalizer import normalize_workflow
from flowpilot.workflows.validator import ValidationResult, format_issues, validate_workflow

logger = logging.getLogger(__name__)

WorkflowValidator = Callable[[Flow, ValidationMode], ValidationResult]

UNEXPECTED_ERROR_MESSAGE = "Unexpected error while processing AI response"


class ResponseRouter:
    """Applies intents to sessions, gating create/edit behind validation."""

    def __init__(
        self,
        validator: WorkflowValidator = validate_workflow,
        validation_mode: Optional[ValidationMode] = None,
    ):
        self.validator = validator
        self.validation_mode = validation_mode or settings.ai_validation_mode

    def handle(
        self,
        intent: Intent,
        session: SessionState,
        apply_to_session: bool = True,
        expected_version: Optional[int] = None,
        base_workflow: Optional[Flow] = None,
    ) -> HandlerResult:
        """
        Dispatch one intent.

        Args:
            intent: Parsed AI intent
            session: Session to read and (possibly) update
            apply_to_session: False for preview; create/edit then leave the session untouched
            expected_version: Session version the caller read; a mismatch raises StaleSessionError
            base_workflow: Workflow an edit applies to instead of the committed one
                (used when editing a not-yet-approved plan)

        Returns:
            HandlerResult. Unexpected exceptions become a generic failure.
        """
        mode = intent.mode
        try:
            session.check_version(expected_version)
            if isinstance(intent, CreateIntent):
                result = self._handle_create(intent, session, apply_to_session, expected_version)
            elif isinstance(intent, EditIntent):
                result = self._handle_edit(intent, session, apply_to_session, expected_version, base_workflow)
            elif isinstance(intent, ClarifyIntent):
                result = self._handle_clarify(intent, session, expected_version)
            elif isinstance(intent, RejectIntent):
                result = self._handle_reject(intent, session, expected_version)
            elif isinstance(intent, RespondIntent):
                result = self._handle_respond(intent, session, expected_version)
            else:
                result = HandlerResult(
                    success=False,
                    message="Unknown response mode",
                    errors=[f"Unknown response mode: {mode}"],
                )
        except StaleSessionError:
            ai_intents_counter.labels(mode=mode, status="stale").inc()
            stale_session_counter.inc()
            raise
        except Exception:
            logger.exception("Unexpected error while routing %s intent for session %s", mode, session.session_id)
            result = HandlerResult(success=False, message=UNEXPECTED_ERROR_MESSAGE, errors=[UNEXPECTED_ERROR_MESSAGE])

        ai_intents_counter.labels(mode=mode, status="success" if result.success else "failure").inc()
        return result

    def commit_plan(
        self,
        plan: PendingPlan,
        session: SessionState,
        expected_version: Optional[int] = None,
    ) -> HandlerResult:
        """
        Commit an approved preview.

        The stored document is re-normalized and re-validated (both no-ops for
        a document that passed the preview) and committed as-is, so the
        session ends up with exactly what the user saw.
        """
        try:
            # Only a workflow replacement since the preview makes the plan stale
            session.check_workflow_version(plan.base_version)
            flow = plan.workflow.model_copy(deep=True)
            normalize_workflow(flow)
            validation = self._validate(flow)
            if not validation["valid"]:
                return HandlerResult(
                    success=False,
                    workflow=session.workflow,
                    message="Pending plan is no longer valid",
                    errors=format_issues(validation["errors"]),
                )

            version = session.commit(
                expected_version,
                workflow=flow,
                metadata={
                    "workflow_name": flow.name,
                    "last_mode": plan.mode,
                    "clarifications_pending": None,
                },
                clear_pending_plan=True,
            )
        except StaleSessionError:
            raise
        except Exception:
            logger.exception("Unexpected error while committing plan %s", plan.plan_id)
            return HandlerResult(success=False, message=UNEXPECTED_ERROR_MESSAGE, errors=[UNEXPECTED_ERROR_MESSAGE])

        session_commits_counter.labels(mode=plan.mode).inc()
        logger.info("Committed plan %s to session %s (version %d)", plan.plan_id, session.session_id, version)
        return HandlerResult(
            success=True,
            workflow=flow,
            message=plan.message or "Plan applied",
            applied=True,
            session_version=version,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _handle_create(
        self,
        intent: CreateIntent,
        session: SessionState,
        apply_to_session: bool,
        expected_version: Optional[int],
    ) -> HandlerResult:
        # Work on a copy so the intent can be replayed unchanged
        flow = intent.workflow.model_copy(deep=True)
        normalize_workflow(flow)

        validation = self._validate(flow)
        if not validation["valid"]:
            return HandlerResult(
                success=False,
                workflow=None,
                message="Generated workflow has validation errors",
                errors=format_issues(validation["errors"]),
            )

        version = None
        if apply_to_session:
            version = session.commit(
                expected_version,
                workflow=flow,
                metadata={
                    "workflow_name": flow.name,
                    "last_mode": "create",
                    "clarifications_pending": None,
                },
            )
            session_commits_counter.labels(mode="create").inc()

        return HandlerResult(
            success=True,
            workflow=flow,
            message=intent.message or f'Created workflow "{flow.name}"',
            applied=apply_to_session,
            session_version=version,
        )

    def _handle_edit(
        self,
        intent: EditIntent,
        session: SessionState,
        apply_to_session: bool,
        expected_version: Optional[int],
        base_workflow: Optional[Flow],
    ) -> HandlerResult:
        base = base_workflow if base_workflow is not None else session.workflow
        if base is None:
            return HandlerResult(
                success=False,
                workflow=None,
                message="Cannot edit - no workflow exists",
                errors=['No workflow exists to edit. Use "create" mode first.'],
            )

        result = apply_operations(base, intent.operations)
        self._record_operations(result)

        if not result["success"]:
            # No partial edits: the whole batch is discarded
            return HandlerResult(
                success=False,
                workflow=session.workflow,
                message="Failed to apply some operations",
                errors=failed_operation_errors(result) or ["Unknown operation error"],
            )

        updated = result["final_workflow"]
        # Inserted steps, paths and outcomes may still lack IDs
        normalize_workflow(updated)

        validation = self._validate(updated)
        if not validation["valid"]:
            return HandlerResult(
                success=False,
                workflow=session.workflow,
                message="Edit would result in invalid workflow",
                errors=format_issues(validation["errors"]),
            )

        version = None
        if apply_to_session:
            version = session.commit(
                expected_version,
                workflow=updated,
                metadata={
                    "workflow_name": updated.name,
                    "last_mode": "edit",
                    "clarifications_pending": None,
                },
                # Committing an edit of the pending plan supersedes that plan
                clear_pending_plan=base_workflow is not None,
            )
            session_commits_counter.labels(mode="edit").inc()

        return HandlerResult(
            success=True,
            workflow=updated,
            message=intent.message or f"Applied {len(intent.operations)} operation(s)",
            applied=apply_to_session,
            session_version=version,
        )

    def _handle_clarify(self, intent: ClarifyIntent, session: SessionState, expected_version: Optional[int]) -> HandlerResult:
        version = session.commit(
            expected_version,
            metadata={"last_mode": "clarify", "clarifications_pending": True},
        )
        return HandlerResult(
            success=True,
            workflow=session.workflow,
            message=intent.context or "Please provide more information",
            clarifications=intent.questions,
            session_version=version,
        )

    def _handle_reject(self, intent: RejectIntent, session: SessionState, expected_version: Optional[int]) -> HandlerResult:
        version = session.commit(expected_version, metadata={"last_mode": "reject"})

        message = intent.reason
        if intent.suggestion:
            message += f"\n\nSuggestion: {intent.suggestion}"

        return HandlerResult(
            success=True,
            workflow=session.workflow,
            message=message,
            session_version=version,
        )

    def _handle_respond(self, intent: RespondIntent, session: SessionState, expected_version: Optional[int]) -> HandlerResult:
        version = session.commit(expected_version, metadata={"last_mode": "respond"})
        return HandlerResult(
            success=True,
            workflow=session.workflow,
            message=intent.message,
            suggested_actions=intent.suggested_actions,
            session_version=version,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate(self, flow: Flow) -> ValidationResult:
        validation = self.validator(flow, self.validation_mode)
        workflow_validation_counter.labels(
            mode=self.validation_mode,
            status="valid" if validation["valid"] else "invalid",
        ).inc()
        for warning in validation.get("warnings", []):
            logger.warning("Workflow validation warning at %s: %s", warning["path"], warning["message"])
        return validation

    @staticmethod
    def _record_operations(result: ApplyResult) -> None:
        for r in result["results"]:
            if r["skipped"]:
                status = "skipped"
            else:
                status = "success" if r["success"] else "failure"
            op = "UNKNOWN" if r["skipped"] else r["operation"].op
            workflow_operations_counter.labels(op=op, status=status).inc()


response_router = ResponseRouter()
