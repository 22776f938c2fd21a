# backend/tests/unit/test_response_router.py
import pytest

from flowpilot.models.intents import ClarifyIntent, CreateIntent, EditIntent, RejectIntent, RespondIntent
from flowpilot.models.operations import parse_operations
from flowpilot.models.session import SessionState, StaleSessionError
from flowpilot.services.response_router import UNEXPECTED_ERROR_MESSAGE, ResponseRouter


def _create_intent(doc):
    return CreateIntent(workflow=doc, message="Built it")


def _edit_intent(*operations):
    return EditIntent(operations=parse_operations(list(operations)))


@pytest.fixture
def committed(router, sample_flow_doc):
    session = SessionState()
    router.handle(_create_intent(sample_flow_doc), session)
    return session


# --- Create ---

def test_create_commits_normalized_workflow(router):
    session = SessionState()
    intent = CreateIntent(workflow={"name": "Leave Request", "steps": [{"type": "FORM"}, {"type": "APPROVAL"}]})

    result = router.handle(intent, session)

    assert result.success
    assert result.applied
    assert result.session_version == 1
    assert session.version == 1
    assert [s.step_id for s in session.workflow.steps] == ["step_1", "step_2"]
    assert session.metadata.workflow_name == "Leave Request"
    assert session.metadata.last_mode == "create"
    # The intent itself is left as the model sent it
    assert intent.workflow.steps[0].step_id is None


def test_create_with_validation_errors_changes_nothing(router, sample_flow_doc):
    sample_flow_doc["steps"][3]["outcomes"] = []
    session = SessionState()

    result = router.handle(_create_intent(sample_flow_doc), session)

    assert not result.success
    assert result.message == "Generated workflow has validation errors"
    assert any("Decision must have at least 2 outcomes" in e for e in result.errors)
    assert session.workflow is None
    assert session.version == 0


def test_create_preview_leaves_session_untouched(router, sample_flow_doc):
    session = SessionState()
    result = router.handle(_create_intent(sample_flow_doc), session, apply_to_session=False)

    assert result.success
    assert not result.applied
    assert result.workflow.name == "Vendor Onboarding"
    assert session.workflow is None
    assert session.version == 0


# --- Edit ---

def test_edit_without_workflow_fails_before_applying(router, mocker):
    apply = mocker.patch("flowpilot.services.response_router.apply_operations")
    session = SessionState()

    result = router.handle(_edit_intent({"op": "UPDATE_FLOW_NAME", "name": "x"}), session)

    assert not result.success
    assert result.message == "Cannot edit - no workflow exists"
    assert result.errors == ['No workflow exists to edit. Use "create" mode first.']
    apply.assert_not_called()


def test_edit_commits_when_every_operation_succeeds(router, committed):
    result = router.handle(
        _edit_intent(
            {"op": "ADD_STEP_AFTER", "afterStepId": "s1", "step": {"type": "TODO", "title": "Call vendor"}},
            {"op": "UPDATE_FLOW_NAME", "name": "Supplier Onboarding"},
        ),
        committed,
    )

    assert result.success, result.errors
    assert result.message == "Workflow updated"
    assert committed.version == 2
    new_step = committed.workflow.steps[1]
    assert new_step.step_id == "step_1"
    # Inserted steps pick up the default milestone during normalization
    assert new_step.milestone_id == "ms_intake"
    assert committed.metadata.workflow_name == "Supplier Onboarding"
    assert committed.metadata.last_mode == "edit"


def test_edit_with_failing_operation_is_atomic(router, committed):
    before = committed.workflow.to_document()

    result = router.handle(
        _edit_intent(
            {"op": "UPDATE_FLOW_NAME", "name": "Renamed"},
            {"op": "REMOVE_STEP", "stepId": "ghost"},
        ),
        committed,
    )

    assert not result.success
    assert result.message == "Failed to apply some operations"
    assert result.errors == ["Step not found: ghost"]
    assert committed.workflow.to_document() == before
    assert committed.version == 1


def test_edit_producing_invalid_workflow_is_rejected(router, committed):
    before = committed.workflow.to_document()

    result = router.handle(_edit_intent({"op": "REMOVE_DECISION_OUTCOME", "decisionStepId": "d1", "outcomeId": "o2"}), committed)

    assert not result.success
    assert result.message == "Edit would result in invalid workflow"
    assert committed.workflow.to_document() == before


def test_edit_preview_then_commit_is_identical(router, committed):
    intent = _edit_intent({"op": "ADD_STEP_BEFORE", "beforeStepId": "d1", "step": {"type": "SYSTEM_EMAIL"}})

    preview = router.handle(intent, committed, apply_to_session=False)
    assert preview.success and not preview.applied
    assert committed.version == 1

    applied = router.handle(intent, committed)
    assert applied.applied
    assert committed.workflow.to_document() == preview.workflow.to_document()


def test_edit_against_explicit_base(router, committed, sample_flow):
    sample_flow.name = "Draft"
    result = router.handle(
        _edit_intent({"op": "REMOVE_STEP", "stepId": "s1"}),
        committed,
        apply_to_session=False,
        base_workflow=sample_flow,
    )

    assert result.workflow.name == "Draft"
    assert [s.step_id for s in result.workflow.steps][0] == "dest_1"


# --- Conversational modes ---

def test_clarify_sets_pending_flag(router, committed):
    result = router.handle(ClarifyIntent(questions=[{"id": "q1", "text": "Who signs?"}]), committed)

    assert result.success
    assert result.message == "Please provide more information"
    assert result.clarifications[0].id == "q1"
    assert committed.metadata.clarifications_pending is True
    assert committed.metadata.last_mode == "clarify"
    assert committed.workflow is not None


def test_create_clears_pending_clarifications(router, sample_flow_doc):
    session = SessionState()
    router.handle(ClarifyIntent(questions=[{"id": "q1", "text": "Which team?"}], context="Need the team"), session)
    assert session.metadata.clarifications_pending

    router.handle(_create_intent(sample_flow_doc), session)
    assert session.metadata.clarifications_pending is None


def test_reject_appends_suggestion(router):
    session = SessionState()
    result = router.handle(RejectIntent(reason="Out of scope", suggestion="Describe a process"), session)

    assert result.message == "Out of scope\n\nSuggestion: Describe a process"
    assert session.metadata.last_mode == "reject"


def test_respond_passes_suggested_actions(router, committed):
    result = router.handle(RespondIntent(message="It has 4 steps", suggested_actions=[{"label": "Add SLA"}]), committed)

    assert result.message == "It has 4 steps"
    assert result.suggested_actions[0].label == "Add SLA"
    assert result.to_payload()["suggestedActions"] == [{"label": "Add SLA"}]


# --- Versioning & failures ---

def test_stale_version_is_rejected(router, committed):
    before = committed.workflow.to_document()

    with pytest.raises(StaleSessionError) as exc:
        router.handle(_edit_intent({"op": "UPDATE_FLOW_NAME", "name": "Late"}), committed, expected_version=0)

    assert exc.value.actual_version == 1
    assert committed.workflow.to_document() == before
    assert committed.version == 1


def test_unexpected_errors_become_generic_failure(sample_flow_doc):
    def broken_validator(flow, mode):
        raise RuntimeError("boom")

    session = SessionState()
    result = ResponseRouter(validator=broken_validator).handle(_create_intent(sample_flow_doc), session)

    assert not result.success
    assert result.errors == [UNEXPECTED_ERROR_MESSAGE]
    assert session.workflow is None


def test_lenient_router_accepts_unknown_step_types(sample_flow_doc):
    sample_flow_doc["steps"].append({"type": "HOLOGRAM_CALL", "milestoneId": "ms_review"})
    session = SessionState()

    strict = ResponseRouter(validation_mode="STRICT").handle(_create_intent(sample_flow_doc), session)
    assert not strict.success

    lenient = ResponseRouter(validation_mode="LENIENT").handle(_create_intent(sample_flow_doc), session)
    assert lenient.success
    assert session.workflow.to_document()["steps"][-1]["type"] == "HOLOGRAM_CALL"
