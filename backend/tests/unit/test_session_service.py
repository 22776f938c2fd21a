# backend/tests/unit/test_session_service.py
import asyncio
import json

import pytest

from flowpilot.models.flow import Flow
from flowpilot.models.session import StaleSessionError
from flowpilot.services.session_service import PlanNotFoundError, SessionNotFoundError


def _create_content(doc, prose="Here you go:"):
    return f"{prose}\n```json\n{json.dumps({'mode': 'create', 'workflow': doc})}\n```"


def _edit_content(*operations):
    return json.dumps({"mode": "edit", "operations": list(operations)})


# --- Lifecycle ---

def test_create_session_normalizes_seed_workflow(service):
    seed = Flow.model_validate({"name": "Seeded", "steps": [{"type": "TODO"}]})
    session = service.create_session(workflow=seed)

    assert session.version == 1
    assert session.workflow.steps[0].step_id == "step_1"
    assert session.metadata.workflow_name == "Seeded"
    assert seed.steps[0].step_id is None


def test_get_and_delete_session(service):
    session = service.create_session()
    assert service.get_session(session.session_id) is session
    assert service.list_sessions() == [session]

    service.delete_session(session.session_id)
    with pytest.raises(SessionNotFoundError):
        service.get_session(session.session_id)
    with pytest.raises(SessionNotFoundError):
        service.delete_session(session.session_id)


def test_get_or_create_session(service):
    session = service.get_or_create_session("chat-42")
    assert session.session_id == "chat-42"
    assert service.get_or_create_session("chat-42") is session
    assert service.clear() == 1


# --- Turns ---

def test_process_create_commits(service, sample_flow_doc):
    session = service.create_session()

    result = service.process_response(session.session_id, _create_content(sample_flow_doc))

    assert result.success
    assert result.mode == "create"
    assert result.applied
    assert result.friendly_message == "Here you go:"
    assert session.workflow.name == "Vendor Onboarding"


def test_unparseable_response_leaves_session_untouched(service):
    session = service.create_session()

    result = service.process_response(session.session_id, '{"mode": "create", "workflow": {"steps": []}}')

    assert not result.success
    assert result.parse_errors == ["name: must be a string"]
    assert session.workflow is None
    assert session.version == 0


def test_preview_stages_plan_and_approve_commits_same_document(service, sample_flow_doc):
    session = service.create_session()

    preview = service.process_response(session.session_id, _create_content(sample_flow_doc), preview=True)

    assert preview.is_preview
    assert preview.plan_id
    assert session.workflow is None
    assert session.pending_plan.plan_id == preview.plan_id

    approved = service.approve_plan(session.session_id, preview.plan_id)

    assert approved.success
    assert approved.applied
    assert session.pending_plan is None
    assert session.workflow.to_document() == preview.workflow.to_document()
    assert session.metadata.last_mode == "create"


def test_edit_before_approval_builds_on_pending_plan(service, sample_flow_doc):
    session = service.create_session()
    service.process_response(session.session_id, _create_content(sample_flow_doc), preview=True)

    result = service.process_response(
        session.session_id,
        _edit_content({"op": "UPDATE_FLOW_NAME", "name": "Vendor Onboarding v2"}),
        preview=True,
    )

    assert result.success
    assert result.workflow.name == "Vendor Onboarding v2"
    assert session.pending_plan.plan_id == result.plan_id
    assert session.pending_plan.mode == "edit"


def test_approving_stale_plan_is_rejected(service, sample_flow_doc):
    session = service.create_session()
    preview = service.process_response(session.session_id, _create_content(sample_flow_doc), preview=True)

    # Another turn commits before the user approves
    service.process_response(session.session_id, _create_content(sample_flow_doc))

    with pytest.raises(StaleSessionError):
        service.approve_plan(session.session_id, preview.plan_id)


def test_unknown_or_discarded_plan(service, sample_flow_doc):
    session = service.create_session()
    preview = service.process_response(session.session_id, _create_content(sample_flow_doc), preview=True)

    with pytest.raises(PlanNotFoundError):
        service.approve_plan(session.session_id, "plan_other")

    service.discard_plan(session.session_id, preview.plan_id)
    assert session.pending_plan is None
    with pytest.raises(PlanNotFoundError):
        service.discard_plan(session.session_id, preview.plan_id)


def test_export_session_uses_wire_names(service, sample_flow_doc):
    session = service.create_session()
    service.process_response(session.session_id, _create_content(sample_flow_doc))

    exported = service.export_session(session.session_id)

    assert exported["sessionId"] == session.session_id
    assert exported["version"] == 1
    assert exported["metadata"] == {"workflowName": "Vendor Onboarding", "lastMode": "create"}
    assert exported["workflow"]["steps"][0]["stepId"] == "s1"


# --- Async turns ---

@pytest.mark.asyncio
async def test_run_turn_processes_fetched_response(service, sample_flow_doc):
    session = service.create_session()

    async def fetch():
        return _create_content(sample_flow_doc)

    result = await service.run_turn(session.session_id, fetch)

    assert result.success
    assert session.version == 1


@pytest.mark.asyncio
async def test_cancelled_turn_leaves_session_unchanged(service, sample_flow_doc):
    session = service.create_session()
    started = asyncio.Event()

    async def slow_fetch():
        started.set()
        await asyncio.sleep(10)
        return _create_content(sample_flow_doc)

    task = asyncio.create_task(service.run_turn(session.session_id, slow_fetch))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert session.workflow is None
    assert session.version == 0


@pytest.mark.asyncio
async def test_commit_during_model_call_makes_turn_stale(service, sample_flow_doc):
    session = service.create_session()

    async def fetch():
        # A concurrent turn lands while this one waits on the model
        service.process_response(session.session_id, _create_content(sample_flow_doc))
        return _edit_content({"op": "UPDATE_FLOW_NAME", "name": "Overwritten"})

    with pytest.raises(StaleSessionError):
        await service.run_turn(session.session_id, fetch)
    assert session.workflow.name == "Vendor Onboarding"


def test_conversational_turn_does_not_invalidate_pending_plan(service, sample_flow_doc):
    session = service.create_session()
    preview = service.process_response(session.session_id, _create_content(sample_flow_doc), preview=True)

    reply = service.process_response(session.session_id, '{"mode": "respond", "message": "Step 2 is a form."}')
    assert reply.success
    assert session.version == 1

    approved = service.approve_plan(session.session_id, preview.plan_id)

    assert approved.success
    assert session.workflow.name == "Vendor Onboarding"
    assert session.workflow_version == 1


def test_committed_edit_of_pending_plan_clears_it(service, sample_flow_doc):
    session = service.create_session()
    service.process_response(session.session_id, _create_content(sample_flow_doc), preview=True)

    result = service.process_response(
        session.session_id,
        _edit_content({"op": "UPDATE_FLOW_NAME", "name": "Vendor Onboarding v2"}),
    )

    assert result.applied
    assert session.workflow.name == "Vendor Onboarding v2"
    assert session.pending_plan is None
