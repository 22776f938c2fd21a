# backend/tests/integration/test_api.py
import json
import logging

from flowpilot.config.settings import settings

API_PREFIX = f"/api/{settings.api_version}"


def _open_session(test_client, workflow=None):
    body = {"workflow": workflow} if workflow is not None else {}
    response = test_client.post(f"{API_PREFIX}/sessions", json=body)
    assert response.status_code == 201
    return response.json()["data"]["sessionId"]


def _post_response(test_client, session_id, content, **extra):
    return test_client.post(f"{API_PREFIX}/sessions/{session_id}/responses", json={"content": content, **extra})


def test_root_and_health(test_client):
    root = test_client.get("/")
    assert root.status_code == 200
    assert root.json()["status"] == "operational"

    health = test_client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "healthy"


def test_metrics_endpoint(test_client):
    response = test_client.get("/metrics")
    assert response.status_code == 200
    assert "ai_intents_total" in response.text


def test_metrics_requires_key_when_configured(test_client, monkeypatch):
    monkeypatch.setattr(settings, "api_key", "secret-key")

    assert test_client.get("/metrics").status_code == 403
    assert test_client.get("/metrics", headers={"X-API-KEY": "secret-key"}).status_code == 200


def test_create_turn_commits_workflow(test_client, sample_flow_doc):
    session_id = _open_session(test_client)
    content = "Here is the flow:\n" + json.dumps({"mode": "create", "workflow": sample_flow_doc, "message": "Done"})

    response = _post_response(test_client, session_id, content)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Done"
    assert body["data"]["mode"] == "create"
    assert body["data"]["applied"] is True
    assert body["data"]["friendlyMessage"] == "Here is the flow:"

    session = test_client.get(f"{API_PREFIX}/sessions/{session_id}").json()["data"]
    assert session["version"] == 1
    assert session["workflow"]["name"] == "Vendor Onboarding"


def test_parse_failure_returns_422(test_client):
    session_id = _open_session(test_client)

    response = _post_response(test_client, session_id, "no json here")

    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert body["data"]["parseErrors"] == ["Could not find valid JSON in response"]


def test_failed_edit_returns_failure_without_changes(test_client, sample_flow_doc):
    session_id = _open_session(test_client, workflow=sample_flow_doc)
    content = json.dumps({"mode": "edit", "operations": [{"op": "REMOVE_STEP", "stepId": "ghost"}]})

    response = _post_response(test_client, session_id, content)

    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["data"]["errors"] == ["Step not found: ghost"]
    session = test_client.get(f"{API_PREFIX}/sessions/{session_id}").json()["data"]
    assert session["version"] == 1


def test_stale_expected_version_returns_409(test_client, sample_flow_doc):
    session_id = _open_session(test_client, workflow=sample_flow_doc)
    content = json.dumps({"mode": "edit", "operations": [{"op": "UPDATE_FLOW_NAME", "name": "Late"}]})

    response = _post_response(test_client, session_id, content, expectedVersion=0)

    assert response.status_code == 409


def test_preview_approve_flow(test_client, sample_flow_doc):
    session_id = _open_session(test_client)
    content = json.dumps({"mode": "create", "workflow": sample_flow_doc})

    preview = _post_response(test_client, session_id, content, preview=True).json()["data"]
    assert preview["isPreview"] is True
    assert preview["applied"] is False
    plan_id = preview["planId"]

    approved = test_client.post(f"{API_PREFIX}/sessions/{session_id}/plans/{plan_id}/approve")
    assert approved.status_code == 200
    assert approved.json()["data"]["applied"] is True

    session = test_client.get(f"{API_PREFIX}/sessions/{session_id}").json()["data"]
    assert session["workflow"] == approved.json()["data"]["workflow"]
    assert "pendingPlan" not in session


def test_discard_plan(test_client, sample_flow_doc):
    session_id = _open_session(test_client)
    content = json.dumps({"mode": "create", "workflow": sample_flow_doc})
    plan_id = _post_response(test_client, session_id, content, preview=True).json()["data"]["planId"]

    assert test_client.delete(f"{API_PREFIX}/sessions/{session_id}/plans/{plan_id}").status_code == 200
    assert test_client.post(f"{API_PREFIX}/sessions/{session_id}/plans/{plan_id}/approve").status_code == 404


def test_invalid_seed_workflow_returns_422(test_client):
    response = test_client.post(f"{API_PREFIX}/sessions", json={"workflow": {"steps": []}})
    assert response.status_code == 422


def test_unknown_session_returns_404(test_client):
    assert test_client.get(f"{API_PREFIX}/sessions/missing").status_code == 404
    assert _post_response(test_client, "missing", '{"mode": "respond"}').status_code == 404
    assert test_client.delete(f"{API_PREFIX}/sessions/missing").status_code == 404


def test_delete_session(test_client):
    session_id = _open_session(test_client)
    assert test_client.delete(f"{API_PREFIX}/sessions/{session_id}").status_code == 200
    assert test_client.get(f"{API_PREFIX}/sessions/{session_id}").status_code == 404


def test_session_routes_tag_logs_with_session_id(test_client, caplog):
    session_id = _open_session(test_client)
    caplog.set_level(logging.INFO)

    response = _post_response(test_client, session_id, '{"mode": "respond", "message": "hello"}')

    assert response.status_code == 200
    routed = [
        r.msg for r in caplog.records
        if isinstance(r.msg, dict) and r.msg.get("event") == "Model response routed."
    ]
    assert routed
    assert routed[0]["session_id"] == session_id


def test_respond_with_mistyped_actions_is_not_a_server_error(test_client):
    session_id = _open_session(test_client)
    content = json.dumps({"mode": "respond", "message": "hi", "suggestedActions": [{"label": 5}]})

    response = _post_response(test_client, session_id, content)

    assert response.status_code == 200
    assert response.json()["data"]["suggestedActions"] == []


def test_request_log_context_does_not_leak_between_requests(test_client, caplog):
    session_id = _open_session(test_client)
    _post_response(test_client, session_id, '{"mode": "respond", "message": "hello"}')
    caplog.set_level(logging.INFO)

    test_client.post(f"{API_PREFIX}/sessions", json={})

    opened = [
        r.msg for r in caplog.records
        if isinstance(r.msg, dict) and r.msg.get("event") == "Session opened."
    ]
    assert opened
    assert opened[0]["session_id"] != session_id
    assert opened[0]["path"] == f"{API_PREFIX}/sessions"
