# backend/tests/conftest.py
import copy
import os

import pytest
from fastapi.testclient import TestClient
from dotenv import load_dotenv

# Load the test environment before anything reads settings
load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), "..", ".env.test"), override=True)

from flowpilot.main import app  # noqa: E402
from flowpilot.models.flow import Flow  # noqa: E402
from flowpilot.services.response_router import ResponseRouter  # noqa: E402
from flowpilot.services.session_service import SessionService  # noqa: E402


SAMPLE_FLOW = {
    "flowId": "flow_test",
    "name": "Vendor Onboarding",
    "milestones": [
        {"milestoneId": "ms_intake", "name": "Intake", "sequence": 1},
        {"milestoneId": "ms_review", "name": "Review", "sequence": 2},
    ],
    "roles": [{"roleId": "role_reviewer", "name": "Reviewer"}],
    "steps": [
        {"stepId": "s1", "type": "FORM", "milestoneId": "ms_intake", "title": "Collect vendor details"},
        {"stepId": "dest_1", "type": "GOTO_DESTINATION", "milestoneId": "ms_intake", "label": "Restart"},
        {
            "stepId": "b1",
            "type": "SINGLE_CHOICE_BRANCH",
            "milestoneId": "ms_review",
            "title": "Risk level",
            "paths": [
                {
                    "pathId": "pathA",
                    "label": "High risk",
                    "condition": {"type": "EQUALS", "left": "{{s1.risk}}", "right": "high"},
                    "steps": [
                        {"stepId": "s2", "type": "TODO", "milestoneId": "ms_review", "title": "Security review"},
                        {
                            "stepId": "s3",
                            "type": "APPROVAL",
                            "milestoneId": "ms_review",
                            "title": "Legal approval",
                            "assignees": [{"mode": "PLACEHOLDER", "roleId": "role_reviewer"}],
                        },
                    ],
                },
                {
                    "pathId": "pathB",
                    "label": "Low risk",
                    "condition": {"type": "ELSE"},
                    "steps": [{"stepId": "s4", "type": "TODO", "milestoneId": "ms_review", "title": "Spot check"}],
                },
            ],
        },
        {
            "stepId": "d1",
            "type": "DECISION",
            "milestoneId": "ms_review",
            "title": "Final decision",
            "assignee": {"mode": "PLACEHOLDER", "roleId": "role_reviewer"},
            "outcomes": [
                {
                    "outcomeId": "o1",
                    "label": "Approve",
                    "steps": [{"stepId": "t1", "type": "TERMINATE", "status": "COMPLETED", "milestoneId": "ms_review"}],
                },
                {
                    "outcomeId": "o2",
                    "label": "Start over",
                    "steps": [{"stepId": "g1", "type": "GOTO", "targetGotoDestinationId": "dest_1", "milestoneId": "ms_review"}],
                },
            ],
        },
    ],
}


@pytest.fixture
def sample_flow_doc():
    """A valid, fully identified workflow document in wire format."""
    return copy.deepcopy(SAMPLE_FLOW)


@pytest.fixture
def sample_flow(sample_flow_doc):
    return Flow.model_validate(sample_flow_doc)


@pytest.fixture
def router():
    return ResponseRouter(validation_mode="STRICT")


@pytest.fixture
def service(router):
    """A session service with its own store, isolated from the app's singleton."""
    return SessionService(router=router)


@pytest.fixture(scope="function")
def test_client():
    # The app's lifespan (startup/shutdown events) is managed by the TestClient
    with TestClient(app) as client:
        yield client
