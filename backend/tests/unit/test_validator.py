# backend/tests/unit/test_validator.py
import pytest

from flowpilot.config.settings import settings
from flowpilot.models.flow import Flow
from flowpilot.workflows.validator import format_issues, validate_workflow


def _rules(result):
    return {issue["rule"] for issue in result["errors"]}


def test_sample_flow_is_valid(sample_flow):
    result = validate_workflow(sample_flow, "STRICT")
    assert result["valid"], format_issues(result["errors"])
    assert result["warnings"] == []


def test_missing_flow_id_and_name():
    result = validate_workflow(Flow(name=" "), "STRICT")
    assert not result["valid"]
    assert format_issues(result["errors"]) == [
        "flowId: Flow must have a flowId",
        "name: Flow must have a name",
    ]


def test_duplicate_ids_across_kinds_are_reported(sample_flow_doc):
    # A nested step reusing a path ID still collides
    sample_flow_doc["steps"][2]["paths"][1]["steps"][0]["stepId"] = "pathA"
    result = validate_workflow(Flow.model_validate(sample_flow_doc), "STRICT")

    assert "UNIQUE_ID" in _rules(result)
    assert any("Duplicate step ID: pathA" in e["message"] for e in result["errors"])


def test_unknown_step_type_strict_vs_lenient(sample_flow_doc):
    sample_flow_doc["steps"].append({"stepId": "x1", "type": "HOLOGRAM_CALL", "milestoneId": "ms_review", "hologram": {"fps": 60}})
    flow = Flow.model_validate(sample_flow_doc)

    strict = validate_workflow(flow, "STRICT")
    assert not strict["valid"]
    assert _rules(strict) == {"UNKNOWN_STEP_TYPE"}

    lenient = validate_workflow(flow, "LENIENT")
    assert lenient["valid"]
    assert [w["rule"] for w in lenient["warnings"]] == ["UNKNOWN_STEP_TYPE"]


def test_lenient_mode_still_enforces_structure(sample_flow_doc):
    sample_flow_doc["steps"][0]["milestoneId"] = "ms_missing"
    result = validate_workflow(Flow.model_validate(sample_flow_doc), "LENIENT")

    assert not result["valid"]
    assert format_issues(result["errors"]) == ["steps[0].milestoneId: Invalid milestoneId: ms_missing"]


def test_main_path_step_needs_milestone_when_defined(sample_flow_doc):
    del sample_flow_doc["steps"][0]["milestoneId"]
    result = validate_workflow(Flow.model_validate(sample_flow_doc), "STRICT")
    assert _rules(result) == {"REQUIRED_FIELD"}


def test_top_level_goto_is_exempt_from_milestones_but_misplaced(sample_flow_doc):
    sample_flow_doc["steps"].append({"stepId": "g2", "type": "GOTO", "targetGotoDestinationId": "dest_1"})
    result = validate_workflow(Flow.model_validate(sample_flow_doc), "STRICT")
    assert _rules(result) == {"GOTO_PLACEMENT"}


def test_goto_target_must_be_main_path_destination(sample_flow_doc):
    sample_flow_doc["steps"][3]["outcomes"][1]["steps"][0]["targetGotoDestinationId"] = "s1"
    result = validate_workflow(Flow.model_validate(sample_flow_doc), "STRICT")
    assert _rules(result) == {"GOTO_TARGET_MAIN_PATH"}


def test_terminate_rules(sample_flow_doc):
    sample_flow_doc["steps"][3]["outcomes"][0]["steps"][0]["status"] = "DONE"
    sample_flow_doc["steps"][2]["paths"][0]["steps"].append(
        {"stepId": "t2", "type": "TERMINATE", "status": "CANCELLED", "milestoneId": "ms_review"}
    )
    flow = Flow.model_validate(sample_flow_doc)

    # SINGLE_CHOICE_BRANCH paths may terminate; parallel ones may not
    assert _rules(validate_workflow(flow, "STRICT")) == {"TERMINATE_STATUS"}

    flow.steps[2].type = "PARALLEL_BRANCH"
    assert _rules(validate_workflow(flow, "STRICT")) == {"TERMINATE_STATUS", "TERMINATE_PLACEMENT"}


def test_branch_shape_rules(sample_flow_doc):
    branch = sample_flow_doc["steps"][2]
    branch["paths"] = branch["paths"][:1]
    branch["paths"][0]["steps"][0]["milestoneId"] = "ms_intake"
    branch["paths"][0]["conditions"] = [{"type": "EQUALS"}, {"type": "SOUNDS_LIKE"}]

    result = validate_workflow(Flow.model_validate(sample_flow_doc), "STRICT")
    assert _rules(result) == {"MIN_PATHS", "BRANCH_MILESTONE_CONSISTENCY", "INVALID_CONDITION_TYPE", "REQUIRED_FIELD"}


def test_branch_limits_follow_settings(sample_flow_doc, monkeypatch):
    monkeypatch.setattr(settings, "max_parallel_paths", 1)
    result = validate_workflow(Flow.model_validate(sample_flow_doc), "STRICT")
    assert format_issues(result["errors"]) == ["steps[2].paths: Branch has 2 paths, maximum is 1"]


def test_branch_nesting_depth(sample_flow_doc, monkeypatch):
    monkeypatch.setattr(settings, "max_branch_nesting_depth", 1)
    inner = {
        "stepId": "b2",
        "type": "PARALLEL_BRANCH",
        "milestoneId": "ms_review",
        "paths": [{"pathId": "p1", "steps": []}, {"pathId": "p2", "steps": []}],
    }
    sample_flow_doc["steps"][2]["paths"][1]["steps"].append(inner)

    result = validate_workflow(Flow.model_validate(sample_flow_doc), "STRICT")
    assert _rules(result) == {"MAX_NESTING_DEPTH"}


def test_decision_rules(sample_flow_doc):
    decision = sample_flow_doc["steps"][3]
    decision["assignee"] = [{"mode": "PLACEHOLDER", "roleId": "role_reviewer"}]
    decision["outcomes"] = decision["outcomes"][:1]

    result = validate_workflow(Flow.model_validate(sample_flow_doc), "STRICT")
    assert _rules(result) == {"DECISION_SINGLE_ASSIGNEE", "MIN_OUTCOMES"}


@pytest.mark.parametrize("roles_key, role", [
    ("roles", {"roleId": "role_reviewer"}),
    ("assigneePlaceholders", {"placeholderId": "role_reviewer", "name": "Legacy"}),
])
def test_assignee_role_references(sample_flow_doc, roles_key, role):
    del sample_flow_doc["roles"]
    sample_flow_doc[roles_key] = [role]
    assert validate_workflow(Flow.model_validate(sample_flow_doc), "STRICT")["valid"]


def test_unknown_assignee_role(sample_flow_doc):
    sample_flow_doc["steps"][2]["paths"][0]["steps"][1]["assignees"][0]["roleId"] = "role_ghost"
    result = validate_workflow(Flow.model_validate(sample_flow_doc), "STRICT")
    assert format_issues(result["errors"]) == [
        "steps[2].paths[0].steps[1].assignees[0]: Invalid assignee role: role_ghost"
    ]


def test_milestone_anchor_must_be_main_path_step(sample_flow_doc):
    sample_flow_doc["milestones"][1]["afterStepId"] = "s2"
    result = validate_workflow(Flow.model_validate(sample_flow_doc), "STRICT")
    assert _rules(result) == {"INVALID_REFERENCE"}
