# /flowpilot/services/response_parser.py

"""
Parser for raw AI responses.

Turns free-form model output (pure JSON, JSON inside a fenced code block, or
prose followed by JSON) into one of five typed intents. Malformed payloads are
rejected with field-scoped error strings; the parser never raises.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from flowpilot.models.flow import Flow
from flowpilot.models.intents import (
    INTENT_MODES,
    ClarifyIntent,
    CreateIntent,
    EditIntent,
    Intent,
    ParseResult,
    RejectIntent,
    RespondIntent,
    SuggestedAction,
)
from flowpilot.models.operations import parse_operations

logger = logging.getLogger(__name__)

_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

# Required fields per operation tag: (field, expected kind).
# Kinds: "string", "object", "nullable_string" (must be present, may be null),
# "optional_string" (may be absent or null).
_STEP_PAYLOAD = [("step", "object")]
OPERATION_REQUIRED_FIELDS: Dict[str, List[Tuple[str, str]]] = {
    "ADD_STEP_AFTER": [("afterStepId", "string"), ("step", "object")],
    "ADD_STEP_BEFORE": [("beforeStepId", "string"), ("step", "object")],
    "REMOVE_STEP": [("stepId", "string")],
    "UPDATE_STEP": [("stepId", "string"), ("updates", "object")],
    "MOVE_STEP": [("stepId", "string"), ("afterStepId", "nullable_string")],
    "ADD_PATH_STEP_AFTER": [("branchStepId", "string"), ("pathId", "string"), ("afterStepId", "optional_string")] + _STEP_PAYLOAD,
    "ADD_PATH_STEP_BEFORE": [("branchStepId", "string"), ("pathId", "string"), ("beforeStepId", "optional_string")] + _STEP_PAYLOAD,
    "REMOVE_PATH_STEP": [("branchStepId", "string"), ("pathId", "string"), ("stepId", "string")],
    "UPDATE_PATH_STEP": [("branchStepId", "string"), ("pathId", "string"), ("stepId", "string"), ("updates", "object")],
    "MOVE_PATH_STEP": [("branchStepId", "string"), ("pathId", "string"), ("stepId", "string"), ("afterStepId", "nullable_string")],
    "ADD_BRANCH_PATH": [("branchStepId", "string"), ("path", "object")],
    "REMOVE_BRANCH_PATH": [("branchStepId", "string"), ("pathId", "string")],
    "UPDATE_BRANCH_PATH_CONDITION": [("branchStepId", "string"), ("pathId", "string"), ("condition", "object")],
    "ADD_DECISION_OUTCOME": [("decisionStepId", "string"), ("outcome", "object")],
    "REMOVE_DECISION_OUTCOME": [("decisionStepId", "string"), ("outcomeId", "string")],
    "UPDATE_DECISION_OUTCOME_LABEL": [("decisionStepId", "string"), ("outcomeId", "string"), ("label", "string")],
    "ADD_OUTCOME_STEP_AFTER": [("decisionStepId", "string"), ("outcomeId", "string"), ("afterStepId", "optional_string")] + _STEP_PAYLOAD,
    "ADD_OUTCOME_STEP_BEFORE": [("decisionStepId", "string"), ("outcomeId", "string"), ("beforeStepId", "optional_string")] + _STEP_PAYLOAD,
    "REMOVE_OUTCOME_STEP": [("decisionStepId", "string"), ("outcomeId", "string"), ("stepId", "string")],
    "UPDATE_TERMINATE_STATUS": [("stepId", "string"), ("status", "string")],
    "UPDATE_GOTO_TARGET": [("stepId", "string"), ("targetGotoDestinationId", "string")],
    "ADD_MILESTONE": [("milestone", "object")],
    "REMOVE_MILESTONE": [("milestoneId", "string")],
    "UPDATE_MILESTONE": [("milestoneId", "string"), ("updates", "object")],
    "UPDATE_FLOW_NAME": [("name", "string")],
}


def parse_ai_response(content: str) -> ParseResult:
    """
    Parse raw AI output into a typed intent.

    Args:
        content: The raw text returned by the model

    Returns:
        ParseResult with success=True and the intent, or success=False and
        a list of error strings. raw_content always echoes the input.
    """
    json_content = extract_json(content)
    if json_content is None:
        return _failure(["Could not find valid JSON in response"], content)

    try:
        parsed = json.loads(json_content)
    except json.JSONDecodeError as e:
        return _failure([f"Invalid JSON: {e}"], content)

    if not isinstance(parsed, dict):
        return _failure(["Response must be a JSON object"], content)

    mode = parsed.get("mode")
    if not mode or not isinstance(mode, str):
        return _failure(['Response must have a "mode" field'], content)

    parser = _MODE_PARSERS.get(mode)
    if parser is None:
        return _failure(
            [f"Unknown response mode: {mode}. Expected: {', '.join(INTENT_MODES[:-1])}, or {INTENT_MODES[-1]}"],
            content,
        )

    intent, errors = parser(parsed)
    if errors:
        logger.info("AI response rejected (%s): %s", mode, "; ".join(errors))
        return _failure(errors, content)

    return {"success": True, "intent": intent, "errors": [], "raw_content": content}


def _failure(errors: List[str], content: str) -> ParseResult:
    return {"success": False, "intent": None, "errors": errors, "raw_content": content}


# ============================================================================
# Mode-specific parsers
# ============================================================================

def _parse_create(obj: Dict[str, Any]) -> Tuple[Optional[Intent], List[str]]:
    errors: List[str] = []

    workflow = obj.get("workflow")
    if not isinstance(workflow, dict):
        errors.append('Create response must have a "workflow" object')
    errors.extend(_check_message(obj))
    errors.extend(_check_assumptions(obj))
    if errors:
        return None, errors

    errors = _check_workflow_structure(workflow)
    if errors:
        return None, errors

    try:
        flow = Flow.model_validate(workflow)
    except ValidationError as e:
        return None, _format_validation_errors(e, "workflow")

    return CreateIntent(
        workflow=flow,
        message=obj.get("message") or "Workflow created",
        assumptions=obj.get("assumptions") or [],
    ), []


def _parse_edit(obj: Dict[str, Any]) -> Tuple[Optional[Intent], List[str]]:
    errors: List[str] = []

    operations = obj.get("operations")
    if not isinstance(operations, list):
        errors.append('Edit response must have an "operations" array')
    errors.extend(_check_message(obj))
    errors.extend(_check_assumptions(obj))
    if errors:
        return None, errors

    for i, operation in enumerate(operations):
        errors.extend(f"operations[{i}].{field}: {message}" for field, message in _check_operation(operation))
    if errors:
        return None, errors

    try:
        parsed_operations = parse_operations(operations)
    except ValidationError as e:
        return None, _format_validation_errors(e, "operations")

    return EditIntent(
        operations=parsed_operations,
        message=obj.get("message") or "Workflow updated",
        assumptions=obj.get("assumptions") or [],
    ), []


def _parse_clarify(obj: Dict[str, Any]) -> Tuple[Optional[Intent], List[str]]:
    errors: List[str] = []

    questions = obj.get("questions")
    if not isinstance(questions, list):
        errors.append('Clarify response must have a "questions" array')
    elif not questions:
        errors.append("Clarify response must have at least one question")
    else:
        for i, question in enumerate(questions):
            question = question if isinstance(question, dict) else {}
            if not question.get("id") or not isinstance(question.get("id"), str):
                errors.append(f"questions[{i}].id must be a string")
            if not question.get("text") or not isinstance(question.get("text"), str):
                errors.append(f"questions[{i}].text must be a string")

    if obj.get("context") and not isinstance(obj["context"], str):
        errors.append('"context" must be a string')
    if errors:
        return None, errors

    return ClarifyIntent(questions=questions, context=obj.get("context") or ""), []


def _parse_reject(obj: Dict[str, Any]) -> Tuple[Optional[Intent], List[str]]:
    errors: List[str] = []

    reason = obj.get("reason")
    if not reason or not isinstance(reason, str):
        errors.append('Reject response must have a "reason" string')
    if obj.get("suggestion") and not isinstance(obj["suggestion"], str):
        errors.append('"suggestion" must be a string')
    if errors:
        return None, errors

    return RejectIntent(reason=reason, suggestion=obj.get("suggestion") or ""), []


def _parse_respond(obj: Dict[str, Any]) -> Tuple[Optional[Intent], List[str]]:
    # Conversational replies are always well-formed; odd fields are dropped
    message = obj.get("message")
    actions = obj.get("suggestedActions")
    if not isinstance(actions, list):
        actions = []

    suggested_actions = []
    for i, action in enumerate(actions):
        try:
            suggested_actions.append(SuggestedAction.model_validate(action))
        except ValidationError:
            logger.info("Dropping malformed suggested action %d", i)

    return RespondIntent(
        message=message if isinstance(message, str) else "",
        suggested_actions=suggested_actions,
    ), []


_MODE_PARSERS = {
    "create": _parse_create,
    "edit": _parse_edit,
    "clarify": _parse_clarify,
    "reject": _parse_reject,
    "respond": _parse_respond,
}


# ============================================================================
# Structural checks
# ============================================================================

def _check_message(obj: Dict[str, Any]) -> List[str]:
    if obj.get("message") and not isinstance(obj["message"], str):
        return ['"message" must be a string']
    return []


def _check_assumptions(obj: Dict[str, Any]) -> List[str]:
    assumptions = obj.get("assumptions")
    if assumptions is None:
        return []
    if not isinstance(assumptions, list) or not all(isinstance(a, str) for a in assumptions):
        return ['"assumptions" must be an array of strings']
    return []


def _check_workflow_structure(workflow: Dict[str, Any]) -> List[str]:
    """flowId and step IDs are optional here; normalization fills them in."""
    errors: List[Tuple[str, str]] = []

    if workflow.get("flowId") and not isinstance(workflow["flowId"], str):
        errors.append(("flowId", "must be a string if provided"))
    if not workflow.get("name") or not isinstance(workflow.get("name"), str):
        errors.append(("name", "must be a string"))
    if not isinstance(workflow.get("steps"), list):
        errors.append(("steps", "must be an array"))
    for field in ("milestones", "roles", "assigneePlaceholders"):
        if workflow.get(field) and not isinstance(workflow[field], list):
            errors.append((field, "must be an array"))

    return [f"{field}: {message}" for field, message in errors]


def _check_operation(operation: Any) -> List[Tuple[str, str]]:
    if not isinstance(operation, dict):
        return [("op", "operation must be an object")]

    op_type = operation.get("op")
    if not op_type or not isinstance(op_type, str):
        return [("op", "must be a string")]

    required = OPERATION_REQUIRED_FIELDS.get(op_type)
    if required is None:
        # Newer operation kinds pass through and are skipped when applied
        logger.warning("Unknown operation type: %s", op_type)
        return []

    errors = []
    for field, kind in required:
        value = operation.get(field)
        if kind == "string" and (not value or not isinstance(value, str)):
            errors.append((field, "must be a string"))
        elif kind == "object" and not isinstance(value, dict):
            errors.append((field, "must be an object"))
        elif kind == "nullable_string" and (field not in operation or not (value is None or isinstance(value, str))):
            errors.append((field, "must be a string or null"))
        elif kind == "optional_string" and not (value is None or isinstance(value, str)):
            errors.append((field, "must be a string or null"))
    return errors


def _format_validation_errors(e: ValidationError, prefix: str) -> List[str]:
    messages = []
    for err in e.errors():
        loc = "".join(f"[{p}]" if isinstance(p, int) else f".{p}" for p in err["loc"])
        messages.append(f"{prefix}{loc}: {err['msg']}")
    return messages


# ============================================================================
# Extraction & summaries
# ============================================================================

def extract_json(content: str) -> Optional[str]:
    """
    Locate the JSON payload in model output.

    Order: the whole trimmed text if it starts with { or [, then the first
    fenced code block whose body does, then the widest {...} span.
    """
    trimmed = content.strip()
    if trimmed.startswith("{") or trimmed.startswith("["):
        return trimmed

    for match in _CODE_BLOCK_RE.finditer(content):
        candidate = match.group(1).strip()
        if candidate.startswith("{") or candidate.startswith("["):
            return candidate

    match = _JSON_OBJECT_RE.search(content)
    if match:
        return match.group(0)
    return None


def extract_conversational_message(content: str) -> str:
    """The prose the model wrote before its JSON payload, if any."""
    trimmed = content.strip()

    fence = trimmed.find("```")
    if fence > 0:
        return trimmed[:fence].strip()
    if trimmed.startswith("{") or trimmed.startswith("["):
        return ""

    match = _JSON_OBJECT_RE.search(trimmed)
    if match and match.start() > 0:
        return trimmed[:match.start()].strip()

    # No JSON at all; the whole text is the message
    return trimmed


def summarize_intent(intent: Intent) -> str:
    if isinstance(intent, CreateIntent):
        return f'Created workflow "{intent.workflow.name}" with {len(intent.workflow.steps)} steps'
    if isinstance(intent, EditIntent):
        return f"Applied {len(intent.operations)} operation(s): {intent.message}"
    if isinstance(intent, ClarifyIntent):
        return f"Needs clarification: {len(intent.questions)} question(s)"
    if isinstance(intent, RejectIntent):
        return f"Rejected: {intent.reason}"
    message = intent.message
    return f"Response: {message[:100]}{'...' if len(message) > 100 else ''}"
