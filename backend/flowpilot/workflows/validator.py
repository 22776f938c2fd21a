# /flowpilot/workflows/validator.py

"""
Workflow validation against platform constraints.

This module provides deterministic, side-effect-free checks over a Flow:
identifier presence and uniqueness, step kinds, milestone references, branch
and decision shape, GOTO / TERMINATE placement, and role references.

Two modes:
- STRICT: every issue is an error (user-authored documents)
- LENIENT: step kinds missing from the registry are only warnings, since
  they may still be legitimate platform capabilities (AI-authored documents)

The response router consumes validate_workflow() as a black box.
"""

from typing import List, Optional, TypedDict

from flowpilot.config.settings import ValidationMode, settings
from flowpilot.config.step_registry import (
    CONDITION_LOGIC,
    CONDITION_TYPES,
    JUMP_CONTAINER_TYPES,
    NO_PHASE_TYPES,
    TERMINATE_STATUSES,
    is_known_step_type,
)
from flowpilot.models.flow import (
    AssigneeRef,
    BranchStep,
    DecisionStep,
    Flow,
    GotoStep,
    Path,
    Step,
    TerminateStep,
)
from flowpilot.workflows.tree import iter_tree_ids


class ValidationIssue(TypedDict):
    path: str
    rule: str
    message: str


class ValidationResult(TypedDict):
    """Result of validating a workflow."""
    valid: bool
    errors: List[ValidationIssue]
    warnings: List[ValidationIssue]


class _Issues:
    def __init__(self, mode: ValidationMode):
        self.mode = mode
        self.errors: List[ValidationIssue] = []
        self.warnings: List[ValidationIssue] = []

    def add(self, path: str, rule: str, message: str, lenient_warning: bool = False) -> None:
        issue: ValidationIssue = {"path": path, "rule": rule, "message": message}
        if lenient_warning and self.mode == "LENIENT":
            self.warnings.append(issue)
        else:
            self.errors.append(issue)


def validate_workflow(flow: Flow, mode: ValidationMode = "STRICT") -> ValidationResult:
    """
    Validate a workflow against all platform constraints.

    Args:
        flow: The workflow document to check
        mode: STRICT or LENIENT

    Returns:
        ValidationResult with valid=True when there are no errors
    """
    issues = _Issues(mode)

    _validate_flow_structure(flow, issues)
    _validate_milestones(flow, issues)
    _validate_identifiers(flow, issues)
    _validate_main_path_milestones(flow, issues)

    destinations = {s.step_id for s in flow.steps if s.type == "GOTO_DESTINATION" and s.step_id}
    role_ids = _defined_role_ids(flow)
    _validate_steps(flow.steps, "steps", issues, None, 0, destinations, role_ids)

    return {
        "valid": not issues.errors,
        "errors": issues.errors,
        "warnings": issues.warnings,
    }


def format_issues(issues: List[ValidationIssue]) -> List[str]:
    return [f"{issue['path']}: {issue['message']}" for issue in issues]


# ============================================================================
# Document-level rules
# ============================================================================

def _validate_flow_structure(flow: Flow, issues: _Issues) -> None:
    if not flow.flow_id:
        issues.add("flowId", "REQUIRED_FIELD", "Flow must have a flowId")
    if not flow.name or not flow.name.strip():
        issues.add("name", "REQUIRED_FIELD", "Flow must have a name")


def _validate_milestones(flow: Flow, issues: _Issues) -> None:
    top_level_ids = {s.step_id for s in flow.steps if s.step_id}

    for i, milestone in enumerate(flow.milestones):
        if not milestone.milestone_id:
            issues.add(f"milestones[{i}].milestoneId", "REQUIRED_FIELD", "Milestone must have a milestoneId")
        if milestone.after_step_id and milestone.after_step_id not in top_level_ids:
            issues.add(
                f"milestones[{i}].afterStepId",
                "INVALID_REFERENCE",
                f"Milestone anchor {milestone.after_step_id} is not a main path step",
            )


def _validate_identifiers(flow: Flow, issues: _Issues) -> None:
    """Every ID in the tree is unique, whatever kind of node carries it."""
    seen = {}
    for kind, identifier, where in iter_tree_ids(flow):
        if identifier in seen:
            issues.add(
                where,
                "UNIQUE_ID",
                f"Duplicate {kind} ID: {identifier} (already used by {seen[identifier]})",
            )
        else:
            seen[identifier] = where

    for i, role in enumerate(flow.roles):
        if not role.role_id and not (role.model_extra or {}).get("placeholderId"):
            issues.add(f"roles[{i}].roleId", "REQUIRED_FIELD", "Role must have a roleId")


def _validate_main_path_milestones(flow: Flow, issues: _Issues) -> None:
    # Steps only need a milestoneId when the flow defines milestones
    if not flow.milestones:
        return

    valid_ids = {m.milestone_id for m in flow.milestones}
    for i, step in enumerate(flow.steps):
        if step.type in NO_PHASE_TYPES:
            continue
        if not step.milestone_id:
            issues.add(
                f"steps[{i}].milestoneId",
                "REQUIRED_FIELD",
                "Step must have a milestoneId when milestones are defined",
            )
        elif step.milestone_id not in valid_ids:
            issues.add(f"steps[{i}].milestoneId", "INVALID_REFERENCE", f"Invalid milestoneId: {step.milestone_id}")


def _defined_role_ids(flow: Flow) -> set:
    role_ids = set()
    for role in flow.roles:
        if role.role_id:
            role_ids.add(role.role_id)
        # Older documents keyed placeholders by placeholderId
        legacy_id = (role.model_extra or {}).get("placeholderId")
        if legacy_id:
            role_ids.add(legacy_id)
    return role_ids


# ============================================================================
# Step-level rules
# ============================================================================

def _validate_steps(
    steps: List[Step],
    base: str,
    issues: _Issues,
    container_type: Optional[str],
    branch_depth: int,
    destinations: set,
    role_ids: set,
) -> None:
    for i, step in enumerate(steps):
        where = f"{base}[{i}]"

        if not step.step_id:
            issues.add(f"{where}.stepId", "REQUIRED_FIELD", "Step must have a stepId")

        if not is_known_step_type(step.type):
            issues.add(f"{where}.type", "UNKNOWN_STEP_TYPE", f"Unknown step type: {step.type}", lenient_warning=True)

        if isinstance(step, GotoStep):
            _validate_goto(step, where, issues, container_type, destinations)
        elif isinstance(step, TerminateStep):
            _validate_terminate(step, where, issues, container_type)

        _validate_assignees(step, where, issues, role_ids)

        if isinstance(step, BranchStep):
            _validate_branch(step, where, issues, branch_depth + 1)
            for j, path in enumerate(step.paths):
                _validate_steps(
                    path.steps, f"{where}.paths[{j}].steps", issues,
                    step.type, branch_depth + 1, destinations, role_ids,
                )
        elif isinstance(step, DecisionStep):
            _validate_decision(step, where, issues)
            for j, outcome in enumerate(step.outcomes):
                _validate_steps(
                    outcome.steps, f"{where}.outcomes[{j}].steps", issues,
                    "DECISION", branch_depth, destinations, role_ids,
                )


def _validate_branch(step: BranchStep, where: str, issues: _Issues, depth: int) -> None:
    max_depth = settings.max_branch_nesting_depth
    max_paths = settings.max_parallel_paths

    if depth > max_depth:
        issues.add(where, "MAX_NESTING_DEPTH", f"Branch nesting depth {depth} exceeds maximum {max_depth}")
    if len(step.paths) > max_paths:
        issues.add(f"{where}.paths", "MAX_PARALLEL_PATHS", f"Branch has {len(step.paths)} paths, maximum is {max_paths}")
    if len(step.paths) < 2:
        issues.add(f"{where}.paths", "MIN_PATHS", "Branch must have at least 2 paths")

    for j, path in enumerate(step.paths):
        path_where = f"{where}.paths[{j}]"
        if not path.path_id:
            issues.add(f"{path_where}.pathId", "REQUIRED_FIELD", "Path must have a pathId")
        _validate_conditions(path, path_where, issues)

        # A branch must fit inside a single milestone
        if any(s.milestone_id and s.milestone_id != step.milestone_id for s in path.steps):
            issues.add(
                path_where,
                "BRANCH_MILESTONE_CONSISTENCY",
                f"All steps in branch must have same milestoneId as branch ({step.milestone_id})",
            )


def _validate_conditions(path: Path, where: str, issues: _Issues) -> None:
    valid_types = ", ".join(sorted(CONDITION_TYPES))

    if path.condition and path.condition.type not in CONDITION_TYPES:
        issues.add(
            f"{where}.condition.type",
            "INVALID_CONDITION_TYPE",
            f"Invalid condition type: {path.condition.type}. Valid types: {valid_types}",
        )

    conditions = path.conditions or []
    max_conditions = settings.max_conditions_per_path
    if len(conditions) > max_conditions:
        issues.add(
            f"{where}.conditions",
            "MAX_CONDITIONS_PER_PATH",
            f"Path has {len(conditions)} conditions, maximum is {max_conditions}",
        )
    for k, condition in enumerate(conditions):
        if condition.type not in CONDITION_TYPES:
            issues.add(
                f"{where}.conditions[{k}].type",
                "INVALID_CONDITION_TYPE",
                f"Invalid condition type: {condition.type}. Valid types: {valid_types}",
            )

    if len(conditions) > 1 and not path.condition_logic:
        issues.add(
            f"{where}.conditionLogic",
            "REQUIRED_FIELD",
            "conditionLogic is required when multiple conditions are specified (use 'ALL' or 'ANY')",
        )
    elif path.condition_logic and path.condition_logic not in CONDITION_LOGIC:
        issues.add(
            f"{where}.conditionLogic",
            "INVALID_CONDITION_LOGIC",
            f"Invalid conditionLogic: {path.condition_logic}. Valid values: ALL, ANY",
        )


def _validate_decision(step: DecisionStep, where: str, issues: _Issues) -> None:
    max_outcomes = settings.max_decision_outcomes

    if isinstance(step.assignee, list):
        issues.add(
            f"{where}.assignee",
            "DECISION_SINGLE_ASSIGNEE",
            "Decision must have exactly one assignee (not an array)",
        )
    if len(step.outcomes) > max_outcomes:
        issues.add(
            f"{where}.outcomes",
            "MAX_DECISION_OUTCOMES",
            f"Decision has {len(step.outcomes)} outcomes, maximum is {max_outcomes}",
        )
    if len(step.outcomes) < 2:
        issues.add(f"{where}.outcomes", "MIN_OUTCOMES", "Decision must have at least 2 outcomes")

    for j, outcome in enumerate(step.outcomes):
        if not outcome.outcome_id:
            issues.add(f"{where}.outcomes[{j}].outcomeId", "REQUIRED_FIELD", "Outcome must have an outcomeId")


def _validate_goto(
    step: GotoStep,
    where: str,
    issues: _Issues,
    container_type: Optional[str],
    destinations: set,
) -> None:
    if container_type not in JUMP_CONTAINER_TYPES:
        issues.add(
            where,
            "GOTO_PLACEMENT",
            "GOTO can only be placed inside DECISION or SINGLE_CHOICE_BRANCH paths",
        )
    if step.target_goto_destination_id not in destinations:
        issues.add(
            f"{where}.targetGotoDestinationId",
            "GOTO_TARGET_MAIN_PATH",
            f"GOTO target {step.target_goto_destination_id} must be a GOTO_DESTINATION on the main path",
        )


def _validate_terminate(step: TerminateStep, where: str, issues: _Issues, container_type: Optional[str]) -> None:
    if container_type not in JUMP_CONTAINER_TYPES:
        issues.add(
            where,
            "TERMINATE_PLACEMENT",
            "TERMINATE can only be placed inside DECISION or SINGLE_CHOICE_BRANCH paths",
        )
    if step.status not in TERMINATE_STATUSES:
        issues.add(f"{where}.status", "TERMINATE_STATUS", f"Invalid terminate status: {step.status}")


def _validate_assignees(step: Step, where: str, issues: _Issues, role_ids: set) -> None:
    for field_name in ("assignee", "assignees"):
        value = getattr(step, field_name, None)
        refs = value if isinstance(value, list) else [value]
        for k, ref in enumerate(refs):
            if not isinstance(ref, AssigneeRef) or ref.mode != "PLACEHOLDER":
                continue
            ref_id = ref.role_id or ref.placeholder_id
            if ref_id and ref_id not in role_ids:
                suffix = f"[{k}]" if isinstance(value, list) else ""
                issues.add(
                    f"{where}.{field_name}{suffix}",
                    "INVALID_REFERENCE",
                    f"Invalid assignee role: {ref_id}",
                )
