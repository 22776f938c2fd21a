# /flowpilot/workflows/engine.py

"""
Patch operation engine.

Applies an ordered list of edit operations to a workflow and reports the
outcome of each one. The engine:
- Never mutates the workflow it is given (works on a deep copy)
- Applies operations sequentially against an accumulating working copy
- Runs each operation on its own copy and keeps it only if it succeeds, so a
  failing operation leaves the working copy untouched and later operations
  run against the last good state
- Skips unknown operation tags with a warning instead of failing
- Gives inserted steps that lack an ID a fresh tree-unique step_N

Whether a partially successful batch is committed is the caller's decision.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, TypedDict

from pydantic import BaseModel, ValidationError

from flowpilot.models.flow import (
    Flow,
    GotoStep,
    Milestone,
    Outcome,
    Path,
    Step,
    TerminateStep,
    parse_step,
)
from flowpilot.models.operations import (
    AddBranchPathOperation,
    AddDecisionOutcomeOperation,
    AddMilestoneOperation,
    AddOutcomeStepAfterOperation,
    AddOutcomeStepBeforeOperation,
    AddPathStepAfterOperation,
    AddPathStepBeforeOperation,
    AddStepAfterOperation,
    AddStepBeforeOperation,
    MovePathStepOperation,
    MoveStepOperation,
    Operation,
    RemoveBranchPathOperation,
    RemoveDecisionOutcomeOperation,
    RemoveMilestoneOperation,
    RemoveOutcomeStepOperation,
    RemovePathStepOperation,
    RemoveStepOperation,
    UnknownOperation,
    UpdateBranchPathConditionOperation,
    UpdateDecisionOutcomeLabelOperation,
    UpdateFlowNameOperation,
    UpdateGotoTargetOperation,
    UpdateMilestoneOperation,
    UpdatePathStepOperation,
    UpdateStepOperation,
    UpdateTerminateStatusOperation,
)
from flowpilot.workflows import tree
from flowpilot.workflows.normalizer import IdCounter, assign_missing_ids

logger = logging.getLogger(__name__)


class OperationError(Exception):
    """An operation could not be resolved against the workflow."""


class OperationResult(TypedDict):
    """Outcome of one operation."""
    success: bool
    operation: Operation
    error: Optional[str]
    skipped: bool


class ApplyResult(TypedDict):
    """Outcome of a whole batch."""
    success: bool
    final_workflow: Flow
    results: List[OperationResult]


def apply_operations(base_flow: Flow, operations: List[Operation]) -> ApplyResult:
    """
    Apply `operations` in order to a copy of `base_flow`.

    Args:
        base_flow: The committed workflow; never modified
        operations: Parsed operations, possibly including unknown tags

    Returns:
        ApplyResult with success=True only if every operation succeeded.
        final_workflow always holds whatever was applied.
    """
    working = base_flow.model_copy(deep=True)
    results: List[OperationResult] = []

    for operation in operations:
        if isinstance(operation, UnknownOperation):
            logger.warning("Skipping unknown operation type: %s", operation.op)
            results.append(_result(operation, skipped=True))
            continue

        candidate = working.model_copy(deep=True)
        try:
            apply_operation(candidate, operation)
        except (OperationError, ValueError) as e:
            error = _describe_error(e)
            logger.info("Operation %s failed: %s", operation.op, error)
            results.append(_result(operation, error=error))
            continue

        working = candidate
        results.append(_result(operation))

    return {
        "success": all(r["success"] for r in results),
        "final_workflow": working,
        "results": results,
    }


def apply_operation(flow: Flow, operation: Operation) -> None:
    """Apply one known operation to `flow` in place. Raises OperationError."""
    handler = _HANDLERS.get(type(operation))
    if handler is None:
        raise OperationError(f"Unknown operation type: {operation.op}")
    handler(flow, operation)


def failed_operation_errors(result: ApplyResult) -> List[str]:
    return [r["error"] for r in result["results"] if not r["success"] and r["error"]]


def _result(operation: Operation, error: Optional[str] = None, skipped: bool = False) -> OperationResult:
    return {
        "success": error is None,
        "operation": operation,
        "error": error,
        "skipped": skipped,
    }


def _describe_error(e: Exception) -> str:
    if isinstance(e, ValidationError):
        details = [
            f"{'.'.join(str(p) for p in err['loc']) or 'value'}: {err['msg']}"
            for err in e.errors()[:3]
        ]
        return "Invalid update: " + "; ".join(details)
    return str(e)


# ============================================================================
# Shared helpers
# ============================================================================

def _fresh_step(step: Step) -> Step:
    # Operations may be replayed (preview then commit), so never insert the operation's own object
    return step.model_copy(deep=True)


def _merge_updates(model: BaseModel, updates: Dict[str, Any], protected: str) -> Dict[str, Any]:
    """
    Shallow-merge `updates` over the model's wire representation.

    Keys may use either the attribute name or the camelCase alias. The
    `protected` field (the model's own ID) is never overwritten.
    """
    fields = type(model).model_fields
    protected_keys = {protected, fields[protected].alias}
    data = model.model_dump(by_alias=True, exclude_none=True)

    for key, value in updates.items():
        field = fields.get(key)
        name = field.alias if field is not None and field.alias else key
        if key in protected_keys or name in protected_keys:
            continue
        data[name] = value
    return data


def _locate(flow: Flow, step_id: str) -> tree.StepLocation:
    location = tree.find_step(flow, step_id)
    if location is None:
        raise OperationError(f"Step not found: {step_id}")
    return location


def _branch_path(flow: Flow, branch_step_id: str, path_id: str) -> Path:
    branch = tree.find_branch_step(flow, branch_step_id)
    if branch is None:
        raise OperationError(f"Branch step not found: {branch_step_id}")
    path = tree.find_path(branch, path_id)
    if path is None:
        raise OperationError(f"Path not found: {path_id}")
    return path


def _decision_outcome(flow: Flow, decision_step_id: str, outcome_id: str) -> Outcome:
    decision = tree.find_decision_step(flow, decision_step_id)
    if decision is None:
        raise OperationError(f"Decision step not found: {decision_step_id}")
    outcome = tree.find_outcome(decision, outcome_id)
    if outcome is None:
        raise OperationError(f"Outcome not found: {outcome_id}")
    return outcome


def _insert_into(
    flow: Flow,
    steps: List[Step],
    new_step: Step,
    after_step_id: Optional[str] = None,
    before_step_id: Optional[str] = None,
    where: str = "",
) -> None:
    step = _fresh_step(new_step)
    if after_step_id is not None:
        if not tree.insert_after(steps, after_step_id, step):
            raise OperationError(f"Step not found{where}: {after_step_id}")
    elif before_step_id is not None:
        if not tree.insert_before(steps, before_step_id, step):
            raise OperationError(f"Step not found{where}: {before_step_id}")
    else:
        raise OperationError("Insert requires an anchor step")
    assign_missing_ids(flow, [step])


def _sort_milestones(flow: Flow) -> None:
    # Only reorder when every milestone declares a sequence; sort is stable
    if all(m.sequence is not None for m in flow.milestones):
        flow.milestones.sort(key=lambda m: m.sequence)


# ============================================================================
# Main path operations
# ============================================================================

def _add_step_after(flow: Flow, op: AddStepAfterOperation) -> None:
    _insert_into(flow, flow.steps, op.step, after_step_id=op.after_step_id)


def _add_step_before(flow: Flow, op: AddStepBeforeOperation) -> None:
    _insert_into(flow, flow.steps, op.step, before_step_id=op.before_step_id)


def _remove_step(flow: Flow, op: RemoveStepOperation) -> None:
    location = _locate(flow, op.step_id)
    del location.siblings[location.index]


def _update_step(flow: Flow, op: UpdateStepOperation) -> None:
    location = _locate(flow, op.step_id)
    merged = _merge_updates(location.step, op.updates, "step_id")
    location.siblings[location.index] = parse_step(merged)


def _move_step(flow: Flow, op: MoveStepOperation) -> None:
    location = _locate(flow, op.step_id)
    if not tree.move_within(location.siblings, op.step_id, op.after_step_id):
        raise OperationError(
            f"Failed to move step: {op.step_id} (anchor {op.after_step_id} is not in the same step list)"
        )


# ============================================================================
# Branch path operations
# ============================================================================

def _add_path_step_after(flow: Flow, op: AddPathStepAfterOperation) -> None:
    path = _branch_path(flow, op.branch_step_id, op.path_id)
    if op.after_step_id is None:
        step = _fresh_step(op.step)
        path.steps.insert(0, step)
        assign_missing_ids(flow, [step])
        return
    _insert_into(flow, path.steps, op.step, after_step_id=op.after_step_id, where=" in path")


def _add_path_step_before(flow: Flow, op: AddPathStepBeforeOperation) -> None:
    path = _branch_path(flow, op.branch_step_id, op.path_id)
    if op.before_step_id is None:
        step = _fresh_step(op.step)
        path.steps.append(step)
        assign_missing_ids(flow, [step])
        return
    _insert_into(flow, path.steps, op.step, before_step_id=op.before_step_id, where=" in path")


def _remove_path_step(flow: Flow, op: RemovePathStepOperation) -> None:
    path = _branch_path(flow, op.branch_step_id, op.path_id)
    if tree.remove_from(path.steps, op.step_id) is None:
        raise OperationError(f"Step not found in path: {op.step_id}")


def _update_path_step(flow: Flow, op: UpdatePathStepOperation) -> None:
    path = _branch_path(flow, op.branch_step_id, op.path_id)
    i = tree.index_of(path.steps, op.step_id)
    if i is None:
        raise OperationError(f"Step not found in path: {op.step_id}")
    path.steps[i] = parse_step(_merge_updates(path.steps[i], op.updates, "step_id"))


def _move_path_step(flow: Flow, op: MovePathStepOperation) -> None:
    path = _branch_path(flow, op.branch_step_id, op.path_id)
    if not tree.move_within(path.steps, op.step_id, op.after_step_id):
        raise OperationError(f"Failed to move step: {op.step_id}")


# ============================================================================
# Branch structure operations
# ============================================================================

def _add_branch_path(flow: Flow, op: AddBranchPathOperation) -> None:
    branch = tree.find_branch_step(flow, op.branch_step_id)
    if branch is None:
        raise OperationError(f"Branch step not found: {op.branch_step_id}")
    path = op.path.model_copy(deep=True)
    if path.path_id and tree.find_path(branch, path.path_id):
        raise OperationError(f"Path already exists: {path.path_id}")
    branch.paths.append(path)
    assign_missing_ids(flow, [branch])


def _remove_branch_path(flow: Flow, op: RemoveBranchPathOperation) -> None:
    branch = tree.find_branch_step(flow, op.branch_step_id)
    if branch is None:
        raise OperationError(f"Branch step not found: {op.branch_step_id}")
    path = tree.find_path(branch, op.path_id)
    if path is None:
        raise OperationError(f"Path not found: {op.path_id}")
    branch.paths.remove(path)


def _update_branch_path_condition(flow: Flow, op: UpdateBranchPathConditionOperation) -> None:
    path = _branch_path(flow, op.branch_step_id, op.path_id)
    path.condition = op.condition.model_copy(deep=True)


# ============================================================================
# Decision operations
# ============================================================================

def _add_decision_outcome(flow: Flow, op: AddDecisionOutcomeOperation) -> None:
    decision = tree.find_decision_step(flow, op.decision_step_id)
    if decision is None:
        raise OperationError(f"Decision step not found: {op.decision_step_id}")
    outcome = op.outcome.model_copy(deep=True)
    if outcome.outcome_id and tree.find_outcome(decision, outcome.outcome_id):
        raise OperationError(f"Outcome already exists: {outcome.outcome_id}")
    decision.outcomes.append(outcome)
    assign_missing_ids(flow, [decision])


def _remove_decision_outcome(flow: Flow, op: RemoveDecisionOutcomeOperation) -> None:
    decision = tree.find_decision_step(flow, op.decision_step_id)
    if decision is None:
        raise OperationError(f"Decision step not found: {op.decision_step_id}")
    outcome = tree.find_outcome(decision, op.outcome_id)
    if outcome is None:
        raise OperationError(f"Outcome not found: {op.outcome_id}")
    decision.outcomes.remove(outcome)


def _update_decision_outcome_label(flow: Flow, op: UpdateDecisionOutcomeLabelOperation) -> None:
    outcome = _decision_outcome(flow, op.decision_step_id, op.outcome_id)
    outcome.label = op.label


def _add_outcome_step_after(flow: Flow, op: AddOutcomeStepAfterOperation) -> None:
    outcome = _decision_outcome(flow, op.decision_step_id, op.outcome_id)
    if op.after_step_id is None:
        step = _fresh_step(op.step)
        outcome.steps.insert(0, step)
        assign_missing_ids(flow, [step])
        return
    _insert_into(flow, outcome.steps, op.step, after_step_id=op.after_step_id, where=" in outcome")


def _add_outcome_step_before(flow: Flow, op: AddOutcomeStepBeforeOperation) -> None:
    outcome = _decision_outcome(flow, op.decision_step_id, op.outcome_id)
    if op.before_step_id is None:
        step = _fresh_step(op.step)
        outcome.steps.append(step)
        assign_missing_ids(flow, [step])
        return
    _insert_into(flow, outcome.steps, op.step, before_step_id=op.before_step_id, where=" in outcome")


def _remove_outcome_step(flow: Flow, op: RemoveOutcomeStepOperation) -> None:
    outcome = _decision_outcome(flow, op.decision_step_id, op.outcome_id)
    if tree.remove_from(outcome.steps, op.step_id) is None:
        raise OperationError(f"Step not found in outcome: {op.step_id}")


# ============================================================================
# Special operations
# ============================================================================

def _update_terminate_status(flow: Flow, op: UpdateTerminateStatusOperation) -> None:
    step = _locate(flow, op.step_id).step
    if not isinstance(step, TerminateStep):
        raise OperationError(f"Step is not a TERMINATE step: {op.step_id}")
    step.status = op.status


def _update_goto_target(flow: Flow, op: UpdateGotoTargetOperation) -> None:
    step = _locate(flow, op.step_id).step
    if not isinstance(step, GotoStep):
        raise OperationError(f"Step is not a GOTO step: {op.step_id}")
    step.target_goto_destination_id = op.target_goto_destination_id


# ============================================================================
# Milestone & flow metadata operations
# ============================================================================

def _add_milestone(flow: Flow, op: AddMilestoneOperation) -> None:
    milestone = op.milestone.model_copy(deep=True)
    if milestone.milestone_id:
        if any(m.milestone_id == milestone.milestone_id for m in flow.milestones):
            raise OperationError(f"Milestone already exists: {milestone.milestone_id}")
    else:
        milestone.milestone_id = IdCounter("ms", tree.collect_ids(flow)).next()
    flow.milestones.append(milestone)
    _sort_milestones(flow)


def _remove_milestone(flow: Flow, op: RemoveMilestoneOperation) -> None:
    index = next((i for i, m in enumerate(flow.milestones) if m.milestone_id == op.milestone_id), None)
    if index is None:
        raise OperationError(f"Milestone not found: {op.milestone_id}")

    assigned = [s for s in flow.steps if s.milestone_id == op.milestone_id]
    if assigned:
        raise OperationError(
            f"Cannot remove milestone {op.milestone_id}: {len(assigned)} steps are assigned to it"
        )
    del flow.milestones[index]


def _update_milestone(flow: Flow, op: UpdateMilestoneOperation) -> None:
    index = next((i for i, m in enumerate(flow.milestones) if m.milestone_id == op.milestone_id), None)
    if index is None:
        raise OperationError(f"Milestone not found: {op.milestone_id}")

    merged = _merge_updates(flow.milestones[index], op.updates, "milestone_id")
    flow.milestones[index] = Milestone.model_validate(merged)
    if "sequence" in op.updates:
        _sort_milestones(flow)


def _update_flow_name(flow: Flow, op: UpdateFlowNameOperation) -> None:
    if not op.name.strip():
        raise OperationError("Flow name cannot be empty")
    flow.name = op.name


_HANDLERS: Dict[type, Callable[[Flow, Any], None]] = {
    AddStepAfterOperation: _add_step_after,
    AddStepBeforeOperation: _add_step_before,
    RemoveStepOperation: _remove_step,
    UpdateStepOperation: _update_step,
    MoveStepOperation: _move_step,
    AddPathStepAfterOperation: _add_path_step_after,
    AddPathStepBeforeOperation: _add_path_step_before,
    RemovePathStepOperation: _remove_path_step,
    UpdatePathStepOperation: _update_path_step,
    MovePathStepOperation: _move_path_step,
    AddBranchPathOperation: _add_branch_path,
    RemoveBranchPathOperation: _remove_branch_path,
    UpdateBranchPathConditionOperation: _update_branch_path_condition,
    AddDecisionOutcomeOperation: _add_decision_outcome,
    RemoveDecisionOutcomeOperation: _remove_decision_outcome,
    UpdateDecisionOutcomeLabelOperation: _update_decision_outcome_label,
    AddOutcomeStepAfterOperation: _add_outcome_step_after,
    AddOutcomeStepBeforeOperation: _add_outcome_step_before,
    RemoveOutcomeStepOperation: _remove_outcome_step,
    UpdateTerminateStatusOperation: _update_terminate_status,
    UpdateGotoTargetOperation: _update_goto_target,
    AddMilestoneOperation: _add_milestone,
    RemoveMilestoneOperation: _remove_milestone,
    UpdateMilestoneOperation: _update_milestone,
    UpdateFlowNameOperation: _update_flow_name,
}
