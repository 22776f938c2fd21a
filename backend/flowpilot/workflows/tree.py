# /flowpilot/workflows/tree.py

"""
Lookup and sibling-list helpers for the nested step tree.

Locations returned here point into the live lists of the Flow they were
found in, so callers mutate the tree by editing `siblings` in place.
"""

from typing import Iterator, List, NamedTuple, Optional, Tuple, Union

from flowpilot.models.flow import (
    BranchStep,
    DecisionStep,
    Flow,
    Outcome,
    Path,
    Step,
    child_containers,
)


class StepLocation(NamedTuple):
    step: Step
    siblings: List[Step]
    index: int
    container: Optional[Union[Path, Outcome]]
    parent_step: Optional[Step]


def index_of(steps: List[Step], step_id: str) -> Optional[int]:
    for i, step in enumerate(steps):
        if step.step_id == step_id:
            return i
    return None


def _find_nested(steps: List[Step], step_id: str) -> Optional[StepLocation]:
    for parent in steps:
        for container in child_containers(parent):
            i = index_of(container.steps, step_id)
            if i is not None:
                return StepLocation(container.steps[i], container.steps, i, container, parent)
            found = _find_nested(container.steps, step_id)
            if found:
                return found
    return None


def find_step(flow: Flow, step_id: str) -> Optional[StepLocation]:
    """Find a step anywhere in the tree: the main path first, then nested paths and outcomes."""
    i = index_of(flow.steps, step_id)
    if i is not None:
        return StepLocation(flow.steps[i], flow.steps, i, None, None)
    return _find_nested(flow.steps, step_id)


def find_branch_step(flow: Flow, step_id: str) -> Optional[BranchStep]:
    location = find_step(flow, step_id)
    if location and isinstance(location.step, BranchStep):
        return location.step
    return None


def find_decision_step(flow: Flow, step_id: str) -> Optional[DecisionStep]:
    location = find_step(flow, step_id)
    if location and isinstance(location.step, DecisionStep):
        return location.step
    return None


def find_path(branch: BranchStep, path_id: str) -> Optional[Path]:
    return next((p for p in branch.paths if p.path_id == path_id), None)


def find_outcome(decision: DecisionStep, outcome_id: str) -> Optional[Outcome]:
    return next((o for o in decision.outcomes if o.outcome_id == outcome_id), None)


# --- Sibling-list manipulation ---

def insert_after(steps: List[Step], after_step_id: str, new_step: Step) -> bool:
    i = index_of(steps, after_step_id)
    if i is None:
        return False
    steps.insert(i + 1, new_step)
    return True


def insert_before(steps: List[Step], before_step_id: str, new_step: Step) -> bool:
    i = index_of(steps, before_step_id)
    if i is None:
        return False
    steps.insert(i, new_step)
    return True


def remove_from(steps: List[Step], step_id: str) -> Optional[Step]:
    i = index_of(steps, step_id)
    if i is None:
        return None
    return steps.pop(i)


def move_within(steps: List[Step], step_id: str, after_step_id: Optional[str]) -> bool:
    """
    Reposition a step inside its own sibling list.

    `after_step_id=None` moves it to the front. The anchor must live in the
    same list; otherwise the list is left as it was.
    """
    current = index_of(steps, step_id)
    if current is None:
        return False
    if after_step_id is not None and (after_step_id == step_id or index_of(steps, after_step_id) is None):
        return False

    step = steps.pop(current)
    if after_step_id is None:
        steps.insert(0, step)
    else:
        steps.insert(index_of(steps, after_step_id) + 1, step)
    return True


# --- ID inventory ---

def iter_tree_ids(flow: Flow) -> Iterator[Tuple[str, str, str]]:
    """
    Yield (kind, id, location) for every identifier in the tree.

    Kinds are step, path, outcome, milestone and role. Missing IDs are skipped.
    """
    for i, milestone in enumerate(flow.milestones):
        if milestone.milestone_id:
            yield "milestone", milestone.milestone_id, f"milestones[{i}]"
    for i, role in enumerate(flow.roles):
        if role.role_id:
            yield "role", role.role_id, f"roles[{i}]"
    yield from _iter_step_ids(flow.steps, "steps")


def _iter_step_ids(steps: List[Step], base: str) -> Iterator[Tuple[str, str, str]]:
    for i, step in enumerate(steps):
        where = f"{base}[{i}]"
        if step.step_id:
            yield "step", step.step_id, where
        if isinstance(step, BranchStep):
            for j, path in enumerate(step.paths):
                if path.path_id:
                    yield "path", path.path_id, f"{where}.paths[{j}]"
                yield from _iter_step_ids(path.steps, f"{where}.paths[{j}].steps")
        elif isinstance(step, DecisionStep):
            for j, outcome in enumerate(step.outcomes):
                if outcome.outcome_id:
                    yield "outcome", outcome.outcome_id, f"{where}.outcomes[{j}]"
                yield from _iter_step_ids(outcome.steps, f"{where}.outcomes[{j}].steps")


def collect_ids(flow: Flow) -> set:
    return {identifier for _, identifier, _ in iter_tree_ids(flow)}
