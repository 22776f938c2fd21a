# /flowpilot/workflows/normalizer.py

"""
ID and structure normalization for AI-authored workflows.

AI output is allowed to omit bookkeeping fields. normalize_workflow() is the
single place that fills them in before a document is validated or committed:

- a flowId for the document
- empty lists for missing steps / milestones / roles
- sequential IDs (ms_N, step_N, path_N, outcome_N, role_N) for anything
  lacking one, never reusing an ID already present in the tree
- default milestone assignment for top-level steps (GOTO excepted), with
  nested steps inheriting their parent step's milestone

Normalization is in place and idempotent: an already-normalized document is
left unchanged.
"""

from typing import List, Optional
from uuid import uuid4

from flowpilot.config.step_registry import NO_PHASE_TYPES
from flowpilot.models.flow import Flow, Step, child_containers, is_branch_step
from flowpilot.workflows.tree import collect_ids

# The normalizer descends this many levels into paths/outcomes; deeper nesting
# is reported by the validator instead.
MAX_NORMALIZE_DEPTH = 1


class IdCounter:
    """
    Sequential ID generator for one ID prefix.

    `taken` is shared between counters so a generated ID never collides with
    one authored by the AI or produced by another counter.
    """

    def __init__(self, prefix: str, taken: Optional[set] = None, start: int = 1):
        self.prefix = prefix
        self.value = start
        self.taken = taken if taken is not None else set()

    def next(self) -> str:
        while True:
            candidate = f"{self.prefix}_{self.value}"
            self.value += 1
            if candidate not in self.taken:
                self.taken.add(candidate)
                return candidate


class _Counters:
    def __init__(self, taken: set):
        self.milestone = IdCounter("ms", taken)
        self.step = IdCounter("step", taken)
        self.path = IdCounter("path", taken)
        self.outcome = IdCounter("outcome", taken)
        self.role = IdCounter("role", taken)


def new_flow_id() -> str:
    return f"flow_{uuid4().hex}"


def normalize_workflow(flow: Flow) -> None:
    """Repair missing identifiers and default associations in place."""
    if not flow.flow_id:
        flow.flow_id = new_flow_id()

    for field_name in ("steps", "milestones", "roles"):
        if not isinstance(getattr(flow, field_name), list):
            setattr(flow, field_name, [])

    counters = _Counters(collect_ids(flow))

    for milestone in flow.milestones:
        if not milestone.milestone_id:
            milestone.milestone_id = counters.milestone.next()

    default_milestone_id = flow.milestones[0].milestone_id if flow.milestones else None

    for step in flow.steps:
        if not step.step_id:
            step.step_id = counters.step.next()
        if default_milestone_id and not step.milestone_id and step.type not in NO_PHASE_TYPES:
            step.milestone_id = default_milestone_id
        _normalize_children(step, counters, default_milestone_id, depth=0)

    for role in flow.roles:
        if not role.role_id:
            role.role_id = counters.role.next()


def _normalize_children(
    step: Step,
    counters: _Counters,
    default_milestone_id: Optional[str],
    depth: int,
) -> None:
    if depth >= MAX_NORMALIZE_DEPTH:
        return

    for container in child_containers(step):
        if is_branch_step(step):
            if not container.path_id:
                container.path_id = counters.path.next()
        elif not container.outcome_id:
            container.outcome_id = counters.outcome.next()

        for nested in container.steps:
            if not nested.step_id:
                nested.step_id = counters.step.next()
            # Inherit the parent's resolved milestone, not the document default
            if default_milestone_id and not nested.milestone_id:
                nested.milestone_id = step.milestone_id
            _normalize_children(nested, counters, default_milestone_id, depth + 1)


def assign_missing_ids(flow: Flow, steps: List[Step]) -> None:
    """Give inserted steps (and their paths/outcomes) tree-unique IDs where missing."""
    counters = _Counters(collect_ids(flow))
    for step in steps:
        if not step.step_id:
            step.step_id = counters.step.next()
        _normalize_children(step, counters, None, depth=0)
