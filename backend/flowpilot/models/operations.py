# /flowpilot/models/operations.py

"""
Patch operations used to edit a workflow.

Edits are expressed as an ordered list of deterministic commands, each tagged
by `op`. Tags this build does not know become UnknownOperation: they are kept
verbatim (so they can be logged and echoed back) and ignored by the engine.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import Discriminator, Field, Tag, TypeAdapter

from flowpilot.models.flow import (
    Condition,
    DocumentModel,
    Milestone,
    Outcome,
    Path,
    Step,
)


class BaseOperation(DocumentModel):
    op: str


# --- Main path operations ---

class AddStepAfterOperation(BaseOperation):
    op: Literal["ADD_STEP_AFTER"]
    after_step_id: str = Field(alias="afterStepId")
    step: Step


class AddStepBeforeOperation(BaseOperation):
    op: Literal["ADD_STEP_BEFORE"]
    before_step_id: str = Field(alias="beforeStepId")
    step: Step


class RemoveStepOperation(BaseOperation):
    op: Literal["REMOVE_STEP"]
    step_id: str = Field(alias="stepId")


class UpdateStepOperation(BaseOperation):
    op: Literal["UPDATE_STEP"]
    step_id: str = Field(alias="stepId")
    updates: Dict[str, Any]


class MoveStepOperation(BaseOperation):
    op: Literal["MOVE_STEP"]
    step_id: str = Field(alias="stepId")
    after_step_id: Optional[str] = Field(default=None, alias="afterStepId", description="None moves the step to the front")


# --- Branch path operations ---

class AddPathStepAfterOperation(BaseOperation):
    op: Literal["ADD_PATH_STEP_AFTER"]
    branch_step_id: str = Field(alias="branchStepId")
    path_id: str = Field(alias="pathId")
    after_step_id: Optional[str] = Field(default=None, alias="afterStepId", description="None inserts at the start of the path")
    step: Step


class AddPathStepBeforeOperation(BaseOperation):
    op: Literal["ADD_PATH_STEP_BEFORE"]
    branch_step_id: str = Field(alias="branchStepId")
    path_id: str = Field(alias="pathId")
    before_step_id: Optional[str] = Field(default=None, alias="beforeStepId", description="None appends to the end of the path")
    step: Step


class RemovePathStepOperation(BaseOperation):
    op: Literal["REMOVE_PATH_STEP"]
    branch_step_id: str = Field(alias="branchStepId")
    path_id: str = Field(alias="pathId")
    step_id: str = Field(alias="stepId")


class UpdatePathStepOperation(BaseOperation):
    op: Literal["UPDATE_PATH_STEP"]
    branch_step_id: str = Field(alias="branchStepId")
    path_id: str = Field(alias="pathId")
    step_id: str = Field(alias="stepId")
    updates: Dict[str, Any]


class MovePathStepOperation(BaseOperation):
    op: Literal["MOVE_PATH_STEP"]
    branch_step_id: str = Field(alias="branchStepId")
    path_id: str = Field(alias="pathId")
    step_id: str = Field(alias="stepId")
    after_step_id: Optional[str] = Field(default=None, alias="afterStepId")


# --- Branch structure operations ---

class AddBranchPathOperation(BaseOperation):
    op: Literal["ADD_BRANCH_PATH"]
    branch_step_id: str = Field(alias="branchStepId")
    path: Path


class RemoveBranchPathOperation(BaseOperation):
    op: Literal["REMOVE_BRANCH_PATH"]
    branch_step_id: str = Field(alias="branchStepId")
    path_id: str = Field(alias="pathId")


class UpdateBranchPathConditionOperation(BaseOperation):
    op: Literal["UPDATE_BRANCH_PATH_CONDITION"]
    branch_step_id: str = Field(alias="branchStepId")
    path_id: str = Field(alias="pathId")
    condition: Condition


# --- Decision operations ---

class AddDecisionOutcomeOperation(BaseOperation):
    op: Literal["ADD_DECISION_OUTCOME"]
    decision_step_id: str = Field(alias="decisionStepId")
    outcome: Outcome


class RemoveDecisionOutcomeOperation(BaseOperation):
    op: Literal["REMOVE_DECISION_OUTCOME"]
    decision_step_id: str = Field(alias="decisionStepId")
    outcome_id: str = Field(alias="outcomeId")


class UpdateDecisionOutcomeLabelOperation(BaseOperation):
    op: Literal["UPDATE_DECISION_OUTCOME_LABEL"]
    decision_step_id: str = Field(alias="decisionStepId")
    outcome_id: str = Field(alias="outcomeId")
    label: str


class AddOutcomeStepAfterOperation(BaseOperation):
    op: Literal["ADD_OUTCOME_STEP_AFTER"]
    decision_step_id: str = Field(alias="decisionStepId")
    outcome_id: str = Field(alias="outcomeId")
    after_step_id: Optional[str] = Field(default=None, alias="afterStepId")
    step: Step


class AddOutcomeStepBeforeOperation(BaseOperation):
    op: Literal["ADD_OUTCOME_STEP_BEFORE"]
    decision_step_id: str = Field(alias="decisionStepId")
    outcome_id: str = Field(alias="outcomeId")
    before_step_id: Optional[str] = Field(default=None, alias="beforeStepId")
    step: Step


class RemoveOutcomeStepOperation(BaseOperation):
    op: Literal["REMOVE_OUTCOME_STEP"]
    decision_step_id: str = Field(alias="decisionStepId")
    outcome_id: str = Field(alias="outcomeId")
    step_id: str = Field(alias="stepId")


# --- Special operations ---

class UpdateTerminateStatusOperation(BaseOperation):
    op: Literal["UPDATE_TERMINATE_STATUS"]
    step_id: str = Field(alias="stepId")
    status: str


class UpdateGotoTargetOperation(BaseOperation):
    op: Literal["UPDATE_GOTO_TARGET"]
    step_id: str = Field(alias="stepId")
    target_goto_destination_id: str = Field(alias="targetGotoDestinationId")


# --- Milestone & flow metadata operations ---

class AddMilestoneOperation(BaseOperation):
    op: Literal["ADD_MILESTONE"]
    milestone: Milestone


class RemoveMilestoneOperation(BaseOperation):
    op: Literal["REMOVE_MILESTONE"]
    milestone_id: str = Field(alias="milestoneId")


class UpdateMilestoneOperation(BaseOperation):
    op: Literal["UPDATE_MILESTONE"]
    milestone_id: str = Field(alias="milestoneId")
    updates: Dict[str, Any]


class UpdateFlowNameOperation(BaseOperation):
    op: Literal["UPDATE_FLOW_NAME"]
    name: str


class UnknownOperation(BaseOperation):
    """An operation tag from a newer schema; round-trips, never applied."""


KNOWN_OPERATIONS = {
    "ADD_STEP_AFTER": AddStepAfterOperation,
    "ADD_STEP_BEFORE": AddStepBeforeOperation,
    "REMOVE_STEP": RemoveStepOperation,
    "UPDATE_STEP": UpdateStepOperation,
    "MOVE_STEP": MoveStepOperation,
    "ADD_PATH_STEP_AFTER": AddPathStepAfterOperation,
    "ADD_PATH_STEP_BEFORE": AddPathStepBeforeOperation,
    "REMOVE_PATH_STEP": RemovePathStepOperation,
    "UPDATE_PATH_STEP": UpdatePathStepOperation,
    "MOVE_PATH_STEP": MovePathStepOperation,
    "ADD_BRANCH_PATH": AddBranchPathOperation,
    "REMOVE_BRANCH_PATH": RemoveBranchPathOperation,
    "UPDATE_BRANCH_PATH_CONDITION": UpdateBranchPathConditionOperation,
    "ADD_DECISION_OUTCOME": AddDecisionOutcomeOperation,
    "REMOVE_DECISION_OUTCOME": RemoveDecisionOutcomeOperation,
    "UPDATE_DECISION_OUTCOME_LABEL": UpdateDecisionOutcomeLabelOperation,
    "ADD_OUTCOME_STEP_AFTER": AddOutcomeStepAfterOperation,
    "ADD_OUTCOME_STEP_BEFORE": AddOutcomeStepBeforeOperation,
    "REMOVE_OUTCOME_STEP": RemoveOutcomeStepOperation,
    "UPDATE_TERMINATE_STATUS": UpdateTerminateStatusOperation,
    "UPDATE_GOTO_TARGET": UpdateGotoTargetOperation,
    "ADD_MILESTONE": AddMilestoneOperation,
    "REMOVE_MILESTONE": RemoveMilestoneOperation,
    "UPDATE_MILESTONE": UpdateMilestoneOperation,
    "UPDATE_FLOW_NAME": UpdateFlowNameOperation,
}


def _operation_variant(value: Any) -> str:
    if isinstance(value, dict):
        op = value.get("op")
    else:
        op = getattr(value, "op", None)
    return op if op in KNOWN_OPERATIONS else "UNKNOWN"


Operation = Annotated[
    Union[
        tuple(Annotated[model, Tag(tag)] for tag, model in KNOWN_OPERATIONS.items())
        + (Annotated[UnknownOperation, Tag("UNKNOWN")],)
    ],
    Discriminator(_operation_variant),
]

operation_list_adapter: TypeAdapter[List[Operation]] = TypeAdapter(List[Operation])


def parse_operations(data: List[Dict[str, Any]]) -> List[Operation]:
    """Validate raw operation dicts into their typed variants."""
    return operation_list_adapter.validate_python(data)
