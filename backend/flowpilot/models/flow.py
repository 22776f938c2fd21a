# /flowpilot/models/flow.py

"""
Workflow document model.

This is a PURE DATA module: the Flow tree (steps, paths, outcomes, milestones,
roles) with no mutation logic. Every model accepts both the camelCase JSON
names produced by the AI and the snake_case attribute names, and keeps unknown
fields so documents written against a newer schema round-trip unchanged.

Steps form a tagged union over `type`. Branch and decision variants carry
nested step lists of the same union, and any unrecognized `type` lands in
UnknownStep instead of being dropped.
"""

from typing import Annotated, Any, Dict, Iterator, List, Literal, Optional, Union
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    field_validator,
)

from flowpilot.config.step_registry import (
    AUTOMATION_TYPES,
    BRANCH_TYPES,
    HUMAN_ACTION_TYPES,
)


class DocumentModel(BaseModel):
    """Shared configuration for every node of the workflow document."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")


def _coerce_list(v: Any) -> List[Any]:
    # AI output may omit collections or send the wrong type for them
    return v if isinstance(v, list) else []


# ============================================================================
# Supporting structures
# ============================================================================

class AssigneeRef(DocumentModel):
    """Reference from a step to a role placeholder."""
    mode: str = Field(default="PLACEHOLDER", description="Assignee reference mode")
    role_id: Optional[str] = Field(default=None, alias="roleId")
    placeholder_id: Optional[str] = Field(default=None, alias="placeholderId", description="Deprecated alias of roleId")


class RelativeDue(DocumentModel):
    type: str = "RELATIVE"
    value: Optional[int] = None
    unit: str = Field(default="DAYS", description="HOURS, DAYS or WEEKS")


class StepOutput(DocumentModel):
    key: str
    type: str = "TEXT"
    description: Optional[str] = None


class Condition(DocumentModel):
    """A branch path condition (EQUALS, NOT_EQUALS, CONTAINS, NOT_CONTAINS, NOT_EMPTY, ELSE)."""
    type: str
    left: Optional[str] = None
    right: Optional[str] = None
    value: Optional[str] = None


Assignees = Union[AssigneeRef, List[AssigneeRef]]


# ============================================================================
# Milestones & Roles
# ============================================================================

class Milestone(DocumentModel):
    """A named phase boundary over the top-level step sequence."""
    milestone_id: Optional[str] = Field(default=None, alias="milestoneId")
    name: str = ""
    sequence: Optional[int] = None
    after_step_id: Optional[str] = Field(
        default=None,
        alias="afterStepId",
        description="Top-level step after which this phase begins",
    )


class Role(DocumentModel):
    """Placeholder for an assignee, resolved to a person at run time."""
    role_id: Optional[str] = Field(default=None, alias="roleId")
    name: str = ""
    resolution: Optional[Dict[str, Any]] = None
    role_options: Optional[Dict[str, Any]] = Field(default=None, alias="roleOptions")


# ============================================================================
# Steps
# ============================================================================

class BaseStep(DocumentModel):
    step_id: Optional[str] = Field(default=None, alias="stepId")
    type: str
    milestone_id: Optional[str] = Field(default=None, alias="milestoneId")
    title: Optional[str] = None
    description: Optional[str] = None


class HumanActionStep(BaseStep):
    """FORM, APPROVAL, TODO and the other steps completed by a person."""
    assignees: Optional[Assignees] = None
    due: Optional[RelativeDue] = None
    options: Optional[Dict[str, Any]] = None
    outputs: Optional[List[StepOutput]] = None

    @field_validator("type")
    @classmethod
    def type_must_be_human_action(cls, v: str) -> str:
        if v not in HUMAN_ACTION_TYPES:
            raise ValueError(f"'{v}' is not a human action step type")
        return v


class AutomationStep(BaseStep):
    """AI, system and integration steps executed without a person."""
    inputs: Optional[List[Any]] = None
    prompt: Optional[str] = None
    outputs: Optional[List[StepOutput]] = None

    @field_validator("type")
    @classmethod
    def type_must_be_automation(cls, v: str) -> str:
        if v not in AUTOMATION_TYPES:
            raise ValueError(f"'{v}' is not an automation step type")
        return v


class Path(DocumentModel):
    """One branch of a branch step, holding its own nested step sequence."""
    path_id: Optional[str] = Field(default=None, alias="pathId")
    label: str = ""
    condition: Optional[Condition] = None
    conditions: Optional[List[Condition]] = None
    condition_logic: Optional[str] = Field(default=None, alias="conditionLogic")
    steps: List["Step"] = Field(default_factory=list)

    @field_validator("steps", mode="before")
    @classmethod
    def coerce_steps(cls, v):
        return _coerce_list(v)


class Outcome(DocumentModel):
    """One branch of a decision step, holding its own nested step sequence."""
    outcome_id: Optional[str] = Field(default=None, alias="outcomeId")
    label: str = ""
    steps: List["Step"] = Field(default_factory=list)

    @field_validator("steps", mode="before")
    @classmethod
    def coerce_steps(cls, v):
        return _coerce_list(v)


class BranchStep(BaseStep):
    paths: List[Path] = Field(default_factory=list)

    @field_validator("type")
    @classmethod
    def type_must_be_branch(cls, v: str) -> str:
        if v not in BRANCH_TYPES:
            raise ValueError(f"'{v}' is not a branch step type")
        return v


class DecisionStep(BaseStep):
    type: Literal["DECISION"]
    assignee: Optional[Assignees] = Field(default=None, description="Exactly one assignee decides")
    due: Optional[RelativeDue] = None
    options: Optional[Dict[str, Any]] = None
    outcomes: List[Outcome] = Field(default_factory=list)


class GotoStep(BaseStep):
    type: Literal["GOTO"]
    target_goto_destination_id: Optional[str] = Field(default=None, alias="targetGotoDestinationId")


class GotoDestinationStep(BaseStep):
    type: Literal["GOTO_DESTINATION"]
    label: Optional[str] = None


class TerminateStep(BaseStep):
    type: Literal["TERMINATE"]
    status: Optional[str] = Field(default=None, description="COMPLETED or CANCELLED")


class WaitStep(BaseStep):
    type: Literal["WAIT"]
    wait_for: Optional[Dict[str, Any]] = Field(default=None, alias="waitFor")


class SubFlowStep(BaseStep):
    type: Literal["SUB_FLOW"]
    flow_template_id: Optional[str] = Field(default=None, alias="flowTemplateId")


class UnknownStep(BaseStep):
    """A step kind this build does not recognize; preserved field for field."""


def _step_variant(value: Any) -> str:
    """Pick the Step variant from the raw `type` tag (dict or model instance)."""
    if isinstance(value, dict):
        step_type = value.get("type")
    else:
        step_type = getattr(value, "type", None)

    if not isinstance(step_type, str):
        return "unknown"
    if step_type in HUMAN_ACTION_TYPES:
        return "human_action"
    if step_type in AUTOMATION_TYPES:
        return "automation"
    if step_type in BRANCH_TYPES:
        return "branch"
    return {
        "DECISION": "decision",
        "GOTO": "goto",
        "GOTO_DESTINATION": "goto_destination",
        "TERMINATE": "terminate",
        "WAIT": "wait",
        "SUB_FLOW": "sub_flow",
    }.get(step_type, "unknown")


Step = Annotated[
    Union[
        Annotated[HumanActionStep, Tag("human_action")],
        Annotated[DecisionStep, Tag("decision")],
        Annotated[BranchStep, Tag("branch")],
        Annotated[GotoStep, Tag("goto")],
        Annotated[GotoDestinationStep, Tag("goto_destination")],
        Annotated[TerminateStep, Tag("terminate")],
        Annotated[WaitStep, Tag("wait")],
        Annotated[SubFlowStep, Tag("sub_flow")],
        Annotated[AutomationStep, Tag("automation")],
        Annotated[UnknownStep, Tag("unknown")],
    ],
    Discriminator(_step_variant),
]


# ============================================================================
# Flow (root document)
# ============================================================================

class Flow(DocumentModel):
    """The root workflow document."""
    flow_id: Optional[str] = Field(default=None, alias="flowId")
    name: str
    steps: List[Step] = Field(default_factory=list)
    milestones: List[Milestone] = Field(default_factory=list)
    roles: List[Role] = Field(
        default_factory=list,
        validation_alias=AliasChoices("roles", "assigneePlaceholders"),
        serialization_alias="roles",
    )

    @field_validator("steps", "milestones", "roles", mode="before")
    @classmethod
    def coerce_collections(cls, v):
        return _coerce_list(v)

    def to_document(self) -> Dict[str, Any]:
        """JSON-ready dict using the camelCase wire names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


Path.model_rebuild()
Outcome.model_rebuild()
BranchStep.model_rebuild()
DecisionStep.model_rebuild()
Flow.model_rebuild()

step_adapter: TypeAdapter[Step] = TypeAdapter(Step)


def parse_step(data: Dict[str, Any]) -> Step:
    """Validate a raw step dict into its Step variant."""
    return step_adapter.validate_python(data)


# ============================================================================
# Shape helpers
# ============================================================================

def is_branch_step(step: Any) -> bool:
    return isinstance(step, BranchStep)


def child_containers(step: Any) -> List[Union[Path, Outcome]]:
    """The paths of a branch step or the outcomes of a decision step."""
    if isinstance(step, BranchStep):
        return list(step.paths)
    if isinstance(step, DecisionStep):
        return list(step.outcomes)
    return []


def iter_steps(steps: List[Step]) -> Iterator[Step]:
    """Depth-first walk over a step list and every nested path/outcome."""
    for step in steps:
        yield step
        for container in child_containers(step):
            yield from iter_steps(container.steps)
