# /flowpilot/models/intents.py

from typing import List, Literal, Optional, TypedDict, Union
from pydantic import BaseModel, ConfigDict, Field

from flowpilot.models.flow import Flow
from flowpilot.models.operations import Operation


class IntentModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class ClarifyQuestion(IntentModel):
    """A question the AI needs answered before it can build the workflow."""
    id: str = Field(..., description="Stable question identifier")
    text: str = Field(..., description="Question shown to the user")


class SuggestedAction(IntentModel):
    """A follow-up the UI may offer after a conversational reply."""
    label: str = ""
    prompt: Optional[str] = None


class CreateIntent(IntentModel):
    mode: Literal["create"] = "create"
    workflow: Flow = Field(..., description="Complete workflow proposed by the AI")
    message: str = Field(default="Workflow created", description="Summary shown to the user")
    assumptions: List[str] = Field(default_factory=list)


class EditIntent(IntentModel):
    mode: Literal["edit"] = "edit"
    operations: List[Operation] = Field(..., description="Ordered patch operations")
    message: str = Field(default="Workflow updated", description="Summary shown to the user")
    assumptions: List[str] = Field(default_factory=list)


class ClarifyIntent(IntentModel):
    mode: Literal["clarify"] = "clarify"
    questions: List[ClarifyQuestion] = Field(..., min_length=1)
    context: str = ""


class RejectIntent(IntentModel):
    mode: Literal["reject"] = "reject"
    reason: str
    suggestion: str = ""


class RespondIntent(IntentModel):
    mode: Literal["respond"] = "respond"
    message: str = ""
    suggested_actions: List[SuggestedAction] = Field(default_factory=list, alias="suggestedActions")


Intent = Union[CreateIntent, EditIntent, ClarifyIntent, RejectIntent, RespondIntent]

INTENT_MODES = ("create", "edit", "clarify", "reject", "respond")


class ParseResult(TypedDict):
    """Result of parsing one raw AI response."""
    success: bool
    intent: Optional[Intent]
    errors: List[str]
    raw_content: str
