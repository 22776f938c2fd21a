# /flowpilot/config/step_registry.py

"""
Catalogue of step kinds the platform knows about.

Pure data: each step type maps to its category. The workflow validator uses
this to decide whether a step type is recognized, and the document model uses
the grouped sets to pick the right step variant.
"""

from typing import Dict, FrozenSet

HUMAN_ACTION = "HUMAN_ACTION"
CONTROL = "CONTROL"
AUTOMATION = "AUTOMATION"

BRANCH_TYPES: FrozenSet[str] = frozenset({
    "SINGLE_CHOICE_BRANCH",
    "MULTI_CHOICE_BRANCH",
    "PARALLEL_BRANCH",
})

HUMAN_ACTION_TYPES: FrozenSet[str] = frozenset({
    "FORM",
    "QUESTIONNAIRE",
    "FILE_REQUEST",
    "TODO",
    "APPROVAL",
    "ACKNOWLEDGEMENT",
    "ESIGN",
    "CUSTOM_ACTION",
    "WEB_APP",
    "PDF_FORM",
})

AUTOMATION_TYPES: FrozenSet[str] = frozenset({
    "AI_CUSTOM_PROMPT",
    "AI_EXTRACT",
    "AI_SUMMARIZE",
    "AI_TRANSCRIBE",
    "AI_TRANSLATE",
    "AI_WRITE",
    "SYSTEM_WEBHOOK",
    "SYSTEM_EMAIL",
    "SYSTEM_CHAT_MESSAGE",
    "SYSTEM_UPDATE_WORKSPACE",
    "BUSINESS_RULE",
    "INTEGRATION_AIRTABLE",
    "INTEGRATION_CLICKUP",
    "INTEGRATION_DROPBOX",
    "INTEGRATION_GMAIL",
    "INTEGRATION_GOOGLE_DRIVE",
    "INTEGRATION_GOOGLE_SHEETS",
    "INTEGRATION_WRIKE",
})

# GOTO jumps back to a destination on the main path; it never opens a phase of
# its own, so it is exempt from milestone assignment.
NO_PHASE_TYPES: FrozenSet[str] = frozenset({"GOTO"})

# Containers a GOTO or TERMINATE step may live inside
JUMP_CONTAINER_TYPES: FrozenSet[str] = frozenset({"DECISION", "SINGLE_CHOICE_BRANCH"})

TERMINATE_STATUSES: FrozenSet[str] = frozenset({"COMPLETED", "CANCELLED"})

CONDITION_TYPES: FrozenSet[str] = frozenset({
    "EQUALS",
    "NOT_EQUALS",
    "CONTAINS",
    "NOT_CONTAINS",
    "NOT_EMPTY",
    "ELSE",
})

CONDITION_LOGIC: FrozenSet[str] = frozenset({"ALL", "ANY"})

STEP_REGISTRY: Dict[str, str] = {
    **{step_type: HUMAN_ACTION for step_type in HUMAN_ACTION_TYPES},
    "DECISION": HUMAN_ACTION,
    **{step_type: CONTROL for step_type in BRANCH_TYPES},
    "GOTO": CONTROL,
    "GOTO_DESTINATION": CONTROL,
    "TERMINATE": CONTROL,
    "WAIT": CONTROL,
    "SUB_FLOW": CONTROL,
    **{step_type: AUTOMATION for step_type in AUTOMATION_TYPES},
}


def is_known_step_type(step_type: str) -> bool:
    return step_type in STEP_REGISTRY


def get_step_category(step_type: str) -> str | None:
    return STEP_REGISTRY.get(step_type)
