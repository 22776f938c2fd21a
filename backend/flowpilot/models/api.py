# /flowpilot/models/api.py

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, Optional
from datetime import datetime, timezone

# Request and response bodies for the HTTP layer.

class APIResponse(BaseModel):
    success: bool
    message: str
    data: Optional[Dict] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: str

class CreateSessionRequest(BaseModel):
    workflow: Optional[Dict[str, Any]] = Field(default=None, description="Optional initial workflow document")

class ProcessResponseRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str = Field(..., min_length=1, description="Raw model output, optionally with prose around the JSON")
    preview: bool = Field(default=False, description="Stage create/edit results as a pending plan instead of committing")
    expected_version: Optional[int] = Field(default=None, alias="expectedVersion", ge=0)
