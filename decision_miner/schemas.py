"""
Request bodies for the HTTP API.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DecisionEdits(BaseModel):
    """Editable decision content. Unset fields are left unchanged."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    context: Optional[str] = None
    decision: Optional[str] = Field(default=None, min_length=1)
    reasoning: Optional[str] = None
    consequences: Optional[str] = None
    alternatives: Optional[str] = None
    tags: Optional[List[str]] = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude_none=True)


class ApproveRequest(BaseModel):
    """Optional edits applied while approving a candidate."""

    model_config = ConfigDict(extra="forbid")

    edits: Optional[DecisionEdits] = None


class DismissRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(..., description="One of the dismiss reasons")
    note: Optional[str] = Field(default=None, max_length=500)
