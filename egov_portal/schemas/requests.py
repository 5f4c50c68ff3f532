from typing import Literal, Optional

from pydantic import BaseModel, Field


class DecisionRequest(BaseModel):
    status: Literal["approved", "rejected"]
    officer_notes: Optional[str] = None
    reason: Optional[str] = None


class AssignRequest(BaseModel):
    officer_id: str


class ReopenRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=2000)
