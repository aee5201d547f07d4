"""
Goal tree transfer document (pydantic v2).

Wire format:

    {
      "id": "...", "title": "...", "ratio": 40,
      "steps": [{"id": "...", "title": "...", "steps": [...], "todos": [...]}],
      "todos": [{"id": "...", "task": "...", "isFinished": false, "weight": 1}]
    }

``steps`` is always present on export; ``todos`` only when non-empty. On
import both may be absent or null.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator


class IdPolicy(str, Enum):
    """How imported ids are assigned."""
    REGENERATE = "regenerate"
    PRESERVE = "preserve"


def _not_blank(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be blank")
    return value


Text = Annotated[str, Field(min_length=1), AfterValidator(_not_blank)]


class TransferTodo(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    task: Text
    is_finished: bool = Field(False, alias="isFinished")
    weight: Optional[float] = Field(None, gt=0, allow_inf_nan=False)


class TransferStep(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    title: Text
    steps: List["TransferStep"] = Field(default_factory=list)
    todos: List[TransferTodo] = Field(default_factory=list)

    @field_validator("steps", "todos", mode="before")
    @classmethod
    def none_as_empty(cls, value):
        return [] if value is None else value


class TransferGoal(BaseModel):
    """Root of a transfer document."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    title: Text
    ratio: int = Field(..., ge=0, le=100)
    steps: List[TransferStep] = Field(default_factory=list)
    todos: List[TransferTodo] = Field(default_factory=list)

    @field_validator("steps", "todos", mode="before")
    @classmethod
    def none_as_empty(cls, value):
        return [] if value is None else value

    def node_count(self) -> int:
        count = len(self.todos)
        stack = list(self.steps)
        while stack:
            step = stack.pop()
            count += 1 + len(step.todos)
            stack.extend(step.steps)
        return count


TransferStep.model_rebuild()
