"""
API Request/Response Models
===========================
Pydantic models for the REST surface. Wire names are camelCase.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from goalstake.transfer.schema import IdPolicy


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateGoalRequest(CamelModel):
    title: str = Field(..., min_length=1, max_length=500)


class UpdateTitleRequest(CamelModel):
    title: str = Field(..., min_length=1, max_length=500)


class AddStepRequest(CamelModel):
    title: str = Field(..., min_length=1, max_length=500)
    parent_path: List[str] = Field(
        default_factory=list,
        alias="parentPath",
        description="Step ids from the goal down to the parent; empty for a top-level step",
    )


class AddTodoRequest(CamelModel):
    task: str = Field(..., min_length=1, max_length=2000)
    path: List[str] = Field(default_factory=list, description="Step ids from the goal down to the owner")
    is_finished: bool = Field(False, alias="isFinished")
    weight: Optional[float] = Field(None, gt=0, allow_inf_nan=False)


class UpdateTodoRequest(CamelModel):
    path: List[str] = Field(default_factory=list)
    task: Optional[str] = Field(None, min_length=1, max_length=2000)
    is_finished: Optional[bool] = Field(None, alias="isFinished")
    weight: Optional[float] = Field(None, gt=0, allow_inf_nan=False)


class CreatedResponse(CamelModel):
    success: bool = True
    id: str


class DeletedResponse(CamelModel):
    success: bool = True
    deleted: bool


class CommitRequest(CamelModel):
    amount: int = Field(..., gt=0, description="Stake in whole currency units")
    origin: Optional[str] = Field(None, description="Return origin for the checkout redirect URLs")


class CommitResponse(CamelModel):
    url: str
    session_id: str = Field(..., serialization_alias="sessionId")


class ConfirmRequest(CamelModel):
    session_id: str = Field(..., min_length=1, alias="sessionId")


class RecomputeResponse(CamelModel):
    ratio: int
    category_ratio: int = Field(..., serialization_alias="categoryRatio")


class ImportRequest(CamelModel):
    goal_data: Dict[str, Any] = Field(..., alias="goalData")
    id_policy: Optional[IdPolicy] = Field(None, alias="idPolicy")


class GenerateRequest(CamelModel):
    prompt: str = Field(..., max_length=4000)

    @field_validator("prompt")
    @classmethod
    def validate_prompt(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Prompt cannot be empty or whitespace only")
        return v


class HealthResponse(CamelModel):
    status: str
    store_backend: str
    store_connected: bool
    timestamp: str
