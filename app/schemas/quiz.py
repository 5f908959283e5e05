from pydantic import BaseModel, Field, field_validator
from typing import Optional

from app.roles import RoleType

class QuizOptionOut(BaseModel):
    id: int
    option_text: str
    order_index: int

    model_config = {"from_attributes": True}

class QuizQuestionOut(BaseModel):
    id: int
    question_text: str
    order_index: int
    options: list[QuizOptionOut]

    model_config = {"from_attributes": True}

class QuizSubmitRequest(BaseModel):
    answers: dict[int, int]  # {question_id: option_id}

class ProfileSummary(BaseModel):
    user_id: int
    quiz_status: str  # NOT_STARTED/IN_PROGRESS/COMPLETED/SKIPPED
    reliability_percentage: float
    requires_onboarding: bool
    answered_questions: int
    total_questions: int
    message: str

# ── Admin ─────────────────────────────────────────────────────────────────

class QuizOptionAdmin(QuizOptionOut):
    role_weights: dict[str, float]

class QuizQuestionAdmin(BaseModel):
    id: int
    question_text: str
    order_index: int
    active: bool
    options: list[QuizOptionAdmin]

    model_config = {"from_attributes": True}

class QuizOptionCreate(BaseModel):
    option_text: str = Field(min_length=1)
    role_weights: dict[str, float]

    @field_validator("role_weights")
    @classmethod
    def validate_roles(cls, v: dict[str, float]) -> dict[str, float]:
        for key in v:
            if key not in RoleType.__members__:
                raise ValueError(f"Unknown role '{key}'")
        return v

class QuizQuestionCreate(BaseModel):
    question_text: str = Field(min_length=1)
    order_index: Optional[int] = None
    options: list[QuizOptionCreate] = Field(min_length=2)

class QuizOptionWrite(QuizOptionCreate):
    """Option entry of a question update, matched on order_index."""
    order_index: int = Field(ge=0)

class QuizQuestionUpdate(BaseModel):
    question_text: Optional[str] = Field(None, min_length=1)
    order_index: Optional[int] = None
    active: Optional[bool] = None
    options: Optional[list[QuizOptionWrite]] = Field(None, min_length=2)

class QuizOptionUpdate(BaseModel):
    option_text: Optional[str] = Field(None, min_length=1)
    order_index: Optional[int] = Field(None, ge=0)
    role_weights: Optional[dict[str, float]] = None

    @field_validator("role_weights")
    @classmethod
    def validate_roles(cls, v: Optional[dict[str, float]]) -> Optional[dict[str, float]]:
        if v is None:
            return v
        for key in v:
            if key not in RoleType.__members__:
                raise ValueError(f"Unknown role '{key}'")
        return v
