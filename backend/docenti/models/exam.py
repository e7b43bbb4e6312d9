"""Exam-related Pydantic models (the parts of the exam document the pipeline touches)"""

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ExamAccess(str, Enum):
    OPEN = "open"
    PRIVATE = "private"
    RESTRICTED = "restricted"
    SCHEDULED = "scheduled"


class ParsedQuestion(BaseModel):
    """One question extracted from an exam's master PDF"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: Literal["multiple-choice", "theory"]
    question_text: str = Field(alias="question")
    options: List[str] = []
    correct_answer: Optional[str] = Field(default=None, alias="answer")

    @field_validator("question_text")
    @classmethod
    def strip_question(cls, value: str) -> str:
        return value.strip()

    @field_validator("options", mode="before")
    @classmethod
    def clean_options(cls, value):
        if value is None:
            return []
        if not isinstance(value, list):
            value = [value]
        return [str(opt).strip() for opt in value if opt is not None and str(opt).strip()]

    @field_validator("correct_answer", mode="before")
    @classmethod
    def clean_answer(cls, value):
        if value is None:
            return None
        value = str(value).strip()
        return value or None


class Invite(BaseModel):
    """Invited student; older exam documents store bare email strings"""
    email: str
    name: Optional[str] = None


class ExamMeta(BaseModel):
    """Header data for a rendered transcript"""
    exam_key: str
    exam_name: Optional[str] = None
    student_email: str
    student_name: Optional[str] = None
    time_spent_seconds: int = 0
    submitted_at: str


class ScheduleExamRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_at: datetime = Field(alias="startAt")
