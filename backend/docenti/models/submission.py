"""Submission and student-answer models"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class Submission(BaseModel):
    """One graded attempt; unique per (exam, lower-cased email)"""
    email: str
    student_answer: str = ""
    score: int
    transcript_url: str
    time_submitted_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    time_spent_seconds: int = 0

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.strip().lower()


class StudentAnswerEntry(BaseModel):
    """A student's answer to one question, possibly partial"""
    question_index: Optional[int] = None  # 0-based; None when unresolved
    question_text: Optional[str] = None
    answer: Optional[str] = None  # free-text answer
    choice: Optional[str] = None  # single upper-case option letter
    raw_value: Any = None
    source: str = "structured"  # structured, text, ai

    def is_empty(self) -> bool:
        return not self.answer and not self.choice
