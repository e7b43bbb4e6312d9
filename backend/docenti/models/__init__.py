"""Pydantic models for the Docenti processing pipeline"""

from .exam import ExamAccess, ParsedQuestion, Invite, ExamMeta, ScheduleExamRequest
from .submission import Submission, StudentAnswerEntry
from .job import (
    JobKind,
    JobState,
    BackoffPolicy,
    JobOptions,
    Job,
    JobInfo,
    ParseJobPayload,
    MarkJobPayload,
    OpenExamPayload,
)
