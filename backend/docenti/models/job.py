"""Job queue models"""

from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


class JobKind(str, Enum):
    PARSE = "parse"
    MARK = "mark"
    OPEN_EXAM = "open-exam"


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class BackoffPolicy(BaseModel):
    type: Literal["exponential", "fixed"] = "exponential"
    delay_ms: int = 1000

    def delay_for(self, attempts_made: int) -> int:
        """Delay before the next attempt, given how many attempts already failed."""
        if attempts_made <= 0:
            return 0
        if self.type == "fixed":
            return self.delay_ms
        return self.delay_ms * (2 ** (attempts_made - 1))


class JobOptions(BaseModel):
    job_id: Optional[str] = None  # system-assigned when omitted
    attempts: int = 1
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    delay_ms: int = 0
    remove_on_complete: Optional[int] = None  # seconds to retain; None keeps forever
    remove_on_fail: Optional[int] = None


class Job(BaseModel):
    id: str
    kind: JobKind
    payload: Dict[str, Any] = {}
    attempts_made: int = 0
    max_attempts: int = 1
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    state: JobState = JobState.WAITING
    result: Any = None
    failure_reason: Optional[str] = None
    progress: int = 0
    created_at: int = 0  # epoch ms
    run_at: int = 0
    processed_on: Optional[int] = None
    finished_on: Optional[int] = None
    lock_until: Optional[int] = None
    expire_at: Optional[int] = None
    remove_on_complete: Optional[int] = None
    remove_on_fail: Optional[int] = None

    @property
    def is_final_attempt(self) -> bool:
        """True while the running attempt is the last one the queue will make."""
        return self.attempts_made + 1 >= self.max_attempts

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "Job":
        data = {k: v for k, v in doc.items() if k not in ("_id", "job_id")}
        return cls(id=doc["job_id"], **data)

    def to_doc(self) -> Dict[str, Any]:
        doc = self.model_dump(mode="json", exclude={"id"})
        doc["job_id"] = self.id
        return doc


class JobInfo(BaseModel):
    id: str
    kind: JobKind
    state: JobState
    progress: int
    attempts_made: int
    processed_at: Optional[int] = None
    finished_at: Optional[int] = None
    result: Any = None
    failure_reason: Optional[str] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobInfo":
        return cls(
            id=job.id,
            kind=job.kind,
            state=job.state,
            progress=job.progress,
            attempts_made=job.attempts_made,
            processed_at=job.processed_on,
            finished_at=job.finished_on,
            result=job.result,
            failure_reason=job.failure_reason,
        )


class ParseJobPayload(BaseModel):
    temp_file_path: str
    exam_key: str


class MarkJobPayload(BaseModel):
    temp_file_path: str
    exam_key: str
    student_email: str
    student_answer: str = ""
    time_spent_seconds: int = 0


class OpenExamPayload(BaseModel):
    exam_id: str
