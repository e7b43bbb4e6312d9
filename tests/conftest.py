"""
Shared test fixtures: in-memory Mongo, a controllable clock, scripted AI and
S3 stand-ins, and a tiny PDF builder.
"""

from typing import Dict, List, Optional

import fitz
import pytest
from mongomock_motor import AsyncMongoMockClient

from docenti.models import ParsedQuestion
from docenti.services.exam_store import ExamStore
from docenti.services.extraction import TextExtractor
from docenti.services.job_queue import JobQueue
from docenti.services.pipeline import ProcessService
from docenti.services.question_parser import QuestionParser
from docenti.services.reconciliation import AnswerReconciler
from docenti.services.scoring import Scorer
from docenti.services.storage import ArtifactStore
from docenti.services.transcript import TranscriptRenderer

START_MS = 1_700_000_000_000


class FakeClock:
    """Epoch-ms clock the tests move by hand."""

    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


class FakeAI:
    """
    Scripted stand-in for AIInferenceClient.

    Responses keyed by prompt (the first prompt part) win; otherwise the
    positional responses are consumed in order. Exceptions are raised.
    """

    def __init__(self, *responses, by_prompt: Optional[Dict[str, object]] = None):
        self.responses = list(responses)
        self.by_prompt = by_prompt or {}
        self.calls: List[List[str]] = []

    async def generate(self, prompt_parts):
        self.calls.append(list(prompt_parts))
        if prompt_parts and prompt_parts[0] in self.by_prompt:
            response = self.by_prompt[prompt_parts[0]]
        elif self.responses:
            response = self.responses.pop(0)
        else:
            raise RuntimeError("FakeAI has no scripted response")
        if isinstance(response, Exception):
            raise response
        return response

    def calls_for(self, prompt: str) -> List[List[str]]:
        return [c for c in self.calls if c and c[0] == prompt]


class FakeS3Client:
    """Records put_object calls like a boto3 S3 client would receive them."""

    def __init__(self, error: Optional[Exception] = None):
        self.objects: Dict[str, dict] = {}
        self.error = error

    def put_object(self, **kwargs):
        if self.error is not None:
            raise self.error
        self.objects[kwargs["Key"]] = kwargs
        return {"ETag": '"fake"'}


def make_pdf(text: str) -> bytes:
    """One-page PDF whose text layer holds `text`, one line per line."""
    doc = fitz.open()
    page = doc.new_page()
    y = 72
    for line in text.split("\n"):
        page.insert_text((72, y), line, fontsize=11)
        y += 16
    data = doc.tobytes()
    doc.close()
    return data


def blank_pdf() -> bytes:
    doc = fitz.open()
    doc.new_page()
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def db():
    return AsyncMongoMockClient()["docenti_test"]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def queue(db, clock):
    job_queue = JobQueue(db.jobs, lock_seconds=300, clock=clock)
    await job_queue.ensure_indexes()
    return job_queue


@pytest.fixture
def exams(db):
    return ExamStore(db.exams)


@pytest.fixture
def s3_client():
    return FakeS3Client()


@pytest.fixture
def artifacts(s3_client):
    return ArtifactStore(bucket="docenti-test", region="eu-west-1", client=s3_client)


@pytest.fixture
def extractor():
    # Fallback tool treated as present; tests that need it patch _run_pdftotext
    text_extractor = TextExtractor(auto_install=False, retry_delay=0)
    text_extractor._tool_checked = True
    return text_extractor


@pytest.fixture
def math_question():
    return ParsedQuestion(type="multiple-choice", question="What is 2+2?", options=["1", "4"], answer="4")


@pytest.fixture
def sample_exam(math_question):
    return {
        "exam_id": "exam-1",
        "exam_key": "MATH101",
        "exam_name": "Arithmetic",
        "access": "private",
        "invites": [{"email": "ada@example.com", "name": "Ada Lovelace"}],
        "question_set": [math_question.model_dump()],
        "submissions": [],
    }


def build_service(db, queue, ai, extractor, artifacts, tmp_dir) -> ProcessService:
    exam_store = ExamStore(db.exams)
    return ProcessService(
        queue=queue,
        exams=exam_store,
        extractor=extractor,
        parser=QuestionParser(ai, exam_store),
        reconciler=AnswerReconciler(ai),
        scorer=Scorer(ai),
        renderer=TranscriptRenderer(),
        artifacts=artifacts,
        tmp_dir=str(tmp_dir),
        backoff_delay_ms=1000,
        completed_retention_seconds=3600,
        failed_retention_seconds=0,
    )
