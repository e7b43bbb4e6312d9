"""
PDF processing pipeline - producer API and job handlers.

Producers (HTTP handlers) validate uploads, park them in the temp directory
and enqueue parse/mark jobs. The worker later runs the matching handler:

    parse: temp file -> text -> AI question parse -> exam.question_set
    mark:  temp file -> text -> answer reconciliation -> AI score
           -> transcript render -> upload -> exam.submissions

A job owns its temp file. The file is removed after the job's final attempt
(success, exhausted retries or a fatal config error) and kept while a retry
is still pending.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from docenti.config import logger
from docenti.errors import BadInputError, FatalConfigError, NotFoundError
from docenti.models import (
    BackoffPolicy,
    ExamAccess,
    ExamMeta,
    Job,
    JobInfo,
    JobKind,
    JobOptions,
    MarkJobPayload,
    OpenExamPayload,
    ParsedQuestion,
    ParseJobPayload,
    Submission,
)
from docenti.services.exam_store import ExamStore, find_student_name
from docenti.services.extraction import TextExtractor
from docenti.services.job_queue import JobQueue
from docenti.services.question_parser import QuestionParser
from docenti.services.reconciliation import AnswerReconciler
from docenti.services.scoring import Scorer, score_numerator
from docenti.services.storage import ArtifactStore
from docenti.services.task_worker import JobHandler
from docenti.services.transcript import TranscriptRenderer
from docenti.utils.file_utils import read_temp_file, remove_temp_file, save_temp_upload
from docenti.utils.validation import ensure_future, validate_email, validate_pdf_upload


def load_question_set(exam: dict) -> List[ParsedQuestion]:
    """Read the stored question set, skipping entries that no longer validate."""
    questions = []
    for idx, item in enumerate(exam.get("question_set") or []):
        try:
            questions.append(ParsedQuestion.model_validate(item))
        except ValueError as e:
            logger.warning(f"Skipping stored question {idx} for exam {exam.get('exam_key')}: {e}")
    return questions


class ProcessService:
    """Entry point for enqueueing PDF work and for running it in the worker."""

    def __init__(
        self,
        queue: JobQueue,
        exams: ExamStore,
        extractor: TextExtractor,
        parser: QuestionParser,
        reconciler: AnswerReconciler,
        scorer: Scorer,
        renderer: TranscriptRenderer,
        artifacts: ArtifactStore,
        tmp_dir: str,
        max_attempts: int = 3,
        backoff_delay_ms: int = 1000,
        completed_retention_seconds: Optional[int] = 3600,
        failed_retention_seconds: Optional[int] = 0,
    ):
        self.queue = queue
        self.exams = exams
        self.extractor = extractor
        self.parser = parser
        self.reconciler = reconciler
        self.scorer = scorer
        self.renderer = renderer
        self.artifacts = artifacts
        self.tmp_dir = tmp_dir
        self._max_attempts = max_attempts
        self._backoff = BackoffPolicy(type="exponential", delay_ms=backoff_delay_ms)
        self._completed_retention = completed_retention_seconds
        self._failed_retention = failed_retention_seconds

    def _pdf_job_options(self) -> JobOptions:
        return JobOptions(
            attempts=self._max_attempts,
            backoff=self._backoff,
            remove_on_complete=self._completed_retention,
            remove_on_fail=self._failed_retention,
        )

    # ============== PRODUCERS ==============

    async def enqueue_process_pdf(
        self,
        exam_key: str,
        file_bytes: bytes,
        filename: str = "exam.pdf",
        content_type: Optional[str] = None,
    ) -> Dict[str, str]:
        """Store an exam's master PDF and queue a parse job for it."""
        validate_pdf_upload(file_bytes, content_type)
        await asyncio.to_thread(self.extractor.ensure_fallback_tool)

        tmp_path = await save_temp_upload(file_bytes, filename, self.tmp_dir)
        payload = ParseJobPayload(temp_file_path=tmp_path, exam_key=exam_key)
        job = await self.queue.enqueue(JobKind.PARSE, payload.model_dump(), self._pdf_job_options())
        logger.info(f"📄 Parse job {job.id} queued for exam {exam_key}")
        return {"job_id": job.id}

    async def enqueue_mark_pdf(
        self,
        exam_key: str,
        email: str,
        student_answer: Optional[str],
        time_spent_seconds: int,
        file_bytes: bytes,
        filename: str = "submission.pdf",
        content_type: Optional[str] = None,
    ) -> Dict[str, str]:
        """Store a student's submission PDF and queue a mark job. The exam must exist."""
        email = validate_email(email)
        validate_pdf_upload(file_bytes, content_type)
        if not await self.exams.exists(exam_key):
            raise BadInputError("Exam not found", details={"exam_key": exam_key})
        await asyncio.to_thread(self.extractor.ensure_fallback_tool)

        tmp_path = await save_temp_upload(file_bytes, filename, self.tmp_dir)
        payload = MarkJobPayload(
            temp_file_path=tmp_path,
            exam_key=exam_key,
            student_email=email,
            student_answer=student_answer or "",
            time_spent_seconds=max(0, int(time_spent_seconds or 0)),
        )
        job = await self.queue.enqueue(JobKind.MARK, payload.model_dump(), self._pdf_job_options())
        logger.info(f"📝 Mark job {job.id} queued for {email} on exam {exam_key}")
        return {"job_id": job.id, "message": "Exam marking job queued successfully"}

    async def get_job_info(self, job_id: str) -> JobInfo:
        return await self.queue.get_status(job_id)

    async def schedule_exam(self, exam_id: str, start_at: datetime, now: Optional[datetime] = None) -> Dict[str, str]:
        """
        Mark an exam SCHEDULED and queue the job that opens it at start_at.
        The open job's id is the exam id, so rescheduling replaces the pending one.
        """
        now = now or datetime.now(timezone.utc)
        start_at = ensure_future(start_at, now=now)
        if await self.exams.find_by_id(exam_id) is None:
            raise NotFoundError("Exam not found", details={"exam_id": exam_id})

        await self.exams.set_access(exam_id, ExamAccess.SCHEDULED)
        await self.queue.cancel(exam_id)
        delay_ms = max(0, int((start_at - now).total_seconds() * 1000))
        await self.queue.enqueue(
            JobKind.OPEN_EXAM,
            OpenExamPayload(exam_id=exam_id).model_dump(),
            JobOptions(job_id=exam_id, delay_ms=delay_ms, remove_on_complete=0, remove_on_fail=0),
        )
        logger.info(f"⏰ Exam {exam_id} scheduled to open at {start_at.isoformat()}")
        return {"message": "Exam scheduled successfully", "start_at": start_at.isoformat()}

    # ============== JOB HANDLERS ==============

    @asynccontextmanager
    async def _owned_temp_file(self, job: Job, path: str):
        try:
            yield
        except FatalConfigError:
            await remove_temp_file(path)
            raise
        except Exception:
            if job.is_final_attempt:
                await remove_temp_file(path)
            else:
                logger.debug(f"Retaining {path} for retry")
            raise
        else:
            await remove_temp_file(path)

    async def _extract(self, path: str) -> str:
        pdf_bytes = await read_temp_file(path)
        text = (await self.extractor.extract_text(pdf_bytes)).strip()
        if not text:
            raise BadInputError("No text found in PDF")
        return text

    async def handle_parse(self, job: Job) -> Union[List[Dict[str, Any]], str]:
        payload = ParseJobPayload.model_validate(job.payload)
        async with self._owned_temp_file(job, payload.temp_file_path):
            text = await self._extract(payload.temp_file_path)
            parsed = await self.parser.parse(payload.exam_key, text)
        if isinstance(parsed, str):
            return parsed
        return [q.model_dump() for q in parsed]

    async def handle_mark(self, job: Job) -> str:
        payload = MarkJobPayload.model_validate(job.payload)
        async with self._owned_temp_file(job, payload.temp_file_path):
            exam = await self.exams.find_by_key(payload.exam_key)
            if exam is None:
                raise NotFoundError("Exam not found", details={"exam_key": payload.exam_key})

            text = await self._extract(payload.temp_file_path)
            questions = load_question_set(exam)
            answers = await self.reconciler.reconcile(payload.student_answer, text, questions)
            score = await self.scorer.score(text)

            submitted_at = datetime.now(timezone.utc).isoformat()
            meta = ExamMeta(
                exam_key=payload.exam_key,
                exam_name=exam.get("exam_name"),
                student_email=payload.student_email,
                student_name=find_student_name(exam, payload.student_email),
                time_spent_seconds=payload.time_spent_seconds,
                submitted_at=submitted_at,
            )
            pdf_bytes = await asyncio.to_thread(self.renderer.render, meta, score, questions, answers)
            page = self.renderer.build_html(meta, score, questions, answers)

            name = f"transcript-{payload.exam_key}-{payload.student_email}"
            transcript_url = await self.artifacts.upload(f"{name}.pdf", pdf_bytes)
            await self.artifacts.upload(f"{name}.html", page.encode("utf-8"), content_type="text/html; charset=utf-8")

            submission = Submission(
                email=payload.student_email,
                student_answer=payload.student_answer,
                score=score_numerator(score),
                transcript_url=transcript_url,
                time_submitted_at=submitted_at,
                time_spent_seconds=payload.time_spent_seconds,
            )
            await self.exams.upsert_submission(payload.exam_key, submission)

        logger.info(f"✅ Mark job {job.id} completed for {payload.student_email}: {score}")
        return score

    async def handle_open_exam(self, job: Job) -> bool:
        payload = OpenExamPayload.model_validate(job.payload)
        opened = await self.exams.open_if_scheduled(payload.exam_id)
        if opened:
            logger.info(f"🔓 Exam {payload.exam_id} is now open")
        else:
            logger.info(f"Exam {payload.exam_id} was no longer scheduled; left unchanged")
        return opened

    def handlers(self) -> Dict[JobKind, JobHandler]:
        return {
            JobKind.PARSE: self.handle_parse,
            JobKind.MARK: self.handle_mark,
            JobKind.OPEN_EXAM: self.handle_open_exam,
        }
