"""
Component wiring. Everything the pipeline needs is built here once, at
process start, and handed down explicitly.
"""

from dataclasses import dataclass
from typing import Optional

from docenti import config
from docenti.services.exam_store import ExamStore
from docenti.services.extraction import TextExtractor
from docenti.services.job_queue import JobQueue
from docenti.services.llm import AIInferenceClient
from docenti.services.pipeline import ProcessService
from docenti.services.question_parser import QuestionParser
from docenti.services.reconciliation import AnswerReconciler
from docenti.services.scoring import Scorer
from docenti.services.storage import ArtifactStore
from docenti.services.task_worker import JobWorker
from docenti.services.transcript import TranscriptRenderer


@dataclass
class Container:
    service: ProcessService
    queue: JobQueue
    worker: JobWorker


def build_process_service(
    db,
    ai: Optional[AIInferenceClient] = None,
    extractor: Optional[TextExtractor] = None,
    artifacts: Optional[ArtifactStore] = None,
    tmp_dir: Optional[str] = None,
    queue: Optional[JobQueue] = None,
) -> ProcessService:
    """Build the pipeline on top of a Motor database; any component can be swapped in."""
    ai = ai or AIInferenceClient(api_key=config.get_llm_api_key(), model_name=config.GEMINI_MODEL)
    exams = ExamStore(db.exams)
    return ProcessService(
        queue=queue or JobQueue(db.jobs, lock_seconds=config.JOB_LOCK_SECONDS),
        exams=exams,
        extractor=extractor or TextExtractor(
            pdftotext_path=config.PDFTOTEXT_PATH,
            auto_install=config.PDFTOTEXT_AUTO_INSTALL,
        ),
        parser=QuestionParser(ai, exams),
        reconciler=AnswerReconciler(ai),
        scorer=Scorer(ai),
        renderer=TranscriptRenderer(),
        artifacts=artifacts or ArtifactStore(
            bucket=config.AWS_BUCKET_NAME,
            region=config.AWS_REGION,
            access_key_id=config.AWS_ACCESS_KEY_ID,
            secret_access_key=config.AWS_SECRET_ACCESS_KEY,
        ),
        tmp_dir=tmp_dir or config.UPLOAD_TMP_DIR,
        completed_retention_seconds=config.JOB_COMPLETED_RETENTION_SECONDS,
        failed_retention_seconds=config.JOB_FAILED_RETENTION_SECONDS,
    )


def build_container(db, **overrides) -> Container:
    service = build_process_service(db, **overrides)
    worker = JobWorker(
        service.queue,
        service.handlers(),
        concurrency=config.WORKER_CONCURRENCY,
        poll_interval=config.JOB_POLL_INTERVAL_SECONDS,
    )
    return Container(service=service, queue=service.queue, worker=worker)
