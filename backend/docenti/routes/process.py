"""Processing routes - queue exam parsing and submission marking, job status."""

from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile

from docenti.config import logger
from docenti.deps import get_process_service, raise_http
from docenti.services.pipeline import ProcessService

router = APIRouter(prefix="/process", tags=["process"])


@router.post("/{exam_key}")
async def process_exam_pdf(
    exam_key: str,
    file: Optional[UploadFile] = File(None),
    service: ProcessService = Depends(get_process_service),
):
    """Upload an exam's master PDF and queue question extraction"""
    try:
        file_bytes = await file.read() if file else b""
        return await service.enqueue_process_pdf(
            exam_key,
            file_bytes,
            filename=file.filename if file else "exam.pdf",
            content_type=file.content_type if file else None,
        )
    except Exception as e:
        logger.error(f"Error queueing parse for exam {exam_key}: {e}")
        raise_http(e)


@router.post("/mark/{exam_key}")
async def mark_exam_pdf(
    exam_key: str,
    email: str = Query(...),
    student_answer: Optional[str] = Query(None, alias="studentAnswer"),
    time_spent: int = Query(0, alias="timeSpent", ge=0),
    file: Optional[UploadFile] = File(None),
    service: ProcessService = Depends(get_process_service),
):
    """Upload a student's submission PDF and queue marking"""
    try:
        file_bytes = await file.read() if file else b""
        return await service.enqueue_mark_pdf(
            exam_key,
            email,
            student_answer,
            time_spent,
            file_bytes,
            filename=file.filename if file else "submission.pdf",
            content_type=file.content_type if file else None,
        )
    except Exception as e:
        logger.error(f"Error queueing mark for exam {exam_key}: {e}")
        raise_http(e)


@router.get("/job/{job_id}")
async def get_job(job_id: str, service: ProcessService = Depends(get_process_service)):
    """Current state of a parse/mark job"""
    try:
        info = await service.get_job_info(job_id)
        return info.model_dump(mode="json")
    except Exception as e:
        raise_http(e)
