"""Exam routes - scheduling."""

from fastapi import APIRouter, Depends

from docenti.config import logger
from docenti.deps import get_process_service, raise_http
from docenti.models import ScheduleExamRequest
from docenti.services.pipeline import ProcessService

router = APIRouter(tags=["exams"])


@router.post("/exams/{exam_id}/schedule")
async def schedule_exam(
    exam_id: str,
    body: ScheduleExamRequest,
    service: ProcessService = Depends(get_process_service),
):
    """Open the exam automatically at startAt; replaces any earlier schedule"""
    try:
        result = await service.schedule_exam(exam_id, body.start_at)
        return {"message": result["message"], "startAt": result["start_at"]}
    except Exception as e:
        logger.error(f"Error scheduling exam {exam_id}: {e}")
        raise_http(e)
