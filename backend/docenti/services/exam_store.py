"""
Exam document access for the pipeline.

Only `question_set`, `submissions` and `access` are written here, each through a
single-document update that leaves the other exam fields alone.
"""

from typing import List, Optional

from pydantic import ValidationError

from docenti.config import logger
from docenti.errors import DocentiError, NotFoundError
from docenti.models import ExamAccess, Invite, ParsedQuestion, Submission

UPSERT_RETRIES = 5


def upsert_submission(exam: dict, submission: Submission) -> str:
    """
    Replace the submission whose email matches case-insensitively in place,
    else append. Returns "updated" or "inserted".
    """
    record = submission.model_dump()
    submissions = exam.setdefault("submissions", [])
    for idx, existing in enumerate(submissions):
        if (existing.get("email") or "").lower() == submission.email:
            submissions[idx] = record
            return "updated"
    submissions.append(record)
    return "inserted"


def find_student_name(exam: dict, email: str) -> Optional[str]:
    """Look up a display name from the exam's invites (dicts or bare emails)."""
    email = email.lower()
    for raw in exam.get("invites") or []:
        if not isinstance(raw, dict):
            continue
        try:
            invite = Invite.model_validate(raw)
        except ValidationError:
            logger.warning(f"Skipping malformed invite on exam {exam.get('exam_key')}: {raw}")
            continue
        if invite.email.lower() == email:
            return invite.name
    return None


class ExamStore:
    """Motor-backed access to the `exams` collection."""

    def __init__(self, collection):
        self._exams = collection

    async def find_by_key(self, exam_key: str) -> Optional[dict]:
        return await self._exams.find_one({"exam_key": exam_key}, {"_id": 0})

    async def find_by_id(self, exam_id: str) -> Optional[dict]:
        return await self._exams.find_one({"exam_id": exam_id}, {"_id": 0})

    async def exists(self, exam_key: str) -> bool:
        return await self._exams.find_one({"exam_key": exam_key}, {"_id": 1}) is not None

    async def replace_question_set(self, exam_key: str, questions: List[ParsedQuestion]) -> bool:
        """Overwrite the whole question set (last writer wins)."""
        result = await self._exams.update_one(
            {"exam_key": exam_key},
            {"$set": {"question_set": [q.model_dump() for q in questions]}},
        )
        if result.matched_count:
            logger.info(f"Replaced question set for exam {exam_key} ({len(questions)} questions)")
        else:
            logger.warning(f"Exam {exam_key} not found; parsed questions were not stored")
        return bool(result.matched_count)

    async def upsert_submission(self, exam_key: str, submission: Submission) -> str:
        """
        Write one submission keyed by email, compared case-insensitively.

        The new list is computed from the stored one and written back only if
        the stored list is still unchanged, so concurrent or retried marks for
        the same student never produce a duplicate entry.
        """
        for _ in range(UPSERT_RETRIES):
            exam = await self._exams.find_one({"exam_key": exam_key}, {"_id": 0, "submissions": 1})
            if exam is None:
                raise NotFoundError(f"Exam {exam_key} not found")

            if "submissions" in exam:
                unchanged = {"exam_key": exam_key, "submissions": list(exam["submissions"])}
            else:
                unchanged = {"exam_key": exam_key, "submissions": {"$exists": False}}
            outcome = upsert_submission(exam, submission)

            result = await self._exams.update_one(unchanged, {"$set": {"submissions": exam["submissions"]}})
            if result.matched_count:
                logger.info(f"Submission for {submission.email} on exam {exam_key} {outcome}")
                return outcome
            logger.warning(f"Submissions of exam {exam_key} changed concurrently; retrying upsert")

        raise DocentiError(
            f"Could not store submission for {submission.email}: exam {exam_key} kept changing",
            details={"exam_key": exam_key},
        )

    async def set_access(self, exam_id: str, access: ExamAccess) -> bool:
        result = await self._exams.update_one(
            {"exam_id": exam_id}, {"$set": {"access": access.value}}
        )
        return bool(result.matched_count)

    async def open_if_scheduled(self, exam_id: str) -> bool:
        """Flip a SCHEDULED exam to OPEN; exams changed in the meantime are left alone."""
        result = await self._exams.update_one(
            {"exam_id": exam_id, "access": ExamAccess.SCHEDULED.value},
            {"$set": {"access": ExamAccess.OPEN.value}},
        )
        return bool(result.modified_count)
