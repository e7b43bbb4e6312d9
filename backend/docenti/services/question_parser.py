"""
Question set extraction from an exam's master PDF text.
"""

from typing import Any, List, Optional, Union

from pydantic import ValidationError

from docenti.config import logger
from docenti.models import ParsedQuestion
from docenti.services.exam_store import ExamStore
from docenti.services.llm import AIInferenceClient
from docenti.utils.serialization import clean_ai_json, loads_or_raw

PARSE_PROMPT = """You are an exam PDF parser. You receive raw text extracted from an exam PDF.
Return a JSON array where every element is an object of this shape:
{
  "type": "multiple-choice" | "theory",
  "question": "<exact question text>",
  "options": ["<option 1>", "<option 2>", ...],
  "answer": "<exact answer text>"
}
Rules:
- Detect the question type accurately.
- Copy question, option and answer text exactly; do not paraphrase.
- Theory questions only carry an "answer" when it appears verbatim in the source.
- Trim surrounding whitespace and drop duplicated options.
- Return an empty array when there are no questions.
Return ONLY the JSON array, without markdown fences or any other text."""

_QUESTION_KEYS = ("question", "questionText", "question_text", "text")
_ANSWER_KEYS = ("answer", "correctAnswer", "correct_answer")


def _first(item: dict, keys) -> Any:
    for key in keys:
        if item.get(key) not in (None, ""):
            return item[key]
    return None


def normalize_questions(data: Any) -> List[ParsedQuestion]:
    """Coerce decoded AI output into ParsedQuestion records, skipping unusable items."""
    if isinstance(data, dict):
        data = data["questions"] if isinstance(data.get("questions"), list) else [data]
    if not isinstance(data, list):
        return []

    questions = []
    for idx, item in enumerate(data):
        if not isinstance(item, dict):
            logger.warning(f"Skipping non-object question at index {idx}")
            continue
        text = _first(item, _QUESTION_KEYS)
        if not text or not str(text).strip():
            logger.warning(f"Skipping question at index {idx} with no text")
            continue
        options = item.get("options") or []
        q_type = item.get("type")
        if q_type not in ("multiple-choice", "theory"):
            q_type = "multiple-choice" if options else "theory"
        try:
            questions.append(ParsedQuestion(
                type=q_type,
                question=str(text),
                options=options,
                answer=_first(item, _ANSWER_KEYS),
            ))
        except ValidationError as e:
            logger.warning(f"Skipping invalid question at index {idx}: {e}")
    return questions


class QuestionParser:
    """Turns raw exam text into a question set via the AI client and stores it."""

    def __init__(self, ai: AIInferenceClient, exams: Optional[ExamStore] = None):
        self._ai = ai
        self._exams = exams

    async def parse(self, exam_key: Optional[str], raw_text: str) -> Union[List[ParsedQuestion], str]:
        """
        Ask the model for the exam's questions.

        Returns the normalized question list, or the cleaned response text
        unchanged when the model did not return JSON. Only a decoded list
        replaces the exam's question set.
        """
        response = await self._ai.generate([PARSE_PROMPT, raw_text])
        cleaned = clean_ai_json(response)
        decoded = loads_or_raw(cleaned)

        if not isinstance(decoded, (list, dict)):
            logger.warning(f"AI returned non-JSON output for exam {exam_key}; returning raw")
            return cleaned

        questions = normalize_questions(decoded)
        logger.info(f"Parsed {len(questions)} questions for exam {exam_key}")
        if exam_key and self._exams is not None:
            await self._exams.replace_question_set(exam_key, questions)
        return questions
