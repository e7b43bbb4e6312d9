"""
Submission scoring via the AI client.
"""

import re

from docenti.config import logger
from docenti.errors import BadInputError
from docenti.services.llm import AIInferenceClient

MARK_PROMPT = """You are an exam marker. You receive the raw text of a student's completed exam.
Mark the multiple-choice answers and return the total score in the form X/Y,
where X is the number of correct multiple-choice answers and Y is the number of multiple-choice questions.
Do not mark theory questions; only multiple-choice questions are scored.
Return ONLY X/Y. No explanations, no extra text."""


SCORE_RE = re.compile(r"^\s*(\d+)\s*/\s*(\d+)\s*$")


def normalize_score(text: str) -> str:
    """Validate an "X/Y" score and return it without whitespace."""
    match = SCORE_RE.match(text or "")
    if not match:
        raise BadInputError(f'Unexpected score format "{(text or "").strip()}"')
    return f"{match.group(1)}/{match.group(2)}"


def score_numerator(score: str) -> int:
    return int(normalize_score(score).split("/", 1)[0])


class Scorer:
    def __init__(self, ai: AIInferenceClient):
        self._ai = ai

    async def score(self, raw_text: str) -> str:
        response = await self._ai.generate([MARK_PROMPT, raw_text])
        score = normalize_score(response)
        logger.info(f"AI score: {score}")
        return score
