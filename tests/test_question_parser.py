"""Question parsing from AI output, including degraded responses."""

from conftest import FakeAI
from docenti.models import ParsedQuestion
from docenti.services.question_parser import PARSE_PROMPT, QuestionParser, normalize_questions
from docenti.utils.serialization import clean_ai_json

FENCED = """```json
[
  {"type": "multiple-choice", "question": " What is 2+2? ", "options": ["1", "4", ""], "answer": "4"},
,
  {"type": "theory", "question": "Explain gravity.", "options": [], "answer": ""}
]
```"""


def test_clean_ai_json_strips_fences_and_comma_lines():
    cleaned = clean_ai_json(FENCED)
    assert not cleaned.startswith("```")
    assert "\n,\n" not in cleaned


class TestNormalizeQuestions:
    def test_key_variants_and_type_inference(self):
        questions = normalize_questions([
            {"questionText": "Capital of France?", "options": ["Paris", "Rome"], "correctAnswer": "Paris"},
            {"question_text": "Define entropy.", "correct_answer": None},
        ])

        assert questions[0].type == "multiple-choice"
        assert questions[0].correct_answer == "Paris"
        assert questions[1].type == "theory"
        assert questions[1].correct_answer is None

    def test_wrapped_object_is_unwrapped(self):
        questions = normalize_questions({"questions": [{"question": "Q?", "options": []}]})
        assert [q.question_text for q in questions] == ["Q?"]

    def test_items_without_text_are_skipped(self):
        assert normalize_questions([{"options": ["a"]}, "junk", {"question": "  "}]) == []


class TestQuestionParser:
    async def test_parse_replaces_question_set(self, exams, db, sample_exam):
        await db.exams.insert_one(sample_exam)
        ai = FakeAI(FENCED)

        questions = await QuestionParser(ai, exams).parse("MATH101", "raw exam text")

        assert ai.calls == [[PARSE_PROMPT, "raw exam text"]]
        assert questions[0] == ParsedQuestion(
            type="multiple-choice", question="What is 2+2?", options=["1", "4"], answer="4"
        )
        assert questions[1].correct_answer is None

        stored = await exams.find_by_key("MATH101")
        assert [q["question_text"] for q in stored["question_set"]] == ["What is 2+2?", "Explain gravity."]

    async def test_non_json_output_is_returned_raw_and_not_stored(self, exams, db, sample_exam):
        await db.exams.insert_one(sample_exam)

        result = await QuestionParser(FakeAI("not json"), exams).parse("MATH101", "raw")

        assert result == "not json"
        stored = await exams.find_by_key("MATH101")
        assert stored["question_set"] == sample_exam["question_set"]

    async def test_json_scalar_is_treated_as_degraded(self, exams, db, sample_exam):
        await db.exams.insert_one(sample_exam)

        assert await QuestionParser(FakeAI("42"), exams).parse("MATH101", "raw") == "42"
        assert (await exams.find_by_key("MATH101"))["question_set"] == sample_exam["question_set"]

    async def test_empty_array_clears_question_set(self, exams, db, sample_exam):
        await db.exams.insert_one(sample_exam)

        assert await QuestionParser(FakeAI("[]"), exams).parse("MATH101", "raw") == []
        assert (await exams.find_by_key("MATH101"))["question_set"] == []
