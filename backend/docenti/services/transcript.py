"""
Transcript rendering - a per-student report of score, answers and correct answers.

The same rows feed two outputs: an HTML page (kept for browsers and uploaded
next to the PDF) and an A4 PDF built with reportlab.
"""

import html
import re
from dataclasses import dataclass
from io import BytesIO
from typing import Dict, List, Optional, Set

from reportlab.lib import colors
from reportlab.lib.enums import TA_LEFT, TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import HRFlowable, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from docenti.config import logger
from docenti.models import ExamMeta, ParsedQuestion, StudentAnswerEntry

NOT_AVAILABLE = "N/A"
SCORE_BLUE = colors.HexColor("#1a4d99")
ANSWER_RED = colors.HexColor("#d9534f")
CORRECT_GREEN = colors.HexColor("#5cb85c")
RULE_GREY = colors.HexColor("#dddddd")

_LETTER_PREFIX_RE = re.compile(r"^\(?([A-Za-z])\)?(?:[.):]\s*(.*))?$", re.DOTALL)


# ============== ANSWER ALIASES ==============

def _norm(value: str) -> str:
    return " ".join(value.split()).lower()


def answer_aliases(value: Optional[str], options: List[str]) -> Set[str]:
    """
    Every spelling an answer can take for a question: the text itself, the
    option text behind a letter, and the letter behind an option text.
    """
    aliases: Set[str] = set()
    if not value or not value.strip():
        return aliases
    text = value.strip()
    aliases.add(_norm(text))

    match = _LETTER_PREFIX_RE.match(text)
    if match:
        letter, rest = match.group(1).upper(), (match.group(2) or "").strip()
        if rest:
            aliases.add(_norm(rest))
        aliases.add(letter.lower())
        option_idx = ord(letter) - ord("A")
        if 0 <= option_idx < len(options):
            aliases.add(_norm(options[option_idx]))

    for option_idx, option in enumerate(options):
        if option_idx < 26 and _norm(option) in aliases:
            aliases.add(chr(ord("a") + option_idx))
    return aliases


def answers_match(entry: Optional[StudentAnswerEntry], question: ParsedQuestion) -> Optional[bool]:
    """None when the question has no known correct answer."""
    if question.correct_answer is None:
        return None
    if entry is None or entry.is_empty():
        return False
    expected = answer_aliases(question.correct_answer, question.options)
    given = answer_aliases(entry.answer, question.options) | answer_aliases(entry.choice, question.options)
    return bool(expected & given)


def display_answer(entry: Optional[StudentAnswerEntry]) -> str:
    if entry is None or entry.is_empty():
        return NOT_AVAILABLE
    if entry.choice and entry.answer:
        return f"{entry.choice}. {entry.answer}"
    return entry.answer or entry.choice


# ============== ROWS ==============

@dataclass
class TranscriptRow:
    number: int
    question: str
    student_answer: str
    correct_answer: str
    is_correct: Optional[bool]


def build_rows(questions: List[ParsedQuestion], answers: List[StudentAnswerEntry]) -> List[TranscriptRow]:
    by_index: Dict[int, StudentAnswerEntry] = {}
    for entry in answers:
        if entry.question_index is not None and entry.question_index not in by_index:
            by_index[entry.question_index] = entry

    rows = []
    for idx, question in enumerate(questions):
        entry = by_index.get(idx)
        rows.append(TranscriptRow(
            number=idx + 1,
            question=question.question_text,
            student_answer=display_answer(entry),
            correct_answer=question.correct_answer or NOT_AVAILABLE,
            is_correct=answers_match(entry, question),
        ))
    return rows


def summarize(rows: List[TranscriptRow]) -> Optional[str]:
    graded = [r for r in rows if r.is_correct is not None]
    if not graded:
        return None
    correct = sum(1 for r in graded if r.is_correct)
    return f"{correct}/{len(graded)} answers match the answer key ({round(100 * correct / len(graded))}%)"


# ============== RENDERER ==============

TRANSCRIPT_CSS = """
body { font-family: Arial, sans-serif; margin: 1cm; }
.header { display: flex; justify-content: space-between; align-items: center; }
.score { font-size: 22px; color: #1a4d99; font-weight: bold; }
.details { margin-top: 20px; }
.qa { margin-top: 15px; padding: 10px; border-bottom: 1px solid #ddd; }
.question { font-weight: 600; }
.choice { color: #d9534f; }
.correct { color: #5cb85c; }
"""


def _styles():
    styles = getSampleStyleSheet()
    styles.add(ParagraphStyle(
        name="TranscriptTitle",
        parent=styles["Heading2"],
        alignment=TA_LEFT,
        fontName="Helvetica-Bold",
    ))
    styles.add(ParagraphStyle(
        name="Score",
        parent=styles["Normal"],
        fontSize=16,
        leading=20,
        textColor=SCORE_BLUE,
        alignment=TA_RIGHT,
        fontName="Helvetica-Bold",
    ))
    styles.add(ParagraphStyle(
        name="Detail",
        parent=styles["Normal"],
        fontSize=10,
        spaceAfter=3,
    ))
    styles.add(ParagraphStyle(
        name="Question",
        parent=styles["Normal"],
        fontSize=11,
        leading=14,
        spaceBefore=10,
        spaceAfter=4,
        fontName="Helvetica-Bold",
    ))
    styles.add(ParagraphStyle(
        name="StudentAnswer",
        parent=styles["Normal"],
        fontSize=10,
        leftIndent=10,
        textColor=ANSWER_RED,
    ))
    styles.add(ParagraphStyle(
        name="CorrectAnswer",
        parent=styles["Normal"],
        fontSize=10,
        leftIndent=10,
        spaceAfter=6,
        textColor=CORRECT_GREEN,
    ))
    return styles


def _esc(value) -> str:
    return html.escape(str(value), quote=False)


class TranscriptRenderer:
    """Renders transcripts for marked submissions."""

    def _details(self, meta: ExamMeta) -> List[tuple]:
        details = [
            ("Student", f"{meta.student_email} ({meta.student_name or NOT_AVAILABLE})"),
            ("Exam Key", meta.exam_key),
            ("Date", meta.submitted_at[:10]),
            ("Time Spent", f"{meta.time_spent_seconds}s"),
        ]
        if meta.exam_name:
            details.insert(1, ("Exam", meta.exam_name))
        return details

    def build_html(
        self,
        meta: ExamMeta,
        score: str,
        questions: List[ParsedQuestion],
        answers: List[StudentAnswerEntry],
    ) -> str:
        rows = build_rows(questions, answers)
        details = "".join(
            f"<p><strong>{_esc(label)}:</strong> {_esc(value)}</p>"
            for label, value in self._details(meta)
        )
        summary = summarize(rows)
        if summary:
            details += f"<p><strong>Answer key:</strong> {_esc(summary)}</p>"
        blocks = "".join(
            f'<div class="qa"><p class="question">{row.number}. {_esc(row.question)}</p>'
            f'<p class="choice">Your answer: {_esc(row.student_answer)}</p>'
            f'<p class="correct">Correct answer: {_esc(row.correct_answer)}</p></div>'
            for row in rows
        )
        return (
            '<!DOCTYPE html><html><head><meta charset="UTF-8" />'
            f"<style>{TRANSCRIPT_CSS}</style></head><body>"
            '<div class="header"><h2>Exam Transcript</h2>'
            f'<div class="score">Score: {_esc(score)}</div></div>'
            f'<div class="details">{details}</div>'
            f"{blocks}</body></html>"
        )

    def render(
        self,
        meta: ExamMeta,
        score: str,
        questions: List[ParsedQuestion],
        answers: List[StudentAnswerEntry],
    ) -> bytes:
        """Build the A4 transcript PDF and return its bytes."""
        buffer = BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=1.5 * cm,
            leftMargin=1.5 * cm,
            topMargin=1.5 * cm,
            bottomMargin=1.5 * cm,
            title=f"Exam Transcript - {meta.exam_key}",
        )
        styles = _styles()
        rows = build_rows(questions, answers)
        story = []

        header = Table(
            [[Paragraph("Exam Transcript", styles["TranscriptTitle"]),
              Paragraph(f"Score: {_esc(score)}", styles["Score"])]],
            colWidths=[doc.width * 0.6, doc.width * 0.4],
        )
        header.setStyle(TableStyle([
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
            ("LEFTPADDING", (0, 0), (-1, -1), 0),
            ("RIGHTPADDING", (0, 0), (-1, -1), 0),
        ]))
        story.append(header)
        story.append(Spacer(1, 0.4 * cm))

        for label, value in self._details(meta):
            story.append(Paragraph(f"<b>{_esc(label)}:</b> {_esc(value)}", styles["Detail"]))
        summary = summarize(rows)
        if summary:
            story.append(Paragraph(f"<b>Answer key:</b> {_esc(summary)}", styles["Detail"]))

        for row in rows:
            story.append(Paragraph(f"{row.number}. {_esc(row.question)}", styles["Question"]))
            story.append(Paragraph(f"Your answer: {_esc(row.student_answer)}", styles["StudentAnswer"]))
            story.append(Paragraph(f"Correct answer: {_esc(row.correct_answer)}", styles["CorrectAnswer"]))
            story.append(HRFlowable(width="100%", thickness=0.5, color=RULE_GREY))

        doc.build(story)
        pdf_bytes = buffer.getvalue()
        logger.info(f"Rendered transcript for {meta.student_email} on {meta.exam_key} ({len(pdf_bytes)} bytes)")
        return pdf_bytes
