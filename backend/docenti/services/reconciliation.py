"""
Student answer reconciliation.

A marked submission can tell us what the student answered in up to three ways:
the structured answer payload sent by the exam client, answer labels and
ticked boxes found in the submission's own text, and answers the model reads
out of that text. Each source is normalized into StudentAnswerEntry records,
then merged per question so that a filled field is never blanked by a later,
emptier source.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from docenti.config import logger
from docenti.models import ParsedQuestion, StudentAnswerEntry
from docenti.services.llm import AIInferenceClient
from docenti.utils.serialization import clean_ai_json, loads_or_raw

ANSWER_PROMPT = """You read a student's completed exam submission as raw text extracted from a PDF.
You also receive the exam's question list as JSON with 0-based indexes.
For every question the student answered, return an object:
{"index": <question index>, "question": "<question text>", "answer": "<the student's answer text>", "choice": "<option letter, or empty>"}
Copy the student's answer exactly. Skip questions without an answer.
Return ONLY a JSON array, without markdown fences or any other text."""

ANSWER_KEYS = (
    "answer", "response", "value", "text", "selectedOption", "selected_option",
    "selectedAnswer", "selected_answer", "studentAnswer", "student_answer",
    "answerText", "answer_text",
)
CHOICE_KEYS = ("choice", "letter", "selectedLetter", "choiceLetter", "choice_letter", "option")
OPTION_INDEX_KEYS = ("optionIndex", "option_index", "selectedIndex", "selected_index")
INDEX_KEYS = ("index", "questionIndex", "question_index", "idx")
NUMBER_KEYS = ("questionNumber", "question_number", "number")  # 1-based
QUESTION_KEYS = ("question", "questionText", "question_text")
ENTRY_KEYS = set(ANSWER_KEYS + CHOICE_KEYS + OPTION_INDEX_KEYS + INDEX_KEYS + NUMBER_KEYS + QUESTION_KEYS)

LETTER_RE = re.compile(r"^\(?([A-Za-z])\)?[.):]?$")
LETTER_PREFIX_RE = re.compile(r"^\(?([A-Za-z])\)?[.):]\s+(.+)$", re.DOTALL)
QUESTION_MARKER_RE = re.compile(
    r"(?:\b(?:question|q)\.?[ \t]*(\d{1,3})[ \t]*[).:\-]?|^[ \t]*(\d{1,3})[ \t]*[).])[ \t]*",
    re.IGNORECASE | re.MULTILINE,
)
ANSWER_LABEL_RE = re.compile(r"\b(?:answer|ans)\b[ \t]*[:\-][ \t]*", re.IGNORECASE)
CHECKED_BOX_RE = re.compile(r"[\[(][ \t]*[xX✓✔*][ \t]*[\])][ \t]*\(?([A-Za-z])\)?[.)][ \t]*([^\n]*)")
INLINE_OPTION_RE = re.compile(r"\s\(?[A-H][.)]\s")


# ============== STRUCTURED PAYLOAD SHAPES ==============

@dataclass
class AnswerList:
    items: List[Any]
    positional: bool = True  # list position doubles as the question index


@dataclass
class AnswersByIndex:
    items: Dict[int, Any]


@dataclass
class AnswersByQuestion:
    items: Dict[str, Any]


@dataclass
class ScalarAnswer:
    value: Any


StructuredAnswer = Union[AnswerList, AnswersByIndex, AnswersByQuestion, ScalarAnswer]


def _is_index_key(key: Any) -> bool:
    return str(key).strip().isdigit()


def classify_structured(data: Any) -> Optional[StructuredAnswer]:
    """Work out which shape a decoded answer payload has."""
    if data is None or (isinstance(data, str) and not data.strip()):
        return None
    if isinstance(data, dict) and isinstance(data.get("answers"), (list, dict)):
        data = data["answers"]
    if isinstance(data, list):
        return AnswerList(data)
    if isinstance(data, dict):
        if not data:
            return None
        if all(_is_index_key(k) for k in data):
            return AnswersByIndex({int(str(k).strip()): v for k, v in data.items()})
        if ENTRY_KEYS.intersection(data.keys()):
            return AnswerList([data], positional=False)
        return AnswersByQuestion({str(k): v for k, v in data.items()})
    return ScalarAnswer(data)


def parse_structured_payload(payload: Optional[str]) -> Optional[StructuredAnswer]:
    if payload is None:
        return None
    text = payload.strip() if isinstance(payload, str) else payload
    if isinstance(text, str):
        if not text:
            return None
        return classify_structured(loads_or_raw(text))
    return classify_structured(text)


# ============== VALUE NORMALIZATION ==============

def letter_for(index: int) -> str:
    return chr(ord("A") + index)


def option_letter(index: Optional[int]) -> Optional[str]:
    """Letter for a 0-based option index, None outside A-Z."""
    if index is None or not 0 <= index < 26:
        return None
    return letter_for(index)


def index_for_letter(letter: str) -> int:
    return ord(letter.upper()) - ord("A")


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return ", ".join(_as_text(v) for v in value if _as_text(v))
    if isinstance(value, dict):
        return json.dumps(value)
    return " ".join(str(value).split())


def split_answer_value(value: Any) -> Tuple[Optional[str], Optional[str]]:
    """Split a raw answer into (free text, option letter)."""
    text = _as_text(value)
    if not text:
        return None, None
    match = LETTER_RE.match(text)
    if match:
        return None, match.group(1).upper()
    match = LETTER_PREFIX_RE.match(text)
    if match:
        return match.group(2).strip() or None, match.group(1).upper()
    return text, None


def _coerce_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def _first(item: dict, keys: Iterable[str]) -> Any:
    for key in keys:
        if item.get(key) not in (None, ""):
            return item[key]
    return None


def resolve_index(
    explicit: Optional[int],
    question_text: Optional[str],
    questions: List[ParsedQuestion],
    position: Optional[int] = None,
) -> Optional[int]:
    """Explicit index first, then exact (trimmed) question text, then list position."""
    def in_range(idx: Optional[int]) -> bool:
        return idx is not None and idx >= 0 and (not questions or idx < len(questions))

    if in_range(explicit):
        return explicit
    if question_text:
        wanted = question_text.strip()
        for idx, question in enumerate(questions):
            if question.question_text.strip() == wanted:
                return idx
    if in_range(position):
        return position
    return None


def entry_from_value(
    value: Any,
    questions: List[ParsedQuestion],
    position: Optional[int] = None,
    question_text: Optional[str] = None,
    explicit_index: Optional[int] = None,
    source: str = "structured",
) -> StudentAnswerEntry:
    """Normalize one payload value (scalar or object) into an entry."""
    answer, choice = None, None
    if isinstance(value, dict):
        if explicit_index is None:
            explicit_index = _coerce_int(_first(value, INDEX_KEYS))
        if explicit_index is None:
            number = _coerce_int(_first(value, NUMBER_KEYS))
            explicit_index = number - 1 if number is not None else None
        question_text = question_text or _as_text(_first(value, QUESTION_KEYS)) or None

        answer, choice = split_answer_value(_first(value, ANSWER_KEYS))

        raw_choice = _first(value, CHOICE_KEYS)
        choice_as_int = _coerce_int(raw_choice)
        if choice_as_int is not None and not isinstance(raw_choice, str):
            choice = choice or option_letter(choice_as_int)
        elif raw_choice is not None:
            choice_text, choice_letter = split_answer_value(raw_choice)
            choice = choice or choice_letter
            answer = answer or choice_text

        if not choice:
            choice = option_letter(_coerce_int(_first(value, OPTION_INDEX_KEYS)))
    else:
        answer, choice = split_answer_value(value)

    return StudentAnswerEntry(
        question_index=resolve_index(explicit_index, question_text, questions, position),
        question_text=question_text,
        answer=answer,
        choice=choice,
        raw_value=value,
        source=source,
    )


def normalize_structured(
    structured: Optional[StructuredAnswer],
    questions: List[ParsedQuestion],
    source: str = "structured",
) -> List[StudentAnswerEntry]:
    """Turn any payload shape into a flat list of entries."""
    if structured is None:
        return []
    if isinstance(structured, AnswerList):
        return [
            entry_from_value(item, questions, position=idx if structured.positional else None, source=source)
            for idx, item in enumerate(structured.items)
        ]
    if isinstance(structured, AnswersByIndex):
        return [
            entry_from_value(value, questions, explicit_index=idx, source=source)
            for idx, value in sorted(structured.items.items())
        ]
    if isinstance(structured, AnswersByQuestion):
        return [
            entry_from_value(value, questions, question_text=key, source=source)
            for key, value in structured.items.items()
        ]
    position = 0 if len(questions) == 1 else None
    return [entry_from_value(structured.value, questions, position=position, source=source)]


# ============== RAW TEXT HEURISTICS ==============

def _block_question_text(block: str) -> Optional[str]:
    first_line = block.strip().split("\n", 1)[0]
    first_line = ANSWER_LABEL_RE.split(first_line, 1)[0]
    first_line = INLINE_OPTION_RE.split(" " + first_line, 1)[0]
    first_line = " ".join(first_line.split())
    return first_line or None


def extract_answers_from_text(text: str, questions: List[ParsedQuestion]) -> List[StudentAnswerEntry]:
    """
    Scan submission text for question markers ("Question 1)", "Q2.", "3)"),
    "Answer:" labels and ticked checkboxes ("[x] B. Blue").
    """
    if not text or not text.strip():
        return []

    markers = list(QUESTION_MARKER_RE.finditer(text))
    entries = []
    for pos, marker in enumerate(markers):
        end = markers[pos + 1].start() if pos + 1 < len(markers) else len(text)
        block = text[marker.end():end]
        number = int(marker.group(1) or marker.group(2))

        answer, choice = None, None
        labels = list(ANSWER_LABEL_RE.finditer(block))
        if labels:
            first_line, _, following = block[labels[-1].end():].partition("\n")
            answer, choice = split_answer_value(first_line if first_line.strip() else following)

        checked = CHECKED_BOX_RE.search(block)
        if checked:
            box_answer = re.split(r"\s+[\[(]", checked.group(2), 1)[0].strip()
            choice = choice or checked.group(1).upper()
            answer = answer or box_answer or None

        if not answer and not choice:
            continue

        question_text = _block_question_text(block)
        entries.append(StudentAnswerEntry(
            question_index=resolve_index(number - 1, question_text, questions),
            question_text=question_text,
            answer=answer,
            choice=choice,
            raw_value=" ".join(block.split()),
            source="text",
        ))
    return entries


# ============== MERGING ==============

def _fill(target: StudentAnswerEntry, incoming: StudentAnswerEntry):
    """Copy non-empty incoming fields into empty target fields only."""
    changed = False
    for field in ("question_text", "answer", "choice"):
        if not getattr(target, field) and getattr(incoming, field):
            setattr(target, field, getattr(incoming, field))
            changed = True
    if target.raw_value is None and incoming.raw_value is not None:
        target.raw_value = incoming.raw_value
    if changed and incoming.source not in target.source.split("+"):
        target.source = f"{target.source}+{incoming.source}"


def _same_text(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a and b and a.strip() == b.strip())


def merge_entries(*groups: Iterable[StudentAnswerEntry]) -> List[StudentAnswerEntry]:
    """
    Merge entries keyed by index, then by exact question text. Earlier
    groups take precedence for conflicting values. Indexed entries come
    back sorted, unmatched ones after them in arrival order.
    """
    by_index: Dict[int, StudentAnswerEntry] = {}
    unmatched: List[StudentAnswerEntry] = []

    for group in groups:
        for entry in group:
            entry = entry.model_copy()
            idx = entry.question_index
            if idx is not None:
                target = by_index.get(idx)
                if target is None:
                    twin = next((u for u in unmatched if _same_text(u.question_text, entry.question_text)), None)
                    if twin is None:
                        by_index[idx] = entry
                        continue
                    unmatched.remove(twin)
                    twin.question_index = idx
                    by_index[idx] = twin
                    target = twin
                _fill(target, entry)
                continue

            target = next(
                (e for e in list(by_index.values()) + unmatched if _same_text(e.question_text, entry.question_text)),
                None,
            )
            if target is None:
                unmatched.append(entry)
            else:
                _fill(target, entry)

    return [by_index[k] for k in sorted(by_index)] + unmatched


def resolve_choice_aliases(entries: List[StudentAnswerEntry], questions: List[ParsedQuestion]) -> List[StudentAnswerEntry]:
    """Fill answer text from an option letter and the letter from matching option text."""
    for entry in entries:
        idx = entry.question_index
        if idx is None or idx >= len(questions):
            continue
        options = questions[idx].options
        if entry.choice and not entry.answer:
            option_idx = index_for_letter(entry.choice)
            if 0 <= option_idx < len(options):
                entry.answer = options[option_idx]
        elif entry.answer and not entry.choice:
            wanted = entry.answer.strip().lower()
            for option_idx, option in enumerate(options):
                if option.strip().lower() == wanted:
                    entry.choice = option_letter(option_idx)
                    break
    return entries


# ============== RECONCILER ==============

class AnswerReconciler:
    """Builds one answer per question from the structured payload and the submission text."""

    def __init__(self, ai: Optional[AIInferenceClient] = None):
        self._ai = ai

    async def derive_with_ai(self, raw_text: str, questions: List[ParsedQuestion]) -> List[StudentAnswerEntry]:
        question_list = [
            {"index": idx, "question": q.question_text, "options": q.options}
            for idx, q in enumerate(questions)
        ]
        response = await self._ai.generate([
            ANSWER_PROMPT,
            "Questions:\n" + json.dumps(question_list),
            "Submission text:\n" + raw_text,
        ])
        decoded = loads_or_raw(clean_ai_json(response))
        if not isinstance(decoded, (list, dict)):
            logger.warning("AI answer extraction returned non-JSON output; ignoring it")
            return []
        return normalize_structured(classify_structured(decoded), questions, source="ai")

    async def reconcile(
        self,
        structured_payload: Optional[str],
        raw_text: Optional[str],
        questions: List[ParsedQuestion],
    ) -> List[StudentAnswerEntry]:
        structured = parse_structured_payload(structured_payload)
        from_payload = normalize_structured(structured, questions)

        needs_text = structured is None or any(e.is_empty() for e in from_payload)
        from_text: List[StudentAnswerEntry] = []
        from_ai: List[StudentAnswerEntry] = []

        if needs_text and raw_text and raw_text.strip():
            from_text = extract_answers_from_text(raw_text, questions)

            answered = {
                e.question_index
                for e in merge_entries(from_payload, from_text)
                if e.question_index is not None and not e.is_empty()
            }
            missing = [idx for idx in range(len(questions)) if idx not in answered]
            if missing and self._ai is not None:
                try:
                    from_ai = await self.derive_with_ai(raw_text, questions)
                except Exception as e:
                    logger.warning(f"AI answer extraction failed, continuing without it: {e}")

        merged = merge_entries(from_payload, from_text, from_ai)
        logger.info(
            f"Reconciled {len(merged)} answers "
            f"(payload={len(from_payload)}, text={len(from_text)}, ai={len(from_ai)})"
        )
        return resolve_choice_aliases(merged, questions)
