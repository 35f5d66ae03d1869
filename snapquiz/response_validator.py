from __future__ import annotations

import dataclasses
import json
import logging
import re
import typing as t

from .errors import ParsingError
from .models import (
    OPTION_COUNT,
    QUIZ_LENGTH,
    FillBlankQuestion,
    McqQuestion,
    Question,
    QuestionType,
    Quiz,
    ShortAnswerQuestion,
    new_id,
    utc_now,
)

logger = logging.getLogger(__name__)

JsonDict = dict[str, t.Any]

DEFAULT_TITLE = "Homework Assignment"

_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*")


@dataclasses.dataclass(frozen=True)
class GenerationResult:
    quiz: Quiz
    title: str = DEFAULT_TITLE
    subject: str | None = None

    def to_dict(self) -> JsonDict:
        out = self.quiz.to_dict()
        out["title"] = self.title
        out["subject"] = self.subject
        return out


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text).strip()


def extract_json_object(text: str) -> str:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        raise ParsingError("No JSON object found in response")
    return text[start : end + 1]


def response_text(payload: t.Any) -> str:
    if not isinstance(payload, dict):
        raise ParsingError("Response is not a JSON object")
    for block in payload.get("content") or []:
        if isinstance(block, dict) and block.get("type") == "text":
            text = block.get("text")
            if isinstance(text, str) and text.strip():
                return text
    raise ParsingError("No text content in response")


def _is_text(value: t.Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _infer_type(raw: JsonDict) -> QuestionType:
    declared = raw.get("type")
    if declared is None:
        return QuestionType.MCQ if "options" in raw else QuestionType.FILL_BLANK
    try:
        return QuestionType(declared)
    except ValueError:
        raise ParsingError(f"unknown question type {declared!r}") from None


def _parse_question(raw: t.Any, index: int) -> Question:
    n = index + 1
    if not isinstance(raw, dict):
        raise ParsingError(f"question {n} is not an object")
    qtype = _infer_type(raw)

    text = raw.get("question")
    if not _is_text(text):
        raise ParsingError(f"question {n} has no question text")
    explanation = raw.get("explanation")
    if not _is_text(explanation):
        raise ParsingError(f"question {n} has no explanation")

    if qtype is QuestionType.MCQ:
        options = raw.get("options")
        if not isinstance(options, list) or len(options) != OPTION_COUNT:
            raise ParsingError(f"question {n} must have exactly {OPTION_COUNT} options")
        if not all(_is_text(o) for o in options):
            raise ParsingError(f"question {n} has an empty option")
        if len(set(options)) != OPTION_COUNT:
            raise ParsingError(f"question {n} has duplicate options")
        idx = raw.get("correctIndex")
        if isinstance(idx, bool) or not isinstance(idx, int) or not 0 <= idx < OPTION_COUNT:
            raise ParsingError(f"question {n} has invalid correctIndex {idx!r}")
        return McqQuestion(
            id=new_id(),
            question_text=text,
            options=tuple(options),
            correct_index=idx,
            explanation=explanation,
        )

    answer = raw.get("correctAnswer")
    if not _is_text(answer):
        raise ParsingError(f"question {n} has no correctAnswer")
    cls = FillBlankQuestion if qtype is QuestionType.FILL_BLANK else ShortAnswerQuestion
    return cls(id=new_id(), question_text=text, correct_answer=answer, explanation=explanation)


def _parse_confidence(value: t.Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
        raise ParsingError(f"confidence must be a number in [0, 1], got {value!r}")
    return float(value)


def _optional_text(value: t.Any) -> str | None:
    return value.strip() if _is_text(value) else None


def parse_quiz_text(text: str, homework_id: str = "") -> GenerationResult:
    cleaned = strip_code_fences(text)
    candidate = extract_json_object(cleaned)
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ParsingError(f"invalid JSON ({e.msg} at line {e.lineno})") from e
    if not isinstance(data, dict):
        raise ParsingError("quiz JSON is not an object")

    raw_questions = data.get("questions")
    if not isinstance(raw_questions, list):
        raise ParsingError("missing questions array")
    if len(raw_questions) != QUIZ_LENGTH:
        raise ParsingError(f"expected {QUIZ_LENGTH} questions, got {len(raw_questions)}")

    questions = tuple(_parse_question(q, i) for i, q in enumerate(raw_questions))
    title = _optional_text(data.get("title")) or DEFAULT_TITLE
    subject = _optional_text(data.get("subject"))
    quiz = Quiz(
        id=new_id(),
        homework_id=homework_id,
        questions=questions,
        created_at=utc_now(),
        topic=_optional_text(data.get("topic")),
        subtopic=_optional_text(data.get("subtopic")),
        classification_confidence=_parse_confidence(data.get("confidence")),
        title=title,
        subject=subject,
    )
    logger.info("Validated quiz with %d questions (topic %s)", quiz.total_questions, quiz.topic or "unknown")
    return GenerationResult(quiz=quiz, title=title, subject=subject)


def validate_response(payload: t.Any, homework_id: str = "") -> GenerationResult:
    """Turn a raw Messages API response into a validated Quiz.

    Validation is fail-fast and never coerces: the first bad question aborts
    the whole quiz with `ParsingError`.
    """
    return parse_quiz_text(response_text(payload), homework_id)


def quiz_to_payload(quiz: Quiz, *, title: str | None = None, subject: str | None = None) -> JsonDict:
    body: JsonDict = {
        "questions": [{k: v for k, v in q.to_dict().items() if k != "id"} for q in quiz.questions],
    }
    title = title or quiz.title
    subject = subject or quiz.subject
    if title:
        body["title"] = title
    if subject:
        body["subject"] = subject
    if quiz.topic:
        body["topic"] = quiz.topic
    if quiz.subtopic:
        body["subtopic"] = quiz.subtopic
    if quiz.classification_confidence is not None:
        body["confidence"] = quiz.classification_confidence
    return {"content": [{"type": "text", "text": json.dumps(body, ensure_ascii=False)}]}
