from __future__ import annotations

import dataclasses
import datetime as dt
import enum
import typing as t
import uuid

JsonDict = dict[str, t.Any]

QUIZ_LENGTH = 10
OPTION_COUNT = 4
PASS_PERCENTAGE = 70

_TOPIC_DISPLAY = {
    "maths": "Maths",
    "english": "English",
    "science": "Science",
    "history": "History",
    "generic": "General",
}


def new_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _parse_datetime(value: t.Any) -> dt.datetime:
    if isinstance(value, dt.datetime):
        return value if value.tzinfo else value.replace(tzinfo=dt.timezone.utc)
    if isinstance(value, str) and value:
        parsed = dt.datetime.fromisoformat(value)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=dt.timezone.utc)
    return utc_now()


class QuestionType(str, enum.Enum):
    MCQ = "mcq"
    FILL_BLANK = "fillBlank"
    SHORT_ANSWER = "shortAnswer"


@dataclasses.dataclass(frozen=True)
class McqQuestion:
    id: str
    question_text: str
    options: tuple[str, ...]
    correct_index: int
    explanation: str

    type: t.ClassVar[QuestionType] = QuestionType.MCQ

    def __post_init__(self) -> None:
        _require_text(self.question_text, "question_text")
        _require_text(self.explanation, "explanation")
        if len(self.options) != OPTION_COUNT:
            raise ValueError(f"mcq needs exactly {OPTION_COUNT} options, got {len(self.options)}")
        if any(not isinstance(o, str) or not o.strip() for o in self.options):
            raise ValueError("mcq options must be non-empty strings")
        if len(set(self.options)) != len(self.options):
            raise ValueError("mcq options must be distinct")
        if isinstance(self.correct_index, bool) or not 0 <= self.correct_index < OPTION_COUNT:
            raise ValueError(f"mcq correct_index out of range: {self.correct_index}")

    def to_dict(self) -> JsonDict:
        return {
            "id": self.id,
            "type": self.type.value,
            "question": self.question_text,
            "options": list(self.options),
            "correctIndex": self.correct_index,
            "explanation": self.explanation,
        }


@dataclasses.dataclass(frozen=True)
class FillBlankQuestion:
    id: str
    question_text: str
    correct_answer: str
    explanation: str

    type: t.ClassVar[QuestionType] = QuestionType.FILL_BLANK

    def __post_init__(self) -> None:
        _require_text(self.question_text, "question_text")
        _require_text(self.correct_answer, "correct_answer")
        _require_text(self.explanation, "explanation")

    def to_dict(self) -> JsonDict:
        return {
            "id": self.id,
            "type": self.type.value,
            "question": self.question_text,
            "correctAnswer": self.correct_answer,
            "explanation": self.explanation,
        }


@dataclasses.dataclass(frozen=True)
class ShortAnswerQuestion(FillBlankQuestion):
    type: t.ClassVar[QuestionType] = QuestionType.SHORT_ANSWER


Question = t.Union[McqQuestion, FillBlankQuestion, ShortAnswerQuestion]


def _require_text(value: t.Any, name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty string")


def question_from_dict(data: JsonDict) -> Question:
    qtype = QuestionType(data.get("type") or QuestionType.MCQ.value)
    qid = str(data.get("id") or new_id())
    if qtype is QuestionType.MCQ:
        return McqQuestion(
            id=qid,
            question_text=data.get("question", ""),
            options=tuple(data.get("options") or ()),
            correct_index=int(data.get("correctIndex", -1)),
            explanation=data.get("explanation", ""),
        )
    cls = FillBlankQuestion if qtype is QuestionType.FILL_BLANK else ShortAnswerQuestion
    return cls(
        id=qid,
        question_text=data.get("question", ""),
        correct_answer=data.get("correctAnswer", ""),
        explanation=data.get("explanation", ""),
    )


def answer_text(question: Question) -> str:
    if isinstance(question, McqQuestion):
        return question.options[question.correct_index]
    return question.correct_answer


def option_label(index: int) -> str:
    labels = ("A", "B", "C", "D")
    return labels[index] if 0 <= index < len(labels) else ""


@dataclasses.dataclass(frozen=True)
class ClassificationResult:
    topic: str
    confidence: float
    subtopic: str | None = None

    FALLBACK: t.ClassVar["ClassificationResult"]

    @property
    def is_fallback(self) -> bool:
        return self.topic == "generic"


ClassificationResult.FALLBACK = ClassificationResult(topic="generic", confidence=0.5)


@dataclasses.dataclass(frozen=True)
class Quiz:
    id: str
    homework_id: str
    questions: tuple[Question, ...]
    created_at: dt.datetime
    topic: str | None = None
    subtopic: str | None = None
    classification_confidence: float | None = None
    title: str | None = None
    subject: str | None = None

    def __post_init__(self) -> None:
        if len(self.questions) != QUIZ_LENGTH:
            raise ValueError(f"Quiz must have exactly {QUIZ_LENGTH} questions, got {len(self.questions)}")
        conf = self.classification_confidence
        if conf is not None and not 0.0 <= conf <= 1.0:
            raise ValueError(f"classification_confidence must be within [0, 1], got {conf}")

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def topic_display(self) -> str:
        if not self.topic:
            return "General"
        return _TOPIC_DISPLAY.get(self.topic, self.topic[:1].upper() + self.topic[1:])

    def with_homework_id(self, homework_id: str) -> "Quiz":
        return dataclasses.replace(self, homework_id=homework_id)

    def to_dict(self) -> JsonDict:
        return {
            "id": self.id,
            "homeworkId": self.homework_id,
            "questions": [q.to_dict() for q in self.questions],
            "createdAt": self.created_at.isoformat(),
            "topic": self.topic,
            "subtopic": self.subtopic,
            "classificationConfidence": self.classification_confidence,
            "title": self.title,
            "subject": self.subject,
        }

    @staticmethod
    def from_dict(data: JsonDict) -> "Quiz":
        conf = data.get("classificationConfidence")
        return Quiz(
            id=str(data.get("id") or new_id()),
            homework_id=str(data.get("homeworkId") or ""),
            questions=tuple(question_from_dict(q) for q in data.get("questions") or []),
            created_at=_parse_datetime(data.get("createdAt")),
            topic=data.get("topic") or None,
            subtopic=data.get("subtopic") or None,
            classification_confidence=None if conf is None else float(conf),
            title=data.get("title") or None,
            subject=data.get("subject") or None,
        )


@dataclasses.dataclass(frozen=True)
class QuestionAnswer:
    question_id: str
    question_index: int
    submitted: int | str | None
    correct_reference: int | str
    is_correct: bool

    @property
    def skipped(self) -> bool:
        return self.submitted is None

    def to_dict(self) -> JsonDict:
        return {
            "questionId": self.question_id,
            "questionIndex": self.question_index,
            "userAnswer": self.submitted,
            "correctAnswer": self.correct_reference,
            "correct": self.is_correct,
        }

    @staticmethod
    def from_dict(data: JsonDict) -> "QuestionAnswer":
        return QuestionAnswer(
            question_id=str(data.get("questionId") or ""),
            question_index=int(data.get("questionIndex", 0)),
            submitted=data.get("userAnswer"),
            correct_reference=data.get("correctAnswer", ""),
            is_correct=bool(data.get("correct")),
        )


@dataclasses.dataclass(frozen=True)
class QuizAttempt:
    id: str
    quiz_id: str
    homework_id: str
    score: int
    answers: tuple[QuestionAnswer, ...]
    completed_at: dt.datetime
    total_questions: int = QUIZ_LENGTH
    time_taken_seconds: int | None = None

    @property
    def percentage(self) -> int:
        if self.total_questions == 0:
            return 0
        return round(self.score / self.total_questions * 100)

    @property
    def has_passed(self) -> bool:
        return self.percentage >= PASS_PERCENTAGE

    @property
    def grade_message(self) -> str:
        pct = self.percentage
        if pct >= 90:
            return "Excellent!"
        if pct >= 70:
            return "Great Job!"
        if pct >= 50:
            return "Good Effort!"
        return "Keep Practicing!"

    def to_dict(self) -> JsonDict:
        return {
            "id": self.id,
            "quizId": self.quiz_id,
            "homeworkId": self.homework_id,
            "score": self.score,
            "totalQuestions": self.total_questions,
            "timeTakenSeconds": self.time_taken_seconds,
            "answers": [a.to_dict() for a in self.answers],
            "completedAt": self.completed_at.isoformat(),
            "percentage": self.percentage,
        }

    @staticmethod
    def from_dict(data: JsonDict) -> "QuizAttempt":
        answers = tuple(QuestionAnswer.from_dict(a) for a in data.get("answers") or [])
        taken = data.get("timeTakenSeconds")
        return QuizAttempt(
            id=str(data.get("id") or new_id()),
            quiz_id=str(data.get("quizId") or ""),
            homework_id=str(data.get("homeworkId") or ""),
            score=int(data.get("score", 0)),
            answers=answers,
            completed_at=_parse_datetime(data.get("completedAt")),
            total_questions=int(data.get("totalQuestions") or len(answers) or QUIZ_LENGTH),
            time_taken_seconds=None if taken is None else int(taken),
        )


def format_time(seconds: int | None) -> str:
    if not seconds:
        return "--:--"
    mins, secs = divmod(int(seconds), 60)
    return f"{mins}:{secs:02d}"
