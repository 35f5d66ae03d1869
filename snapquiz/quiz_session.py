from __future__ import annotations

import enum
import logging
import time
import typing as t

from .errors import QuizSessionError
from .models import (
    McqQuestion,
    Question,
    QuestionAnswer,
    QuestionType,
    Quiz,
    QuizAttempt,
    new_id,
    utc_now,
)

logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    LOADING = "loading"
    PLAYING = "playing"
    ANSWERING = "answering"
    FEEDBACK = "feedback"
    COMPLETE = "complete"


def _norm(text: str) -> str:
    return text.strip().lower()


def is_text_answer_correct(question: Question, text: str) -> bool:
    submitted = _norm(text)
    reference = _norm(question.correct_answer)  # type: ignore[union-attr]
    if submitted == reference:
        return True
    if question.type is QuestionType.SHORT_ANSWER:
        return bool(reference) and reference in submitted
    return False


class QuizSession:
    """Drives one pass through a quiz.

    Not thread-safe; a session belongs to a single user interaction.
    `on_complete` fires exactly once per completion with the finished
    `QuizAttempt`.
    """

    def __init__(
        self,
        quiz: Quiz | None,
        homework_id: str | None = None,
        on_complete: t.Callable[[QuizAttempt], t.Any] | None = None,
        clock: t.Callable[[], float] = time.monotonic,
    ) -> None:
        self.on_complete = on_complete
        self._clock = clock
        self._homework_id = homework_id
        self._quiz: Quiz | None = None
        self._state = SessionState.LOADING
        self._index = 0
        self._answers: dict[int, QuestionAnswer] = {}
        self._selected: int | None = None
        self._text = ""
        self._started_at = 0.0
        self._attempt: QuizAttempt | None = None
        if quiz is not None:
            self.load(quiz)

    @classmethod
    def loading(
        cls,
        homework_id: str | None = None,
        on_complete: t.Callable[[QuizAttempt], t.Any] | None = None,
        clock: t.Callable[[], float] = time.monotonic,
    ) -> "QuizSession":
        return cls(None, homework_id=homework_id, on_complete=on_complete, clock=clock)

    def load(self, quiz: Quiz) -> None:
        if self._state is not SessionState.LOADING:
            raise QuizSessionError(f"Cannot load a quiz while {self._state.value}")
        self._quiz = quiz
        if self._homework_id is None:
            self._homework_id = quiz.homework_id
        self._start()

    def _start(self) -> None:
        self._index = 0
        self._answers = {}
        self._attempt = None
        self._started_at = self._clock()
        self._state = SessionState.PLAYING
        self._enter_question()

    def _enter_question(self) -> None:
        self._selected = None
        self._text = ""
        self._state = SessionState.ANSWERING

    # queries

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def quiz(self) -> Quiz | None:
        return self._quiz

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def current_question(self) -> Question | None:
        if self._quiz is None or self._state is SessionState.COMPLETE:
            return None
        return self._quiz.questions[self._index]

    @property
    def is_last_question(self) -> bool:
        return self._quiz is not None and self._index == self._quiz.total_questions - 1

    @property
    def progress(self) -> float:
        if self._quiz is None:
            return 0.0
        if self._state is SessionState.COMPLETE:
            return 1.0
        return self._index / self._quiz.total_questions

    @property
    def score(self) -> int:
        return sum(1 for a in self._answers.values() if a.is_correct)

    @property
    def answers(self) -> tuple[QuestionAnswer, ...]:
        return tuple(self._answers[i] for i in sorted(self._answers))

    @property
    def attempt(self) -> QuizAttempt | None:
        return self._attempt

    @property
    def selected_option(self) -> int | None:
        return self._selected

    @property
    def text_buffer(self) -> str:
        return self._text

    @property
    def show_feedback(self) -> bool:
        return self._state is SessionState.FEEDBACK

    # actions

    def _require(self, *states: SessionState) -> Quiz:
        if self._state not in states or self._quiz is None:
            raise QuizSessionError(f"Action not allowed while {self._state.value}")
        return self._quiz

    def select_option(self, index: int) -> QuestionAnswer | None:
        if self._state is SessionState.FEEDBACK:
            return None
        quiz = self._require(SessionState.ANSWERING)
        question = quiz.questions[self._index]
        if not isinstance(question, McqQuestion):
            raise QuizSessionError(f"Question {self._index + 1} is {question.type.value}, not mcq")
        if isinstance(index, bool) or not 0 <= index < len(question.options):
            raise QuizSessionError(f"Option index out of range: {index}")
        self._selected = index
        return self._record(question, index, question.correct_index, index == question.correct_index)

    def set_text(self, text: str) -> None:
        self._require(SessionState.ANSWERING)
        self._text = text

    def submit_text(self, text: str | None = None) -> QuestionAnswer:
        quiz = self._require(SessionState.ANSWERING)
        question = quiz.questions[self._index]
        if question.type is QuestionType.MCQ:
            raise QuizSessionError(f"Question {self._index + 1} is mcq; use select_option")
        if text is not None:
            self._text = text
        correct = is_text_answer_correct(question, self._text)
        return self._record(question, self._text, question.correct_answer, correct)  # type: ignore[union-attr]

    def _record(self, question: Question, submitted: int | str | None, reference: int | str, correct: bool) -> QuestionAnswer:
        answer = QuestionAnswer(
            question_id=question.id,
            question_index=self._index,
            submitted=submitted,
            correct_reference=reference,
            is_correct=correct,
        )
        self._answers[self._index] = answer
        self._state = SessionState.FEEDBACK
        return answer

    def next(self) -> None:
        quiz = self._require(SessionState.ANSWERING, SessionState.FEEDBACK)
        if self._state is SessionState.ANSWERING and self._index not in self._answers:
            raise QuizSessionError("Answer or skip the question before moving on")
        if self._index >= quiz.total_questions - 1:
            self._complete(quiz)
            return
        self._index += 1
        self._enter_question()

    def skip(self) -> None:
        quiz = self._require(SessionState.ANSWERING)
        question = quiz.questions[self._index]
        reference = question.correct_index if isinstance(question, McqQuestion) else question.correct_answer
        self._answers[self._index] = QuestionAnswer(
            question_id=question.id,
            question_index=self._index,
            submitted=None,
            correct_reference=reference,
            is_correct=False,
        )
        self.next()

    def _complete(self, quiz: Quiz) -> None:
        elapsed = int(max(0.0, self._clock() - self._started_at))
        attempt = QuizAttempt(
            id=new_id(),
            quiz_id=quiz.id,
            homework_id=self._homework_id or quiz.homework_id,
            score=self.score,
            answers=self.answers,
            completed_at=utc_now(),
            total_questions=quiz.total_questions,
            time_taken_seconds=elapsed,
        )
        self._attempt = attempt
        self._state = SessionState.COMPLETE
        logger.info("Quiz %s complete: %d/%d", quiz.id, attempt.score, attempt.total_questions)
        if self.on_complete is not None:
            self.on_complete(attempt)

    def reset(self) -> None:
        self._require(SessionState.COMPLETE)
        self._start()

    def answer(self, value: int | str | None) -> None:
        """Apply one answer of the matching kind and advance; None skips."""
        if value is None:
            self.skip()
            return
        question = self.current_question
        if question is None:
            raise QuizSessionError("No current question")
        if question.type is QuestionType.MCQ:
            if not isinstance(value, int) or isinstance(value, bool):
                raise QuizSessionError(f"Question {self._index + 1} expects an option index")
            self.select_option(value)
        else:
            if not isinstance(value, str):
                raise QuizSessionError(f"Question {self._index + 1} expects a text answer")
            self.submit_text(value)
        self.next()
