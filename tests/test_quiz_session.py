import unittest
from unittest.mock import MagicMock
import sys
import os
import datetime as dt

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from snapquiz.errors import QuizSessionError
from snapquiz.models import FillBlankQuestion, McqQuestion, Quiz, ShortAnswerQuestion
from snapquiz.quiz_session import QuizSession, SessionState


def make_quiz():
    questions = [
        McqQuestion(id="q0", question_text="2 + 2?", options=("3", "4", "5", "6"), correct_index=1, explanation="2 + 2 = 4."),
        FillBlankQuestion(id="q1", question_text="Water is ____", correct_answer="H2O", explanation="Two hydrogens, one oxygen."),
        ShortAnswerQuestion(
            id="q2", question_text="What makes a leap year special?", correct_answer="extra day", explanation="February has 29 days."
        ),
    ]
    for i in range(3, 10):
        questions.append(
            McqQuestion(id=f"q{i}", question_text=f"Pick {i}", options=("a", "b", "c", "d"), correct_index=0, explanation="It is a.")
        )
    return Quiz(id="quiz1", homework_id="hw1", questions=tuple(questions), created_at=dt.datetime.now(dt.timezone.utc))


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestQuizSession(unittest.TestCase):
    def setUp(self):
        self.on_complete = MagicMock()
        self.clock = FakeClock()
        self.session = QuizSession(make_quiz(), on_complete=self.on_complete, clock=self.clock)

    def test_starts_answering_first_question(self):
        self.assertEqual(self.session.state, SessionState.ANSWERING)
        self.assertEqual(self.session.current_index, 0)
        self.assertEqual(self.session.progress, 0.0)
        self.assertFalse(self.session.show_feedback)

    def test_mcq_selection(self):
        answer = self.session.select_option(1)
        self.assertTrue(answer.is_correct)
        self.assertEqual(self.session.state, SessionState.FEEDBACK)
        self.assertEqual(self.session.selected_option, 1)
        self.assertEqual(self.session.score, 1)

    def test_selection_frozen_during_feedback(self):
        self.session.select_option(0)
        self.assertIsNone(self.session.select_option(1))
        self.assertEqual(self.session.selected_option, 0)
        self.assertFalse(self.session.answers[0].is_correct)

    def test_fill_blank_is_trimmed_and_case_insensitive(self):
        self.session.select_option(1)
        self.session.next()
        self.assertTrue(self.session.submit_text(" h2o ").is_correct)

    def test_fill_blank_requires_exact_match(self):
        self.session.select_option(1)
        self.session.next()
        self.assertFalse(self.session.submit_text("H2O2").is_correct)

    def test_short_answer_substring(self):
        self.session.skip()
        self.session.skip()
        self.assertTrue(self.session.submit_text("A leap year adds an extra day in February").is_correct)

    def test_short_answer_incorrect(self):
        self.session.skip()
        self.session.skip()
        self.assertFalse(self.session.submit_text("nothing").is_correct)

    def test_wrong_answer_kind(self):
        with self.assertRaises(QuizSessionError):
            self.session.submit_text("4")
        self.session.select_option(1)
        self.session.next()
        with self.assertRaises(QuizSessionError):
            self.session.select_option(0)

    def test_next_requires_answer(self):
        with self.assertRaises(QuizSessionError):
            self.session.next()

    def test_text_buffer(self):
        self.session.skip()
        self.session.set_text("h2o")
        self.assertEqual(self.session.text_buffer, "h2o")
        self.assertTrue(self.session.submit_text().is_correct)
        self.session.next()
        self.assertEqual(self.session.text_buffer, "")

    def test_seven_correct_three_skipped(self):
        self.session.select_option(1)
        self.session.next()
        self.session.skip()
        self.session.skip()
        for _ in range(3, 9):
            self.session.select_option(0)
            self.session.next()
        self.assertTrue(self.session.is_last_question)
        self.clock.now = 190.0
        self.session.skip()

        self.assertEqual(self.session.state, SessionState.COMPLETE)
        attempt = self.session.attempt
        self.assertEqual(attempt.score, 7)
        self.assertEqual(attempt.total_questions, 10)
        self.assertEqual(attempt.time_taken_seconds, 90)
        self.assertEqual(attempt.homework_id, "hw1")
        self.assertEqual(len(attempt.answers), 10)
        self.assertEqual(sum(1 for a in attempt.answers if a.skipped), 3)
        self.on_complete.assert_called_once_with(attempt)

    def test_complete_rejects_actions(self):
        for _ in range(10):
            self.session.skip()
        self.assertEqual(self.session.progress, 1.0)
        self.assertIsNone(self.session.current_question)
        with self.assertRaises(QuizSessionError):
            self.session.next()
        with self.assertRaises(QuizSessionError):
            self.session.skip()
        self.on_complete.assert_called_once()

    def test_reset_allows_retry(self):
        with self.assertRaises(QuizSessionError):
            self.session.reset()
        for _ in range(10):
            self.session.skip()
        self.session.reset()
        self.assertEqual(self.session.state, SessionState.ANSWERING)
        self.assertEqual(self.session.current_index, 0)
        self.assertEqual(self.session.answers, ())
        self.assertIsNone(self.session.attempt)
        for _ in range(10):
            self.session.skip()
        self.assertEqual(self.on_complete.call_count, 2)

    def test_loading(self):
        session = QuizSession.loading(homework_id="hw9")
        self.assertEqual(session.state, SessionState.LOADING)
        with self.assertRaises(QuizSessionError):
            session.skip()
        session.load(make_quiz())
        self.assertEqual(session.state, SessionState.ANSWERING)
        with self.assertRaises(QuizSessionError):
            session.load(make_quiz())

    def test_answer_replay(self):
        for value in [1, "h2o", "an extra day", None, 0, 0, 0, 0, 0, 2]:
            self.session.answer(value)
        self.assertEqual(self.session.attempt.score, 8)
        with self.assertRaises(QuizSessionError):
            QuizSession(make_quiz()).answer("four")


if __name__ == "__main__":
    unittest.main()
