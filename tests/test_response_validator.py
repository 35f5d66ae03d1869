import unittest
import sys
import os
import copy
import json

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from snapquiz.errors import ErrorKind, ParsingError
from snapquiz.models import McqQuestion, QuestionType
from snapquiz.response_validator import (
    DEFAULT_TITLE,
    extract_json_object,
    quiz_to_payload,
    strip_code_fences,
    validate_response,
)


def mcq(i):
    return {
        "type": "mcq",
        "question": f"What is {i} + 1?",
        "options": [str(i + 1), str(i + 2), str(i + 3), str(i + 4)],
        "correctIndex": 0,
        "explanation": f"{i} plus one is {i + 1}.",
    }


def quiz_body(n=10, **extra):
    body = {"title": "Adding One", "subject": "Maths", "topic": "maths", "confidence": 0.9, "questions": [mcq(i) for i in range(n)]}
    body.update(extra)
    return body


def wrap(text):
    return {"content": [{"type": "text", "text": text}]}


def payload(body):
    return wrap(json.dumps(body))


class TestTextHelpers(unittest.TestCase):
    def test_strip_code_fences(self):
        self.assertEqual(strip_code_fences('```json\n{"a": 1}\n```'), '{"a": 1}')
        self.assertEqual(strip_code_fences('```\n{"a": 1}\n```'), '{"a": 1}')

    def test_extract_json_object(self):
        self.assertEqual(extract_json_object('Sure! {"a": {"b": 2}} Hope it helps.'), '{"a": {"b": 2}}')
        with self.assertRaises(ParsingError):
            extract_json_object("no json here")


class TestValidateResponse(unittest.TestCase):
    def test_valid_quiz(self):
        result = validate_response(payload(quiz_body()), "hw1")
        self.assertEqual(result.quiz.total_questions, 10)
        self.assertEqual(result.quiz.homework_id, "hw1")
        self.assertEqual(result.quiz.topic, "maths")
        self.assertEqual(result.quiz.classification_confidence, 0.9)
        self.assertEqual(result.title, "Adding One")
        self.assertEqual(result.subject, "Maths")
        self.assertEqual(result.quiz.title, "Adding One")
        self.assertEqual(result.quiz.subject, "Maths")
        self.assertIsInstance(result.quiz.questions[0], McqQuestion)

    def test_fenced_text_with_preamble(self):
        text = "Here is your quiz:\n```json\n" + json.dumps(quiz_body()) + "\n```"
        self.assertEqual(validate_response(wrap(text)).quiz.total_questions, 10)

    def test_default_title(self):
        body = quiz_body()
        del body["title"]
        self.assertEqual(validate_response(payload(body)).title, DEFAULT_TITLE)

    def test_wrong_question_counts(self):
        for n in (9, 11, 0):
            with self.assertRaises(ParsingError):
                validate_response(payload(quiz_body(n)))

    def test_mcq_violations(self):
        cases = [
            ("options", ["a", "b", "c"]),
            ("options", ["a", "a", "c", "d"]),
            ("options", ["a", "", "c", "d"]),
            ("correctIndex", 4),
            ("correctIndex", -1),
            ("correctIndex", "1"),
            ("correctIndex", True),
            ("explanation", ""),
            ("question", "   "),
        ]
        for key, value in cases:
            body = quiz_body()
            body["questions"][3][key] = value
            with self.assertRaises(ParsingError, msg=f"{key}={value!r}"):
                validate_response(payload(body))

    def test_text_question_needs_answer(self):
        body = quiz_body()
        body["questions"][5] = {"type": "fillBlank", "question": "Water is H__O", "correctAnswer": "", "explanation": "e"}
        with self.assertRaises(ParsingError):
            validate_response(payload(body))

    def test_type_inference(self):
        body = quiz_body()
        del body["questions"][0]["type"]
        body["questions"][1] = {"question": "Water is H__O", "correctAnswer": "2", "explanation": "Two hydrogens."}
        quiz = validate_response(payload(body)).quiz
        self.assertEqual(quiz.questions[0].type, QuestionType.MCQ)
        self.assertEqual(quiz.questions[1].type, QuestionType.FILL_BLANK)

    def test_unknown_type(self):
        body = quiz_body()
        body["questions"][2]["type"] = "essay"
        with self.assertRaises(ParsingError):
            validate_response(payload(body))

    def test_confidence_out_of_range(self):
        with self.assertRaises(ParsingError):
            validate_response(payload(quiz_body(confidence=1.2)))

    def test_no_text_block(self):
        with self.assertRaises(ParsingError) as ctx:
            validate_response({"content": [{"type": "image"}, {"type": "text", "text": "  "}]})
        self.assertEqual(ctx.exception.kind, ErrorKind.PARSING_ERROR)
        self.assertFalse(ctx.exception.retriable)

    def test_first_text_block_wins(self):
        response = {"content": [{"type": "text", "text": json.dumps(quiz_body())}, {"type": "text", "text": "garbage"}]}
        self.assertEqual(validate_response(response).quiz.total_questions, 10)

    def test_invalid_json(self):
        with self.assertRaises(ParsingError):
            validate_response(wrap('{"questions": [1, 2,}'))
        with self.assertRaises(ParsingError):
            validate_response(None)

    def test_round_trip(self):
        body = quiz_body(subtopic="addition")
        body["questions"][8] = {"type": "shortAnswer", "question": "Why add?", "correctAnswer": "to combine", "explanation": "e"}
        first = validate_response(payload(copy.deepcopy(body)), "hw")
        second = validate_response(quiz_to_payload(first.quiz, title=first.title, subject=first.subject), "hw")

        def strip(quiz):
            return [{k: v for k, v in q.to_dict().items() if k != "id"} for q in quiz.questions]

        self.assertEqual(strip(first.quiz), strip(second.quiz))
        self.assertEqual(first.quiz.topic, second.quiz.topic)
        self.assertEqual(first.quiz.subtopic, second.quiz.subtopic)
        self.assertEqual(first.quiz.classification_confidence, second.quiz.classification_confidence)
        self.assertEqual(first.title, second.title)


if __name__ == "__main__":
    unittest.main()
