from __future__ import annotations

import logging
import os
import threading
import typing as t

from bson import ObjectId
from pymongo import DESCENDING, MongoClient
from pymongo.errors import PyMongoError, ServerSelectionTimeoutError
from pymongo.server_api import ServerApi

from .models import QUIZ_LENGTH, QuestionAnswer, Quiz, utc_now

logger = logging.getLogger(__name__)

JsonDict = dict[str, t.Any]


class StorageError(RuntimeError):
    pass


class QuizStore(t.Protocol):
    def create(self, homework_id: str, quiz: Quiz) -> Quiz: ...

    def get_by_homework_id(self, homework_id: str) -> Quiz | None: ...

    def save_attempt(
        self,
        quiz_id: str,
        score: int,
        answers: t.Sequence[QuestionAnswer],
        *,
        homework_id: str | None = None,
        time_taken_seconds: int | None = None,
    ) -> None: ...

    def update_progress(self, homework_id: str, score: int, total_questions: int = QUIZ_LENGTH) -> None: ...

    def get_attempts(self, quiz_id: str) -> list[JsonDict]: ...


def attempt_document(
    quiz_id: str,
    score: int,
    answers: t.Sequence[QuestionAnswer],
    *,
    homework_id: str | None = None,
    time_taken_seconds: int | None = None,
) -> JsonDict:
    return {
        "quizId": quiz_id,
        "homeworkId": homework_id,
        "score": int(score),
        "totalQuestions": len(answers) or QUIZ_LENGTH,
        "timeTakenSeconds": time_taken_seconds,
        "answers": [a.to_dict() for a in answers],
        "completedAt": utc_now().isoformat(),
    }


def _percentage(score: int, total: int) -> int:
    return round(score / total * 100) if total else 0


class InMemoryQuizStore:
    """Process-local store for the CLI, tests and Mongo-less runs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._quizzes: dict[str, Quiz] = {}
        self._attempts: dict[str, list[JsonDict]] = {}
        self.progress: dict[str, JsonDict] = {}

    def create(self, homework_id: str, quiz: Quiz) -> Quiz:
        stored = quiz.with_homework_id(homework_id)
        with self._lock:
            self._quizzes[homework_id] = stored
        return stored

    def get_by_homework_id(self, homework_id: str) -> Quiz | None:
        with self._lock:
            return self._quizzes.get(homework_id)

    def save_attempt(
        self,
        quiz_id: str,
        score: int,
        answers: t.Sequence[QuestionAnswer],
        *,
        homework_id: str | None = None,
        time_taken_seconds: int | None = None,
    ) -> None:
        doc = attempt_document(quiz_id, score, answers, homework_id=homework_id, time_taken_seconds=time_taken_seconds)
        doc["id"] = str(ObjectId())
        with self._lock:
            self._attempts.setdefault(quiz_id, []).append(doc)

    def update_progress(self, homework_id: str, score: int, total_questions: int = QUIZ_LENGTH) -> None:
        with self._lock:
            entry = self.progress.setdefault(homework_id, {"homeworkId": homework_id, "totalAttempts": 0, "bestScore": 0})
            entry["totalAttempts"] += 1
            entry["bestScore"] = max(entry["bestScore"], int(score))
            entry["bestPercentage"] = _percentage(entry["bestScore"], total_questions)
            entry["lastAttemptAt"] = utc_now().isoformat()

    def get_attempts(self, quiz_id: str) -> list[JsonDict]:
        with self._lock:
            return [dict(d) for d in reversed(self._attempts.get(quiz_id, []))]


_client: MongoClient | None = None


def connect(uri: str | None = None, db_name: str | None = None, timeout_ms: int = 5000) -> t.Any:
    global _client
    uri = uri or os.getenv("MONGO_URI")
    db_name = db_name or os.getenv("MONGO_DB")

    if not uri:
        raise StorageError("MONGO_URI environment variable is not set")
    if not db_name:
        raise StorageError("MONGO_DB environment variable is not set")

    if _client is None:
        _client = MongoClient(
            uri,
            serverSelectionTimeoutMS=timeout_ms,
            server_api=ServerApi("1"),
        )
        try:
            _client.admin.command("ping")
        except ServerSelectionTimeoutError as exc:
            _client = None
            raise StorageError("Unable to connect to MongoDB") from exc
        logger.info("Connected to MongoDB")

    return _client[db_name]


def _strip_object_id(doc: JsonDict) -> JsonDict:
    out = dict(doc)
    oid = out.pop("_id", None)
    if oid is not None:
        out["id"] = str(oid)
    return out


class MongoQuizStore:
    def __init__(self, db: t.Any) -> None:
        self.db = db

    def create(self, homework_id: str, quiz: Quiz) -> Quiz:
        stored = quiz.with_homework_id(homework_id)
        try:
            self.db.quizzes.replace_one({"homeworkId": homework_id}, stored.to_dict(), upsert=True)
        except PyMongoError as e:
            raise StorageError(f"Could not save quiz: {e}") from e
        logger.info("Saved quiz %s for homework %s", stored.id, homework_id)
        return stored

    def get_by_homework_id(self, homework_id: str) -> Quiz | None:
        doc = self.db.quizzes.find_one({"homeworkId": homework_id}, {"_id": 0})
        if not doc:
            return None
        return Quiz.from_dict(doc)

    def save_attempt(
        self,
        quiz_id: str,
        score: int,
        answers: t.Sequence[QuestionAnswer],
        *,
        homework_id: str | None = None,
        time_taken_seconds: int | None = None,
    ) -> None:
        doc = attempt_document(quiz_id, score, answers, homework_id=homework_id, time_taken_seconds=time_taken_seconds)
        try:
            self.db.quiz_attempts.insert_one(doc)
        except PyMongoError as e:
            raise StorageError(f"Could not save attempt: {e}") from e

    def update_progress(self, homework_id: str, score: int, total_questions: int = QUIZ_LENGTH) -> None:
        now = utc_now().isoformat()
        try:
            self.db.homework_progress.update_one(
                {"homeworkId": homework_id},
                {
                    "$inc": {"totalAttempts": 1},
                    "$max": {"bestScore": int(score), "bestPercentage": _percentage(score, total_questions)},
                    "$set": {"lastAttemptAt": now},
                },
                upsert=True,
            )
        except PyMongoError as e:
            raise StorageError(f"Could not update progress: {e}") from e

    def get_attempts(self, quiz_id: str) -> list[JsonDict]:
        cursor = self.db.quiz_attempts.find({"quizId": quiz_id}).sort("_id", DESCENDING)
        return [_strip_object_id(doc) for doc in cursor]
