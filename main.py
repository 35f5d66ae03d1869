import contextlib
import logging
import threading

from flask import Flask, jsonify, request

from snapquiz.config import Settings
from snapquiz.errors import (
    AIServiceError,
    ErrorKind,
    GenerationCancelled,
    GenerationInProgressError,
    QuizSessionError,
)
from snapquiz.logging_setup import configure_logging
from snapquiz.models import QUIZ_LENGTH, QuizAttempt, format_time
from snapquiz.pipeline import GenerationFlow, build_generator
from snapquiz.quiz_session import QuizSession
from snapquiz.storage import InMemoryQuizStore, MongoQuizStore, StorageError, connect

settings = Settings.from_env()
logger = configure_logging(settings.log_level)


def _make_store(s: Settings):
    if s.mongo_uri and s.mongo_db:
        return MongoQuizStore(connect(s.mongo_uri, s.mongo_db))
    logger.warning("MONGO_URI/MONGO_DB not set; quizzes are kept in memory")
    return InMemoryQuizStore()


server = Flask(__name__)
store = _make_store(settings)
generator = build_generator(settings)

_flows: dict[str, GenerationFlow] = {}
_flow_users: dict[str, int] = {}
_flows_lock = threading.Lock()

STATUS_BY_KIND = {
    ErrorKind.IMAGE_PROCESSING_ERROR: 400,
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.MISSING_API_KEY: 401,
    ErrorKind.QUOTA_EXCEEDED: 429,
    ErrorKind.PARSING_ERROR: 502,
    ErrorKind.SERVER_ERROR: 502,
    ErrorKind.INVALID_RESPONSE: 502,
    ErrorKind.NETWORK_ERROR: 503,
    ErrorKind.TIMEOUT: 504,
}


@contextlib.contextmanager
def _tracked_flow(homework_id):
    # the flow stays registered (and cancellable) only while a request uses it
    with _flows_lock:
        flow = _flows.get(homework_id)
        if flow is None:
            flow = GenerationFlow(generator, store)
            _flows[homework_id] = flow
        _flow_users[homework_id] = _flow_users.get(homework_id, 0) + 1
    try:
        yield flow
    finally:
        with _flows_lock:
            _flow_users[homework_id] -= 1
            if _flow_users[homework_id] <= 0:
                del _flow_users[homework_id]
                _flows.pop(homework_id, None)


def _error_response(e: AIServiceError):
    body = e.to_dict()
    return jsonify(body), STATUS_BY_KIND.get(e.kind, 500)


def _generate(homework_id, run):
    with _tracked_flow(homework_id) as flow:
        try:
            result = run(flow)
        except GenerationInProgressError as e:
            return jsonify({"error": str(e)}), 409
        except GenerationCancelled:
            return jsonify({"error": "Quiz generation was cancelled"}), 409
        except AIServiceError as e:
            return _error_response(e)
        except StorageError as e:
            logger.error("Could not save quiz for %s: %s", homework_id, e)
            return jsonify({"error": "Could not save quiz"}), 500
    return jsonify(result.to_dict())


def _attempt_response(attempt: QuizAttempt):
    out = attempt.to_dict()
    out["passed"] = attempt.has_passed
    out["gradeMessage"] = attempt.grade_message
    out["timeTaken"] = format_time(attempt.time_taken_seconds)
    return out


@server.route("/api/health", methods=["GET"])
def health():
    return jsonify({
        "status": "ok",
        "mockAI": settings.mock_ai,
        "hasApiKey": settings.has_api_key or bool(settings.proxy_url),
        "storage": type(store).__name__,
        "topics": list(generator.prompt_builder.available_topics),
    })


@server.route("/api/generateQuiz/<homeworkId>", methods=["POST"])
def generate_quiz(homeworkId):
    #multipart/form-data
    if "photo" not in request.files:
        return jsonify({"error": "No photo provided"}), 400

    photo = request.files["photo"]
    data = photo.read()
    if not data:
        return jsonify({"error": "Photo is empty"}), 400

    subject = (request.form.get("subject") or "").strip() or None
    ocr_text = request.form.get("ocrText")

    return _generate(homeworkId, lambda flow: flow.run(data, homeworkId, subject=subject, ocr_text=ocr_text))


@server.route("/api/generateQuizFromText/<homeworkId>", methods=["POST"])
def generate_quiz_from_text(homeworkId):
    body = request.get_json(silent=True) or {}
    text = body.get("text") if isinstance(body, dict) else None
    if not isinstance(text, str) or not text.strip():
        return jsonify({"error": "No text provided"}), 400

    subject = (body.get("subject") or "").strip() or None
    return _generate(homeworkId, lambda flow: flow.run_text(text, homeworkId, subject=subject))


@server.route("/api/cancelGeneration/<homeworkId>", methods=["POST"])
def cancel_generation(homeworkId):
    with _flows_lock:
        flow = _flows.get(homeworkId)
    if flow is None or not flow.cancel():
        return jsonify({"error": "No generation in progress"}), 404
    return jsonify({"cancelled": True})


@server.route("/api/quiz/<homeworkId>", methods=["GET"])
def get_quiz(homeworkId):
    quiz = store.get_by_homework_id(homeworkId)
    if quiz is None:
        return jsonify({"error": "Quiz not found"}), 404
    return jsonify(quiz.to_dict())


@server.route("/api/submitAttempt/<homeworkId>", methods=["POST"])
def submit_attempt(homeworkId):
    answers = request.get_json(silent=True)
    if not isinstance(answers, list) or len(answers) != QUIZ_LENGTH:
        return jsonify({"error": f"Expected a list of {QUIZ_LENGTH} answers"}), 400
    if not all(isinstance(a, dict) for a in answers):
        return jsonify({"error": "Each answer must be an object with an 'answer' field"}), 400

    quiz = store.get_by_homework_id(homeworkId)
    if quiz is None:
        return jsonify({"error": "Quiz not found"}), 404

    def persist(attempt: QuizAttempt):
        store.save_attempt(
            attempt.quiz_id,
            attempt.score,
            attempt.answers,
            homework_id=attempt.homework_id,
            time_taken_seconds=attempt.time_taken_seconds,
        )
        store.update_progress(attempt.homework_id, attempt.score, attempt.total_questions)

    session = QuizSession(quiz, homework_id=homeworkId, on_complete=persist)
    try:
        for item in answers:
            session.answer(item.get("answer"))
    except QuizSessionError as e:
        return jsonify({"error": str(e)}), 400
    except StorageError as e:
        logger.error("Could not save attempt for %s: %s", homeworkId, e)
        return jsonify({"error": "Could not save attempt"}), 500

    return jsonify(_attempt_response(session.attempt))


@server.route("/api/attempts/<quizId>", methods=["GET"])
def get_attempts(quizId):
    attempts = [QuizAttempt.from_dict(doc) for doc in store.get_attempts(quizId)]
    return jsonify([_attempt_response(a) for a in attempts])


@server.route("/", defaults={"path": ""})
@server.route("/<path:path>")
def not_found(path):
    return jsonify({"error": "API route not found"}), 404


if __name__ == '__main__':
    logging.getLogger("snapquiz").info("Settings: %s", settings.redacted())
    server.run(port=8080)
