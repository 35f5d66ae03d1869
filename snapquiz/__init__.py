from .errors import AIServiceError, ErrorKind, ParsingError
from .models import Quiz, QuizAttempt
from .pipeline import GenerationFlow, QuizGenerator, build_generator
from .quiz_session import QuizSession, SessionState

__all__ = [
    "AIServiceError",
    "ErrorKind",
    "GenerationFlow",
    "ParsingError",
    "Quiz",
    "QuizAttempt",
    "QuizGenerator",
    "QuizSession",
    "SessionState",
    "build_generator",
]

__version__ = "0.1.0"
