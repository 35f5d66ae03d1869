from __future__ import annotations

import enum
import typing as t


class ErrorKind(str, enum.Enum):
    MISSING_API_KEY = "MISSING_API_KEY"
    INVALID_REQUEST = "INVALID_REQUEST"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    SERVER_ERROR = "SERVER_ERROR"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    PARSING_ERROR = "PARSING_ERROR"
    IMAGE_PROCESSING_ERROR = "IMAGE_PROCESSING_ERROR"


RETRIABLE_KINDS = frozenset(
    {
        ErrorKind.NETWORK_ERROR,
        ErrorKind.TIMEOUT,
        ErrorKind.SERVER_ERROR,
        ErrorKind.INVALID_RESPONSE,
        ErrorKind.QUOTA_EXCEEDED,
    }
)

_RECOVERY_HINTS: dict[ErrorKind, str] = {
    ErrorKind.MISSING_API_KEY: "Set ANTHROPIC_API_KEY in your environment or .env file.",
    ErrorKind.NETWORK_ERROR: "Check your internet connection and try again.",
    ErrorKind.TIMEOUT: "Try again with a clearer photo.",
    ErrorKind.QUOTA_EXCEEDED: "Please wait a few minutes and try again.",
    ErrorKind.PARSING_ERROR: "Try taking a clearer photo or different homework.",
    ErrorKind.IMAGE_PROCESSING_ERROR: "Retake the photo with better lighting, or pick a JPEG or PNG file.",
}

_USER_MESSAGES: dict[ErrorKind, tuple[str, str]] = {
    ErrorKind.MISSING_API_KEY: ("Configuration Error", "API key is missing or invalid"),
    ErrorKind.QUOTA_EXCEEDED: ("Rate Limit Reached", "You've reached your API usage limit"),
    ErrorKind.NETWORK_ERROR: ("Connection Failed", "Could not connect to AI service"),
    ErrorKind.TIMEOUT: ("Request Timeout", "The request took too long to complete"),
    ErrorKind.PARSING_ERROR: ("Quiz Generation Failed", "Could not generate quiz from this image"),
    ErrorKind.IMAGE_PROCESSING_ERROR: ("Image Problem", "Could not read this photo"),
}


class AIServiceError(Exception):
    """A failure anywhere in the quiz generation pipeline.

    Every error the pipeline surfaces carries one `ErrorKind`; callers branch on
    `kind` (or `retriable`) rather than on the subclass.
    """

    kind: ErrorKind = ErrorKind.INVALID_RESPONSE

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind
        self.message = message
        self.status_code = status_code

    @property
    def retriable(self) -> bool:
        return self.kind in RETRIABLE_KINDS

    @property
    def recovery_hint(self) -> str:
        return _RECOVERY_HINTS.get(self.kind, "Please try again. If the problem persists, contact support.")

    def user_message(self) -> dict[str, str]:
        title, message = _USER_MESSAGES.get(self.kind, ("Unexpected Error", "Something went wrong"))
        return {"title": title, "message": message, "suggestion": self.recovery_hint}

    def to_dict(self) -> dict[str, t.Any]:
        out: dict[str, t.Any] = {"error": self.message, "kind": self.kind.value}
        info = self.user_message()
        out["title"] = info["title"]
        out["suggestion"] = info["suggestion"]
        if self.status_code is not None:
            out["statusCode"] = self.status_code
        return out

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value}, message={self.message!r}, status_code={self.status_code})"


class MissingAPIKeyError(AIServiceError):
    kind = ErrorKind.MISSING_API_KEY


class InvalidRequestError(AIServiceError):
    kind = ErrorKind.INVALID_REQUEST


class NetworkError(AIServiceError):
    kind = ErrorKind.NETWORK_ERROR


class RequestTimeoutError(AIServiceError):
    kind = ErrorKind.TIMEOUT


class QuotaExceededError(AIServiceError):
    kind = ErrorKind.QUOTA_EXCEEDED


class ServerError(AIServiceError):
    kind = ErrorKind.SERVER_ERROR


class InvalidResponseError(AIServiceError):
    kind = ErrorKind.INVALID_RESPONSE


class ParsingError(AIServiceError):
    kind = ErrorKind.PARSING_ERROR

    def __init__(self, detail: str) -> None:
        super().__init__(f"Failed to parse quiz: {detail}")
        self.detail = detail


class ImageProcessingError(AIServiceError):
    kind = ErrorKind.IMAGE_PROCESSING_ERROR


class ConfigError(RuntimeError):
    pass


class QuizSessionError(RuntimeError):
    pass


class GenerationInProgressError(RuntimeError):
    pass


class GenerationCancelled(Exception):
    pass
