from __future__ import annotations

import json
import logging
import socket
import time
import typing as t
import urllib.error
import urllib.request

from .config import ANTHROPIC_VERSION, DEFAULT_API_URL, DEFAULT_MODEL, Settings
from .errors import (
    AIServiceError,
    InvalidRequestError,
    InvalidResponseError,
    MissingAPIKeyError,
    NetworkError,
    QuotaExceededError,
    RequestTimeoutError,
    ServerError,
)
from .models import QUIZ_LENGTH

logger = logging.getLogger(__name__)

JsonDict = dict[str, t.Any]

T = t.TypeVar("T")


class VisionClient(t.Protocol):
    def generate(self, image_b64: str | None, prompt: str) -> JsonDict: ...


def error_for_status(status: int, body: str | None = None) -> AIServiceError:
    detail = (body or "").strip()[:500]
    if status == 401:
        return MissingAPIKeyError("API key is missing or invalid", status_code=status)
    if status == 429:
        return QuotaExceededError("API quota exceeded", status_code=status)
    if 400 <= status < 500:
        return InvalidRequestError(f"Invalid request ({status}): {detail or 'no details'}", status_code=status)
    if 500 <= status < 600:
        return ServerError(f"Server error: {status}", status_code=status)
    return InvalidResponseError(f"Unexpected HTTP status {status}", status_code=status)


def _is_timeout(reason: t.Any) -> bool:
    return isinstance(reason, (socket.timeout, TimeoutError))


class ClaudeVisionClient:
    """Single-shot client for the Anthropic Messages API.

    Every failure comes back as an `AIServiceError`; retrying is left to
    `generate_with_retry`.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        model: str = DEFAULT_MODEL,
        api_url: str = DEFAULT_API_URL,
        max_tokens: int = 4096,
        timeout_s: float = 60.0,
        proxy_url: str | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.api_url = api_url.rstrip("/")
        self.max_tokens = int(max_tokens)
        self.timeout_s = timeout_s
        self.proxy_url = proxy_url

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClaudeVisionClient":
        return cls(
            settings.api_key,
            model=settings.model,
            api_url=settings.api_url,
            max_tokens=settings.max_tokens,
            timeout_s=settings.timeout_s,
            proxy_url=settings.proxy_url,
        )

    def build_request(self, image_b64: str | None, prompt: str) -> urllib.request.Request:
        """Build the POST for one quiz request; `image_b64=None` sends the prompt alone."""
        if self.proxy_url:
            payload: JsonDict = {"prompt": prompt}
            if image_b64 is not None:
                payload["image"] = image_b64
            return urllib.request.Request(
                self.proxy_url,
                data=json.dumps(payload).encode("utf-8"),
                headers={"Content-Type": "application/json"},
                method="POST",
            )

        if not self.api_key:
            raise MissingAPIKeyError("Missing ANTHROPIC_API_KEY")

        content: list[JsonDict] = []
        if image_b64 is not None:
            content.append(
                {
                    "type": "image",
                    "source": {"type": "base64", "media_type": "image/jpeg", "data": image_b64},
                }
            )
        content.append({"type": "text", "text": prompt})
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": content}],
        }
        return urllib.request.Request(
            self.api_url,
            data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "x-api-key": self.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
            },
            method="POST",
        )

    def generate(self, image_b64: str | None, prompt: str) -> JsonDict:
        req = self.build_request(image_b64, prompt)
        logger.info("Sending request to %s", "proxy" if self.proxy_url else "Claude API")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                status = getattr(resp, "status", 200)
                raw = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            try:
                body = e.read().decode("utf-8", errors="replace")
            except OSError:
                body = None
            logger.warning("API returned HTTP %s", e.code)
            raise error_for_status(e.code, body) from e
        except urllib.error.URLError as e:
            if _is_timeout(e.reason):
                raise RequestTimeoutError("Request timed out") from e
            raise NetworkError(f"Network error: {e.reason}") from e
        except (socket.timeout, TimeoutError) as e:
            raise RequestTimeoutError("Request timed out") from e
        except OSError as e:
            raise NetworkError(f"Network error: {e}") from e

        if status != 200:
            raise error_for_status(status, raw)

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidResponseError(f"API returned invalid JSON: {raw[:200]}") from e
        if not isinstance(data, dict):
            raise InvalidResponseError("API response is not a JSON object")

        usage = data.get("usage") or {}
        if usage:
            logger.info(
                "Token usage: input=%s output=%s",
                usage.get("input_tokens"),
                usage.get("output_tokens"),
            )
        return data


def generate_with_retry(
    fn: t.Callable[[], T],
    *,
    max_attempts: int = 3,
    base_delay: float = 2.0,
    sleep: t.Callable[[float], t.Any] = time.sleep,
) -> T:
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    attempt = 1
    while True:
        try:
            logger.info("Attempt %d/%d", attempt, max_attempts)
            return fn()
        except AIServiceError as e:
            logger.warning("Attempt %d failed: %s (%s)", attempt, e.message, e.kind.value)
            if not e.retriable or attempt >= max_attempts:
                raise
        delay = base_delay * 2 ** (attempt - 1)
        logger.info("Retrying in %.1fs", delay)
        sleep(delay)
        attempt += 1


def mock_quiz_payload(topic: str = "generic") -> JsonDict:
    questions: list[JsonDict] = []
    for i in range(QUIZ_LENGTH):
        n = i + 1
        if i % 5 == 3:
            questions.append(
                {
                    "type": "fillBlank",
                    "question": f"Sample question {n}: 2 + {n} = ____",
                    "correctAnswer": str(2 + n),
                    "explanation": f"Adding 2 and {n} gives {2 + n}.",
                }
            )
        elif i % 5 == 4:
            questions.append(
                {
                    "type": "shortAnswer",
                    "question": f"Sample question {n}: why do we check our work?",
                    "correctAnswer": "to find mistakes",
                    "explanation": "Checking work helps us find mistakes before handing it in.",
                }
            )
        else:
            questions.append(
                {
                    "type": "mcq",
                    "question": f"Sample question {n}: which option is correct?",
                    "options": [f"Option {c}{n}" for c in "ABCD"],
                    "correctIndex": i % 4,
                    "explanation": f"Option {'ABCD'[i % 4]}{n} is the right answer in this sample.",
                }
            )
    body = {
        "title": "Sample Quiz",
        "subject": "General",
        "topic": topic,
        "confidence": 0.5,
        "questions": questions,
    }
    return {
        "id": "msg_mock",
        "type": "message",
        "role": "assistant",
        "model": "mock",
        "content": [{"type": "text", "text": json.dumps(body, indent=2)}],
        "usage": {"input_tokens": 0, "output_tokens": 0},
    }


class MockVisionClient:
    """Offline stand-in that always answers with the same 10-question quiz."""

    def __init__(self, *, topic: str = "generic", delay_s: float = 0.0) -> None:
        self.topic = topic
        self.delay_s = delay_s
        self.calls = 0

    def generate(self, image_b64: str | None, prompt: str) -> JsonDict:
        self.calls += 1
        logger.info("Mock AI: returning canned quiz")
        if self.delay_s:
            time.sleep(self.delay_s)
        return mock_quiz_payload(self.topic)
