from __future__ import annotations

import concurrent.futures
import dataclasses
import enum
import logging
import threading
import time
import typing as t

from .classifier import ContentClassifier
from .config import Settings
from .errors import GenerationCancelled, GenerationInProgressError, InvalidRequestError
from .image_preprocessor import ImagePreprocessor, ImageSource, create_preprocessor, read_source_bytes
from .models import ClassificationResult
from .ocr import TesseractTextExtractor, TextExtractor, normalize_text
from .prompts import PromptBuilder, PromptConfig, load_prompt_config
from .response_validator import GenerationResult, validate_response
from .storage import QuizStore
from .vision_client import ClaudeVisionClient, MockVisionClient, VisionClient, generate_with_retry

logger = logging.getLogger(__name__)

JsonDict = dict[str, t.Any]

CANCEL_POLL_INTERVAL_S = 0.1


class CancelToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds; True means cancelled while waiting."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled("Quiz generation was cancelled")


class QuizGenerator:
    def __init__(
        self,
        preprocessor: ImagePreprocessor,
        classifier: ContentClassifier,
        prompt_builder: PromptBuilder,
        client: VisionClient,
        *,
        text_extractor: TextExtractor | None = None,
        max_attempts: int = 3,
        base_delay: float = 2.0,
    ) -> None:
        self.preprocessor = preprocessor
        self.classifier = classifier
        self.prompt_builder = prompt_builder
        self.client = client
        self.text_extractor = text_extractor
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=4, thread_name_prefix="snapquiz-ai")

    def classify(self, data: bytes, ocr_text: str | None) -> ClassificationResult:
        text = ocr_text
        if text is None and self.text_extractor is not None:
            text = self.text_extractor.extract_text(data)
        result = self.classifier.classify(text or "")
        if result.is_fallback:
            logger.info("No confident topic, using the generic prompt")
        return result

    def _call_client(self, image_b64: str | None, prompt: str, cancel: CancelToken | None) -> JsonDict:
        if cancel is None:
            return self.client.generate(image_b64, prompt)
        cancel.raise_if_cancelled()
        future = self._executor.submit(self.client.generate, image_b64, prompt)
        while True:
            try:
                return future.result(timeout=CANCEL_POLL_INTERVAL_S)
            except concurrent.futures.TimeoutError:
                if cancel.cancelled:
                    future.cancel()
                    raise GenerationCancelled("Quiz generation was cancelled") from None

    def _request_quiz(
        self,
        image_b64: str | None,
        prompt: str,
        classification: ClassificationResult,
        homework_id: str,
        cancel: CancelToken | None,
    ) -> GenerationResult:
        def backoff(delay: float) -> None:
            if cancel is None:
                time.sleep(delay)
            elif cancel.wait(delay):
                raise GenerationCancelled("Quiz generation was cancelled")

        logger.debug("Prompt is %d chars for topic %s", len(prompt), classification.topic)
        payload = generate_with_retry(
            lambda: self._call_client(image_b64, prompt, cancel),
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            sleep=backoff,
        )
        if cancel is not None:
            cancel.raise_if_cancelled()

        result = validate_response(payload, homework_id)
        quiz = result.quiz
        if quiz.topic is None:
            quiz = dataclasses.replace(
                quiz,
                topic=classification.topic,
                subtopic=quiz.subtopic or classification.subtopic,
                classification_confidence=(
                    quiz.classification_confidence
                    if quiz.classification_confidence is not None
                    else classification.confidence
                ),
            )
        elif quiz.classification_confidence is None:
            quiz = dataclasses.replace(quiz, classification_confidence=classification.confidence)
        logger.info("Quiz ready: %s (%s)", result.title, quiz.topic_display)
        return dataclasses.replace(result, quiz=quiz)

    def generate(
        self,
        image: ImageSource,
        homework_id: str,
        subject: str | None = None,
        ocr_text: str | None = None,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        def checkpoint() -> None:
            if cancel is not None:
                cancel.raise_if_cancelled()

        logger.info("Generating quiz for homework %s", homework_id)
        data = read_source_bytes(image)
        image_b64 = self.preprocessor.to_base64_jpeg(data)
        checkpoint()

        classification = self.classify(data, ocr_text)
        checkpoint()

        prompt = self.prompt_builder.build_vision_prompt(classification.topic, subject)
        return self._request_quiz(image_b64, prompt, classification, homework_id, cancel)

    def generate_from_text(
        self,
        text: str,
        homework_id: str,
        subject: str | None = None,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        """Generate a quiz from homework text (typed, pasted or OCR'd) with no photo."""
        content = normalize_text(text or "")
        if not content:
            raise InvalidRequestError("No homework text provided")
        if cancel is not None:
            cancel.raise_if_cancelled()

        logger.info("Generating quiz from %d chars of text for homework %s", len(content), homework_id)
        classification = self.classifier.classify(content)
        prompt = self.prompt_builder.build_text_prompt(content, subject)
        return self._request_quiz(None, prompt, classification, homework_id, cancel)

    def close(self) -> None:
        self._executor.shutdown(wait=False)


class FlowState(str, enum.Enum):
    IDLE = "idle"
    GENERATING = "generating"
    SAVING = "saving"
    COMPLETE = "complete"
    FAILED = "failed"


class GenerationFlow:
    """Single-flight wrapper that generates a quiz and persists it.

    At most one `run` may be outstanding per flow; a second caller gets
    `GenerationInProgressError` instead of queueing.
    """

    def __init__(self, generator: QuizGenerator, store: QuizStore) -> None:
        self.generator = generator
        self.store = store
        self._lock = threading.Lock()
        self._state = FlowState.IDLE
        self._token: CancelToken | None = None
        self.last_error: Exception | None = None
        self.result: GenerationResult | None = None

    @property
    def state(self) -> FlowState:
        return self._state

    @property
    def in_flight(self) -> bool:
        return self._state in (FlowState.GENERATING, FlowState.SAVING)

    def _set_state(self, state: FlowState) -> None:
        logger.debug("Flow state %s -> %s", self._state.value, state.value)
        self._state = state

    def run(
        self,
        image: ImageSource,
        homework_id: str,
        subject: str | None = None,
        ocr_text: str | None = None,
    ) -> GenerationResult:
        return self._run(
            homework_id,
            lambda token: self.generator.generate(image, homework_id, subject=subject, ocr_text=ocr_text, cancel=token),
        )

    def run_text(self, text: str, homework_id: str, subject: str | None = None) -> GenerationResult:
        return self._run(
            homework_id,
            lambda token: self.generator.generate_from_text(text, homework_id, subject=subject, cancel=token),
        )

    def _run(self, homework_id: str, produce: t.Callable[[CancelToken], GenerationResult]) -> GenerationResult:
        with self._lock:
            if self.in_flight:
                raise GenerationInProgressError(f"Quiz generation already running for {homework_id}")
            token = CancelToken()
            self._token = token
            previous = (self._state, self.result, self.last_error)
            self.last_error = None
            self.result = None
            self._set_state(FlowState.GENERATING)

        try:
            result = produce(token)
            with self._lock:
                token.raise_if_cancelled()
                self._set_state(FlowState.SAVING)
            quiz = dataclasses.replace(result.quiz, title=result.title, subject=result.subject)
            stored = self.store.create(homework_id, quiz)
        except GenerationCancelled:
            # a cancelled run leaves the flow as it was before the run
            with self._lock:
                self._token = None
                state, self.result, self.last_error = previous
                self._set_state(state)
            logger.info("Generation cancelled for homework %s", homework_id)
            raise
        except Exception as e:
            with self._lock:
                self._token = None
                self.last_error = e
                self._set_state(FlowState.FAILED)
            logger.error("Generation failed for homework %s: %s", homework_id, e)
            raise

        with self._lock:
            self._token = None
            self.result = dataclasses.replace(result, quiz=stored)
            self._set_state(FlowState.COMPLETE)
        return self.result

    def cancel(self) -> bool:
        with self._lock:
            if self._token is None or self._state is not FlowState.GENERATING:
                return False
            self._token.cancel()
            return True

    def reset(self) -> None:
        with self._lock:
            if self.in_flight:
                raise GenerationInProgressError("Cannot reset while a generation is running")
            self.last_error = None
            self.result = None
            self._set_state(FlowState.IDLE)


def build_generator(settings: Settings, prompt_config: PromptConfig | None = None) -> QuizGenerator:
    config = prompt_config or load_prompt_config()
    builder = PromptBuilder(config)
    client: VisionClient
    if settings.mock_ai:
        logger.warning("SNAPQUIZ_MOCK_AI is set; quizzes are canned samples")
        client = MockVisionClient()
    else:
        client = ClaudeVisionClient.from_settings(settings)
    return QuizGenerator(
        create_preprocessor(
            settings.image_backend,
            max_dimension=settings.max_image_dimension,
            quality=settings.jpeg_quality,
        ),
        ContentClassifier(threshold=builder.classification_threshold),
        builder,
        client,
        text_extractor=TesseractTextExtractor() if settings.ocr_enabled else None,
        max_attempts=settings.max_attempts,
        base_delay=settings.retry_base_delay_s,
    )
