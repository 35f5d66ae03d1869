from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import pathlib
import typing as t

from .config import Settings
from .errors import AIServiceError, ConfigError
from .logging_setup import configure_logging
from .models import McqQuestion, Quiz, answer_text, new_id, option_label
from .pipeline import GenerationFlow, build_generator
from .storage import InMemoryQuizStore


def _safe_json(obj: t.Any) -> str:
    return json.dumps(obj, ensure_ascii=False, indent=2, default=str)


def answer_key(quiz: Quiz) -> str:
    lines = []
    for n, q in enumerate(quiz.questions, start=1):
        if isinstance(q, McqQuestion):
            lines.append(f"{n}. {option_label(q.correct_index)}) {answer_text(q)}")
        else:
            lines.append(f"{n}. {answer_text(q)}")
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="snapquiz", description="Turn a homework photo into a 10-question quiz.")
    parser.add_argument("image", nargs="?", help="Path to a homework photo (JPEG, PNG, HEIC if Pillow supports it)")
    parser.add_argument("--text", default=None, help="Build the quiz from this homework text instead of a photo")
    parser.add_argument("--subject", default=None, help="Optional subject hint, e.g. 'fractions'")
    parser.add_argument("--homework-id", default=None)
    parser.add_argument("--ocr-text", default=None, help="Text to classify instead of running OCR")
    parser.add_argument("--out", type=pathlib.Path, default=None, help="Write the quiz JSON here instead of stdout")
    parser.add_argument("--answer-key", action="store_true", help="Print a plain-text answer key")
    parser.add_argument("--mock", action="store_true", help="Use the canned offline quiz")
    parser.add_argument("--log-file", type=pathlib.Path, default=None)
    args = parser.parse_args(argv)

    if (args.image is None) == (args.text is None):
        parser.error("give either an image path or --text")

    try:
        settings = Settings.from_env()
    except ConfigError as e:
        configure_logging()
        logging.getLogger("snapquiz").error("Invalid configuration: %s", e)
        return 2
    if args.mock:
        settings = dataclasses.replace(settings, mock_ai=True)

    logger = configure_logging(settings.log_level, log_file=args.log_file)
    logger.debug("Settings: %s", settings.redacted())

    image_path = None
    if args.image is not None:
        image_path = pathlib.Path(args.image)
        if not image_path.is_file():
            logger.error("Image not found: %s", image_path)
            return 1

    generator = build_generator(settings)
    flow = GenerationFlow(generator, InMemoryQuizStore())
    homework_id = args.homework_id or new_id()
    try:
        if image_path is not None:
            result = flow.run(image_path, homework_id, subject=args.subject, ocr_text=args.ocr_text)
        else:
            result = flow.run_text(args.text, homework_id, subject=args.subject)
    except AIServiceError as e:
        info = e.user_message()
        logger.error("%s: %s", info["title"], e.message)
        logger.info("%s", info["suggestion"])
        return 1
    finally:
        generator.close()

    out = _safe_json(result.to_dict())
    if args.out:
        args.out.write_text(out, encoding="utf-8")
        logger.info("Saved quiz JSON: %s", args.out)
    elif not args.answer_key:
        print(out)
    if args.answer_key:
        print(answer_key(result.quiz))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
