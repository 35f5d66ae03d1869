from __future__ import annotations

import io
import logging
import re
import typing as t

import pytesseract
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)


class TextExtractor(t.Protocol):
    def extract_text(self, image_bytes: bytes) -> str: ...


def normalize_text(text: str) -> str:
    lines = [re.sub(r"[ \t]+", " ", ln).strip() for ln in text.splitlines()]
    return "\n".join(ln for ln in lines if ln)


class TesseractTextExtractor:
    """Local OCR used only to pick a better prompt template.

    Any OCR failure yields "" so classification falls back to "generic"; the
    vision model still sees the full photo.
    """

    def __init__(self, *, lang: str = "eng", config: str = "--oem 1 --psm 6") -> None:
        self.lang = lang
        self.config = config

    def extract_text(self, image_bytes: bytes) -> str:
        try:
            with Image.open(io.BytesIO(image_bytes)) as image:
                text = pytesseract.image_to_string(image, lang=self.lang, config=self.config)
        except (pytesseract.TesseractNotFoundError, pytesseract.TesseractError) as e:
            logger.warning("OCR unavailable, classifying without text: %s", e)
            return ""
        except (UnidentifiedImageError, OSError) as e:
            logger.warning("OCR could not read image: %s", e)
            return ""
        out = normalize_text(text)
        logger.info("OCR extracted %d chars", len(out))
        return out
