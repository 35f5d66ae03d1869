from __future__ import annotations

import abc
import base64
import io
import logging
import os
import shutil
import subprocess
import typing as t

from PIL import Image, ImageOps, UnidentifiedImageError, features

from .errors import ImageProcessingError

logger = logging.getLogger(__name__)

ImageSource = t.Union[bytes, bytearray, memoryview, str, "os.PathLike[str]", t.BinaryIO]

DEFAULT_MAX_DIMENSION = 1280
DEFAULT_QUALITY = 75


def read_source_bytes(source: ImageSource) -> bytes:
    if isinstance(source, (bytes, bytearray, memoryview)):
        data = bytes(source)
    elif isinstance(source, (str, os.PathLike)):
        try:
            with open(source, "rb") as f:
                data = f.read()
        except OSError as e:
            raise ImageProcessingError(f"Could not read image file {os.fspath(source)}: {e}") from e
    elif hasattr(source, "read"):
        data = source.read()
        if not isinstance(data, (bytes, bytearray)):
            raise ImageProcessingError("Image stream must be opened in binary mode")
        data = bytes(data)
    else:
        raise ImageProcessingError(f"Unsupported image source: {type(source).__name__}")
    if not data:
        raise ImageProcessingError("Image is empty")
    return data


def fit_within(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    """Scale (width, height) so the longer edge is at most max_dimension. Never upscales."""
    longest = max(width, height)
    if longest <= max_dimension:
        return width, height
    ratio = max_dimension / float(longest)
    return max(1, round(width * ratio)), max(1, round(height * ratio))


def _log_size(encoded: str, size: tuple[int, int] | None = None) -> None:
    size_kb = round(len(encoded) * 3 / 4 / 1024)
    if size:
        logger.info("Image size: %dKB (%dx%d)", size_kb, size[0], size[1])
    else:
        logger.info("Image size: %dKB", size_kb)


class ImagePreprocessor(abc.ABC):
    name: t.ClassVar[str] = "base"

    def __init__(self, *, max_dimension: int = DEFAULT_MAX_DIMENSION, quality: int = DEFAULT_QUALITY) -> None:
        if max_dimension < 1:
            raise ValueError("max_dimension must be positive")
        if not 1 <= quality <= 100:
            raise ValueError("quality must be within 1..100")
        self.max_dimension = max_dimension
        self.quality = quality

    def to_base64_jpeg(self, source: ImageSource) -> str:
        data = read_source_bytes(source)
        jpeg = self.encode_jpeg(data)
        return base64.b64encode(jpeg).decode("ascii")

    @abc.abstractmethod
    def encode_jpeg(self, data: bytes) -> bytes:
        """Resize and re-encode raw image bytes as JPEG."""


def _decode(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise ImageProcessingError(f"Could not decode image: {e}") from e
    try:
        img.load()
    except (Image.DecompressionBombError, OSError) as e:
        img.close()
        raise ImageProcessingError(f"Could not decode image: {e}") from e
    return img


class PillowImagePreprocessor(ImagePreprocessor):
    name = "pillow"

    def encode_jpeg(self, data: bytes) -> bytes:
        resampling = getattr(getattr(Image, "Resampling", Image), "LANCZOS")
        img = _decode(data)
        with img:
            try:
                oriented = ImageOps.exif_transpose(img) or img
                try:
                    rgb = oriented.convert("RGB")
                    try:
                        target = fit_within(rgb.width, rgb.height, self.max_dimension)
                        if target != rgb.size:
                            resized = rgb.resize(target, resampling)
                            rgb.close()
                            rgb = resized
                        buf = io.BytesIO()
                        rgb.save(buf, format="JPEG", quality=self.quality, optimize=True)
                        size = rgb.size
                    finally:
                        rgb.close()
                finally:
                    if oriented is not img:
                        oriented.close()
            except OSError as e:
                raise ImageProcessingError(f"Could not encode image: {e}") from e

        packed = buf.getvalue()
        _log_size(base64.b64encode(packed).decode("ascii"), size)
        return packed


class ImageMagickPreprocessor(ImagePreprocessor):
    name = "magick"

    def __init__(
        self,
        *,
        max_dimension: int = DEFAULT_MAX_DIMENSION,
        quality: int = DEFAULT_QUALITY,
        binary: str | None = None,
        timeout_s: float = 30.0,
    ) -> None:
        super().__init__(max_dimension=max_dimension, quality=quality)
        self.binary = binary or find_magick_binary()
        if not self.binary:
            raise ImageProcessingError("ImageMagick is not installed (neither `magick` nor `convert` on PATH)")
        self.timeout_s = timeout_s

    def encode_jpeg(self, data: bytes) -> bytes:
        d = self.max_dimension
        cmd = [
            self.binary,
            "-",
            "-auto-orient",
            "-resize",
            f"{d}x{d}>",
            "-quality",
            str(self.quality),
            "jpeg:-",
        ]
        try:
            p = subprocess.run(cmd, input=data, check=False, capture_output=True, timeout=self.timeout_s)
        except FileNotFoundError as e:
            raise ImageProcessingError(f"ImageMagick binary not found: {self.binary}") from e
        except subprocess.TimeoutExpired as e:
            raise ImageProcessingError("ImageMagick timed out while converting the image") from e
        if p.returncode != 0 or not p.stdout:
            err = p.stderr.decode("utf-8", errors="ignore").strip()
            raise ImageProcessingError(f"Could not decode image: {err or 'ImageMagick failed'}")
        _log_size(base64.b64encode(p.stdout).decode("ascii"))
        return p.stdout


def find_magick_binary() -> str | None:
    for candidate in ("magick", "convert"):
        found = shutil.which(candidate)
        if found:
            return found
    return None


def create_preprocessor(
    backend: str = "auto",
    *,
    max_dimension: int = DEFAULT_MAX_DIMENSION,
    quality: int = DEFAULT_QUALITY,
) -> ImagePreprocessor:
    """Pick the image backend once, at construction time.

    "auto" prefers Pillow when it was built with JPEG support and falls back to
    an ImageMagick binary on PATH.
    """
    backend = (backend or "auto").lower()
    if backend == "pillow":
        return PillowImagePreprocessor(max_dimension=max_dimension, quality=quality)
    if backend == "magick":
        return ImageMagickPreprocessor(max_dimension=max_dimension, quality=quality)
    if backend != "auto":
        raise ValueError(f"Unknown image backend: {backend}")

    if features.check("jpg"):
        logger.debug("Using Pillow image backend")
        return PillowImagePreprocessor(max_dimension=max_dimension, quality=quality)
    if find_magick_binary():
        logger.info("Pillow has no JPEG support; using ImageMagick backend")
        return ImageMagickPreprocessor(max_dimension=max_dimension, quality=quality)
    raise ImageProcessingError("No JPEG encoder available: install Pillow with libjpeg or ImageMagick")
