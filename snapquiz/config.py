from __future__ import annotations

import dataclasses
import os
import pathlib
import typing as t

from .errors import ConfigError

DEFAULT_API_URL = "https://api.anthropic.com/v1/messages"
DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
ANTHROPIC_VERSION = "2023-06-01"

_TRUTHY = {"1", "true", "yes", "on"}


def _parse_dotenv(content: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for raw in content.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):]
        if "=" not in line:
            continue
        k, v = line.split("=", 1)
        key = k.strip()
        val = v.strip()
        if not key:
            continue
        if len(val) >= 2 and ((val[0] == val[-1] == '"') or (val[0] == val[-1] == "'")):
            val = val[1:-1]
        out[key] = val
    return out


def _load_dotenv_file(path: pathlib.Path) -> dict[str, str]:
    try:
        content = path.read_text(encoding="utf-8")
    except (FileNotFoundError, IsADirectoryError):
        return {}
    return _parse_dotenv(content)


def load_dotenv(paths: t.Iterable[str | os.PathLike[str]] | None = None, *, override: bool = False) -> list[str]:
    """Copy key=value pairs from .env files into os.environ.

    Files are read in order and later files win. Variables already present in
    the environment are left alone unless `override` is set. Returns the keys
    that were set.
    """
    if paths is None:
        cwd = pathlib.Path.cwd()
        paths = [cwd / ".env", cwd / ".env.local"]

    loaded: dict[str, str] = {}
    for p in paths:
        loaded.update(_load_dotenv_file(pathlib.Path(p).expanduser()))

    applied: list[str] = []
    for k, v in loaded.items():
        if v == "":
            continue
        if not override and os.environ.get(k):
            continue
        os.environ[k] = v
        applied.append(k)
    return applied


def _coalesce_env(env: t.Mapping[str, str], primary: str, aliases: t.Sequence[str] = ()) -> str | None:
    v = env.get(primary)
    if v:
        return v
    for a in aliases:
        v2 = env.get(a)
        if v2:
            return v2
    return None


def _int_env(env: t.Mapping[str, str], key: str, default: int, *, minimum: int = 1) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigError(f"{key} must be >= {minimum}, got {value}")
    return value


def _float_env(env: t.Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from e
    if value < 0:
        raise ConfigError(f"{key} must not be negative, got {value}")
    return value


def _bool_env(env: t.Mapping[str, str], key: str) -> bool:
    return str(env.get(key) or "").strip().lower() in _TRUTHY


@dataclasses.dataclass(frozen=True)
class Settings:
    api_key: str | None = None
    model: str = DEFAULT_MODEL
    max_tokens: int = 4096
    timeout_s: float = 60.0
    api_url: str = DEFAULT_API_URL
    proxy_url: str | None = None
    max_image_dimension: int = 1280
    jpeg_quality: int = 75
    image_backend: str = "auto"
    max_attempts: int = 3
    retry_base_delay_s: float = 2.0
    mock_ai: bool = False
    ocr_enabled: bool = False
    log_level: str = "INFO"
    mongo_uri: str | None = None
    mongo_db: str | None = None

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    def redacted(self) -> dict[str, t.Any]:
        out = dataclasses.asdict(self)
        out["api_key"] = "***" if self.api_key else None
        if self.mongo_uri:
            out["mongo_uri"] = "***"
        return out

    @classmethod
    def from_env(
        cls,
        env: t.Mapping[str, str] | None = None,
        *,
        dotenv_paths: t.Iterable[str | os.PathLike[str]] | None = None,
    ) -> "Settings":
        if env is None:
            load_dotenv(dotenv_paths)
            env = os.environ

        backend = (env.get("SNAPQUIZ_IMAGE_BACKEND") or "auto").strip().lower()
        if backend not in {"auto", "pillow", "magick"}:
            raise ConfigError(f"SNAPQUIZ_IMAGE_BACKEND must be auto, pillow or magick, got {backend!r}")

        quality = _int_env(env, "SNAPQUIZ_JPEG_QUALITY", 75)
        if quality > 100:
            raise ConfigError(f"SNAPQUIZ_JPEG_QUALITY must be <= 100, got {quality}")

        return cls(
            api_key=_coalesce_env(env, "ANTHROPIC_API_KEY", ["CLAUDE_API_KEY"]),
            model=env.get("SNAPQUIZ_MODEL") or DEFAULT_MODEL,
            max_tokens=_int_env(env, "SNAPQUIZ_MAX_TOKENS", 4096),
            timeout_s=_float_env(env, "SNAPQUIZ_TIMEOUT_S", 60.0),
            api_url=(env.get("SNAPQUIZ_API_URL") or DEFAULT_API_URL).rstrip("/"),
            proxy_url=env.get("SNAPQUIZ_PROXY_URL") or None,
            max_image_dimension=_int_env(env, "SNAPQUIZ_MAX_IMAGE_DIM", 1280, minimum=64),
            jpeg_quality=quality,
            image_backend=backend,
            max_attempts=_int_env(env, "SNAPQUIZ_MAX_ATTEMPTS", 3),
            retry_base_delay_s=_float_env(env, "SNAPQUIZ_RETRY_BASE_DELAY_S", 2.0),
            mock_ai=_bool_env(env, "SNAPQUIZ_MOCK_AI"),
            ocr_enabled=_bool_env(env, "SNAPQUIZ_OCR"),
            log_level=(env.get("SNAPQUIZ_LOG_LEVEL") or "INFO").upper(),
            mongo_uri=env.get("MONGO_URI") or None,
            mongo_db=env.get("MONGO_DB") or None,
        )
