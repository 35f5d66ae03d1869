from __future__ import annotations

import logging
import pathlib
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def configure_logging(
    level: int | str = logging.INFO,
    *,
    log_file: str | pathlib.Path | None = None,
    logger_name: str = "snapquiz",
) -> logging.Logger:
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    fmt = logging.Formatter(LOG_FORMAT)
    sh = logging.StreamHandler(sys.stdout)
    sh.setLevel(level)
    sh.setFormatter(fmt)
    logger.addHandler(sh)

    if log_file is not None:
        path = pathlib.Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(path, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    return logger
