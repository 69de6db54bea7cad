"""Logger factory shared by the offline services."""
from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from core.settings import SYNC_LOG_PATH


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def get_logger(name: str, path: Optional[Path] = None, level: int = logging.INFO) -> logging.Logger:
    """Return ``name`` with a rotating file handler attached exactly once."""

    logger = logging.getLogger(name)
    if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        target = Path(path or SYNC_LOG_PATH)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(target, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
        except OSError:
            # read-only data dir: stay on whatever the root logger does
            return logger
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def read_log_tail(lines: int = 100, path: Optional[Path] = None) -> str:
    target = Path(path or SYNC_LOG_PATH)
    try:
        with open(target, "r", encoding="utf-8") as fh:
            content = fh.readlines()
    except FileNotFoundError:
        return "Sync log has not been created yet."
    content = [line.rstrip("\n") for line in content[-lines:]]
    return "\n".join(content)


__all__ = ["LOG_FORMAT", "get_logger", "read_log_tail"]
