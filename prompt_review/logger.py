#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Review ▸ Unified Logging Facility
===============================================================================

Purpose
-------
One idempotent logging configuration shared by every module:

    from prompt_review import get_logger
    log = get_logger(__name__)

Handlers
--------
* Console – INFO by default; human lines or JSON lines.
* Daily rotating file – DEBUG, kept for a week by default.
* If the log directory is unwritable we try $TMPDIR, then go console‑only.

Environment overrides
---------------------
    PROMPT_REVIEW_LOG_DIR   – log directory (default: ./logs)
    PROMPT_REVIEW_LOG_LVL   – console level (name or number)
    PROMPT_REVIEW_LOG_ROT   – rotation schedule ("midnight", "H", ...)
    PROMPT_REVIEW_LOG_BACK  – backup files kept (default 7)
    PROMPT_REVIEW_LOG_UTC   – truthy → UTC timestamps and rotation
    PROMPT_REVIEW_LOG_JSON  – truthy → JSON console lines

Guard short‑circuits are logged as outcomes at INFO under the
"prompt_review.workflow" logger; failures use ERROR/EXCEPTION so the two can
be told apart when scraping logs.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

_ROOT_LOGGER_NAME = "prompt_review"

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}


def _is_truthy(val: str | None) -> bool:
    if val is None:
        return False
    return val.strip().lower() in {"1", "true", "yes", "on", "y", "t"}


def _parse_level(val: str | None, default: int = logging.INFO) -> int:
    """Accept a level name ("INFO") or number ("20"); fall back to *default*."""
    s = (val or "").strip()
    if not s:
        return default
    if s.isdigit():
        return int(s)
    return _LEVELS.get(s.upper(), default)


_LOG_DIR_ENV = os.getenv("PROMPT_REVIEW_LOG_DIR", "logs")
_CONSOLE_LEVEL_ENV = os.getenv("PROMPT_REVIEW_LOG_LVL", "INFO")
CONSOLE_LEVEL = _parse_level(_CONSOLE_LEVEL_ENV)
ROTATE_WHEN = os.getenv("PROMPT_REVIEW_LOG_ROT", "midnight")
BACKUP_COUNT = int(os.getenv("PROMPT_REVIEW_LOG_BACK", "7"))
USE_UTC = _is_truthy(os.getenv("PROMPT_REVIEW_LOG_UTC"))
JSON_CONSOLE = _is_truthy(os.getenv("PROMPT_REVIEW_LOG_JSON"))

FORMAT = "%(asctime)s | %(name)s | %(process)d | %(levelname)-8s | %(message)s"
DTFMT = "%Y-%m-%d %H:%M:%S"


class _JsonFormatter(logging.Formatter):
    """One JSON object per record, for CI and log scraping."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        stamp = time.gmtime(record.created) if USE_UTC else time.localtime(record.created)
        data = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S%z", stamp),
            "name": record.name,
            "pid": record.process,
            "level": record.levelname,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False)


def _human_formatter() -> logging.Formatter:
    fmt = logging.Formatter(fmt=FORMAT, datefmt=DTFMT)
    if USE_UTC:
        fmt.converter = time.gmtime  # type: ignore[assignment]
    return fmt


def _writable_log_dir(preferred: Path) -> Optional[Path]:
    """
    Return the first writable directory among *preferred* and
    $TMPDIR/prompt-review-logs, or None (console‑only logging).
    """
    for candidate in (preferred, Path(tempfile.gettempdir()) / "prompt-review-logs"):
        try:
            candidate = candidate.expanduser().resolve()
            candidate.mkdir(parents=True, exist_ok=True)
            probe = candidate / ".writable"
            probe.write_text("ok", encoding="utf-8")
            probe.unlink(missing_ok=True)
            return candidate
        except OSError:
            continue
    return None


def _make_file_handler(log_dir: Path) -> Optional[TimedRotatingFileHandler]:
    try:
        fh = TimedRotatingFileHandler(
            filename=log_dir / "prompt_review.log",
            when=ROTATE_WHEN,
            interval=1,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
            utc=USE_UTC,
        )
    except (OSError, ValueError):
        return None
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(_human_formatter())
    return fh


def _make_console_handler() -> logging.Handler:
    ch = logging.StreamHandler()
    ch.setLevel(CONSOLE_LEVEL)
    ch.setFormatter(_JsonFormatter() if JSON_CONSOLE else _human_formatter())
    return ch


def get_logger(name: str | None = None) -> logging.Logger:
    """
    Return a configured `logging.Logger`.

    Only the root "prompt_review" logger owns handlers; children are returned
    bare and propagate, so repeated calls never duplicate output.
    """
    root = logging.getLogger(_ROOT_LOGGER_NAME)

    if not root.handlers:
        root.setLevel(logging.DEBUG)
        log_dir = _writable_log_dir(Path(_LOG_DIR_ENV))
        fh = _make_file_handler(log_dir) if log_dir is not None else None
        if fh is not None:
            root.addHandler(fh)
        root.addHandler(_make_console_handler())
        root.propagate = False
        root.debug(
            "Logger initialised | dir=%s | console=%s | rotate=%s | backups=%s | utc=%s | json=%s",
            log_dir or "<console-only>",
            logging.getLevelName(CONSOLE_LEVEL),
            ROTATE_WHEN,
            BACKUP_COUNT,
            USE_UTC,
            JSON_CONSOLE,
        )

    if name is None or name == _ROOT_LOGGER_NAME:
        return root

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = True
    return logger


__all__ = ["get_logger"]
