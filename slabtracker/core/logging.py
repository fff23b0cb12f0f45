"""Loguru setup for the API, the background pricing tasks and the jobs CLI.

Every module logs through ``get_logger(component)``. Owner, job and source
context bound on a logger travel into the Slack alert, so an ERROR from a
background refresh says whose wallet or which upstream it was about.
"""

import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import httpx
from loguru import logger

from slabtracker.core.config import settings

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {extra[name]}:{function}:{line} | {message}"

_VALID_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}

# A full catalog seed is thousands of requests; per-request lines drown the progress logs
_QUIET_LOGGERS = {
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "sqlalchemy.engine": "WARNING",
    "alembic.runtime.migration": "INFO",
}

_ALERT_CONTEXT = ("job", "owner", "source")

# Seconds before the same call site may alert again
SLACK_REPEAT_SECONDS = 300.0

_logging_configured = False


class InterceptHandler(logging.Handler):
    """Redirect stdlib logs (uvicorn, sqlalchemy, httpx, alembic) to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_name == "emit":
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def slack_text(record: Dict[str, Any]) -> str:
    """Alert body: environment, call site, bound wallet/job/source context, message."""
    extra = record["extra"]
    component = extra.get("name") or "slabtracker"
    context = " ".join(f"{key}={extra[key]}" for key in _ALERT_CONTEXT if extra.get(key))
    header = f"[slabtracker/{settings.ENV}] {record['level'].name} {component}:{record['function']}:{record['line']}"
    if context:
        header = f"{header} ({context})"
    return f"{header}\n{record['message']}"


class SlackAlerts:
    """ERROR sink posting to the Slack webhook, one alert per call site per window.

    A rate-limited upstream fails the same way for every set or card group,
    so repeats from one call site inside the window are dropped.
    """

    def __init__(self, webhook_url: str, repeat_seconds: float = SLACK_REPEAT_SECONDS, clock=time.monotonic):
        self.webhook_url = webhook_url
        self.repeat_seconds = repeat_seconds
        self.clock = clock
        self._last_sent: Dict[Tuple[str, str, int], float] = {}

    def should_send(self, record: Dict[str, Any]) -> bool:
        site = (record["extra"].get("name") or "", record["function"], record["line"])
        now = self.clock()
        last: Optional[float] = self._last_sent.get(site)
        if last is not None and now - last < self.repeat_seconds:
            return False
        self._last_sent[site] = now
        return True

    def __call__(self, message: Any) -> None:
        record = message.record
        if not self.should_send(record):
            return
        try:
            httpx.post(self.webhook_url, json={"text": slack_text(record)}, timeout=5.0)
        except httpx.HTTPError:
            # Logging here would recurse into this sink
            pass


def _resolve_level() -> str:
    level = (settings.effective_log_level or "INFO").strip().upper()
    level = {"WARN": "WARNING", "FATAL": "CRITICAL"}.get(level, level)
    return level if level in _VALID_LEVELS else "INFO"


def _add_sinks(level: str) -> None:
    log_dir = Path("logs")
    log_dir.mkdir(exist_ok=True)

    logger.remove()
    logger.configure(extra={"name": "slabtracker"})
    logger.add(sys.stdout, level=level, format=LOG_FORMAT, backtrace=False, diagnose=False)
    logger.add(
        log_dir / "slabtracker.log",
        level=level,
        format=LOG_FORMAT,
        rotation="10 MB",
        retention="14 days",
        enqueue=True,
        backtrace=False,
        diagnose=False,
    )
    if settings.SLACK_WEBHOOK_URL:
        logger.add(SlackAlerts(settings.SLACK_WEBHOOK_URL), level="ERROR", enqueue=True)


def _route_stdlib(level: str) -> None:
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(logger_name).handlers = [InterceptHandler()]
        logging.getLogger(logger_name).propagate = False

    if level not in ("TRACE", "DEBUG"):
        for logger_name, quiet_level in _QUIET_LOGGERS.items():
            logging.getLogger(logger_name).setLevel(quiet_level)


def configure_logging() -> None:
    global _logging_configured

    if _logging_configured:
        return
    _logging_configured = True

    level = _resolve_level()
    _add_sinks(level)
    _route_stdlib(level)


def get_logger(name: str, **context: Any) -> logger.__class__:
    """Component logger; ``job``, ``owner`` or ``source`` context shows up in alerts."""
    return logger.bind(name=name, **context)


configure_logging()
