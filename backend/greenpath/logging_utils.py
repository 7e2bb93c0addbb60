from __future__ import annotations

import contextvars
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from tempfile import gettempdir
from typing import Any

from pythonjsonlogger import jsonlogger

from .settings import settings

LOGGER_NAME = "greenpath_router"
LOG_FILE_NAME = "router.log.jsonl"

# Fields bound for the current planning attempt (request_key, request_id).
# asyncio tasks copy the context on creation, so waypoint fan-out inherits it.
_LOG_CONTEXT: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar("greenpath_log_context", default={})


def _log_dir(configured_out_dir: str) -> Path | None:
    for log_dir in (Path(configured_out_dir) / "logs", Path(gettempdir()) / "greenpath-router" / "logs"):
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            return log_dir
        except OSError:
            continue
    return None


def get_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)

    # Prevent duplicate handlers (common with reloaders)
    if getattr(logger, "_configured", False):
        return logger

    level = logging.getLevelName(settings.log_level.upper())
    logger.setLevel(level if isinstance(level, int) else logging.INFO)
    logger.propagate = False

    formatter = jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(message)s")

    sh = logging.StreamHandler()
    sh.setFormatter(formatter)
    logger.addHandler(sh)

    log_dir = _log_dir(settings.out_dir)
    if log_dir is not None:
        try:
            fh = logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8")
            fh.setFormatter(formatter)
            logger.addHandler(fh)
        except OSError:
            pass

    logger._configured = True  # type: ignore[attr-defined]
    return logger


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Attach ``fields`` to every event logged inside the block."""
    token = _LOG_CONTEXT.set({**_LOG_CONTEXT.get(), **fields})
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


def current_log_context() -> dict[str, Any]:
    return dict(_LOG_CONTEXT.get())


def error_fields(exc: BaseException) -> dict[str, Any]:
    """Log fields describing a failure. httpx errors can stringify to ""."""
    message = str(exc).strip()
    return {
        "error": message or type(exc).__name__,
        "error_type": type(exc).__name__,
        "reason_code": getattr(exc, "reason_code", None),
    }


def log_event(event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    # Structured: event is message + a top-level key; explicit fields win over bound context
    get_logger().log(level, event, extra={"event": event, **_LOG_CONTEXT.get(), **fields})
