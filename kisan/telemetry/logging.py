from __future__ import annotations

import logging
from typing import Any, Literal

import structlog

_configured = False

LogFormat = Literal["json", "console"]


def configure_logging(level: str = "INFO", fmt: LogFormat = "json") -> None:
    global _configured
    if _configured:
        return

    logging.basicConfig(
        format="%(message)s",
        level=level.upper(),
    )

    renderer: Any = structlog.processors.JSONRenderer(ensure_ascii=False)
    if fmt == "console":
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str) -> Any:
    return structlog.get_logger(name)


def bind_session(session_id: str, language: str) -> None:
    """Attach the session id and language to every log line emitted from this context."""
    structlog.contextvars.bind_contextvars(session_id=session_id, language=language)


__all__ = ["configure_logging", "get_logger", "bind_session"]
