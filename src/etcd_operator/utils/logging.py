"""Logging configuration and utilities."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog
from pythonjsonlogger import jsonlogger

# Client libraries that log every request at INFO.
_NOISY_LOGGERS = ("kubernetes_asyncio", "aiohttp.access", "uvicorn.access")


def setup_logging(
    level: str = "INFO",
    format_type: str = "json",
    file_path: Path | None = None,
) -> None:
    """Setup structured logging for the operator.

    Reconcile passes bind ``cluster`` and ``namespace`` through
    ``structlog.contextvars`` so every event emitted during a pass carries
    the object it belongs to.
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        raise ValueError(f"Unknown log level: {level}")

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if format_type == "json"
            else structlog.dev.ConsoleRenderer(colors=False),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    if format_type == "json":
        formatter: logging.Formatter = jsonlogger.JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s"
        )
    else:
        formatter = logging.Formatter("%(message)s")

    handlers: list[logging.Handler] = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    if file_path:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(file_path)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_cluster(namespace: str, name: str) -> None:
    """Attach a cluster identity to every log event in the current context."""
    structlog.contextvars.bind_contextvars(namespace=namespace, cluster=name)


def unbind_cluster() -> None:
    structlog.contextvars.unbind_contextvars("namespace", "cluster")
