"""Structured logging configuration for platform services.

Every service logs through ``structlog`` on top of the standard library
root logger, so third-party libraries (uvicorn, sentence-transformers) end
up in the same stream as service events.

Typical usage
- Call ``configure_logging(service_name, log_level, log_format, env=...)``
  once at startup
- Acquire loggers via ``structlog.get_logger(name)``

Formats
- ``json``: one JSON object per line
- ``console``: human readable, colored outside production
- ``auto``: ``json`` in production, ``console`` everywhere else
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory, add_logger_name

PRODUCTION_ENVS = ("production", "prod")

# Libraries that log every model download or HTTP request at INFO.
NOISY_LOGGERS = ("sentence_transformers", "urllib3", "filelock", "httpx")


def _renderer(log_format: str, env: str):
    if log_format == "auto":
        log_format = "json" if env in PRODUCTION_ENVS else "console"
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    if log_format == "console":
        return structlog.dev.ConsoleRenderer(colors=env not in PRODUCTION_ENVS)
    raise ValueError(f"Unknown log format: {log_format}")


def configure_logging(
    service_name: str,
    log_level: str = "INFO",
    log_format: str = "json",
    env: str = "local",
    **context: Any
) -> None:
    """Configure structured logging for a service.

    Parameters
    - service_name: Logical service identifier bound to each log line
    - log_level: ``DEBUG``, ``INFO``, ``WARNING``, ``ERROR`` (case-insensitive)
    - log_format: ``json``, ``console`` or ``auto``
    - env: Deployment environment; bound as ``env`` and used by ``auto``
    - context: Extra key/value pairs bound next to ``service``
    """
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")
    env = env.lower()
    renderer = _renderer(log_format.lower(), env)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_logger_name,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name, env=env, **context)
