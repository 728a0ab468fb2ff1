"""structlog setup shared by the API, the CLI and worker processes."""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator

import structlog

from site_spine.config import get_settings

# Event keys whose values never reach a log sink
SECRET_KEYS = frozenset(
    {
        "access_key",
        "secret_key",
        "netlify_access_token",
        "api_key",
        "authorization",
        "crypto_secret",
    }
)
REDACTED = "***"

# Client libraries that log every request at INFO or DEBUG
NOISY_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3", "httpx", "httpcore")

HANDLER_NAME = "site_spine"


def redact_secrets(logger, method_name: str, event_dict: dict) -> dict:
    """Mask credential material passed as a top-level event key."""
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def _renderer(log_format: str):
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def configure_logging(level: str | None = None, log_format: str | None = None) -> None:
    """
    Route structlog and stdlib records through one stdout handler.

    Calling this again replaces the handler installed by the previous call,
    so the API lifespan and CLI commands can both call it.
    """
    settings = get_settings()
    level = (level or settings.log_level).upper()
    log_format = log_format or settings.log_format

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
    ]

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_renderer(log_format),
            foreign_pre_chain=shared_processors,
        )
    )

    root = logging.getLogger()
    for existing in [h for h in root.handlers if h.get_name() == HANDLER_NAME]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    library_level = logging.DEBUG if level == "DEBUG" else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)


@contextmanager
def log_context(**values) -> Iterator[None]:
    """Attach ``values`` to every log line emitted inside the block on this thread."""
    tokens = structlog.contextvars.bind_contextvars(**values)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
