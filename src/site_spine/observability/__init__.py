"""Observability helpers."""

from site_spine.observability.logging import (
    configure_logging,
    log_context,
    redact_secrets,
)

__all__ = ["configure_logging", "log_context", "redact_secrets"]
