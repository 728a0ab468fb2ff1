"""Tests for logging setup."""

import logging

import pytest
import structlog

from site_spine.observability import configure_logging, log_context, redact_secrets
from site_spine.observability.logging import HANDLER_NAME, REDACTED


class TestRedactSecrets:
    """Tests for the secret-masking processor."""

    def test_masks_credential_keys(self):
        event = redact_secrets(
            None,
            "info",
            {"event": "credential_loaded", "access_key": "AKIA1", "secret_key": "s3cr3t", "region": "us-east-1"},
        )

        assert event["access_key"] == REDACTED
        assert event["secret_key"] == REDACTED
        assert event["region"] == "us-east-1"

    def test_empty_values_left_alone(self):
        event = redact_secrets(None, "info", {"event": "x", "netlify_access_token": None})

        assert event["netlify_access_token"] is None


class TestLogContext:
    """Tests for block-scoped context binding."""

    def test_binds_and_resets(self):
        with log_context(job_id="job-1", platform="netlify"):
            assert structlog.contextvars.get_contextvars() == {"job_id": "job-1", "platform": "netlify"}

        assert "job_id" not in structlog.contextvars.get_contextvars()

    def test_nested_blocks_restore_outer_value(self):
        with log_context(job_id="outer"):
            with log_context(job_id="inner"):
                assert structlog.contextvars.get_contextvars()["job_id"] == "inner"
            assert structlog.contextvars.get_contextvars()["job_id"] == "outer"


class TestConfigureLogging:
    """Tests for handler installation."""

    @pytest.fixture(autouse=True)
    def restore_root(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers = handlers
        root.setLevel(level)
        structlog.reset_defaults()

    def test_repeat_calls_keep_one_handler(self):
        configure_logging(level="INFO", log_format="json")
        configure_logging(level="DEBUG", log_format="console")

        ours = [h for h in logging.getLogger().handlers if h.get_name() == HANDLER_NAME]
        assert len(ours) == 1
        assert logging.getLogger().level == logging.DEBUG

    def test_quiets_client_libraries(self):
        configure_logging(level="INFO", log_format="json")

        assert logging.getLogger("botocore").level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING
