"""Tests for structured logging helpers."""

import json
import logging

from ragdesk.shared.infrastructure.logging import (
    CorrelationIdFilter,
    CustomJsonFormatter,
    get_correlation_id,
    set_correlation_id,
)


def format_record(formatter, message="hello", **extra):
    record = logging.LogRecord("ragdesk.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    CorrelationIdFilter().filter(record)
    return json.loads(formatter.format(record))


class TestCustomJsonFormatter:
    def test_adds_context_fields(self):
        set_correlation_id("corr-1")
        try:
            data = format_record(CustomJsonFormatter(environment="test"))
        finally:
            set_correlation_id(None)

        assert data["message"] == "hello"
        assert data["correlation_id"] == "corr-1"
        assert data["environment"] == "test"
        assert "timestamp" in data

    def test_redacts_secrets_but_not_token_counts(self):
        data = format_record(
            CustomJsonFormatter(),
            client_token="abc",
            api_key="sk-123",
            prompt_tokens=12,
            token="secret",
        )

        assert data["client_token"] == "***REDACTED***"
        assert data["api_key"] == "***REDACTED***"
        assert data["token"] == "***REDACTED***"
        assert data["prompt_tokens"] == 12

    def test_no_correlation_id_outside_requests(self):
        assert get_correlation_id() is None

        data = format_record(CustomJsonFormatter())

        assert data.get("correlation_id") is None
