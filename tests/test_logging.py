"""
Structured logging and redaction of submitter contact data.
"""

import logging

import pytest

from util.logging import StructuredLogger, audit_event, logger, sanitize_payload


@pytest.fixture
def captured(caplog):
    caplog.set_level(logging.DEBUG, logger="clubmap")
    return caplog


class TestSanitizePayload:

    def test_redacts_contact_fields(self):
        result = sanitize_payload({
            "name": "游戏社",
            "submitter_email": "student@example.org",
            "client_ip": "10.0.0.1",
            "contact": {"qq": "123"},
        })

        assert result["name"] == "游戏社"
        assert result["submitter_email"] == "[REDACTED]"
        assert result["client_ip"] == "[REDACTED]"
        assert result["contact"] == "[REDACTED]"

    def test_nested_and_lists(self):
        result = sanitize_payload({"origin": {"email": "a@b.c"}, "items": [{"wechat": "w"}]})
        assert result["origin"]["email"] == "[REDACTED]"
        assert result["items"][0]["wechat"] == "[REDACTED]"

    def test_reveal_sensitive(self):
        assert sanitize_payload({"email": "a@b.c"}, reveal_sensitive=True) == {"email": "a@b.c"}

    def test_truncates_long_strings(self):
        assert sanitize_payload("x" * 150) == "x" * 100 + "..."


class TestStructuredLogger:

    def test_log_operation_format(self, captured):
        logger.log_operation("snapshot.rebuild", "success", {"records": 3})
        assert "Operation: snapshot.rebuild, Status: success, Details: {'records': 3}" in captured.text

    def test_log_intake_redacts(self, captured):
        logger.log_intake("20240101T000000000000Z-abc", "stored", {"submitter_email": "s@example.org"})

        assert "s@example.org" not in captured.text
        assert "[REDACTED]" in captured.text

    def test_failed_intake_logged_as_error(self, captured):
        logger.log_intake("r1", "failed")
        assert captured.records[-1].levelno == logging.ERROR

    def test_degraded_duplicate_check_is_warning(self, captured):
        logger.log_duplicate_check("游戏社", True, 0, degraded=True, error="store down")

        record = captured.records[-1]
        assert record.levelno == logging.WARNING
        assert "degraded" in record.getMessage()

    def test_failed_transition_is_warning(self, captured):
        logger.log_transition("sub_1", "APPROVED", "admin", "failed", {"error": "INVALID_STATUS"})
        assert captured.records[-1].levelno == logging.WARNING

    def test_audit_event(self, captured):
        audit_event("submission.reject", {"submission_id": "sub_1"}, {"reason": "spam", "email": "x@y.z"})

        assert "submission_reject" in captured.text
        assert "x@y.z" not in captured.text

    def test_single_handler_per_name(self):
        first = StructuredLogger("clubmap.test")
        second = StructuredLogger("clubmap.test")
        assert len(second.logger.handlers) == 1
        assert first.logger is second.logger
