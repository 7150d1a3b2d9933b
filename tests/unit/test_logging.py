"""Unit tests for security event logging."""

import json
import logging

import pytest

from abac_engine.config import SecurityLoggingConfig
from abac_engine.exceptions import ConfigurationError, PolicyRetrievalError
from abac_engine.logging import (
    SECURITY_LOGGER_NAME,
    AuthzEvent,
    PolicyEvent,
    SecurityEvent,
    SecurityEventSeverity,
    SecurityEventType,
    SecurityLogger,
    configure_security_logger,
    get_security_logger,
    shutdown_security_logger,
)


def _events(caplog):
    return [
        json.loads(record.getMessage())
        for record in caplog.records
        if record.name == SECURITY_LOGGER_NAME
    ]


class TestSecurityEvents:
    """Test cases for security event models."""

    def test_event_serialization(self):
        event = SecurityEvent(user_id="user-1", message="hello", details={"k": "v"})

        data = event.to_dict()

        assert data["event_type"] == "authorization"
        assert data["severity"] == "low"
        assert data["user_id"] == "user-1"
        assert isinstance(data["timestamp"], str)
        assert json.loads(event.to_json())["details"] == {"k": "v"}

    def test_deny_authz_event(self):
        event = AuthzEvent(decision="deny", resource="api:docs:a", action="svc:file:read")

        assert event.event_type is SecurityEventType.ACCESS_DENIED
        assert event.severity is SecurityEventSeverity.MEDIUM

    def test_permit_authz_event(self):
        event = AuthzEvent(decision="permit")

        assert event.event_type is SecurityEventType.AUTHORIZATION
        assert event.severity is SecurityEventSeverity.LOW

    def test_rejected_policy_event(self):
        assert PolicyEvent(operation="reject").severity is SecurityEventSeverity.MEDIUM
        assert PolicyEvent(operation="load").severity is SecurityEventSeverity.LOW


class TestSecurityLogger:
    """Test cases for SecurityLogger."""

    def test_invalid_configuration(self):
        with pytest.raises(ConfigurationError):
            SecurityLogger(log_level="LOUD", console_output=False)
        with pytest.raises(ConfigurationError):
            SecurityLogger(log_format="xml", console_output=False)

    def test_deny_is_logged_as_warning(self, security_logger, caplog):
        with caplog.at_level(logging.INFO, logger=SECURITY_LOGGER_NAME):
            security_logger.log_authz_event(
                user_id="user-1",
                resource="api:docs:a",
                action="svc:file:read",
                decision="deny",
                reason="No matching policies found (implicit deny)",
                evaluation_time_ms=0.5,
            )

        record = caplog.records[-1]
        event = json.loads(record.getMessage())
        assert record.levelno == logging.WARNING
        assert event["event_type"] == "access_denied"
        assert event["decision"] == "deny"
        assert event["evaluation_time_ms"] == 0.5

    def test_permit_is_logged_as_info(self, security_logger, caplog):
        with caplog.at_level(logging.INFO, logger=SECURITY_LOGGER_NAME):
            security_logger.log_authz_event(
                user_id="user-1",
                resource="api:docs:a",
                action="svc:file:read",
                decision="permit",
                matched_policies=["pol-1"],
                correlation_id="req-1",
            )

        events = _events(caplog)
        assert caplog.records[-1].levelno == logging.INFO
        assert events[-1]["matched_policies"] == ["pol-1"]
        assert events[-1]["correlation_id"] == "req-1"

    def test_policy_event(self, security_logger, caplog):
        with caplog.at_level(logging.INFO, logger=SECURITY_LOGGER_NAME):
            security_logger.log_policy_event("pol-1", "reject", "bad condition")

        event = _events(caplog)[-1]
        assert event["event_type"] == "policy_event"
        assert event["policy_id"] == "pol-1"
        assert event["severity"] == "medium"

    def test_evaluation_error(self, security_logger, caplog):
        error = PolicyRetrievalError("storage offline", subject="user-1")

        with caplog.at_level(logging.INFO, logger=SECURITY_LOGGER_NAME):
            security_logger.log_evaluation_error(error, user_id="user-1")

        record = caplog.records[-1]
        event = json.loads(record.getMessage())
        assert record.levelno == logging.ERROR
        assert event["event_type"] == "evaluation_error"
        assert event["details"]["error_type"] == "PolicyRetrievalError"

    def test_disabled_logger_is_silent(self, caplog):
        logger = SecurityLogger(console_output=False, enabled=False)

        with caplog.at_level(logging.INFO, logger=SECURITY_LOGGER_NAME):
            logger.log_policy_event("pol-1", "load", "loaded")

        assert _events(caplog) == []

    def test_text_format(self, caplog):
        logger = SecurityLogger(log_format="text", console_output=False)

        with caplog.at_level(logging.INFO, logger=SECURITY_LOGGER_NAME):
            logger.log_policy_event("pol-1", "load", "loaded 3 policies")

        assert caplog.records[-1].getMessage() == "Security Event: loaded 3 policies"
        logger.shutdown()

    def test_file_output(self, tmp_path):
        log_file = tmp_path / "logs" / "security.log"
        logger = SecurityLogger(log_file=str(log_file), console_output=False)

        logger.log_policy_event("pol-1", "load", "loaded")
        logger.shutdown()

        lines = log_file.read_text().strip().splitlines()
        assert json.loads(lines[-1])["policy_id"] == "pol-1"

    def test_from_config(self, caplog):
        config = SecurityLoggingConfig(log_level="warning", log_format="json")
        logger = SecurityLogger.from_config(config, service_name="billing-pdp", console_output=False)

        assert logger.logger.level == logging.WARNING
        with caplog.at_level(logging.WARNING, logger=SECURITY_LOGGER_NAME):
            logger.log_policy_event("pol-2", "reject", "bad document")

        assert _events(caplog)[-1]["source"] == "billing-pdp"
        logger.shutdown()

    def test_reconfiguration_replaces_handlers(self, tmp_path):
        first = SecurityLogger(log_file=str(tmp_path / "a.log"), console_output=False)
        second = SecurityLogger(log_file=str(tmp_path / "b.log"), console_output=False)

        assert len(second.logger.handlers) == 1
        assert first.logger is second.logger
        second.shutdown()
        assert second.logger.handlers == []


class TestGlobalSecurityLogger:
    """Test cases for the module-level logger."""

    def teardown_method(self):
        shutdown_security_logger()

    def test_get_returns_singleton(self):
        assert get_security_logger() is get_security_logger()

    def test_configure_replaces_instance(self):
        original = get_security_logger()

        configured = configure_security_logger(log_format="text", console_output=False)

        assert configured is not original
        assert get_security_logger() is configured
        assert configured.log_format == "text"
