# abac-engine/abac_engine/logging.py
"""
Security event logging for the ABAC engine.

Decisions, policy loading problems and evaluation failures are recorded as
structured events and written through the ``abac_engine.security`` logger,
one JSON document (or one text line) per event. Where the records end up is
up to the handlers: console, a rotating file, or whatever the host
application attaches to the logger.
"""
import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import SecurityLoggingConfig
from .exceptions import ConfigurationError

SECURITY_LOGGER_NAME = "abac_engine.security"

JSON_FORMAT = "%(message)s"
TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SecurityEventType(Enum):
    """Kinds of events emitted by the decision point."""
    AUTHORIZATION = "authorization"
    ACCESS_DENIED = "access_denied"
    POLICY_EVENT = "policy_event"
    CONFIGURATION_CHANGE = "configuration_change"
    EVALUATION_ERROR = "evaluation_error"


class SecurityEventSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_LEVELS = {
    SecurityEventSeverity.LOW: logging.INFO,
    SecurityEventSeverity.MEDIUM: logging.WARNING,
    SecurityEventSeverity.HIGH: logging.ERROR,
    SecurityEventSeverity.CRITICAL: logging.CRITICAL,
}


@dataclass
class SecurityEvent:
    """Common envelope of every security event."""
    event_type: SecurityEventType = SecurityEventType.AUTHORIZATION
    severity: SecurityEventSeverity = SecurityEventSeverity.LOW
    message: str = ""
    source: str = "abac-engine"
    user_id: Optional[str] = None
    ip_address: Optional[str] = None
    correlation_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.update(
            event_type=self.event_type.value,
            severity=self.severity.value,
            timestamp=self.timestamp.isoformat(),
        )
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


@dataclass
class AuthzEvent(SecurityEvent):
    """
    Outcome of one evaluation.

    Denials are reported as ``access_denied`` with medium severity so they
    surface at WARNING level; permits stay at INFO.
    """
    resource: Optional[str] = None
    action: Optional[str] = None
    decision: str = "deny"
    reason: Optional[str] = None
    matched_policies: List[str] = field(default_factory=list)
    evaluation_time_ms: Optional[float] = None

    def __post_init__(self):
        if self.decision.lower() == "deny":
            self.event_type = SecurityEventType.ACCESS_DENIED
            self.severity = SecurityEventSeverity.MEDIUM
        else:
            self.event_type = SecurityEventType.AUTHORIZATION
            self.severity = SecurityEventSeverity.LOW


@dataclass
class PolicyEvent(SecurityEvent):
    """Policy loaded, rejected or skipped."""
    event_type: SecurityEventType = SecurityEventType.POLICY_EVENT
    policy_id: Optional[str] = None
    operation: Optional[str] = None  # load, reject

    def __post_init__(self):
        if self.operation == "reject":
            self.severity = SecurityEventSeverity.MEDIUM


class SecurityLogger:
    """
    Writes security events to the ``abac_engine.security`` logger.

    Creating a logger replaces the handlers a previous instance installed on
    the same logger name, so reconfiguration never duplicates output.
    """

    def __init__(
        self,
        log_level: str = "INFO",
        log_format: str = "json",
        log_file: Optional[str] = None,
        max_file_size: int = 10 * 1024 * 1024,  # 10MB
        backup_count: int = 5,
        console_output: bool = True,
        enabled: bool = True,
        service_name: str = "abac-engine",
        logger_name: str = SECURITY_LOGGER_NAME,
    ):
        level = logging.getLevelName(log_level.upper())
        if not isinstance(level, int):
            raise ConfigurationError(f"Invalid log level: {log_level}")
        if log_format not in ("json", "text"):
            raise ConfigurationError(f"Invalid log format: {log_format}")

        self.log_level = level
        self.log_format = log_format
        self.enabled = enabled
        self.service_name = service_name

        self.logger = logging.getLogger(logger_name)
        self.logger.setLevel(level)
        self._remove_handlers()

        formatter = logging.Formatter(JSON_FORMAT if log_format == "json" else TEXT_FORMAT)
        for handler in self._build_handlers(log_file, max_file_size, backup_count, console_output):
            handler.setLevel(level)
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    @classmethod
    def from_config(
        cls,
        config: SecurityLoggingConfig,
        service_name: str = "abac-engine",
        **kwargs
    ) -> "SecurityLogger":
        """Build a logger from the ``security_logging`` configuration section."""
        return cls(
            log_level=config.log_level,
            log_format=config.log_format,
            log_file=config.log_file,
            enabled=config.enabled,
            service_name=service_name,
            **kwargs
        )

    @staticmethod
    def _build_handlers(
        log_file: Optional[str],
        max_file_size: int,
        backup_count: int,
        console_output: bool
    ) -> List[logging.Handler]:
        handlers: List[logging.Handler] = []
        if log_file:
            try:
                Path(log_file).parent.mkdir(parents=True, exist_ok=True)
                handlers.append(RotatingFileHandler(
                    log_file, maxBytes=max_file_size, backupCount=backup_count
                ))
            except OSError as e:
                raise ConfigurationError(f"Cannot open security log {log_file}: {e}", cause=e)
        if console_output:
            handlers.append(logging.StreamHandler())
        return handlers

    def _remove_handlers(self):
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

    def _render(self, event: SecurityEvent) -> str:
        if self.log_format == "json":
            return event.to_json()
        return f"Security Event: {event.message or event.event_type.value}"

    def log_event(self, event: SecurityEvent):
        """Emit one event at the level matching its severity."""
        if not self.enabled:
            return
        event.source = self.service_name
        self.logger.log(SEVERITY_LEVELS[event.severity], self._render(event))

    def log_authz_event(
        self,
        user_id: str,
        resource: str,
        action: str,
        decision: str,
        reason: Optional[str] = None,
        matched_policies: Optional[List[str]] = None,
        evaluation_time_ms: Optional[float] = None,
        **kwargs
    ):
        self.log_event(AuthzEvent(
            user_id=user_id,
            resource=resource,
            action=action,
            decision=decision,
            reason=reason,
            matched_policies=list(matched_policies or []),
            evaluation_time_ms=evaluation_time_ms,
            message=f"{decision} {action} on {resource} for {user_id}",
            **kwargs
        ))

    def log_policy_event(
        self,
        policy_id: Optional[str],
        operation: str,
        message: str,
        **kwargs
    ):
        self.log_event(PolicyEvent(policy_id=policy_id, operation=operation, message=message, **kwargs))

    def log_evaluation_error(
        self,
        error: Exception,
        user_id: Optional[str] = None,
        severity: SecurityEventSeverity = SecurityEventSeverity.HIGH,
        **kwargs
    ):
        """Record an error that prevented a decision."""
        if hasattr(error, "to_dict"):
            details = error.to_dict()
        else:
            details = {"error_type": type(error).__name__, "message": str(error)}
        self.log_event(SecurityEvent(
            event_type=SecurityEventType.EVALUATION_ERROR,
            severity=severity,
            user_id=user_id,
            message=f"Evaluation failed: {error}",
            details=details,
            **kwargs
        ))

    def shutdown(self):
        """Detach and close this logger's handlers."""
        self._remove_handlers()


_security_logger: Optional[SecurityLogger] = None


def get_security_logger() -> SecurityLogger:
    """Process-wide security logger, created with defaults on first use."""
    global _security_logger
    if _security_logger is None:
        _security_logger = SecurityLogger()
    return _security_logger


def configure_security_logger(
    config: Optional[SecurityLoggingConfig] = None,
    service_name: str = "abac-engine",
    **kwargs
) -> SecurityLogger:
    """
    Replace the process-wide security logger.

    Either pass a ``SecurityLoggingConfig`` section or keyword arguments
    accepted by :class:`SecurityLogger`.
    """
    global _security_logger
    if _security_logger is not None:
        _security_logger.shutdown()

    if config is not None:
        _security_logger = SecurityLogger.from_config(config, service_name=service_name, **kwargs)
    else:
        _security_logger = SecurityLogger(service_name=service_name, **kwargs)
    return _security_logger


def shutdown_security_logger():
    global _security_logger
    if _security_logger is not None:
        _security_logger.shutdown()
        _security_logger = None
