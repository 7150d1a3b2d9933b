# abac-engine/abac_engine/exceptions.py
"""
Exception classes for the ABAC engine.

Only request validation, collaborator failures, configuration and policy
loading raise. Problems inside policy logic (unknown operators, missing
attributes, malformed paths or resource strings) never raise into the
caller; they evaluate to ``False`` and the request is denied.
"""

from typing import Optional, Dict, Any


class ABACEngineError(Exception):
    """
    Base exception for all ABAC engine errors.
    Carries an error code, structured details and the underlying cause so
    the error can be logged or serialized without losing context.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": str(self),
            "details": self.details,
            "cause": str(self.cause) if self.cause else None
        }


class ConfigurationError(ABACEngineError):
    """Exception raised for configuration errors."""
    pass


class PolicyParseError(ABACEngineError):
    """
    Raised when a policy document cannot be turned into a Policy.
    """
    def __init__(
        self,
        message: str,
        policy_id: Optional[str] = None,
        source: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.policy_id = policy_id
        self.source = source
        if policy_id:
            self.details["policy_id"] = policy_id
        if source:
            self.details["source"] = source


class InvalidPathError(ABACEngineError):
    """Raised by the path normalizer for syntactically invalid attribute paths."""
    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.path = path
        if path is not None:
            self.details["path"] = path


class ConditionLimitError(ABACEngineError):
    """Raised when a condition block exceeds the nesting depth or key limits."""
    def __init__(
        self,
        message: str,
        limit_name: Optional[str] = None,
        limit: Optional[int] = None,
        actual: Optional[int] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.limit_name = limit_name
        self.limit = limit
        self.actual = actual
        if limit_name:
            self.details["limit_name"] = limit_name
        if limit is not None:
            self.details["limit"] = limit
        if actual is not None:
            self.details["actual"] = actual


class RequestValidationError(ABACEngineError):
    """
    Raised before any evaluation when the incoming request is missing
    its subject, resource or action. No decision is produced.
    """
    def __init__(
        self,
        message: str,
        missing_fields: Optional[list] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.missing_fields = missing_fields or []
        if missing_fields:
            self.details["missing_fields"] = missing_fields


class EvaluationError(ABACEngineError):
    """
    Evaluation could not produce a decision.
    The caller (usually an enforcement point) must fail closed.
    """
    def __init__(
        self,
        message: str,
        subject: Optional[str] = None,
        resource: Optional[str] = None,
        action: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.subject = subject
        self.resource = resource
        self.action = action
        if subject:
            self.details["subject"] = subject
        if resource:
            self.details["resource"] = resource
        if action:
            self.details["action"] = action


class ContextEnrichmentError(EvaluationError):
    """The attribute resolver failed to enrich the request context."""
    pass


class PolicyRetrievalError(EvaluationError):
    """The storage collaborator failed to return the policy set."""
    pass


class EvaluationTimeoutError(EvaluationError):
    """Evaluation did not finish within the configured deadline."""
    def __init__(self, message: str, timeout_ms: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout_ms = timeout_ms
        if timeout_ms is not None:
            self.details["timeout_ms"] = timeout_ms
