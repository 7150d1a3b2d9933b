# abac-engine/abac_engine/__init__.py
"""
ABAC Engine

An attribute-based access control Policy Decision Point. Policies are
statement documents (Effect, Action, Resource, NotResource, Condition)
evaluated with deny-override semantics against an attribute context built
from the request, the subject, the resource and the environment.

Example usage:
    from abac_engine import (
        EvaluationRequest, InMemoryStorage, PolicyDecisionPoint,
        StorageAttributeResolver,
    )

    storage = InMemoryStorage()
    storage.load_from_file("policies.yaml")
    pdp = PolicyDecisionPoint(storage, StorageAttributeResolver(storage))

    decision = pdp.evaluate(EvaluationRequest(
        subject_id="user-123",
        resource_id="api:documents:doc-1",
        action="document-service:file:read",
    ))
"""

from .version import __version__
from .config import (
    ABACConfig,
    BusinessHoursConfig,
    EvaluationLimits,
    NetworkConfig,
    PathConfig,
    SecurityLoggingConfig,
    get_default_config,
)
from .exceptions import (
    ABACEngineError,
    ConditionLimitError,
    ConfigurationError,
    ContextEnrichmentError,
    EvaluationError,
    EvaluationTimeoutError,
    InvalidPathError,
    PolicyParseError,
    PolicyRetrievalError,
    RequestValidationError,
)
from .logging import (
    AuthzEvent,
    PolicyEvent,
    SecurityEvent,
    SecurityEventSeverity,
    SecurityEventType,
    SecurityLogger,
    configure_security_logger,
    get_security_logger,
)
from .models import (
    Action,
    Decision,
    DecisionResult,
    Effect,
    EnrichedContext,
    EnvironmentInfo,
    EvaluationRequest,
    Policy,
    Resource,
    Statement,
    Subject,
)
from .pdp import (
    AttributeResolver,
    EvaluationContextBuilder,
    PolicyDecisionPoint,
    Storage,
)
from .providers import InMemoryStorage, PolicyParser, StorageAttributeResolver

__all__ = [
    "__version__",
    # Decision point
    "PolicyDecisionPoint",
    "EvaluationContextBuilder",
    "Storage",
    "AttributeResolver",
    # Providers
    "InMemoryStorage",
    "PolicyParser",
    "StorageAttributeResolver",
    # Models
    "Policy",
    "Statement",
    "Effect",
    "EvaluationRequest",
    "EnvironmentInfo",
    "Subject",
    "Resource",
    "Action",
    "EnrichedContext",
    "Decision",
    "DecisionResult",
    # Configuration
    "ABACConfig",
    "EvaluationLimits",
    "BusinessHoursConfig",
    "NetworkConfig",
    "PathConfig",
    "SecurityLoggingConfig",
    "get_default_config",
    # Logging
    "SecurityLogger",
    "SecurityEvent",
    "AuthzEvent",
    "PolicyEvent",
    "SecurityEventType",
    "SecurityEventSeverity",
    "get_security_logger",
    "configure_security_logger",
    # Exceptions
    "ABACEngineError",
    "ConfigurationError",
    "PolicyParseError",
    "InvalidPathError",
    "ConditionLimitError",
    "RequestValidationError",
    "EvaluationError",
    "ContextEnrichmentError",
    "PolicyRetrievalError",
    "EvaluationTimeoutError",
]
