# abac-engine/abac_engine/pdp.py
"""
Policy Decision Point.

Evaluates an authorization request against the policy set using the
deny-override algorithm:

- policies and statements are scanned in collection order;
- a statement matches when its Action, Resource/NotResource and Condition
  all match;
- the first matching Deny statement ends the scan with ``deny``;
- otherwise any matching statement yields ``permit``;
- nothing matching yields an implicit ``deny``.

The PDP depends on two collaborators: a :class:`Storage` that returns the
policies and an :class:`AttributeResolver` that turns a request into
subject/resource/action records plus environment attributes.
"""
import asyncio
import functools
import ipaddress
import logging
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from .config import ABACConfig, WEEKDAY_NAMES
from .evaluator.conditions import ConditionEvaluator, substitute_variables
from .evaluator.matchers import ActionMatcher, ResourceMatcher
from .exceptions import (
    ABACEngineError,
    ConditionLimitError,
    ContextEnrichmentError,
    EvaluationTimeoutError,
    PolicyRetrievalError,
    RequestValidationError,
)
from .logging import SecurityLogger, get_security_logger
from .models import (
    Decision,
    DecisionResult,
    EnrichedContext,
    EvaluationRequest,
    Policy,
    Statement,
)

logger = logging.getLogger(__name__)

# Evaluation context keys
REQUEST_PREFIX = "request:"
USER_PREFIX = "user:"
RESOURCE_PREFIX = "resource:"
ENVIRONMENT_PREFIX = "environment:"

CONTEXT_KEY_USER_ID = "request:UserId"
CONTEXT_KEY_ACTION = "request:Action"
CONTEXT_KEY_RESOURCE_ID = "request:ResourceId"
CONTEXT_KEY_TIME = "request:Time"

# Decision reasons
REASON_DENIED_BY_STATEMENT = "Denied by statement: %s"
REASON_ALLOWED_BY_STATEMENTS = "Allowed by statements: %s"
REASON_IMPLICIT_DENY = "No matching policies found (implicit deny)"
REASON_INVALID_CONTEXT = "Invalid evaluation context: %s"
REASON_CONDITION_REJECTED = "Condition of statement %s rejected: %s"

MOBILE_PATTERN = re.compile(r"mobile|android|iphone|ipad|blackberry|windows phone", re.IGNORECASE)
BROWSER_PATTERNS = [
    ("edge", re.compile(r"edge|edg/", re.IGNORECASE)),
    ("opera", re.compile(r"opera|opr/", re.IGNORECASE)),
    ("chrome", re.compile(r"chrome", re.IGNORECASE)),
    ("firefox", re.compile(r"firefox", re.IGNORECASE)),
    ("safari", re.compile(r"safari", re.IGNORECASE)),
]


class Storage(ABC):
    """Source of policies."""

    @abstractmethod
    def get_policies(self) -> List[Policy]:
        """Return every policy, in evaluation order."""
        pass


class AttributeResolver(ABC):
    """Resolves request identifiers into attribute records."""

    @abstractmethod
    def enrich_context(self, request: EvaluationRequest) -> EnrichedContext:
        """Return subject, resource and action records plus environment attributes."""
        pass


def format_rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.isoformat(timespec="seconds")
    return text[:-6] + "Z" if text.endswith("+00:00") else text


def ip_class(value: str) -> str:
    try:
        address = ipaddress.ip_address(value)
    except ValueError:
        return "invalid"
    return "ipv4" if address.version == 4 else "ipv6"


def detect_browser(user_agent: str) -> str:
    for name, pattern in BROWSER_PATTERNS:
        if pattern.search(user_agent):
            return name
    return "unknown"


class EvaluationContextBuilder:
    """
    Builds the evaluation context for one request.

    Produces flat namespaced keys (``request:*``, ``user:*``, ``resource:*``,
    ``environment:*``) and nested ``user``/``resource``/``environment``
    views from the same enriched records.
    """

    def __init__(
        self,
        config: Optional[ABACConfig] = None,
        internal_ip_check: Optional[Callable[[str], bool]] = None
    ):
        self.config = config or ABACConfig()
        if internal_ip_check is None:
            networks = [
                ipaddress.ip_network(cidr, strict=False)
                for cidr in self.config.network.internal_ip_ranges
            ]
            internal_ip_check = functools.partial(_in_networks, networks=networks)
        self.internal_ip_check = internal_ip_check

    def build(self, request: EvaluationRequest, enriched: EnrichedContext) -> Dict[str, Any]:
        context: Dict[str, Any] = {
            CONTEXT_KEY_USER_ID: request.subject_id,
            CONTEXT_KEY_ACTION: request.action,
            CONTEXT_KEY_RESOURCE_ID: request.resource_id,
            CONTEXT_KEY_TIME: format_rfc3339(enriched.timestamp),
        }

        self._add_time_attributes(context, request.timestamp or enriched.timestamp)
        self._add_environment_info(context, request)
        self._add_subject(context, enriched)
        self._add_resource(context, enriched)

        for key, value in (request.context or {}).items():
            context[REQUEST_PREFIX + key] = value
        for key, value in (enriched.environment or {}).items():
            context[ENVIRONMENT_PREFIX + key] = value

        context["environment"] = {
            key[len(ENVIRONMENT_PREFIX):]: value
            for key, value in context.items()
            if key.startswith(ENVIRONMENT_PREFIX)
        }
        return context

    def _add_time_attributes(self, context: Dict[str, Any], timestamp: datetime):
        day_name = WEEKDAY_NAMES[timestamp.weekday()]
        context[ENVIRONMENT_PREFIX + "time_of_day"] = timestamp.strftime("%H:%M")
        context[ENVIRONMENT_PREFIX + "day_of_week"] = day_name.capitalize()
        context[ENVIRONMENT_PREFIX + "hour"] = timestamp.hour
        context[ENVIRONMENT_PREFIX + "minute"] = timestamp.minute
        context[ENVIRONMENT_PREFIX + "is_weekend"] = timestamp.weekday() >= 5
        context[ENVIRONMENT_PREFIX + "is_business_hours"] = (
            self.config.business_hours.is_business_hours(timestamp.hour, day_name)
        )

    def _add_environment_info(self, context: Dict[str, Any], request: EvaluationRequest):
        env = request.environment
        if env is None:
            return

        if env.client_ip:
            context[ENVIRONMENT_PREFIX + "client_ip"] = env.client_ip
            context[ENVIRONMENT_PREFIX + "is_internal_ip"] = self.internal_ip_check(env.client_ip)
            context[ENVIRONMENT_PREFIX + "ip_class"] = ip_class(env.client_ip)
        if env.user_agent:
            context[ENVIRONMENT_PREFIX + "user_agent"] = env.user_agent
            context[ENVIRONMENT_PREFIX + "is_mobile"] = bool(MOBILE_PATTERN.search(env.user_agent))
            context[ENVIRONMENT_PREFIX + "browser"] = detect_browser(env.user_agent)
        if env.country:
            context[ENVIRONMENT_PREFIX + "country"] = env.country
        if env.region:
            context[ENVIRONMENT_PREFIX + "region"] = env.region
        # Values reported by the enforcement point win over derived ones
        if env.time_of_day:
            context[ENVIRONMENT_PREFIX + "time_of_day"] = env.time_of_day
        if env.day_of_week:
            context[ENVIRONMENT_PREFIX + "day_of_week"] = env.day_of_week
        for key, value in (env.attributes or {}).items():
            context[ENVIRONMENT_PREFIX + key] = value

    @staticmethod
    def _add_subject(context: Dict[str, Any], enriched: EnrichedContext):
        subject = enriched.subject
        if subject is None:
            return
        attributes = dict(subject.attributes or {})
        for key, value in attributes.items():
            context[USER_PREFIX + key] = value
        context[USER_PREFIX + "SubjectType"] = subject.subject_type
        context["user"] = {
            "subject_type": subject.subject_type,
            "attributes": attributes,
        }

    @staticmethod
    def _add_resource(context: Dict[str, Any], enriched: EnrichedContext):
        resource = enriched.resource
        if resource is None:
            return
        attributes = dict(resource.attributes or {})
        for key, value in attributes.items():
            context[RESOURCE_PREFIX + key] = value
        context[RESOURCE_PREFIX + "ResourceType"] = resource.resource_type
        context[RESOURCE_PREFIX + "ResourceId"] = resource.resource_id
        context["resource"] = {
            "resource_type": resource.resource_type,
            "resource_id": resource.resource_id,
            "attributes": attributes,
        }


def _in_networks(value: str, networks: Iterable) -> bool:
    try:
        address = ipaddress.ip_address(value)
    except ValueError:
        return False
    return any(address in network for network in networks)


class PolicyDecisionPoint:
    """
    Deny-override policy decision point.

    Example:
        pdp = PolicyDecisionPoint(storage, StorageAttributeResolver(storage))
        decision = pdp.evaluate(EvaluationRequest(
            subject_id="user-123",
            resource_id="api:documents:doc-1",
            action="document-service:file:read",
        ))
        if decision.is_permit:
            ...
    """

    def __init__(
        self,
        storage: Storage,
        attribute_resolver: AttributeResolver,
        config: Optional[ABACConfig] = None,
        condition_evaluator: Optional[ConditionEvaluator] = None,
        security_logger: Optional[SecurityLogger] = None
    ):
        self.storage = storage
        self.attribute_resolver = attribute_resolver
        self.config = config or ABACConfig()
        self.condition_evaluator = condition_evaluator or ConditionEvaluator(config=self.config)
        self.action_matcher = ActionMatcher()
        self.resource_matcher = ResourceMatcher()
        self.context_builder = EvaluationContextBuilder(
            self.config,
            internal_ip_check=self.condition_evaluator.operators.is_internal_ip
        )
        self._security_logger = security_logger

    @property
    def security_logger(self) -> SecurityLogger:
        if self._security_logger is None:
            self._security_logger = get_security_logger()
        return self._security_logger

    def evaluate(self, request: EvaluationRequest) -> Decision:
        """
        Evaluate a request.

        Raises:
            RequestValidationError: subject, resource or action missing.
            ContextEnrichmentError: the attribute resolver failed.
            PolicyRetrievalError: the storage failed.
        """
        start_time = time.perf_counter()

        if request is None:
            raise RequestValidationError("Evaluation request cannot be None")
        missing = request.missing_fields()
        if missing:
            raise RequestValidationError(
                f"Invalid request: missing required fields ({', '.join(missing)})",
                missing_fields=missing
            )

        try:
            enriched = self.attribute_resolver.enrich_context(request)
        except ContextEnrichmentError as e:
            self._log_error(e, request)
            raise
        except Exception as e:
            error = ContextEnrichmentError(
                f"Failed to enrich context: {e}",
                subject=request.subject_id,
                resource=request.resource_id,
                action=request.action,
                cause=e
            )
            self._log_error(error, request)
            raise error from e

        try:
            policies = self.storage.get_policies()
        except Exception as e:
            error = PolicyRetrievalError(
                f"Failed to get policies: {e}",
                subject=request.subject_id,
                resource=request.resource_id,
                action=request.action,
                cause=e
            )
            self._log_error(error, request)
            raise error from e

        context = self.build_context(request, enriched)
        decision = self.evaluate_policies(policies, context)

        elapsed_ms = int((time.perf_counter() - start_time) * 1000)
        decision = decision.with_evaluation_time(elapsed_ms)

        if self.config.security_logging.enabled:
            self.security_logger.log_authz_event(
                user_id=request.subject_id,
                resource=request.resource_id,
                action=request.action,
                decision=decision.result.value,
                reason=decision.reason,
                matched_policies=list(decision.matched_policies),
                evaluation_time_ms=elapsed_ms,
                correlation_id=request.request_id or None,
                ip_address=request.environment.client_ip if request.environment else None
            )
        return decision

    async def evaluate_async(
        self,
        request: EvaluationRequest,
        timeout: Optional[float] = None
    ) -> Decision:
        """
        Run :meth:`evaluate` in the default executor under a deadline.

        ``timeout`` is in seconds and defaults to
        ``limits.max_evaluation_time_ms``. The worker thread is not
        interrupted; its late result is discarded.
        """
        if timeout is None:
            timeout = self.config.limits.max_evaluation_time_ms / 1000.0

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, self.evaluate, request)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            error = EvaluationTimeoutError(
                f"Evaluation exceeded {timeout * 1000:.0f}ms",
                timeout_ms=int(round(timeout * 1000)),
                subject=getattr(request, "subject_id", None),
                resource=getattr(request, "resource_id", None),
                action=getattr(request, "action", None)
            )
            self._log_error(error, request)
            raise error

    def evaluate_batch(self, requests: Iterable[EvaluationRequest]) -> List[Decision]:
        """Evaluate several requests in order; the first error propagates."""
        return [self.evaluate(request) for request in requests]

    def build_context(self, request: EvaluationRequest, enriched: EnrichedContext) -> Dict[str, Any]:
        return self.context_builder.build(request, enriched)

    def evaluate_policies(self, policies: Iterable[Policy], context: Mapping) -> Decision:
        """Apply deny-override to ``policies`` for the request described by ``context``."""
        problem = self._validate_context(context)
        if problem:
            logger.warning("Refusing evaluation: %s", problem)
            return Decision(
                result=DecisionResult.DENY,
                reason=REASON_INVALID_CONTEXT % problem
            )

        matched_policies: List[str] = []
        matched_statements: List[str] = []

        for policy in policies:
            if not policy.enabled:
                continue

            for statement in policy.statements:
                try:
                    matched = self._match_statement(statement, context)
                except ConditionLimitError as e:
                    self._reject_statement(statement, policy.id, e)
                    if statement.is_deny:
                        return Decision(
                            result=DecisionResult.DENY,
                            matched_policies=tuple(matched_policies),
                            matched_statements=tuple(matched_statements),
                            reason=REASON_CONDITION_REJECTED % (statement.sid, e)
                        )
                    continue
                if not matched:
                    continue

                matched_policies.append(policy.id)
                if statement.sid:
                    matched_statements.append(statement.sid)

                if statement.is_deny:
                    return Decision(
                        result=DecisionResult.DENY,
                        matched_policies=tuple(matched_policies),
                        matched_statements=tuple(matched_statements),
                        reason=REASON_DENIED_BY_STATEMENT % statement.sid
                    )

        if matched_policies:
            return Decision(
                result=DecisionResult.PERMIT,
                matched_policies=tuple(matched_policies),
                matched_statements=tuple(matched_statements),
                reason=REASON_ALLOWED_BY_STATEMENTS % ", ".join(matched_statements)
            )

        return Decision(result=DecisionResult.DENY, reason=REASON_IMPLICIT_DENY)

    def evaluate_statement(
        self,
        statement: Statement,
        context: Mapping,
        policy_id: Optional[str] = None
    ) -> bool:
        """
        Check action, resource/NotResource and condition of one statement.

        A statement whose condition is over the configured limits does not
        match. Within :meth:`evaluate_policies` such a Deny statement ends
        the evaluation with ``deny`` instead.
        """
        try:
            return self._match_statement(statement, context)
        except ConditionLimitError as e:
            self._reject_statement(statement, policy_id, e)
            return False

    def _match_statement(self, statement: Statement, context: Mapping) -> bool:
        """Raises ConditionLimitError for an over-limit condition."""
        action = context.get(CONTEXT_KEY_ACTION)
        resource = context.get(CONTEXT_KEY_RESOURCE_ID)
        if not isinstance(action, str) or not action:
            return False
        if not isinstance(resource, str) or not resource:
            return False

        if not self.action_matcher.match_any(statement.action, action):
            return False
        if not self.resource_matcher.match_any(statement.resource, resource, context):
            return False
        if statement.not_resource and self.resource_matcher.match_any(
            statement.not_resource, resource, context
        ):
            return False

        if not statement.condition:
            return True
        node = self.condition_evaluator.parse(
            substitute_variables(statement.condition, context)
        )
        return self.condition_evaluator.evaluate(node, context)

    def _reject_statement(
        self,
        statement: Statement,
        policy_id: Optional[str],
        error: ConditionLimitError
    ):
        logger.warning(
            "Condition of statement %s in policy %s rejected: %s", statement.sid, policy_id, error
        )
        if self.config.security_logging.enabled:
            self.security_logger.log_policy_event(
                policy_id=policy_id,
                operation="reject",
                message=f"Condition of statement '{statement.sid}' rejected: {error}",
                details=error.to_dict()
            )

    def _validate_context(self, context: Any) -> Optional[str]:
        if not isinstance(context, Mapping):
            return "context must be a mapping"
        for key in (CONTEXT_KEY_ACTION, CONTEXT_KEY_RESOURCE_ID):
            if key not in context:
                return f"missing key {key}"
        limit = self.config.limits.max_context_keys
        if len(context) > limit:
            return f"{len(context)} keys exceed the limit of {limit}"
        return None

    def _log_error(self, error: ABACEngineError, request: Any):
        logger.error("Evaluation failed: %s", error)
        if self.config.security_logging.enabled:
            self.security_logger.log_evaluation_error(
                error,
                user_id=getattr(request, "subject_id", None)
            )
