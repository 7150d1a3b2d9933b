# abac-engine/abac_engine/models.py
"""
Data models for the ABAC engine.

Policies use a statement-based document layout::

    {
        "Version": "2024-01-01",
        "Id": "pol-docs",
        "Statement": [
            {"Sid": "ReadDocs", "Effect": "Allow",
             "Action": "document-service:file:read",
             "Resource": "api:documents:*",
             "Condition": {"StringEquals": {"user.department": "engineering"}}}
        ]
    }

Requests, enriched records and decisions are plain dataclasses; a Decision
is frozen once produced.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .exceptions import PolicyParseError


class Effect(Enum):
    """Statement effects."""
    ALLOW = "allow"
    DENY = "deny"

    @classmethod
    def parse(cls, value: Union[str, "Effect"]) -> "Effect":
        """Parse an effect name case-insensitively."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise PolicyParseError(f"Invalid statement effect: {value!r}")


class DecisionResult(Enum):
    """Authorization outcomes."""
    PERMIT = "permit"
    DENY = "deny"


def _normalize_patterns(value: Union[str, Sequence[str], None]) -> Tuple[str, ...]:
    """Normalize Action/Resource patterns (a string or list of strings) to a tuple."""
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)):
        for item in value:
            if not isinstance(item, str):
                raise PolicyParseError(f"Action/Resource entries must be strings, got {item!r}")
        return tuple(value)
    raise PolicyParseError(f"Action/Resource must be a string or a list of strings, got {value!r}")


@dataclass
class Statement:
    """A single Allow/Deny rule within a policy."""
    effect: Effect
    action: Tuple[str, ...]
    resource: Tuple[str, ...]
    sid: str = ""
    not_resource: Tuple[str, ...] = ()
    condition: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        """Normalize effect and patterns."""
        self.effect = Effect.parse(self.effect)
        self.action = _normalize_patterns(self.action)
        self.resource = _normalize_patterns(self.resource)
        self.not_resource = _normalize_patterns(self.not_resource)
        if not self.action:
            raise PolicyParseError(f"Statement {self.sid or '<unnamed>'} has no Action")
        if not self.resource:
            raise PolicyParseError(f"Statement {self.sid or '<unnamed>'} has no Resource")
        if self.condition is not None and not isinstance(self.condition, dict):
            raise PolicyParseError(f"Statement {self.sid or '<unnamed>'} Condition must be a mapping")

    @property
    def is_deny(self) -> bool:
        return self.effect is Effect.DENY

    def to_dict(self) -> Dict[str, Any]:
        """Convert statement to its document form."""
        data: Dict[str, Any] = {
            "Effect": self.effect.value.capitalize(),
            "Action": list(self.action),
            "Resource": list(self.resource),
        }
        if self.sid:
            data["Sid"] = self.sid
        if self.not_resource:
            data["NotResource"] = list(self.not_resource)
        if self.condition:
            data["Condition"] = self.condition
        return data


@dataclass
class Policy:
    """An ordered collection of statements with storage metadata."""
    id: str
    statements: List[Statement] = field(default_factory=list)
    policy_name: str = ""
    description: str = ""
    version: str = ""
    enabled: bool = True

    def __post_init__(self):
        """Validate policy after initialization."""
        if not self.id:
            raise PolicyParseError("Policy ID cannot be empty")
        if not self.policy_name:
            self.policy_name = self.id

    def to_dict(self) -> Dict[str, Any]:
        """Convert policy to dictionary."""
        return {
            "Id": self.id,
            "Version": self.version,
            "policy_name": self.policy_name,
            "description": self.description,
            "enabled": self.enabled,
            "Statement": [statement.to_dict() for statement in self.statements],
        }


@dataclass
class EnvironmentInfo:
    """Request environment as observed by the enforcement point."""
    client_ip: str = ""
    user_agent: str = ""
    country: str = ""
    region: str = ""
    time_of_day: str = ""
    day_of_week: str = ""
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class EvaluationRequest:
    """
    Authorization question sent by an enforcement point.

    ``subject_id``, ``resource_id`` and ``action`` are mandatory; the PDP
    rejects requests missing any of them before evaluation starts.
    """
    subject_id: str
    resource_id: str
    action: str
    request_id: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    environment: Optional[EnvironmentInfo] = None
    timestamp: Optional[datetime] = None

    def missing_fields(self) -> List[str]:
        """Names of mandatory fields that are empty."""
        return [
            name for name in ("subject_id", "resource_id", "action")
            if not getattr(self, name)
        ]


@dataclass
class Subject:
    """Subject record returned by the attribute resolver."""
    id: str
    subject_type: str = "user"
    attributes: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    external_id: str = ""


@dataclass
class Resource:
    """Resource record returned by the attribute resolver."""
    id: str
    resource_type: str = ""
    resource_id: str = ""
    path: str = ""
    parent_id: str = ""
    attributes: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.resource_id:
            self.resource_id = self.id


@dataclass
class Action:
    """Action record returned by the attribute resolver."""
    id: str
    action_name: str = ""
    action_category: str = ""
    description: str = ""
    is_system: bool = False

    def __post_init__(self):
        if not self.action_name:
            self.action_name = self.id


@dataclass
class EnrichedContext:
    """Records and environment gathered for one request."""
    subject: Optional[Subject] = None
    resource: Optional[Resource] = None
    action: Optional[Action] = None
    environment: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class Decision:
    """Result of a policy evaluation."""
    result: DecisionResult
    matched_policies: Tuple[str, ...] = ()
    reason: str = ""
    matched_statements: Tuple[str, ...] = ()
    evaluation_time_ms: int = 0

    @property
    def is_permit(self) -> bool:
        return self.result is DecisionResult.PERMIT

    def with_evaluation_time(self, evaluation_time_ms: int) -> "Decision":
        """Return a copy stamped with the evaluation duration in whole milliseconds."""
        return replace(self, evaluation_time_ms=int(evaluation_time_ms))

    def to_dict(self) -> Dict[str, Any]:
        """Convert decision to dictionary."""
        return {
            "result": self.result.value,
            "matched_policies": list(self.matched_policies),
            "reason": self.reason,
            "evaluation_time_ms": self.evaluation_time_ms,
        }
