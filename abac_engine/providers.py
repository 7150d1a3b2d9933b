# abac-engine/abac_engine/providers.py
"""
Reference collaborators for the policy decision point.

- :class:`PolicyParser` turns policy documents (dicts, JSON strings, JSON or
  YAML files) into :class:`~abac_engine.models.Policy` objects.
- :class:`InMemoryStorage` keeps policies, subjects, resources and actions
  in memory and can load them from files.
- :class:`StorageAttributeResolver` enriches requests from an
  :class:`InMemoryStorage`.
"""
import json
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .exceptions import ContextEnrichmentError, PolicyParseError
from .logging import SecurityLogger, get_security_logger
from .models import (
    Action,
    EnrichedContext,
    EvaluationRequest,
    Policy,
    Resource,
    Statement,
    Subject,
)
from .pdp import AttributeResolver, Storage, format_rfc3339

logger = logging.getLogger(__name__)

POLICY_FILE_SUFFIXES = (".json", ".yaml", ".yml")


def _first(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the value of the first key present (document keys vs storage keys)."""
    for key in keys:
        if key in data:
            return data[key]
    return default


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("false", "0", "no", "off", "")
    return bool(value)


class PolicyParser:
    """Parser for statement-based policy documents."""

    def parse_policy_from_dict(self, policy_dict: Dict[str, Any]) -> Policy:
        """Parse policy from dictionary representation."""
        if not isinstance(policy_dict, dict):
            raise PolicyParseError(f"Policy document must be a mapping, got {type(policy_dict).__name__}")

        policy_id = _first(policy_dict, "Id", "id", "policy_id")
        try:
            statements_data = _first(policy_dict, "Statement", "statement", default=[])
            if isinstance(statements_data, dict):
                statements_data = [statements_data]
            if not isinstance(statements_data, list):
                raise PolicyParseError("Statement must be a list of statements")

            statements = [self._parse_statement(data) for data in statements_data]
            return Policy(
                id=policy_id,
                statements=statements,
                policy_name=_first(policy_dict, "policy_name", "PolicyName", "name", default="") or "",
                description=_first(policy_dict, "description", "Description", default="") or "",
                version=str(_first(policy_dict, "Version", "version", default="") or ""),
                enabled=_as_bool(_first(policy_dict, "enabled", "Enabled", default=True)),
            )
        except PolicyParseError as e:
            if e.policy_id is None and policy_id:
                e.policy_id = policy_id
                e.details["policy_id"] = policy_id
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise PolicyParseError(f"Failed to parse policy: {e}", policy_id=policy_id, cause=e)

    def _parse_statement(self, data: Dict[str, Any]) -> Statement:
        """Parse a single statement."""
        if not isinstance(data, dict):
            raise PolicyParseError(f"Statement must be a mapping, got {type(data).__name__}")
        if "Effect" not in data and "effect" not in data:
            raise PolicyParseError(f"Statement {data.get('Sid', '<unnamed>')} has no Effect")

        return Statement(
            sid=str(_first(data, "Sid", "sid", default="") or ""),
            effect=_first(data, "Effect", "effect"),
            action=_first(data, "Action", "action"),
            resource=_first(data, "Resource", "resource"),
            not_resource=_first(data, "NotResource", "not_resource"),
            condition=_first(data, "Condition", "condition"),
        )

    def parse_policy_from_json(self, json_str: str) -> Policy:
        """Parse policy from JSON string."""
        try:
            policy_dict = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise PolicyParseError(f"Invalid JSON policy: {e}", cause=e)
        return self.parse_policy_from_dict(policy_dict)

    def parse_policy_from_file(self, file_path: Union[str, Path]) -> Policy:
        """Parse a single policy from a JSON or YAML file."""
        policies = self.parse_policies_from_file(file_path)
        if len(policies) != 1:
            raise PolicyParseError(
                f"Expected one policy in {file_path}, found {len(policies)}",
                source=str(file_path)
            )
        return policies[0]

    def parse_policies_from_file(self, file_path: Union[str, Path]) -> List[Policy]:
        """
        Parse every policy in a file.

        The file may hold a single policy document, a list of documents or a
        mapping with a ``policies`` list.
        """
        data = load_document(file_path)
        if isinstance(data, dict) and "policies" in data:
            data = data["policies"]
        documents = data if isinstance(data, list) else [data]

        policies = []
        for document in documents:
            try:
                policies.append(self.parse_policy_from_dict(document))
            except PolicyParseError as e:
                e.source = str(file_path)
                e.details["source"] = str(file_path)
                raise
        return policies


def load_document(file_path: Union[str, Path]) -> Any:
    """Read a JSON or YAML document."""
    file_path = Path(file_path)
    suffix = file_path.suffix.lower()
    if suffix not in POLICY_FILE_SUFFIXES:
        raise PolicyParseError(f"Unsupported policy file format: {suffix}", source=str(file_path))

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            if suffix == ".json":
                return json.load(f)
            return yaml.safe_load(f)
    except (IOError, OSError) as e:
        raise PolicyParseError(f"Failed to read policy file {file_path}: {e}", source=str(file_path), cause=e)
    except (ValueError, yaml.YAMLError) as e:
        raise PolicyParseError(f"Invalid policy file {file_path}: {e}", source=str(file_path), cause=e)


class InMemoryStorage(Storage):
    """
    Storage for policies and attribute records.

    Policies are returned in insertion order; adding a policy with an
    existing ID replaces it in place.
    """

    def __init__(
        self,
        policies: Optional[List[Policy]] = None,
        security_logger: Optional[SecurityLogger] = None
    ):
        self._policies: Dict[str, Policy] = {}
        self._subjects: Dict[str, Subject] = {}
        self._resources: Dict[str, Resource] = {}
        self._actions: Dict[str, Action] = {}
        self._security_logger = security_logger
        self.parser = PolicyParser()
        for policy in policies or []:
            self.add_policy(policy)

    @property
    def security_logger(self) -> SecurityLogger:
        if self._security_logger is None:
            self._security_logger = get_security_logger()
        return self._security_logger

    # Policies

    def add_policy(self, policy: Policy):
        """Add policy to store."""
        if not isinstance(policy, Policy):
            raise PolicyParseError(f"Invalid policy type: {type(policy).__name__}")
        self._policies[policy.id] = policy
        logger.debug("Policy added: %s", policy.id)

    def remove_policy(self, policy_id: str) -> bool:
        """Remove policy from store."""
        return self._policies.pop(policy_id, None) is not None

    def get_policy(self, policy_id: str) -> Optional[Policy]:
        return self._policies.get(policy_id)

    def get_policies(self) -> List[Policy]:
        return list(self._policies.values())

    def get_enabled_policies(self) -> List[Policy]:
        return [policy for policy in self._policies.values() if policy.enabled]

    def clear(self):
        """Remove every policy and record."""
        self._policies.clear()
        self._subjects.clear()
        self._resources.clear()
        self._actions.clear()

    def load_policies_from_file(self, file_path: Union[str, Path]) -> int:
        """Load policies from a JSON or YAML file; returns the number loaded."""
        policies = self.parser.parse_policies_from_file(file_path)
        for policy in policies:
            self.add_policy(policy)
        self.security_logger.log_policy_event(
            policy_id=None,
            operation="load",
            message=f"Loaded {len(policies)} policies from {file_path}",
            details={"file_path": str(file_path), "count": len(policies)}
        )
        return len(policies)

    def load_policies_from_directory(self, directory_path: Union[str, Path]) -> int:
        """
        Load policies from every JSON/YAML file in a directory.

        Files that fail to parse are reported and skipped.
        """
        directory = Path(directory_path)
        if not directory.exists() or not directory.is_dir():
            raise PolicyParseError(f"Policy directory does not exist: {directory_path}")

        loaded_count = 0
        for policy_file in sorted(directory.iterdir()):
            if policy_file.suffix.lower() not in POLICY_FILE_SUFFIXES:
                continue
            try:
                policies = self.parser.parse_policies_from_file(policy_file)
            except PolicyParseError as e:
                self.security_logger.log_policy_event(
                    policy_id=e.policy_id,
                    operation="reject",
                    message=f"Failed to load policy from {policy_file}: {e}",
                    details={"file_path": str(policy_file), "error": str(e)}
                )
                continue
            for policy in policies:
                self.add_policy(policy)
            loaded_count += len(policies)

        self.security_logger.log_policy_event(
            policy_id=None,
            operation="load",
            message=f"Loaded {loaded_count} policies from directory",
            details={"directory": str(directory_path), "count": loaded_count}
        )
        return loaded_count

    # Attribute records

    def add_subject(self, subject: Subject):
        self._subjects[subject.id] = subject

    def get_subject(self, subject_id: str) -> Optional[Subject]:
        return self._subjects.get(subject_id)

    def add_resource(self, resource: Resource):
        self._resources[resource.resource_id] = resource

    def get_resource(self, resource_id: str) -> Optional[Resource]:
        resource = self._resources.get(resource_id)
        if resource is None:
            resource = next((r for r in self._resources.values() if r.id == resource_id), None)
        return resource

    def add_action(self, action: Action):
        self._actions[action.action_name] = action

    def get_action(self, action_name: str) -> Optional[Action]:
        return self._actions.get(action_name)

    def load_from_dict(self, data: Dict[str, Any]):
        """
        Load a data set of the form::

            {"policies": [...], "subjects": [...], "resources": [...], "actions": [...]}
        """
        for document in data.get("policies", []):
            self.add_policy(self.parser.parse_policy_from_dict(document))
        for item in data.get("subjects", []):
            self.add_subject(Subject(**item))
        for item in data.get("resources", []):
            self.add_resource(Resource(**item))
        for item in data.get("actions", []):
            self.add_action(Action(**item))

    def load_from_file(self, file_path: Union[str, Path]):
        """Load a data set (see :meth:`load_from_dict`) from a JSON or YAML file."""
        data = load_document(file_path)
        if not isinstance(data, dict):
            raise PolicyParseError(f"Data file must contain a mapping: {file_path}", source=str(file_path))
        try:
            self.load_from_dict(data)
        except TypeError as e:
            raise PolicyParseError(f"Invalid record in {file_path}: {e}", source=str(file_path), cause=e)


class StorageAttributeResolver(AttributeResolver):
    """
    Enriches requests from an :class:`InMemoryStorage`.

    With ``strict=True`` every subject, resource and action must exist in the
    storage; otherwise missing resource and action records are synthesized
    from the request identifiers. The subject is always required.
    """

    def __init__(self, storage: InMemoryStorage, strict: bool = True):
        self.storage = storage
        self.strict = strict

    def enrich_context(self, request: EvaluationRequest) -> EnrichedContext:
        subject = self.storage.get_subject(request.subject_id)
        if subject is None:
            raise self._not_found("subject", request.subject_id, request)

        resource = self.storage.get_resource(request.resource_id)
        if resource is None:
            if self.strict:
                raise self._not_found("resource", request.resource_id, request)
            resource = Resource(id=request.resource_id)

        action = self.storage.get_action(request.action)
        if action is None:
            if self.strict:
                raise self._not_found("action", request.action, request)
            action = Action(id=request.action)

        now = datetime.now(timezone.utc)
        environment = dict(request.context or {})
        environment.setdefault("timestamp", format_rfc3339(request.timestamp or now))

        return EnrichedContext(
            subject=self._with_dynamic_attributes(subject, now),
            resource=resource,
            action=action,
            environment=environment,
            timestamp=now,
        )

    @staticmethod
    def _with_dynamic_attributes(subject: Subject, now: datetime) -> Subject:
        """Copy of the subject with computed attributes; the stored record is untouched."""
        attributes = dict(subject.attributes or {})
        hire_date = attributes.get("hire_date")
        if isinstance(hire_date, str):
            try:
                hired = date.fromisoformat(hire_date)
            except ValueError:
                hired = None
            if hired is not None:
                attributes["years_of_service"] = int((now.date() - hired).days / 365.25)
        return Subject(
            id=subject.id,
            subject_type=subject.subject_type,
            attributes=attributes,
            metadata=dict(subject.metadata or {}),
            external_id=subject.external_id,
        )

    @staticmethod
    def _not_found(kind: str, identifier: str, request: EvaluationRequest) -> ContextEnrichmentError:
        return ContextEnrichmentError(
            f"{kind.capitalize()} '{identifier}' not found",
            subject=request.subject_id,
            resource=request.resource_id,
            action=request.action
        )
