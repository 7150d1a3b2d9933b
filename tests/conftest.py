"""Shared fixtures for the ABAC engine test suite."""

from datetime import datetime, timezone

import pytest

from abac_engine.config import ABACConfig
from abac_engine.logging import SecurityLogger
from abac_engine.models import Action, Policy, Resource, Statement, Subject
from abac_engine.pdp import PolicyDecisionPoint
from abac_engine.providers import InMemoryStorage, StorageAttributeResolver


@pytest.fixture
def security_logger():
    """Security logger without console output; records still reach caplog."""
    logger = SecurityLogger(console_output=False)
    yield logger
    logger.shutdown()


@pytest.fixture
def config():
    return ABACConfig()


@pytest.fixture
def monday_morning():
    """2024-01-01 was a Monday."""
    return datetime(2024, 1, 1, 10, 30, tzinfo=timezone.utc)


@pytest.fixture
def documents_policy():
    """Allow engineers to read documents; deny anything to users on probation."""
    return Policy(
        id="pol-documents",
        version="2024-01-01",
        statements=[
            Statement(
                sid="AllowEngineeringRead",
                effect="Allow",
                action="document-service:file:read",
                resource="api:documents:*",
                condition={"StringEquals": {"user.department": "engineering"}},
            ),
            Statement(
                sid="DenyProbation",
                effect="Deny",
                action="document-service:file:*",
                resource="api:documents:*",
                condition={"Bool": {"user.on_probation": True}},
            ),
        ],
    )


@pytest.fixture
def storage(documents_policy, security_logger):
    storage = InMemoryStorage(policies=[documents_policy], security_logger=security_logger)
    storage.add_subject(Subject(
        id="user-123",
        attributes={"department": "engineering", "on_probation": False, "clearance": 3},
    ))
    storage.add_subject(Subject(
        id="user-456",
        attributes={"department": "engineering", "on_probation": True},
    ))
    storage.add_subject(Subject(id="user-789", attributes={"department": "sales"}))
    storage.add_resource(Resource(
        id="doc-1",
        resource_id="api:documents:doc-1",
        resource_type="document",
        attributes={"owner": "user-123", "classification": "internal"},
    ))
    storage.add_action(Action(id="document-service:file:read", action_category="read"))
    storage.add_action(Action(id="document-service:file:write", action_category="write"))
    return storage


@pytest.fixture
def pdp(storage, config, security_logger):
    return PolicyDecisionPoint(
        storage,
        StorageAttributeResolver(storage),
        config=config,
        security_logger=security_logger,
    )
