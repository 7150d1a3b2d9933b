"""End-to-end authorization scenarios through the policy decision point."""

import asyncio
import itertools
import json
import time
from datetime import datetime, timezone

import pytest
import yaml

from abac_engine import (
    ABACConfig,
    AttributeResolver,
    DecisionResult,
    EnvironmentInfo,
    EvaluationRequest,
    EvaluationTimeoutError,
    InMemoryStorage,
    Policy,
    PolicyDecisionPoint,
    Statement,
    StorageAttributeResolver,
    Subject,
)
from abac_engine.evaluator.conditions import ConditionEvaluator
from abac_engine.evaluator.path import CompositePathResolver


def _read(subject_id="user-123", resource_id="api:documents:doc-1", **kwargs):
    return EvaluationRequest(
        subject_id=subject_id,
        resource_id=resource_id,
        action=kwargs.pop("action", "document-service:file:read"),
        **kwargs
    )


class TestDocumentScenarios:
    """Document service policies evaluated against stored subjects."""

    def test_engineer_can_read(self, pdp):
        """Test allow statement with a department condition."""
        decision = pdp.evaluate(_read("user-123"))

        assert decision.result is DecisionResult.PERMIT
        assert decision.matched_policies == ("pol-documents",)

    def test_probation_denies(self, pdp):
        """Test that a matching deny statement vetoes the allow."""
        decision = pdp.evaluate(_read("user-456"))

        assert decision.result is DecisionResult.DENY
        assert decision.reason == "Denied by statement: DenyProbation"

    def test_unmatched_action_is_implicit_deny(self, pdp):
        decision = pdp.evaluate(_read("user-123", action="document-service:file:write"))

        assert decision.result is DecisionResult.DENY
        assert decision.matched_policies == ()
        assert "implicit deny" in decision.reason

    def test_other_department_is_implicit_deny(self, pdp):
        decision = pdp.evaluate(_read("user-789"))

        assert decision.result is DecisionResult.DENY
        assert decision.matched_policies == ()

    def test_decision_serializes(self, pdp):
        data = pdp.evaluate(_read("user-123")).to_dict()

        assert json.loads(json.dumps(data))["result"] == "permit"


class TestOwnerScopedResources:
    """Resource patterns that reference request variables."""

    @pytest.fixture
    def owner_pdp(self, security_logger):
        storage = InMemoryStorage(security_logger=security_logger)
        storage.add_policy(Policy(id="pol-owner", statements=[
            Statement(
                sid="OwnDocuments",
                effect="Allow",
                action="document-service:file:*",
                resource="api:documents:owner-${request:UserId}",
            ),
        ]))
        storage.add_subject(Subject(id="user-123"))
        return PolicyDecisionPoint(
            storage,
            StorageAttributeResolver(storage, strict=False),
            security_logger=security_logger,
        )

    def test_own_document(self, owner_pdp):
        decision = owner_pdp.evaluate(_read("user-123", "api:documents:owner-user-123"))

        assert decision.is_permit

    def test_someone_elses_document(self, owner_pdp):
        decision = owner_pdp.evaluate(_read("user-123", "api:documents:owner-user-999"))

        assert not decision.is_permit


class TestEnvironmentScenarios:
    """Conditions over time and network attributes."""

    @pytest.fixture
    def office_pdp(self, security_logger):
        storage = InMemoryStorage(security_logger=security_logger)
        storage.load_from_dict({
            "policies": [{
                "Id": "pol-office",
                "Statement": [
                    {
                        "Sid": "OfficeHoursInternal",
                        "Effect": "Allow",
                        "Action": "report-service:*",
                        "Resource": "api:reports:*",
                        "Condition": {
                            "Bool": {"environment.is_business_hours": True},
                            "Or": [
                                {"Bool": {"environment:is_internal_ip": True}},
                                {"IpInRange": {"environment:client_ip": ["203.0.113.0/24"]}},
                            ],
                        },
                    },
                    {
                        "Sid": "NoExportsFromMobile",
                        "Effect": "Deny",
                        "Action": "report-service:export:*",
                        "Resource": "api:reports:*",
                        "Condition": {"Bool": {"environment:is_mobile": True}},
                    },
                ],
            }],
            "subjects": [{"id": "analyst", "attributes": {"department": "finance"}}],
        })
        return PolicyDecisionPoint(
            storage,
            StorageAttributeResolver(storage, strict=False),
            security_logger=security_logger,
        )

    def _request(self, when, ip, action="report-service:view:summary", user_agent=""):
        return EvaluationRequest(
            subject_id="analyst",
            resource_id="api:reports:q1",
            action=action,
            timestamp=when,
            environment=EnvironmentInfo(client_ip=ip, user_agent=user_agent),
        )

    def test_internal_during_business_hours(self, office_pdp, monday_morning):
        assert office_pdp.evaluate(self._request(monday_morning, "10.1.1.1")).is_permit

    def test_partner_range_during_business_hours(self, office_pdp, monday_morning):
        assert office_pdp.evaluate(self._request(monday_morning, "203.0.113.9")).is_permit

    def test_external_address(self, office_pdp, monday_morning):
        assert not office_pdp.evaluate(self._request(monday_morning, "198.51.100.1")).is_permit

    def test_outside_business_hours(self, office_pdp):
        sunday = datetime(2024, 1, 7, 10, 0, tzinfo=timezone.utc)

        assert not office_pdp.evaluate(self._request(sunday, "10.1.1.1")).is_permit

    def test_mobile_export_denied(self, office_pdp, monday_morning):
        request = self._request(
            monday_morning,
            "10.1.1.1",
            action="report-service:export:csv",
            user_agent="Mozilla/5.0 (Linux; Android 14) Mobile",
        )

        decision = office_pdp.evaluate(request)

        assert decision.result is DecisionResult.DENY
        assert decision.reason == "Denied by statement: NoExportsFromMobile"


class TestPolicyFiles:
    """Policies loaded from disk drive the same decisions."""

    def test_yaml_policy_directory(self, tmp_path, security_logger):
        (tmp_path / "documents.yaml").write_text(yaml.safe_dump({
            "Version": "2024-01-01",
            "Id": "pol-documents",
            "Statement": [{
                "Sid": "AllowRead",
                "Effect": "Allow",
                "Action": "document-service:file:read",
                "Resource": "api:documents:*",
                "Condition": {"StringEquals": {"user.department": "engineering"}},
            }],
        }))
        (tmp_path / "deny.json").write_text(json.dumps({
            "Id": "pol-freeze",
            "enabled": False,
            "Statement": [{"Sid": "Freeze", "Effect": "Deny", "Action": "*", "Resource": "*"}],
        }))
        storage = InMemoryStorage(security_logger=security_logger)
        storage.add_subject(Subject(id="user-1", attributes={"department": "engineering"}))

        assert storage.load_policies_from_directory(tmp_path) == 2

        pdp = PolicyDecisionPoint(
            storage,
            StorageAttributeResolver(storage, strict=False),
            security_logger=security_logger,
        )
        assert pdp.evaluate(_read("user-1")).is_permit


class TestDecisionProperties:
    """Properties that hold for any ordering of the policy set."""

    STATEMENTS = [
        Statement(sid="AllowRead", effect="Allow", action="svc:doc:read", resource="api:doc:*"),
        Statement(sid="AllowAny", effect="Allow", action="svc:*", resource="*"),
        Statement(sid="DenyRead", effect="Deny", action="svc:doc:*", resource="api:doc:d-*"),
        Statement(sid="DenyWrite", effect="Deny", action="svc:doc:write", resource="*"),
    ]

    @pytest.fixture
    def bare_pdp(self, security_logger):
        return PolicyDecisionPoint(InMemoryStorage(), StorageAttributeResolver(InMemoryStorage()),
                                   security_logger=security_logger)

    def _context(self, action, resource):
        return {"request:Action": action, "request:ResourceId": resource}

    def test_result_is_independent_of_order(self, bare_pdp):
        context = self._context("svc:doc:read", "api:doc:d-1")

        results = set()
        reasons = set()
        for order in itertools.permutations(self.STATEMENTS):
            policies = [Policy(id=f"p{i}", statements=[s]) for i, s in enumerate(order)]
            decision = bare_pdp.evaluate_policies(policies, context)
            results.add(decision.result)
            reasons.add(decision.reason)

        assert results == {DecisionResult.DENY}
        assert reasons == {"Denied by statement: DenyRead"}

    def test_permit_iff_allow_matched_and_no_deny(self, bare_pdp):
        cases = [
            ("svc:doc:read", "api:doc:x-1", DecisionResult.PERMIT),
            ("svc:doc:write", "api:doc:x-1", DecisionResult.DENY),
            ("svc:doc:read", "api:doc:d-1", DecisionResult.DENY),
            ("other:doc:read", "api:doc:x-1", DecisionResult.DENY),
        ]
        policies = [Policy(id="p", statements=list(self.STATEMENTS))]

        for action, resource, expected in cases:
            assert bare_pdp.evaluate_policies(policies, self._context(action, resource)).result is expected

    def test_path_precedence(self):
        context = {"user.department": "Direct", "user": {"department": "Nested"}}

        assert CompositePathResolver().resolve("user.department", context) == ("Direct", True)

    def test_empty_condition_is_vacuous(self):
        assert ConditionEvaluator().evaluate_conditions({}, {"anything": 1})


class _SlowResolver(AttributeResolver):
    def __init__(self, inner, delay):
        self.inner = inner
        self.delay = delay

    def enrich_context(self, request):
        time.sleep(self.delay)
        return self.inner.enrich_context(request)


class TestAsyncEvaluation:
    """Test cases for the deadline-guarded async entry point."""

    @pytest.mark.asyncio
    async def test_evaluate_async(self, pdp):
        decision = await pdp.evaluate_async(_read("user-123"))

        assert decision.is_permit

    @pytest.mark.asyncio
    async def test_concurrent_evaluations(self, pdp):
        requests = [_read("user-123"), _read("user-456"), _read("user-789")] * 5

        decisions = await asyncio.gather(*(pdp.evaluate_async(r) for r in requests))

        assert [d.result for d in decisions[:3]] == [
            DecisionResult.PERMIT, DecisionResult.DENY, DecisionResult.DENY
        ]
        assert sum(d.is_permit for d in decisions) == 5

    @pytest.mark.asyncio
    async def test_timeout(self, storage, security_logger):
        pdp = PolicyDecisionPoint(
            storage,
            _SlowResolver(StorageAttributeResolver(storage), delay=0.5),
            security_logger=security_logger,
        )

        with pytest.raises(EvaluationTimeoutError) as exc_info:
            await pdp.evaluate_async(_read("user-123"), timeout=0.05)

        assert exc_info.value.timeout_ms == 50
        assert exc_info.value.subject == "user-123"

    @pytest.mark.asyncio
    async def test_default_timeout_from_config(self, storage, security_logger):
        config = ABACConfig.from_dict({"limits": {"max_evaluation_time_ms": 20}})
        pdp = PolicyDecisionPoint(
            storage,
            _SlowResolver(StorageAttributeResolver(storage), delay=0.3),
            config=config,
            security_logger=security_logger,
        )

        with pytest.raises(EvaluationTimeoutError):
            await pdp.evaluate_async(_read("user-123"))
