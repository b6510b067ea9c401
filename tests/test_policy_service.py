"""Tests for policy lifecycle management."""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from depgov.exceptions import (
    DuplicateRecordError,
    ExceptionNotFoundError,
    InvalidTransitionError,
    PolicyNotFoundError,
    PolicyValidationError,
    TemplateNotFoundError,
)
from depgov.inventory.models import Dependency, Severity, Vulnerability
from depgov.policy.models import (
    AutoApprovalCondition,
    AutoApprovalRule,
    DependencyPolicy,
    EvaluationContext,
    EvaluationStatus,
    ExceptionStatus,
    PolicyException,
    PolicyScope,
    UpdateStrategy,
    ViolationStatus,
)
from depgov.policy.service import PolicyService, bump_patch, template_policy_id, validate_policy

NOW = datetime(2026, 1, 15, tzinfo=timezone.utc)


def _policy_data(**overrides):
    data = {
        "name": "No GPL",
        "description": "Keep copyleft out of the product",
        "rules": [
            {
                "name": "Block GPL",
                "type": "LICENSE",
                "severity": "HIGH",
                "conditions": [{"field": "license", "operator": "in", "value": ["GPL-3.0"]}],
                "actions": [{"type": "BLOCK", "config": {"blocking_message": "GPL not allowed"}}],
            }
        ],
    }
    data.update(overrides)
    return data


class TestPolicyValidation:
    """Tests for structural policy validation."""

    def setup_method(self):
        self.publisher = MagicMock()
        self.service = PolicyService(publisher=self.publisher, clock=lambda: NOW)

    def test_create_assigns_ids(self):
        policy = self.service.create_policy("t1", _policy_data(), created_by="alice")

        assert policy.id.startswith("policy_")
        assert policy.rules[0].id.startswith("rule_")
        assert policy.tenant_id == "t1"
        assert policy.created_by == "alice"
        assert self.service.get_policy(policy.id) is policy
        self.publisher.publish.assert_called_once()
        assert self.publisher.publish.call_args[0][0] == "policyCreated"

    def test_errors_collected_and_nothing_stored(self):
        data = _policy_data(
            name="",
            rules=[
                {
                    "name": "",
                    "conditions": [{"field": "license", "operator": "resembles"}],
                    "actions": [{"type": "EXPLODE"}],
                },
                {"name": "Empty", "conditions": [], "actions": []},
            ],
        )
        with pytest.raises(PolicyValidationError) as exc:
            self.service.create_policy("t1", data)

        errors = exc.value.errors
        assert "Policy name is required" in errors
        assert "Rule 1: name is required" in errors
        assert "Rule 1, condition 1: invalid operator 'resembles'" in errors
        assert "Rule 1, action 1: invalid action type 'EXPLODE'" in errors
        assert "Rule 2: must have at least one condition" in errors
        assert "Rule 2: must have at least one action" in errors
        assert self.service.get_policies_by_tenant("t1") == []

    def test_policy_without_rules(self):
        with pytest.raises(PolicyValidationError):
            self.service.create_policy("t1", _policy_data(rules=[]))

    def test_invalid_logical_operator(self):
        data = _policy_data()
        data["rules"][0]["conditions"][0]["logical_operator"] = "XOR"
        errors = validate_policy(DependencyPolicy.from_dict(data))
        assert any("invalid logical operator 'XOR'" in e for e in errors)

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            self.service.create_policy("t1", _policy_data(name=" "))

    def test_string_severity_is_coerced(self):
        policy = DependencyPolicy.from_dict(_policy_data())
        policy.rules = [replace(policy.rules[0], severity="critical")]

        stored = self.service.create_policy("t1", policy)
        assert stored.rules[0].severity is Severity.CRITICAL

        deps = [Dependency(name="readline", version="1.3.0", ecosystem="npm", licenses=["GPL-3.0"])]
        result = asyncio.run(self.service.evaluate_policies(deps, "t1", EvaluationContext(now=NOW)))
        assert result.skipped_dependencies == 0
        assert result.summary.severity_breakdown["CRITICAL"] == 1

    def test_unknown_severity_rejected(self):
        policy = DependencyPolicy.from_dict(_policy_data())
        policy.rules = [replace(policy.rules[0], severity="dire")]

        with pytest.raises(PolicyValidationError) as exc_info:
            self.service.create_policy("t1", policy)
        assert "Rule 1: invalid severity 'dire'" in exc_info.value.errors
        assert self.service.get_policies_by_tenant("t1") == []


class TestPolicyLifecycle:
    """Tests for update, delete and listing."""

    def setup_method(self):
        self.service = PolicyService(publisher=MagicMock(), clock=lambda: NOW)
        self.policy = self.service.create_policy("t1", _policy_data())

    def test_rules_change_bumps_patch(self):
        rules = [dict(_policy_data()["rules"][0], name="Block GPL and AGPL")]
        updated = self.service.update_policy(self.policy.id, {"rules": rules}, updated_by="bob")

        assert updated.version == "1.0.1"
        assert updated.id == self.policy.id
        assert updated.metadata.change_log[-1].description == "Policy rules updated"
        assert updated.metadata.change_log[-1].changes == ["Rules modified"]
        assert updated.metadata.change_log[-1].author == "bob"
        # previous object untouched
        assert self.policy.version == "1.0.0"
        assert self.policy.metadata.change_log == []
        assert self.service.get_policy(self.policy.id).version == "1.0.1"

    def test_non_rule_change_keeps_version(self):
        updated = self.service.update_policy(self.policy.id, {"priority": 250, "scope": {"ecosystems": ["npm"]}})
        assert updated.version == "1.0.0"
        assert updated.priority == 250
        assert updated.scope.ecosystems == ["npm"]

    def test_invalid_update_rejected(self):
        with pytest.raises(PolicyValidationError):
            self.service.update_policy(self.policy.id, {"rules": []})
        assert self.service.get_policy(self.policy.id).rules == self.policy.rules

    def test_update_unknown_policy(self):
        with pytest.raises(PolicyNotFoundError):
            self.service.update_policy("missing", {"priority": 1})

    def test_delete(self):
        self.service.delete_policy(self.policy.id)
        with pytest.raises(PolicyNotFoundError):
            self.service.get_policy(self.policy.id)

    def test_listing_by_priority(self):
        urgent = self.service.create_policy("t1", _policy_data(name="Urgent", priority=900))
        self.service.create_policy("t2", _policy_data(name="Elsewhere"))
        names = [p.name for p in self.service.get_policies_by_tenant("t1")]
        assert names == [urgent.name, self.policy.name]

    def test_unchanged_rules_keep_version_and_ids(self):
        updated = self.service.update_policy(self.policy.id, {"rules": _policy_data()["rules"]})
        assert updated.version == "1.0.0"
        assert updated.rules[0].id == self.policy.rules[0].id
        assert updated.metadata.change_log == []

    def test_apply_policy_upserts_by_name(self):
        again = self.service.apply_policy("t1", _policy_data())
        assert again.id == self.policy.id
        assert again.version == "1.0.0"
        assert again.rules[0].id == self.policy.rules[0].id

        data = _policy_data(priority=500)
        data["rules"][0]["severity"] = "CRITICAL"
        changed = self.service.apply_policy("t1", data)
        assert changed.id == self.policy.id
        assert changed.version == "1.0.1"
        assert changed.priority == 500
        assert changed.rules[0].id == self.policy.rules[0].id
        assert len(self.service.get_policies_by_tenant("t1")) == 1

    def test_apply_policy_with_new_id_creates(self):
        created = self.service.apply_policy("t1", _policy_data(id="policy_gpl", name="No GPL v2"))
        assert created.id == "policy_gpl"
        assert self.service.apply_policy("t1", _policy_data(id="policy_gpl", name="No GPL v2")).version == "1.0.0"
        assert len(self.service.get_policies_by_tenant("t1")) == 2

    def test_apply_policy_id_owned_by_other_tenant(self):
        with pytest.raises(DuplicateRecordError):
            self.service.apply_policy("t2", _policy_data(id=self.policy.id))
        assert self.service.get_policy(self.policy.id).tenant_id == "t1"

    def test_bump_patch(self):
        assert bump_patch("1.2.3") == "1.2.4"
        assert bump_patch("2") == "2.0.1"
        assert bump_patch("") == "0.0.1"


class TestTemplates:
    """Tests for built-in templates."""

    def setup_method(self):
        self.publisher = MagicMock()
        self.service = PolicyService(publisher=self.publisher, clock=lambda: NOW)

    def test_builtin_templates(self):
        ids = {t.id for t in self.service.get_templates()}
        assert ids == {"security-standard", "license-compliance", "maintenance-policy"}

    def test_unknown_template(self):
        with pytest.raises(TemplateNotFoundError):
            self.service.get_template("nope")

    def test_create_from_template(self):
        policy = self.service.create_policy_from_template("t1", "security-standard", created_by="sec")

        assert policy.name == "Standard Security Policy"
        assert policy.version == "1.0.0"
        assert policy.priority == 100
        assert [r.name for r in policy.rules] == ["Block Critical Vulnerabilities", "Warn on High Vulnerabilities"]
        assert all(r.id for r in policy.rules)
        assert policy.metadata.change_log[0].description == "Created from template: Standard Security Policy"
        assert policy.metadata.next_review == NOW + timedelta(days=90)
        assert policy.enforcement.retry_attempts == 2
        events = [c[0][0] for c in self.publisher.publish.call_args_list]
        assert events == ["policyCreated", "policyCreatedFromTemplate"]

    def test_template_overrides(self):
        policy = self.service.create_policy_from_template(
            "t1",
            "maintenance-policy",
            name="Stale deps",
            scope=PolicyScope(ecosystems=["python"]),
            rule_overrides={"Block Unmaintained Dependencies": {"severity": Severity.HIGH, "enabled": False}},
        )
        assert policy.name == "Stale deps"
        assert policy.scope.ecosystems == ["python"]
        assert policy.rules[0].severity == Severity.HIGH
        assert policy.rules[0].enabled is False

    def test_ensure_template_policy_reuses_stored_policy(self):
        first = self.service.ensure_template_policy("t1", "security-standard")
        second = self.service.ensure_template_policy("t1", "security-standard")

        assert first.id == template_policy_id("t1", "security-standard")
        assert second is first
        assert [p.id for p in self.service.get_policies_by_tenant("t1")] == [first.id]
        assert self.service.ensure_template_policy("t2", "security-standard").id != first.id

    def test_ensure_unknown_template(self):
        with pytest.raises(TemplateNotFoundError):
            self.service.ensure_template_policy("t1", "nope")

    def test_template_rules_not_shared(self):
        first = self.service.create_policy_from_template("t1", "license-compliance")
        second = self.service.create_policy_from_template("t1", "license-compliance")
        assert first.rules[0].id != second.rules[0].id
        assert self.service.get_template("license-compliance").rules[0].id == ""


class TestExceptions:
    """Tests for exception management."""

    def setup_method(self):
        self.service = PolicyService(publisher=MagicMock(), clock=lambda: NOW)
        self.policy = self.service.create_policy("t1", _policy_data())
        self.rule_id = self.policy.rules[0].id

    def _exception(self, expires_in=timedelta(days=30)):
        return PolicyException(
            id="",
            rule_id=self.rule_id,
            dependency="readline",
            reason="Legal approved",
            approved_by="legal",
            expires_at=NOW + expires_in,
        )

    def test_add_exception(self):
        exception = self.service.add_exception(self.policy.id, self._exception())
        assert exception.id.startswith("exception_")
        assert self.service.get_policy(self.policy.id).exceptions == [exception]
        assert self.policy.exceptions == []

    def test_add_exception_for_unknown_rule(self):
        exception = self._exception()
        exception.rule_id = "other"
        with pytest.raises(PolicyValidationError):
            self.service.add_exception(self.policy.id, exception)

    def test_revoke_keeps_record(self):
        exception = self.service.add_exception(self.policy.id, self._exception())
        revoked = self.service.revoke_exception(self.policy.id, exception.id)

        assert revoked.status == ExceptionStatus.REVOKED
        stored = self.service.get_policy(self.policy.id).exceptions
        assert len(stored) == 1
        assert stored[0].status == ExceptionStatus.REVOKED

    def test_revoke_unknown(self):
        with pytest.raises(ExceptionNotFoundError):
            self.service.revoke_exception(self.policy.id, "missing")

    def test_expire_exceptions(self):
        self.service.add_exception(self.policy.id, self._exception(timedelta(days=1)))
        self.service.add_exception(self.policy.id, self._exception(timedelta(days=60)))

        assert self.service.expire_exceptions(NOW + timedelta(days=2)) == 1
        statuses = [e.status for e in self.service.get_policy(self.policy.id).exceptions]
        assert statuses == [ExceptionStatus.EXPIRED, ExceptionStatus.ACTIVE]
        assert self.service.expire_exceptions(NOW + timedelta(days=2)) == 0


class TestViolationsAndEvaluation:
    """Tests for evaluation through the service and violation lifecycle."""

    def setup_method(self):
        self.publisher = MagicMock()
        self.service = PolicyService(publisher=self.publisher, clock=lambda: NOW)
        self.policy = self.service.create_policy("t1", _policy_data())
        self.deps = [
            Dependency(name="readline", version="1.3.0", ecosystem="npm", licenses=["GPL-3.0"]),
            Dependency(name="chalk", version="5.3.0", ecosystem="npm", licenses=["MIT"]),
        ]

    def _evaluate(self, context=None):
        return asyncio.run(self.service.evaluate_policies(self.deps, "t1", context or EvaluationContext(now=NOW)))

    def _violation_id(self):
        result = self._evaluate()
        return result.evaluations[0].violations[0].id

    def test_evaluate_uses_stored_policies(self):
        result = self._evaluate()
        assert [e.status for e in result.evaluations] == [EvaluationStatus.VIOLATION, EvaluationStatus.COMPLIANT]
        assert self.service.get_evaluation_result(result.evaluation_id) is result

    def test_exception_suppresses_through_service(self):
        self.service.add_exception(
            self.policy.id,
            PolicyException(
                id="",
                rule_id=self.policy.rules[0].id,
                dependency="readline",
                reason="Legal approved",
                approved_by="legal",
                expires_at=NOW + timedelta(days=30),
            ),
        )
        result = self._evaluate()
        assert result.evaluations[0].status == EvaluationStatus.EXCEPTION

    def test_resolve(self):
        violation_id = self._violation_id()
        resolved = self.service.resolve_violation(violation_id, "Replaced with readline-sync", "alice")

        assert resolved.status == ViolationStatus.RESOLVED
        assert resolved.resolved_by == "alice"
        assert resolved.resolved_at == NOW
        events = [c[0][0] for c in self.publisher.publish.call_args_list]
        assert "violationStatusChanged" in events
        assert events[-1] == "violationResolved"

    def test_acknowledge_then_resolve(self):
        violation_id = self._violation_id()
        acknowledged = self.service.acknowledge_violation(violation_id, "bob")
        assert acknowledged.status == ViolationStatus.ACKNOWLEDGED
        assert acknowledged.assigned_to == "bob"
        assert self.service.resolve_violation(violation_id, "fixed", "bob").status == ViolationStatus.RESOLVED

    def test_resolved_cannot_reopen_transitions(self):
        violation_id = self._violation_id()
        self.service.resolve_violation(violation_id, "fixed", "alice")
        with pytest.raises(InvalidTransitionError):
            self.service.acknowledge_violation(violation_id, "bob")
        with pytest.raises(InvalidTransitionError):
            self.service.suppress_violation(violation_id, "noise", "bob")

    def test_false_positive(self):
        violation_id = self._violation_id()
        marked = self.service.mark_false_positive(violation_id, "Dual licensed", "legal")
        assert marked.status == ViolationStatus.FALSE_POSITIVE
        assert marked.resolution == "Dual licensed"

    def test_status_survives_reevaluation(self):
        violation_id = self._violation_id()
        self.service.acknowledge_violation(violation_id, "bob")
        assert self._violation_id() == violation_id
        assert self.service.get_violation(violation_id).status == ViolationStatus.ACKNOWLEDGED

    def test_resolved_violation_reopens_when_triggered_again(self):
        violation_id = self._violation_id()
        self.service.resolve_violation(violation_id, "fixed", "alice")

        assert self._violation_id() == violation_id
        reopened = self.service.get_violation(violation_id)
        assert reopened.status == ViolationStatus.OPEN
        assert reopened.resolution is None
        assert reopened.resolved_by is None
        assert reopened.resolved_at is None
        assert self.service.get_policy_metrics("t1")["open_violations"] == 1
        changes = [c[0][1] for c in self.publisher.publish.call_args_list if c[0][0] == "violationStatusChanged"]
        assert changes[-1]["from"] == "RESOLVED"
        assert changes[-1]["to"] == "OPEN"

    def test_false_positive_survives_reevaluation(self):
        violation_id = self._violation_id()
        self.service.mark_false_positive(violation_id, "Dual licensed", "legal")

        assert self._violation_id() == violation_id
        violation = self.service.get_violation(violation_id)
        assert violation.status == ViolationStatus.FALSE_POSITIVE
        assert violation.resolution == "Dual licensed"

    def test_metrics(self):
        violation_id = self._violation_id()
        self.service.resolve_violation(violation_id, "fixed", "alice")
        metrics = self.service.get_policy_metrics("t1")

        assert metrics["total_policies"] == 1
        assert metrics["enabled_policies"] == 1
        assert metrics["total_rules"] == 1
        assert metrics["total_violations"] == 1
        assert metrics["resolved_violations"] == 1
        assert metrics["open_violations"] == 0
        assert metrics["violations_by_severity"] == {"HIGH": 1}
        assert metrics["violations_by_type"] == {"LICENSE": 1}
        assert metrics["evaluation_history"] == 1

    def test_violations_filtered_by_status(self):
        self._violation_id()
        assert len(self.service.get_violations_by_tenant("t1", ViolationStatus.OPEN)) == 1
        assert self.service.get_violations_by_tenant("t1", ViolationStatus.RESOLVED) == []
        assert self.service.get_violations_by_tenant("t2") == []


class TestUpdateStrategy:
    """Tests for per-tenant update strategies."""

    def test_default_strategy(self):
        service = PolicyService()
        strategy = service.get_update_strategy("t1")
        assert strategy.auto_approval_rules[0].condition == AutoApprovalCondition.PATCH_SECURITY
        assert strategy.auto_approval_rules[0].environments == ["development", "staging"]

    def test_stored_strategy_drives_auto_fix(self):
        service = PolicyService(clock=lambda: NOW)
        service.set_update_strategy(
            UpdateStrategy(
                tenant_id="t1",
                strategy="AGGRESSIVE",
                auto_approval_rules=[AutoApprovalRule(condition=AutoApprovalCondition.PATCH_SECURITY)],
            )
        )
        data = _policy_data()
        data["rules"][0]["conditions"] = [{"field": "vulnerability.fixAvailable", "operator": "equals", "value": True}]
        data["rules"][0]["actions"] = [{"type": "AUTO_FIX"}]
        service.create_policy("t1", data)

        dep = Dependency(name="axios", version="0.21.0", ecosystem="npm")
        context = EvaluationContext(
            environment="production",
            now=NOW,
            vulnerabilities={dep.id: [Vulnerability(id="v1", severity=Severity.HIGH, fix_available=True)]},
        )
        result = asyncio.run(service.evaluate_policies([dep], "t1", context))

        assert result.executed_actions[0].result["requires_approval"] is False
