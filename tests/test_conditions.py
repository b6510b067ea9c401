"""Tests for rule condition evaluation."""

from datetime import datetime, timedelta, timezone

import pytest

from depgov.inventory.models import Dependency, Severity, Vulnerability
from depgov.policy.conditions import (
    DEFAULT_FIELDS,
    EvaluationData,
    enrich,
    evaluate_conditions,
    evaluate_operator,
)
from depgov.policy.models import EvaluationContext, RuleCondition

NOW = datetime(2026, 1, 15, tzinfo=timezone.utc)


class TestOperators:
    """Tests for the operator table."""

    def test_greater_than(self):
        assert evaluate_operator("greater_than", 0.3, 0.2) is True
        assert evaluate_operator("greater_than", 0.2, 0.3) is False

    def test_less_than(self):
        assert evaluate_operator("less_than", 0.2, 0.3) is True
        assert evaluate_operator("less_than", 0.3, 0.3) is False

    def test_greater_and_less_equal(self):
        assert evaluate_operator("greater_equal", 5, 5) is True
        assert evaluate_operator("less_equal", 5, 4) is False

    def test_numeric_operator_type_mismatch(self):
        assert evaluate_operator("greater_than", "high", 3) is False
        assert evaluate_operator("less_than", None, 3) is False
        assert evaluate_operator("less_than", True, 3) is False

    def test_complex_values_are_not_ordered(self):
        assert evaluate_operator("greater_than", complex(1, 2), 0) is False
        assert evaluate_operator("less_equal", 1, complex(0, 1)) is False

    def test_in(self):
        assert evaluate_operator("in", "GPL-3.0", ["GPL-3.0", "AGPL-3.0"]) is True
        assert evaluate_operator("in", "MIT", ["GPL-3.0", "AGPL-3.0"]) is False

    def test_in_with_list_field_tests_intersection(self):
        assert evaluate_operator("in", ["MIT", "GPL-3.0"], ["GPL-3.0"]) is True
        assert evaluate_operator("not_in", ["MIT"], ["GPL-3.0"]) is True

    def test_in_requires_list_value(self):
        assert evaluate_operator("in", "MIT", "MIT") is False

    def test_equals(self):
        assert evaluate_operator("equals", "CRITICAL", "CRITICAL") is True
        assert evaluate_operator("not_equals", "HIGH", "CRITICAL") is True

    def test_contains(self):
        assert evaluate_operator("contains", "event-stream", "stream") is True
        assert evaluate_operator("contains", ["a", "b"], "b") is True
        assert evaluate_operator("not_contains", ["a", "b"], "c") is True
        assert evaluate_operator("contains", 42, "4") is False

    def test_string_operators(self):
        assert evaluate_operator("starts_with", "@babel/core", "@babel/") is True
        assert evaluate_operator("ends_with", "lodash.merge", ".merge") is True
        assert evaluate_operator("starts_with", 3, "3") is False

    def test_matches(self):
        assert evaluate_operator("matches", "1.0.0-beta.2", r"-(alpha|beta)") is True
        assert evaluate_operator("matches", "1.0.0", r"-(alpha|beta)") is False

    def test_invalid_regex_is_false(self):
        assert evaluate_operator("matches", "anything", "([unclosed") is False

    def test_exists(self):
        assert evaluate_operator("exists", "MIT", None) is True
        assert evaluate_operator("exists", None, None) is False
        assert evaluate_operator("not_exists", [], None) is True
        assert evaluate_operator("not_exists", ["MIT"], None) is False

    def test_unknown_operator_is_false(self):
        assert evaluate_operator("approximately", 1, 1) is False


class TestFieldRegistry:
    """Tests for field resolution."""

    def setup_method(self):
        self.dependency = Dependency(
            name="lodash",
            version="4.17.20",
            ecosystem="npm",
            licenses=["MIT", "CC0-1.0"],
            last_update=NOW - timedelta(days=800),
            metadata={"team": "web", "utilization": {"cpu": 0.2}},
        )
        self.context = EvaluationContext(
            environment="production",
            vulnerabilities={
                "lodash@4.17.20": [
                    Vulnerability(id="v1", severity=Severity.HIGH, cvss_score=7.4, cve="CVE-2021-23337"),
                    Vulnerability(id="v2", severity=Severity.MEDIUM, cvss_score=5.3, fix_available=True),
                ]
            },
        )
        self.data = enrich(self.dependency, self.context, NOW)

    def test_days_since_last_update(self):
        assert DEFAULT_FIELDS.resolve("daysSinceLastUpdate", self.data) == 800
        assert DEFAULT_FIELDS.resolve("days_since_last_update", self.data) == 800

    def test_primary_license(self):
        assert DEFAULT_FIELDS.resolve("license", self.data) == "MIT"
        assert DEFAULT_FIELDS.resolve("licenses", self.data) == ["MIT", "CC0-1.0"]

    def test_vulnerability_aggregates(self):
        assert DEFAULT_FIELDS.resolve("vulnerability.severity", self.data) == "HIGH"
        assert DEFAULT_FIELDS.resolve("vulnerability.count", self.data) == 2
        assert DEFAULT_FIELDS.resolve("vulnerability.maxCvssScore", self.data) == 7.4
        assert DEFAULT_FIELDS.resolve("vulnerability.fixAvailable", self.data) is True
        assert DEFAULT_FIELDS.resolve("vulnerability.cves", self.data) == ["CVE-2021-23337"]

    def test_metadata_lookup(self):
        assert DEFAULT_FIELDS.resolve("metadata.team", self.data) == "web"
        assert DEFAULT_FIELDS.resolve("metadata.utilization.cpu", self.data) == 0.2
        assert DEFAULT_FIELDS.resolve("metadata.missing.key", self.data) is None

    def test_unknown_field_is_none(self):
        assert DEFAULT_FIELDS.resolve("nonexistent", self.data) is None
        assert "nonexistent" not in DEFAULT_FIELDS
        assert "metadata.anything" in DEFAULT_FIELDS

    def test_context_fields(self):
        assert DEFAULT_FIELDS.resolve("context.environment", self.data) == "production"
        assert DEFAULT_FIELDS.resolve("context.project", self.data) is None

    def test_custom_accessor(self):
        registry = DEFAULT_FIELDS.copy()
        registry.register("nameLength", lambda d: len(d.dependency.name))
        assert registry.resolve("nameLength", self.data) == 6
        assert "nameLength" not in DEFAULT_FIELDS

    def test_enrich_rejects_bad_last_update(self):
        broken = Dependency(name="x", version="1.0.0", ecosystem="npm", last_update="yesterday")
        with pytest.raises(TypeError):
            enrich(broken, self.context, NOW)

    def test_enrich_without_last_update(self):
        data = enrich(Dependency(name="x", version="1.0.0", ecosystem="npm"), EvaluationContext(), NOW)
        assert data.days_since_last_update is None
        assert data.vulnerabilities == []


class TestConditionFolding:
    """Tests for the left-fold of rule conditions."""

    def setup_method(self):
        self.data = EvaluationData(
            dependency=Dependency(name="request", version="2.88.2", ecosystem="npm", licenses=["Apache-2.0"]),
            context=EvaluationContext(),
        )

    def _cond(self, field, operator, value=None, logical=None):
        return RuleCondition(field=field, operator=operator, value=value, logical_operator=logical)

    def test_single_condition(self):
        result = evaluate_conditions([self._cond("name", "equals", "request")], self.data)
        assert result.triggered is True
        assert result.actual_values == {"name": "request"}

    def test_and_default(self):
        conditions = [self._cond("name", "equals", "request"), self._cond("ecosystem", "equals", "pypi")]
        assert evaluate_conditions(conditions, self.data).triggered is False

    def test_or_uses_previous_operator(self):
        conditions = [
            self._cond("name", "equals", "nope", logical="OR"),
            self._cond("ecosystem", "equals", "npm"),
        ]
        assert evaluate_conditions(conditions, self.data).triggered is True

    def test_left_fold_order(self):
        """(false OR true) AND false -> false; a precedence-based tree would differ."""
        conditions = [
            self._cond("name", "equals", "nope", logical="OR"),
            self._cond("ecosystem", "equals", "npm", logical="AND"),
            self._cond("version", "equals", "0.0.1"),
        ]
        assert evaluate_conditions(conditions, self.data).triggered is False

        # (true AND false) OR true -> true
        conditions = [
            self._cond("name", "equals", "request", logical="AND"),
            self._cond("ecosystem", "equals", "pypi", logical="OR"),
            self._cond("version", "equals", "2.88.2"),
        ]
        assert evaluate_conditions(conditions, self.data).triggered is True

    def test_triggered_conditions_only_true_ones(self):
        conditions = [
            self._cond("name", "equals", "nope", logical="OR"),
            self._cond("ecosystem", "equals", "npm"),
        ]
        result = evaluate_conditions(conditions, self.data)
        assert [c.field for c in result.triggered_conditions] == ["ecosystem"]

    def test_lowercase_logical_operator(self):
        conditions = [
            self._cond("name", "equals", "nope", logical="or"),
            self._cond("ecosystem", "equals", "npm"),
        ]
        assert evaluate_conditions(conditions, self.data).triggered is True

    def test_empty_conditions_do_not_trigger(self):
        assert evaluate_conditions([], self.data).triggered is False
