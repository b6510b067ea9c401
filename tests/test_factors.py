"""Tests for risk levels and factor calculators."""

from datetime import datetime, timedelta, timezone

import pytest

from depgov.inventory.models import Dependency, DependencyType, Severity, Vulnerability
from depgov.scoring import calculators
from depgov.scoring.factors import (
    ApplicationCriticality,
    BusinessContext,
    DataClassification,
    EnvironmentType,
    FactorCategory,
    RiskAssessmentCriteria,
    RiskLevel,
)

NOW = datetime(2026, 1, 15, tzinfo=timezone.utc)


class TestRiskLevel:
    """Tests for RiskLevel thresholds."""

    @pytest.mark.parametrize(
        "score,level",
        [
            (100, RiskLevel.CRITICAL),
            (90, RiskLevel.CRITICAL),
            (89, RiskLevel.HIGH),
            (70, RiskLevel.HIGH),
            (69, RiskLevel.MEDIUM),
            (50, RiskLevel.MEDIUM),
            (49, RiskLevel.LOW),
            (30, RiskLevel.LOW),
            (29, RiskLevel.MINIMAL),
            (0, RiskLevel.MINIMAL),
        ],
    )
    def test_boundaries(self, score, level):
        """Threshold table is inclusive at the lower bound."""
        assert RiskLevel.from_score(score) == level

    def test_semaphore(self):
        assert RiskLevel.CRITICAL.semaphore == "🔴"
        assert RiskLevel.MINIMAL.semaphore == "🟢"


class TestDependencyFactors:
    """Tests for dependency factor calculation."""

    def setup_method(self):
        self.criteria = RiskAssessmentCriteria()

    def test_direct_weighted_higher_than_transitive(self):
        direct = calculators.dependency_factors(Dependency("a", "1.0.0", "npm", licenses=["MIT"]), self.criteria, 60, NOW)
        transitive = calculators.dependency_factors(
            Dependency("a", "1.0.0", "npm", type=DependencyType.TRANSITIVE, licenses=["MIT"]), self.criteria, 60, NOW
        )
        assert direct[0].type == "DEPENDENCY_TYPE"
        assert direct[0].weight > transitive[0].weight
        assert direct[0].score == 80
        assert transitive[0].score == 60

    def test_weighted_score_is_score_times_weight(self):
        factors = calculators.dependency_factors(Dependency("a", "0.4.0", "npm"), self.criteria, 60, NOW)
        for factor in factors:
            assert factor.weighted_score == pytest.approx(factor.score * factor.weight)

    def test_license_factor_omitted_for_permissive_license(self):
        factors = calculators.dependency_factors(Dependency("a", "1.0.0", "npm", licenses=["MIT"]), self.criteria, 60, NOW)
        assert "LICENSE_RISK" not in [f.type for f in factors]

    def test_license_factor_for_copyleft(self):
        factors = calculators.dependency_factors(
            Dependency("a", "1.0.0", "npm", licenses=["GPL-3.0"]), self.criteria, 60, NOW
        )
        license_factor = next(f for f in factors if f.type == "LICENSE_RISK")
        assert license_factor.score == 60
        assert license_factor.severity == Severity.HIGH

    def test_license_risk_missing(self):
        assert calculators.license_risk([]) == (30, Severity.MEDIUM)

    def test_maintenance_penalty_after_a_year(self):
        last_update = NOW - timedelta(days=400)
        assert calculators.maintenance_estimate(60, last_update, NOW) == 40
        assert calculators.maintenance_estimate(60, NOW - timedelta(days=200), NOW) == 50
        assert calculators.maintenance_estimate(60, NOW - timedelta(days=10), NOW) == 60
        assert calculators.maintenance_estimate(10, last_update, NOW) == 0

    def test_age_score(self):
        assert calculators.age_score("0.4.1") == 70
        assert calculators.age_score("1.2.3") == 40
        assert calculators.age_score("^4.17.21") == 20
        assert calculators.age_score("*") == 50
        assert calculators.age_score("latest") == 40


class TestContextFactors:
    """Tests for environment and business factors."""

    def setup_method(self):
        self.criteria = RiskAssessmentCriteria()

    def test_regulatory_factor_escalates_for_critical_regulation(self):
        context = BusinessContext(tenant_id="t1", regulatory_requirements=["GDPR", "ISO27001"])
        factors = calculators.business_factors(context, self.criteria, NOW)
        regulatory = next(f for f in factors if f.type == "REGULATORY_COMPLIANCE")
        assert regulatory.score == 40
        assert regulatory.severity == Severity.HIGH

    def test_regulatory_factor_medium_otherwise(self):
        context = BusinessContext(tenant_id="t1", regulatory_requirements=["ISO27001"])
        regulatory = calculators.business_factors(context, self.criteria, NOW)[-1]
        assert regulatory.severity == Severity.MEDIUM

    def test_no_regulatory_factor_without_requirements(self):
        factors = calculators.business_factors(BusinessContext(tenant_id="t1"), self.criteria, NOW)
        assert [f.type for f in factors] == ["APPLICATION_CRITICALITY"]

    def test_environment_factor_ordering(self):
        def env_weight(env):
            context = BusinessContext(tenant_id="t1", environment_type=env)
            return calculators.environment_factors(context, self.criteria, NOW)[0].weighted_score

        assert (
            env_weight(EnvironmentType.PRODUCTION)
            >= env_weight(EnvironmentType.STAGING)
            >= env_weight(EnvironmentType.DEVELOPMENT)
            >= env_weight(EnvironmentType.TEST)
        )

    def test_environmental_score_clamped(self):
        context = BusinessContext(
            tenant_id="t1",
            environment_type=EnvironmentType.PRODUCTION,
            data_classification=DataClassification.RESTRICTED,
        )
        assert calculators.environmental_score(context, self.criteria) == 100

    def test_environmental_score_development_public(self):
        context = BusinessContext(
            tenant_id="t1",
            environment_type=EnvironmentType.DEVELOPMENT,
            data_classification=DataClassification.PUBLIC,
        )
        assert calculators.environmental_score(context, self.criteria) == 62.5


class TestAggregation:
    """Tests for category and overall scores."""

    def setup_method(self):
        self.criteria = RiskAssessmentCriteria()

    def test_exploitability_zero_without_vulnerabilities(self):
        assert calculators.exploitability_score([], self.criteria) == 0

    def test_exploitability_uses_worst_vulnerability(self):
        vulns = [
            Vulnerability(id="v1", severity=Severity.LOW, exploitability="UNPROVEN"),
            Vulnerability(id="v2", severity=Severity.HIGH, exploitability="PROOF_OF_CONCEPT"),
        ]
        assert calculators.exploitability_score(vulns, self.criteria) == 75

    def test_exploitability_clamped(self):
        criteria = self.criteria.merged({"exploitability_factors": {"public_exploit": 5.0}})
        vulns = [Vulnerability(id="v1", severity=Severity.CRITICAL, exploitability="PUBLIC_EXPLOIT")]
        assert calculators.exploitability_score(vulns, criteria) == 100

    def test_weighted_mean_empty(self):
        assert calculators.weighted_mean([]) == 0

    def test_overall_score_rounds_half_up(self):
        assert calculators.overall_score(50, 50, 50, 50) == 50
        # 2 * 0.25 = 0.5
        assert calculators.overall_score(2, 0, 0, 0) == 1
        assert calculators.round_half_up(2.5) == 3

    def test_priority_bonuses(self):
        context = BusinessContext(
            tenant_id="t1",
            application_criticality=ApplicationCriticality.CRITICAL,
            environment_type=EnvironmentType.STAGING,
        )
        assert calculators.priority_score(40, context) == 65

    def test_priority_clamped(self):
        context = BusinessContext(tenant_id="t1", regulatory_requirements=["SOX"])
        assert calculators.priority_score(95, context) == 100

    def test_vulnerability_factor_per_vulnerability(self):
        vulns = [
            Vulnerability(id="v1", severity=Severity.CRITICAL, cve="CVE-2026-0001", cvss_score=9.8),
            Vulnerability(id="v2", severity=Severity.INFO),
        ]
        factors = calculators.vulnerability_factors(vulns, self.criteria, NOW)
        assert [f.score for f in factors] == [100, 5]
        assert all(f.category == FactorCategory.VULNERABILITY for f in factors)
        assert "CVE: CVE-2026-0001" in factors[0].evidence


class TestCriteria:
    """Tests for RiskAssessmentCriteria overrides."""

    def test_merged_replaces_single_entries(self):
        criteria = RiskAssessmentCriteria().merged({"environmental_factors": {"production": 3.0}})
        assert criteria.environmental_factors["production"] == 3.0
        assert criteria.environmental_factors["staging"] == 1.5

    def test_merged_rejects_unknown_table(self):
        with pytest.raises(ValueError):
            RiskAssessmentCriteria().merged({"bogus": {"x": 1}})
