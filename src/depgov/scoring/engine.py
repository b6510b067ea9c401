"""Risk scoring engine implementation."""

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Optional

from depgov.config import ASSESSMENT_VALIDITY_DAYS
from depgov.events import EventBus, EventPublisher
from depgov.exceptions import AssessmentNotFoundError, UnsupportedOperationError
from depgov.inventory.base import DefaultMetadataProvider, PackageMetadataProvider
from depgov.inventory.models import Dependency, DependencyScope, DependencyType, Severity, Vulnerability
from depgov.scoring import calculators
from depgov.scoring.factors import (
    ApplicationCriticality,
    BusinessContext,
    Effort,
    EnvironmentType,
    FactorCategory,
    MitigationStrategy,
    MitigationType,
    PrioritizationResult,
    RiskAssessment,
    RiskAssessmentCriteria,
    RiskLevel,
    default_business_context,
)
from depgov.store.base import KeyedStore
from depgov.store.memory import MemoryStore
from depgov.utils import new_id, utcnow

logger = logging.getLogger(__name__)

CONFIGURATION_CWES = {"CWE-15", "CWE-16"}
CONFIGURATION_KEYWORDS = ("configuration", "setting")


class RiskAssessmentService:
    """
    Risk scoring engine.

    Overall = 0.25 * business impact + 0.35 * technical risk
            + 0.25 * exploitability + 0.15 * environmental
    Range: 0-100 (higher = riskier)
    """

    def __init__(
        self,
        assessments: Optional[KeyedStore[RiskAssessment]] = None,
        contexts: Optional[KeyedStore[BusinessContext]] = None,
        criteria: Optional[KeyedStore[RiskAssessmentCriteria]] = None,
        publisher: Optional[EventPublisher] = None,
        metadata_provider: Optional[PackageMetadataProvider] = None,
        clock: Callable[[], datetime] = utcnow,
        validity_days: int = ASSESSMENT_VALIDITY_DAYS,
    ):
        self.assessments = assessments if assessments is not None else MemoryStore()
        self.contexts = contexts if contexts is not None else MemoryStore(id_of=lambda c: c.tenant_id)
        self.criteria = criteria if criteria is not None else MemoryStore(id_of=lambda c: c.tenant_id)
        self.publisher = publisher or EventBus()
        self.metadata_provider = metadata_provider or DefaultMetadataProvider()
        self.clock = clock
        self.validity = timedelta(days=validity_days)

    # Tenant configuration

    def get_business_context(self, tenant_id: str) -> BusinessContext:
        return self.contexts.get(tenant_id) or default_business_context(tenant_id)

    def set_business_context(self, context: BusinessContext) -> None:
        self.contexts.put(context)
        logger.info(f"Business context updated for tenant {context.tenant_id}")
        self.publisher.publish("businessContextUpdated", {"tenant_id": context.tenant_id, "context": context.to_dict()})

    def get_assessment_criteria(self, tenant_id: str) -> RiskAssessmentCriteria:
        return self.criteria.get(tenant_id) or RiskAssessmentCriteria(tenant_id=tenant_id)

    def set_assessment_criteria(self, tenant_id: str, overrides: dict[str, dict[str, float]]) -> RiskAssessmentCriteria:
        """Override individual weight table entries for a tenant."""
        updated = self.get_assessment_criteria(tenant_id).merged(overrides)
        updated.tenant_id = tenant_id
        self.criteria.put(updated)
        self.publisher.publish("criteriaUpdated", {"tenant_id": tenant_id, "criteria": updated.to_dict()})
        return updated

    # Assessment

    def assess_risk(
        self,
        dependency: Dependency,
        vulnerabilities: Optional[list[Vulnerability]],
        tenant_id: str,
        business_context: Optional[BusinessContext] = None,
        assessed_by: str = "system",
    ) -> RiskAssessment:
        """
        Assess one dependency version for one tenant.

        Args:
            dependency: Dependency snapshot
            vulnerabilities: Vulnerabilities matched to it (None = none known)
            tenant_id: Owning tenant
            business_context: Overrides the tenant's stored context
            assessed_by: Recorded on the assessment

        Returns:
            The stored RiskAssessment
        """
        assessment = self._compute(dependency, vulnerabilities or [], tenant_id, business_context, assessed_by)
        self.assessments.add(assessment)

        logger.info(
            f"Assessed {dependency.id} for {tenant_id}: "
            f"{assessment.overall_risk_score} ({assessment.risk_level.value})"
        )
        self.publisher.publish(
            "riskAssessed",
            {
                "tenant_id": tenant_id,
                "assessment_id": assessment.id,
                "dependency_id": dependency.id,
                "risk_level": assessment.risk_level.value,
                "risk_score": assessment.overall_risk_score,
            },
        )
        return assessment

    def _compute(
        self,
        dependency: Dependency,
        vulnerabilities: list[Vulnerability],
        tenant_id: str,
        business_context: Optional[BusinessContext],
        assessed_by: str,
    ) -> RiskAssessment:
        context = business_context or self.get_business_context(tenant_id)
        criteria = self.get_assessment_criteria(tenant_id)
        now = self.clock()

        factors = []
        factors.extend(calculators.vulnerability_factors(vulnerabilities, criteria, now))
        factors.extend(
            calculators.dependency_factors(
                dependency, criteria, self.metadata_provider.maintenance_estimate(dependency), now
            )
        )
        factors.extend(calculators.environment_factors(context, criteria, now))
        factors.extend(calculators.business_factors(context, criteria, now))

        business_impact = calculators.weighted_mean(
            f for f in factors if f.category in (FactorCategory.BUSINESS, FactorCategory.ENVIRONMENT)
        )
        technical_risk = calculators.weighted_mean(
            f for f in factors if f.category in (FactorCategory.VULNERABILITY, FactorCategory.DEPENDENCY)
        )
        exploitability = calculators.exploitability_score(vulnerabilities, criteria)
        environmental = calculators.environmental_score(context, criteria)

        overall = calculators.overall_score(business_impact, technical_risk, exploitability, environmental)
        risk_level = RiskLevel.from_score(overall)

        return RiskAssessment(
            id=new_id("assess"),
            tenant_id=tenant_id,
            dependency=dependency,
            vulnerabilities=list(vulnerabilities),
            assessment_date=now,
            overall_risk_score=overall,
            risk_level=risk_level,
            risk_factors=factors,
            business_impact_score=business_impact,
            technical_risk_score=technical_risk,
            exploitability_score=exploitability,
            environmental_score=environmental,
            mitigation_strategies=generate_mitigation_strategies(dependency, vulnerabilities, context, risk_level),
            priority=calculators.priority_score(overall, context),
            valid_until=now + self.validity,
            assessed_by=assessed_by,
            last_updated=now,
            business_context=business_context,
        )

    def reassess_risk(
        self,
        assessment_id: str,
        dependency: Optional[Dependency] = None,
        vulnerabilities: Optional[list[Vulnerability]] = None,
        assessed_by: str = "system",
        business_context: Optional[BusinessContext] = None,
    ) -> RiskAssessment:
        """
        Create a new assessment that supersedes an existing one.

        New upstream data is required: without a new dependency snapshot or
        vulnerability list the engine has nothing fresh to score. Unless a
        new ``business_context`` is given, the context of the previous
        assessment carries over.
        """
        previous = self.get_assessment(assessment_id)
        if dependency is None and vulnerabilities is None:
            raise UnsupportedOperationError(
                f"Reassessment of {assessment_id} requires new dependency or vulnerability data"
            )

        assessment = self._compute(
            dependency or previous.dependency,
            previous.vulnerabilities if vulnerabilities is None else vulnerabilities,
            previous.tenant_id,
            business_context or previous.business_context,
            assessed_by,
        )
        assessment.supersedes = previous.id
        self.assessments.add(assessment)
        self.assessments.put(replace(previous, superseded_by=assessment.id, last_updated=assessment.assessment_date))

        logger.info(f"Reassessed {previous.id} as {assessment.id}")
        self.publisher.publish(
            "riskReassessed",
            {
                "tenant_id": assessment.tenant_id,
                "assessment_id": assessment.id,
                "previous_assessment_id": previous.id,
                "risk_level": assessment.risk_level.value,
                "risk_score": assessment.overall_risk_score,
            },
        )
        return assessment

    # Prioritization

    def prioritize_risk_assessments(
        self, assessments: list[RiskAssessment], tenant_id: str
    ) -> list[PrioritizationResult]:
        """Build a remediation queue, highest priority first."""
        context = self.get_business_context(tenant_id)
        results = []
        for assessment in assessments:
            top = assessment.mitigation_strategies[0] if assessment.mitigation_strategies else None
            results.append(
                PrioritizationResult(
                    assessment_id=assessment.id,
                    dependency=assessment.dependency,
                    vulnerabilities=list(assessment.vulnerabilities),
                    risk_score=assessment.overall_risk_score,
                    priority=assessment.priority,
                    recommended_action=top.recommended_action if top else "Monitor",
                    timeline=top.timeline if top else "TBD",
                    effort=top.effort.value if top else "UNKNOWN",
                    justification=priority_justification(assessment, context),
                )
            )
        results.sort(key=lambda r: r.priority, reverse=True)
        return results

    # Queries

    def get_assessment(self, assessment_id: str) -> RiskAssessment:
        assessment = self.assessments.get(assessment_id)
        if assessment is None:
            raise AssessmentNotFoundError(f"Risk assessment {assessment_id} not found")
        return assessment

    def get_assessments_by_tenant(self, tenant_id: str) -> list[RiskAssessment]:
        return sorted(self.assessments.list_by_tenant(tenant_id), key=lambda a: a.assessment_date, reverse=True)

    def get_high_risk_assessments(self, tenant_id: str) -> list[RiskAssessment]:
        """Current (not superseded) CRITICAL and HIGH assessments, riskiest first."""
        high = [
            a
            for a in self.assessments.list_by_tenant(tenant_id)
            if a.risk_level in (RiskLevel.CRITICAL, RiskLevel.HIGH) and a.superseded_by is None
        ]
        return sorted(high, key=lambda a: a.overall_risk_score, reverse=True)

    def get_risk_metrics(self, tenant_id: Optional[str] = None) -> dict:
        assessments = self.assessments.list_by_tenant(tenant_id) if tenant_id else self.assessments.all()
        now = self.clock()
        total = len(assessments)

        by_risk_level: dict[str, int] = {}
        for a in assessments:
            by_risk_level[a.risk_level.value] = by_risk_level.get(a.risk_level.value, 0) + 1

        week = timedelta(days=7)
        month = timedelta(days=30)
        ages = [now - a.assessment_date for a in assessments]
        return {
            "total": total,
            "by_risk_level": by_risk_level,
            "avg_risk_score": calculators.round_half_up(
                sum(a.overall_risk_score for a in assessments) / max(1, total)
            ),
            "expired_assessments": sum(1 for a in assessments if a.is_expired(now)),
            "assessment_age": {
                "recent": sum(1 for age in ages if age <= week),
                "week": sum(1 for age in ages if week < age <= month),
                "month": sum(1 for age in ages if age > month),
            },
        }


def has_configuration_mitigation(vulnerabilities: list[Vulnerability]) -> bool:
    for vuln in vulnerabilities:
        description = (vuln.description or "").lower()
        if any(keyword in description for keyword in CONFIGURATION_KEYWORDS):
            return True
        if CONFIGURATION_CWES.intersection(vuln.cwe):
            return True
    return False


def update_timeline(risk_level: RiskLevel, context: BusinessContext) -> str:
    if risk_level == RiskLevel.CRITICAL:
        return "24-48 hours" if context.environment_type == EnvironmentType.PRODUCTION else "Immediate"
    elif risk_level == RiskLevel.HIGH:
        return "1-2 weeks"
    elif risk_level == RiskLevel.MEDIUM:
        return "2-4 weeks"
    return "Next maintenance window"


def _update_effort(dependency: Dependency) -> Effort:
    if dependency.type == DependencyType.TRANSITIVE or dependency.scope == DependencyScope.DEVELOPMENT:
        return Effort.LOW
    return Effort.MEDIUM


def _update_cost(dependency: Dependency, context: BusinessContext) -> Effort:
    if context.environment_type == EnvironmentType.DEVELOPMENT or dependency.type == DependencyType.TRANSITIVE:
        return Effort.LOW
    return Effort.MEDIUM


def _feasibility(base: int, dependency: Dependency, transitive_bonus: int, dev_bonus: int) -> int:
    feasibility = base
    if dependency.type == DependencyType.TRANSITIVE:
        feasibility += transitive_bonus
    if dependency.scope == DependencyScope.DEVELOPMENT:
        feasibility += dev_bonus
    return min(100, feasibility)


def generate_mitigation_strategies(
    dependency: Dependency,
    vulnerabilities: list[Vulnerability],
    context: BusinessContext,
    risk_level: RiskLevel,
) -> list[MitigationStrategy]:
    """Candidate remediations, most preferred first. MONITOR is always included."""
    strategies = []
    fix_available = any(v.fix_available for v in vulnerabilities)

    if fix_available:
        strategies.append(
            MitigationStrategy(
                id=new_id("strategy"),
                type=MitigationType.UPDATE,
                description=f"Update {dependency.name} to a patched version",
                effort=_update_effort(dependency),
                cost=_update_cost(dependency, context),
                timeline=update_timeline(risk_level, context),
                effectiveness=95,
                feasibility=_feasibility(80, dependency, 10, 10),
                recommended_action="Update to latest secure version",
                priority=1,
                prerequisites=["Test in staging environment", "Review breaking changes"],
                risks=["Potential breaking changes", "Integration issues"],
                benefits=["Eliminates known vulnerabilities", "Access to latest features"],
            )
        )

    if risk_level == RiskLevel.CRITICAL and not fix_available:
        strategies.append(
            MitigationStrategy(
                id=new_id("strategy"),
                type=MitigationType.REPLACE,
                description=f"Replace {dependency.name} with a secure alternative",
                effort=Effort.HIGH,
                cost=Effort.HIGH,
                timeline="4-8 weeks" if context.environment_type == EnvironmentType.PRODUCTION else "2-4 weeks",
                effectiveness=100,
                feasibility=_feasibility(50, dependency, 20, 15),
                recommended_action="Evaluate and migrate to secure alternative",
                priority=2,
                prerequisites=["Research alternatives", "Plan migration strategy", "Update integration code"],
                risks=["High development effort", "Potential feature differences"],
                benefits=["Eliminates vulnerable dependency", "Potentially better maintained"],
            )
        )

    if has_configuration_mitigation(vulnerabilities):
        strategies.append(
            MitigationStrategy(
                id=new_id("strategy"),
                type=MitigationType.CONFIGURE,
                description="Apply configuration changes to mitigate risk",
                effort=Effort.LOW,
                cost=Effort.LOW,
                timeline="Immediate",
                effectiveness=60,
                feasibility=85,
                recommended_action="Apply security configuration",
                priority=3,
                prerequisites=["Review current configuration"],
                risks=["Partial mitigation only"],
                benefits=["Quick implementation", "Low cost"],
            )
        )

    strategies.append(
        MitigationStrategy(
            id=new_id("strategy"),
            type=MitigationType.MONITOR,
            description=f"Enhanced monitoring for {dependency.name}",
            effort=Effort.LOW,
            cost=Effort.LOW,
            timeline="Immediate",
            effectiveness=30,
            feasibility=95,
            recommended_action="Implement enhanced monitoring and alerting",
            priority=4,
            prerequisites=["Set up monitoring rules"],
            risks=["Reactive approach only"],
            benefits=["Early detection of issues", "Low implementation cost"],
        )
    )

    return sorted(strategies, key=lambda s: s.priority)


def priority_justification(assessment: RiskAssessment, context: BusinessContext) -> str:
    reasons = []
    if assessment.risk_level == RiskLevel.CRITICAL:
        reasons.append("Critical risk level")
    if context.environment_type == EnvironmentType.PRODUCTION:
        reasons.append("Production environment")
    if context.application_criticality == ApplicationCriticality.CRITICAL:
        reasons.append("Critical application")

    high_severity = [f for f in assessment.risk_factors if f.severity in (Severity.CRITICAL, Severity.HIGH)]
    if high_severity:
        reasons.append(f"{len(high_severity)} high-severity factors")
    if context.regulatory_requirements:
        reasons.append("Regulatory compliance requirements")

    return ", ".join(reasons) if reasons else "Standard risk assessment priority"
