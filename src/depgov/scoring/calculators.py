"""Factor calculators.

Pure functions that turn a dependency, its vulnerabilities and the tenant's
business context into weighted ``RiskFactor`` records and category scores.
Nothing here touches a store or publishes events.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from depgov.inventory.models import Dependency, DependencyType, Severity, Vulnerability
from depgov.scoring.factors import (
    ApplicationCriticality,
    BusinessContext,
    DataClassification,
    EnvironmentType,
    FactorCategory,
    RiskAssessmentCriteria,
    RiskFactor,
)
from depgov.utils import ensure_utc, new_id

SEVERITY_SCORES = {
    Severity.CRITICAL: 100,
    Severity.HIGH: 75,
    Severity.MEDIUM: 50,
    Severity.LOW: 25,
    Severity.INFO: 5,
}

ENVIRONMENT_SCORES = {
    EnvironmentType.PRODUCTION: 100,
    EnvironmentType.STAGING: 75,
    EnvironmentType.DEVELOPMENT: 50,
    EnvironmentType.TEST: 25,
}

DATA_CLASSIFICATION_SCORES = {
    DataClassification.RESTRICTED: (100, Severity.CRITICAL),
    DataClassification.CONFIDENTIAL: (75, Severity.HIGH),
    DataClassification.INTERNAL: (50, Severity.MEDIUM),
    DataClassification.PUBLIC: (25, Severity.LOW),
}

CRITICALITY_SCORES = {
    ApplicationCriticality.CRITICAL: (100, Severity.CRITICAL),
    ApplicationCriticality.HIGH: (75, Severity.HIGH),
    ApplicationCriticality.MEDIUM: (50, Severity.MEDIUM),
    ApplicationCriticality.LOW: (25, Severity.LOW),
}

COPYLEFT_LICENSES = {"GPL-2.0", "GPL-3.0", "AGPL-3.0", "LGPL-2.1", "LGPL-3.0"}

CRITICAL_REGULATIONS = {"SOX", "PCI-DSS", "GDPR", "HIPAA"}

# Category weights for the overall score
BUSINESS_IMPACT_WEIGHT = 0.25
TECHNICAL_RISK_WEIGHT = 0.35
EXPLOITABILITY_WEIGHT = 0.25
ENVIRONMENTAL_WEIGHT = 0.15

STALE_AFTER_DAYS = 180
ABANDONED_AFTER_DAYS = 365


def _factor(
    category: FactorCategory,
    factor_type: str,
    description: str,
    severity: Severity,
    weight: float,
    score: float,
    evidence: list[str],
    source: str,
    now: datetime,
) -> RiskFactor:
    return RiskFactor(
        id=new_id("factor"),
        category=category,
        type=factor_type,
        description=description,
        severity=severity,
        weight=weight,
        score=score,
        weighted_score=score * weight,
        evidence=evidence,
        source=source,
        detected_at=now,
    )


def vulnerability_factors(
    vulnerabilities: Iterable[Vulnerability],
    criteria: RiskAssessmentCriteria,
    now: datetime,
) -> list[RiskFactor]:
    """One factor per vulnerability, scored from its severity."""
    factors = []
    for vuln in vulnerabilities:
        evidence = []
        if vuln.cve:
            evidence.append(f"CVE: {vuln.cve}")
        if vuln.cvss_score is not None:
            evidence.append(f"CVSS Score: {vuln.cvss_score}")
        evidence.append(f"Severity: {vuln.severity.value}")

        factors.append(
            _factor(
                FactorCategory.VULNERABILITY,
                "SECURITY_VULNERABILITY",
                f"{vuln.severity.value} vulnerability: {vuln.title or vuln.cve or vuln.id}",
                vuln.severity,
                criteria.vulnerability_weights.get(vuln.severity.value.lower(), 1.0),
                SEVERITY_SCORES[vuln.severity],
                evidence,
                vuln.data_source or "vulnerability-scanner",
                now,
            )
        )
    return factors


def maintenance_estimate(base_estimate: float, last_update: Optional[datetime], now: datetime) -> float:
    """
    Apply the staleness penalty to a provider's maintenance estimate.

    Args:
        base_estimate: Estimate from the metadata provider (0-100)
        last_update: When the package was last published, if known
        now: Reference time

    Returns:
        Adjusted estimate clamped to 0-100
    """
    estimate = base_estimate
    if last_update is not None:
        days = (now - ensure_utc(last_update)).days
        if days > ABANDONED_AFTER_DAYS:
            estimate -= 20
        elif days > STALE_AFTER_DAYS:
            estimate -= 10
    return max(0.0, min(100.0, estimate))


def age_score(version: str) -> float:
    """Score how risky a version line is based on its major number."""
    if version == "*":
        return 50
    head = version.lstrip("^~=<>v ").split(".")[0]
    try:
        major = int(head)
    except ValueError:
        return 40
    if major == 0:
        return 70
    if major >= 3:
        return 20
    return 40


def license_risk(licenses: list[str]) -> tuple[float, Severity]:
    if any(lic in COPYLEFT_LICENSES for lic in licenses):
        return 60, Severity.HIGH
    if not licenses:
        return 30, Severity.MEDIUM
    return 0, Severity.LOW


def dependency_factors(
    dependency: Dependency,
    criteria: RiskAssessmentCriteria,
    base_maintenance_estimate: float,
    now: datetime,
) -> list[RiskFactor]:
    """Dependency type, maintenance, age and license factors."""
    weights = criteria.dependency_factors
    factors = []

    if dependency.type == DependencyType.DIRECT:
        factors.append(
            _factor(
                FactorCategory.DEPENDENCY,
                "DEPENDENCY_TYPE",
                "Direct dependency",
                Severity.HIGH,
                weights.get("direct", 1.5),
                80,
                [f"Dependency type: {dependency.type.value}"],
                "dependency-analyzer",
                now,
            )
        )
    else:
        factors.append(
            _factor(
                FactorCategory.DEPENDENCY,
                "DEPENDENCY_TYPE",
                "Transitive dependency",
                Severity.MEDIUM,
                weights.get("transitive", 1.0),
                60,
                [f"Dependency type: {dependency.type.value}"],
                "dependency-analyzer",
                now,
            )
        )

    estimate = maintenance_estimate(base_maintenance_estimate, dependency.last_update, now)
    if estimate > 70:
        maintenance_severity = Severity.LOW
    elif estimate > 40:
        maintenance_severity = Severity.MEDIUM
    else:
        maintenance_severity = Severity.HIGH
    evidence = [f"Maintenance score: {estimate:g}"]
    if dependency.last_update is not None:
        evidence.append(f"Last update: {ensure_utc(dependency.last_update).date().isoformat()}")
    factors.append(
        _factor(
            FactorCategory.DEPENDENCY,
            "MAINTENANCE_STATUS",
            "Package maintenance status",
            maintenance_severity,
            weights.get("maintenance_status", 1.3),
            100 - estimate,
            evidence,
            "package-registry",
            now,
        )
    )

    age = age_score(dependency.version)
    if age > 80:
        age_severity = Severity.HIGH
    elif age > 60:
        age_severity = Severity.MEDIUM
    else:
        age_severity = Severity.LOW
    factors.append(
        _factor(
            FactorCategory.DEPENDENCY,
            "PACKAGE_AGE",
            "Package version maturity",
            age_severity,
            weights.get("age", 1.1),
            age,
            [f"Version: {dependency.version}"],
            "package-registry",
            now,
        )
    )

    lic_score, lic_severity = license_risk(dependency.licenses)
    if lic_score > 0:
        factors.append(
            _factor(
                FactorCategory.DEPENDENCY,
                "LICENSE_RISK",
                "License compliance risk",
                lic_severity,
                weights.get("license_risk", 1.2),
                lic_score,
                [f"Licenses: {', '.join(dependency.licenses) or 'none declared'}"],
                "license-analyzer",
                now,
            )
        )

    return factors


def environment_factors(
    context: BusinessContext, criteria: RiskAssessmentCriteria, now: datetime
) -> list[RiskFactor]:
    env = context.environment_type
    env_score = ENVIRONMENT_SCORES[env]
    data_score, data_severity = DATA_CLASSIFICATION_SCORES[context.data_classification]
    return [
        _factor(
            FactorCategory.ENVIRONMENT,
            "ENVIRONMENT_TYPE",
            f"{env.value} environment",
            Severity.HIGH if env == EnvironmentType.PRODUCTION else Severity.MEDIUM,
            criteria.environmental_factors.get(env.value.lower(), 1.0),
            env_score,
            [f"Environment: {env.value}"],
            "business-context",
            now,
        ),
        _factor(
            FactorCategory.ENVIRONMENT,
            "DATA_CLASSIFICATION",
            f"{context.data_classification.value} data classification",
            data_severity,
            1.0,
            data_score,
            [f"Data classification: {context.data_classification.value}"],
            "business-context",
            now,
        ),
    ]


def business_factors(
    context: BusinessContext, criteria: RiskAssessmentCriteria, now: datetime
) -> list[RiskFactor]:
    criticality = context.application_criticality
    crit_score, crit_severity = CRITICALITY_SCORES[criticality]
    factors = [
        _factor(
            FactorCategory.BUSINESS,
            "APPLICATION_CRITICALITY",
            f"{criticality.value} application criticality",
            crit_severity,
            criteria.business_factors.get(criticality.value.lower(), 1.0),
            crit_score,
            [f"Application criticality: {criticality.value}"],
            "business-context",
            now,
        )
    ]

    regulations = context.regulatory_requirements
    if regulations:
        critical = any(reg in CRITICAL_REGULATIONS for reg in regulations)
        factors.append(
            _factor(
                FactorCategory.BUSINESS,
                "REGULATORY_COMPLIANCE",
                "Regulatory compliance requirements",
                Severity.HIGH if critical else Severity.MEDIUM,
                1.5,
                len(regulations) * 20,
                [f"Regulations: {', '.join(regulations)}"],
                "business-context",
                now,
            )
        )
    return factors


def weighted_mean(factors: Iterable[RiskFactor]) -> float:
    """Weighted mean of factor scores, clamped to 0-100 (0 for no factors)."""
    factors = list(factors)
    total_weight = sum(f.weight for f in factors)
    if total_weight <= 0:
        return 0.0
    return max(0.0, min(100.0, sum(f.weighted_score for f in factors) / total_weight))


def exploitability_score(vulnerabilities: Iterable[Vulnerability], criteria: RiskAssessmentCriteria) -> float:
    best = 0.0
    for vuln in vulnerabilities:
        level = (vuln.exploitability or "not_defined").lower()
        factor = criteria.exploitability_factors.get(level, 1.0)
        best = max(best, factor * 50)
    return min(100.0, best)


def environmental_score(context: BusinessContext, criteria: RiskAssessmentCriteria) -> float:
    multiplier = criteria.environmental_factors.get(context.environment_type.value.lower(), 1.0)
    data_score, _ = DATA_CLASSIFICATION_SCORES[context.data_classification]
    return max(0.0, min(100.0, (multiplier + data_score / 100) * 50))


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def overall_score(business: float, technical: float, exploitability: float, environmental: float) -> int:
    total = (
        business * BUSINESS_IMPACT_WEIGHT
        + technical * TECHNICAL_RISK_WEIGHT
        + exploitability * EXPLOITABILITY_WEIGHT
        + environmental * ENVIRONMENTAL_WEIGHT
    )
    return max(0, min(100, round_half_up(total)))


def priority_score(overall: int, context: BusinessContext) -> int:
    """Overall score plus fixed bonuses for environment, criticality and regulation."""
    priority = overall
    if context.environment_type == EnvironmentType.PRODUCTION:
        priority += 20
    elif context.environment_type == EnvironmentType.STAGING:
        priority += 10

    if context.application_criticality == ApplicationCriticality.CRITICAL:
        priority += 15
    elif context.application_criticality == ApplicationCriticality.HIGH:
        priority += 10

    if context.regulatory_requirements:
        priority += 10
    return max(0, min(100, priority))
