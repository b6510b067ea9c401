"""Risk scoring data structures."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from depgov.inventory.models import Dependency, Severity, Vulnerability
from depgov.utils import format_datetime, parse_datetime, utcnow


class RiskLevel(str, Enum):
    """Risk level classification."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    MINIMAL = "MINIMAL"

    @classmethod
    def from_score(cls, score: float) -> "RiskLevel":
        """Get risk level from numeric score."""
        if score >= 90:
            return cls.CRITICAL
        elif score >= 70:
            return cls.HIGH
        elif score >= 50:
            return cls.MEDIUM
        elif score >= 30:
            return cls.LOW
        else:
            return cls.MINIMAL

    @property
    def semaphore(self) -> str:
        """Get semaphore emoji for this risk level."""
        return {
            RiskLevel.CRITICAL: "🔴",
            RiskLevel.HIGH: "🟠",
            RiskLevel.MEDIUM: "🟡",
            RiskLevel.LOW: "🟢",
            RiskLevel.MINIMAL: "🟢",
        }[self]

    @property
    def description(self) -> str:
        """Human-readable description of the risk level."""
        return {
            RiskLevel.CRITICAL: "Immediate risk - remediation required",
            RiskLevel.HIGH: "Elevated risk - remediate in the next cycle",
            RiskLevel.MEDIUM: "Requires active monitoring",
            RiskLevel.LOW: "Minor concerns, generally acceptable",
            RiskLevel.MINIMAL: "No meaningful risk identified",
        }[self]


class FactorCategory(str, Enum):
    VULNERABILITY = "VULNERABILITY"
    DEPENDENCY = "DEPENDENCY"
    ENVIRONMENT = "ENVIRONMENT"
    BUSINESS = "BUSINESS"
    OPERATIONAL = "OPERATIONAL"


class MitigationType(str, Enum):
    UPDATE = "UPDATE"
    PATCH = "PATCH"
    REPLACE = "REPLACE"
    CONFIGURE = "CONFIGURE"
    MONITOR = "MONITOR"
    ACCEPT = "ACCEPT"


class Effort(str, Enum):
    """Effort and cost scale for mitigation strategies."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"


class ApplicationCriticality(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class EnvironmentType(str, Enum):
    PRODUCTION = "PRODUCTION"
    STAGING = "STAGING"
    DEVELOPMENT = "DEVELOPMENT"
    TEST = "TEST"


class DataClassification(str, Enum):
    PUBLIC = "PUBLIC"
    INTERNAL = "INTERNAL"
    CONFIDENTIAL = "CONFIDENTIAL"
    RESTRICTED = "RESTRICTED"


@dataclass
class RiskFactor:
    """One weighted contributor to an overall risk score."""

    id: str
    category: FactorCategory
    type: str
    description: str
    severity: Severity
    weight: float
    score: float
    weighted_score: float = 0.0
    evidence: list[str] = field(default_factory=list)
    source: str = ""
    detected_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category": self.category.value,
            "type": self.type,
            "description": self.description,
            "severity": self.severity.value,
            "weight": self.weight,
            "score": self.score,
            "weighted_score": self.weighted_score,
            "evidence": list(self.evidence),
            "source": self.source,
            "detected_at": format_datetime(self.detected_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RiskFactor":
        return cls(
            id=data["id"],
            category=FactorCategory(data["category"]),
            type=data["type"],
            description=data.get("description", ""),
            severity=Severity(data["severity"]),
            weight=data["weight"],
            score=data["score"],
            weighted_score=data.get("weighted_score", 0.0),
            evidence=list(data.get("evidence", [])),
            source=data.get("source", ""),
            detected_at=parse_datetime(data.get("detected_at")) or utcnow(),
        )


@dataclass
class MitigationStrategy:
    """A ranked remediation option. Lower priority numbers are preferred."""

    id: str
    type: MitigationType
    description: str
    effort: Effort
    cost: Effort
    timeline: str
    effectiveness: int  # 0-100
    feasibility: int  # 0-100
    recommended_action: str
    priority: int
    prerequisites: list[str] = field(default_factory=list)
    risks: list[str] = field(default_factory=list)
    benefits: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "description": self.description,
            "effort": self.effort.value,
            "cost": self.cost.value,
            "timeline": self.timeline,
            "effectiveness": self.effectiveness,
            "feasibility": self.feasibility,
            "recommended_action": self.recommended_action,
            "priority": self.priority,
            "prerequisites": list(self.prerequisites),
            "risks": list(self.risks),
            "benefits": list(self.benefits),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MitigationStrategy":
        return cls(
            id=data["id"],
            type=MitigationType(data["type"]),
            description=data.get("description", ""),
            effort=Effort(data["effort"]),
            cost=Effort(data["cost"]),
            timeline=data.get("timeline", ""),
            effectiveness=data["effectiveness"],
            feasibility=data["feasibility"],
            recommended_action=data.get("recommended_action", ""),
            priority=data["priority"],
            prerequisites=list(data.get("prerequisites", [])),
            risks=list(data.get("risks", [])),
            benefits=list(data.get("benefits", [])),
        )


@dataclass
class MaintenanceWindow:
    id: str
    name: str
    day_of_week: int  # 0 = Monday
    start_time: str  # HH:MM
    end_time: str
    timezone: str = "UTC"
    type: str = "REGULAR"  # REGULAR, EMERGENCY, PLANNED
    approval_required: bool = False
    description: str = ""


@dataclass
class Stakeholder:
    id: str
    name: str
    role: str
    email: str
    department: str = ""
    escalation_level: int = 1
    responsibilities: list[str] = field(default_factory=list)


@dataclass
class BusinessContext:
    """Per-tenant environment classification used to weight risk."""

    tenant_id: str
    application_criticality: ApplicationCriticality = ApplicationCriticality.MEDIUM
    environment_type: EnvironmentType = EnvironmentType.PRODUCTION
    data_classification: DataClassification = DataClassification.INTERNAL
    regulatory_requirements: list[str] = field(default_factory=list)
    maintenance_windows: list[MaintenanceWindow] = field(default_factory=list)
    stakeholders: list[Stakeholder] = field(default_factory=list)
    compliance_frameworks: list[str] = field(default_factory=list)
    operating_timezone: str = "UTC"
    operating_days: list[str] = field(
        default_factory=lambda: ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]
    )
    operating_hours: tuple[str, str] = ("09:00", "17:00")

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "application_criticality": self.application_criticality.value,
            "environment_type": self.environment_type.value,
            "data_classification": self.data_classification.value,
            "regulatory_requirements": list(self.regulatory_requirements),
            "maintenance_windows": [vars(w).copy() for w in self.maintenance_windows],
            "stakeholders": [
                {**vars(s), "responsibilities": list(s.responsibilities)} for s in self.stakeholders
            ],
            "compliance_frameworks": list(self.compliance_frameworks),
            "operating_timezone": self.operating_timezone,
            "operating_days": list(self.operating_days),
            "operating_hours": list(self.operating_hours),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BusinessContext":
        defaults = default_business_context(data.get("tenant_id", ""))
        hours = data.get("operating_hours") or defaults.operating_hours
        return cls(
            tenant_id=data.get("tenant_id", ""),
            application_criticality=ApplicationCriticality(
                str(data.get("application_criticality", defaults.application_criticality.value)).upper()
            ),
            environment_type=EnvironmentType(
                str(data.get("environment_type", defaults.environment_type.value)).upper()
            ),
            data_classification=DataClassification(
                str(data.get("data_classification", defaults.data_classification.value)).upper()
            ),
            regulatory_requirements=list(data.get("regulatory_requirements") or []),
            maintenance_windows=[MaintenanceWindow(**w) for w in data.get("maintenance_windows") or []],
            stakeholders=[Stakeholder(**s) for s in data.get("stakeholders") or []],
            compliance_frameworks=list(data.get("compliance_frameworks") or []),
            operating_timezone=data.get("operating_timezone", defaults.operating_timezone),
            operating_days=list(data.get("operating_days") or defaults.operating_days),
            operating_hours=(hours[0], hours[1]),
        )


def default_business_context(tenant_id: str) -> BusinessContext:
    """The one context used whenever a tenant has none stored."""
    return BusinessContext(
        tenant_id=tenant_id,
        application_criticality=ApplicationCriticality.MEDIUM,
        environment_type=EnvironmentType.PRODUCTION,
        data_classification=DataClassification.INTERNAL,
    )


@dataclass
class RiskAssessmentCriteria:
    """Configurable weight tables. Keys are lower-case snake_case labels."""

    tenant_id: str = ""
    vulnerability_weights: dict[str, float] = field(
        default_factory=lambda: {"critical": 100, "high": 75, "medium": 50, "low": 25, "info": 5}
    )
    dependency_factors: dict[str, float] = field(
        default_factory=lambda: {
            "direct": 1.5,
            "transitive": 1.0,
            "maintenance_status": 1.3,
            "popularity": 0.8,
            "age": 1.1,
            "license_risk": 1.2,
        }
    )
    environmental_factors: dict[str, float] = field(
        default_factory=lambda: {"production": 2.0, "staging": 1.5, "development": 1.0, "test": 0.8}
    )
    business_factors: dict[str, float] = field(
        default_factory=lambda: {"critical": 2.0, "high": 1.5, "medium": 1.0, "low": 0.7}
    )
    exploitability_factors: dict[str, float] = field(
        default_factory=lambda: {
            "public_exploit": 2.0,
            "proof_of_concept": 1.5,
            "functional": 1.2,
            "unproven": 0.8,
            "not_defined": 1.0,
        }
    )

    def merged(self, overrides: dict[str, dict[str, float]]) -> "RiskAssessmentCriteria":
        """Return a copy with individual table entries replaced."""
        tables = self.to_dict()
        for table, values in overrides.items():
            if table == "tenant_id" or table not in tables:
                raise ValueError(f"Unknown criteria table: {table}")
            tables[table] = {**tables[table], **values}
        return RiskAssessmentCriteria.from_dict(tables)

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "vulnerability_weights": dict(self.vulnerability_weights),
            "dependency_factors": dict(self.dependency_factors),
            "environmental_factors": dict(self.environmental_factors),
            "business_factors": dict(self.business_factors),
            "exploitability_factors": dict(self.exploitability_factors),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RiskAssessmentCriteria":
        base = cls()
        return cls(
            tenant_id=data.get("tenant_id", ""),
            vulnerability_weights={**base.vulnerability_weights, **data.get("vulnerability_weights", {})},
            dependency_factors={**base.dependency_factors, **data.get("dependency_factors", {})},
            environmental_factors={**base.environmental_factors, **data.get("environmental_factors", {})},
            business_factors={**base.business_factors, **data.get("business_factors", {})},
            exploitability_factors={**base.exploitability_factors, **data.get("exploitability_factors", {})},
        )


@dataclass
class RiskAssessment:
    """Complete risk assessment of one dependency version for one tenant."""

    id: str
    tenant_id: str
    dependency: Dependency
    vulnerabilities: list[Vulnerability]
    assessment_date: datetime
    overall_risk_score: int
    risk_level: RiskLevel
    risk_factors: list[RiskFactor]
    business_impact_score: float
    technical_risk_score: float
    exploitability_score: float
    environmental_score: float
    mitigation_strategies: list[MitigationStrategy]
    priority: int
    valid_until: datetime
    assessed_by: str = "system"
    last_updated: Optional[datetime] = None
    supersedes: Optional[str] = None
    superseded_by: Optional[str] = None
    # explicit context the score was computed under; None means the tenant default
    business_context: Optional[BusinessContext] = None

    @property
    def dependency_id(self) -> str:
        return self.dependency.id

    @property
    def validity(self) -> timedelta:
        return self.valid_until - self.assessment_date

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Expiry is advisory: expired assessments are kept, just flagged."""
        return (now or utcnow()) > self.valid_until

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "dependency": self.dependency.to_dict(),
            "vulnerabilities": [v.to_dict() for v in self.vulnerabilities],
            "assessment_date": format_datetime(self.assessment_date),
            "score": {
                "overall": self.overall_risk_score,
                "risk_level": self.risk_level.value,
                "semaphore": self.risk_level.semaphore,
                "components": {
                    "business_impact": self.business_impact_score,
                    "technical_risk": self.technical_risk_score,
                    "exploitability": self.exploitability_score,
                    "environmental": self.environmental_score,
                },
            },
            "risk_factors": [f.to_dict() for f in self.risk_factors],
            "mitigation_strategies": [m.to_dict() for m in self.mitigation_strategies],
            "priority": self.priority,
            "valid_until": format_datetime(self.valid_until),
            "assessed_by": self.assessed_by,
            "last_updated": format_datetime(self.last_updated),
            "supersedes": self.supersedes,
            "superseded_by": self.superseded_by,
            "business_context": self.business_context.to_dict() if self.business_context else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RiskAssessment":
        score = data["score"]
        components = score["components"]
        return cls(
            id=data["id"],
            tenant_id=data["tenant_id"],
            dependency=Dependency.from_dict(data["dependency"]),
            vulnerabilities=[Vulnerability.from_dict(v) for v in data.get("vulnerabilities", [])],
            assessment_date=parse_datetime(data["assessment_date"]),
            overall_risk_score=score["overall"],
            risk_level=RiskLevel(score["risk_level"]),
            risk_factors=[RiskFactor.from_dict(f) for f in data.get("risk_factors", [])],
            business_impact_score=components["business_impact"],
            technical_risk_score=components["technical_risk"],
            exploitability_score=components["exploitability"],
            environmental_score=components["environmental"],
            mitigation_strategies=[MitigationStrategy.from_dict(m) for m in data.get("mitigation_strategies", [])],
            priority=data["priority"],
            valid_until=parse_datetime(data["valid_until"]),
            assessed_by=data.get("assessed_by", "system"),
            last_updated=parse_datetime(data.get("last_updated")),
            supersedes=data.get("supersedes"),
            superseded_by=data.get("superseded_by"),
            business_context=(
                BusinessContext.from_dict(data["business_context"]) if data.get("business_context") else None
            ),
        )


@dataclass
class PrioritizationResult:
    """One row of a remediation queue."""

    assessment_id: str
    dependency: Dependency
    vulnerabilities: list[Vulnerability]
    risk_score: int
    priority: int
    recommended_action: str
    timeline: str
    effort: str
    justification: str

    def to_dict(self) -> dict:
        return {
            "assessment_id": self.assessment_id,
            "dependency": self.dependency.to_dict(),
            "vulnerabilities": [v.to_dict() for v in self.vulnerabilities],
            "risk_score": self.risk_score,
            "priority": self.priority,
            "recommended_action": self.recommended_action,
            "timeline": self.timeline,
            "effort": self.effort,
            "justification": self.justification,
        }
