"""Risk scoring engine."""

from depgov.scoring.engine import RiskAssessmentService
from depgov.scoring.factors import (
    BusinessContext,
    MitigationStrategy,
    PrioritizationResult,
    RiskAssessment,
    RiskAssessmentCriteria,
    RiskFactor,
    RiskLevel,
    default_business_context,
)

__all__ = [
    "RiskAssessmentService",
    "BusinessContext",
    "MitigationStrategy",
    "PrioritizationResult",
    "RiskAssessment",
    "RiskAssessmentCriteria",
    "RiskFactor",
    "RiskLevel",
    "default_business_context",
]
