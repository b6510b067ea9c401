"""Rule condition interpreter.

Conditions reference dependency data by name (``license``,
``vulnerability.severity``, ``daysSinceLastUpdate``, ``metadata.team``...).
Names are resolved through a ``FieldRegistry`` of extraction functions
over an ``EvaluationData`` record, never by reflection.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from numbers import Real
from typing import Any, Callable, Optional

from depgov.inventory.models import Dependency, Vulnerability
from depgov.policy.models import ConditionOperator, EvaluationContext, LogicalOperator, RuleCondition
from depgov.scoring.factors import RiskAssessment
from depgov.utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

FieldAccessor = Callable[["EvaluationData"], Any]

METADATA_PREFIX = "metadata."


@dataclass
class EvaluationData:
    """Enriched view of one dependency that rule conditions are tested against."""

    dependency: Dependency
    context: EvaluationContext
    vulnerabilities: list[Vulnerability] = field(default_factory=list)
    assessment: Optional[RiskAssessment] = None
    days_since_last_update: Optional[int] = None


def enrich(dependency: Dependency, context: EvaluationContext, now: Optional[datetime] = None) -> EvaluationData:
    """
    Build the evaluation record for a dependency.

    Vulnerabilities and the risk assessment come from the context maps,
    keyed by dependency id.

    Raises:
        TypeError: If the dependency carries an unusable last_update value
    """
    days = None
    if dependency.last_update is not None:
        if not isinstance(dependency.last_update, datetime):
            raise TypeError(f"Invalid last_update for {dependency.id}: {dependency.last_update!r}")
        reference = now or context.now or utcnow()
        days = (reference - ensure_utc(dependency.last_update)).days

    return EvaluationData(
        dependency=dependency,
        context=context,
        vulnerabilities=list(context.vulnerabilities.get(dependency.id, [])),
        assessment=context.assessments.get(dependency.id),
        days_since_last_update=days,
    )


def _worst_severity(data: EvaluationData) -> Optional[str]:
    if not data.vulnerabilities:
        return None
    return max(data.vulnerabilities, key=lambda v: v.severity.rank).severity.value


def _max_cvss(data: EvaluationData) -> Optional[float]:
    scores = [v.cvss_score for v in data.vulnerabilities if v.cvss_score is not None]
    return max(scores) if scores else None


def _primary_license(data: EvaluationData) -> Optional[str]:
    licenses = data.dependency.licenses
    return licenses[0] if licenses else None


def _risk_score(data: EvaluationData) -> Optional[int]:
    return data.assessment.overall_risk_score if data.assessment else None


def _risk_level(data: EvaluationData) -> Optional[str]:
    return data.assessment.risk_level.value if data.assessment else None


def _metadata_lookup(metadata: dict, path: str) -> Any:
    value: Any = metadata
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


class FieldRegistry:
    """Maps condition field names to extraction functions."""

    def __init__(self, accessors: Optional[dict[str, FieldAccessor]] = None):
        self._accessors: dict[str, FieldAccessor] = dict(accessors or {})

    def register(self, name: str, accessor: FieldAccessor) -> None:
        self._accessors[name] = accessor

    def names(self) -> list[str]:
        return sorted(self._accessors)

    def __contains__(self, name: str) -> bool:
        return name in self._accessors or name.startswith(METADATA_PREFIX)

    def resolve(self, name: str, data: EvaluationData) -> Any:
        """Value of ``name`` for ``data``; unknown names resolve to None."""
        accessor = self._accessors.get(name)
        if accessor is not None:
            return accessor(data)
        if name.startswith(METADATA_PREFIX):
            return _metadata_lookup(data.dependency.metadata, name[len(METADATA_PREFIX):])
        return None

    def copy(self) -> "FieldRegistry":
        return FieldRegistry(self._accessors)


def default_registry() -> FieldRegistry:
    registry = FieldRegistry(
        {
            "name": lambda d: d.dependency.name,
            "version": lambda d: d.dependency.version,
            "ecosystem": lambda d: d.dependency.ecosystem,
            "type": lambda d: d.dependency.type.value,
            "scope": lambda d: d.dependency.scope.value,
            "licenses": lambda d: list(d.dependency.licenses),
            "license": _primary_license,
            "packageFile": lambda d: d.dependency.package_file,
            "lastUpdate": lambda d: d.dependency.last_update,
            "downloads": lambda d: d.dependency.downloads,
            "maintainers": lambda d: list(d.dependency.maintainers),
            "description": lambda d: d.dependency.description,
            "repository": lambda d: d.dependency.repository,
            "daysSinceLastUpdate": lambda d: d.days_since_last_update,
            "vulnerability.severity": _worst_severity,
            "vulnerability.severities": lambda d: sorted({v.severity.value for v in d.vulnerabilities}),
            "vulnerability.count": lambda d: len(d.vulnerabilities),
            "vulnerability.maxCvssScore": _max_cvss,
            "vulnerability.fixAvailable": lambda d: any(v.fix_available for v in d.vulnerabilities),
            "vulnerability.cves": lambda d: [v.cve for v in d.vulnerabilities if v.cve],
            "riskScore": _risk_score,
            "riskLevel": _risk_level,
            "context.project": lambda d: d.context.project,
            "context.environment": lambda d: d.context.environment,
        }
    )
    # snake_case spellings
    for alias, name in (
        ("package_file", "packageFile"),
        ("last_update", "lastUpdate"),
        ("days_since_last_update", "daysSinceLastUpdate"),
        ("risk_score", "riskScore"),
        ("risk_level", "riskLevel"),
    ):
        registry.register(alias, registry._accessors[name])
    return registry


DEFAULT_FIELDS = default_registry()


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _plain(value: Any) -> Any:
    """JSON-safe copy of a resolved value for evidence."""
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _is_absent(value: Any) -> bool:
    return value is None or (isinstance(value, (list, tuple, set, dict, str)) and len(value) == 0)


def evaluate_operator(operator: str, actual: Any, expected: Any) -> bool:
    """
    Apply one operator. Type mismatches and bad patterns evaluate to False.

    Args:
        operator: ConditionOperator value
        actual: Resolved field value
        expected: Condition value

    Returns:
        Whether the condition holds
    """
    if operator == ConditionOperator.EQUALS:
        return actual == expected
    if operator == ConditionOperator.NOT_EQUALS:
        return actual != expected

    if operator in (ConditionOperator.CONTAINS, ConditionOperator.NOT_CONTAINS):
        if isinstance(actual, str) and isinstance(expected, str):
            found = expected in actual
        elif isinstance(actual, (list, tuple, set)):
            found = expected in actual
        else:
            return False
        return found if operator == ConditionOperator.CONTAINS else not found

    if operator in (ConditionOperator.STARTS_WITH, ConditionOperator.ENDS_WITH, ConditionOperator.MATCHES):
        if not isinstance(actual, str) or not isinstance(expected, str):
            return False
        if operator == ConditionOperator.STARTS_WITH:
            return actual.startswith(expected)
        if operator == ConditionOperator.ENDS_WITH:
            return actual.endswith(expected)
        try:
            return re.search(expected, actual) is not None
        except re.error:
            logger.debug(f"Invalid pattern in condition: {expected!r}")
            return False

    if operator in (
        ConditionOperator.GREATER_THAN,
        ConditionOperator.LESS_THAN,
        ConditionOperator.GREATER_EQUAL,
        ConditionOperator.LESS_EQUAL,
    ):
        if not _is_number(actual) or not _is_number(expected):
            return False
        if operator == ConditionOperator.GREATER_THAN:
            return actual > expected
        if operator == ConditionOperator.LESS_THAN:
            return actual < expected
        if operator == ConditionOperator.GREATER_EQUAL:
            return actual >= expected
        return actual <= expected

    if operator in (ConditionOperator.IN, ConditionOperator.NOT_IN):
        if not isinstance(expected, (list, tuple, set)):
            return False
        if isinstance(actual, (list, tuple, set)):
            found = any(item in expected for item in actual)
        else:
            found = actual in expected
        return found if operator == ConditionOperator.IN else not found

    if operator == ConditionOperator.EXISTS:
        return not _is_absent(actual)
    if operator == ConditionOperator.NOT_EXISTS:
        return _is_absent(actual)

    return False


@dataclass
class ConditionResult:
    triggered: bool
    triggered_conditions: list[RuleCondition]
    actual_values: dict[str, Any]


def evaluate_conditions(
    conditions: list[RuleCondition],
    data: EvaluationData,
    registry: FieldRegistry = DEFAULT_FIELDS,
) -> ConditionResult:
    """Left-fold conditions in order.

    The first result seeds the accumulator; each later result is combined
    using the previous condition's logical operator (AND when unset).
    """
    triggered = []
    actual_values: dict[str, Any] = {}
    accumulator = False
    combine = LogicalOperator.AND

    for index, condition in enumerate(conditions):
        actual = registry.resolve(condition.field, data)
        actual_values[condition.field] = _plain(actual)
        result = evaluate_operator(condition.operator, actual, condition.value)
        if result:
            triggered.append(condition)

        if index == 0:
            accumulator = result
        elif combine == LogicalOperator.OR:
            accumulator = accumulator or result
        else:
            accumulator = accumulator and result

        combine = (
            LogicalOperator(str(condition.logical_operator).upper())
            if condition.logical_operator
            else LogicalOperator.AND
        )

    return ConditionResult(triggered=accumulator, triggered_conditions=triggered, actual_values=actual_values)
