"""Policy, rule, violation and enforcement data structures.

Operators, rule types and action types are kept as plain strings on the
records (the ``str`` enums below compare equal to them) so that a
malformed policy can be loaded and then reported by validation instead of
failing during construction.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from depgov.inventory.models import Dependency, Severity, Vulnerability
from depgov.scoring.factors import RiskAssessment
from depgov.utils import ensure_utc, format_datetime, parse_datetime, utcnow


class RuleType(str, Enum):
    VULNERABILITY = "VULNERABILITY"
    LICENSE = "LICENSE"
    AGE = "AGE"
    MAINTENANCE = "MAINTENANCE"
    CONFIGURATION = "CONFIGURATION"
    CUSTOM = "CUSTOM"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    MATCHES = "matches"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_EQUAL = "greater_equal"
    LESS_EQUAL = "less_equal"
    IN = "in"
    NOT_IN = "not_in"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class ActionType(str, Enum):
    BLOCK = "BLOCK"
    WARN = "WARN"
    LOG = "LOG"
    NOTIFY = "NOTIFY"
    AUTO_FIX = "AUTO_FIX"
    CREATE_ISSUE = "CREATE_ISSUE"
    ESCALATE = "ESCALATE"


class ExceptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"


class ViolationStatus(str, Enum):
    OPEN = "OPEN"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"
    SUPPRESSED = "SUPPRESSED"
    FALSE_POSITIVE = "FALSE_POSITIVE"


# Allowed violation lifecycle moves
VIOLATION_TRANSITIONS = {
    ViolationStatus.OPEN: {
        ViolationStatus.ACKNOWLEDGED,
        ViolationStatus.RESOLVED,
        ViolationStatus.SUPPRESSED,
        ViolationStatus.FALSE_POSITIVE,
    },
    ViolationStatus.ACKNOWLEDGED: {
        ViolationStatus.RESOLVED,
        ViolationStatus.SUPPRESSED,
        ViolationStatus.FALSE_POSITIVE,
    },
}


class EvaluationStatus(str, Enum):
    COMPLIANT = "COMPLIANT"
    VIOLATION = "VIOLATION"
    WARNING = "WARNING"
    EXCEPTION = "EXCEPTION"
    SKIPPED = "SKIPPED"


class ActionStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class EnforcementMode(str, Enum):
    ENFORCING = "ENFORCING"
    PERMISSIVE = "PERMISSIVE"
    DISABLED = "DISABLED"


class AutoApprovalCondition(str, Enum):
    PATCH_SECURITY = "PATCH_SECURITY"
    DEV_DEPENDENCIES = "DEV_DEPENDENCIES"
    LOW_RISK = "LOW_RISK"


def _plain_str(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _dt(value: Optional[datetime]) -> Optional[str]:
    return format_datetime(value)


@dataclass
class PolicyScope:
    """Which dependencies a policy applies to. Empty lists match everything."""

    environments: list[str] = field(default_factory=list)
    projects: list[str] = field(default_factory=list)
    ecosystems: list[str] = field(default_factory=list)
    dependency_types: list[str] = field(default_factory=list)
    scopes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "environments": list(self.environments),
            "projects": list(self.projects),
            "ecosystems": list(self.ecosystems),
            "dependency_types": list(self.dependency_types),
            "scopes": list(self.scopes),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "PolicyScope":
        data = data or {}
        return cls(
            environments=list(data.get("environments") or []),
            projects=list(data.get("projects") or []),
            ecosystems=list(data.get("ecosystems") or []),
            dependency_types=list(data.get("dependency_types") or []),
            scopes=list(data.get("scopes") or []),
        )


@dataclass
class RuleCondition:
    """One field/operator/value test.

    ``logical_operator`` combines this condition's running result with the
    *next* condition.
    """

    field: str
    operator: str
    value: Any = None
    logical_operator: Optional[str] = None

    def __post_init__(self):
        self.operator = _plain_str(self.operator)
        if self.logical_operator is not None:
            self.logical_operator = _plain_str(self.logical_operator)

    def to_dict(self) -> dict:
        data = {"field": self.field, "operator": self.operator, "value": self.value}
        if self.logical_operator:
            data["logical_operator"] = self.logical_operator
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "RuleCondition":
        return cls(
            field=data.get("field", ""),
            operator=data.get("operator", ""),
            value=data.get("value"),
            logical_operator=data.get("logical_operator"),
        )


@dataclass
class IssueTrackerConfig:
    system: str  # JIRA, GITHUB, GITLAB, AZURE_DEVOPS
    project: str
    issue_type: str = "Bug"
    priority: str = "Medium"
    assignee: Optional[str] = None
    labels: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "system": self.system,
            "project": self.project,
            "issue_type": self.issue_type,
            "priority": self.priority,
            "assignee": self.assignee,
            "labels": list(self.labels),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "IssueTrackerConfig":
        return cls(
            system=data["system"],
            project=data["project"],
            issue_type=data.get("issue_type", "Bug"),
            priority=data.get("priority", "Medium"),
            assignee=data.get("assignee"),
            labels=list(data.get("labels") or []),
        )


@dataclass
class ActionConfig:
    blocking_message: Optional[str] = None
    warning_message: Optional[str] = None
    log_level: Optional[str] = None  # DEBUG, INFO, WARN, ERROR
    notification_channels: list[str] = field(default_factory=list)
    recipients: list[str] = field(default_factory=list)
    escalation_level: Optional[int] = None
    auto_fix_strategy: Optional[str] = None  # UPDATE, REPLACE, CONFIGURE, REMOVE
    issue_tracker: Optional[IssueTrackerConfig] = None

    def to_dict(self) -> dict:
        data = {
            "blocking_message": self.blocking_message,
            "warning_message": self.warning_message,
            "log_level": self.log_level,
            "notification_channels": list(self.notification_channels),
            "recipients": list(self.recipients),
            "escalation_level": self.escalation_level,
            "auto_fix_strategy": self.auto_fix_strategy,
            "issue_tracker": self.issue_tracker.to_dict() if self.issue_tracker else None,
        }
        return {k: v for k, v in data.items() if v not in (None, [])}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ActionConfig":
        data = data or {}
        tracker = data.get("issue_tracker")
        return cls(
            blocking_message=data.get("blocking_message"),
            warning_message=data.get("warning_message"),
            log_level=data.get("log_level"),
            notification_channels=list(data.get("notification_channels") or []),
            recipients=list(data.get("recipients") or []),
            escalation_level=data.get("escalation_level"),
            auto_fix_strategy=data.get("auto_fix_strategy"),
            issue_tracker=IssueTrackerConfig.from_dict(tracker) if tracker else None,
        )


@dataclass
class RuleAction:
    type: str
    config: ActionConfig = field(default_factory=ActionConfig)
    enabled: bool = True

    def __post_init__(self):
        self.type = _plain_str(self.type)

    def to_dict(self) -> dict:
        return {"type": self.type, "config": self.config.to_dict(), "enabled": self.enabled}

    @classmethod
    def from_dict(cls, data: dict) -> "RuleAction":
        return cls(
            type=str(data.get("type", "")).upper(),
            config=ActionConfig.from_dict(data.get("config")),
            enabled=data.get("enabled", True),
        )


@dataclass
class RuleMetadata:
    tags: list[str] = field(default_factory=list)
    category: str = ""
    rationale: str = ""
    references: list[str] = field(default_factory=list)
    last_updated: Optional[datetime] = None
    impact: str = "MEDIUM"

    def to_dict(self) -> dict:
        return {
            "tags": list(self.tags),
            "category": self.category,
            "rationale": self.rationale,
            "references": list(self.references),
            "last_updated": _dt(self.last_updated),
            "impact": self.impact,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "RuleMetadata":
        data = data or {}
        return cls(
            tags=list(data.get("tags") or []),
            category=data.get("category", ""),
            rationale=data.get("rationale", ""),
            references=list(data.get("references") or []),
            last_updated=parse_datetime(data.get("last_updated")),
            impact=data.get("impact", "MEDIUM"),
        )


@dataclass
class PolicyRule:
    id: str
    name: str
    type: str
    severity: Severity
    conditions: list[RuleCondition]
    actions: list[RuleAction]
    description: str = ""
    enabled: bool = True
    metadata: RuleMetadata = field(default_factory=RuleMetadata)

    def __post_init__(self):
        self.type = _plain_str(self.type)
        # unknown severities are kept as given and rejected by validate_policy
        if isinstance(self.severity, str) and self.severity.upper() in Severity.__members__:
            self.severity = Severity(self.severity.upper())

    def enabled_actions(self) -> list[RuleAction]:
        return [a for a in self.actions if a.enabled]

    @property
    def is_blocking(self) -> bool:
        """True when any enabled action blocks."""
        return any(a.type == ActionType.BLOCK for a in self.enabled_actions())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "severity": self.severity.value,
            "enabled": self.enabled,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PolicyRule":
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            description=data.get("description", ""),
            type=str(data.get("type", RuleType.CUSTOM.value)).upper(),
            severity=Severity(str(data.get("severity", "MEDIUM")).upper()),
            enabled=data.get("enabled", True),
            conditions=[RuleCondition.from_dict(c) for c in data.get("conditions") or []],
            actions=[RuleAction.from_dict(a) for a in data.get("actions") or []],
            metadata=RuleMetadata.from_dict(data.get("metadata")),
        )


@dataclass
class PolicyChange:
    version: str
    date: datetime
    author: str
    description: str
    changes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "date": _dt(self.date),
            "author": self.author,
            "description": self.description,
            "changes": list(self.changes),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PolicyChange":
        return cls(
            version=data["version"],
            date=parse_datetime(data["date"]),
            author=data.get("author", ""),
            description=data.get("description", ""),
            changes=list(data.get("changes") or []),
        )


@dataclass
class PolicyMetadata:
    owner: str = ""
    framework: Optional[str] = None
    regulation: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    reviewers: list[str] = field(default_factory=list)
    last_review: Optional[datetime] = None
    next_review: Optional[datetime] = None
    change_log: list[PolicyChange] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "owner": self.owner,
            "framework": self.framework,
            "regulation": self.regulation,
            "tags": list(self.tags),
            "reviewers": list(self.reviewers),
            "last_review": _dt(self.last_review),
            "next_review": _dt(self.next_review),
            "change_log": [c.to_dict() for c in self.change_log],
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "PolicyMetadata":
        data = data or {}
        return cls(
            owner=data.get("owner", ""),
            framework=data.get("framework"),
            regulation=data.get("regulation"),
            tags=list(data.get("tags") or []),
            reviewers=list(data.get("reviewers") or []),
            last_review=parse_datetime(data.get("last_review")),
            next_review=parse_datetime(data.get("next_review")),
            change_log=[PolicyChange.from_dict(c) for c in data.get("change_log") or []],
        )


@dataclass
class EnforcementConfig:
    mode: EnforcementMode = EnforcementMode.ENFORCING
    continue_on_error: bool = False
    parallel: bool = True
    timeout: int = 300  # seconds
    retry_attempts: int = 2

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "continue_on_error": self.continue_on_error,
            "parallel": self.parallel,
            "timeout": self.timeout,
            "retry_attempts": self.retry_attempts,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "EnforcementConfig":
        data = data or {}
        return cls(
            mode=EnforcementMode(str(data.get("mode", "ENFORCING")).upper()),
            continue_on_error=data.get("continue_on_error", False),
            parallel=data.get("parallel", True),
            timeout=data.get("timeout", 300),
            retry_attempts=data.get("retry_attempts", 2),
        )


@dataclass
class ReviewSchedule:
    frequency: str = "QUARTERLY"  # MONTHLY, QUARTERLY, ANNUALLY
    next_review: Optional[datetime] = None
    reviewer: str = ""


@dataclass
class PolicyException:
    """Time-bounded override of one rule for one dependency name."""

    id: str
    rule_id: str
    dependency: str
    reason: str
    approved_by: str
    expires_at: datetime
    justification: str = ""
    approved_at: datetime = field(default_factory=utcnow)
    conditions: list[str] = field(default_factory=list)
    review_schedule: Optional[ReviewSchedule] = None
    status: ExceptionStatus = ExceptionStatus.ACTIVE

    def __post_init__(self):
        if isinstance(self.expires_at, datetime):
            self.expires_at = ensure_utc(self.expires_at)
        if isinstance(self.approved_at, datetime):
            self.approved_at = ensure_utc(self.approved_at)

    def is_active(self, now: Optional[datetime] = None) -> bool:
        return self.status == ExceptionStatus.ACTIVE and self.expires_at > ensure_utc(now or utcnow())

    def matches(self, rule_id: str, dependency_name: str) -> bool:
        return self.rule_id == rule_id and self.dependency == dependency_name

    def to_dict(self) -> dict:
        schedule = self.review_schedule
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "dependency": self.dependency,
            "reason": self.reason,
            "justification": self.justification,
            "approved_by": self.approved_by,
            "approved_at": _dt(self.approved_at),
            "expires_at": _dt(self.expires_at),
            "conditions": list(self.conditions),
            "review_schedule": {
                "frequency": schedule.frequency,
                "next_review": _dt(schedule.next_review),
                "reviewer": schedule.reviewer,
            }
            if schedule
            else None,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PolicyException":
        schedule = data.get("review_schedule")
        return cls(
            id=data.get("id", ""),
            rule_id=data["rule_id"],
            dependency=data["dependency"],
            reason=data.get("reason", ""),
            justification=data.get("justification", ""),
            approved_by=data.get("approved_by", ""),
            approved_at=parse_datetime(data.get("approved_at")) or utcnow(),
            expires_at=parse_datetime(data["expires_at"]),
            conditions=list(data.get("conditions") or []),
            review_schedule=ReviewSchedule(
                frequency=schedule.get("frequency", "QUARTERLY"),
                next_review=parse_datetime(schedule.get("next_review")),
                reviewer=schedule.get("reviewer", ""),
            )
            if schedule
            else None,
            status=ExceptionStatus(str(data.get("status", "ACTIVE")).upper()),
        )


@dataclass
class DependencyPolicy:
    """Tenant-scoped, versioned set of rules. Replaced, never edited in place."""

    id: str
    tenant_id: str
    name: str
    rules: list[PolicyRule]
    description: str = ""
    version: str = "1.0.0"
    enabled: bool = True
    priority: int = 100
    scope: PolicyScope = field(default_factory=PolicyScope)
    enforcement: EnforcementConfig = field(default_factory=EnforcementConfig)
    exceptions: list[PolicyException] = field(default_factory=list)
    metadata: PolicyMetadata = field(default_factory=PolicyMetadata)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    created_by: str = "system"
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None

    def get_rule(self, rule_id: str) -> Optional[PolicyRule]:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "enabled": self.enabled,
            "priority": self.priority,
            "scope": self.scope.to_dict(),
            "rules": [r.to_dict() for r in self.rules],
            "enforcement": self.enforcement.to_dict(),
            "exceptions": [e.to_dict() for e in self.exceptions],
            "metadata": self.metadata.to_dict(),
            "created_at": _dt(self.created_at),
            "updated_at": _dt(self.updated_at),
            "created_by": self.created_by,
            "approved_by": self.approved_by,
            "approved_at": _dt(self.approved_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DependencyPolicy":
        return cls(
            id=data.get("id", ""),
            tenant_id=data.get("tenant_id", ""),
            name=data.get("name", ""),
            description=data.get("description", ""),
            version=str(data.get("version", "1.0.0")),
            enabled=data.get("enabled", True),
            priority=data.get("priority", 100),
            scope=PolicyScope.from_dict(data.get("scope")),
            rules=[PolicyRule.from_dict(r) for r in data.get("rules") or []],
            enforcement=EnforcementConfig.from_dict(data.get("enforcement")),
            exceptions=[PolicyException.from_dict(e) for e in data.get("exceptions") or []],
            metadata=PolicyMetadata.from_dict(data.get("metadata")),
            created_at=parse_datetime(data.get("created_at")) or utcnow(),
            updated_at=parse_datetime(data.get("updated_at")) or utcnow(),
            created_by=data.get("created_by", "system"),
            approved_by=data.get("approved_by"),
            approved_at=parse_datetime(data.get("approved_at")),
        )


@dataclass
class ViolationEvidence:
    type: str  # SCAN_RESULT, CONFIGURATION, METADATA, VULNERABILITY, LICENSE
    source: str
    content: dict
    timestamp: datetime

    def to_dict(self) -> dict:
        return {"type": self.type, "source": self.source, "content": self.content, "timestamp": _dt(self.timestamp)}

    @classmethod
    def from_dict(cls, data: dict) -> "ViolationEvidence":
        return cls(
            type=data["type"],
            source=data.get("source", ""),
            content=dict(data.get("content") or {}),
            timestamp=parse_datetime(data.get("timestamp")) or utcnow(),
        )


@dataclass
class ViolationDetails:
    rule: PolicyRule
    triggered_conditions: list[RuleCondition]
    actual_values: dict[str, Any]
    evidence: list[ViolationEvidence]
    impact: str
    recommendation: str

    def to_dict(self) -> dict:
        return {
            "rule": self.rule.to_dict(),
            "triggered_conditions": [c.to_dict() for c in self.triggered_conditions],
            "actual_values": dict(self.actual_values),
            "evidence": [e.to_dict() for e in self.evidence],
            "impact": self.impact,
            "recommendation": self.recommendation,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ViolationDetails":
        return cls(
            rule=PolicyRule.from_dict(data["rule"]),
            triggered_conditions=[RuleCondition.from_dict(c) for c in data.get("triggered_conditions") or []],
            actual_values=dict(data.get("actual_values") or {}),
            evidence=[ViolationEvidence.from_dict(e) for e in data.get("evidence") or []],
            impact=data.get("impact", ""),
            recommendation=data.get("recommendation", ""),
        )


@dataclass
class ViolationContext:
    project: str = "unknown"
    environment: str = "unknown"
    ecosystem: str = ""
    package_file: str = ""
    scan_id: Optional[str] = None
    build_id: Optional[str] = None
    commit_id: Optional[str] = None
    pull_request_id: Optional[str] = None

    def to_dict(self) -> dict:
        return dict(vars(self))

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ViolationContext":
        data = data or {}
        return cls(**{k: data[k] for k in vars(cls()) if k in data})


@dataclass
class PolicyViolation:
    id: str
    tenant_id: str
    policy_id: str
    rule_id: str
    dependency: Dependency
    violation_type: str
    severity: Severity
    message: str
    details: ViolationDetails
    context: ViolationContext
    status: ViolationStatus = ViolationStatus.OPEN
    first_detected: datetime = field(default_factory=utcnow)
    last_seen: datetime = field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution: Optional[str] = None
    assigned_to: Optional[str] = None
    due_date: Optional[datetime] = None
    tags: list[str] = field(default_factory=list)

    @property
    def dedupe_key(self) -> str:
        return violation_key(self.tenant_id, self.policy_id, self.rule_id, self.dependency.id)

    @property
    def is_blocking(self) -> bool:
        return self.details.rule.is_blocking

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "policy_id": self.policy_id,
            "rule_id": self.rule_id,
            "dependency": self.dependency.to_dict(),
            "violation_type": self.violation_type,
            "severity": self.severity.value,
            "message": self.message,
            "details": self.details.to_dict(),
            "context": self.context.to_dict(),
            "status": self.status.value,
            "first_detected": _dt(self.first_detected),
            "last_seen": _dt(self.last_seen),
            "resolved_at": _dt(self.resolved_at),
            "resolved_by": self.resolved_by,
            "resolution": self.resolution,
            "assigned_to": self.assigned_to,
            "due_date": _dt(self.due_date),
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PolicyViolation":
        return cls(
            id=data["id"],
            tenant_id=data["tenant_id"],
            policy_id=data["policy_id"],
            rule_id=data["rule_id"],
            dependency=Dependency.from_dict(data["dependency"]),
            violation_type=data["violation_type"],
            severity=Severity(data["severity"]),
            message=data.get("message", ""),
            details=ViolationDetails.from_dict(data["details"]),
            context=ViolationContext.from_dict(data.get("context")),
            status=ViolationStatus(data.get("status", "OPEN")),
            first_detected=parse_datetime(data.get("first_detected")) or utcnow(),
            last_seen=parse_datetime(data.get("last_seen")) or utcnow(),
            resolved_at=parse_datetime(data.get("resolved_at")),
            resolved_by=data.get("resolved_by"),
            resolution=data.get("resolution"),
            assigned_to=data.get("assigned_to"),
            due_date=parse_datetime(data.get("due_date")),
            tags=list(data.get("tags") or []),
        )


def violation_key(tenant_id: str, policy_id: str, rule_id: str, dependency_id: str) -> str:
    return f"{tenant_id}|{policy_id}|{rule_id}|{dependency_id}"


@dataclass
class EvaluationContext:
    """Call context for one policy evaluation run.

    ``vulnerabilities`` and ``assessments`` are keyed by dependency id
    (``name@version``) and feed the vulnerability and risk fields that
    rule conditions can reference.
    """

    project: Optional[str] = None
    environment: Optional[str] = None
    scan_id: Optional[str] = None
    build_id: Optional[str] = None
    commit_id: Optional[str] = None
    pull_request_id: Optional[str] = None
    vulnerabilities: dict[str, list[Vulnerability]] = field(default_factory=dict)
    assessments: dict[str, RiskAssessment] = field(default_factory=dict)
    now: Optional[datetime] = None

    def violation_context(self, dependency: Dependency) -> ViolationContext:
        return ViolationContext(
            project=self.project or "unknown",
            environment=self.environment or "unknown",
            ecosystem=dependency.ecosystem,
            package_file=dependency.package_file,
            scan_id=self.scan_id,
            build_id=self.build_id,
            commit_id=self.commit_id,
            pull_request_id=self.pull_request_id,
        )

    def to_dict(self) -> dict:
        return {
            "project": self.project,
            "environment": self.environment,
            "scan_id": self.scan_id,
            "build_id": self.build_id,
            "commit_id": self.commit_id,
            "pull_request_id": self.pull_request_id,
        }


@dataclass
class PolicyEvaluation:
    """One dependency evaluated against a tenant's active policies."""

    dependency_id: str
    policy_ids: list[str]
    status: EvaluationStatus
    violations: list[PolicyViolation] = field(default_factory=list)
    warnings: list[PolicyViolation] = field(default_factory=list)
    exceptions: list[PolicyException] = field(default_factory=list)
    evaluated_at: datetime = field(default_factory=utcnow)
    evaluation_duration_ms: float = 0.0
    rules_evaluated: int = 0
    rules_triggered: int = 0
    actions_executed: int = 0

    @property
    def is_blocked(self) -> bool:
        return any(v.is_blocking for v in self.violations)

    def to_dict(self) -> dict:
        return {
            "dependency_id": self.dependency_id,
            "policy_ids": list(self.policy_ids),
            "status": self.status.value,
            "violations": [v.to_dict() for v in self.violations],
            "warnings": [w.to_dict() for w in self.warnings],
            "exceptions": [e.to_dict() for e in self.exceptions],
            "evaluated_at": _dt(self.evaluated_at),
            "evaluation_duration_ms": self.evaluation_duration_ms,
            "metadata": {
                "rules_evaluated": self.rules_evaluated,
                "rules_triggered": self.rules_triggered,
                "actions_executed": self.actions_executed,
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PolicyEvaluation":
        meta = data.get("metadata") or {}
        return cls(
            dependency_id=data["dependency_id"],
            policy_ids=list(data.get("policy_ids") or []),
            status=EvaluationStatus(data["status"]),
            violations=[PolicyViolation.from_dict(v) for v in data.get("violations") or []],
            warnings=[PolicyViolation.from_dict(w) for w in data.get("warnings") or []],
            exceptions=[PolicyException.from_dict(e) for e in data.get("exceptions") or []],
            evaluated_at=parse_datetime(data.get("evaluated_at")) or utcnow(),
            evaluation_duration_ms=data.get("evaluation_duration_ms", 0.0),
            rules_evaluated=meta.get("rules_evaluated", 0),
            rules_triggered=meta.get("rules_triggered", 0),
            actions_executed=meta.get("actions_executed", 0),
        )


@dataclass
class ExecutedAction:
    violation_id: str
    action_type: str
    status: ActionStatus
    executed_at: datetime
    execution_duration_ms: float
    result: Optional[dict] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "violation_id": self.violation_id,
            "action_type": self.action_type,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "executed_at": _dt(self.executed_at),
            "execution_duration_ms": self.execution_duration_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExecutedAction":
        return cls(
            violation_id=data["violation_id"],
            action_type=data["action_type"],
            status=ActionStatus(data["status"]),
            executed_at=parse_datetime(data["executed_at"]),
            execution_duration_ms=data.get("execution_duration_ms", 0.0),
            result=data.get("result"),
            error=data.get("error"),
        )


def empty_severity_breakdown() -> dict[str, int]:
    return {s.value: 0 for s in Severity}


@dataclass
class EnforcementSummary:
    policies_evaluated: int = 0
    rules_evaluated: int = 0
    violations_detected: int = 0
    actions_executed: int = 0
    blocked_dependencies: int = 0
    severity_breakdown: dict[str, int] = field(default_factory=empty_severity_breakdown)
    policy_breakdown: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "policies_evaluated": self.policies_evaluated,
            "rules_evaluated": self.rules_evaluated,
            "violations_detected": self.violations_detected,
            "actions_executed": self.actions_executed,
            "blocked_dependencies": self.blocked_dependencies,
            "severity_breakdown": dict(self.severity_breakdown),
            "policy_breakdown": dict(self.policy_breakdown),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EnforcementSummary":
        return cls(
            policies_evaluated=data.get("policies_evaluated", 0),
            rules_evaluated=data.get("rules_evaluated", 0),
            violations_detected=data.get("violations_detected", 0),
            actions_executed=data.get("actions_executed", 0),
            blocked_dependencies=data.get("blocked_dependencies", 0),
            severity_breakdown={**empty_severity_breakdown(), **(data.get("severity_breakdown") or {})},
            policy_breakdown=dict(data.get("policy_breakdown") or {}),
        )


@dataclass
class PolicyEnforcementResult:
    """Outcome of one batch run, including partial failures."""

    evaluation_id: str
    tenant_id: str
    total_dependencies: int
    evaluated_dependencies: int
    skipped_dependencies: int
    cancelled_dependencies: int
    compliant_dependencies: int
    violating_dependencies: int
    warning_dependencies: int
    evaluations: list[PolicyEvaluation]
    executed_actions: list[ExecutedAction]
    summary: EnforcementSummary
    start_time: datetime
    end_time: datetime
    duration_ms: float
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def blocked(self) -> bool:
        return self.summary.blocked_dependencies > 0

    def to_dict(self) -> dict:
        return {
            "evaluation_id": self.evaluation_id,
            "tenant_id": self.tenant_id,
            "total_dependencies": self.total_dependencies,
            "evaluated_dependencies": self.evaluated_dependencies,
            "skipped_dependencies": self.skipped_dependencies,
            "cancelled_dependencies": self.cancelled_dependencies,
            "compliant_dependencies": self.compliant_dependencies,
            "violating_dependencies": self.violating_dependencies,
            "warning_dependencies": self.warning_dependencies,
            "evaluations": [e.to_dict() for e in self.evaluations],
            "executed_actions": [a.to_dict() for a in self.executed_actions],
            "summary": self.summary.to_dict(),
            "start_time": _dt(self.start_time),
            "end_time": _dt(self.end_time),
            "duration_ms": self.duration_ms,
            "errors": dict(self.errors),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PolicyEnforcementResult":
        return cls(
            evaluation_id=data["evaluation_id"],
            tenant_id=data["tenant_id"],
            total_dependencies=data["total_dependencies"],
            evaluated_dependencies=data["evaluated_dependencies"],
            skipped_dependencies=data["skipped_dependencies"],
            cancelled_dependencies=data.get("cancelled_dependencies", 0),
            compliant_dependencies=data["compliant_dependencies"],
            violating_dependencies=data["violating_dependencies"],
            warning_dependencies=data["warning_dependencies"],
            evaluations=[PolicyEvaluation.from_dict(e) for e in data.get("evaluations") or []],
            executed_actions=[ExecutedAction.from_dict(a) for a in data.get("executed_actions") or []],
            summary=EnforcementSummary.from_dict(data.get("summary") or {}),
            start_time=parse_datetime(data["start_time"]),
            end_time=parse_datetime(data["end_time"]),
            duration_ms=data.get("duration_ms", 0.0),
            errors=dict(data.get("errors") or {}),
        )


@dataclass
class PolicyTemplate:
    """Blueprint for creating a policy. Rule ids are assigned at creation."""

    id: str
    name: str
    description: str
    category: str  # SECURITY, LICENSE, MAINTENANCE, COMPLIANCE, CUSTOM
    rules: list[PolicyRule]
    default_scope: PolicyScope
    version: str = "1.0.0"
    author: str = ""
    framework: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    references: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "framework": self.framework,
            "rules": [r.to_dict() for r in self.rules],
            "default_scope": self.default_scope.to_dict(),
            "metadata": {
                "version": self.version,
                "author": self.author,
                "tags": list(self.tags),
                "references": list(self.references),
            },
        }


@dataclass
class AutoApprovalRule:
    """Lets an AUTO_FIX proceed without human approval when it matches."""

    condition: AutoApprovalCondition
    max_risk_score: int = 50
    requires_tests: bool = True
    environments: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "condition": self.condition.value,
            "max_risk_score": self.max_risk_score,
            "requires_tests": self.requires_tests,
            "environments": list(self.environments),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AutoApprovalRule":
        return cls(
            condition=AutoApprovalCondition(str(data["condition"]).upper()),
            max_risk_score=data.get("max_risk_score", 50),
            requires_tests=data.get("requires_tests", True),
            environments=list(data.get("environments") or []),
        )


@dataclass
class UpdateStrategy:
    tenant_id: str
    strategy: str = "BALANCED"  # AGGRESSIVE, BALANCED, CONSERVATIVE, SECURITY_ONLY
    auto_approval_rules: list[AutoApprovalRule] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "strategy": self.strategy,
            "auto_approval_rules": [r.to_dict() for r in self.auto_approval_rules],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UpdateStrategy":
        return cls(
            tenant_id=data["tenant_id"],
            strategy=data.get("strategy", "BALANCED"),
            auto_approval_rules=[AutoApprovalRule.from_dict(r) for r in data.get("auto_approval_rules") or []],
        )


def default_update_strategy(tenant_id: str) -> UpdateStrategy:
    return UpdateStrategy(
        tenant_id=tenant_id,
        strategy="BALANCED",
        auto_approval_rules=[
            AutoApprovalRule(
                condition=AutoApprovalCondition.PATCH_SECURITY,
                max_risk_score=50,
                requires_tests=True,
                environments=["development", "staging"],
            )
        ],
    )
