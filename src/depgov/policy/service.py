"""Policy, exception and violation lifecycle management."""

import asyncio
import copy
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from depgov.events import EventBus, EventPublisher
from depgov.exceptions import (
    DuplicateRecordError,
    ExceptionNotFoundError,
    InvalidTransitionError,
    PolicyNotFoundError,
    PolicyValidationError,
    TemplateNotFoundError,
    ViolationNotFoundError,
)
from depgov.inventory.models import Dependency, Severity
from depgov.policy.actions import ActionExecutor, IssueTracker, Notifier
from depgov.policy.engine import PolicyEvaluator
from depgov.policy.models import (
    VIOLATION_TRANSITIONS,
    ActionType,
    ConditionOperator,
    DependencyPolicy,
    EnforcementConfig,
    EnforcementMode,
    EvaluationContext,
    ExceptionStatus,
    LogicalOperator,
    PolicyChange,
    PolicyEnforcementResult,
    PolicyException,
    PolicyMetadata,
    PolicyRule,
    PolicyScope,
    PolicyTemplate,
    PolicyViolation,
    UpdateStrategy,
    ViolationStatus,
    default_update_strategy,
)
from depgov.policy.templates import builtin_templates
from depgov.store.base import KeyedStore
from depgov.store.memory import MemoryStore
from depgov.utils import new_id, utcnow

logger = logging.getLogger(__name__)

OPERATORS = {o.value for o in ConditionOperator}
LOGICAL_OPERATORS = {o.value for o in LogicalOperator}
ACTION_TYPES = {a.value for a in ActionType}

TEMPLATE_REVIEW_DAYS = 90


def template_policy_id(tenant_id: str, template_id: str) -> str:
    """Stable id of the policy a tenant gets from a built-in template."""
    return f"policy_{template_id}_{tenant_id}"


def validate_policy(policy: DependencyPolicy) -> list[str]:
    """Collect every structural problem in a policy. Empty means valid."""
    errors = []
    if not policy.name or not policy.name.strip():
        errors.append("Policy name is required")
    if not policy.rules:
        errors.append("Policy must have at least one rule")

    for i, rule in enumerate(policy.rules):
        label = f"Rule {i + 1}"
        if not rule.name:
            errors.append(f"{label}: name is required")
        if not isinstance(rule.severity, Severity):
            errors.append(f"{label}: invalid severity '{rule.severity}'")
        if not rule.conditions:
            errors.append(f"{label}: must have at least one condition")
        if not rule.actions:
            errors.append(f"{label}: must have at least one action")

        for j, condition in enumerate(rule.conditions):
            where = f"{label}, condition {j + 1}"
            if not condition.field:
                errors.append(f"{where}: field is required")
            if condition.operator not in OPERATORS:
                errors.append(f"{where}: invalid operator '{condition.operator}'")
            if condition.logical_operator and str(condition.logical_operator).upper() not in LOGICAL_OPERATORS:
                errors.append(f"{where}: invalid logical operator '{condition.logical_operator}'")

        for j, action in enumerate(rule.actions):
            if action.type not in ACTION_TYPES:
                errors.append(f"{label}, action {j + 1}: invalid action type '{action.type}'")

    return errors


def bump_patch(version: str) -> str:
    """1.2.3 -> 1.2.4. Missing parts count as zero."""
    parts = (version or "").split(".")
    numbers = []
    for part in (parts + ["0", "0", "0"])[:3]:
        numbers.append(int(part) if part.isdigit() else 0)
    numbers[2] += 1
    return ".".join(str(n) for n in numbers)


class PolicyService:
    """
    Owns tenant policies, their exceptions and the violations they produce.

    Policies are never edited in place: every change stores a new
    ``DependencyPolicy`` under the same id, so a reference held by a running
    evaluation keeps seeing the version it started with.
    """

    def __init__(
        self,
        policies: Optional[KeyedStore[DependencyPolicy]] = None,
        violations: Optional[KeyedStore[PolicyViolation]] = None,
        evaluations: Optional[KeyedStore[PolicyEnforcementResult]] = None,
        update_strategies: Optional[KeyedStore[UpdateStrategy]] = None,
        publisher: Optional[EventPublisher] = None,
        notifier: Optional[Notifier] = None,
        issue_tracker: Optional[IssueTracker] = None,
        evaluator: Optional[PolicyEvaluator] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.publisher = publisher or EventBus()
        self.policies = policies if policies is not None else MemoryStore()
        self.update_strategies = (
            update_strategies if update_strategies is not None else MemoryStore(id_of=lambda s: s.tenant_id)
        )
        self.clock = clock
        self.templates = builtin_templates()

        if evaluator is None:
            executor = ActionExecutor(
                self.publisher,
                notifier=notifier,
                issue_tracker=issue_tracker,
                update_strategy_lookup=self.get_update_strategy,
            )
            evaluator = PolicyEvaluator(
                violations=violations,
                history=evaluations,
                executor=executor,
                publisher=self.publisher,
                clock=clock,
            )
        self.evaluator = evaluator

    @property
    def violations(self) -> KeyedStore[PolicyViolation]:
        return self.evaluator.violations

    @property
    def evaluations(self) -> KeyedStore[PolicyEnforcementResult]:
        return self.evaluator.history

    # Policies

    def create_policy(
        self,
        tenant_id: str,
        policy: Union[DependencyPolicy, dict],
        created_by: str = "system",
    ) -> DependencyPolicy:
        """
        Validate and store a new policy.

        Args:
            tenant_id: Owning tenant
            policy: Policy object or its dict form
            created_by: Author recorded on the policy

        Returns:
            The stored policy, with ids assigned

        Raises:
            PolicyValidationError: With every structural problem found
        """
        if isinstance(policy, dict):
            policy = DependencyPolicy.from_dict(policy)

        errors = validate_policy(policy)
        if errors:
            raise PolicyValidationError(f"Policy validation failed: {'; '.join(errors)}", errors)

        now = self.clock()
        stored = replace(
            policy,
            id=policy.id or new_id("policy"),
            tenant_id=tenant_id,
            rules=[replace(r, id=r.id or new_id("rule")) for r in policy.rules],
            created_at=now,
            updated_at=now,
            created_by=created_by,
        )
        self.policies.add(stored)
        logger.info(f"Created policy {stored.id} ({stored.name}) for tenant {tenant_id}")
        self.publisher.publish("policyCreated", {"tenant_id": tenant_id, "policy": stored})
        return stored

    def create_policy_from_template(
        self,
        tenant_id: str,
        template_id: str,
        name: Optional[str] = None,
        scope: Optional[PolicyScope] = None,
        rule_overrides: Optional[dict[str, dict]] = None,
        created_by: str = "system",
        policy_id: Optional[str] = None,
    ) -> DependencyPolicy:
        """Instantiate a built-in template. ``rule_overrides`` is keyed by rule name."""
        template = self.get_template(template_id)
        rule_overrides = rule_overrides or {}
        now = self.clock()

        rules = []
        for rule in copy.deepcopy(template.rules):
            overrides = {k: v for k, v in rule_overrides.get(rule.name, {}).items() if k != "id"}
            rules.append(replace(rule, **overrides, id=new_id("rule")))

        policy = DependencyPolicy(
            id=policy_id or new_id("policy"),
            tenant_id=tenant_id,
            name=name or template.name,
            description=template.description,
            version="1.0.0",
            priority=100,
            scope=scope or copy.deepcopy(template.default_scope),
            rules=rules,
            enforcement=EnforcementConfig(
                mode=EnforcementMode.ENFORCING,
                continue_on_error=False,
                parallel=True,
                timeout=300,
                retry_attempts=2,
            ),
            metadata=PolicyMetadata(
                owner=created_by,
                framework=template.framework,
                tags=list(template.tags),
                reviewers=[created_by],
                last_review=now,
                next_review=now + timedelta(days=TEMPLATE_REVIEW_DAYS),
                change_log=[
                    PolicyChange(
                        version="1.0.0",
                        date=now,
                        author=created_by,
                        description=f"Created from template: {template.name}",
                        changes=["Initial policy creation"],
                    )
                ],
            ),
        )
        stored = self.create_policy(tenant_id, policy, created_by)
        self.publisher.publish(
            "policyCreatedFromTemplate",
            {"tenant_id": tenant_id, "template_id": template_id, "policy_id": stored.id},
        )
        return stored

    def ensure_template_policy(
        self, tenant_id: str, template_id: str, created_by: str = "system"
    ) -> DependencyPolicy:
        """
        Return the tenant's policy for a built-in template, creating it once.

        The policy lives under ``template_policy_id`` so that repeated runs
        against a persistent store reuse it, along with its rule ids.
        """
        existing = self.policies.get(template_policy_id(tenant_id, template_id))
        if existing is not None:
            return existing
        return self.create_policy_from_template(
            tenant_id, template_id, created_by=created_by, policy_id=template_policy_id(tenant_id, template_id)
        )

    def apply_policy(
        self,
        tenant_id: str,
        policy: Union[DependencyPolicy, dict],
        applied_by: str = "system",
    ) -> DependencyPolicy:
        """
        Create a policy, or update the stored one it describes.

        A policy with an id matches on id; one without matches on name within
        the tenant. Applying an unchanged policy keeps its version.

        Raises:
            DuplicateRecordError: If the id belongs to another tenant
            PolicyValidationError: If the policy is invalid
        """
        if isinstance(policy, dict):
            policy = DependencyPolicy.from_dict(policy)

        if policy.id:
            existing = self.policies.get(policy.id)
        else:
            existing = next((p for p in self.policies.list_by_tenant(tenant_id) if p.name == policy.name), None)
        if existing is None:
            return self.create_policy(tenant_id, policy, applied_by)
        if existing.tenant_id != tenant_id:
            raise DuplicateRecordError(f"Policy {existing.id} already exists for another tenant")

        updates = {
            name: getattr(policy, name)
            for name in ("name", "description", "enabled", "priority", "scope", "enforcement", "rules")
        }
        return self.update_policy(existing.id, updates, applied_by)

    def update_policy(self, policy_id: str, updates: dict, updated_by: str = "system") -> DependencyPolicy:
        """
        Store a new version of a policy.

        Changing ``rules`` bumps the patch version and appends a change-log
        entry. Incoming rules without an id keep the id of the current rule
        with the same name. The previous object is left untouched.

        Raises:
            PolicyNotFoundError: If no policy has this id
            PolicyValidationError: If the updated policy is invalid
        """
        current = self.get_policy(policy_id)
        fields = {k: v for k, v in updates.items() if k not in ("id", "tenant_id", "created_at", "created_by")}
        for name, cls in (("scope", PolicyScope), ("enforcement", EnforcementConfig), ("metadata", PolicyMetadata)):
            if isinstance(fields.get(name), dict):
                fields[name] = cls.from_dict(fields[name])
        now = self.clock()

        metadata = copy.deepcopy(current.metadata)
        if "rules" in fields:
            known = {r.name: r.id for r in current.rules}
            rules = [PolicyRule.from_dict(r) if isinstance(r, dict) else r for r in fields["rules"]]
            fields["rules"] = [replace(r, id=r.id or known.get(r.name) or new_id("rule")) for r in rules]
            if [r.to_dict() for r in fields["rules"]] == [r.to_dict() for r in current.rules]:
                del fields["rules"]
        if "rules" in fields:
            fields["version"] = bump_patch(current.version)
            metadata.change_log.append(
                PolicyChange(
                    version=fields["version"],
                    date=now,
                    author=updated_by,
                    description="Policy rules updated",
                    changes=["Rules modified"],
                )
            )
        if "metadata" in fields:
            metadata = replace(fields.pop("metadata"), change_log=metadata.change_log)

        updated = replace(current, **fields, metadata=metadata, updated_at=now)
        errors = validate_policy(updated)
        if errors:
            raise PolicyValidationError(f"Policy validation failed: {'; '.join(errors)}", errors)

        self.policies.put(updated)
        logger.info(f"Updated policy {policy_id} to version {updated.version}")
        self.publisher.publish(
            "policyUpdated",
            {"tenant_id": updated.tenant_id, "policy_id": policy_id, "version": updated.version, "updated_by": updated_by},
        )
        return updated

    def delete_policy(self, policy_id: str) -> None:
        policy = self.get_policy(policy_id)
        self.policies.delete(policy_id)
        logger.info(f"Deleted policy {policy_id}")
        self.publisher.publish("policyDeleted", {"tenant_id": policy.tenant_id, "policy_id": policy_id})

    def get_policy(self, policy_id: str) -> DependencyPolicy:
        policy = self.policies.get(policy_id)
        if policy is None:
            raise PolicyNotFoundError(f"Policy not found: {policy_id}")
        return policy

    def get_policies_by_tenant(self, tenant_id: str) -> list[DependencyPolicy]:
        return sorted(self.policies.list_by_tenant(tenant_id), key=lambda p: p.priority, reverse=True)

    # Exceptions

    def add_exception(self, policy_id: str, exception: PolicyException) -> PolicyException:
        """Attach an exception to one of the policy's rules."""
        policy = self.get_policy(policy_id)
        if policy.get_rule(exception.rule_id) is None:
            raise PolicyValidationError(f"Rule {exception.rule_id} not found in policy {policy_id}")

        exception = replace(exception, id=exception.id or new_id("exception"))
        self.policies.put(replace(policy, exceptions=policy.exceptions + [exception], updated_at=self.clock()))
        logger.info(f"Added exception {exception.id} for {exception.dependency} on policy {policy_id}")
        self.publisher.publish(
            "exceptionAdded",
            {"tenant_id": policy.tenant_id, "policy_id": policy_id, "exception": exception},
        )
        return exception

    def revoke_exception(self, policy_id: str, exception_id: str, revoked_by: str = "system") -> PolicyException:
        policy = self.get_policy(policy_id)
        target = next((e for e in policy.exceptions if e.id == exception_id), None)
        if target is None:
            raise ExceptionNotFoundError(f"Exception not found: {exception_id}")

        revoked = replace(target, status=ExceptionStatus.REVOKED)
        exceptions = [revoked if e.id == exception_id else e for e in policy.exceptions]
        self.policies.put(replace(policy, exceptions=exceptions, updated_at=self.clock()))
        self.publisher.publish(
            "exceptionRevoked",
            {"tenant_id": policy.tenant_id, "policy_id": policy_id, "exception_id": exception_id, "revoked_by": revoked_by},
        )
        return revoked

    def expire_exceptions(self, now: Optional[datetime] = None) -> int:
        """Mark lapsed ACTIVE exceptions EXPIRED. Returns how many changed."""
        now = now or self.clock()
        expired = 0
        for policy in self.policies.all():
            changed = False
            exceptions = []
            for exception in policy.exceptions:
                if exception.status == ExceptionStatus.ACTIVE and exception.expires_at <= now:
                    exception = replace(exception, status=ExceptionStatus.EXPIRED)
                    changed = True
                    expired += 1
                exceptions.append(exception)
            if changed:
                self.policies.put(replace(policy, exceptions=exceptions))
        if expired:
            logger.info(f"Expired {expired} policy exceptions")
        return expired

    # Violations

    def get_violation(self, violation_id: str) -> PolicyViolation:
        violation = self.violations.get(violation_id)
        if violation is None:
            raise ViolationNotFoundError(f"Violation not found: {violation_id}")
        return violation

    def get_violations_by_tenant(
        self, tenant_id: str, status: Optional[ViolationStatus] = None
    ) -> list[PolicyViolation]:
        violations = self.violations.list_by_tenant(tenant_id)
        if status is not None:
            violations = [v for v in violations if v.status == status]
        return sorted(violations, key=lambda v: v.first_detected)

    def _transition(self, violation_id: str, target: ViolationStatus, actor: str, **changes) -> PolicyViolation:
        violation = self.get_violation(violation_id)
        allowed = VIOLATION_TRANSITIONS.get(violation.status, set())
        if target not in allowed:
            raise InvalidTransitionError(
                f"Cannot move violation {violation_id} from {violation.status.value} to {target.value}"
            )

        updated = replace(violation, status=target, **changes)
        self.violations.put(updated)
        logger.info(f"Violation {violation_id}: {violation.status.value} -> {target.value} by {actor}")
        self.publisher.publish(
            "violationStatusChanged",
            {
                "tenant_id": violation.tenant_id,
                "violation_id": violation_id,
                "from": violation.status.value,
                "to": target.value,
                "changed_by": actor,
            },
        )
        return updated

    def resolve_violation(self, violation_id: str, resolution: str, resolved_by: str) -> PolicyViolation:
        resolved = self._transition(
            violation_id,
            ViolationStatus.RESOLVED,
            resolved_by,
            resolution=resolution,
            resolved_by=resolved_by,
            resolved_at=self.clock(),
        )
        self.publisher.publish("violationResolved", {"violation": resolved})
        return resolved

    def acknowledge_violation(
        self, violation_id: str, acknowledged_by: str, assigned_to: Optional[str] = None
    ) -> PolicyViolation:
        return self._transition(
            violation_id, ViolationStatus.ACKNOWLEDGED, acknowledged_by, assigned_to=assigned_to or acknowledged_by
        )

    def suppress_violation(self, violation_id: str, reason: str, suppressed_by: str) -> PolicyViolation:
        return self._transition(violation_id, ViolationStatus.SUPPRESSED, suppressed_by, resolution=reason)

    def mark_false_positive(self, violation_id: str, reason: str, marked_by: str) -> PolicyViolation:
        return self._transition(
            violation_id,
            ViolationStatus.FALSE_POSITIVE,
            marked_by,
            resolution=reason,
            resolved_by=marked_by,
            resolved_at=self.clock(),
        )

    # Evaluation

    async def evaluate_policies(
        self,
        dependencies: list[Dependency],
        tenant_id: str,
        context: Optional[EvaluationContext] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PolicyEnforcementResult:
        """Evaluate dependencies against the tenant's stored policies."""
        policies = self.get_policies_by_tenant(tenant_id)
        return await self.evaluator.evaluate_policies(dependencies, tenant_id, policies, context, cancel_event)

    def get_evaluation_result(self, evaluation_id: str) -> Optional[PolicyEnforcementResult]:
        return self.evaluations.get(evaluation_id)

    def get_policy_metrics(self, tenant_id: str) -> dict:
        policies = self.policies.list_by_tenant(tenant_id)
        violations = self.violations.list_by_tenant(tenant_id)

        by_severity: dict[str, int] = {}
        by_type: dict[str, int] = {}
        for violation in violations:
            by_severity[violation.severity.value] = by_severity.get(violation.severity.value, 0) + 1
            by_type[violation.violation_type] = by_type.get(violation.violation_type, 0) + 1

        return {
            "total_policies": len(policies),
            "enabled_policies": sum(1 for p in policies if p.enabled),
            "total_rules": sum(len(p.rules) for p in policies),
            "total_violations": len(violations),
            "open_violations": sum(1 for v in violations if v.status == ViolationStatus.OPEN),
            "resolved_violations": sum(1 for v in violations if v.status == ViolationStatus.RESOLVED),
            "violations_by_severity": by_severity,
            "violations_by_type": by_type,
            "evaluation_history": len(self.evaluations.list_by_tenant(tenant_id)),
        }

    # Templates and update strategies

    def get_templates(self) -> list[PolicyTemplate]:
        return list(self.templates.values())

    def get_template(self, template_id: str) -> PolicyTemplate:
        template = self.templates.get(template_id)
        if template is None:
            raise TemplateNotFoundError(f"Template not found: {template_id}")
        return template

    def set_update_strategy(self, strategy: UpdateStrategy) -> None:
        self.update_strategies.put(strategy)

    def get_update_strategy(self, tenant_id: str) -> UpdateStrategy:
        return self.update_strategies.get(tenant_id) or default_update_strategy(tenant_id)
