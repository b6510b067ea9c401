"""Policy rule evaluation and batch enforcement."""

import asyncio
import logging
import time
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

from depgov.config import MAX_CONCURRENCY
from depgov.events import EventBus, EventPublisher
from depgov.inventory.models import Dependency
from depgov.policy.actions import ActionExecutor
from depgov.policy.conditions import DEFAULT_FIELDS, ConditionResult, FieldRegistry, enrich, evaluate_conditions
from depgov.policy.models import (
    DependencyPolicy,
    EnforcementMode,
    EnforcementSummary,
    EvaluationContext,
    EvaluationStatus,
    ExecutedAction,
    PolicyEnforcementResult,
    PolicyEvaluation,
    PolicyException,
    PolicyRule,
    PolicyScope,
    PolicyViolation,
    RuleType,
    ViolationDetails,
    ViolationEvidence,
    ViolationStatus,
)
from depgov.store.base import KeyedStore
from depgov.store.memory import MemoryStore
from depgov.utils import new_id, utcnow

logger = logging.getLogger(__name__)

VIOLATION_MESSAGES = {
    RuleType.VULNERABILITY.value: "{dep} contains security vulnerabilities that violate policy: {rule}",
    RuleType.LICENSE.value: "{dep} has license restrictions that violate policy: {rule}",
    RuleType.AGE.value: "{dep} is outdated and violates policy: {rule}",
    RuleType.MAINTENANCE.value: "{dep} appears unmaintained and violates policy: {rule}",
}
DEFAULT_VIOLATION_MESSAGE = "{dep} violates policy rule: {rule}"

IMPACTS = {
    RuleType.VULNERABILITY.value: "Security vulnerability may expose the application to attacks",
    RuleType.LICENSE.value: "License restrictions may create legal compliance issues",
    RuleType.AGE.value: "Outdated dependency may lack security updates and bug fixes",
    RuleType.MAINTENANCE.value: "Unmaintained dependency may pose long-term security and stability risks",
}
DEFAULT_IMPACT = "Policy violation may impact application security and compliance"

RECOMMENDATIONS = {
    RuleType.VULNERABILITY.value: "Update {name} to a version that fixes the vulnerability",
    RuleType.LICENSE.value: "Replace {name} with an alternative that has an approved license",
    RuleType.AGE.value: "Update {name} to the latest stable version",
    RuleType.MAINTENANCE.value: "Consider replacing {name} with a more actively maintained alternative",
}
DEFAULT_RECOMMENDATION = "Review and address the policy violation for {name}"


def in_scope(dependency: Dependency, scope: PolicyScope, context: EvaluationContext) -> bool:
    """Scope filter. Environment and project only filter when the context sets them."""
    if scope.ecosystems and dependency.ecosystem not in scope.ecosystems:
        return False
    if scope.dependency_types and dependency.type.value not in scope.dependency_types:
        return False
    if scope.scopes and dependency.scope.value not in scope.scopes:
        return False
    if scope.environments and context.environment and context.environment not in scope.environments:
        return False
    if scope.projects and context.project and context.project not in scope.projects:
        return False
    return True


def find_active_exception(
    policy: DependencyPolicy, rule: PolicyRule, dependency: Dependency, now: datetime
) -> Optional[PolicyException]:
    for exception in policy.exceptions:
        if exception.matches(rule.id, dependency.name) and exception.is_active(now):
            return exception
    return None


def evaluation_status(
    violations: list[PolicyViolation], warnings: list[PolicyViolation], exceptions: list[PolicyException]
) -> EvaluationStatus:
    """VIOLATION > WARNING > EXCEPTION > COMPLIANT."""
    if violations:
        return EvaluationStatus.VIOLATION
    if warnings:
        return EvaluationStatus.WARNING
    if exceptions:
        return EvaluationStatus.EXCEPTION
    return EvaluationStatus.COMPLIANT


def build_violation(
    policy: DependencyPolicy,
    rule: PolicyRule,
    dependency: Dependency,
    result: ConditionResult,
    context: EvaluationContext,
    now: datetime,
) -> PolicyViolation:
    evidence = [
        ViolationEvidence(
            type="CONFIGURATION",
            source="policy-engine",
            content={
                "field": condition.field,
                "operator": condition.operator,
                "expected_value": condition.value,
                "actual_value": result.actual_values.get(condition.field),
            },
            timestamp=now,
        )
        for condition in result.triggered_conditions
    ]
    message = VIOLATION_MESSAGES.get(rule.type, DEFAULT_VIOLATION_MESSAGE).format(dep=dependency.id, rule=rule.name)

    return PolicyViolation(
        id=new_id("violation"),
        tenant_id=policy.tenant_id,
        policy_id=policy.id,
        rule_id=rule.id,
        dependency=dependency,
        violation_type=rule.type,
        severity=rule.severity,
        message=message,
        details=ViolationDetails(
            rule=rule,
            triggered_conditions=list(result.triggered_conditions),
            actual_values=dict(result.actual_values),
            evidence=evidence,
            impact=IMPACTS.get(rule.type, DEFAULT_IMPACT),
            recommendation=RECOMMENDATIONS.get(rule.type, DEFAULT_RECOMMENDATION).format(name=dependency.name),
        ),
        context=context.violation_context(dependency),
        first_detected=now,
        last_seen=now,
        tags=list(rule.metadata.tags),
    )


class PolicyEvaluator:
    """
    Evaluates dependencies against policies and enforces the results.

    Violations are deduplicated by (tenant, policy, rule, dependency id): a
    repeat detection refreshes ``last_seen`` on the stored record and keeps
    its id and lifecycle status.
    """

    def __init__(
        self,
        violations: Optional[KeyedStore[PolicyViolation]] = None,
        history: Optional[KeyedStore[PolicyEnforcementResult]] = None,
        executor: Optional[ActionExecutor] = None,
        publisher: Optional[EventPublisher] = None,
        registry: FieldRegistry = DEFAULT_FIELDS,
        clock: Callable[[], datetime] = utcnow,
        max_concurrency: int = MAX_CONCURRENCY,
    ):
        self.publisher = publisher or EventBus()
        self.violations = violations if violations is not None else MemoryStore()
        self.history = history if history is not None else MemoryStore(id_of=lambda r: r.evaluation_id)
        self.executor = executor or ActionExecutor(self.publisher)
        self.registry = registry
        self.clock = clock
        self.max_concurrency = max(1, max_concurrency)

    def evaluate_dependency(
        self,
        dependency: Dependency,
        policies: list[DependencyPolicy],
        context: Optional[EvaluationContext] = None,
    ) -> PolicyEvaluation:
        """
        Evaluate one dependency against a policy set.

        Args:
            dependency: Dependency to evaluate
            policies: Candidate policies; disabled ones are ignored
            context: Run context (environment, project, vulnerability data...)

        Returns:
            PolicyEvaluation with violations, warnings and applied exceptions

        Raises:
            TypeError: If the dependency data cannot be enriched
        """
        context = context or EvaluationContext()
        started = time.perf_counter()
        now = context.now or self.clock()
        data = enrich(dependency, context, now)

        violations: list[PolicyViolation] = []
        warnings: list[PolicyViolation] = []
        exceptions: list[PolicyException] = []
        policy_ids = []
        rules_evaluated = 0
        rules_triggered = 0

        for policy in active_policies(policies):
            if not in_scope(dependency, policy.scope, context):
                continue
            policy_ids.append(policy.id)

            for rule in policy.rules:
                if not rule.enabled:
                    continue
                rules_evaluated += 1

                exception = find_active_exception(policy, rule, dependency, now)
                if exception is not None:
                    exceptions.append(exception)
                    continue

                result = evaluate_conditions(rule.conditions, data, self.registry)
                if not result.triggered:
                    continue

                rules_triggered += 1
                violation = self._record(build_violation(policy, rule, dependency, result, context, now), now)
                if rule.is_blocking:
                    violations.append(violation)
                else:
                    warnings.append(violation)

        return PolicyEvaluation(
            dependency_id=dependency.id,
            policy_ids=policy_ids,
            status=evaluation_status(violations, warnings, exceptions),
            violations=violations,
            warnings=warnings,
            exceptions=exceptions,
            evaluated_at=now,
            evaluation_duration_ms=(time.perf_counter() - started) * 1000,
            rules_evaluated=rules_evaluated,
            rules_triggered=rules_triggered,
        )

    def _record(self, violation: PolicyViolation, now: datetime) -> PolicyViolation:
        """
        Store a new violation or refresh the one already on record.

        A RESOLVED violation that triggers again is reopened under its
        original id. FALSE_POSITIVE and SUPPRESSED are triage decisions about
        the finding itself, so they stay as they are and only ``last_seen``
        moves.
        """
        reopened = []

        def refresh(existing: PolicyViolation) -> PolicyViolation:
            changes = {}
            if existing.status == ViolationStatus.RESOLVED:
                changes = dict(status=ViolationStatus.OPEN, resolution=None, resolved_by=None, resolved_at=None)
                reopened.append(existing.id)
            return replace(
                existing,
                last_seen=now,
                message=violation.message,
                details=violation.details,
                context=violation.context,
                **changes,
            )

        stored, created = self.violations.get_or_add(violation.dedupe_key, violation, refresh)
        if reopened:
            logger.info(f"Violation {stored.id} reopened: {violation.dependency.id} triggers again")
            self.publisher.publish(
                "violationStatusChanged",
                {
                    "tenant_id": stored.tenant_id,
                    "violation_id": stored.id,
                    "from": ViolationStatus.RESOLVED.value,
                    "to": ViolationStatus.OPEN.value,
                    "changed_by": "system",
                },
            )
        elif not created:
            logger.debug(f"Violation {stored.id} seen again for {violation.dependency.id}")
        return stored

    async def evaluate_policies(
        self,
        dependencies: list[Dependency],
        tenant_id: str,
        policies: list[DependencyPolicy],
        context: Optional[EvaluationContext] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PolicyEnforcementResult:
        """
        Evaluate a batch of dependencies and execute triggered actions.

        Dependencies run concurrently, bounded by ``max_concurrency``. A
        dependency that fails is counted as skipped. Setting ``cancel_event``
        stops further dependencies from starting; in-flight ones finish and
        are recorded.
        """
        context = context or EvaluationContext()
        evaluation_id = new_id("eval")
        start_time = self.clock()
        started = time.perf_counter()

        self.publisher.publish(
            "policyEvaluationStarted",
            {"evaluation_id": evaluation_id, "tenant_id": tenant_id, "dependency_count": len(dependencies)},
        )

        try:
            active = active_policies(p for p in policies if p.tenant_id == tenant_id)
            semaphore = asyncio.Semaphore(self.max_concurrency)

            async def run_one(dependency: Dependency):
                if cancel_event is not None and cancel_event.is_set():
                    return "cancelled", dependency, None
                async with semaphore:
                    if cancel_event is not None and cancel_event.is_set():
                        return "cancelled", dependency, None
                    try:
                        evaluation = self.evaluate_dependency(dependency, active, context)
                        executed: list[ExecutedAction] = []
                        for violation in evaluation.violations + evaluation.warnings:
                            executed.extend(await self.executor.execute(violation, context))
                        evaluation.actions_executed = len(executed)
                        return "evaluated", dependency, (evaluation, executed)
                    except Exception as e:
                        logger.warning(f"Evaluation of {dependency.name} failed: {e}")
                        self.publisher.publish(
                            "dependencyEvaluationError",
                            {"evaluation_id": evaluation_id, "tenant_id": tenant_id, "dependency": dependency.name, "error": str(e)},
                        )
                        return "skipped", dependency, str(e)

            outcomes = await asyncio.gather(*(run_one(d) for d in dependencies))

            evaluations: list[PolicyEvaluation] = []
            executed_actions: list[ExecutedAction] = []
            errors: dict[str, str] = {}
            cancelled = 0
            for outcome, dependency, payload in outcomes:
                if outcome == "evaluated":
                    evaluation, executed = payload
                    evaluations.append(evaluation)
                    executed_actions.extend(executed)
                elif outcome == "skipped":
                    errors[dependency.id] = payload
                else:
                    cancelled += 1

            end_time = self.clock()
            result = PolicyEnforcementResult(
                evaluation_id=evaluation_id,
                tenant_id=tenant_id,
                total_dependencies=len(dependencies),
                evaluated_dependencies=len(evaluations),
                skipped_dependencies=len(errors),
                cancelled_dependencies=cancelled,
                compliant_dependencies=_count(evaluations, EvaluationStatus.COMPLIANT),
                violating_dependencies=_count(evaluations, EvaluationStatus.VIOLATION),
                warning_dependencies=_count(evaluations, EvaluationStatus.WARNING),
                evaluations=evaluations,
                executed_actions=executed_actions,
                summary=summarize(active, evaluations, executed_actions),
                start_time=start_time,
                end_time=end_time,
                duration_ms=(time.perf_counter() - started) * 1000,
                errors=errors,
            )
            self.history.put(result)
        except Exception as e:
            logger.error(f"Policy evaluation {evaluation_id} failed: {e}")
            self.publisher.publish(
                "policyEvaluationFailed",
                {"evaluation_id": evaluation_id, "tenant_id": tenant_id, "error": str(e)},
            )
            raise

        logger.info(
            f"Evaluation {evaluation_id}: {result.evaluated_dependencies}/{result.total_dependencies} evaluated, "
            f"{result.summary.violations_detected} violations, {result.summary.blocked_dependencies} blocked"
        )
        self.publisher.publish(
            "policyEvaluationCompleted",
            {
                "evaluation_id": evaluation_id,
                "tenant_id": tenant_id,
                "violations_count": result.summary.violations_detected,
                "blocked_count": result.summary.blocked_dependencies,
                "skipped_count": result.skipped_dependencies,
            },
        )
        return result


def active_policies(policies) -> list[DependencyPolicy]:
    """Enabled, non-disabled policies, highest priority first."""
    active = [p for p in policies if p.enabled and p.enforcement.mode != EnforcementMode.DISABLED]
    return sorted(active, key=lambda p: p.priority, reverse=True)


def _count(evaluations: list[PolicyEvaluation], status: EvaluationStatus) -> int:
    return sum(1 for e in evaluations if e.status == status)


def summarize(
    policies: list[DependencyPolicy], evaluations: list[PolicyEvaluation], executed: list[ExecutedAction]
) -> EnforcementSummary:
    summary = EnforcementSummary(
        policies_evaluated=len(policies),
        rules_evaluated=sum(e.rules_evaluated for e in evaluations),
        violations_detected=sum(len(e.violations) for e in evaluations),
        actions_executed=len(executed),
        blocked_dependencies=sum(1 for e in evaluations if e.is_blocked),
    )
    for evaluation in evaluations:
        for violation in evaluation.violations + evaluation.warnings:
            summary.severity_breakdown[violation.severity.value] += 1
            summary.policy_breakdown[violation.policy_id] = summary.policy_breakdown.get(violation.policy_id, 0) + 1
    return summary
