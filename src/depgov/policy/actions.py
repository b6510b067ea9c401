"""Enforcement action execution.

Every enabled action on a triggered rule runs independently: a failing
action is recorded as FAILED and the remaining actions still run.
NOTIFY and CREATE_ISSUE may call out of process, so their collaborators run
in a worker thread under a timeout.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Protocol

from depgov.config import ACTION_TIMEOUT_SECONDS
from depgov.events import EventPublisher
from depgov.exceptions import ActionExecutionError
from depgov.inventory.models import DependencyScope
from depgov.policy.models import (
    ActionConfig,
    ActionStatus,
    ActionType,
    AutoApprovalCondition,
    AutoApprovalRule,
    EvaluationContext,
    ExecutedAction,
    IssueTrackerConfig,
    PolicyViolation,
    RuleAction,
    UpdateStrategy,
    default_update_strategy,
)
from depgov.scoring.factors import RiskLevel
from depgov.utils import utcnow

logger = logging.getLogger(__name__)

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


class Notifier(Protocol):
    """Delivers violation notifications (email, chat, webhook...)."""

    def notify(self, channels: list[str], recipients: list[str], violation: PolicyViolation) -> None: ...


class IssueTracker(Protocol):
    """Opens tickets in an external tracker. Returns the new issue key."""

    def create_issue(self, tracker: IssueTrackerConfig, issue: dict) -> Optional[str]: ...


class ActionExecutor:
    """Runs a violation's rule actions and records per-action outcomes."""

    def __init__(
        self,
        publisher: EventPublisher,
        notifier: Optional[Notifier] = None,
        issue_tracker: Optional[IssueTracker] = None,
        timeout: float = ACTION_TIMEOUT_SECONDS,
        update_strategy_lookup: Optional[Callable[[str], UpdateStrategy]] = None,
    ):
        self.publisher = publisher
        self.notifier = notifier
        self.issue_tracker = issue_tracker
        self.timeout = timeout
        self.update_strategy_lookup = update_strategy_lookup or default_update_strategy

        self._handlers: dict[str, Callable[[ActionConfig, PolicyViolation, EvaluationContext], Awaitable[dict]]] = {
            ActionType.BLOCK.value: self._block,
            ActionType.WARN.value: self._warn,
            ActionType.LOG.value: self._log,
            ActionType.NOTIFY.value: self._notify,
            ActionType.AUTO_FIX.value: self._auto_fix,
            ActionType.CREATE_ISSUE.value: self._create_issue,
            ActionType.ESCALATE.value: self._escalate,
        }

    async def execute(self, violation: PolicyViolation, context: EvaluationContext) -> list[ExecutedAction]:
        """
        Execute every enabled action on the violation's rule.

        Args:
            violation: Triggered violation or warning
            context: Evaluation context of the run

        Returns:
            One ExecutedAction per enabled action, in rule order
        """
        executed = []
        for action in violation.details.rule.enabled_actions():
            executed.append(await self._run(action, violation, context))
        return executed

    async def _run(self, action: RuleAction, violation: PolicyViolation, context: EvaluationContext) -> ExecutedAction:
        started = time.perf_counter()
        try:
            handler = self._handlers.get(action.type)
            if handler is None:
                raise ActionExecutionError(f"Unknown action type: {action.type}")
            result = await handler(action.config, violation, context)
            status, error = ActionStatus.SUCCESS, None
        except asyncio.TimeoutError:
            result, status = None, ActionStatus.FAILED
            error = f"{action.type} action timed out after {self.timeout}s"
            logger.warning(f"{error} for violation {violation.id}")
        except Exception as e:
            result, status, error = None, ActionStatus.FAILED, str(e) or type(e).__name__
            logger.warning(f"{action.type} action failed for violation {violation.id}: {error}")

        return ExecutedAction(
            violation_id=violation.id,
            action_type=str(action.type),
            status=status,
            result=result,
            error=error,
            executed_at=utcnow(),
            execution_duration_ms=(time.perf_counter() - started) * 1000,
        )

    async def _call_external(self, func: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)

    async def _block(self, config: ActionConfig, violation: PolicyViolation, context: EvaluationContext) -> dict:
        message = config.blocking_message or "Policy violation"
        self.publisher.publish(
            "dependencyBlocked",
            {
                "tenant_id": violation.tenant_id,
                "dependency": violation.dependency.name,
                "dependency_id": violation.dependency.id,
                "reason": message,
                "policy_id": violation.policy_id,
                "rule_id": violation.rule_id,
            },
        )
        return {"blocked": True, "message": message}

    async def _warn(self, config: ActionConfig, violation: PolicyViolation, context: EvaluationContext) -> dict:
        message = config.warning_message or "Policy violation detected"
        self.publisher.publish(
            "dependencyWarning",
            {
                "tenant_id": violation.tenant_id,
                "dependency": violation.dependency.name,
                "dependency_id": violation.dependency.id,
                "warning": message,
                "policy_id": violation.policy_id,
                "rule_id": violation.rule_id,
            },
        )
        return {"warned": True, "message": message}

    async def _log(self, config: ActionConfig, violation: PolicyViolation, context: EvaluationContext) -> dict:
        level_name = (config.log_level or "WARN").upper()
        if level_name not in LOG_LEVELS:
            raise ActionExecutionError(f"Invalid log level: {config.log_level}")

        message = f"Policy violation: {violation.message}"
        logger.log(LOG_LEVELS[level_name], message)
        self.publisher.publish(
            "policyViolationLogged",
            {"tenant_id": violation.tenant_id, "violation_id": violation.id, "level": level_name, "message": message},
        )
        return {"logged": True, "level": level_name, "message": message}

    async def _notify(self, config: ActionConfig, violation: PolicyViolation, context: EvaluationContext) -> dict:
        channels = list(config.notification_channels)
        recipients = list(config.recipients)
        self.publisher.publish(
            "policyViolationNotification",
            {"violation": violation, "channels": channels, "recipients": recipients},
        )
        delivered = False
        if self.notifier is not None:
            await self._call_external(self.notifier.notify, channels, recipients, violation)
            delivered = True
        return {"notified": True, "channels": len(channels), "recipients": len(recipients), "delivered": delivered}

    async def _auto_fix(self, config: ActionConfig, violation: PolicyViolation, context: EvaluationContext) -> dict:
        strategy = (config.auto_fix_strategy or "UPDATE").upper()
        approval_rule = self._matching_approval_rule(strategy, violation, context)
        requires_approval = approval_rule is None

        self.publisher.publish(
            "autoFixTriggered",
            {
                "tenant_id": violation.tenant_id,
                "dependency": violation.dependency.name,
                "dependency_id": violation.dependency.id,
                "strategy": strategy,
                "violation": violation.id,
                "requires_approval": requires_approval,
            },
        )
        return {
            "auto_fix_triggered": True,
            "strategy": strategy,
            "requires_approval": requires_approval,
            "approved_by_rule": approval_rule.condition.value if approval_rule else None,
        }

    def _matching_approval_rule(
        self, strategy: str, violation: PolicyViolation, context: EvaluationContext
    ) -> Optional[AutoApprovalRule]:
        update_strategy = self.update_strategy_lookup(violation.tenant_id)
        for rule in update_strategy.auto_approval_rules:
            if auto_approval_matches(rule, strategy, violation, context):
                return rule
        return None

    async def _create_issue(self, config: ActionConfig, violation: PolicyViolation, context: EvaluationContext) -> dict:
        tracker = config.issue_tracker
        if tracker is None:
            raise ActionExecutionError("Issue tracker configuration is required for CREATE_ISSUE action")

        issue = {
            "title": f"Policy Violation: {violation.dependency.name}",
            "description": violation.message,
            "issue_type": tracker.issue_type,
            "priority": tracker.priority,
            "labels": list(tracker.labels),
            "assignee": tracker.assignee,
        }
        issue_key = None
        if self.issue_tracker is not None:
            issue_key = await self._call_external(self.issue_tracker.create_issue, tracker, issue)

        self.publisher.publish(
            "issueCreated",
            {
                "tenant_id": violation.tenant_id,
                "tracker": tracker.system,
                "project": tracker.project,
                "issue": issue,
                "issue_key": issue_key,
                "violation": violation.id,
            },
        )
        return {"issue_created": True, "tracker": tracker.system, "issue_key": issue_key}

    async def _escalate(self, config: ActionConfig, violation: PolicyViolation, context: EvaluationContext) -> dict:
        level = config.escalation_level or 1
        self.publisher.publish(
            "violationEscalated",
            {"violation": violation, "level": level, "escalated_at": utcnow()},
        )
        return {"escalated": True, "level": level}


def auto_approval_matches(
    rule: AutoApprovalRule, strategy: str, violation: PolicyViolation, context: EvaluationContext
) -> bool:
    """Whether an auto-fix for this violation may skip manual approval under ``rule``."""
    if rule.environments and context.environment not in rule.environments:
        return False

    dependency = violation.dependency
    assessment = context.assessments.get(dependency.id)
    if assessment is not None and assessment.overall_risk_score > rule.max_risk_score:
        return False

    if rule.condition == AutoApprovalCondition.PATCH_SECURITY:
        vulnerabilities = context.vulnerabilities.get(dependency.id, [])
        return strategy == "UPDATE" and any(v.fix_available for v in vulnerabilities)
    if rule.condition == AutoApprovalCondition.DEV_DEPENDENCIES:
        return dependency.scope == DependencyScope.DEVELOPMENT
    if rule.condition == AutoApprovalCondition.LOW_RISK:
        return assessment is not None and assessment.risk_level in (RiskLevel.LOW, RiskLevel.MINIMAL)
    return False
