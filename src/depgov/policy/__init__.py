"""Dependency policy evaluation and enforcement."""

from depgov.policy.actions import ActionExecutor, IssueTracker, Notifier
from depgov.policy.conditions import DEFAULT_FIELDS, FieldRegistry, evaluate_conditions, evaluate_operator
from depgov.policy.engine import PolicyEvaluator
from depgov.policy.loader import load_policies
from depgov.policy.models import (
    ActionType,
    ConditionOperator,
    DependencyPolicy,
    EvaluationContext,
    EvaluationStatus,
    PolicyEnforcementResult,
    PolicyEvaluation,
    PolicyException,
    PolicyRule,
    PolicyScope,
    PolicyViolation,
    RuleAction,
    RuleCondition,
    RuleType,
    UpdateStrategy,
    ViolationStatus,
)
from depgov.policy.service import PolicyService

__all__ = [
    "ActionExecutor",
    "IssueTracker",
    "Notifier",
    "DEFAULT_FIELDS",
    "FieldRegistry",
    "evaluate_conditions",
    "evaluate_operator",
    "PolicyEvaluator",
    "load_policies",
    "ActionType",
    "ConditionOperator",
    "DependencyPolicy",
    "EvaluationContext",
    "EvaluationStatus",
    "PolicyEnforcementResult",
    "PolicyEvaluation",
    "PolicyException",
    "PolicyRule",
    "PolicyScope",
    "PolicyViolation",
    "RuleAction",
    "RuleCondition",
    "RuleType",
    "UpdateStrategy",
    "ViolationStatus",
    "PolicyService",
]
