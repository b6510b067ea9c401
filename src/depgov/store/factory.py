"""Ready-made store bundles for the services."""

from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import sessionmaker

from depgov.policy.models import DependencyPolicy, PolicyEnforcementResult, PolicyViolation, UpdateStrategy
from depgov.scoring.factors import BusinessContext, RiskAssessment, RiskAssessmentCriteria
from depgov.store.memory import MemoryStore
from depgov.store.sql import SqlStore


def _by_tenant(record) -> str:
    return record.tenant_id


@dataclass
class Stores:
    policies: Any
    assessments: Any
    violations: Any
    evaluations: Any
    contexts: Any
    criteria: Any
    update_strategies: Any


def memory_stores() -> Stores:
    return Stores(
        policies=MemoryStore(),
        assessments=MemoryStore(),
        violations=MemoryStore(),
        evaluations=MemoryStore(id_of=lambda r: r.evaluation_id),
        contexts=MemoryStore(id_of=_by_tenant),
        criteria=MemoryStore(id_of=_by_tenant),
        update_strategies=MemoryStore(id_of=_by_tenant),
    )


def sql_stores(factory: sessionmaker) -> Stores:
    """All stores sharing one database through the ``records`` table."""
    return Stores(
        policies=SqlStore("policy", factory, DependencyPolicy.from_dict),
        assessments=SqlStore("assessment", factory, RiskAssessment.from_dict),
        violations=SqlStore("violation", factory, PolicyViolation.from_dict),
        evaluations=SqlStore(
            "evaluation", factory, PolicyEnforcementResult.from_dict, id_of=lambda r: r.evaluation_id
        ),
        contexts=SqlStore("business_context", factory, BusinessContext.from_dict, id_of=_by_tenant),
        criteria=SqlStore("criteria", factory, RiskAssessmentCriteria.from_dict, id_of=_by_tenant),
        update_strategies=SqlStore("update_strategy", factory, UpdateStrategy.from_dict, id_of=_by_tenant),
    )
