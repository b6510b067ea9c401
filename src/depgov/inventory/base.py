"""Package metadata capability used by the risk scoring engine."""

from abc import ABC, abstractmethod
from typing import Optional

from depgov.inventory.models import Dependency


class PackageMetadataProvider(ABC):
    """Abstract source of registry-derived package facts.

    Implementations must be deterministic for a given dependency so that
    risk scores are reproducible.
    """

    @abstractmethod
    def maintenance_estimate(self, dependency: Dependency) -> float:
        """
        Estimate how well a package is maintained.

        Args:
            dependency: Dependency being scored

        Returns:
            Maintenance estimate (0-100, higher = better maintained), before
            any staleness penalty for the dependency's last update
        """
        pass


class DefaultMetadataProvider(PackageMetadataProvider):
    """Returns the same neutral estimate for every package."""

    DEFAULT_ESTIMATE = 60.0

    def __init__(self, estimate: float = DEFAULT_ESTIMATE):
        self.estimate = estimate

    def maintenance_estimate(self, dependency: Dependency) -> float:
        return self.estimate


class StaticMetadataProvider(PackageMetadataProvider):
    """Per-package estimates from a lookup table, keyed by name or name@version."""

    def __init__(self, estimates: dict[str, float], default: Optional[float] = None):
        self.estimates = estimates
        self.default = DefaultMetadataProvider.DEFAULT_ESTIMATE if default is None else default

    def maintenance_estimate(self, dependency: Dependency) -> float:
        if dependency.id in self.estimates:
            return self.estimates[dependency.id]
        return self.estimates.get(dependency.name, self.default)
