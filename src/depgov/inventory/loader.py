"""Load dependency inventories and business contexts from YAML/JSON files."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

import yaml

from depgov.inventory.models import Dependency, Vulnerability
from depgov.scoring.factors import BusinessContext

logger = logging.getLogger(__name__)


@dataclass
class Inventory:
    """Parsed inventory file: dependencies plus their known vulnerabilities by dependency id."""

    dependencies: list[Dependency] = field(default_factory=list)
    vulnerabilities: dict[str, list[Vulnerability]] = field(default_factory=dict)

    def vulnerabilities_for(self, dependency: Dependency) -> list[Vulnerability]:
        return self.vulnerabilities.get(dependency.id, [])


def _read(path: Union[str, Path]):
    with open(path) as f:
        # JSON is a subset of YAML
        return yaml.safe_load(f)


def load_inventory(path: Union[str, Path]) -> Inventory:
    """
    Load an inventory file.

    Expected format::

        dependencies:
          - name: lodash
            version: 4.17.20
            ecosystem: npm
            licenses: [MIT]
            last_update: 2021-02-20
            vulnerabilities:
              - id: GHSA-35jh-r3h4-6jhm
                severity: HIGH
                fix_available: true

    Raises:
        ValueError: If the file or one of its entries is malformed
    """
    data = _read(path)
    if not isinstance(data, dict) or "dependencies" not in data:
        raise ValueError(f"Invalid inventory file: expected top-level 'dependencies' key in {path}")

    raw = data["dependencies"]
    if not isinstance(raw, list):
        raise ValueError(f"Invalid inventory file: 'dependencies' must be a list in {path}")

    inventory = Inventory()
    seen = set()
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValueError(f"Entry {i + 1}: expected a mapping, got {type(item).__name__}")

        name = str(item.get("name", "")).strip()
        if not name:
            raise ValueError(f"Entry {i + 1}: 'name' is required")
        if not item.get("ecosystem"):
            raise ValueError(f"Entry {i + 1} ({name}): 'ecosystem' is required")

        try:
            dependency = Dependency.from_dict({**item, "name": name})
            vulnerabilities = [Vulnerability.from_dict(v) for v in item.get("vulnerabilities") or []]
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Entry {i + 1} ({name}): {e}") from e

        if dependency.id in seen:
            logger.warning(f"Skipping duplicate inventory entry {dependency.id}")
            continue
        seen.add(dependency.id)

        inventory.dependencies.append(dependency)
        if vulnerabilities:
            inventory.vulnerabilities[dependency.id] = vulnerabilities

    logger.info(f"Loaded {len(inventory.dependencies)} dependencies from {path}")
    return inventory


def load_business_context(path: Union[str, Path], tenant_id: str) -> BusinessContext:
    """Load a tenant business context. The file's own tenant_id is ignored."""
    data = _read(path)
    if not isinstance(data, dict):
        raise ValueError(f"Invalid business context file: expected a mapping in {path}")
    try:
        return BusinessContext.from_dict({**data, "tenant_id": tenant_id})
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"Invalid business context in {path}: {e}") from e
