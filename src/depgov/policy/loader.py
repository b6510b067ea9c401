"""Load policy definitions from YAML/JSON files."""

import logging
from pathlib import Path
from typing import Union

import yaml

from depgov.policy.models import DependencyPolicy

logger = logging.getLogger(__name__)


def load_policies(path: Union[str, Path]) -> list[DependencyPolicy]:
    """
    Parse a policy file. Policies are returned unvalidated;
    ``PolicyService.create_policy`` reports structural problems.

    Expected format::

        policies:
          - name: No GPL
            rules:
              - name: Block GPL
                type: LICENSE
                severity: HIGH
                conditions:
                  - field: license
                    operator: in
                    value: [GPL-3.0]
                actions:
                  - type: BLOCK

    Raises:
        ValueError: If the file or one of its entries cannot be parsed
    """
    with open(path) as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict) or "policies" not in data:
        raise ValueError(f"Invalid policy file: expected top-level 'policies' key in {path}")

    raw = data["policies"]
    if not isinstance(raw, list):
        raise ValueError(f"Invalid policy file: 'policies' must be a list in {path}")

    policies = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValueError(f"Entry {i + 1}: expected a mapping, got {type(item).__name__}")
        if not isinstance(item.get("rules", []), list):
            raise ValueError(f"Entry {i + 1}: 'rules' must be a list")
        try:
            policies.append(DependencyPolicy.from_dict(item))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ValueError(f"Entry {i + 1} ({item.get('name', '?')}): {e}") from e

    logger.info(f"Loaded {len(policies)} policies from {path}")
    return policies
