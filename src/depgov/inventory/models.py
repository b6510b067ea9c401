"""Dependency and vulnerability records supplied by the inventory collaborators."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from depgov.utils import format_datetime, parse_datetime


class Severity(str, Enum):
    """Severity scale shared by vulnerabilities, risk factors and policy rules."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"

    @property
    def rank(self) -> int:
        """Ordering helper: higher is more severe."""
        return {
            Severity.CRITICAL: 4,
            Severity.HIGH: 3,
            Severity.MEDIUM: 2,
            Severity.LOW: 1,
            Severity.INFO: 0,
        }[self]


class DependencyType(str, Enum):
    DIRECT = "direct"
    TRANSITIVE = "transitive"


class DependencyScope(str, Enum):
    PRODUCTION = "production"
    DEVELOPMENT = "development"
    OPTIONAL = "optional"
    PEER = "peer"


@dataclass
class Dependency:
    """Immutable snapshot of one dependency version from an inventory scan."""

    name: str
    version: str
    ecosystem: str
    type: DependencyType = DependencyType.DIRECT
    scope: DependencyScope = DependencyScope.PRODUCTION
    licenses: list[str] = field(default_factory=list)
    last_update: Optional[datetime] = None

    # Optional registry metadata
    package_file: str = ""
    description: Optional[str] = None
    repository: Optional[str] = None
    maintainers: list[str] = field(default_factory=list)
    downloads: Optional[int] = None

    # Tenant-specific attributes, reachable from rule conditions as metadata.<key>
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return f"{self.name}@{self.version}"

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "ecosystem": self.ecosystem,
            "type": _enum_value(self.type),
            "scope": _enum_value(self.scope),
            "licenses": list(self.licenses),
            "last_update": format_datetime(self.last_update) if isinstance(self.last_update, datetime) else None,
            "package_file": self.package_file,
            "description": self.description,
            "repository": self.repository,
            "maintainers": list(self.maintainers),
            "downloads": self.downloads,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Dependency":
        return cls(
            name=data["name"],
            version=str(data.get("version", "*")),
            ecosystem=data.get("ecosystem", ""),
            type=DependencyType(str(data.get("type", "direct")).lower()),
            scope=DependencyScope(str(data.get("scope", "production")).lower()),
            licenses=list(data.get("licenses") or []),
            last_update=parse_datetime(data.get("last_update")),
            package_file=data.get("package_file", ""),
            description=data.get("description"),
            repository=data.get("repository"),
            maintainers=list(data.get("maintainers") or []),
            downloads=data.get("downloads"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class Vulnerability:
    """A known vulnerability matched against a dependency."""

    id: str
    severity: Severity
    cve: Optional[str] = None
    cvss_score: Optional[float] = None
    exploitability: Optional[str] = None  # PUBLIC_EXPLOIT, PROOF_OF_CONCEPT, FUNCTIONAL, UNPROVEN, NOT_DEFINED
    fix_available: bool = False
    description: str = ""
    title: str = ""
    cwe: list[str] = field(default_factory=list)
    data_source: str = ""
    fixed_versions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "severity": _enum_value(self.severity),
            "cve": self.cve,
            "cvss_score": self.cvss_score,
            "exploitability": self.exploitability,
            "fix_available": self.fix_available,
            "description": self.description,
            "title": self.title,
            "cwe": list(self.cwe),
            "data_source": self.data_source,
            "fixed_versions": list(self.fixed_versions),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Vulnerability":
        cvss = data.get("cvss_score")
        return cls(
            id=str(data.get("id") or data.get("cve") or ""),
            severity=Severity(str(data.get("severity", "LOW")).upper()),
            cve=data.get("cve"),
            cvss_score=float(cvss) if cvss is not None else None,
            exploitability=data.get("exploitability"),
            fix_available=bool(data.get("fix_available", False)),
            description=data.get("description") or "",
            title=data.get("title") or "",
            cwe=list(data.get("cwe") or []),
            data_source=data.get("data_source") or "",
            fixed_versions=list(data.get("fixed_versions") or []),
        )


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value
