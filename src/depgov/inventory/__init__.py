"""Dependency inventory types and metadata providers."""

from depgov.inventory.base import DefaultMetadataProvider, PackageMetadataProvider, StaticMetadataProvider
from depgov.inventory.models import Dependency, DependencyScope, DependencyType, Severity, Vulnerability

__all__ = [
    "DefaultMetadataProvider",
    "PackageMetadataProvider",
    "StaticMetadataProvider",
    "Dependency",
    "DependencyScope",
    "DependencyType",
    "Severity",
    "Vulnerability",
]
