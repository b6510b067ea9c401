"""Built-in policy templates."""

from depgov.inventory.models import Severity
from depgov.policy.models import (
    ActionConfig,
    ActionType,
    IssueTrackerConfig,
    PolicyRule,
    PolicyScope,
    PolicyTemplate,
    RuleAction,
    RuleCondition,
    RuleMetadata,
    RuleType,
)

COPYLEFT_LICENSES = ["GPL-2.0", "GPL-3.0", "AGPL-3.0", "LGPL-2.1", "LGPL-3.0"]

DEFAULT_ECOSYSTEMS = ["npm", "python", "java"]


def _security_standard() -> PolicyTemplate:
    return PolicyTemplate(
        id="security-standard",
        name="Standard Security Policy",
        description="Comprehensive security policy for dependency management",
        category="SECURITY",
        rules=[
            PolicyRule(
                id="",
                name="Block Critical Vulnerabilities",
                description="Block dependencies with critical security vulnerabilities",
                type=RuleType.VULNERABILITY.value,
                severity=Severity.CRITICAL,
                conditions=[RuleCondition(field="vulnerability.severity", operator="equals", value="CRITICAL")],
                actions=[
                    RuleAction(
                        type=ActionType.BLOCK.value,
                        config=ActionConfig(
                            blocking_message="Dependency contains critical security vulnerabilities and cannot be used"
                        ),
                    ),
                    RuleAction(
                        type=ActionType.NOTIFY.value,
                        config=ActionConfig(
                            notification_channels=["security-alerts"],
                            recipients=["security-team@company.com"],
                        ),
                    ),
                ],
                metadata=RuleMetadata(
                    tags=["security", "vulnerability", "critical"],
                    category="security",
                    rationale="Critical vulnerabilities pose immediate security risks",
                    references=["NIST SP 800-53", "OWASP Top 10"],
                    impact="CRITICAL",
                ),
            ),
            PolicyRule(
                id="",
                name="Warn on High Vulnerabilities",
                description="Warn when dependencies have high severity vulnerabilities",
                type=RuleType.VULNERABILITY.value,
                severity=Severity.HIGH,
                conditions=[RuleCondition(field="vulnerability.severity", operator="equals", value="HIGH")],
                actions=[
                    RuleAction(
                        type=ActionType.WARN.value,
                        config=ActionConfig(
                            warning_message="Dependency contains high severity vulnerabilities - review and update recommended"
                        ),
                    ),
                    RuleAction(
                        type=ActionType.CREATE_ISSUE.value,
                        config=ActionConfig(
                            issue_tracker=IssueTrackerConfig(
                                system="JIRA",
                                project="SEC",
                                issue_type="Security Issue",
                                priority="High",
                                labels=["security", "vulnerability"],
                            )
                        ),
                    ),
                ],
                metadata=RuleMetadata(
                    tags=["security", "vulnerability", "high"],
                    category="security",
                    rationale="High vulnerabilities should be tracked and addressed",
                    references=["CVE Database"],
                    impact="HIGH",
                ),
            ),
        ],
        default_scope=PolicyScope(
            environments=["production", "staging"],
            ecosystems=list(DEFAULT_ECOSYSTEMS),
            dependency_types=["direct", "transitive"],
            scopes=["production"],
        ),
        author="Security Team",
        tags=["security", "vulnerability", "standard"],
        references=["NIST SP 800-53", "OWASP"],
    )


def _license_compliance() -> PolicyTemplate:
    return PolicyTemplate(
        id="license-compliance",
        name="License Compliance Policy",
        description="Ensure compliance with open source license requirements",
        category="LICENSE",
        rules=[
            PolicyRule(
                id="",
                name="Block Copyleft Licenses",
                description="Block dependencies with restrictive copyleft licenses",
                type=RuleType.LICENSE.value,
                severity=Severity.HIGH,
                conditions=[RuleCondition(field="license", operator="in", value=list(COPYLEFT_LICENSES))],
                actions=[
                    RuleAction(
                        type=ActionType.BLOCK.value,
                        config=ActionConfig(blocking_message="License is not approved for commercial use"),
                    )
                ],
                metadata=RuleMetadata(
                    tags=["license", "compliance", "copyleft"],
                    category="license",
                    rationale="Copyleft licenses may impose restrictions on commercial products",
                    references=["Corporate License Policy"],
                    impact="HIGH",
                ),
            ),
            PolicyRule(
                id="",
                name="Require License Information",
                description="Require all dependencies to have license information",
                type=RuleType.LICENSE.value,
                severity=Severity.MEDIUM,
                conditions=[RuleCondition(field="licenses", operator="not_exists")],
                actions=[
                    RuleAction(
                        type=ActionType.WARN.value,
                        config=ActionConfig(
                            warning_message="Dependency lacks license information - manual review required"
                        ),
                    )
                ],
                metadata=RuleMetadata(
                    tags=["license", "compliance"],
                    category="license",
                    rationale="All dependencies must have clear license information",
                    references=["Legal Requirements"],
                    impact="MEDIUM",
                ),
            ),
        ],
        default_scope=PolicyScope(
            environments=["production"],
            ecosystems=list(DEFAULT_ECOSYSTEMS),
            dependency_types=["direct", "transitive"],
            scopes=["production"],
        ),
        author="Legal Team",
        tags=["license", "compliance", "legal"],
        references=["Corporate Legal Policy"],
    )


def _maintenance_policy() -> PolicyTemplate:
    return PolicyTemplate(
        id="maintenance-policy",
        name="Dependency Maintenance Policy",
        description="Ensure dependencies are actively maintained and up-to-date",
        category="MAINTENANCE",
        rules=[
            PolicyRule(
                id="",
                name="Block Unmaintained Dependencies",
                description="Block dependencies that have not been updated in over 2 years",
                type=RuleType.MAINTENANCE.value,
                severity=Severity.MEDIUM,
                conditions=[RuleCondition(field="daysSinceLastUpdate", operator="greater_than", value=730)],
                actions=[
                    RuleAction(
                        type=ActionType.WARN.value,
                        config=ActionConfig(
                            warning_message="Dependency appears to be unmaintained - consider alternatives"
                        ),
                    )
                ],
                metadata=RuleMetadata(
                    tags=["maintenance", "age", "support"],
                    category="maintenance",
                    rationale="Unmaintained dependencies pose security and stability risks",
                    references=["Software Maintenance Best Practices"],
                    impact="MEDIUM",
                ),
            )
        ],
        default_scope=PolicyScope(
            environments=["production"],
            ecosystems=list(DEFAULT_ECOSYSTEMS),
            dependency_types=["direct"],
            scopes=["production"],
        ),
        author="Engineering Team",
        tags=["maintenance", "quality"],
    )


def builtin_templates() -> dict[str, PolicyTemplate]:
    """Fresh copies of the built-in templates, keyed by id."""
    templates = [_security_standard(), _license_compliance(), _maintenance_policy()]
    return {t.id: t for t in templates}
