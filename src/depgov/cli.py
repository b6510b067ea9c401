"""Command-line interface for depgov."""

import asyncio
import logging
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from depgov import __version__
from depgov.config import DEFAULT_TENANT, EVENT_WEBHOOK_URL
from depgov.db.session import init_db, make_session_factory
from depgov.events import CompositePublisher, EventBus, HttpEventPublisher, LoggingPublisher, to_json
from depgov.exceptions import DuplicateRecordError, NotFoundError, PolicyValidationError
from depgov.inventory.loader import load_business_context, load_inventory
from depgov.policy.loader import load_policies
from depgov.policy.models import EvaluationContext, EvaluationStatus
from depgov.policy.service import PolicyService
from depgov.policy.templates import builtin_templates
from depgov.scoring.engine import RiskAssessmentService
from depgov.scoring.factors import RiskLevel
from depgov.store.factory import memory_stores, sql_stores

app = typer.Typer(
    name="depgov",
    help="Dependency risk scoring and policy enforcement",
    add_completion=False,
)
console = Console()

LEVEL_COLORS = {
    RiskLevel.CRITICAL: "red",
    RiskLevel.HIGH: "orange1",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.LOW: "green",
    RiskLevel.MINIMAL: "green",
}

STATUS_COLORS = {
    EvaluationStatus.VIOLATION: "red",
    EvaluationStatus.WARNING: "yellow",
    EvaluationStatus.EXCEPTION: "cyan",
    EvaluationStatus.COMPLIANT: "green",
    EvaluationStatus.SKIPPED: "dim",
}


def version_callback(value: bool):
    if value:
        console.print(f"depgov version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Log engine events"),
):
    """depgov - Dependency risk governance."""
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")


def _publisher():
    publishers = [EventBus(), LoggingPublisher()]
    if EVENT_WEBHOOK_URL:
        publishers.append(HttpEventPublisher(EVENT_WEBHOOK_URL))
    return CompositePublisher(*publishers)


def _stores(persist: bool):
    return sql_stores(make_session_factory()) if persist else memory_stores()


@app.command()
def init():
    """Initialize the database."""
    console.print("Initializing database...")
    init_db()
    console.print("[green]Database initialized successfully[/green]")


@app.command()
def templates():
    """List the built-in policy templates."""
    table = Table(title="Policy Templates")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Category", style="magenta")
    table.add_column("Rules", justify="right")

    for template in builtin_templates().values():
        table.add_row(template.id, template.name, template.category, str(len(template.rules)))
    console.print(table)


@app.command()
def assess(
    inventory_file: str = typer.Argument(..., help="YAML/JSON dependency inventory"),
    context_file: Optional[str] = typer.Option(None, "--context", "-c", help="Business context file"),
    tenant: str = typer.Option(DEFAULT_TENANT, "--tenant", "-t", help="Tenant id"),
    persist: bool = typer.Option(False, "--persist", help="Store results in the configured database"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Calculate risk assessments for every dependency in an inventory."""
    try:
        inventory = load_inventory(inventory_file)
        context = load_business_context(context_file, tenant) if context_file else None
    except (OSError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(2)

    stores = _stores(persist)
    service = RiskAssessmentService(
        assessments=stores.assessments,
        contexts=stores.contexts,
        criteria=stores.criteria,
        publisher=_publisher(),
    )
    if context is not None:
        service.set_business_context(context)

    assessments = [
        service.assess_risk(dep, inventory.vulnerabilities_for(dep), tenant) for dep in inventory.dependencies
    ]
    queue = service.prioritize_risk_assessments(assessments, tenant)

    if output_json:
        typer.echo(to_json({"assessments": assessments, "priorities": queue}))
        return

    table = Table(title=f"Risk Assessments ({tenant})")
    table.add_column("Dependency", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Level")
    table.add_column("Priority", justify="right")
    table.add_column("Action")
    table.add_column("Timeline")

    by_id = {a.id: a for a in assessments}
    for item in queue:
        level = by_id[item.assessment_id].risk_level
        color = LEVEL_COLORS[level]
        table.add_row(
            item.dependency.id,
            str(item.risk_score),
            f"[{color}]{level.semaphore} {level.value}[/{color}]",
            str(item.priority),
            item.recommended_action,
            item.timeline,
        )
    console.print(table)


@app.command()
def evaluate(
    inventory_file: str = typer.Argument(..., help="YAML/JSON dependency inventory"),
    policies_file: Optional[str] = typer.Option(None, "--policies", "-p", help="Policy definitions file"),
    template_ids: Optional[List[str]] = typer.Option(None, "--template", help="Built-in template id (repeatable)"),
    environment: Optional[str] = typer.Option(None, "--environment", "-e", help="Target environment"),
    project: Optional[str] = typer.Option(None, "--project", help="Project name"),
    tenant: str = typer.Option(DEFAULT_TENANT, "--tenant", "-t", help="Tenant id"),
    persist: bool = typer.Option(False, "--persist", help="Store results in the configured database"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Evaluate an inventory against policies. Exits 1 when anything is blocked."""
    stores = _stores(persist)
    publisher = _publisher()
    risk = RiskAssessmentService(
        assessments=stores.assessments, contexts=stores.contexts, criteria=stores.criteria, publisher=publisher
    )
    service = PolicyService(
        policies=stores.policies,
        violations=stores.violations,
        evaluations=stores.evaluations,
        update_strategies=stores.update_strategies,
        publisher=publisher,
    )

    try:
        inventory = load_inventory(inventory_file)
        if policies_file:
            for policy in load_policies(policies_file):
                service.apply_policy(tenant, policy)
        for template_id in template_ids or ([] if policies_file else list(builtin_templates())):
            service.ensure_template_policy(tenant, template_id)
    except PolicyValidationError as e:
        console.print("[red]Invalid policy:[/red]")
        for error in e.errors:
            console.print(f"  - {error}")
        raise typer.Exit(2)
    except (OSError, ValueError, NotFoundError, DuplicateRecordError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(2)

    context = EvaluationContext(project=project, environment=environment, vulnerabilities=dict(inventory.vulnerabilities))
    for dep in inventory.dependencies:
        context.assessments[dep.id] = risk.assess_risk(dep, inventory.vulnerabilities_for(dep), tenant)

    result = asyncio.run(service.evaluate_policies(inventory.dependencies, tenant, context))

    if output_json:
        typer.echo(to_json(result))
    else:
        _display_result(result)

    if result.blocked:
        raise typer.Exit(1)


def _display_result(result):
    summary = result.summary
    color = "red" if result.blocked else ("yellow" if result.warning_dependencies else "green")
    headline = (
        f"[bold {color}]{result.evaluated_dependencies}/{result.total_dependencies} evaluated, "
        f"{summary.violations_detected} violations, {summary.blocked_dependencies} blocked[/bold {color}]"
    )
    console.print(Panel(headline, title=f"[bold]Evaluation {result.evaluation_id}[/bold]", border_style=color))

    table = Table(title="Dependencies")
    table.add_column("Dependency", style="cyan")
    table.add_column("Status")
    table.add_column("Rules", justify="right")
    table.add_column("Findings")

    for evaluation in result.evaluations:
        status_color = STATUS_COLORS[evaluation.status]
        findings = [v.message for v in evaluation.violations + evaluation.warnings]
        table.add_row(
            evaluation.dependency_id,
            f"[{status_color}]{evaluation.status.value}[/{status_color}]",
            f"{evaluation.rules_triggered}/{evaluation.rules_evaluated}",
            "\n".join(findings),
        )
    console.print(table)

    if result.errors:
        console.print("\n[bold]Skipped:[/bold]")
        for dependency_id, error in result.errors.items():
            console.print(f"  [red]{dependency_id}[/red]: {error}")


if __name__ == "__main__":
    app()
