"""
Console reports for crdwise.

Renders plans, CRD diffs, lint findings, operation results and ownership
records with Rich.

Design Principles:
    - Status at a glance: Use icons and colors for status
    - Progressive detail: Summary first, details with --verbose
    - Consistent formatting: Predictable layout across runs
"""

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from crdwise.crd.analyzer import ChangeSeverity, CrdChange, count_by_severity, max_severity
from crdwise.crd.strategy import Decision
from crdwise.engine import OperationResult, StepResult
from crdwise.pack.detection import LintIssue, LintSeverity
from crdwise.planner.plan import InstallationPlan, PlanAction
from crdwise.policy.ownership import OwnershipRecord
from crdwise.schema import OperationStatus, StepStatus


# Status icons
ICON_SUCCESS = "[green]✓[/green]"
ICON_ERROR = "[red]✗[/red]"
ICON_SKIPPED = "[yellow]⊘[/yellow]"
ICON_PENDING = "[dim]○[/dim]"

STATUS_ICONS = {
    StepStatus.SUCCEEDED: ICON_SUCCESS,
    StepStatus.UNCHANGED: "[green]=[/green]",
    StepStatus.SKIPPED: ICON_SKIPPED,
    StepStatus.FAILED: ICON_ERROR,
    StepStatus.CANCELLED: "[red]⊘[/red]",
    StepStatus.PENDING: ICON_PENDING,
}

SEVERITY_STYLES = {
    ChangeSeverity.SAFE: "green",
    ChangeSeverity.WARNING: "yellow",
    ChangeSeverity.DANGEROUS: "red",
}

LINT_STYLES = {
    LintSeverity.INFO: "cyan",
    LintSeverity.WARNING: "yellow",
    LintSeverity.ERROR: "red",
}


def _truncate(s: str, max_len: int) -> str:
    """Truncate a string with ellipsis."""
    if len(s) <= max_len:
        return s
    return s[: max_len - 3] + "..."


# =============================================================================
# Plans
# =============================================================================


def print_plan(plan: InstallationPlan, console: Console | None = None) -> None:
    """Print a plan as a table grouped by tier."""
    console = console or Console()

    header = Text()
    header.append(f" {plan.operation.value.capitalize()} ", style="bold")
    header.append(plan.root_pack, style="bold cyan")
    header.append(" │ ", style="dim")
    header.append(f"release {plan.release}", style="bold")
    header.append(" │ ", style="dim")
    header.append(f"{len(plan.steps)} steps, {len(plan.tiers)} tiers")
    console.print(Panel(header, expand=False))

    if not plan.steps:
        console.print("[dim]Nothing to do.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", expand=True)
    table.add_column("#", style="dim", width=4, justify="right")
    table.add_column("Tier", width=4, justify="right")
    table.add_column("Action", style="cyan", width=14)
    table.add_column("Target", overflow="fold")
    table.add_column("Pack", width=14)
    table.add_column("Details", overflow="fold")

    for step in plan.steps:
        details = []
        if step.policy is not None:
            details.append(step.policy.value)
        if step.location is not None:
            details.append(step.location.describe())
        if step.action == PlanAction.APPLY_CRD and step.strategy is not None:
            details.append(f"strategy={step.strategy.value}")
        if step.action == PlanAction.WAIT_CRD:
            details.append("skip wait" if step.skip_wait else f"timeout {step.wait_timeout_seconds:g}s")
        if step.category is not None:
            details.append(step.category.value)
        if not step.crd_known:
            details.append("[yellow]CRD not in release[/yellow]")
        table.add_row(
            str(step.index + 1),
            str(step.tier),
            step.action.value,
            step.target,
            step.pack,
            ", ".join(details),
        )

    console.print(table)


# =============================================================================
# CRD Diffs
# =============================================================================


def print_changes(
    crd_name: str,
    changes: list[CrdChange],
    decision: Decision | None = None,
    console: Console | None = None,
) -> None:
    """Print the schema changes for one CRD."""
    console = console or Console()

    if not changes:
        console.print(f"[green]✓[/green] [bold]{crd_name}[/bold]: no changes")
        return

    severity = max_severity(changes)
    style = SEVERITY_STYLES[severity]
    console.print(f"{severity.icon} [bold]{crd_name}[/bold]: [{style}]{severity.value}[/{style}]")

    for change in changes:
        change_style = SEVERITY_STYLES[change.severity]
        console.print(
            f"  [{change_style}]{change.prefix} {change.kind.value}[/{change_style}] "
            f"{escape(change.description)}"
        )
        console.print(f"    [dim]{escape(change.dotted_path)}[/dim]")

    counts = count_by_severity(changes)
    console.print(
        f"  [dim]{counts[ChangeSeverity.DANGEROUS]} dangerous, "
        f"{counts[ChangeSeverity.WARNING]} warning, "
        f"{counts[ChangeSeverity.SAFE]} safe[/dim]"
    )
    if decision is not None:
        action_style = "red" if not decision.proceeds else ("yellow" if decision.warns else "green")
        console.print(f"  [{action_style}]{decision.action.value}[/{action_style}]: {escape(decision.reason)}")


# =============================================================================
# Lint
# =============================================================================


def print_lint(issues: list[LintIssue], console: Console | None = None) -> None:
    """Print lint findings."""
    console = console or Console()

    if not issues:
        console.print("[green]✓[/green] No CRD issues found")
        return

    table = Table(show_header=True, header_style="bold", expand=True)
    table.add_column("Severity", width=8)
    table.add_column("Code", style="cyan", width=26)
    table.add_column("Location", overflow="fold")
    table.add_column("Message", overflow="fold")

    for issue in issues:
        style = LINT_STYLES[issue.severity]
        message = escape(issue.message)
        if issue.suggestion:
            message += f"\n[dim]{escape(issue.suggestion)}[/dim]"
        table.add_row(
            f"[{style}]{issue.severity.value}[/{style}]",
            issue.code.value,
            f"{issue.pack}:{issue.path}",
            message,
        )

    console.print(table)


# =============================================================================
# Operation Results
# =============================================================================


def print_result(result: OperationResult, console: Console | None = None, verbose: bool = False) -> None:
    """Print an operation result: header, step table, changes and summary."""
    console = console or Console()
    plan = result.plan

    if result.status == OperationStatus.COMPLETED:
        status_style, icon = "green", ICON_SUCCESS
    elif result.status == OperationStatus.CANCELLED:
        status_style, icon = "yellow", ICON_SKIPPED
    else:
        status_style, icon = "red", ICON_ERROR

    header = Text()
    header.append(f" {plan.operation.value.capitalize()} ", style="bold")
    header.append(plan.root_pack, style="bold cyan")
    if result.operation_id:
        header.append(" │ ", style="dim")
        header.append(result.operation_id, style="cyan")
    header.append(" │ ", style="dim")
    header.append(result.status.value.upper(), style=f"bold {status_style}")
    header.append(f" {icon}")
    console.print(Panel(header, expand=False))

    table = Table(show_header=True, header_style="bold", show_lines=verbose, expand=True)
    table.add_column("#", style="dim", width=4, justify="right")
    table.add_column("Status", width=6, justify="center")
    table.add_column("Action", style="cyan", width=14)
    table.add_column("Target", overflow="fold")
    table.add_column("Duration", justify="right", width=10)
    table.add_column("Details", overflow="fold")

    for step_result in result.steps:
        duration = f"{step_result.duration_ms:.1f}ms" if step_result.started_at else "—"
        table.add_row(
            str(step_result.index + 1),
            STATUS_ICONS[step_result.status],
            step_result.action.value,
            step_result.target,
            duration,
            _format_details(step_result, verbose),
        )
    console.print(table)

    for step_result in result.steps:
        if step_result.changes and (verbose or step_result.status == StepStatus.FAILED):
            console.print()
            print_changes(step_result.target, step_result.changes, step_result.decision, console)

    console.print()
    console.print(
        f"  [bold]Steps:[/bold] {len(result.steps)} total, "
        f"[green]{result.completed_steps} completed[/green], "
        f"[red]{result.failed_steps} failed[/red], "
        f"[dim]{result.pending_steps} pending[/dim]"
    )
    console.print(f"  [bold]Duration:[/bold] {result.duration_ms / 1000:.2f}s")
    if result.error is not None and result.error.suggestion:
        console.print(f"  [yellow]Suggestion:[/yellow] {escape(result.error.suggestion)}")


def _format_details(result: StepResult, verbose: bool) -> str:
    """Format the details column for a step."""
    parts = []
    if result.status == StepStatus.FAILED and result.error is not None:
        parts.append(f"[red]{escape(_truncate(result.error.message, 100))}[/red]")
    elif result.reason:
        parts.append(escape(result.reason))
    if result.decision is not None and result.decision.warns:
        parts.append(f"[yellow]{escape(result.decision.reason)}[/yellow]")
    if result.wait is not None and verbose:
        history = " → ".join(state.value for state in result.wait.history)
        parts.append(f"[dim]{history} ({result.wait.polls} polls)[/dim]")
    if result.impact is not None:
        parts.append(f"{result.impact.count} live instance(s)")
    return "\n".join(parts)


# =============================================================================
# Ownership
# =============================================================================


def print_owners(records: list[OwnershipRecord], console: Console | None = None) -> None:
    """Print CRD ownership records."""
    console = console or Console()

    if not records:
        console.print("[dim]No CRD ownership records.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", expand=True)
    table.add_column("CRD", style="cyan", overflow="fold")
    table.add_column("Kind")
    table.add_column("Release", style="bold")
    table.add_column("Policy")
    table.add_column("Digest", style="dim", width=14)
    table.add_column("Updated", style="dim")

    for record in records:
        table.add_row(
            record.crd_name,
            record.identity.key,
            record.owner,
            record.policy.value,
            record.digest[:12],
            record.updated_at,
        )

    console.print(table)
