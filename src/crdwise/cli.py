"""
CLI entry point for crdwise.

This module provides the Typer-based command-line interface for crdwise.

Commands:
    plan        Show the installation plan for a pack
    diff        Show CRD schema changes against the cluster
    lint        Check the CRD layout of a pack
    install     Install a pack
    upgrade     Upgrade a release
    uninstall   Uninstall a release (CRDs are kept unless --delete-crds)
    owners      List CRD ownership records
    history     List recorded operations

Architecture Note:
    The CLI is intentionally thin - it parses arguments and delegates to the
    planner and engine. Exit code 0 means success, 1 means the operation
    failed or was blocked.
"""

import asyncio
import json
import logging
import traceback
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from crdwise import __version__
from crdwise.cluster import CRD_API_VERSION, ClusterClient, KubeHttpClient
from crdwise.crd import UpdateStrategy, analyze, parse
from crdwise.engine import Engine, OperationResult
from crdwise.errors import CrdwiseError
from crdwise.pack import Pack, lint_crds, load_pack
from crdwise.pack.detection import LintSeverity
from crdwise.planner import DependencyGraph, InstallationPlan, PlanAction, plan, plan_uninstall
from crdwise.policy import DEFAULT_NAMESPACE
from crdwise.protection import ConfirmationToken
from crdwise.report import (
    changes_to_dict,
    lint_to_dict,
    owners_to_dict,
    plan_to_dict,
    print_changes,
    print_lint,
    print_owners,
    print_plan,
    print_result,
    result_to_dict,
    to_json,
)
from crdwise.schema import CRD_KIND, EngineConfig, OperationKind, load_engine_config
from crdwise.store import StateDB

# Initialize Typer app with metadata
app = typer.Typer(
    name="crdwise",
    help="Install packs with safe, ordered CRD lifecycle management.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console()

DEFAULT_STATE = Path("crdwise.db")


# =============================================================================
# Shared Options
# =============================================================================

PackArg = Annotated[
    Path,
    typer.Argument(help="Path to the pack directory.", exists=True, file_okay=False, resolve_path=True),
]
ReleaseOpt = Annotated[str, typer.Option("--release", "-r", help="Release name.")]
NamespaceOpt = Annotated[Optional[str], typer.Option("--namespace", "-n", help="Release namespace.")]
ValuesOpt = Annotated[
    Optional[Path],
    typer.Option("--values", "-f", help="Values YAML overlaid on values.yaml.", exists=True, dir_okay=False),
]
ConfigOpt = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Engine configuration YAML.", exists=True, dir_okay=False),
]
StateOpt = Annotated[Path, typer.Option("--state", help="Path to the crdwise state database.")]
KubeUrlOpt = Annotated[
    Optional[str],
    typer.Option("--kube-url", envvar="KUBE_API_URL", help="Kubernetes API server URL."),
]
TokenOpt = Annotated[
    Optional[str],
    typer.Option("--token", envvar="KUBE_TOKEN", help="Bearer token for the API server."),
]
InsecureOpt = Annotated[bool, typer.Option("--insecure", help="Skip TLS verification.")]
ForceOpt = Annotated[
    bool,
    typer.Option("--force-crd-update", help="Apply CRD updates even when they contain dangerous changes."),
]
SkipOpt = Annotated[bool, typer.Option("--skip-crd-update", help="Never update CRDs that already exist.")]
JsonOpt = Annotated[bool, typer.Option("--json", help="Output results in JSON format.")]
VerboseOpt = Annotated[bool, typer.Option("--verbose", help="Enable verbose output.")]
DebugOpt = Annotated[bool, typer.Option("--debug", help="Enable debug mode with full error tracebacks.")]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]crdwise[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    crdwise - CRD lifecycle engine for pack installs.

    Orders CRDs before the resources that use them, waits for them to be
    established, diffs schema changes before updates and protects CRDs with
    live instances from deletion.
    """
    pass


# =============================================================================
# Helpers
# =============================================================================


def _configure_logging(verbose: bool, debug: bool) -> None:
    if not (verbose or debug):
        return
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _output_json_error(error_type: str, message: str, include_traceback: bool = False, **extra: Any) -> None:
    """Output an error in JSON format."""
    output = {
        "error": True,
        "error_type": error_type,
        "message": message,
        **extra,
    }
    if include_traceback:
        output["traceback"] = traceback.format_exc()
    print(json.dumps(output, indent=2, default=str))


def _fail(e: Exception, json_output: bool, debug: bool) -> None:
    """Report an error and exit with code 1."""
    if json_output:
        if isinstance(e, CrdwiseError):
            _output_json_error(type(e).__name__, e.message, debug, code=e.code, context=e.context)
        else:
            _output_json_error(type(e).__name__, str(e), debug)
    else:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        if debug:
            console.print(f"[dim]{escape(traceback.format_exc())}[/dim]")
    raise typer.Exit(code=1)


def _load_values(values_path: Path | None) -> dict[str, Any]:
    if values_path is None:
        return {}
    data = yaml.safe_load(values_path.read_text())
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise typer.BadParameter("values file must contain a mapping", param_hint="--values")
    return data


def _load_config(config_path: Path | None) -> EngineConfig:
    if config_path is None:
        return EngineConfig()
    try:
        return load_engine_config(config_path)
    except (yaml.YAMLError, ValidationError) as e:
        raise typer.BadParameter(f"invalid engine configuration: {e}", param_hint="--config") from e


def _load(pack_path: Path, values_path: Path | None, release: str, namespace: str | None) -> Pack:
    return load_pack(pack_path, values=_load_values(values_path), release=release, namespace=namespace)


def _make_client(kube_url: str | None, token: str | None, insecure: bool) -> ClusterClient:
    if not kube_url:
        raise typer.BadParameter("an API server URL is required (--kube-url or KUBE_API_URL)", param_hint="--kube-url")
    return KubeHttpClient(kube_url, token=token, verify=not insecure)


async def _diff_crds(
    client: ClusterClient,
    installation: InstallationPlan,
    config: EngineConfig,
) -> list[dict[str, Any]]:
    """Analyze every ApplyCrd step of a plan against the cluster, deciding as the engine would."""
    diffs = []
    async with client:
        for step in installation.steps_for(PlanAction.APPLY_CRD):
            existing = await client.get(CRD_KIND, step.crd_name, api_version=CRD_API_VERSION)
            incoming = parse(step.manifest.body)
            changes = analyze(parse(existing), incoming) if existing is not None else []
            strategy = step.strategy or config.strategy
            diffs.append({
                "crd_name": step.crd_name,
                "exists": existing is not None,
                "changes": changes,
                "decision": strategy.decide(changes) if existing is not None else None,
            })
    return diffs


async def _execute(
    client: ClusterClient,
    state: Path,
    config: EngineConfig,
    installation: InstallationPlan,
    tokens: list[ConfirmationToken] | None = None,
) -> OperationResult:
    async with client:
        with StateDB(state) as db:
            engine = Engine(client, store=db, config=config)
            return await engine.run(installation, tokens=tokens)


def _report_result(result: OperationResult, json_output: bool, verbose: bool, show_crd_diff: bool = False) -> None:
    if json_output:
        print(to_json(result_to_dict(result)))
    else:
        print_result(result, console, verbose=verbose)
        if show_crd_diff and not verbose:
            for step_result in result.steps:
                if step_result.changes and step_result.status.completed:
                    console.print()
                    print_changes(step_result.target, step_result.changes, step_result.decision, console)
    if not result.success:
        raise typer.Exit(code=1)


# =============================================================================
# Commands
# =============================================================================


@app.command("plan")
def plan_command(
    pack_path: PackArg,
    release: ReleaseOpt = "release",
    namespace: NamespaceOpt = None,
    values: ValuesOpt = None,
    config_path: ConfigOpt = None,
    uninstall: Annotated[bool, typer.Option("--uninstall", help="Show the CRD deletion plan instead.")] = False,
    force_crd_update: ForceOpt = False,
    skip_crd_update: SkipOpt = False,
    json_output: JsonOpt = False,
    verbose: VerboseOpt = False,
    debug: DebugOpt = False,
) -> None:
    """
    Show the installation plan for a pack.

    Example:
        $ crdwise plan ./charts/widgets --release demo
    """
    _configure_logging(verbose, debug)
    try:
        pack = _load(pack_path, values, release, namespace)
        graph = DependencyGraph.from_pack(pack)
        if uninstall:
            installation = plan_uninstall(pack, graph, release=release, namespace=namespace or DEFAULT_NAMESPACE)
        else:
            strategy = None
            if force_crd_update or skip_crd_update:
                strategy = UpdateStrategy.from_options(skip=skip_crd_update, force=force_crd_update)
            installation = plan(
                pack,
                graph,
                release=release,
                config=_load_config(config_path),
                strategy=strategy,
                namespace=namespace or DEFAULT_NAMESPACE,
            )
    except CrdwiseError as e:
        _fail(e, json_output, debug)

    if json_output:
        print(to_json(plan_to_dict(installation)))
    else:
        print_plan(installation, console)


@app.command()
def diff(
    pack_path: PackArg,
    release: ReleaseOpt = "release",
    namespace: NamespaceOpt = None,
    values: ValuesOpt = None,
    config_path: ConfigOpt = None,
    kube_url: KubeUrlOpt = None,
    token: TokenOpt = None,
    insecure: InsecureOpt = False,
    force_crd_update: ForceOpt = False,
    skip_crd_update: SkipOpt = False,
    json_output: JsonOpt = False,
    verbose: VerboseOpt = False,
    debug: DebugOpt = False,
) -> None:
    """
    Show CRD schema changes between a pack and the cluster.

    Each change is classified safe, warning or dangerous, and the decision
    the update strategy would make is shown.

    Example:
        $ crdwise diff ./charts/widgets --kube-url https://127.0.0.1:6443
    """
    _configure_logging(verbose, debug)
    try:
        pack = _load(pack_path, values, release, namespace)
        strategy = None
        if force_crd_update or skip_crd_update:
            strategy = UpdateStrategy.from_options(skip=skip_crd_update, force=force_crd_update)
        config = _load_config(config_path)
        installation = plan(
            pack,
            release=release,
            config=config,
            strategy=strategy,
            namespace=namespace or DEFAULT_NAMESPACE,
        )
        client = _make_client(kube_url, token, insecure)
        diffs = asyncio.run(_diff_crds(client, installation, config))
    except CrdwiseError as e:
        _fail(e, json_output, debug)

    if json_output:
        print(to_json({
            "crds": [
                {**changes_to_dict(d["crd_name"], d["changes"], d["decision"]), "exists": d["exists"]}
                for d in diffs
            ],
        }))
        return

    if not diffs:
        console.print("[dim]Pack ships no CRDs.[/dim]")
    for d in diffs:
        if not d["exists"]:
            console.print(f"[green]+[/green] [bold]{d['crd_name']}[/bold]: new CRD")
        else:
            print_changes(d["crd_name"], d["changes"], d["decision"], console)


@app.command()
def lint(
    pack_path: PackArg,
    values: ValuesOpt = None,
    strict: Annotated[bool, typer.Option("--strict", help="Fail on warnings as well as errors.")] = False,
    json_output: JsonOpt = False,
    verbose: VerboseOpt = False,
    debug: DebugOpt = False,
) -> None:
    """
    Check the CRD layout of a pack and its dependencies.

    Exits with code 1 when an error is found (or a warning, with --strict).

    Example:
        $ crdwise lint ./charts/widgets
    """
    _configure_logging(verbose, debug)
    try:
        pack = _load(pack_path, values, "release", None)
        issues = lint_crds(pack)
    except CrdwiseError as e:
        _fail(e, json_output, debug)

    if json_output:
        print(to_json(lint_to_dict(issues)))
    else:
        print_lint(issues, console)

    failing = {LintSeverity.ERROR, LintSeverity.WARNING} if strict else {LintSeverity.ERROR}
    if any(issue.severity in failing for issue in issues):
        raise typer.Exit(code=1)


def _install_or_upgrade(
    operation: OperationKind,
    pack_path: Path,
    release: str,
    namespace: str | None,
    values: Path | None,
    config_path: Path | None,
    state: Path,
    kube_url: str | None,
    token: str | None,
    insecure: bool,
    force_crd_update: bool,
    skip_crd_update: bool,
    show_crd_diff: bool,
    json_output: bool,
    verbose: bool,
    debug: bool,
) -> None:
    _configure_logging(verbose, debug)
    try:
        config = _load_config(config_path)
        pack = _load(pack_path, values, release, namespace)
        strategy = None
        if force_crd_update or skip_crd_update:
            strategy = UpdateStrategy.from_options(skip=skip_crd_update, force=force_crd_update)
        installation = plan(
            pack,
            release=release,
            operation=operation,
            config=config,
            strategy=strategy,
            namespace=namespace or DEFAULT_NAMESPACE,
        )
        if verbose and not json_output:
            console.print(f"[dim]Planned {len(installation.steps)} steps in {len(installation.tiers)} tiers[/dim]")
        client = _make_client(kube_url, token, insecure)
        result = asyncio.run(_execute(client, state, config, installation))
    except CrdwiseError as e:
        _fail(e, json_output, debug)
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted; completed steps were kept.[/yellow]")
        raise typer.Exit(code=130)

    _report_result(result, json_output, verbose, show_crd_diff=show_crd_diff)


@app.command()
def install(
    pack_path: PackArg,
    release: ReleaseOpt = "release",
    namespace: NamespaceOpt = None,
    values: ValuesOpt = None,
    config_path: ConfigOpt = None,
    state: StateOpt = DEFAULT_STATE,
    kube_url: KubeUrlOpt = None,
    token: TokenOpt = None,
    insecure: InsecureOpt = False,
    force_crd_update: ForceOpt = False,
    skip_crd_update: SkipOpt = False,
    show_crd_diff: Annotated[bool, typer.Option("--show-crd-diff", help="Print CRD changes that were applied.")] = False,
    json_output: JsonOpt = False,
    verbose: VerboseOpt = False,
    debug: DebugOpt = False,
) -> None:
    """
    Install a pack.

    Example:
        $ crdwise install ./charts/widgets --release demo --kube-url https://127.0.0.1:6443
    """
    _install_or_upgrade(
        OperationKind.INSTALL, pack_path, release, namespace, values, config_path, state,
        kube_url, token, insecure, force_crd_update, skip_crd_update, show_crd_diff,
        json_output, verbose, debug,
    )


@app.command()
def upgrade(
    pack_path: PackArg,
    release: ReleaseOpt = "release",
    namespace: NamespaceOpt = None,
    values: ValuesOpt = None,
    config_path: ConfigOpt = None,
    state: StateOpt = DEFAULT_STATE,
    kube_url: KubeUrlOpt = None,
    token: TokenOpt = None,
    insecure: InsecureOpt = False,
    force_crd_update: ForceOpt = False,
    skip_crd_update: SkipOpt = False,
    show_crd_diff: Annotated[bool, typer.Option("--show-crd-diff", help="Print CRD changes that were applied.")] = False,
    json_output: JsonOpt = False,
    verbose: VerboseOpt = False,
    debug: DebugOpt = False,
) -> None:
    """
    Upgrade a release.

    CRD updates go through the update strategy: safe (default) aborts on
    dangerous changes, --force-crd-update applies them, --skip-crd-update
    leaves existing CRDs untouched.

    Example:
        $ crdwise upgrade ./charts/widgets --release demo --show-crd-diff
    """
    _install_or_upgrade(
        OperationKind.UPGRADE, pack_path, release, namespace, values, config_path, state,
        kube_url, token, insecure, force_crd_update, skip_crd_update, show_crd_diff,
        json_output, verbose, debug,
    )


@app.command()
def uninstall(
    pack_path: PackArg,
    release: ReleaseOpt = "release",
    namespace: NamespaceOpt = None,
    values: ValuesOpt = None,
    config_path: ConfigOpt = None,
    state: StateOpt = DEFAULT_STATE,
    kube_url: KubeUrlOpt = None,
    token: TokenOpt = None,
    insecure: InsecureOpt = False,
    delete_crds: Annotated[
        bool,
        typer.Option("--delete-crds", help="Delete managed CRDs (and every instance of them)."),
    ] = False,
    confirm_crd_deletion: Annotated[
        Optional[list[str]],
        typer.Option(
            "--confirm-crd-deletion",
            help="Confirm deleting a CRD that still has instances. Repeat per CRD.",
        ),
    ] = None,
    json_output: JsonOpt = False,
    verbose: VerboseOpt = False,
    debug: DebugOpt = False,
) -> None:
    """
    Uninstall a release.

    CRDs are kept by default and the release gives up ownership of them.
    With --delete-crds, managed CRDs are deleted; a CRD that still has
    instances is only deleted with --confirm-crd-deletion <name>.

    Example:
        $ crdwise uninstall ./charts/widgets --release demo --delete-crds
    """
    _configure_logging(verbose, debug)

    if not delete_crds:
        try:
            with StateDB(state) as db:
                released = db.list_owners(release)
                for record in released:
                    db.clear_owner(record.identity)
        except CrdwiseError as e:
            _fail(e, json_output, debug)
        if json_output:
            print(to_json({"release": release, "crds_deleted": [], "crds_released": [r.crd_name for r in released]}))
        else:
            console.print(f"[green]✓[/green] Release {release}: {len(released)} CRD(s) kept and released")
        return

    try:
        pack = _load(pack_path, values, release, namespace)
        installation = plan_uninstall(pack, release=release, namespace=namespace or DEFAULT_NAMESPACE)
        tokens = [ConfirmationToken.for_crd(name) for name in confirm_crd_deletion or []]
        client = _make_client(kube_url, token, insecure)
        result = asyncio.run(_execute(client, state, _load_config(config_path), installation, tokens))
    except CrdwiseError as e:
        _fail(e, json_output, debug)

    _report_result(result, json_output, verbose)


@app.command()
def owners(
    state: StateOpt = DEFAULT_STATE,
    release: Annotated[Optional[str], typer.Option("--release", "-r", help="Only this release.")] = None,
    json_output: JsonOpt = False,
) -> None:
    """
    List CRD ownership records.

    Example:
        $ crdwise owners --state crdwise.db
    """
    if not state.exists():
        console.print(f"[yellow]No state database found at {state}[/yellow]")
        raise typer.Exit(code=0)

    try:
        with StateDB(state) as db:
            records = db.list_owners(release)
    except CrdwiseError as e:
        _fail(e, json_output, False)

    if json_output:
        print(to_json(owners_to_dict(records)))
    else:
        print_owners(records, console)


@app.command()
def history(
    state: StateOpt = DEFAULT_STATE,
    release: Annotated[Optional[str], typer.Option("--release", "-r", help="Only this release.")] = None,
    limit: Annotated[int, typer.Option("--limit", "-l", help="Maximum number of operations to show.")] = 20,
    json_output: JsonOpt = False,
) -> None:
    """
    List recorded operations, most recent first.

    Example:
        $ crdwise history --release demo
    """
    if not state.exists():
        console.print(f"[yellow]No state database found at {state}[/yellow]")
        raise typer.Exit(code=0)

    with StateDB(state) as db:
        operations = db.list_operations(release=release, limit=limit)

    if json_output:
        print(to_json({"operations": [op.model_dump(mode="json") for op in operations]}))
        return

    if not operations:
        console.print("[dim]No operations found.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="cyan")
    table.add_column("Created")
    table.add_column("Operation")
    table.add_column("Release")
    table.add_column("Pack")
    table.add_column("Status", width=10)
    table.add_column("Steps", justify="right")
    table.add_column("Failed", justify="right")

    for op in operations:
        if op.status.value == "completed":
            status_display = "[green]completed[/green]"
        elif op.status.value == "failed":
            status_display = "[red]failed[/red]"
        else:
            status_display = f"[yellow]{op.status.value}[/yellow]"
        table.add_row(
            op.operation_id,
            op.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            op.operation.value,
            op.release,
            op.root_pack,
            status_display,
            f"{op.completed_steps}/{op.total_steps}",
            str(op.failed_steps),
        )

    console.print(table)


if __name__ == "__main__":
    app()
