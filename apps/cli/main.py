"""CLI application for Pastoralist."""

import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.prompt import Prompt
from rich.table import Table

from pastoralist.config import load_settings
from pastoralist.errors import PastoralistError
from pastoralist.models import Decision, RunResult, Severity, WritePlanEntry
from pastoralist.runner import run
from pastoralist.workspaces import AUTO_DETECT

console = Console()

SEVERITY_STYLES = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "dim",
}


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def prompt_decision(entry: WritePlanEntry) -> Decision:
    """Ask on the terminal whether to apply one proposed pin."""
    alert = entry.alert
    console.print(
        f"\n[bold]{entry.package}[/bold] {entry.from_version or '?'} -> "
        f"[green]{entry.to_version}[/green] ({entry.mechanism.field} in {entry.manifest})"
    )
    if alert is not None:
        console.print(f"  {escape(alert.title)} [{SEVERITY_STYLES[alert.severity]}]{alert.severity.value}[/]")
    choice = Prompt.ask("Apply this override?", choices=["accept", "reject", "edit"], default="accept")
    if choice == "edit":
        return Decision.edit(Prompt.ask("Reason", default=entry.reason))
    if choice == "reject":
        return Decision.reject()
    return Decision.accept()


def build_overrides(
    workspaces: list[str] | None,
    ignore: list[str] | None,
    no_dev: bool,
    security: bool,
    providers: list[str] | None,
    token: str | None,
    severity: str | None,
    timeout: float | None,
    osv_database: Path | None,
    interactive: bool,
    force: bool,
    dry_run: bool,
) -> dict:
    """Settings overrides for the options that were actually given."""
    overrides: dict = {}
    if workspaces:
        if len(workspaces) == 1 and workspaces[0] in AUTO_DETECT:
            overrides["workspaces"] = workspaces[0]
        else:
            overrides["workspaces"] = list(workspaces)
    if ignore:
        overrides["ignore"] = list(ignore)
    if no_dev:
        overrides["include_dev"] = False
    for key, value in (("interactive", interactive), ("force", force), ("dry_run", dry_run)):
        if value:
            overrides[key] = True

    sec: dict = {}
    if security:
        sec["enabled"] = True
    if providers:
        sec["providers"] = [{"name": name.lower(), "token": token} for name in providers]
    if severity:
        sec["severity_threshold"] = severity.lower()
    if timeout is not None:
        sec["timeout"] = timeout
    if osv_database is not None:
        sec["osv_database"] = osv_database
    if sec:
        overrides["security"] = sec
    return overrides


def format_json_output(result: RunResult) -> str:
    """Format JSON output."""
    report: dict = {
        "manifests": [str(path) for path in result.manifests],
        "changed": [str(path) for path in result.changed],
        "written": result.written,
        "dry_run": result.dry_run,
        "removed": [
            {"manifest": str(d.manifest), "override": d.entry.key, "field": d.entry.mechanism.field}
            for d in result.deletions
        ],
        "proposed": [
            {
                "manifest": str(e.manifest),
                "package": e.package,
                "from": e.from_version,
                "to": e.to_version,
                "field": e.mechanism.field,
                "reason": e.reason,
            }
            for e in result.proposed.entries
        ],
        "applied": [
            {"package": e.package, "to": e.to_version, "reason": e.reason}
            for e in result.applied.entries
        ],
        "errors": {str(path): message for path, message in result.errors.items()},
        "unused_patches": list(result.unused_patches),
    }
    if result.scan is not None:
        report["security"] = {
            "threshold": result.scan.threshold.value,
            "no_data": result.scan.no_data,
            "providers": [
                {"name": r.provider, "status": r.status, "alerts": len(r.alerts), "message": r.message}
                for r in result.scan.results
            ],
            "alerts": [
                {
                    "package": a.package_name,
                    "current_version": a.current_version,
                    "severity": a.severity.value,
                    "title": a.title,
                    "cve": a.cve,
                    "patched_version": a.patched_version,
                    "url": a.url,
                    "sources": a.sources,
                }
                for a in result.scan.alerts
            ],
        }
    return json.dumps(report, indent=2)


def print_text_report(result: RunResult) -> None:
    """Print a human readable summary of a run."""
    for deletion in result.deletions:
        console.print(
            f"Removed unused override [bold]{deletion.entry.key}[/bold] "
            f"from {deletion.entry.mechanism.field} in {deletion.manifest}"
        )

    scan = result.scan
    if scan is not None:
        if scan.no_data:
            console.print("Security check: no data available", style="yellow")
        elif scan.alerts:
            table = Table(title=f"Security alerts (>= {scan.threshold.value})")
            table.add_column("Package", style="cyan", no_wrap=True)
            table.add_column("Version")
            table.add_column("Severity")
            table.add_column("Title")
            table.add_column("Fix", style="green")
            table.add_column("Sources")
            for alert in scan.alerts:
                table.add_row(
                    alert.package_name,
                    alert.current_version,
                    f"[{SEVERITY_STYLES[alert.severity]}]{alert.severity.value}[/]",
                    escape(f"{alert.title} ({alert.cve})" if alert.cve else alert.title),
                    alert.patched_version or "-",
                    ", ".join(alert.sources),
                )
            console.print(table)
        else:
            console.print("Security check: no vulnerabilities found", style="green")

        if result.proposed and not result.applied:
            console.print("Proposed overrides (use --force or --interactive to apply):")
            for entry in result.proposed.entries:
                console.print(
                    f"  {entry.package}: {entry.from_version or '?'} -> {entry.to_version}"
                )
        for entry in result.applied.entries:
            verb = "Would pin" if result.dry_run else "Pinned"
            console.print(f"{verb} [bold]{entry.package}[/bold] to {entry.to_version}")

    if result.unused_patches:
        console.print(
            f"Found {len(result.unused_patches)} potentially unused patch file(s):", style="yellow"
        )
        for patch in result.unused_patches:
            console.print(f"  - {escape(patch)}")

    for message in result.errors.values():
        console.print(f"Error: {message}", style="red")

    if result.dry_run:
        if result.changed:
            console.print("Dry run: would update " + ", ".join(str(p) for p in result.changed))
        else:
            console.print("Dry run: no changes")
    elif result.written:
        for path in result.changed:
            console.print(f"Updated {path}")
    elif not result.errors:
        console.print("Overrides and appendix are up to date")


app = typer.Typer(
    name="pastoralist",
    help="Pastoralist - Keep package.json overrides documented, pruned and patched",
    add_completion=False,
)


@app.command()
def main(
    root: Path = typer.Option(Path("."), "--root", help="Directory holding the root package.json"),
    workspaces: list[str] | None = typer.Option(
        None, "--workspaces", "--dep-paths", help="Workspace glob, or 'workspace' to read package.json workspaces"
    ),
    ignore: list[str] | None = typer.Option(None, "--ignore", help="Glob of manifests to skip"),
    no_dev: bool = typer.Option(False, "--no-dev", help="Do not count devDependencies as dependents"),
    security: bool = typer.Option(False, "--security", help="Run security providers"),
    providers: list[str] | None = typer.Option(None, "--provider", help="osv, github, snyk or socket"),
    token: str | None = typer.Option(None, "--token", help="Credential for the selected providers"),
    severity: str | None = typer.Option(None, "--severity", help="Minimum severity: low, medium, high, critical"),
    timeout: float | None = typer.Option(None, "--timeout", help="Per-provider timeout in seconds"),
    osv_database: Path | None = typer.Option(None, "--osv-database", help="Offline OSV records (file or directory)"),
    interactive: bool = typer.Option(False, "--interactive", help="Confirm each proposed override"),
    force: bool = typer.Option(False, "--force", help="Apply every proposed override"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show changes without writing"),
    format_type: str = typer.Option("text", "--format", help="Output format: text or json"),
    debug: bool = typer.Option(False, "--debug", help="Verbose logging"),
) -> None:
    """Pastoralist - Reconcile overrides, appendix and security pins."""
    configure_logging(debug)

    try:
        overrides = build_overrides(
            workspaces, ignore, no_dev, security, providers, token,
            severity, timeout, osv_database, interactive, force, dry_run,
        )
        settings = load_settings(root, overrides)
        if token and not providers:
            for provider in settings.security.providers:
                provider.token = provider.token or token

        result = run(settings, decide=prompt_decision)

        if format_type == "json":
            typer.echo(format_json_output(result))
        else:
            print_text_report(result)
        raise typer.Exit(result.exit_code)

    except typer.Exit:
        raise
    except PastoralistError as e:
        console.print(f"Error: {e}", style="red")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
