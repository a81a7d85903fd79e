"""spine CLI — the main entry point for the local package link manager."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from spine import __version__
from spine.errors import SpineError, StoreCorruptedError

console = Console()

VERDICT_STYLE = {
    "healthy": "green",
    "version_drift": "yellow",
    "not_linked": "dim",
    "broken_symlink": "red",
    "invalid_descriptor": "red",
    "missing_source": "red",
}

ACTION_MARK = {
    "linked": "[green]+[/]",
    "relinked": "[green]~[/]",
    "unchanged": "[dim]=[/]",
    "unlinked": "[yellow]-[/]",
    "pruned": "[yellow]x[/]",
    "adopted": "[cyan]+[/]",
    "refreshed": "[cyan]~[/]",
}


class CliState:
    """Settings, store and reconciler, loaded on first use."""

    def __init__(self, config_path: str | None, verbose: bool):
        from spine.config import load_settings
        from spine.logging_config import setup_logging

        self.settings = load_settings(config_path)
        level = logging.DEBUG if verbose else self.settings.log_level_number
        setup_logging(level=level, log_file=self.settings.log_file)
        self._reconciler = None

    @property
    def reconciler(self):
        if self._reconciler is None:
            from spine.config import open_store
            from spine.sync.reconciler import Reconciler

            self._reconciler = Reconciler(
                open_store(self.settings),
                dependency_dir=self.settings.dependency_dir,
                descriptor_name=self.settings.descriptor_name,
            )
        return self._reconciler

    @property
    def store(self):
        return self.reconciler.store

    def project(self, explicit: str | None) -> str:
        """The project to operate on: ``--project`` or the enclosing one."""
        if explicit:
            return explicit
        from spine.utils.project import resolve_current_project

        context = resolve_current_project(
            manifest_names=self.settings.manifest_names,
            dependency_dir=self.settings.dependency_dir,
        )
        return str(context.root_path)


class SpineGroup(click.Group):
    """Reports spine errors as messages instead of tracebacks."""

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except StoreCorruptedError as e:
            console.print(f"[bold red]Fatal:[/] {escape(str(e))}", soft_wrap=True)
            console.print("  Fix or move the file by hand; spine will not reset it.")
            ctx.exit(2)
        except SpineError as e:
            _print_error(e)
            ctx.exit(1)


project_option = click.option(
    "--project", "-p", default=None, help="Project directory (default: enclosing project)"
)


@click.group(cls=SpineGroup)
@click.version_option(version=__version__)
@click.option("--config", "config_path", default=None, help="Path to config.yaml")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool):
    """spine — link local packages into projects without npm link.

    Keeps a registry of local packages and the projects they are linked
    into, and keeps the symlinks on disk in line with it.
    """
    ctx.obj = CliState(config_path, verbose)


# ── Registry ─────────────────────────────────────────────────────────


@main.command(name="list")
@click.pass_obj
def list_links(state: CliState):
    """List configured package links."""
    records = sorted(state.store.list(), key=lambda r: r.name)

    if not records:
        console.print("[yellow]No package links configured.[/]")
        return

    table = Table(title=f"Package Links ({len(records)})")
    table.add_column("Name", style="cyan")
    table.add_column("Version")
    table.add_column("Source")
    table.add_column("Projects", justify="right")

    for record in records:
        table.add_row(
            record.name,
            record.declared_version or "unknown",
            record.source_path,
            str(len(record.linked_projects)),
        )
    console.print(table)

    for record in records:
        for project in record.linked_projects:
            console.print(f"  [cyan]{record.name}[/] -> {project}")


@main.command()
@click.argument("package", required=False)
@click.argument("path", required=False, default=".")
@click.pass_obj
def add(state: CliState, package: str | None, path: str):
    """Add a package link.

    PACKAGE is read from the descriptor in PATH when omitted. PATH defaults
    to the current directory.
    """
    from spine.utils.descriptor import DescriptorError, read_descriptor

    source = Path(path)
    if not source.is_dir():
        raise click.BadParameter(f"Path does not exist: {path}", param_hint="PATH")
    source = source.resolve()

    try:
        descriptor = read_descriptor(source, state.settings.descriptor_name)
    except DescriptorError as e:
        descriptor = None
        if package is None:
            raise click.UsageError(
                f"Could not detect package name in {source} ({e}). "
                "Please provide the package name explicitly."
            )

    if package is None:
        package = descriptor.name
        console.print(f"Auto-detected package name: [cyan]{package}[/]")

    version = descriptor.version if descriptor else None
    state.store.add(package, source, version)
    console.print(f"[green]Added link:[/] {package} -> {source}")


@main.command()
@click.argument("package")
@click.pass_obj
def remove(state: CliState, package: str):
    """Remove a package link from the registry."""
    record = state.store.remove(package)
    console.print(f"[green]Removed link:[/] {package}")
    if record.linked_projects:
        console.print(
            f"  [yellow]![/] Still linked on disk in {len(record.linked_projects)} project(s); "
            "symlinks were left in place."
        )


@main.command()
@click.argument("package", required=False)
@click.pass_obj
def refresh(state: CliState, package: str | None):
    """Update recorded versions from package.json."""
    report = state.reconciler.refresh(package)
    _print_report(report)


# ── Linking ──────────────────────────────────────────────────────────


@main.command()
@click.argument("package")
@project_option
@click.option("--repair", is_flag=True, help="Replace whatever occupies the link location")
@click.pass_obj
def link(state: CliState, package: str, project: str | None, repair: bool):
    """Link a package into the current project."""
    report = state.reconciler.link(package, state.project(project), repair=repair)
    _print_report(report)


@main.command(name="link-all")
@project_option
@click.option("--repair", is_flag=True, help="Replace whatever occupies link locations")
@click.pass_obj
def link_all(state: CliState, project: str | None, repair: bool):
    """Link every configured package into the current project."""
    if not len(state.store):
        console.print("[yellow]No packages configured to link.[/]")
        return
    report = state.reconciler.link_all(state.project(project), repair=repair)
    _print_report(report)
    _exit_on_failure(report)


@main.command()
@click.argument("package")
@project_option
@click.option("--force", is_flag=True, help="Remove the link location even if spine didn't create it")
@click.pass_obj
def unlink(state: CliState, package: str, project: str | None, force: bool):
    """Unlink a package from the current project."""
    report = state.reconciler.unlink(package, state.project(project), force=force)
    _print_report(report)


@main.command(name="unlink-all")
@project_option
@click.option("--force", is_flag=True, help="Remove link locations even if spine didn't create them")
@click.pass_obj
def unlink_all(state: CliState, project: str | None, force: bool):
    """Unlink every managed package from the current project."""
    report = state.reconciler.unlink_all(state.project(project), force=force)
    if not report.actions and not report.failures:
        console.print("[yellow]No packages currently linked in this project.[/]")
        return
    _print_report(report)
    _exit_on_failure(report)


# ── Health ───────────────────────────────────────────────────────────


@main.command()
@project_option
@click.option("--all", "all_projects", is_flag=True, help="Check every linked project, not just this one")
@click.option("--json", "as_json", is_flag=True, help="Output in JSON format for scripts/CI")
@click.pass_obj
def status(state: CliState, project: str | None, all_projects: bool, as_json: bool):
    """Show the health of every package link."""
    target = None if all_projects else state.project(project)
    health = state.reconciler.status(target)

    if as_json:
        click.echo(
            json.dumps(
                {
                    "project": target,
                    "total_packages": len(health),
                    "packages": [h.to_dict() for h in health],
                },
                indent=2,
            )
        )
        return

    if not health:
        console.print("[yellow]No package links configured.[/]")
        return

    title = "Package Health" + (f" — {target}" if target else "")
    table = Table(title=title)
    table.add_column("Name", style="cyan")
    table.add_column("Version")
    table.add_column("Status")
    table.add_column("Details")

    for h in health:
        style = VERDICT_STYLE[h.verdict.value]
        table.add_row(
            h.name,
            h.declared_version or "unknown",
            f"[{style}]{h.verdict.label}[/]",
            escape("; ".join(h.details)),
        )
    console.print(table)

    issues = [h for h in health if not h.healthy]
    console.print(f"\nSummary: {len(health) - len(issues)} healthy, {len(issues)} with issues")
    for h in issues:
        console.print(f"  [dim]{h.name}:[/] {escape(h.suggestion)}")


@main.command()
@click.pass_obj
def verify(state: CliState):
    """Drop registry entries whose link location holds the wrong thing."""
    report = state.reconciler.verify()
    if not report.removals:
        console.print("[green]v[/] All links are valid.")
    else:
        console.print(f"Cleaned up {len(report.removals)} broken link(s):")
        for package, project in report.removals:
            console.print(f"  [red]x[/] Removed: {package} from {project}")
    _print_failures(report)


@main.command()
@click.option("--force", is_flag=True, help="Also replace regular files or directories in the way")
@click.pass_obj
def sync(state: CliState, force: bool):
    """Restore every recorded link (useful after npm install)."""
    report = state.reconciler.sync(force=force)
    _print_report(report)
    _exit_on_failure(report)


@main.command()
@project_option
@click.pass_obj
def discover(state: CliState, project: str | None):
    """Record links already present in the current project."""
    report = state.reconciler.discover(state.project(project))
    _print_report(report)
    if report.untracked:
        console.print("\n[yellow]Linked but not managed by spine:[/]")
        for name in report.untracked:
            console.print(f"  [yellow]o[/] {name}")


# ── Output helpers ───────────────────────────────────────────────────


def _print_report(report) -> None:
    for action in report.actions:
        mark = ACTION_MARK.get(action.action, " ")
        where = f" ({action.project})" if action.project else ""
        console.print(f"  {mark} {action.action:<9} [cyan]{action.package}[/]{where}")
    _print_failures(report)
    console.print(f"\n{report.summary()}")


def _print_failures(report) -> None:
    for failure in report.failures:
        console.print(
            f"  [red]x[/] [cyan]{failure.package}[/] {escape(failure.error.message)}",
            soft_wrap=True,
        )
        if failure.error.suggestion:
            console.print(f"      [dim]{escape(failure.error.suggestion)}[/]", soft_wrap=True)


def _print_error(error: SpineError) -> None:
    console.print(f"[red]Error:[/] {escape(error.message)}", soft_wrap=True)
    if error.suggestion:
        console.print(f"  [dim]{escape(error.suggestion)}[/]", soft_wrap=True)


def _exit_on_failure(report) -> None:
    if report.failures:
        raise click.exceptions.Exit(1)


if __name__ == "__main__":
    main()
