"""Command implementations for CLI."""

from pathlib import Path
from typing import Any, Awaitable, Optional

from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn

from cloudstamp.cli.collector import FileSpecCollector, PromptSpecCollector, SpecCollector
from cloudstamp.cli.session import Session
from cloudstamp.engine.catalog import build_download_url
from cloudstamp.engine.plan import ProvisioningResult
from cloudstamp.exceptions import InputError, StampError
from cloudstamp.models.template import TemplateSpec


console = Console()


def _run_action(
    session: Session,
    description: str,
    coro: Awaitable[Any],
    success_msg: Optional[str] = None,
    quiet: bool = False,
) -> Any:
    """Helper to run an engine coroutine with a progress spinner."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        disable=quiet,
        transient=True,
    ) as progress:
        task = progress.add_task(description, total=None)

        response = session.run(coro)

        progress.update(task, completed=True)

    if success_msg and not quiet:
        console.print(success_msg)

    return response


def _mark(ok: bool) -> str:
    return "[green]✓[/green]" if ok else "[red]✗[/red]"


def _collect_spec(session: Session, spec_file: Optional[Path], interactive: bool = False) -> TemplateSpec:
    """Collect and validate a template specification."""
    if interactive:
        collector: SpecCollector = PromptSpecCollector(
            session.catalog, session.manager.script_descriptions, console
        )
    elif spec_file is not None:
        collector = FileSpecCollector(spec_file)
    else:
        raise InputError(["spec: provide a specification file or use --interactive"])

    result = session.validate(collector.collect())
    if not result.ok:
        raise InputError(result.errors)
    return result.spec


def _print_spec(spec: TemplateSpec):
    table = Table(title=f"Template {spec.name}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Distribution", f"{spec.distribution} {spec.version}")
    table.add_row("CPU cores", str(spec.cpu_cores))
    table.add_row("Memory", f"{spec.memory_mb} MB")
    table.add_row("Disk", f"{spec.disk_gb} GB")
    table.add_row("Tags", ", ".join(spec.tags) or "-")
    table.add_row("Cloud-init", spec.cloud_init.mode)
    console.print(table)


def _print_plan(result: ProvisioningResult):
    table = Table(title=f"Provisioning plan {result.run_id}")
    table.add_column("#", style="dim")
    table.add_column("Step", style="cyan")
    table.add_column("Target state", style="magenta")
    table.add_column("Fatal")
    table.add_column("Description")

    for index, step in enumerate(result.plan.steps, 1):
        table.add_row(
            str(index),
            step.name,
            step.target_state.value,
            "yes" if step.fatal else "best effort",
            step.description,
        )
    console.print(table)


def _print_warnings(warnings):
    for warning in warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


def list_distributions(session: Session):
    """List supported distributions."""
    table = Table(title="Distributions")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Cloud-init")
    table.add_column("Versions", style="magenta")

    for descriptor in session.catalog.list():
        table.add_row(
            descriptor.id,
            descriptor.display_name,
            _mark(descriptor.supports_cloud_init),
            ", ".join(descriptor.versions),
        )
    console.print(table)


def list_versions(session: Session, distribution: str):
    """List the versions of one distribution."""
    descriptor = session.catalog.resolve(distribution)
    table = Table(title=descriptor.display_name)
    table.add_column("Version", style="cyan")
    table.add_column("Release")
    table.add_column("Image URL", style="dim", overflow="fold")

    for version, label in descriptor.versions.items():
        table.add_row(version, label, build_download_url(descriptor, version))
    console.print(table)


def validate_spec(session: Session, spec_file: Path):
    """Validate a specification file."""
    spec = _collect_spec(session, spec_file)
    console.print(f"[green]✓[/green] Specification for {spec.name} is valid")


def plan_template(session: Session, spec_file: Path):
    """Show the steps a build would run, without side effects."""
    spec = _collect_spec(session, spec_file)
    result = session.run(session.orchestrator().provision(spec, plan_only=True))
    _print_spec(spec)
    _print_plan(result)
    _print_warnings(result.warnings)


def create_template(
    session: Session,
    spec_file: Optional[Path],
    interactive: bool = False,
    destroy_on_failure: bool = False,
    assume_yes: bool = False,
):
    """Build a template from a specification."""
    spec = _collect_spec(session, spec_file, interactive)
    _print_spec(spec)
    if not assume_yes and not Confirm.ask("Create this template?", default=True, console=console):
        console.print("Aborted")
        return

    orchestrator = session.orchestrator()
    result = _run_action(
        session,
        description=f"Provisioning template {spec.name}...",
        coro=orchestrator.provision(spec),
    )
    _print_warnings(result.warnings)

    if result.ok:
        console.print(f"[green]✓[/green] Template {spec.name} created as VM {result.vmid}")
        return

    console.print(f"[red]✗[/red] Step {result.failed_step} failed: {result.error}")
    console.print(f"  Last state: {result.state.value}")
    if result.vmid is None:
        raise StampError(f"Provisioning of {spec.name} failed before a VM was created")

    if destroy_on_failure:
        cleaned = _run_action(
            session,
            description=f"Removing partial VM {result.vmid}...",
            coro=orchestrator.cleanup(result),
        )
        console.print(f"  Cleaned up: {', '.join(cleaned) or 'nothing'}")
    else:
        console.print(
            f"  VM {result.vmid} was left in place for inspection; "
            f"remove it with 'qm destroy {result.vmid}'"
        )
    raise StampError(f"Provisioning of {spec.name} failed at step {result.failed_step}")


def list_templates(session: Session):
    """List templates."""
    templates = session.run(session.registry().list())
    if not templates:
        console.print("No templates found")
        return

    table = Table(title="Templates")
    table.add_column("VMID", style="cyan")
    table.add_column("Name")
    table.add_column("Memory", justify="right")
    table.add_column("Disk", justify="right")
    table.add_column("Tags", style="magenta")
    for template in templates:
        table.add_row(
            str(template.vmid),
            template.name,
            f"{template.memory_mb} MB",
            f"{template.disk_gb} GB",
            ", ".join(template.tags),
        )
    console.print(table)


def show_template(session: Session, vmid: int):
    """Show a template's details."""
    details = session.run(session.registry().describe(vmid))
    table = Table(title=f"Template {vmid}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Name", details.name)
    table.add_row("Template", _mark(details.is_template))
    table.add_row("Memory", f"{details.memory} MB")
    table.add_row("Cores", str(details.cores))
    table.add_row("OS type", details.ostype or "-")
    table.add_row("Boot", details.boot or "-")
    table.add_row("Tags", ", ".join(details.tags) or "-")
    table.add_row("Description", details.description or "-")
    console.print(table)


def clone_template(session: Session, vmid: int, name: str):
    """Clone a template."""
    new_vmid = _run_action(
        session,
        description=f"Cloning template {vmid}...",
        coro=session.registry().clone(vmid, name),
    )
    console.print(f"[green]✓[/green] Template {vmid} cloned to {new_vmid} ({name})")


def delete_template(session: Session, vmid: int):
    """Delete a template."""
    _run_action(
        session,
        description=f"Deleting template {vmid}...",
        coro=session.registry().delete(vmid),
        success_msg=f"[green]✓[/green] Template {vmid} deleted",
    )


def export_template(session: Session, vmid: int, config_name: str):
    """Export a template's configuration."""
    path = session.run(session.registry().export(vmid, config_name))
    console.print(f"[green]✓[/green] Template {vmid} exported to {path}")


def import_template(session: Session, config_name: str, name: Optional[str] = None):
    """Recreate a template shell from an export."""
    vmid = _run_action(
        session,
        description=f"Importing {config_name}...",
        coro=session.registry().import_config(config_name, name),
    )
    console.print(f"[green]✓[/green] Imported {config_name} as template {vmid}")
    console.print("[yellow]Warning:[/yellow] disks are not restored; attach storage before use")


def list_exports(session: Session):
    """List saved exports."""
    exports = session.registry().list_exports()
    if not exports:
        console.print(f"No exports in {session.config.general.export_dir}")
        return

    table = Table(title="Exports")
    table.add_column("Name", style="cyan")
    table.add_column("Source VMID")
    table.add_column("Exported")
    table.add_column("Path", style="dim")
    for export in exports:
        table.add_row(
            export.name,
            str(export.source_vmid or "-"),
            export.exported_date or "-",
            str(export.path),
        )
    console.print(table)


def delete_export(session: Session, config_name: str):
    """Delete a saved export."""
    session.registry().delete_export(config_name)
    console.print(f"[green]✓[/green] Export {config_name} deleted")


def check_template(session: Session, vmid: int):
    """Statically validate a template."""
    report = session.run(session.registry().check(vmid))
    for item in report.passed_checks:
        console.print(f"[green]✓[/green] {item}")
    for item in report.info:
        console.print(f"[blue]i[/blue] {item}")
    for item in report.warnings:
        console.print(f"[yellow]![/yellow] {item}")
    for item in report.errors:
        console.print(f"[red]✗[/red] {item}")

    if not report.ok:
        raise StampError(f"Template {vmid} failed validation with {len(report.errors)} error(s)")
    if report.warnings:
        console.print(f"Validation passed with {len(report.warnings)} warning(s)")
    else:
        console.print("[green]Validation passed[/green]")


def self_test_template(session: Session, vmid: int):
    """Run the self-test against a template."""
    report = _run_action(
        session,
        description=f"Testing template {vmid}...",
        coro=session.self_test().test(vmid),
    )

    table = Table(title=f"Self-test of template {vmid}")
    table.add_column("Check", style="cyan")
    table.add_column("Result")
    table.add_column("Detail", style="dim")
    for name, ok in report.checks.items():
        table.add_row(name, _mark(ok), report.errors.get(name, ""))
    console.print(table)
    _print_warnings(report.warnings)

    if not report.passed:
        raise StampError(f"Template {vmid} self-test failed")
