"""Main CLI implementation using Typer."""

from pathlib import Path
from typing import Any, Callable, Dict, Optional

import typer
from pydantic import ValidationError
from rich.console import Console

from cloudstamp.cli.commands import (
    check_template,
    clone_template,
    create_template,
    delete_export,
    delete_template,
    export_template,
    import_template,
    list_distributions,
    list_exports,
    list_templates,
    list_versions,
    plan_template,
    self_test_template,
    show_template,
    validate_spec,
)
from cloudstamp.cli.session import Session
from cloudstamp.exceptions import InputError, StampError


# Create Typer app
app = typer.Typer(
    name="cloudstamp",
    help="cloudstamp - Proxmox VE templates from distribution cloud images",
    add_completion=False,
)

# Console for rich output
console = Console()

# Global options shared by every command
state: Dict[str, Any] = {"config_dir": None, "log_level": None}


@app.callback()
def main_callback(
    config_dir: Optional[Path] = typer.Option(
        None, "--config-dir", "-c", envvar="CLOUDSTAMP_CONFIG_DIR", help="Configuration directory"
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", "-l", help="Override the configured log level"
    ),
):
    """Provision and manage Proxmox VE templates."""
    state["config_dir"] = config_dir
    state["log_level"] = log_level


def _run_cli_command(handler: Callable[..., Any], **kwargs: Any):
    """Helper to run a CLI command with an engine session and error handling."""
    try:
        session = Session(config_dir=state["config_dir"], log_level=state["log_level"])
        session.run(session.open())
        handler(session, **kwargs)
    except InputError as e:
        console.print("[red]Error:[/red] Configuration errors found:")
        for error in e.errors:
            console.print(f"  [red]-[/red] {error}")
        raise typer.Exit(1) from e
    except StampError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    except ValidationError as e:
        console.print(f"[red]Error:[/red] Invalid configuration: {e}")
        raise typer.Exit(1) from e


@app.command("distros")
def distros_command():
    """List supported distributions."""
    _run_cli_command(list_distributions)


@app.command("versions")
def versions_command(
    distribution: str = typer.Argument(..., help="Distribution identifier, e.g. ubuntu"),
):
    """List available versions of a distribution."""
    _run_cli_command(list_versions, distribution=distribution)


@app.command("validate")
def validate_command(
    spec_file: Path = typer.Argument(..., help="Template specification (YAML)"),
):
    """Validate a template specification."""
    _run_cli_command(validate_spec, spec_file=spec_file)


@app.command("plan")
def plan_command(
    spec_file: Path = typer.Argument(..., help="Template specification (YAML)"),
):
    """Show the provisioning steps without running them."""
    _run_cli_command(plan_template, spec_file=spec_file)


@app.command("create")
def create_command(
    spec_file: Optional[Path] = typer.Argument(None, help="Template specification (YAML)"),
    interactive: bool = typer.Option(
        False, "--interactive", "-i", help="Answer the template questions on the terminal"
    ),
    destroy_on_failure: bool = typer.Option(
        False, "--destroy-on-failure", help="Destroy the partial VM if a step fails"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Create a template."""
    if not spec_file and not interactive:
        console.print("[red]Error:[/red] Specify a specification file or use --interactive")
        raise typer.Exit(1)
    _run_cli_command(
        create_template,
        spec_file=spec_file,
        interactive=interactive,
        destroy_on_failure=destroy_on_failure,
        assume_yes=yes,
    )


# Template subcommands
template_app = typer.Typer(help="Template management commands")
app.add_typer(template_app, name="template")


@template_app.command("list")
def template_list_command():
    """List templates."""
    _run_cli_command(list_templates)


@template_app.command("show")
def template_show_command(
    vmid: int = typer.Argument(..., help="Template VMID"),
):
    """Show template details."""
    _run_cli_command(show_template, vmid=vmid)


@template_app.command("clone")
def template_clone_command(
    vmid: int = typer.Argument(..., help="Template VMID"),
    name: str = typer.Argument(..., help="Name of the new template"),
):
    """Clone a template into a new template."""
    _run_cli_command(clone_template, vmid=vmid, name=name)


@template_app.command("delete")
def template_delete_command(
    vmid: int = typer.Argument(..., help="Template VMID"),
    force: bool = typer.Option(
        False, "--force", "-f", help="Force removal without confirmation"
    ),
):
    """Delete a template."""
    if not force:
        confirm = typer.confirm(f"Delete template {vmid}? This cannot be undone")
        if not confirm:
            raise typer.Abort()
    _run_cli_command(delete_template, vmid=vmid)


@template_app.command("export")
def template_export_command(
    vmid: int = typer.Argument(..., help="Template VMID"),
    config_name: str = typer.Argument(..., help="Export name"),
):
    """Export a template's configuration to JSON."""
    _run_cli_command(export_template, vmid=vmid, config_name=config_name)


@template_app.command("import")
def template_import_command(
    config_name: str = typer.Argument(..., help="Export name"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Name of the new template"),
):
    """Recreate a template from an export (disks are not restored)."""
    _run_cli_command(import_template, config_name=config_name, name=name)


@template_app.command("exports")
def template_exports_command():
    """List saved exports."""
    _run_cli_command(list_exports)


@template_app.command("remove-export")
def template_remove_export_command(
    config_name: str = typer.Argument(..., help="Export name"),
):
    """Delete a saved export."""
    _run_cli_command(delete_export, config_name=config_name)


@template_app.command("check")
def template_check_command(
    vmid: int = typer.Argument(..., help="Template VMID"),
):
    """Statically validate a template's configuration."""
    _run_cli_command(check_template, vmid=vmid)


@template_app.command("test")
def template_test_command(
    vmid: int = typer.Argument(..., help="Template VMID"),
):
    """Boot a disposable clone and check the guest agent."""
    _run_cli_command(self_test_template, vmid=vmid)


def main():
    """Main entry point for CLI."""
    app()
