"""CLI entry point for sata2virtio."""

from __future__ import annotations

import sys

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from sata2virtio import __version__
from sata2virtio.config import AppConfig
from sata2virtio.errors import NoVMsFoundError, PowerConvergenceError, ToolNotFoundError, VBoxCommandError
from sata2virtio.pipeline.migration import OutcomeStatus
from sata2virtio.utils.logging import set_log_level

console = Console()

STATUS_STYLES = {
    OutcomeStatus.CONVERTED: "green",
    OutcomeStatus.SKIPPED: "yellow",
    OutcomeStatus.FAILED: "red",
}


def load_config(config_path: str | None) -> AppConfig:
    """Load configuration from file or environment."""
    try:
        if config_path:
            return AppConfig.from_yaml(config_path)
        return AppConfig.from_env_and_args()
    except (ValidationError, OSError, ValueError) as e:
        console.print(f"[red]Error loading config: {e}[/red]")
        sys.exit(1)


def print_vm_table(inventory, vms: list[str]) -> None:
    table = Table(title="VMs to migrate")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("State", style="green")
    for vm in vms:
        try:
            state = inventory.get_status(vm).describe()
        except VBoxCommandError:
            state = "unknown"
        table.add_row(vm, state)
    console.print(table)


def print_summary(summary, dry_run: bool) -> None:
    table = Table(title="Migration summary" + (" (dry run)" if dry_run else ""))
    table.add_column("VM", style="cyan", no_wrap=True)
    table.add_column("Outcome")
    table.add_column("Actions")
    for outcome in summary.outcomes:
        style = STATUS_STYLES[outcome.status]
        table.add_row(outcome.vm, f"[{style}]{outcome.label}[/{style}]", "\n".join(outcome.actions))
    console.print(table)

    console.print(
        f"[green]Converted: {summary.converted}[/green]  "
        f"[yellow]Skipped: {summary.skipped}[/yellow]  "
        f"[red]Failed: {summary.failed}[/red]"
    )
    if summary.restarted:
        console.print(f"Restarted: {', '.join(summary.restarted)}")
    if summary.restart_failed:
        console.print(f"[red]Failed to restart: {', '.join(summary.restart_failed)}[/red]")
    if summary.verified is False:
        console.print("[yellow]⚠ Guest verification did not confirm VirtIO-SCSI; check the VM manually[/yellow]")
    if summary.failed:
        console.print("[dim]Re-run the tool to retry failed VMs; completed work is detected and skipped.[/dim]")


@click.command()
@click.version_option(version=__version__, prog_name="sata2virtio")
@click.option("--dry-run", is_flag=True, default=False, help="Show intended actions without changing anything")
@click.option("--force", is_flag=True, default=False, help="Skip the confirmation prompt")
@click.option("--no-restart", is_flag=True, default=False, help="Leave migrated VMs powered off")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Configuration file (YAML)")
@click.option("--pattern", help="Override the VM name pattern")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              default="INFO", show_default=True)
def main(dry_run: bool, force: bool, no_restart: bool, config_path: str | None,
         pattern: str | None, log_level: str):
    """Move VirtualBox VM disks from the SATA controller to VirtIO-SCSI.

    VMs matching the name pattern are shut down, their boot disk (port 0)
    and data disk (port 1) are reattached to a VirtIO-SCSI controller, the
    empty SATA controller is removed and the VMs are started again.
    Safe to re-run: already migrated VMs are skipped.
    """
    set_log_level(log_level)
    config = load_config(config_path)
    if pattern:
        config = config.with_overrides(migration={"name_pattern": pattern})

    from sata2virtio.pipeline.orchestrator import FleetOrchestrator
    from sata2virtio.vbox.client import VBoxManageClient
    from sata2virtio.vbox.inventory import VMInventory

    client = VBoxManageClient(config.vbox.vboxmanage_path)
    inventory = VMInventory(client)
    orchestrator = FleetOrchestrator(config, inventory, dry_run=dry_run, restart=not no_restart)

    try:
        client.ensure_available()
        with console.status("[bold green]Discovering VMs..."):
            vms = orchestrator.discover()
    except (ToolNotFoundError, NoVMsFoundError, VBoxCommandError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    print_vm_table(inventory, vms)

    if dry_run:
        console.print("[yellow]DRY RUN — No changes will be made[/yellow]")
    elif not force:
        if not click.confirm(f"Shut down and migrate {len(vms)} VM(s)?", default=False):
            console.print("Aborted.")
            sys.exit(0)

    try:
        summary = orchestrator.run(vms)
    except PowerConvergenceError as e:
        console.print(f"[bold red]❌ {e}[/bold red]")
        console.print("No disks were touched. Power the VMs off manually and re-run.")
        sys.exit(1)

    print_summary(summary, dry_run)


if __name__ == "__main__":
    main()
