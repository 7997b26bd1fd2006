"""Fleet orchestrator: sequences discovery, power-down, migration and restart.

Phases (executed in order):
1. discover: list VMs matching the name pattern (NoVMsFoundError if none)
2. power: ACPI shutdown, bounded wait, forced power-off escalation
3. migrate: per-VM disk migration, outcomes accumulated in RunSummary
4. restart: start every VM this run powered down (unless suppressed)
5. verify: optional in-guest probe on one representative VM

Everything is sequential. Fatal errors (discovery, power convergence)
propagate to the caller; per-VM failures are only counted.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from sata2virtio.config import AppConfig
from sata2virtio.errors import VBoxCommandError
from sata2virtio.pipeline.migration import DiskMigrator, MigrationOutcome, OutcomeStatus
from sata2virtio.pipeline.power import PowerManager
from sata2virtio.pipeline.verify import GuestVerifier
from sata2virtio.utils.logging import get_logger
from sata2virtio.vbox.inventory import VMInventory

logger = get_logger(__name__)


@dataclass
class RunSummary:
    """Counters and per-VM outcomes for one run."""
    converted: int = 0
    skipped: int = 0
    failed: int = 0
    powered_down: list[str] = field(default_factory=list)
    outcomes: list[MigrationOutcome] = field(default_factory=list)
    restarted: list[str] = field(default_factory=list)
    restart_failed: list[str] = field(default_factory=list)
    verified: Optional[bool] = None

    def record(self, outcome: MigrationOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.status is OutcomeStatus.CONVERTED:
            self.converted += 1
        elif outcome.status is OutcomeStatus.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1

    @property
    def total(self) -> int:
        return self.converted + self.skipped + self.failed


class FleetOrchestrator:
    """Runs the migration across every discovered VM."""

    def __init__(
        self,
        config: AppConfig,
        inventory: VMInventory,
        dry_run: bool = False,
        restart: bool = True,
        verifier: GuestVerifier | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.inventory = inventory
        self.client = inventory.client
        self.dry_run = dry_run
        self.restart = restart
        self._sleep = sleep
        self.power = PowerManager(inventory, config.power, dry_run=dry_run, sleep=sleep)
        self.migrator = DiskMigrator(inventory, config.migration, dry_run=dry_run)
        self.verifier = verifier or GuestVerifier(config.verify)

    def discover(self) -> list[str]:
        return self.inventory.list_managed_vms(self.config.migration.name_pattern)

    def run(self, vms: list[str] | None = None) -> RunSummary:
        """Execute all phases. Raises NoVMsFoundError / PowerConvergenceError."""
        if vms is None:
            vms = self.discover()
        summary = RunSummary()

        logger.info("[cyan]▶ Phase: power[/cyan]")
        power = self.power.power_down(vms)
        summary.powered_down = list(power.powered_down)
        for vm, state in power.skipped.items():
            summary.record(MigrationOutcome(vm, OutcomeStatus.SKIPPED, reason=f"state={state}"))

        logger.info("[cyan]▶ Phase: migrate[/cyan]")
        for vm in power.tracked:
            summary.record(self.migrator.migrate(vm))

        if self.dry_run:
            if summary.powered_down:
                logger.info(f"[DRY RUN] would restart: {', '.join(summary.powered_down)}")
            return summary

        if not self.restart:
            if summary.powered_down:
                logger.info(f"Leaving {len(summary.powered_down)} VM(s) powered off (--no-restart)")
            return summary

        if summary.powered_down:
            logger.info("[cyan]▶ Phase: restart[/cyan]")
            self._restart(summary)
            if self.config.verify.enabled and summary.restarted:
                logger.info("[cyan]▶ Phase: verify[/cyan]")
                self._verify(summary)

        return summary

    def _restart(self, summary: RunSummary) -> None:
        delay = self.config.restart.delay_between_starts_seconds
        for i, vm in enumerate(summary.powered_down):
            logger.info(f"Starting '{vm}'")
            try:
                self.client.start_vm(vm)
                summary.restarted.append(vm)
            except VBoxCommandError as e:
                logger.error(f"[red]Failed to start '{vm}': {e}[/red]")
                summary.restart_failed.append(vm)
            if i < len(summary.powered_down) - 1:
                self._sleep(delay)

    def _verify(self, summary: RunSummary) -> None:
        converted = {o.vm for o in summary.outcomes if o.status is OutcomeStatus.CONVERTED}
        candidates = [vm for vm in summary.restarted if vm in converted] or summary.restarted
        target = candidates[0]
        settle = self.config.verify.settle_seconds
        logger.info(f"Waiting {settle:.0f}s for '{target}' to boot")
        self._sleep(settle)
        summary.verified = self.verifier.verify(target)
