"""Power-state convergence: get every tracked VM powered off before migration.

Flow per run:

1. classify: running VMs get an ACPI power button press; poweroff/saved
   VMs are tracked as-is; anything else (paused, aborted, ...) is
   skipped and never touched.
2. wait: poll all tracked VMs every ``poll_interval`` until they are all
   off or ``max_wait`` has elapsed.
3. escalate: VMs still on get exactly one forced power-off, then a short
   settle delay.
4. final check: if anything is still on, raise PowerConvergenceError.
   Disks must never be detached from a running VM.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable

from sata2virtio.config import PowerSettings
from sata2virtio.errors import PowerConvergenceError, VBoxCommandError
from sata2virtio.utils.logging import get_logger
from sata2virtio.vbox.inventory import PowerState, VMInventory

logger = get_logger(__name__)


@dataclass
class PowerDownResult:
    """Outcome of the classify phase, consumed by the orchestrator."""
    tracked: list[str] = field(default_factory=list)
    powered_down: list[str] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)
    forced: list[str] = field(default_factory=list)


class PowerManager:
    """Drives tracked VMs to a powered-off state with timeout and escalation."""

    def __init__(
        self,
        inventory: VMInventory,
        settings: PowerSettings | None = None,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.inventory = inventory
        self.client = inventory.client
        self.settings = settings or PowerSettings()
        self.dry_run = dry_run
        self._sleep = sleep

    def power_down(self, vms: list[str]) -> PowerDownResult:
        """Classify, signal, wait and escalate. Raises PowerConvergenceError."""
        result = self.classify_and_signal(vms)
        if self.dry_run or not result.powered_down:
            return result

        remaining = self.wait_for_poweroff(result.tracked)
        if remaining:
            result.forced = self.force_poweroff(remaining)

        still_on = self._not_off(result.tracked)
        if still_on:
            raise PowerConvergenceError(still_on)
        logger.info("[green]All tracked VMs are powered off[/green]")
        return result

    def classify_and_signal(self, vms: list[str]) -> PowerDownResult:
        result = PowerDownResult()
        prefix = "[DRY RUN] " if self.dry_run else ""

        for vm in vms:
            try:
                status = self.inventory.get_status(vm)
            except VBoxCommandError as e:
                logger.warning(f"[yellow]Skipping '{vm}': cannot read state: {e}[/yellow]")
                result.skipped[vm] = "unknown"
                continue
            if status.state is PowerState.RUNNING:
                logger.info(f"{prefix}Sending ACPI shutdown to '{vm}'")
                if not self.dry_run:
                    try:
                        self.client.acpi_power_button(vm)
                    except VBoxCommandError as e:
                        # Still tracked: escalation will force it off
                        logger.warning(f"ACPI shutdown of '{vm}' failed: {e}")
                result.tracked.append(vm)
                result.powered_down.append(vm)
            elif status.state.is_off:
                logger.info(f"'{vm}' is already {status.state.value}")
                result.tracked.append(vm)
            else:
                logger.warning(f"[yellow]Skipping '{vm}': unsupported state '{status.describe()}'[/yellow]")
                result.skipped[vm] = status.describe()

        return result

    def wait_for_poweroff(self, vms: list[str]) -> list[str]:
        """Poll until all ``vms`` are off or the budget is spent. Returns those still on."""
        interval = self.settings.poll_interval_seconds
        max_wait = self.settings.max_wait_seconds
        waited = 0.0
        check = 0

        remaining = self._not_off(vms)
        while remaining and waited < max_wait:
            self._sleep(interval)
            waited += interval
            check += 1
            remaining = self._not_off(remaining)
            logger.info(f"  [Check {check}] waiting for {len(remaining)} VM(s) to power off ({waited:.0f}s/{max_wait:.0f}s)")

        return remaining

    def force_poweroff(self, vms: list[str]) -> list[str]:
        forced = []
        for vm in vms:
            logger.warning(f"[yellow]'{vm}' did not shut down in time, forcing power off[/yellow]")
            try:
                self.client.power_off(vm)
                forced.append(vm)
            except VBoxCommandError as e:
                logger.error(f"Forced power off of '{vm}' failed: {e}")
        if vms:
            self._sleep(self.settings.force_settle_seconds)
        return forced

    def _not_off(self, vms: list[str]) -> list[str]:
        still_on = []
        for vm in vms:
            try:
                state = self.inventory.get_status(vm).state
            except VBoxCommandError as e:
                logger.debug(f"State query for '{vm}' failed: {e}")
                still_on.append(vm)
                continue
            if not state.is_off:
                still_on.append(vm)
        return still_on
