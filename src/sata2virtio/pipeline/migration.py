"""Per-VM disk migration from SATA to VirtIO-SCSI.

The procedure is idempotent: every decision is taken from a freshly parsed
topology, so a VM left half-migrated by an earlier run (OS disk moved,
data disk not) is recognised and only the remaining work is done.

Steps (executed in order):
1. plan: locate the VirtIO controller, the OS disk and the data disk
2. classify: already migrated / no OS disk / needs work
3. controller: create the VirtIO-SCSI controller unless one exists
4. os_disk: detach from the source port, attach to the target port
5. data_disk: same for the optional secondary disk (fresh snapshot)
6. cleanup: remove the conventional SATA controller once drained

There is no rollback. A failing command aborts the VM and leaves its
attachments as they are; re-running the tool finishes the job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from sata2virtio.config import MigrationSettings
from sata2virtio.errors import TargetPortOccupiedError
from sata2virtio.utils.logging import get_logger
from sata2virtio.vbox.inventory import VMInventory
from sata2virtio.vbox.topology import DiskAttachment, StorageTopology

logger = get_logger(__name__)


class OutcomeStatus(str, Enum):
    CONVERTED = "converted"
    SKIPPED = "skipped"
    FAILED = "failed"


class SkipReason(str, Enum):
    ALREADY_MIGRATED = "already-migrated"
    NO_OS_DISK = "no-os-disk"


@dataclass
class MigrationOutcome:
    """What happened to one VM."""
    vm: str
    status: OutcomeStatus
    reason: str = ""
    simulated: bool = False
    actions: list[str] = field(default_factory=list)

    @property
    def label(self) -> str:
        label = self.status.value
        if self.simulated:
            label += " (simulated)"
        if self.reason:
            label += f": {self.reason}"
        return label


@dataclass(frozen=True)
class MigrationPlan:
    """Read-only decision snapshot derived from one topology query."""
    target_controller: str
    target_controller_exists: bool
    os_disk: Optional[DiskAttachment]
    data_disk: Optional[DiskAttachment]
    os_already_migrated: bool
    data_already_migrated: bool
    source_controller: Optional[str]

    @classmethod
    def from_topology(cls, topology: StorageTopology, settings: MigrationSettings) -> "MigrationPlan":
        existing = topology.find_virtio_controller()
        target = existing or settings.target_controller
        others = [name for name in topology.controllers if name != existing]

        os_on_target = topology.find_disk_at(existing, settings.os_port) if existing else None
        data_on_target = topology.find_disk_at(existing, settings.data_port) if existing else None

        os_disk = os_on_target or topology.find_disk_on_any_controller(settings.os_port, others)
        data_disk = topology.find_disk_on_any_controller(settings.data_port, others)

        source = None
        if os_disk is not None and os_disk.controller != existing:
            source = os_disk.controller

        return cls(
            target_controller=target,
            target_controller_exists=existing is not None,
            os_disk=os_disk,
            data_disk=data_disk,
            os_already_migrated=os_on_target is not None,
            data_already_migrated=data_on_target is not None,
            source_controller=source,
        )

    @property
    def has_unmigrated_data(self) -> bool:
        return self.data_disk is not None

    @property
    def is_complete(self) -> bool:
        return self.os_already_migrated and not self.has_unmigrated_data


class DiskMigrator:
    """Moves a VM's OS and data disks onto a VirtIO-SCSI controller."""

    def __init__(self, inventory: VMInventory, settings: MigrationSettings | None = None, dry_run: bool = False):
        self.inventory = inventory
        self.client = inventory.client
        self.settings = settings or MigrationSettings()
        self.dry_run = dry_run

    def snapshot(self, vm: str) -> StorageTopology:
        return StorageTopology.from_attributes(self.inventory.get_attributes(vm))

    def plan(self, vm: str) -> MigrationPlan:
        return MigrationPlan.from_topology(self.snapshot(vm), self.settings)

    def migrate(self, vm: str) -> MigrationOutcome:
        """Run the full procedure for one VM. Never raises for per-VM errors."""
        try:
            plan = self.plan(vm)
        except Exception as e:
            logger.error(f"[red]✗ {vm}: cannot read VM configuration: {e}[/red]")
            return MigrationOutcome(vm, OutcomeStatus.FAILED, reason=f"showvminfo: {e}")

        if plan.is_complete:
            logger.info(f"{vm}: already on '{plan.target_controller}', nothing to do")
            return MigrationOutcome(vm, OutcomeStatus.SKIPPED, reason=SkipReason.ALREADY_MIGRATED.value)

        if plan.os_disk is None:
            logger.warning(f"[yellow]{vm}: no disk found at port {self.settings.os_port} on any controller[/yellow]")
            return MigrationOutcome(vm, OutcomeStatus.SKIPPED, reason=SkipReason.NO_OS_DISK.value)

        if self.dry_run:
            return self._simulate(vm, plan)

        outcome = MigrationOutcome(vm, OutcomeStatus.CONVERTED)
        step = "controller"
        try:
            self._ensure_controller(vm, plan, outcome)

            step = "os_disk"
            if not plan.os_already_migrated:
                self._move(vm, plan.os_disk, plan.target_controller, self.settings.os_port, outcome)

            step = "data_disk"
            topology = self.snapshot(vm)
            data_disk = topology.find_disk_on_any_controller(
                self.settings.data_port,
                [name for name in topology.controllers if name != plan.target_controller],
            )
            drained = {plan.os_disk.controller}
            if data_disk is not None:
                occupant = topology.find_disk_at(plan.target_controller, self.settings.data_port)
                if occupant is not None:
                    raise TargetPortOccupiedError(plan.target_controller, self.settings.data_port, occupant.medium)
                self._move(vm, data_disk, plan.target_controller, self.settings.data_port, outcome)
                drained.add(data_disk.controller)

            step = "cleanup"
            self._cleanup(vm, drained - {plan.target_controller}, outcome)

        except Exception as e:
            logger.error(f"[red]✗ {vm}: step '{step}' failed: {e}[/red]")
            outcome.status = OutcomeStatus.FAILED
            outcome.reason = f"{step}: {e}"
            return outcome

        logger.info(f"[green]✓ {vm}: converted to {plan.target_controller}[/green]")
        return outcome

    # ─── Steps ───────────────────────────────────────────────────────

    def _ensure_controller(self, vm: str, plan: MigrationPlan, outcome: MigrationOutcome) -> None:
        if plan.target_controller_exists:
            logger.info(f"{vm}: reusing existing controller '{plan.target_controller}'")
            return
        logger.info(f"{vm}: creating VirtIO-SCSI controller '{plan.target_controller}'")
        self.client.add_virtio_controller(
            vm,
            plan.target_controller,
            port_count=self.settings.target_port_count,
            bootable=self.settings.target_bootable,
        )
        outcome.actions.append(f"created controller '{plan.target_controller}'")

    def _move(self, vm: str, disk: DiskAttachment, target: str, port: int, outcome: MigrationOutcome) -> None:
        logger.info(f"{vm}: moving {disk.medium} from '{disk.controller}' port {disk.port} to '{target}' port {port}")
        self.client.detach_disk(vm, disk.controller, disk.port, device=disk.device)
        self.client.attach_disk(vm, target, port, disk.medium)
        outcome.actions.append(f"moved {disk.medium} {disk.controller}:{disk.port} -> {target}:{port}")

    def _cleanup(self, vm: str, candidates: set[str], outcome: MigrationOutcome) -> None:
        """Remove the conventional source controller once no attachment is left on it.

        ``candidates`` holds every controller a disk was moved off in this
        run, the data disk's included. So a VM whose OS disk was already on
        VirtIO-SCSI still loses its SATA controller when the data disk was
        the last thing on it.
        """
        source = self.settings.source_controller
        if source not in candidates:
            return
        topology = self.snapshot(vm)
        if source not in topology:
            return
        remaining = topology.attachment_count(source)
        if remaining:
            logger.info(f"{vm}: keeping '{source}', {remaining} attachment(s) left")
            return
        logger.info(f"{vm}: removing empty controller '{source}'")
        self.client.remove_controller(vm, source)
        outcome.actions.append(f"removed controller '{source}'")

    def _simulate(self, vm: str, plan: MigrationPlan) -> MigrationOutcome:
        outcome = MigrationOutcome(vm, OutcomeStatus.CONVERTED, simulated=True)
        if not plan.target_controller_exists:
            outcome.actions.append(f"create controller '{plan.target_controller}'")
        if not plan.os_already_migrated:
            disk = plan.os_disk
            outcome.actions.append(
                f"move {disk.medium} {disk.controller}:{disk.port} -> {plan.target_controller}:{self.settings.os_port}"
            )
        if plan.data_disk is not None:
            disk = plan.data_disk
            outcome.actions.append(
                f"move {disk.medium} {disk.controller}:{disk.port} -> {plan.target_controller}:{self.settings.data_port}"
            )
        for action in outcome.actions:
            logger.info(f"[DRY RUN] {vm}: would {action}")
        return outcome
