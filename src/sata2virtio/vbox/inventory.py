"""VirtualBox VM inventory: discovery by name pattern and attribute snapshots."""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass
from enum import Enum

from sata2virtio.errors import NoVMsFoundError
from sata2virtio.utils.logging import get_logger
from sata2virtio.vbox.client import VBoxManageClient

logger = get_logger(__name__)

_GLOB_CHARS = set("*?[")


class PowerState(str, Enum):
    RUNNING = "running"
    POWEROFF = "poweroff"
    SAVED = "saved"
    OTHER = "other"

    @classmethod
    def from_raw(cls, raw: str) -> "PowerState":
        try:
            state = cls(raw.strip().lower())
        except ValueError:
            return cls.OTHER
        return state

    @property
    def is_off(self) -> bool:
        return self in (PowerState.POWEROFF, PowerState.SAVED)


@dataclass(frozen=True)
class VMStatus:
    """Power state of a VM as observed at one point in time."""
    name: str
    state: PowerState
    raw_state: str

    def describe(self) -> str:
        return self.raw_state if self.state is PowerState.OTHER else self.state.value


def name_matches(name: str, pattern: str) -> bool:
    """Substring match, or fnmatch when the pattern contains glob characters."""
    if _GLOB_CHARS & set(pattern):
        return fnmatch.fnmatchcase(name, pattern)
    return pattern in name


class VMInventory:
    """Discovers managed VMs and fetches their attribute maps.

    Attribute maps are point-in-time snapshots. Nothing here is cached:
    callers re-fetch after every state-changing operation.
    """

    def __init__(self, client: VBoxManageClient):
        self.client = client

    def list_managed_vms(self, pattern: str) -> list[str]:
        """VM names matching ``pattern``, in hypervisor listing order.

        Raises:
            NoVMsFoundError: if nothing matches
        """
        vms = [name for name in self.client.list_vms() if name_matches(name, pattern)]
        if not vms:
            raise NoVMsFoundError(pattern)
        logger.info(f"Found {len(vms)} VM(s) matching '{pattern}'")
        return vms

    def get_attributes(self, vm: str) -> dict[str, str]:
        return self.client.show_vm_info(vm)

    def get_status(self, vm: str) -> VMStatus:
        raw = self.client.get_vm_state(vm)
        return VMStatus(name=vm, state=PowerState.from_raw(raw), raw_state=raw)
