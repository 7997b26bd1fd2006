"""VBoxManage command wrapper.

Every method maps to exactly one VBoxManage invocation. Mutating commands
raise :class:`VBoxCommandError` on a non-zero exit code so the caller can
decide whether the failure is fatal for the VM being processed.
"""

from __future__ import annotations

import re

from sata2virtio.errors import ToolNotFoundError, VBoxCommandError
from sata2virtio.utils.logging import get_logger
from sata2virtio.utils.subprocess import CommandResult, check_tool_available, run_command

logger = get_logger(__name__)

EMPTY_MEDIUM = "none"

_VM_LIST_LINE = re.compile(r'^"(?P<name>.*)"\s+\{(?P<uuid>[0-9a-fA-F-]+)\}\s*$')


def parse_machinereadable(output: str) -> dict[str, str]:
    """Parse ``showvminfo --machinereadable`` output into a flat dict.

    Lines look like ``key="value"`` or ``"quoted key"="value"``. Values may
    themselves contain ``=``, so only the first separator outside a quoted
    key is used.
    """
    attrs: dict[str, str] = {}
    for raw in output.splitlines():
        line = raw.strip()
        if not line or "=" not in line:
            continue
        if line.startswith('"'):
            end = line.find('"', 1)
            if end == -1 or end + 1 >= len(line) or line[end + 1] != "=":
                continue
            key = line[1:end]
            value = line[end + 2:]
        else:
            key, value = line.split("=", 1)
        value = value.strip()
        if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
            value = value[1:-1]
        attrs[key.strip()] = value
    return attrs


def parse_vm_list(output: str) -> list[str]:
    """Parse ``VBoxManage list vms`` output into VM names, in listing order."""
    names = []
    for line in output.splitlines():
        match = _VM_LIST_LINE.match(line.strip())
        if match:
            names.append(match.group("name"))
    return names


class VBoxManageClient:
    """Thin synchronous client around the VBoxManage CLI.

    No per-command timeout is applied: VirtualBox serializes configuration
    changes itself, and the callers bound waiting at the polling level.
    """

    def __init__(self, vboxmanage: str = "VBoxManage"):
        self.vboxmanage = vboxmanage

    def ensure_available(self) -> None:
        """Raise ToolNotFoundError if VBoxManage cannot be executed."""
        if not check_tool_available(self.vboxmanage):
            raise ToolNotFoundError(self.vboxmanage)

    def _run(self, *args: str) -> CommandResult:
        cmd = [self.vboxmanage, *args]
        try:
            result = run_command(cmd)
        except FileNotFoundError:
            raise ToolNotFoundError(self.vboxmanage)
        if not result.success:
            raise VBoxCommandError(cmd, result.returncode, result.stderr)
        return result

    # ─── Queries ─────────────────────────────────────────────────────

    def list_vms(self) -> list[str]:
        return parse_vm_list(self._run("list", "vms").stdout)

    def show_vm_info(self, vm: str) -> dict[str, str]:
        """Full machine-readable attribute map of one VM."""
        result = self._run("showvminfo", vm, "--machinereadable")
        return parse_machinereadable(result.stdout)

    def get_vm_state(self, vm: str) -> str:
        """Raw ``VMState`` value (running, poweroff, saved, paused, ...)."""
        return self.show_vm_info(vm).get("VMState", "unknown")

    # ─── Power ───────────────────────────────────────────────────────

    def acpi_power_button(self, vm: str) -> None:
        logger.debug(f"Sending ACPI power button to '{vm}'")
        self._run("controlvm", vm, "acpipowerbutton")

    def power_off(self, vm: str) -> None:
        logger.debug(f"Forcing power off of '{vm}'")
        self._run("controlvm", vm, "poweroff")

    def start_vm(self, vm: str, headless: bool = True) -> None:
        self._run("startvm", vm, "--type", "headless" if headless else "gui")

    # ─── Storage ─────────────────────────────────────────────────────

    def add_virtio_controller(self, vm: str, name: str, port_count: int = 2, bootable: bool = True) -> None:
        self._run(
            "storagectl", vm,
            "--name", name,
            "--add", "scsi",
            "--controller", "VirtioSCSI",
            "--portcount", str(port_count),
            "--bootable", "on" if bootable else "off",
        )

    def remove_controller(self, vm: str, name: str) -> None:
        self._run("storagectl", vm, "--name", name, "--remove")

    def attach_disk(self, vm: str, controller: str, port: int, medium: str, device: int = 0) -> None:
        self._run(
            "storageattach", vm,
            "--storagectl", controller,
            "--port", str(port),
            "--device", str(device),
            "--type", "hdd",
            "--medium", medium,
        )

    def detach_disk(self, vm: str, controller: str, port: int, device: int = 0) -> None:
        self._run(
            "storageattach", vm,
            "--storagectl", controller,
            "--port", str(port),
            "--device", str(device),
            "--medium", EMPTY_MEDIUM,
        )
