"""Exception hierarchy for sata2virtio.

Fatal errors (tool missing, empty inventory, power convergence failure)
abort the whole run with exit code 1. ``VBoxCommandError`` is raised by
every failed hypervisor command and is converted into a per-VM failure by
the migration engine. ``GuestVerificationError`` never affects the exit code.
"""

from __future__ import annotations

from typing import Sequence


class Sata2VirtioError(Exception):
    """Base class for all sata2virtio errors."""


class ToolNotFoundError(Sata2VirtioError):
    """The VirtualBox management binary is not installed or not in PATH."""

    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(f"'{tool}' not found. Install VirtualBox or set vbox.vboxmanage_path")


class NoVMsFoundError(Sata2VirtioError):
    """No VM name matched the configured pattern."""

    def __init__(self, pattern: str):
        self.pattern = pattern
        super().__init__(f"No VMs found matching '{pattern}'")


class PowerConvergenceError(Sata2VirtioError):
    """One or more VMs are still running after a forced power-off."""

    def __init__(self, still_running: Sequence[str]):
        self.still_running = list(still_running)
        super().__init__(
            "VMs still running after forced power-off: " + ", ".join(self.still_running)
        )


class VBoxCommandError(Sata2VirtioError):
    """A VBoxManage invocation exited non-zero."""

    def __init__(self, cmd: Sequence[str], returncode: int, stderr: str = ""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = self.stderr or f"exit code {returncode}"
        super().__init__(f"Command failed ({' '.join(self.cmd)}): {detail}")


class GuestVerificationError(Sata2VirtioError):
    """The in-guest probe failed or did not find the VirtIO controller."""


class TargetPortOccupiedError(Sata2VirtioError):
    """The VirtIO-SCSI port a disk should move to already holds another medium."""

    def __init__(self, controller: str, port: int, medium: str):
        self.controller = controller
        self.port = port
        self.medium = medium
        super().__init__(f"port {port} of '{controller}' already holds {medium}")
