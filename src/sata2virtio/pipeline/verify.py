"""Best-effort in-guest check that the VirtIO-SCSI controller is visible."""

from __future__ import annotations

from sata2virtio.config import VerifySettings
from sata2virtio.errors import GuestVerificationError
from sata2virtio.utils.logging import get_logger
from sata2virtio.utils.subprocess import run_command

logger = get_logger(__name__)


class GuestVerifier:
    """Runs a probe command against a guest and looks for a marker string.

    Failures are reported as warnings only; they never fail the run.
    """

    def __init__(self, settings: VerifySettings | None = None, runner=run_command):
        self.settings = settings or VerifySettings()
        self._run = runner

    def build_command(self, vm: str) -> list[str]:
        return [arg.replace("{vm}", vm) for arg in self.settings.command]

    def check(self, vm: str) -> str:
        """Run the probe and return its output. Raises GuestVerificationError."""
        cmd = self.build_command(vm)
        try:
            result = self._run(cmd, timeout=self.settings.timeout_seconds)
        except OSError as e:
            raise GuestVerificationError(f"probe could not run: {e}")

        if not result.success:
            raise GuestVerificationError(f"probe exited {result.returncode}: {result.stderr.strip()}")
        if self.settings.expected_substring.lower() not in result.stdout.lower():
            raise GuestVerificationError(f"'{self.settings.expected_substring}' not found in probe output")
        return result.stdout

    def verify(self, vm: str) -> bool:
        logger.info(f"Verifying VirtIO-SCSI inside '{vm}'...")
        try:
            self.check(vm)
        except GuestVerificationError as e:
            logger.warning(f"[yellow]⚠ Guest verification of '{vm}' failed: {e}[/yellow]")
            return False
        logger.info(f"[green]✓ '{vm}' sees the VirtIO-SCSI controller[/green]")
        return True
