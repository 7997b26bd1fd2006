"""Subprocess wrapper with logging."""

from __future__ import annotations

import os
import shutil
import subprocess

from sata2virtio.utils.logging import get_logger

logger = get_logger(__name__)


class CommandResult:
    """Result of a subprocess execution."""

    def __init__(self, returncode: int, stdout: str = "", stderr: str = ""):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    @property
    def success(self) -> bool:
        return self.returncode == 0

    def __repr__(self) -> str:
        return f"CommandResult(returncode={self.returncode})"


def run_command(
    cmd: list[str],
    timeout: int | None = None,
    env: dict[str, str] | None = None,
    cwd: str | None = None,
) -> CommandResult:
    """Run a system command and capture its output.

    The caller decides what a non-zero exit code means; this function never
    raises on failure, only when the command cannot be started or times out.
    Output is decoded leniently: undecodable bytes become U+FFFD.

    Args:
        cmd: Command and arguments as list
        timeout: Command timeout in seconds (None waits forever)
        env: Additional environment variables (merged with current env)
        cwd: Working directory

    Returns:
        CommandResult with returncode, stdout, stderr

    Raises:
        OSError: If the executable does not exist or cannot be executed
        TimeoutError: If command exceeds timeout
    """
    full_env = os.environ.copy()
    if env:
        full_env.update(env)

    safe_cmd = _redact_sensitive(cmd)
    logger.debug(f"Running: {' '.join(safe_cmd)}")

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            env=full_env,
            cwd=cwd,
        )
    except subprocess.TimeoutExpired:
        raise TimeoutError(f"Command timed out after {timeout}s: {' '.join(safe_cmd)}")

    cmd_result = CommandResult(result.returncode, result.stdout, result.stderr)
    if not cmd_result.success:
        logger.debug(f"Exit code {cmd_result.returncode}: {cmd_result.stderr.strip()}")
    return cmd_result


def check_tool_available(tool: str) -> bool:
    """Check if a system tool is available in PATH (or is an existing file)."""
    return shutil.which(tool) is not None


def _redact_sensitive(cmd: list[str]) -> list[str]:
    """Redact passwords and secrets from command args for logging."""
    sensitive_keys = {"password", "pwd", "secret", "token"}
    redacted = []
    skip_next = False

    for i, arg in enumerate(cmd):
        if skip_next:
            redacted.append("[REDACTED]")
            skip_next = False
            continue

        lower = arg.lower()
        if any(k in lower for k in sensitive_keys) and "=" in arg:
            key, _ = arg.split("=", 1)
            redacted.append(f"{key}=[REDACTED]")
        elif any(k in lower for k in sensitive_keys) and lower.startswith("-") and i + 1 < len(cmd):
            redacted.append(arg)
            skip_next = True
        else:
            redacted.append(arg)

    return redacted
