"""Tests for subprocess helpers, logging and the guest verifier."""

import logging
import subprocess
import sys
from unittest.mock import patch

import pytest

from sata2virtio.config import VerifySettings
from sata2virtio.errors import GuestVerificationError
from sata2virtio.pipeline.verify import GuestVerifier
from sata2virtio.utils.logging import get_logger, set_log_level
from sata2virtio.utils.subprocess import CommandResult, _redact_sensitive, run_command


class TestRunCommand:
    def test_captures_output(self):
        completed = subprocess.CompletedProcess(["VBoxManage", "list", "vms"], 0, stdout='"a" {1}\n', stderr="")
        with patch("sata2virtio.utils.subprocess.subprocess.run", return_value=completed) as run:
            result = run_command(["VBoxManage", "list", "vms"])
        assert result.success
        assert result.stdout == '"a" {1}\n'
        assert run.call_args.kwargs["capture_output"] is True

    def test_failure_does_not_raise(self):
        completed = subprocess.CompletedProcess(["VBoxManage"], 1, stdout="", stderr="error")
        with patch("sata2virtio.utils.subprocess.subprocess.run", return_value=completed):
            result = run_command(["VBoxManage"])
        assert not result.success
        assert result.stderr == "error"

    def test_timeout(self):
        with patch("sata2virtio.utils.subprocess.subprocess.run",
                   side_effect=subprocess.TimeoutExpired(["ssh"], 5)):
            with pytest.raises(TimeoutError):
                run_command(["ssh", "node01"], timeout=5)

    def test_redaction(self):
        assert _redact_sensitive(["guestcontrol", "--password", "hunter2", "run"]) == \
            ["guestcontrol", "--password", "[REDACTED]", "run"]
        assert _redact_sensitive(["x", "token=abc"]) == ["x", "token=[REDACTED]"]
        assert _redact_sensitive(["storageattach", "node01"]) == ["storageattach", "node01"]


class TestGuestVerifier:
    def test_command_template(self):
        verifier = GuestVerifier(VerifySettings(command=["ssh", "vagrant@{vm}", "lsblk"]))
        assert verifier.build_command("node01") == ["ssh", "vagrant@node01", "lsblk"]

    def test_substring_is_case_insensitive(self):
        verifier = GuestVerifier(runner=lambda cmd, timeout=None: CommandResult(0, "... VIRTIO SCSI ..."))
        assert verifier.verify("node01") is True

    def test_missing_marker(self):
        verifier = GuestVerifier(runner=lambda cmd, timeout=None: CommandResult(0, "SATA controller: Intel AHCI"))
        with pytest.raises(GuestVerificationError):
            verifier.check("node01")
        assert verifier.verify("node01") is False

    def test_probe_cannot_start(self):
        def runner(cmd, timeout=None):
            raise FileNotFoundError("vagrant")

        assert GuestVerifier(runner=runner).verify("node01") is False

    def test_probe_not_executable(self, tmp_path):
        script = tmp_path / "lspci-probe.sh"
        script.write_text("#!/bin/sh\necho 'Virtio SCSI'\n")
        script.chmod(0o644)
        verifier = GuestVerifier(VerifySettings(command=[str(script)]))
        assert verifier.verify("node01") is False

    def test_probe_output_not_utf8(self):
        emit = "import sys; sys.stdout.buffer.write(b'\\xff\\xfe 00:0f.0 SCSI: Virtio SCSI\\n')"
        verifier = GuestVerifier(VerifySettings(command=[sys.executable, "-c", emit]))
        assert verifier.verify("node01") is True


class TestOutputDecoding:
    def test_undecodable_bytes_are_replaced(self):
        emit = "import sys; sys.stdout.buffer.write(b'\"SATA Controller-0-0\"=\"/vms/d\\xe9mo.vdi\"\\n')"
        result = run_command([sys.executable, "-c", emit])
        assert result.success
        assert result.stdout == "\"SATA Controller-0-0\"=\"/vms/d\ufffdmo.vdi\"\n"


class TestLogging:
    @pytest.fixture(autouse=True)
    def restore_level(self):
        yield
        set_log_level("INFO")

    def test_level_reaches_existing_and_new_loggers(self):
        before = get_logger("sata2virtio.pipeline.power")
        set_log_level("DEBUG")
        after = get_logger("sata2virtio.some.new.module")
        assert before.getEffectiveLevel() == logging.DEBUG
        assert after.getEffectiveLevel() == logging.DEBUG

    def test_foreign_names_are_namespaced(self):
        assert get_logger("__main__").name == "sata2virtio.__main__"
        assert get_logger("sata2virtio").name == "sata2virtio"

    def test_single_handler(self):
        get_logger("sata2virtio.a")
        get_logger("sata2virtio.b")
        assert len(logging.getLogger("sata2virtio").handlers) == 1
        assert logging.getLogger("sata2virtio.a").handlers == []
