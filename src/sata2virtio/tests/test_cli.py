"""Tests for the command-line interface.

Covers:
  - Exit codes (tool missing, no VMs, VM listing failure, power failure, user abort)
  - Confirmation prompt and --force
  - --dry-run and --no-restart
  - Configuration file and --pattern override
"""

import pytest
import yaml
from click.testing import CliRunner

from fakes import FakeVBox, FakeVM, sata
from sata2virtio.cli import main
from sata2virtio.errors import ToolNotFoundError

FAST_CONFIG = {
    "power": {"poll_interval_seconds": 0.01, "max_wait_seconds": 0.01, "force_settle_seconds": 0},
    "restart": {"delay_between_starts_seconds": 0},
    "verify": {"enabled": False},
}


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "sata2virtio.yaml"
    path.write_text(yaml.safe_dump(FAST_CONFIG))
    return str(path)


@pytest.fixture
def vbox(monkeypatch):
    fake = FakeVBox(
        FakeVM("k8s-master", controllers=[sata("master.vdi")]),
        FakeVM("k8s-worker-01", controllers=[sata("w1.vdi", "w1-data.vdi")]),
        FakeVM("dev-box", controllers=[sata("dev.vdi")]),
    )
    monkeypatch.setattr("sata2virtio.vbox.client.VBoxManageClient", lambda path: fake)
    return fake


def invoke(*args, input=None):
    return CliRunner().invoke(main, list(args), input=input)


class TestExitCodes:
    def test_tool_not_found(self, monkeypatch, config_file):
        fake = FakeVBox(FakeVM("k8s-master"))

        def missing():
            raise ToolNotFoundError("VBoxManage")

        fake.ensure_available = missing
        monkeypatch.setattr("sata2virtio.vbox.client.VBoxManageClient", lambda path: fake)
        result = invoke("--config", config_file, "--force")
        assert result.exit_code == 1
        assert "not found" in result.output
        assert fake.calls == []

    def test_no_vms_found(self, vbox, config_file):
        result = invoke("--config", config_file, "--force", "--pattern", "openshift")
        assert result.exit_code == 1
        assert "No VMs found" in result.output
        assert vbox.mutations == []

    def test_vm_listing_fails(self, vbox, config_file):
        vbox.fail_on.add("list vms")
        result = invoke("--config", config_file, "--force")
        assert result.exit_code == 1
        assert "Error:" in result.output
        assert isinstance(result.exception, SystemExit)
        assert vbox.mutations == []

    def test_power_convergence_failure(self, vbox, config_file):
        vbox.vms["k8s-master"].ignores_acpi = True
        vbox.vms["k8s-master"].stuck = True
        result = invoke("--config", config_file, "--force")
        assert result.exit_code == 1
        assert "still running" in result.output
        assert not any(c[0].startswith("storage") for c in vbox.calls)

    def test_invalid_config(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"power": {"poll_interval_seconds": -1}}))
        result = invoke("--config", str(path), "--force")
        assert result.exit_code == 1
        assert "Error loading config" in result.output


class TestConfirmation:
    def test_declining_exits_zero_without_changes(self, vbox, config_file):
        result = invoke("--config", config_file, input="n\n")
        assert result.exit_code == 0
        assert "Aborted" in result.output
        assert vbox.mutations == []

    def test_accepting_runs_migration(self, vbox, config_file):
        result = invoke("--config", config_file, input="y\n")
        assert result.exit_code == 0
        assert vbox.vms["k8s-master"].disk("VirtIO-SCSI", 0) == "master.vdi"
        assert "Converted: 2" in result.output

    def test_force_skips_prompt(self, vbox, config_file):
        result = invoke("--config", config_file, "--force")
        assert result.exit_code == 0
        assert "[y/N]" not in result.output
        assert vbox.vms["k8s-worker-01"].disk("VirtIO-SCSI", 1) == "w1-data.vdi"
        assert vbox.vms["k8s-worker-01"].state == "running"


class TestModes:
    def test_dry_run(self, vbox, config_file):
        result = invoke("--config", config_file, "--dry-run")
        assert result.exit_code == 0
        assert "DRY RUN" in result.output
        assert vbox.mutations == []

    def test_no_restart(self, vbox, config_file):
        result = invoke("--config", config_file, "--force", "--no-restart")
        assert result.exit_code == 0
        assert vbox.count("startvm") == 0
        assert vbox.vms["k8s-master"].state == "poweroff"

    def test_pattern_override(self, vbox, config_file):
        result = invoke("--config", config_file, "--force", "--pattern", "dev-*")
        assert result.exit_code == 0
        assert vbox.vms["dev-box"].disk("VirtIO-SCSI", 0) == "dev.vdi"
        assert vbox.vms["k8s-master"].disk("SATA Controller", 0) == "master.vdi"

    def test_version(self):
        result = invoke("--version")
        assert result.exit_code == 0
        assert "sata2virtio" in result.output
