"""Configuration models for sata2virtio using Pydantic v2."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


class VBoxConfig(BaseModel):
    """VirtualBox management tool settings."""

    vboxmanage_path: str = Field("VBoxManage", description="VBoxManage executable (name or path)")


class MigrationSettings(BaseModel):
    """Which VMs to touch and how their storage is laid out."""

    name_pattern: str = Field("k8s", min_length=1, description="Substring or glob matched against VM names")
    source_controller: str = Field("SATA Controller", description="Conventional name of the SATA controller")
    target_controller: str = Field("VirtIO-SCSI", description="Name given to a newly created VirtIO-SCSI controller")
    target_port_count: int = Field(2, ge=1, le=254, description="Port count of the new controller")
    target_bootable: bool = Field(True, description="Mark the new controller bootable")
    os_port: int = Field(0, ge=0, description="Port holding the OS/boot disk")
    data_port: int = Field(1, ge=0, description="Port holding the optional data disk")

    @model_validator(mode="after")
    def distinct_ports(self) -> "MigrationSettings":
        if self.os_port == self.data_port:
            raise ValueError("os_port and data_port must differ")
        if max(self.os_port, self.data_port) >= self.target_port_count:
            raise ValueError("target_port_count must cover both os_port and data_port")
        return self


class PowerSettings(BaseModel):
    """Shutdown polling and escalation."""

    poll_interval_seconds: float = Field(5, gt=0, description="Delay between power-state polls")
    max_wait_seconds: float = Field(45, ge=0, description="Graceful shutdown budget before forcing power-off")
    force_settle_seconds: float = Field(5, ge=0, description="Delay after forced power-off")

    @model_validator(mode="after")
    def interval_within_budget(self) -> "PowerSettings":
        if self.max_wait_seconds and self.poll_interval_seconds > self.max_wait_seconds:
            raise ValueError("poll_interval_seconds must not exceed max_wait_seconds")
        return self


class RestartSettings(BaseModel):
    delay_between_starts_seconds: float = Field(5, ge=0)


class VerifySettings(BaseModel):
    """Best-effort in-guest check after restart."""

    enabled: bool = Field(True)
    settle_seconds: float = Field(30, ge=0, description="Wait for the guest to boot before probing")
    command: list[str] = Field(
        default_factory=lambda: ["vagrant", "ssh", "{vm}", "-c", "lspci"],
        description="Probe command; {vm} is replaced with the VM name",
    )
    expected_substring: str = Field("Virtio SCSI", description="Case-insensitive marker in probe output")
    timeout_seconds: int = Field(60, ge=1)

    @field_validator("command")
    @classmethod
    def non_empty_command(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("verify.command must not be empty")
        return v


class AppConfig(BaseModel):
    """Root application configuration."""

    vbox: VBoxConfig = Field(default_factory=VBoxConfig)
    migration: MigrationSettings = Field(default_factory=MigrationSettings)
    power: PowerSettings = Field(default_factory=PowerSettings)
    restart: RestartSettings = Field(default_factory=RestartSettings)
    verify: VerifySettings = Field(default_factory=VerifySettings)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "AppConfig":
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @classmethod
    def from_env_and_args(cls, **overrides) -> "AppConfig":
        """Build config from environment variables with CLI overrides."""
        base: dict[str, dict] = {
            "vbox": {},
            "migration": {},
        }
        if os.environ.get("VBOXMANAGE_PATH"):
            base["vbox"]["vboxmanage_path"] = os.environ["VBOXMANAGE_PATH"]
        if os.environ.get("SATA2VIRTIO_NAME_PATTERN"):
            base["migration"]["name_pattern"] = os.environ["SATA2VIRTIO_NAME_PATTERN"]

        # Deep merge overrides
        for key, value in overrides.items():
            if isinstance(value, dict) and key in base:
                base[key].update(value)
            else:
                base[key] = value
        return cls(**base)

    def with_overrides(self, **sections) -> "AppConfig":
        """Return a copy with some fields of the given sections replaced."""
        update = {}
        for section, values in sections.items():
            values = {k: v for k, v in values.items() if v is not None}
            if values:
                current = getattr(self, section)
                update[section] = current.model_copy(update=values)
        return self.model_copy(update=update)
