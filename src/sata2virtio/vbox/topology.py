"""Typed storage topology built from a ``showvminfo --machinereadable`` map.

Relevant keys::

    storagecontrollername0="SATA Controller"
    storagecontrollertype0="IntelAhci"
    storagecontrollerportcount0="30"
    "SATA Controller-0-0"="/vms/node01/box-disk001.vdi"
    "SATA Controller-ImageUUID-0-0"="5c0d..."

A topology is parsed once per attribute snapshot and never updated; after
any mutation a new snapshot must be fetched and parsed again.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping, Optional

from sata2virtio.utils.logging import get_logger

logger = get_logger(__name__)

EMPTY_VALUES = {"", "none", "emptydrive"}

_CONTROLLER_NAME_KEY = re.compile(r"^storagecontrollername(\d+)$", re.IGNORECASE)
_VIRTIO_NAME = re.compile(r"virtio", re.IGNORECASE)


class ControllerKind(str, Enum):
    SATA = "SATA"
    VIRTIO_SCSI = "VirtIO-SCSI"
    UNKNOWN = "unknown"

    @classmethod
    def detect(cls, name: str, controller_type: str = "") -> "ControllerKind":
        ctype = controller_type.lower()
        if ctype == "virtioscsi":
            return cls.VIRTIO_SCSI
        if ctype == "intelahci":
            return cls.SATA
        if _VIRTIO_NAME.search(name):
            return cls.VIRTIO_SCSI
        if "sata" in name.lower() or "ahci" in name.lower():
            return cls.SATA
        return cls.UNKNOWN


@dataclass(frozen=True)
class DiskAttachment:
    """A medium attached at (controller, port, device)."""
    controller: str
    port: int
    medium: str
    device: int = 0

    @property
    def is_optical(self) -> bool:
        return self.medium.lower().endswith(".iso")


@dataclass
class ControllerInfo:
    name: str
    kind: ControllerKind
    index: int
    port_count: Optional[int] = None
    bootable: Optional[bool] = None
    attachments: dict[tuple[int, int], DiskAttachment] = field(default_factory=dict)

    def disk_at(self, port: int, device: int = 0) -> Optional[DiskAttachment]:
        return self.attachments.get((port, device))

    @property
    def ports(self) -> dict[int, Optional[DiskAttachment]]:
        """Device-0 attachment per port, for every port seen or declared."""
        seen = {port for port, _ in self.attachments}
        if self.port_count:
            seen.update(range(self.port_count))
        return {port: self.disk_at(port) for port in sorted(seen)}

    @property
    def attachment_count(self) -> int:
        return len(self.attachments)


def _is_empty(value: Optional[str]) -> bool:
    return value is None or value.strip().lower() in EMPTY_VALUES


def _parse_int(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


class StorageTopology:
    """All storage controllers of one VM, in listing order."""

    def __init__(self, controllers: Iterable[ControllerInfo]):
        self._controllers: dict[str, ControllerInfo] = {}
        for ctl in controllers:
            # VirtualBox enforces unique names; keep the first on malformed input
            self._controllers.setdefault(ctl.name, ctl)

    @classmethod
    def from_attributes(cls, attrs: Mapping[str, str]) -> "StorageTopology":
        indexed = []
        for key, value in attrs.items():
            match = _CONTROLLER_NAME_KEY.match(key)
            if match and value:
                indexed.append((int(match.group(1)), value))
        indexed.sort()

        controllers = []
        for index, name in indexed:
            ctl = ControllerInfo(
                name=name,
                kind=ControllerKind.detect(name, attrs.get(f"storagecontrollertype{index}", "")),
                index=index,
                port_count=_parse_int(attrs.get(f"storagecontrollerportcount{index}")),
                bootable=_parse_bool(attrs.get(f"storagecontrollerbootable{index}")),
            )
            pattern = re.compile(rf"^{re.escape(name)}-(\d+)-(\d+)$")
            for key, value in attrs.items():
                slot = pattern.match(key)
                if slot and not _is_empty(value):
                    port, device = int(slot.group(1)), int(slot.group(2))
                    ctl.attachments[(port, device)] = DiskAttachment(name, port, value, device)
            controllers.append(ctl)
        return cls(controllers)

    @property
    def controllers(self) -> list[str]:
        return list(self._controllers)

    def controller(self, name: str) -> Optional[ControllerInfo]:
        return self._controllers.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._controllers

    def find_disk_at(self, controller: str, port: int, device: int = 0) -> Optional[DiskAttachment]:
        ctl = self._controllers.get(controller)
        if ctl is None:
            return None
        return ctl.disk_at(port, device)

    def find_virtio_controller(self) -> Optional[str]:
        """Name of the VirtIO-SCSI controller, if any.

        When several exist the first in listing order wins.
        """
        matches = [c.name for c in self._controllers.values() if c.kind is ControllerKind.VIRTIO_SCSI]
        if len(matches) > 1:
            logger.warning(f"Multiple VirtIO-SCSI controllers found ({', '.join(matches)}); using '{matches[0]}'")
        return matches[0] if matches else None

    def find_disk_on_any_controller(
        self, port: int, controllers: Optional[Iterable[str]] = None
    ) -> Optional[DiskAttachment]:
        """First hard disk at ``port`` scanning controllers in order. ISO images are ignored."""
        names = self.controllers if controllers is None else controllers
        for name in names:
            disk = self.find_disk_at(name, port)
            if disk is not None and not disk.is_optical:
                return disk
        return None

    def attachment_count(self, controller: str) -> int:
        ctl = self._controllers.get(controller)
        return ctl.attachment_count if ctl else 0


def _parse_bool(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    return value.strip().lower() in ("on", "true", "1")


# ─── Functional accessors on a raw attribute map ──────────────────────

def list_controllers(attrs: Mapping[str, str]) -> list[str]:
    return StorageTopology.from_attributes(attrs).controllers


def find_disk_at(attrs: Mapping[str, str], controller: str, port: int) -> Optional[str]:
    value = attrs.get(f"{controller}-{port}-0")
    return None if _is_empty(value) else value


def find_virtio_controller(attrs: Mapping[str, str]) -> Optional[str]:
    return StorageTopology.from_attributes(attrs).find_virtio_controller()


def find_disk_on_any_controller(
    attrs: Mapping[str, str], controllers: Iterable[str], port: int
) -> Optional[tuple[str, str]]:
    disk = StorageTopology.from_attributes(attrs).find_disk_on_any_controller(port, controllers)
    return (disk.controller, disk.medium) if disk else None
