"""Migrate VirtualBox VM disks from SATA to VirtIO-SCSI controllers."""

__version__ = "0.1.0"
