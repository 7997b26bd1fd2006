"""Shared fixtures."""

from __future__ import annotations

import pytest

from fakes import FakeVBox
from sata2virtio.config import AppConfig
from sata2virtio.vbox.inventory import VMInventory


@pytest.fixture
def fake_vbox():
    return FakeVBox()


@pytest.fixture
def inventory(fake_vbox):
    return VMInventory(fake_vbox)


@pytest.fixture
def config():
    return AppConfig(
        power={"poll_interval_seconds": 5, "max_wait_seconds": 45, "force_settle_seconds": 5},
        restart={"delay_between_starts_seconds": 5},
        verify={"enabled": False},
    )


@pytest.fixture
def sleeps():
    """Recorded sleep calls; pass ``sleeps.append`` as the sleep callable."""
    return []
