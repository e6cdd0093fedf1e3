"""Pytest configuration and shared fixtures."""

from collections.abc import Callable

import pytest

from torcontrol_runtime import MockControlTransport, TorControl

VERSION_REPLY = "250-version=0.4.8.10\r\n250 OK\r\n"


@pytest.fixture
def transport() -> MockControlTransport:
    """Scripted daemon answering GETINFO version, OK for everything else."""
    return MockControlTransport({"GETINFO version": VERSION_REPLY})


@pytest.fixture
def make_control(transport: MockControlTransport) -> Callable[..., TorControl]:
    """Build a TorControl whose every connection goes through ``transport``."""

    def factory(**options) -> TorControl:
        return TorControl(transport_factory=lambda: transport, **options)

    return factory
