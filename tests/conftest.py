"""Shared fixtures."""

from __future__ import annotations

import pytest

from fakes import FakeBackend, FakeFactory, descriptor, make_capabilities, make_model
from xbridge.config import BridgeSettings
from xbridge.descriptors import DescriptorSet


@pytest.fixture
def settings() -> BridgeSettings:
    return BridgeSettings(
        base_url="http://bridge.example",
        api_keys=["secret-key"],
        retry_interval=0,
        fetch_limit=50,
        backend_timeout=2.0,
    )


@pytest.fixture
def npm_and_pypi():
    """Two disjoint sources wired into a factory."""
    factory = FakeFactory()
    npm = factory.add(
        FakeBackend(
            descriptor("noderegistries"),
            model=make_model("noderegistries"),
            capabilities=make_capabilities("/capabilities", "/model", "/noderegistries"),
            root={"noderegistriescount": 1},
        )
    )
    pypi = factory.add(
        FakeBackend(
            descriptor("pythonregistries"),
            model=make_model("pythonregistries"),
            capabilities=make_capabilities("/capabilities", "/model", "/pythonregistries"),
            root={"pythonregistriescount": 1},
        )
    )
    descriptors = DescriptorSet([npm.descriptor, pypi.descriptor])
    return factory, descriptors, npm, pypi
