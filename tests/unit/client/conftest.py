"""Shared fixtures for client unit tests."""

import pytest

from tests.helpers.client_fakes import EngineFactoryRecorder, MockDevices, MockSignaling


@pytest.fixture
def devices() -> MockDevices:
    return MockDevices()


@pytest.fixture
def signaling() -> MockSignaling:
    return MockSignaling()


@pytest.fixture
def engines() -> EngineFactoryRecorder:
    return EngineFactoryRecorder()


@pytest.fixture
def mock_devices_cls() -> type[MockDevices]:
    return MockDevices
