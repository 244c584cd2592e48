"""Shared fixtures for coordinator unit tests."""

import pytest

from paircall.coordinator.config import MatchingConfig
from paircall.coordinator.metrics import MetricsCollector
from paircall.coordinator.service import MatchmakingService
from tests.helpers.coordinator_fakes import ConnectFactory, ManualClock, MockParticipant


@pytest.fixture
def make_participant() -> type[MockParticipant]:
    return MockParticipant


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def service(clock: ManualClock, metrics: MetricsCollector) -> MatchmakingService:
    """Fresh service with short limits for sweeper tests."""
    config = MatchingConfig(max_wait_s=60.0, pair_idle_timeout_s=600.0)
    return MatchmakingService(config=config, metrics=metrics, clock=clock)


@pytest.fixture
def connect(service: MatchmakingService) -> ConnectFactory:
    """Factory registering named mock participants with the service."""

    def _connect(*names: str) -> list[MockParticipant]:
        participants = [MockParticipant(name) for name in names]
        for participant in participants:
            service.connect(participant)
        for participant in participants:
            participant.clear()
        return participants

    return _connect
