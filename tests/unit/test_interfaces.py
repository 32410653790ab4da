"""Tests for collaborator protocols and time providers."""

import time

import pytest

from pool_guardian.adapters import PaperExecutor, ReplayObserver
from pool_guardian.interfaces import (
    ActionExecutor,
    ChainObserver,
    DeterministicTimeProvider,
    SystemTimeProvider,
    TimeProvider,
)


def test_system_time_provider():
    provider = SystemTimeProvider()
    ts1 = provider.current_timestamp()
    time.sleep(0.01)
    ts2 = provider.current_timestamp()
    assert ts2 > ts1


def test_deterministic_time_provider():
    provider = DeterministicTimeProvider(start_time=1000.0)
    assert provider.current_timestamp() == 1000.0

    provider.advance_time(10)
    assert provider.current_timestamp() == 1010.0

    provider.set_time(42.0)
    assert provider.current_timestamp() == 42.0


def test_deterministic_clock_never_moves_backwards():
    provider = DeterministicTimeProvider()
    with pytest.raises(ValueError):
        provider.advance_time(-1)


def test_providers_satisfy_protocol():
    assert isinstance(SystemTimeProvider(), TimeProvider)
    assert isinstance(DeterministicTimeProvider(), TimeProvider)


def test_adapters_satisfy_protocols():
    assert isinstance(PaperExecutor(), ActionExecutor)
    assert isinstance(ReplayObserver([]), ChainObserver)
