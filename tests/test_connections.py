"""Tests for endpoint failover and client caching."""

from __future__ import annotations

import pytest

from bridge_engine.evm.connections import ConnectionManager
from bridge_engine.exceptions import AllEndpointsUnreachable, UnsupportedChainError
from bridge_engine.types import FailureKind

from tests.stubs import FakeChain, FakeNetwork, make_registry

PRIMARY = "https://primary.sepolia"
SECONDARY = "https://secondary.sepolia"
FALLBACK = "https://fallback.sepolia"


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def manager(network):
    return ConnectionManager(make_registry(), client_factory=network)


def test_first_live_endpoint_selected(manager, network):
    client = manager.acquire("SEPOLIA")

    assert client.endpoint == PRIMARY
    assert network.built == [PRIMARY]


@pytest.mark.parametrize("down_count", [1, 2])
def test_failing_endpoints_skipped_with_warning(manager, network, caplog, down_count):
    network.down.update([PRIMARY, SECONDARY][:down_count])

    with caplog.at_level("WARNING", logger="bridge_engine.evm.connections"):
        client = manager.acquire("SEPOLIA")

    assert client.endpoint == [SECONDARY, FALLBACK][down_count - 1]
    warnings = [record for record in caplog.records if record.levelname == "WARNING"]
    assert len(warnings) == down_count
    assert "failed liveness probe" in warnings[0].getMessage()


def test_all_endpoints_down(manager, network):
    network.down.update([PRIMARY, SECONDARY, FALLBACK])

    with pytest.raises(AllEndpointsUnreachable) as excinfo:
        manager.acquire("SEPOLIA")

    error = excinfo.value
    assert error.kind is FailureKind.UNREACHABLE
    assert [url for url, _ in error.failures] == [PRIMARY, SECONDARY, FALLBACK]
    assert network.built == [PRIMARY, SECONDARY, FALLBACK]
    assert len(error.details["failures"]) == 3
    assert manager.cached("SEPOLIA") is None


def test_cached_client_reused(manager, network):
    first = manager.acquire("SEPOLIA")
    second = manager.acquire("SEPOLIA")

    assert first is second
    assert network.built == [PRIMARY]


def test_evict_restarts_from_top_of_list(manager, network):
    network.down.add(PRIMARY)
    assert manager.acquire("SEPOLIA").endpoint == SECONDARY

    network.down.clear()
    manager.evict("SEPOLIA")

    assert manager.acquire("SEPOLIA").endpoint == PRIMARY


def test_evict_ignores_stale_client(manager):
    current = manager.acquire("SEPOLIA")
    manager.evict("SEPOLIA")
    replacement = manager.acquire("SEPOLIA")

    manager.evict("SEPOLIA", current)

    assert manager.cached("SEPOLIA") is replacement


def test_wrong_network_endpoint_skipped():
    network = FakeNetwork({"SEPOLIA": FakeChain(network_id=1)})
    manager = ConnectionManager(make_registry(), client_factory=network)

    with pytest.raises(AllEndpointsUnreachable) as excinfo:
        manager.acquire("SEPOLIA")

    assert "expected 11155111" in excinfo.value.failures[0][1]


def test_network_check_can_be_disabled():
    network = FakeNetwork({"SEPOLIA": FakeChain(network_id=1)})
    manager = ConnectionManager(make_registry(verify_network_id=False), client_factory=network)

    assert manager.acquire("SEPOLIA").endpoint == PRIMARY


def test_unknown_chain(manager):
    with pytest.raises(UnsupportedChainError):
        manager.acquire("CORN")


def test_clear_drops_all_clients(manager):
    manager.acquire("SEPOLIA")
    manager.clear()

    assert manager.cached("SEPOLIA") is None
