"""Connection management with ranked endpoint failover."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

import requests

from ..config import ChainConfig, ChainRegistry
from ..exceptions import AllEndpointsUnreachable, NetworkError
from .client import ChainClient, Web3ChainClient

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ChainConfig, str], ChainClient]


class ConnectionManager:
    """Resolve chain ids to live, health-checked clients and cache them.

    One client is cached per chain id. A client that fails with a transport
    error is evicted by the caller; the next ``acquire`` walks the endpoint list
    from the top again, since a previously failing endpoint may have recovered.
    """

    def __init__(
        self,
        registry: ChainRegistry,
        *,
        client_factory: ClientFactory | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._registry = registry
        self._session = session or requests.Session()
        self._factory = client_factory or self._build_web3_client
        self._cache: dict[str, ChainClient] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def acquire(self, chain_id: str) -> ChainClient:
        chain = self._registry.require(chain_id)

        with self._lock:
            cached = self._cache.get(chain_id)
        if cached is not None:
            return cached

        failures: list[tuple[str, str]] = []
        for endpoint in chain.candidate_endpoints():
            try:
                client = self._factory(chain, endpoint)
                height = client.probe()
                self._verify_network(chain, client)
            except Exception as exc:
                logger.warning(
                    "Endpoint %s for chain %s failed liveness probe: %s", endpoint, chain_id, exc
                )
                failures.append((endpoint, str(exc)))
                continue

            with self._lock:
                selected = self._cache.setdefault(chain_id, client)
            logger.info(
                "Selected endpoint %s for chain %s (block=%s)", selected.endpoint, chain_id, height
            )
            return selected

        logger.error("All %s endpoints for chain %s are unreachable", len(failures), chain_id)
        raise AllEndpointsUnreachable(chain_id, failures)

    def evict(self, chain_id: str, client: ChainClient | None = None) -> None:
        """Drop the cached client, only if it is still ``client`` when one is given."""

        with self._lock:
            current = self._cache.get(chain_id)
            if current is None or (client is not None and current is not client):
                return
            del self._cache[chain_id]
        logger.info("Evicted endpoint %s for chain %s", current.endpoint, chain_id)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def cached(self, chain_id: str) -> ChainClient | None:
        with self._lock:
            return self._cache.get(chain_id)

    # ------------------------------------------------------------------
    # Internal wiring
    # ------------------------------------------------------------------
    def _build_web3_client(self, chain: ChainConfig, endpoint: str) -> ChainClient:
        return Web3ChainClient(chain, endpoint, self._session)

    def _verify_network(self, chain: ChainConfig, client: ChainClient) -> None:
        if not chain.verify_network_id or not isinstance(chain.network_id, int):
            return

        reported = client.network_id()
        if reported != chain.network_id:
            raise NetworkError(
                f"Endpoint serves network {reported}, expected {chain.network_id}",
                endpoint=client.endpoint,
                details={"expected": chain.network_id, "reported": reported},
            )
