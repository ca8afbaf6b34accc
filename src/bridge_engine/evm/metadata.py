"""Token decimal resolution with a process-lifetime cache."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from web3 import Web3

from ..exceptions import TransferCancelledError

logger = logging.getLogger(__name__)


class TokenMetadataCache:
    """Cache ERC20 decimals per (chain id, checksum address).

    Token contracts are immutable, so a resolved value is kept for the lifetime
    of the process. Fallback defaults are returned but never cached.
    """

    def __init__(self, default_decimals: int) -> None:
        self._default_decimals = default_decimals
        self._decimals: dict[tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def reset(self) -> None:
        with self._lock:
            self._decimals.clear()

    def cached(self, chain_id: str, token: str) -> int | None:
        with self._lock:
            return self._decimals.get((chain_id, Web3.to_checksum_address(token)))

    def resolve(self, chain_id: str, token: str, loader: Callable[[], int]) -> int:
        key = (chain_id, Web3.to_checksum_address(token))
        with self._lock:
            cached = self._decimals.get(key)
        if cached is not None:
            return cached

        try:
            decimals = int(loader())
        except TransferCancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "Unable to read decimals for %s on %s, assuming %s: %s",
                key[1],
                chain_id,
                self._default_decimals,
                exc,
            )
            return self._default_decimals

        if not 0 <= decimals <= 77:
            logger.warning(
                "Token %s on %s reported implausible decimals=%s, assuming %s",
                key[1],
                chain_id,
                decimals,
                self._default_decimals,
            )
            return self._default_decimals

        with self._lock:
            self._decimals[key] = decimals
        logger.debug("Resolved decimals=%s for %s on %s", decimals, key[1], chain_id)
        return decimals
