"""Configuration containers and the chain registry."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any

from .exceptions import UnsupportedChainError, ValidationError
from .types import NATIVE, AssetRef, Token
from .utils import gwei, normalize_address

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_CONFIRMATION_TIMEOUT = 300.0
DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_BLOCK_CONFIRMATIONS = 1
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 2.0
DEFAULT_APPROVAL_RETRY_DELAY = 5.0
DEFAULT_GAS_LIMIT = 1_200_000
DEFAULT_NATIVE_DECIMALS = 18
DEFAULT_TOKEN_DECIMALS = 18
EVM_CHAIN_TYPE = "evm"


class FeeMode(str, Enum):
    """How live fee data is combined with configured floors."""

    LIVE_WITH_FLOOR = "live_with_floor"
    FIXED_FLOOR = "fixed_floor"


class ApprovalMode(str, Enum):
    """Allowance granted to the bridge when an approval is needed."""

    EXACT = "exact"
    UNLIMITED = "unlimited"


@dataclass(frozen=True)
class FeePolicy:
    """Named fee floors and buffers applied by the fee estimator."""

    name: str = "v4-floor-10-9.5"
    mode: FeeMode = FeeMode.LIVE_WITH_FLOOR
    max_fee_floor: int = gwei(10)
    priority_fee_floor: int = gwei("9.5")
    max_fee_multiplier: Decimal = Decimal("1.2")
    priority_fee_multiplier: Decimal = Decimal("1.1")
    min_buffer: Decimal = Decimal("0.1")


FEE_POLICIES: dict[str, FeePolicy] = {
    "v1-live-double": FeePolicy(
        name="v1-live-double",
        max_fee_floor=gwei(30),
        priority_fee_floor=gwei(2),
        max_fee_multiplier=Decimal("2"),
        priority_fee_multiplier=Decimal("2"),
    ),
    "v3-fixed-floor": FeePolicy(name="v3-fixed-floor", mode=FeeMode.FIXED_FLOOR),
    "v4-floor-10-9.5": FeePolicy(),
}

DEFAULT_FEE_POLICY = FEE_POLICIES["v4-floor-10-9.5"]


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt cap and inter-attempt delays for remote calls."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    delay: float = DEFAULT_RETRY_DELAY
    approval_delay: float = DEFAULT_APPROVAL_RETRY_DELAY


@dataclass(frozen=True)
class ChainConfig:
    """Static description of one network, as loaded from the chain registry."""

    id: str
    network_id: int | str
    endpoints: tuple[str, ...]
    bridge_contract_address: str | None = None
    fallback_endpoints: tuple[str, ...] = ()
    tokens: Mapping[str, str] = field(default_factory=dict)
    chain_type: str = EVM_CHAIN_TYPE
    native_decimals: int = DEFAULT_NATIVE_DECIMALS
    default_gas_limit: int = DEFAULT_GAS_LIMIT
    fee_policy: FeePolicy = DEFAULT_FEE_POLICY
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    max_attempts: int | None = None
    confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT
    block_confirmations: int = DEFAULT_BLOCK_CONFIRMATIONS
    min_native_balance: int = 0
    verify_network_id: bool = True

    @property
    def is_evm(self) -> bool:
        return self.chain_type == EVM_CHAIN_TYPE

    def candidate_endpoints(self) -> tuple[str, ...]:
        """Primary endpoints followed by fallbacks, deduplicated in order."""

        return tuple(dict.fromkeys(url for url in (*self.endpoints, *self.fallback_endpoints) if url))

    def parse_asset(self, value: str | AssetRef) -> AssetRef:
        """Resolve ``"native"``, a registered token symbol or a contract address."""

        if not isinstance(value, str):
            return value

        if value.strip().lower() == "native":
            return NATIVE

        for symbol, address in self.tokens.items():
            if symbol.upper() == value.strip().upper():
                return Token(address)

        candidate = normalize_address(value)
        if not candidate.normalized:
            raise ValidationError(
                f"Unknown asset for chain '{self.id}'", field="asset", value=value
            )
        return Token(candidate.value)


@dataclass(frozen=True)
class EngineConfig:
    """Behaviour switches for the transfer engine."""

    approval_mode: ApprovalMode = ApprovalMode.EXACT
    retry: RetryPolicy = RetryPolicy()
    wait_for_confirmation: bool = True
    poll_interval: float = DEFAULT_POLL_INTERVAL
    allow_unnormalized_recipient: bool = False
    default_token_decimals: int = DEFAULT_TOKEN_DECIMALS


class ChainRegistry(Mapping[str, ChainConfig]):
    """Immutable chain id -> ChainConfig table, loaded once at start-up."""

    def __init__(self, chains: Iterable[ChainConfig]):
        self._chains: dict[str, ChainConfig] = {}
        for chain in chains:
            if chain.id in self._chains:
                raise ValidationError("Duplicate chain id in registry", field="id", value=chain.id)
            self._chains[chain.id] = chain

    def __getitem__(self, chain_id: str) -> ChainConfig:
        return self._chains[chain_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._chains)

    def __len__(self) -> int:
        return len(self._chains)

    def require(self, chain_id: str) -> ChainConfig:
        chain = self._chains.get(chain_id)
        if chain is None:
            raise UnsupportedChainError(f"Chain '{chain_id}' is not in the registry", chain=chain_id)
        return chain

    @classmethod
    def from_mapping(cls, data: Mapping[str, Mapping[str, Any]]) -> ChainRegistry:
        """Build a registry from ``{chain_id: {field: value}}``."""

        return cls(_chain_from_entry(chain_id, entry) for chain_id, entry in data.items())

    @classmethod
    def from_json(cls, path: str | Path) -> ChainRegistry:
        with Path(path).open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        if not isinstance(data, Mapping):
            raise ValidationError("Chain registry must be a JSON object", field="path", value=str(path))
        registry = cls.from_mapping(data)
        logger.info("Loaded %s chains from %s", len(registry), path)
        return registry


def _chain_from_entry(chain_id: str, entry: Mapping[str, Any]) -> ChainConfig:
    if not isinstance(entry, Mapping):
        raise ValidationError("Chain entry must be a mapping", field=chain_id, value=entry)

    network_id = entry.get("network_id")
    if network_id is None:
        raise ValidationError("Chain entry is missing network_id", field=f"{chain_id}.network_id")

    endpoints = _as_tuple(entry.get("endpoints"))
    fallback = _as_tuple(entry.get("fallback_endpoints"))
    chain_type = str(entry.get("chain_type", EVM_CHAIN_TYPE)).lower()
    if chain_type == EVM_CHAIN_TYPE and not (endpoints or fallback):
        raise ValidationError("EVM chain requires at least one endpoint", field=f"{chain_id}.endpoints")

    optional: dict[str, Any] = {}
    for key, cast in (
        ("native_decimals", int),
        ("default_gas_limit", int),
        ("connect_timeout", float),
        ("request_timeout", float),
        ("max_attempts", int),
        ("confirmation_timeout", float),
        ("block_confirmations", int),
        ("min_native_balance", int),
        ("verify_network_id", bool),
    ):
        if entry.get(key) is not None:
            optional[key] = cast(entry[key])

    return ChainConfig(
        id=chain_id,
        network_id=network_id,
        endpoints=endpoints,
        fallback_endpoints=fallback,
        bridge_contract_address=entry.get("bridge_contract_address") or None,
        tokens=dict(entry.get("tokens") or {}),
        chain_type=chain_type,
        fee_policy=_fee_policy_from_entry(chain_id, entry),
        **optional,
    )


def _fee_policy_from_entry(chain_id: str, entry: Mapping[str, Any]) -> FeePolicy:
    preset = entry.get("fee_policy")
    if preset is None:
        policy = DEFAULT_FEE_POLICY
    elif preset in FEE_POLICIES:
        policy = FEE_POLICIES[preset]
    else:
        raise ValidationError("Unknown fee policy", field=f"{chain_id}.fee_policy", value=preset)

    overrides: dict[str, Any] = {}
    if entry.get("fee_mode") is not None:
        overrides["mode"] = FeeMode(entry["fee_mode"])
    if entry.get("max_fee_floor_gwei") is not None:
        overrides["max_fee_floor"] = gwei(entry["max_fee_floor_gwei"])
    if entry.get("priority_fee_floor_gwei") is not None:
        overrides["priority_fee_floor"] = gwei(entry["priority_fee_floor_gwei"])
    for key in ("max_fee_multiplier", "priority_fee_multiplier", "min_buffer"):
        if entry.get(key) is not None:
            overrides[key] = Decimal(str(entry[key]))

    if not overrides:
        return policy
    return replace(policy, name=f"{policy.name}+{chain_id}", **overrides)


def _as_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(item) for item in value)
