"""Type definitions and data models for the bridge transfer engine."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import ROUND_CEILING, Decimal
from enum import Enum
from typing import Any


class FailureKind(str, Enum):
    """Classification attached to every failed transfer."""

    INVALID_REQUEST = "invalid_request"
    UNSUPPORTED_CHAIN = "unsupported_chain"
    MISSING_BRIDGE_ADDRESS = "missing_bridge_address"
    UNREACHABLE = "unreachable"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    ON_CHAIN_REVERT = "on_chain_revert"
    CONFIRMATION_TIMEOUT = "confirmation_timeout"
    CANCELLED = "cancelled"
    TRANSPORT = "transport"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Native:
    """The base coin of the source chain."""

    def __str__(self) -> str:
        return "native"


@dataclass(frozen=True)
class Token:
    """An ERC20-style token identified by its contract address."""

    address: str
    decimals: int | None = None

    def __str__(self) -> str:
        return self.address


AssetRef = Native | Token

NATIVE = Native()


@dataclass(frozen=True)
class FeeQuote:
    """EIP-1559 fee parameters attached to a transaction."""

    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    gas_limit: int

    def satisfies_buffer(self, min_buffer: Decimal) -> bool:
        """Return True when the max fee covers the priority fee plus ``min_buffer``."""

        return self.max_fee_per_gas >= minimum_max_fee(self.max_priority_fee_per_gas, min_buffer)

    def as_tx_params(self) -> dict[str, int]:
        return {
            "gas": self.gas_limit,
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
        }


def minimum_max_fee(priority_fee: int, min_buffer: Decimal) -> int:
    """Smallest max fee allowed for ``priority_fee``, rounded up to a whole wei."""

    required = Decimal(priority_fee) * (Decimal(1) + min_buffer)
    return int(required.to_integral_value(rounding=ROUND_CEILING))


@dataclass(frozen=True)
class FeeSuggestion:
    """Fee levels as reported by the chain."""

    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    base_fee_per_gas: int | None = None


@dataclass(frozen=True)
class TxReceipt:
    """The subset of a transaction receipt the engine acts on."""

    tx_hash: str
    status: int
    block_number: int
    gas_used: int
    revert_reason: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@dataclass(frozen=True)
class NormalizedAddress:
    """Result of address normalisation; ``normalized`` is False on passthrough."""

    value: str
    normalized: bool


@dataclass(frozen=True)
class TransferRequest:
    """A single source-chain bridge deposit to perform."""

    source_chain: str
    dest_chain: str
    asset: AssetRef
    amount: str | Decimal
    signing_key: str = field(repr=False)
    recipient: str | None = None
    gas_override: FeeQuote | None = None


@dataclass(frozen=True)
class Submitted:
    """Deposit broadcast without waiting for confirmation."""

    tx_id: str
    approval_tx_id: str | None = None
    context: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Confirmed:
    """Deposit mined with a success status and enough confirmations."""

    tx_id: str
    block_number: int
    gas_used: int
    approval_tx_id: str | None = None
    context: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Failed:
    """Terminal failure; ``tx_id`` is set when a deposit may still land."""

    kind: FailureKind
    message: str
    tx_id: str | None = None
    approval_tx_id: str | None = None
    context: Mapping[str, Any] = field(default_factory=dict)
    error: BaseException | None = field(default=None, compare=False, repr=False)


TransferOutcome = Submitted | Confirmed | Failed
