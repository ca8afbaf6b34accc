"""Bridge Transfer Engine - submit and confirm source-chain bridge deposits.

This library resolves healthy RPC endpoints with failover, derives safe fee
quotes, runs balance and allowance preflight checks, and submits native or
token deposits to a per-chain bridge contract.
"""

from .config import (
    FEE_POLICIES,
    ApprovalMode,
    ChainConfig,
    ChainRegistry,
    EngineConfig,
    FeeMode,
    FeePolicy,
    RetryPolicy,
)
from .evm import ConnectionManager, FeeEstimator, TransferEngine
from .exceptions import (
    AllEndpointsUnreachable,
    BridgeEngineError,
    ConfirmationTimeoutError,
    InsufficientBalanceError,
    MissingBridgeAddressError,
    NetworkError,
    OnChainRevertError,
    TransferCancelledError,
    UnsupportedChainError,
    ValidationError,
)
from .retry import CancellationToken, RetryExecutor, constant_delay, is_transient, linear_delay
from .types import (
    NATIVE,
    AssetRef,
    Confirmed,
    Failed,
    FailureKind,
    FeeQuote,
    Native,
    NormalizedAddress,
    Submitted,
    Token,
    TransferOutcome,
    TransferRequest,
)
from .utils import from_base_units, normalize_address, parse_amount, to_base_units

__version__ = "0.1.0"

__all__ = [
    # Engine
    "TransferEngine",
    "ConnectionManager",
    "FeeEstimator",
    "RetryExecutor",
    "CancellationToken",
    "constant_delay",
    "linear_delay",
    "is_transient",
    # Configuration
    "ChainConfig",
    "ChainRegistry",
    "EngineConfig",
    "FeePolicy",
    "FeeMode",
    "FEE_POLICIES",
    "ApprovalMode",
    "RetryPolicy",
    # Types
    "AssetRef",
    "Native",
    "NATIVE",
    "Token",
    "TransferRequest",
    "FeeQuote",
    "NormalizedAddress",
    "TransferOutcome",
    "Submitted",
    "Confirmed",
    "Failed",
    "FailureKind",
    # Exceptions
    "BridgeEngineError",
    "ValidationError",
    "UnsupportedChainError",
    "MissingBridgeAddressError",
    "NetworkError",
    "AllEndpointsUnreachable",
    "InsufficientBalanceError",
    "OnChainRevertError",
    "ConfirmationTimeoutError",
    "TransferCancelledError",
    # Utility functions
    "parse_amount",
    "to_base_units",
    "from_base_units",
    "normalize_address",
]
