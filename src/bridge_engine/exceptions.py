"""Exception hierarchy for the bridge transfer engine."""

from typing import Any

from .types import FailureKind


class BridgeEngineError(Exception):
    """Base exception for all bridge engine errors."""

    kind: FailureKind = FailureKind.REJECTED
    retryable: bool = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(BridgeEngineError):
    """Raised when a transfer request fails local validation."""

    kind = FailureKind.INVALID_REQUEST

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.field = field
        self.value = value


class UnsupportedChainError(BridgeEngineError):
    """Raised when a chain cannot act as the source of a transfer."""

    kind = FailureKind.UNSUPPORTED_CHAIN

    def __init__(self, message: str, chain: str | None = None, details: dict | None = None):
        super().__init__(message, details)
        self.chain = chain


class MissingBridgeAddressError(BridgeEngineError):
    """Raised when the source chain has no bridge contract configured."""

    kind = FailureKind.MISSING_BRIDGE_ADDRESS

    def __init__(self, chain: str, details: dict | None = None):
        super().__init__(f"No bridge contract configured for chain '{chain}'", details)
        self.chain = chain


class NetworkError(BridgeEngineError):
    """Raised when network/connection issues occur."""

    kind = FailureKind.TRANSPORT
    retryable = True

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        status_code: int | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status_code = status_code


class AllEndpointsUnreachable(NetworkError):
    """Raised when no candidate endpoint of a chain passed its liveness probe."""

    kind = FailureKind.UNREACHABLE

    def __init__(self, chain: str, failures: list[tuple[str, str]]):
        super().__init__(
            f"All {len(failures)} RPC endpoints for chain '{chain}' are unreachable",
            details={"failures": [{"endpoint": url, "error": error} for url, error in failures]},
        )
        self.chain = chain
        self.failures = failures


class InsufficientBalanceError(BridgeEngineError):
    """Raised when the sender cannot cover the transfer amount."""

    kind = FailureKind.INSUFFICIENT_BALANCE

    def __init__(
        self,
        message: str,
        required: int,
        available: int,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.required = required
        self.available = available


class OnChainRevertError(BridgeEngineError):
    """Raised when a mined transaction reports a failed status."""

    kind = FailureKind.ON_CHAIN_REVERT

    def __init__(self, tx_hash: str, reason: str | None = None, details: dict | None = None):
        message = f"Transaction {tx_hash} reverted on-chain"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, details)
        self.tx_hash = tx_hash
        self.reason = reason


class ConfirmationTimeoutError(BridgeEngineError):
    """Raised when a submitted transaction was not confirmed in time."""

    kind = FailureKind.CONFIRMATION_TIMEOUT

    def __init__(self, tx_hash: str, timeout: float, details: dict | None = None):
        super().__init__(
            f"Transaction {tx_hash} not confirmed within {timeout:.0f} seconds", details
        )
        self.tx_hash = tx_hash
        self.timeout = timeout


class TransferCancelledError(BridgeEngineError):
    """Raised when the caller cancelled the transfer or its deadline passed."""

    kind = FailureKind.CANCELLED

    def __init__(self, message: str = "Transfer cancelled", stage: str | None = None):
        super().__init__(message, {"stage": stage} if stage else None)
        self.stage = stage
