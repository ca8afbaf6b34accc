"""Bridge deposit workflow: validate, connect, quote, (approve,) deposit, confirm."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount

from ..config import ApprovalMode, ChainConfig, ChainRegistry, EngineConfig
from ..exceptions import (
    BridgeEngineError,
    ConfirmationTimeoutError,
    InsufficientBalanceError,
    MissingBridgeAddressError,
    OnChainRevertError,
    UnsupportedChainError,
    ValidationError,
)
from ..retry import CancellationToken, RetryExecutor, constant_delay, is_transient
from ..types import (
    AssetRef,
    Confirmed,
    Failed,
    FailureKind,
    FeeQuote,
    Submitted,
    Token,
    TransferOutcome,
    TransferRequest,
)
from ..utils import (
    MAX_UINT256,
    from_base_units,
    is_truncated,
    is_valid_private_key,
    normalize_address,
    parse_amount,
    to_base_units,
)
from .client import ContractCall
from .connections import ConnectionManager
from .fees import FeeEstimator
from .metadata import TokenMetadataCache
from .transactions import TransactionDispatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _TransferPlan:
    source: ChainConfig
    dest: ChainConfig
    account: LocalAccount
    asset: AssetRef
    amount: Decimal
    recipient: str
    bridge_address: str
    gas_override: FeeQuote | None

    @property
    def direction(self) -> str:
        return f"{self.source.id}->{self.dest.id}"


@dataclass
class _Progress:
    approval_tx_id: str | None = None
    approval_confirmed: bool = False
    tx_id: str | None = None

    def approval_signed(self, tx_hash: str) -> None:
        self.approval_tx_id = tx_hash

    def deposit_signed(self, tx_hash: str) -> None:
        self.tx_id = tx_hash


class TransferEngine:
    """Execute bridge deposits on the source chain and observe their receipts."""

    def __init__(
        self,
        registry: ChainRegistry,
        config: EngineConfig | None = None,
        *,
        connections: ConnectionManager | None = None,
        fee_estimator: FeeEstimator | None = None,
        retry: RetryExecutor | None = None,
        metadata: TokenMetadataCache | None = None,
    ) -> None:
        self._registry = registry
        self._config = config or EngineConfig()
        self._connections = connections or ConnectionManager(registry)
        self._fees = fee_estimator or FeeEstimator()
        self._retry = retry or RetryExecutor(
            max_attempts=self._config.retry.max_attempts,
            delay_policy=constant_delay(self._config.retry.delay),
        )
        self._approval_delay = constant_delay(self._config.retry.approval_delay)
        self._metadata = metadata or TokenMetadataCache(self._config.default_token_decimals)
        self._dispatcher = TransactionDispatcher(
            self._connections, self._retry, poll_interval=self._config.poll_interval
        )

    @property
    def connections(self) -> ConnectionManager:
        return self._connections

    @property
    def metadata(self) -> TokenMetadataCache:
        return self._metadata

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------
    def execute(
        self, request: TransferRequest, *, cancel: CancellationToken | None = None
    ) -> TransferOutcome:
        cancel = cancel or CancellationToken()
        context: dict[str, Any] = {
            "source_chain": request.source_chain,
            "dest_chain": request.dest_chain,
            "asset": str(request.asset),
            "amount": str(request.amount),
        }
        direction = f"{request.source_chain}->{request.dest_chain}"

        try:
            plan = self._validate(request)
        except BridgeEngineError as exc:
            logger.warning("Stage transfer [%s]: rejected before network (reason=%s)", direction, exc)
            return self._failed(exc, context, _Progress(), direction)

        context["asset"] = str(plan.asset)
        context["sender"] = plan.account.address
        context["recipient"] = plan.recipient
        progress = _Progress()

        try:
            logger.info("Stage transfer [%s]: connect", direction)
            cancel.raise_if_cancelled("connect")
            client = self._retry.run(
                lambda: self._connections.acquire(plan.source.id),
                f"connect@{plan.source.id}",
                max_attempts=plan.source.max_attempts,
                cancel=cancel,
            )

            quote = self._fees.quote(client, plan.source, plan.gas_override)
            context["fee_quote"] = asdict(quote)

            if isinstance(plan.asset, Token):
                progress.tx_id = self._deposit_token(plan, plan.asset, quote, progress, context, cancel)
            else:
                progress.tx_id = self._deposit_native(plan, quote, progress, context, cancel)

            if not self._config.wait_for_confirmation:
                logger.info("Stage transfer [%s]: submitted (tx=%s)", direction, progress.tx_id)
                return Submitted(
                    tx_id=progress.tx_id,
                    approval_tx_id=progress.approval_tx_id,
                    context=context,
                )

            logger.info("Stage transfer [%s]: await confirmation (tx=%s)", direction, progress.tx_id)
            receipt = self._dispatcher.await_confirmation(
                plan.source, progress.tx_id, cancel=cancel, action="deposit"
            )
        except Exception as exc:
            return self._failed(exc, context, progress, direction)

        logger.info(
            "Stage transfer [%s]: confirmed (tx=%s, block=%s, gas_used=%s)",
            direction,
            receipt.tx_hash,
            receipt.block_number,
            receipt.gas_used,
        )
        return Confirmed(
            tx_id=progress.tx_id,
            block_number=receipt.block_number,
            gas_used=receipt.gas_used,
            approval_tx_id=progress.approval_tx_id,
            context=context,
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def _validate(self, request: TransferRequest) -> _TransferPlan:
        source = self._registry.get(request.source_chain)
        if source is None:
            raise ValidationError(
                "Unknown source chain", field="source_chain", value=request.source_chain
            )
        dest = self._registry.get(request.dest_chain)
        if dest is None:
            raise ValidationError("Unknown destination chain", field="dest_chain", value=request.dest_chain)
        if source.id == dest.id:
            raise ValidationError("Source and destination chains must differ", field="dest_chain", value=dest.id)

        if not source.is_evm:
            raise UnsupportedChainError(
                f"Chain '{source.id}' ({source.chain_type}) cannot be used as a transfer source",
                chain=source.id,
            )
        if not source.bridge_contract_address:
            raise MissingBridgeAddressError(source.id)
        bridge = normalize_address(source.bridge_contract_address)
        if not bridge.normalized:
            raise ValidationError(
                "Bridge contract address is not a valid EVM address",
                field="bridge_contract_address",
                value=source.bridge_contract_address,
            )

        account = self._load_account(request.signing_key)
        amount = parse_amount(request.amount)

        asset = source.parse_asset(request.asset)
        if isinstance(asset, Token):
            token_address = normalize_address(asset.address)
            if not token_address.normalized:
                raise ValidationError("Invalid token address", field="asset", value=asset.address)
            if asset.decimals is not None and not 0 <= asset.decimals <= 77:
                raise ValidationError("Invalid token decimals", field="decimals", value=asset.decimals)
            asset = Token(token_address.value, asset.decimals)
            decimals = asset.decimals
        else:
            decimals = source.native_decimals
        if decimals is not None and to_base_units(amount, decimals) <= 0:
            raise ValidationError(
                f"Amount is below the smallest unit for {decimals} decimals",
                field="amount",
                value=str(amount),
            )

        override = request.gas_override
        if override is not None and not override.satisfies_buffer(source.fee_policy.min_buffer):
            raise ValidationError(
                "Fee override max fee does not cover the priority fee headroom",
                field="gas_override",
                value=override,
                details={"min_buffer": str(source.fee_policy.min_buffer)},
            )

        return _TransferPlan(
            source=source,
            dest=dest,
            account=account,
            asset=asset,
            amount=amount,
            recipient=self._resolve_recipient(request.recipient, account, dest),
            bridge_address=bridge.value,
            gas_override=override,
        )

    def _load_account(self, signing_key: str) -> LocalAccount:
        if not is_valid_private_key(signing_key):
            raise ValidationError(
                "Signing key must be a 0x-prefixed 32-byte hex string", field="signing_key"
            )
        try:
            return Account.from_key(signing_key.strip())
        except Exception as exc:
            raise ValidationError(
                "Signing key was rejected", field="signing_key", details={"error": type(exc).__name__}
            ) from exc

    def _resolve_recipient(self, recipient: str | None, account: LocalAccount, dest: ChainConfig) -> str:
        if recipient is None:
            return account.address

        normalized = normalize_address(recipient)
        if normalized.normalized:
            return normalized.value
        if not dest.is_evm:
            logger.info("Passing %s recipient %s through unnormalised", dest.chain_type, recipient)
            return normalized.value
        if self._config.allow_unnormalized_recipient:
            logger.warning("Using unnormalised recipient %s for EVM chain %s", recipient, dest.id)
            return normalized.value
        raise ValidationError("Recipient is not a valid EVM address", field="recipient", value=recipient)

    # ------------------------------------------------------------------
    # Deposit branches
    # ------------------------------------------------------------------
    def _deposit_native(
        self,
        plan: _TransferPlan,
        quote: FeeQuote,
        progress: _Progress,
        context: dict[str, Any],
        cancel: CancellationToken,
    ) -> str:
        units = self._to_units(plan, plan.source.native_decimals, context)
        balance = self._dispatcher.remote(
            plan.source,
            "native balance",
            lambda client: client.native_balance(plan.account.address),
            cancel=cancel,
        )
        required = units + plan.source.min_native_balance
        if balance < required:
            raise InsufficientBalanceError(
                f"Need {from_base_units(required, plan.source.native_decimals)} native, "
                f"have {from_base_units(balance, plan.source.native_decimals)}",
                required=required,
                available=balance,
            )

        call = ContractCall.bridge(
            plan.bridge_address, "depositNative", str(plan.dest.network_id), value=units
        )
        tx_id = self._dispatcher.submit(
            plan.source, plan.account, call, quote, cancel=cancel, on_signed=progress.deposit_signed
        )
        logger.info("Stage transfer [%s]: native deposit submitted (tx=%s)", plan.direction, tx_id)
        return tx_id

    def _deposit_token(
        self,
        plan: _TransferPlan,
        token: Token,
        quote: FeeQuote,
        progress: _Progress,
        context: dict[str, Any],
        cancel: CancellationToken,
    ) -> str:
        decimals = token.decimals
        if decimals is None:
            decimals = self._metadata.resolve(
                plan.source.id,
                token.address,
                lambda: self._dispatcher.remote(
                    plan.source,
                    "decimals",
                    lambda client: client.call(ContractCall.erc20(token.address, "decimals")),
                    cancel=cancel,
                ),
            )
        context["decimals"] = decimals
        units = self._to_units(plan, decimals, context)
        owner = plan.account.address

        balance = self._dispatcher.remote(
            plan.source,
            "balanceOf",
            lambda client: client.call(ContractCall.erc20(token.address, "balanceOf", owner)),
            cancel=cancel,
        )
        if balance < units:
            raise InsufficientBalanceError(
                f"Need {plan.amount} of {token.address}, have {from_base_units(balance, decimals)}",
                required=units,
                available=balance,
            )

        if plan.source.min_native_balance:
            native = self._dispatcher.remote(
                plan.source,
                "native balance",
                lambda client: client.native_balance(owner),
                cancel=cancel,
            )
            if native < plan.source.min_native_balance:
                raise InsufficientBalanceError(
                    "Native balance below the gas reserve",
                    required=plan.source.min_native_balance,
                    available=native,
                )

        allowance = self._read_allowance(plan, token, cancel)
        if allowance < units:
            approve_units = units if self._config.approval_mode is ApprovalMode.EXACT else MAX_UINT256
            logger.info(
                "Stage transfer [%s]: approve (allowance=%s, required=%s, mode=%s)",
                plan.direction,
                allowance,
                units,
                self._config.approval_mode.value,
            )
            progress.approval_tx_id = self._dispatcher.submit(
                plan.source,
                plan.account,
                ContractCall.erc20(token.address, "approve", plan.bridge_address, approve_units),
                quote,
                cancel=cancel,
                delay_policy=self._approval_delay,
                on_signed=progress.approval_signed,
            )
            self._dispatcher.await_confirmation(
                plan.source, progress.approval_tx_id, cancel=cancel, action="approve"
            )
            progress.approval_confirmed = True

            allowance = self._read_allowance(plan, token, cancel)
            if allowance < units:
                raise BridgeEngineError(
                    "Allowance still insufficient after confirmed approval",
                    details={"allowance": allowance, "required": units},
                )
        else:
            logger.info(
                "Stage transfer [%s]: allowance %s covers %s, skipping approval",
                plan.direction,
                allowance,
                units,
            )

        call = ContractCall.bridge(
            plan.bridge_address,
            "depositToken",
            token.address,
            units,
            str(plan.dest.network_id),
            plan.recipient,
        )
        tx_id = self._dispatcher.submit(
            plan.source, plan.account, call, quote, cancel=cancel, on_signed=progress.deposit_signed
        )
        logger.info("Stage transfer [%s]: token deposit submitted (tx=%s)", plan.direction, tx_id)
        return tx_id

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _read_allowance(self, plan: _TransferPlan, token: Token, cancel: CancellationToken) -> int:
        return self._dispatcher.remote(
            plan.source,
            "allowance",
            lambda client: client.call(
                ContractCall.erc20(token.address, "allowance", plan.account.address, plan.bridge_address)
            ),
            cancel=cancel,
        )

    def _to_units(self, plan: _TransferPlan, decimals: int, context: dict[str, Any]) -> int:
        units = to_base_units(plan.amount, decimals)
        if units <= 0:
            raise ValidationError(
                f"Amount is below the smallest unit for {decimals} decimals",
                field="amount",
                value=str(plan.amount),
            )
        if is_truncated(plan.amount, decimals):
            logger.warning(
                "Truncating amount %s to %s decimals (%s)", plan.amount, decimals, plan.direction
            )
        context["amount_units"] = units
        return units

    def _failed(
        self,
        exc: BaseException,
        context: dict[str, Any],
        progress: _Progress,
        direction: str,
    ) -> Failed:
        if isinstance(exc, BridgeEngineError):
            kind = exc.kind
        elif is_transient(exc):
            kind = FailureKind.TRANSPORT
        else:
            kind = FailureKind.REJECTED

        failure_context = dict(context)
        failure_context["error"] = str(exc)
        failure_context["error_type"] = type(exc).__name__
        if isinstance(exc, BridgeEngineError) and exc.details:
            failure_context["error_details"] = exc.details
        if isinstance(exc, ConfirmationTimeoutError):
            failure_context["pending_tx_id"] = exc.tx_hash
        elif progress.tx_id is not None and not isinstance(exc, OnChainRevertError):
            # signed deposit whose broadcast or receipt is unresolved
            failure_context["pending_tx_id"] = progress.tx_id
        if progress.approval_confirmed and progress.tx_id is None:
            failure_context["resume_from"] = "deposit"

        message = (
            f"Transfer {direction} of {context['amount']} {context['asset']} failed "
            f"({kind.value}): {exc}"
        )
        if kind in (FailureKind.TRANSPORT, FailureKind.REJECTED):
            logger.error("Stage transfer [%s]: aborted (%s)", direction, message, exc_info=exc)
        else:
            logger.error("Stage transfer [%s]: aborted (%s)", direction, message)

        return Failed(
            kind=kind,
            message=message,
            tx_id=progress.tx_id,
            approval_tx_id=progress.approval_tx_id,
            context=failure_context,
            error=exc,
        )
