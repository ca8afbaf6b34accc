"""Remote call dispatch, transaction submission and confirmation polling."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from eth_account.signers.local import LocalAccount

from ..config import ChainConfig
from ..exceptions import ConfirmationTimeoutError, OnChainRevertError, TransferCancelledError
from ..retry import CancellationToken, DelayPolicy, RetryExecutor, is_transient
from ..types import FeeQuote, TxReceipt
from .client import ChainClient, ContractCall
from .connections import ConnectionManager

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransactionDispatcher:
    """Run remote calls through the retry executor and track submitted transactions."""

    def __init__(
        self,
        connections: ConnectionManager,
        retry: RetryExecutor,
        *,
        poll_interval: float,
    ) -> None:
        self._connections = connections
        self._retry = retry
        self._poll_interval = poll_interval

    def remote(
        self,
        chain: ChainConfig,
        label: str,
        operation: Callable[[ChainClient], T],
        *,
        cancel: CancellationToken,
        delay_policy: DelayPolicy | None = None,
    ) -> T:
        """Call ``operation`` on the chain's client, evicting it on transient failure."""

        def attempt() -> T:
            client = self._connections.acquire(chain.id)
            try:
                return operation(client)
            except Exception as exc:
                if is_transient(exc):
                    self._connections.evict(chain.id, client)
                raise

        return self._retry.run(
            attempt,
            f"{label}@{chain.id}",
            max_attempts=chain.max_attempts,
            delay_policy=delay_policy,
            cancel=cancel,
        )

    def submit(
        self,
        chain: ChainConfig,
        account: LocalAccount,
        call: ContractCall,
        quote: FeeQuote,
        *,
        cancel: CancellationToken,
        delay_policy: DelayPolicy | None = None,
        on_signed: Callable[[str], None] | None = None,
    ) -> str:
        """Sign ``call`` once and broadcast it; retries re-send the same signed bytes.

        ``on_signed`` receives the transaction hash before the first broadcast, so a
        caller still knows the hash when every send attempt fails after the node
        may already have accepted the transaction.
        """

        cancel.raise_if_cancelled(call.function)
        signed = self.remote(
            chain,
            f"sign {call.function}",
            lambda client: client.sign(account, call, quote),
            cancel=cancel,
            delay_policy=delay_policy,
        )
        if on_signed is not None:
            on_signed(signed.tx_hash)
        sent_hash = self.remote(
            chain,
            f"send {call.function}",
            lambda client: client.send_raw(signed),
            cancel=cancel,
            delay_policy=delay_policy,
        )
        if sent_hash.lower() != signed.tx_hash.lower():
            logger.warning(
                "Node reported hash %s for %s, expected %s", sent_hash, call.function, signed.tx_hash
            )

        logger.info(
            "Transaction sent for action=%s chain=%s hash=%s nonce=%s",
            call.function,
            chain.id,
            signed.tx_hash,
            signed.nonce,
        )
        return signed.tx_hash

    def await_confirmation(
        self,
        chain: ChainConfig,
        tx_hash: str,
        *,
        cancel: CancellationToken,
        action: str,
    ) -> TxReceipt:
        """Poll until ``tx_hash`` has ``block_confirmations`` blocks or the timeout passes."""

        deadline = time.monotonic() + chain.confirmation_timeout
        while True:
            receipt: TxReceipt | None = None
            confirmations = 0
            client = None
            try:
                client = self._connections.acquire(chain.id)
                receipt = client.get_receipt(tx_hash)
                if receipt is not None:
                    confirmations = client.block_number() - receipt.block_number + 1
            except Exception as exc:
                if not is_transient(exc):
                    raise
                if client is not None:
                    self._connections.evict(chain.id, client)
                logger.warning("Receipt poll for %s on %s failed: %s", tx_hash, chain.id, exc)
                receipt = None

            if receipt is not None and confirmations >= chain.block_confirmations:
                if not receipt.succeeded:
                    logger.error(
                        "Transaction reverted for action=%s hash=%s block=%s",
                        action,
                        tx_hash,
                        receipt.block_number,
                    )
                    raise OnChainRevertError(
                        tx_hash,
                        receipt.revert_reason,
                        details={"block_number": receipt.block_number, "gas_used": receipt.gas_used},
                    )
                logger.info(
                    "Transaction confirmed for action=%s hash=%s block=%s confirmations=%s",
                    action,
                    tx_hash,
                    receipt.block_number,
                    confirmations,
                )
                return receipt

            if receipt is not None:
                logger.debug(
                    "Transaction %s has %s/%s confirmations", tx_hash, confirmations, chain.block_confirmations
                )

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.error("Timed out waiting for %s (hash=%s)", action, tx_hash)
                raise ConfirmationTimeoutError(tx_hash, chain.confirmation_timeout)
            if cancel.wait(min(self._poll_interval, remaining)):
                raise TransferCancelledError(
                    f"Transfer cancelled while waiting for {action}", stage=f"{action} confirmation"
                )
