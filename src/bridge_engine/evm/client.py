"""Chain client abstraction and its web3.py implementation."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests
from eth_account.signers.local import LocalAccount
from web3 import HTTPProvider, Web3
from web3.contract import Contract
from web3.exceptions import TransactionNotFound, Web3RPCError

from ..abi import Bridge_abi, ERC20_abi
from ..config import ChainConfig
from ..exceptions import NetworkError, ValidationError
from ..types import FeeQuote, FeeSuggestion, TxReceipt

logger = logging.getLogger(__name__)

_ABIS = {"erc20": ERC20_abi, "bridge": Bridge_abi}

_ALREADY_KNOWN_MARKERS = ("already known", "known transaction", "already imported")


@dataclass(frozen=True)
class ContractCall:
    """A single contract function invocation, read or write."""

    contract: str
    address: str
    function: str
    args: tuple[Any, ...] = ()
    value: int = 0

    @classmethod
    def erc20(cls, address: str, function: str, *args: Any) -> ContractCall:
        return cls("erc20", address, function, tuple(args))

    @classmethod
    def bridge(cls, address: str, function: str, *args: Any, value: int = 0) -> ContractCall:
        return cls("bridge", address, function, tuple(args), value)


@dataclass(frozen=True)
class SignedTransaction:
    """A signed write call; re-broadcasting it can never create a second transaction."""

    tx_hash: str
    nonce: int
    call: ContractCall
    raw_transaction: bytes = field(repr=False)


class ChainClient(Protocol):
    """The fixed set of remote calls the engine issues against one endpoint."""

    endpoint: str

    def probe(self) -> int: ...

    def network_id(self) -> int: ...

    def block_number(self) -> int: ...

    def fee_suggestion(self) -> FeeSuggestion: ...

    def native_balance(self, address: str) -> int: ...

    def call(self, call: ContractCall) -> Any: ...

    def sign(self, account: LocalAccount, call: ContractCall, quote: FeeQuote) -> SignedTransaction: ...

    def send_raw(self, signed: SignedTransaction) -> str: ...

    def get_receipt(self, tx_hash: str) -> TxReceipt | None: ...


class Web3ChainClient:
    """ChainClient bound to exactly one RPC endpoint of one chain."""

    def __init__(
        self,
        chain: ChainConfig,
        endpoint: str,
        session: requests.Session | None = None,
    ) -> None:
        self.chain = chain
        self.endpoint = endpoint
        self._session = session or requests.Session()
        provider = HTTPProvider(
            endpoint,
            request_kwargs={"timeout": (chain.connect_timeout, chain.request_timeout)},
            session=self._session,
            exception_retry_configuration=None,
        )
        self._web3 = Web3(provider)

    def __repr__(self) -> str:
        return f"Web3ChainClient(chain={self.chain.id!r}, endpoint={self.endpoint!r})"

    @property
    def web3(self) -> Web3:
        return self._web3

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def probe(self) -> int:
        """Fetch the block height with a single request bounded by the connect timeout."""

        payload = {"jsonrpc": "2.0", "id": 1, "method": "eth_blockNumber", "params": []}
        try:
            response = self._session.post(
                self.endpoint, json=payload, timeout=self.chain.connect_timeout
            )
            response.raise_for_status()
            body = response.json()
        except requests.HTTPError as exc:
            raise NetworkError(
                "Liveness probe rejected",
                endpoint=self.endpoint,
                status_code=exc.response.status_code if exc.response is not None else None,
                details={"error": str(exc)},
            ) from exc
        except (requests.RequestException, ValueError) as exc:
            raise NetworkError(
                "Liveness probe failed",
                endpoint=self.endpoint,
                details={"error": str(exc)},
            ) from exc

        if not isinstance(body, Mapping) or not isinstance(body.get("result"), str):
            raise NetworkError(
                "Liveness probe returned no block height",
                endpoint=self.endpoint,
                details={"response": body},
            )
        return int(body["result"], 16)

    def network_id(self) -> int:
        return int(self._web3.eth.chain_id)

    def block_number(self) -> int:
        return int(self._web3.eth.block_number)

    def fee_suggestion(self) -> FeeSuggestion:
        latest = self._web3.eth.get_block("latest")
        base_fee = latest.get("baseFeePerGas")
        if base_fee is None:
            gas_price = int(self._web3.eth.gas_price)
            return FeeSuggestion(max_fee_per_gas=gas_price, max_priority_fee_per_gas=gas_price)

        priority_fee = int(self._web3.eth.max_priority_fee)
        return FeeSuggestion(
            max_fee_per_gas=2 * int(base_fee) + priority_fee,
            max_priority_fee_per_gas=priority_fee,
            base_fee_per_gas=int(base_fee),
        )

    def native_balance(self, address: str) -> int:
        return int(self._web3.eth.get_balance(Web3.to_checksum_address(address)))

    def call(self, call: ContractCall) -> Any:
        return self._function(call).call()

    def get_receipt(self, tx_hash: str) -> TxReceipt | None:
        try:
            receipt = self._web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None

        block_number = receipt.get("blockNumber")
        if block_number is None:
            return None

        return TxReceipt(
            tx_hash=tx_hash,
            status=int(receipt.get("status", 0)),
            block_number=int(block_number),
            gas_used=int(receipt.get("gasUsed", 0)),
            revert_reason=receipt.get("revertReason"),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def sign(self, account: LocalAccount, call: ContractCall, quote: FeeQuote) -> SignedTransaction:
        nonce = self._web3.eth.get_transaction_count(account.address, "pending")
        params: dict[str, Any] = {"from": account.address, "nonce": nonce, **quote.as_tx_params()}
        if call.value:
            params["value"] = call.value
        tx = self._function(call).build_transaction(params)
        signed = account.sign_transaction(tx)
        return SignedTransaction(
            tx_hash=signed.hash.to_0x_hex(),
            nonce=nonce,
            call=call,
            raw_transaction=bytes(signed.raw_transaction),
        )

    def send_raw(self, signed: SignedTransaction) -> str:
        try:
            tx_hash = self._web3.eth.send_raw_transaction(signed.raw_transaction)
        except Web3RPCError as exc:
            message = str(exc).lower()
            if any(marker in message for marker in _ALREADY_KNOWN_MARKERS):
                logger.info("Transaction %s already known to %s", signed.tx_hash, self.endpoint)
                return signed.tx_hash
            if "nonce too low" in message and self.get_receipt(signed.tx_hash) is not None:
                logger.info("Transaction %s already mined", signed.tx_hash)
                return signed.tx_hash
            raise
        return tx_hash.to_0x_hex()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _contract(self, call: ContractCall) -> Contract:
        abi = _ABIS.get(call.contract)
        if abi is None:
            raise ValidationError("Unknown contract kind", field="contract", value=call.contract)
        return self._web3.eth.contract(address=Web3.to_checksum_address(call.address), abi=abi)

    def _function(self, call: ContractCall):
        contract = self._contract(call)
        return getattr(contract.functions, call.function)(*call.args)
