"""In-memory chain clients used by the test-suite (no network)."""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import requests
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from bridge_engine.config import ChainConfig, ChainRegistry, EngineConfig, RetryPolicy
from bridge_engine.evm.client import ContractCall, SignedTransaction
from bridge_engine.types import FeeQuote, FeeSuggestion, TxReceipt
from bridge_engine.utils import gwei

PRIVATE_KEY = "0x" + "11" * 32
SENDER = Account.from_key(PRIVATE_KEY).address
BRIDGE = Web3.to_checksum_address("0x94373a4919b3240d86ea41593d5eba789fef3848")
USDC = Web3.to_checksum_address("0x1c7d4b196cb0c7b01d743fbc6116a902379c7238")
WETH = Web3.to_checksum_address("0x7b79995e5f793a07bc00c21412e50ecae098e7f9")


def make_registry(**sepolia_overrides: Any) -> ChainRegistry:
    sepolia = {
        "id": "SEPOLIA",
        "network_id": 11155111,
        "endpoints": ("https://primary.sepolia", "https://secondary.sepolia"),
        "fallback_endpoints": ("https://fallback.sepolia",),
        "bridge_contract_address": BRIDGE,
        "tokens": {"USDC": USDC, "WETH": WETH},
    }
    sepolia.update(sepolia_overrides)
    return ChainRegistry(
        [
            ChainConfig(**sepolia),
            ChainConfig(
                id="HOLESKY",
                network_id=17000,
                endpoints=("https://rpc.holesky",),
                bridge_contract_address=BRIDGE,
            ),
            ChainConfig(
                id="XION",
                network_id="xion-testnet-1",
                endpoints=("https://rpc.xion",),
                chain_type="cosmos",
            ),
        ]
    )


def fast_config(**overrides: Any) -> EngineConfig:
    values: dict[str, Any] = {
        "retry": RetryPolicy(max_attempts=3, delay=0.0, approval_delay=0.0),
        "poll_interval": 0.0,
    }
    values.update(overrides)
    return EngineConfig(**values)


@dataclass
class FakeChain:
    """Shared state of one simulated chain; every client of the chain sees it."""

    network_id: int = 11155111
    block: int = 100
    native_balances: dict[str, int] = field(default_factory=dict)
    token_balances: dict[tuple[str, str], int] = field(default_factory=dict)
    allowances: dict[tuple[str, str, str], int] = field(default_factory=dict)
    decimals: dict[str, int] = field(default_factory=dict)
    fee: FeeSuggestion | Exception = field(
        default_factory=lambda: FeeSuggestion(gwei(20), gwei(1), gwei(9))
    )
    mine: bool = True
    revert_functions: set[str] = field(default_factory=set)
    send_failures: list[Exception] = field(default_factory=list)
    # replies dropped after the node has accepted the transaction
    lost_replies: int = 0
    read_failures: list[Exception] = field(default_factory=list)
    on_mined: Callable[[ContractCall], None] | None = None
    writes: list[ContractCall] = field(default_factory=list)
    reads: list[str] = field(default_factory=list)
    broadcasts: list[str] = field(default_factory=list)
    receipts: dict[str, TxReceipt] = field(default_factory=dict)
    accepted: set[str] = field(default_factory=set)
    quotes: list[FeeQuote] = field(default_factory=list)
    nonce: int = 0

    def write_functions(self) -> list[str]:
        return [call.function for call in self.writes]

    def fund_token(self, token: str, owner: str, amount: int) -> None:
        self.token_balances[(token, owner)] = amount

    def _apply(self, call: ContractCall, sender: str) -> None:
        if call.function == "approve":
            spender, amount = call.args
            self.allowances[(call.address, sender, spender)] = amount
        elif call.function == "depositToken":
            token, amount, _dest, _recipient = call.args
            self.token_balances[(token, sender)] -= amount
            key = (token, sender, call.address)
            self.allowances[key] = self.allowances.get(key, 0) - amount
        elif call.function == "depositNative":
            self.native_balances[sender] = self.native_balances.get(sender, 0) - call.value


class FakeClient:
    """ChainClient over a FakeChain, bound to one endpoint."""

    def __init__(self, chain: FakeChain, endpoint: str, outages: set[str] | None = None) -> None:
        self._chain = chain
        self.endpoint = endpoint
        self._outages = outages if outages is not None else set()
        self._senders: dict[str, str] = {}

    @property
    def down(self) -> bool:
        return self.endpoint in self._outages

    def _maybe_fail(self) -> None:
        if self.down:
            raise requests.ConnectionError(f"{self.endpoint} refused connection")
        if self._chain.read_failures:
            raise self._chain.read_failures.pop(0)

    def probe(self) -> int:
        if self.down:
            raise requests.ConnectTimeout(f"{self.endpoint} timed out")
        return self._chain.block

    def network_id(self) -> int:
        return self._chain.network_id

    def block_number(self) -> int:
        self._maybe_fail()
        return self._chain.block

    def fee_suggestion(self) -> FeeSuggestion:
        if isinstance(self._chain.fee, Exception):
            raise self._chain.fee
        return self._chain.fee

    def native_balance(self, address: str) -> int:
        self._maybe_fail()
        self._chain.reads.append("native_balance")
        return self._chain.native_balances.get(address, 0)

    def call(self, call: ContractCall) -> Any:
        self._maybe_fail()
        self._chain.reads.append(call.function)
        if call.function == "decimals":
            if call.address not in self._chain.decimals:
                raise ValueError("execution reverted")
            return self._chain.decimals[call.address]
        if call.function == "balanceOf":
            return self._chain.token_balances.get((call.address, call.args[0]), 0)
        if call.function == "allowance":
            owner, spender = call.args
            return self._chain.allowances.get((call.address, owner, spender), 0)
        raise AssertionError(f"unexpected read {call.function}")

    def sign(self, account: LocalAccount, call: ContractCall, quote: FeeQuote) -> SignedTransaction:
        self._maybe_fail()
        nonce = self._chain.nonce
        self._chain.nonce += 1
        digest = hashlib.sha256(f"{account.address}:{nonce}:{call!r}".encode()).hexdigest()
        tx_hash = "0x" + digest
        self._chain.quotes.append(quote)
        self._senders[tx_hash] = account.address
        return SignedTransaction(
            tx_hash=tx_hash, nonce=nonce, call=call, raw_transaction=digest.encode()
        )

    def send_raw(self, signed: SignedTransaction) -> str:
        self._chain.broadcasts.append(signed.tx_hash)
        if self.down:
            raise requests.ConnectionError(f"{self.endpoint} refused connection")
        if self._chain.send_failures:
            raise self._chain.send_failures.pop(0)
        if signed.tx_hash not in self._chain.accepted:
            self._accept(signed)
        if self._chain.lost_replies:
            self._chain.lost_replies -= 1
            raise requests.ReadTimeout(f"{self.endpoint} timed out reading the reply")
        return signed.tx_hash

    def _accept(self, signed: SignedTransaction) -> None:
        self._chain.accepted.add(signed.tx_hash)
        self._chain.writes.append(signed.call)
        if self._chain.mine:
            self._chain.block += 1
            reverted = signed.call.function in self._chain.revert_functions
            if not reverted:
                self._chain._apply(signed.call, self._senders.get(signed.tx_hash, SENDER))
            self._chain.receipts[signed.tx_hash] = TxReceipt(
                tx_hash=signed.tx_hash,
                status=0 if reverted else 1,
                block_number=self._chain.block,
                gas_used=51_000,
                revert_reason="paused" if reverted else None,
            )
            if self._chain.on_mined is not None:
                self._chain.on_mined(signed.call)

    def get_receipt(self, tx_hash: str) -> TxReceipt | None:
        self._maybe_fail()
        return self._chain.receipts.get(tx_hash)


class FakeNetwork:
    """Client factory over a set of fake chains with switchable endpoint outages."""

    def __init__(self, chains: dict[str, FakeChain] | None = None) -> None:
        self.chains = chains or {"SEPOLIA": FakeChain()}
        self.down: set[str] = set()
        self.built: list[str] = []

    def __call__(self, chain: ChainConfig, endpoint: str) -> FakeClient:
        self.built.append(endpoint)
        return FakeClient(self.chains[chain.id], endpoint, self.down)


def forbidden_factory(chain: ChainConfig, endpoint: str) -> FakeClient:
    raise AssertionError(f"network must not be touched (asked for {chain.id} at {endpoint})")
