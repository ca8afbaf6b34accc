"""EVM implementation of the transfer engine."""

from .bridge import TransferEngine
from .client import ChainClient, ContractCall, SignedTransaction, Web3ChainClient
from .connections import ConnectionManager
from .fees import FeeEstimator, derive_quote
from .metadata import TokenMetadataCache
from .transactions import TransactionDispatcher

__all__ = [
    "TransferEngine",
    "ChainClient",
    "ContractCall",
    "SignedTransaction",
    "Web3ChainClient",
    "ConnectionManager",
    "FeeEstimator",
    "derive_quote",
    "TokenMetadataCache",
    "TransactionDispatcher",
]
