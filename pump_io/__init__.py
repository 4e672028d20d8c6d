"""
Pump I/O Module
===============

Adapters for everything outside this process:

- ChainClient: Solana RPC balances, fees, transfers, submission
- TradeQuoteClient: unsigned create/buy/sell transactions from the trade API
- MetadataUploader: token image + metadata upload, returns the metadata URI
- BundleRelay: atomic bundle submission to a Jito block engine

Usage:
    from pump_io import ChainClient, TradeQuoteClient, OperationIntent, OperationKind

    intent = OperationIntent(OperationKind.BUY, amount=0.1, slippage=10,
                             priority_fee=0.00001, mint=mint)
    raw = quotes.request_transaction(str(keypair.pubkey()), intent)
    signature = chain.send_transaction(sign_serialized(raw, [keypair]))
"""

from .chain import ChainClient, ChainError, sign_serialized
from .portal import (
    TradeQuoteClient,
    MetadataUploader,
    OperationIntent,
    OperationKind,
    TokenMetadata,
    QuoteError,
    UploadError,
)
from .relay import BundleRelay, RelayError

__all__ = [
    "ChainClient",
    "ChainError",
    "sign_serialized",
    "TradeQuoteClient",
    "MetadataUploader",
    "OperationIntent",
    "OperationKind",
    "TokenMetadata",
    "QuoteError",
    "UploadError",
    "BundleRelay",
    "RelayError",
]
