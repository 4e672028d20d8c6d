"""
Token Launcher Module
=====================

One-shot token creation with an initial buy, using two fixed wallets
(creator and buyer):

1. generate a fresh mint keypair
2. upload image + metadata, get the metadata URI
3. request a linked create + buy transaction pair for that mint
4. sign create with (mint, creator) and buy with buyer
5. relay both as one atomic bundle

An upload or quote failure propagates before anything is signed.
"""

import asyncio
from typing import Callable, List, Optional
from dataclasses import dataclass, field

import base58
from solders.keypair import Keypair

from config import Config
from pump_io import (
    BundleRelay,
    MetadataUploader,
    OperationIntent,
    OperationKind,
    TokenMetadata,
    TradeQuoteClient,
    sign_serialized,
)
from utils import logger, format_address, format_tx_link


@dataclass
class LaunchRequest:
    metadata: TokenMetadata
    image_path: str
    amount: float               # tokens bought by each transaction


@dataclass
class LaunchResult:
    mint: str
    metadata_uri: str
    signatures: List[str] = field(default_factory=list)
    bundle_id: Optional[str] = None

    def links(self, explorer_url: str) -> List[str]:
        return [format_tx_link(sig, explorer_url) for sig in self.signatures]


class TokenLauncher:
    """Creates a token and buys into it in the same block."""

    def __init__(
        self,
        config: Config,
        quotes: TradeQuoteClient,
        uploader: MetadataUploader,
        relay: BundleRelay,
        creator: Keypair,
        buyer: Keypair,
        mint_factory: Callable[[], Keypair] = Keypair
    ):
        self.config = config
        self.quotes = quotes
        self.uploader = uploader
        self.relay = relay
        self.creator = creator
        self.buyer = buyer
        self.mint_factory = mint_factory

    def build_intents(self, mint: str, metadata_uri: str, request: LaunchRequest) -> List[OperationIntent]:
        """Create and initial-buy intents, both keyed to `mint`."""
        create = OperationIntent(
            kind=OperationKind.CREATE,
            amount=request.amount,
            slippage=self.config.create_slippage,
            priority_fee=self.config.create_priority_fee,
            mint=mint,
            denominated_in_sol=False,
            pool=self.config.pool,
            token_metadata={
                "name": request.metadata.name,
                "symbol": request.metadata.symbol,
                "uri": metadata_uri,
            },
        )
        buy = OperationIntent(
            kind=OperationKind.BUY,
            amount=request.amount,
            slippage=self.config.create_slippage,
            priority_fee=self.config.create_buy_priority_fee,
            mint=mint,
            denominated_in_sol=False,
            pool=self.config.pool,
        )
        return [create.validate(), buy.validate()]

    async def launch(self, request: LaunchRequest) -> LaunchResult:
        """
        Run the full creation flow.

        Raises:
            UploadError, QuoteError: Before any signing
            RelayError: If the bundle is rejected
        """
        mint_keypair = self.mint_factory()
        mint = str(mint_keypair.pubkey())
        logger.info(f"Launching {request.metadata.symbol} with mint {format_address(mint)}")

        metadata_uri = await asyncio.to_thread(self.uploader.upload, request.metadata, request.image_path)

        create_intent, buy_intent = self.build_intents(mint, metadata_uri, request)
        unsigned = await asyncio.to_thread(self.quotes.request_bundle, [
            (str(self.creator.pubkey()), create_intent),
            (str(self.buyer.pubkey()), buy_intent),
        ])

        signers = [[mint_keypair, self.creator], [self.buyer]]
        signed = [
            sign_serialized(base58.b58decode(encoded), tx_signers)
            for encoded, tx_signers in zip(unsigned, signers)
        ]

        result = LaunchResult(
            mint=mint,
            metadata_uri=metadata_uri,
            signatures=[str(tx.signatures[0]) for tx in signed],
        )
        result.bundle_id = await asyncio.to_thread(
            self.relay.send_bundle, [base58.b58encode(bytes(tx)).decode() for tx in signed]
        )

        for i, link in enumerate(result.links(self.config.explorer_tx_url)):
            logger.info(f"Transaction {i}: {link}")
        return result
