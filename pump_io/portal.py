"""
Trade Quote & Metadata Upload Clients
=====================================

The trade API builds unsigned transactions for create/buy/sell intents;
nothing is signed remotely. The upload API stores token metadata and an
image and answers with the metadata URI used in the create intent.

API shapes:
- POST trade-local, JSON object  -> raw VersionedTransaction bytes
- POST trade-local, JSON array   -> JSON array of base58 transactions
- POST ipfs, multipart form      -> {"metadataUri": ...}
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests
from tenacity import Retrying, stop_after_attempt, wait_exponential, retry_if_exception_type

logger = logging.getLogger("pump_swarm." + __name__)


class QuoteError(Exception):
    """The trade API refused or garbled a transaction request."""
    pass


class UploadError(Exception):
    """The metadata upload failed or returned no URI."""
    pass


class OperationKind(Enum):
    CREATE = "create"
    BUY = "buy"
    SELL = "sell"
    TRANSFER = "transfer"


@dataclass
class OperationIntent:
    """
    What one wallet should do, independent of which wallet does it.

    `amount` is SOL when `denominated_in_sol` is set, token units otherwise.
    """
    kind: OperationKind
    amount: float
    slippage: float
    priority_fee: float
    mint: Optional[str] = None
    denominated_in_sol: bool = True
    pool: str = "pump"
    token_metadata: Optional[Dict[str, str]] = None

    def validate(self) -> "OperationIntent":
        if self.amount is None or self.amount <= 0:
            raise ValueError(f"Amount must be greater than 0, got {self.amount}")
        if not 1 <= self.slippage <= 100:
            raise ValueError(f"Slippage must be between 1 and 100, got {self.slippage}")
        if self.priority_fee < 0:
            raise ValueError(f"Priority fee cannot be negative, got {self.priority_fee}")
        if self.kind != OperationKind.TRANSFER and not self.mint:
            raise ValueError(f"{self.kind.value} intent requires a mint")
        if self.kind == OperationKind.CREATE and not self.token_metadata:
            raise ValueError("create intent requires token metadata")
        return self

    def with_amount(self, amount: float, denominated_in_sol: Optional[bool] = None) -> "OperationIntent":
        """Copy of this intent with a per-wallet amount."""
        return OperationIntent(
            kind=self.kind,
            amount=amount,
            slippage=self.slippage,
            priority_fee=self.priority_fee,
            mint=self.mint,
            denominated_in_sol=self.denominated_in_sol if denominated_in_sol is None else denominated_in_sol,
            pool=self.pool,
            token_metadata=self.token_metadata,
        )

    def to_payload(self, public_key: str) -> Dict[str, Any]:
        """Request body understood by the trade API."""
        if self.kind == OperationKind.TRANSFER:
            raise ValueError("transfer intents are executed on-chain, not quoted")

        payload: Dict[str, Any] = {
            "publicKey": public_key,
            "action": self.kind.value,
            "mint": self.mint,
            "denominatedInSol": "true" if self.denominated_in_sol else "false",
            "amount": self.amount,
            "slippage": self.slippage,
            "priorityFee": self.priority_fee,
            "pool": self.pool,
        }
        if self.token_metadata:
            payload["tokenMetadata"] = dict(self.token_metadata)
        return payload


@dataclass
class TokenMetadata:
    """Fields posted alongside the token image."""
    name: str
    symbol: str
    description: str
    twitter: str = ""
    telegram: str = ""
    website: str = ""
    show_name: bool = True

    def to_form(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "symbol": self.symbol,
            "description": self.description,
            "twitter": self.twitter,
            "telegram": self.telegram,
            "website": self.website,
            "showName": "true" if self.show_name else "false",
        }


def build_retrying(max_retries: int, retry_wait: float) -> Retrying:
    """Retry transport failures only; HTTP error statuses are final."""
    return Retrying(
        stop=stop_after_attempt(max(1, max_retries)),
        wait=wait_exponential(multiplier=retry_wait, max=10),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        reraise=True,
    )


class TradeQuoteClient:
    """
    Client for the trade-local endpoint.

    Example:
        >>> quotes = TradeQuoteClient("https://pumpportal.fun/api/trade-local")
        >>> raw_tx = quotes.request_transaction(wallet_address, intent)
    """

    def __init__(
        self,
        trade_url: str,
        timeout: float = 30,
        max_retries: int = 3,
        retry_wait: float = 1.0,
        session: Optional[requests.Session] = None
    ):
        self.trade_url = trade_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._retrying = build_retrying(max_retries, retry_wait)

    def _post(self, body: Any) -> requests.Response:
        return self._retrying(
            self.session.post,
            self.trade_url,
            json=body,
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
        )

    def request_transaction(self, public_key: str, intent: OperationIntent) -> bytes:
        """
        Ask for one unsigned transaction.

        Raises:
            QuoteError: On any non-200 status or an empty body
        """
        intent.validate()
        response = self._post(intent.to_payload(public_key))

        if response.status_code != 200:
            error_text = response.text[:300] if response.text else response.reason
            raise QuoteError(f"Trade API error {response.status_code}: {error_text}")
        if not response.content:
            raise QuoteError("Trade API returned an empty transaction")

        logger.debug(f"Received {len(response.content)} byte {intent.kind.value} transaction")
        return response.content

    def request_bundle(self, requests_: Sequence[Tuple[str, OperationIntent]]) -> List[str]:
        """
        Ask for several linked unsigned transactions at once.

        Args:
            requests_: (public_key, intent) pairs, in bundle order

        Returns:
            Base58-encoded unsigned transactions, same order as requested
        """
        body = [intent.validate().to_payload(public_key) for public_key, intent in requests_]
        response = self._post(body)

        if response.status_code != 200:
            error_text = response.text[:300] if response.text else response.reason
            raise QuoteError(f"Failed to generate transactions: {response.status_code} {error_text}")

        try:
            encoded = response.json()
        except ValueError as e:
            raise QuoteError(f"Trade API returned invalid JSON: {e}") from e

        if not isinstance(encoded, list) or len(encoded) != len(body):
            raise QuoteError(f"Expected {len(body)} transactions, got {encoded!r:.200}")
        return encoded


class MetadataUploader:
    """Uploads token image + metadata and returns the metadata URI."""

    def __init__(
        self,
        upload_url: str,
        timeout: float = 60,
        max_retries: int = 3,
        retry_wait: float = 1.0,
        session: Optional[requests.Session] = None
    ):
        self.upload_url = upload_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._retrying = build_retrying(max_retries, retry_wait)

    def upload(self, metadata: TokenMetadata, image_path: str) -> str:
        """
        Raises:
            UploadError: On non-200, unreadable JSON or a missing metadataUri
        """
        image = Path(image_path)
        image_bytes = image.read_bytes()

        response = self._retrying(
            self.session.post,
            self.upload_url,
            data=metadata.to_form(),
            files={"file": (image.name, image_bytes, "image/png")},
            timeout=self.timeout,
        )

        if response.status_code != 200:
            raise UploadError(f"Metadata upload failed: {response.status_code} {response.text[:200]}")

        try:
            body = response.json()
        except ValueError as e:
            raise UploadError(f"Metadata upload returned invalid JSON: {e}") from e

        uri = body.get("metadataUri") if isinstance(body, dict) else None
        if not uri:
            raise UploadError("Metadata upload response has no metadataUri")

        logger.info(f"Metadata uploaded: {uri}")
        return uri
