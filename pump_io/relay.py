"""
Bundle Relay Module
===================

Submits fully signed transactions as one atomic bundle to a Jito block
engine (JSON-RPC `sendBundle`). Either every transaction lands in the
same block or none does.
"""

import logging
from typing import List, Optional

import requests

from .portal import build_retrying

logger = logging.getLogger("pump_swarm." + __name__)

MAX_BUNDLE_SIZE = 5


class RelayError(Exception):
    """The relay rejected the bundle."""
    pass


class BundleRelay:
    """JSON-RPC client for a Jito block engine bundles endpoint."""

    def __init__(
        self,
        relay_url: str,
        timeout: float = 15,
        max_retries: int = 3,
        retry_wait: float = 1.0,
        session: Optional[requests.Session] = None
    ):
        self.relay_url = relay_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._retrying = build_retrying(max_retries, retry_wait)

    def send_bundle(self, encoded_transactions: List[str]) -> Optional[str]:
        """
        Submit base58-encoded signed transactions as one bundle.

        Returns:
            Bundle ID if the relay reported one, else None

        Raises:
            RelayError: On a non-2xx status or a JSON-RPC error object
        """
        if not encoded_transactions:
            raise ValueError("Bundle must contain at least one transaction")
        if len(encoded_transactions) > MAX_BUNDLE_SIZE:
            raise ValueError(f"Bundle holds at most {MAX_BUNDLE_SIZE} transactions")

        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "sendBundle",
            "params": [list(encoded_transactions)],
        }

        response = self._retrying(
            self.session.post,
            self.relay_url,
            json=payload,
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
        )

        if not 200 <= response.status_code < 300:
            raise RelayError(f"Bundle rejected: {response.status_code} {response.text[:200]}")

        try:
            body = response.json()
        except ValueError:
            logger.warning("Relay accepted bundle without a JSON body")
            return None

        if isinstance(body, dict) and body.get("error"):
            raise RelayError(f"Bundle rejected: {body['error']}")

        bundle_id = body.get("result") if isinstance(body, dict) else None
        logger.info(f"Bundle accepted: {bundle_id}")
        return bundle_id
