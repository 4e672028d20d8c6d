"""
Chain Client Module
===================

Thin adapter over a Solana RPC node: balances, token balances, fee
estimation, transfers and raw transaction submission.

All amounts crossing this boundary are integer lamports except token
balances, which are UI amounts (already divided by the mint decimals).
"""

import logging
from typing import List, Optional, Sequence

from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solana.rpc.types import TokenAccountOpts, TxOpts
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction, VersionedTransaction

logger = logging.getLogger("pump_swarm." + __name__)


class ChainError(Exception):
    """RPC failure or an answer the node could not give."""
    pass


def sign_serialized(raw: bytes, signers: Sequence[Keypair]) -> VersionedTransaction:
    """
    Sign an unsigned wire-encoded transaction returned by a quote service.

    Args:
        raw: Serialized VersionedTransaction bytes
        signers: Every keypair the message requires

    Returns:
        Fully signed VersionedTransaction
    """
    unsigned = VersionedTransaction.from_bytes(raw)
    return VersionedTransaction(unsigned.message, list(signers))


class ChainClient:
    """
    Solana RPC adapter.

    Example:
        >>> chain = ChainClient("https://api.mainnet-beta.solana.com")
        >>> lamports = chain.get_balance_lamports(keypair.pubkey())
    """

    def __init__(
        self,
        rpc_url: str,
        commitment: str = "confirmed",
        timeout: float = 30,
        client: Optional[Client] = None
    ):
        self.rpc_url = rpc_url
        self.commitment = Commitment(commitment)
        self.client = client or Client(rpc_url, commitment=self.commitment, timeout=timeout)

    def get_balance_lamports(self, owner: Pubkey) -> int:
        """Native balance of an address in lamports."""
        try:
            return self.client.get_balance(owner, commitment=self.commitment).value
        except (RPCException, SolanaRpcException) as e:
            raise ChainError(f"Balance query failed for {owner}: {e}") from e

    def get_token_balance(self, owner: Pubkey, mint: Pubkey) -> float:
        """
        UI balance of `mint` held by `owner`, 0.0 when no token account exists.
        """
        try:
            resp = self.client.get_token_accounts_by_owner_json_parsed(
                owner,
                TokenAccountOpts(mint=mint),
                commitment=self.commitment
            )
        except (RPCException, SolanaRpcException) as e:
            raise ChainError(f"Token account query failed for {owner}: {e}") from e

        if not resp.value:
            return 0.0

        info = resp.value[0].account.data.parsed["info"]
        ui_amount = info["tokenAmount"].get("uiAmount")
        return float(ui_amount or 0.0)

    def get_latest_blockhash(self) -> Hash:
        try:
            return self.client.get_latest_blockhash(commitment=self.commitment).value.blockhash
        except (RPCException, SolanaRpcException) as e:
            raise ChainError(f"Could not fetch latest blockhash: {e}") from e

    @staticmethod
    def build_transfer_message(
        payer: Pubkey,
        destination: Pubkey,
        lamports: int,
        blockhash: Hash
    ) -> Message:
        """Compile a single system transfer paid for by the sender."""
        instruction = transfer(TransferParams(
            from_pubkey=payer,
            to_pubkey=destination,
            lamports=lamports
        ))
        return Message.new_with_blockhash([instruction], payer, blockhash)

    def estimate_fee(self, message: Message) -> int:
        """
        Network fee in lamports for a compiled message.

        Raises:
            ChainError: If the node cannot price the message (e.g. expired blockhash)
        """
        try:
            fee = self.client.get_fee_for_message(message, commitment=self.commitment).value
        except (RPCException, SolanaRpcException) as e:
            raise ChainError(f"Fee estimation failed: {e}") from e

        if fee is None:
            raise ChainError("Node returned no fee for message; blockhash may have expired")
        return fee

    def send_transaction(self, transaction) -> str:
        """
        Submit a fully signed transaction.

        Returns:
            Transaction signature (base58)
        """
        try:
            resp = self.client.send_raw_transaction(
                bytes(transaction),
                opts=TxOpts(preflight_commitment=self.commitment)
            )
        except (RPCException, SolanaRpcException) as e:
            raise ChainError(f"Transaction submission failed: {e}") from e
        return str(resp.value)

    def transfer(
        self,
        sender: Keypair,
        destination: Pubkey,
        lamports: int,
        blockhash: Optional[Hash] = None
    ) -> str:
        """Sign and submit a native transfer; returns the signature."""
        if lamports <= 0:
            raise ValueError(f"Transfer amount must be positive, got {lamports} lamports")

        blockhash = blockhash or self.get_latest_blockhash()
        message = self.build_transfer_message(sender.pubkey(), destination, lamports, blockhash)
        transaction = Transaction([sender], message, blockhash)
        return self.send_transaction(transaction)

    def get_balances(self, owners: List[Pubkey]) -> List[int]:
        """Lamport balances for several addresses in one RPC call."""
        try:
            resp = self.client.get_multiple_accounts(owners, commitment=self.commitment)
        except (RPCException, SolanaRpcException) as e:
            raise ChainError(f"Balance query failed: {e}") from e
        return [account.lamports if account else 0 for account in resp.value]
