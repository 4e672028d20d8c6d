"""
Wallet Funder Module
====================

Generates a fresh wallet set and funds it from the funding wallet:

1. generate N keypairs
2. overwrite the active wallet set (zero buy amounts)
3. append the new secrets to the backup history
4. write the credentials into .env
5. send the same SOL amount to each new wallet, one at a time

A failed transfer is logged and the next wallet is still funded.
"""

import asyncio
from typing import List, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from keystore import KeyStore, WalletSet, generate_wallets, encode_secret, credential_name
from pump_io import ChainClient
from utils import (
    logger,
    InsufficientFundsError,
    format_address,
    format_sol,
    format_tx_link,
    lamports_to_sol,
    sanitize_error_message,
    sol_to_lamports,
)

# Base fee of one single-signature transfer
TRANSFER_FEE_LAMPORTS = 5000


@dataclass
class FundingResult:
    wallet_name: str
    public_key: str
    success: bool
    signature: Optional[str] = None
    error: Optional[str] = None


@dataclass
class FundingReport:
    backup_timestamp: str
    amount_per_wallet: float
    results: List[FundingResult] = field(default_factory=list)

    @property
    def funded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def total(self) -> float:
        """SOL actually sent, counting confirmed transfers only."""
        return self.funded * self.amount_per_wallet


class WalletFunder:
    """
    Funding flow over a key store and a chain client.

    Security:
        - The funding keypair is only held in memory for the run
        - Secrets go to the backup history before any SOL moves
    """

    def __init__(
        self,
        keystore: KeyStore,
        chain: ChainClient,
        funding_keypair: Keypair,
        delay_min_ms: int = 100,
        delay_max_ms: int = 1000,
        explorer_url: str = "https://solscan.io/tx/"
    ):
        self.keystore = keystore
        self.chain = chain
        self.funding_keypair = funding_keypair
        self.delay_min_ms = delay_min_ms
        self.delay_max_ms = delay_max_ms
        self.explorer_url = explorer_url

    def generate(self, count: int, password: Optional[str] = None) -> FundingReport:
        """
        Create and persist a new active wallet set.

        Returns:
            An empty FundingReport carrying the backup timestamp
        """
        generated = generate_wallets(count)

        wallet_set = WalletSet(
            wallets=[record for record, _ in generated],
            delay_min_ms=self.delay_min_ms,
            delay_max_ms=self.delay_max_ms,
        )
        self.keystore.save_active_wallets(wallet_set)

        secrets = [encode_secret(keypair) for _, keypair in generated]
        timestamp = datetime.now(timezone.utc).isoformat()
        self.keystore.append_backup_batch(
            timestamp,
            secrets,
            [record.public_key for record, _ in generated],
            password=password
        )

        for (record, _), secret in zip(generated, secrets):
            self.keystore.upsert_credential(credential_name(record.index), secret)

        logger.info(f"Generated {count} wallets, backup {timestamp}")
        return FundingReport(backup_timestamp=timestamp, amount_per_wallet=0.0)

    def check_funding_balance(self, wallet_count: int, amount_sol: float):
        """
        Raises:
            InsufficientFundsError: If the funding wallet cannot cover every transfer
        """
        needed = (sol_to_lamports(amount_sol) + TRANSFER_FEE_LAMPORTS) * wallet_count
        balance = self.chain.get_balance_lamports(self.funding_keypair.pubkey())
        if balance < needed:
            raise InsufficientFundsError(
                f"Funding wallet needs {format_sol(lamports_to_sol(needed))}, "
                f"has {format_sol(lamports_to_sol(balance))}"
            )

    async def fund(self, wallet_set: WalletSet, amount_sol: float, report: FundingReport) -> FundingReport:
        """Send `amount_sol` to each wallet of the set in order."""
        if amount_sol <= 0:
            raise ValueError("Funding amount must be greater than 0")

        lamports = sol_to_lamports(amount_sol)
        report.amount_per_wallet = amount_sol

        logger.info(
            f"Funding {len(wallet_set.wallets)} wallets with {format_sol(amount_sol)} each "
            f"from {format_address(str(self.funding_keypair.pubkey()))}"
        )

        for wallet in wallet_set.wallets:
            try:
                signature = await asyncio.to_thread(
                    self.chain.transfer,
                    self.funding_keypair,
                    Pubkey.from_string(wallet.public_key),
                    lamports
                )
            except Exception as e:
                error = sanitize_error_message(e)
                logger.error(f"Failed to fund {wallet.name} ({format_address(wallet.public_key)}): {error}")
                report.results.append(FundingResult(wallet.name, wallet.public_key, False, error=error))
                continue

            logger.info(f"Funded {wallet.name} with {format_sol(amount_sol)}: {format_tx_link(signature, self.explorer_url)}")
            report.results.append(FundingResult(wallet.name, wallet.public_key, True, signature=signature))

        logger.info(
            f"Funding complete: {report.funded}/{len(wallet_set.wallets)} wallets, "
            f"total {format_sol(report.total)}"
        )
        return report

    async def run(self, count: int, amount_sol: float, password: Optional[str] = None) -> FundingReport:
        """Generate, persist and fund `count` new wallets."""
        await asyncio.to_thread(self.check_funding_balance, count, amount_sol)
        report = self.generate(count, password=password)
        return await self.fund(self.keystore.load_active_wallets(), amount_sol, report)
