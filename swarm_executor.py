"""
Swarm Executor Module - Multi-Wallet Batch Operations
=====================================================

Runs one kind of operation (buy, sell or consolidate) across the active
wallet set, one wallet at a time, with a random pause between wallets.

A wallet that fails or has nothing to do never stops the batch; it is
recorded as FAILED or SKIPPED and contributes nothing to the total.
"""

import asyncio
import random
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple
from dataclasses import dataclass, field
from datetime import datetime

from rich.table import Table
from rich import box
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from keystore import KeyStore, WalletRecord, WalletSet
from logging_utils import new_run_id
from pump_io import ChainClient, TradeQuoteClient, OperationIntent, sign_serialized
from utils import (
    logger,
    WalletSkipped,
    TransactionError,
    format_address,
    format_tx_link,
    lamports_to_sol,
    random_delay_ms,
    sanitize_error_message,
)


class OrderingPolicy(Enum):
    SEQUENTIAL = "sequential"
    SHUFFLED = "shuffled"


class ResultStatus(Enum):
    SUCCESS = "SUCCESS"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


@dataclass
class DelayRange:
    """Inter-wallet pause bounds in milliseconds, both inclusive."""
    min_ms: int = 100
    max_ms: int = 1000

    def __post_init__(self):
        if self.min_ms < 0 or self.max_ms < self.min_ms:
            raise ValueError(f"Invalid delay range: {self.min_ms}-{self.max_ms} ms")

    @classmethod
    def from_wallet_set(cls, wallet_set: WalletSet) -> 'DelayRange':
        return cls(wallet_set.delay_min_ms, wallet_set.delay_max_ms)

    def sample(self, rng: Optional[random.Random] = None) -> int:
        return random_delay_ms(self.min_ms, self.max_ms, rng)

    def __str__(self) -> str:
        return f"{self.min_ms}-{self.max_ms} ms"


@dataclass
class ExecutionResult:
    """Outcome of one wallet's operation."""
    wallet_name: str
    public_key: str
    status: ResultStatus
    signature: Optional[str] = None
    amount: float = 0.0
    error: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def success(self) -> bool:
        return self.status == ResultStatus.SUCCESS


@dataclass
class BatchReport:
    """Results of one batch run in execution order."""
    action: str
    unit: str = "SOL"
    results: List[ExecutionResult] = field(default_factory=list)

    @property
    def total(self) -> float:
        return sum(r.amount for r in self.results if r.success)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.status == ResultStatus.SUCCESS)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.status == ResultStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status == ResultStatus.FAILED)

    def to_table(self, explorer_url: str = "https://solscan.io/tx/") -> Table:
        """Get a Rich table with one row per wallet plus a total row."""
        table = Table(title=f"{self.action.title()} Results", box=box.ROUNDED)

        table.add_column("Wallet", style="cyan")
        table.add_column("Address", style="dim")
        table.add_column("Status")
        table.add_column(f"Amount ({self.unit})", style="green", justify="right")
        table.add_column("Details", overflow="fold")

        styles = {
            ResultStatus.SUCCESS: "[green]SUCCESS[/green]",
            ResultStatus.SKIPPED: "[yellow]SKIPPED[/yellow]",
            ResultStatus.FAILED: "[red]FAILED[/red]",
        }

        for r in self.results:
            details = format_tx_link(r.signature, explorer_url) if r.signature else (r.error or "")
            amount = f"{r.amount:.6f}" if r.success else "-"
            table.add_row(r.wallet_name, format_address(r.public_key), styles[r.status], amount, details)

        table.add_row(
            "TOTAL",
            f"{self.succeeded} ok / {self.skipped} skipped / {self.failed} failed",
            "",
            f"{self.total:.6f}",
            "",
            style="bold"
        )
        return table


def sign_and_send(chain: ChainClient, raw: bytes, keypair: Keypair) -> str:
    """Sign a quoted transaction with the wallet key and submit it."""
    payer = VersionedTransaction.from_bytes(raw).message.account_keys[0]
    if payer != keypair.pubkey():
        raise TransactionError(f"Quoted transaction pays from {payer}, not {keypair.pubkey()}")
    return chain.send_transaction(sign_serialized(raw, [keypair]))


class WalletOperation:
    """One wallet's share of a batch. Subclasses return (signature, amount moved)."""

    action = "operation"
    unit = "SOL"
    ordering = OrderingPolicy.SEQUENTIAL

    async def execute(self, wallet: WalletRecord, keypair: Keypair) -> Tuple[str, float]:
        raise NotImplementedError


class BuyOperation(WalletOperation):
    """Buy the wallet's configured SOL amount of the token."""

    action = "buy"

    def __init__(self, chain: ChainClient, quotes: TradeQuoteClient, intent: OperationIntent):
        self.chain = chain
        self.quotes = quotes
        self.intent = intent

    async def execute(self, wallet: WalletRecord, keypair: Keypair) -> Tuple[str, float]:
        if wallet.amount <= 0:
            raise WalletSkipped("no buy amount configured")

        intent = self.intent.with_amount(wallet.amount, denominated_in_sol=True)
        raw = await asyncio.to_thread(self.quotes.request_transaction, str(keypair.pubkey()), intent)
        signature = await asyncio.to_thread(sign_and_send, self.chain, raw, keypair)
        return signature, wallet.amount


class SellOperation(WalletOperation):
    """Sell a percentage of the wallet's current token balance."""

    action = "sell"
    unit = "tokens"
    ordering = OrderingPolicy.SHUFFLED

    def __init__(
        self,
        chain: ChainClient,
        quotes: TradeQuoteClient,
        intent: OperationIntent,
        percent: float
    ):
        if not 1 <= percent <= 100:
            raise ValueError(f"Sell percentage must be between 1 and 100, got {percent}")
        self.chain = chain
        self.quotes = quotes
        self.intent = intent
        self.percent = percent

    def sell_amount(self, balance: float) -> float:
        if self.percent == 100:
            return balance
        return balance * (self.percent / 100)

    async def execute(self, wallet: WalletRecord, keypair: Keypair) -> Tuple[str, float]:
        balance = await asyncio.to_thread(
            self.chain.get_token_balance, keypair.pubkey(), Pubkey.from_string(self.intent.mint)
        )
        if balance <= 0:
            raise WalletSkipped("no tokens to sell")

        amount = self.sell_amount(balance)
        logger.info(f"{wallet.name} selling {amount} of {balance} tokens")

        intent = self.intent.with_amount(amount, denominated_in_sol=False)
        raw = await asyncio.to_thread(self.quotes.request_transaction, str(keypair.pubkey()), intent)
        signature = await asyncio.to_thread(sign_and_send, self.chain, raw, keypair)
        return signature, amount


class ConsolidateOperation(WalletOperation):
    """
    Sweep the wallet's whole SOL balance, minus the transfer fee, to one
    destination. The fee is priced on a message with the same blockhash
    as the transfer that gets signed.
    """

    action = "consolidate"

    def __init__(self, chain: ChainClient, destination: Pubkey):
        self.chain = chain
        self.destination = destination

    async def execute(self, wallet: WalletRecord, keypair: Keypair) -> Tuple[str, float]:
        sender = keypair.pubkey()
        balance = await asyncio.to_thread(self.chain.get_balance_lamports, sender)
        if balance <= 0:
            raise WalletSkipped("zero balance")

        blockhash = await asyncio.to_thread(self.chain.get_latest_blockhash)
        fee_message = self.chain.build_transfer_message(sender, self.destination, balance, blockhash)
        fee = await asyncio.to_thread(self.chain.estimate_fee, fee_message)

        send_lamports = balance - fee
        if send_lamports <= 0:
            raise WalletSkipped(f"balance {balance} lamports does not cover the {fee} lamport fee")

        signature = await asyncio.to_thread(
            self.chain.transfer, keypair, self.destination, send_lamports, blockhash=blockhash
        )
        return signature, lamports_to_sol(send_lamports)


class BatchExecutor:
    """
    Sequential multi-wallet runner.

    Example:
        >>> executor = BatchExecutor(keystore, DelayRange(100, 1000))
        >>> report = asyncio.run(executor.run(wallet_set.wallets, BuyOperation(chain, quotes, intent)))
        >>> report.total
    """

    def __init__(
        self,
        keystore: KeyStore,
        delay: DelayRange,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        explorer_url: str = "https://solscan.io/tx/"
    ):
        self.keystore = keystore
        self.delay = delay
        self.rng = rng or random.Random()
        self.sleep = sleep
        self.explorer_url = explorer_url

    def order(self, wallets: Sequence[WalletRecord], ordering: OrderingPolicy) -> List[WalletRecord]:
        ordered = list(wallets)
        if ordering == OrderingPolicy.SHUFFLED:
            self.rng.shuffle(ordered)
        return ordered

    async def run(
        self,
        wallets: Sequence[WalletRecord],
        operation: WalletOperation,
        ordering: Optional[OrderingPolicy] = None
    ) -> BatchReport:
        """
        Apply `operation` to every wallet, pausing between wallets.

        Args:
            wallets: Wallets to process
            operation: Per-wallet operation
            ordering: Overrides the operation's default ordering

        Returns:
            BatchReport with one result per wallet
        """
        ordering = ordering or operation.ordering
        report = BatchReport(action=operation.action, unit=operation.unit)

        if not wallets:
            logger.warning(f"No wallets to {operation.action}")
            return report

        run_id = new_run_id()
        logger.info(f"Starting {operation.action} batch {run_id} over {len(wallets)} wallets ({ordering.value})")

        for i, wallet in enumerate(self.order(wallets, ordering)):
            if i > 0:
                delay_ms = self.delay.sample(self.rng)
                logger.debug(f"Waiting {delay_ms} ms before {wallet.name}")
                await self.sleep(delay_ms / 1000)

            report.results.append(await self._run_one(wallet, operation))

        logger.info(
            f"{operation.action.title()} batch {run_id} complete: {report.succeeded} succeeded, "
            f"{report.skipped} skipped, {report.failed} failed, total {report.total:.6f} {report.unit}"
        )
        return report

    async def _run_one(self, wallet: WalletRecord, operation: WalletOperation) -> ExecutionResult:
        label = f"{wallet.name} ({format_address(wallet.public_key)})"
        context = {"wallet": wallet.name, "address": wallet.public_key, "action": operation.action}

        try:
            keypair = self.keystore.keypair_for(wallet)
            if keypair is None:
                raise WalletSkipped("no private key found")
            signature, amount = await operation.execute(wallet, keypair)

        except WalletSkipped as e:
            logger.warning(f"Skipping {label}: {e}", extra={**context, "status": "SKIPPED"})
            return ExecutionResult(wallet.name, wallet.public_key, ResultStatus.SKIPPED, error=str(e))

        except Exception as e:
            error = sanitize_error_message(e)
            logger.error(f"Error processing {label}: {error}", extra={**context, "status": "FAILED"})
            return ExecutionResult(wallet.name, wallet.public_key, ResultStatus.FAILED, error=error)

        logger.info(
            f"{label} {operation.action} {amount:.6f} {operation.unit}: "
            f"{format_tx_link(signature, self.explorer_url)}",
            extra={**context, "status": "SUCCESS", "signature": signature, "amount": amount}
        )
        return ExecutionResult(
            wallet.name,
            wallet.public_key,
            ResultStatus.SUCCESS,
            signature=signature,
            amount=amount
        )
