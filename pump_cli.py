#!/usr/bin/env python3
"""
Pump Swarm CLI - Command Line Interface
=======================================

Interactive front end for:
- Creating a token with a bundled initial buy
- Buying and selling across the active wallet set
- Consolidating SOL back to the base wallet
- Generating and funding a new wallet set

Usage:
    python pump_cli.py                       # interactive menu
    python pump_cli.py init [--rpc-url <URL>]
    python pump_cli.py create
    python pump_cli.py buy --mint <MINT>
    python pump_cli.py sell --mint <MINT> --percent 50
    python pump_cli.py consolidate
    python pump_cli.py fund --count 5 --amount 0.05
    python pump_cli.py amounts --amount 0.01 [--wallet "Wallet 2"]
    python pump_cli.py status [--token <MINT>]
    python pump_cli.py history
"""

import sys
import asyncio
import argparse
import getpass
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from rich.table import Table
from rich.panel import Panel
from rich.prompt import Prompt, Confirm
from rich import box
from rich.progress import Progress, SpinnerColumn, TextColumn
from solders.pubkey import Pubkey

from config import Config, ConfigManager, ConfigurationError, Secrets, load_settings
from keystore import KeyStore, WalletSet
from swarm_executor import (
    BatchExecutor,
    BatchReport,
    BuyOperation,
    ConsolidateOperation,
    DelayRange,
    SellOperation,
)
from token_launcher import LaunchRequest, TokenLauncher
from wallet_funder import WalletFunder
from pump_io import (
    BundleRelay,
    ChainClient,
    ChainError,
    MetadataUploader,
    OperationIntent,
    OperationKind,
    TokenMetadata,
    TradeQuoteClient,
)
from utils import (
    console,
    configure_logging,
    ValidationError,
    format_address,
    format_sol,
    format_tx_link,
    lamports_to_sol,
    sanitize_error_message,
    validate_address,
    validate_count,
    validate_https_url,
    validate_non_empty,
    validate_non_negative,
    validate_percentage,
    validate_png_path,
    validate_positive,
)


def print_banner():
    """Print the CLI banner."""
    banner = """
    Pump Swarm
    ═══════════════════════════════════
    Token launch & multi-wallet trading
    """
    console.print(Panel(banner, style="bold cyan", box=box.DOUBLE))


def ask(label: str, validator: Callable, initial=None, default: Optional[str] = None):
    """
    Prompt until `validator` accepts the answer.

    A value already given on the command line is validated once and,
    if rejected, the user is prompted instead.
    """
    if initial is not None:
        try:
            return validator(initial)
        except ValidationError as e:
            console.print(f"[red]{e}[/red]")

    while True:
        answer = Prompt.ask(label, default=default, console=console)
        try:
            return validator(answer)
        except ValidationError as e:
            console.print(f"[red]{e}[/red]")


def get_backup_password() -> Optional[str]:
    """Optionally get a password to encrypt the key backup."""
    console.print("[yellow]Backup encryption password (empty for a plaintext backup):[/yellow]")
    password = getpass.getpass("> ")
    if not password:
        return None

    if len(password) < 8:
        console.print("[red]Password must be at least 8 characters[/red]")
        sys.exit(1)

    console.print("[yellow]Confirm password:[/yellow]")
    if getpass.getpass("> ") != password:
        console.print("[red]Passwords don't match![/red]")
        sys.exit(1)
    return password


# Typed summaries, filled in as the prompts are answered

@dataclass
class CreateSummary:
    name: Optional[str] = None
    symbol: Optional[str] = None
    description: Optional[str] = None
    twitter: Optional[str] = None
    telegram: Optional[str] = None
    website: Optional[str] = None
    image_path: Optional[str] = None
    amount: Optional[float] = None

    def render(self) -> Panel:
        rows = [
            ("Name", self.name),
            ("Symbol", self.symbol),
            ("Description", self.description),
            ("Twitter", self.twitter),
            ("Telegram", self.telegram),
            ("Website", self.website),
            ("Image", self.image_path),
            ("Initial buy", f"{self.amount} tokens" if self.amount is not None else None),
        ]
        body = "\n".join(f"{label}: {value}" for label, value in rows if value is not None)
        return Panel(body or "-", title="Token Summary", border_style="cyan")


@dataclass
class BuySummary:
    mint: Optional[str] = None
    wallet_count: int = 0
    total_sol: float = 0.0
    delay: Optional[DelayRange] = None

    def render(self) -> Panel:
        body = (
            f"Token: {self.mint}\n"
            f"Wallets: {self.wallet_count}\n"
            f"Total SOL: {format_sol(self.total_sol)}\n"
            f"Delay: {self.delay}"
        )
        return Panel(body, title="Buy Summary", border_style="cyan")


@dataclass
class SellSummary:
    mint: Optional[str] = None
    wallet_count: int = 0
    percent: Optional[float] = None
    delay: Optional[DelayRange] = None

    def render(self) -> Panel:
        body = (
            f"Token: {self.mint}\n"
            f"Wallets: {self.wallet_count} (random order)\n"
            f"Sell: {self.percent:g}% of each balance\n"
            f"Delay: {self.delay}"
        )
        return Panel(body, title="Sell Summary", border_style="cyan")


@dataclass
class ConsolidateSummary:
    destination: Optional[str] = None
    wallet_count: int = 0

    def render(self) -> Panel:
        body = (
            f"Destination: {self.destination}\n"
            f"Wallets: {self.wallet_count}\n"
            f"Each wallet sends its whole balance minus the network fee"
        )
        return Panel(body, title="Consolidate Summary", border_style="cyan")


# Wiring

@dataclass
class Context:
    config: Config
    secrets: Secrets
    keystore: KeyStore

    def chain(self) -> ChainClient:
        return ChainClient(self.config.rpc_url, self.config.commitment, self.config.request_timeout)

    def quotes(self) -> TradeQuoteClient:
        return TradeQuoteClient(
            self.config.trade_api_url,
            timeout=self.config.request_timeout,
            max_retries=self.config.max_retries
        )

    def executor(self, wallet_set: WalletSet, rng: Optional[random.Random] = None) -> BatchExecutor:
        return BatchExecutor(
            self.keystore,
            DelayRange.from_wallet_set(wallet_set),
            rng=rng,
            explorer_url=self.config.explorer_tx_url
        )

    def trade_intent(self, kind: OperationKind, mint: str) -> OperationIntent:
        # Amount is filled in per wallet
        return OperationIntent(
            kind=kind,
            amount=1.0,
            slippage=self.config.default_slippage,
            priority_fee=self.config.default_priority_fee,
            mint=mint,
            pool=self.config.pool,
        )


def build_context(args) -> Context:
    config, secrets = load_settings(args.config, args.env_file)
    configure_logging(args.log_level or config.log_level, config.log_file)
    keystore = KeyStore(config.wallets_file, config.backup_file, config.env_file, secrets)
    return Context(config, secrets, keystore)


def load_wallets_or_exit(ctx: Context) -> Optional[WalletSet]:
    wallet_set = ctx.keystore.load_active_wallets()
    if not wallet_set.wallets:
        console.print("[red]No wallets found. Run 'fund' first.[/red]")
        return None
    return wallet_set


def print_report(ctx: Context, report: BatchReport):
    console.print(report.to_table(ctx.config.explorer_tx_url))
    console.print(
        f"\n[bold]Total {report.action}: {report.total:.6f} {report.unit}[/bold] "
        f"({report.succeeded} succeeded, {report.skipped} skipped, {report.failed} failed)"
    )


# Commands

def create_command(ctx: Context, args):
    """Handle create command - launch a token with a bundled initial buy."""
    console.print("\n[bold cyan]Create Token[/bold cyan]\n")

    creator = ctx.secrets.keypair("creator_key")
    buyer = ctx.secrets.keypair("buyer_key")

    summary = CreateSummary()
    summary.name = ask("Token name", lambda v: validate_non_empty(v, "Name"), args.name)
    summary.symbol = ask("Token symbol", lambda v: validate_non_empty(v, "Symbol"), args.symbol)
    summary.description = ask("Description", lambda v: validate_non_empty(v, "Description"), args.description)
    summary.twitter = ask("Twitter link", validate_https_url, args.twitter)
    summary.telegram = ask("Telegram link", validate_https_url, args.telegram)
    summary.website = ask("Website link", validate_https_url, args.website)
    summary.image_path = ask("Path to PNG image", validate_png_path, args.image)
    summary.amount = ask("Initial buy amount (tokens)", validate_positive, args.amount)

    console.print(summary.render())
    console.print(f"Creator: {creator.pubkey()}\nBuyer: {buyer.pubkey()}")
    if not Confirm.ask("Proceed with token creation?", default=False, console=console):
        console.print("[yellow]Cancelled[/yellow]")
        return

    launcher = TokenLauncher(
        ctx.config,
        ctx.quotes(),
        MetadataUploader(ctx.config.ipfs_api_url, max_retries=ctx.config.max_retries),
        BundleRelay(ctx.config.bundle_relay_url, max_retries=ctx.config.max_retries),
        creator,
        buyer,
    )
    request = LaunchRequest(
        metadata=TokenMetadata(
            name=summary.name,
            symbol=summary.symbol,
            description=summary.description,
            twitter=summary.twitter,
            telegram=summary.telegram,
            website=summary.website,
        ),
        image_path=summary.image_path,
        amount=summary.amount,
    )

    with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"), console=console) as progress:
        progress.add_task("Uploading metadata and submitting bundle...", total=None)
        result = asyncio.run(launcher.launch(request))

    console.print(f"\n[green]✓ Token created: {result.mint}[/green]")
    console.print(f"Metadata: {result.metadata_uri}")
    if result.bundle_id:
        console.print(f"Bundle: {result.bundle_id}")
    for i, link in enumerate(result.links(ctx.config.explorer_tx_url)):
        console.print(f"Transaction {i}: {link}")


def buy_command(ctx: Context, args):
    """Handle buy command - buy with every wallet's configured amount."""
    console.print("\n[bold cyan]Buy Tokens[/bold cyan]\n")

    wallet_set = load_wallets_or_exit(ctx)
    if not wallet_set:
        return

    summary = BuySummary(
        wallet_count=len(wallet_set.wallets),
        total_sol=wallet_set.total_amount,
        delay=DelayRange.from_wallet_set(wallet_set),
    )
    summary.mint = ask("Token mint address", validate_address, args.mint)

    console.print(summary.render())
    if summary.total_sol <= 0:
        console.print("[yellow]No buy amounts configured. Set them with the 'amounts' command.[/yellow]")
    if not Confirm.ask("Proceed with buy?", default=False, console=console):
        console.print("[yellow]Cancelled[/yellow]")
        return

    operation = BuyOperation(ctx.chain(), ctx.quotes(), ctx.trade_intent(OperationKind.BUY, summary.mint))
    report = asyncio.run(ctx.executor(wallet_set).run(wallet_set.wallets, operation))
    print_report(ctx, report)


def sell_command(ctx: Context, args):
    """Handle sell command - sell a percentage from every wallet in random order."""
    console.print("\n[bold cyan]Sell Tokens[/bold cyan]\n")

    wallet_set = load_wallets_or_exit(ctx)
    if not wallet_set:
        return

    summary = SellSummary(wallet_count=len(wallet_set.wallets), delay=DelayRange.from_wallet_set(wallet_set))
    summary.mint = ask("Token mint address", validate_address, args.mint)
    summary.percent = ask("Percentage to sell (1-100)", validate_percentage, args.percent, default="100")

    console.print(summary.render())
    if not Confirm.ask("Proceed with sell?", default=False, console=console):
        console.print("[yellow]Cancelled[/yellow]")
        return

    rng = random.Random(args.seed) if args.seed is not None else None
    operation = SellOperation(
        ctx.chain(),
        ctx.quotes(),
        ctx.trade_intent(OperationKind.SELL, summary.mint),
        summary.percent
    )
    report = asyncio.run(ctx.executor(wallet_set, rng).run(wallet_set.wallets, operation))
    print_report(ctx, report)


def consolidate_command(ctx: Context, args):
    """Handle consolidate command - sweep all SOL to the base wallet."""
    console.print("\n[bold cyan]Consolidate SOL[/bold cyan]\n")

    destination = ctx.secrets.destination()

    wallet_set = load_wallets_or_exit(ctx)
    if not wallet_set:
        return

    summary = ConsolidateSummary(destination=str(destination), wallet_count=len(wallet_set.wallets))
    console.print(summary.render())
    if not Confirm.ask("Proceed with consolidation?", default=False, console=console):
        console.print("[yellow]Cancelled[/yellow]")
        return

    operation = ConsolidateOperation(ctx.chain(), destination)
    report = asyncio.run(ctx.executor(wallet_set).run(wallet_set.wallets, operation))
    print_report(ctx, report)


def fund_command(ctx: Context, args):
    """Handle fund command - generate a new wallet set and fund it."""
    console.print("\n[bold cyan]Fund Wallets[/bold cyan]\n")

    funding_keypair = ctx.secrets.keypair("funding_key")

    count = ask("Number of wallets to create", validate_count, args.count)
    amount = ask("SOL to send to each wallet", validate_positive, args.amount)
    password = get_backup_password() if args.encrypt else None

    chain = ctx.chain()
    balance = lamports_to_sol(chain.get_balance_lamports(funding_keypair.pubkey()))

    console.print(Panel(
        f"Funding wallet: {funding_keypair.pubkey()}\n"
        f"Balance: {format_sol(balance)}\n"
        f"New wallets: {count}\n"
        f"Amount per wallet: {format_sol(amount)}\n"
        f"Total: {format_sol(amount * count)}",
        title="Funding Summary",
        border_style="cyan"
    ))
    console.print("[yellow]This replaces the active wallet set. Old keys stay in the backup history.[/yellow]")
    if not Confirm.ask("Proceed with funding?", default=False, console=console):
        console.print("[yellow]Cancelled[/yellow]")
        return

    funder = WalletFunder(
        ctx.keystore,
        chain,
        funding_keypair,
        delay_min_ms=ctx.config.default_delay_min_ms,
        delay_max_ms=ctx.config.default_delay_max_ms,
        explorer_url=ctx.config.explorer_tx_url,
    )
    report = asyncio.run(funder.run(count, amount, password=password))

    table = Table(title="Funding Results", box=box.ROUNDED)
    table.add_column("Wallet", style="cyan")
    table.add_column("Address", style="dim")
    table.add_column("Status", style="white")
    table.add_column("Details", overflow="fold")

    for result in report.results:
        status = "[green]✓[/green]" if result.success else "[red]✗[/red]"
        details = format_tx_link(result.signature, ctx.config.explorer_tx_url) if result.success else result.error
        table.add_row(result.wallet_name, result.public_key, status, details)

    console.print(table)
    console.print(f"\n[green]✓ Funded {report.funded}/{len(report.results)} wallets, total {format_sol(report.total)}[/green]")
    console.print(f"Keys backed up under {report.backup_timestamp}")


def init_command(ctx: Context, args):
    """Handle init command - write the settings file with the defaults."""
    manager = ConfigManager(Path(args.config))
    if manager.exists() and not args.force:
        console.print(f"[yellow]{manager.config_path} already exists. Use --force to overwrite it.[/yellow]")
        return

    config = manager.create_default()
    if args.rpc_url:
        config = manager.update_config({"rpc_url": validate_non_empty(args.rpc_url, "RPC URL")})

    console.print(f"[green]✓ Settings written to {manager.config_path}[/green]")
    console.print(f"RPC: {config.rpc_url}")
    console.print("Put FUNDING_WALLET_PRIVATE_KEY and BASE_WALLET_ADDRESS in your .env file next.")


def amounts_command(ctx: Context, args):
    """Handle amounts command - set configured buy amounts."""
    amount = ask("Buy amount in SOL", validate_non_negative, args.amount)
    try:
        wallet_set = ctx.keystore.set_wallet_amount(amount, args.wallet)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        return

    table = Table(title="Wallet Amounts", box=box.ROUNDED)
    table.add_column("Wallet", style="cyan")
    table.add_column("Address", style="dim")
    table.add_column("Amount", style="green", justify="right")
    for wallet in wallet_set.wallets:
        table.add_row(wallet.name, wallet.public_key, format_sol(wallet.amount))
    console.print(table)


def status_command(ctx: Context, args):
    """Handle status command - show balances of the active wallet set."""
    wallet_set = load_wallets_or_exit(ctx)
    if not wallet_set:
        return

    chain = ctx.chain()
    owners = [Pubkey.from_string(w.public_key) for w in wallet_set.wallets]
    balances = chain.get_balances(owners)

    mint = Pubkey.from_string(validate_address(args.token)) if args.token else None

    table = Table(title="Wallet Details", box=box.ROUNDED)
    table.add_column("Wallet", style="cyan")
    table.add_column("Address", style="dim")
    table.add_column("Key", width=4)
    table.add_column("SOL", style="green", justify="right")
    table.add_column("Buy Amount", style="blue", justify="right")
    if mint:
        table.add_column("Tokens", style="yellow", justify="right")

    for wallet, owner, lamports in zip(wallet_set.wallets, owners, balances):
        has_key = "[green]✓[/green]" if ctx.keystore.credential_for(wallet) else "[red]✗[/red]"
        row = [wallet.name, wallet.public_key, has_key, f"{lamports_to_sol(lamports):.6f}", format_sol(wallet.amount)]
        if mint:
            try:
                row.append(f"{chain.get_token_balance(owner, mint):,.2f}")
            except ChainError as e:
                row.append(f"[red]{sanitize_error_message(e)}[/red]")
        table.add_row(*row)

    console.print(table)
    console.print(
        f"Total SOL: {format_sol(lamports_to_sol(sum(balances)))} | "
        f"Delay: {DelayRange.from_wallet_set(wallet_set)}"
    )


def history_command(ctx: Context, args):
    """Handle history command - list backup batches without secrets."""
    batches = ctx.keystore.list_backup_batches()
    if not batches:
        console.print("[yellow]No backup history found.[/yellow]")
        return

    table = Table(title="Key Backup History", box=box.ROUNDED)
    table.add_column("Timestamp", style="cyan")
    table.add_column("Wallets", justify="right")
    table.add_column("Encrypted")
    table.add_column("Addresses", style="dim", overflow="fold")

    for batch in batches:
        table.add_row(
            batch["timestamp"],
            str(batch["wallets"]),
            "yes" if batch["encrypted"] else "no",
            ", ".join(format_address(pk) for pk in batch["public_keys"]),
        )
    console.print(table)


MENU = [
    ("Create Token", create_command),
    ("Buy Tokens", buy_command),
    ("Sell Tokens", sell_command),
    ("Consolidate SOL", consolidate_command),
    ("Fund Wallets", fund_command),
    ("Exit", None),
]

MENU_DEFAULTS = dict(
    name=None, symbol=None, description=None, twitter=None, telegram=None,
    website=None, image=None, amount=None, mint=None, percent=None, seed=None,
    count=None, encrypt=False,
)


def menu_command(ctx: Context, args):
    """Interactive main menu; each entry runs one sub-flow."""
    sub_args = argparse.Namespace(**MENU_DEFAULTS)

    while True:
        console.print()
        for i, (label, _) in enumerate(MENU, start=1):
            console.print(f"  [cyan]{i}[/cyan]. {label}")

        choice = Prompt.ask(
            "Select an option",
            choices=[str(i) for i in range(1, len(MENU) + 1)],
            console=console
        )
        label, handler = MENU[int(choice) - 1]
        if handler is None:
            console.print("Goodbye!")
            return

        try:
            handler(ctx, sub_args)
        except ConfigurationError:
            raise
        except Exception as e:
            console.print(f"[red]{label} failed: {sanitize_error_message(e)}[/red]")


COMMANDS = {
    'menu': menu_command,
    'init': init_command,
    'create': create_command,
    'buy': buy_command,
    'sell': sell_command,
    'consolidate': consolidate_command,
    'fund': fund_command,
    'amounts': amounts_command,
    'status': status_command,
    'history': history_command,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Pump Swarm CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Interactive menu
  python pump_cli.py

  # Generate 5 wallets and send 0.05 SOL to each
  python pump_cli.py fund --count 5 --amount 0.05

  # Give every wallet a 0.01 SOL buy amount, then buy
  python pump_cli.py amounts --amount 0.01
  python pump_cli.py buy --mint <MINT>

  # Sell half of every wallet's tokens, then sweep SOL home
  python pump_cli.py sell --mint <MINT> --percent 50
  python pump_cli.py consolidate
        """
    )

    # Global options
    parser.add_argument('--config', default='./pump_config.yaml', help='Path to YAML settings')
    parser.add_argument('--env-file', help='Path to .env file with wallet keys (overrides config)')
    parser.add_argument('--log-level', help='Log level override (DEBUG, INFO, ...)')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser('menu', help='Interactive menu (default)')

    init_parser = subparsers.add_parser('init', help='Write a settings file with the defaults')
    init_parser.add_argument('--rpc-url', help='Solana RPC endpoint')
    init_parser.add_argument('--force', action='store_true', help='Overwrite an existing settings file')

    create_parser = subparsers.add_parser('create', help='Create a token with an initial buy')
    create_parser.add_argument('--name', help='Token name')
    create_parser.add_argument('--symbol', help='Token symbol')
    create_parser.add_argument('--description', help='Token description')
    create_parser.add_argument('--twitter', help='Twitter link (https://)')
    create_parser.add_argument('--telegram', help='Telegram link (https://)')
    create_parser.add_argument('--website', help='Website link (https://)')
    create_parser.add_argument('--image', help='Path to PNG image')
    create_parser.add_argument('--amount', help='Initial buy amount in tokens')

    buy_parser = subparsers.add_parser('buy', help='Buy with every wallet')
    buy_parser.add_argument('--mint', help='Token mint address')

    sell_parser = subparsers.add_parser('sell', help='Sell from every wallet in random order')
    sell_parser.add_argument('--mint', help='Token mint address')
    sell_parser.add_argument('--percent', help='Percentage of each balance to sell (1-100)')
    sell_parser.add_argument('--seed', type=int, help='Seed for a reproducible wallet order')

    subparsers.add_parser('consolidate', help='Send all SOL to BASE_WALLET_ADDRESS')

    fund_parser = subparsers.add_parser('fund', help='Generate and fund a new wallet set')
    fund_parser.add_argument('--count', help='Number of wallets to create')
    fund_parser.add_argument('--amount', help='SOL per wallet')
    fund_parser.add_argument('--encrypt', action='store_true', help='Encrypt the key backup with a password')

    amounts_parser = subparsers.add_parser('amounts', help='Set configured buy amounts')
    amounts_parser.add_argument('--amount', help='SOL per buy (0 disables a wallet)')
    amounts_parser.add_argument('--wallet', help='Only this wallet name (default: all)')

    status_parser = subparsers.add_parser('status', help='Show wallet balances')
    status_parser.add_argument('--token', help='Also show balances of this mint')

    subparsers.add_parser('history', help='List key backup batches')

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    command = args.command or 'menu'

    try:
        ctx = build_context(args)
        if command == 'menu':
            print_banner()
        COMMANDS[command](ctx, args)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        sys.exit(1)
    except ValidationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(2)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)


if __name__ == '__main__':
    main()
