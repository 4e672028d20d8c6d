"""
Pump Swarm - token launch and multi-wallet trading tools for Solana

Usage:
    from pump_swarm import BatchExecutor, KeyStore, load_settings

    # See pump_cli.py for the full command set
"""

__version__ = "1.0.0"
__license__ = "MIT"

from config import Config, ConfigManager, Secrets, load_settings
from keystore import KeyStore, WalletRecord, WalletSet
from swarm_executor import (
    BatchExecutor,
    BatchReport,
    BuyOperation,
    ConsolidateOperation,
    DelayRange,
    ExecutionResult,
    SellOperation,
)
from token_launcher import TokenLauncher
from wallet_funder import WalletFunder
from utils import (
    logger,
    ConfigurationError,
    ValidationError,
    WalletSkipped,
    TransactionError,
    InsufficientFundsError,
)

__all__ = [
    "Config",
    "ConfigManager",
    "Secrets",
    "load_settings",
    "KeyStore",
    "WalletRecord",
    "WalletSet",
    "BatchExecutor",
    "BatchReport",
    "BuyOperation",
    "ConsolidateOperation",
    "DelayRange",
    "ExecutionResult",
    "SellOperation",
    "TokenLauncher",
    "WalletFunder",
    "logger",
    "ConfigurationError",
    "ValidationError",
    "WalletSkipped",
    "TransactionError",
    "InsufficientFundsError",
]
