"""
Utility Module

Helper functions, logging, error types, formatting and input validation.

SECURITY:
- Secure logging that redacts base58 secret keys and credential assignments
- Error message sanitization before anything is shown to the user
"""

import os
import re
import random
import logging
from pathlib import Path
from typing import Optional

import base58
from solders.pubkey import Pubkey
from rich.logging import RichHandler
from rich.console import Console

from logging_utils import build_json_file_handler


# Global console for Rich output
console = Console()

LAMPORTS_PER_SOL = 1_000_000_000


class ConfigurationError(Exception):
    """Missing or malformed configuration; fatal before any network call."""
    pass


class ValidationError(ValueError):
    """Malformed user input; the prompt asks again."""
    pass


class WalletSkipped(Exception):
    """Raised by a wallet operation when the wallet has nothing to do."""
    pass


class TransactionError(Exception):
    """Custom exception for transaction failures."""
    pass


class InsufficientFundsError(Exception):
    """Custom exception for insufficient funds."""
    pass


class SecureLogger:
    """
    Logger that sanitizes sensitive data from log messages.

    Prevents secret keys from leaking into the console or the log file.
    """

    # Patterns to redact from logs
    SENSITIVE_PATTERNS = [
        (r'[A-Z0-9_]*PRIVATE_KEY\s*[:=]\s*\S+', '[PRIVATE_KEY_REDACTED]'),
        (r'\b[1-9A-HJ-NP-Za-km-z]{80,90}\b', '[SECRET_KEY_REDACTED]'),  # base58 64-byte keypairs
        (r'password["\']?\s*[:=]\s*["\']?[^"\'\s]+["\']?', 'password=[REDACTED]'),
        (r'api[_-]?key["\']?\s*[:=]\s*["\']?[^"\'\s]+["\']?', 'api_key=[REDACTED]'),
    ]

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def _sanitize(self, msg: str) -> str:
        """Remove sensitive data from log message."""
        if not isinstance(msg, str):
            msg = str(msg)

        sanitized = msg
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)
        return sanitized

    def debug(self, msg: str, *args, **kwargs):
        self._logger.debug(self._sanitize(msg), *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._logger.info(self._sanitize(msg), *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._logger.warning(self._sanitize(msg), *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._logger.error(self._sanitize(msg), *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        self._logger.exception(self._sanitize(msg), *args, **kwargs)

    def critical(self, msg: str, *args, **kwargs):
        self._logger.critical(self._sanitize(msg), *args, **kwargs)


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> SecureLogger:
    """
    Setup logging with Rich console output and an optional rotating JSON file.

    Returns a SecureLogger that sanitizes sensitive data.
    """
    logger = logging.getLogger("pump_swarm")
    logger.setLevel(getattr(logging, log_level.upper()))

    # Remove existing handlers
    logger.handlers = []

    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True
    )
    rich_handler.setLevel(getattr(logging, log_level.upper()))
    rich_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(rich_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.addHandler(build_json_file_handler(log_file, log_level))

    return SecureLogger(logger)


def configure_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> SecureLogger:
    """Reconfigure the shared logger's handlers (called once by the CLI)."""
    setup_logging(log_level, log_file)
    return logger


# Initialize global secure logger (console only until the CLI configures it)
logger = setup_logging()


# Formatting utilities

def lamports_to_sol(lamports: int) -> float:
    return lamports / LAMPORTS_PER_SOL


def sol_to_lamports(sol: float) -> int:
    """Convert SOL to lamports, truncating dust below one lamport."""
    return int(round(sol * LAMPORTS_PER_SOL, 3))


def format_sol(sol_amount: float) -> str:
    """Format SOL amount with appropriate precision."""
    if sol_amount < 0.001:
        return f"{sol_amount:.6f} SOL"
    elif sol_amount < 1:
        return f"{sol_amount:.4f} SOL"
    else:
        return f"{sol_amount:.2f} SOL"


def format_address(address: str, length: int = 4) -> str:
    """Format Solana address with ellipsis."""
    if len(address) <= length * 2 + 3:
        return address
    return f"{address[:length]}...{address[-length:]}"


def format_tx_link(signature: str, explorer_url: str = "https://solscan.io/tx/") -> str:
    return f"{explorer_url}{signature}"


def sanitize_error_message(error) -> str:
    """Sanitize error messages to remove sensitive data."""
    return logger._sanitize(str(error))


def random_delay_ms(min_ms: int, max_ms: int, rng: Optional[random.Random] = None) -> int:
    """
    Draw a pacing delay uniformly from [min_ms, max_ms], both inclusive.

    Raises:
        ValueError: If the range is negative or inverted
    """
    if min_ms < 0 or max_ms < min_ms:
        raise ValueError(f"Invalid delay range: {min_ms}-{max_ms}")
    rng = rng or random.Random()
    return rng.randint(min_ms, max_ms)


# Validation utilities

def validate_address(address: str) -> str:
    """
    Validate a Solana address (base58, 32 bytes).

    Returns:
        The stripped address

    Raises:
        ValidationError: If the address cannot be parsed
    """
    address = (address or "").strip()
    if not 32 <= len(address) <= 44:
        raise ValidationError("Please enter a valid Solana address")
    try:
        if len(base58.b58decode(address)) != 32:
            raise ValidationError("Please enter a valid Solana address")
        Pubkey.from_string(address)
    except ValueError:
        raise ValidationError("Please enter a valid Solana address")
    return address


def validate_private_key(key: str) -> bool:
    """Check that a base58 string decodes to a 64-byte keypair."""
    if not key:
        return False
    try:
        return len(base58.b58decode(key.strip())) == 64
    except ValueError:
        return False


def validate_percentage(value, label: str = "percentage") -> float:
    """Parse a number in [1, 100]."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Please enter a {label} between 1 and 100")
    if number < 1 or number > 100:
        raise ValidationError(f"Please enter a {label} between 1 and 100")
    return number


def validate_positive(value, label: str = "amount") -> float:
    """Parse a number strictly greater than zero."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Please enter a valid {label} greater than 0")
    if number != number or number <= 0:
        raise ValidationError(f"Please enter a valid {label} greater than 0")
    return number


def validate_non_negative(value, label: str = "amount") -> float:
    """Parse a number >= 0; zero disables a wallet's buys."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Please enter a valid {label} of 0 or more")
    if number != number or number < 0:
        raise ValidationError(f"Please enter a valid {label} of 0 or more")
    return number


def validate_count(value) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Please enter a valid number greater than 0")
    if number < 1:
        raise ValidationError("Please enter a valid number greater than 0")
    return number


def validate_non_empty(value: str, label: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{label} cannot be empty")
    return value


def validate_https_url(value: str) -> str:
    value = (value or "").strip()
    if not value.startswith("https://"):
        raise ValidationError("Please enter a valid URL starting with https://")
    return value


def validate_png_path(value: str) -> str:
    value = (value or "").strip()
    if not os.path.exists(value):
        raise ValidationError("Image file does not exist")
    if not value.lower().endswith(".png"):
        raise ValidationError("Please provide a PNG image file")
    return value
