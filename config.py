"""
Configuration Management Module

Non-secret settings live in a YAML file; secrets are read once from a
.env file into an explicit Secrets object that is passed to each flow.
"""

import os
import re
import logging
from pathlib import Path
from typing import Dict, Any, Optional, Mapping, Tuple
from dataclasses import dataclass, asdict, field

import base58
import yaml
from dotenv import dotenv_values
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from utils import ConfigurationError, validate_private_key

logger = logging.getLogger("pump_swarm.config")


WALLET_KEY_PATTERN = re.compile(r"^WALLET_(\d+)_PRIVATE_KEY$")


def decode_keypair(secret: str) -> Keypair:
    """
    Decode a base58-encoded 64-byte secret key.

    Raises:
        ValueError: If the string is not base58 or not a consistent keypair
    """
    raw = base58.b58decode(secret.strip())
    if len(raw) != 64:
        raise ValueError(f"Secret key must decode to 64 bytes, got {len(raw)}")
    return Keypair.from_bytes(raw)


@dataclass
class Config:
    """Bot configuration settings."""

    # Network
    rpc_url: str = "https://api.mainnet-beta.solana.com"
    commitment: str = "confirmed"

    # Remote services
    trade_api_url: str = "https://pumpportal.fun/api/trade-local"
    ipfs_api_url: str = "https://pump.fun/api/ipfs"
    bundle_relay_url: str = "https://mainnet.block-engine.jito.wtf/api/v1/bundles"
    explorer_tx_url: str = "https://solscan.io/tx/"
    pool: str = "pump"

    # Trading settings
    default_slippage: float = 10.0
    default_priority_fee: float = 0.00001

    # Token creation
    create_slippage: float = 10.0
    create_priority_fee: float = 0.0001
    create_buy_priority_fee: float = 0.00005

    # Files
    wallets_file: str = "./config/wallets.json"
    backup_file: str = "./config/private_keys_backup.json"
    env_file: str = "./.env"

    # Pacing written into a freshly generated wallet set
    default_delay_min_ms: int = 100
    default_delay_max_ms: int = 1000

    # Operation
    request_timeout: int = 30
    max_retries: int = 3
    log_level: str = "INFO"
    log_file: str = "./logs/pump_swarm.log"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        # Filter only valid fields
        valid_fields = {k: v for k, v in (data or {}).items() if k in cls.__dataclass_fields__}
        return cls(**valid_fields)


class ConfigManager:
    """Manages the YAML configuration file."""

    def __init__(self, config_path: Path = Path("./pump_config.yaml")):
        self.config_path = Path(config_path)

    def exists(self) -> bool:
        return self.config_path.exists()

    def create_default(self) -> Config:
        """Write a configuration file holding the defaults."""
        config = Config()
        self._save_config(config)
        logger.info(f"Configuration created at {self.config_path}")
        return config

    def load_config(self) -> Config:
        """Load configuration, falling back to defaults when no file exists."""
        if not self.config_path.exists():
            logger.info(f"No config file at {self.config_path}, using defaults")
            return Config()

        try:
            with open(self.config_path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Malformed config file {self.config_path}: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {self.config_path} must hold a mapping")

        return Config.from_dict(data)

    def read_raw_config(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, 'r') as f:
            return yaml.safe_load(f) or {}

    def _save_config(self, config: Config):
        """Save configuration to YAML file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.config_path, 'w') as f:
            yaml.dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)

        # Set restrictive permissions (owner read/write only)
        os.chmod(self.config_path, 0o600)

        logger.info(f"Configuration saved to {self.config_path}")

    def update_config(self, updates: Dict[str, Any]) -> Config:
        """Update configuration values."""
        data = self.read_raw_config() if self.exists() else Config().to_dict()
        data.update(updates)

        config = Config.from_dict(data)
        self._save_config(config)

        logger.info("Configuration updated")
        return config


@dataclass
class Secrets:
    """
    Credentials for one run, keyed explicitly instead of read from
    process-wide environment variables at the point of use.
    """
    funding_key: Optional[str] = None
    base_wallet_address: Optional[str] = None
    creator_key: Optional[str] = None
    buyer_key: Optional[str] = None
    rpc_url: Optional[str] = None
    wallet_keys: Dict[int, str] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Optional[str]]) -> "Secrets":
        wallet_keys = {}
        for name, value in values.items():
            match = WALLET_KEY_PATTERN.match(name)
            if match and value:
                wallet_keys[int(match.group(1))] = value.strip()

        def get(name: str) -> Optional[str]:
            value = values.get(name)
            return value.strip() if value else None

        return cls(
            funding_key=get("FUNDING_WALLET_PRIVATE_KEY"),
            base_wallet_address=get("BASE_WALLET_ADDRESS"),
            creator_key=get("WALLET_A_PRIVATE_KEY"),
            buyer_key=get("WALLET_B_PRIVATE_KEY"),
            rpc_url=get("PUMP_FUN_RPC"),
            wallet_keys=wallet_keys,
        )

    @classmethod
    def load(cls, env_file: str, environ: Optional[Mapping[str, str]] = None) -> "Secrets":
        """
        Read secrets once: values in the .env file win, the process
        environment fills the gaps.
        """
        environ = os.environ if environ is None else environ
        merged: Dict[str, Optional[str]] = {
            k: v for k, v in environ.items()
            if k.endswith("_PRIVATE_KEY") or k in ("BASE_WALLET_ADDRESS", "PUMP_FUN_RPC")
        }
        if Path(env_file).exists():
            merged.update({k: v for k, v in dotenv_values(env_file).items() if v})
        return cls.from_mapping(merged)

    def require(self, field_name: str) -> str:
        """Return a secret or raise ConfigurationError naming the missing variable."""
        env_names = {
            "funding_key": "FUNDING_WALLET_PRIVATE_KEY",
            "base_wallet_address": "BASE_WALLET_ADDRESS",
            "creator_key": "WALLET_A_PRIVATE_KEY",
            "buyer_key": "WALLET_B_PRIVATE_KEY",
        }
        value = getattr(self, field_name)
        if not value:
            raise ConfigurationError(f"{env_names.get(field_name, field_name)} not found in .env file")
        return value

    def keypair(self, field_name: str) -> Keypair:
        """Decode a required base58 secret into a Keypair."""
        secret = self.require(field_name)
        if not validate_private_key(secret):
            raise ConfigurationError(f"Secret {field_name} is not a valid base58 keypair")
        try:
            return decode_keypair(secret)
        except ValueError:
            raise ConfigurationError(f"Secret {field_name} is not a valid base58 keypair")

    def destination(self) -> Pubkey:
        """The consolidation destination, validated."""
        address = self.require("base_wallet_address")
        try:
            if len(base58.b58decode(address)) != 32:
                raise ValueError(address)
            return Pubkey.from_string(address)
        except ValueError:
            raise ConfigurationError(
                "Invalid BASE_WALLET_ADDRESS in .env file. Please provide a valid Solana address."
            )

    def wallet_key(self, index: int) -> Optional[str]:
        return self.wallet_keys.get(index)


def load_settings(config_path: str, env_file: Optional[str] = None) -> Tuple[Config, Secrets]:
    """Load YAML settings and secrets; PUMP_FUN_RPC overrides rpc_url."""
    config = ConfigManager(Path(config_path)).load_config()
    if env_file:
        config.env_file = env_file
    secrets = Secrets.load(config.env_file)
    if secrets.rpc_url:
        config.rpc_url = secrets.rpc_url
    return config, secrets

