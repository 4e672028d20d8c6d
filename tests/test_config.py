"""
Tests for YAML settings and .env secrets.
"""

import os
import sys
import importlib.util
from pathlib import Path

import pytest
import base58
from solders.keypair import Keypair

sys.path.insert(0, str(Path(__file__).parent.parent))

from config import (
    Config,
    ConfigManager,
    ConfigurationError,
    Secrets,
    decode_keypair,
    load_settings,
)


def secret_of(keypair: Keypair) -> str:
    return base58.b58encode(bytes(keypair)).decode()


class TestConfig:
    """Tests for configuration management."""

    def test_defaults(self):
        config = Config()
        assert config.trade_api_url == "https://pumpportal.fun/api/trade-local"
        assert config.explorer_tx_url == "https://solscan.io/tx/"
        assert config.create_priority_fee == 0.0001
        assert config.create_buy_priority_fee == 0.00005
        assert config.default_delay_min_ms == 100
        assert config.default_delay_max_ms == 1000

    def test_from_dict_ignores_unknown_keys(self):
        config = Config.from_dict({"rpc_url": "https://rpc.test", "chain_id": 8453})
        assert config.rpc_url == "https://rpc.test"
        assert not hasattr(config, "chain_id")

    def test_create_and_load(self, tmp_path):
        path = tmp_path / "pump_config.yaml"
        manager = ConfigManager(path)

        manager.create_default()
        assert path.exists()
        if os.name != 'nt':
            assert (path.stat().st_mode & 0o777) == 0o600

        assert manager.load_config() == Config()

    def test_missing_file_uses_defaults(self, tmp_path):
        assert ConfigManager(tmp_path / "none.yaml").load_config() == Config()

    def test_update_config(self, tmp_path):
        manager = ConfigManager(tmp_path / "pump_config.yaml")
        manager.create_default()

        updated = manager.update_config({"default_slippage": 15, "max_retries": 5})
        assert updated.default_slippage == 15
        assert manager.load_config().max_retries == 5

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("rpc_url: [unclosed\n")
        with pytest.raises(ConfigurationError):
            ConfigManager(path).load_config()

    def test_non_mapping_yaml(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            ConfigManager(path).load_config()


class TestSecrets:

    def test_load_from_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        funding = secret_of(Keypair())
        env_file.write_text(
            f"FUNDING_WALLET_PRIVATE_KEY={funding}\n"
            "WALLET_1_PRIVATE_KEY=one\n"
            "WALLET_12_PRIVATE_KEY=twelve\n"
            "WALLET_A_PRIVATE_KEY=creator\n"
            "PUMP_FUN_RPC=https://rpc.example\n"
        )

        secrets = Secrets.load(str(env_file), environ={})

        assert secrets.funding_key == funding
        assert secrets.creator_key == "creator"
        assert secrets.wallet_keys == {1: "one", 12: "twelve"}
        assert secrets.wallet_key(2) is None
        assert secrets.rpc_url == "https://rpc.example"

    def test_env_file_wins_over_environment(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("WALLET_1_PRIVATE_KEY=from_file\n")

        secrets = Secrets.load(
            str(env_file),
            environ={"WALLET_1_PRIVATE_KEY": "from_env", "WALLET_2_PRIVATE_KEY": "env_only", "HOME": "/root"}
        )
        assert secrets.wallet_keys == {1: "from_file", 2: "env_only"}

    def test_load_does_not_touch_os_environ(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("WALLET_77_PRIVATE_KEY=secret\n")
        Secrets.load(str(env_file), environ={})
        assert "WALLET_77_PRIVATE_KEY" not in os.environ

    def test_require_missing(self):
        with pytest.raises(ConfigurationError, match="FUNDING_WALLET_PRIVATE_KEY not found"):
            Secrets().require("funding_key")

    def test_keypair(self):
        keypair = Keypair()
        secrets = Secrets(creator_key=secret_of(keypair))
        assert secrets.keypair("creator_key").pubkey() == keypair.pubkey()

        with pytest.raises(ConfigurationError):
            Secrets(creator_key="notakey").keypair("creator_key")
        with pytest.raises(ConfigurationError):
            Secrets(creator_key=base58.b58encode(b"\x01" * 32).decode()).keypair("creator_key")

    def test_destination(self):
        address = str(Keypair().pubkey())
        assert str(Secrets(base_wallet_address=address).destination()) == address

        with pytest.raises(ConfigurationError, match="Invalid BASE_WALLET_ADDRESS"):
            Secrets(base_wallet_address="0xnotsolana").destination()
        with pytest.raises(ConfigurationError, match="BASE_WALLET_ADDRESS not found"):
            Secrets().destination()

    def test_decode_keypair_rejects_wrong_length(self):
        with pytest.raises(ValueError):
            decode_keypair(base58.b58encode(b"\x01" * 32).decode())


def test_load_settings_rpc_override(tmp_path):
    config_path = tmp_path / "pump_config.yaml"
    env_file = tmp_path / ".env"
    env_file.write_text("PUMP_FUN_RPC=https://override.rpc\n")

    ConfigManager(config_path).create_default()
    config, secrets = load_settings(str(config_path), str(env_file))

    assert config.rpc_url == "https://override.rpc"
    assert config.env_file == str(env_file)
    assert secrets.rpc_url == "https://override.rpc"


def test_package_exports_shared_error_types():
    import utils

    root = Path(__file__).parent.parent
    module_spec = importlib.util.spec_from_file_location("pump_swarm", root / "__init__.py")
    package = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(package)

    assert package.ConfigurationError is ConfigurationError is utils.ConfigurationError
    assert package.ValidationError is utils.ValidationError
    assert all(hasattr(package, name) for name in package.__all__)
