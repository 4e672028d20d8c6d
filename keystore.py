"""
Key Store Module - Wallet Metadata, Backup History & Credentials
================================================================

Persists three things:

- the active wallet set (names, public keys, configured buy amounts and
  the pacing delay range), overwritten whenever a new set is generated
- an append-only backup history of generated secret keys, keyed by
  ISO-8601 timestamp, so every wallet ever generated stays recoverable
- wallet credentials in the .env file

SECURITY FEATURES:
- Backup batches can be encrypted at rest using Fernet (AES-128)
- Password-derived encryption keys via PBKDF2, fresh salt per batch
- Every written file is chmod 0o600
- A credential whose derived public key differs from the stored one is refused
"""

import os
import json
import base64
from pathlib import Path
from typing import List, Dict, Optional, Tuple, Any
from dataclasses import dataclass, field

import base58
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from dotenv import set_key
from solders.keypair import Keypair

from config import Secrets, WALLET_KEY_PATTERN, decode_keypair
from utils import logger, format_address, ConfigurationError


PUBLIC_KEYS_FIELD = "walletPublicKeys"


class CredentialMismatch(Exception):
    """A stored credential does not derive the wallet's recorded public key."""
    pass


def credential_name(index: int) -> str:
    return f"WALLET_{index}_PRIVATE_KEY"


def encode_secret(keypair: Keypair) -> str:
    """Base58 form of the 64-byte secret key, as stored in .env and backups."""
    return base58.b58encode(bytes(keypair)).decode()


@dataclass
class WalletRecord:
    """One wallet of the active set. `index` is its 1-based position."""
    name: str
    public_key: str
    amount: float = 0.0
    index: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "publicKey": self.public_key, "amount": self.amount}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int) -> 'WalletRecord':
        amount = float(data.get("amount", 0) or 0)
        if amount < 0:
            raise ValueError(f"Wallet {data.get('name')} has a negative amount")
        return cls(
            name=data["name"],
            public_key=data["publicKey"],
            amount=amount,
            index=index,
        )


@dataclass
class WalletSet:
    """The active wallet set document."""
    wallets: List[WalletRecord] = field(default_factory=list)
    delay_min_ms: int = 100
    delay_max_ms: int = 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wallets": [w.to_dict() for w in self.wallets],
            "delayRange": {"min": self.delay_min_ms, "max": self.delay_max_ms},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WalletSet':
        delay = data.get("delayRange") or {}
        delay_min_ms = int(delay.get("min", 100))
        delay_max_ms = int(delay.get("max", 1000))
        if delay_min_ms < 0 or delay_max_ms < delay_min_ms:
            raise ValueError(f"Invalid delayRange {delay_min_ms}-{delay_max_ms} ms")
        return cls(
            wallets=[WalletRecord.from_dict(w, i) for i, w in enumerate(data.get("wallets", []), start=1)],
            delay_min_ms=delay_min_ms,
            delay_max_ms=delay_max_ms,
        )

    def find(self, name: str) -> Optional[WalletRecord]:
        for wallet in self.wallets:
            if wallet.name == name:
                return wallet
        return None

    @property
    def total_amount(self) -> float:
        return sum(w.amount for w in self.wallets)


def generate_wallets(count: int) -> List[Tuple[WalletRecord, Keypair]]:
    """Generate `count` fresh keypairs named Wallet 1..count with zero amounts."""
    if count < 1:
        raise ValueError("Number of wallets must be at least 1")

    generated = []
    for i in range(1, count + 1):
        keypair = Keypair()
        record = WalletRecord(name=f"Wallet {i}", public_key=str(keypair.pubkey()), amount=0.0, index=i)
        generated.append((record, keypair))
        logger.info(f"Generated {record.name}: {format_address(record.public_key)}")
    return generated


class KeyStore:
    """
    File-backed key store.

    Example:
        >>> store = KeyStore("config/wallets.json", "config/private_keys_backup.json", ".env", secrets)
        >>> wallet_set = store.load_active_wallets()
        >>> keypair = store.keypair_for(wallet_set.wallets[0])
    """

    # KDF iterations (OWASP recommended minimum)
    KDF_ITERATIONS = 480000

    def __init__(
        self,
        wallets_file: str,
        backup_file: str,
        env_file: str,
        secrets: Optional[Secrets] = None
    ):
        self.wallets_file = Path(wallets_file)
        self.backup_file = Path(backup_file)
        self.env_file = Path(env_file)
        self.secrets = secrets or Secrets()

    def _derive_key(self, password: str, salt: bytes) -> bytes:
        """
        Derive encryption key from password using PBKDF2.

        Returns:
            Base64-encoded key for Fernet
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=self.KDF_ITERATIONS,
        )
        return base64.urlsafe_b64encode(kdf.derive(password.encode()))

    @staticmethod
    def _write_private_json(path: Path, data: Dict[str, Any]):
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(data, f, indent=2)
        os.chmod(path, 0o600)

    # Active wallet set

    def load_active_wallets(self) -> WalletSet:
        """Load the active set; an absent file is an empty set."""
        if not self.wallets_file.exists():
            logger.info(f"No wallet file found at {self.wallets_file}")
            return WalletSet()

        try:
            with open(self.wallets_file, 'r') as f:
                wallet_set = WalletSet.from_dict(json.load(f))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Malformed wallet file {self.wallets_file}: {e}") from e

        logger.debug(f"Loaded {len(wallet_set.wallets)} wallets from {self.wallets_file}")
        return wallet_set

    def save_active_wallets(self, wallet_set: WalletSet):
        """Overwrite the active set."""
        self._write_private_json(self.wallets_file, wallet_set.to_dict())
        logger.info(f"Saved {len(wallet_set.wallets)} wallets to {self.wallets_file}")

    def set_wallet_amount(self, amount: float, name: Optional[str] = None) -> WalletSet:
        """
        Set the configured buy amount of one wallet (by name) or of all wallets.

        Raises:
            ValueError: If the amount is negative or the named wallet is unknown
        """
        if amount < 0:
            raise ValueError("Amount cannot be negative")

        wallet_set = self.load_active_wallets()
        if name is None:
            targets = wallet_set.wallets
        else:
            wallet = wallet_set.find(name)
            if wallet is None:
                raise ValueError(f"No wallet named '{name}'")
            targets = [wallet]

        for wallet in targets:
            wallet.amount = amount

        self.save_active_wallets(wallet_set)
        return wallet_set

    # Backup history

    def read_backup_history(self) -> Dict[str, Dict[str, Any]]:
        """Whole backup history document, oldest batch first."""
        if not self.backup_file.exists():
            return {}

        try:
            with open(self.backup_file, 'r') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to load backup history: {e}")
            raise

    def append_backup_batch(
        self,
        timestamp: str,
        private_keys: List[str],
        public_keys: List[str],
        password: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Append one batch of generated keys. Existing batches are never touched.

        Args:
            timestamp: ISO-8601 key for the batch
            private_keys: Base58 secrets, wallet 1 first
            public_keys: Matching public keys
            password: Encrypt the secrets with a key derived from this password

        Raises:
            ValueError: If the lists differ in length or the timestamp is taken
        """
        if len(private_keys) != len(public_keys):
            raise ValueError("Private and public key lists must be the same length")

        history = self.read_backup_history()
        if timestamp in history:
            raise ValueError(f"Backup batch {timestamp} already exists")

        batch: Dict[str, Any] = {}
        fernet = None
        if password:
            salt = os.urandom(16)
            fernet = Fernet(self._derive_key(password, salt))
            batch["salt"] = base64.b64encode(salt).decode()
            batch["encrypted"] = True

        for i, secret in enumerate(private_keys, start=1):
            if fernet:
                secret = fernet.encrypt(secret.encode()).decode()
            batch[credential_name(i)] = secret
        batch[PUBLIC_KEYS_FIELD] = list(public_keys)

        history[timestamp] = batch
        self._write_private_json(self.backup_file, history)

        logger.info(f"Backed up {len(private_keys)} keys under {timestamp}")
        return batch

    def read_backup_batch(self, timestamp: str, password: Optional[str] = None) -> Dict[str, str]:
        """
        Secrets of one batch, decrypted when needed.

        Raises:
            KeyError: Unknown timestamp
            ValueError: Encrypted batch without password, or wrong password
        """
        batch = self.read_backup_history()[timestamp]
        secrets = {k: v for k, v in batch.items() if WALLET_KEY_PATTERN.match(k)}

        if not batch.get("encrypted"):
            return secrets
        if not password:
            raise ValueError(f"Backup batch {timestamp} is encrypted; password required")

        fernet = Fernet(self._derive_key(password, base64.b64decode(batch["salt"])))
        try:
            return {k: fernet.decrypt(v.encode()).decode() for k, v in secrets.items()}
        except InvalidToken:
            raise ValueError("Invalid password for backup batch")

    def list_backup_batches(self) -> List[Dict[str, Any]]:
        """Timestamp, wallet count and encryption flag of each batch; no secrets."""
        return [
            {
                "timestamp": timestamp,
                "wallets": len(batch.get(PUBLIC_KEYS_FIELD, [])),
                "encrypted": bool(batch.get("encrypted")),
                "public_keys": list(batch.get(PUBLIC_KEYS_FIELD, [])),
            }
            for timestamp, batch in self.read_backup_history().items()
        ]

    # Credentials

    def upsert_credential(self, identifier: str, secret: str):
        """Insert or replace one credential in the .env file."""
        self.env_file.parent.mkdir(parents=True, exist_ok=True)
        self.env_file.touch(exist_ok=True)
        os.chmod(self.env_file, 0o600)
        set_key(str(self.env_file), identifier, secret, quote_mode="never")

        match = WALLET_KEY_PATTERN.match(identifier)
        if match:
            self.secrets.wallet_keys[int(match.group(1))] = secret
        logger.debug(f"Stored credential {identifier}")

    def credential_for(self, wallet: WalletRecord) -> Optional[str]:
        return self.secrets.wallet_key(wallet.index)

    def keypair_for(self, wallet: WalletRecord) -> Optional[Keypair]:
        """
        Derive the signing keypair of a wallet.

        Returns:
            None when no credential is stored for the wallet

        Raises:
            CredentialMismatch: If the credential belongs to a different address
            ValueError: If the credential is not a base58 keypair
        """
        secret = self.credential_for(wallet)
        if not secret:
            return None

        keypair = decode_keypair(secret)
        if str(keypair.pubkey()) != wallet.public_key:
            raise CredentialMismatch(
                f"{credential_name(wallet.index)} does not match {wallet.name} "
                f"({format_address(wallet.public_key)})"
            )
        return keypair
