"""
Wallet Module - Signer Identities and Secure Key Storage
========================================================
Loads the wallet pool once at startup and keeps optional encrypted
key storage for operators who do not want raw keys in the environment.

Security Features:
- PBKDF2-HMAC-SHA256 key derivation (600k iterations)
- Fernet (AES-128-CBC) encryption
- Unique salt per keystore write
- File permissions 0o600 (owner-only)
- Every loaded key is registered for log redaction
"""

import os
import re
import json
import base64
import secrets
from pathlib import Path
from typing import Optional, List, Mapping, Sequence, Tuple
from dataclasses import dataclass, field
from datetime import datetime

import base58
from solders.keypair import Keypair
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .utils import SecureLogger, StartupConfigurationError, get_logger, format_address

logger = get_logger(__name__)

WALLET_SLOT_PATTERN = re.compile(r"^WALLET_(\d+)_PRIVATE_KEY$")


@dataclass(frozen=True)
class WalletIdentity:
    """A signer: public address plus the keypair able to sign for it."""
    address: str
    keypair: Keypair = field(repr=False, compare=False)
    label: str = ""

    @classmethod
    def from_base58(cls, secret: str, label: str = "") -> "WalletIdentity":
        """
        Build an identity from a base58 encoded 64-byte secret key.

        Raises:
            ValueError: If the string is not a valid Solana secret key
        """
        secret = (secret or "").strip()
        if not secret:
            raise ValueError("empty private key")
        raw = base58.b58decode(secret)
        if len(raw) != 64:
            raise ValueError(f"expected 64 key bytes, got {len(raw)}")
        keypair = Keypair.from_bytes(raw)
        return cls(address=str(keypair.pubkey()), keypair=keypair, label=label)

    @classmethod
    def from_keypair(cls, keypair: Keypair, label: str = "") -> "WalletIdentity":
        return cls(address=str(keypair.pubkey()), keypair=keypair, label=label)

    def __str__(self) -> str:
        return self.address


def wallet_slots(environ: Mapping[str, str]) -> List[Tuple[str, str]]:
    """Return (variable name, value) for every WALLET_<n>_PRIVATE_KEY, in slot order."""
    slots = []
    for name, value in environ.items():
        match = WALLET_SLOT_PATTERN.match(name)
        if match and value and value.strip():
            slots.append((int(match.group(1)), name, value))
    slots.sort()
    return [(name, value) for _, name, value in slots]


def load_wallet_pool(environ: Optional[Mapping[str, str]] = None,
                     extra_keys: Sequence[str] = ()) -> Tuple[WalletIdentity, ...]:
    """
    Load every configured wallet into an immutable pool.

    Keys come from WALLET_<n>_PRIVATE_KEY slots first, then from
    extra_keys (the decrypted keystore). Invalid or duplicate keys are
    skipped with an error log.

    Raises:
        StartupConfigurationError: If no wallet loads successfully
    """
    environ = os.environ if environ is None else environ

    sources = wallet_slots(environ)
    sources.extend((f"keystore[{i}]", key) for i, key in enumerate(extra_keys))

    pool: List[WalletIdentity] = []
    seen = set()
    for label, secret in sources:
        SecureLogger.register_secret(secret.strip())
        try:
            wallet = WalletIdentity.from_base58(secret, label=label)
        except ValueError as e:
            logger.error(f"Skipping wallet {label}, key could not be decoded ({type(e).__name__})")
            continue

        if wallet.address in seen:
            logger.warning(f"Skipping wallet {label}, duplicate of {format_address(wallet.address)}")
            continue

        seen.add(wallet.address)
        pool.append(wallet)
        logger.info(f"Loaded wallet {len(pool)} ({label}): {wallet.address}")

    if not pool:
        raise StartupConfigurationError(
            "No wallet keys found. Set WALLET_1_PRIVATE_KEY (WALLET_2_PRIVATE_KEY, ...) "
            "or add keys to the keystore."
        )

    logger.info(f"Successfully loaded {len(pool)} wallet(s) for trading")
    return tuple(pool)


class SecureKeyManager:
    """
    Manages encrypted storage of the wallet pool's private keys.

    Uses PBKDF2-HMAC-SHA256 with 600,000 iterations for key derivation,
    and Fernet (AES-128-CBC) for encryption. All keys share one salt and
    are re-encrypted together on every write.
    """

    KEY_FILE = ".wallets.enc"
    ITERATIONS = 600_000

    def __init__(self, key_file: Optional[str] = None, iterations: Optional[int] = None):
        """
        Initialize key manager.

        Args:
            key_file: Path to encrypted key file (default: .wallets.enc)
            iterations: KDF iterations (default: ITERATIONS)
        """
        self.key_file = Path(key_file or self.KEY_FILE)
        self.iterations = iterations or self.ITERATIONS

    def _derive_key(self, password: str, salt: bytes, iterations: int) -> bytes:
        """
        Derive encryption key from password using PBKDF2.

        Returns:
            URL-safe base64-encoded key for Fernet
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=iterations,
        )
        return base64.urlsafe_b64encode(kdf.derive(password.encode()))

    def _read(self) -> dict:
        with open(self.key_file, 'r') as f:
            return json.load(f)

    def _write(self, private_keys: List[str], password: str):
        salt = secrets.token_bytes(16)
        fernet = Fernet(self._derive_key(password, salt, self.iterations))

        data = {
            "salt": base64.b64encode(salt).decode(),
            "encrypted_keys": [fernet.encrypt(k.encode()).decode() for k in private_keys],
            "version": 1,
            "updated": datetime.now().isoformat(),
            "iterations": self.iterations,
        }

        self.key_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.key_file, 'w') as f:
            json.dump(data, f, indent=2)

        # Set owner-only permissions (Unix)
        os.chmod(self.key_file, 0o600)

    def load_keys(self, password: str) -> List[str]:
        """
        Load and decrypt all stored keys.

        Raises:
            StartupConfigurationError: If the file is missing or the password is wrong
        """
        if not self.key_file.exists():
            raise StartupConfigurationError(f"Keystore not found: {self.key_file}")

        SecureLogger.register_secret(password)
        data = self._read()
        salt = base64.b64decode(data["salt"])
        iterations = int(data.get("iterations", self.ITERATIONS))
        fernet = Fernet(self._derive_key(password, salt, iterations))

        try:
            keys = [fernet.decrypt(token.encode()).decode() for token in data.get("encrypted_keys", [])]
        except InvalidToken:
            raise StartupConfigurationError(f"Could not decrypt {self.key_file}: wrong password?")

        for key in keys:
            SecureLogger.register_secret(key)
        return keys

    def add_key(self, private_key: str, password: str) -> str:
        """
        Validate a base58 key and append it to the keystore.

        Returns:
            The wallet address for the added key
        """
        wallet = WalletIdentity.from_base58(private_key)
        private_key = private_key.strip()
        SecureLogger.register_secret(private_key)

        keys = self.load_keys(password) if self.exists() else []
        if private_key in keys:
            logger.warning(f"Wallet {wallet.address} is already in the keystore")
            return wallet.address

        keys.append(private_key)
        self._write(keys, password)
        logger.info(f"Added wallet {wallet.address} to {self.key_file} ({len(keys)} stored)")
        return wallet.address

    def count(self) -> int:
        """Number of stored keys (no password needed)."""
        if not self.exists():
            return 0
        return len(self._read().get("encrypted_keys", []))

    def exists(self) -> bool:
        """Check if encrypted key file exists."""
        return self.key_file.exists()

    def delete(self) -> bool:
        """Delete the encrypted key file. Returns False if there was none."""
        if not self.key_file.exists():
            return False
        self.key_file.unlink()
        logger.info(f"Deleted keystore {self.key_file}")
        return True
