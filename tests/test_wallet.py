"""
Test Suite for wallet loading and the encrypted keystore
========================================================

Run with: pytest tests/ -v
"""

import os
import stat
import json

import pytest
import base58
from solders.keypair import Keypair

from sol_volume_bot.wallet import (
    SecureKeyManager,
    WalletIdentity,
    load_wallet_pool,
    wallet_slots,
)
from sol_volume_bot.utils import SecureLogger, StartupConfigurationError

from conftest import make_secret

FAST_ITERATIONS = 1000


class TestWalletIdentity:
    """Tests for building signer identities."""

    def test_from_base58(self):
        keypair = Keypair()
        secret = base58.b58encode(bytes(keypair)).decode()

        wallet = WalletIdentity.from_base58(secret, label="WALLET_1_PRIVATE_KEY")

        assert wallet.address == str(keypair.pubkey())
        assert wallet.label == "WALLET_1_PRIVATE_KEY"
        assert str(wallet) == wallet.address

    def test_surrounding_whitespace_ignored(self):
        secret = make_secret()
        assert WalletIdentity.from_base58(f"  {secret}\n").address == WalletIdentity.from_base58(secret).address

    def test_secret_not_in_repr(self):
        secret = make_secret()
        assert secret not in repr(WalletIdentity.from_base58(secret))

    @pytest.mark.parametrize("secret", ["", "0OIl-not-base58", base58.b58encode(b"x" * 32).decode()])
    def test_invalid_keys_rejected(self, secret):
        with pytest.raises(ValueError):
            WalletIdentity.from_base58(secret)

    def test_equality_by_address(self):
        secret = make_secret()
        assert WalletIdentity.from_base58(secret) == WalletIdentity.from_base58(secret, label="")


class TestLoadWalletPool:
    """Tests for loading the wallet pool from the environment."""

    def test_slots_in_numeric_order(self):
        environ = {
            "WALLET_10_PRIVATE_KEY": "c",
            "WALLET_2_PRIVATE_KEY": "b",
            "WALLET_1_PRIVATE_KEY": "a",
            "WALLET_X_PRIVATE_KEY": "ignored",
            "WALLET_3_PRIVATE_KEY": "  ",
        }
        assert [name for name, _ in wallet_slots(environ)] == [
            "WALLET_1_PRIVATE_KEY", "WALLET_2_PRIVATE_KEY", "WALLET_10_PRIVATE_KEY"
        ]

    def test_loads_all_slots(self):
        secrets = [make_secret() for _ in range(3)]
        environ = {f"WALLET_{i}_PRIVATE_KEY": s for i, s in enumerate(secrets, 1)}

        pool = load_wallet_pool(environ)

        assert isinstance(pool, tuple)
        assert [w.address for w in pool] == [WalletIdentity.from_base58(s).address for s in secrets]

    def test_invalid_and_duplicate_keys_skipped(self):
        good = make_secret()
        environ = {
            "WALLET_1_PRIVATE_KEY": good,
            "WALLET_2_PRIVATE_KEY": "definitely-not-a-key",
            "WALLET_3_PRIVATE_KEY": good,
        }

        pool = load_wallet_pool(environ)

        assert len(pool) == 1
        assert pool[0].label == "WALLET_1_PRIVATE_KEY"

    def test_keystore_keys_appended(self):
        env_secret, stored_secret = make_secret(), make_secret()
        pool = load_wallet_pool({"WALLET_1_PRIVATE_KEY": env_secret}, extra_keys=[stored_secret])

        assert len(pool) == 2
        assert pool[1].label == "keystore[0]"

    def test_empty_pool_is_fatal(self):
        with pytest.raises(StartupConfigurationError):
            load_wallet_pool({"UNRELATED": "1"})

    def test_secrets_registered_for_redaction(self):
        secret = make_secret()
        load_wallet_pool({"WALLET_1_PRIVATE_KEY": secret})
        assert secret in SecureLogger._secrets


class TestSecureKeyManager:
    """Tests for keystore encryption/decryption."""

    def test_add_key_and_save(self, tmp_path):
        """Test encrypting and saving a private key."""
        key_file = tmp_path / "test_wallets.enc"
        manager = SecureKeyManager(str(key_file), iterations=FAST_ITERATIONS)
        secret = make_secret()

        address = manager.add_key(secret, "test_password_123")

        assert address == WalletIdentity.from_base58(secret).address
        assert key_file.exists()
        assert secret not in key_file.read_text()

        # Check file permissions (Unix only)
        if os.name != 'nt':
            assert stat.S_IMODE(key_file.stat().st_mode) == 0o600

    def test_load_keys(self, tmp_path):
        """Test loading and decrypting stored keys in insertion order."""
        manager = SecureKeyManager(str(tmp_path / "w.enc"), iterations=FAST_ITERATIONS)
        secrets = [make_secret(), make_secret()]
        for secret in secrets:
            manager.add_key(secret, "test_password_123")

        assert manager.load_keys("test_password_123") == secrets
        assert manager.count() == 2

    def test_load_with_wrong_password(self, tmp_path):
        """Test that a wrong password is a startup error."""
        manager = SecureKeyManager(str(tmp_path / "w.enc"), iterations=FAST_ITERATIONS)
        manager.add_key(make_secret(), "correct_password")

        with pytest.raises(StartupConfigurationError):
            manager.load_keys("wrong_password")

    def test_missing_file(self, tmp_path):
        manager = SecureKeyManager(str(tmp_path / "missing.enc"))
        with pytest.raises(StartupConfigurationError):
            manager.load_keys("whatever")
        assert manager.count() == 0

    def test_duplicate_key_not_stored_twice(self, tmp_path):
        manager = SecureKeyManager(str(tmp_path / "w.enc"), iterations=FAST_ITERATIONS)
        secret = make_secret()
        manager.add_key(secret, "password1")
        manager.add_key(secret, "password1")
        assert manager.count() == 1

    def test_invalid_key_rejected(self, tmp_path):
        manager = SecureKeyManager(str(tmp_path / "w.enc"), iterations=FAST_ITERATIONS)
        with pytest.raises(ValueError):
            manager.add_key("not-a-key", "password1")
        assert not manager.exists()

    def test_salt_rotates_on_write(self, tmp_path):
        key_file = tmp_path / "w.enc"
        manager = SecureKeyManager(str(key_file), iterations=FAST_ITERATIONS)
        manager.add_key(make_secret(), "password1")
        first_salt = json.loads(key_file.read_text())["salt"]
        manager.add_key(make_secret(), "password1")
        second = json.loads(key_file.read_text())

        assert second["salt"] != first_salt
        assert second["iterations"] == FAST_ITERATIONS

    def test_exists_and_delete(self, tmp_path):
        """Test checking if the keystore exists and removing it."""
        manager = SecureKeyManager(str(tmp_path / "w.enc"), iterations=FAST_ITERATIONS)
        assert not manager.exists()

        manager.add_key(make_secret(), "password1")
        assert manager.exists()

        assert manager.delete() is True
        assert not manager.exists()
        assert manager.delete() is False
