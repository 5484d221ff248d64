"""Tests for the command line interface."""

import logging

import pytest

from sol_volume_bot.cli import build_parser, build_scheduler, config_table, main
from sol_volume_bot.config import DEFAULT_CONFIG
from sol_volume_bot.executor import DryRunExecutor
from sol_volume_bot.utils import ROOT_LOGGER_NAME
from sol_volume_bot.wallet import SecureKeyManager

from conftest import make_config, make_secret, make_wallet


@pytest.fixture(autouse=True)
def close_log_handlers():
    yield
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def unset_env(monkeypatch, *names):
    """Unset names for the test and again afterwards, even if .env loading sets them."""
    for name in names:
        monkeypatch.setenv(name, "placeholder")
        monkeypatch.delenv(name)


class TestParser:
    """Tests for argument parsing."""

    def test_run_arguments(self):
        args = build_parser().parse_args(["run", "--dry-run", "--threads", "4", "--env-file", ".env.test"])
        assert args.command == "run"
        assert args.dry_run
        assert args.threads == 4
        assert args.env_file == ".env.test"
        assert args.config == "./bot_config.yaml"

    def test_keystore_add(self):
        args = build_parser().parse_args(["keystore", "add", "--key-file", "k.enc"])
        assert (args.command, args.keystore_command, args.key_file) == ("keystore", "add", "k.enc")

    def test_keystore_delete(self):
        args = build_parser().parse_args(["keystore", "delete", "--yes"])
        assert (args.keystore_command, args.yes) == ("delete", True)


class TestCommands:
    """Tests for command entry points."""

    def test_init_config(self, tmp_path):
        path = tmp_path / "bot_config.yaml"
        main(["init-config", "--config", str(path)])
        assert path.read_text().strip() == DEFAULT_CONFIG

    def test_init_config_refuses_overwrite(self, tmp_path):
        path = tmp_path / "bot_config.yaml"
        path.write_text("token_address: keep-me\n")
        with pytest.raises(SystemExit) as exc_info:
            main(["init-config", "--config", str(path)])
        assert exc_info.value.code == 1
        assert "keep-me" in path.read_text()

    def test_startup_error_exits_1(self, tmp_path, monkeypatch):
        for name in ("TOKEN_ADDRESS", "WALLET_1_PRIVATE_KEY"):
            monkeypatch.delenv(name, raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("# no settings\n")

        with pytest.raises(SystemExit) as exc_info:
            main(["status", "--config", str(tmp_path / "absent.yaml"), "--env-file", str(env_file)])
        assert exc_info.value.code == 1


    def test_env_file_found_in_working_directory(self, tmp_path, monkeypatch, capsys):
        """Without --env-file the .env in the current directory is loaded."""
        unset_env(monkeypatch, "TOKEN_ADDRESS", "WALLET_1_PRIVATE_KEY", "KEYSTORE_FILE")
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text(
            f"TOKEN_ADDRESS=TokenFromDotEnv111\nWALLET_1_PRIVATE_KEY={make_secret()}\n"
        )

        main(["status", "--config", str(tmp_path / "absent.yaml")])

        output = capsys.readouterr().out
        assert "TokenFromDotEnv111" in output
        assert "Wallet Pool (1)" in output

    def test_config_warnings_reach_log_file(self, tmp_path, monkeypatch):
        unset_env(monkeypatch, "TOKEN_ADDRESS", "WALLET_1_PRIVATE_KEY", "LOG_FILE")
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text("# no settings\n")
        (tmp_path / "bot_config.yaml").write_text("gas_limit: 1\n")

        with pytest.raises(SystemExit) as exc_info:
            main(["run"])

        assert exc_info.value.code == 1
        log_text = (tmp_path / "volume-bot.log").read_text()
        assert "Ignoring unknown config keys" in log_text
        assert "gas_limit" in log_text

    def test_keystore_delete(self, tmp_path, capsys):
        path = tmp_path / "wallets.enc"
        SecureKeyManager(str(path), iterations=1000).add_key(make_secret(), "password1")

        main(["keystore", "delete", "--key-file", str(path), "--yes"])

        assert not path.exists()
        assert "Deleted" in capsys.readouterr().out

    def test_keystore_delete_needs_confirmation(self, tmp_path, monkeypatch, capsys):
        path = tmp_path / "wallets.enc"
        SecureKeyManager(str(path), iterations=1000).add_key(make_secret(), "password1")
        monkeypatch.setattr("builtins.input", lambda prompt="": "no")

        main(["keystore", "delete", "--key-file", str(path)])

        assert path.exists()
        assert "Cancelled" in capsys.readouterr().out

    def test_keystore_delete_missing_file(self, tmp_path, capsys):
        path = tmp_path / "absent.enc"
        main(["keystore", "delete", "--key-file", str(path), "--yes"])
        assert "No keystore" in capsys.readouterr().out


class TestWiring:
    """Tests for assembling the scheduler."""

    def test_build_scheduler_shares_pool(self):
        config = make_config(threads=2)
        pool = (make_wallet(), make_wallet(), make_wallet())

        scheduler = build_scheduler(config, pool, DryRunExecutor())

        assert scheduler.worker_count == 2
        assert scheduler.lease_manager.pool == pool
        assert scheduler.controller.policy.max_retries == config.max_retries
        assert scheduler.controller.sampler.fixed

    def test_config_table_rows(self):
        table = config_table(make_config(min_amount=0.001, max_amount=0.01, use_jito=True))
        assert table.row_count == 11
