#!/usr/bin/env python3
"""
Solana Volume Bot CLI
=====================

Usage:
    sol-volume-bot run --threads 3
    sol-volume-bot run --dry-run --env-file .env
    sol-volume-bot status
    sol-volume-bot keystore add
    sol-volume-bot keystore delete --yes
    sol-volume-bot init-config --config ./bot_config.yaml
"""

import os
import sys
import asyncio
import argparse
import getpass
from pathlib import Path
from typing import List, Optional, Tuple

from rich.panel import Panel
from rich.table import Table
from rich import box

from . import __version__
from .config import Config, ConfigManager
from .cycle import TradeCycleController
from .executor import SwapOptions, create_executor
from .leasing import WalletLeaseManager
from .retry import FailureCounters, RetryPolicy
from .sampler import AmountSampler
from .scheduler import WorkerScheduler
from .wallet import SecureKeyManager, WalletIdentity, load_wallet_pool
from .utils import (
    SecureLogger,
    StartupConfigurationError,
    console,
    get_logger,
    setup_logging,
    format_amount,
)

logger = get_logger(__name__)


def print_banner():
    """Print the CLI banner."""
    banner = f"""
    ◎ Solana Volume Bot v{__version__} ◎
    ═══════════════════════════════════
    Multi-wallet buy/sell cycles via Solana Tracker
    """
    console.print(Panel(banner, style="bold magenta", box=box.DOUBLE))


def get_password(prompt: str = "Enter keystore password: ") -> str:
    """Read the keystore password from KEYSTORE_PASSWORD or prompt for it."""
    password = os.environ.get("KEYSTORE_PASSWORD")
    if password:
        return password

    console.print(f"[yellow]{prompt}[/yellow]")
    password = getpass.getpass("> ")
    if len(password) < 8:
        console.print("[red]Password must be at least 8 characters[/red]")
        sys.exit(1)
    return password


def config_table(config: Config) -> Table:
    """Get a Rich table with the resolved configuration."""
    table = Table(title="Configuration", box=box.ROUNDED)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    if config.random_amounts:
        amount = f"{format_amount(config.min_amount)} - {format_amount(config.max_amount)} SOL (random)"
    else:
        amount = f"{format_amount(config.min_amount)} SOL (fixed)"

    table.add_row("Token", config.token_address or "-")
    table.add_row("Amount", amount)
    table.add_row("Cycle Delay", f"{config.delay_seconds:g}s")
    table.add_row("Sell Delay", f"{config.sell_delay_seconds:g}s")
    table.add_row("Slippage", f"{config.slippage:g}%")
    table.add_row("Priority Fee", f"{format_amount(config.priority_fee)} SOL")
    table.add_row("Jito", f"on (tip {format_amount(config.jito_tip)} SOL)" if config.use_jito else "off")
    table.add_row("Threads", str(config.threads))
    table.add_row("Max Retries", str(config.max_retries))
    table.add_row("RPC", config.rpc_url)
    table.add_row("Mode", "[yellow]DRY RUN[/yellow]" if config.dry_run else "[red]LIVE[/red]")
    return table


def wallet_table(pool: Tuple[WalletIdentity, ...]) -> Table:
    """Get a Rich table listing the wallet pool (addresses only)."""
    table = Table(title=f"Wallet Pool ({len(pool)})", box=box.ROUNDED)
    table.add_column("#", style="cyan")
    table.add_column("Source", style="dim")
    table.add_column("Address", style="white")
    for index, wallet in enumerate(pool, 1):
        table.add_row(str(index), wallet.label, wallet.address)
    return table


def load_config(args) -> Config:
    overrides = {}
    if getattr(args, 'dry_run', False):
        overrides['dry_run'] = True
    if getattr(args, 'threads', None) is not None:
        overrides['threads'] = args.threads

    manager = ConfigManager(Path(args.config))
    return manager.load_config(env_file=args.env_file, overrides=overrides)


def load_keystore_keys(config: Config) -> List[str]:
    """Decrypt the keystore named in the config, if any."""
    if not config.keystore_file:
        return []
    manager = SecureKeyManager(config.keystore_file)
    if not manager.exists():
        raise StartupConfigurationError(f"Keystore not found: {config.keystore_file}")
    return manager.load_keys(get_password())


def build_scheduler(config: Config, pool, executor) -> WorkerScheduler:
    """Wire the shared lease set and failure counters into one scheduler."""
    counters = FailureCounters()
    policy = RetryPolicy.from_config(config, counters)
    controller = TradeCycleController(
        config,
        executor,
        policy,
        sampler=AmountSampler(config.min_amount, config.max_amount),
        options=SwapOptions.from_config(config),
    )
    return WorkerScheduler(config, WalletLeaseManager(pool), controller)


async def run_bot(scheduler: WorkerScheduler, executor):
    try:
        await scheduler.run()
    finally:
        await executor.close()


def run_command(args):
    """Run the trading workers until interrupted."""
    print_banner()

    # Default handlers first so config loading is logged too
    setup_logging()
    config = load_config(args)
    setup_logging(config.log_level, config.log_file)
    if config.swap_api_key:
        SecureLogger.register_secret(config.swap_api_key)

    pool = load_wallet_pool(extra_keys=load_keystore_keys(config))

    console.print(config_table(config))
    console.print(wallet_table(pool))

    executor = create_executor(config)
    scheduler = build_scheduler(config, pool, executor)

    try:
        asyncio.run(run_bot(scheduler, executor))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted, shutting down[/yellow]")
    finally:
        scheduler.stop()
        scheduler.print_summary()


def status_command(args):
    """Show the resolved configuration and wallet pool."""
    setup_logging(log_file=None)
    config = load_config(args)
    setup_logging(config.log_level, None)

    console.print(config_table(config))

    keystore = SecureKeyManager(config.keystore_file) if config.keystore_file else None
    if keystore is not None:
        console.print(f"Keystore: {keystore.key_file} ({keystore.count()} encrypted key(s))")

    pool = load_wallet_pool(extra_keys=load_keystore_keys(config))
    console.print(wallet_table(pool))


def keystore_add_command(args):
    """Append a base58 private key to the encrypted keystore."""
    setup_logging("INFO", None)
    manager = SecureKeyManager(args.key_file)

    console.print("[yellow]Enter wallet private key (base58):[/yellow]")
    private_key = getpass.getpass("> ").strip()
    SecureLogger.register_secret(private_key)

    password = get_password()
    if not manager.exists() and not os.environ.get("KEYSTORE_PASSWORD"):
        if getpass.getpass("Confirm password: ") != password:
            console.print("[red]Passwords do not match[/red]")
            sys.exit(1)

    try:
        address = manager.add_key(private_key, password)
    except ValueError as e:
        console.print(f"[red]Invalid private key: {e}[/red]")
        sys.exit(1)

    console.print(f"[green]✓ Wallet {address} stored in {manager.key_file}[/green]")


def keystore_delete_command(args):
    """Remove the encrypted keystore file."""
    setup_logging("INFO", None)
    manager = SecureKeyManager(args.key_file)
    if not manager.exists():
        console.print(f"[yellow]No keystore at {manager.key_file}[/yellow]")
        return

    if not args.yes:
        console.print(
            f"[red]Delete {manager.key_file} with {manager.count()} stored key(s)? "
            f"Type 'yes' to confirm:[/red]"
        )
        if input("> ").strip().lower() != "yes":
            console.print("[yellow]Cancelled[/yellow]")
            return

    manager.delete()
    console.print(f"[green]✓ Deleted {manager.key_file}[/green]")


def init_config_command(args):
    """Write the default YAML configuration template."""
    manager = ConfigManager(Path(args.config))
    try:
        path = manager.write_default(force=args.force)
    except FileExistsError as e:
        console.print(f"[red]{e}[/red] (use --force to overwrite)")
        sys.exit(1)
    console.print(f"[green]✓ Wrote {path}[/green]")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sol-volume-bot",
        description="Solana multi-wallet volume bot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Trade with 3 workers using wallets from .env
  sol-volume-bot run --threads 3

  # Simulate without sending transactions
  sol-volume-bot run --dry-run

  # Store a wallet key in the encrypted keystore
  sol-volume-bot keystore add --key-file ./.wallets.enc
        """
    )
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    def add_config_args(sub):
        sub.add_argument('--config', default='./bot_config.yaml', help='Path to YAML config')
        sub.add_argument('--env-file', default=None, help='Path to .env file')

    run_parser = subparsers.add_parser('run', help='Run the trading workers')
    add_config_args(run_parser)
    run_parser.add_argument('--dry-run', action='store_true', help='Simulate swaps without sending transactions')
    run_parser.add_argument('--threads', type=int, default=None, help='Number of concurrent workers')

    status_parser = subparsers.add_parser('status', help='Show configuration and wallet pool')
    add_config_args(status_parser)

    keystore_parser = subparsers.add_parser('keystore', help='Manage the encrypted keystore')
    keystore_sub = keystore_parser.add_subparsers(dest='keystore_command')
    add_parser = keystore_sub.add_parser('add', help='Add a wallet key to the keystore')
    add_parser.add_argument('--key-file', default=SecureKeyManager.KEY_FILE, help='Path to encrypted keystore')
    delete_parser = keystore_sub.add_parser('delete', help='Delete the keystore file')
    delete_parser.add_argument('--key-file', default=SecureKeyManager.KEY_FILE, help='Path to encrypted keystore')
    delete_parser.add_argument('--yes', action='store_true', help='Skip the confirmation prompt')

    init_parser = subparsers.add_parser('init-config', help='Write the default config file')
    init_parser.add_argument('--config', default='./bot_config.yaml', help='Path to YAML config')
    init_parser.add_argument('--force', action='store_true', help='Overwrite an existing file')

    return parser


def main(argv: Optional[List[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    commands = {
        'run': run_command,
        'status': status_command,
        'init-config': init_config_command,
    }

    try:
        if args.command == 'keystore' and args.keystore_command == 'add':
            keystore_add_command(args)
        elif args.command == 'keystore' and args.keystore_command == 'delete':
            keystore_delete_command(args)
        elif args.command in commands:
            commands[args.command](args)
        else:
            parser.print_help()
    except StartupConfigurationError as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
