"""
Configuration Management Module

Builds the immutable trading configuration from an optional YAML file
overlaid with environment variables (optionally loaded from a .env file).
Environment values always win over the file.
"""

import os
from pathlib import Path
from typing import Dict, Any, Optional, Mapping
from dataclasses import dataclass, asdict

import yaml
from dotenv import find_dotenv, load_dotenv

from .utils import StartupConfigurationError, parse_bool, get_logger
from .sampler import AMOUNT_DECIMALS, amount_grid

logger = get_logger(__name__)


SOL_MINT = "So11111111111111111111111111111111111111112"
DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"
DEFAULT_SWAP_API_URL = "https://swap-v2.solanatracker.io"


@dataclass(frozen=True)
class Config:
    """Bot configuration settings."""

    # Target
    token_address: Optional[str] = None
    base_asset: str = SOL_MINT

    # Network
    rpc_url: str = DEFAULT_RPC_URL
    swap_api_url: str = DEFAULT_SWAP_API_URL
    swap_api_key: Optional[str] = None

    # Trading settings
    min_amount: float = 0.001
    max_amount: float = 0.001
    delay_ms: int = 10000  # between cycles
    sell_delay_ms: int = 5000  # between buy and sell
    slippage: float = 10.0  # percent
    priority_fee: float = 0.0005

    # Priority relay (Jito)
    use_jito: bool = False
    jito_tip: float = 0.0001

    # Workers and retries
    threads: int = 1
    max_retries: int = 3
    retry_delay_ms: int = 10000

    # Operation
    dry_run: bool = False
    log_level: str = "INFO"
    log_file: str = "./volume-bot.log"
    keystore_file: Optional[str] = None

    @property
    def delay_seconds(self) -> float:
        return self.delay_ms / 1000

    @property
    def sell_delay_seconds(self) -> float:
        return self.sell_delay_ms / 1000

    @property
    def retry_delay_seconds(self) -> float:
        return self.retry_delay_ms / 1000

    @property
    def random_amounts(self) -> bool:
        return self.min_amount != self.max_amount

    def validate(self) -> "Config":
        """Raise StartupConfigurationError if the settings cannot run."""
        problems = []
        if not self.token_address:
            problems.append("TOKEN_ADDRESS is not set")
        if self.min_amount <= 0 or self.max_amount <= 0:
            problems.append("trade amounts must be positive")
        if self.min_amount > self.max_amount:
            problems.append(
                f"MIN_AMOUNT ({self.min_amount}) is greater than MAX_AMOUNT ({self.max_amount})"
            )
        elif self.random_amounts:
            low, high = amount_grid(self.min_amount, self.max_amount)
            if low > high:
                problems.append(
                    f"MIN_AMOUNT - MAX_AMOUNT ({self.min_amount} - {self.max_amount}) "
                    f"contains no amount with {AMOUNT_DECIMALS} decimals"
                )
        if self.threads < 1:
            problems.append("THREADS must be at least 1")
        if self.max_retries < 0:
            problems.append("MAX_RETRIES cannot be negative")
        if self.delay_ms < 0 or self.sell_delay_ms < 0 or self.retry_delay_ms < 0:
            problems.append("delays cannot be negative")
        if self.slippage < 0 or self.slippage > 100:
            problems.append("SLIPPAGE must be between 0 and 100")
        if problems:
            raise StartupConfigurationError("Invalid configuration: " + "; ".join(problems))
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (excluding sensitive data)."""
        data = asdict(self)
        if data.get("swap_api_key"):
            data["swap_api_key"] = "***"
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        # Filter only valid fields
        valid_fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**valid_fields)


# Environment variable -> (field, parser)
ENV_FIELDS = {
    "TOKEN_ADDRESS": ("token_address", str),
    "RPC_URL": ("rpc_url", str),
    "SWAP_API_URL": ("swap_api_url", str),
    "SWAP_API_KEY": ("swap_api_key", str),
    "DELAY": ("delay_ms", int),
    "SELL_DELAY": ("sell_delay_ms", int),
    "SLIPPAGE": ("slippage", float),
    "PRIORITY_FEE": ("priority_fee", float),
    "JITO": ("use_jito", parse_bool),
    "JITO_TIP": ("jito_tip", float),
    "THREADS": ("threads", int),
    "MAX_RETRIES": ("max_retries", int),
    "RETRY_DELAY": ("retry_delay_ms", int),
    "DRY_RUN": ("dry_run", parse_bool),
    "LOG_LEVEL": ("log_level", str),
    "LOG_FILE": ("log_file", str),
    "KEYSTORE_FILE": ("keystore_file", str),
}


def _parse(env_name: str, parser, raw: str):
    try:
        return parser(raw.strip())
    except ValueError:
        raise StartupConfigurationError(f"{env_name} has an invalid value: {raw!r}")


def config_from_env(environ: Optional[Mapping[str, str]] = None,
                    base: Optional[Dict[str, Any]] = None) -> Config:
    """
    Build a Config from environment-style variables.

    MIN_AMOUNT and MAX_AMOUNT each fall back to AMOUNT when unset, so a
    single AMOUNT gives fixed-size trades.

    Args:
        environ: Variables to read (default: os.environ)
        base: Values from a config file, overridden by the environment
    """
    environ = os.environ if environ is None else environ
    data: Dict[str, Any] = dict(base or {})

    for env_name, (field_name, parser) in ENV_FIELDS.items():
        raw = environ.get(env_name)
        if raw is not None and raw.strip() != "":
            data[field_name] = _parse(env_name, parser, raw)

    fixed = environ.get("AMOUNT")
    for env_name, field_name in (("MIN_AMOUNT", "min_amount"), ("MAX_AMOUNT", "max_amount")):
        raw = environ.get(env_name) or fixed
        if raw:
            data[field_name] = _parse(env_name, float, raw)

    return Config.from_dict(data)


class ConfigManager:
    """Loads the YAML config file and overlays the environment."""

    def __init__(self, config_path: Optional[Path] = Path("./bot_config.yaml")):
        self.config_path = Path(config_path) if config_path else None

    def read_raw_config(self) -> Dict[str, Any]:
        """Read the YAML file, or an empty dict when there is none."""
        if self.config_path is None or not self.config_path.exists():
            return {}

        with open(self.config_path, 'r') as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise StartupConfigurationError(f"Config file {self.config_path} is not a mapping")

        unknown = sorted(k for k in data if k not in Config.__dataclass_fields__)
        if unknown:
            logger.warning(f"Ignoring unknown config keys in {self.config_path}: {', '.join(unknown)}")
        return data

    def load_config(self, env_file: Optional[str] = None,
                    environ: Optional[Mapping[str, str]] = None,
                    overrides: Optional[Dict[str, Any]] = None) -> Config:
        """
        Load, merge and validate the configuration.

        Args:
            env_file: Optional .env file loaded into the process environment
            environ: Variables to read instead of os.environ (tests)
            overrides: Final values from the command line

        Returns:
            Validated Config
        """
        if environ is None:
            # .env is looked up from the working directory, not this package
            load_dotenv(env_file or find_dotenv(usecwd=True), override=False)

        config = config_from_env(environ, base=self.read_raw_config())
        if overrides:
            merged = asdict(config)
            merged.update({k: v for k, v in overrides.items() if v is not None})
            config = Config.from_dict(merged)

        config.validate()
        logger.info("Configuration loaded successfully")
        return config

    def write_default(self, force: bool = False) -> Path:
        """Write the default YAML template with owner-only permissions."""
        if self.config_path is None:
            raise StartupConfigurationError("No config path given")
        if self.config_path.exists() and not force:
            raise FileExistsError(f"Config file already exists: {self.config_path}")

        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, 'w') as f:
            f.write(DEFAULT_CONFIG + "\n")

        # Set restrictive permissions (owner read/write only)
        os.chmod(self.config_path, 0o600)

        logger.info(f"Configuration saved to {self.config_path}")
        return self.config_path


# Default configuration template
DEFAULT_CONFIG = """
# Solana Volume Bot Configuration
# Environment variables (or a .env file) override every value here.
# Wallet keys never go in this file: use WALLET_<n>_PRIVATE_KEY or the keystore.

token_address: null
rpc_url: https://api.mainnet-beta.solana.com
swap_api_url: https://swap-v2.solanatracker.io

# Trading Parameters (SOL)
min_amount: 0.001
max_amount: 0.001
delay_ms: 10000
sell_delay_ms: 5000
slippage: 10
priority_fee: 0.0005

# Priority relay
use_jito: false
jito_tip: 0.0001

# Workers and retries
threads: 1
max_retries: 3
retry_delay_ms: 10000

# Operation Settings
dry_run: false
log_level: INFO
log_file: ./volume-bot.log
keystore_file: null
""".strip()
