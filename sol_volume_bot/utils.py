"""
Utility Module

Error taxonomy, logging setup and formatting helpers shared by every
part of the bot.

- Swap failures carry a structured FailureKind when the source knows it
- SecureLogger redacts private keys and passwords before anything is written
- setup_logging() wires a Rich console handler and an append-only log file
"""

import os
import re
import logging
import threading
from enum import Enum
from typing import Optional, Set

from rich.logging import RichHandler
from rich.console import Console


# Global console for Rich output
console = Console()

ROOT_LOGGER_NAME = "sol_volume_bot"


class FailureKind(Enum):
    """Classification of a failed swap attempt."""
    RATE_LIMITED = "rate_limited"
    EXPIRED = "expired"
    OTHER = "other"


class VolumeBotError(Exception):
    """Base exception for the volume bot."""
    pass


class StartupConfigurationError(VolumeBotError):
    """Fatal configuration problem detected before trading starts."""
    pass


class NoAvailableWalletError(VolumeBotError):
    """No unleased wallet became available in time."""
    pass


class SwapError(VolumeBotError):
    """A swap could not be built, sent or confirmed."""

    kind: Optional[FailureKind] = None

    def __init__(self, message: str, kind: Optional[FailureKind] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class RateLimitedError(SwapError):
    """Upstream throttled the request (HTTP 429)."""
    kind = FailureKind.RATE_LIMITED


class TransactionExpiredError(SwapError):
    """Transaction validity window elapsed before confirmation."""
    kind = FailureKind.EXPIRED


class SecureLogger:
    """
    Logger that sanitizes sensitive data from log messages.

    Wallet private keys are base58 strings of the same shape as transaction
    signatures, so they cannot be matched by pattern. Loaders register every
    secret they handle with register_secret() and it is replaced verbatim.
    """

    # Patterns to redact from logs
    SENSITIVE_PATTERNS = [
        (r'password["\']?\s*[:=]\s*["\']?[^"\'\s]+["\']?', 'password=[REDACTED]'),
        (r'api[_-]?key["\']?\s*[:=]\s*["\']?[^"\'\s]+["\']?', 'api_key=[REDACTED]'),
        (r'private[_-]?key["\']?\s*[:=]\s*["\']?[^"\'\s]+["\']?', 'private_key=[REDACTED]'),
    ]

    _secrets: Set[str] = set()
    _secrets_lock = threading.Lock()

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @classmethod
    def register_secret(cls, secret: Optional[str]):
        """Redact this exact value from every message logged from now on."""
        if not secret:
            return
        with cls._secrets_lock:
            cls._secrets.add(secret)

    @classmethod
    def clear_secrets(cls):
        with cls._secrets_lock:
            cls._secrets.clear()

    def _sanitize(self, msg) -> str:
        """Remove sensitive data from log message."""
        if not isinstance(msg, str):
            msg = str(msg)

        sanitized = msg
        with self._secrets_lock:
            secrets = sorted(self._secrets, key=len, reverse=True)
        for secret in secrets:
            sanitized = sanitized.replace(secret, "[SECRET_REDACTED]")
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)
        return sanitized

    @property
    def name(self) -> str:
        return self._logger.name

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


def get_logger(name: str = ROOT_LOGGER_NAME) -> SecureLogger:
    """Return a redacting wrapper around the named standard logger."""
    return SecureLogger(logging.getLogger(name))


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = "./volume-bot.log") -> SecureLogger:
    """
    Setup logging with both console and append-only file output.

    Every module logs through a child of the package logger, so the handlers
    installed here see all of them.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper()))

    # Remove existing handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # Rich console handler
    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True
    )
    rich_handler.setLevel(getattr(logging, log_level.upper()))
    rich_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(rich_handler)

    # File handler for persistent logging
    if log_file:
        log_path = os.path.abspath(log_file)
        os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)

        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    return SecureLogger(logger)


# Formatting utilities

def format_amount(amount: float) -> str:
    """Render a sampled trade size the way it is logged: no trailing zeros."""
    text = f"{amount:.9f}".rstrip("0").rstrip(".")
    return text or "0"


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        minutes = seconds // 60
        secs = seconds % 60
        return f"{minutes}m {secs}s" if secs > 0 else f"{minutes}m"
    else:
        hours = seconds // 3600
        minutes = (seconds % 3600) // 60
        return f"{hours}h {minutes}m" if minutes > 0 else f"{hours}h"


def format_address(address: str, length: int = 4) -> str:
    """Format Solana address with ellipsis."""
    if len(address) <= length * 2 + 3:
        return address
    return f"{address[:length]}...{address[-length:]}"


def parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Parse an environment-style boolean."""
    if value is None or value == "":
        return default
    return str(value).strip().lower() in ("1", "true", "yes", "on")
