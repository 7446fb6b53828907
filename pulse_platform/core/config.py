#!/usr/bin/env python3
"""
Configuration Management Module

Responsibilities:
- Load environment variables exactly ONCE
- Validate every knob with bounds checks
- Provide structured config access (server / workers / broker)

Rules:
- Worker intervals and timeouts MUST come from env
- No runtime logic permitted
- Create ONCE in main.py and pass everywhere
"""

import os
import logging
from pathlib import Path
from typing import Optional, Dict, Any

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_DEFAULT_DB_PATH = (
    Path(__file__).resolve().parents[1] / "persistence" / "data" / "pulse.db"
)
_DEFAULT_ENV_PATH = Path(__file__).resolve().parents[2] / "config_env" / "pulse.env"

BROKER_MODES = ("paper", "http")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


class Config:
    """
    Central configuration object.

    An explicit ``env_path`` must exist. The default env file is optional:
    when it is absent the process environment alone is used.
    """

    def __init__(self, env_path: Optional[Path] = None):
        self._explicit_env = env_path is not None
        self.env_path: Path = Path(env_path) if env_path else _DEFAULT_ENV_PATH
        self._load_env()
        self._load_values()
        self._validate()

    # ------------------------------------------------------------------
    # ENV LOADING
    # ------------------------------------------------------------------

    def _load_env(self) -> None:
        if not self.env_path.exists():
            if self._explicit_env:
                raise FileNotFoundError(f".env file not found: {self.env_path}")
            logger.info("No env file found, using process environment only")
            return

        if os.name != 'nt':
            mode = self.env_path.stat().st_mode
            if mode & 0o004:
                logger.warning(
                    "⚠️ SECURITY: Environment file is world-readable. "
                    "Run: chmod 600 %s", self.env_path
                )

        load_dotenv(self.env_path)
        logger.info("Environment configuration loaded successfully")

    # ------------------------------------------------------------------
    # VALUE LOADING
    # ------------------------------------------------------------------

    def _load_values(self) -> None:
        # === Storage ===
        self.db_path: Path = Path(
            self._strip_comment(os.getenv("PULSE_DB_PATH", str(_DEFAULT_DB_PATH)))
        )

        # === Server ===
        self.host: str = self._strip_comment(os.getenv("HOST", "0.0.0.0"))
        self.port: int = self._parse_port(os.getenv("PORT", "5000"))
        self.threads: int = self._parse_int(os.getenv("THREADS", "4"), "THREADS", 1, 32)

        # === Logging ===
        self.log_dir: str = self._strip_comment(os.getenv("LOG_DIR", "logs"))
        self.log_level: str = self._strip_comment(os.getenv("LOG_LEVEL", "INFO")).upper()

        # === Splitter ===
        self.splitter_poll_interval: float = self._parse_float(
            os.getenv("SPLITTER_POLL_INTERVAL", "1.0"), "SPLITTER_POLL_INTERVAL", 0.05, 60
        )

        # === Slice executor ===
        self.executor_poll_interval: float = self._parse_float(
            os.getenv("EXECUTOR_POLL_INTERVAL", "0.5"), "EXECUTOR_POLL_INTERVAL", 0.05, 60
        )
        self.executor_batch_size: int = self._parse_int(
            os.getenv("EXECUTOR_BATCH_SIZE", "50"), "EXECUTOR_BATCH_SIZE", 1, 1000
        )

        # === Timeout monitor ===
        self.monitor_interval: float = self._parse_float(
            os.getenv("MONITOR_INTERVAL", "30"), "MONITOR_INTERVAL", 1, 3600
        )
        self.split_timeout_seconds: int = self._parse_int(
            os.getenv("SPLIT_TIMEOUT_SECONDS", "300"), "SPLIT_TIMEOUT_SECONDS", 10, 86400
        )
        self.execution_timeout_seconds: int = self._parse_int(
            os.getenv("EXECUTION_TIMEOUT_SECONDS", "120"), "EXECUTION_TIMEOUT_SECONDS", 10, 86400
        )

        # === Broker ===
        self.broker_mode: str = self._strip_comment(os.getenv("BROKER_MODE", "paper")).lower()
        self.broker_url: Optional[str] = self._strip_comment(os.getenv("BROKER_URL", "")) or None
        self.broker_timeout: float = self._parse_float(
            os.getenv("BROKER_TIMEOUT", "10"), "BROKER_TIMEOUT", 0.1, 120
        )

    # ------------------------------------------------------------------
    # PARSING HELPERS
    # ------------------------------------------------------------------

    def _parse_port(self, value: str) -> int:
        """Parse and validate port number, stripping comments."""
        try:
            port = int(self._strip_comment(value))
            if not (1024 <= port <= 65535):
                raise ValueError(f"Port must be between 1024-65535, got: {port}")
            return port
        except ValueError as e:
            raise ConfigValidationError(f"Invalid PORT value '{value}': {e}")

    def _strip_comment(self, value: str) -> str:
        """Strip comments from config values (everything after #)."""
        if '#' in value:
            return value.split('#')[0].strip()
        return value.strip()

    def _parse_float(
        self,
        value: str,
        name: str,
        min_val: Optional[float] = None,
        max_val: Optional[float] = None
    ) -> float:
        """Parse and validate float with optional bounds, stripping comments."""
        try:
            num = float(self._strip_comment(value))
            if min_val is not None and num < min_val:
                raise ValueError(f"{name} must be >= {min_val}, got: {num}")
            if max_val is not None and num > max_val:
                raise ValueError(f"{name} must be <= {max_val}, got: {num}")
            return num
        except ValueError as e:
            raise ConfigValidationError(f"Invalid {name} value '{value}': {e}")

    def _parse_int(
        self,
        value: str,
        name: str,
        min_val: Optional[int] = None,
        max_val: Optional[int] = None
    ) -> int:
        """Parse and validate integer with optional bounds, stripping comments."""
        try:
            num = int(self._strip_comment(value))
            if min_val is not None and num < min_val:
                raise ValueError(f"{name} must be >= {min_val}, got: {num}")
            if max_val is not None and num > max_val:
                raise ValueError(f"{name} must be <= {max_val}, got: {num}")
            return num
        except ValueError as e:
            raise ConfigValidationError(f"Invalid {name} value '{value}': {e}")

    # ------------------------------------------------------------------
    # VALIDATION
    # ------------------------------------------------------------------

    def _validate(self) -> None:
        if self.log_level not in LOG_LEVELS:
            raise ConfigValidationError(
                f"LOG_LEVEL must be one of {LOG_LEVELS}, got: {self.log_level}"
            )

        if self.broker_mode not in BROKER_MODES:
            raise ConfigValidationError(
                f"BROKER_MODE must be one of {BROKER_MODES}, got: {self.broker_mode}"
            )

        if self.broker_mode == "http" and not self.broker_url:
            raise ConfigValidationError("BROKER_URL is required when BROKER_MODE=http")

        # A split that outlives its timeout would be reset while still running
        if self.split_timeout_seconds <= self.splitter_poll_interval:
            raise ConfigValidationError(
                "SPLIT_TIMEOUT_SECONDS must exceed SPLITTER_POLL_INTERVAL"
            )

        if self.execution_timeout_seconds < self.broker_timeout:
            logger.warning(
                "⚠️ EXECUTION_TIMEOUT_SECONDS (%s) is shorter than BROKER_TIMEOUT (%s); "
                "slow broker calls may be failed by the timeout monitor",
                self.execution_timeout_seconds,
                self.broker_timeout,
            )

    # ------------------------------------------------------------------
    # ACCESSORS
    # ------------------------------------------------------------------

    def get_server_config(self) -> Dict[str, Any]:
        """Get server configuration (safe to log)."""
        return {
            "host": self.host,
            "port": self.port,
            "threads": self.threads,
        }

    def get_worker_config(self) -> Dict[str, Any]:
        return {
            "splitter_poll_interval": self.splitter_poll_interval,
            "executor_poll_interval": self.executor_poll_interval,
            "executor_batch_size": self.executor_batch_size,
            "monitor_interval": self.monitor_interval,
            "split_timeout_seconds": self.split_timeout_seconds,
            "execution_timeout_seconds": self.execution_timeout_seconds,
        }

    def get_broker_config(self) -> Dict[str, Any]:
        return {
            "mode": self.broker_mode,
            "url": self.broker_url,
            "timeout": self.broker_timeout,
        }

    def get_config_summary(self) -> Dict[str, Any]:
        """Get configuration summary for diagnostics."""
        return {
            "db_path": str(self.db_path),
            "server": self.get_server_config(),
            "workers": self.get_worker_config(),
            "broker": {
                "mode": self.broker_mode,
                "url_set": bool(self.broker_url),
                "timeout": self.broker_timeout,
            },
        }
