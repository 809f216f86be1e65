"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from pongbot.core.errors import ConfigurationError
from pongbot.core.json_utils import dumps

DEFAULT_CONTRACT_ADDRESS = "0xa7f42ff7433cb268dd7d59be62b00c30ded28d3d"
DEFAULT_START_BLOCK = 7979028
INFURA_SEPOLIA_URL = "https://sepolia.infura.io/v3/{key}"


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from exc


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    private_key: str | None
    contract_address: str
    start_block: int
    base_effort: int
    primary_multiplier: int
    escalated_multiplier: int
    drain_interval: float
    reconcile_interval: float
    reconcile_max_range: int
    action_timeout: float
    receipt_timeout: float
    poll_interval: float
    live_channel_size: int
    http_timeout: float
    state_file: str
    log_file: str | None
    log_level: str
    metrics_port: int

    def dump(self) -> dict:
        """Return a dict of settings for logging, secrets masked."""
        data = self.__dict__.copy()
        data["private_key"] = "***" if self.private_key else None
        if "/v3/" in self.rpc_url:
            data["rpc_url"] = self.rpc_url.split("/v3/")[0] + "/v3/***"
        return data

    @staticmethod
    def _rpc_url() -> str:
        url = os.getenv("PONG_RPC_URL")
        if url:
            return url
        key = os.getenv("INFURA_API_KEY")
        if not key:
            raise ConfigurationError("INFURA_API_KEY is required (or set PONG_RPC_URL)")
        return INFURA_SEPOLIA_URL.format(key=key)

    @classmethod
    def load(cls, dotenv: bool = True, logger: Optional[logging.Logger] = None) -> "Settings":
        log = logger or logging.getLogger("pongbot")
        if dotenv:
            load_dotenv()

        cfg = cls(
            rpc_url=cls._rpc_url(),
            private_key=os.getenv("PRIVATE_KEY"),
            contract_address=os.getenv("PONG_CONTRACT_ADDRESS", DEFAULT_CONTRACT_ADDRESS),
            start_block=_int_env("PONG_START_BLOCK", DEFAULT_START_BLOCK),
            base_effort=_int_env("PONG_BASE_GAS_LIMIT", 50000),
            primary_multiplier=_int_env("PONG_PRIMARY_MULTIPLIER", 1),
            escalated_multiplier=_int_env("PONG_ESCALATED_MULTIPLIER", 2),
            drain_interval=_float_env("PONG_DRAIN_INTERVAL_SEC", 5.0),
            reconcile_interval=_float_env("PONG_RECONCILE_INTERVAL_SEC", 60.0),
            reconcile_max_range=_int_env("PONG_RECONCILE_MAX_RANGE", 0),
            action_timeout=_float_env("PONG_ACTION_TIMEOUT_SEC", 0.0),
            receipt_timeout=_float_env("PONG_RECEIPT_TIMEOUT_SEC", 300.0),
            poll_interval=_float_env("PONG_POLL_INTERVAL_SEC", 4.0),
            live_channel_size=_int_env("PONG_LIVE_CHANNEL_SIZE", 1000),
            http_timeout=_float_env("PONG_HTTP_TIMEOUT", 10.0),
            state_file=os.getenv("PONG_STATE_FILE", "state/lastBlock.json"),
            log_file=os.getenv("PONG_LOG_FILE", "pongbot.log") or None,
            log_level=os.getenv("PONG_LOG_LEVEL", "INFO").upper(),
            metrics_port=_int_env("PONG_METRICS_PORT", 0),
        )
        cfg._validate(log)
        _sanity_check(cfg, log)
        return cfg

    def resolve_signer(self):
        from eth_account import Account

        if not self.private_key:
            raise ConfigurationError("Missing credentials: set PRIVATE_KEY")
        try:
            return Account.from_key(self.private_key)
        except Exception as exc:
            raise ConfigurationError(f"PRIVATE_KEY is not a valid key: {exc}") from exc

    def _validate(self, log: logging.Logger) -> None:
        if not self.private_key:
            raise ConfigurationError("PRIVATE_KEY is required")
        if not (self.contract_address.startswith("0x") and len(self.contract_address) == 42):
            raise ConfigurationError(f"PONG_CONTRACT_ADDRESS is not an address: {self.contract_address}")
        if self.start_block < 0:
            raise ConfigurationError("PONG_START_BLOCK must be >= 0")
        if self.base_effort <= 0:
            raise ConfigurationError("PONG_BASE_GAS_LIMIT must be > 0")
        if self.primary_multiplier <= 0:
            raise ConfigurationError("PONG_PRIMARY_MULTIPLIER must be > 0")
        if self.escalated_multiplier <= self.primary_multiplier:
            raise ConfigurationError("PONG_ESCALATED_MULTIPLIER must be > PONG_PRIMARY_MULTIPLIER")
        if self.drain_interval <= 0 or self.reconcile_interval <= 0 or self.poll_interval <= 0:
            raise ConfigurationError("Tick intervals must be > 0")
        if self.reconcile_max_range < 0:
            raise ConfigurationError("PONG_RECONCILE_MAX_RANGE must be >= 0")
        if self.action_timeout < 0:
            raise ConfigurationError("PONG_ACTION_TIMEOUT_SEC must be >= 0 (0 disables)")
        if self.receipt_timeout <= 0:
            raise ConfigurationError("PONG_RECEIPT_TIMEOUT_SEC must be > 0")
        if self.live_channel_size <= 0:
            raise ConfigurationError("PONG_LIVE_CHANNEL_SIZE must be > 0")
        if self.log_level not in logging.getLevelNamesMapping():
            raise ConfigurationError(f"PONG_LOG_LEVEL is not a logging level: {self.log_level}")

        if self.action_timeout > 0:
            log.warning(
                "WARNING: PONG_ACTION_TIMEOUT_SEC is set. A pong that confirms after the "
                "timeout is escalated anyway and may be answered twice."
            )


def _sanity_check(cfg: Settings, log: logging.Logger) -> None:
    """
    Log every setting once at startup so overrides are obvious. Secrets are
    masked by Settings.dump().
    """
    log.info(dumps({"event": "config_loaded", **cfg.dump()}))
