"""Configuration for vault sessions and the web interface."""

from __future__ import annotations

import logging
import os
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .rules import ApprovalRules, RejectionMode

_config_logger = logging.getLogger(__name__)

DEFAULT_NODE_URL = "https://fullnode.testnet.aptoslabs.com/v1"


class LedgerSettings(BaseModel):
    node_url: str = Field(default=DEFAULT_NODE_URL)
    module_address: str = Field(default="", description="Address the vault module is published under")
    module_name: str = Field(default="multisig")
    confirmation_timeout_seconds: float = Field(default=30.0, gt=0)
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    request_timeout_seconds: float = Field(default=10.0, gt=0)


class SchedulerSettings(BaseModel):
    sweep_interval_seconds: float = Field(default=1.0, gt=0, le=5)
    sync_interval_seconds: float = Field(default=30.0, gt=0)


class ApprovalSettings(BaseModel):
    expiry_hours: float = Field(default=24.0, gt=0)
    rejection_mode: Literal["veto", "quorum"] = Field(
        default="veto",
        description="veto: one rejection closes a request; quorum: rejections need the approval threshold",
    )

    def to_rules(self) -> ApprovalRules:
        return ApprovalRules(
            expiry=timedelta(hours=self.expiry_hours),
            rejection_mode=RejectionMode(self.rejection_mode),
        )


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class ServerSettings(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=10000, ge=1, le=65535)
    wallet_private_key: str | None = Field(default=None, repr=False)


class Settings(BaseModel):
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    approval: ApprovalSettings = Field(default_factory=ApprovalSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_choice(key: str, default: str, choices: tuple[str, ...]) -> str:
    value = (os.getenv(key) or "").strip().lower()
    if not value:
        return default
    if value not in choices:
        _config_logger.warning("Invalid value for %s: %r, using default %s", key, value, default)
        return default
    return value


def settings_from_env() -> Settings:
    """Build settings from the current environment (no caching)."""
    ledger = LedgerSettings()
    scheduler = SchedulerSettings()
    approval = ApprovalSettings()
    server = ServerSettings()

    return Settings.model_validate({
        "ledger": {
            "node_url": os.getenv("VAULT_NODE_URL", ledger.node_url),
            "module_address": os.getenv("VAULT_MODULE_ADDRESS", ledger.module_address),
            "module_name": os.getenv("VAULT_MODULE_NAME", ledger.module_name),
            "confirmation_timeout_seconds": _env_float(
                "VAULT_CONFIRMATION_TIMEOUT", ledger.confirmation_timeout_seconds
            ),
            "poll_interval_seconds": _env_float("VAULT_POLL_INTERVAL", ledger.poll_interval_seconds),
            "request_timeout_seconds": _env_float("VAULT_REQUEST_TIMEOUT", ledger.request_timeout_seconds),
        },
        "scheduler": {
            "sweep_interval_seconds": _env_float("VAULT_SWEEP_INTERVAL", scheduler.sweep_interval_seconds),
            "sync_interval_seconds": _env_float("VAULT_SYNC_INTERVAL", scheduler.sync_interval_seconds),
        },
        "approval": {
            "expiry_hours": _env_float("VAULT_REQUEST_EXPIRY_HOURS", approval.expiry_hours),
            "rejection_mode": _env_choice(
                "VAULT_REJECTION_MODE", approval.rejection_mode, ("veto", "quorum")
            ),
        },
        "logging": {
            "level": os.getenv("LOG_LEVEL", LoggingSettings().level),
            "file": os.getenv("LOG_FILE") or None,
        },
        "server": {
            "host": os.getenv("HOST", server.host),
            "port": _env_int("PORT", server.port),
            "wallet_private_key": os.getenv("VAULT_WALLET_PRIVATE_KEY") or None,
        },
    })


def load_settings() -> Settings:
    """Load configuration and cache the result."""
    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=Path.cwd() / ".env")
    return settings_from_env()
