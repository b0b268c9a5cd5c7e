"""Configuration loader: reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from eth_utils import is_address

from .risk import RiskThresholds

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ThresholdsConfig:
    healthy: float = 1.5
    warning: float = 1.2
    liquidation: float = 1.0

    def to_risk_thresholds(self) -> RiskThresholds:
        return RiskThresholds(
            healthy=self.healthy, warning=self.warning, liquidation=self.liquidation
        )


@dataclass(frozen=True)
class SyncConfig:
    position_interval_seconds: float = 10.0
    aggregate_interval_seconds: float = 30.0
    oracle_interval_seconds: float = 30.0
    ticker_interval_seconds: float = 1.0
    thresholds: ThresholdsConfig = field(default_factory=ThresholdsConfig)


@dataclass(frozen=True)
class ChainConfig:
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30
    confirmation_poll_seconds: float = 2.0
    confirmation_timeout_seconds: float | None = None


@dataclass(frozen=True)
class ProtocolConfig:
    lending_protocol: str = ""
    collateral_token: str = ""
    borrow_token: str = ""
    collateral_symbol: str = "WETH"
    borrow_symbol: str = "USDC"
    collateral_decimals: int = 18
    borrow_decimals: int = 6
    # Fallbacks only; the ledger's own constants take precedence.
    liquidation_threshold_pct: int = 80
    liquidation_bonus_pct: int = 10
    annual_rate_bps: int = 1000
    max_price_age_seconds: int = 7 * 24 * 60 * 60


@dataclass(frozen=True)
class WalletConfig:
    address: str = ""


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)


@dataclass(frozen=True)
class AppConfig:
    sync: SyncConfig = field(default_factory=SyncConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)
    protocol: ProtocolConfig = field(default_factory=ProtocolConfig)
    wallet: WalletConfig = field(default_factory=WalletConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_thresholds(raw: dict[str, Any]) -> ThresholdsConfig:
    return ThresholdsConfig(
        healthy=float(raw.get("healthy", 1.5)),
        warning=float(raw.get("warning", 1.2)),
        liquidation=float(raw.get("liquidation", 1.0)),
    )


def _build_sync(raw: dict[str, Any]) -> SyncConfig:
    return SyncConfig(
        position_interval_seconds=float(raw.get("position_interval_seconds", 10)),
        aggregate_interval_seconds=float(raw.get("aggregate_interval_seconds", 30)),
        oracle_interval_seconds=float(raw.get("oracle_interval_seconds", 30)),
        ticker_interval_seconds=float(raw.get("ticker_interval_seconds", 1)),
        thresholds=_build_thresholds(raw.get("thresholds", {})),
    )


def _build_chain(raw: dict[str, Any]) -> ChainConfig:
    timeout = raw.get("confirmation_timeout_seconds")
    return ChainConfig(
        rpc_endpoints=tuple(raw.get("rpc_endpoints", [])),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
        confirmation_poll_seconds=float(raw.get("confirmation_poll_seconds", 2.0)),
        confirmation_timeout_seconds=float(timeout) if timeout else None,
    )


def _build_protocol(raw: dict[str, Any]) -> ProtocolConfig:
    contracts = raw.get("contracts", {})
    constants = raw.get("constants", {})
    defaults = ProtocolConfig()
    return ProtocolConfig(
        lending_protocol=contracts.get("lending_protocol", ""),
        collateral_token=contracts.get("collateral_token", ""),
        borrow_token=contracts.get("borrow_token", ""),
        collateral_symbol=raw.get("collateral_symbol", defaults.collateral_symbol),
        borrow_symbol=raw.get("borrow_symbol", defaults.borrow_symbol),
        collateral_decimals=int(raw.get("collateral_decimals", 18)),
        borrow_decimals=int(raw.get("borrow_decimals", 6)),
        liquidation_threshold_pct=int(
            constants.get("liquidation_threshold_pct", defaults.liquidation_threshold_pct)
        ),
        liquidation_bonus_pct=int(
            constants.get("liquidation_bonus_pct", defaults.liquidation_bonus_pct)
        ),
        annual_rate_bps=int(constants.get("annual_rate_bps", defaults.annual_rate_bps)),
        max_price_age_seconds=int(
            constants.get("max_price_age_seconds", defaults.max_price_age_seconds)
        ),
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram", {})
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=bool(tg.get("enabled", False)),
            alert_bot_token=tg.get("alert_bot_token", ""),
            log_bot_token=tg.get("log_bot_token", ""),
            chat_id=str(tg.get("chat_id", "")),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        sync=_build_sync(raw.get("sync", {})),
        chain=_build_chain(raw.get("chain", {})),
        protocol=_build_protocol(raw.get("protocol", {})),
        wallet=WalletConfig(address=raw.get("wallet", {}).get("address", "")),
        notifications=_build_notifications(raw.get("notifications", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.chain.rpc_endpoints:
        raise ValueError("At least one RPC endpoint must be configured")

    for name in ("lending_protocol", "collateral_token", "borrow_token"):
        address = getattr(cfg.protocol, name)
        if not address:
            raise ValueError(f"Protocol contract '{name}' has no address")
        if not is_address(address):
            raise ValueError(f"Protocol contract '{name}' has malformed address {address!r}")

    if cfg.wallet.address and not is_address(cfg.wallet.address):
        raise ValueError(f"Wallet address {cfg.wallet.address!r} is malformed")

    sync = cfg.sync
    for name in (
        "position_interval_seconds",
        "aggregate_interval_seconds",
        "oracle_interval_seconds",
        "ticker_interval_seconds",
    ):
        if getattr(sync, name) <= 0:
            raise ValueError(f"sync.{name} must be positive")

    t = sync.thresholds
    if not (t.healthy > t.warning >= t.liquidation > 0):
        raise ValueError(
            "Thresholds must satisfy healthy > warning >= liquidation > 0"
        )
