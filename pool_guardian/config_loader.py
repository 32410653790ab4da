"""
Configuration loading and normalization for the pool guardian.

Loads YAML, applies operator overrides from the environment, validates the
result against the Pydantic schema and returns read-only runtime objects with
token amounts already converted to base units.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import pydantic
import yaml

from .config_schema import GuardianConfig, validate_guardian_config
from .constants import METRICS_CONSTANTS
from .exceptions import ConfigurationError, ValidationError
from .fixed_point import to_base_units


@dataclass(frozen=True)
class DetectorConfig:
    """Normalized detection and compensation configuration."""

    min_price_move: Decimal = Decimal("0.02")
    lookback_window: int = 1
    refund_bps: int = 3000
    max_per_event: int = 10**17  # 0.1 token at 18 decimals


@dataclass(frozen=True)
class RiskPolicyConfig:
    """Normalized risk policy configuration."""

    imbalance_threshold: float = 0.10
    severe_threshold: float = 0.25
    target_residual_deviation: float = 0.09
    mev_volatility_threshold: float = 0.15
    removal_step: float = 0.05
    cooldown_seconds: float = 300.0
    min_trade_amount: int = 10**16  # 0.01 token at 18 decimals
    price_history_size: int = 20


@dataclass(frozen=True)
class AgentConfig:
    """Normalized polling agent configuration."""

    pool_id: str = "default"
    token_a_symbol: str = "TKA"
    token_b_symbol: str = "TKB"
    token_decimals: int = 18
    poll_interval_seconds: float = 5.0
    dry_run: bool = True
    state_file: Optional[str] = None
    ledger_dir: Optional[str] = None


@dataclass(frozen=True)
class ObservabilityConfig:
    """Normalized observability configuration."""

    metrics_enabled: bool = False
    metrics_port: int = METRICS_CONSTANTS["DEFAULT_PORT"]
    metrics_path: str = METRICS_CONSTANTS["DEFAULT_PATH"]
    log_level: str = "INFO"


@dataclass(frozen=True)
class GuardianRuntimeConfig:
    """Immutable runtime configuration object."""

    name: str = "pool-guardian"
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    risk: RiskPolicyConfig = field(default_factory=RiskPolicyConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)


# Operator option name -> (section, key) in the YAML document
ENV_OVERRIDES = {
    "IMBALANCE_THRESHOLD": ("risk", "imbalance_threshold"),
    "SEVERE_THRESHOLD": ("risk", "severe_threshold"),
    "TARGET_RESIDUAL_DEVIATION": ("risk", "target_residual_deviation"),
    "MEV_VOLATILITY_THRESHOLD": ("risk", "mev_volatility_threshold"),
    "REMOVAL_STEP": ("risk", "removal_step"),
    "COOLDOWN_DURATION": ("risk", "cooldown_seconds"),
    "MIN_TRADE_AMOUNT": ("risk", "min_trade_amount"),
    "PRICE_HISTORY_SIZE": ("risk", "price_history_size"),
    "REFUND_BPS": ("detection", "refund_bps"),
    "MAX_PER_EVENT": ("detection", "max_per_event"),
    "MIN_PRICE_MOVE": ("detection", "min_price_move"),
    "LOOKBACK_WINDOW": ("detection", "lookback_window"),
    "POLL_INTERVAL_SECONDS": ("agent", "poll_interval_seconds"),
}


def load_yaml_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Load and parse YAML configuration file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")
    except OSError as e:
        raise ConfigurationError(f"Failed to load config {config_path}: {e}")

    if config_dict is None:
        raise ConfigurationError(f"Empty configuration file: {config_path}")
    if not isinstance(config_dict, dict):
        raise ConfigurationError(
            f"Configuration root must be a mapping: {config_path}"
        )

    return config_dict


def apply_env_overrides(
    config_dict: Dict[str, Any],
    environ: Optional[Mapping[str, str]] = None,
    prefix: str = "",
) -> Dict[str, Any]:
    """
    Overlay operator options from the environment onto a config dict.

    Values stay strings; the schema does the type conversion. Returns a new
    dict, the input is not modified.
    """
    environ = os.environ if environ is None else environ
    result = {k: (dict(v) if isinstance(v, dict) else v) for k, v in config_dict.items()}

    for option, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(f"{prefix}{option}")
        if value is None or value == "":
            continue
        result.setdefault(section, {})
        result[section][key] = value

    return result


def _normalize(config: GuardianConfig) -> GuardianRuntimeConfig:
    decimals = config.pool.token_decimals

    detector = DetectorConfig(
        min_price_move=config.detection.min_price_move,
        lookback_window=config.detection.lookback_window,
        refund_bps=config.detection.refund_bps,
        max_per_event=to_base_units(config.detection.max_per_event, decimals),
    )
    risk = RiskPolicyConfig(
        imbalance_threshold=config.risk.imbalance_threshold,
        severe_threshold=config.risk.severe_threshold,
        target_residual_deviation=config.risk.target_residual_deviation,
        mev_volatility_threshold=config.risk.mev_volatility_threshold,
        removal_step=config.risk.removal_step,
        cooldown_seconds=config.risk.cooldown_seconds,
        min_trade_amount=to_base_units(config.risk.min_trade_amount, decimals),
        price_history_size=config.risk.price_history_size,
    )
    agent = AgentConfig(
        pool_id=config.pool.pool_id,
        token_a_symbol=config.pool.token_a_symbol,
        token_b_symbol=config.pool.token_b_symbol,
        token_decimals=decimals,
        poll_interval_seconds=config.agent.poll_interval_seconds,
        dry_run=config.agent.dry_run,
        state_file=config.agent.state_file,
        ledger_dir=config.agent.ledger_dir,
    )
    observability = ObservabilityConfig(
        metrics_enabled=config.observability.metrics.enabled,
        metrics_port=config.observability.metrics.port,
        metrics_path=config.observability.metrics.path,
        log_level=config.observability.logging.level,
    )

    return GuardianRuntimeConfig(
        name=config.name,
        detector=detector,
        risk=risk,
        agent=agent,
        observability=observability,
    )


def build_runtime_config(config_dict: Dict[str, Any]) -> GuardianRuntimeConfig:
    """Validate a raw config dict and normalize it."""
    try:
        validated = validate_guardian_config(config_dict)
    except pydantic.ValidationError as e:
        raise ValidationError(
            f"Configuration validation failed: {e}",
            details={"errors": e.errors(include_url=False)},
        )
    return _normalize(validated)


def load_guardian_config(
    config_path: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
    env_prefix: str = "",
) -> GuardianRuntimeConfig:
    """
    Load guardian configuration from YAML (optional) plus environment overrides.

    Args:
        config_path: YAML file; defaults are used when omitted
        environ: Environment mapping, os.environ when omitted
        env_prefix: Prefix for override variables (e.g. "GUARDIAN_")

    Raises:
        ConfigurationError: File missing, empty or not valid YAML
        ValidationError: Values violate the schema
    """
    config_dict = load_yaml_config(config_path) if config_path else {}
    config_dict = apply_env_overrides(config_dict, environ, env_prefix)
    return build_runtime_config(config_dict)


def get_default_config() -> GuardianRuntimeConfig:
    """Runtime configuration with every default applied."""
    return build_runtime_config({})
