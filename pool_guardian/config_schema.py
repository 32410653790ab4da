"""
Configuration schema validation using Pydantic
"""

from decimal import Decimal
from pathlib import Path
from typing import Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from .constants import DEFAULT_CONFIG, METRICS_CONSTANTS


class PoolConfig(BaseModel):
    """Pool identity and token metadata"""

    model_config = {"extra": "forbid"}

    pool_id: str = Field(default="default", min_length=1, description="Pool identifier")
    token_a_symbol: str = Field(default="TKA", min_length=1)
    token_b_symbol: str = Field(default="TKB", min_length=1)
    token_decimals: int = Field(
        default=DEFAULT_CONFIG["TOKEN_DECIMALS"], ge=0, le=36
    )


class DetectionConfig(BaseModel):
    """Sandwich detection and compensation configuration"""

    model_config = {"extra": "forbid"}

    min_price_move: Decimal = Field(
        default=Decimal(DEFAULT_CONFIG["MIN_PRICE_MOVE"]),
        ge=0,
        description="Price moves below this are treated as drift, not manipulation",
    )
    lookback_window: int = Field(
        default=DEFAULT_CONFIG["LOOKBACK_WINDOW"],
        ge=1,
        le=1000,
        description="Trades searched before/after each victim candidate",
    )
    refund_bps: int = Field(
        default=DEFAULT_CONFIG["REFUND_BPS"],
        ge=0,
        le=10000,
        description="Insurance-rate cap in basis points of the loss",
    )
    max_per_event: Decimal = Field(
        default=Decimal(DEFAULT_CONFIG["MAX_PER_EVENT"]),
        ge=0,
        description="Absolute compensation ceiling per sandwich, in tokens",
    )


class RiskPolicySchema(BaseModel):
    """Risk policy thresholds (ratios as fractions, e.g. 0.10 for 10%)"""

    model_config = {"extra": "forbid"}

    imbalance_threshold: float = Field(
        default=DEFAULT_CONFIG["IMBALANCE_THRESHOLD"], gt=0, lt=0.5
    )
    severe_threshold: float = Field(
        default=DEFAULT_CONFIG["SEVERE_THRESHOLD"], gt=0, le=0.5
    )
    target_residual_deviation: float = Field(
        default=DEFAULT_CONFIG["TARGET_RESIDUAL_DEVIATION"], ge=0, lt=0.5
    )
    mev_volatility_threshold: float = Field(
        default=DEFAULT_CONFIG["MEV_VOLATILITY_THRESHOLD"], ge=0
    )
    removal_step: float = Field(
        default=DEFAULT_CONFIG["REMOVAL_STEP"], gt=0, lt=0.5
    )
    cooldown_seconds: float = Field(
        default=DEFAULT_CONFIG["COOLDOWN_DURATION"], ge=0, le=86400
    )
    min_trade_amount: Decimal = Field(
        default=Decimal(DEFAULT_CONFIG["MIN_TRADE_AMOUNT"]), ge=0
    )
    price_history_size: int = Field(
        default=DEFAULT_CONFIG["PRICE_HISTORY_SIZE"], ge=2, le=10000
    )

    @model_validator(mode="after")
    def validate_threshold_order(self):
        if self.imbalance_threshold >= self.severe_threshold:
            raise ValueError("imbalance_threshold must be less than severe_threshold")
        if self.target_residual_deviation >= self.severe_threshold:
            raise ValueError(
                "target_residual_deviation must be less than severe_threshold"
            )
        return self


class AgentSchema(BaseModel):
    """Polling agent configuration"""

    model_config = {"extra": "forbid"}

    poll_interval_seconds: float = Field(
        default=DEFAULT_CONFIG["POLL_INTERVAL_SECONDS"], gt=0, le=3600
    )
    dry_run: bool = True
    state_file: Optional[str] = None
    ledger_dir: Optional[str] = None


class MetricsConfig(BaseModel):
    """Metrics server configuration"""

    model_config = {"extra": "forbid"}

    enabled: bool = False
    port: int = Field(
        default=METRICS_CONSTANTS["DEFAULT_PORT"],
        ge=1024,
        le=65535,
        description="Metrics server port",
    )
    path: str = Field(
        default=METRICS_CONSTANTS["DEFAULT_PATH"],
        pattern=r"^/[a-zA-Z0-9_/-]*$",
        description="Metrics endpoint path",
    )


class LoggingConfig(BaseModel):
    """Logging configuration"""

    model_config = {"extra": "forbid"}

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


class ObservabilitySchema(BaseModel):
    """Observability configuration"""

    model_config = {"extra": "forbid"}

    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class GuardianConfig(BaseModel):
    """Complete guardian configuration schema"""

    name: str = Field(default="pool-guardian", min_length=1, max_length=100)
    pool: PoolConfig = Field(default_factory=PoolConfig)
    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    risk: RiskPolicySchema = Field(default_factory=RiskPolicySchema)
    agent: AgentSchema = Field(default_factory=AgentSchema)
    observability: ObservabilitySchema = Field(default_factory=ObservabilitySchema)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("Guardian name cannot be empty")
        return v.strip()

    model_config = {
        "extra": "forbid",  # Disallow extra fields
        "validate_assignment": True,
    }


def validate_guardian_config(config_dict: Dict) -> GuardianConfig:
    """
    Validate a guardian configuration dictionary

    Args:
        config_dict: Dictionary representation of guardian config

    Returns:
        Validated GuardianConfig object

    Raises:
        pydantic.ValidationError: If configuration is invalid
    """
    return GuardianConfig(**config_dict)


def validate_config_file(config_path: Union[str, Path]) -> GuardianConfig:
    """
    Validate a guardian configuration file

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated GuardianConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        pydantic.ValidationError: If configuration is invalid
        yaml.YAMLError: If YAML parsing fails
    """
    import yaml

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        config_dict = yaml.safe_load(f)

    if config_dict is None:
        raise ValueError("Configuration file is empty or invalid")

    return validate_guardian_config(config_dict)
