"""
Configuration schema validation using Pydantic
"""

from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

ExecutionMode = Literal["observe", "simulate", "live"]


class PoolConfig(BaseModel):
    """One pool the engine watches"""

    label: str = Field(min_length=1, description="Human-readable pool name")
    venue: str = Field(min_length=1, description="Venue key for the settlement adapter")
    address: str = Field(description="Pool contract address")
    token0: str
    token1: str
    decimals0: int = Field(ge=0, le=36)
    decimals1: int = Field(ge=0, le=36)
    mode: Literal["constant_product", "concentrated", "discrete_bin"]
    fee_bps: Optional[int] = Field(default=None, ge=0, le=9999)
    fee_tier: Optional[int] = Field(default=None, ge=1, le=1_000_000)
    bin_step: Optional[int] = Field(default=None, ge=1, le=10_000)
    base_symbol: str = ""
    quote_symbol: str = ""

    @model_validator(mode="after")
    def validate_mode_params(self):
        if self.mode == "concentrated" and self.fee_tier is None:
            raise ValueError(f"pool '{self.label}': fee_tier required for concentrated mode")
        if self.mode == "discrete_bin" and self.bin_step is None:
            raise ValueError(f"pool '{self.label}': bin_step required for discrete_bin mode")
        return self

    model_config = {"extra": "forbid"}


class NetworkConfig(BaseModel):
    """Chain connection settings"""

    rpc_url: str = Field(description="HTTP(S) RPC endpoint")
    fallback_rpc_urls: List[str] = Field(default_factory=list)
    chain_id: int = Field(ge=1, description="EIP-155 chain id")
    request_timeout_sec: float = Field(default=10.0, gt=0, le=120)

    @field_validator("rpc_url")
    @classmethod
    def validate_rpc_url(cls, v):
        if not v.startswith(("http://", "https://")):
            raise ValueError("rpc_url must be an http(s) URL")
        return v


class MonitorConfig(BaseModel):
    """Price monitor polling and delta detection"""

    poll_interval_sec: float = Field(default=12.0, gt=0, le=3600)
    delta_threshold_pct: Decimal = Field(default=Decimal("0.3"), ge=0, le=100)
    max_pool_errors: int = Field(default=3, ge=1, le=100)
    max_batch_retries: int = Field(default=3, ge=1, le=10)
    backoff_base_sec: float = Field(default=1.0, ge=0, le=60)
    max_snapshot_age_cycles: int = Field(default=2, ge=0, le=100)
    stale_bin_cycles: int = Field(default=5, ge=1, le=1000)


class FlashProviderConfig(BaseModel):
    """Flash-loan source the settlement contract can borrow from"""

    name: Literal["aave_v3", "balancer"]
    address: str
    fee_bps: Decimal = Field(ge=0, le=100, description="Borrow fee in basis points")
    enabled: bool = True


class EvaluatorConfig(BaseModel):
    """Opportunity sizing and cost model"""

    min_input: Decimal = Field(gt=0, description="Smallest trade size (base units)")
    max_input: Decimal = Field(gt=0, description="Largest trade size (base units)")
    search_iterations: int = Field(default=5, ge=1, le=64)
    max_depth_fraction: Decimal = Field(default=Decimal("0.30"), gt=0, le=1)
    min_profit: Decimal = Field(default=Decimal("0"), ge=0, description="Floor, quote units")
    execution_cost: Optional[Decimal] = Field(
        default=None, ge=0, description="Static execution cost, quote units"
    )
    safety_margin: Decimal = Field(default=Decimal("0"), ge=0)
    safety_margin_pct: Decimal = Field(default=Decimal("0"), ge=0, le=10)
    leg_slippage_tolerance: Decimal = Field(default=Decimal("0.005"), ge=0, lt=1)
    max_input_by_venue: Dict[str, Decimal] = Field(default_factory=dict)
    venue_threshold_multipliers: Dict[str, Decimal] = Field(default_factory=dict)
    native_price_quote: Optional[Decimal] = Field(
        default=None, gt=0, description="Quote units per native gas token"
    )
    native_token: Optional[str] = None
    base_gas: int = Field(default=21_000, ge=0)
    gas_per_swap: int = Field(default=150_000, ge=0)
    gas_limit_buffer: Decimal = Field(default=Decimal("1.2"), ge=1, le=5)
    gas_price_gwei: Decimal = Field(default=Decimal("0.1"), ge=0)

    @model_validator(mode="after")
    def validate_input_range(self):
        if self.max_input < self.min_input:
            raise ValueError("max_input must be >= min_input")
        return self

    @field_validator("venue_threshold_multipliers")
    @classmethod
    def validate_multipliers(cls, v):
        for venue, multiplier in v.items():
            if multiplier < 1:
                raise ValueError(f"threshold multiplier for {venue} must be >= 1")
        return v


class ExecutionConfig(BaseModel):
    """Settlement submission settings"""

    mode: ExecutionMode = Field(default="observe", description="observe | simulate | live")
    executor_address: Optional[str] = None
    adapters: Dict[str, str] = Field(default_factory=dict)
    flash_providers: List[FlashProviderConfig] = Field(default_factory=list)
    max_gas_price_gwei: Decimal = Field(default=Decimal("1.0"), gt=0)
    priority_fee_gwei: Decimal = Field(default=Decimal("0.01"), ge=0)
    confirmation_timeout_sec: float = Field(default=120.0, gt=0, le=3600)
    receipt_poll_sec: float = Field(default=1.0, gt=0, le=60)
    speed_up_after_sec: float = Field(default=30.0, gt=0)
    max_replacements: int = Field(default=1, ge=0, le=5)
    replacement_multiplier: Decimal = Field(default=Decimal("1.125"), ge=Decimal("1.1"), le=3)
    cancel_on_timeout: bool = False
    broadcast_retries: int = Field(default=3, ge=1, le=10)
    freshness_budget_cycles: int = Field(default=1, ge=0, le=100)
    gas_estimator: Literal["static", "arbitrum"] = "static"
    private_rpc_url: Optional[str] = Field(
        default=None, description="Broadcast-only endpoint (private mempool / MEV protection)"
    )

    @field_validator("private_rpc_url")
    @classmethod
    def validate_private_rpc_url(cls, v):
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError("private_rpc_url must be an http(s) URL")
        return v

    @model_validator(mode="after")
    def validate_mode_requirements(self):
        if self.mode != "observe":
            if not self.executor_address:
                raise ValueError(f"executor_address required in {self.mode} mode")
            if not any(p.enabled for p in self.flash_providers):
                raise ValueError(f"at least one enabled flash provider required in {self.mode} mode")
        return self


class CircuitBreakerConfig(BaseModel):
    """Consecutive-failure circuit breaker"""

    threshold: int = Field(default=5, ge=1, le=100)
    cooldown_sec: float = Field(default=3600.0, ge=60, description="Minimum pause before probing")
    state_path: str = ".data/circuit.json"


class StorageConfig(BaseModel):
    """Durable state locations"""

    ledger_path: str = ".data/ledger.jsonl"
    nonce_db_path: str = ".data/nonce.db"
    pending_timeout_sec: float = Field(default=300.0, gt=0)


class HealthConfig(BaseModel):
    """Health monitor and periodic reporting"""

    error_window_sec: float = Field(default=60.0, gt=0)
    error_rate_threshold: float = Field(default=0.1, gt=0, le=1)
    heartbeat_interval_sec: float = Field(default=30.0, gt=0)
    summary_interval_sec: float = Field(default=300.0, gt=0)
    pnl_alert_threshold: Decimal = Field(default=Decimal("0"))
    reconcile_tolerance: Decimal = Field(default=Decimal("0.01"), ge=0)


class ObservabilityConfig(BaseModel):
    """Prometheus exposure"""

    metrics_enabled: bool = False
    metrics_port: int = Field(default=8000, ge=1024, le=65535)


class EngineConfig(BaseModel):
    """Complete engine configuration"""

    name: str = Field(default="flash-arb", description="Instance name used in logs and metrics")
    network: NetworkConfig
    pools: List[PoolConfig] = Field(min_length=2)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    evaluator: EvaluatorConfig
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("Engine name cannot be empty")
        return v.strip()

    @model_validator(mode="after")
    def validate_execution_requirements(self):
        mode = self.execution.mode
        if mode == "observe":
            return self
        missing = sorted({p.venue for p in self.pools} - set(self.execution.adapters))
        if missing:
            raise ValueError(f"no settlement adapter configured for venues: {missing}")
        # Gas is paid in the native token; the ledger needs a price to book it
        if self.evaluator.native_token is None and self.evaluator.native_price_quote is None:
            raise ValueError(
                f"evaluator.native_token or evaluator.native_price_quote required in {mode} mode"
            )
        return self

    model_config = {
        "extra": "forbid",
        "validate_assignment": True,
    }


def validate_engine_config(config_dict: Dict) -> EngineConfig:
    """
    Validate an engine configuration dictionary

    Raises:
        pydantic.ValidationError: If configuration is invalid
    """
    return EngineConfig(**config_dict)


def validate_config_file(config_path: Union[str, Path]) -> EngineConfig:
    """
    Validate an engine configuration file

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

    return validate_engine_config(config_dict)
