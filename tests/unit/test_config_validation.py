"""
Unit tests for configuration schema validation
"""

from decimal import Decimal
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from conftest import engine_config_dict
from flash_arbitrage.config_schema import (
    EngineConfig,
    EvaluatorConfig,
    ExecutionConfig,
    validate_config_file,
    validate_engine_config,
)


class TestEngineConfig:
    def test_minimal_observe_config(self):
        config = validate_engine_config(engine_config_dict())

        assert isinstance(config, EngineConfig)
        assert config.execution.mode == "observe"
        assert config.monitor.delta_threshold_pct == Decimal("0.3")
        assert config.circuit_breaker.threshold == 5
        assert config.evaluator.search_iterations == 5

    def test_live_config(self):
        config = validate_engine_config(engine_config_dict(mode="live"))

        assert config.execution.executor_address
        assert config.execution.flash_providers[0].fee_bps == Decimal(5)

    def test_unknown_top_level_key_rejected(self):
        with pytest.raises(ValidationError):
            validate_engine_config(engine_config_dict(exchange="binance"))

    def test_needs_two_pools(self):
        data = engine_config_dict()
        data["pools"] = data["pools"][:1]
        with pytest.raises(ValidationError):
            validate_engine_config(data)

    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            validate_engine_config(engine_config_dict(name="   "))

    def test_rpc_url_must_be_http(self):
        with pytest.raises(ValidationError, match="http"):
            validate_engine_config(
                engine_config_dict(network={"rpc_url": "ws://node", "chain_id": 42161})
            )

    def test_live_mode_needs_adapter_for_every_venue(self):
        data = engine_config_dict(mode="live")
        del data["execution"]["adapters"]["sushiswap"]
        with pytest.raises(ValidationError, match="sushiswap"):
            validate_engine_config(data)

    def test_live_mode_needs_native_pricing(self):
        data = engine_config_dict(mode="live")
        del data["evaluator"]["native_token"]
        with pytest.raises(ValidationError, match="native_token"):
            validate_engine_config(data)

    def test_live_mode_accepts_fixed_native_price(self):
        data = engine_config_dict(mode="live")
        del data["evaluator"]["native_token"]
        data["evaluator"]["native_price_quote"] = "2000"

        config = validate_engine_config(data)

        assert config.evaluator.native_price_quote == Decimal(2000)

    def test_observe_mode_tolerates_unpriced_gas(self):
        config = validate_engine_config(engine_config_dict())
        assert config.evaluator.native_token is None

    def test_concentrated_pool_needs_fee_tier(self):
        data = engine_config_dict()
        del data["pools"][0]["fee_tier"]
        with pytest.raises(ValidationError, match="fee_tier"):
            validate_engine_config(data)


class TestSectionConfigs:
    def test_input_range(self):
        with pytest.raises(ValidationError, match="max_input"):
            EvaluatorConfig(min_input=Decimal(2), max_input=Decimal(1))

    def test_multiplier_below_one_rejected(self):
        with pytest.raises(ValidationError):
            EvaluatorConfig(
                min_input=Decimal(1),
                max_input=Decimal(2),
                venue_threshold_multipliers={"camelot": Decimal("0.5")},
            )

    @pytest.mark.parametrize("iterations", [0, 65])
    def test_search_iterations_bounds(self, iterations):
        with pytest.raises(ValidationError):
            EvaluatorConfig(min_input=Decimal(1), max_input=Decimal(2), search_iterations=iterations)

    def test_live_mode_needs_executor_and_provider(self):
        with pytest.raises(ValidationError, match="executor_address"):
            ExecutionConfig(mode="live")

        with pytest.raises(ValidationError, match="flash provider"):
            ExecutionConfig(mode="simulate", executor_address="0x" + "99" * 20)

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValidationError):
            ExecutionConfig(mode="paper")

    def test_private_rpc_url_must_be_http(self):
        with pytest.raises(ValidationError, match="private_rpc_url"):
            ExecutionConfig(private_rpc_url="wss://relay.example")

        config = ExecutionConfig(private_rpc_url="https://rpc.mevblocker.io")
        assert config.private_rpc_url == "https://rpc.mevblocker.io"

    def test_replacement_multiplier_floor(self):
        with pytest.raises(ValidationError):
            ExecutionConfig(replacement_multiplier=Decimal("1.05"))


class TestConfigFile:
    def test_validate_file(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text(yaml.safe_dump(engine_config_dict()))

        config = validate_config_file(path)

        assert config.name == "test-engine"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            validate_config_file(tmp_path / "missing.yaml")

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        with pytest.raises(ValueError, match="empty"):
            validate_config_file(path)

    def test_shipped_example_config_is_valid(self):
        config = validate_config_file(Path(__file__).parents[2] / "configs" / "arbitrum_example.yaml")
        assert len(config.pools) >= 2
