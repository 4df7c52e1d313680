"""
Shared fixtures: pool descriptors, snapshots and engine configs.
"""

from decimal import Decimal

import pytest

from flash_arbitrage.config_schema import (
    EvaluatorConfig,
    ExecutionConfig,
    FlashProviderConfig,
    MonitorConfig,
)
from venues.evaluator import OpportunityEvaluator
from venues.types import Depth, PoolDescriptor, PriceDelta, PriceMode, PriceSnapshot

WETH = "0x82af49447d8a07e3bd95bd0d56f35241523fbab1"
USDC = "0xaf88d065e77c8cc2239327c5edb3a432268e5831"
EXECUTOR = "0x9999999999999999999999999999999999999999"
AAVE_POOL = "0x794a61358d6845594f94dc1db02a252b5b4814ad"
ADAPTERS = {
    "uniswap_v3": "0x1111111111111111111111111111111111111111",
    "sushiswap": "0x2222222222222222222222222222222222222222",
    "traderjoe_lb": "0x3333333333333333333333333333333333333333",
}


def make_pool(
    label="sushi",
    venue="sushiswap",
    address="0x00000000000000000000000000000000000000a1",
    mode=PriceMode.CONSTANT_PRODUCT,
    fee_bps=30,
    fee_tier=None,
    bin_step=None,
    token0=WETH,
    token1=USDC,
    decimals0=18,
    decimals1=6,
):
    return PoolDescriptor(
        label=label,
        venue=venue,
        address=address,
        token0=token0,
        token1=token1,
        decimals0=decimals0,
        decimals1=decimals1,
        mode=mode,
        fee_bps=fee_bps,
        fee_tier=fee_tier,
        bin_step=bin_step,
        base_symbol="WETH",
        quote_symbol="USDC",
    )


def make_snapshot(pool, price, reserve0=Decimal("10000"), cycle=1, block_number=100):
    """Constant-product style snapshot whose reserves sit exactly at `price`."""
    price = Decimal(str(price))
    reserve0 = Decimal(str(reserve0))
    return PriceSnapshot(
        pool=pool,
        price=price,
        depth=Depth(reserve0=reserve0, reserve1=reserve0 * price),
        block_number=block_number,
        cycle=cycle,
    )


@pytest.fixture
def buy_pool():
    return make_pool(
        label="univ3_weth_usdc_5",
        venue="uniswap_v3",
        address="0x00000000000000000000000000000000000000b1",
        mode=PriceMode.CONCENTRATED,
        fee_bps=None,
        fee_tier=500,
    )


@pytest.fixture
def sell_pool():
    return make_pool(
        label="sushi_weth_usdc",
        venue="sushiswap",
        address="0x00000000000000000000000000000000000000c1",
        fee_bps=30,
    )


@pytest.fixture
def evaluator_config():
    return EvaluatorConfig(
        min_input=Decimal("0.01"),
        max_input=Decimal("50"),
        search_iterations=20,
        min_profit=Decimal("0.10"),
        execution_cost=Decimal("0.05"),
    )


@pytest.fixture
def monitor_config():
    return MonitorConfig(
        delta_threshold_pct=Decimal("0.3"),
        max_pool_errors=3,
        max_batch_retries=2,
        backoff_base_sec=0,
        max_snapshot_age_cycles=2,
        stale_bin_cycles=3,
    )


@pytest.fixture
def aave_provider():
    return FlashProviderConfig(name="aave_v3", address=AAVE_POOL, fee_bps=Decimal("5"))


@pytest.fixture
def execution_config(aave_provider):
    return ExecutionConfig(
        mode="live",
        executor_address=EXECUTOR,
        adapters=dict(ADAPTERS),
        flash_providers=[aave_provider],
        max_gas_price_gwei=Decimal("1.0"),
        priority_fee_gwei=Decimal("0.01"),
        confirmation_timeout_sec=2.0,
        receipt_poll_sec=0.01,
        speed_up_after_sec=1.0,
        max_replacements=1,
        broadcast_retries=2,
    )


def engine_config_dict(mode="observe", **overrides):
    """Minimal valid engine configuration as loaded from YAML."""
    config = {
        "name": "test-engine",
        "network": {"rpc_url": "http://localhost:8545", "chain_id": 42161},
        "pools": [
            {
                "label": "univ3_weth_usdc_5",
                "venue": "uniswap_v3",
                "address": "0x00000000000000000000000000000000000000b1",
                "token0": WETH,
                "token1": USDC,
                "decimals0": 18,
                "decimals1": 6,
                "mode": "concentrated",
                "fee_tier": 500,
            },
            {
                "label": "sushi_weth_usdc",
                "venue": "sushiswap",
                "address": "0x00000000000000000000000000000000000000c1",
                "token0": WETH,
                "token1": USDC,
                "decimals0": 18,
                "decimals1": 6,
                "mode": "constant_product",
                "fee_bps": 30,
            },
        ],
        "evaluator": {"min_input": "0.01", "max_input": "50", "min_profit": "0.10"},
        "execution": {"mode": mode},
    }
    if mode != "observe":
        config["execution"].update(
            {
                "executor_address": EXECUTOR,
                "adapters": dict(ADAPTERS),
                "flash_providers": [{"name": "aave_v3", "address": AAVE_POOL, "fee_bps": 5}],
            }
        )
        config["evaluator"]["native_token"] = WETH
    config.update(overrides)
    return config


@pytest.fixture
def opportunity(buy_pool, sell_pool, evaluator_config, aave_provider):
    """Opportunity sized by the evaluator on a 100 / 100.6 spread."""
    buy = make_snapshot(buy_pool, "100")
    sell = make_snapshot(sell_pool, "100.6")
    delta = PriceDelta(
        pair_key=buy_pool.pair_key, buy=buy, sell=sell, delta_pct=Decimal("0.6"), cycle=1
    )
    evaluator = OpportunityEvaluator(evaluator_config, flash_providers=[aave_provider])
    return evaluator.evaluate(delta, current_cycle=1)
