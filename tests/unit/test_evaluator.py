"""
Unit tests for opportunity sizing and the cost stack
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from conftest import WETH, make_pool, make_snapshot
from flash_arbitrage.config_schema import FlashProviderConfig
from venues.evaluator import OpportunityEvaluator
from venues.types import PriceDelta


def make_delta(buy, sell, cycle=1):
    return PriceDelta(
        pair_key=buy.pool.pair_key,
        buy=buy,
        sell=sell,
        delta_pct=(sell.price - buy.price) / buy.price * 100,
        cycle=cycle,
    )


@pytest.fixture
def evaluator(evaluator_config, aave_provider):
    return OpportunityEvaluator(evaluator_config, flash_providers=[aave_provider])


@pytest.fixture
def profitable_delta(buy_pool, sell_pool):
    return make_delta(make_snapshot(buy_pool, "100"), make_snapshot(sell_pool, "100.6"))


class TestEvaluate:
    def test_profitable_spread_yields_opportunity(self, evaluator, profitable_delta):
        opportunity = evaluator.evaluate(profitable_delta, current_cycle=1)

        assert opportunity is not None
        assert opportunity.net_profit > Decimal("0.10")
        assert opportunity.min_profit == Decimal("0.10")
        assert opportunity.flash_provider == "aave_v3"
        # Interior optimum well inside [min_input, max_input]
        assert Decimal("0.01") < opportunity.input_size < Decimal("50")
        assert opportunity.search.converged is True

        leg1, leg2 = opportunity.legs
        assert leg1.pool.venue == "uniswap_v3"
        assert leg1.token_in == opportunity.borrow_token
        assert leg1.amount_in == opportunity.borrow_amount
        assert leg2.amount_in == leg1.expected_out
        assert leg2.token_out == opportunity.borrow_token
        assert opportunity.borrow_amount == opportunity.input_size * Decimal(100)

    def test_fees_eat_the_spread(self, evaluator, sell_pool):
        expensive = make_pool(
            label="camelot_weth_usdc", venue="camelot",
            address="0x00000000000000000000000000000000000000e1", fee_bps=30,
        )
        delta = make_delta(make_snapshot(expensive, "100"), make_snapshot(sell_pool, "100.6"))

        assert evaluator.evaluate(delta, current_cycle=1) is None
        assert evaluator.rejections["no_profitable_size"] == 1

    @pytest.mark.parametrize("sell_price", ["100.1", "100.3", "100.45", "100.6", "101", "103"])
    def test_returned_opportunities_clear_the_floor(self, evaluator, buy_pool, sell_pool, sell_price):
        delta = make_delta(make_snapshot(buy_pool, "100"), make_snapshot(sell_pool, sell_price))

        opportunity = evaluator.evaluate(delta, current_cycle=1)

        if opportunity is not None:
            assert opportunity.net_profit >= opportunity.min_profit
        else:
            assert sum(evaluator.rejections.values()) == 1

    def test_net_profit_accounting(self, evaluator_config, aave_provider, profitable_delta):
        config = evaluator_config.model_copy(
            update={"safety_margin": Decimal("0.02"), "safety_margin_pct": Decimal("0.01")}
        )
        evaluator = OpportunityEvaluator(config, flash_providers=[aave_provider])

        opportunity = evaluator.evaluate(profitable_delta, current_cycle=1)

        costs = opportunity.costs
        assert costs.net_profit == (
            costs.gross_revenue - costs.borrow_fee - costs.execution_cost - costs.safety_margin
        )
        assert costs.borrow_fee == opportunity.borrow_amount * Decimal("0.0005")
        assert costs.safety_margin == Decimal("0.02") + opportunity.borrow_amount * Decimal("0.0001")
        assert costs.execution_cost == Decimal("0.05")
        assert costs.leg1_fee > 0 and costs.leg2_fee > 0
        assert costs.impact_cost > 0

    def test_venue_multiplier_raises_floor(self, evaluator_config, aave_provider, profitable_delta):
        config = evaluator_config.model_copy(
            update={"venue_threshold_multipliers": {"sushiswap": Decimal(2)}}
        )
        evaluator = OpportunityEvaluator(config, flash_providers=[aave_provider])
        assert evaluator.evaluate(profitable_delta, current_cycle=1).min_profit == Decimal("0.20")

        config = evaluator_config.model_copy(
            update={"venue_threshold_multipliers": {"sushiswap": Decimal(20)}}
        )
        evaluator = OpportunityEvaluator(config, flash_providers=[aave_provider])
        assert evaluator.evaluate(profitable_delta, current_cycle=1) is None
        assert evaluator.rejections["below_floor"] == 1

    def test_metrics_recorded(self, evaluator_config, aave_provider, profitable_delta):
        metrics = MagicMock()
        evaluator = OpportunityEvaluator(config=evaluator_config, flash_providers=[aave_provider], metrics=metrics)

        evaluator.evaluate(profitable_delta, current_cycle=1)
        evaluator.evaluate(profitable_delta, current_cycle=10)

        metrics.record_opportunity.assert_called_once()
        metrics.record_rejection.assert_called_once_with("stale_snapshot")


class TestRejections:
    def test_stale_snapshot(self, evaluator, profitable_delta):
        assert evaluator.evaluate(profitable_delta, current_cycle=3) is not None
        assert evaluator.evaluate(profitable_delta, current_cycle=4) is None
        assert evaluator.rejections["stale_snapshot"] == 1

    def test_pool_marked_stale_by_monitor(self, evaluator_config, profitable_delta):
        monitor = MagicMock()
        monitor.is_stale.return_value = True
        evaluator = OpportunityEvaluator(evaluator_config, monitor=monitor)

        assert evaluator.evaluate(profitable_delta, current_cycle=1) is None
        assert evaluator.rejections["stale_pool"] == 1

    def test_no_depth(self, evaluator, buy_pool, sell_pool):
        delta = make_delta(
            make_snapshot(buy_pool, "100", reserve0="0"), make_snapshot(sell_pool, "100.6")
        )
        assert evaluator.evaluate(delta, current_cycle=1) is None
        assert evaluator.rejections["no_depth"] == 1

    def test_gas_estimate_needs_native_price(self, evaluator_config, profitable_delta):
        config = evaluator_config.model_copy(update={"execution_cost": None})
        gas = MagicMock()
        gas.cost_native.return_value = Decimal("0.0001")
        evaluator = OpportunityEvaluator(config, gas_estimator=gas)

        assert evaluator.evaluate(profitable_delta, current_cycle=1) is None
        assert evaluator.rejections["no_native_price"] == 1

    def test_native_token_priced_from_pair(self, evaluator_config, profitable_delta):
        config = evaluator_config.model_copy(update={"execution_cost": None, "native_token": WETH})
        gas = MagicMock()
        gas.cost_native.return_value = Decimal("0.0001")
        evaluator = OpportunityEvaluator(config, gas_estimator=gas)

        opportunity = evaluator.evaluate(profitable_delta, current_cycle=1)

        gas.cost_native.assert_called_with(2)
        assert opportunity.native_price_quote == Decimal(100)
        assert opportunity.costs.execution_cost == Decimal("0.0100")

    def test_static_native_price(self, evaluator_config, profitable_delta):
        config = evaluator_config.model_copy(
            update={"execution_cost": None, "native_price_quote": Decimal(2000)}
        )
        gas = MagicMock()
        gas.cost_native.return_value = Decimal("0.00001")
        evaluator = OpportunityEvaluator(config, gas_estimator=gas)

        opportunity = evaluator.evaluate(profitable_delta, current_cycle=1)

        assert opportunity.costs.execution_cost == Decimal("0.02")


    def test_static_cost_still_needs_native_price_when_executing(
        self, evaluator_config, aave_provider, profitable_delta
    ):
        evaluator = OpportunityEvaluator(
            evaluator_config, flash_providers=[aave_provider], require_native_price=True
        )

        assert evaluator.evaluate(profitable_delta, current_cycle=1) is None
        assert evaluator.rejections["no_native_price"] == 1

    def test_static_cost_with_native_token_carries_price(
        self, evaluator_config, aave_provider, profitable_delta
    ):
        config = evaluator_config.model_copy(update={"native_token": WETH})
        evaluator = OpportunityEvaluator(
            config, flash_providers=[aave_provider], require_native_price=True
        )

        opportunity = evaluator.evaluate(profitable_delta, current_cycle=1)

        assert opportunity.native_price_quote == Decimal(100)
        assert opportunity.costs.execution_cost == Decimal("0.05")

class TestInterval:
    def test_depth_fraction_caps_upper_bound(self, evaluator, buy_pool, sell_pool):
        buy = make_snapshot(buy_pool, "100", reserve0="10")
        sell = make_snapshot(sell_pool, "100.6", reserve0="1000")

        assert evaluator.interval(buy, sell) == (Decimal("0.01"), Decimal("3.00"))

    def test_venue_cap(self, evaluator_config, buy_pool, sell_pool):
        config = evaluator_config.model_copy(update={"max_input_by_venue": {"uniswap_v3": Decimal(2)}})
        evaluator = OpportunityEvaluator(config)

        lo, hi = evaluator.interval(make_snapshot(buy_pool, "100"), make_snapshot(sell_pool, "100.6"))

        assert (lo, hi) == (Decimal("0.01"), Decimal(2))

    def test_cap_below_min_input_collapses_interval(self, evaluator_config, buy_pool, sell_pool):
        config = evaluator_config.model_copy(
            update={"max_input_by_venue": {"sushiswap": Decimal("0.001")}}
        )
        evaluator = OpportunityEvaluator(config)

        lo, hi = evaluator.interval(make_snapshot(buy_pool, "100"), make_snapshot(sell_pool, "100.6"))

        assert lo == hi == Decimal("0.001")

    def test_opportunity_size_respects_depth(self, evaluator, buy_pool, sell_pool):
        delta = make_delta(
            make_snapshot(buy_pool, "100", reserve0="20"), make_snapshot(sell_pool, "105", reserve0="20")
        )

        opportunity = evaluator.evaluate(delta, current_cycle=1)

        assert opportunity is not None
        assert opportunity.input_size <= Decimal("6")


class TestFlashProvider:
    def test_default_provider_when_none_configured(self, evaluator_config):
        evaluator = OpportunityEvaluator(evaluator_config)

        assert evaluator.provider_name == "aave_v3"
        assert evaluator.borrow_fee_rate == Decimal("0.0005")

    def test_cheapest_enabled_provider_wins(self, evaluator_config, aave_provider):
        balancer = FlashProviderConfig(
            name="balancer", address="0xba12222222228d8ba445958a75a0704d566bf2c8", fee_bps=Decimal(0)
        )
        disabled = balancer.model_copy(update={"enabled": False})

        evaluator = OpportunityEvaluator(evaluator_config, flash_providers=[aave_provider, balancer])
        assert evaluator.provider_name == "balancer"
        assert evaluator.borrow_fee_rate == 0

        evaluator = OpportunityEvaluator(evaluator_config, flash_providers=[aave_provider, disabled])
        assert evaluator.provider_name == "aave_v3"

    def test_warns_when_execution_unpriced(self, evaluator_config, caplog):
        config = evaluator_config.model_copy(update={"execution_cost": None})
        OpportunityEvaluator(config)
        assert "priced at 0" in caplog.text
