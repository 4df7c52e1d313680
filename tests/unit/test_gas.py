"""
Unit tests for fee bids and execution-cost estimators
"""

from decimal import Decimal
from unittest.mock import MagicMock, PropertyMock

import pytest
from eth_abi import encode as abi_encode

from venues import abi
from venues.gas import ArbitrumGasEstimator, FeeBid, StaticGasEstimator, gwei_to_wei, wei_to_native


class TestFeeBid:
    def test_from_base_fee(self):
        bid = FeeBid.from_base_fee(base_fee=100, priority_fee=10)

        assert bid.max_fee_per_gas == 210
        assert bid.max_priority_fee_per_gas == 10

    def test_bump_raises_both_fields(self):
        bid = FeeBid(max_fee_per_gas=1_000, max_priority_fee_per_gas=100)

        bumped = bid.bump()

        assert bumped.max_fee_per_gas == 1_125
        assert bumped.max_priority_fee_per_gas == 113
        assert bumped.max_fee_per_gas >= bid.max_fee_per_gas * 1.1

    def test_bump_always_increases(self):
        bumped = FeeBid(max_fee_per_gas=1, max_priority_fee_per_gas=0).bump()
        assert bumped.max_fee_per_gas == 2
        assert bumped.max_priority_fee_per_gas == 1

    def test_max_fee_gwei(self):
        assert FeeBid(max_fee_per_gas=gwei_to_wei("0.5"), max_priority_fee_per_gas=0).max_fee_gwei == Decimal("0.5")


class TestStaticGasEstimator:
    def test_cost_native(self):
        estimator = StaticGasEstimator(base_gas=21_000, gas_per_swap=150_000, gas_price_gwei=Decimal("0.1"))

        assert estimator.gas_units(2) == 321_000
        assert estimator.cost_native(2) == wei_to_native(321_000 * 10**8)
        assert estimator.split_native(2)[1] == 0

    @pytest.mark.asyncio
    async def test_refresh_reads_gas_price(self):
        web3 = MagicMock()
        web3.eth.gas_price = 5 * 10**8
        estimator = StaticGasEstimator(21_000, 150_000, Decimal("0.1"), web3=web3)

        await estimator.refresh()

        assert estimator.gas_price_wei == 5 * 10**8

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_previous_price(self):
        web3 = MagicMock()
        type(web3.eth).gas_price = PropertyMock(side_effect=ConnectionError("down"))
        estimator = StaticGasEstimator(21_000, 150_000, Decimal("0.1"), web3=web3)

        await estimator.refresh()

        assert estimator.gas_price_wei == 10**8


class TestArbitrumGasEstimator:
    def components(self, l1_gas=50_000, base_fee=10**7):
        return abi_encode(abi.NODE_INTERFACE_GAS_COMPONENTS_OUTPUT, [400_000, l1_gas, base_fee, 0])

    def test_static_fallback_before_refresh(self):
        estimator = ArbitrumGasEstimator(MagicMock(), 21_000, 150_000)

        l2, l1 = estimator.split_native(2)

        assert l2 == Decimal("0.00004")
        assert l1 == Decimal("0.00036")

    @pytest.mark.asyncio
    async def test_refresh_uses_node_interface(self):
        web3 = MagicMock()
        web3.eth.call.return_value = self.components()
        estimator = ArbitrumGasEstimator(web3, 21_000, 150_000)

        await estimator.refresh()
        l2, l1 = estimator.split_native(2)

        assert estimator.l1_gas == 50_000
        assert l2 == wei_to_native(321_000 * 10**7)
        assert l1 == wei_to_native(50_000 * 10**7)
        assert estimator.cost_native(2) == l1 + l2
        params = web3.eth.call.call_args[0][0]
        assert params["to"].lower() == abi.NODE_INTERFACE_ADDRESS.lower()
        assert params["data"][:4] == abi.selector(abi.NODE_INTERFACE_GAS_COMPONENTS)

    @pytest.mark.asyncio
    async def test_precompile_failure_falls_back(self):
        web3 = MagicMock()
        web3.eth.call.return_value = self.components()
        estimator = ArbitrumGasEstimator(web3, 21_000, 150_000)
        await estimator.refresh()

        web3.eth.call.side_effect = ValueError("execution reverted")
        await estimator.refresh()

        assert estimator.l1_gas is None
        assert estimator.split_native(1) == (Decimal("0.00002"), Decimal("0.00018"))
