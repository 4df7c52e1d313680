"""
Unit tests for the pool registry and pool descriptors
"""

from decimal import Decimal

import pytest

from conftest import USDC, WETH
from flash_arbitrage.exceptions import ConfigurationError
from venues.registry import PoolRegistry, parse_pool
from venues.types import PriceMode


def pool_entry(**overrides):
    entry = {
        "label": "sushi_weth_usdc",
        "venue": "sushiswap",
        "address": "0x00000000000000000000000000000000000000c1",
        "token0": WETH,
        "token1": USDC,
        "decimals0": 18,
        "decimals1": 6,
        "mode": "constant_product",
        "fee_bps": 30,
    }
    entry.update(overrides)
    return entry


class TestParsePool:
    def test_constant_product_pool(self):
        pool = parse_pool(pool_entry())

        assert pool.mode == PriceMode.CONSTANT_PRODUCT
        assert pool.fee_rate == Decimal("0.003")
        assert pool.fee_param is None
        # Addresses are checksummed, keys are lowercase
        assert pool.token0 != WETH and pool.token0.lower() == WETH
        assert pool.key == "0x00000000000000000000000000000000000000c1"

    def test_concentrated_pool_fee_tier(self):
        pool = parse_pool(pool_entry(mode="concentrated", fee_bps=None, fee_tier=500))

        assert pool.fee_rate == Decimal("0.0005")
        assert pool.fee_param == 500

    def test_discrete_bin_fee_includes_variable_buffer(self):
        pool = parse_pool(pool_entry(mode="discrete_bin", fee_bps=None, bin_step=20))

        assert pool.fee_rate == Decimal("0.003")
        assert pool.fee_param == 20

    def test_default_constant_product_fee(self):
        pool = parse_pool(pool_entry(fee_bps=None))
        assert pool.fee_rate == Decimal("0.003")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"mode": "orderbook"},
            {"address": "not-an-address"},
            {"address": "0x0000000000000000000000000000000000000000"},
            {"token1": WETH},
            {"mode": "concentrated", "fee_tier": None},
            {"mode": "discrete_bin", "bin_step": 0},
            {"decimals0": 40},
            {"fee_bps": 10_000},
        ],
    )
    def test_invalid_entries_rejected(self, overrides):
        with pytest.raises(ConfigurationError):
            parse_pool(pool_entry(**overrides))

    @pytest.mark.parametrize(
        "overrides, field_name",
        [
            ({"decimals0": "eighteen"}, "decimals0"),
            ({"decimals1": [6]}, "decimals1"),
            ({"fee_bps": "30bps"}, "fee_bps"),
            ({"mode": "concentrated", "fee_bps": None, "fee_tier": "0.05%"}, "fee_tier"),
            ({"mode": "discrete_bin", "fee_bps": None, "bin_step": "wide"}, "bin_step"),
        ],
    )
    def test_non_integer_fields_name_the_pool(self, overrides, field_name):
        with pytest.raises(ConfigurationError, match=f"'sushi_weth_usdc' has non-integer {field_name}") as exc_info:
            parse_pool(pool_entry(**overrides))

        assert exc_info.value.details["field"] == field_name

    def test_numeric_strings_accepted(self):
        pool = parse_pool(pool_entry(decimals0="18", decimals1="6", fee_bps="25"))

        assert (pool.decimals0, pool.decimals1, pool.fee_bps) == (18, 6, 25)

    def test_missing_field_rejected(self):
        entry = pool_entry()
        del entry["venue"]
        with pytest.raises(ConfigurationError, match="venue"):
            parse_pool(entry, index=3)

    def test_pair_key_ignores_token_order(self):
        forward = parse_pool(pool_entry())
        reverse = parse_pool(
            pool_entry(
                address="0x00000000000000000000000000000000000000c2",
                token0=USDC,
                token1=WETH,
                decimals0=6,
                decimals1=18,
            )
        )
        assert forward.pair_key == reverse.pair_key


class TestPoolRegistry:
    def test_pairs_and_venues(self):
        registry = PoolRegistry.from_config(
            [
                pool_entry(),
                pool_entry(
                    label="univ3",
                    venue="uniswap_v3",
                    address="0x00000000000000000000000000000000000000b1",
                    mode="concentrated",
                    fee_tier=500,
                ),
                pool_entry(
                    label="lonely",
                    venue="camelot",
                    address="0x00000000000000000000000000000000000000d1",
                    token1="0x00000000000000000000000000000000000000e1",
                ),
            ]
        )

        assert len(registry) == 3
        assert registry.venues() == ["camelot", "sushiswap", "uniswap_v3"]
        assert len(registry.pairs()) == 2
        cross = registry.cross_venue_pairs()
        assert len(cross) == 1
        assert len(next(iter(cross.values()))) == 2

    def test_lookup_is_case_insensitive(self):
        registry = PoolRegistry.from_config([pool_entry()])
        assert registry.get("0x00000000000000000000000000000000000000C1") is not None

    def test_duplicate_address_rejected(self):
        with pytest.raises(ConfigurationError, match="Duplicate"):
            PoolRegistry.from_config([pool_entry(), pool_entry(label="again")])

    def test_pools_must_be_a_list(self):
        with pytest.raises(ConfigurationError):
            PoolRegistry.from_config({"label": "x"})
