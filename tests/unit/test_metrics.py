"""
Unit tests for Prometheus metrics
"""

import pytest
from prometheus_client import CollectorRegistry

from flash_arbitrage.metrics import EngineMetrics


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    return EngineMetrics("test-engine", registry=registry)


def sample(registry, name, **labels):
    return registry.get_sample_value(name, dict(engine="test-engine", **labels))


class TestRecording:
    def test_poll(self, metrics, registry):
        metrics.record_poll(0.2, fresh=3, failed=1)
        metrics.record_poll_error("camelot")

        assert sample(registry, "flash_arb_polls_total") == 1
        assert sample(registry, "flash_arb_fresh_pools") == 3
        assert sample(registry, "flash_arb_poll_errors_total", venue="camelot") == 1
        assert sample(registry, "flash_arb_poll_duration_seconds_count") == 1

    def test_rejection_label_drops_detail(self, metrics, registry):
        metrics.record_rejection("model_error:reserve must be positive")
        metrics.record_rejection("below_floor")

        assert sample(registry, "flash_arb_rejections_total", reason="model_error") == 1
        assert sample(registry, "flash_arb_rejections_total", reason="below_floor") == 1

    def test_outcomes(self, metrics, registry):
        metrics.record_outcome("Confirmed", "confirmed")
        metrics.record_outcome("Skipped", "simulation_revert:InsufficientProfit")
        metrics.record_outcome("Failed")

        assert sample(registry, "flash_arb_outcomes_total", status="Confirmed", reason="confirmed") == 1
        assert (
            sample(
                registry,
                "flash_arb_outcomes_total",
                status="Skipped",
                reason="simulation_revert:InsufficientProfit",
            )
            == 1
        )
        assert sample(registry, "flash_arb_outcomes_total", status="Failed", reason="") == 1

    def test_circuit_state(self, metrics, registry):
        metrics.set_circuit_state(False, 2)
        assert sample(registry, "flash_arb_circuit_paused") == 0
        assert sample(registry, "flash_arb_consecutive_failures") == 2

        metrics.record_circuit_trip()
        assert sample(registry, "flash_arb_circuit_paused") == 1
        assert sample(registry, "flash_arb_circuit_trips_total") == 1

    def test_opportunity_and_pnl(self, metrics, registry):
        metrics.record_delta("WETH/USDC")
        metrics.record_opportunity("WETH/USDC", 0.42)
        metrics.set_net_pnl(-1.5)
        metrics.update_last_activity()

        assert sample(registry, "flash_arb_deltas_total", pair="WETH/USDC") == 1
        assert sample(registry, "flash_arb_opportunities_total", pair="WETH/USDC") == 1
        assert sample(registry, "flash_arb_expected_net_profit_sum") == pytest.approx(0.42)
        assert sample(registry, "flash_arb_net_pnl") == -1.5
        assert sample(registry, "flash_arb_last_activity_timestamp") > 0

    def test_separate_registries_do_not_collide(self):
        EngineMetrics("a", registry=CollectorRegistry())
        EngineMetrics("b", registry=CollectorRegistry())

    def test_summary(self, metrics):
        summary = metrics.get_metrics_summary()
        assert summary["engine"] == "test-engine"
        assert summary["registry_collectors"] > 0


class TestServer:
    @pytest.mark.asyncio
    async def test_handlers(self, metrics):
        metrics.record_poll(0.1, fresh=2, failed=0)

        response = await metrics._metrics_handler(None)
        health = await metrics._health_handler(None)

        assert response.status == 200
        assert "flash_arb_polls_total" in response.text
        assert health.status == 200

    @pytest.mark.asyncio
    async def test_stop_without_start(self, metrics):
        await metrics.stop_server()
