"""
Cycle engine: wires monitor, evaluator, composer and coordinator together.

Each cycle polls every pool once, evaluates the deltas it finds, and hands
the resulting opportunities to the execution stage through an asyncio.Queue.
The execution stage is its own task draining the queue in order, so polling
keeps its cadence while a submission waits for a receipt; the coordinator
lock keeps submissions serialized.
"""

import asyncio
import time
from typing import List, Optional

from venues.composer import TransactionComposer
from venues.evaluator import OpportunityEvaluator
from venues.gas import ArbitrumGasEstimator, StaticGasEstimator
from venues.monitor import PriceMonitor
from venues.multicall import MulticallClient, connect, submission_web3
from venues.registry import PoolRegistry
from venues.types import ArbitrageOpportunity

from .circuit_breaker import CircuitBreaker
from .config_schema import EngineConfig
from .coordinator import ExecutionCoordinator
from .exceptions import ConfigurationError, NetworkError, ValidationError
from .execution_types import ExecutionOutcome, OutcomeStatus
from .health import HealthMonitor
from .ledger import Ledger
from .metrics import EngineMetrics
from .nonce_manager import NonceJournal
from .reporting import format_summary
from .utils import get_logger

logger = get_logger(__name__)


class ArbitrageEngine:
    """
    Args:
        config: Validated EngineConfig
        monitor: PriceMonitor
        evaluator: OpportunityEvaluator
        circuit_breaker: CircuitBreaker
        ledger: Ledger
        composer: TransactionComposer (absent in observe mode)
        coordinator: ExecutionCoordinator (absent in observe mode)
        nonce_journal: NonceJournal owned by the coordinator
        gas_estimator: Refreshed once per cycle when present
        health: HealthMonitor
        metrics: Optional EngineMetrics
    """

    def __init__(
        self,
        config: EngineConfig,
        monitor: PriceMonitor,
        evaluator: OpportunityEvaluator,
        circuit_breaker: CircuitBreaker,
        ledger: Ledger,
        composer: Optional[TransactionComposer] = None,
        coordinator: Optional[ExecutionCoordinator] = None,
        nonce_journal: Optional[NonceJournal] = None,
        gas_estimator=None,
        health: Optional[HealthMonitor] = None,
        metrics: Optional[EngineMetrics] = None,
    ):
        self.config = config
        self.mode = config.execution.mode
        self.monitor = monitor
        self.evaluator = evaluator
        self.circuit_breaker = circuit_breaker
        self.ledger = ledger
        self.composer = composer
        self.coordinator = coordinator
        self.nonce_journal = nonce_journal
        self.gas_estimator = gas_estimator
        self.metrics = metrics
        self.health = health or HealthMonitor(
            error_window_sec=config.health.error_window_sec,
            error_rate_threshold=config.health.error_rate_threshold,
            pnl_alert_threshold=config.health.pnl_alert_threshold,
            monitor=monitor,
            circuit_breaker=circuit_breaker,
            ledger=ledger,
        )

        if self.mode != "observe" and (composer is None or coordinator is None):
            raise ConfigurationError(f"{self.mode} mode needs a composer and a coordinator")

        self.queue: asyncio.Queue = asyncio.Queue()
        self.cycles_run = 0
        self._worker: Optional[asyncio.Task] = None
        self._metrics_server_started = False

    @classmethod
    def from_config(cls, config: EngineConfig, signer=None, web3=None, metrics=None) -> "ArbitrageEngine":
        """
        Build every stage from configuration.

        Args:
            config: Validated EngineConfig
            signer: Required outside observe mode
            web3: Pre-built Web3 instance; connects to the configured RPCs otherwise
            metrics: EngineMetrics; created when metrics are enabled and none is given

        Raises:
            ConfigurationError: If a signer is missing outside observe mode
            NetworkError: If no RPC endpoint is reachable
        """
        mode = config.execution.mode
        if mode != "observe" and signer is None:
            raise ConfigurationError(f"{mode} mode requires a signer")

        if web3 is None:
            web3 = connect(
                [config.network.rpc_url] + list(config.network.fallback_rpc_urls),
                chain_id=config.network.chain_id,
                timeout=config.network.request_timeout_sec,
            )
        if metrics is None and config.observability.metrics_enabled:
            metrics = EngineMetrics(engine_name=config.name)

        registry = PoolRegistry.from_config([pool.model_dump() for pool in config.pools])
        monitor = PriceMonitor(registry, MulticallClient(web3), config.monitor, metrics=metrics)

        ev = config.evaluator
        if config.execution.gas_estimator == "arbitrum":
            gas_estimator = ArbitrumGasEstimator(
                web3, ev.base_gas, ev.gas_per_swap, ev.gas_price_gwei,
                target=config.execution.executor_address,
            )
        else:
            gas_estimator = StaticGasEstimator(ev.base_gas, ev.gas_per_swap, ev.gas_price_gwei, web3)

        evaluator = OpportunityEvaluator(
            ev,
            flash_providers=config.execution.flash_providers,
            max_snapshot_age_cycles=config.monitor.max_snapshot_age_cycles,
            monitor=monitor,
            gas_estimator=gas_estimator,
            metrics=metrics,
            require_native_price=mode != "observe",
        )

        circuit_breaker = CircuitBreaker(
            threshold=config.circuit_breaker.threshold,
            cooldown_sec=config.circuit_breaker.cooldown_sec,
            state_path=config.circuit_breaker.state_path,
            metrics=metrics,
        )
        ledger = Ledger(config.storage.ledger_path)

        composer = coordinator = nonce_journal = None
        if mode != "observe":
            composer = TransactionComposer(
                executor_address=config.execution.executor_address,
                adapters=config.execution.adapters,
                providers={p.name: p.address for p in config.execution.flash_providers if p.enabled},
                chain_id=config.network.chain_id,
                leg_slippage_tolerance=ev.leg_slippage_tolerance,
                base_gas=ev.base_gas,
                gas_per_swap=ev.gas_per_swap,
                gas_limit_buffer=ev.gas_limit_buffer,
            )
            nonce_journal = NonceJournal(
                config.storage.nonce_db_path,
                signer.address,
                pending_timeout_sec=config.storage.pending_timeout_sec,
            )
            submit_web3 = None
            if config.execution.private_rpc_url:
                submit_web3 = submission_web3(
                    config.execution.private_rpc_url, timeout=config.network.request_timeout_sec
                )
            coordinator = ExecutionCoordinator(
                web3,
                signer,
                nonce_journal,
                circuit_breaker,
                config.execution,
                monitor=monitor,
                metrics=metrics,
                submit_web3=submit_web3,
            )

        return cls(
            config,
            monitor,
            evaluator,
            circuit_breaker,
            ledger,
            composer=composer,
            coordinator=coordinator,
            nonce_journal=nonce_journal,
            gas_estimator=gas_estimator,
            metrics=metrics,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self.nonce_journal is not None:
            await self.nonce_journal.initialize()
            if not await self.coordinator.sync_nonce():
                logger.warning("Pending transactions block submission until they resolve")

        if self.metrics and self.config.observability.metrics_enabled and not self._metrics_server_started:
            await self.metrics.start_server(port=self.config.observability.metrics_port)
            self._metrics_server_started = True

        logger.info("=" * 80)
        logger.info(f"FLASH ARBITRAGE ENGINE '{self.config.name}' | mode={self.mode.upper()}")
        logger.info(
            f"Pools: {len(self.monitor.registry)} | pairs: {len(self.monitor.registry.cross_venue_pairs())} | "
            f"provider: {self.evaluator.provider_name} | poll: {self.config.monitor.poll_interval_sec}s"
        )
        if self.circuit_breaker.is_paused:
            logger.warning("Circuit breaker is PAUSED; execution resumes after reset or probe")
        logger.info("=" * 80)

    async def shutdown(self) -> None:
        if self.nonce_journal is not None:
            await self.nonce_journal.close()
        if self._metrics_server_started:
            await self.metrics.stop_server()
            self._metrics_server_started = False

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def poll_cycle(self) -> List[ArbitrageOpportunity]:
        """Poll, evaluate and enqueue one cycle; returns what was enqueued."""
        if self.circuit_breaker.sync_from_disk():
            logger.info("Circuit state reloaded from disk")

        if self.gas_estimator is not None:
            await self.gas_estimator.refresh()

        deltas = await self.monitor.poll_and_detect()
        self.health.record_event(not self.monitor.liveness_alarm)
        self.cycles_run += 1

        enqueued = []
        for delta in deltas:
            opportunity = self.evaluator.evaluate(delta, self.monitor.cycle)
            if opportunity is not None:
                self.queue.put_nowait(opportunity)
                enqueued.append(opportunity)
        return enqueued

    async def run_cycle(self) -> List[ExecutionOutcome]:
        """One poll followed by draining the queue inline; returns the outcomes."""
        await self.poll_cycle()
        return await self.drain()

    async def drain(self) -> List[ExecutionOutcome]:
        outcomes = []
        while not self.queue.empty():
            opportunity = self.queue.get_nowait()
            try:
                outcomes.append(await self.process(opportunity))
            finally:
                self.queue.task_done()
        return outcomes

    async def process(self, opportunity: ArbitrageOpportunity) -> ExecutionOutcome:
        """Take one opportunity through the gates and, if allowed, the coordinator."""
        behind = self.monitor.cycle - opportunity.cycle
        if behind > self.config.execution.freshness_budget_cycles:
            logger.debug(f"Dropping {opportunity.path_label}: {behind} cycles old")
            return self._record_local(ExecutionOutcome.skipped("stale"), opportunity)

        if self.mode == "observe":
            return self._record_local(ExecutionOutcome.skipped("observe_only"), opportunity)

        paused = self.circuit_breaker.is_paused
        if paused and not self.circuit_breaker.cooldown_elapsed():
            return self._record_local(ExecutionOutcome.skipped("circuit_paused"), opportunity)

        try:
            prepared = self.composer.compose(opportunity)
        except ValidationError as e:
            logger.warning(f"Cannot compose {opportunity.path_label}: {e}")
            return self._record_local(ExecutionOutcome.skipped("compose_error"), opportunity)

        # The probe needs a composed payload to simulate
        if paused and not await self._probe(prepared):
            return self._record_local(ExecutionOutcome.skipped("circuit_paused"), opportunity)

        outcome = await self.coordinator.execute(prepared, self.mode)
        self._record(outcome, opportunity)
        return outcome

    async def _probe(self, prepared) -> bool:
        """Simulate as a probe once the cooldown has elapsed; True if resumed."""
        probe_ok = await self.coordinator.probe(prepared)
        resumed = self.circuit_breaker.try_probe_resume(probe_ok)
        if resumed:
            logger.info(f"Circuit resumed after successful probe on {prepared.opportunity.path_label}")
        return resumed

    def _record_local(self, outcome: ExecutionOutcome, opportunity: ArbitrageOpportunity) -> ExecutionOutcome:
        """Outcomes decided here never reach the coordinator's bookkeeping."""
        if self.metrics:
            self.metrics.record_outcome(outcome.status.value, outcome.reason)
        self._record(outcome, opportunity)
        return outcome

    def _record(self, outcome: ExecutionOutcome, opportunity: ArbitrageOpportunity) -> None:
        self.ledger.record(outcome, opportunity)
        if outcome.status != OutcomeStatus.SKIPPED:
            self.health.record_event(outcome.status != OutcomeStatus.FAILED)
        if self.metrics:
            self.metrics.set_net_pnl(float(self.ledger.summary().total_net))
            self.metrics.update_last_activity()

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def log_summary(self) -> None:
        summary = self.ledger.summary()
        logger.info(
            f"Summary after {self.cycles_run} cycles (monitor cycle {self.monitor.cycle}):\n"
            f"{format_summary(summary)}"
        )
        if self.evaluator.rejections:
            top = ", ".join(f"{k}={v}" for k, v in self.evaluator.rejections.most_common(5))
            logger.info(f"Top rejections: {top}")

    async def _execution_worker(self) -> None:
        """Consume the queue until cancelled; polling never waits on this."""
        while True:
            opportunity = await self.queue.get()
            try:
                await self.process(opportunity)
            except NetworkError as e:
                self.health.record_event(False)
                logger.error(f"Execution of {opportunity.path_label} failed: {e}")
            finally:
                self.queue.task_done()

    def _check_worker(self) -> None:
        """Re-raise the error that stopped the execution worker, if any."""
        worker = self._worker
        if worker is not None and worker.done() and not worker.cancelled():
            worker.result()

    async def _finish_queue(self) -> None:
        """Let already-queued opportunities run before a bounded run returns."""
        if self._worker is None or self._worker.done():
            self._check_worker()
            return
        joiner = asyncio.ensure_future(self.queue.join())
        try:
            await asyncio.wait([joiner, self._worker], return_when=asyncio.FIRST_COMPLETED)
        finally:
            joiner.cancel()
        self._check_worker()

    async def _stop_worker(self) -> None:
        worker, self._worker = self._worker, None
        if worker is None:
            return
        if not worker.done():
            worker.cancel()
        (result,) = await asyncio.gather(worker, return_exceptions=True)
        if isinstance(result, Exception):
            logger.error(f"Execution worker stopped: {result}")

    async def run(self, max_cycles: Optional[int] = None) -> None:
        """
        Loop at poll_interval_sec until cancelled or max_cycles is reached.

        Execution runs in a separate task fed by the queue, so a slow
        confirmation never delays the next poll. Transport failures in a
        cycle are logged and the loop continues; configuration errors
        propagate.
        """
        await self.start()
        interval = self.config.monitor.poll_interval_sec
        last_heartbeat = last_summary = time.monotonic()
        self._worker = asyncio.create_task(self._execution_worker())

        try:
            while max_cycles is None or self.cycles_run < max_cycles:
                started = time.monotonic()
                self._check_worker()
                try:
                    await self.poll_cycle()
                except NetworkError as e:
                    self.cycles_run += 1
                    self.health.record_event(False)
                    logger.error(f"Cycle failed: {e}")

                now = time.monotonic()
                if now - last_heartbeat >= self.config.health.heartbeat_interval_sec:
                    last_heartbeat = now
                    status = self.health.heartbeat()
                    logger.info(f"Heartbeat: {status.format_log()}")
                if now - last_summary >= self.config.health.summary_interval_sec:
                    last_summary = now
                    self.log_summary()

                if max_cycles is not None and self.cycles_run >= max_cycles:
                    break
                await asyncio.sleep(max(0.0, interval - (time.monotonic() - started)))
            await self._finish_queue()
        except (asyncio.CancelledError, KeyboardInterrupt):
            logger.info("Shutdown requested")
        finally:
            await self._stop_worker()
            await self.shutdown()
            self.log_summary()
