"""
Execution coordinator: simulate, bid, sign, journal, broadcast and confirm.

At most one submission is in flight per account (asyncio.Lock). Every
attempt ends in exactly one ExecutionOutcome, which is fed to the circuit
breaker, the metrics and the log. On-chain rejections are outcomes, not
exceptions.
"""

import asyncio
import functools
import time
from collections import Counter
from decimal import Decimal
from typing import Any, List, Optional, Tuple

from eth_abi import decode as abi_decode
from hexbytes import HexBytes
from web3.exceptions import ContractLogicError, TransactionNotFound

from venues import abi
from venues.composer import PreparedTransaction
from venues.gas import FeeBid, gwei_to_wei, wei_to_native

from .circuit_breaker import CircuitBreaker
from .exceptions import NetworkError, NonceError
from .execution_types import CoordinatorState, ExecutionOutcome, OutcomeStatus
from .nonce_manager import EntryKind, NonceJournal
from .utils import from_raw, get_logger

logger = get_logger(__name__)

# Node messages that mean the transaction will never be accepted as signed
DEFINITIVE_REJECTIONS = (
    "nonce too low",
    "insufficient funds",
    "intrinsic gas too low",
    "replacement transaction underpriced",
    "exceeds block gas limit",
    "invalid sender",
    "max fee per gas less than block base fee",
)
ALREADY_KNOWN = ("already known", "known transaction")

ARBITRAGE_EXECUTED_TOPIC = abi.event_topic(abi.ARBITRAGE_EXECUTED_EVENT)


def decode_revert(data: Any) -> Tuple[str, tuple]:
    """
    Map revert data to (error name, decoded args).

    Returns ("empty", ()) for a bare revert and ("unknown", ()) for a
    selector the executor does not define.
    """
    if data is None:
        return "empty", ()
    if isinstance(data, str) and not data.startswith("0x"):
        return "empty", ()
    try:
        raw = bytes(HexBytes(data))
    except (TypeError, ValueError):
        return "unknown", ()
    if len(raw) < 4:
        return "empty", ()

    signature = abi.ERROR_SELECTORS.get(raw[:4])
    if signature is None:
        return "unknown", ()
    name = signature.split("(")[0]
    types = abi.EXECUTOR_ERRORS[signature]
    if not types:
        return name, ()
    try:
        return name, tuple(abi_decode(types, raw[4:]))
    except Exception:
        return name, ()


def _as_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


class ExecutionCoordinator:
    """
    Args:
        web3: Blocking Web3 instance; calls run in the default executor
        signer: Signer implementation
        nonce_journal: Initialized NonceJournal for the signer's account
        circuit_breaker: Shared CircuitBreaker
        config: ExecutionConfig
        monitor: Optional PriceMonitor to invalidate after a confirmed trade
        metrics: Optional EngineMetrics
        submit_web3: Optional broadcast-only Web3 (private mempool RPC); every
            other call stays on `web3`
    """

    def __init__(
        self,
        web3,
        signer,
        nonce_journal: NonceJournal,
        circuit_breaker: CircuitBreaker,
        config,
        monitor=None,
        metrics=None,
        submit_web3=None,
    ):
        self.web3 = web3
        self.submit_web3 = submit_web3 or web3
        self.signer = signer
        self.nonce_journal = nonce_journal
        self.circuit_breaker = circuit_breaker
        self.config = config
        self.monitor = monitor
        self.metrics = metrics

        self.state = CoordinatorState.IDLE
        self.stats: Counter = Counter()
        self._lock = asyncio.Lock()

    async def _rpc(self, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))

    # ------------------------------------------------------------------
    # Nonce
    # ------------------------------------------------------------------

    async def sync_nonce(self) -> bool:
        """Resync the journal from the chain; False while pending entries block."""
        try:
            chain_nonce = await self._rpc(
                self.web3.eth.get_transaction_count, self.signer.address, "latest"
            )
            await self.nonce_journal.sync(chain_nonce)
            return True
        except NonceError as e:
            logger.warning(f"Nonce sync: {e} {e.details}")
            return False

    async def _acquire_nonce(self) -> Optional[int]:
        try:
            return await self.nonce_journal.next_nonce()
        except NonceError:
            if not await self.sync_nonce():
                return None
            return await self.nonce_journal.next_nonce()

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    async def simulate(self, prepared: PreparedTransaction, block_identifier="latest") -> Optional[str]:
        """
        eth_call the payload from the signer's address.

        Returns:
            None if the call succeeds, else the decoded revert error name

        Raises:
            NetworkError: If the node could not be reached
        """
        params = prepared.call_params(self.signer.address)
        try:
            await self._rpc(self.web3.eth.call, params, block_identifier)
            return None
        except ContractLogicError as e:
            name, args = decode_revert(getattr(e, "data", None))
            if name in ("empty", "unknown") and "execution reverted:" in str(e):
                name = "Error"
            logger.debug(f"Simulation reverted: {name}{args if args else ''} ({e})")
            return name
        except Exception as e:
            raise NetworkError(f"Simulation call failed: {e}") from e

    async def probe(self, prepared: PreparedTransaction) -> bool:
        """Simulation-only check used to resume a paused circuit."""
        async with self._lock:
            try:
                return await self.simulate(prepared) is None
            except NetworkError as e:
                logger.warning(f"Circuit probe transport failure: {e}")
                return False

    # ------------------------------------------------------------------
    # Broadcast
    # ------------------------------------------------------------------

    async def _broadcast(self, raw: bytes) -> Optional[str]:
        """
        Send a signed transaction with bounded retries.

        Returns:
            None on acceptance, "rejected:<message>" for a definitive refusal,
            "transport:<message>" when retries are exhausted
        """
        attempts = self.config.broadcast_retries
        last_error = ""
        for attempt in range(attempts):
            try:
                await self._rpc(self.submit_web3.eth.send_raw_transaction, raw)
                return None
            except Exception as e:
                message = str(e).lower()
                if any(k in message for k in ALREADY_KNOWN):
                    return None
                if any(k in message for k in DEFINITIVE_REJECTIONS):
                    return f"rejected:{e}"
                last_error = str(e)
                if attempt < attempts - 1:
                    delay = 0.5 * (2**attempt)
                    logger.warning(
                        f"Broadcast failed (attempt {attempt + 1}/{attempts}), "
                        f"retrying in {delay:.1f}s: {e}"
                    )
                    await asyncio.sleep(delay)
        return f"transport:{last_error}"

    async def _fee_bid(self) -> FeeBid:
        block = await self._rpc(self.web3.eth.get_block, "latest")
        base_fee = _as_int(block.get("baseFeePerGas"))
        return FeeBid.from_base_fee(base_fee, gwei_to_wei(self.config.priority_fee_gwei))

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    async def _get_receipt(self, tx_hash: str):
        try:
            return await self._rpc(self.web3.eth.get_transaction_receipt, tx_hash)
        except TransactionNotFound:
            return None
        except Exception as e:
            logger.debug(f"Receipt poll failed for {tx_hash}: {e}")
            return None

    async def _replace(self, prepared: PreparedTransaction, nonce: int, bid: FeeBid) -> Optional[str]:
        replacement = prepared.with_bid(nonce, bid.max_fee_per_gas, bid.max_priority_fee_per_gas)
        signed = self.signer.sign(replacement.to_tx_params())
        await self.nonce_journal.mark_replaced(nonce, signed.tx_hash)
        error = await self._broadcast(signed.raw)
        if error and error.startswith("rejected:"):
            logger.warning(f"Replacement for nonce {nonce} not accepted: {error}")
            await self.nonce_journal.mark_rejected(nonce, signed.tx_hash, error)
            return None
        if error:
            # Possibly accepted; keep polling its hash
            logger.warning(f"Replacement for nonce {nonce} unconfirmed by the node: {error}")
            return signed.tx_hash
        logger.info(f"Replacement sent for nonce {nonce}: {signed.tx_hash} (maxFee {bid.max_fee_gwei:.4f} gwei)")
        return signed.tx_hash

    async def _cancel(self, nonce: int, bid: FeeBid, chain_id: int) -> None:
        """0-value self-transfer at the same nonce with bumped fees."""
        bid = bid.bump(Decimal(self.config.replacement_multiplier))
        tx = {
            "type": 2,
            "chainId": chain_id,
            "to": self.signer.address,
            "value": 0,
            "gas": 21_000,
            "nonce": nonce,
            "maxFeePerGas": bid.max_fee_per_gas,
            "maxPriorityFeePerGas": bid.max_priority_fee_per_gas,
        }
        signed = self.signer.sign(tx)
        await self.nonce_journal.mark_replaced(nonce, signed.tx_hash, kind=EntryKind.CANCEL)
        error = await self._broadcast(signed.raw)
        if error:
            logger.error(f"Cancel for nonce {nonce} not accepted: {error}")
        else:
            logger.warning(f"Cancel sent for nonce {nonce}: {signed.tx_hash}")

    async def _await_receipt(
        self, prepared: PreparedTransaction, nonce: int, tx_hash: str, bid: FeeBid
    ) -> Tuple[Optional[Any], Optional[str], FeeBid, List[str]]:
        """Poll for a receipt of any hash at this nonce, bumping fees when slow."""
        hashes = [tx_hash]
        started = time.monotonic()
        deadline = started + self.config.confirmation_timeout_sec
        next_bump = started + self.config.speed_up_after_sec
        replacements = 0

        while True:
            for h in hashes:
                receipt = await self._get_receipt(h)
                if receipt is not None:
                    return receipt, h, bid, hashes

            now = time.monotonic()
            if now >= deadline:
                return None, None, bid, hashes

            if now >= next_bump and replacements < self.config.max_replacements:
                bumped = bid.bump(Decimal(self.config.replacement_multiplier))
                if bumped.max_fee_gwei <= Decimal(self.config.max_gas_price_gwei):
                    new_hash = await self._replace(prepared, nonce, bumped)
                    if new_hash:
                        hashes.append(new_hash)
                        bid = bumped
                else:
                    logger.warning("Fee bump would exceed gas ceiling; waiting without replacement")
                replacements += 1
                next_bump = now + self.config.speed_up_after_sec

            await asyncio.sleep(self.config.receipt_poll_sec)

    def _receipt_costs(self, receipt) -> Tuple[Decimal, Decimal]:
        """(L2 execution gas, L1 data fee) in native units."""
        gas_used = _as_int(receipt.get("gasUsed"))
        price = _as_int(receipt.get("effectiveGasPrice"))
        l1_fee = receipt.get("l1Fee")
        if l1_fee is not None:
            # OP-stack receipts report the L1 data fee directly
            return wei_to_native(gas_used * price), wei_to_native(_as_int(l1_fee))
        l1_gas = _as_int(receipt.get("gasUsedForL1"))
        return wei_to_native((gas_used - l1_gas) * price), wei_to_native(l1_gas * price)

    def _realized_profit(self, receipt, prepared: PreparedTransaction) -> Decimal:
        executor = prepared.to.lower()
        for log in receipt.get("logs", []) or []:
            address = str(log.get("address", "")).lower()
            topics = log.get("topics") or []
            if address != executor or not topics:
                continue
            if bytes(HexBytes(topics[0])) != ARBITRAGE_EXECUTED_TOPIC:
                continue
            _, profit = abi_decode(["uint256", "uint256"], bytes(HexBytes(log.get("data"))))
            return from_raw(profit, prepared.opportunity.borrow_decimals)
        logger.warning("Confirmed receipt has no ArbitrageExecuted event; realized profit 0")
        return Decimal(0)

    async def _revert_reason(self, prepared: PreparedTransaction, block_number: Optional[int]) -> str:
        try:
            name = await self.simulate(prepared, block_identifier=block_number or "latest")
        except NetworkError:
            return "unknown"
        return name or "unknown"

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def execute(self, prepared: PreparedTransaction, mode: str) -> ExecutionOutcome:
        """
        Run one opportunity through the state machine.

        Args:
            prepared: Composed settlement call
            mode: "observe", "simulate" or "live"
        """
        async with self._lock:
            self.state = CoordinatorState.IDLE
            outcome = await self._execute(prepared, mode)
            self._finish(outcome, prepared)
            return outcome

    async def _execute(self, prepared: PreparedTransaction, mode: str) -> ExecutionOutcome:
        if self.circuit_breaker.is_paused:
            return ExecutionOutcome.skipped("circuit_paused")
        if mode == "observe":
            return ExecutionOutcome.skipped("observe_only")

        self.state = CoordinatorState.SIMULATING
        try:
            revert = await self.simulate(prepared)
        except NetworkError as e:
            logger.warning(str(e))
            return ExecutionOutcome.failed("simulation_transport")
        if revert is not None:
            return ExecutionOutcome.skipped(f"simulation_revert:{revert}")

        if mode == "simulate":
            return ExecutionOutcome.skipped("simulate_only")

        try:
            bid = await self._fee_bid()
        except Exception as e:
            logger.warning(f"Base fee lookup failed: {e}")
            return ExecutionOutcome.failed("rpc_error")
        if bid.max_fee_gwei > Decimal(self.config.max_gas_price_gwei):
            logger.info(
                f"Gas ceiling: maxFee {bid.max_fee_gwei:.4f} gwei > "
                f"{self.config.max_gas_price_gwei} gwei"
            )
            return ExecutionOutcome.skipped("gas_ceiling")

        nonce = await self._acquire_nonce()
        if nonce is None:
            return ExecutionOutcome.skipped("nonce_blocked")

        tx = prepared.with_bid(nonce, bid.max_fee_per_gas, bid.max_priority_fee_per_gas)
        signed = self.signer.sign(tx.to_tx_params())
        await self.nonce_journal.mark_pending(nonce, signed.tx_hash)

        self.state = CoordinatorState.SUBMITTED
        broadcast_at = time.monotonic()
        error = await self._broadcast(signed.raw)
        if error is not None:
            if error.startswith("rejected:"):
                logger.warning(f"Broadcast rejected for nonce {nonce}: {error}")
                await self.nonce_journal.mark_rejected(nonce, signed.tx_hash, error)
                await self.sync_nonce()
                return ExecutionOutcome.failed(
                    "broadcast_rejected", tx_hash=signed.tx_hash, nonce=nonce
                )
            # The node may have accepted it; the entry stays pending until sync settles it
            logger.warning(
                f"Broadcast failed for nonce {nonce}: {error}; "
                f"{signed.tx_hash} stays pending until the chain nonce resolves it"
            )
            return ExecutionOutcome.failed("broadcast_failed", tx_hash=signed.tx_hash, nonce=nonce)

        logger.info(f"Submitted {signed.tx_hash} (nonce {nonce}, maxFee {bid.max_fee_gwei:.4f} gwei)")
        receipt, mined_hash, bid, hashes = await self._await_receipt(tx, nonce, signed.tx_hash, bid)

        if receipt is None:
            logger.warning(
                f"No receipt after {self.config.confirmation_timeout_sec:.0f}s "
                f"for nonce {nonce} ({len(hashes)} hash(es))"
            )
            if self.config.cancel_on_timeout:
                await self._cancel(nonce, bid, prepared.chain_id)
            return ExecutionOutcome.failed("timeout", tx_hash=hashes[-1], nonce=nonce)

        if self.metrics:
            self.metrics.observe_submission_latency(time.monotonic() - broadcast_at)
        await self.nonce_journal.mark_confirmed(nonce, mined_hash)

        gas_cost, l1_fee = self._receipt_costs(receipt)
        block_number = _as_int(receipt.get("blockNumber")) or None

        if _as_int(receipt.get("status")) == 1:
            self.state = CoordinatorState.CONFIRMED
            if self.monitor is not None:
                self.monitor.invalidate(prepared.opportunity.pool_addresses)
            return ExecutionOutcome(
                status=OutcomeStatus.CONFIRMED,
                reason="confirmed",
                tx_hash=mined_hash,
                nonce=nonce,
                realized_profit=self._realized_profit(receipt, prepared),
                gas_cost_native=gas_cost,
                l1_fee_native=l1_fee,
                block_number=block_number,
            )

        reason = await self._revert_reason(prepared, block_number)
        return ExecutionOutcome(
            status=OutcomeStatus.REVERTED,
            reason=reason,
            tx_hash=mined_hash,
            nonce=nonce,
            gas_cost_native=gas_cost,
            l1_fee_native=l1_fee,
            block_number=block_number,
        )

    def _finish(self, outcome: ExecutionOutcome, prepared: PreparedTransaction) -> None:
        self.state = {
            OutcomeStatus.CONFIRMED: CoordinatorState.CONFIRMED,
            OutcomeStatus.REVERTED: CoordinatorState.REVERTED,
            OutcomeStatus.FAILED: CoordinatorState.FAILED,
            OutcomeStatus.SKIPPED: CoordinatorState.SKIPPED,
        }[outcome.status]
        self.stats[outcome.status.value] += 1

        self.circuit_breaker.record(outcome)
        if self.metrics:
            self.metrics.record_outcome(outcome.status.value, outcome.reason)

        opportunity = prepared.opportunity
        message = (
            f"{outcome.status.value}({outcome.reason}) {opportunity.path_label} "
            f"expected_net={opportunity.net_profit:.6f} | {opportunity.costs.format_log()}"
        )
        if outcome.tx_hash:
            message += (
                f" | tx={outcome.tx_hash} nonce={outcome.nonce} "
                f"realized={outcome.realized_profit:.6f} gas={outcome.gas_cost_native:.8f} "
                f"l1={outcome.l1_fee_native:.8f}"
            )
        if outcome.status == OutcomeStatus.CONFIRMED:
            logger.info(message)
        elif outcome.counts_toward_circuit:
            logger.warning(message)
        elif outcome.reason == "observe_only":
            logger.debug(message)
        else:
            logger.info(message)
