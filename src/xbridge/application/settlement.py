# src/xbridge/application/settlement.py
"""
Settlement Engine - Intent Lifecycle and Liquidity-Gated Fulfillment

This module turns confirmed deposits into payouts on the other chain:
1. Validate the deposit and its embedded intent envelope
2. Quote the payout through the price oracle
3. Check fresh counter-liquidity and persist the intent as OPEN or PENDING
4. Dispatch OPEN intents in the background, serialized per payout chain
5. Periodically sweep: reconcile unconfirmed payouts, expire stale
   intents, retry PENDING ones once liquidity returns

Status changes go through a compare-and-set on the store so a terminal
intent is never reopened and record_swap runs once per fulfilled intent.
A payout reference is stored as soon as the payout is broadcast, so an
intent carrying one is only ever reconciled, never dispatched again.

Files that USE this module:
- xbridge.app (constructs the engine and runs the sweeper)
- tests.test_settlement (unit and end-to-end tests)

Files that this module USES:
- xbridge.application.oracle (PriceOracle for quotes and swap recording)
- xbridge.application.ports (ChainGateway, IntentStore, Notifier)
- xbridge.domain.envelope (EnvelopeVerifier)
- xbridge.domain.models (Intent, statuses, results)
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Mapping, Optional

from xbridge.application.oracle import DAY_MS, OracleStats, PriceOracle, RateQuote
from xbridge.application.ports import ChainGateway, IntentStore, Notifier
from xbridge.domain.envelope import EnvelopeVerifier
from xbridge.domain.errors import (
    ChainUnavailableError,
    DomainError,
    DuplicateDepositError,
    EnvelopeError,
    IntentNotFoundError,
    InvalidTransitionError,
    ReplayError,
    StoreUnavailableError,
)
from xbridge.domain.models import (
    Chain,
    ConfirmationState,
    Intent,
    IntentStatus,
    PriceRecord,
    SubmitResult,
    SwapDirection,
)
from xbridge.shared.clock import Clock, now_ms

logger = logging.getLogger(__name__)

# Allowed status changes for persisted intents; REJECTED is never stored
TRANSITIONS: dict[IntentStatus, frozenset[IntentStatus]] = {
    IntentStatus.OPEN: frozenset({
        IntentStatus.PENDING,
        IntentStatus.FULFILLED,
        IntentStatus.EXPIRED,
        IntentStatus.FAILED,
    }),
    IntentStatus.PENDING: frozenset({
        IntentStatus.OPEN,
        IntentStatus.EXPIRED,
        IntentStatus.FAILED,
    }),
}


@dataclass(frozen=True)
class EngineConfig:
    """
    Settlement tuning.

    Attributes:
        fee_bps: Swap fee charged on quotes
        liquidity_buffer: Multiplier on the payout required in the escrow (> 1)
        max_dispatch_attempts: Failed dispatches before an intent becomes FAILED
        confirmation_timeout_s: How long to wait for a payout confirmation
        confirmation_poll_s: Poll interval while waiting
        amount_tolerance: Allowed gap between deposit amount and payload amountIn
        sweep_interval_s: Period of the background sweep
    """
    fee_bps: int = 50
    liquidity_buffer: float = 1.1
    max_dispatch_attempts: int = 5
    confirmation_timeout_s: float = 120.0
    confirmation_poll_s: float = 5.0
    amount_tolerance: float = 1e-6
    sweep_interval_s: float = 30.0

    @classmethod
    def from_settings(cls, settings) -> "EngineConfig":
        return cls(
            fee_bps=settings.fee_bps,
            liquidity_buffer=settings.liquidity_buffer,
            max_dispatch_attempts=settings.max_dispatch_attempts,
            confirmation_timeout_s=settings.confirmation_timeout_seconds,
            confirmation_poll_s=settings.confirmation_poll_seconds,
            amount_tolerance=settings.amount_tolerance,
            sweep_interval_s=settings.sweep_interval_seconds,
        )


@dataclass(frozen=True)
class LiquidityCheck:
    sufficient: bool
    available: float
    required: float


@dataclass
class SweepReport:
    """Counters for one sweep cycle."""
    reconciled: int = 0
    expired: int = 0
    retried: int = 0
    fulfilled: int = 0

    @property
    def idle(self) -> bool:
        return not (self.reconciled or self.expired or self.retried)


class _Rejected(Exception):
    """Internal: validation failed before anything was persisted."""
    pass


class SettlementEngine:
    """
    Owns the intent lifecycle.

    Args:
        store: Durable intent store
        oracle: Price oracle (owned by the composition root)
        chains: One gateway per chain
        verifier: Envelope verifier
        config: Settlement tuning
        notifier: Operator alert sink (optional)
        clock: Epoch millisecond clock
    """

    def __init__(
        self,
        store: IntentStore,
        oracle: PriceOracle,
        chains: Mapping[Chain, ChainGateway],
        verifier: Optional[EnvelopeVerifier] = None,
        config: EngineConfig = EngineConfig(),
        notifier: Optional[Notifier] = None,
        clock: Clock = now_ms,
    ):
        missing = [c.value for c in Chain if c not in chains]
        if missing:
            raise ValueError(f"No chain gateway configured for: {', '.join(missing)}")

        self.store = store
        self.oracle = oracle
        self.chains = dict(chains)
        self.verifier = verifier or EnvelopeVerifier()
        self.config = config
        self.notifier = notifier
        self._clock = clock

        # One dispatch at a time per payout chain
        self._locks: dict[Chain, asyncio.Lock] = {chain: asyncio.Lock() for chain in self.chains}
        self._in_flight: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        # intent_id -> broadcast payout whose reference could not be stored yet
        self._unrecorded: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit_deposit(self, direction: SwapDirection | str, source_tx_hash: str) -> SubmitResult:
        """
        Validate a deposit and create its intent.

        Idempotent by source transaction: a repeated reference returns the
        existing intent without re-validating.

        Args:
            direction: Swap direction the caller claims
            source_tx_hash: Deposit transaction reference on the source chain

        Returns:
            SubmitResult with OPEN, PENDING or REJECTED (and the reason)

        Raises:
            ChainUnavailableError: Source chain could not be queried
            StoreUnavailableError: Intent store failed
        """
        try:
            direction = SwapDirection(direction)
        except ValueError:
            return self._reject(f"Unsupported direction: {direction}")

        ref = (source_tx_hash or "").strip()
        if not ref:
            return self._reject("Missing deposit transaction hash")

        source = self.chains[direction.source_chain]
        if not source.is_valid_tx_hash(ref):
            return self._reject(f"Invalid transaction hash format for {source.chain.value}: {ref}")

        existing = self.store.get_by_source_tx(ref)
        if existing is not None:
            logger.info("Deposit %s already submitted as intent %s", ref, existing.intent_id)
            return SubmitResult(existing.intent_id, existing.status, "Intent already submitted")

        try:
            intent, liquidity = await self._validate(direction, ref)
        except _Rejected as e:
            return self._reject(str(e), ref)

        try:
            self.store.create(intent)
        except ReplayError:
            return self._reject("Nonce already used (replay)", ref)
        except DuplicateDepositError:
            # Lost a race with a concurrent submission of the same deposit
            winner = self.store.get_by_source_tx(ref)
            if winner is None:
                raise
            return SubmitResult(winner.intent_id, winner.status, "Intent already submitted")

        logger.info(
            "Intent %s created: %s %.8f -> %.8f to %s (status=%s)",
            intent.intent_id, direction.value, intent.amount_in, intent.quoted_amount_out,
            intent.target_address, intent.status.value,
        )

        if intent.status is IntentStatus.OPEN:
            self._schedule(intent)
            return SubmitResult(intent.intent_id, intent.status, "Intent accepted, payout dispatched")

        return SubmitResult(
            intent.intent_id,
            intent.status,
            f"Insufficient liquidity, intent queued. Required: {liquidity.required:.8f}, "
            f"available: {liquidity.available:.8f}",
        )

    async def _validate(self, direction: SwapDirection, ref: str) -> tuple[Intent, LiquidityCheck]:
        source = self.chains[direction.source_chain]
        payout = self.chains[direction.payout_chain]

        deposit = await source.fetch_deposit(ref)
        if deposit is None:
            raise _Rejected(f"Transaction not found on {source.chain.value}: {ref}")
        if deposit.state is not ConfirmationState.CONFIRMED:
            raise _Rejected(f"Deposit not confirmed (state: {deposit.state.value})")
        if not _same_address(deposit.to_address, source.escrow_address):
            raise _Rejected(
                f"Deposit was not sent to the bridge escrow. "
                f"Expected: {source.escrow_address}, got: {deposit.to_address}"
            )

        try:
            verified = self.verifier.verify(deposit.memo)
        except EnvelopeError as e:
            raise _Rejected(str(e)) from e
        payload = verified.payload

        if payload.direction is not direction:
            raise _Rejected(
                f"Intent direction mismatch. Expected: {direction.value}, got: {payload.direction.value}"
            )
        if not payout.is_valid_address(payload.target_address):
            raise _Rejected(f"Invalid target address for {payout.chain.value}: {payload.target_address}")
        if abs(deposit.amount - payload.amount_in) > self.config.amount_tolerance:
            raise _Rejected(
                f"Amount mismatch. Expected: {payload.amount_in}, got: {deposit.amount}"
            )

        now = self._clock()
        if now > payload.expiry:
            raise _Rejected(f"Intent expired. Expiry: {payload.expiry}, now: {now}")
        if self.store.nonce_exists(payload.nonce):
            raise _Rejected("Nonce already used (replay)")

        quoted = self.oracle.quote(payload.amount_in, direction, self.config.fee_bps)
        if quoted < payload.min_amount_out:
            raise _Rejected(
                f"Output below minimum. Expected at least: {payload.min_amount_out}, quoted: {quoted}"
            )

        liquidity = await self._check_liquidity(payout, quoted)
        intent = Intent(
            intent_id=str(uuid.uuid4()),
            direction=direction,
            source_address=deposit.from_address,
            source_tx_hash=ref,
            amount_in=payload.amount_in,
            target_address=payload.target_address,
            min_amount_out=payload.min_amount_out,
            quoted_amount_out=quoted,
            status=IntentStatus.OPEN if liquidity.sufficient else IntentStatus.PENDING,
            expiry=payload.expiry,
            created_at=now,
            payload=payload,
        )
        return intent, liquidity

    def _reject(self, message: str, ref: Optional[str] = None) -> SubmitResult:
        logger.info("Deposit %s rejected: %s", ref or "-", message)
        return SubmitResult.rejected(message)

    async def _check_liquidity(self, payout: ChainGateway, amount: float) -> LiquidityCheck:
        required = amount * self.config.liquidity_buffer
        try:
            available = await payout.fetch_balance(fresh=True)
        except ChainUnavailableError as e:
            logger.warning("Balance check on %s failed, treating as illiquid: %s", payout.chain.value, e)
            return LiquidityCheck(False, 0.0, required)
        return LiquidityCheck(available >= required, available, required)

    # ------------------------------------------------------------------
    # Fulfillment
    # ------------------------------------------------------------------

    def _schedule(self, intent: Intent) -> None:
        self._in_flight.add(intent.intent_id)
        task = asyncio.create_task(self._run_fulfillment(intent.intent_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_fulfillment(self, intent_id: str) -> None:
        try:
            await self._fulfill(intent_id)
        except DomainError as e:
            logger.error("Fulfillment of intent %s aborted: %s", intent_id, e)
        finally:
            self._in_flight.discard(intent_id)

    async def _fulfill(self, intent_id: str) -> Optional[IntentStatus]:
        """
        One dispatch attempt. Operator alerts raised during the attempt are
        sent after the payout chain's lock is released.

        Returns:
            Status of the intent after the attempt, or None if it vanished
        """
        alerts: list[tuple[str, str]] = []
        try:
            return await self._attempt(intent_id, alerts)
        finally:
            await self._send_alerts(alerts)

    async def _attempt(self, intent_id: str, alerts: list[tuple[str, str]]) -> Optional[IntentStatus]:
        intent = self.store.get_by_id(intent_id)
        if intent is None:
            return None
        payout = self.chains[intent.direction.payout_chain]

        async with self._locks[payout.chain]:
            intent = self.store.get_by_id(intent_id)
            if intent is None or intent.status.is_terminal or intent.payout_tx_hash:
                return intent.status if intent else None
            if intent_id in self._unrecorded:
                return intent.status

            if intent.is_expired(self._clock()):
                self._transition(intent, IntentStatus.EXPIRED, error="Intent expired before fulfillment")
                return IntentStatus.EXPIRED

            amount = intent.quoted_amount_out
            liquidity = await self._check_liquidity(payout, amount)
            if not liquidity.sufficient:
                logger.warning(
                    "Insufficient %s liquidity for intent %s: required %.8f, available %.8f",
                    payout.chain.value, intent_id, liquidity.required, liquidity.available,
                )
                if intent.status is IntentStatus.OPEN:
                    self._transition(intent, IntentStatus.PENDING)
                return IntentStatus.PENDING

            if intent.status is IntentStatus.PENDING:
                if not self._transition(intent, IntentStatus.OPEN):
                    return None
                intent = intent.with_changes(status=IntentStatus.OPEN)

            logger.info("Dispatching payout for intent %s: %.8f to %s", intent_id, amount, intent.target_address)
            try:
                result = await payout.dispatch_payout(intent.target_address, amount)
            except ChainUnavailableError as e:
                return self._record_failure(intent, f"Dispatch failed: {e}", alerts)
            if not result.success or not result.tx_hash:
                return self._record_failure(
                    intent, f"Dispatch failed: {result.error or 'no transaction hash'}", alerts,
                )

            # Money has moved: the reference must be durable before anything else
            if not self._record_payout_ref(intent, result.tx_hash, alerts):
                return intent.status
            intent = intent.with_changes(payout_tx_hash=result.tx_hash)

            try:
                state = await payout.wait_for_confirmation(
                    result.tx_hash, self.config.confirmation_timeout_s, self.config.confirmation_poll_s,
                )
            except ChainUnavailableError as e:
                logger.warning("Confirmation check for %s failed: %s", result.tx_hash, e)
                state = ConfirmationState.UNCONFIRMED

            if state is ConfirmationState.CONFIRMED:
                return self._complete(intent, result.tx_hash)
            if state is ConfirmationState.FAILED:
                return self._record_failure(
                    intent, f"Payout {result.tx_hash} failed on chain", alerts, payout_tx_hash=None,
                )
            return self._park_unconfirmed(intent, result.tx_hash, alerts)

    def _record_payout_ref(self, intent: Intent, tx_hash: str, alerts: list[tuple[str, str]]) -> bool:
        """
        Persist the reference of a broadcast payout before waiting on it.

        Returns:
            False when it could not be stored; the intent is then held back
            from every sweep pass until the reference is written
        """
        try:
            stored = self.store.update(
                intent.intent_id,
                {"payout_tx_hash": tx_hash, "error": None},
                expected_status=intent.status,
            )
        except StoreUnavailableError as e:
            logger.error(
                "Payout %s for intent %s broadcast but its reference could not be stored: %s",
                tx_hash, intent.intent_id, e,
            )
            self._unrecorded[intent.intent_id] = tx_hash
            alerts.append((
                "Payout not recorded",
                f"Intent {intent.intent_id}: payout {tx_hash} of {intent.quoted_amount_out:.8f} "
                f"{intent.direction.to_asset.value} was broadcast but could not be recorded ({e}). "
                f"It will not be re-sent; the sweep keeps trying to record it.",
            ))
            return False

        if not stored:
            logger.error(
                "Intent %s left %s while its payout %s was broadcast",
                intent.intent_id, intent.status.value, tx_hash,
            )
            alerts.append((
                "Payout for changed intent",
                f"Intent {intent.intent_id} left {intent.status.value} while payout {tx_hash} "
                f"was being broadcast. Check it manually.",
            ))
            return False
        return True

    def _complete(self, intent: Intent, tx_hash: str) -> IntentStatus:
        now = self._clock()
        done = self._transition(
            intent,
            IntentStatus.FULFILLED,
            target_tx_hash=tx_hash,
            amount_out=intent.quoted_amount_out,
            fulfilled_at=now,
            payout_tx_hash=None,
            error=None,
        )
        if not done:
            logger.error("Intent %s changed while its payout %s confirmed", intent.intent_id, tx_hash)
            current = self.store.get_by_id(intent.intent_id)
            return current.status if current else intent.status

        self.oracle.record_swap(intent.direction, intent.amount_in)
        logger.info(
            "Intent %s fulfilled: %.8f %s paid in %s",
            intent.intent_id, intent.quoted_amount_out, intent.direction.to_asset.value, tx_hash,
        )
        return IntentStatus.FULFILLED

    def _record_failure(
        self, intent: Intent, error: str, alerts: list[tuple[str, str]], **extra
    ) -> IntentStatus:
        attempts = intent.attempts + 1
        if attempts >= self.config.max_dispatch_attempts:
            logger.error("Intent %s failed after %d attempts: %s", intent.intent_id, attempts, error)
            self._transition(intent, IntentStatus.FAILED, attempts=attempts, error=error, **extra)
            alerts.append((
                "Intent FAILED",
                f"Intent {intent.intent_id} ({intent.direction.value}, {intent.quoted_amount_out:.8f} "
                f"{intent.direction.to_asset.value} to {intent.target_address}) gave up after "
                f"{attempts} attempts. Last error: {error}",
            ))
            return IntentStatus.FAILED

        logger.error(
            "Dispatch attempt %d/%d for intent %s failed: %s",
            attempts, self.config.max_dispatch_attempts, intent.intent_id, error,
        )
        self.store.update(
            intent.intent_id,
            {"attempts": attempts, "error": error, **extra},
            expected_status=intent.status,
        )
        return intent.status

    def _park_unconfirmed(self, intent: Intent, tx_hash: str, alerts: list[tuple[str, str]]) -> IntentStatus:
        logger.warning("Payout %s for intent %s not confirmed in time, awaiting reconciliation", tx_hash, intent.intent_id)
        self.store.update(
            intent.intent_id,
            {"payout_tx_hash": tx_hash, "error": "Payout broadcast but not yet confirmed"},
            expected_status=intent.status,
        )
        alerts.append((
            "Payout unconfirmed",
            f"Intent {intent.intent_id}: payout {tx_hash} of {intent.quoted_amount_out:.8f} "
            f"{intent.direction.to_asset.value} not confirmed within "
            f"{self.config.confirmation_timeout_s:.0f}s. It will not be re-sent automatically.",
        ))
        return intent.status

    def _transition(self, intent: Intent, new_status: IntentStatus, **changes) -> bool:
        """
        Compare-and-set a status change.

        Raises:
            InvalidTransitionError: If the change is not allowed from the current status

        Returns:
            False when the stored intent was no longer in intent.status
        """
        allowed = TRANSITIONS.get(intent.status, frozenset())
        if new_status not in allowed:
            raise InvalidTransitionError(
                f"Intent {intent.intent_id}: {intent.status.value} -> {new_status.value} not allowed"
            )
        changed = self.store.update(
            intent.intent_id,
            {"status": new_status, **changes},
            expected_status=intent.status,
        )
        if changed:
            logger.info("Intent %s: %s -> %s", intent.intent_id, intent.status.value, new_status.value)
        else:
            logger.warning(
                "Intent %s left %s before %s could be applied",
                intent.intent_id, intent.status.value, new_status.value,
            )
        return changed

    async def _send_alerts(self, alerts: list[tuple[str, str]]) -> None:
        if self.notifier is None:
            return
        for title, body in alerts:
            await self.notifier.alert(title, body)

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def sweep(self) -> SweepReport:
        """
        One maintenance cycle.

        Broadcast payouts whose reference never reached the store are written
        first. Pass 0 then reconciles payouts awaiting confirmation, pass 1
        expires intents past their deadline, pass 2 retries the rest with the
        locked-in quote. Intents already being dispatched, or holding a payout
        that is still unrecorded, are skipped.
        """
        report = SweepReport()
        self._record_unrecorded()

        for intent in self.store.list_open():
            if intent.payout_tx_hash and not self._busy(intent):
                if await self._reconcile(intent):
                    report.reconciled += 1

        now = self._clock()
        for intent in self.store.list_open() + self.store.list_pending():
            if self._busy(intent) or intent.payout_tx_hash:
                continue
            if intent.is_expired(now):
                if self._transition(intent, IntentStatus.EXPIRED, error="Intent expired before fulfillment"):
                    report.expired += 1

        for intent in self.store.list_pending() + self.store.list_open():
            if self._busy(intent) or intent.payout_tx_hash:
                continue
            self._in_flight.add(intent.intent_id)
            try:
                report.retried += 1
                status = await self._fulfill(intent.intent_id)
            finally:
                self._in_flight.discard(intent.intent_id)
            if status is IntentStatus.FULFILLED:
                report.fulfilled += 1

        if not report.idle:
            logger.info(
                "Sweep: reconciled=%d expired=%d retried=%d fulfilled=%d",
                report.reconciled, report.expired, report.retried, report.fulfilled,
            )
        return report

    def _busy(self, intent: Intent) -> bool:
        return intent.intent_id in self._in_flight or intent.intent_id in self._unrecorded

    async def _reconcile(self, intent: Intent) -> bool:
        payout = self.chains[intent.direction.payout_chain]
        ref = intent.payout_tx_hash
        try:
            state = await payout.confirmation_state(ref)
        except ChainUnavailableError as e:
            logger.warning("Could not reconcile payout %s for intent %s: %s", ref, intent.intent_id, e)
            return False

        if state is ConfirmationState.CONFIRMED:
            self._complete(intent, ref)
            return True
        if state is ConfirmationState.FAILED:
            alerts: list[tuple[str, str]] = []
            self._record_failure(intent, f"Payout {ref} failed on chain", alerts, payout_tx_hash=None)
            await self._send_alerts(alerts)
            return True
        return False

    def _record_unrecorded(self) -> int:
        """Retry storing payout references that failed to persist after broadcast."""
        stored = 0
        for intent_id, tx_hash in list(self._unrecorded.items()):
            try:
                intent = self.store.get_by_id(intent_id)
                if intent is None or intent.status.is_terminal:
                    logger.warning("Dropping unrecorded payout %s: intent %s is gone or closed", tx_hash, intent_id)
                    del self._unrecorded[intent_id]
                    continue
                if self.store.update(intent_id, {"payout_tx_hash": tx_hash, "error": None},
                                     expected_status=intent.status):
                    logger.info("Recorded payout %s for intent %s", tx_hash, intent_id)
                    del self._unrecorded[intent_id]
                    stored += 1
            except StoreUnavailableError as e:
                logger.error("Payout %s for intent %s still not recorded: %s", tx_hash, intent_id, e)
        return stored

    async def run_sweeper(self, stop: asyncio.Event, interval: Optional[float] = None) -> None:
        """Run sweep() every interval seconds until stop is set."""
        interval = interval or self.config.sweep_interval_s
        logger.info("Sweeper started (interval=%ss)", interval)
        while not stop.is_set():
            try:
                await self.sweep()
            except DomainError as e:
                logger.error("Sweep failed: %s", e)
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Sweeper stopped")

    async def drain(self) -> None:
        """Wait for background fulfillment tasks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_intent(self, intent_id: str) -> Intent:
        intent = self.store.get_by_id(intent_id)
        if intent is None:
            raise IntentNotFoundError(f"Intent not found: {intent_id}")
        return intent

    def intents_for_address(self, address: str, limit: int = 50) -> list[Intent]:
        """Intents where address is the depositor or the payout recipient, newest first."""
        return self.store.list_by_address(address, limit)

    def recent_intents(self, limit: int = 50) -> list[Intent]:
        return self.store.list_recent(limit)

    def current_rate(self) -> RateQuote:
        return self.oracle.current_rate()

    def rate_history(self, limit: int = 100, durable: bool = False) -> list[PriceRecord]:
        """
        Price records, most recent first.

        The in-memory tail holds the last 1000 records; pass durable=True to
        read from the store's full log instead.
        """
        if durable:
            return self.store.rate_tail(limit)
        return self.oracle.history(limit)

    def oracle_stats(self) -> OracleStats:
        return self.oracle.stats()

    def swap_volume(self, window_ms: int = DAY_MS) -> dict[str, float]:
        """
        Fulfilled swap volume by direction, in each direction's input asset.

        Read from the durable price log, so it survives restarts unlike the
        oracle's in-memory 24h counters.
        """
        return self.store.recent_volume(window_ms, now=self._clock())


def _same_address(a: str, b: str) -> bool:
    if a.startswith("0x") and b.startswith("0x"):
        return a.lower() == b.lower()
    return a == b
