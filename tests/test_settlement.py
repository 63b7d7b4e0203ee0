# tests/test_settlement.py
"""
Settlement Engine Tests - Intent Lifecycle, Liquidity Gating and Sweeps

This module tests the settlement engine end to end against fake chains and
an in-memory SQLite store: deposit validation and rejection reasons,
idempotent submission, replay protection, per-chain serialized dispatch,
retries with the locked quote, expiry, failure accounting and reconciliation
of payouts that were broadcast but not confirmed in time, including payouts
whose store writes fail after broadcast.

Files that USE this module:
- pytest (test runner executes these tests)

Files that this module USES:
- xbridge.application.settlement (SettlementEngine, TRANSITIONS)
- tests.conftest (fake chains, clock, envelope builders)
- pytest (testing framework)
"""
import asyncio  # Drives the async engine inside synchronous tests
import json  # Hand-crafted envelopes
from dataclasses import replace  # Per-test engine config tweaks

import pytest  # Testing framework for writing and running tests

from conftest import (
    ETH_ESCROW,
    ETH_USER,
    ETH_TX,
    OCT_ESCROW,
    OCT_TX,
    OCT_TX_2,
    OCT_USER,
    START_MS,
    add_deposit,
    make_payload,
)
from xbridge.application.oracle import OracleConfig, PriceOracle
from xbridge.application.settlement import SettlementEngine, TRANSITIONS
from xbridge.domain.envelope import EnvelopeEncoding, EnvelopeVerifier, build_envelope
from xbridge.domain.errors import IntentNotFoundError, InvalidTransitionError, StoreUnavailableError
from xbridge.domain.models import (
    Chain,
    ConfirmationState,
    IntentStatus,
    PayoutResult,
    PriceReason,
    SwapDirection,
)


def run(coro):
    return asyncio.run(coro)


async def submit_and_drain(engine, direction, ref):
    result = await engine.submit_deposit(direction, ref)
    await engine.drain()
    return result


def swap_records(oracle):
    return [r for r in oracle.history(1000) if r.reason is PriceReason.SWAP]


def fail_store_writes(monkeypatch, store, matches, times=1):
    """Make the next `times` store.update calls whose changes satisfy `matches` raise."""
    real_update = store.update
    remaining = [times]

    def update(intent_id, changes, expected_status=None):
        if remaining[0] and matches(changes):
            remaining[0] -= 1
            raise StoreUnavailableError("Intent store write failed: database is locked")
        return real_update(intent_id, changes, expected_status=expected_status)

    monkeypatch.setattr(store, "update", update)


class TestEndToEnd:
    def test_oct_to_eth_fulfilled(self, engine, octra, sepolia, oracle):
        add_deposit(octra, OCT_TX, make_payload())
        expected = oracle.quote(100.0, SwapDirection.OCT_TO_ETH, 50)

        result = run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))

        assert result.status is IntentStatus.OPEN
        assert result.message == "Intent accepted, payout dispatched"
        intent = engine.get_intent(result.intent_id)
        assert intent.status is IntentStatus.FULFILLED
        assert intent.amount_out == pytest.approx(expected)
        assert intent.target_tx_hash == "ethereum_sepolia-payout-1"
        assert intent.fulfilled_at == START_MS
        assert sepolia.dispatched == [(ETH_USER, pytest.approx(expected))]
        assert len(swap_records(oracle)) == 1

    def test_eth_to_oct_fulfilled_from_calldata(self, engine, octra, sepolia, oracle):
        payload = make_payload(SwapDirection.ETH_TO_OCT, amount_in=0.05, nonce="eth-nonce")
        add_deposit(sepolia, ETH_TX, payload, encoding=EnvelopeEncoding.HEX_BASE64)
        expected = oracle.quote(0.05, SwapDirection.ETH_TO_OCT, 50)

        result = run(submit_and_drain(engine, "ETH_TO_OCT", ETH_TX))

        intent = engine.get_intent(result.intent_id)
        assert intent.status is IntentStatus.FULFILLED
        assert intent.amount_out == pytest.approx(expected)
        assert octra.dispatched == [(OCT_USER, pytest.approx(expected))]
        assert sepolia.dispatched == []

    def test_fulfilled_fields_set_together(self, engine, octra):
        add_deposit(octra, OCT_TX, make_payload())
        result = run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))

        intent = engine.get_intent(result.intent_id)
        assert None not in (intent.amount_out, intent.target_tx_hash, intent.fulfilled_at)
        assert intent.payout_tx_hash is None
        assert intent.error is None

    def test_oracle_moves_after_fulfillment(self, engine, octra, oracle):
        before = oracle.prices()["spot"]
        add_deposit(octra, OCT_TX, make_payload(amount_in=5000.0))
        run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))

        assert oracle.prices()["spot"] < before


class TestRejections:
    def test_unsupported_direction(self, engine):
        result = run(engine.submit_deposit("BTC_TO_ETH", OCT_TX))
        assert result.status is IntentStatus.REJECTED
        assert result.intent_id == ""
        assert "Unsupported direction" in result.message

    def test_missing_reference(self, engine):
        result = run(engine.submit_deposit(SwapDirection.OCT_TO_ETH, "  "))
        assert result.status is IntentStatus.REJECTED
        assert result.message == "Missing deposit transaction hash"

    def test_transaction_not_found(self, engine):
        result = run(engine.submit_deposit(SwapDirection.OCT_TO_ETH, OCT_TX))
        assert result.status is IntentStatus.REJECTED
        assert result.message == f"Transaction not found on octra_mainnet: {OCT_TX}"

    @pytest.mark.parametrize("ref", [
        "../balance/" + OCT_ESCROW,
        "0x" + "a1" * 32,
        "a1" * 31,
        "g1" * 32,
    ])
    def test_malformed_octra_reference(self, engine, octra, ref):
        result = run(engine.submit_deposit(SwapDirection.OCT_TO_ETH, ref))

        assert result.status is IntentStatus.REJECTED
        assert result.message == f"Invalid transaction hash format for octra_mainnet: {ref}"
        assert octra.lookups == []

    @pytest.mark.parametrize("ref", [
        "c3" * 32,
        "0x" + "c3" * 31,
        "0x../balance/" + "c3" * 26,
    ])
    def test_malformed_sepolia_reference(self, engine, sepolia, ref):
        result = run(engine.submit_deposit(SwapDirection.ETH_TO_OCT, ref))

        assert result.status is IntentStatus.REJECTED
        assert result.message == f"Invalid transaction hash format for ethereum_sepolia: {ref}"
        assert sepolia.lookups == []

    def test_unconfirmed_deposit(self, engine, octra):
        add_deposit(octra, OCT_TX, make_payload(), state=ConfirmationState.UNCONFIRMED)
        result = run(engine.submit_deposit(SwapDirection.OCT_TO_ETH, OCT_TX))
        assert result.status is IntentStatus.REJECTED
        assert "Deposit not confirmed" in result.message

    def test_wrong_escrow(self, engine, octra):
        add_deposit(octra, OCT_TX, make_payload(), to_address=OCT_USER)
        result = run(engine.submit_deposit(SwapDirection.OCT_TO_ETH, OCT_TX))
        assert result.status is IntentStatus.REJECTED
        assert result.message.startswith("Deposit was not sent to the bridge escrow")
        assert OCT_ESCROW in result.message

    def test_evm_escrow_compared_case_insensitively(self, engine, sepolia):
        payload = make_payload(SwapDirection.ETH_TO_OCT, amount_in=0.01)
        add_deposit(sepolia, ETH_TX, payload, to_address=ETH_ESCROW.upper().replace("0X", "0x"))
        result = run(submit_and_drain(engine, SwapDirection.ETH_TO_OCT, ETH_TX))
        assert result.status is IntentStatus.OPEN

    def test_missing_envelope(self, engine, octra):
        add_deposit(octra, OCT_TX, make_payload(), memo="")
        result = run(engine.submit_deposit(SwapDirection.OCT_TO_ETH, OCT_TX))
        assert result.status is IntentStatus.REJECTED
        assert result.message == "No intent payload in transaction"

    def test_tampered_envelope(self, engine, octra):
        envelope = json.loads(build_envelope(make_payload(), START_MS, EnvelopeEncoding.JSON))
        envelope["payload"]["targetAddress"] = "0x" + "66" * 20
        add_deposit(octra, OCT_TX, make_payload(), memo=json.dumps(envelope))

        result = run(engine.submit_deposit(SwapDirection.OCT_TO_ETH, OCT_TX))

        assert result.status is IntentStatus.REJECTED
        assert result.message == "Payload hash mismatch - data may have been tampered"

    @pytest.mark.parametrize("field,value", [
        ("hash", "é" * 64),
        ("amountIn", float("nan")),
    ])
    def test_malformed_envelope_rejected_not_raised(self, engine, octra, field, value):
        envelope = json.loads(build_envelope(make_payload(), START_MS, EnvelopeEncoding.JSON))
        if field == "hash":
            envelope["hash"] = value
        else:
            envelope["payload"][field] = value
        add_deposit(octra, OCT_TX, make_payload(), memo=json.dumps(envelope, ensure_ascii=False))

        result = run(engine.submit_deposit(SwapDirection.OCT_TO_ETH, OCT_TX))

        assert result.status is IntentStatus.REJECTED
        assert "64 hex characters" in result.message or "non-finite" in result.message

    def test_direction_mismatch(self, engine, sepolia):
        # An OCT->ETH intent embedded in a Sepolia deposit
        add_deposit(sepolia, ETH_TX, make_payload(SwapDirection.OCT_TO_ETH))
        result = run(engine.submit_deposit(SwapDirection.ETH_TO_OCT, ETH_TX))
        assert result.status is IntentStatus.REJECTED
        assert result.message == "Intent direction mismatch. Expected: ETH_TO_OCT, got: OCT_TO_ETH"

    def test_invalid_target_address(self, engine, octra):
        add_deposit(octra, OCT_TX, make_payload(target_address="0x1234"))
        result = run(engine.submit_deposit(SwapDirection.OCT_TO_ETH, OCT_TX))
        assert result.status is IntentStatus.REJECTED
        assert result.message == "Invalid target address for ethereum_sepolia: 0x1234"

    def test_amount_mismatch(self, engine, octra):
        add_deposit(octra, OCT_TX, make_payload(amount_in=100.0), amount=99.0)
        result = run(engine.submit_deposit(SwapDirection.OCT_TO_ETH, OCT_TX))
        assert result.status is IntentStatus.REJECTED
        assert result.message == "Amount mismatch. Expected: 100.0, got: 99.0"

    def test_amount_within_tolerance_accepted(self, engine, octra):
        add_deposit(octra, OCT_TX, make_payload(amount_in=100.0), amount=100.0000001)
        result = run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))
        assert result.status is IntentStatus.OPEN

    def test_expired_intent(self, engine, octra, clock):
        add_deposit(octra, OCT_TX, make_payload(expiry=START_MS - 1))
        result = run(engine.submit_deposit(SwapDirection.OCT_TO_ETH, OCT_TX))
        assert result.status is IntentStatus.REJECTED
        assert result.message.startswith("Intent expired")

    def test_output_below_minimum(self, engine, octra):
        add_deposit(octra, OCT_TX, make_payload(min_amount_out=1.0))
        result = run(engine.submit_deposit(SwapDirection.OCT_TO_ETH, OCT_TX))
        assert result.status is IntentStatus.REJECTED
        assert result.message.startswith("Output below minimum")

    def test_rejection_persists_nothing(self, engine, octra, store):
        add_deposit(octra, OCT_TX, make_payload(min_amount_out=1.0))
        run(engine.submit_deposit(SwapDirection.OCT_TO_ETH, OCT_TX))
        assert store.get_by_source_tx(OCT_TX) is None
        assert not store.nonce_exists("nonce-1")

    def test_legacy_envelope_rejected_when_disabled(self, store, oracle, chains, octra, clock):
        strict = SettlementEngine(
            store, oracle, chains, verifier=EnvelopeVerifier(allow_legacy=False), clock=clock,
        )
        add_deposit(octra, OCT_TX, make_payload(), memo=json.dumps(make_payload().to_json()))

        result = run(strict.submit_deposit(SwapDirection.OCT_TO_ETH, OCT_TX))

        assert result.status is IntentStatus.REJECTED
        assert "no payload hash" in result.message

    def test_legacy_envelope_accepted_by_default(self, engine, octra):
        add_deposit(octra, OCT_TX, make_payload(), memo=json.dumps(make_payload().to_json()))
        result = run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))
        assert result.status is IntentStatus.OPEN


class TestIdempotencyAndReplay:
    def test_same_deposit_twice_returns_existing_intent(self, engine, octra, sepolia):
        add_deposit(octra, OCT_TX, make_payload())

        async def scenario():
            first = await engine.submit_deposit(SwapDirection.OCT_TO_ETH, OCT_TX)
            await engine.drain()
            second = await engine.submit_deposit(SwapDirection.OCT_TO_ETH, OCT_TX)
            await engine.drain()
            return first, second

        first, second = run(scenario())

        assert second.intent_id == first.intent_id
        assert second.status is IntentStatus.FULFILLED
        assert second.message == "Intent already submitted"
        assert len(sepolia.dispatched) == 1

    def test_nonce_reuse_rejected(self, engine, octra, sepolia):
        add_deposit(octra, OCT_TX, make_payload(nonce="shared"))
        add_deposit(octra, OCT_TX_2, make_payload(nonce="shared"))

        async def scenario():
            first = await engine.submit_deposit(SwapDirection.OCT_TO_ETH, OCT_TX)
            second = await engine.submit_deposit(SwapDirection.OCT_TO_ETH, OCT_TX_2)
            await engine.drain()
            return first, second

        first, second = run(scenario())

        assert first.status is IntentStatus.OPEN
        assert second.status is IntentStatus.REJECTED
        assert second.message == "Nonce already used (replay)"
        assert len(sepolia.dispatched) == 1


class TestLiquidity:
    def test_insufficient_liquidity_queues_pending(self, engine, octra, sepolia):
        sepolia.balance = 0.01
        add_deposit(octra, OCT_TX, make_payload())

        result = run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))

        assert result.status is IntentStatus.PENDING
        assert result.message.startswith("Insufficient liquidity, intent queued")
        assert engine.get_intent(result.intent_id).status is IntentStatus.PENDING
        assert sepolia.dispatched == []

    def test_liquidity_check_is_fresh(self, engine, octra, sepolia):
        add_deposit(octra, OCT_TX, make_payload())
        run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))
        assert sepolia.balance_reads
        assert all(sepolia.balance_reads)

    def test_balance_check_failure_queues_pending(self, engine, octra, sepolia, unavailable):
        sepolia.balance_error = unavailable
        add_deposit(octra, OCT_TX, make_payload())

        result = run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))

        assert result.status is IntentStatus.PENDING
        assert sepolia.dispatched == []

    def test_pending_retried_at_locked_quote(self, engine, octra, sepolia, oracle):
        sepolia.balance = 0.01
        add_deposit(octra, OCT_TX, make_payload())
        result = run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))
        locked = engine.get_intent(result.intent_id).quoted_amount_out

        # Price moves while the intent waits
        oracle.record_swap(SwapDirection.OCT_TO_ETH, 20_000.0)
        assert oracle.quote(100.0, SwapDirection.OCT_TO_ETH, 50) != pytest.approx(locked)

        sepolia.balance = 10.0
        report = run(engine.sweep())

        intent = engine.get_intent(result.intent_id)
        assert intent.status is IntentStatus.FULFILLED
        assert intent.amount_out == pytest.approx(locked)
        assert sepolia.dispatched == [(ETH_USER, pytest.approx(locked))]
        assert report.retried == 1
        assert report.fulfilled == 1

    def test_pending_stays_pending_while_illiquid(self, engine, octra, sepolia):
        sepolia.balance = 0.01
        add_deposit(octra, OCT_TX, make_payload())
        result = run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))

        run(engine.sweep())

        assert engine.get_intent(result.intent_id).status is IntentStatus.PENDING
        assert sepolia.dispatched == []

    def test_dispatches_serialized_per_payout_chain(self, engine, octra, sepolia):
        # Enough escrow for one 100 OCT payout (with buffer), not two
        sepolia.balance = 0.15
        add_deposit(octra, OCT_TX, make_payload(nonce="a"))
        add_deposit(octra, OCT_TX_2, make_payload(nonce="b"))

        async def scenario():
            first = await engine.submit_deposit(SwapDirection.OCT_TO_ETH, OCT_TX)
            second = await engine.submit_deposit(SwapDirection.OCT_TO_ETH, OCT_TX_2)
            await engine.drain()
            return first, second

        first, second = run(scenario())

        statuses = sorted(engine.get_intent(r.intent_id).status.value for r in (first, second))
        assert statuses == ["FULFILLED", "PENDING"]
        assert len(sepolia.dispatched) == 1
        assert sepolia.balance >= 0


class TestFailures:
    def test_failed_dispatch_counts_attempt(self, engine, octra, sepolia):
        sepolia.payout_results = [PayoutResult(success=False, error="nonce too low")]
        add_deposit(octra, OCT_TX, make_payload())

        result = run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))

        intent = engine.get_intent(result.intent_id)
        assert intent.status is IntentStatus.OPEN
        assert intent.attempts == 1
        assert "nonce too low" in intent.error

    def test_gives_up_after_max_attempts(self, engine, octra, sepolia, notifier):
        sepolia.payout_results = [PayoutResult(success=False, error="boom")] * 3
        add_deposit(octra, OCT_TX, make_payload())

        async def scenario():
            result = await submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX)
            await engine.sweep()
            await engine.sweep()
            return result

        result = run(scenario())

        intent = engine.get_intent(result.intent_id)
        assert intent.status is IntentStatus.FAILED
        assert intent.attempts == 3
        assert len(sepolia.dispatched) == 3
        assert notifier.alerts[-1][0] == "Intent FAILED"

    def test_failed_intent_not_retried(self, engine, octra, sepolia):
        sepolia.payout_results = [PayoutResult(success=False, error="boom")] * 3
        add_deposit(octra, OCT_TX, make_payload())

        async def scenario():
            await submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX)
            for _ in range(4):
                await engine.sweep()

        run(scenario())
        assert len(sepolia.dispatched) == 3

    def test_payout_failed_on_chain(self, engine, octra, sepolia, oracle):
        sepolia.confirmation = ConfirmationState.FAILED
        add_deposit(octra, OCT_TX, make_payload())

        result = run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))

        intent = engine.get_intent(result.intent_id)
        assert intent.status is IntentStatus.OPEN
        assert intent.attempts == 1
        assert swap_records(oracle) == []


class TestUnconfirmedPayouts:
    def test_unconfirmed_payout_parked(self, engine, octra, sepolia, notifier):
        sepolia.confirmation = ConfirmationState.UNCONFIRMED
        add_deposit(octra, OCT_TX, make_payload())

        result = run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))

        intent = engine.get_intent(result.intent_id)
        assert intent.status is IntentStatus.OPEN
        assert intent.payout_tx_hash == "ethereum_sepolia-payout-1"
        assert notifier.alerts[-1][0] == "Payout unconfirmed"

    def test_unconfirmed_payout_never_redispatched_or_expired(self, engine, octra, sepolia, clock):
        sepolia.confirmation = ConfirmationState.UNCONFIRMED
        add_deposit(octra, OCT_TX, make_payload())
        result = run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))

        clock.advance(2 * 3_600_000)
        run(engine.sweep())

        intent = engine.get_intent(result.intent_id)
        assert intent.status is IntentStatus.OPEN
        assert len(sepolia.dispatched) == 1

    def test_reconciled_when_confirmed_later(self, engine, octra, sepolia, oracle):
        sepolia.confirmation = ConfirmationState.UNCONFIRMED
        add_deposit(octra, OCT_TX, make_payload())
        result = run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))

        sepolia.tx_states["ethereum_sepolia-payout-1"] = ConfirmationState.CONFIRMED
        report = run(engine.sweep())

        intent = engine.get_intent(result.intent_id)
        assert report.reconciled == 1
        assert intent.status is IntentStatus.FULFILLED
        assert intent.target_tx_hash == "ethereum_sepolia-payout-1"
        assert intent.payout_tx_hash is None
        assert len(swap_records(oracle)) == 1
        assert len(sepolia.dispatched) == 1

    def test_reconciled_failure_allows_redispatch(self, engine, octra, sepolia):
        sepolia.confirmation = ConfirmationState.UNCONFIRMED
        add_deposit(octra, OCT_TX, make_payload())
        result = run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))

        sepolia.tx_states["ethereum_sepolia-payout-1"] = ConfirmationState.FAILED
        sepolia.confirmation = ConfirmationState.CONFIRMED
        run(engine.sweep())

        intent = engine.get_intent(result.intent_id)
        assert intent.status is IntentStatus.FULFILLED
        assert intent.attempts == 1
        assert len(sepolia.dispatched) == 2

    def test_payout_reference_stored_before_confirmation(self, engine, octra, sepolia, store):
        seen = []

        async def wait_for_confirmation(reference, timeout=120.0, poll_interval=5.0):
            seen.append(store.get_by_source_tx(OCT_TX).payout_tx_hash)
            return ConfirmationState.CONFIRMED

        sepolia.wait_for_confirmation = wait_for_confirmation
        add_deposit(octra, OCT_TX, make_payload())

        run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))

        assert seen == ["ethereum_sepolia-payout-1"]


class TestStoreFailureAfterBroadcast:
    def test_failed_fulfilled_write_is_reconciled_not_resent(
        self, engine, octra, sepolia, oracle, store, monkeypatch
    ):
        fail_store_writes(monkeypatch, store, lambda changes: changes.get("status") is IntentStatus.FULFILLED)
        add_deposit(octra, OCT_TX, make_payload())

        async def scenario():
            result = await submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX)
            await engine.sweep()
            await engine.sweep()
            return result

        result = run(scenario())

        intent = engine.get_intent(result.intent_id)
        assert intent.status is IntentStatus.OPEN
        assert intent.payout_tx_hash == "ethereum_sepolia-payout-1"
        assert len(sepolia.dispatched) == 1

        sepolia.tx_states["ethereum_sepolia-payout-1"] = ConfirmationState.CONFIRMED
        report = run(engine.sweep())

        intent = engine.get_intent(result.intent_id)
        assert report.reconciled == 1
        assert intent.status is IntentStatus.FULFILLED
        assert intent.target_tx_hash == "ethereum_sepolia-payout-1"
        assert len(sepolia.dispatched) == 1
        assert len(swap_records(oracle)) == 1

    def test_unrecorded_payout_alerts_and_is_never_resent(
        self, engine, octra, sepolia, oracle, store, notifier, monkeypatch
    ):
        fail_store_writes(monkeypatch, store, lambda changes: bool(changes.get("payout_tx_hash")), times=2)
        add_deposit(octra, OCT_TX, make_payload())

        async def scenario():
            result = await submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX)
            # Second failure: the sweep cannot record it either
            await engine.sweep()
            return result

        result = run(scenario())

        intent = engine.get_intent(result.intent_id)
        assert intent.status is IntentStatus.OPEN
        assert intent.payout_tx_hash is None
        assert len(sepolia.dispatched) == 1
        assert [title for title, _ in notifier.alerts] == ["Payout not recorded"]
        assert "ethereum_sepolia-payout-1" in notifier.alerts[0][1]

        sepolia.tx_states["ethereum_sepolia-payout-1"] = ConfirmationState.CONFIRMED
        report = run(engine.sweep())

        intent = engine.get_intent(result.intent_id)
        assert report.reconciled == 1
        assert intent.status is IntentStatus.FULFILLED
        assert len(sepolia.dispatched) == 1
        assert len(swap_records(oracle)) == 1
        assert engine._unrecorded == {}

    def test_unrecorded_payout_not_expired(self, engine, octra, sepolia, store, clock, monkeypatch):
        fail_store_writes(monkeypatch, store, lambda changes: bool(changes.get("payout_tx_hash")), times=2)
        add_deposit(octra, OCT_TX, make_payload())
        result = run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))

        clock.advance(2 * 3_600_000)
        report = run(engine.sweep())

        assert report.expired == 0
        assert engine.get_intent(result.intent_id).status is IntentStatus.OPEN
        assert len(sepolia.dispatched) == 1


class TestAlerts:
    @pytest.mark.parametrize("confirmation,title", [
        (ConfirmationState.UNCONFIRMED, "Payout unconfirmed"),
        (ConfirmationState.FAILED, "Intent FAILED"),
    ])
    def test_alerts_sent_after_payout_lock_released(self, engine, octra, sepolia, engine_config, confirmation, title):
        sent = []

        class LockWatchingNotifier:
            async def alert(self, alert_title, body):
                sent.append((alert_title, engine._locks[Chain.SEPOLIA].locked()))

        engine.notifier = LockWatchingNotifier()
        engine.config = replace(engine_config, max_dispatch_attempts=1)
        sepolia.confirmation = confirmation
        add_deposit(octra, OCT_TX, make_payload())

        run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))

        assert sent == [(title, False)]


class TestExpiryAndTransitions:
    def test_sweep_expires_pending(self, engine, octra, sepolia, clock):
        sepolia.balance = 0.01
        add_deposit(octra, OCT_TX, make_payload())
        result = run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))

        clock.advance(3_600_001)
        sepolia.balance = 10.0
        report = run(engine.sweep())

        assert report.expired == 1
        assert engine.get_intent(result.intent_id).status is IntentStatus.EXPIRED
        assert sepolia.dispatched == []

    def test_terminal_intent_untouched_by_sweep(self, engine, octra, clock):
        add_deposit(octra, OCT_TX, make_payload())
        result = run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))

        clock.advance(10 * 3_600_000)
        report = run(engine.sweep())

        assert report.idle
        assert engine.get_intent(result.intent_id).status is IntentStatus.FULFILLED

    def test_transition_out_of_terminal_raises(self, engine, octra):
        add_deposit(octra, OCT_TX, make_payload())
        result = run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))
        intent = engine.get_intent(result.intent_id)

        with pytest.raises(InvalidTransitionError):
            engine._transition(intent, IntentStatus.OPEN)

    def test_terminal_states_have_no_transitions(self):
        for status in IntentStatus:
            if status.is_terminal:
                assert status not in TRANSITIONS

    def test_stale_transition_loses_compare_and_set(self, engine, octra, sepolia, store):
        sepolia.balance = 0.01
        add_deposit(octra, OCT_TX, make_payload())
        result = run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))
        stale = engine.get_intent(result.intent_id)

        store.update(stale.intent_id, {"status": IntentStatus.EXPIRED})

        assert engine._transition(stale, IntentStatus.OPEN) is False
        assert engine.get_intent(stale.intent_id).status is IntentStatus.EXPIRED


class TestQueriesAndLifecycle:
    def test_get_intent_unknown(self, engine):
        with pytest.raises(IntentNotFoundError):
            engine.get_intent("nope")

    def test_intents_for_address_case_insensitive(self, engine, octra):
        add_deposit(octra, OCT_TX, make_payload())
        run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))

        assert len(engine.intents_for_address(ETH_USER.lower())) == 1
        assert len(engine.intents_for_address(OCT_USER)) == 1
        assert engine.intents_for_address("0x" + "00" * 20) == []

    def test_recent_intents_newest_first(self, engine, octra, clock):
        add_deposit(octra, OCT_TX, make_payload(nonce="a"))
        add_deposit(octra, OCT_TX_2, make_payload(nonce="b"))

        async def scenario():
            await submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX)
            clock.advance(1000)
            await submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX_2)

        run(scenario())
        assert [i.source_tx_hash for i in engine.recent_intents()] == [OCT_TX_2, OCT_TX]

    def test_rate_history_durable_matches_memory(self, engine, octra):
        add_deposit(octra, OCT_TX, make_payload())
        run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))

        memory = engine.rate_history(10)
        durable = engine.rate_history(10, durable=True)
        assert [r.reason for r in memory] == [r.reason for r in durable]
        assert memory[0].reason is PriceReason.SWAP
        assert memory[-1].reason is PriceReason.INITIAL

    def test_swap_volume_survives_restart(self, engine, octra, store, chains, clock):
        add_deposit(octra, OCT_TX, make_payload())
        run(submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX))

        restarted = SettlementEngine(
            store, PriceOracle(OracleConfig(), history_log=store, clock=clock), chains, clock=clock,
        )

        assert restarted.oracle_stats().volume_24h["total_oct"] == 0.0
        assert restarted.swap_volume() == {"OCT_TO_ETH": 100.0, "ETH_TO_OCT": 0.0}

        clock.advance(24 * 3_600_000 + 1)
        assert restarted.swap_volume()["OCT_TO_ETH"] == 0.0

    def test_current_rate_and_stats(self, engine):
        assert engine.current_rate().rate == pytest.approx(0.001)
        assert engine.oracle_stats().reserve_oct == pytest.approx(1_000_000.0)

    def test_missing_chain_gateway(self, store, oracle, octra):
        with pytest.raises(ValueError, match="ethereum_sepolia"):
            SettlementEngine(store, oracle, {Chain.OCTRA: octra})

    def test_run_sweeper_stops(self, engine, octra, sepolia):
        sepolia.balance = 0.01
        add_deposit(octra, OCT_TX, make_payload())

        async def scenario():
            result = await submit_and_drain(engine, SwapDirection.OCT_TO_ETH, OCT_TX)
            sepolia.balance = 10.0
            stop = asyncio.Event()
            asyncio.get_running_loop().call_later(0.2, stop.set)
            await engine.run_sweeper(stop, interval=0.05)
            return result

        result = run(scenario())
        assert engine.get_intent(result.intent_id).status is IntentStatus.FULFILLED
