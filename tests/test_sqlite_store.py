# tests/test_sqlite_store.py
"""
SQLite Store Tests - Intents, Nonces and Price History Persistence

This module contains unit tests for SqliteIntentStore: atomic intent and
nonce insertion, uniqueness of deposits and nonces, compare-and-set updates,
listing and address lookups, and the durable price log.

Files that USE this module:
- pytest (test runner executes these tests)

Files that this module USES:
- xbridge.adapters.persistence.sqlite_store (SqliteIntentStore)
- xbridge.domain.models (Intent, PriceRecord)
- tests.conftest (make_payload, addresses)
- pytest (testing framework)
"""
import pytest  # Testing framework for writing and running tests

from conftest import ETH_USER, OCT_USER, START_MS, make_payload
from xbridge.adapters.persistence import SqliteIntentStore
from xbridge.domain.errors import DuplicateDepositError, ReplayError
from xbridge.domain.models import (
    Intent,
    IntentStatus,
    PriceReason,
    PriceRecord,
    SwapDirection,
)


def make_intent(intent_id="i-1", source_tx="tx-1", nonce="n-1", status=IntentStatus.OPEN, created_at=START_MS):
    payload = make_payload(nonce=nonce)
    return Intent(
        intent_id=intent_id,
        direction=SwapDirection.OCT_TO_ETH,
        source_address=OCT_USER,
        source_tx_hash=source_tx,
        amount_in=payload.amount_in,
        target_address=payload.target_address,
        min_amount_out=payload.min_amount_out,
        quoted_amount_out=0.0995,
        status=status,
        expiry=payload.expiry,
        created_at=created_at,
        payload=payload,
    )


class TestIntents:
    def test_create_and_read_back(self, store):
        intent = make_intent()
        store.create(intent)

        assert store.get_by_id("i-1") == intent
        assert store.get_by_source_tx("tx-1") == intent
        assert store.nonce_exists("n-1")

    def test_unknown_intent(self, store):
        assert store.get_by_id("missing") is None
        assert store.get_by_source_tx("missing") is None

    def test_duplicate_nonce(self, store):
        store.create(make_intent())
        with pytest.raises(ReplayError):
            store.create(make_intent(intent_id="i-2", source_tx="tx-2", nonce="n-1"))
        assert store.get_by_id("i-2") is None

    def test_duplicate_deposit_rolls_back_nonce(self, store):
        store.create(make_intent())
        with pytest.raises(DuplicateDepositError):
            store.create(make_intent(intent_id="i-2", source_tx="tx-1", nonce="n-2"))
        assert not store.nonce_exists("n-2")
        assert store.get_by_id("i-2") is None

    def test_update_with_expected_status(self, store):
        store.create(make_intent())

        assert store.update("i-1", {"status": IntentStatus.FULFILLED, "amount_out": 0.0995},
                            expected_status=IntentStatus.OPEN)
        assert not store.update("i-1", {"status": IntentStatus.EXPIRED},
                                expected_status=IntentStatus.OPEN)

        intent = store.get_by_id("i-1")
        assert intent.status is IntentStatus.FULFILLED
        assert intent.amount_out == 0.0995

    def test_update_rejects_immutable_fields(self, store):
        store.create(make_intent())
        with pytest.raises(ValueError, match="quoted_amount_out"):
            store.update("i-1", {"quoted_amount_out": 1.0})

    def test_update_unknown_intent(self, store):
        assert store.update("missing", {"error": "x"}) is False

    def test_list_by_status_oldest_first(self, store):
        store.create(make_intent("i-2", "tx-2", "n-2", created_at=START_MS + 10))
        store.create(make_intent("i-1", "tx-1", "n-1", created_at=START_MS))
        store.create(make_intent("i-3", "tx-3", "n-3", status=IntentStatus.PENDING))

        assert [i.intent_id for i in store.list_open()] == ["i-1", "i-2"]
        assert [i.intent_id for i in store.list_pending()] == ["i-3"]

    def test_list_by_address(self, store):
        store.create(make_intent())
        assert [i.intent_id for i in store.list_by_address(ETH_USER.upper().replace("0X", "0x"))] == ["i-1"]
        assert [i.intent_id for i in store.list_by_address(OCT_USER)] == ["i-1"]
        assert store.list_by_address("oct" + "9" * 44) == []

    def test_list_recent_newest_first(self, store):
        for n in range(3):
            store.create(make_intent(f"i-{n}", f"tx-{n}", f"n-{n}", created_at=START_MS + n))
        assert [i.intent_id for i in store.list_recent(2)] == ["i-2", "i-1"]

    def test_addresses_stored_verbatim(self, store):
        store.create(make_intent())
        intent = store.get_by_id("i-1")
        assert intent.source_address == OCT_USER
        assert intent.target_address == ETH_USER


class TestNonces:
    def test_insert_nonce_once(self, store):
        store.insert_nonce("solo")
        assert store.nonce_exists("solo")
        with pytest.raises(ReplayError):
            store.insert_nonce("solo")


class TestPriceHistory:
    def test_rate_tail_most_recent_first(self, store):
        store.append_rate(PriceRecord(0.001, START_MS, PriceReason.INITIAL))
        store.append_rate(PriceRecord(0.0011, START_MS + 1, PriceReason.SWAP, 1.0, SwapDirection.ETH_TO_OCT))

        tail = store.rate_tail(10)
        assert [r.reason for r in tail] == [PriceReason.SWAP, PriceReason.INITIAL]
        assert tail[0].direction is SwapDirection.ETH_TO_OCT
        assert tail[1].direction is None
        assert store.rate_tail(1) == tail[:1]

    def test_recent_volume(self, store):
        store.append_rate(PriceRecord(0.001, START_MS, PriceReason.SWAP, 50.0, SwapDirection.OCT_TO_ETH))
        store.append_rate(PriceRecord(0.001, START_MS + 1000, PriceReason.SWAP, 25.0, SwapDirection.OCT_TO_ETH))
        store.append_rate(PriceRecord(0.001, START_MS + 2000, PriceReason.SWAP, 0.5, SwapDirection.ETH_TO_OCT))
        store.append_rate(PriceRecord(0.001, START_MS + 2000, PriceReason.SMOOTHING_UPDATE))

        assert store.recent_volume(1500) == {"OCT_TO_ETH": 25.0, "ETH_TO_OCT": 0.5}
        assert store.recent_volume(10_000, now=START_MS + 2000)["OCT_TO_ETH"] == 75.0

    def test_recent_volume_empty(self, store):
        assert store.recent_volume(1000) == {"OCT_TO_ETH": 0.0, "ETH_TO_OCT": 0.0}


class TestFileDatabase:
    def test_survives_reopen(self, tmp_path):
        path = tmp_path / "db" / "intents.db"
        first = SqliteIntentStore(path)
        first.create(make_intent())
        first.close()

        second = SqliteIntentStore(path)
        try:
            assert second.get_by_id("i-1").status is IntentStatus.OPEN
            assert second.nonce_exists("n-1")
        finally:
            second.close()

    def test_ping(self, store):
        store.ping()
