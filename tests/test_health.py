# tests/test_health.py
"""
Health Checker Tests - Component Health Monitoring

This module contains unit tests for HealthChecker: store, chain and oracle
checks and the overall summary.

Files that USE this module:
- pytest (test runner executes these tests)

Files that this module USES:
- xbridge.application.health (HealthChecker)
- tests.conftest (fake chains, store and oracle fixtures)
- unittest.mock (Mock store failures)
- pytest (testing framework)
"""
import asyncio  # Drives async checks inside synchronous tests

import pytest  # Testing framework for writing and running tests

from unittest.mock import Mock  # Failing store

from xbridge.application.health import HealthChecker
from xbridge.domain.errors import StoreUnavailableError
from xbridge.domain.models import Chain, SwapDirection


@pytest.fixture
def checker(store, chains, oracle):
    return HealthChecker(store, chains, oracle)


class TestHealthChecker:
    def test_all_healthy(self, checker):
        overall = asyncio.run(checker.get_overall_health())
        assert overall.is_healthy
        assert overall.message == "All components healthy"
        assert set(overall.details) == {"store", "oracle", "octra_mainnet", "ethereum_sepolia"}

    def test_store_counts(self, checker):
        status = checker.check_store()
        assert status.is_healthy
        assert status.details == {"open": 0, "pending": 0}

    def test_store_failure(self, chains, oracle):
        store = Mock()
        store.ping.side_effect = StoreUnavailableError("database is locked")
        status = HealthChecker(store, chains, oracle).check_store()
        assert not status.is_healthy
        assert "database is locked" in status.message

    def test_chain_failure(self, checker, sepolia, unavailable):
        sepolia.balance_error = unavailable
        status = asyncio.run(checker.check_chain(Chain.SEPOLIA))
        assert not status.is_healthy
        assert status.details["escrow_address"] == sepolia.escrow_address

        overall = asyncio.run(checker.get_overall_health())
        assert not overall.is_healthy
        assert "ethereum_sepolia" in overall.message

    def test_chain_reports_balance(self, checker):
        status = asyncio.run(checker.check_chain(Chain.OCTRA))
        assert status.details["balance"] == 50_000.0

    def test_breaker_makes_oracle_unhealthy(self, checker, oracle):
        oracle.record_swap(SwapDirection.ETH_TO_OCT, 100.0)
        status = checker.check_oracle()
        assert not status.is_healthy
        assert "Circuit breaker active" in status.message

    def test_overall_summarizes_given_results(self, checker, sepolia, unavailable):
        results = asyncio.run(checker.check_all())
        reads = len(sepolia.balance_reads)

        # A later outage is not seen when earlier results are passed in
        sepolia.balance_error = unavailable
        overall = asyncio.run(checker.get_overall_health(results))

        assert overall.is_healthy
        assert len(sepolia.balance_reads) == reads
