# src/xbridge/application/health.py
"""
Health Checker - System Monitoring and Diagnostics

This module checks each moving part of the bridge: the intent store, both
chain RPC endpoints with their escrow balances, and the price oracle's
circuit breaker. Results feed the startup summary and operator tooling.

Files that USE this module:
- xbridge.app (startup health summary)
- tests.test_health (unit tests)

Files that this module USES:
- xbridge.application.oracle (PriceOracle for breaker state and rate)
- xbridge.application.ports (ChainGateway, IntentStore)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from xbridge.application.oracle import PriceOracle
from xbridge.application.ports import ChainGateway, IntentStore
from xbridge.domain.errors import DomainError
from xbridge.domain.models import Chain

logger = logging.getLogger(__name__)


@dataclass
class HealthStatus:
    """Represents the health status of a component."""
    is_healthy: bool
    message: str
    last_check: datetime
    details: Optional[Dict[str, Any]] = None


class HealthChecker:
    """Centralized health checking for all bridge components."""

    def __init__(self, store: IntentStore, chains: Mapping[Chain, ChainGateway], oracle: PriceOracle):
        self.store = store
        self.chains = dict(chains)
        self.oracle = oracle

    def check_store(self) -> HealthStatus:
        """Check that the intent store answers queries."""
        try:
            self.store.ping()
            open_count = len(self.store.list_open())
            pending_count = len(self.store.list_pending())
            return HealthStatus(
                is_healthy=True,
                message=f"Store healthy, {open_count} open / {pending_count} pending intents",
                last_check=datetime.now(timezone.utc),
                details={"open": open_count, "pending": pending_count},
            )
        except DomainError as e:
            logger.error("Store health check failed: %s", e)
            return HealthStatus(
                is_healthy=False,
                message=f"Store error: {e}",
                last_check=datetime.now(timezone.utc),
            )

    async def check_chain(self, chain: Chain) -> HealthStatus:
        """Check a chain by reading its escrow balance (cached)."""
        gateway = self.chains[chain]
        try:
            balance = await gateway.fetch_balance()
            return HealthStatus(
                is_healthy=True,
                message=f"{chain.value} healthy, escrow balance {balance:.8f}",
                last_check=datetime.now(timezone.utc),
                details={"escrow_address": gateway.escrow_address, "balance": balance},
            )
        except DomainError as e:
            logger.error("%s health check failed: %s", chain.value, e)
            return HealthStatus(
                is_healthy=False,
                message=f"{chain.value} error: {e}",
                last_check=datetime.now(timezone.utc),
                details={"escrow_address": gateway.escrow_address},
            )

    def check_oracle(self) -> HealthStatus:
        """The oracle is unhealthy while its circuit breaker holds the price."""
        stats = self.oracle.stats()
        if stats.circuit_breaker_active:
            return HealthStatus(
                is_healthy=False,
                message=f"Circuit breaker active, pricing on TWAP {stats.twap:.8f}",
                last_check=datetime.now(timezone.utc),
                details={"spot": stats.spot, "twap": stats.twap, "ema": stats.ema},
            )
        return HealthStatus(
            is_healthy=True,
            message=f"Oracle healthy, effective rate {stats.effective:.8f} ETH/OCT",
            last_check=datetime.now(timezone.utc),
            details={
                "spot": stats.spot,
                "effective": stats.effective,
                "price_deviation": stats.price_deviation,
            },
        )

    async def check_all(self) -> Dict[str, HealthStatus]:
        """Run every check; keys are component names."""
        results = {"store": self.check_store(), "oracle": self.check_oracle()}
        for chain in self.chains:
            results[chain.value] = await self.check_chain(chain)
        return results

    async def get_overall_health(self, results: Optional[Dict[str, HealthStatus]] = None) -> HealthStatus:
        """
        Summarize all component checks into one status.

        Pass the output of check_all() to summarize it without re-running the checks.
        """
        if results is None:
            results = await self.check_all()
        unhealthy = [name for name, status in results.items() if not status.is_healthy]
        if unhealthy:
            return HealthStatus(
                is_healthy=False,
                message=f"Unhealthy components: {', '.join(unhealthy)}",
                last_check=datetime.now(timezone.utc),
                details={name: status.message for name, status in results.items()},
            )
        return HealthStatus(
            is_healthy=True,
            message="All components healthy",
            last_check=datetime.now(timezone.utc),
            details={name: status.message for name, status in results.items()},
        )
