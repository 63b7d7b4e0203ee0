# src/xbridge/adapters/chains/base.py
"""
Base Chain Client - Shared Plumbing for Chain Adapters

Concrete clients implement a handful of blocking primitives (requests or
web3 calls). This base turns them into the async ChainGateway the settlement
core expects by running each primitive in a worker thread, keeps the
short-lived escrow balance cache used by quotes, and implements the
poll-until-confirmed loop.

Files that USE this module:
- xbridge.adapters.chains.octra (OctraClient extends ChainClient)
- xbridge.adapters.chains.sepolia (SepoliaClient extends ChainClient)
- tests.test_chains (unit tests)

Files that this module USES:
- xbridge.domain.models (Deposit, PayoutResult, ConfirmationState)
- xbridge.domain.errors (ChainUnavailableError)
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from xbridge.domain.errors import ChainUnavailableError
from xbridge.domain.models import Chain, ConfirmationState, Deposit, PayoutResult

log = logging.getLogger(__name__)


class ChainClient(ABC):
    """
    Async chain gateway on top of blocking RPC primitives.

    Args:
        escrow_address: Custodial account deposits go to and payouts come from
        timeout: HTTP timeout in seconds for each RPC call
        balance_cache_seconds: TTL of the cached escrow balance
    """

    chain: Chain

    def __init__(self, escrow_address: str, timeout: int = 10, balance_cache_seconds: int = 15):
        self.escrow_address = escrow_address
        self.timeout = timeout
        self.ttl = timedelta(seconds=balance_cache_seconds)
        self._balance: Optional[float] = None
        self._balance_ts: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Blocking primitives implemented per chain
    # ------------------------------------------------------------------

    @abstractmethod
    def get_deposit(self, reference: str) -> Optional[Deposit]:
        """Look up a transaction; None when the chain does not know it."""
        raise NotImplementedError

    @abstractmethod
    def get_balance(self) -> float:
        """Uncached escrow balance in whole asset units."""
        raise NotImplementedError

    @abstractmethod
    def send_payout(self, to_address: str, amount: float) -> PayoutResult:
        """Sign and broadcast a transfer; does not wait for confirmation."""
        raise NotImplementedError

    @abstractmethod
    def get_tx_state(self, reference: str) -> ConfirmationState:
        raise NotImplementedError

    @abstractmethod
    def is_valid_address(self, address: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def is_valid_tx_hash(self, reference: str) -> bool:
        """Whether reference has this chain's transaction hash format."""
        raise NotImplementedError

    def start_watch(self) -> Dict[str, Any]:
        """Context captured before polling a broadcast transaction."""
        return {}

    def poll_confirmation(self, reference: str, watch: Dict[str, Any]) -> ConfirmationState:
        """One poll of a broadcast transaction."""
        return self.get_tx_state(reference)

    # ------------------------------------------------------------------
    # Async gateway
    # ------------------------------------------------------------------

    def _cache_valid(self) -> bool:
        """
        Check if the cached balance is still valid based on TTL.

        Returns:
            True if a balance is cached and within TTL, False otherwise
        """
        if self._balance is None or self._balance_ts is None:
            return False
        return datetime.now(timezone.utc) - self._balance_ts < self.ttl

    def invalidate_balance(self) -> None:
        self._balance = None
        self._balance_ts = None

    async def fetch_deposit(self, reference: str) -> Optional[Deposit]:
        return await asyncio.to_thread(self.get_deposit, reference)

    async def fetch_balance(self, fresh: bool = False) -> float:
        """
        Escrow balance; fresh=True bypasses (and refreshes) the cache.

        Raises:
            ChainUnavailableError: If the RPC endpoint fails
        """
        if not fresh and self._cache_valid():
            log.debug("Using cached %s balance", self.chain.value)
            return self._balance  # type: ignore[return-value]

        balance = await asyncio.to_thread(self.get_balance)
        self._balance = balance
        self._balance_ts = datetime.now(timezone.utc)
        log.debug("%s escrow balance updated: %.8f", self.chain.value, balance)
        return balance

    async def dispatch_payout(self, to_address: str, amount: float) -> PayoutResult:
        if not self.is_valid_address(to_address):
            return PayoutResult(success=False, error=f"Invalid {self.chain.value} address: {to_address}")
        if amount <= 0:
            return PayoutResult(success=False, error=f"Payout amount must be positive, got {amount}")
        try:
            return await asyncio.to_thread(self.send_payout, to_address, amount)
        finally:
            # Balance moved (or may have)
            self.invalidate_balance()

    async def confirmation_state(self, reference: str) -> ConfirmationState:
        return await asyncio.to_thread(self.get_tx_state, reference)

    async def wait_for_confirmation(
        self, reference: str, timeout: float = 120.0, poll_interval: float = 5.0
    ) -> ConfirmationState:
        """
        Poll a broadcast transaction until it settles or timeout elapses.

        Returns:
            CONFIRMED or FAILED when observed, UNCONFIRMED on timeout
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        try:
            watch = await asyncio.to_thread(self.start_watch)
        except ChainUnavailableError as e:
            log.warning("Could not start watching %s: %s", reference, e)
            watch = {}

        while True:
            try:
                state = await asyncio.to_thread(self.poll_confirmation, reference, watch)
            except ChainUnavailableError as e:
                log.warning("Error checking %s status for %s: %s", self.chain.value, reference, e)
                state = ConfirmationState.UNCONFIRMED

            if state is not ConfirmationState.UNCONFIRMED:
                log.info("%s transaction %s %s", self.chain.value, reference, state.value)
                return state
            if loop.time() + poll_interval > deadline:
                break
            await asyncio.sleep(poll_interval)

        log.warning("Timeout waiting for %s confirmation of %s", self.chain.value, reference)
        return ConfirmationState.UNCONFIRMED
