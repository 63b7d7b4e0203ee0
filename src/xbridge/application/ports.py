# src/xbridge/application/ports.py
"""
Ports - Interfaces the Settlement Core Depends On

The core never talks to a concrete chain, database or messenger. It depends
on these protocols; adapters implement them and the composition root wires
them together.

Files that USE this module:
- xbridge.application.settlement (ChainGateway, IntentStore, Notifier)
- xbridge.application.quote_service (ChainGateway)
- xbridge.application.health (ChainGateway, IntentStore)
- xbridge.adapters.chains.base (implements ChainGateway)
- xbridge.adapters.persistence.sqlite_store (implements IntentStore)
- xbridge.adapters.telegram.notifier (implements Notifier)

Files that this module USES:
- xbridge.domain.models (domain types flowing through the ports)
"""
from __future__ import annotations  # Enable postponed evaluation of annotations

from typing import Any, Mapping, Optional, Protocol  # Type hints for protocols

from xbridge.domain.models import (
    Chain,
    ConfirmationState,
    Deposit,
    Intent,
    IntentStatus,
    PayoutResult,
    PriceRecord,
)


class ChainGateway(Protocol):
    """
    Capabilities the core needs from one chain.

    Implementations raise ChainUnavailableError on transport failures and
    report a missing transaction as None rather than raising.
    """
    chain: Chain
    escrow_address: str

    async def fetch_deposit(self, reference: str) -> Optional[Deposit]:
        ...

    async def fetch_balance(self, fresh: bool = False) -> float:
        ...

    async def dispatch_payout(self, to_address: str, amount: float) -> PayoutResult:
        ...

    async def wait_for_confirmation(
        self, reference: str, timeout: float, poll_interval: float
    ) -> ConfirmationState:
        ...

    async def confirmation_state(self, reference: str) -> ConfirmationState:
        ...

    def is_valid_address(self, address: str) -> bool:
        ...

    def is_valid_tx_hash(self, reference: str) -> bool:
        ...


class IntentStore(Protocol):
    """
    Durable intent, nonce and price-history storage.

    create() inserts the nonce and the intent atomically, raising
    ReplayError when the nonce is taken and DuplicateDepositError when the
    source transaction is already bound to an intent. update() is a
    compare-and-set on status when expected_status is given and returns
    False if the row was not in that status.
    """

    def create(self, intent: Intent) -> None:
        ...

    def get_by_id(self, intent_id: str) -> Optional[Intent]:
        ...

    def get_by_source_tx(self, source_tx_hash: str) -> Optional[Intent]:
        ...

    def update(
        self,
        intent_id: str,
        changes: Mapping[str, Any],
        expected_status: Optional[IntentStatus] = None,
    ) -> bool:
        ...

    def list_open(self) -> list[Intent]:
        ...

    def list_pending(self) -> list[Intent]:
        ...

    def list_by_address(self, address: str, limit: int = 50) -> list[Intent]:
        ...

    def list_recent(self, limit: int = 50) -> list[Intent]:
        ...

    def nonce_exists(self, nonce: str) -> bool:
        ...

    def insert_nonce(self, nonce: str, intent_id: Optional[str] = None) -> None:
        ...

    def append_rate(self, record: PriceRecord) -> None:
        ...

    def rate_tail(self, limit: int = 100) -> list[PriceRecord]:
        ...

    def recent_volume(self, window_ms: int, now: Optional[int] = None) -> dict[str, float]:
        ...

    def ping(self) -> None:
        ...


class Notifier(Protocol):
    """Operator alert sink."""

    async def alert(self, title: str, body: str) -> None:
        ...
