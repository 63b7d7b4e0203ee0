# src/xbridge/domain/models.py
"""
Domain Models - Pure Business Objects

This module contains domain models representing core settlement concepts:
- Swap directions, assets and intent statuses
- Swap intent payloads and persisted intents
- Deposits, payouts and confirmation states reported by chains
- Oracle price records and virtual reserves

Files that USE this module:
- xbridge.application.* (all services use domain models)
- xbridge.adapters.* (adapters create and use domain models)
- tests.* (tests use domain models for test data)

Files that this module USES:
- None (pure domain layer, no external dependencies)
"""

from __future__ import annotations  # Enable postponed evaluation of annotations

from dataclasses import dataclass, field, replace  # Data classes for value objects
from enum import Enum  # Closed sets of states and identifiers
from typing import Any, Optional  # Type hints


class Asset(str, Enum):
    """Assets settled by the bridge."""
    OCT = "OCT"
    ETH = "ETH"


class Chain(str, Enum):
    """Chain identifiers as they appear in intent payloads."""
    OCTRA = "octra_mainnet"
    SEPOLIA = "ethereum_sepolia"


ASSET_CHAIN = {
    Asset.OCT: Chain.OCTRA,
    Asset.ETH: Chain.SEPOLIA,
}


class SwapDirection(str, Enum):
    """Direction of a swap; immutable for the life of an intent."""
    OCT_TO_ETH = "OCT_TO_ETH"
    ETH_TO_OCT = "ETH_TO_OCT"

    @property
    def from_asset(self) -> Asset:
        return Asset.OCT if self is SwapDirection.OCT_TO_ETH else Asset.ETH

    @property
    def to_asset(self) -> Asset:
        return Asset.ETH if self is SwapDirection.OCT_TO_ETH else Asset.OCT

    @property
    def source_chain(self) -> Chain:
        """Chain the user deposits on."""
        return ASSET_CHAIN[self.from_asset]

    @property
    def payout_chain(self) -> Chain:
        """Chain the bridge pays out on."""
        return ASSET_CHAIN[self.to_asset]

    @classmethod
    def from_assets(cls, from_asset: Asset | str, to_asset: Asset | str) -> "SwapDirection":
        """
        Resolve a direction from an asset pair.

        Raises:
            ValueError: If the pair is not OCT/ETH in either order
        """
        pair = (Asset(from_asset), Asset(to_asset))
        if pair == (Asset.OCT, Asset.ETH):
            return cls.OCT_TO_ETH
        if pair == (Asset.ETH, Asset.OCT):
            return cls.ETH_TO_OCT
        raise ValueError(f"Unsupported asset pair: {pair[0].value} -> {pair[1].value}")


class IntentStatus(str, Enum):
    """
    Intent lifecycle states.

    OPEN: validated, liquidity confirmed, payout dispatch in flight
    PENDING: validated, waiting for counter-liquidity
    FULFILLED: payout confirmed (terminal)
    EXPIRED: deadline passed before fulfillment (terminal)
    REJECTED: failed validation; reported to callers, never stored
    FAILED: payout given up after repeated dispatch failures (terminal)
    """
    OPEN = "OPEN"
    PENDING = "PENDING"
    FULFILLED = "FULFILLED"
    EXPIRED = "EXPIRED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    IntentStatus.FULFILLED,
    IntentStatus.EXPIRED,
    IntentStatus.REJECTED,
    IntentStatus.FAILED,
})


class ConfirmationState(str, Enum):
    """Outcome of watching a broadcast transaction."""
    CONFIRMED = "confirmed"
    FAILED = "failed"
    UNCONFIRMED = "unconfirmed"  # not observed yet; not proof of failure


class PriceReason(str, Enum):
    """Why the oracle logged a price."""
    INITIAL = "initial"
    SWAP = "swap"
    SMOOTHING_UPDATE = "smoothing_update"
    CIRCUIT_BREAKER = "circuit_breaker"


@dataclass(frozen=True)
class SwapIntentPayload:
    """
    Authenticated swap intent carried inside a deposit memo or calldata.

    Attributes:
        version: Payload schema version (always 1)
        intent_type: Always "swap"
        from_asset: Asset deposited by the user
        to_asset: Asset paid out by the bridge
        amount_in: Deposit amount the user committed to
        min_amount_out: Slippage floor for the payout
        target_chain: Chain identifier of the payout
        target_address: Payout recipient
        expiry: Deadline in epoch milliseconds
        nonce: Single-use token that prevents replay
    """
    version: int
    intent_type: str
    from_asset: Asset
    to_asset: Asset
    amount_in: float
    min_amount_out: float
    target_chain: Chain
    target_address: str
    expiry: int
    nonce: str

    @property
    def direction(self) -> SwapDirection:
        return SwapDirection.from_assets(self.from_asset, self.to_asset)

    def to_json(self) -> dict[str, Any]:
        """Wire form, keys in the order signing clients hash them."""
        return {
            "version": self.version,
            "intentType": self.intent_type,
            "fromAsset": self.from_asset.value,
            "toAsset": self.to_asset.value,
            "amountIn": self.amount_in,
            "minAmountOut": self.min_amount_out,
            "targetChain": self.target_chain.value,
            "targetAddress": self.target_address,
            "expiry": self.expiry,
            "nonce": self.nonce,
        }

    @staticmethod
    def from_json(data: dict[str, Any]) -> "SwapIntentPayload":
        """Rebuild a payload previously produced by to_json (trusted input)."""
        return SwapIntentPayload(
            version=int(data["version"]),
            intent_type=str(data["intentType"]),
            from_asset=Asset(data["fromAsset"]),
            to_asset=Asset(data["toAsset"]),
            amount_in=float(data["amountIn"]),
            min_amount_out=float(data["minAmountOut"]),
            target_chain=Chain(data["targetChain"]),
            target_address=str(data["targetAddress"]),
            expiry=int(data["expiry"]),
            nonce=str(data["nonce"]),
        )


@dataclass(frozen=True)
class Intent:
    """
    A persisted swap intent.

    amount_out, target_tx_hash and fulfilled_at are only ever set together,
    on the transition into FULFILLED. quoted_amount_out is the payout locked
    in at acceptance; retries pay exactly this amount.
    """
    intent_id: str
    direction: SwapDirection
    source_address: str
    source_tx_hash: str
    amount_in: float
    target_address: str
    min_amount_out: float
    quoted_amount_out: float
    status: IntentStatus
    expiry: int
    created_at: int
    payload: SwapIntentPayload
    target_tx_hash: Optional[str] = None
    amount_out: Optional[float] = None
    fulfilled_at: Optional[int] = None
    error: Optional[str] = None
    attempts: int = 0
    payout_tx_hash: Optional[str] = None

    def with_changes(self, **changes: Any) -> "Intent":
        return replace(self, **changes)

    def is_expired(self, now: int) -> bool:
        return now > self.expiry


@dataclass(frozen=True)
class Deposit:
    """
    A deposit transaction as reported by a source chain.

    Attributes:
        tx_hash: Transaction reference
        from_address: Sender
        to_address: Recipient (must be the bridge escrow)
        amount: Amount in whole asset units
        memo: Free-form memo (Octra) or calldata hex (EVM) carrying the envelope
        state: Confirmation state of the deposit
    """
    tx_hash: str
    from_address: str
    to_address: str
    amount: float
    memo: Optional[str]
    state: ConfirmationState


@dataclass(frozen=True)
class PayoutResult:
    """Result of broadcasting a payout transaction."""
    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class SubmitResult:
    """Answer to a deposit submission; intent_id is empty for rejections."""
    intent_id: str
    status: IntentStatus
    message: str

    @classmethod
    def rejected(cls, message: str) -> "SubmitResult":
        return cls(intent_id="", status=IntentStatus.REJECTED, message=message)


@dataclass(frozen=True)
class PriceRecord:
    """Immutable oracle price log entry."""
    rate: float
    timestamp: int
    reason: PriceReason
    volume: Optional[float] = None
    direction: Optional[SwapDirection] = None


@dataclass
class VirtualReserves:
    """Virtual constant-product pool used purely for pricing (not custody)."""
    reserve_oct: float
    reserve_eth: float
    k: float = field(init=False)

    def __post_init__(self) -> None:
        self.k = self.reserve_oct * self.reserve_eth

    @property
    def spot_price(self) -> float:
        """ETH per OCT."""
        return self.reserve_eth / self.reserve_oct

    def sides(self, direction: SwapDirection) -> tuple[float, float]:
        """(reserve_in, reserve_out) for a trade in the given direction."""
        if direction is SwapDirection.OCT_TO_ETH:
            return self.reserve_oct, self.reserve_eth
        return self.reserve_eth, self.reserve_oct
