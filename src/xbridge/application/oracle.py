# src/xbridge/application/oracle.py
"""
Price Oracle - Virtual AMM with EMA/TWAP Smoothing and a Circuit Breaker

This module owns the OCT/ETH exchange rate. Pricing combines:
1. A virtual constant-product pool for realistic price impact
2. An exponential moving average (EMA) of the spot price
3. A time-weighted average price (TWAP) over a sliding window
4. A circuit breaker that freezes spot at the pre-trade EMA after a large move
5. Absolute [min_rate, max_rate] bounds around the initial rate

Rates are ETH per OCT. The oracle is constructed explicitly by the
composition root and handed to the settlement engine; there is no module
level instance.

Files that USE this module:
- xbridge.application.settlement (quotes payouts, records fulfilled swaps)
- xbridge.application.quote_service (user-facing quotes and price impact)
- xbridge.app (constructs the oracle from settings)
- tests.test_oracle (unit tests)

Files that this module USES:
- xbridge.domain.models (VirtualReserves, PriceRecord, SwapDirection)
- xbridge.shared.clock (epoch millisecond clock)
"""
from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Optional, Protocol

from xbridge.domain.errors import QuoteError
from xbridge.domain.models import PriceReason, PriceRecord, SwapDirection, VirtualReserves
from xbridge.shared.clock import Clock, now_ms

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000

# Effective price blend in normal operation
EMA_WEIGHT = 0.7
TWAP_WEIGHT = 0.3


class RateHistoryLog(Protocol):
    """Durable append-only sink for price records."""
    def append_rate(self, record: PriceRecord) -> None:
        ...


@dataclass(frozen=True)
class OracleConfig:
    """
    Oracle tuning.

    Attributes:
        initial_rate: Seed price in ETH per OCT
        virtual_oct_reserve: Depth of the OCT side of the virtual pool
        ema_alpha: EMA smoothing factor (0.1 = slow, 0.9 = fast)
        twap_window_ms: TWAP sliding window
        max_price_change_pct: Single-trade move that trips the circuit breaker
        min_rate / max_rate: Absolute price bounds
        fee_bps: Default swap fee
        breaker_cooldown_ms: How long the breaker stays active
        history_cap: Size of the in-memory price history tail
    """
    initial_rate: float = 0.001
    virtual_oct_reserve: float = 1_000_000.0
    ema_alpha: float = 0.1
    twap_window_ms: int = 15 * 60 * 1000
    max_price_change_pct: float = 10.0
    min_rate: float = 0.0005
    max_rate: float = 0.002
    fee_bps: int = 50
    breaker_cooldown_ms: int = 5 * 60 * 1000
    history_cap: int = 1000

    @classmethod
    def from_settings(cls, settings) -> "OracleConfig":
        return cls(
            initial_rate=settings.oracle_initial_rate,
            virtual_oct_reserve=settings.oracle_virtual_oct_reserve,
            ema_alpha=settings.oracle_ema_alpha,
            twap_window_ms=int(settings.oracle_twap_window_minutes * 60 * 1000),
            max_price_change_pct=settings.oracle_max_price_change_pct,
            min_rate=settings.oracle_min_rate,
            max_rate=settings.oracle_max_rate,
            fee_bps=settings.fee_bps,
            breaker_cooldown_ms=settings.oracle_breaker_cooldown_seconds * 1000,
        )


@dataclass
class TwapSample:
    """A price and how long (ms) it stayed active; weight 0 while current."""
    price: float
    timestamp: int
    weight: int = 0


@dataclass(frozen=True)
class VolumeEntry:
    timestamp: int
    oct_amount: float
    direction: SwapDirection


@dataclass(frozen=True)
class RateQuote:
    rate: float
    as_of: int


@dataclass(frozen=True)
class PriceImpact:
    impact_percent: float
    effective_price: float
    spot_price: float


@dataclass(frozen=True)
class OracleStats:
    """Snapshot of everything the oracle knows, for dashboards and health."""
    spot: float
    ema: float
    twap: float
    effective: float
    reserve_oct: float
    reserve_eth: float
    k: float
    min_rate: float
    max_rate: float
    volume_24h: dict[str, float] = field(default_factory=dict)
    price_deviation: float = 0.0
    circuit_breaker_active: bool = False
    last_update: int = 0
    eth_usd: float = 0.0
    oct_usd: float = 0.0


class PriceOracle:
    """
    OCT/ETH price oracle backed by a virtual constant-product pool.

    Only record_swap mutates reserves, EMA and TWAP state.
    """

    def __init__(
        self,
        config: OracleConfig = OracleConfig(),
        history_log: Optional[RateHistoryLog] = None,
        clock: Clock = now_ms,
    ):
        self.config = config
        self._history_log = history_log
        self._clock = clock

        # price = reserve_eth / reserve_oct
        self._reserves = VirtualReserves(
            reserve_oct=config.virtual_oct_reserve,
            reserve_eth=config.virtual_oct_reserve * config.initial_rate,
        )
        self._spot = self._reserves.spot_price
        self._ema = self._spot

        now = self._clock()
        self._twap_samples: list[TwapSample] = [TwapSample(self._spot, now)]
        self._history: deque[PriceRecord] = deque(maxlen=config.history_cap)
        self._volume: deque[VolumeEntry] = deque()
        self._breaker_until: Optional[int] = None
        # External reference price; 0 until the first feed update
        self._eth_usd = 0.0

        self._record(self._spot, PriceReason.INITIAL)

        logger.info(
            "Price oracle initialized: rate=%.8f ETH/OCT, reserves OCT=%.2f ETH=%.4f, k=%.4e",
            self._spot, self._reserves.reserve_oct, self._reserves.reserve_eth, self._reserves.k,
        )
        logger.info(
            "Oracle tuning: ema_alpha=%s, twap_window=%.1f min, breaker=%s%%, bounds=[%.8f, %.8f]",
            config.ema_alpha, config.twap_window_ms / 60000, config.max_price_change_pct,
            config.min_rate, config.max_rate,
        )

    # ------------------------------------------------------------------
    # Quoting
    # ------------------------------------------------------------------

    def quote(self, amount_in: float, direction: SwapDirection, fee_bps: Optional[int] = None) -> float:
        """
        Output amount for a trade against the virtual pool, net of fee.

        out = reserve_out - k / (reserve_in + amount_in), then minus fee_bps/10000.

        Args:
            amount_in: Input amount in the direction's source asset
            direction: Trade direction
            fee_bps: Fee in basis points (defaults to config.fee_bps)

        Returns:
            Output amount, never negative
        """
        if fee_bps is None:
            fee_bps = self.config.fee_bps
        if amount_in <= 0 or not math.isfinite(amount_in):
            return 0.0

        reserve_in, reserve_out = self._reserves.sides(direction)
        gross = reserve_out - self._reserves.k / (reserve_in + amount_in)
        net = gross - gross * (fee_bps / 10000)
        return max(0.0, net)

    def price_impact(self, direction: SwapDirection, amount: float) -> PriceImpact:
        """
        Fee-free execution price versus spot, as a percentage against the trader.

        Raises:
            QuoteError: If amount is not positive
        """
        if amount <= 0:
            raise QuoteError(f"Amount must be positive, got {amount}")

        spot = self._spot
        out = self.quote(amount, direction, fee_bps=0)
        if out <= 0:
            raise QuoteError("Trade exhausts the virtual pool")

        if direction is SwapDirection.OCT_TO_ETH:
            effective = out / amount
            impact = (spot - effective) / spot * 100
        else:
            effective = amount / out  # ETH paid per OCT received
            impact = (effective - spot) / spot * 100
        return PriceImpact(impact_percent=impact, effective_price=effective, spot_price=spot)

    # ------------------------------------------------------------------
    # Rates
    # ------------------------------------------------------------------

    def current_rate(self) -> RateQuote:
        """Effective ETH-per-OCT rate used by quoting callers."""
        now = self._clock()
        self._refresh_breaker(now)
        self._update_twap(now)
        return RateQuote(rate=self._effective_price(), as_of=now)

    def inverse_rate(self) -> RateQuote:
        """Effective OCT-per-ETH rate."""
        quote = self.current_rate()
        return RateQuote(rate=1 / quote.rate, as_of=quote.as_of)

    def prices(self) -> dict[str, float]:
        now = self._clock()
        self._refresh_breaker(now)
        self._update_twap(now)
        return {
            "spot": self._spot,
            "ema": self._ema,
            "twap": self._twap(),
            "effective": self._effective_price(),
        }

    @property
    def circuit_breaker_active(self) -> bool:
        self._refresh_breaker(self._clock())
        return self._breaker_until is not None

    @property
    def reserves(self) -> VirtualReserves:
        """Copy of the current virtual reserves."""
        copy = VirtualReserves(self._reserves.reserve_oct, self._reserves.reserve_eth)
        copy.k = self._reserves.k
        return copy

    @property
    def eth_usd(self) -> float:
        return self._eth_usd

    def set_eth_usd(self, price: float) -> None:
        """Update the ETH/USD reference price used for USD figures in stats()."""
        if price <= 0 or not math.isfinite(price):
            raise ValueError(f"ETH/USD price must be positive, got {price}")
        self._eth_usd = price

    # ------------------------------------------------------------------
    # Swaps
    # ------------------------------------------------------------------

    def record_swap(self, direction: SwapDirection, amount_in: float) -> PriceRecord:
        """
        Apply a fulfilled trade to the virtual pool and update all price signals.

        Args:
            direction: Direction of the fulfilled intent
            amount_in: Amount the user deposited (source asset units)

        Returns:
            The SWAP price record that was logged
        """
        if amount_in <= 0:
            raise ValueError(f"Swap amount must be positive, got {amount_in}")

        now = self._clock()
        self._refresh_breaker(now)
        old_spot = self._spot

        out = self.quote(amount_in, direction, fee_bps=0)
        if direction is SwapDirection.OCT_TO_ETH:
            self._reserves.reserve_oct += amount_in
            self._reserves.reserve_eth -= out
            oct_volume = amount_in
        else:
            self._reserves.reserve_eth += amount_in
            self._reserves.reserve_oct -= out
            oct_volume = out
        self._volume.append(VolumeEntry(now, oct_volume, direction))

        # k is held constant; reserves already satisfy it up to float error
        self._spot = self._reserves.spot_price

        change_pct = abs(self._spot - old_spot) / old_spot * 100
        if change_pct > self.config.max_price_change_pct:
            self._trip_breaker(old_spot, change_pct, now)

        self._ema = self.config.ema_alpha * self._spot + (1 - self.config.ema_alpha) * self._ema
        self._update_twap(now)
        self._apply_bounds()

        record = self._record(self._spot, PriceReason.SWAP, volume=amount_in, direction=direction)
        self._prune_volume(now)

        logger.info(
            "Swap recorded: %s amount=%.6f price %.8f -> %.8f ema=%.8f reserves OCT=%.2f ETH=%.4f",
            direction.value, amount_in, old_spot, self._spot, self._ema,
            self._reserves.reserve_oct, self._reserves.reserve_eth,
        )
        return record

    # ------------------------------------------------------------------
    # History & stats
    # ------------------------------------------------------------------

    def history(self, limit: int = 100) -> list[PriceRecord]:
        """Most recent price records first, at most `limit` of them."""
        if limit <= 0:
            return []
        items = list(self._history)
        return items[::-1][:limit]

    def stats(self) -> OracleStats:
        now = self._clock()
        self._refresh_breaker(now)
        self._update_twap(now)
        twap = self._twap()
        return OracleStats(
            spot=self._spot,
            ema=self._ema,
            twap=twap,
            effective=self._effective_price(),
            reserve_oct=self._reserves.reserve_oct,
            reserve_eth=self._reserves.reserve_eth,
            k=self._reserves.k,
            min_rate=self.config.min_rate,
            max_rate=self.config.max_rate,
            volume_24h=self._volume_24h(now),
            price_deviation=abs(self._spot - twap) / twap * 100 if twap else 0.0,
            circuit_breaker_active=self._breaker_until is not None,
            last_update=now,
            eth_usd=self._eth_usd,
            oct_usd=self._spot * self._eth_usd,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _effective_price(self) -> float:
        twap = self._twap()
        if self._breaker_until is not None:
            return twap
        return self._ema * EMA_WEIGHT + twap * TWAP_WEIGHT

    def _update_twap(self, now: int) -> None:
        samples = self._twap_samples
        if samples:
            samples[-1].weight = now - samples[-1].timestamp
        samples.append(TwapSample(self._spot, now))

        window_start = now - self.config.twap_window_ms
        self._twap_samples = [s for s in samples if s.timestamp >= window_start]

    def _twap(self) -> float:
        total_weight = 0
        weighted = 0.0
        for sample in self._twap_samples:
            if sample.weight > 0:
                weighted += sample.price * sample.weight
                total_weight += sample.weight
        if total_weight == 0:
            return self._spot
        return weighted / total_weight

    def _trip_breaker(self, old_spot: float, change_pct: float, now: int) -> None:
        logger.warning(
            "Circuit breaker triggered: %.8f -> %.8f (%.2f%% > %.2f%%), holding spot at EMA %.8f",
            old_spot, self._spot, change_pct, self.config.max_price_change_pct, self._ema,
        )
        self._spot = self._ema
        self._breaker_until = now + self.config.breaker_cooldown_ms
        self._record(self._spot, PriceReason.CIRCUIT_BREAKER)

    def _refresh_breaker(self, now: int) -> None:
        if self._breaker_until is not None and now >= self._breaker_until:
            self._breaker_until = None
            self._update_twap(now)
            rate = self._effective_price()
            self._record(rate, PriceReason.SMOOTHING_UPDATE)
            logger.info("Circuit breaker reset, effective rate %.8f", rate)

    def _apply_bounds(self) -> None:
        lo, hi = self.config.min_rate, self.config.max_rate
        old_spot = self._spot

        if self._spot < lo:
            self._spot = lo
            logger.warning("Price bounded to minimum: %.8f", lo)
        elif self._spot > hi:
            self._spot = hi
            logger.warning("Price bounded to maximum: %.8f", hi)

        self._ema = max(lo, min(hi, self._ema))

        if self._spot != old_spot:
            # Resynthesize reserves at the bounded price, keeping k
            self._reserves.reserve_oct = math.sqrt(self._reserves.k / self._spot)
            self._reserves.reserve_eth = math.sqrt(self._reserves.k * self._spot)

    def _volume_24h(self, now: int) -> dict[str, float]:
        cutoff = now - DAY_MS
        oct_to_eth = sum(
            v.oct_amount for v in self._volume
            if v.timestamp >= cutoff and v.direction is SwapDirection.OCT_TO_ETH
        )
        eth_to_oct = sum(
            v.oct_amount for v in self._volume
            if v.timestamp >= cutoff and v.direction is SwapDirection.ETH_TO_OCT
        )
        return {"oct_to_eth": oct_to_eth, "eth_to_oct": eth_to_oct, "total_oct": oct_to_eth + eth_to_oct}

    def _prune_volume(self, now: int) -> None:
        cutoff = now - DAY_MS
        while self._volume and self._volume[0].timestamp < cutoff:
            self._volume.popleft()

    def _record(
        self,
        rate: float,
        reason: PriceReason,
        volume: Optional[float] = None,
        direction: Optional[SwapDirection] = None,
    ) -> PriceRecord:
        record = PriceRecord(
            rate=rate,
            timestamp=self._clock(),
            reason=reason,
            volume=volume,
            direction=direction,
        )
        self._history.append(record)

        if self._history_log is not None:
            try:
                self._history_log.append_rate(record)
            except Exception as e:
                # In-memory tail still holds the record
                logger.error("Failed to persist price record (%s): %s", reason.value, e)
        return record
