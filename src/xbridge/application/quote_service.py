# src/xbridge/application/quote_service.py
"""
Quote Service - User-Facing Swap Quotes and Liquidity

This module answers "how much would I get" questions before a user signs an
intent. Quotes use the same oracle and fee as settlement but read balances
through the short-lived cache, so they are indicative only; settlement
re-checks fresh liquidity.

Files that USE this module:
- xbridge.app (constructs QuoteService)
- tests.test_quote_service (unit tests)

Files that this module USES:
- xbridge.application.oracle (PriceOracle for estimates, rate and impact)
- xbridge.application.ports (ChainGateway for escrow balances)
- xbridge.domain.models (Asset, Chain, SwapDirection)
"""
from __future__ import annotations  # Enable postponed evaluation of annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

from xbridge.application.oracle import PriceOracle
from xbridge.application.ports import ChainGateway
from xbridge.domain.errors import ChainUnavailableError, QuoteError
from xbridge.domain.models import Asset, Chain, SwapDirection
from xbridge.shared.clock import Clock, now_ms

log = logging.getLogger(__name__)

DEFAULT_SLIPPAGE_BPS = 50


@dataclass(frozen=True)
class SwapLimits:
    """Per-asset bounds on the input amount."""
    min_amount: float
    max_amount: float


@dataclass(frozen=True)
class QuoteConfig:
    fee_bps: int = 50
    quote_expiry_s: int = 30
    limits: Mapping[Asset, SwapLimits] = field(default_factory=lambda: {
        Asset.OCT: SwapLimits(1.0, 100_000.0),
        Asset.ETH: SwapLimits(0.0001, 10.0),
    })

    @classmethod
    def from_settings(cls, settings) -> "QuoteConfig":
        return cls(
            fee_bps=settings.fee_bps,
            quote_expiry_s=settings.quote_expiry_seconds,
            limits={
                Asset.OCT: SwapLimits(settings.min_swap_oct, settings.max_swap_oct),
                Asset.ETH: SwapLimits(settings.min_swap_eth, settings.max_swap_eth),
            },
        )


@dataclass(frozen=True)
class LiquidityInfo:
    """
    Cached escrow balance versus what a quote would need.

    available is None (and sufficient unknown) when the balance could not be read.
    """
    available: Optional[float]
    required: float
    sufficient: Optional[bool]


@dataclass(frozen=True)
class Quote:
    from_asset: Asset
    to_asset: Asset
    amount_in: float
    estimated_out: float
    min_amount_out: float
    rate: float
    fee_bps: int
    slippage_bps: int
    price_impact_percent: float
    expires_in: int
    escrow_address: str
    network: Chain
    liquidity: LiquidityInfo
    quoted_at: int


class QuoteService:
    """
    Quotes and liquidity snapshots for both swap directions.

    Args:
        oracle: Shared price oracle
        chains: One gateway per chain
        config: Fee, expiry and swap limits
    """

    def __init__(
        self,
        oracle: PriceOracle,
        chains: Mapping[Chain, ChainGateway],
        config: QuoteConfig = QuoteConfig(),
        clock: Clock = now_ms,
    ):
        self.oracle = oracle
        self.chains = dict(chains)
        self.config = config
        self._clock = clock

    async def quote(
        self,
        from_asset: Asset | str,
        to_asset: Asset | str,
        amount: float,
        slippage_bps: int = DEFAULT_SLIPPAGE_BPS,
    ) -> Quote:
        """
        Price a prospective swap.

        Args:
            from_asset: Asset the user will deposit
            to_asset: Asset the user wants
            amount: Input amount
            slippage_bps: Tolerance applied to derive min_amount_out

        Returns:
            Quote with estimate, minimum, rate (ETH/OCT, or OCT/ETH for ETH->OCT),
            price impact and cached liquidity

        Raises:
            QuoteError: Unsupported pair, bad amount, or amount outside limits
        """
        try:
            direction = SwapDirection.from_assets(from_asset, to_asset)
        except ValueError as e:
            raise QuoteError("Only OCT <-> ETH swaps supported") from e

        if not amount or amount <= 0:
            raise QuoteError("Invalid amount")
        if not 0 <= slippage_bps < 10_000:
            raise QuoteError(f"Invalid slippage: {slippage_bps} bps")

        source_asset = direction.from_asset
        limits = self.config.limits[source_asset]
        if amount < limits.min_amount:
            raise QuoteError(f"Minimum swap amount is {limits.min_amount} {source_asset.value}")
        if amount > limits.max_amount:
            raise QuoteError(f"Maximum swap amount is {limits.max_amount} {source_asset.value}")

        estimated_out = self.oracle.quote(amount, direction, self.config.fee_bps)
        min_amount_out = estimated_out * (1 - slippage_bps / 10000)
        rate = self.oracle.current_rate().rate
        if direction is SwapDirection.ETH_TO_OCT:
            rate = 1 / rate
        impact = self.oracle.price_impact(direction, amount)

        payout = self.chains[direction.payout_chain]
        liquidity = await self._liquidity_for(payout, min_amount_out)

        log.info(
            "Quote %s: in=%.8f out=%.8f min=%.8f liquidity=%s",
            direction.value, amount, estimated_out, min_amount_out, liquidity.sufficient,
        )
        return Quote(
            from_asset=direction.from_asset,
            to_asset=direction.to_asset,
            amount_in=amount,
            estimated_out=estimated_out,
            min_amount_out=min_amount_out,
            rate=rate,
            fee_bps=self.config.fee_bps,
            slippage_bps=slippage_bps,
            price_impact_percent=impact.impact_percent,
            expires_in=self.config.quote_expiry_s,
            escrow_address=self.chains[direction.source_chain].escrow_address,
            network=direction.payout_chain,
            liquidity=liquidity,
            quoted_at=self._clock(),
        )

    async def liquidity(self) -> dict[Asset, Optional[float]]:
        """
        Cached escrow balances per asset; None where a chain could not be read.
        """
        balances: dict[Asset, Optional[float]] = {}
        for asset, chain in ((Asset.OCT, Chain.OCTRA), (Asset.ETH, Chain.SEPOLIA)):
            try:
                balances[asset] = await self.chains[chain].fetch_balance()
            except ChainUnavailableError as e:
                log.warning("Failed to read %s escrow balance: %s", asset.value, e)
                balances[asset] = None
        return balances

    async def _liquidity_for(self, payout: ChainGateway, required: float) -> LiquidityInfo:
        try:
            available = await payout.fetch_balance()
        except ChainUnavailableError as e:
            log.warning("Failed to check %s liquidity: %s", payout.chain.value, e)
            return LiquidityInfo(available=None, required=required, sufficient=None)
        return LiquidityInfo(available=available, required=required, sufficient=available >= required)
