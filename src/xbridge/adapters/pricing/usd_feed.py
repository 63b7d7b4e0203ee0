# src/xbridge/adapters/pricing/usd_feed.py
"""
ETH/USD Price Feed - Chainlink with CoinGecko and Coinbase Fallbacks

This module fetches the ETH/USD price used to show USD values next to the
OCT/ETH rate. Sources are tried in order until one answers with a sane price:
1. Chainlink ETH/USD aggregator, latestRoundData() over eth_call
2. CoinGecko simple price API
3. Coinbase spot price API

The last good price is cached for cache_seconds; when every source fails
the feed raises PriceFeedError and the oracle keeps its previous value.

Files that USE this module:
- xbridge.app (constructs the feed and refreshes it next to the sweeper)
- tests.test_usd_feed (unit tests)

Files that this module USES:
- xbridge.domain.errors (PriceFeedError)
- xbridge.shared.clock (epoch millisecond clock)
"""
import logging
from dataclasses import dataclass
from typing import Optional

import requests

from xbridge.domain.errors import PriceFeedError
from xbridge.shared.clock import Clock, now_ms

log = logging.getLogger(__name__)

CHAINLINK_ETH_USD_MAINNET = "0x5f4eC3Df9cbd43714FE2740f5E3616155c5b8419"
CHAINLINK_ETH_USD_SEPOLIA = "0x694AA1769357215DE4FAC081bf1f309aDC325306"

# latestRoundData() -> (roundId, answer, startedAt, updatedAt, answeredInRound)
LATEST_ROUND_DATA_SELECTOR = "0xfeaf968c"
CHAINLINK_DECIMALS = 8

COINGECKO_URL = "https://api.coingecko.com/api/v3/simple/price?ids=ethereum&vs_currencies=usd"
COINBASE_URL = "https://api.coinbase.com/v2/prices/ETH-USD/spot"

# Anything outside this band is treated as a broken answer
MIN_SANE_PRICE = 100.0
MAX_SANE_PRICE = 100_000.0


@dataclass(frozen=True)
class EthUsdPrice:
    price: float
    updated_at: int
    source: str


class EthUsdFeed:
    """
    ETH/USD price with source fallback and a TTL cache.

    Args:
        chainlink_rpc_url: Ethereum JSON-RPC URL for the aggregator call; empty skips Chainlink
        chainlink_feed: Aggregator contract address
        coingecko_url: CoinGecko simple price endpoint; empty skips it
        coinbase_url: Coinbase spot price endpoint; empty skips it
        timeout: HTTP timeout in seconds
        cache_seconds: How long a fetched price is reused
        clock: Epoch millisecond clock
    """

    def __init__(
        self,
        chainlink_rpc_url: str = "",
        chainlink_feed: str = CHAINLINK_ETH_USD_SEPOLIA,
        coingecko_url: str = COINGECKO_URL,
        coinbase_url: str = COINBASE_URL,
        timeout: int = 5,
        cache_seconds: int = 30,
        clock: Clock = now_ms,
    ):
        self.chainlink_rpc_url = chainlink_rpc_url
        self.chainlink_feed = chainlink_feed
        self.coingecko_url = coingecko_url
        self.coinbase_url = coinbase_url
        self.timeout = timeout
        self.ttl_ms = cache_seconds * 1000
        self._clock = clock
        self._cached: Optional[EthUsdPrice] = None

    @property
    def latest(self) -> Optional[EthUsdPrice]:
        """Last good price, however old, or None before the first success."""
        return self._cached

    def _cache_valid(self) -> bool:
        if self._cached is None:
            return False
        return self._clock() - self._cached.updated_at < self.ttl_ms

    def eth_usd(self) -> EthUsdPrice:
        """
        Current ETH/USD price.

        Returns:
            Cached price while fresh, otherwise the first source that answers

        Raises:
            PriceFeedError: If every source failed
        """
        if self._cache_valid():
            log.debug("Using cached ETH/USD price: %s", self._cached)
            return self._cached  # type: ignore[return-value]

        sources = (
            ("chainlink", self._from_chainlink),
            ("coingecko", self._from_coingecko),
            ("coinbase", self._from_coinbase),
        )
        for name, fetch in sources:
            price = fetch()
            if price is None:
                continue
            if not MIN_SANE_PRICE < price < MAX_SANE_PRICE:
                log.warning("Ignoring out-of-range ETH/USD price from %s: %s", name, price)
                continue
            self._cached = EthUsdPrice(price=price, updated_at=self._clock(), source=name)
            log.info("ETH/USD updated: $%.2f (%s)", price, name)
            return self._cached

        log.error("All ETH/USD sources failed")
        raise PriceFeedError("No ETH/USD source returned a usable price")

    # ------------------------------------------------------------------
    # Sources; each returns None on any failure
    # ------------------------------------------------------------------

    def _from_chainlink(self) -> Optional[float]:
        if not self.chainlink_rpc_url:
            return None
        body = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "eth_call",
            "params": [{"to": self.chainlink_feed, "data": LATEST_ROUND_DATA_SELECTOR}, "latest"],
        }
        try:
            resp = requests.post(self.chainlink_rpc_url, json=body, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.exceptions.RequestException as e:
            log.warning("Chainlink ETH/USD request failed: %s", e)
            return None
        except ValueError as e:
            log.warning("Chainlink ETH/USD returned invalid JSON: %s", e)
            return None

        result = data.get("result") if isinstance(data, dict) else None
        if not isinstance(result, str) or data.get("error"):
            log.warning("Chainlink ETH/USD call returned no result: %s", data)
            return None
        return _decode_round_answer(result)

    def _from_coingecko(self) -> Optional[float]:
        data = self._get_json("CoinGecko", self.coingecko_url)
        try:
            return float(data["ethereum"]["usd"])  # type: ignore[index]
        except (KeyError, TypeError, ValueError):
            if data is not None:
                log.warning("CoinGecko unexpected schema: %s", data)
            return None

    def _from_coinbase(self) -> Optional[float]:
        data = self._get_json("Coinbase", self.coinbase_url)
        try:
            # Coinbase quotes amounts as strings
            return float(data["data"]["amount"])  # type: ignore[index]
        except (KeyError, TypeError, ValueError):
            if data is not None:
                log.warning("Coinbase unexpected schema: %s", data)
            return None

    def _get_json(self, name: str, url: str) -> Optional[dict]:
        if not url:
            return None
        try:
            resp = requests.get(url, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.exceptions.Timeout:
            log.warning("%s ETH/USD timeout after %d seconds", name, self.timeout)
            return None
        except requests.exceptions.RequestException as e:
            log.warning("%s ETH/USD request failed: %s", name, e)
            return None
        except ValueError as e:
            log.warning("%s ETH/USD returned invalid JSON: %s", name, e)
            return None
        return data if isinstance(data, dict) else None


def _decode_round_answer(result: str) -> Optional[float]:
    """Pull the int256 answer (second word) out of latestRoundData() return data."""
    hex_data = result[2:] if result.startswith("0x") else result
    if len(hex_data) < 128:
        log.warning("Chainlink ETH/USD result too short: %s", result)
        return None
    try:
        answer = int(hex_data[64:128], 16)
    except ValueError:
        log.warning("Chainlink ETH/USD result is not hex: %s", result)
        return None
    if answer >= 2 ** 255:
        answer -= 2 ** 256
    return answer / 10 ** CHAINLINK_DECIMALS
