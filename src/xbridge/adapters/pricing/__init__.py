# src/xbridge/adapters/pricing/__init__.py
"""
Pricing Adapters - External USD Reference Prices
"""

from xbridge.adapters.pricing.usd_feed import EthUsdFeed, EthUsdPrice

__all__ = ["EthUsdFeed", "EthUsdPrice"]
