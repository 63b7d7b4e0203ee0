# src/xbridge/application/__init__.py
"""
Application Layer - Use Cases and Services

This package contains the price oracle, the settlement engine and the
supporting quote and health services. No direct I/O dependencies - chains,
storage and alerts are reached through the ports in xbridge.application.ports.
"""

from xbridge.application.oracle import OracleConfig, PriceOracle
from xbridge.application.settlement import EngineConfig, SettlementEngine
from xbridge.application.quote_service import QuoteConfig, QuoteService
from xbridge.application.health import HealthChecker, HealthStatus

__all__ = [
    "OracleConfig",
    "PriceOracle",
    "EngineConfig",
    "SettlementEngine",
    "QuoteConfig",
    "QuoteService",
    "HealthChecker",
    "HealthStatus",
]
