# src/xbridge/app.py
"""
Application Entry Point - Settlement Service Initialization and Startup

This module serves as the composition root for the xbridge settlement
service. It wires all dependencies from settings (store, chain clients,
oracle, engine, alerts, ETH/USD feed), logs a startup summary and runs the
sweeper and the ETH/USD refresher until SIGINT/SIGTERM.

The thin transport layer (HTTP API) is not part of this package; it builds
its handlers on top of the Components returned by build_components().

Files that USE this module:
- xbridge (console script entry point)
- python -m xbridge (module entry point)

Files that this module USES:
- xbridge.shared.logging_conf (setup_logging for logging configuration)
- xbridge.config (settings for configuration management)
- xbridge.application.* (oracle, settlement engine, quote and health services)
- xbridge.adapters.* (chain clients, SQLite store, ETH/USD feed, notifiers, formatting)
"""

from __future__ import annotations  # Enable postponed evaluation of annotations for forward references

import asyncio  # Event loop running the sweeper and background payouts
import atexit  # Register cleanup functions to run when program exits
import logging  # Standard library for logging messages and errors
import os  # Operating system interface for environment variables and process management
import signal  # SIGINT/SIGTERM handling for graceful shutdown
import sys  # System-specific parameters and functions for exit codes
from dataclasses import dataclass  # Container for wired components
from pathlib import Path  # Object-oriented filesystem paths
from typing import Union  # Type hints

from xbridge.shared.logging_conf import setup_logging  # Configure logging with file rotation
from xbridge.adapters.chains import OctraClient, SepoliaClient  # Chain RPC clients
from xbridge.adapters.formatting.formatter import health_report, oracle_summary, rate_line  # Startup summary text
from xbridge.adapters.persistence import SqliteIntentStore  # Durable intent store
from xbridge.adapters.pricing.usd_feed import (  # ETH/USD reference price
    CHAINLINK_ETH_USD_MAINNET,
    CHAINLINK_ETH_USD_SEPOLIA,
    EthUsdFeed,
)
from xbridge.adapters.telegram import LoggingNotifier, TelegramNotifier  # Operator alerts
from xbridge.application import (
    EngineConfig,
    HealthChecker,
    OracleConfig,
    PriceOracle,
    QuoteConfig,
    QuoteService,
    SettlementEngine,
)
from xbridge.domain.envelope import EnvelopeVerifier  # Intent envelope authentication
from xbridge.domain.errors import PriceFeedError  # All ETH/USD sources failed
from xbridge.domain.models import Chain  # Chain identifiers

logger = logging.getLogger(__name__)


@dataclass
class Components:
    """Everything the service (and a transport layer) needs, wired together."""
    store: SqliteIntentStore
    chains: dict
    oracle: PriceOracle
    engine: SettlementEngine
    quotes: QuoteService
    health: HealthChecker
    notifier: Union[TelegramNotifier, LoggingNotifier]
    usd_feed: EthUsdFeed


def build_components(settings) -> Components:
    """
    Construct and wire all components from settings.

    The oracle is created here and shared by the engine, quote and health
    services; nothing else creates one.
    """
    store = SqliteIntentStore(settings.database_path)
    chains = {
        Chain.OCTRA: OctraClient(
            rpc_url=settings.octra_rpc_url,
            escrow_address=settings.octra_escrow_address,
            private_key=settings.octra_private_key,
            timeout=settings.http_timeout_seconds,
            balance_cache_seconds=settings.balance_cache_seconds,
        ),
        Chain.SEPOLIA: SepoliaClient(
            rpc_url=settings.sepolia_rpc_url,
            escrow_address=settings.sepolia_escrow_address,
            private_key=settings.sepolia_private_key,
            timeout=settings.http_timeout_seconds,
            balance_cache_seconds=settings.balance_cache_seconds,
        ),
    }
    oracle = PriceOracle(OracleConfig.from_settings(settings), history_log=store)

    if settings.alerts_enabled:
        notifier: Union[TelegramNotifier, LoggingNotifier] = TelegramNotifier(
            settings.alert_bot_token, settings.alert_chat_id
        )
    else:
        notifier = LoggingNotifier()

    engine = SettlementEngine(
        store=store,
        oracle=oracle,
        chains=chains,
        verifier=EnvelopeVerifier(allow_legacy=settings.envelope_allow_legacy),
        config=EngineConfig.from_settings(settings),
        notifier=notifier,
    )
    quotes = QuoteService(oracle, chains, QuoteConfig.from_settings(settings))
    health = HealthChecker(store, chains, oracle)
    usd_feed = EthUsdFeed(
        chainlink_rpc_url=settings.eth_usd_rpc_url,
        chainlink_feed=settings.chainlink_eth_usd_feed or (
            CHAINLINK_ETH_USD_MAINNET if settings.chainlink_rpc_url else CHAINLINK_ETH_USD_SEPOLIA
        ),
        coingecko_url=settings.coingecko_url,
        coinbase_url=settings.coinbase_url,
        timeout=settings.http_timeout_seconds,
        cache_seconds=settings.eth_usd_cache_seconds,
    )
    return Components(store, chains, oracle, engine, quotes, health, notifier, usd_feed)


# PID file path for preventing multiple instances
# Can be overridden via XBRIDGE_PID_FILE environment variable
def _get_pid_file() -> Path:
    """Get PID file path from environment or next to the database."""
    pid_file = os.environ.get("XBRIDGE_PID_FILE")
    if pid_file:
        return Path(pid_file)
    from xbridge.config import settings
    if str(settings.database_path) == ":memory:":
        return Path("./data") / "xbridge.pid"
    return Path(settings.database_path).parent / "xbridge.pid"


def _check_existing_instance() -> None:
    """
    Check if another settlement instance is already running.

    Raises RuntimeError if PID file exists and process is still running.
    """
    pid_file = _get_pid_file()
    if pid_file.exists():
        try:
            with open(pid_file, "r") as f:
                old_pid = int(f.read().strip())

            # Check if process is still running
            try:
                os.kill(old_pid, 0)  # Signal 0 doesn't kill, just checks if process exists
                raise RuntimeError(
                    f"Another xbridge instance is already running (PID: {old_pid}).\n"
                    f"Two instances would dispatch the same payouts. Stop it first with: kill {old_pid}"
                )
            except ProcessLookupError:
                # Process doesn't exist, stale PID file - remove it
                pid_file.unlink()
        except (ValueError, IOError):
            # Invalid PID file, remove it
            pid_file.unlink()


def _create_pid_file() -> None:
    """Create PID file with current process ID."""
    pid_file = _get_pid_file()
    pid_file.parent.mkdir(parents=True, exist_ok=True)
    with open(pid_file, "w") as f:
        f.write(str(os.getpid()))


def _remove_pid_file() -> None:
    """Remove PID file on exit."""
    pid_file = _get_pid_file()
    if pid_file.exists():
        try:
            pid_file.unlink()
        except OSError as e:
            logger.warning("Could not remove PID file %s: %s", pid_file, e)


async def _startup_summary(components: Components, settings) -> None:
    quote = components.oracle.current_rate()
    logger.info("Current rate:\n%s", rate_line(quote.rate, quote.as_of))
    logger.info("Oracle:\n%s", oracle_summary(components.oracle.stats()))
    logger.info(
        "Settlement: fee=%d bps, liquidity buffer=%.2fx, sweep every %ds, max attempts=%d, legacy envelopes=%s",
        settings.fee_bps, settings.liquidity_buffer, settings.sweep_interval_seconds,
        settings.max_dispatch_attempts, "on" if settings.envelope_allow_legacy else "off",
    )
    volume = components.engine.swap_volume()
    logger.info(
        "Durable 24h volume: %.4f OCT in (OCT_TO_ETH), %.6f ETH in (ETH_TO_OCT)",
        volume.get("OCT_TO_ETH", 0.0), volume.get("ETH_TO_OCT", 0.0),
    )
    results = await components.health.check_all()
    logger.info("Health:\n%s", health_report(results))
    overall = await components.health.get_overall_health(results)
    if overall.is_healthy:
        logger.info(overall.message)
    else:
        logger.warning("Starting degraded: %s", overall.message)


async def refresh_eth_usd(components: Components) -> bool:
    """
    Pull ETH/USD from the feed into the oracle.

    Returns:
        False if every source failed; the oracle keeps its previous price
    """
    loop = asyncio.get_running_loop()
    try:
        # The feed uses blocking requests calls
        price = await loop.run_in_executor(None, components.usd_feed.eth_usd)
    except PriceFeedError as e:
        logger.warning("ETH/USD refresh failed, keeping %.2f: %s", components.oracle.eth_usd, e)
        return False
    components.oracle.set_eth_usd(price.price)
    return True


async def run_eth_usd_refresher(components: Components, stop: asyncio.Event, interval: float) -> None:
    """Refresh ETH/USD every interval seconds until stop is set."""
    logger.info("ETH/USD refresher started (interval=%ss)", interval)
    while not stop.is_set():
        await refresh_eth_usd(components)
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
    logger.info("ETH/USD refresher stopped")


async def run(settings) -> None:
    """
    Run the settlement service until SIGINT/SIGTERM.

    Payouts already in flight are awaited before shutdown.
    """
    components = build_components(settings)
    notifier = components.notifier
    if isinstance(notifier, TelegramNotifier):
        await notifier.start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))

    refresher = None
    try:
        await refresh_eth_usd(components)
        await _startup_summary(components, settings)
        refresher = asyncio.create_task(
            run_eth_usd_refresher(components, stop, settings.eth_usd_refresh_seconds)
        )
        await components.engine.run_sweeper(stop, settings.sweep_interval_seconds)
        logger.info("Waiting for in-flight payouts to finish")
        await components.engine.drain()
        await refresher
    finally:
        if refresher is not None and not refresher.done():
            refresher.cancel()
        if isinstance(notifier, TelegramNotifier):
            await notifier.stop()
        components.store.close()
        logger.info("xbridge stopped")


def main() -> None:
    """
    Initialize and start the settlement service.

    This function:
    1. Sets up logging from settings
    2. Acquires the single-instance PID lock
    3. Wires components and runs the sweeper loop
    """
    # Import settings here so a bad .env is reported after logging is configured
    from xbridge.config import settings

    setup_logging(
        level=logging.INFO,
        log_file=settings.log_file,
        log_dir=settings.log_dir,
        max_bytes=settings.log_max_bytes,
        backup_count=settings.log_backup_count,
        log_stdout=settings.log_stdout,
    )

    logger.info("Working directory: %s", os.getcwd())
    logger.info("PID file location: %s", _get_pid_file())

    # Check for existing instance (two sweepers would double-dispatch)
    try:
        _check_existing_instance()
        _create_pid_file()
        atexit.register(_remove_pid_file)
        logger.info("Instance lock acquired (PID: %d)", os.getpid())
    except RuntimeError as e:
        logger.error(str(e))
        sys.exit(1)

    if not settings.octra_escrow_address:
        logger.warning("OCTRA_ESCROW_ADDRESS not set - OCT deposits cannot be verified")
    if not settings.sepolia_escrow_address and not settings.sepolia_private_key:
        logger.warning("No Sepolia escrow configured - ETH deposits cannot be verified")

    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
