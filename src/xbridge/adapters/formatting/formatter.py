# src/xbridge/adapters/formatting/formatter.py
"""
Message Formatter - Text Formatting and Presentation

This module renders intents, rates and oracle stats as plain text for
operator alerts, the startup summary and log lines.

Files that USE this module:
- xbridge.adapters.telegram.notifier (alert text)
- xbridge.app (startup summary)
- tests.test_formatter (unit tests)

Files that this module USES:
- xbridge.domain.models (Intent, IntentStatus)
- xbridge.application.oracle (OracleStats)
- xbridge.application.health (HealthStatus)
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Mapping, Optional

from xbridge.application.health import HealthStatus
from xbridge.application.oracle import OracleStats
from xbridge.domain.models import Intent, IntentStatus

STATUS_ICONS = {
    IntentStatus.OPEN: "🔄",
    IntentStatus.PENDING: "⏳",
    IntentStatus.FULFILLED: "✅",
    IntentStatus.EXPIRED: "⌛",
    IntentStatus.REJECTED: "🚫",
    IntentStatus.FAILED: "❌",
}


def format_timestamp(ms: Optional[int]) -> str:
    """
    Format an epoch-millisecond timestamp as UTC.

    Returns:
        "YYYY-MM-DD HH:MM:SS UTC", or "N/A" when ms is None
    """
    if ms is None:
        return "N/A"
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def format_amount(value: Optional[float], decimals: int = 8) -> str:
    """Fixed-point amount with trailing zeros trimmed; N/A for None."""
    if value is None:
        return "N/A"
    text = f"{value:.{decimals}f}".rstrip("0").rstrip(".")
    return text or "0"


def intent_line(intent: Intent) -> str:
    """One-line summary of an intent."""
    icon = STATUS_ICONS.get(intent.status, "•")
    from_asset = intent.direction.from_asset.value
    to_asset = intent.direction.to_asset.value
    out = intent.amount_out if intent.amount_out is not None else intent.quoted_amount_out
    return (
        f"{icon} {intent.intent_id[:8]} {format_amount(intent.amount_in)} {from_asset} → "
        f"{format_amount(out)} {to_asset} [{intent.status.value}]"
    )


def intent_details(intent: Intent) -> str:
    """Multi-line description of an intent for operator alerts."""
    lines = [
        intent_line(intent),
        f"— Intent: {intent.intent_id}",
        f"— Deposit: {intent.source_tx_hash} from {intent.source_address}",
        f"— Target: {intent.target_address}",
        f"— Quoted: {format_amount(intent.quoted_amount_out)} (min {format_amount(intent.min_amount_out)})",
        f"— Created: {format_timestamp(intent.created_at)}",
        f"— Expiry: {format_timestamp(intent.expiry)}",
    ]
    if intent.target_tx_hash:
        lines.append(f"— Payout: {intent.target_tx_hash} at {format_timestamp(intent.fulfilled_at)}")
    if intent.payout_tx_hash:
        lines.append(f"— Unconfirmed payout: {intent.payout_tx_hash}")
    if intent.attempts:
        lines.append(f"— Attempts: {intent.attempts}")
    if intent.error:
        lines.append(f"— Last error: {intent.error}")
    return "\n".join(lines)


def rate_line(rate: float, as_of: Optional[int] = None) -> str:
    """Format the OCT/ETH rate in both directions."""
    msg = f"💱 1 OCT = {rate:.8f} ETH | 1 ETH = {1 / rate:,.2f} OCT"
    if as_of is not None:
        msg = f"{msg}\n⏱️ {format_timestamp(as_of)}"
    return msg


def oracle_summary(stats: OracleStats) -> str:
    """Multi-line oracle snapshot."""
    breaker = "ACTIVE ⚠️" if stats.circuit_breaker_active else "off"
    volume = stats.volume_24h or {}
    return "\n".join([
        f"📈 Spot: {stats.spot:.8f} | EMA: {stats.ema:.8f} | TWAP: {stats.twap:.8f}",
        f"🎯 Effective: {stats.effective:.8f} ETH/OCT (deviation {stats.price_deviation:.2f}%)",
        f"🏦 Reserves: {stats.reserve_oct:,.2f} OCT / {stats.reserve_eth:,.4f} ETH",
        f"📏 Bounds: [{stats.min_rate:.8f}, {stats.max_rate:.8f}]",
        usd_line(stats),
        f"📊 24h volume: {format_amount(volume.get('total_oct', 0.0), 2)} OCT",
        f"🛑 Circuit breaker: {breaker}",
    ])


def alert_message(title: str, body: str) -> str:
    """Operator alert text."""
    return f"🚨 {title}\n\n{body}\n\n⏱️ {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}"


def health_report(results: Mapping[str, HealthStatus]) -> str:
    """One line per component health check."""
    lines = []
    for name, status in results.items():
        icon = "✅" if status.is_healthy else "❌"
        lines.append(f"{icon} {name}: {status.message}")
    return "\n".join(lines)


def usd_line(stats: OracleStats) -> str:
    """ETH and OCT in USD, or a placeholder before the first feed update."""
    if stats.eth_usd <= 0:
        return "💵 USD: unavailable"
    return f"💵 ETH: ${stats.eth_usd:,.2f} | OCT: ${stats.oct_usd:,.6f}"
