# src/xbridge/adapters/formatting/__init__.py
"""
Formatting Adapters - Output Presentation

This package formats intents, rates and health reports as plain text.
"""

from xbridge.adapters.formatting.formatter import (
    alert_message,
    format_amount,
    format_timestamp,
    health_report,
    intent_details,
    intent_line,
    oracle_summary,
    rate_line,
)

__all__ = [
    "alert_message",
    "format_amount",
    "format_timestamp",
    "health_report",
    "intent_details",
    "intent_line",
    "oracle_summary",
    "rate_line",
]
