# src/xbridge/shared/clock.py
"""
Clock Helpers - Epoch Millisecond Timestamps

Intent expiry, creation and fulfillment times are epoch milliseconds, the
unit signing clients put into intent payloads.

Files that USE this module:
- xbridge.application.oracle (default clock for price samples)
- xbridge.application.settlement (default clock for expiry checks)
- xbridge.application.quote_service (quote timestamps)
"""
import time
from typing import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)
