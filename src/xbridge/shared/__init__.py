# src/xbridge/shared/__init__.py
"""
Shared Utilities - Cross-cutting Concerns

This package contains shared utilities used across all layers:
- Validation
- Clock
- Logging configuration
"""

from xbridge.shared.validators import (
    validate_ed25519_seed,
    validate_evm_address,
    validate_evm_private_key,
    validate_evm_tx_hash,
    validate_octra_address,
    validate_octra_tx_hash,
)
from xbridge.shared.clock import Clock, now_ms

__all__ = [
    "validate_evm_address",
    "validate_octra_address",
    "validate_evm_tx_hash",
    "validate_octra_tx_hash",
    "validate_evm_private_key",
    "validate_ed25519_seed",
    "Clock",
    "now_ms",
]
