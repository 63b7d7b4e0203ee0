# src/xbridge/domain/__init__.py
"""
Domain Layer - Pure Business Objects

This package contains domain models, the intent envelope format and business
errors. No dependencies on infrastructure or external systems.
"""

from xbridge.domain.models import (
    Asset,
    Chain,
    ConfirmationState,
    Deposit,
    Intent,
    IntentStatus,
    PayoutResult,
    PriceReason,
    PriceRecord,
    SubmitResult,
    SwapDirection,
    SwapIntentPayload,
    VirtualReserves,
)
from xbridge.domain.errors import (
    ChainUnavailableError,
    DomainError,
    DuplicateDepositError,
    EnvelopeError,
    IntentNotFoundError,
    InvalidEnvelopeError,
    InvalidTransitionError,
    LegacyEnvelopeRejected,
    QuoteError,
    ReplayError,
    StoreUnavailableError,
    TamperedEnvelopeError,
)

__all__ = [
    "Asset",
    "Chain",
    "ConfirmationState",
    "Deposit",
    "Intent",
    "IntentStatus",
    "PayoutResult",
    "PriceReason",
    "PriceRecord",
    "SubmitResult",
    "SwapDirection",
    "SwapIntentPayload",
    "VirtualReserves",
    "DomainError",
    "EnvelopeError",
    "InvalidEnvelopeError",
    "TamperedEnvelopeError",
    "LegacyEnvelopeRejected",
    "ReplayError",
    "DuplicateDepositError",
    "IntentNotFoundError",
    "InvalidTransitionError",
    "QuoteError",
    "ChainUnavailableError",
    "StoreUnavailableError",
]
