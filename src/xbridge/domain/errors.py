# src/xbridge/domain/errors.py
"""
Domain Errors - Business Logic Exceptions

This module defines domain-specific exceptions that represent
business rule violations and infrastructure failures seen by the core.
"""


class DomainError(Exception):
    """Base exception for domain errors."""
    pass


class EnvelopeError(DomainError):
    """Raised when an intent envelope cannot be accepted."""
    pass


class InvalidEnvelopeError(EnvelopeError):
    """Raised when an envelope cannot be decoded or its payload is malformed."""
    pass


class TamperedEnvelopeError(EnvelopeError):
    """Raised when the declared payload hash does not match the payload."""
    pass


class LegacyEnvelopeRejected(EnvelopeError):
    """Raised for a hashless envelope while legacy mode is disabled."""
    pass


class ReplayError(DomainError):
    """Raised when an intent nonce has already been consumed."""
    pass


class DuplicateDepositError(DomainError):
    """Raised when a deposit reference is already bound to an intent."""

    def __init__(self, source_tx_hash: str):
        super().__init__(f"Deposit {source_tx_hash} already settled by another intent")
        self.source_tx_hash = source_tx_hash


class IntentNotFoundError(DomainError):
    """Raised when requested intent cannot be found."""
    pass


class InvalidTransitionError(DomainError):
    """Raised when a status change would leave a terminal state."""
    pass


class QuoteError(DomainError):
    """Raised when a quote request is outside the supported pairs or limits."""
    pass


class ChainUnavailableError(DomainError):
    """Raised when a chain RPC endpoint cannot be reached or answers garbage."""
    pass


class StoreUnavailableError(DomainError):
    """Raised when the intent store cannot complete a read or write."""
    pass


class PriceFeedError(DomainError):
    """Raised when no ETH/USD source returned a usable price."""
    pass
