# src/xbridge/shared/validators.py
"""
Input Validation Utilities - Address, Hash and Key Validation

This module provides validation functions for chain addresses, transaction
hashes and signing keys, used by the settings validators and the chain
adapters before money moves.

Files that USE this module:
- xbridge.config.settings (uses validation functions in Settings field validators)
- xbridge.adapters.chains.octra (Octra address and tx hash checks)
- xbridge.adapters.chains.sepolia (EVM address and tx hash checks)

Files that this module USES:
- None (pure utility functions)
"""
import base64
import binascii
import re

_EVM_ADDRESS = re.compile(r"^0x[a-fA-F0-9]{40}$")
_EVM_TX_HASH = re.compile(r"^0x[a-fA-F0-9]{64}$")
_EVM_PRIVATE_KEY = re.compile(r"^(0x)?[a-fA-F0-9]{64}$")
_OCTRA_ADDRESS = re.compile(r"^oct[1-9A-HJ-NP-Za-km-z]{20,64}$")
_OCTRA_TX_HASH = re.compile(r"^[a-fA-F0-9]{64}$")


def validate_evm_address(address: str) -> bool:
    """
    Validate an EVM address (0x followed by 40 hex characters).

    Checksum casing is not enforced.
    """
    if not address:
        return False
    return bool(_EVM_ADDRESS.fullmatch(address))


def validate_octra_address(address: str) -> bool:
    """
    Validate an Octra address ("oct" prefix followed by base58 characters).

    Args:
        address: Address to validate

    Returns:
        True if valid, False otherwise
    """
    if not address:
        return False
    return bool(_OCTRA_ADDRESS.fullmatch(address))


def validate_evm_tx_hash(tx_hash: str) -> bool:
    """Validate an EVM transaction hash (0x followed by 64 hex characters)."""
    if not tx_hash:
        return False
    return bool(_EVM_TX_HASH.fullmatch(tx_hash))


def validate_octra_tx_hash(tx_hash: str) -> bool:
    """Validate an Octra transaction hash (64 hex characters, no prefix)."""
    if not tx_hash:
        return False
    return bool(_OCTRA_TX_HASH.fullmatch(tx_hash))


def validate_evm_private_key(key: str) -> bool:
    """Validate a hex secp256k1 private key (with or without 0x prefix)."""
    if not key:
        return False
    return bool(_EVM_PRIVATE_KEY.fullmatch(key))


def validate_ed25519_seed(seed_b64: str) -> bool:
    """
    Validate a base64-encoded 32-byte ed25519 seed.

    Args:
        seed_b64: Base64 seed as stored in OCTRA_PRIVATE_KEY

    Returns:
        True if the value decodes to exactly 32 bytes
    """
    if not seed_b64:
        return False
    try:
        raw = base64.b64decode(seed_b64, validate=True)
    except (binascii.Error, ValueError):
        return False
    return len(raw) == 32

