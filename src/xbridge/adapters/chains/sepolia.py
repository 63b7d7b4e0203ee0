# src/xbridge/adapters/chains/sepolia.py
"""
Sepolia Chain Client - ETH Deposits and Payouts via web3

This module implements the Ethereum Sepolia client. ETH->OCT deposits carry
the intent envelope as transaction calldata (0x-prefixed hex); OCT->ETH
payouts are plain value transfers signed locally with eth_account.

Files that USE this module:
- xbridge.app (constructs SepoliaClient from settings)
- tests.test_chains (unit tests)

Files that this module USES:
- xbridge.adapters.chains.base (ChainClient base class)
- xbridge.shared.validators (EVM address validation)
"""
import logging
from decimal import Decimal
from typing import Optional

import requests
from eth_account import Account
from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3Exception

from xbridge.adapters.chains.base import ChainClient
from xbridge.domain.errors import ChainUnavailableError
from xbridge.domain.models import Chain, ConfirmationState, Deposit, PayoutResult
from xbridge.shared.validators import validate_evm_address, validate_evm_tx_hash

log = logging.getLogger(__name__)

TRANSFER_GAS = 21_000

# Transport and node errors surface as one of these
_RPC_ERRORS = (Web3Exception, requests.exceptions.RequestException, ValueError)


class SepoliaClient(ChainClient):
    """
    web3 client for the ETH hot wallet.

    The hot wallet address (derived from the key) is the escrow when a key
    is configured; otherwise the configured escrow address is used read-only.

    Args:
        rpc_url: Sepolia JSON-RPC URL
        escrow_address: Deposit address for ETH->OCT swaps
        private_key: Hot wallet key; empty disables payouts
        timeout: HTTP timeout in seconds
        balance_cache_seconds: TTL of the cached balance
        w3: Pre-built Web3 instance (tests)
    """

    chain = Chain.SEPOLIA

    def __init__(
        self,
        rpc_url: str,
        escrow_address: str = "",
        private_key: str = "",
        timeout: int = 10,
        balance_cache_seconds: int = 15,
        w3: Optional[Web3] = None,
    ):
        self.account = Account.from_key(private_key) if private_key else None
        address = self.account.address if self.account else escrow_address
        super().__init__(address, timeout, balance_cache_seconds)
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        if self.account:
            log.info("Sepolia hot wallet initialized: %s", self.account.address)
        else:
            log.warning("No Sepolia private key configured - OCT->ETH payouts disabled")

    def get_deposit(self, reference: str) -> Optional[Deposit]:
        try:
            tx = self.w3.eth.get_transaction(reference)
        except TransactionNotFound:
            log.info("Sepolia transaction not found: %s", reference)
            return None
        except _RPC_ERRORS as e:
            log.error("Sepolia get_transaction failed for %s: %s", reference, e)
            raise ChainUnavailableError(f"Sepolia RPC request failed: {e}")

        state = self.get_tx_state(reference)
        deposit = Deposit(
            tx_hash=reference,
            from_address=tx["from"],
            to_address=tx.get("to") or "",
            amount=float(Web3.from_wei(tx["value"], "ether")),
            memo=Web3.to_hex(tx["input"]),
            state=state,
        )
        log.debug("Sepolia transaction %s: %s", reference, deposit)
        return deposit

    def get_tx_state(self, reference: str) -> ConfirmationState:
        try:
            receipt = self.w3.eth.get_transaction_receipt(reference)
        except TransactionNotFound:
            return ConfirmationState.UNCONFIRMED
        except _RPC_ERRORS as e:
            log.error("Sepolia receipt lookup failed for %s: %s", reference, e)
            raise ChainUnavailableError(f"Sepolia RPC request failed: {e}")
        return ConfirmationState.CONFIRMED if receipt["status"] == 1 else ConfirmationState.FAILED

    def get_balance(self) -> float:
        if not self.escrow_address:
            return 0.0
        try:
            wei = self.w3.eth.get_balance(Web3.to_checksum_address(self.escrow_address))
        except _RPC_ERRORS as e:
            log.error("Sepolia balance fetch failed: %s", e)
            raise ChainUnavailableError(f"Sepolia RPC request failed: {e}")
        return float(Web3.from_wei(wei, "ether"))

    def is_valid_address(self, address: str) -> bool:
        return validate_evm_address(address)

    def is_valid_tx_hash(self, reference: str) -> bool:
        return validate_evm_tx_hash(reference)

    def send_payout(self, to_address: str, amount: float) -> PayoutResult:
        if self.account is None:
            return PayoutResult(success=False, error="Sepolia not initialized")

        value = Web3.to_wei(Decimal(repr(amount)), "ether")
        try:
            balance = self.w3.eth.get_balance(self.account.address)
            if balance < value:
                return PayoutResult(success=False, error="Insufficient hot wallet balance")

            tx = {
                "to": Web3.to_checksum_address(to_address),
                "value": value,
                "gas": TRANSFER_GAS,
                "gasPrice": self.w3.eth.gas_price,
                "nonce": self.w3.eth.get_transaction_count(self.account.address, "pending"),
                "chainId": self.w3.eth.chain_id,
            }
            signed = self.account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except _RPC_ERRORS as e:
            log.error("Sepolia send error: %s", e)
            return PayoutResult(success=False, error=str(e))

        tx_ref = Web3.to_hex(tx_hash)
        log.info("Sent %s ETH to %s, tx: %s", amount, to_address, tx_ref)
        return PayoutResult(success=True, tx_hash=tx_ref)
