# src/xbridge/adapters/chains/octra.py
"""
Octra Chain Client - Deposits, Balances and OCT Payouts

This module implements the Octra RPC client. Octra deposits carry the intent
envelope in the transaction message; payouts are signed locally with the
escrow's ed25519 key and posted to /send-tx.

RPC endpoints used:
    GET  /tx/{hash}         transaction lookup (amounts in OCT)
    GET  /balance/{addr}    balance (OCT) and account nonce
    GET  /status            current epoch
    POST /send-tx           signed transfer (amounts in micro-OCT)

Files that USE this module:
- xbridge.app (constructs OctraClient from settings)
- tests.test_chains (unit tests)

Files that this module USES:
- xbridge.adapters.chains.base (ChainClient base class)
- xbridge.shared.validators (Octra address validation)
"""
import base64
import json
import logging
import time
from typing import Any, Dict, Optional

import requests
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from xbridge.adapters.chains.base import ChainClient
from xbridge.domain.errors import ChainUnavailableError
from xbridge.domain.models import Chain, ConfirmationState, Deposit, PayoutResult
from xbridge.shared.validators import validate_octra_address, validate_octra_tx_hash

log = logging.getLogger(__name__)

MU_FACTOR = 1_000_000  # 1 OCT = 1,000,000 micro units

_TX_STATES = {
    "confirmed": ConfirmationState.CONFIRMED,
    "failed": ConfirmationState.FAILED,
}


class OctraClient(ChainClient):
    """
    Octra RPC client for the OCT escrow.

    Args:
        rpc_url: Octra RPC base URL
        escrow_address: OCT escrow (deposit and payout) address
        private_key: Base64 32-byte ed25519 seed; empty disables payouts
        timeout: HTTP timeout in seconds
        balance_cache_seconds: TTL of the cached balance
    """

    chain = Chain.OCTRA

    def __init__(
        self,
        rpc_url: str,
        escrow_address: str,
        private_key: str = "",
        timeout: int = 10,
        balance_cache_seconds: int = 15,
    ):
        super().__init__(escrow_address, timeout, balance_cache_seconds)
        self.rpc_url = rpc_url.rstrip("/")
        self._signing_key: Optional[Ed25519PrivateKey] = None
        if private_key:
            self._signing_key = Ed25519PrivateKey.from_private_bytes(base64.b64decode(private_key))
            log.info("Octra escrow wallet initialized: %s", escrow_address)
        else:
            log.warning("No Octra private key configured - ETH->OCT payouts disabled")

    @property
    def payouts_enabled(self) -> bool:
        return self._signing_key is not None and bool(self.escrow_address)

    def _get(self, path: str) -> Optional[Dict[str, Any]]:
        """
        GET a JSON object from the RPC; None on 404.

        Raises:
            ChainUnavailableError: On timeouts, transport errors, other HTTP errors or bad JSON
        """
        url = f"{self.rpc_url}{path}"
        try:
            resp = requests.get(url, timeout=self.timeout)
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            data = resp.json()
        except requests.exceptions.Timeout:
            log.error("Octra RPC timeout after %d seconds: %s", self.timeout, path)
            raise ChainUnavailableError(f"Octra RPC timeout after {self.timeout}s")
        except requests.exceptions.RequestException as e:
            log.error("Octra RPC request failed (%s): %s", path, e)
            raise ChainUnavailableError(f"Octra RPC request failed: {e}")
        except ValueError as e:
            log.error("Octra RPC returned invalid JSON (%s): %s", path, e)
            raise ChainUnavailableError(f"Octra RPC returned invalid JSON: {e}")

        if not isinstance(data, dict):
            log.error("Octra RPC unexpected response type: %r", type(data))
            raise ChainUnavailableError("Octra RPC returned non-dict JSON")
        return data

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_deposit(self, reference: str) -> Optional[Deposit]:
        data = self._get(f"/tx/{reference}")
        if data is None:
            log.info("Octra transaction not found: %s", reference)
            return None

        try:
            amount = float(data.get("amount") or 0)
        except (TypeError, ValueError):
            amount = 0.0

        deposit = Deposit(
            tx_hash=data.get("hash") or reference,
            from_address=data.get("from") or data.get("sender") or "",
            to_address=data.get("to") or data.get("recipient") or "",
            amount=amount,
            memo=data.get("message") or data.get("memo"),
            state=_TX_STATES.get(data.get("status"), ConfirmationState.UNCONFIRMED),
        )
        log.debug("Octra transaction %s: %s", reference, deposit)
        return deposit

    def _account(self) -> Dict[str, Any]:
        data = self._get(f"/balance/{self.escrow_address}")
        if data is None:
            raise ChainUnavailableError(f"Octra account not found: {self.escrow_address}")
        return data

    def get_balance(self) -> float:
        if not self.escrow_address:
            return 0.0
        data = self._account()
        try:
            return float(data.get("balance") or 0)
        except (TypeError, ValueError):
            raise ChainUnavailableError(f"Octra balance is not numeric: {data.get('balance')!r}")

    def get_nonce(self) -> int:
        return int(self._account().get("nonce") or 0)

    def get_epoch(self) -> Optional[int]:
        data = self._get("/status")
        if not data:
            return None
        epoch = data.get("current_epoch") or data.get("epoch")
        return int(epoch) if epoch is not None else None

    def get_tx_state(self, reference: str) -> ConfirmationState:
        data = self._get(f"/tx/{reference}")
        if data is None:
            return ConfirmationState.UNCONFIRMED
        return _TX_STATES.get(data.get("status"), ConfirmationState.UNCONFIRMED)

    def is_valid_address(self, address: str) -> bool:
        return validate_octra_address(address)

    def is_valid_tx_hash(self, reference: str) -> bool:
        return validate_octra_tx_hash(reference)

    # ------------------------------------------------------------------
    # Confirmation (epoch based)
    # ------------------------------------------------------------------

    def start_watch(self) -> Dict[str, Any]:
        epoch = self.get_epoch()
        log.debug("Octra initial epoch: %s", epoch)
        return {"epoch": epoch}

    def poll_confirmation(self, reference: str, watch: Dict[str, Any]) -> ConfirmationState:
        """
        A transaction still pending after the epoch advanced missed its block.
        """
        state = self.get_tx_state(reference)
        if state is not ConfirmationState.UNCONFIRMED:
            return state

        initial = watch.get("epoch")
        if initial is None:
            return state
        current = self.get_epoch()
        if current is not None and current > initial:
            if self.get_tx_state(reference) is ConfirmationState.CONFIRMED:
                return ConfirmationState.CONFIRMED
            log.warning("Octra epoch advanced %s -> %s with %s still pending", initial, current, reference)
            return ConfirmationState.FAILED
        return state

    # ------------------------------------------------------------------
    # Payouts
    # ------------------------------------------------------------------

    def build_transaction(self, to_address: str, amount: float, nonce: int, timestamp: float) -> Dict[str, Any]:
        """
        Build and sign a transfer.

        The signature covers the compact JSON of from, to_, amount, nonce, ou
        and timestamp, in that order.
        """
        if self._signing_key is None:
            raise RuntimeError("Octra signing key not configured")

        tx: Dict[str, Any] = {
            "from": self.escrow_address,
            "to_": to_address,
            "amount": str(int(amount * MU_FACTOR)),
            "nonce": nonce,
            "ou": "10000" if amount < 1000 else "30000",
            "timestamp": timestamp,
        }
        signing_data = json.dumps(tx, separators=(",", ":"))
        signature = self._signing_key.sign(signing_data.encode("utf-8"))
        public_key = self._signing_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        tx["signature"] = base64.b64encode(signature).decode("ascii")
        tx["public_key"] = base64.b64encode(public_key).decode("ascii")
        return tx

    def send_payout(self, to_address: str, amount: float) -> PayoutResult:
        if not self.payouts_enabled:
            return PayoutResult(success=False, error="Octra escrow not initialized")

        try:
            nonce = self.get_nonce() + 1
        except ChainUnavailableError as e:
            return PayoutResult(success=False, error=f"Could not read escrow nonce: {e}")

        tx = self.build_transaction(to_address, amount, nonce, time.time())
        log.info("Sending %.6f OCT to %s (nonce %d)", amount, to_address, nonce)

        try:
            resp = requests.post(f"{self.rpc_url}/send-tx", json=tx, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            log.error("Octra send-tx request failed: %s", e)
            return PayoutResult(success=False, error=f"Octra send-tx request failed: {e}")

        try:
            result = resp.json()
        except ValueError:
            result = {}
        if not isinstance(result, dict):
            result = {}

        if not resp.ok:
            log.error("Octra transaction rejected (%s): %s", resp.status_code, result)
            return PayoutResult(success=False, error=result.get("error") or "Transaction failed")

        tx_hash = result.get("hash") or result.get("tx_hash") or result.get("txHash")
        if not tx_hash:
            log.error("Octra send-tx returned no transaction hash: %s", result)
            return PayoutResult(success=False, error="No transaction hash returned")

        log.info("Octra transaction submitted: %s", tx_hash)
        return PayoutResult(success=True, tx_hash=tx_hash)
