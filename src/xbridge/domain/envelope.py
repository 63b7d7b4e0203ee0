# src/xbridge/domain/envelope.py
"""
Envelope Verifier - Decode and Authenticate Swap Intents

Deposits carry the user's swap intent inside the transaction memo (Octra) or
calldata (EVM). The memo holds either a bare payload or an envelope
{payload, hash, timestamp, v}, in one of four encodings:

    JSON        {"payload": ...}                       legacy plain memo
    BASE64      base64(json)                           Octra memo, v2
    HEX_JSON    0x + hex(json)                         EVM calldata, v1
    HEX_BASE64  0x + hex(base64(json))                 EVM calldata, v2

Decoding is a single detect -> decode -> normalize step so authentication
and field validation never see the wire encoding. When the envelope declares
a hash it must equal sha256 of the canonical payload JSON exactly; hashless
envelopes are only accepted in legacy mode.

Files that USE this module:
- xbridge.application.settlement (verifies every deposit before pricing)
- tests.test_envelope (unit tests)

Files that this module USES:
- jcs (ES6 number/string serialization, identical to JSON.stringify)
- xbridge.domain.models (SwapIntentPayload, Asset, Chain)
- xbridge.domain.errors (envelope error hierarchy)
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import jcs

from xbridge.domain.errors import (
    InvalidEnvelopeError,
    LegacyEnvelopeRejected,
    TamperedEnvelopeError,
)
from xbridge.domain.models import ASSET_CHAIN, Asset, Chain, SwapIntentPayload

log = logging.getLogger(__name__)

# Field order used by signing clients when hashing the payload
PAYLOAD_FIELDS = (
    "version",
    "intentType",
    "fromAsset",
    "toAsset",
    "amountIn",
    "minAmountOut",
    "targetChain",
    "targetAddress",
    "expiry",
    "nonce",
)

_BASE64 = re.compile(r"^[A-Za-z0-9+/=]+$")
_HEX = re.compile(r"^(?:[0-9a-fA-F]{2})+$")
_SHA256_HEX = re.compile(r"^[0-9a-fA-F]{64}$")


class EnvelopeEncoding(str, Enum):
    JSON = "json"
    BASE64 = "base64"
    HEX_JSON = "hex_json"
    HEX_BASE64 = "hex_base64"


@dataclass(frozen=True)
class DecodedEnvelope:
    """Envelope normalized to one shape regardless of wire encoding."""
    encoding: EnvelopeEncoding
    payload: dict[str, Any]
    declared_hash: Optional[str]
    timestamp: Optional[Any] = None


@dataclass(frozen=True)
class VerifiedIntent:
    """
    Result of a successful verification.

    Attributes:
        payload: Validated swap intent
        encoding: Wire encoding the memo used
        authenticated: False when accepted hashless in legacy mode
    """
    payload: SwapIntentPayload
    encoding: EnvelopeEncoding
    authenticated: bool


def detect_encoding(raw: str) -> EnvelopeEncoding:
    """
    Classify a memo by its outer shape.

    Content that does not start with '{' and only uses the base64 alphabet is
    base64; a 0x prefix marks hex-wrapped calldata whose inner text is
    classified the same way.

    Raises:
        InvalidEnvelopeError: If the memo matches no supported encoding
    """
    text = raw.strip()
    if not text:
        raise InvalidEnvelopeError("Empty envelope")

    if text[:2] in ("0x", "0X"):
        inner = _unhex(text[2:])
        if inner.startswith("{"):
            return EnvelopeEncoding.HEX_JSON
        if _BASE64.match(inner):
            return EnvelopeEncoding.HEX_BASE64
        raise InvalidEnvelopeError("Hex calldata does not contain an envelope")

    if text.startswith("{"):
        return EnvelopeEncoding.JSON
    if _BASE64.match(text):
        return EnvelopeEncoding.BASE64
    raise InvalidEnvelopeError("Unrecognized envelope encoding")


def decode_envelope(raw: Optional[str]) -> DecodedEnvelope:
    """
    Decode a memo into a normalized envelope.

    Args:
        raw: Memo text or 0x-prefixed calldata

    Returns:
        DecodedEnvelope with the payload dict and the declared hash (if any)

    Raises:
        InvalidEnvelopeError: On any decoding or shape error
    """
    if raw is None or raw in ("", "0x"):
        raise InvalidEnvelopeError("No intent payload in transaction")

    encoding = detect_encoding(raw)
    text = raw.strip()

    if encoding in (EnvelopeEncoding.HEX_JSON, EnvelopeEncoding.HEX_BASE64):
        text = _unhex(text[2:])
    if encoding in (EnvelopeEncoding.BASE64, EnvelopeEncoding.HEX_BASE64):
        text = _unbase64(text)

    try:
        envelope = json.loads(text, parse_constant=_reject_constant)
    except json.JSONDecodeError as e:
        raise InvalidEnvelopeError(f"Envelope is not valid JSON: {e.msg}") from e
    except ValueError as e:
        # e.g. integers past the interpreter's digit limit
        raise InvalidEnvelopeError(f"Envelope is not valid JSON: {e}") from e

    if not isinstance(envelope, dict):
        raise InvalidEnvelopeError("Envelope must be a JSON object")

    if "payload" in envelope:
        payload = envelope["payload"]
        if not isinstance(payload, dict):
            raise InvalidEnvelopeError("Envelope payload must be a JSON object")
        declared = envelope.get("hash")
        if declared is not None and not isinstance(declared, str):
            raise InvalidEnvelopeError("Envelope hash must be a string")
        if declared and not _SHA256_HEX.fullmatch(declared):
            raise InvalidEnvelopeError("Envelope hash must be 64 hex characters")
        log.debug("Decoded %s envelope (v=%s)", encoding.value, envelope.get("v", 1))
        return DecodedEnvelope(
            encoding=encoding,
            payload=payload,
            declared_hash=declared or None,
            timestamp=envelope.get("timestamp"),
        )

    # Bare payload without a wrapper
    log.debug("Decoded bare %s payload", encoding.value)
    return DecodedEnvelope(encoding=encoding, payload=envelope, declared_hash=None)


def canonical_json(payload: dict[str, Any]) -> bytes:
    """
    Serialize a payload exactly as the signing client's JSON.stringify does.

    Known fields come first in PAYLOAD_FIELDS order, any extra fields follow
    in received order. Values use ES6 serialization (via jcs), so 0.0000995
    stays "0.0000995" and 100 stays "100".
    """
    ordered = [k for k in PAYLOAD_FIELDS if k in payload]
    ordered += [k for k in payload if k not in PAYLOAD_FIELDS]
    parts = [
        json.dumps(key, ensure_ascii=False) + ":" + jcs.canonicalize(payload[key]).decode("utf-8")
        for key in ordered
    ]
    return ("{" + ",".join(parts) + "}").encode("utf-8")


def payload_hash(payload: dict[str, Any]) -> str:
    """Lowercase hex SHA-256 of the canonical payload JSON."""
    return hashlib.sha256(canonical_json(payload)).hexdigest()


def build_envelope(payload: SwapIntentPayload, timestamp: int, encoding: EnvelopeEncoding) -> str:
    """
    Produce a signed-hash envelope in the requested encoding.

    Mirrors what wallets embed in deposits; used for tooling and tests.
    """
    body = payload.to_json()
    envelope = {"payload": body, "hash": payload_hash(body), "timestamp": timestamp, "v": 2}
    text = json.dumps(envelope, separators=(",", ":"))
    if encoding in (EnvelopeEncoding.BASE64, EnvelopeEncoding.HEX_BASE64):
        text = base64.b64encode(text.encode("utf-8")).decode("ascii")
    if encoding in (EnvelopeEncoding.HEX_JSON, EnvelopeEncoding.HEX_BASE64):
        text = "0x" + text.encode("utf-8").hex()
    return text


class EnvelopeVerifier:
    """
    Authenticates and validates intent envelopes.

    Args:
        allow_legacy: Accept envelopes that carry no hash (reduced trust)
    """

    def __init__(self, allow_legacy: bool = True):
        self.allow_legacy = allow_legacy

    def verify(self, raw: Optional[str]) -> VerifiedIntent:
        """
        Decode, authenticate and validate a memo.

        Returns:
            VerifiedIntent with the canonical payload

        Raises:
            InvalidEnvelopeError: Undecodable envelope or malformed payload
            TamperedEnvelopeError: Declared hash does not match the payload
            LegacyEnvelopeRejected: Hashless envelope with legacy mode off
        """
        decoded = decode_envelope(raw)

        if decoded.declared_hash is not None:
            try:
                actual = payload_hash(decoded.payload)
            except (TypeError, ValueError, OverflowError) as e:
                raise InvalidEnvelopeError(f"Payload cannot be canonicalized: {e}") from e
            if not hmac.compare_digest(actual, decoded.declared_hash):
                log.warning(
                    "Envelope hash mismatch: declared=%s actual=%s",
                    decoded.declared_hash, actual,
                )
                raise TamperedEnvelopeError("Payload hash mismatch - data may have been tampered")
            authenticated = True
        elif self.allow_legacy:
            log.warning("No hash in %s envelope, accepting in legacy mode", decoded.encoding.value)
            authenticated = False
        else:
            raise LegacyEnvelopeRejected("Envelope carries no payload hash")

        payload = parse_payload(decoded.payload)
        return VerifiedIntent(payload=payload, encoding=decoded.encoding, authenticated=authenticated)


def parse_payload(data: dict[str, Any]) -> SwapIntentPayload:
    """
    Validate field presence and typing and build a SwapIntentPayload.

    Raises:
        InvalidEnvelopeError: Naming the first defective field
    """
    missing = [k for k in PAYLOAD_FIELDS if k not in data]
    if missing:
        raise InvalidEnvelopeError(f"Invalid payload structure: missing {', '.join(missing)}")

    version = data["version"]
    if not _is_int(version) or version != 1:
        raise InvalidEnvelopeError(f"Unsupported payload version: {version!r} (expected 1)")
    if data["intentType"] != "swap":
        raise InvalidEnvelopeError(f"Unsupported intentType: {data['intentType']!r} (expected 'swap')")

    try:
        from_asset = Asset(data["fromAsset"])
        to_asset = Asset(data["toAsset"])
    except ValueError as e:
        raise InvalidEnvelopeError(f"Unsupported asset: {e}") from e
    if from_asset is to_asset:
        raise InvalidEnvelopeError(f"fromAsset and toAsset are both {from_asset.value}")

    amount_in = data["amountIn"]
    if not _is_number(amount_in) or amount_in <= 0:
        raise InvalidEnvelopeError(f"amountIn must be a positive number, got {amount_in!r}")
    min_out = data["minAmountOut"]
    if not _is_number(min_out) or min_out < 0:
        raise InvalidEnvelopeError(f"minAmountOut must be a non-negative number, got {min_out!r}")

    try:
        target_chain = Chain(data["targetChain"])
    except ValueError as e:
        raise InvalidEnvelopeError(f"Unsupported targetChain: {data['targetChain']!r}") from e
    if target_chain is not ASSET_CHAIN[to_asset]:
        raise InvalidEnvelopeError(
            f"targetChain {target_chain.value} does not carry {to_asset.value}. "
            f"Expected: {ASSET_CHAIN[to_asset].value}"
        )

    target_address = data["targetAddress"]
    if not isinstance(target_address, str) or not target_address.strip():
        raise InvalidEnvelopeError("targetAddress must be a non-empty string")

    expiry = data["expiry"]
    if not _is_number(expiry) or expiry != int(expiry) or expiry <= 0:
        raise InvalidEnvelopeError(f"expiry must be epoch milliseconds, got {expiry!r}")

    nonce = data["nonce"]
    if not isinstance(nonce, str) or not nonce:
        raise InvalidEnvelopeError("nonce must be a non-empty string")

    return SwapIntentPayload(
        version=1,
        intent_type="swap",
        from_asset=from_asset,
        to_asset=to_asset,
        amount_in=float(amount_in),
        min_amount_out=float(min_out),
        target_chain=target_chain,
        target_address=target_address.strip(),
        expiry=int(expiry),
        nonce=nonce,
    )


def _unhex(text: str) -> str:
    if not _HEX.match(text):
        raise InvalidEnvelopeError("Calldata is not valid hex")
    try:
        return bytes.fromhex(text).decode("utf-8").strip()
    except UnicodeDecodeError as e:
        raise InvalidEnvelopeError("Calldata is not UTF-8 text") from e


def _reject_constant(name: str) -> float:
    # json.loads would otherwise accept NaN and Infinity
    raise InvalidEnvelopeError(f"Envelope contains a non-finite number: {name}")


def _unbase64(text: str) -> str:
    try:
        return base64.b64decode(text, validate=True).decode("utf-8")
    except (binascii.Error, ValueError) as e:
        # UnicodeDecodeError is a ValueError
        raise InvalidEnvelopeError("Envelope is not valid base64") from e


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)
