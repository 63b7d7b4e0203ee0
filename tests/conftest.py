# tests/conftest.py
"""
Shared Test Fixtures - Fake Chains, Clock and Envelope Builders

This module provides in-process stand-ins for the chain gateways and the
clock, plus helpers that build signed-hash envelopes the way wallets do.

Files that USE this module:
- tests.test_settlement, tests.test_quote_service, tests.test_health (fixtures)

Files that this module USES:
- xbridge.domain.envelope (build_envelope)
- xbridge.domain.models (payloads, deposits, payout results)
- xbridge.adapters.persistence (in-memory SqliteIntentStore)
- xbridge.application (PriceOracle, SettlementEngine)
"""
import pytest  # Testing framework for writing and running tests

from xbridge.adapters.persistence import SqliteIntentStore  # In-memory intent store
from xbridge.application.oracle import OracleConfig, PriceOracle  # Oracle under test
from xbridge.application.settlement import EngineConfig, SettlementEngine  # Engine under test
from xbridge.domain.envelope import EnvelopeEncoding, EnvelopeVerifier, build_envelope
from xbridge.domain.errors import ChainUnavailableError
from xbridge.domain.models import (
    Asset,
    ASSET_CHAIN,
    Chain,
    ConfirmationState,
    Deposit,
    PayoutResult,
    SwapDirection,
    SwapIntentPayload,
)
from xbridge.shared.validators import (
    validate_evm_address,
    validate_evm_tx_hash,
    validate_octra_address,
    validate_octra_tx_hash,
)

START_MS = 1_700_000_000_000

OCT_ESCROW = "octBvPDeFCaAZtfr3SBr7Jn6nnWnUuCfAZfgCmaqswV8YR5"
OCT_USER = "oct7Hs2XkQpWmZ4rTbNvYcEd9FgJaL3uK5xVtRn8qPz6Wy1"
ETH_ESCROW = "0x" + "e5" * 20
ETH_USER = "0xAbCdEf0123456789aBcDeF0123456789AbCdEf01"

# Deposit references in each chain's hash format
OCT_TX = "a1" * 32
OCT_TX_2 = "b2" * 32
ETH_TX = "0x" + "c3" * 32


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeChain:
    """
    Scripted ChainGateway.

    deposits: reference -> Deposit returned by fetch_deposit
    payout_results: queue of PayoutResult; success with a fresh hash when empty
    confirmation: what wait_for_confirmation reports
    tx_states: reference -> state reported by confirmation_state
    lookups: every reference passed to fetch_deposit
    """

    def __init__(self, chain: Chain, escrow_address: str, balance: float):
        self.chain = chain
        self.escrow_address = escrow_address
        self.balance = balance
        self.deposits = {}
        self.payout_results = []
        self.confirmation = ConfirmationState.CONFIRMED
        self.tx_states = {}
        self.balance_error = None
        self.dispatched = []
        self.balance_reads = []
        self.lookups = []

    async def fetch_deposit(self, reference):
        self.lookups.append(reference)
        return self.deposits.get(reference)

    async def fetch_balance(self, fresh=False):
        self.balance_reads.append(fresh)
        if self.balance_error is not None:
            raise self.balance_error
        return self.balance

    async def dispatch_payout(self, to_address, amount):
        self.dispatched.append((to_address, amount))
        if self.payout_results:
            result = self.payout_results.pop(0)
        else:
            result = PayoutResult(success=True, tx_hash=f"{self.chain.value}-payout-{len(self.dispatched)}")
        if result.success:
            self.balance -= amount
        return result

    async def wait_for_confirmation(self, reference, timeout=120.0, poll_interval=5.0):
        return self.confirmation

    async def confirmation_state(self, reference):
        return self.tx_states.get(reference, ConfirmationState.UNCONFIRMED)

    def is_valid_address(self, address):
        if self.chain is Chain.SEPOLIA:
            return validate_evm_address(address)
        return validate_octra_address(address)

    def is_valid_tx_hash(self, reference):
        if self.chain is Chain.SEPOLIA:
            return validate_evm_tx_hash(reference)
        return validate_octra_tx_hash(reference)


class RecordingNotifier:
    def __init__(self):
        self.alerts = []

    async def alert(self, title, body):
        self.alerts.append((title, body))


def make_payload(
    direction=SwapDirection.OCT_TO_ETH,
    amount_in=100.0,
    min_amount_out=0.0,
    target_address=None,
    expiry=None,
    nonce="nonce-1",
):
    if target_address is None:
        target_address = ETH_USER if direction is SwapDirection.OCT_TO_ETH else OCT_USER
    return SwapIntentPayload(
        version=1,
        intent_type="swap",
        from_asset=direction.from_asset,
        to_asset=direction.to_asset,
        amount_in=amount_in,
        min_amount_out=min_amount_out,
        target_chain=ASSET_CHAIN[direction.to_asset],
        target_address=target_address,
        expiry=expiry if expiry is not None else START_MS + 3_600_000,
        nonce=nonce,
    )


def add_deposit(
    chain: FakeChain,
    reference: str,
    payload: SwapIntentPayload,
    amount=None,
    to_address=None,
    state=ConfirmationState.CONFIRMED,
    memo=None,
    encoding=None,
):
    """Put a deposit carrying payload on a fake source chain."""
    if encoding is None:
        encoding = EnvelopeEncoding.HEX_JSON if chain.chain is Chain.SEPOLIA else EnvelopeEncoding.JSON
    if memo is None:
        memo = build_envelope(payload, START_MS, encoding)
    sender = OCT_USER if payload.from_asset is Asset.OCT else ETH_USER
    chain.deposits[reference] = Deposit(
        tx_hash=reference,
        from_address=sender,
        to_address=to_address if to_address is not None else chain.escrow_address,
        amount=payload.amount_in if amount is None else amount,
        memo=memo,
        state=state,
    )
    return chain.deposits[reference]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    s = SqliteIntentStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def oracle(clock, store):
    return PriceOracle(OracleConfig(), history_log=store, clock=clock)


@pytest.fixture
def octra():
    return FakeChain(Chain.OCTRA, OCT_ESCROW, balance=50_000.0)


@pytest.fixture
def sepolia():
    return FakeChain(Chain.SEPOLIA, ETH_ESCROW, balance=10.0)


@pytest.fixture
def chains(octra, sepolia):
    return {Chain.OCTRA: octra, Chain.SEPOLIA: sepolia}


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine_config():
    return EngineConfig(
        fee_bps=50,
        liquidity_buffer=1.1,
        max_dispatch_attempts=3,
        confirmation_timeout_s=1.0,
        confirmation_poll_s=0.1,
    )


@pytest.fixture
def engine(store, oracle, chains, engine_config, notifier, clock):
    return SettlementEngine(
        store=store,
        oracle=oracle,
        chains=chains,
        verifier=EnvelopeVerifier(allow_legacy=True),
        config=engine_config,
        notifier=notifier,
        clock=clock,
    )


@pytest.fixture
def unavailable():
    return ChainUnavailableError("RPC down")
