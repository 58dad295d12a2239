# -*- encoding: utf-8 -*-
"""
Superbridge Relayer Test Configuration

Shared pytest fixtures for the relayer test suite.

Chain access is replaced by small in-memory stand-ins for the web3 contract
objects the relayer touches (event log queries, getTransfer, payout,
complete). Everything else is real: eth_account keys and signatures,
eth_abi packing, and a SQLite record store in memory.
"""

import pytest
from eth_account import Account

from superbridge_relayer.completion import CompletionSigner
from superbridge_relayer.oracle import TransferOracle
from superbridge_relayer.payout import PayoutSubmitter
from superbridge_relayer.reconcile import Reconciler
from superbridge_relayer.scanner import LogScanner
from superbridge_relayer.store import SQLiteRecordStore

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# anvil's deterministic accounts #0 and #1
PAYOUT_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
SIGNER_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"

L1_CONTRACT_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
L2_CONTRACT_ADDRESS = "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512"
USER_ADDRESS = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

ID_AA = b"\xaa" * 32
ID_BB = b"\xbb" * 32
ID_CC = b"\xcc" * 32

PENDING, COMPLETED, REFUNDED = 0, 1, 2


# ---------------------------------------------------------------------------
# Log helpers
# ---------------------------------------------------------------------------

def initiation_log(transfer_id, block, amount=100, user=USER_ADDRESS, log_index=0,
                   original_amount=None, timestamp=1_700_000_000):
    return {
        "args": {
            "user": user,
            "originalAmount": original_amount if original_amount is not None else amount,
            "bridgedAmount": amount,
            "transferId": transfer_id,
            "timestamp": timestamp,
        },
        "blockNumber": block,
        "logIndex": log_index,
        "transactionHash": b"\x01" * 32,
    }


def refund_log(transfer_id, block, amount=100, user=USER_ADDRESS, log_index=0):
    return {
        "args": {"transferId": transfer_id, "user": user, "amount": amount},
        "blockNumber": block,
        "logIndex": log_index,
        "transactionHash": b"\x02" * 32,
    }


# ---------------------------------------------------------------------------
# Chain stand-ins
# ---------------------------------------------------------------------------

class StubEvent:
    """Mimics contract.events.<Name>: callable, with get_logs(from_block, to_block)."""

    def __init__(self):
        self.logs = []
        self.queries = []
        self.fail_on = set()  # block numbers whose chunk query raises

    def __call__(self):
        return self

    def get_logs(self, from_block, to_block):
        self.queries.append((from_block, to_block))
        if any(from_block <= b <= to_block for b in self.fail_on):
            raise ConnectionError(f"eth_getLogs failed for {from_block}-{to_block}")
        return [log for log in self.logs if from_block <= log["blockNumber"] <= to_block]


class StubEvents:
    def __init__(self):
        self.BridgeInitiated = StubEvent()
        self.Refunded = StubEvent()


class StubCall:
    """A bound contract function; records its arguments."""

    def __init__(self, name, args, result=None, error=None):
        self.name = name
        self.args = args
        self._result = result
        self._error = error

    def call(self):
        if self._error is not None:
            raise self._error
        return self._result


class StubL2Functions:
    def __init__(self, contract):
        self._contract = contract

    def getTransfer(self, transfer_id):
        c = self._contract
        c.get_transfer_calls.append(transfer_id)
        if transfer_id in c.view_errors:
            return StubCall("getTransfer", (transfer_id,), error=c.view_errors[transfer_id])
        status = c.statuses.get(transfer_id, PENDING)
        return StubCall(
            "getTransfer", (transfer_id,),
            result=(USER_ADDRESS, 100, 100, 1_700_000_000, status),
        )

    def complete(self, transfer_id, signatures, signers):
        return StubCall("complete", (transfer_id, signatures, signers))


class StubL2Contract:
    address = L2_CONTRACT_ADDRESS

    def __init__(self):
        self.events = StubEvents()
        self.statuses = {}      # transfer id -> raw status
        self.view_errors = {}   # transfer id -> exception raised by getTransfer
        self.get_transfer_calls = []
        self.functions = StubL2Functions(self)


class StubL1Functions:
    def payout(self, transfer_id, user, amount):
        return StubCall("payout", (transfer_id, user, amount))


class StubL1Contract:
    address = L1_CONTRACT_ADDRESS

    def __init__(self):
        self.functions = StubL1Functions()


class StubEth:
    def __init__(self, block_number=0):
        self.block_number = block_number


class StubW3:
    def __init__(self, block_number=0):
        self.eth = StubEth(block_number)


class StubTransactor:
    """Replacement for transactions.PendingTransaction: records calls, fails on demand.

    Calling the transactor stands in for building one signed transaction
    (recorded in `builds`); every confirm() on it is one attempt (recorded in
    `calls`). `failures` is the number of leading attempts that raise before
    the first success. `after_success` runs after each successful attempt
    (used to flip on-chain status once complete() lands).
    """

    def __init__(self, block_number=9000, failures=0, after_success=None):
        self.block_number = block_number
        self.failures = failures
        self.after_success = after_success
        self.builds = []
        self.calls = []

    def __call__(self, w3, fn, account, timeout=None):
        self.builds.append((fn.name, fn.args, account.address))
        return _StubPending(self, fn, account)

    def attempt(self, fn, account):
        self.calls.append((fn.name, fn.args, account.address))
        if len(self.calls) <= self.failures:
            raise ConnectionError(f"{fn.name} submission failed")
        if self.after_success is not None:
            self.after_success(fn)
        return {"status": 1, "blockNumber": self.block_number}

    def calls_to(self, name):
        return [c for c in self.calls if c[0] == name]


class _StubPending:
    def __init__(self, transactor, fn, account):
        self._transactor = transactor
        self._fn = fn
        self._account = account

    def confirm(self):
        return self._transactor.attempt(self._fn, self._account)


class CountingStore(SQLiteRecordStore):
    """In-memory SQLite store that counts write operations."""

    def __init__(self):
        super().__init__(":memory:")
        self.inserts = []
        self.updates = []

    def insert(self, record):
        self.inserts.append(record.tx_id)
        super().insert(record)

    def update_status(self, tx_id, status, **extra_fields):
        self.updates.append((tx_id, status, extra_fields))
        return super().update_status(tx_id, status, **extra_fields)

    @property
    def writes(self):
        return len(self.inserts) + len(self.updates)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def payout_account():
    return Account.from_key(PAYOUT_KEY)


@pytest.fixture
def signer_account():
    return Account.from_key(SIGNER_KEY)


@pytest.fixture
def l2_contract():
    return StubL2Contract()


@pytest.fixture
def l1_contract():
    return StubL1Contract()


@pytest.fixture
def l2_w3():
    return StubW3(block_number=1000)


@pytest.fixture
def store():
    s = CountingStore()
    yield s
    s.close()


@pytest.fixture
def sleeps():
    """List that collects every sleep duration requested by the code under test."""
    return []


@pytest.fixture
def payout_transactor():
    return StubTransactor(block_number=9000)


@pytest.fixture
def complete_transactor(l2_contract):
    def _mark_completed(fn):
        l2_contract.statuses[fn.args[0]] = COMPLETED
    return StubTransactor(block_number=1200, after_success=_mark_completed)


@pytest.fixture
def oracle(l2_contract):
    return TransferOracle(l2_contract)


@pytest.fixture
def payout(l1_contract, payout_account, payout_transactor, sleeps):
    return PayoutSubmitter(
        None, l1_contract, payout_account,
        sleep=sleeps.append, transaction_factory=payout_transactor,
    )


@pytest.fixture
def completion(l2_contract, oracle, store, signer_account, payout_account,
               complete_transactor, sleeps):
    return CompletionSigner(
        None, l2_contract, oracle, store,
        signer_account=signer_account,
        gas_account=payout_account,
        destination_address=L1_CONTRACT_ADDRESS,
        sleep=sleeps.append,
        transaction_factory=complete_transactor,
    )


@pytest.fixture
def reconciler(l2_w3, l2_contract, oracle, store, payout, sleeps):
    """Reconciler with completion disabled."""
    return Reconciler(
        l2_w3, LogScanner(l2_contract), oracle, store, payout,
        event_delay=0, sleep=sleeps.append,
    )


@pytest.fixture
def two_phase_reconciler(l2_w3, l2_contract, oracle, store, payout, completion, sleeps):
    """Reconciler with the completion stage enabled."""
    return Reconciler(
        l2_w3, LogScanner(l2_contract), oracle, store, payout,
        completion=completion, event_delay=0, sleep=sleeps.append,
    )
