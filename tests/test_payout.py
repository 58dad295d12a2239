# -*- encoding: utf-8 -*-
"""
Tests for the payout module.

The L1 contract is a stub and transaction submission is replaced by a
recording transactor, so these tests check call arguments and the retry
schedule rather than chain state.
"""

import pytest

from superbridge_relayer.errors import PayoutFailed
from superbridge_relayer.payout import PayoutSubmitter
from tests.conftest import ID_AA, USER_ADDRESS, StubTransactor


class TestPayoutSubmitter:

    def test_submits_payout_with_transfer_arguments(
        self, payout, payout_transactor, payout_account
    ):
        receipt = payout.submit(ID_AA, USER_ADDRESS, 100)
        assert receipt["blockNumber"] == 9000
        assert payout_transactor.calls == [
            ("payout", (ID_AA, USER_ADDRESS, 100), payout_account.address),
        ]

    def test_accepts_hex_transfer_id(self, payout, payout_transactor):
        payout.submit("0x" + "aa" * 32, USER_ADDRESS, 100)
        assert payout_transactor.calls[0][1][0] == ID_AA

    def test_retries_then_succeeds(self, l1_contract, payout_account, sleeps):
        transactor = StubTransactor(failures=2)
        submitter = PayoutSubmitter(
            None, l1_contract, payout_account,
            sleep=sleeps.append, transaction_factory=transactor,
        )
        submitter.submit(ID_AA, USER_ADDRESS, 100)
        assert len(transactor.calls) == 3
        assert len(transactor.builds) == 1
        assert sleeps == [2, 4]

    def test_bounded_at_three_attempts(self, l1_contract, payout_account, sleeps):
        transactor = StubTransactor(failures=100)
        submitter = PayoutSubmitter(
            None, l1_contract, payout_account,
            sleep=sleeps.append, transaction_factory=transactor,
        )
        with pytest.raises(PayoutFailed) as excinfo:
            submitter.submit(ID_AA, USER_ADDRESS, 100)
        assert len(transactor.calls) == 3
        assert sleeps == [2, 4]
        assert excinfo.value.attempts == 3
