# -*- encoding: utf-8 -*-
"""
Superbridge Relayer
superbridge_relayer.payout module

L1 payout submission for pending transfers.

The L1 payout() entry point is not idempotent: calling it twice for the same
transfer id pays twice. The caller guarantees at-most-once by recording the
transfer before paying; this module only bounds the retries of a single
payout within one cycle.
"""

import logging
import time

from superbridge_relayer.errors import PayoutFailed
from superbridge_relayer.events import to_transfer_id
from superbridge_relayer.retry import DEFAULT_ATTEMPTS, exponential_delay, retry_with_backoff
from superbridge_relayer.transactions import RECEIPT_TIMEOUT, PendingTransaction

logger = logging.getLogger(__name__)


class PayoutSubmitter:
    """Submits payout(transferId, user, bridgedAmount) on the L1 contract."""

    def __init__(self, w3, contract, account, attempts=DEFAULT_ATTEMPTS,
                 delay=exponential_delay, sleep=time.sleep,
                 receipt_timeout=RECEIPT_TIMEOUT,
                 transaction_factory=PendingTransaction):
        self.w3 = w3
        self.contract = contract
        self.account = account
        self.attempts = attempts
        self.delay = delay
        self.sleep = sleep
        self.receipt_timeout = receipt_timeout
        self._transaction_factory = transaction_factory

    def submit(self, transfer_id, recipient, amount):
        """Pay out a transfer and wait for inclusion.

        Args:
            transfer_id: bytes32 transfer id.
            recipient: L1 address receiving the funds.
            amount: bridged amount in the L1 token's base units.

        Returns:
            The confirmed transaction receipt.

        Raises:
            PayoutFailed: when every attempt failed or reverted.
        """
        raw_id = to_transfer_id(transfer_id)
        label = f"Payout of 0x{raw_id.hex()}"

        # Retries rebroadcast this one signed transaction under the same nonce.
        pending = self._transaction_factory(
            self.w3,
            self.contract.functions.payout(raw_id, recipient, int(amount)),
            self.account,
            timeout=self.receipt_timeout,
        )
        receipt = retry_with_backoff(
            pending.confirm,
            attempts=self.attempts,
            delay=self.delay,
            sleep=self.sleep,
            description=label,
            exhausted=PayoutFailed,
        )
        logger.info(
            "%s confirmed in L1 block %d", label, receipt["blockNumber"]
        )
        return receipt
