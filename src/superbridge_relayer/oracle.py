# -*- encoding: utf-8 -*-
"""
Superbridge Relayer
superbridge_relayer.oracle module

Read-only view of a transfer's authoritative state on the L2 contract.
"""

import logging

from superbridge_relayer.events import TransferState, to_transfer_id

logger = logging.getLogger(__name__)


class TransferOracle:
    """Wraps the L2 contract's getTransfer() view.

    No retries are applied here; a failed call propagates so the caller can
    abandon the single event it was processing.
    """

    def __init__(self, contract):
        self.contract = contract

    def get_transfer(self, transfer_id):
        """Return the TransferState for a transfer id (bytes or hex)."""
        raw_id = to_transfer_id(transfer_id)
        user, original_amount, bridged_amount, timestamp, status = (
            self.contract.functions.getTransfer(raw_id).call()
        )
        state = TransferState(user, original_amount, bridged_amount, timestamp, status)
        logger.debug("getTransfer(0x%s) -> status %s", raw_id.hex(), state.status)
        return state

    def get_status(self, transfer_id):
        return self.get_transfer(transfer_id).status
