# -*- encoding: utf-8 -*-
"""
Superbridge Relayer
superbridge_relayer.scanner module

Chunked event log scanning on the L2 bridge contract.

RPC endpoints cap the block span of a single eth_getLogs call, so every
requested range is split into fixed-size windows and the decoded results are
concatenated in chain order. A failure on any window fails the whole scan;
callers must not move their cursor past a range that did not scan cleanly.
"""

import logging

from superbridge_relayer.errors import ScanError
from superbridge_relayer.events import Initiation, Refund

logger = logging.getLogger(__name__)

MAX_CHUNK_SIZE = 500  # blocks per eth_getLogs request

INITIATION_EVENT = "BridgeInitiated"
REFUND_EVENT = "Refunded"


def chunk_range(from_block, to_block, size=MAX_CHUNK_SIZE):
    """Split an inclusive block range into inclusive sub-ranges of `size` blocks.

    Yields nothing when from_block > to_block.
    """
    if size < 1:
        raise ValueError("Chunk size must be positive")
    start = from_block
    while start <= to_block:
        end = min(start + size - 1, to_block)
        yield start, end
        start = end + 1


def _decode_initiation(log):
    args = log["args"]
    return Initiation(
        transfer_id=args["transferId"],
        sender=args["user"],
        original_amount=args["originalAmount"],
        bridged_amount=args["bridgedAmount"],
        timestamp=args["timestamp"],
        block_number=log["blockNumber"],
        log_index=log.get("logIndex", 0),
        tx_hash=log.get("transactionHash"),
    )


def _decode_refund(log):
    args = log["args"]
    return Refund(
        transfer_id=args["transferId"],
        recipient=args["user"],
        amount=args["amount"],
        block_number=log["blockNumber"],
        log_index=log.get("logIndex", 0),
        tx_hash=log.get("transactionHash"),
    )


class LogScanner:
    """Fetches and decodes bridge events from the L2 contract."""

    def __init__(self, contract, chunk_size=MAX_CHUNK_SIZE):
        self.contract = contract
        self.chunk_size = chunk_size

    def fetch(self, event_name, from_block, to_block):
        """Return raw logs for one event over [from_block, to_block].

        Raises:
            ScanError: if any sub-range query fails.
        """
        logs = []
        event = getattr(self.contract.events, event_name)
        for start, end in chunk_range(from_block, to_block, self.chunk_size):
            logger.debug("Querying %s blocks %d to %d", event_name, start, end)
            try:
                chunk = event().get_logs(from_block=start, to_block=end)
            except Exception as exc:
                raise ScanError(event_name, start, end, exc) from exc
            logs.extend(chunk)
        return logs

    def scan_initiations(self, from_block, to_block):
        """Decoded BridgeInitiated events in chain order."""
        logs = self.fetch(INITIATION_EVENT, from_block, to_block)
        events = [_decode_initiation(log) for log in logs]
        events.sort(key=lambda e: e.position)
        return events

    def scan_refunds(self, from_block, to_block):
        """Decoded Refunded events in chain order."""
        logs = self.fetch(REFUND_EVENT, from_block, to_block)
        events = [_decode_refund(log) for log in logs]
        events.sort(key=lambda e: e.position)
        return events
