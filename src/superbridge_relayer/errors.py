# -*- encoding: utf-8 -*-
"""
Superbridge Relayer
superbridge_relayer.errors module

Error types raised by the relayer components.
"""


class RelayerError(Exception):
    """Base exception for all relayer errors."""


class ConfigError(RelayerError):
    """Missing or invalid startup configuration. Always fatal."""


class ScanError(RelayerError):
    """A log query failed for part of a requested block range."""

    def __init__(self, event_name, from_block, to_block, cause=None):
        self.event_name = event_name
        self.from_block = from_block
        self.to_block = to_block
        super().__init__(
            f"{event_name} log scan failed for blocks {from_block}-{to_block}: {cause}"
        )


class RecordStoreError(RelayerError):
    """The record store rejected or failed an operation."""


class RecordConflict(RecordStoreError):
    """Insert of a transfer id that is already recorded."""

    def __init__(self, tx_id):
        self.tx_id = tx_id
        super().__init__(f"Transfer {tx_id} already recorded")


class TransactionReverted(RelayerError):
    """A mined transaction has receipt status 0."""

    def __init__(self, tx_hash, block_number):
        self.tx_hash = tx_hash
        self.block_number = block_number
        super().__init__(f"Transaction {tx_hash} reverted in block {block_number}")


class RetryExhausted(RelayerError):
    """All attempts of a retried operation failed."""

    def __init__(self, description, attempts, last_error=None):
        self.description = description
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{description} failed after {attempts} attempts: {last_error}"
        )


class PayoutFailed(RetryExhausted):
    """The L1 payout could not be confirmed within the attempt limit."""


class CompletionFailed(RetryExhausted):
    """The L2 complete call could not be confirmed within the attempt limit."""
