# -*- encoding: utf-8 -*-
"""
Superbridge Relayer
superbridge_relayer.events module

Transfer data model: lifecycle status, decoded L2 events, the on-chain
transfer view and the record-store row.

Transfer ids are opaque bytes32 values. They are compared as raw bytes and
persisted as lowercase 0x-prefixed hex; they are never read as integers.
"""

import enum

from web3 import Web3

TRANSFER_ID_LENGTH = 32


class TransferStatus(enum.IntEnum):
    """Lifecycle status as stored by the L2 bridge contract."""

    PENDING = 0
    COMPLETED = 1
    REFUNDED = 2

    @property
    def label(self):
        """Record-store spelling of the status."""
        return self.name.lower()

    @property
    def terminal(self):
        return self is not TransferStatus.PENDING

    @classmethod
    def from_label(cls, label):
        return cls[label.upper()]


def describe_status(raw):
    """Human readable name for a raw on-chain status value."""
    try:
        return TransferStatus(raw).name.capitalize()
    except ValueError:
        return f"Unknown ({raw})"


def to_transfer_id(value):
    """Normalize a transfer id given as bytes or hex string to 32 raw bytes.

    Raises:
        ValueError: if the value is not exactly 32 bytes.
    """
    if isinstance(value, str):
        raw = Web3.to_bytes(hexstr=value)
    else:
        raw = bytes(value)
    if len(raw) != TRANSFER_ID_LENGTH:
        raise ValueError(
            f"Transfer id must be {TRANSFER_ID_LENGTH} bytes, got {len(raw)}"
        )
    return raw


def transfer_id_hex(transfer_id):
    """Canonical record-store key for a transfer id."""
    return "0x" + to_transfer_id(transfer_id).hex()


class Initiation:
    """Decoded BridgeInitiated event."""

    __slots__ = (
        "transfer_id", "sender", "original_amount", "bridged_amount",
        "timestamp", "block_number", "log_index", "tx_hash",
    )

    def __init__(self, transfer_id, sender, original_amount, bridged_amount,
                 timestamp, block_number, log_index=0, tx_hash=None):
        self.transfer_id = to_transfer_id(transfer_id)
        self.sender = sender
        self.original_amount = int(original_amount)
        self.bridged_amount = int(bridged_amount)
        self.timestamp = int(timestamp)
        self.block_number = int(block_number)
        self.log_index = int(log_index)
        self.tx_hash = tx_hash

    @property
    def tx_id(self):
        return transfer_id_hex(self.transfer_id)

    @property
    def position(self):
        """Sort key giving chain order."""
        return (self.block_number, self.log_index)

    def __repr__(self):
        return (
            f"Initiation(tx_id={self.tx_id}, sender={self.sender}, "
            f"bridged_amount={self.bridged_amount}, block={self.block_number})"
        )


class Refund:
    """Decoded Refunded event."""

    __slots__ = (
        "transfer_id", "recipient", "amount", "block_number", "log_index", "tx_hash",
    )

    def __init__(self, transfer_id, recipient, amount, block_number,
                 log_index=0, tx_hash=None):
        self.transfer_id = to_transfer_id(transfer_id)
        self.recipient = recipient
        self.amount = int(amount)
        self.block_number = int(block_number)
        self.log_index = int(log_index)
        self.tx_hash = tx_hash

    @property
    def tx_id(self):
        return transfer_id_hex(self.transfer_id)

    @property
    def position(self):
        return (self.block_number, self.log_index)

    def __repr__(self):
        return (
            f"Refund(tx_id={self.tx_id}, recipient={self.recipient}, "
            f"amount={self.amount}, block={self.block_number})"
        )


class TransferState:
    """Authoritative transfer view returned by getTransfer().

    `status` is a TransferStatus when the contract returns a known value and
    the raw int otherwise, so unexpected values stay visible to callers.
    """

    __slots__ = ("user", "original_amount", "bridged_amount", "timestamp", "status")

    def __init__(self, user, original_amount, bridged_amount, timestamp, status):
        self.user = user
        self.original_amount = int(original_amount)
        self.bridged_amount = int(bridged_amount)
        self.timestamp = int(timestamp)
        try:
            self.status = TransferStatus(int(status))
        except ValueError:
            self.status = int(status)

    @property
    def is_pending(self):
        return self.status == TransferStatus.PENDING


class TransferRecord:
    """One row of the bridged_events table."""

    __slots__ = (
        "tx_id", "address", "bridged_amount", "status", "block_number",
        "l1_block_number", "timestamp", "signature",
    )

    COLUMNS = __slots__

    def __init__(self, tx_id, address, bridged_amount, status, block_number,
                 timestamp, l1_block_number=None, signature=None):
        self.tx_id = tx_id
        self.address = address
        self.bridged_amount = str(bridged_amount)
        self.status = status if isinstance(status, str) else TransferStatus(status).label
        self.block_number = int(block_number)
        self.l1_block_number = l1_block_number
        self.timestamp = str(timestamp)
        self.signature = signature

    @classmethod
    def from_initiation(cls, event):
        """Build the initial pending row for a newly observed initiation."""
        return cls(
            tx_id=event.tx_id,
            address=event.sender,
            bridged_amount=event.bridged_amount,
            status=TransferStatus.PENDING.label,
            block_number=event.block_number,
            timestamp=event.timestamp,
        )

    @classmethod
    def from_row(cls, row):
        return cls(**{col: row[col] for col in cls.COLUMNS if col in row.keys()})

    def to_dict(self):
        return {col: getattr(self, col) for col in self.COLUMNS}

    def __eq__(self, other):
        if not isinstance(other, TransferRecord):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"TransferRecord({self.to_dict()!r})"
