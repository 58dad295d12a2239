# -*- encoding: utf-8 -*-
"""
Superbridge Relayer
superbridge_relayer.completion module

Two-phase completion: attest that a payout happened and finalize the
transfer on L2.

The attestation digest binds the transfer to one destination contract:

    digest = keccak256(abi.encodePacked(transferId, recipient, amount, l1Contract))

It is signed with the designated signer's secp256k1 key using EIP-191
personal-message framing, then submitted as complete(transferId,
[signature], [signer]). The L2 contract recovers the signer and checks it
against its authorized set before moving the transfer to Completed.
"""

import logging
import time

from eth_abi.packed import encode_packed
from eth_account.messages import encode_defunct
from web3 import Web3

from superbridge_relayer.errors import CompletionFailed
from superbridge_relayer.events import TransferStatus, describe_status, to_transfer_id, transfer_id_hex
from superbridge_relayer.retry import DEFAULT_ATTEMPTS, exponential_delay, retry_with_backoff
from superbridge_relayer.transactions import RECEIPT_TIMEOUT, PendingTransaction

logger = logging.getLogger(__name__)

DIGEST_TYPES = ["bytes32", "address", "uint256", "address"]


def completion_digest(transfer_id, recipient, amount, contract_address):
    """keccak256 over the packed (transferId, recipient, amount, contract) tuple."""
    packed = encode_packed(
        DIGEST_TYPES,
        [
            to_transfer_id(transfer_id),
            Web3.to_checksum_address(recipient),
            int(amount),
            Web3.to_checksum_address(contract_address),
        ],
    )
    return Web3.keccak(packed)


def sign_digest(account, digest):
    """Return the 65-byte (r, s, v) signature of an EIP-191 framed digest."""
    signed = account.sign_message(encode_defunct(primitive=bytes(digest)))
    return bytes(signed.signature)


class CompletionResult:
    """Outcome of one completion attempt."""

    __slots__ = ("submitted", "skipped_reason", "signature", "receipt")

    def __init__(self, submitted, skipped_reason=None, signature=None, receipt=None):
        self.submitted = submitted
        self.skipped_reason = skipped_reason
        self.signature = signature
        self.receipt = receipt


class CompletionSigner:
    """Signs payout attestations and submits complete() on L2.

    Args:
        w3: Web3 instance for L2.
        contract: L2 bridge contract (complete / getTransfer).
        oracle: TransferOracle used for the pre-submission status guard.
        store: RecordStore receiving the final completed update.
        signer_account: LocalAccount whose key produces the attestation.
        gas_account: LocalAccount paying L2 gas for complete().
        destination_address: L1 contract address bound into the digest.
    """

    def __init__(self, w3, contract, oracle, store, signer_account, gas_account,
                 destination_address, attempts=DEFAULT_ATTEMPTS,
                 delay=exponential_delay, sleep=time.sleep,
                 receipt_timeout=RECEIPT_TIMEOUT,
                 transaction_factory=PendingTransaction):
        self.w3 = w3
        self.contract = contract
        self.oracle = oracle
        self.store = store
        self.signer_account = signer_account
        self.gas_account = gas_account
        self.destination_address = Web3.to_checksum_address(destination_address)
        self.attempts = attempts
        self.delay = delay
        self.sleep = sleep
        self.receipt_timeout = receipt_timeout
        self._transaction_factory = transaction_factory

    @property
    def signer_address(self):
        return self.signer_account.address

    def sign(self, transfer_id, recipient, amount):
        digest = completion_digest(transfer_id, recipient, amount, self.destination_address)
        return sign_digest(self.signer_account, digest)

    def complete(self, transfer_id, recipient, amount, l1_block_number):
        """Guard, sign, submit complete() and record the result.

        A transfer already Completed or Refunded on L2 is skipped with no
        chain or store writes.

        Raises:
            CompletionFailed: when every submission attempt failed.
        """
        raw_id = to_transfer_id(transfer_id)
        tx_id = transfer_id_hex(raw_id)

        status = self.oracle.get_status(raw_id)
        if status in (TransferStatus.COMPLETED, TransferStatus.REFUNDED):
            logger.info(
                "Skipping completion of %s: already %s on L2", tx_id, describe_status(status)
            )
            return CompletionResult(False, skipped_reason=describe_status(status).lower())
        if status != TransferStatus.PENDING:
            logger.warning(
                "Skipping completion of %s: unexpected status %s", tx_id, describe_status(status)
            )
            return CompletionResult(False, skipped_reason="unexpected")

        signature = self.sign(raw_id, recipient, amount)

        pending = self._transaction_factory(
            self.w3,
            self.contract.functions.complete(raw_id, [signature], [self.signer_address]),
            self.gas_account,
            timeout=self.receipt_timeout,
        )
        receipt = retry_with_backoff(
            pending.confirm,
            attempts=self.attempts,
            delay=self.delay,
            sleep=self.sleep,
            description=f"Completion of {tx_id}",
            exhausted=CompletionFailed,
        )
        signature_hex = "0x" + signature.hex()
        self.store.update_status(
            tx_id,
            TransferStatus.COMPLETED,
            l1_block_number=l1_block_number,
            signature=signature_hex,
        )
        logger.info("Completed %s on L2 block %d", tx_id, receipt["blockNumber"])
        return CompletionResult(True, signature=signature_hex, receipt=receipt)
