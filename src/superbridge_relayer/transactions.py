# -*- encoding: utf-8 -*-
"""
Superbridge Relayer
superbridge_relayer.transactions module

Build, sign, broadcast and confirm contract transactions.

Used for the L1 payout() call and the L2 complete() call. Fees use
EIP-1559 (type-2) parameters when the chain reports a base fee, and gas is
estimated with a safety buffer, falling back to a fixed limit when
estimation fails.
"""

import logging

from superbridge_relayer.errors import TransactionReverted

logger = logging.getLogger(__name__)

FALLBACK_GAS_LIMIT = 300_000
GAS_ESTIMATE_BUFFER = 1.2  # 20% safety margin on gas estimates
PRIORITY_FEE_FLOOR_WEI = 1_000_000_000  # 1 gwei minimum priority fee
RECEIPT_TIMEOUT = 180  # seconds to wait for inclusion


def estimate_eip1559_fees(w3):
    """Estimate EIP-1559 fee parameters from the latest block.

    Returns:
        A dict with 'maxFeePerGas' and 'maxPriorityFeePerGas', or None when
        the chain has no base fee (caller falls back to legacy pricing).
    """
    try:
        base_fee = w3.eth.get_block("latest")["baseFeePerGas"]
    except Exception as exc:
        logger.debug("No base fee available: %s", exc)
        return None

    try:
        priority_fee = max(w3.eth.max_priority_fee, PRIORITY_FEE_FLOOR_WEI)
    except Exception:
        priority_fee = PRIORITY_FEE_FLOOR_WEI

    return {
        "maxFeePerGas": base_fee * 2 + priority_fee,
        "maxPriorityFeePerGas": priority_fee,
    }


def build_contract_tx(w3, contract_fn, account):
    """Build and sign a transaction for a bound contract function call.

    Args:
        w3: Web3 instance for the target chain.
        contract_fn: A bound ContractFunction, e.g. contract.functions.payout(...).
        account: eth_account LocalAccount paying gas and signing.

    Returns:
        A SignedTransaction ready for send_raw_transaction.
    """
    tx_params = {
        "from": account.address,
        "nonce": w3.eth.get_transaction_count(account.address, "pending"),
        "chainId": w3.eth.chain_id,
    }

    fee_params = estimate_eip1559_fees(w3)
    if fee_params is not None:
        tx_params.update(fee_params)
    else:
        tx_params["gasPrice"] = w3.eth.gas_price

    try:
        gas_estimate = contract_fn.estimate_gas({"from": account.address})
        tx_params["gas"] = int(gas_estimate * GAS_ESTIMATE_BUFFER)
    except Exception as exc:
        logger.warning(
            "Gas estimation failed (%s), using fallback gas limit %d",
            exc, FALLBACK_GAS_LIMIT,
        )
        tx_params["gas"] = FALLBACK_GAS_LIMIT

    tx = contract_fn.build_transaction(tx_params)
    return account.sign_transaction(tx)


def wait_for_receipt(w3, tx_hash, timeout=RECEIPT_TIMEOUT):
    """Block until a broadcast transaction is mined.

    Returns:
        The transaction receipt.

    Raises:
        TransactionReverted: if the receipt status is not 1.
    """
    receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
    if receipt["status"] != 1:
        raise TransactionReverted("0x" + bytes(tx_hash).hex(), receipt["blockNumber"])
    return receipt


class PendingTransaction:
    """A contract call signed once and confirmed across retries.

    The first confirm() builds and signs the transaction. Later calls
    rebroadcast the same raw bytes and wait on the same hash, so every
    attempt shares one nonce and at most one of them can be mined. Only a
    reverted receipt, which consumes the nonce without effect, makes the
    next confirm() build a fresh transaction.

    Args:
        w3: Web3 instance for the target chain.
        contract_fn: A bound ContractFunction, e.g. contract.functions.payout(...).
        account: eth_account LocalAccount paying gas and signing.
        timeout: Seconds to wait for a receipt per confirm() call.
    """

    def __init__(self, w3, contract_fn, account, timeout=RECEIPT_TIMEOUT):
        self.w3 = w3
        self.contract_fn = contract_fn
        self.account = account
        self.timeout = timeout
        self.signed = None
        self.broadcasts = 0

    @property
    def tx_hash(self):
        if self.signed is None:
            return None
        return "0x" + bytes(self.signed.hash).hex()

    def confirm(self):
        """Broadcast (or rebroadcast) the transaction and wait for its receipt.

        Raises:
            TransactionReverted: if the transaction was mined and reverted.
        """
        if self.signed is None:
            self.signed = build_contract_tx(self.w3, self.contract_fn, self.account)
            self.broadcasts = 0
        self._broadcast()
        try:
            return wait_for_receipt(self.w3, self.signed.hash, timeout=self.timeout)
        except TransactionReverted:
            self.signed = None
            raise

    def _broadcast(self):
        self.broadcasts += 1
        try:
            self.w3.eth.send_raw_transaction(self.signed.raw_transaction)
        except Exception as exc:
            if self.broadcasts == 1:
                raise
            # Nodes that already hold the transaction reject the resend.
            logger.info("Rebroadcast of %s not accepted (%s)", self.tx_hash, exc)
            return
        if self.broadcasts == 1:
            logger.info("Sent tx %s", self.tx_hash)
        else:
            logger.info("Rebroadcast tx %s (attempt %d)", self.tx_hash, self.broadcasts)
