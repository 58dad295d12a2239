# -*- encoding: utf-8 -*-
"""
Superbridge Relayer
superbridge_relayer.reconcile module

One reconciliation cycle: scan new L2 blocks, then drive each event through
the record store, the L1 payout and (optionally) L2 completion.

The block cursor is a plain value passed into run_cycle() and returned in the
CycleResult. It only advances once every event in the scanned range has been
handled, successfully or by an explicit skip. A scan failure propagates
before any event is touched, so the caller keeps the old cursor and the same
range is scanned again next tick. An event that could not be checked or
recorded is deferred: the rest of the cycle still runs, but the cursor stays
put and the existence guard makes the rescan safe for the others.

Per cycle and per initiation event the flow is:

    Observed -> Deduplicated? -> StatusChecked -> Stored -> PaidOut -> Completed
                      |                |
                      +-> Skipped      +-> Skipped

Refund events skip all guards and overwrite the record status to refunded.
"""

import enum
import logging
import time

from superbridge_relayer.errors import RecordConflict, RetryExhausted
from superbridge_relayer.events import TransferRecord, TransferStatus, describe_status

logger = logging.getLogger(__name__)

DEFAULT_EVENT_DELAY = 0.5  # seconds between processed initiation events

INITIATION = "initiation"
REFUND = "refund"


class Decision(enum.Enum):
    PROCESS = "process"
    SKIP_RECORDED = "skip_recorded"
    SKIP_NOT_PENDING = "skip_not_pending"


class Outcome(str, enum.Enum):
    """Final result of handling one event within a cycle."""

    SKIPPED_RECORDED = "skipped_recorded"
    SKIPPED_NOT_PENDING = "skipped_not_pending"
    CONFLICT = "conflict"
    PAYOUT_FAILED = "payout_failed"
    COMPLETED = "completed"
    COMPLETION_SKIPPED = "completion_skipped"
    COMPLETION_FAILED = "completion_failed"
    REFUNDED = "refunded"
    DEFERRED = "deferred"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Pure planning core
# ---------------------------------------------------------------------------

def next_scan_range(cursor, head):
    """Inclusive block range still to scan, or None when nothing is new."""
    if head <= cursor:
        return None
    return cursor + 1, head


def classify_initiation(already_recorded, status=None):
    """Decide what to do with an initiation event.

    Args:
        already_recorded: whether the record store already has the transfer.
        status: authoritative L2 status; ignored when already_recorded.
    """
    if already_recorded:
        return Decision.SKIP_RECORDED
    if status != TransferStatus.PENDING:
        return Decision.SKIP_NOT_PENDING
    return Decision.PROCESS


class Action:
    __slots__ = ("kind", "event")

    def __init__(self, kind, event):
        self.kind = kind
        self.event = event

    def __repr__(self):
        return f"Action({self.kind}, {self.event!r})"


class CyclePlan:
    __slots__ = ("cursor", "actions")

    def __init__(self, cursor, actions):
        self.cursor = cursor
        self.actions = actions


def plan_cycle(cursor, head, initiations, refunds):
    """Order the scanned events into the actions of one cycle.

    All initiations run before all refunds, each group in ascending chain
    order. The returned cursor is the head the events were scanned up to.
    """
    if next_scan_range(cursor, head) is None:
        return CyclePlan(cursor, [])
    actions = [Action(INITIATION, e) for e in sorted(initiations, key=lambda e: e.position)]
    actions += [Action(REFUND, e) for e in sorted(refunds, key=lambda e: e.position)]
    return CyclePlan(head, actions)


def settle_cursor(cursor, planned, outcomes):
    """Cursor for the next cycle: the planned one unless an event was deferred."""
    if any(item.outcome is Outcome.DEFERRED for item in outcomes):
        return cursor
    return planned


# ---------------------------------------------------------------------------
# Cycle results
# ---------------------------------------------------------------------------

class EventOutcome:
    __slots__ = ("kind", "tx_id", "outcome", "detail")

    def __init__(self, kind, tx_id, outcome, detail=None):
        self.kind = kind
        self.tx_id = tx_id
        self.outcome = outcome
        self.detail = detail

    def __repr__(self):
        return f"EventOutcome({self.kind}, {self.tx_id}, {self.outcome.value})"


class CycleResult:
    """Cursor after a cycle plus what happened to every event in it."""

    __slots__ = ("cursor", "head", "scanned", "outcomes")

    def __init__(self, cursor, head, scanned=None, outcomes=None):
        self.cursor = cursor
        self.head = head
        self.scanned = scanned
        self.outcomes = outcomes or []

    def counts(self):
        totals = {}
        for item in self.outcomes:
            totals[item.outcome.value] = totals.get(item.outcome.value, 0) + 1
        return totals


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

class Reconciler:
    """Runs reconciliation cycles against live collaborators.

    Args:
        w3: Web3 instance for L2 (chain head).
        scanner: LogScanner over the L2 bridge contract.
        oracle: TransferOracle over the L2 bridge contract.
        store: RecordStore.
        payout: PayoutSubmitter for L1.
        completion: Optional CompletionSigner. When None, a confirmed payout
            marks the record completed directly.
        event_delay: Seconds slept between processed initiation events to
            throttle RPC volume.
    """

    def __init__(self, w3, scanner, oracle, store, payout, completion=None,
                 event_delay=DEFAULT_EVENT_DELAY, sleep=time.sleep):
        self.w3 = w3
        self.scanner = scanner
        self.oracle = oracle
        self.store = store
        self.payout = payout
        self.completion = completion
        self.event_delay = event_delay
        self.sleep = sleep

    def chain_head(self):
        return self.w3.eth.block_number

    def initial_cursor(self, lookback):
        """Cursor for a fresh process: head minus the lookback window."""
        head = self.chain_head()
        cursor = max(0, head - lookback)
        logger.info("Starting from block %d (head %d, lookback %d)", cursor, head, lookback)
        return cursor

    def run_cycle(self, cursor):
        """Scan (cursor, head] and process every event found.

        Raises:
            ScanError: if the range could not be scanned; no event has been
                processed and the caller must keep `cursor`.
        """
        head = self.chain_head()
        scan_range = next_scan_range(cursor, head)
        if scan_range is None:
            logger.debug("No new blocks (cursor %d, head %d)", cursor, head)
            return CycleResult(cursor, head)

        from_block, to_block = scan_range
        logger.debug("Scanning blocks %d to %d", from_block, to_block)
        initiations = self.scanner.scan_initiations(from_block, to_block)
        refunds = self.scanner.scan_refunds(from_block, to_block)

        plan = plan_cycle(cursor, head, initiations, refunds)
        outcomes = self.execute(plan.actions)
        if outcomes:
            logger.info(
                "Processed %d initiation and %d refund events in blocks %d-%d",
                len(initiations), len(refunds), from_block, to_block,
            )
        next_cursor = settle_cursor(cursor, plan.cursor, outcomes)
        if next_cursor != plan.cursor:
            logger.warning(
                "Deferred events in blocks %d-%d, cursor stays at %d",
                from_block, to_block, cursor,
            )
        return CycleResult(next_cursor, head, scan_range, outcomes)

    def execute(self, actions):
        """Run planned actions in order; one failing event never stops the rest."""
        outcomes = []
        processed_initiations = 0
        for action in actions:
            event = action.event
            if action.kind == INITIATION:
                if processed_initiations and self.event_delay:
                    self.sleep(self.event_delay)
                processed_initiations += 1
                handler = self.process_initiation
            else:
                handler = self.process_refund
            try:
                outcome, detail = handler(event)
            except Exception as exc:
                logger.exception(
                    "Error processing %s event %s (block %d)",
                    action.kind, event.tx_id, event.block_number,
                )
                outcome, detail = Outcome.ERROR, str(exc)
            outcomes.append(EventOutcome(action.kind, event.tx_id, outcome, detail))
        return outcomes

    def process_initiation(self, event):
        tx_id = event.tx_id
        logger.info(
            "BridgeInitiated %s: user %s, bridged %d, block %d",
            tx_id, event.sender, event.bridged_amount, event.block_number,
        )

        try:
            decision, status = self._check_initiation(event)
            if decision is Decision.PROCESS:
                self.store.insert(TransferRecord.from_initiation(event))
        except RecordConflict:
            logger.info("Insert conflict for %s, already processed", tx_id)
            return Outcome.CONFLICT, None
        except Exception as exc:
            logger.warning(
                "Could not check or record %s (block %d), deferring: %s",
                tx_id, event.block_number, exc,
            )
            return Outcome.DEFERRED, str(exc)

        if decision is Decision.SKIP_RECORDED:
            logger.info("Already recorded: %s", tx_id)
            return Outcome.SKIPPED_RECORDED, None
        if decision is Decision.SKIP_NOT_PENDING:
            logger.info(
                "Skipping %s: status is %s, not Pending", tx_id, describe_status(status)
            )
            return Outcome.SKIPPED_NOT_PENDING, describe_status(status)
        logger.info("Recorded %s as pending", tx_id)

        try:
            receipt = self.payout.submit(event.transfer_id, event.sender, event.bridged_amount)
        except RetryExhausted as exc:
            # No automatic re-drive: the row stays pending until handled manually.
            logger.error(
                "Payout for %s exhausted %d attempts; record left pending",
                tx_id, exc.attempts,
            )
            return Outcome.PAYOUT_FAILED, str(exc.last_error)
        l1_block = receipt["blockNumber"]

        if self.completion is None:
            self.store.update_status(tx_id, TransferStatus.COMPLETED, l1_block_number=l1_block)
            logger.info("Marked %s completed (L1 block %d)", tx_id, l1_block)
            return Outcome.COMPLETED, l1_block

        # Record payout evidence before the second phase.
        self.store.update_status(tx_id, TransferStatus.PENDING, l1_block_number=l1_block)
        try:
            result = self.completion.complete(
                event.transfer_id, event.sender, event.bridged_amount, l1_block
            )
        except RetryExhausted as exc:
            logger.error(
                "Completion for %s exhausted %d attempts after payout in L1 block %d",
                tx_id, exc.attempts, l1_block,
            )
            return Outcome.COMPLETION_FAILED, str(exc.last_error)
        if not result.submitted:
            logger.warning(
                "Completion of %s skipped (%s); record left pending with payout in L1 block %d",
                tx_id, result.skipped_reason, l1_block,
            )
            return Outcome.COMPLETION_SKIPPED, result.skipped_reason
        return Outcome.COMPLETED, l1_block

    def _check_initiation(self, event):
        """Existence and on-chain status guards; the status is only read when unrecorded."""
        already_recorded = self.store.exists(event.tx_id)
        status = None
        if not already_recorded:
            status = self.oracle.get_transfer(event.transfer_id).status
        return classify_initiation(already_recorded, status), status

    def process_refund(self, event):
        tx_id = event.tx_id
        logger.info(
            "Refunded %s: user %s, amount %d, block %d",
            tx_id, event.recipient, event.amount, event.block_number,
        )
        # Refund events are trusted as-is; no existence or terminal-state guard.
        try:
            changed = self.store.update_status(tx_id, TransferStatus.REFUNDED)
        except Exception as exc:
            logger.warning("Could not record refund of %s, deferring: %s", tx_id, exc)
            return Outcome.DEFERRED, str(exc)
        if not changed:
            logger.info("Refund for %s matched no record", tx_id)
        return Outcome.REFUNDED, changed
