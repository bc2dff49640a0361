"""
Interactive Publisher

Broadcasts staged steps one at a time. For each step the operator picks one
of the pre-signed fee variants; after broadcasting, the operator may ask to
retry with a higher fee (same nonce, so the new transaction replaces the old
one) or wait for the receipt. Steps are strictly sequential: a step is only
presented once its predecessor is confirmed.

Per-step state machine:

    PRESENTING --choose--> SUBMITTED --confirm--> CONFIRMED
        |  ^                   |
        |  +--represent-- RETRY_REQUESTED <--retry--+
        +--stop--> STOPPED

    PRESENTING --wait--> SUBMITTED   (retry with nothing higher, or stop
                                      with a variant already in flight)
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..config.issuance_config import RECEIPT_POLL_DELAY, RECEIPT_POLL_MAX_DELAY, RECEIPT_TIMEOUT, WEI_PER_GWEI
from ..errors import (
    AddressPredictionMismatch,
    InvalidFeeChoice,
    OperatorStop,
    ReceiptTimeout,
    TransactionRevert,
)
from .base import SendEntry, Step
from .codec import no_hex_prefix
from .ledger import receipt_succeeded

logger = logging.getLogger(__name__)


class PublishState(Enum):
    PRESENTING = "presenting"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    RETRY_REQUESTED = "retry_requested"
    STOPPED = "stopped"


class PublishEvent(Enum):
    CHOOSE = "choose"          # a valid fee was picked and broadcast
    REJECT = "reject"          # invalid choice or failed broadcast
    STOP = "stop"              # operator stops before broadcasting
    RETRY = "retry"            # operator wants a higher fee
    CONFIRM = "confirm"        # a successful receipt arrived
    REPRESENT = "represent"    # show the choices again
    WAIT = "wait"              # nothing new to send; wait on what was broadcast


TRANSITIONS = {
    (PublishState.PRESENTING, PublishEvent.CHOOSE): PublishState.SUBMITTED,
    (PublishState.PRESENTING, PublishEvent.REJECT): PublishState.PRESENTING,
    (PublishState.PRESENTING, PublishEvent.STOP): PublishState.STOPPED,
    (PublishState.PRESENTING, PublishEvent.WAIT): PublishState.SUBMITTED,
    (PublishState.SUBMITTED, PublishEvent.RETRY): PublishState.RETRY_REQUESTED,
    (PublishState.SUBMITTED, PublishEvent.CONFIRM): PublishState.CONFIRMED,
    (PublishState.RETRY_REQUESTED, PublishEvent.REPRESENT): PublishState.PRESENTING,
}

TERMINAL_STATES = {PublishState.CONFIRMED, PublishState.STOPPED}


def transition(state: PublishState, event: PublishEvent) -> PublishState:
    """Pure transition function; illegal moves raise ValueError."""
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise ValueError(f"illegal transition: {state.value} on {event.value}") from None


# ============================================================================
# OPERATOR PROMPTS
# ============================================================================

STOP_WORDS = {"stop", "quit", "abort"}
RETRY_WORD = "retry"


def format_gwei(fee_level: int) -> str:
    gwei = fee_level / WEI_PER_GWEI
    return f"{gwei:g}"


def parse_fee_choice(answer: str, step: Step) -> int:
    """
    Map an operator answer (fee in gwei) to one of the step's fee levels.

    Raises:
        InvalidFeeChoice: not a number, or not a staged fee level
    """
    try:
        wei = int(round(float(answer.strip()) * WEI_PER_GWEI))
    except ValueError:
        raise InvalidFeeChoice(answer, [format_gwei(f) for f in step.fee_levels]) from None
    if step.variant_for(wei) is None:
        raise InvalidFeeChoice(answer, [format_gwei(f) for f in step.fee_levels])
    return wei


class ConsoleOperator:
    """Prompts on stdin/stdout."""

    def __init__(self, input_fn: Callable[[str], str] = input):
        self._input = input_fn

    def choose_fee(self, step: Step, fee_levels: Sequence[int]) -> str:
        choices = " ".join(format_gwei(f) for f in fee_levels)
        return self._input(f"Choose the gas price (gwei) you would like to use, or 'stop':\n{choices}\n")

    def after_submit(self, step: Step, tx_hash: str) -> str:
        return self._input("type retry if you would like to try with more gas\n")


# ============================================================================
# RECEIPTS
# ============================================================================

def wait_for_receipt(
    ledger,
    tx_hashes: Sequence[str],
    poll_delay: float = RECEIPT_POLL_DELAY,
    max_delay: float = RECEIPT_POLL_MAX_DELAY,
    timeout: Optional[float] = RECEIPT_TIMEOUT,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Tuple[str, Dict[str, Any]]:
    """
    Poll until any of ``tx_hashes`` has a receipt.

    Several hashes are polled because a fee retry replaces the transaction
    but the earlier variant may still be the one that gets mined.
    The delay doubles after every empty poll, up to ``max_delay``.

    Raises:
        ReceiptTimeout: nothing mined within ``timeout`` seconds (None: no bound)
    """
    started = clock()
    delay = poll_delay
    while True:
        for tx_hash in tx_hashes:
            receipt = ledger.get_transaction_receipt(tx_hash)
            if receipt is not None:
                return tx_hash, receipt
        waited = clock() - started
        if timeout is not None and waited >= timeout:
            raise ReceiptTimeout(tx_hashes, waited)
        logger.debug(f"No receipt yet for {list(tx_hashes)}; retrying in {delay:.1f}s")
        sleep(delay)
        delay = min(delay * 2, max_delay)


def security_id_from_receipt(receipt: Dict[str, Any]) -> int:
    """The cap table logs the new security id as the first log's data word."""
    logs = receipt.get('logs') or []
    if not logs:
        raise ValueError("initialize receipt carries no logs")
    data = logs[0]['data']
    if isinstance(data, (bytes, bytearray)):
        return int.from_bytes(bytes(data), 'big')
    return int(no_hex_prefix(str(data)), 16)


# ============================================================================
# PUBLISHER
# ============================================================================

@dataclass
class StepOutcome:
    """What happened to one step: the mined hash and every hash broadcast"""
    tx_hash: str
    receipt: Dict[str, Any]
    fee_level: int
    broadcast: List[Tuple[int, str]] = field(default_factory=list)


class InteractivePublisher:
    """
    Publishes staged steps through an operator.

    Not re-entrant: one step is in flight at a time.
    """

    def __init__(
        self,
        ledger,
        operator=None,
        poll_delay: float = RECEIPT_POLL_DELAY,
        max_delay: float = RECEIPT_POLL_MAX_DELAY,
        timeout: Optional[float] = RECEIPT_TIMEOUT,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ledger = ledger
        self.operator = operator or ConsoleOperator()
        self.poll_delay = poll_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock
        self.records: List[SendEntry] = []
        self._busy = False

    def publish(self, step: Step) -> str:
        """Publish one step; returns the hash of the transaction that was mined."""
        return self.publish_step(step).tx_hash

    def publish_step(self, step: Step) -> StepOutcome:
        if self._busy:
            raise RuntimeError("publisher is already publishing a step")
        self._busy = True
        try:
            return self._run(step)
        finally:
            self._busy = False

    def _run(self, step: Step) -> StepOutcome:
        state = PublishState.PRESENTING
        broadcast: List[Tuple[int, str]] = []
        logger.info(step.description)

        while state not in TERMINAL_STATES:
            if state == PublishState.PRESENTING:
                state = self._present(step, broadcast, state)

            elif state == PublishState.SUBMITTED:
                answer = self.operator.after_submit(step, broadcast[-1][1])
                if answer.strip().lower() == RETRY_WORD:
                    state = transition(state, PublishEvent.RETRY)
                    continue
                tx_hash, receipt = wait_for_receipt(
                    self.ledger, [h for _, h in broadcast],
                    poll_delay=self.poll_delay, max_delay=self.max_delay,
                    timeout=self.timeout, sleep=self._sleep, clock=self._clock,
                )
                self._check_receipt(step, tx_hash, receipt)
                state = transition(state, PublishEvent.CONFIRM)

            elif state == PublishState.RETRY_REQUESTED:
                state = transition(state, PublishEvent.REPRESENT)

        if state == PublishState.STOPPED:
            raise OperatorStop(f"stopped before '{step.description}'")

        fee_level = next(fee for fee, h in broadcast if h == tx_hash)
        entry = SendEntry(
            description=step.description,
            tx_hash=tx_hash,
            gas_used=int(receipt.get('gasUsed', 0)),
            fee_level=fee_level,
            data=dict(step.params),
        )
        self.records.append(entry)
        logger.info(f"confirmed: {tx_hash}")
        return StepOutcome(tx_hash=tx_hash, receipt=receipt, fee_level=fee_level, broadcast=broadcast)

    def _present(self, step: Step, broadcast: List[Tuple[int, str]], state: PublishState) -> PublishState:
        """One prompt: returns the next state."""
        highest = max((fee for fee, _ in broadcast), default=None)
        choices = [f for f in step.fee_levels if highest is None or f > highest]
        if not choices:
            logger.warning("No higher fee level staged for this step; waiting on what was sent")
            return transition(state, PublishEvent.WAIT)

        answer = self.operator.choose_fee(step, choices)
        if answer.strip().lower() in STOP_WORDS:
            if broadcast:
                logger.warning("A transaction for this step is already broadcast; waiting for it instead of stopping")
                return transition(state, PublishEvent.WAIT)
            return transition(state, PublishEvent.STOP)

        try:
            fee_level = parse_fee_choice(answer, step)
            if fee_level not in choices:
                # must outbid every fee already broadcast
                raise InvalidFeeChoice(answer, [format_gwei(f) for f in choices])
        except InvalidFeeChoice as e:
            logger.error(str(e))
            return transition(state, PublishEvent.REJECT)

        variant = step.variant_for(fee_level)
        try:
            tx_hash = self.ledger.send_raw_transaction(variant.raw_transaction)
        except Exception as e:
            logger.error(f"broadcast failed: {e}")
            return transition(state, PublishEvent.REJECT)

        broadcast.append((fee_level, tx_hash))
        logger.info(f"sent: {tx_hash} at {format_gwei(fee_level)} gwei")
        return transition(state, PublishEvent.CHOOSE)

    def _check_receipt(self, step: Step, tx_hash: str, receipt: Dict[str, Any]) -> None:
        if not receipt_succeeded(receipt):
            logger.error(f"transaction failed: {tx_hash} ({step.description})")
            raise TransactionRevert(tx_hash, step.description)
        predicted = step.predicted_address
        if predicted is not None:
            actual = receipt.get('contractAddress')
            if actual is None or actual.lower() != predicted.lower():
                raise AddressPredictionMismatch(predicted, actual)

    def publish_all(self, steps: Sequence[Step]) -> List[SendEntry]:
        """Publish steps in order, halting on the first failure."""
        start = len(self.records)
        for step in steps:
            self.publish(step)
        return self.records[start:]


# ============================================================================
# STAGE DRIVERS
# ============================================================================

def publish_stage1(
    publisher: InteractivePublisher,
    stage1,
    on_security_id: Optional[Callable[[str, int], None]] = None,
) -> Dict[str, int]:
    """
    Publish every cap table initialization; returns security ids by name.

    ``on_security_id(name, security_id)`` runs as soon as each id is known,
    before the next initialization is presented.
    """
    security_ids = {}
    for security_name, step in stage1:
        logger.info(f"Initializing {security_name}")
        outcome = publisher.publish_step(step)
        security_id = security_id_from_receipt(outcome.receipt)
        logger.info(f"securityId = {security_id}")
        security_ids[security_name] = security_id
        if on_security_id is not None:
            on_security_id(security_name, security_id)
    return security_ids


def publish_stage2(publisher: InteractivePublisher, stage2) -> List[SendEntry]:
    """Publish distribution and deployment for every security, in order."""
    records = []
    for security_name, steps in stage2:
        logger.info(f"Finishing {security_name}")
        records.extend(publisher.publish_all(steps))
    return records
