"""
Transfer Monitor

Drains the transfer-request queue of a deployed SimplifiedTokenLogic one
index at a time: read the slot, ask the decision policy for a resolution
code, sign and send ``resolve(index, code)`` with the resolver key, wait for
the receipt, then advance. The cursor moves forward only after a confirmed
resolution, so a restart from the returned index never resolves a slot twice.

A resolve whose receipt timed out stays pending on the monitor; the next
pass over that index waits for the same transaction instead of signing a
second one at a fresh nonce.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from eth_utils import to_checksum_address

from ..config.issuance_config import (
    DEFAULT_GAP_SIZE,
    DEFAULT_START_GAS_PRICE_GWEI,
    GAS_LIMITS,
    MONITOR_POLL_INTERVAL,
    RECEIPT_POLL_DELAY,
    RECEIPT_POLL_MAX_DELAY,
    RECEIPT_TIMEOUT,
    WEI_PER_GWEI,
)
from ..errors import TransactionRevert
from . import calls
from .base import TransferRequest, TransferStatus
from .codec import private_key_to_address
from .ledger import receipt_succeeded
from .publisher import wait_for_receipt
from .staging import Signer, sign_transaction

logger = logging.getLogger(__name__)

# decision(request) -> resolution code, or (code, extra) to hand extra to finalize
Decision = Callable[[TransferRequest], Any]
Finalize = Callable[[str, Any], None]


def _split_decision(result: Any) -> Tuple[int, Any]:
    if isinstance(result, tuple):
        code, extra = result
        return int(code), extra
    return int(result), None


class TransferMonitor:
    """Resolves pending transfer requests with the hot-wallet resolver key."""

    def __init__(
        self,
        ledger,
        resolver_key: bytes,
        chain_id: int,
        gas_price: Optional[int] = None,
        signer: Signer = sign_transaction,
        poll_delay: float = RECEIPT_POLL_DELAY,
        max_delay: float = RECEIPT_POLL_MAX_DELAY,
        timeout: Optional[float] = RECEIPT_TIMEOUT,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ledger = ledger
        self.resolver_key = resolver_key
        self.resolver_address = private_key_to_address(resolver_key)
        self.chain_id = chain_id
        self.gas_price = gas_price if gas_price is not None else DEFAULT_START_GAS_PRICE_GWEI * WEI_PER_GWEI
        self._signer = signer
        self.poll_delay = poll_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock
        self._busy = False
        # index -> (tx_hash, extra) of resolves sent but not yet confirmed
        self._pending: Dict[int, Tuple[str, Any]] = {}

    def resolve_range(
        self,
        logic_address: str,
        starting_index: int,
        decision: Decision,
        finalize: Optional[Finalize] = None,
    ) -> int:
        """
        Resolve every contiguous Active request from ``starting_index``.

        Returns:
            The index of the first slot that is not Active (the new cursor).

        Raises:
            TransactionRevert: a resolve transaction failed; ``index`` on the
                exception is the slot to restart from
            ReceiptTimeout: the resolve is still pending; restarting from the
                same index waits for it
        """
        if self._busy:
            raise RuntimeError("monitor is already resolving")
        self._busy = True
        logic_address = to_checksum_address(logic_address)
        try:
            index = starting_index
            while True:
                if index in self._pending:
                    self._confirm(index, finalize)
                    index += 1
                    continue
                request = self.ledger.transfer_request(logic_address, index)
                if not request.is_active:
                    logger.debug(f"slot {index} is {request.status.name}; stopping")
                    return index
                self._resolve(logic_address, request, decision, finalize)
                index += 1
        finally:
            self._busy = False

    def _resolve(self, logic_address: str, request: TransferRequest, decision: Decision, finalize):
        code, extra = _split_decision(decision(request))
        logger.info(
            f"transfer request {request.index}: {request.amount} from {request.src} "
            f"to {request.dest} (spender {request.spender}) -> code {code}"
        )

        tx = {
            'nonce': self.ledger.get_transaction_count(self.resolver_address, 'pending'),
            'gasPrice': self.gas_price,
            'gas': GAS_LIMITS["resolve"],
            'to': logic_address,
            'value': 0,
            'data': calls.resolve(request.index, code),
            'chainId': self.chain_id,
        }
        raw = self._signer(tx, self.resolver_key)
        tx_hash = self.ledger.send_raw_transaction(raw)
        logger.info(f"resolve sent: {tx_hash}")
        self._pending[request.index] = (tx_hash, extra)
        self._confirm(request.index, finalize)

    def _confirm(self, index: int, finalize) -> None:
        tx_hash, extra = self._pending[index]
        _, receipt = wait_for_receipt(
            self.ledger, [tx_hash],
            poll_delay=self.poll_delay, max_delay=self.max_delay,
            timeout=self.timeout, sleep=self._sleep, clock=self._clock,
        )
        del self._pending[index]
        if not receipt_succeeded(receipt):
            logger.error(f"transaction failed: {tx_hash} (resolve {index})")
            raise TransactionRevert(tx_hash, f"resolve({index})", index=index)

        if finalize is not None:
            finalize(tx_hash, extra)

    @property
    def pending(self) -> Dict[int, str]:
        """Resolves sent whose receipt has not been seen yet, by index."""
        return {index: tx_hash for index, (tx_hash, _) in self._pending.items()}

    def active_requests(
        self,
        logic_address: str,
        gap_size: int = DEFAULT_GAP_SIZE,
        start: int = 0,
    ) -> List[TransferRequest]:
        """
        Scan forward from ``start`` collecting Active requests.

        Resolved slots are skipped; the scan gives up after more than
        ``gap_size`` consecutive Unused slots.
        """
        logic_address = to_checksum_address(logic_address)
        found = []
        unused_run = 0
        index = start
        while unused_run <= gap_size:
            request = self.ledger.transfer_request(logic_address, index)
            if request.status == TransferStatus.UNUSED:
                unused_run += 1
            else:
                unused_run = 0
                if request.is_active:
                    found.append(request)
            index += 1
        return found

    def run(
        self,
        logic_address: str,
        starting_index: int,
        decision: Decision,
        finalize: Optional[Finalize] = None,
        poll_interval: float = MONITOR_POLL_INTERVAL,
        should_stop: Callable[[], bool] = lambda: False,
    ) -> int:
        """
        Poll ``resolve_range`` until ``should_stop()``; returns the final cursor.

        Failures propagate; a TransactionRevert carries the index to resume from.
        """
        logic_address = to_checksum_address(logic_address)
        cursor = starting_index
        logger.info(f"Monitoring {logic_address} from index {cursor} as {self.resolver_address}")
        while not should_stop():
            cursor = self.resolve_range(logic_address, cursor, decision, finalize)
            if should_stop():
                break
            self._sleep(poll_interval)
        logger.info(f"Monitor stopped at index {cursor}")
        return cursor
