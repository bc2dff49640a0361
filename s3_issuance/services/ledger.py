"""
Ledger Client Module

Thin wrapper around a Web3 HTTP connection exposing exactly what the
publisher and the transfer monitor need: nonces, raw broadcasts, receipts and
read-only calls against SimplifiedTokenLogic and Administration.
"""

import logging
from typing import Any, Dict, Optional

from eth_utils import to_checksum_address
from web3 import Web3
from web3.exceptions import TransactionNotFound

from .base import TransferRequest, TransferStatus
from .codec import to_zero_x_hex
from .contracts import SIMPLIFIED_LOGIC_READ_ABI, address_getter_abi

logger = logging.getLogger(__name__)


def receipt_succeeded(receipt: Dict[str, Any]) -> bool:
    """Status 1 means success; nodes report it as int or hex string."""
    status = receipt.get('status')
    if isinstance(status, str):
        status = int(status, 16)
    return status == 1


class Web3Ledger:
    """
    Ledger RPC client backed by web3.py.

    Every method is a blocking call through the provider.
    """

    def __init__(self, rpc_url: str = None, w3: Web3 = None):
        if w3 is None:
            logger.info(f"Connecting to Web3 provider: {rpc_url[:50]}...")
            w3 = Web3(Web3.HTTPProvider(rpc_url))
            if not w3.is_connected():
                raise ConnectionError(f"Failed to connect to Ethereum node at {rpc_url}")
        self.w3 = w3
        logger.info(f"Ledger client ready (chain ID {self.w3.eth.chain_id})")

    def get_transaction_count(self, address: str, block: str = 'pending') -> int:
        return self.w3.eth.get_transaction_count(to_checksum_address(address), block)

    def send_raw_transaction(self, raw_transaction: bytes) -> str:
        tx_hash = self.w3.eth.send_raw_transaction(raw_transaction)
        return to_zero_x_hex(tx_hash)

    def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Receipt as a plain dict, or None while the transaction is unmined."""
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        if receipt is None:
            return None
        return dict(receipt)

    def _logic(self, logic_address: str):
        return self.w3.eth.contract(
            address=to_checksum_address(logic_address),
            abi=SIMPLIFIED_LOGIC_READ_ABI,
        )

    def transfer_request(self, logic_address: str, index: int) -> TransferRequest:
        src, dest, amount, spender, status = (
            self._logic(logic_address).functions.transferRequests(index).call()
        )
        return TransferRequest(
            index=index,
            src=src,
            dest=dest,
            amount=amount,
            spender=spender,
            status=TransferStatus(status),
        )

    def logic_front(self, logic_address: str) -> str:
        return self._logic(logic_address).functions.front().call()

    def logic_resolver(self, logic_address: str) -> str:
        return self._logic(logic_address).functions.resolver().call()

    def read_address(self, contract_address: str, getter: str) -> str:
        """Call a no-argument address view, e.g. ``cosignerA()``."""
        contract = self.w3.eth.contract(
            address=to_checksum_address(contract_address),
            abi=address_getter_abi(getter),
        )
        return getattr(contract.functions, getter)().call()
