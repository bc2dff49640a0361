"""
Address and word codec.

Hex helpers for fixed-width ABI words and the contract-creation address rule
used to predict where a deployment will land before it is broadcast.
"""

import string
from typing import Union

import rlp
from eth_account import Account
from eth_utils import keccak, to_checksum_address

from ..errors import EncodingError

WORD_BYTES = 32
WORD_HEX_CHARS = WORD_BYTES * 2
ADDRESS_BYTES = 20
MAX_UINT256 = 2**256 - 1

_HEX_DIGITS = set(string.hexdigits)


def no_hex_prefix(hex_str: str) -> str:
    return hex_str[2:] if hex_str.startswith(('0x', '0X')) else hex_str


def add_hex_prefix(hex_str: str) -> str:
    return hex_str if hex_str.startswith(('0x', '0X')) else f"0x{hex_str}"


def to_zero_x_hex(data: bytes) -> str:
    return add_hex_prefix(bytes(data).hex())


def pad_to_word(hex_str: str) -> str:
    """
    Left-pad a hex value with zeros to a 32-byte word (64 hex chars, no prefix).

    Raises:
        EncodingError: value is not hex or is already wider than 32 bytes
    """
    digits = no_hex_prefix(hex_str)
    if not digits or not set(digits) <= _HEX_DIGITS:
        raise EncodingError(f"not a hex value: {hex_str!r}")
    if len(digits) > WORD_HEX_CHARS:
        raise EncodingError(f"value wider than {WORD_BYTES} bytes: {hex_str}")
    return digits.lower().rjust(WORD_HEX_CHARS, "0")


def to_uint256(n: Union[int, str]) -> str:
    """Encode a non-negative integer as a 32-byte word."""
    value = int(n)
    if value < 0 or value > MAX_UINT256:
        raise EncodingError(f"integer out of uint256 range: {value}")
    return pad_to_word(format(value, 'x'))


def address_to_word(address: str) -> str:
    """Encode a 20-byte address as a 32-byte word."""
    digits = no_hex_prefix(address)
    if len(digits) != ADDRESS_BYTES * 2:
        raise EncodingError(f"address must be {ADDRESS_BYTES} bytes: {address!r}")
    return pad_to_word(digits)


def predict_address(sender: str, nonce: int) -> str:
    """
    Address of the contract created by ``sender``'s transaction at ``nonce``:
    the low 20 bytes of keccak256(rlp([sender, nonce])).
    """
    if nonce < 0:
        raise EncodingError(f"negative nonce: {nonce}")
    sender_bytes = bytes.fromhex(no_hex_prefix(sender))
    if len(sender_bytes) != ADDRESS_BYTES:
        raise EncodingError(f"sender must be {ADDRESS_BYTES} bytes: {sender!r}")
    digest = keccak(rlp.encode([sender_bytes, nonce]))
    return to_checksum_address(digest[-ADDRESS_BYTES:])


def private_key_to_address(private_key: bytes) -> str:
    return Account.from_key(bytes(private_key)).address
