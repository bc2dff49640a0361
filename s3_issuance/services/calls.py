"""
Call and deployment payload encoding for the S3 contracts.

Only fixed-width parameters are supported: addresses and unsigned integers,
each encoded as one right-aligned 32-byte word after a 4-byte selector.
"""

from typing import Dict, Union

from eth_utils import function_signature_to_4byte_selector, is_address

from ..config.issuance_config import FUNCTION_SIGNATURES
from ..errors import EncodingError
from .codec import address_to_word, no_hex_prefix, to_uint256

Param = Union[int, str]

# Selectors are derived once, at import, from the contract signatures
SELECTORS: Dict[str, bytes] = {
    name: function_signature_to_4byte_selector(signature)
    for name, signature in FUNCTION_SIGNATURES.items()
}

INITIALIZE = SELECTORS["initialize"]
TRANSFER = SELECTORS["transfer"]
MIGRATE = SELECTORS["migrate"]
SET_FRONT = SELECTORS["setFront"]
SET_RESOLVER = SELECTORS["setResolver"]
TRANSFER_OWNERSHIP = SELECTORS["transferOwnership"]
RESOLVE = SELECTORS["resolve"]


def encode_word(param: Param) -> bytes:
    """
    Encode one parameter as a 32-byte word.

    Strings that look like addresses are encoded as addresses, other strings
    as decimal integers. Oversized values raise EncodingError.
    """
    if isinstance(param, bool):
        raise EncodingError(f"booleans are not supported: {param!r}")
    if isinstance(param, int):
        return bytes.fromhex(to_uint256(param))
    if isinstance(param, str):
        if is_address(param):
            return bytes.fromhex(address_to_word(param))
        if param.startswith(('0x', '0X')):
            raise EncodingError(f"malformed address: {param!r}")
        try:
            return bytes.fromhex(to_uint256(int(param)))
        except ValueError as e:
            raise EncodingError(f"not an integer or address: {param!r}") from e
    raise EncodingError(f"unsupported parameter type {type(param).__name__}: {param!r}")


def encode_call(selector: bytes, *params: Param) -> bytes:
    """4-byte selector followed by one word per parameter."""
    if len(selector) != 4:
        raise EncodingError(f"selector must be 4 bytes, got {len(selector)}")
    return bytes(selector) + b"".join(encode_word(p) for p in params)


def encode_deployment(init_code: Union[bytes, str], *constructor_params: Param) -> bytes:
    """Contract creation code followed by the encoded constructor words."""
    if isinstance(init_code, str):
        try:
            init_code = bytes.fromhex(no_hex_prefix(init_code))
        except ValueError as e:
            raise EncodingError(f"init code is not hex: {e}") from e
    if not init_code:
        raise EncodingError("empty init code")
    return bytes(init_code) + b"".join(encode_word(p) for p in constructor_params)


# ============================================================================
# S3 CALLS
# ============================================================================

def initialize_cap_table(supply: int, controller: str) -> bytes:
    return encode_call(INITIALIZE, supply, controller)


def cap_tables_transfer(security_id: int, src: str, dest: str, amount: int) -> bytes:
    return encode_call(TRANSFER, security_id, src, dest, amount)


def cap_tables_migrate(security_id: int, new_address: str) -> bytes:
    return encode_call(MIGRATE, security_id, new_address)


def set_front(front: str) -> bytes:
    return encode_call(SET_FRONT, front)


def set_resolver(resolver: str) -> bytes:
    return encode_call(SET_RESOLVER, resolver)


def transfer_ownership(new_owner: str) -> bytes:
    return encode_call(TRANSFER_OWNERSHIP, new_owner)


def resolve(index: int, code: int) -> bytes:
    if not 0 <= code < 2**16:
        raise EncodingError(f"resolution code out of uint16 range: {code}")
    return encode_call(RESOLVE, index, code)


def new_simplified_logic(init_code: Union[bytes, str], security_id: int, cap_tables: str,
                         owner: str, resolver: str) -> bytes:
    return encode_deployment(init_code, security_id, cap_tables, owner, resolver)


def new_token_front(init_code: Union[bytes, str], logic: str, owner: str) -> bytes:
    return encode_deployment(init_code, logic, owner)


def new_cap_tables(init_code: Union[bytes, str]) -> bytes:
    return encode_deployment(init_code)


def new_administration(init_code: Union[bytes, str], logic: str, front: str,
                       cosigner_a: str, cosigner_b: str, cosigner_c: str) -> bytes:
    return encode_deployment(init_code, logic, front, cosigner_a, cosigner_b, cosigner_c)
