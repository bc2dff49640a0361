"""
Base data structures shared by the staging, publishing and monitoring services.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple, Union

from eth_utils import is_address, to_checksum_address

from ..errors import TranscriptFormatError
from .codec import no_hex_prefix, to_zero_x_hex


# ============================================================================
# ENUMS
# ============================================================================

class TransferStatus(IntEnum):
    """Status of a transfer request slot on SimplifiedTokenLogic"""
    UNUSED = 0
    ACTIVE = 1
    RESOLVED = 2


class EntryType(Enum):
    """Discriminator for publish records"""
    SEND = "send"
    CALL = "call"


# ============================================================================
# SECURITIES
# ============================================================================

@dataclass(frozen=True)
class Investor:
    """One line of the initial distribution"""
    address: str
    amount: int

    def __post_init__(self):
        if self.amount < 0:
            raise ValueError(f"negative amount for {self.address}: {self.amount}")


@dataclass(frozen=True)
class SecurityMetadata:
    name: str
    symbol: str = ""
    decimals: int = 0


@dataclass(frozen=True)
class SecurityDefinition:
    """
    Immutable description of a token issuance.

    ``security_id`` is only known once the cap table has been initialized
    on the ledger; definitions carrying it are "indexed".
    """
    admin: str
    resolver: Optional[str]
    investors: Tuple[Investor, ...]
    metadata: SecurityMetadata
    security_id: Optional[int] = None

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def total_supply(self) -> int:
        return sum(investor.amount for investor in self.investors)

    def with_security_id(self, security_id: int) -> "SecurityDefinition":
        return SecurityDefinition(
            admin=self.admin,
            resolver=self.resolver,
            investors=self.investors,
            metadata=self.metadata,
            security_id=security_id,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SecurityDefinition":
        """Parse a security file; amounts may be JSON numbers or decimal strings."""
        try:
            metadata = data.get('metadata') or {}
            investors = tuple(
                Investor(address=_address(inv['address']), amount=int(inv['amount']))
                for inv in data['investors']
            )
            security_id = data.get('securityId')
            return cls(
                admin=_address(data['admin']),
                resolver=_address(data['resolver']) if data.get('resolver') else None,
                investors=investors,
                metadata=SecurityMetadata(
                    name=metadata['name'],
                    symbol=metadata.get('symbol', ''),
                    decimals=int(metadata.get('decimals', 0)),
                ),
                security_id=int(security_id) if security_id is not None else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise TranscriptFormatError(f"invalid security definition: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'admin': self.admin,
            'resolver': self.resolver,
            'investors': [
                {'address': inv.address, 'amount': str(inv.amount)} for inv in self.investors
            ],
            'metadata': {
                'name': self.metadata.name,
                'symbol': self.metadata.symbol,
                'decimals': self.metadata.decimals,
            },
        }
        if self.security_id is not None:
            result['securityId'] = self.security_id
        return result


def _address(value: str) -> str:
    if not is_address(value):
        raise ValueError(f"not an address: {value!r}")
    return to_checksum_address(value)


@dataclass(frozen=True)
class AdministrationDefinition:
    """Multisig Administration over a deployed logic/front pair and its three cosigners"""
    token_logic: str
    token_front: str
    cosigner_a: str
    cosigner_b: str
    cosigner_c: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AdministrationDefinition":
        try:
            return cls(
                token_logic=_address(data['tokenLogic']),
                token_front=_address(data['tokenFront']),
                cosigner_a=_address(data['cosignerA']),
                cosigner_b=_address(data['cosignerB']),
                cosigner_c=_address(data['cosignerC']),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise TranscriptFormatError(f"invalid administration definition: {e}") from e

    def to_dict(self) -> Dict[str, str]:
        return {
            'tokenLogic': self.token_logic,
            'tokenFront': self.token_front,
            'cosignerA': self.cosigner_a,
            'cosignerB': self.cosigner_b,
            'cosignerC': self.cosigner_c,
        }


# ============================================================================
# STAGED STEPS
# ============================================================================

@dataclass(frozen=True)
class SignedVariant:
    """One fee alternative of a step: the fee level in wei and the signed bytes"""
    fee_level: int
    raw_transaction: bytes

    def to_pair(self) -> List[str]:
        return [hex(self.fee_level), to_zero_x_hex(self.raw_transaction)]

    @classmethod
    def from_pair(cls, fee_level: Union[str, int], raw: str) -> "SignedVariant":
        fee = fee_level if isinstance(fee_level, int) else int(fee_level, 0)
        return cls(fee_level=fee, raw_transaction=bytes.fromhex(no_hex_prefix(raw)))


@dataclass(frozen=True)
class Step:
    """
    A staged step: description, structured params and mutually exclusive
    signed variants (same nonce, different fee).
    """
    description: str
    params: Dict[str, Any]
    variants: Tuple[SignedVariant, ...]

    @property
    def nonce(self) -> Optional[int]:
        return self.params.get('nonce')

    @property
    def predicted_address(self) -> Optional[str]:
        """Set on contract-creation steps only."""
        return self.params.get('predictedAddress')

    @property
    def fee_levels(self) -> List[int]:
        return [v.fee_level for v in self.variants]

    def variant_for(self, fee_level: int) -> Optional[SignedVariant]:
        for variant in self.variants:
            if variant.fee_level == fee_level:
                return variant
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'description': self.description,
            'params': dict(self.params),
            'signedTxes': [v.to_pair() for v in self.variants],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Step":
        """
        Accepts both persisted shapes:

        - multi-fee:  {"signedTxes": [[feeHex, rawHex], ...]}
        - single-fee: {"signedTx": rawHex, "gasPrice": feeHex}
        """
        try:
            if 'signedTxes' in data:
                variants = tuple(SignedVariant.from_pair(fee, raw) for fee, raw in data['signedTxes'])
            elif 'signedTx' in data:
                variants = (SignedVariant.from_pair(data.get('gasPrice', 0), data['signedTx']),)
            else:
                raise TranscriptFormatError("step has neither signedTxes nor signedTx")
            if not variants:
                raise TranscriptFormatError("step has no signed variants")
            return cls(
                description=data['description'],
                params=dict(data.get('params') or {}),
                variants=variants,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise TranscriptFormatError(f"invalid transcript step: {e}") from e


Transcript = List[Step]


# ============================================================================
# TRANSFER REQUESTS
# ============================================================================

@dataclass(frozen=True)
class TransferRequest:
    """A deferred transfer awaiting resolution"""
    index: int
    src: str
    dest: str
    amount: int
    spender: str
    status: TransferStatus = TransferStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == TransferStatus.ACTIVE

    def to_dict(self) -> dict:
        return {
            'index': self.index,
            'src': self.src,
            'dest': self.dest,
            'amount': str(self.amount),
            'spender': self.spender,
            'status': self.status.name,
        }


# ============================================================================
# PUBLISH RECORDS
# ============================================================================

@dataclass
class SendEntry:
    """A transaction that was broadcast and confirmed"""
    description: str
    tx_hash: str
    gas_used: int
    fee_level: int
    data: Dict[str, Any] = field(default_factory=dict)
    type: EntryType = field(default=EntryType.SEND, init=False)

    def to_dict(self) -> dict:
        return {
            'type': self.type.value,
            'description': self.description,
            'hash': self.tx_hash,
            'gasUsed': self.gas_used,
            'feeLevel': hex(self.fee_level),
            'data': self.data,
        }


@dataclass
class CallEntry:
    """A read-only contract query made while publishing or auditing"""
    description: str
    target: str
    result: Any
    type: EntryType = field(default=EntryType.CALL, init=False)

    def to_dict(self) -> dict:
        return {
            'type': self.type.value,
            'description': self.description,
            'target': self.target,
            'result': self.result,
        }


PublishRecord = Union[SendEntry, CallEntry]
