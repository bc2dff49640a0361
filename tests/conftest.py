"""
Shared fixtures: fixed keys, an in-memory ledger and a scripted operator.
"""
import os
import sys

import pytest
import rlp
from eth_account import Account
from eth_utils import keccak, to_checksum_address

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from s3_issuance.services import calls
from s3_issuance.services.base import (
    Investor,
    SecurityDefinition,
    SecurityMetadata,
    TransferRequest,
    TransferStatus,
)
from s3_issuance.services.codec import predict_address, private_key_to_address
from s3_issuance.services.contracts import ContractArtifact

CONTROLLER_KEY = b'\x01' * 32
RESOLVER_KEY = b'\x02' * 32
OWNER_KEY = b'\x03' * 32

INVESTOR_A = "0x" + "aa" * 20
INVESTOR_B = "0x" + "bb" * 20
ADMIN = "0x" + "ad" * 20
RESOLVER = private_key_to_address(RESOLVER_KEY)
CAP_TABLES = "0x" + "ca" * 20
ZERO_ADDRESS = "0x" + "00" * 20


def _uint(word):
    return int.from_bytes(word, 'big')


def _address(word):
    return to_checksum_address(word[-20:])


class FakeLedger:
    """
    In-memory stand-in for Web3Ledger.

    Broadcast transactions are decoded, attributed to their signer and mined
    immediately unless their gas price is listed in ``unmined_fees`` (those
    wait for ``mine``). Mined calls update state the way the S3 contracts do:

    - CapTables: initialize / transfer balances per security id, migrate
    - SimplifiedTokenLogic: setFront, setResolver, and resolve, where code 0
      moves the amount in ``balances`` and any other code only records it
    """

    def __init__(self):
        self.sent = []                  # decoded transactions in broadcast order
        self.receipts = {}
        self.unmined_fees = set()
        self.revert = False
        self.reject_broadcasts = 0
        self.contract_address_override = None
        self.nonces = {}
        self.requests = {}
        self.balances = {}
        self.resolutions = []           # (index, code)
        self.cap_tables = {}            # security id -> {address: balance}
        self.migrated = {}              # security id -> logic address
        self.deployments = {}           # contract address -> creation data
        self.fronts = {}
        self.resolvers = {}
        self.views = {}                 # (contract, getter) -> address
        self.front = None
        self.resolver = None
        self.next_security_id = 1
        self.receipt_polls = 0

    def get_transaction_count(self, address, block='pending'):
        return self.nonces.get(to_checksum_address(address), 0)

    def send_raw_transaction(self, raw):
        if self.reject_broadcasts:
            self.reject_broadcasts -= 1
            raise ValueError("replacement transaction underpriced")

        tx_hash = "0x" + keccak(raw).hex()
        nonce, gas_price, gas, to, value, data, v, r, s = rlp.decode(raw)
        nonce = _uint(nonce)
        gas_price = _uint(gas_price)
        sender = Account.recover_transaction(raw)
        self.sent.append({
            'hash': tx_hash, 'sender': sender, 'nonce': nonce,
            'gasPrice': gas_price, 'gas': _uint(gas), 'to': to, 'data': data,
        })
        self.nonces[sender] = max(self.nonces.get(sender, 0), nonce + 1)

        if gas_price not in self.unmined_fees:
            self.mine(tx_hash)
        return tx_hash

    def mine(self, tx_hash):
        tx = next(tx for tx in self.sent if tx['hash'] == tx_hash)
        receipt = {
            'transactionHash': tx_hash,
            'status': 0 if self.revert else 1,
            'gasUsed': 21000,
            'contractAddress': None,
            'logs': [],
        }
        if not tx['to']:
            address = self.contract_address_override or predict_address(tx['sender'], tx['nonce'])
            receipt['contractAddress'] = address
            if not self.revert:
                self.deployments[to_checksum_address(address)] = tx['data']
        elif not self.revert:
            self._apply(to_checksum_address(tx['to']), tx['data'], receipt)
        self.receipts[tx_hash] = receipt
        return receipt

    def _apply(self, to, data, receipt):
        selector = data[:4]
        words = [data[i:i + 32] for i in range(4, len(data), 32)]
        if selector == calls.INITIALIZE:
            security_id = self.next_security_id
            self.next_security_id += 1
            self.cap_tables[security_id] = {_address(words[1]): _uint(words[0])}
            receipt['logs'].append({'data': "0x" + security_id.to_bytes(32, 'big').hex()})
        elif selector == calls.TRANSFER:
            balances = self.cap_tables[_uint(words[0])]
            src, dest, amount = _address(words[1]), _address(words[2]), _uint(words[3])
            balances[src] -= amount
            balances[dest] = balances.get(dest, 0) + amount
        elif selector == calls.MIGRATE:
            self.migrated[_uint(words[0])] = _address(words[1])
        elif selector == calls.SET_FRONT:
            self.fronts[to] = _address(words[0])
        elif selector == calls.SET_RESOLVER:
            self.resolvers[to] = _address(words[0])
        elif selector == calls.RESOLVE:
            index, code = _uint(words[0]), _uint(words[1])
            request = self.requests[index]
            if code == 0:
                self.balances[request.src] -= request.amount
                self.balances[request.dest] = self.balances.get(request.dest, 0) + request.amount
            self.requests[index] = TransferRequest(
                index=index, src=request.src, dest=request.dest, amount=request.amount,
                spender=request.spender, status=TransferStatus.RESOLVED,
            )
            self.resolutions.append((index, code))

    def get_transaction_receipt(self, tx_hash):
        self.receipt_polls += 1
        return self.receipts.get(tx_hash)

    def transfer_request(self, logic_address, index):
        return self.requests.get(index, TransferRequest(
            index=index, src=ZERO_ADDRESS, dest=ZERO_ADDRESS, amount=0,
            spender=ZERO_ADDRESS, status=TransferStatus.UNUSED,
        ))

    def logic_front(self, logic_address):
        return self.fronts.get(to_checksum_address(logic_address), self.front)

    def logic_resolver(self, logic_address):
        logic_address = to_checksum_address(logic_address)
        if logic_address in self.resolvers:
            return self.resolvers[logic_address]
        if logic_address in self.deployments:
            # the SimplifiedTokenLogic constructor ends with the resolver
            return _address(self.deployments[logic_address][-32:])
        return self.resolver

    def read_address(self, contract_address, getter):
        return self.views.get((to_checksum_address(contract_address), getter))


class ScriptedOperator:
    """Answers prompts from fixed lists; an exhausted submit list means 'wait'."""

    def __init__(self, fee_answers, submit_answers=None):
        self.fee_answers = list(fee_answers)
        self.submit_answers = list(submit_answers or [])
        self.offered = []

    def choose_fee(self, step, fee_levels):
        self.offered.append(list(fee_levels))
        return self.fee_answers.pop(0)

    def after_submit(self, step, tx_hash):
        return self.submit_answers.pop(0) if self.submit_answers else ""


class FakeClock:
    """Time advances only when something sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds

    def __call__(self):
        return self.now


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def security():
    return SecurityDefinition(
        admin=to_checksum_address(ADMIN),
        resolver=RESOLVER,
        investors=(
            Investor(address=to_checksum_address(INVESTOR_A), amount=100000),
            Investor(address=to_checksum_address(INVESTOR_B), amount=10000000),
        ),
        metadata=SecurityMetadata(name="Test Security", symbol="TST", decimals=0),
    )


@pytest.fixture
def artifacts():
    return {
        "CapTables": ContractArtifact(name="CapTables", bytecode="0x6001", abi=()),
        "SimplifiedTokenLogic": ContractArtifact(name="SimplifiedTokenLogic", bytecode="0x6080604052", abi=()),
        "TokenFront": ContractArtifact(name="TokenFront", bytecode="0x6080604053", abi=()),
        "Administration": ContractArtifact(name="Administration", bytecode="0x6080604054", abi=()),
    }
