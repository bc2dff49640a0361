"""
Offline Staging Module

Builds the signed transactions that issue an S3 security, without touching
the network. Every transaction is signed by an ephemeral controller key at an
explicit nonce, once per candidate fee level, so the operator can pick a fee
when publishing and escalate it later at the same nonce.

Each stage function takes the nonce it starts at and returns the nonce the
next stage must start at; no counter is shared between calls.
"""

import base64
import logging
import secrets
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from eth_account import Account
from eth_utils import to_checksum_address

from ..config.issuance_config import (
    FEE_LEVEL_MULTIPLIER,
    FEE_LEVEL_STEP_GWEI,
    GAS_LIMITS,
    WEI_PER_GWEI,
)
from ..errors import IssuanceError, TranscriptFormatError
from . import calls
from .base import AdministrationDefinition, SecurityDefinition, SignedVariant, Step, Transcript
from .codec import predict_address, private_key_to_address
from .contracts import ContractArtifact

logger = logging.getLogger(__name__)

# sign(unsigned_tx, private_key) -> signed raw bytes
Signer = Callable[[Dict[str, Any], bytes], bytes]


def sign_transaction(transaction: Dict[str, Any], private_key: bytes) -> bytes:
    """Default signer: deterministic (RFC 6979) legacy EIP-155 signature."""
    signed = Account.sign_transaction(transaction, private_key)
    return bytes(signed.raw_transaction)


def fee_levels_from_gwei(start_gwei: int) -> List[int]:
    """Candidate fee levels in wei: start, start+2, ... below start*10 gwei."""
    if start_gwei <= 0:
        raise ValueError(f"starting gas price must be positive, got {start_gwei}")
    return [
        gwei * WEI_PER_GWEI
        for gwei in range(start_gwei, start_gwei * FEE_LEVEL_MULTIPLIER, FEE_LEVEL_STEP_GWEI)
    ]


def generate_ephemeral_key() -> bytes:
    """A one-time controller key for a single staging run."""
    return secrets.token_bytes(32)


def _sign_variants(
    data: bytes,
    to: Optional[str],
    gas: int,
    nonce: int,
    fee_levels: Sequence[int],
    chain_id: int,
    private_key: bytes,
    signer: Signer,
) -> Tuple[SignedVariant, ...]:
    """Sign the same call once per fee level; only gasPrice differs."""
    if not fee_levels:
        raise IssuanceError("at least one fee level is required")
    variants = []
    for fee_level in fee_levels:
        tx = {
            'nonce': nonce,
            'gasPrice': int(fee_level),
            'gas': gas,
            'value': 0,
            'data': data,
            'chainId': chain_id,
        }
        if to is not None:
            tx['to'] = to_checksum_address(to)
        variants.append(SignedVariant(fee_level=int(fee_level), raw_transaction=signer(tx, private_key)))
    return tuple(variants)


# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~ //
# STAGE 1: Initialize cap table //
# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~ //

def stage_init(
    security: SecurityDefinition,
    cap_tables_address: str,
    starting_nonce: int,
    fee_levels: Sequence[int],
    chain_id: int,
    controller_key: bytes,
    signer: Signer = sign_transaction,
) -> Tuple[int, Step]:
    """Stage ``initialize(totalSupply, controller)`` on the cap table."""
    supply = security.total_supply
    controller = private_key_to_address(controller_key)
    data = calls.initialize_cap_table(supply, controller)

    variants = _sign_variants(
        data, cap_tables_address, GAS_LIMITS["initialize"], starting_nonce,
        fee_levels, chain_id, controller_key, signer,
    )
    step = Step(
        description="initialize the cap table",
        params={
            'capTablesAddress': to_checksum_address(cap_tables_address),
            'supply': str(supply),
            'controllerAddress': controller,
            'nonce': starting_nonce,
        },
        variants=variants,
    )
    return starting_nonce + 1, step


# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~ //
# STAGE 2: Distribute to investors //
# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~ //

def stage_distribute(
    security: SecurityDefinition,
    security_id: int,
    cap_tables_address: str,
    starting_nonce: int,
    fee_levels: Sequence[int],
    chain_id: int,
    controller_key: bytes,
    signer: Signer = sign_transaction,
) -> Tuple[int, Transcript]:
    """One cap table transfer per investor, in investor order, one nonce each."""
    controller = private_key_to_address(controller_key)
    nonce = starting_nonce
    transcript: Transcript = []

    for investor in security.investors:
        data = calls.cap_tables_transfer(security_id, controller, investor.address, investor.amount)
        variants = _sign_variants(
            data, cap_tables_address, GAS_LIMITS["transfer"], nonce,
            fee_levels, chain_id, controller_key, signer,
        )
        transcript.append(Step(
            description="distribution to investor",
            params={
                'securityId': str(security_id),
                'capTablesAddress': to_checksum_address(cap_tables_address),
                'controllerAddress': controller,
                'investor': investor.address,
                'amount': str(investor.amount),
                'nonce': nonce,
            },
            variants=variants,
        ))
        nonce += 1

    return nonce, transcript


# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~ //
# STAGE 3: Deploy SimplifiedTokenLogic and TokenFront //
# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~ //

def stage_deploy_and_migrate(
    security: SecurityDefinition,
    security_id: int,
    cap_tables_address: str,
    resolver_address: str,
    starting_nonce: int,
    fee_levels: Sequence[int],
    chain_id: int,
    controller_key: bytes,
    artifacts: Mapping[str, ContractArtifact],
    signer: Signer = sign_transaction,
) -> Tuple[int, Transcript]:
    """
    Five steps, one nonce each, in this order:

    1. deploy SimplifiedTokenLogic (address predicted from the nonce)
    2. deploy TokenFront over the predicted logic address
    3. migrate the cap table to the logic contract
    4. set the logic contract's front
    5. hand ownership of the logic contract to the security's admin
    """
    controller = private_key_to_address(controller_key)
    cap_tables_address = to_checksum_address(cap_tables_address)
    resolver_address = to_checksum_address(resolver_address)
    logic_code = artifacts["SimplifiedTokenLogic"].bytecode
    front_code = artifacts["TokenFront"].bytecode
    transcript: Transcript = []
    nonce = starting_nonce

    def sign(data: bytes, to: Optional[str], gas_kind: str) -> Tuple[SignedVariant, ...]:
        return _sign_variants(
            data, to, GAS_LIMITS[gas_kind], nonce,
            fee_levels, chain_id, controller_key, signer,
        )

    # Create simplified logic
    logic_address = predict_address(controller, nonce)
    data = calls.new_simplified_logic(logic_code, security_id, cap_tables_address, controller, resolver_address)
    transcript.append(Step(
        description="deploys SimplifiedTokenLogic instance",
        params={
            'simplifiedTokenLogicAddress': logic_address,
            'predictedAddress': logic_address,
            'securityId': str(security_id),
            'capTablesAddress': cap_tables_address,
            'controllerAddress': controller,
            'resolverAddress': resolver_address,
            'nonce': nonce,
        },
        variants=sign(data, None, "deploy_logic"),
    ))
    nonce += 1

    # Deploy the token front
    front_address = predict_address(controller, nonce)
    data = calls.new_token_front(front_code, logic_address, security.admin)
    transcript.append(Step(
        description="deploys TokenFront",
        params={
            'tokenFrontAddress': front_address,
            'predictedAddress': front_address,
            'simplifiedTokenLogicAddress': logic_address,
            'admin': security.admin,
            'controllerAddress': controller,
            'nonce': nonce,
        },
        variants=sign(data, None, "deploy_front"),
    ))
    nonce += 1

    # Migrate the cap table
    data = calls.cap_tables_migrate(security_id, logic_address)
    transcript.append(Step(
        description="migrates the cap table to the SimplifiedTokenLogic instance",
        params={
            'securityId': str(security_id),
            'simplifiedTokenLogicAddress': logic_address,
            'controllerAddress': controller,
            'nonce': nonce,
        },
        variants=sign(data, cap_tables_address, "migrate"),
    ))
    nonce += 1

    # Set the token front
    data = calls.set_front(front_address)
    transcript.append(Step(
        description="sets SimplifiedTokenLogic.front",
        params={
            'tokenFrontAddress': front_address,
            'simplifiedTokenLogicAddress': logic_address,
            'controllerAddress': controller,
            'nonce': nonce,
        },
        variants=sign(data, logic_address, "set_front"),
    ))
    nonce += 1

    # Change the administrator
    data = calls.transfer_ownership(security.admin)
    transcript.append(Step(
        description="changes SimplifiedTokenLogic.admin",
        params={
            'admin': security.admin,
            'simplifiedTokenLogicAddress': logic_address,
            'nonce': nonce,
        },
        variants=sign(data, logic_address, "change_admin"),
    ))
    nonce += 1

    return nonce, transcript


# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~ //
# INIT: Deploy the CapTables contract //
# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~ //

def stage_cap_tables(
    deployer_key: bytes,
    nonce: int,
    fee_levels: Sequence[int],
    chain_id: int,
    artifact: ContractArtifact,
    signer: Signer = sign_transaction,
) -> Tuple[int, Step]:
    """Stage the CapTables deployment every issuance points at."""
    deployer = private_key_to_address(deployer_key)
    cap_tables_address = predict_address(deployer, nonce)
    variants = _sign_variants(
        calls.new_cap_tables(artifact.bytecode), None, GAS_LIMITS["deploy_cap_tables"], nonce,
        fee_levels, chain_id, deployer_key, signer,
    )
    step = Step(
        description="deploys CapTables",
        params={
            'capTablesAddress': cap_tables_address,
            'predictedAddress': cap_tables_address,
            'deployerAddress': deployer,
            'nonce': nonce,
        },
        variants=variants,
    )
    return nonce + 1, step


# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~ //
# ADMINISTRATION: multisig over logic + front //
# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~ //

def stage_administration(
    definition: AdministrationDefinition,
    deployer_key: bytes,
    nonce: int,
    fee_levels: Sequence[int],
    chain_id: int,
    artifact: ContractArtifact,
    signer: Signer = sign_transaction,
) -> Tuple[int, Step]:
    """Stage an Administration deployment with its three cosigners."""
    deployer = private_key_to_address(deployer_key)
    admin_address = predict_address(deployer, nonce)
    data = calls.new_administration(
        artifact.bytecode,
        definition.token_logic, definition.token_front,
        definition.cosigner_a, definition.cosigner_b, definition.cosigner_c,
    )
    variants = _sign_variants(
        data, None, GAS_LIMITS["deploy_administration"], nonce,
        fee_levels, chain_id, deployer_key, signer,
    )
    params = {'adminAddress': admin_address, 'predictedAddress': admin_address, 'deployerAddress': deployer}
    params.update(definition.to_dict())
    params['nonce'] = nonce
    step = Step(description="deploys Administration", params=params, variants=variants)
    return nonce + 1, step


# ~~~~~~~~~~~~~~~~ //
# RESOLVER ROTATION //
# ~~~~~~~~~~~~~~~~ //

def stage_new_resolver(
    logic_address: str,
    owner_key: bytes,
    nonce: int,
    fee_levels: Sequence[int],
    chain_id: int,
    resolver_key: Optional[bytes] = None,
    signer: Signer = sign_transaction,
) -> Tuple[int, Step, bytes, str]:
    """
    Stage ``setResolver(newResolver)`` signed by the logic contract's owner.

    The resolver lives in a hot wallet, so rotating it must be cheap: a fresh
    key is generated unless one is supplied.

    Returns:
        (next nonce, step, resolver key, resolver address)
    """
    resolver_key = resolver_key or generate_ephemeral_key()
    resolver_address = private_key_to_address(resolver_key)
    owner_address = private_key_to_address(owner_key)
    data = calls.set_resolver(resolver_address)

    variants = _sign_variants(
        data, logic_address, GAS_LIMITS["set_resolver"], nonce,
        fee_levels, chain_id, owner_key, signer,
    )
    step = Step(
        description=f"Sets SimplifiedTokenLogic.resolver to {resolver_address}",
        params={
            'ownerAddress': owner_address,
            'newResolverAddress': resolver_address,
            'simplifiedTokenLogicAddress': to_checksum_address(logic_address),
            'nonce': nonce,
        },
        variants=variants,
    )
    return nonce + 1, step, resolver_key, resolver_address


# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~ //
# BATCH DRIVERS (many securities) //
# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~ //

def offline_stage1(
    securities: Sequence[SecurityDefinition],
    cap_tables_address: str,
    fee_levels: Sequence[int],
    chain_id: int,
    controller_key: Optional[bytes] = None,
    starting_nonce: int = 0,
    signer: Signer = sign_transaction,
) -> Tuple[int, List[Tuple[str, Step]], bytes]:
    """
    Stage the cap table initialization of every security.

    A security that fails to stage is logged and skipped without consuming a
    nonce, so the remaining entries still form a gapless sequence.

    Returns:
        (next nonce, [(security name, step)], controller key)
    """
    controller_key = controller_key or generate_ephemeral_key()
    nonce = starting_nonce
    stage1: List[Tuple[str, Step]] = []

    for security in securities:
        logger.debug(f"handling {security.name}")
        try:
            nonce, step = stage_init(
                security, cap_tables_address, nonce, fee_levels, chain_id, controller_key, signer,
            )
            stage1.append((security.name, step))
        except IssuanceError as e:
            logger.error(f"Skipping {security.name}: {e}")

    logger.info(f"Stage 1 staged {len(stage1)} securities; controller {private_key_to_address(controller_key)}")
    return nonce, stage1, controller_key


def offline_stage2(
    securities: Sequence[SecurityDefinition],
    cap_tables_address: str,
    resolver_address: Optional[str],
    fee_levels: Sequence[int],
    chain_id: int,
    controller_key: bytes,
    starting_nonce: int,
    artifacts: Mapping[str, ContractArtifact],
    signer: Signer = sign_transaction,
) -> Tuple[int, List[Tuple[str, Transcript]]]:
    """
    Stage distribution plus deploy-and-migrate for every indexed security,
    continuing the nonce left by stage 1.
    """
    nonce = starting_nonce
    stage2: List[Tuple[str, Transcript]] = []

    for security in securities:
        if security.security_id is None:
            raise TranscriptFormatError(f"{security.name} has no securityId; publish stage 1 first")
        resolver = resolver_address or security.resolver
        if resolver is None:
            raise TranscriptFormatError(f"no resolver configured for {security.name}")

        nonce, distribute = stage_distribute(
            security, security.security_id, cap_tables_address, nonce,
            fee_levels, chain_id, controller_key, signer,
        )
        nonce, deploy = stage_deploy_and_migrate(
            security, security.security_id, cap_tables_address, resolver, nonce,
            fee_levels, chain_id, controller_key, artifacts, signer,
        )
        stage2.append((security.name, distribute + deploy))
        logger.info(f"Staged {len(distribute) + len(deploy)} steps for {security.name}")

    return nonce, stage2


def encode_key(private_key: bytes) -> str:
    """Base64 form used to hand the controller key from stage 1 to stage 2."""
    return base64.b64encode(private_key).decode('ascii')
