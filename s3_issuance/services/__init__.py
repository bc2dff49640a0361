"""
Services for issuing and administering S3 security tokens.

- codec / calls: fixed-width word encoding, address prediction, call data
- staging: offline, pre-signed transaction stages (cap tables, init,
  distribute, deploy, administration, resolver rotation)
- transcript: persisted offline reports and their audit table
- publisher: interactive broadcasting with fee escalation
- monitor: sequential transfer-request resolution
- audit: read-only post-deployment verification
"""

from .base import (
    # Enums
    TransferStatus,
    EntryType,
    # Dataclasses
    AdministrationDefinition,
    Investor,
    SecurityMetadata,
    SecurityDefinition,
    SignedVariant,
    Step,
    Transcript,
    TransferRequest,
    SendEntry,
    CallEntry,
    PublishRecord,
)

from .codec import pad_to_word, predict_address, private_key_to_address
from .staging import (
    fee_levels_from_gwei,
    generate_ephemeral_key,
    offline_stage1,
    offline_stage2,
    sign_transaction,
    stage_administration,
    stage_cap_tables,
    stage_deploy_and_migrate,
    stage_distribute,
    stage_init,
    stage_new_resolver,
)
from .transcript import OfflineReport, load_report, save_report, transcript_frame
from .publisher import InteractivePublisher, PublishEvent, PublishState, transition
from .monitor import TransferMonitor
from .audit import verify_administration, verify_deployment
from .ledger import Web3Ledger

__all__ = [
    'TransferStatus', 'EntryType',
    'AdministrationDefinition', 'Investor', 'SecurityMetadata', 'SecurityDefinition', 'SignedVariant', 'Step',
    'Transcript', 'TransferRequest', 'SendEntry', 'CallEntry', 'PublishRecord',
    'pad_to_word', 'predict_address', 'private_key_to_address',
    'fee_levels_from_gwei', 'generate_ephemeral_key', 'offline_stage1', 'offline_stage2',
    'sign_transaction', 'stage_administration', 'stage_cap_tables', 'stage_deploy_and_migrate', 'stage_distribute', 'stage_init',
    'stage_new_resolver',
    'OfflineReport', 'load_report', 'save_report', 'transcript_frame',
    'InteractivePublisher', 'PublishEvent', 'PublishState', 'transition',
    'TransferMonitor', 'verify_administration', 'verify_deployment', 'Web3Ledger',
]
