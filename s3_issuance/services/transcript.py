"""
Transcript Store

Persists offline reports ({nonce, stage1, stage2}) as JSON, never
overwriting an existing output, and renders them as a table for review
before anything is broadcast.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import pandas as pd
from eth_utils import keccak

from ..errors import MissingInput, OutputExists, TranscriptFormatError
from .base import AdministrationDefinition, SecurityDefinition, Step, Transcript
from .codec import to_zero_x_hex

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass
class OfflineReport:
    """The persisted result of offline staging."""
    nonce: int
    stage1: List[Tuple[str, Step]] = field(default_factory=list)
    stage2: List[Tuple[str, Transcript]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            'nonce': self.nonce,
            'stage1': [[name, step.to_dict()] for name, step in self.stage1],
        }
        if self.stage2:
            result['stage2'] = [
                [name, [step.to_dict() for step in steps]] for name, steps in self.stage2
            ]
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OfflineReport":
        try:
            stage1 = [(name, Step.from_dict(entry)) for name, entry in data.get('stage1', [])]
            stage2 = [
                (name, [Step.from_dict(entry) for entry in entries])
                for name, entries in data.get('stage2', [])
            ]
            return cls(nonce=int(data['nonce']), stage1=stage1, stage2=stage2)
        except (KeyError, TypeError, ValueError) as e:
            raise TranscriptFormatError(f"invalid offline report: {e}") from e


def check_output(path: PathLike) -> None:
    """We never overwrite an output file."""
    if Path(path).exists():
        raise OutputExists(path)


def write_json(path: PathLike, payload: Any, overwrite: bool = False) -> None:
    if not overwrite:
        check_output(path)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(payload, f, indent=2)
    logger.debug(f"wrote {path}")


def read_json(path: PathLike) -> Any:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except FileNotFoundError:
        raise MissingInput(path) from None
    except json.JSONDecodeError as e:
        raise TranscriptFormatError(f"{path} is not JSON: {e}") from e


def save_report(path: PathLike, report: OfflineReport, overwrite: bool = False) -> None:
    write_json(path, report.to_dict(), overwrite=overwrite)


def load_report(path: PathLike) -> OfflineReport:
    return OfflineReport.from_dict(read_json(path))


def save_step(path: PathLike, step: Step, overwrite: bool = False) -> None:
    write_json(path, step.to_dict(), overwrite=overwrite)


def load_step(path: PathLike) -> Step:
    return Step.from_dict(read_json(path))


def validate_nonce_chain(report: OfflineReport) -> Optional[int]:
    """
    Check that the staged nonces run without gaps across both stages.

    Returns:
        The nonce following the last staged step, or None for an empty report.

    Raises:
        TranscriptFormatError: a gap, a repeat, or a step without a nonce
    """
    steps = [step for _, step in report.stage1]
    for _, transcript in report.stage2:
        steps.extend(transcript)
    expected = None
    for step in steps:
        if step.nonce is None:
            raise TranscriptFormatError(f"step '{step.description}' carries no nonce")
        if expected is not None and step.nonce != expected:
            raise TranscriptFormatError(
                f"nonce gap at '{step.description}': expected {expected}, found {step.nonce}"
            )
        expected = step.nonce + 1
    return expected


def transcript_frame(report: OfflineReport) -> pd.DataFrame:
    """
    One row per signed variant: security, stage, step, nonce, fee level and
    the hash the transaction will have once broadcast.
    """
    rows = []

    def add_rows(stage: str, name: str, position: int, step: Step):
        for variant in step.variants:
            rows.append({
                'security': name,
                'stage': stage,
                'step': position,
                'description': step.description,
                'nonce': step.nonce,
                'fee_level_gwei': variant.fee_level / 10**9,
                'tx_hash': to_zero_x_hex(keccak(variant.raw_transaction)),
                'predicted_address': step.predicted_address,
            })

    for name, step in report.stage1:
        add_rows('stage1', name, 0, step)
    for name, transcript in report.stage2:
        for position, step in enumerate(transcript):
            add_rows('stage2', name, position, step)

    columns = ['security', 'stage', 'step', 'description', 'nonce',
               'fee_level_gwei', 'tx_hash', 'predicted_address']
    return pd.DataFrame(rows, columns=columns)


# ============================================================================
# DECLARATIONS
# ============================================================================

@dataclass
class Declaration:
    """What to issue: the cap table contract, a default resolver and security files."""
    cap_tables: str
    resolver: Optional[str]
    security_paths: List[str]

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[Path] = None) -> "Declaration":
        try:
            paths = [str(base_dir / p) if base_dir else p for p in data['securityPaths']]
            return cls(cap_tables=data['capTables'], resolver=data.get('resolver'), security_paths=paths)
        except (KeyError, TypeError) as e:
            raise TranscriptFormatError(f"invalid declaration: {e}") from e


def load_declaration(path: PathLike) -> Declaration:
    """Security paths are resolved relative to the declaration file."""
    return Declaration.from_dict(read_json(path), base_dir=Path(path).parent)


def load_securities(declaration: Declaration) -> List[Tuple[str, SecurityDefinition]]:
    return [(p, SecurityDefinition.from_dict(read_json(p))) for p in declaration.security_paths]


def save_security(path: PathLike, security: SecurityDefinition) -> None:
    """Rewrite a security file in place, e.g. once its securityId is known."""
    write_json(path, security.to_dict(), overwrite=True)


def load_administration(path: PathLike) -> AdministrationDefinition:
    return AdministrationDefinition.from_dict(read_json(path))
