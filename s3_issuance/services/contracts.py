"""
Contract Artifact Loading

Loads compiled contract artifacts (bytecode + ABI) from the build directory.
Artifacts are the truffle/solc JSON files named after the contract, e.g.
build/SimplifiedTokenLogic.json.
"""

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Sequence, Union

from ..config.issuance_config import ISSUANCE_ARTIFACTS
from ..errors import MissingInput, TranscriptFormatError
from .codec import add_hex_prefix

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContractArtifact:
    name: str
    bytecode: str
    abi: tuple


@lru_cache(maxsize=32)
def load_artifact(artifacts_dir: Union[str, Path], name: str) -> ContractArtifact:
    """
    Load one compiled artifact.

    Args:
        artifacts_dir: directory holding <name>.json files
        name: contract name, e.g. "TokenFront"

    Raises:
        MissingInput: no artifact for that contract
        TranscriptFormatError: artifact without bytecode
    """
    path = Path(artifacts_dir) / f"{name}.json"
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        raise MissingInput(path) from None
    except json.JSONDecodeError as e:
        raise TranscriptFormatError(f"artifact {path} is not JSON: {e}") from e

    bytecode = data.get('bytecode')
    if isinstance(bytecode, dict):
        # solc standard-json output nests the object
        bytecode = bytecode.get('object')
    if not bytecode or bytecode in ('0x', '0x0'):
        raise TranscriptFormatError(f"artifact {path} carries no bytecode")

    logger.debug(f"Loaded artifact {name} from {path}")
    return ContractArtifact(
        name=name,
        bytecode=add_hex_prefix(bytecode),
        abi=tuple(data.get('abi', [])),
    )


def load_artifacts(
    artifacts_dir: Union[str, Path],
    names: Sequence[str] = ISSUANCE_ARTIFACTS,
) -> Dict[str, ContractArtifact]:
    """Load the artifacts stage 2 deploys (or ``names``)."""
    return {name: load_artifact(str(artifacts_dir), name) for name in names}


# Minimal ABI used to read transfer requests and audit a deployment
SIMPLIFIED_LOGIC_READ_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "", "type": "uint256"}],
        "name": "transferRequests",
        "outputs": [
            {"name": "src", "type": "address"},
            {"name": "dest", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "spender", "type": "address"},
            {"name": "status", "type": "uint8"},
        ],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "front",
        "outputs": [{"name": "", "type": "address"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "resolver",
        "outputs": [{"name": "", "type": "address"}],
        "type": "function",
    },
]


def address_getter_abi(name: str) -> list:
    """ABI of a no-argument view returning an address, e.g. ``cosignerA()``."""
    return [{
        "constant": True,
        "inputs": [],
        "name": name,
        "outputs": [{"name": "", "type": "address"}],
        "type": "function",
    }]
