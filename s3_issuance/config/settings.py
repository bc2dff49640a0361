"""
Runtime settings loaded from the environment (and a local .env file).
"""

import base64
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .issuance_config import DEFAULT_CHAIN_ID, DEFAULT_RPC_URL


@dataclass(frozen=True)
class Settings:
    """Environment-derived settings for the command-line tools."""
    rpc_url: str
    chain_id: int
    artifacts_dir: Path
    controller_key: Optional[bytes] = None
    resolver_key: Optional[bytes] = None
    owner_key: Optional[bytes] = None


def _decode_key(value: Optional[str]) -> Optional[bytes]:
    """Keys are carried around base64 encoded, as printed by stage 1."""
    if not value:
        return None
    return base64.b64decode(value)


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Load settings, reading a .env file first if one is present."""
    load_dotenv(env_file)
    return Settings(
        rpc_url=os.getenv("WEB3_HTTP_URL", os.getenv("ETH_RPC_URL", DEFAULT_RPC_URL)),
        chain_id=int(os.getenv("ISSUANCE_CHAIN_ID", DEFAULT_CHAIN_ID)),
        artifacts_dir=Path(os.getenv("ISSUANCE_ARTIFACTS_DIR", "build")),
        controller_key=_decode_key(os.getenv("ISSUANCE_CONTROLLER_KEY")),
        resolver_key=_decode_key(os.getenv("ISSUANCE_RESOLVER_KEY")),
        owner_key=_decode_key(os.getenv("ISSUANCE_OWNER_KEY")),
    )
