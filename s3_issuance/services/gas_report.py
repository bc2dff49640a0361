"""
Gas report loading.

The desk keeps a gas report ({"safeLow": <gwei>, ...}) current with some
other process; it may live in a local file or behind an HTTP endpoint.
"""

import logging

import requests

from ..config.issuance_config import DEFAULT_START_GAS_PRICE_GWEI
from ..errors import TranscriptFormatError
from .transcript import read_json

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10  # seconds


def load_gas_report(source: str) -> dict:
    """Read the gas report from a path or an http(s) URL."""
    if source.startswith(('http://', 'https://')):
        response = requests.get(source, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
        return response.json()
    return read_json(source)


def safe_low_gwei(source: str = None) -> int:
    """The starting gas price in gwei; the configured default without a report."""
    if not source:
        return DEFAULT_START_GAS_PRICE_GWEI
    report = load_gas_report(source)
    try:
        safe_low = report['safeLow']
    except (KeyError, TypeError) as e:
        raise TranscriptFormatError(f"gas report without safeLow: {source}") from e
    gwei = max(1, int(round(float(safe_low))))
    logger.info(f"Gas report {source}: safeLow = {gwei} gwei")
    return gwei
