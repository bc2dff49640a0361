"""
Post-deployment checks against a live SimplifiedTokenLogic or Administration.
"""

import logging
from typing import List

from ..config.issuance_config import ADMINISTRATION_FIELDS
from ..errors import AuditFailure
from .base import AdministrationDefinition, CallEntry

logger = logging.getLogger(__name__)


def _same_address(a: str, b: str) -> bool:
    return a is not None and b is not None and a.lower() == b.lower()


def verify_deployment(ledger, logic_address: str, front_address: str, resolver_address: str) -> List[CallEntry]:
    """
    Confirm the logic contract points at the expected front and resolver.

    Returns the call records on success; raises AuditFailure listing every mismatch.
    """
    front = ledger.logic_front(logic_address)
    resolver = ledger.logic_resolver(logic_address)
    records = [
        CallEntry(description="SimplifiedTokenLogic.front", target=logic_address, result=front),
        CallEntry(description="SimplifiedTokenLogic.resolver", target=logic_address, result=resolver),
    ]

    problems = []
    if not _same_address(front, front_address):
        problems.append(f"front is {front}, expected {front_address}")
    if not _same_address(resolver, resolver_address):
        problems.append(f"resolver is {resolver}, expected {resolver_address}")
    if problems:
        raise AuditFailure(f"{logic_address}: " + "; ".join(problems))

    logger.info(f"{logic_address}: front and resolver verified")
    return records


def verify_administration(ledger, admin_address: str, definition: AdministrationDefinition) -> List[CallEntry]:
    """Compare every address an Administration contract reports with its definition."""
    expected = definition.to_dict()
    records = []
    problems = []
    for getter in ADMINISTRATION_FIELDS:
        actual = ledger.read_address(admin_address, getter)
        records.append(CallEntry(description=f"Administration.{getter}", target=admin_address, result=actual))
        if not _same_address(actual, expected[getter]):
            problems.append(f"{getter} is {actual}, expected {expected[getter]}")
    if problems:
        raise AuditFailure(f"{admin_address}: " + "; ".join(problems))

    logger.info(f"{admin_address}: administration verified")
    return records
