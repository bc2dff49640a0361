"""
Exceptions raised by the staging, publishing and monitoring services.

Staging errors are local: nothing has been broadcast when they are raised.
Publishing and monitoring errors are global: earlier transactions of the
sequence may already be mined and are never rolled back.
"""

from typing import Optional


class IssuanceError(Exception):
    """Base class for every error raised by s3_issuance."""


class EncodingError(IssuanceError):
    """A field does not fit its fixed-width encoding (or is not hex)."""


class TranscriptFormatError(IssuanceError):
    """A persisted transcript or security file has an unexpected shape."""


class MissingInput(IssuanceError):
    """An input file (transcript, declaration, artifact) does not exist."""

    def __init__(self, path):
        self.path = path
        super().__init__(f"input file {path} does not exist")


class OutputExists(IssuanceError):
    """Refusing to overwrite an existing output file."""

    def __init__(self, path):
        self.path = path
        super().__init__(f"The output target {path} exists already, refusing to overwrite output")


class InvalidFeeChoice(IssuanceError):
    """The operator picked a fee level that was not staged for the step."""

    def __init__(self, choice, available):
        self.choice = choice
        self.available = list(available)
        super().__init__(f"bad choice: {choice} (available: {self.available})")


class OperatorStop(IssuanceError):
    """The operator asked to stop between steps."""


class TransactionRevert(IssuanceError):
    """A transaction was mined with a failure status."""

    def __init__(self, tx_hash: str, description: str = "", index: Optional[int] = None):
        self.tx_hash = tx_hash
        self.description = description
        self.index = index
        message = f"transaction failed: {tx_hash}"
        if description:
            message = f"{message} ({description})"
        super().__init__(message)


class ReceiptTimeout(IssuanceError):
    """No receipt appeared within the configured polling bound."""

    def __init__(self, tx_hashes, waited: float):
        self.tx_hashes = list(tx_hashes)
        self.waited = waited
        super().__init__(f"no receipt for {self.tx_hashes} after {waited:.0f}s")


class AddressPredictionMismatch(IssuanceError):
    """A contract was deployed somewhere other than the predicted address."""

    def __init__(self, predicted: str, actual: Optional[str]):
        self.predicted = predicted
        self.actual = actual
        super().__init__(f"predicted contract address {predicted} but deployment landed at {actual}")


class AuditFailure(IssuanceError):
    """A deployed contract does not report the expected configuration."""
