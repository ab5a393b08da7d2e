"""Provider response code classification.

A pure lookup shared by the callback processor, the status poller and the
withdrawal flow. Unknown codes are failures that are never retried and
carry the code verbatim in the message.
"""

from __future__ import annotations

from dataclasses import dataclass

from ussd_engine.services.state_machine import TransactionStatus

SUCCESS = "0000"
PENDING = "0001"
HTTP_FAILURE = "0005"
GENERAL_FAILURE = "2000"
GENERAL_FAILURE_ALT = "2001"
TRANSIENT_ERROR = "4000"
VALIDATION_ERROR = "4010"
AUTH_DENIED = "4101"
PERMISSION_DENIED = "4103"
INSUFFICIENT_BALANCE = "4075"


@dataclass(frozen=True)
class CodeClassification:
    """How a response code should be treated."""

    code: str
    is_successful: bool
    status: str  # Paid / Pending / Failed
    should_retry: bool
    message: str

    @property
    def transaction_status(self) -> str:
        """Ledger status this classification maps to."""
        if self.is_successful:
            return TransactionStatus.COMPLETED.value
        if self.should_retry:
            return TransactionStatus.PENDING.value
        return TransactionStatus.FAILED.value


RESPONSE_CODES: dict[str, tuple[bool, str, bool, str]] = {
    SUCCESS: (True, "Paid", False, "Transaction successful"),
    PENDING: (False, "Pending", True, "Transaction pending"),
    HTTP_FAILURE: (False, "Failed", False, "HTTP failure, transaction state unknown"),
    GENERAL_FAILURE: (False, "Failed", False, "General failure"),
    GENERAL_FAILURE_ALT: (False, "Failed", False, "General failure"),
    TRANSIENT_ERROR: (False, "Failed", True, "Temporary error, retry later"),
    VALIDATION_ERROR: (False, "Failed", False, "Validation error"),
    AUTH_DENIED: (False, "Failed", False, "Authorization denied"),
    PERMISSION_DENIED: (False, "Failed", False, "Permission denied"),
    INSUFFICIENT_BALANCE: (False, "Failed", False, "Insufficient merchant balance"),
}


def classify(code: str | None) -> CodeClassification:
    """Classify a provider response code."""
    normalized = (code or "").strip()
    entry = RESPONSE_CODES.get(normalized)
    if entry is None:
        return CodeClassification(
            code=normalized,
            is_successful=False,
            status="Failed",
            should_retry=False,
            message=f"Unknown response code: {normalized}",
        )
    is_successful, status, should_retry, message = entry
    return CodeClassification(
        code=normalized,
        is_successful=is_successful,
        status=status,
        should_retry=should_retry,
        message=message,
    )
