"""Payment, fulfillment and earnings services."""

from ussd_engine.services.callback_processor import CallbackResult, PaymentCallbackProcessor
from ussd_engine.services.earnings_service import (
    EarningsPolicy,
    EarningsService,
    EarningsSummary,
    WithdrawalOutcome,
)
from ussd_engine.services.ledger_service import TransactionLedger, UpsertResult
from ussd_engine.services.response_codes import CodeClassification, classify
from ussd_engine.services.state_machine import (
    InvalidTransitionError,
    TransactionStateMachine,
    TransactionStatus,
)
from ussd_engine.services.status_poller import PollerPolicy, PollResult, TransactionStatusPoller

__all__ = [
    # Ledger
    "TransactionLedger",
    "UpsertResult",
    "TransactionStateMachine",
    "TransactionStatus",
    "InvalidTransitionError",
    # Response codes
    "CodeClassification",
    "classify",
    # Callbacks
    "PaymentCallbackProcessor",
    "CallbackResult",
    # Poller
    "TransactionStatusPoller",
    "PollerPolicy",
    "PollResult",
    # Earnings
    "EarningsService",
    "EarningsPolicy",
    "EarningsSummary",
    "WithdrawalOutcome",
]
