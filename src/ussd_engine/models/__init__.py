"""SQLAlchemy ORM models."""

from ussd_engine.models.base import Base, TimestampMixin, as_aware, utcnow
from ussd_engine.models.commission import CommissionLog
from ussd_engine.models.transaction import PaymentTransaction
from ussd_engine.models.ussd_log import UssdSessionLog
from ussd_engine.models.voucher import Voucher
from ussd_engine.models.withdrawal import EarningsAccount, Withdrawal

__all__ = [
    "Base",
    "TimestampMixin",
    "as_aware",
    "utcnow",
    "CommissionLog",
    "EarningsAccount",
    "PaymentTransaction",
    "UssdSessionLog",
    "Voucher",
    "Withdrawal",
]
