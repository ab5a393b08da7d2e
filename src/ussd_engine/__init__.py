"""USSD session orchestration and mobile-money payment reconciliation."""

__version__ = "0.1.0"
