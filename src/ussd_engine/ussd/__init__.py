"""USSD session orchestration."""
