"""USSD engine command line interface.

Operational tools for:
- Reconciling stale pending transactions
- One-off transaction status queries
- Earnings balance lookups
- Loading result-checker voucher stock

Usage:
    ussd-engine-cli poll-pending [--min-age-minutes 5] [--limit 100]
    ussd-engine-cli check-status --client-reference X
    ussd-engine-cli earnings --mobile 0241234567
    ussd-engine-cli import-vouchers --type "BECE Checker Voucher" --file vouchers.csv
"""

from __future__ import annotations

import argparse
import asyncio
import csv
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from dataclasses import replace
from decimal import Decimal
from typing import Any

from ussd_engine.config import Settings, get_settings
from ussd_engine.database import create_all, get_engine, init_db
from ussd_engine.providers import ProviderError, Providers, StatusQueryError, build_providers
from ussd_engine.services.earnings_service import EarningsPolicy, EarningsService
from ussd_engine.services.status_poller import PollerPolicy, TransactionStatusPoller
from ussd_engine.services.voucher_service import VoucherService
from ussd_engine.ussd.validators import normalize_mobile

logger = logging.getLogger(__name__)


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    raise TypeError(f"Cannot serialize {type(value).__name__}")


def emit(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, default=_json_default))


class UssdCli:
    """USSD engine command line interface."""

    def __init__(self, settings: Settings | None = None, providers: Providers | None = None):
        self.settings = settings or get_settings()
        self._providers = providers
        self.parser = self._build_parser()

    @property
    def providers(self) -> Providers:
        if self._providers is None:
            self._providers = build_providers(self.settings)
        return self._providers

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="ussd-engine-cli",
            description="USSD engine operational tools",
        )
        parser.add_argument(
            "--create-tables",
            action="store_true",
            help="Create missing tables before running the command",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        poll = subparsers.add_parser(
            "poll-pending",
            help="Query the status provider for stale open transactions",
        )
        poll.add_argument(
            "--min-age-minutes",
            type=int,
            default=None,
            help=f"Only check transactions older than this (default: {self.settings.poll_min_age_minutes})",
        )
        poll.add_argument("--limit", type=int, default=None, help="Maximum transactions to check")
        poll.add_argument(
            "--mode",
            choices=["batched", "sequential"],
            default=None,
            help="Throttling mode (default: POLL_MODE)",
        )

        status = subparsers.add_parser(
            "check-status",
            help="Query one transaction's status without writing anything",
        )
        status.add_argument("--client-reference", type=str)
        status.add_argument("--provider-transaction-id", type=str)
        status.add_argument("--network-transaction-id", type=str)

        earnings = subparsers.add_parser("earnings", help="Show earnings balances")
        earnings.add_argument("--mobile", type=str, required=True, help="Mobile number")
        earnings.add_argument(
            "--history",
            type=int,
            default=0,
            help="Also list this many recent withdrawals",
        )

        vouchers = subparsers.add_parser(
            "import-vouchers",
            help="Load result-checker vouchers from a serial,pin CSV file",
        )
        vouchers.add_argument("--type", dest="voucher_type", type=str, required=True)
        vouchers.add_argument("--file", type=str, required=True, help="CSV path (serial,pin)")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[[argparse.Namespace], Awaitable[int]]] = {
            "poll-pending": self._cmd_poll_pending,
            "check-status": self._cmd_check_status,
            "earnings": self._cmd_earnings,
            "import-vouchers": self._cmd_import_vouchers,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1
        return asyncio.run(self._run(handler, parsed))

    async def _run(
        self,
        handler: Callable[[argparse.Namespace], Awaitable[int]],
        args: argparse.Namespace,
    ) -> int:
        engine, self.session_factory = init_db(get_engine(self.settings.database_url))
        try:
            if args.create_tables:
                await create_all(engine)
            return await handler(args)
        finally:
            if self._providers is not None:
                await self._providers.aclose()
            await engine.dispose()

    def _poller(self, mode: str | None = None) -> TransactionStatusPoller:
        policy = PollerPolicy.from_settings(self.settings)
        if mode is not None:
            policy = replace(policy, mode=mode)
        return TransactionStatusPoller(self.session_factory, self.providers.status, policy)

    async def _cmd_poll_pending(self, args: argparse.Namespace) -> int:
        """Reconcile stale pending transactions."""
        result = await self._poller(args.mode).poll_pending(
            min_age_minutes=args.min_age_minutes, limit=args.limit
        )
        emit(result.to_dict())
        return 0 if result.success else 2

    async def _cmd_check_status(self, args: argparse.Namespace) -> int:
        """One-off status query."""
        try:
            result, classification = await self._poller().check_status(
                client_reference=args.client_reference,
                provider_transaction_id=args.provider_transaction_id,
                network_transaction_id=args.network_transaction_id,
            )
        except StatusQueryError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        except (ProviderError, asyncio.TimeoutError) as e:
            print(f"Status provider error: {str(e) or type(e).__name__}", file=sys.stderr)
            return 2

        emit({
            "response_code": classification.code,
            "classification": classification.status,
            "is_successful": classification.is_successful,
            "should_retry": classification.should_retry,
            "message": result.message or classification.message,
            "status": result.status,
            "transaction_id": result.transaction_id,
            "external_transaction_id": result.external_transaction_id,
            "amount": result.amount,
            "amount_after_charges": result.amount_after_charges,
            "is_fulfilled": result.is_fulfilled,
        })
        return 0

    async def _cmd_earnings(self, args: argparse.Namespace) -> int:
        """Earnings balances for a mobile number."""
        mobile = normalize_mobile(args.mobile)
        if mobile is None:
            print(f"Invalid mobile number: {args.mobile}", file=sys.stderr)
            return 1

        async with self.session_factory() as db:
            service = EarningsService(
                db,
                policy=EarningsPolicy(
                    commission_rate=self.settings.commission_rate,
                    min_withdrawal=self.settings.min_withdrawal_amount,
                ),
            )
            summary = await service.get_user_earnings(mobile)
            payload: dict[str, Any] = {
                "mobile_number": summary.mobile_number,
                "total_earnings": summary.total_earnings,
                "available_balance": summary.available_balance,
                "total_withdrawn": summary.total_withdrawn,
                "pending_withdrawals": summary.pending_withdrawals,
                "transaction_count": summary.transaction_count,
            }
            if args.history:
                history = await service.get_withdrawal_history(mobile, limit=args.history)
                payload["withdrawals"] = [
                    {
                        "client_reference": w.client_reference,
                        "amount": w.amount,
                        "status": w.status,
                        "created_at": w.created_at,
                    }
                    for w in history
                ]
        emit(payload)
        return 0

    async def _cmd_import_vouchers(self, args: argparse.Namespace) -> int:
        """Load voucher stock from a CSV file."""
        with open(args.file, newline="") as f:
            codes = [
                (row[0].strip(), row[1].strip())
                for row in csv.reader(f)
                if len(row) >= 2 and row[0].strip() and row[0].strip().lower() != "serial"
            ]

        async with self.session_factory() as db:
            service = VoucherService(db)
            added = await service.add_vouchers(args.voucher_type, codes)
            await db.commit()
            available = await service.available_count(args.voucher_type)

        emit({
            "voucher_type": args.voucher_type,
            "read": len(codes),
            "added": added,
            "available": available,
        })
        return 0


def main() -> int:
    """CLI entry point."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    cli = UssdCli(settings)
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
