"""Tests for the operational CLI.

Each command runs its own event loop, so these tests are synchronous and
use a throwaway SQLite file.
"""

import json
from dataclasses import replace

import pytest

from ussd_engine.cli import UssdCli


@pytest.fixture
def cli(settings, providers, tmp_path) -> UssdCli:
    cli_settings = replace(settings, database_url=f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    return UssdCli(cli_settings, providers)


def output(capsys) -> dict:
    return json.loads(capsys.readouterr().out)


class TestUssdCli:
    def test_no_command_prints_help(self, cli):
        assert cli.run([]) == 1

    def test_import_vouchers(self, cli, capsys, tmp_path):
        csv_file = tmp_path / "bece.csv"
        csv_file.write_text("serial,pin\nSN1,1111\nSN2,2222\n\nSN2,2222\n")

        code = cli.run([
            "--create-tables", "import-vouchers", "--type", "BECE Checker Voucher",
            "--file", str(csv_file),
        ])

        assert code == 0
        assert output(capsys) == {
            "voucher_type": "BECE Checker Voucher", "read": 3, "added": 2, "available": 2,
        }

    def test_poll_pending_with_nothing_open(self, cli, capsys):
        assert cli.run(["--create-tables", "poll-pending", "--mode", "sequential"]) == 0
        assert output(capsys)["checked"] == 0

    def test_check_status(self, cli, providers, capsys):
        providers.status.set_code("S1", "0000")

        assert cli.run(["check-status", "--client-reference", "S1"]) == 0

        body = output(capsys)
        assert body["classification"] == "Paid"
        assert body["is_successful"] is True

    def test_check_status_without_identifier(self, cli, capsys):
        assert cli.run(["check-status"]) == 1
        assert "At least one" in capsys.readouterr().err

    def test_check_status_provider_error(self, cli, providers):
        providers.status.errors.add("S1")
        assert cli.run(["check-status", "--client-reference", "S1"]) == 2

    def test_earnings(self, cli, capsys):
        code = cli.run(["--create-tables", "earnings", "--mobile", "0241234567", "--history", "5"])

        assert code == 0
        body = output(capsys)
        assert body["mobile_number"] == "233241234567"
        assert body["available_balance"] == "0.00"
        assert body["withdrawals"] == []

    def test_earnings_invalid_mobile(self, cli):
        assert cli.run(["earnings", "--mobile", "123"]) == 1
