"""Tests for the command-line interface."""

from datetime import timedelta
from decimal import Decimal

import pytest
from typer.testing import CliRunner

from affiliate_engine import cli
from affiliate_engine.storage.models import utcnow

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_engine(engine, database, monkeypatch):
    monkeypatch.setattr(cli, "db", database)
    monkeypatch.setattr(cli, "_engine", lambda: engine)
    return engine


class TestCli:
    def test_init(self) -> None:
        result = runner.invoke(cli.app, ["init"])
        assert result.exit_code == 0
        assert "Database initialized" in result.output

    def test_apply_and_approve(self, engine) -> None:
        result = runner.invoke(cli.app, ["affiliate-apply", "--user", "partner-1", "--name", "Maria Silva"])
        assert result.exit_code == 0
        assert "created with code" in result.output

        affiliate = engine.affiliates.get(1)
        result = runner.invoke(cli.app, ["affiliate-approve", str(affiliate.id)])
        assert result.exit_code == 0
        assert engine.affiliates.get(affiliate.id).status == "approved"

    def test_click_with_unknown_code_fails(self) -> None:
        result = runner.invoke(cli.app, ["click", "NOPE"])
        assert result.exit_code == 1

    def test_signup_without_click(self, make_affiliate) -> None:
        affiliate = make_affiliate()
        result = runner.invoke(cli.app, ["signup", affiliate.code, "author-1"])
        assert result.exit_code == 0
        assert "No pending click" in result.output

    def test_balance_table(self, funded) -> None:
        affiliate = funded("80.00")
        result = runner.invoke(cli.app, ["balance", str(affiliate.id)])
        assert result.exit_code == 0
        assert "80.00" in result.output

    def test_withdraw_and_advance(self, engine, funded) -> None:
        affiliate = funded("80.00")
        result = runner.invoke(cli.app, [
            "withdraw", "--affiliate", str(affiliate.id), "--amount", "60.00",
            "--details", '{"pix_key": "maria@example.com"}',
        ])
        assert result.exit_code == 0, result.output
        [withdrawal] = engine.list_withdrawals(affiliate.id)

        result = runner.invoke(cli.app, ["withdrawal-advance", str(withdrawal.id), "approved"])
        assert result.exit_code == 0
        assert engine.settlement.get_withdrawal(withdrawal.id).status == "approved"

    def test_withdraw_rejects_bad_json(self, funded) -> None:
        affiliate = funded("80.00")
        result = runner.invoke(cli.app, [
            "withdraw", "--affiliate", str(affiliate.id), "--amount", "60.00", "--details", "{nope",
        ])
        assert result.exit_code == 1

    def test_withdraw_below_minimum(self, funded) -> None:
        affiliate = funded("80.00")
        result = runner.invoke(cli.app, [
            "withdraw", "--affiliate", str(affiliate.id), "--amount", "10.00",
            "--details", '{"pix_key": "k"}',
        ])
        assert result.exit_code == 1

    def test_withdraw_without_details(self, funded) -> None:
        affiliate = funded("80.00")
        result = runner.invoke(cli.app, ["withdraw", "--affiliate", str(affiliate.id), "--amount", "60.00"])
        assert result.exit_code == 1
        assert "Payment details are required" in result.output

    def test_dispatch_and_sweep(self, engine, make_affiliate, refer) -> None:
        affiliate = make_affiliate()
        refer(affiliate, "author-1", at=utcnow() - timedelta(days=1))
        engine.schedule_qualifying_event(
            "author-1", "subscription", "sub-1", Decimal("40.00"), due_at=utcnow() - timedelta(hours=1)
        )

        result = runner.invoke(cli.app, ["dispatch"])
        assert result.exit_code == 0
        assert "1 commissions" in result.output

        result = runner.invoke(cli.app, ["sweep"])
        assert result.exit_code == 0
        assert "Confirmed 0" in result.output
