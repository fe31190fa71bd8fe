"""
Tests for the command line interface.
"""

from __future__ import annotations

import json

from typer.testing import CliRunner

from chainnotes.cli import app

runner = CliRunner()


def test_simulate_publishes_and_confirms() -> None:
    result = runner.invoke(
        app, ["simulate", "--title", "CLI note", "--content", "body", "--log-level", "ERROR"]
    )
    assert result.exit_code == 0, result.output
    note = json.loads(result.stdout)
    assert note["title"] == "CLI note"
    assert note["status"] == "confirmed"
    assert len(note["txHash"]) == 64


def test_simulate_rejected_signature() -> None:
    result = runner.invoke(app, ["simulate", "--reject", "--log-level", "CRITICAL"])
    assert result.exit_code == 1


def test_simulate_unfunded_wallet() -> None:
    result = runner.invoke(app, ["simulate", "--fund", "0", "--log-level", "CRITICAL"])
    assert result.exit_code == 1


def test_balance() -> None:
    result = runner.invoke(app, ["balance", "--fund", "5000000", "--utxos", "2"])
    assert result.exit_code == 0, result.output
    assert "addr_test1" in result.stdout
    assert "5.000000 ADA (5000000 lovelace)" in result.stdout


def test_balance_rejects_zero_utxos() -> None:
    result = runner.invoke(app, ["balance", "--utxos", "0"])
    assert result.exit_code != 0
