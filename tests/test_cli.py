"""CLI command tests against a simulated ledger."""

import re
from pathlib import Path

import pytest
from click.testing import CliRunner

from courier import cli
from courier.cli import main
from courier.ledger import SimulatedLedger


@pytest.fixture
def ledger(monkeypatch):
    ledger = SimulatedLedger()
    monkeypatch.setattr(cli, "_build_ledger", lambda settings: ledger)
    return ledger


@pytest.fixture
def runner():
    return CliRunner()


def _env(tmp_path: Path) -> dict[str, str]:
    return {
        "HOME": str(tmp_path),
        "COURIER_HOME": str(tmp_path / "courier"),
        "COURIER_ENCRYPTION_KEY": "correct horse battery staple",
        "COURIER_PRIVACY_ENDPOINT": "",
        "COURIER_PRIVACY_API_KEY": "",
    }


def _register(runner, env, agent_id) -> str:
    result = runner.invoke(main, ["agent", "register", agent_id], env=env)
    assert result.exit_code == 0, result.output
    return re.search(r"Wallet: (0x[0-9a-fA-F]{40})", result.output).group(1)


def _payment_id(output: str) -> str:
    return re.search(r"Payment ID: (pay-[0-9a-f]+)", output).group(1)


def test_register_and_list(runner, ledger, tmp_path):
    env = _env(tmp_path)
    _register(runner, env, "alice")
    _register(runner, env, "bob")

    result = runner.invoke(main, ["agent", "list"], env=env)
    assert result.exit_code == 0
    assert "alice" in result.output
    assert "bob" in result.output


def test_register_duplicate_fails(runner, ledger, tmp_path):
    env = _env(tmp_path)
    _register(runner, env, "alice")
    result = runner.invoke(main, ["agent", "register", "alice"], env=env)
    assert result.exit_code == 1
    assert "already exists" in result.output


def test_register_without_encryption_key_fails(runner, ledger, tmp_path):
    env = _env(tmp_path)
    env["COURIER_ENCRYPTION_KEY"] = ""
    result = runner.invoke(main, ["agent", "register", "alice"], env=env)
    assert result.exit_code == 1
    assert "COURIER_ENCRYPTION_KEY" in result.output


def test_send_payment(runner, ledger, tmp_path):
    env = _env(tmp_path)
    alice = _register(runner, env, "alice")
    bob = _register(runner, env, "bob")
    ledger.fund(alice, 5000)

    result = runner.invoke(main, ["payment", "send", "alice", "bob", "1000", "--memo", "lunch"], env=env)
    assert result.exit_code == 0, result.output
    assert "Payment completed" in result.output
    assert ledger.current_balance(bob) == 1000

    payment_id = _payment_id(result.output)
    status = runner.invoke(main, ["payment", "status", payment_id, "--agent", "bob"], env=env)
    assert status.exit_code == 0
    assert "completed" in status.output

    history = runner.invoke(main, ["payment", "history", "alice"], env=env)
    assert payment_id in history.output

    verify = runner.invoke(main, ["payment", "verify", payment_id, "--agent", "alice"], env=env)
    assert verify.exit_code == 0
    assert "verified" in verify.output


def test_send_payment_insufficient_funds(runner, ledger, tmp_path):
    env = _env(tmp_path)
    _register(runner, env, "alice")
    _register(runner, env, "bob")

    result = runner.invoke(main, ["payment", "send", "alice", "bob", "1000"], env=env)
    assert result.exit_code == 1
    assert "Payment failed" in result.output
    assert "InsufficientFunds" in result.output


def test_send_to_self_rejected(runner, ledger, tmp_path):
    env = _env(tmp_path)
    _register(runner, env, "alice")
    result = runner.invoke(main, ["payment", "send", "alice", "alice", "1"], env=env)
    assert result.exit_code == 1
    assert "self" in result.output


def test_send_in_coins(runner, ledger, tmp_path):
    env = _env(tmp_path)
    alice = _register(runner, env, "alice")
    bob = _register(runner, env, "bob")
    ledger.fund(alice, 10**18)

    result = runner.invoke(main, ["payment", "send", "alice", "bob", "0.25", "--coin"], env=env)
    assert result.exit_code == 0, result.output
    assert ledger.current_balance(bob) == 250_000_000_000_000_000


def test_payment_hidden_from_outsider(runner, ledger, tmp_path):
    env = _env(tmp_path)
    alice = _register(runner, env, "alice")
    _register(runner, env, "bob")
    _register(runner, env, "eve")
    ledger.fund(alice, 5000)
    sent = runner.invoke(main, ["payment", "send", "alice", "bob", "1000"], env=env)
    payment_id = _payment_id(sent.output)

    result = runner.invoke(main, ["payment", "status", payment_id, "--agent", "eve"], env=env)
    assert result.exit_code == 1
    assert "not found" in result.output


def test_balance_and_wallet_info(runner, ledger, tmp_path):
    env = _env(tmp_path)
    alice = _register(runner, env, "alice")
    ledger.fund(alice, 1_500_000_000_000_000_000)

    result = runner.invoke(main, ["agent", "balance", "alice"], env=env)
    assert result.exit_code == 0
    assert "1.5 ETH" in result.output

    info = runner.invoke(main, ["wallet", "info", "alice"], env=env)
    assert info.exit_code == 0
    assert alice in info.output
    assert "1.5 ETH" in info.output


def test_deactivate(runner, ledger, tmp_path):
    env = _env(tmp_path)
    _register(runner, env, "alice")
    result = runner.invoke(main, ["agent", "deactivate", "alice"], env=env)
    assert result.exit_code == 0

    info = runner.invoke(main, ["agent", "info", "alice"], env=env)
    assert "Active:  no" in info.output

    missing = runner.invoke(main, ["agent", "deactivate", "ghost"], env=env)
    assert missing.exit_code == 1


def test_reconcile_nothing(runner, ledger, tmp_path):
    result = runner.invoke(main, ["payment", "reconcile"], env=_env(tmp_path))
    assert result.exit_code == 0
    assert "Nothing to reconcile" in result.output


def test_reconcile_too_eager(runner, ledger, tmp_path):
    result = runner.invoke(main, ["payment", "reconcile", "--stale-after", "0"], env=_env(tmp_path))
    assert result.exit_code == 1
    assert "stale_after must be at least" in result.output


def test_status(runner, ledger, tmp_path):
    result = runner.invoke(main, ["status"], env=_env(tmp_path))
    assert result.exit_code == 0
    assert "eip155:84532" in result.output
    assert "local (degraded" in result.output


@pytest.mark.parametrize(
    "args,expected",
    [
        (["1500000000000000000"], "1.5"),
        (["2.5", "--to-base"], "2500000000000000000"),
    ],
)
def test_wallet_convert(runner, args, expected):
    result = runner.invoke(main, ["wallet", "convert", *args])
    assert result.exit_code == 0
    assert result.output.strip() == expected


def test_wallet_convert_invalid(runner):
    result = runner.invoke(main, ["wallet", "convert", "lots"])
    assert result.exit_code != 0
