"""
Courier CLI: private agent-to-agent payments.

Commands:
    courier status               Show configuration and privacy mode
    courier agent register       Register an agent with a custodial wallet
    courier agent info           Show an agent
    courier agent balance        Fetch an agent's live balance
    courier agent list           List registered agents
    courier agent deactivate     Deactivate an agent
    courier payment send         Send a payment between agents
    courier payment status       Show a payment
    courier payment history      List an agent's payments
    courier payment verify       Check a payment's privacy token
    courier payment reconcile    Settle payments stuck in processing
    courier wallet info          Show an agent's wallet address and cached balance
    courier wallet convert       Convert between base units and coins
"""

from __future__ import annotations

import logging
import sys
import time
from decimal import Decimal, InvalidOperation
from typing import Optional

import click

from . import __version__
from .config import Settings
from .errors import CourierError
from .ledger import Ledger, RpcLedger
from .models import PaymentRecord, PaymentStatus
from .service import CourierService, build_service
from .units import base_units_to_coin, coin_to_base_units, format_coin


def _build_ledger(settings: Settings) -> Ledger:
    return RpcLedger.from_settings(settings)


def _service() -> CourierService:
    settings = Settings.from_env()
    return build_service(settings, ledger=_build_ledger(settings))


def _fail(message: str) -> None:
    click.echo(f"❌ {message}", err=True)
    sys.exit(1)


def _parse_amount(amount: str, coin: bool) -> int:
    try:
        if coin:
            return coin_to_base_units(Decimal(amount))
        return int(amount)
    except (InvalidOperation, ValueError):
        raise click.BadParameter(f"Invalid amount: {amount}")


def _fmt_time(ts: Optional[float]) -> str:
    if ts is None:
        return "-"
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(ts))


def _echo_payment(record: PaymentRecord) -> None:
    click.echo(f"   Payment ID: {record.payment_id}")
    click.echo(f"   Status:     {record.status.value}")
    click.echo(f"   From:       {record.from_agent_id}")
    click.echo(f"   To:         {record.to_agent_id}")
    click.echo(f"   Amount:     {record.amount} ({format_coin(record.amount)})")
    if record.memo:
        click.echo(f"   Memo:       {record.memo}")
    if record.settlement_id:
        click.echo(f"   Settlement: {record.settlement_id}")
    if record.failure_reason:
        click.echo(f"   Reason:     {record.failure_reason}")
    click.echo(f"   Created:    {_fmt_time(record.created_at)}")
    if record.completed_at:
        click.echo(f"   Finished:   {_fmt_time(record.completed_at)}")


# ── CLI ───────────────────────────────────────────────────────────

@click.group()
@click.version_option(version=__version__)
def main():
    """Courier: private payments between AI agents."""
    logging.basicConfig(
        level=Settings.from_env().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
def status():
    """Show configuration warnings and privacy mode."""
    settings = Settings.from_env()
    click.echo(f"Network:  {settings.network}")
    click.echo(f"RPC:      {settings.rpc_url}")
    click.echo(f"Data dir: {settings.home}")
    with _service() as service:
        info = service.status()
    mode = info["privacy_mode"]
    if info["privacy_degraded"]:
        mode += " (degraded: tokens are reversible)"
    click.echo(f"Privacy:  {mode}")
    click.echo(f"Agents:   {info['agents']}")
    for warning in settings.startup_warnings():
        click.echo(f"⚠️  {warning}")


# ── Agents ────────────────────────────────────────────────────────

@main.group("agent")
def agent_group():
    """Agent management commands."""
    pass


@agent_group.command("register")
@click.argument("agent_id")
@click.option("--address", default=None,
              help="Existing public address to record (the vault still signs with its own key)")
def agent_register(agent_id: str, address: Optional[str]):
    """Register a new agent."""
    with _service() as service:
        try:
            account = service.register_agent(agent_id, address)
        except CourierError as e:
            _fail(f"Failed to register agent: {e}")
    click.echo(f"✅ Agent registered: {account.agent_id}")
    click.echo(f"   Wallet: {account.address}")
    if address:
        click.echo("   ⚠️  Transfers are signed by a vault-generated key, not by this address.")


@agent_group.command("info")
@click.argument("agent_id")
def agent_info(agent_id: str):
    """Get agent information."""
    with _service() as service:
        account = service.get_agent(agent_id)
    if account is None:
        _fail(f"Agent not found: {agent_id}")
    click.echo(f"Agent:   {account.agent_id}")
    click.echo(f"Wallet:  {account.address}")
    click.echo(f"Active:  {'yes' if account.is_active else 'no'}")
    click.echo(f"Created: {_fmt_time(account.created_at)}")
    click.echo(f"Updated: {_fmt_time(account.updated_at)}")


@agent_group.command("balance")
@click.argument("agent_id")
def agent_balance(agent_id: str):
    """Get agent wallet balance from the ledger."""
    with _service() as service:
        try:
            balance = service.agent_balance(agent_id)
        except CourierError as e:
            _fail(f"Failed to get balance: {e}")
    click.echo(f"Agent:   {balance.agent_id}")
    click.echo(f"Balance: {balance.balance} ({format_coin(balance.balance)})")


@agent_group.command("list")
def agent_list():
    """List all registered agents."""
    with _service() as service:
        accounts = service.list_agents()
    if not accounts:
        click.echo("No agents registered.")
        return
    for account in accounts:
        marker = "✓" if account.is_active else "✗"
        click.echo(f"{marker} {account.agent_id}  {account.address}")


@agent_group.command("deactivate")
@click.argument("agent_id")
def agent_deactivate(agent_id: str):
    """Deactivate an agent."""
    with _service() as service:
        try:
            service.deactivate_agent(agent_id)
        except CourierError as e:
            _fail(str(e))
    click.echo(f"✅ Agent deactivated: {agent_id}")


# ── Payments ──────────────────────────────────────────────────────

@main.group("payment")
def payment_group():
    """Payment commands."""
    pass


@payment_group.command("send")
@click.argument("from_agent_id")
@click.argument("to_agent_id")
@click.argument("amount")
@click.option("--coin", is_flag=True, default=False, help="AMOUNT is in coins instead of base units")
@click.option("--memo", default=None, help="Payment memo")
def payment_send(
    from_agent_id: str,
    to_agent_id: str,
    amount: str,
    coin: bool,
    memo: Optional[str],
):
    """Send a payment between agents and wait for settlement."""
    base_units = _parse_amount(amount, coin)
    with _service() as service:
        try:
            record = service.send_payment(from_agent_id, to_agent_id, base_units, memo)
        except CourierError as e:
            _fail(f"Payment failed: {e}")
        record = service.wait_for(record.payment_id)

    if record.status == PaymentStatus.COMPLETED:
        click.echo("✅ Payment completed")
    elif record.status == PaymentStatus.FAILED:
        click.echo("❌ Payment failed")
    else:
        click.echo(f"⏳ Payment {record.status.value}")
    _echo_payment(record)
    if record.status == PaymentStatus.FAILED:
        sys.exit(1)


@payment_group.command("status")
@click.argument("payment_id")
@click.option("--agent", "agent_id", default=None, help="Requesting agent (hides other agents' payments)")
def payment_status(payment_id: str, agent_id: Optional[str]):
    """Get payment status."""
    with _service() as service:
        record = service.get_payment(payment_id, agent_id)
    if record is None:
        _fail(f"Payment not found: {payment_id}")
    _echo_payment(record)


@payment_group.command("history")
@click.argument("agent_id")
@click.option("--newest-first", is_flag=True, default=False)
def payment_history(agent_id: str, newest_first: bool):
    """Get payment history for an agent."""
    with _service() as service:
        records = service.list_agent_payments(agent_id, newest_first=newest_first)
    if not records:
        click.echo(f"No payments for {agent_id}.")
        return
    for record in records:
        direction = "→" if record.from_agent_id == agent_id else "←"
        other = record.to_agent_id if direction == "→" else record.from_agent_id
        click.echo(
            f"{record.payment_id}  {direction} {other}  {record.amount}  {record.status.value}"
        )


@payment_group.command("verify")
@click.argument("payment_id")
@click.option("--agent", "agent_id", default=None, help="Requesting agent")
def payment_verify(payment_id: str, agent_id: Optional[str]):
    """Verify a payment's privacy token."""
    with _service() as service:
        try:
            valid = service.verify_payment_token(payment_id, agent_id)
        except CourierError as e:
            _fail(str(e))
    if not valid:
        _fail(f"Privacy token for {payment_id} did not verify")
    click.echo(f"✅ Privacy token verified for {payment_id}")


@payment_group.command("reconcile")
@click.option("--stale-after", type=float, default=300.0,
              help="Fail undecided payments processing for longer than this many seconds")
def payment_reconcile(stale_after: float):
    """Settle payments left in processing by an interrupted run."""
    with _service() as service:
        try:
            resolved = service.reconcile(stale_after=stale_after)
        except CourierError as e:
            _fail(str(e))
    if not resolved:
        click.echo("Nothing to reconcile.")
        return
    for record in resolved:
        click.echo(f"{record.payment_id}: {record.status.value}")


# ── Wallets ───────────────────────────────────────────────────────

@main.group("wallet")
def wallet_group():
    """Wallet commands."""
    pass


@wallet_group.command("info")
@click.argument("agent_id")
def wallet_info(agent_id: str):
    """Show wallet address and last synced balance."""
    with _service() as service:
        wallet = service.get_wallet(agent_id)
    if wallet is None:
        _fail(f"Wallet not found for agent {agent_id}")
    click.echo(f"Agent:   {wallet.agent_id}")
    click.echo(f"Address: {wallet.address}")
    click.echo(f"Cached:  {wallet.balance} ({format_coin(wallet.balance)})")
    click.echo(f"Synced:  {_fmt_time(wallet.last_synced_at)}")


@wallet_group.command("convert")
@click.argument("amount")
@click.option("--to-base", is_flag=True, default=False, help="Convert coins to base units")
def wallet_convert(amount: str, to_base: bool):
    """Convert between base units and coins."""
    if to_base:
        click.echo(str(_parse_amount(amount, coin=True)))
    else:
        click.echo(f"{base_units_to_coin(_parse_amount(amount, coin=False)).normalize():f}")


if __name__ == "__main__":
    main()
