"""Tests for agent registration, lookup, balances and deactivation."""

from decimal import Decimal

import pytest
from eth_account import Account

from courier.audit import EventType
from courier.directory import AccountDirectory
from courier.errors import Conflict, InvalidRequest, LedgerUnavailable, NotFoundError


class _BrokenLedger:
    def current_balance(self, address):
        raise ConnectionError("node down")


class TestRegister:
    def test_register_creates_wallet(self, directory, accounts):
        account = directory.register("alice")
        assert account.is_active
        assert account.address.startswith("0x")
        assert account.created_at == account.updated_at

        wallet = accounts.get_wallet("alice")
        assert wallet.address == account.address
        assert wallet.balance == 0

    def test_register_duplicate(self, directory):
        directory.register("alice")
        with pytest.raises(Conflict):
            directory.register("alice")

    def test_register_empty_id(self, directory):
        with pytest.raises(InvalidRequest):
            directory.register("  ")

    def test_register_with_address(self, directory):
        external = Account.create().address
        account = directory.register("alice", address=external)
        assert account.address == external

    def test_register_is_audited(self, directory, audit):
        directory.register("alice")
        events = audit.read_events(agent_id="alice", event_type=EventType.AGENT_REGISTERED)
        assert len(events) == 1
        assert events[0].details["imported"] is False

    def test_each_agent_gets_own_wallet(self, directory):
        a = directory.register("alice")
        b = directory.register("bob")
        assert a.address != b.address


class TestLookup:
    def test_get_unknown(self, directory):
        assert directory.get("ghost") is None

    def test_list_agents(self, directory):
        directory.register("alice")
        directory.register("bob")
        assert [a.agent_id for a in directory.list_agents()] == ["alice", "bob"]

    def test_resolve_address(self, directory):
        account = directory.register("alice")
        assert directory.resolve_address("alice") == account.address

    def test_resolve_unknown(self, directory):
        with pytest.raises(NotFoundError):
            directory.resolve_address("ghost")


class TestBalance:
    def test_balance_refreshes_snapshot(self, directory, accounts, ledger):
        account = directory.register("alice")
        ledger.fund(account.address, 2 * 10**18)

        assert directory.balance("alice") == 2 * 10**18
        assert accounts.get_wallet("alice").balance == 2 * 10**18

    def test_balance_summary(self, directory, ledger):
        account = directory.register("alice")
        ledger.fund(account.address, 1_500_000_000_000_000_000)
        summary = directory.balance_summary("alice")
        assert summary.balance == 1_500_000_000_000_000_000
        assert summary.coin_balance == Decimal("1.5")

    def test_balance_unknown_agent(self, directory):
        with pytest.raises(NotFoundError):
            directory.balance_summary("ghost")

    def test_ledger_failure_is_unavailable(self, accounts, vault):
        directory = AccountDirectory(accounts, vault, _BrokenLedger())
        directory.register("alice")
        with pytest.raises(LedgerUnavailable, match="node down"):
            directory.balance("alice")
        assert accounts.get_wallet("alice").balance == 0


class TestDeactivate:
    def test_deactivate(self, directory):
        directory.register("alice")
        account = directory.deactivate("alice")
        assert not account.is_active
        assert not directory.get("alice").is_active

    def test_deactivate_twice(self, directory):
        directory.register("alice")
        directory.deactivate("alice")
        assert not directory.deactivate("alice").is_active

    def test_deactivate_unknown(self, directory):
        with pytest.raises(NotFoundError):
            directory.deactivate("ghost")
