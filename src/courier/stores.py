"""
Store contracts and in-memory implementations.

Stores are explicit objects handed to the components that need them, so
tests get isolated state and a durable backend (see ``sqlite_store``) can
be swapped in. Mutual exclusion is per key: operations on different agents
or payments never wait on each other.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Iterator, Optional, Protocol

from .errors import Conflict, InvalidState, NotFoundError
from .models import AgentAccount, PaymentRecord, PaymentStatus, WalletRecord


class AccountStore(Protocol):
    def add(self, account: AgentAccount, wallet: WalletRecord) -> None: ...

    def get_account(self, agent_id: str) -> Optional[AgentAccount]: ...

    def get_wallet(self, agent_id: str) -> Optional[WalletRecord]: ...

    def list_accounts(self) -> list[AgentAccount]: ...

    def update_account(self, agent_id: str, **changes) -> AgentAccount: ...

    def update_wallet_balance(self, agent_id: str, balance: int, synced_at: float) -> WalletRecord: ...


class PaymentStore(Protocol):
    def insert(self, record: PaymentRecord) -> None: ...

    def get(self, payment_id: str) -> Optional[PaymentRecord]: ...

    def transition(
        self,
        payment_id: str,
        expected: PaymentStatus,
        new: PaymentStatus,
        **changes,
    ) -> PaymentRecord: ...

    def record_submission(self, payment_id: str, tx_id: str) -> None: ...

    def list_for_agent(self, agent_id: str) -> list[PaymentRecord]: ...

    def list_by_status(self, status: PaymentStatus) -> list[PaymentRecord]: ...


class KeyedLocks:
    """One lock per key, created on first use."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield


class InMemoryAccountStore:
    """Volatile agent and wallet tables."""

    def __init__(self):
        self._table_lock = threading.Lock()
        self._locks = KeyedLocks()
        self._accounts: dict[str, AgentAccount] = {}
        self._wallets: dict[str, WalletRecord] = {}

    def add(self, account: AgentAccount, wallet: WalletRecord) -> None:
        with self._table_lock:
            if account.agent_id in self._accounts:
                raise Conflict(f"Agent {account.agent_id} already exists")
            self._accounts[account.agent_id] = replace(account)
            self._wallets[account.agent_id] = replace(wallet)

    def get_account(self, agent_id: str) -> Optional[AgentAccount]:
        account = self._accounts.get(agent_id)
        return replace(account) if account else None

    def get_wallet(self, agent_id: str) -> Optional[WalletRecord]:
        wallet = self._wallets.get(agent_id)
        return replace(wallet) if wallet else None

    def list_accounts(self) -> list[AgentAccount]:
        with self._table_lock:
            return [replace(a) for a in self._accounts.values()]

    def update_account(self, agent_id: str, **changes) -> AgentAccount:
        with self._locks.hold(agent_id):
            account = self._accounts.get(agent_id)
            if account is None:
                raise NotFoundError(f"Agent {agent_id} not found")
            updated = replace(account, **changes)
            self._accounts[agent_id] = updated
            return replace(updated)

    def update_wallet_balance(self, agent_id: str, balance: int, synced_at: float) -> WalletRecord:
        with self._locks.hold(agent_id):
            wallet = self._wallets.get(agent_id)
            if wallet is None:
                raise NotFoundError(f"Wallet not found for agent {agent_id}")
            updated = replace(wallet, balance=balance, last_synced_at=synced_at)
            self._wallets[agent_id] = updated
            return replace(updated)


class InMemoryPaymentStore:
    """Volatile payment table with an atomic status compare-and-set."""

    def __init__(self):
        self._table_lock = threading.Lock()
        self._locks = KeyedLocks()
        self._records: dict[str, PaymentRecord] = {}

    def insert(self, record: PaymentRecord) -> None:
        with self._table_lock:
            if record.payment_id in self._records:
                raise Conflict(f"Payment {record.payment_id} already exists")
            self._records[record.payment_id] = replace(record)

    def get(self, payment_id: str) -> Optional[PaymentRecord]:
        record = self._records.get(payment_id)
        return replace(record) if record else None

    def transition(
        self,
        payment_id: str,
        expected: PaymentStatus,
        new: PaymentStatus,
        **changes,
    ) -> PaymentRecord:
        with self._locks.hold(payment_id):
            record = self._records.get(payment_id)
            if record is None:
                raise NotFoundError(f"Payment {payment_id} not found")
            if record.status != expected:
                raise InvalidState(
                    f"Payment {payment_id} is {record.status.value}, expected {expected.value}"
                )
            updated = replace(record, status=new, **changes)
            self._records[payment_id] = updated
            return replace(updated)

    def record_submission(self, payment_id: str, tx_id: str) -> None:
        with self._locks.hold(payment_id):
            record = self._records.get(payment_id)
            if record is None:
                raise NotFoundError(f"Payment {payment_id} not found")
            self._records[payment_id] = replace(record, submitted_tx=tx_id)

    def list_for_agent(self, agent_id: str) -> list[PaymentRecord]:
        with self._table_lock:
            return [replace(r) for r in self._records.values() if r.involves(agent_id)]

    def list_by_status(self, status: PaymentStatus) -> list[PaymentRecord]:
        with self._table_lock:
            return [replace(r) for r in self._records.values() if r.status == status]
