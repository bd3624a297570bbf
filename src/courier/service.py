"""
Service wiring.

``CourierService`` owns one instance of each component and exposes the
actions the CLI front end needs. Sending a payment creates the
record synchronously and processes it on a worker thread.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from .audit import AuditTrail
from .config import Settings
from .directory import AccountDirectory
from .errors import CourierError, NotFoundError
from .key_vault import KeyVault
from .ledger import Ledger, RpcLedger
from .models import AgentAccount, AgentBalance, PaymentRecord, WalletRecord
from .payment import PaymentLedger
from .privacy import PrivacyTokenIssuer, build_token_issuer
from .sqlite_store import SqliteAccountStore, SqlitePaymentStore
from .storage import DataPaths
from .stores import AccountStore, InMemoryAccountStore, InMemoryPaymentStore, PaymentStore

logger = logging.getLogger(__name__)


class CourierService:
    def __init__(
        self,
        accounts: AccountStore,
        payments: PaymentStore,
        vault: KeyVault,
        issuer: PrivacyTokenIssuer,
        ledger: Ledger,
        audit: Optional[AuditTrail] = None,
        max_workers: int = 4,
        min_stale_after: float = 0.0,
    ):
        self.ledger = ledger
        self.issuer = issuer
        self.audit = audit
        self.directory = AccountDirectory(accounts, vault, ledger, audit=audit)
        self.payments = PaymentLedger(
            payments=payments,
            directory=self.directory,
            vault=vault,
            issuer=issuer,
            ledger=ledger,
            audit=audit,
            min_stale_after=min_stale_after,
        )
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="courier-pay")
        self._futures: dict[str, Future] = {}
        self._futures_lock = threading.Lock()

    # Agents

    def register_agent(self, agent_id: str, address: Optional[str] = None) -> AgentAccount:
        return self.directory.register(agent_id, address)

    def get_agent(self, agent_id: str) -> Optional[AgentAccount]:
        return self.directory.get(agent_id)

    def list_agents(self) -> list[AgentAccount]:
        return self.directory.list_agents()

    def get_wallet(self, agent_id: str) -> Optional[WalletRecord]:
        """Wallet with its cached balance snapshot (no live ledger query)."""
        return self.directory.accounts.get_wallet(agent_id)

    def agent_balance(self, agent_id: str) -> AgentBalance:
        return self.directory.balance_summary(agent_id)

    def deactivate_agent(self, agent_id: str) -> AgentAccount:
        return self.directory.deactivate(agent_id)

    # Payments

    def send_payment(
        self,
        from_agent_id: str,
        to_agent_id: str,
        amount: int,
        memo: Optional[str] = None,
    ) -> PaymentRecord:
        """Create a payment and schedule its processing. Returns the PENDING record."""
        record = self.payments.create(from_agent_id, to_agent_id, amount, memo)
        future = self._executor.submit(self._process_in_background, record.payment_id)
        with self._futures_lock:
            self._futures[record.payment_id] = future
        return record

    def wait_for(self, payment_id: str, timeout: Optional[float] = None) -> PaymentRecord:
        """Block until background processing of ``payment_id`` has finished."""
        with self._futures_lock:
            future = self._futures.pop(payment_id, None)
        if future is not None:
            future.result(timeout=timeout)
        record = self.payments.get(payment_id)
        if record is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        return record

    def _process_in_background(self, payment_id: str) -> None:
        try:
            self.payments.process(payment_id)
        except CourierError as e:
            # The failure is already recorded on the payment.
            logger.warning("Failed to process payment %s: %s", payment_id, e)

    def get_payment(self, payment_id: str, agent_id: Optional[str] = None) -> Optional[PaymentRecord]:
        return self.payments.get(payment_id, agent_id)

    def list_agent_payments(self, agent_id: str, newest_first: bool = False) -> list[PaymentRecord]:
        return self.payments.list_for_agent(agent_id, newest_first=newest_first)

    def verify_payment_token(self, payment_id: str, agent_id: Optional[str] = None) -> bool:
        return self.payments.verify_token(payment_id, agent_id)

    def reconcile(self, stale_after: float = 300.0) -> list[PaymentRecord]:
        return self.payments.reconcile(stale_after=stale_after)

    def status(self) -> dict:
        return {
            "privacy_mode": self.issuer.mode,
            "privacy_degraded": self.issuer.degraded,
            "agents": len(self.directory.list_agents()),
        }

    def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        for component in (self.ledger, self.issuer):
            close = getattr(component, "close", None)
            if close is not None:
                close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


def build_service(
    settings: Settings,
    ledger: Optional[Ledger] = None,
    durable: bool = True,
) -> CourierService:
    """Wire a service from settings.

    ``durable=False`` keeps all state in memory (tests, one-shot runs).
    """
    for warning in settings.startup_warnings():
        logger.warning(warning)

    paths = DataPaths(settings.home).prepare()
    audit = AuditTrail(path=paths.audit_log, key_path=paths.audit_key)

    if durable:
        accounts: AccountStore = SqliteAccountStore(paths.database)
        payments: PaymentStore = SqlitePaymentStore(paths.database)
    else:
        accounts = InMemoryAccountStore()
        payments = InMemoryPaymentStore()

    return CourierService(
        accounts=accounts,
        payments=payments,
        vault=KeyVault.from_settings(settings, accounts, audit=audit),
        issuer=build_token_issuer(settings, audit=audit),
        ledger=ledger or RpcLedger.from_settings(settings),
        audit=audit,
        min_stale_after=settings.processing_deadline,
    )
