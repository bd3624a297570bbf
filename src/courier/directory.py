"""AccountDirectory: agent identities, wallet addresses and balances."""

from __future__ import annotations

import logging
import time
from typing import Optional

from .audit import AuditTrail, EventType
from .errors import Conflict, InvalidRequest, LedgerUnavailable, NotFoundError
from .key_vault import KeyVault
from .ledger import Ledger
from .models import AgentAccount, AgentBalance
from .stores import AccountStore
from .units import base_units_to_coin

logger = logging.getLogger(__name__)


class AccountDirectory:
    def __init__(
        self,
        accounts: AccountStore,
        vault: KeyVault,
        ledger: Ledger,
        audit: Optional[AuditTrail] = None,
    ):
        self.accounts = accounts
        self.vault = vault
        self.ledger = ledger
        self.audit = audit

    def register(self, agent_id: str, address: Optional[str] = None) -> AgentAccount:
        """Register ``agent_id`` with a new custodial wallet.

        If ``address`` is given it becomes the public address on record,
        but the vault still signs with its own key (see ``KeyVault.import_address``).
        """
        if not isinstance(agent_id, str) or not agent_id.strip():
            raise InvalidRequest("agent_id must be a non-empty string")
        if self.accounts.get_account(agent_id) is not None:
            raise Conflict(f"Agent {agent_id} already exists")

        if address:
            wallet = self.vault.import_address(agent_id, address)
        else:
            wallet = self.vault.generate(agent_id)

        now = time.time()
        account = AgentAccount(
            agent_id=agent_id,
            address=wallet.address,
            created_at=now,
            updated_at=now,
            is_active=True,
        )
        # Store-level check closes the race between two concurrent registrations.
        self.accounts.add(account, wallet)

        logger.info("Registered agent %s with wallet %s", agent_id, wallet.address)
        if self.audit:
            self.audit.log(
                EventType.AGENT_REGISTERED,
                agent_id=agent_id,
                details={"address": wallet.address, "imported": bool(address)},
            )
        return account

    def get(self, agent_id: str) -> Optional[AgentAccount]:
        return self.accounts.get_account(agent_id)

    def list_agents(self) -> list[AgentAccount]:
        return self.accounts.list_accounts()

    def resolve_address(self, agent_id: str) -> str:
        wallet = self.accounts.get_wallet(agent_id)
        if wallet is None:
            raise NotFoundError(f"Wallet not found for agent {agent_id}")
        return wallet.address

    def balance(self, agent_id: str) -> int:
        """Fetch the live ledger balance and refresh the cached snapshot."""
        address = self.resolve_address(agent_id)
        try:
            balance = self.ledger.current_balance(address)
        except LedgerUnavailable:
            logger.error("Balance lookup failed for agent %s", agent_id)
            raise
        except Exception as e:
            logger.error("Balance lookup failed for agent %s: %s", agent_id, e)
            raise LedgerUnavailable(f"Balance lookup failed: {type(e).__name__}: {e}") from e

        self.accounts.update_wallet_balance(agent_id, balance, time.time())
        return balance

    def balance_summary(self, agent_id: str) -> AgentBalance:
        if self.get(agent_id) is None:
            raise NotFoundError(f"Agent {agent_id} not found")
        balance = self.balance(agent_id)
        return AgentBalance(
            agent_id=agent_id,
            balance=balance,
            coin_balance=base_units_to_coin(balance),
        )

    def deactivate(self, agent_id: str) -> AgentAccount:
        """Mark the agent inactive. Repeating the call is accepted."""
        account = self.accounts.get_account(agent_id)
        if account is None:
            raise NotFoundError(f"Agent {agent_id} not found")
        if not account.is_active:
            logger.info("Agent %s is already inactive", agent_id)
        updated = self.accounts.update_account(
            agent_id, is_active=False, updated_at=time.time()
        )
        logger.info("Deactivated agent %s", agent_id)
        if self.audit:
            self.audit.log(EventType.AGENT_DEACTIVATED, agent_id=agent_id)
        return updated
