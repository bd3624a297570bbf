"""Records owned by the account directory and the payment engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PaymentStatus.COMPLETED, PaymentStatus.FAILED)


@dataclass
class AgentAccount:
    """A registered agent. Accounts are deactivated, never deleted."""

    agent_id: str
    address: str
    created_at: float
    updated_at: float
    is_active: bool = True

    def to_dict(self) -> dict:
        return {
            "agent_id": self.agent_id,
            "address": self.address,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "is_active": self.is_active,
        }


@dataclass
class WalletRecord:
    """Custodial wallet of one agent.

    ``encrypted_key`` is written once by the key vault. ``balance`` is a
    snapshot taken at ``last_synced_at``, not a live value.
    """

    agent_id: str
    address: str
    encrypted_key: str = field(repr=False)
    balance: int = 0
    last_synced_at: float = 0.0

    def to_dict(self) -> dict:
        # The encrypted credential never leaves the process.
        return {
            "agent_id": self.agent_id,
            "address": self.address,
            "balance": self.balance,
            "last_synced_at": self.last_synced_at,
        }


@dataclass
class AgentBalance:
    agent_id: str
    balance: int
    coin_balance: Decimal

    def to_dict(self) -> dict:
        return {
            "agent_id": self.agent_id,
            "balance": self.balance,
            "coin_balance": str(self.coin_balance),
        }


@dataclass
class PaymentRecord:
    """A payment between two agents.

    ``settlement_id`` is set only on COMPLETED. ``submitted_tx`` is the
    broadcast transaction id, recorded before confirmation so an
    interrupted payment can be reconciled against the ledger.
    """

    payment_id: str
    from_agent_id: str
    to_agent_id: str
    amount: int
    created_at: float
    status: PaymentStatus = PaymentStatus.PENDING
    memo: Optional[str] = None
    privacy_token: Optional[str] = None
    settlement_id: Optional[str] = None
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    failure_reason: Optional[str] = None
    submitted_tx: Optional[str] = None

    def involves(self, agent_id: str) -> bool:
        return agent_id in (self.from_agent_id, self.to_agent_id)

    def to_dict(self) -> dict:
        return {
            "payment_id": self.payment_id,
            "from_agent_id": self.from_agent_id,
            "to_agent_id": self.to_agent_id,
            "amount": self.amount,
            "status": self.status.value,
            "memo": self.memo,
            "privacy_token": self.privacy_token,
            "settlement_id": self.settlement_id,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "failure_reason": self.failure_reason,
        }
