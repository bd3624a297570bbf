"""
Courier: private payments between AI agents.

Agents get custodial wallets; payments are wrapped in privacy tokens,
executed against an external ledger, and only visible to their parties.
"""

__version__ = "0.1.0"

from .errors import (
    CourierError,
    Conflict,
    ConfigurationError,
    DecryptionError,
    InsufficientFunds,
    InvalidRequest,
    InvalidState,
    LedgerRejected,
    LedgerUnavailable,
    NotFoundError,
)
from .models import AgentAccount, AgentBalance, PaymentRecord, PaymentStatus, WalletRecord
from .key_vault import CredentialCipher, KeyVault
from .directory import AccountDirectory
from .privacy import IssuedToken, LocalTokenIssuer, RemoteTokenIssuer, build_token_issuer
from .ledger import RpcLedger, SettlementStatus, SimulatedLedger
from .payment import PaymentLedger
from .service import CourierService, build_service
from .audit import AuditTrail, EventType

__all__ = [
    "CourierError", "Conflict", "ConfigurationError", "DecryptionError", "InsufficientFunds",
    "InvalidRequest", "InvalidState", "LedgerRejected", "LedgerUnavailable", "NotFoundError",
    "AgentAccount", "AgentBalance", "PaymentRecord", "PaymentStatus", "WalletRecord",
    "CredentialCipher", "KeyVault", "AccountDirectory",
    "IssuedToken", "LocalTokenIssuer", "RemoteTokenIssuer", "build_token_issuer",
    "RpcLedger", "SettlementStatus", "SimulatedLedger",
    "PaymentLedger", "CourierService", "build_service",
    "AuditTrail", "EventType",
]
