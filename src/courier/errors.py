"""
Courier error types.

Specific exceptions for different failure modes, enabling callers
to tell a bad request from a missing record from a ledger outage.
"""


class CourierError(Exception):
    """Base error for all Courier operations."""
    pass


# Request errors
class InvalidRequest(CourierError):
    """Malformed caller input. Never retried automatically."""
    pass


class NotFoundError(CourierError):
    """Agent, wallet or payment does not exist."""
    pass


class Conflict(CourierError):
    """Duplicate registration."""
    pass


class InvalidState(CourierError):
    """Illegal state transition (e.g. processing a payment twice)."""
    pass


# Ledger errors
class LedgerError(CourierError):
    """Base error for failures reported by the external ledger."""
    pass


class InsufficientFunds(LedgerError):
    """Sender's live balance does not cover the transfer."""
    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient balance. Required: {required}, available: {available}"
        )


class LedgerRejected(LedgerError):
    """Ledger refused or reverted the transfer."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Ledger rejected transfer: {reason}")


class LedgerUnavailable(LedgerError):
    """Transport failure or confirmation timeout."""
    pass


# Key custody errors
class DecryptionError(CourierError):
    """Stored credential is malformed or the vault secret does not match."""
    pass


class ConfigurationError(CourierError):
    """Required configuration is missing or invalid."""
    pass
