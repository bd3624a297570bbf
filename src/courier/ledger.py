"""
Ledger adapters.

The payment engine only needs three capabilities from the chain: read a
balance, submit a transfer and wait for it to confirm, and look up a
transfer later. ``RpcLedger`` implements them over EVM JSON-RPC;
``SimulatedLedger`` keeps balances in memory for tests and dry runs.
"""

from __future__ import annotations

import hashlib
import itertools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

import httpx
from eth_account.signers.local import LocalAccount
from eth_utils import is_address, to_checksum_address

from .config import Settings
from .errors import InsufficientFunds, LedgerRejected, LedgerUnavailable

logger = logging.getLogger(__name__)

SubmissionCallback = Callable[[str], None]

TRANSFER_GAS = 21_000
CALLDATA_GAS_PER_BYTE = 16


@dataclass
class SettlementStatus:
    confirmed: bool
    raw_status: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "confirmed": self.confirmed,
            "raw_status": self.raw_status,
            "error": self.error,
        }


class Ledger(Protocol):
    def current_balance(self, address: str) -> int: ...

    def submit_transfer(
        self,
        credential: LocalAccount,
        to_address: str,
        amount: int,
        memo: Optional[str] = None,
        on_submitted: Optional[SubmissionCallback] = None,
    ) -> str: ...

    def settlement_status(self, settlement_id: str) -> SettlementStatus: ...


@dataclass
class SimulatedTransfer:
    settlement_id: str
    from_address: str
    to_address: str
    amount: int
    memo: Optional[str]
    timestamp: float


class SimulatedLedger:
    """In-memory ledger with instant confirmation.

    Balances change only through ``fund`` and successful transfers.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._balances: dict[str, int] = {}
        self._transfers: dict[str, SimulatedTransfer] = {}
        self._counter = itertools.count(1)
        self.submissions: list[SimulatedTransfer] = []

    def fund(self, address: str, amount: int) -> int:
        key = address.lower()
        with self._lock:
            self._balances[key] = self._balances.get(key, 0) + amount
            return self._balances[key]

    def current_balance(self, address: str) -> int:
        with self._lock:
            return self._balances.get(address.lower(), 0)

    def submit_transfer(
        self,
        credential: LocalAccount,
        to_address: str,
        amount: int,
        memo: Optional[str] = None,
        on_submitted: Optional[SubmissionCallback] = None,
    ) -> str:
        if not is_address(to_address):
            raise LedgerRejected(f"invalid recipient address {to_address!r}")
        sender = credential.address.lower()
        recipient = to_address.lower()
        with self._lock:
            available = self._balances.get(sender, 0)
            if available < amount:
                raise InsufficientFunds(required=amount, available=available)
            seq = next(self._counter)
            digest = hashlib.sha256(f"{sender}:{recipient}:{amount}:{seq}".encode()).hexdigest()
            settlement_id = f"0x{digest}"
            self._balances[sender] = available - amount
            self._balances[recipient] = self._balances.get(recipient, 0) + amount
            transfer = SimulatedTransfer(
                settlement_id=settlement_id,
                from_address=credential.address,
                to_address=to_address,
                amount=amount,
                memo=memo,
                timestamp=time.time(),
            )
            self._transfers[settlement_id] = transfer
            self.submissions.append(transfer)

        if on_submitted:
            on_submitted(settlement_id)
        logger.info("Simulated transfer %s: %d from %s to %s", settlement_id, amount, sender, recipient)
        return settlement_id

    def settlement_status(self, settlement_id: str) -> SettlementStatus:
        with self._lock:
            if settlement_id in self._transfers:
                return SettlementStatus(confirmed=True, raw_status="confirmed")
        return SettlementStatus(confirmed=False, raw_status=None, error="unknown settlement id")


class RpcLedger:
    """EVM JSON-RPC ledger.

    Transfers are signed locally (legacy transactions with EIP-155 replay
    protection) and broadcast with ``eth_sendRawTransaction``. The call
    returns only once a successful receipt is seen, or raises
    ``LedgerUnavailable`` after ``confirmation_timeout`` seconds.
    """

    def __init__(
        self,
        rpc_url: str,
        chain_id: int,
        confirmation_timeout: float = 60.0,
        poll_interval: float = 2.0,
        request_timeout: float = 30.0,
        http: Optional[httpx.Client] = None,
    ):
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self._http = http or httpx.Client(timeout=request_timeout)
        self._request_id = itertools.count(1)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RpcLedger":
        return cls(
            rpc_url=settings.rpc_url,
            chain_id=settings.chain_id,
            confirmation_timeout=settings.confirmation_timeout,
            poll_interval=settings.poll_interval,
            request_timeout=settings.request_timeout,
        )

    def _rpc(self, method: str, params: Optional[list[Any]] = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._request_id),
            "method": method,
            "params": params or [],
        }
        try:
            resp = self._http.post(self.rpc_url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise LedgerUnavailable(f"{method} failed: {type(e).__name__}: {e}") from e
        except ValueError as e:
            raise LedgerUnavailable(f"{method} returned invalid JSON") from e
        if data.get("error"):
            error = data["error"]
            message = error.get("message", "Unknown RPC error") if isinstance(error, dict) else str(error)
            raise _RpcError(method, message)
        return data.get("result")

    def current_balance(self, address: str) -> int:
        try:
            result = self._rpc("eth_getBalance", [address, "latest"])
        except _RpcError as e:
            raise LedgerUnavailable(str(e)) from e
        return _quantity("eth_getBalance", result)

    def submit_transfer(
        self,
        credential: LocalAccount,
        to_address: str,
        amount: int,
        memo: Optional[str] = None,
        on_submitted: Optional[SubmissionCallback] = None,
    ) -> str:
        if not is_address(to_address):
            raise LedgerRejected(f"invalid recipient address {to_address!r}")
        data = memo.encode("utf-8") if memo else b""
        gas = TRANSFER_GAS + CALLDATA_GAS_PER_BYTE * len(data)

        try:
            gas_price = _quantity("eth_gasPrice", self._rpc("eth_gasPrice"))
            nonce = _quantity(
                "eth_getTransactionCount",
                self._rpc("eth_getTransactionCount", [credential.address, "pending"]),
            )
        except _RpcError as e:
            raise LedgerUnavailable(str(e)) from e

        available = self.current_balance(credential.address)
        required = amount + gas * gas_price
        if available < required:
            raise InsufficientFunds(required=required, available=available)

        tx = {
            "to": to_checksum_address(to_address),
            "value": amount,
            "gas": gas,
            "gasPrice": gas_price,
            "nonce": nonce,
            "chainId": self.chain_id,
            "data": "0x" + data.hex(),
        }
        signed = credential.sign_transaction(tx)
        tx_hash = "0x" + bytes(signed.hash).hex()
        raw = "0x" + bytes(signed.raw_transaction).hex()

        logger.info(
            "Sending %d wei from %s to %s (tx %s)",
            amount, credential.address, to_address, tx_hash,
        )
        try:
            self._rpc("eth_sendRawTransaction", [raw])
        except _RpcError as e:
            raise LedgerRejected(e.message) from e
        if on_submitted:
            on_submitted(tx_hash)

        self._await_receipt(tx_hash)
        logger.info("Transaction confirmed: %s", tx_hash)
        return tx_hash

    def _await_receipt(self, tx_hash: str) -> dict:
        deadline = time.monotonic() + self.confirmation_timeout
        while True:
            try:
                receipt = self._rpc("eth_getTransactionReceipt", [tx_hash])
            except _RpcError as e:
                raise LedgerUnavailable(str(e)) from e
            if receipt:
                if _receipt_succeeded(receipt):
                    return receipt
                raise LedgerRejected(f"transaction {tx_hash} reverted")
            if time.monotonic() >= deadline:
                raise LedgerUnavailable(
                    f"transaction {tx_hash} not confirmed within {self.confirmation_timeout:.0f}s"
                )
            time.sleep(self.poll_interval)

    def settlement_status(self, settlement_id: str) -> SettlementStatus:
        try:
            receipt = self._rpc("eth_getTransactionReceipt", [settlement_id])
        except (LedgerUnavailable, _RpcError) as e:
            logger.error("Error getting transaction status for %s: %s", settlement_id, e)
            return SettlementStatus(confirmed=False, error=str(e))
        if not receipt:
            return SettlementStatus(confirmed=False, raw_status="pending")
        if _receipt_succeeded(receipt):
            return SettlementStatus(confirmed=True, raw_status="confirmed")
        return SettlementStatus(confirmed=False, raw_status="reverted", error="transaction reverted")

    def close(self):
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class _RpcError(Exception):
    def __init__(self, method: str, message: str):
        self.method = method
        self.message = message
        super().__init__(f"{method} error: {message}")


def _receipt_succeeded(receipt: dict) -> bool:
    return int(receipt.get("status", "0x0"), 16) == 1


def _quantity(method: str, value: Any) -> int:
    """Parse an RPC hex quantity. A missing or malformed value means the node is unusable."""
    if not isinstance(value, str):
        raise LedgerUnavailable(f"{method} returned no result")
    try:
        return int(value, 16)
    except ValueError as e:
        raise LedgerUnavailable(f"{method} returned malformed quantity {value!r}") from e
