"""
Payment lifecycle engine.

Flow:
1. ``create``: validate, resolve both wallets, mint a privacy token,
   store a PENDING record. The ledger is not contacted.
2. ``process``: atomically move PENDING -> PROCESSING, decrypt the sender's
   key, submit the transfer and wait for confirmation, then record
   COMPLETED or FAILED.
3. ``get`` / ``list_for_agent``: reads, hiding payments from agents that
   are not a party to them.

Only one caller can win the PENDING -> PROCESSING transition for a payment,
so a payment is submitted to the ledger at most once.
"""

from __future__ import annotations

import hashlib
import logging
import os
import time
from typing import Optional

from .audit import AuditTrail, EventType
from .directory import AccountDirectory
from .errors import InvalidRequest, InvalidState, NotFoundError
from .key_vault import KeyVault
from .ledger import Ledger
from .models import PaymentRecord, PaymentStatus
from .privacy import PrivacyTokenIssuer
from .stores import PaymentStore

logger = logging.getLogger(__name__)

MAX_MEMO_BYTES = 512


class PaymentLedger:
    """Creates, executes and answers queries about payments."""

    def __init__(
        self,
        payments: PaymentStore,
        directory: AccountDirectory,
        vault: KeyVault,
        issuer: PrivacyTokenIssuer,
        ledger: Ledger,
        audit: Optional[AuditTrail] = None,
        min_stale_after: float = 0.0,
    ):
        self.payments = payments
        self.directory = directory
        self.vault = vault
        self.issuer = issuer
        self.ledger = ledger
        self.audit = audit
        self.min_stale_after = min_stale_after

    def create(
        self,
        from_agent_id: str,
        to_agent_id: str,
        amount: int,
        memo: Optional[str] = None,
    ) -> PaymentRecord:
        """Record a PENDING payment. Balances are not checked here."""
        _validate_request(from_agent_id, to_agent_id, amount, memo)

        from_address = self.directory.resolve_address(from_agent_id)
        to_address = self.directory.resolve_address(to_agent_id)

        issued = self.issuer.issue(from_address, to_address, amount, memo)

        record = PaymentRecord(
            payment_id=_generate_payment_id(),
            from_agent_id=from_agent_id,
            to_agent_id=to_agent_id,
            amount=amount,
            created_at=time.time(),
            status=PaymentStatus.PENDING,
            memo=memo,
            privacy_token=issued.token,
        )
        self.payments.insert(record)

        logger.info(
            "Created payment %s from %s to %s (%s token)",
            record.payment_id, from_agent_id, to_agent_id, issued.issuer,
        )
        if self.audit:
            self.audit.log(
                EventType.PAYMENT_CREATED,
                agent_id=from_agent_id,
                counterparty=to_agent_id,
                payment_id=record.payment_id,
                amount=amount,
                details={"token_issuer": issued.issuer},
            )
        return record

    def process(self, payment_id: str) -> PaymentRecord:
        """Execute a PENDING payment against the ledger.

        Raises ``InvalidState`` if the payment is not PENDING. Any failure
        after the PROCESSING transition is recorded as FAILED and then
        re-raised.
        """
        record = self.payments.transition(
            payment_id,
            PaymentStatus.PENDING,
            PaymentStatus.PROCESSING,
            started_at=time.time(),
        )

        try:
            self._log_event(EventType.PAYMENT_PROCESSING, record)
            credential = self.vault.reveal(record.from_agent_id)
            to_address = self.directory.resolve_address(record.to_agent_id)
            # reconcile() may have failed the payment while the key was being revealed.
            self._ensure_processing(payment_id)
            settlement_id = self.ledger.submit_transfer(
                credential,
                to_address,
                record.amount,
                record.memo,
                on_submitted=lambda tx_id: self.payments.record_submission(payment_id, tx_id),
            )
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"
            logger.error("Payment %s failed: %s", payment_id, reason)
            self._record_failure(payment_id, reason)
            raise

        try:
            completed = self.payments.transition(
                payment_id,
                PaymentStatus.PROCESSING,
                PaymentStatus.COMPLETED,
                settlement_id=settlement_id,
                completed_at=time.time(),
            )
        except InvalidState:
            return self._settle_after_reconcile(payment_id, settlement_id)

        logger.info("Payment %s completed with settlement %s", payment_id, settlement_id)
        self._log_event(
            EventType.PAYMENT_COMPLETED,
            completed,
            details={"settlement_id": settlement_id},
        )
        return completed

    def _ensure_processing(self, payment_id: str) -> None:
        current = self.payments.get(payment_id)
        if current is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        if current.status != PaymentStatus.PROCESSING:
            raise InvalidState(
                f"Payment {payment_id} is {current.status.value}, expected processing"
            )

    def _record_failure(self, payment_id: str, reason: str) -> None:
        try:
            failed = self.payments.transition(
                payment_id,
                PaymentStatus.PROCESSING,
                PaymentStatus.FAILED,
                completed_at=time.time(),
                failure_reason=reason,
            )
        except InvalidState:
            # Already settled by reconcile().
            logger.warning("Payment %s was finalized elsewhere; leaving it as is", payment_id)
            return
        self._log_event(EventType.PAYMENT_FAILED, failed, success=False, reason=reason)

    def _settle_after_reconcile(self, payment_id: str, settlement_id: str) -> PaymentRecord:
        """Record a transfer that settled after reconcile() had already failed the payment."""
        current = self.payments.get(payment_id)
        if current is not None and current.status == PaymentStatus.COMPLETED:
            return current
        logger.error(
            "Payment %s settled as %s after reconciliation marked it failed; correcting to completed",
            payment_id, settlement_id,
        )
        corrected = self.payments.transition(
            payment_id,
            PaymentStatus.FAILED,
            PaymentStatus.COMPLETED,
            settlement_id=settlement_id,
            completed_at=time.time(),
            failure_reason=None,
        )
        self._log_event(
            EventType.PAYMENT_RECONCILED,
            corrected,
            details={
                "status": PaymentStatus.COMPLETED.value,
                "settlement_id": settlement_id,
                "corrected_from": PaymentStatus.FAILED.value,
            },
        )
        return corrected

    def get(
        self,
        payment_id: str,
        requesting_agent_id: Optional[str] = None,
    ) -> Optional[PaymentRecord]:
        """Look up a payment.

        A requester who is neither sender nor recipient gets ``None``,
        the same answer as for an unknown id.
        """
        record = self.payments.get(payment_id)
        if record is None:
            return None
        if requesting_agent_id is not None and not record.involves(requesting_agent_id):
            return None
        return record

    def list_for_agent(self, agent_id: str, newest_first: bool = False) -> list[PaymentRecord]:
        records = self.payments.list_for_agent(agent_id)
        if newest_first:
            records.reverse()
        return records

    def verify_token(self, payment_id: str, requesting_agent_id: Optional[str] = None) -> bool:
        record = self.get(payment_id, requesting_agent_id)
        if record is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        if not record.privacy_token:
            return False
        return self.issuer.verify(record.privacy_token)

    def reconcile(self, stale_after: float = 300.0) -> list[PaymentRecord]:
        """Settle payments left in PROCESSING by an interrupted process.

        A recorded broadcast is looked up on the ledger: confirmed means
        COMPLETED, a reported revert means FAILED. Anything still undecided
        is failed once it has been PROCESSING for ``stale_after`` seconds.
        ``stale_after`` may not be shorter than ``min_stale_after``, the
        longest a live worker can take to finish.
        """
        if stale_after < self.min_stale_after:
            raise InvalidRequest(
                f"stale_after must be at least {self.min_stale_after:.0f}s "
                "(the longest a live payment can stay processing)"
            )
        now = time.time()
        resolved: list[PaymentRecord] = []
        for record in self.payments.list_by_status(PaymentStatus.PROCESSING):
            outcome = None
            if record.submitted_tx:
                status = self.ledger.settlement_status(record.submitted_tx)
                if status.confirmed:
                    outcome = self._finish(
                        record,
                        PaymentStatus.COMPLETED,
                        settlement_id=record.submitted_tx,
                    )
                elif status.raw_status == "reverted":
                    outcome = self._finish(
                        record,
                        PaymentStatus.FAILED,
                        failure_reason=f"Reconciled: {status.error or 'transaction reverted'}",
                    )

            started = record.started_at or record.created_at
            if outcome is None and now - started >= stale_after:
                reason = (
                    "Reconciled: transaction never confirmed"
                    if record.submitted_tx
                    else "Reconciled: interrupted before submission"
                )
                outcome = self._finish(record, PaymentStatus.FAILED, failure_reason=reason)

            if outcome is not None:
                resolved.append(outcome)
        return resolved

    def _finish(self, record: PaymentRecord, status: PaymentStatus, **changes) -> Optional[PaymentRecord]:
        try:
            finished = self.payments.transition(
                record.payment_id,
                PaymentStatus.PROCESSING,
                status,
                completed_at=time.time(),
                **changes,
            )
        except InvalidState:
            # A live worker finished it first.
            return None
        logger.warning("Reconciled payment %s to %s", record.payment_id, status.value)
        self._log_event(
            EventType.PAYMENT_RECONCILED,
            finished,
            success=status == PaymentStatus.COMPLETED,
            reason=changes.get("failure_reason"),
            details={"status": status.value},
        )
        return finished

    def _log_event(
        self,
        event_type: EventType,
        record: PaymentRecord,
        success: bool = True,
        reason: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        if self.audit:
            self.audit.log(
                event_type,
                agent_id=record.from_agent_id,
                counterparty=record.to_agent_id,
                payment_id=record.payment_id,
                amount=record.amount,
                success=success,
                reason=reason,
                details=details,
            )


def _validate_request(
    from_agent_id: str,
    to_agent_id: str,
    amount: int,
    memo: Optional[str],
) -> None:
    if not from_agent_id or not to_agent_id:
        raise InvalidRequest("from_agent_id and to_agent_id are required")
    if from_agent_id == to_agent_id:
        raise InvalidRequest("Cannot send payment to self")
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidRequest("Amount must be an integer number of base units")
    if amount <= 0:
        raise InvalidRequest("Amount must be greater than 0")
    if memo is not None and len(memo.encode("utf-8")) > MAX_MEMO_BYTES:
        raise InvalidRequest(f"Memo exceeds {MAX_MEMO_BYTES} bytes")


def _generate_payment_id() -> str:
    entropy = f"{time.time()}-{os.urandom(16).hex()}"
    return f"pay-{hashlib.sha256(entropy.encode()).hexdigest()[:24]}"
