"""Tests for tamper-evident audit trail behavior."""

import json
import threading

import pytest

from courier.audit import AuditTrail, EventType


@pytest.fixture
def trail(tmp_path):
    return AuditTrail(
        path=tmp_path / "audit.jsonl",
        key_path=tmp_path / "secret" / "audit_hmac.key",
    )


def test_audit_hash_chain_detects_tampering(trail, tmp_path):
    trail.log(EventType.PAYMENT_CREATED, agent_id="A", payment_id="pay-1", amount=1000)
    trail.log(EventType.PAYMENT_COMPLETED, agent_id="A", payment_id="pay-1", amount=1000)

    lines = (tmp_path / "audit.jsonl").read_text().splitlines()
    first = json.loads(lines[0])
    first["amount"] = 9999
    lines[0] = json.dumps(first, separators=(",", ":"))
    (tmp_path / "audit.jsonl").write_text("\n".join(lines) + "\n")

    with pytest.raises(RuntimeError, match="Audit chain broken"):
        trail.read_events()


def test_deleted_line_breaks_chain(trail, tmp_path):
    for i in range(3):
        trail.log(EventType.PAYMENT_CREATED, payment_id=f"pay-{i}")

    lines = (tmp_path / "audit.jsonl").read_text().splitlines()
    del lines[1]
    (tmp_path / "audit.jsonl").write_text("\n".join(lines) + "\n")

    with pytest.raises(RuntimeError, match="previous hash mismatch"):
        trail.read_events()


def test_filters(trail):
    trail.log(EventType.PAYMENT_CREATED, agent_id="A", counterparty="B", payment_id="pay-1")
    trail.log(EventType.PAYMENT_CREATED, agent_id="C", counterparty="D", payment_id="pay-2")
    trail.log(EventType.PAYMENT_FAILED, agent_id="A", counterparty="B", payment_id="pay-1", success=False)

    assert len(trail.read_events(payment_id="pay-1")) == 2
    # Recipients see events where they are the counterparty.
    assert len(trail.read_events(agent_id="B")) == 2
    failed = trail.read_events(event_type=EventType.PAYMENT_FAILED)
    assert len(failed) == 1
    assert failed[0].success is False
    assert len(trail.read_events(limit=1)) == 1


def test_chain_continues_after_reopen(trail, tmp_path):
    trail.log(EventType.AGENT_REGISTERED, agent_id="A")
    reopened = AuditTrail(
        path=tmp_path / "audit.jsonl",
        key_path=tmp_path / "secret" / "audit_hmac.key",
    )
    reopened.log(EventType.AGENT_REGISTERED, agent_id="B")
    assert [e.agent_id for e in reopened.read_events()] == ["A", "B"]


def test_concurrent_appends_stay_chained(trail):
    def write(i):
        trail.log(EventType.PAYMENT_PROCESSING, payment_id=f"pay-{i}")

    threads = [threading.Thread(target=write, args=(i,)) for i in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(trail.read_events()) == 20
