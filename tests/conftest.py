"""Shared fixtures: an in-memory deployment on a simulated ledger."""

import pytest

from courier.audit import AuditTrail
from courier.directory import AccountDirectory
from courier.key_vault import CredentialCipher, KeyVault
from courier.ledger import SimulatedLedger
from courier.payment import PaymentLedger
from courier.privacy import LocalTokenIssuer
from courier.stores import InMemoryAccountStore, InMemoryPaymentStore


PASSPHRASE = "correct horse battery staple"


@pytest.fixture(scope="session")
def cipher():
    return CredentialCipher(PASSPHRASE)


@pytest.fixture
def audit(tmp_path):
    return AuditTrail(
        path=tmp_path / "audit.jsonl",
        key_path=tmp_path / "secrets" / "audit_hmac.key",
    )


@pytest.fixture
def accounts():
    return InMemoryAccountStore()


@pytest.fixture
def vault(accounts, cipher, audit):
    return KeyVault(accounts, cipher, audit=audit)


@pytest.fixture
def ledger():
    return SimulatedLedger()


@pytest.fixture
def directory(accounts, vault, ledger, audit):
    return AccountDirectory(accounts, vault, ledger, audit=audit)


@pytest.fixture
def payment_store():
    return InMemoryPaymentStore()


@pytest.fixture
def engine(payment_store, directory, vault, ledger, audit):
    return PaymentLedger(
        payments=payment_store,
        directory=directory,
        vault=vault,
        issuer=LocalTokenIssuer(),
        ledger=ledger,
        audit=audit,
    )
