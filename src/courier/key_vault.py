"""
KeyVault: custody of agent signing keys.

Every agent wallet has a secp256k1 keypair generated here. The private half
is sealed with AES-256-GCM under a key derived (scrypt) from the configured
passphrase and stored on the wallet record as ``nonce || tag || ciphertext``.
The agent id is bound as associated data, so a blob copied onto another
agent's wallet does not decrypt.

Decrypted keys only leave the vault through ``reveal``, which is audited and
is called by the payment engine while executing a transfer. No front end
exposes it.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import is_address, to_checksum_address

from .audit import AuditTrail, EventType
from .config import DEFAULT_KDF_SALT, Settings
from .errors import ConfigurationError, DecryptionError, InvalidRequest, NotFoundError
from .models import WalletRecord
from .stores import AccountStore

logger = logging.getLogger(__name__)

SigningCredential = LocalAccount


class CredentialCipher:
    """Authenticated encryption for private keys.

    Blob layout: 12-byte nonce, 16-byte GCM tag, ciphertext.
    """

    NONCE_SIZE = 12
    TAG_SIZE = 16

    # scrypt cost parameters (n=2^14, r=8, p=1: ~16 MiB, tens of ms)
    SCRYPT_N = 2**14
    SCRYPT_R = 8
    SCRYPT_P = 1

    def __init__(self, passphrase: str, salt: str = DEFAULT_KDF_SALT):
        if not passphrase:
            raise ConfigurationError("Encryption passphrase is not configured")
        kdf = Scrypt(
            salt=salt.encode(),
            length=32,
            n=self.SCRYPT_N,
            r=self.SCRYPT_R,
            p=self.SCRYPT_P,
        )
        self._aead = AESGCM(kdf.derive(passphrase.encode()))

    def encrypt(self, plaintext: bytes, associated_data: Optional[bytes] = None) -> bytes:
        nonce = os.urandom(self.NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext, associated_data)
        ciphertext, tag = sealed[: -self.TAG_SIZE], sealed[-self.TAG_SIZE :]
        return nonce + tag + ciphertext

    def decrypt(self, blob: bytes, associated_data: Optional[bytes] = None) -> bytes:
        if len(blob) <= self.NONCE_SIZE + self.TAG_SIZE:
            raise DecryptionError("Encrypted credential is truncated")
        nonce = blob[: self.NONCE_SIZE]
        tag = blob[self.NONCE_SIZE : self.NONCE_SIZE + self.TAG_SIZE]
        ciphertext = blob[self.NONCE_SIZE + self.TAG_SIZE :]
        try:
            return self._aead.decrypt(nonce, ciphertext + tag, associated_data)
        except InvalidTag as e:
            raise DecryptionError("Encrypted credential failed authentication") from e


class KeyVault:
    """Creates wallets and decrypts their keys on demand."""

    def __init__(
        self,
        wallets: AccountStore,
        cipher: Optional[CredentialCipher] = None,
        audit: Optional[AuditTrail] = None,
    ):
        self.wallets = wallets
        self.audit = audit
        self._cipher = cipher

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        wallets: AccountStore,
        audit: Optional[AuditTrail] = None,
    ) -> "KeyVault":
        cipher = None
        if settings.encryption_key:
            cipher = CredentialCipher(settings.encryption_key, settings.kdf_salt)
        else:
            logger.warning("KeyVault started without an encryption passphrase")
        return cls(wallets=wallets, cipher=cipher, audit=audit)

    @property
    def cipher(self) -> CredentialCipher:
        if self._cipher is None:
            raise ConfigurationError(
                "COURIER_ENCRYPTION_KEY must be set to create or use wallets"
            )
        return self._cipher

    def generate(self, agent_id: str) -> WalletRecord:
        """Create a fresh keypair for ``agent_id`` and return its sealed wallet record."""
        cipher = self.cipher
        account = Account.create()
        return self._seal(agent_id, account, account.address, cipher)

    def import_address(self, agent_id: str, external_address: str) -> WalletRecord:
        """Register a caller-supplied public address.

        The vault cannot take custody of a key it never saw, so it still
        generates its own keypair; transfers are signed by that key, not by
        ``external_address``.
        """
        cipher = self.cipher
        if not isinstance(external_address, str) or not is_address(external_address):
            raise InvalidRequest(f"Invalid wallet address: {external_address!r}")
        account = Account.create()
        logger.warning(
            "Agent %s registered external address %s; signing uses vault key %s instead",
            agent_id, external_address, account.address,
        )
        return self._seal(agent_id, account, to_checksum_address(external_address), cipher)

    def reveal(self, agent_id: str) -> SigningCredential:
        """Decrypt the signing key of ``agent_id``."""
        wallet = self.wallets.get_wallet(agent_id)
        if wallet is None:
            raise NotFoundError(f"Wallet not found for agent {agent_id}")
        cipher = self.cipher
        try:
            blob = bytes.fromhex(wallet.encrypted_key)
            key = cipher.decrypt(blob, associated_data=agent_id.encode())
            account = Account.from_key(key)
        except (ValueError, DecryptionError) as e:
            logger.error("Failed to decrypt wallet for agent %s", agent_id)
            self._log(agent_id, wallet.address, success=False, reason=str(e))
            if isinstance(e, DecryptionError):
                raise
            raise DecryptionError(f"Stored credential for agent {agent_id} is malformed") from e

        self._log(agent_id, wallet.address, success=True)
        return account

    def _seal(
        self,
        agent_id: str,
        account: LocalAccount,
        address: str,
        cipher: CredentialCipher,
    ) -> WalletRecord:
        blob = cipher.encrypt(bytes(account.key), associated_data=agent_id.encode())
        wallet = WalletRecord(
            agent_id=agent_id,
            address=address,
            encrypted_key=blob.hex(),
            balance=0,
            last_synced_at=time.time(),
        )
        if self.audit:
            self.audit.log(
                EventType.WALLET_CREATED,
                agent_id=agent_id,
                details={"address": address, "signing_address": account.address},
            )
        return wallet

    def _log(self, agent_id: str, address: str, success: bool, reason: Optional[str] = None) -> None:
        if self.audit:
            self.audit.log(
                EventType.KEY_REVEALED,
                agent_id=agent_id,
                success=success,
                reason=reason,
                details={"address": address},
            )
