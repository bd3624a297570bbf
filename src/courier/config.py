"""
Runtime configuration.

Values come from ``COURIER_*`` environment variables. Only the encryption
passphrase is required; without a privacy issuer endpoint the service runs
with local (weak) privacy tokens.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .errors import ConfigurationError
from .storage import DEFAULT_HOME


DEFAULT_RPC_URL = "https://sepolia.base.org"
DEFAULT_NETWORK = "eip155:84532"
DEFAULT_KDF_SALT = "courier-key-vault"


@dataclass
class Settings:
    rpc_url: str = DEFAULT_RPC_URL
    network: str = DEFAULT_NETWORK
    encryption_key: str = field(default="", repr=False)
    kdf_salt: str = DEFAULT_KDF_SALT
    privacy_endpoint: Optional[str] = None
    privacy_api_key: Optional[str] = field(default=None, repr=False)
    home: Path = DEFAULT_HOME
    confirmation_timeout: float = 60.0
    poll_interval: float = 2.0
    request_timeout: float = 30.0
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        home = env.get("COURIER_HOME")
        return cls(
            rpc_url=env.get("COURIER_RPC_URL", DEFAULT_RPC_URL),
            network=env.get("COURIER_NETWORK", DEFAULT_NETWORK),
            encryption_key=env.get("COURIER_ENCRYPTION_KEY", ""),
            kdf_salt=env.get("COURIER_KDF_SALT", DEFAULT_KDF_SALT),
            privacy_endpoint=env.get("COURIER_PRIVACY_ENDPOINT") or None,
            privacy_api_key=env.get("COURIER_PRIVACY_API_KEY") or None,
            home=Path(home).expanduser() if home else DEFAULT_HOME,
            confirmation_timeout=_float_env(env, "COURIER_CONFIRMATION_TIMEOUT", 60.0),
            poll_interval=_float_env(env, "COURIER_POLL_INTERVAL", 2.0),
            request_timeout=_float_env(env, "COURIER_REQUEST_TIMEOUT", 30.0),
            log_level=env.get("COURIER_LOG_LEVEL", "WARNING").upper(),
        )

    @property
    def chain_id(self) -> int:
        """Numeric chain id from a CAIP-2 ``eip155:<id>`` selector."""
        namespace, _, reference = self.network.partition(":")
        if namespace != "eip155" or not reference.isdigit():
            raise ConfigurationError(
                f"Unsupported network selector {self.network!r} (expected eip155:<chain id>)"
            )
        return int(reference)

    @property
    def processing_deadline(self) -> float:
        """Upper bound on how long a live worker keeps a payment PROCESSING.

        Four RPC calls before the broadcast, the broadcast itself, then the
        confirmation wait, whose last receipt call and poll sleep can
        overrun it.
        """
        return (
            5 * self.request_timeout
            + self.confirmation_timeout
            + self.request_timeout
            + self.poll_interval
        )

    @property
    def privacy_issuer_configured(self) -> bool:
        return bool(self.privacy_endpoint and self.privacy_api_key)

    def startup_warnings(self) -> list[str]:
        warnings = []
        if not self.encryption_key:
            warnings.append(
                "COURIER_ENCRYPTION_KEY is not set; wallets cannot be created or used."
            )
        if not self.privacy_issuer_configured:
            warnings.append(
                "Privacy issuer not configured; using local privacy tokens "
                "(reversible encoding, no confidentiality)."
            )
        return warnings


def _float_env(env, name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e
