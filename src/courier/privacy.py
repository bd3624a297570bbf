"""
Privacy tokens for payments.

Two strategies, chosen by configuration:

- ``RemoteTokenIssuer`` asks an external issuer service for an opaque token.
  If the service fails for any reason, issuance falls back to the local
  strategy and the issuer reports itself as degraded.
- ``LocalTokenIssuer`` encodes ``from:to:amount:timestamp`` in base64.
  Anyone holding the token can decode it; it provides no confidentiality.

``verify`` is a structural check for local tokens, not a signature check.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx

from .audit import AuditTrail, EventType
from .config import Settings

logger = logging.getLogger(__name__)


@dataclass
class IssuedToken:
    token: str
    auxiliary_blob: str
    issuer: str  # "remote" or "local"


class PrivacyTokenIssuer(Protocol):
    mode: str

    @property
    def degraded(self) -> bool: ...

    def issue(
        self,
        from_address: str,
        to_address: str,
        amount: int,
        memo: Optional[str] = None,
    ) -> IssuedToken: ...

    def verify(self, token: str) -> bool: ...

    def details(self, token: str) -> Optional[dict[str, Any]]: ...


class LocalTokenIssuer:
    mode = "local"

    @property
    def degraded(self) -> bool:
        return True

    def issue(
        self,
        from_address: str,
        to_address: str,
        amount: int,
        memo: Optional[str] = None,
    ) -> IssuedToken:
        timestamp = int(time.time() * 1000)
        data = f"{from_address}:{to_address}:{amount}:{timestamp}"
        token = base64.b64encode(data.encode()).decode()
        auxiliary = base64.b64encode(
            json.dumps(
                {
                    "from": from_address[:8] + "...",
                    "to": to_address[:8] + "...",
                    "amount": amount,
                    "timestamp": timestamp,
                },
                separators=(",", ":"),
            ).encode()
        ).decode()
        return IssuedToken(token=token, auxiliary_blob=auxiliary, issuer=self.mode)

    def verify(self, token: str) -> bool:
        try:
            decoded = base64.b64decode(token, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError, ValueError):
            return False
        fields = decoded.split(":")
        if len(fields) != 4:
            return False
        _, _, amount, timestamp = fields
        return amount.isdigit() and timestamp.isdigit()

    def details(self, token: str) -> Optional[dict[str, Any]]:
        return None


class RemoteTokenIssuer:
    """Client for an external privacy issuer, with local fallback on failure."""

    mode = "remote"

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        timeout_seconds: float = 30.0,
        audit: Optional[AuditTrail] = None,
        http: Optional[httpx.Client] = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self._api_key = api_key
        self.audit = audit
        self._http = http or httpx.Client(timeout=timeout_seconds)
        self._fallback = LocalTokenIssuer()
        self._lock = threading.Lock()
        self._degraded = False
        self.fallback_count = 0

    @property
    def degraded(self) -> bool:
        """True when the most recent issuance fell back to local tokens."""
        return self._degraded

    def _post(self, path: str, body: dict[str, Any]) -> httpx.Response:
        return self._http.post(
            f"{self.endpoint}/api/v1/payments/{path}",
            json=body,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )

    def issue(
        self,
        from_address: str,
        to_address: str,
        amount: int,
        memo: Optional[str] = None,
    ) -> IssuedToken:
        try:
            resp = self._post(
                "create",
                {"from": from_address, "to": to_address, "amount": amount, "memo": memo},
            )
            if not resp.is_success:
                raise RuntimeError(f"issuer returned {resp.status_code}: {resp.text[:200]}")
            data = resp.json()
            issued = IssuedToken(
                token=str(data["privacyToken"]),
                auxiliary_blob=str(data.get("encryptedData", "")),
                issuer=self.mode,
            )
        except (httpx.HTTPError, RuntimeError, ValueError, KeyError, TypeError) as e:
            return self._fall_back(e, from_address, to_address, amount, memo)

        with self._lock:
            self._degraded = False
        return issued

    def _fall_back(
        self,
        error: Exception,
        from_address: str,
        to_address: str,
        amount: int,
        memo: Optional[str],
    ) -> IssuedToken:
        with self._lock:
            self._degraded = True
            self.fallback_count += 1
        logger.warning(
            "Privacy issuer unavailable (%s: %s); issuing local token",
            type(error).__name__, error,
        )
        if self.audit:
            self.audit.log(
                EventType.PRIVACY_DEGRADED,
                success=False,
                reason=f"{type(error).__name__}: {error}",
                details={"endpoint": self.endpoint},
            )
        return self._fallback.issue(from_address, to_address, amount, memo)

    def verify(self, token: str) -> bool:
        try:
            return self._post("verify", {"privacyToken": token}).is_success
        except httpx.HTTPError as e:
            logger.error("Error verifying privacy token: %s", e)
            return False

    def details(self, token: str) -> Optional[dict[str, Any]]:
        """Payment details the issuer is willing to disclose for ``token``."""
        try:
            resp = self._post("details", {"privacyToken": token})
            if not resp.is_success:
                return None
            return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Error getting payment details: %s", e)
            return None

    def close(self):
        self._http.close()


def build_token_issuer(
    settings: Settings,
    audit: Optional[AuditTrail] = None,
) -> PrivacyTokenIssuer:
    if settings.privacy_issuer_configured:
        return RemoteTokenIssuer(
            endpoint=settings.privacy_endpoint,
            api_key=settings.privacy_api_key,
            timeout_seconds=settings.request_timeout,
            audit=audit,
        )
    logger.warning("Privacy issuer not configured; using local privacy tokens")
    return LocalTokenIssuer()
