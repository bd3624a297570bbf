"""Tests for privacy token issuance, verification and fallback."""

import base64
import json

import httpx
import pytest

from courier.audit import EventType
from courier.config import Settings
from courier.privacy import LocalTokenIssuer, RemoteTokenIssuer, build_token_issuer


FROM = "0x1111111111111111111111111111111111111111"
TO = "0x2222222222222222222222222222222222222222"


def _remote(handler, audit=None):
    return RemoteTokenIssuer(
        endpoint="https://issuer.example/",
        api_key="k-123",
        audit=audit,
        http=httpx.Client(transport=httpx.MockTransport(handler)),
    )


class TestLocalTokenIssuer:
    def test_token_encodes_payment(self):
        issued = LocalTokenIssuer().issue(FROM, TO, 5000)
        decoded = base64.b64decode(issued.token).decode()
        sender, recipient, amount, timestamp = decoded.split(":")
        assert (sender, recipient, amount) == (FROM, TO, "5000")
        assert timestamp.isdigit()
        assert issued.issuer == "local"

    def test_auxiliary_blob_truncates_addresses(self):
        issued = LocalTokenIssuer().issue(FROM, TO, 1)
        blob = json.loads(base64.b64decode(issued.auxiliary_blob))
        assert blob["from"] == FROM[:8] + "..."
        assert blob["amount"] == 1

    def test_verify_own_token(self):
        issuer = LocalTokenIssuer()
        assert issuer.verify(issuer.issue(FROM, TO, 7).token)

    @pytest.mark.parametrize(
        "token",
        [
            "not base64!",
            base64.b64encode(b"only:three:fields").decode(),
            base64.b64encode(b"a:b:ten:123").decode(),
            base64.b64encode(b"\xff\xfe").decode(),
        ],
    )
    def test_verify_rejects_garbage(self, token):
        assert not LocalTokenIssuer().verify(token)

    def test_always_degraded(self):
        assert LocalTokenIssuer().degraded


class TestRemoteTokenIssuer:
    def test_issue(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"privacyToken": "tok-1", "encryptedData": "enc"})

        issuer = _remote(handler)
        issued = issuer.issue(FROM, TO, 42, memo="hi")

        assert issued.token == "tok-1"
        assert issued.auxiliary_blob == "enc"
        assert issued.issuer == "remote"
        assert seen["url"] == "https://issuer.example/api/v1/payments/create"
        assert seen["auth"] == "Bearer k-123"
        assert seen["body"] == {"from": FROM, "to": TO, "amount": 42, "memo": "hi"}
        assert not issuer.degraded

    def test_server_error_falls_back(self, audit):
        issuer = _remote(lambda request: httpx.Response(500, text="boom"), audit=audit)
        issued = issuer.issue(FROM, TO, 42)

        assert issued.issuer == "local"
        assert LocalTokenIssuer().verify(issued.token)
        assert issuer.degraded
        assert issuer.fallback_count == 1
        events = audit.read_events(event_type=EventType.PRIVACY_DEGRADED)
        assert len(events) == 1
        assert "500" in events[0].reason

    def test_transport_error_falls_back(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        issuer = _remote(handler)
        assert issuer.issue(FROM, TO, 1).issuer == "local"
        assert issuer.fallback_count == 1

    def test_malformed_response_falls_back(self):
        issuer = _remote(lambda request: httpx.Response(200, json={"unexpected": True}))
        assert issuer.issue(FROM, TO, 1).issuer == "local"
        assert issuer.degraded

    def test_recovery_clears_degraded(self):
        responses = [
            httpx.Response(503),
            httpx.Response(200, json={"privacyToken": "tok-2"}),
        ]
        issuer = _remote(lambda request: responses.pop(0))
        issuer.issue(FROM, TO, 1)
        assert issuer.degraded
        assert issuer.issue(FROM, TO, 1).token == "tok-2"
        assert not issuer.degraded
        assert issuer.fallback_count == 1

    def test_verify(self):
        def handler(request):
            assert request.url.path == "/api/v1/payments/verify"
            body = json.loads(request.content)
            return httpx.Response(200 if body["privacyToken"] == "good" else 400)

        issuer = _remote(handler)
        assert issuer.verify("good")
        assert not issuer.verify("bad")

    def test_verify_transport_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow")

        assert not _remote(handler).verify("tok")

    def test_details(self):
        def handler(request):
            if json.loads(request.content)["privacyToken"] == "tok":
                return httpx.Response(200, json={"amount": 5})
            return httpx.Response(404)

        issuer = _remote(handler)
        assert issuer.details("tok") == {"amount": 5}
        assert issuer.details("missing") is None


class TestBuildTokenIssuer:
    def test_local_without_endpoint(self):
        assert isinstance(build_token_issuer(Settings()), LocalTokenIssuer)

    def test_local_without_api_key(self):
        settings = Settings(privacy_endpoint="https://issuer.example")
        assert isinstance(build_token_issuer(settings), LocalTokenIssuer)

    def test_remote_when_configured(self):
        settings = Settings(privacy_endpoint="https://issuer.example", privacy_api_key="k")
        issuer = build_token_issuer(settings)
        try:
            assert isinstance(issuer, RemoteTokenIssuer)
            assert issuer.mode == "remote"
        finally:
            issuer.close()
