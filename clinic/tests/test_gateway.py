import hashlib
import hmac
from decimal import Decimal

import pytest
import requests

from clinic.exceptions import ConfigurationError, GatewayUnavailable
from clinic.services.gateway import GatewayConfig, SepayClient, canonical_string

CONFIG = GatewayConfig(api_key="api-key", secret_key="s3cret", base_url="https://gateway.test", timeout=5)


class FakeResponse:
    def __init__(self, status_code=200, data=None, raise_json=False):
        self.status_code = status_code
        self._data = data or {}
        self._raise_json = raise_json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self._raise_json:
            raise ValueError("not json")
        return self._data


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.exc:
            raise self.exc
        return self.response


def test_canonical_string_sorts_keys_and_renders_literals():
    payload = {"status": "SUCCESS", "amount": 200000, "ok": True, "note": None, "rate": 5.0}
    assert canonical_string(payload) == "amount=200000&note=null&ok=true&rate=5&status=SUCCESS"


def test_sign_is_hmac_sha256_hex_of_canonical_string():
    payload = {"orderId": "DH12345678", "amount": 200000}
    expected = hmac.new(b"s3cret", b"amount=200000&orderId=DH12345678", hashlib.sha256).hexdigest()
    assert SepayClient(CONFIG, session=FakeSession()).sign(payload) == expected


def test_sign_without_secret_is_a_configuration_error():
    client = SepayClient(GatewayConfig(api_key="", secret_key="", base_url="x"), session=FakeSession())
    with pytest.raises(ConfigurationError):
        client.sign({"a": 1})


def test_verify_signature_ignores_signature_field():
    client = SepayClient(CONFIG, session=FakeSession())
    payload = {"transactionId": "GW1", "orderId": "DH12345678", "amount": 1000, "status": "SUCCESS", "message": "ok"}
    sig = client.sign(payload)
    assert client.verify_signature({**payload, "signature": sig}, sig)


def test_verify_signature_rejects_mismatch_and_missing():
    client = SepayClient(CONFIG, session=FakeSession())
    payload = {"orderId": "DH12345678", "amount": 1000, "status": "SUCCESS"}
    sig = client.sign(payload)
    assert not client.verify_signature({**payload, "amount": 1001}, sig)
    assert not client.verify_signature(payload, sig[:-1])
    assert not client.verify_signature(payload, "")
    assert not client.verify_signature(payload, None)


def test_verify_signature_rejects_when_secret_missing():
    client = SepayClient(GatewayConfig(api_key="", secret_key="", base_url="x"), session=FakeSession())
    assert not client.verify_signature({"a": 1}, "deadbeef")


def test_create_remote_payment_posts_signed_body():
    session = FakeSession(FakeResponse(data={"paymentUrl": "https://pay.test/abc", "transactionId": 991}))
    client = SepayClient(CONFIG, session=session)
    remote = client.create_remote_payment(
        amount=Decimal("200000.00"), transaction_code="DH12345678", description="Order DH12345678",
        return_url="https://app.test/ok", cancel_url="https://app.test/cancel",
    )
    assert remote.payment_url == "https://pay.test/abc"
    assert remote.gateway_transaction_id == "991"

    url, kwargs = session.calls[0]
    assert url == "https://gateway.test/api/payment/create"
    assert kwargs["headers"]["Authorization"] == "Bearer api-key"
    assert kwargs["timeout"] == 5
    body = kwargs["json"]
    assert body["amount"] == 200000
    assert body["orderId"] == "DH12345678"
    unsigned = {k: v for k, v in body.items() if k != "signature"}
    assert client.verify_signature(unsigned, body["signature"])


@pytest.mark.parametrize("session", [
    FakeSession(exc=requests.ConnectionError("boom")),
    FakeSession(FakeResponse(status_code=503)),
    FakeSession(FakeResponse(raise_json=True)),
    FakeSession(FakeResponse(data={"paymentUrl": "https://pay.test/abc"})),
])
def test_create_remote_payment_wraps_failures(session):
    client = SepayClient(CONFIG, session=session)
    with pytest.raises(GatewayUnavailable):
        client.create_remote_payment(
            amount=Decimal("1000"), transaction_code="DH12345678", description="x",
            return_url="https://app.test/ok", cancel_url="https://app.test/cancel",
        )
