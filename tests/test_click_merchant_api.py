import hashlib
from decimal import Decimal

import pytest
import requests

from services.click_merchant_api import ClickMerchantApi
from services.errors import GatewayApiError, GatewayConfigError


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError("HTTP %s" % self.status_code)

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def make_api(session, **overrides):
    fields = dict(service_id="12345", merchant_user_id="777", secret_key="click-secret",
                  api_url="https://api.click.test/v2/merchant/", timeout=15, session=session,
                  clock=lambda: 1751360400.7)
    fields.update(overrides)
    return ClickMerchantApi(**fields)


def test_auth_header_format():
    api = make_api(FakeSession())
    digest = hashlib.sha1(b"1751360400click-secret").hexdigest()
    assert api.auth_headers()["Auth"] == "777:%s:1751360400" % digest


def test_create_invoice_posts_payload_with_timeout():
    session = FakeSession(FakeResponse({"error_code": 0, "invoice_id": 555}))
    result = make_api(session).create_invoice(Decimal("150000.00"), "998901234567", "REQ-1")

    assert result["invoice_id"] == 555
    method, url, kwargs = session.calls[0]
    assert (method, url) == ("POST", "https://api.click.test/v2/merchant/invoice/create")
    assert kwargs["timeout"] == 15
    assert kwargs["json"] == {"service_id": 12345, "amount": 150000.0,
                              "phone_number": "998901234567", "merchant_trans_id": "REQ-1"}


def test_create_invoice_refusal_raises():
    session = FakeSession(FakeResponse({"error_code": -500, "error_note": "bad phone"}))
    with pytest.raises(GatewayApiError, match="bad phone"):
        make_api(session).create_invoice(Decimal("1.00"), "x", "REQ-1")


def test_transport_failure_raises_gateway_error():
    session = FakeSession(requests.ConnectionError("refused"))
    with pytest.raises(GatewayApiError):
        make_api(session).invoice_status("555")


def test_payment_status_by_mti():
    session = FakeSession(FakeResponse({"error_code": 0, "payment_status": 1, "payment_id": 42}))
    status = make_api(session).payment_status_by_mti("REQ-1")
    assert status["isPaid"] is True and status["paymentId"] == 42
    assert "/payment/status_by_mti/12345/REQ-1/" in session.calls[0][1]


def test_unconfigured_client_refuses_to_sign():
    api = make_api(FakeSession(), merchant_user_id=None)
    assert not api.configured
    with pytest.raises(GatewayConfigError):
        api.auth_headers()
