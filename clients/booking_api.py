"""Thin HTTP client for the booking API, used by tooling and the payment poller."""
import logging
from functools import partial

import requests

from clients.payment_poller import SmartPaymentPoller

logger = logging.getLogger(__name__)


class BookingApiError(Exception):
    def __init__(self, status_code, body):
        message = body.get("error") if isinstance(body, dict) else None
        super().__init__(message or "HTTP %s" % status_code)
        self.status_code = status_code
        self.body = body


class BookingApiClient:
    def __init__(self, base_url, token=None, timeout=10, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if token:
            self.session.headers["Authorization"] = "Bearer %s" % token

    def _call(self, method, path, **kwargs):
        url = self.base_url + path
        resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        try:
            body = resp.json()
        except ValueError:
            body = {"error": resp.text[:200]}
        if resp.status_code >= 400:
            logger.debug("%s %s -> %s %s", method, path, resp.status_code, body)
            raise BookingApiError(resp.status_code, body)
        return body

    def create_booking(self, **data):
        return self._call("POST", "/bookings", json=data)

    def list_bookings(self, **params):
        return self._call("GET", "/bookings", params=params)

    def get_booking(self, booking_id):
        return self._call("GET", "/bookings/%s" % booking_id)

    def update_status(self, booking_id, status, payment_confirmed=False, agent_approval=False, reason=None):
        payload = {"status": status, "paymentConfirmed": payment_confirmed, "agentApproval": agent_approval}
        if reason:
            payload["reason"] = reason
        return self._call("PUT", "/bookings/%s" % booking_id, json=payload)

    def check_payment_smart(self, booking_id):
        return self._call("POST", "/bookings/%s/check-payment-smart" % booking_id)

    def create_invoice(self, booking_id, user_phone=None):
        payload = {"bookingId": booking_id}
        if user_phone:
            payload["userPhone"] = user_phone
        return self._call("POST", "/payment/create-invoice", json=payload)

    def payment_status(self, booking_id):
        return self._call("GET", "/payment/status/%s" % booking_id)

    def payment_poller(self, booking_id, **kwargs):
        return SmartPaymentPoller(partial(self.check_payment_smart, booking_id), **kwargs)
