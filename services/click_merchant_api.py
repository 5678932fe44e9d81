"""Click Merchant API client (invoices and payment status lookups)."""
import hashlib
import logging
import time
from datetime import date

import requests

from services.errors import GatewayApiError, GatewayConfigError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.click.uz/v2/merchant"


class ClickMerchantApi:
    def __init__(self, service_id, merchant_user_id, secret_key, api_url=DEFAULT_API_URL,
                 timeout=15, session=None, clock=time.time):
        self.service_id = service_id
        self.merchant_user_id = merchant_user_id
        self.secret_key = secret_key
        self.api_url = (api_url or DEFAULT_API_URL).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.clock = clock

    @classmethod
    def from_config(cls, config, session=None):
        return cls(
            service_id=config.get("CLICK_SERVICE_ID"),
            merchant_user_id=config.get("CLICK_MERCHANT_USER_ID"),
            secret_key=config.get("CLICK_SECRET_KEY"),
            api_url=config.get("CLICK_MERCHANT_API_URL"),
            timeout=config.get("CLICK_API_TIMEOUT_SECONDS", 15),
            session=session,
        )

    @property
    def configured(self):
        return bool(self.service_id and self.merchant_user_id and self.secret_key)

    def auth_headers(self):
        """``Auth: merchant_user_id:sha1(timestamp + secret):timestamp``"""
        if not self.configured:
            raise GatewayConfigError("Click merchant API credentials are not configured")
        timestamp = str(int(self.clock()))
        digest = hashlib.sha1((timestamp + self.secret_key).encode("utf-8")).hexdigest()
        return {
            "Auth": "%s:%s:%s" % (self.merchant_user_id, digest, timestamp),
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _request(self, method, path, **kwargs):
        url = "%s/%s" % (self.api_url, path.lstrip("/"))
        try:
            response = self.session.request(method, url, headers=self.auth_headers(),
                                            timeout=self.timeout, **kwargs)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error("Click merchant API %s %s failed: %s", method, path, e)
            raise GatewayApiError("Click merchant API request failed") from e
        except ValueError as e:
            logger.error("Click merchant API %s %s returned invalid JSON", method, path)
            raise GatewayApiError("Click merchant API returned an invalid response") from e
        return data

    def create_invoice(self, amount, phone_number, merchant_trans_id):
        payload = {
            "service_id": int(self.service_id),
            "amount": float(amount),
            "phone_number": phone_number,
            "merchant_trans_id": merchant_trans_id,
        }
        data = self._request("POST", "/invoice/create", json=payload)
        if data.get("error_code") != 0:
            logger.warning("Click invoice for %s refused: %s %s", merchant_trans_id,
                           data.get("error_code"), data.get("error_note"))
            raise GatewayApiError(data.get("error_note") or "Invoice creation failed")
        logger.info("Click invoice %s created for %s", data.get("invoice_id"), merchant_trans_id)
        return data

    def invoice_status(self, invoice_id):
        return self._request("GET", "/invoice/status/%s/%s" % (self.service_id, invoice_id))

    def payment_status_by_mti(self, merchant_trans_id, payment_date=None):
        payment_date = payment_date or date.today()
        data = self._request(
            "GET",
            "/payment/status_by_mti/%s/%s/%s" % (self.service_id, merchant_trans_id, payment_date.isoformat()),
        )
        return {
            "isPaid": data.get("error_code") == 0 and data.get("payment_status") == 1,
            "paymentId": data.get("payment_id"),
            "errorCode": data.get("error_code"),
            "errorNote": data.get("error_note"),
            "raw": data,
        }
