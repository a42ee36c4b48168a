import logging
from dataclasses import dataclass
from typing import Optional

from requests.auth import HTTPBasicAuth

from servicehub.gateways.base import (
    CollectionResult,
    GatewayClient,
    GatewayTransientError,
    StatusCheck,
    _safe_json,
    format_amount,
    normalize_msisdn,
)
from servicehub.gateways.events import ORANGE_STATUS_MAP, _text, normalize_status
from servicehub.models.payment import PaymentRail

logger = logging.getLogger(__name__)

API_PREFIX = "/omcoreapis/1.0.2/mp"


@dataclass(frozen=True)
class OrangeConfig:
    base_url: str
    client_id: Optional[str]
    client_secret: Optional[str]
    merchant_key: Optional[str]
    channel_msisdn: Optional[str]
    pin: Optional[str]
    timeout: int = 30

    @classmethod
    def from_mapping(cls, config):
        return cls(
            base_url=config.get("ORANGE_BASE_URL") or "https://api-s1.orange.cm",
            client_id=config.get("ORANGE_CLIENT_ID"),
            client_secret=config.get("ORANGE_CLIENT_SECRET"),
            merchant_key=config.get("ORANGE_MERCHANT_KEY"),
            channel_msisdn=config.get("ORANGE_CHANNEL_MSISDN"),
            pin=config.get("ORANGE_PIN"),
            timeout=int(config.get("GATEWAY_TIMEOUT_SECONDS") or 30),
        )

    def missing_settings(self):
        required = {
            "ORANGE_CLIENT_ID": self.client_id,
            "ORANGE_CLIENT_SECRET": self.client_secret,
            "ORANGE_MERCHANT_KEY": self.merchant_key,
            "ORANGE_CHANNEL_MSISDN": self.channel_msisdn,
            "ORANGE_PIN": self.pin,
        }
        return [name for name, value in required.items() if not value]


class OrangeMoneyClient(GatewayClient):
    """Orange Money merchant payment API: init a pay token, then push the payment."""

    rail = PaymentRail.ORANGE_MONEY
    display_name = "Orange Money"

    def _access_token(self):
        return self._token_request(
            "POST",
            "/oauth/v3/token",
            auth=HTTPBasicAuth(self.config.client_id, self.config.client_secret),
            data={"grant_type": "client_credentials"},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

    def _headers(self, token):
        return {
            "Authorization": f"Bearer {token}",
            "X-AUTH-TOKEN": self.config.merchant_key,
            "Content-Type": "application/json",
        }

    def request_collection(self, amount, phone, reference, callback_url, description=None):
        self.ensure_configured()
        token = self._access_token()
        headers = self._headers(token)

        init = _safe_json(self._request("POST", f"{API_PREFIX}/init", headers=headers))
        pay_token = (init.get("data") or {}).get("payToken")
        if not pay_token:
            raise GatewayTransientError("Orange Money returned no pay token", payload=init)

        body = {
            "notifUrl": callback_url,
            "channelUserMsisdn": self.config.channel_msisdn,
            "amount": format_amount(amount),
            "subscriberMsisdn": normalize_msisdn(phone, with_country_code=False),
            "pin": self.config.pin,
            "orderId": reference,
            "description": description or f"Payment {reference}",
            "payToken": pay_token,
        }
        response = self._request("POST", f"{API_PREFIX}/pay", json=body, headers=headers)
        data = _safe_json(response)
        logger.info("Orange Money payment %s pushed for %s", pay_token, reference)
        return CollectionResult(
            vendor_transaction_id=pay_token,
            raw_response={"status_code": response.status_code, "body": data},
            payment_url=(data.get("data") or {}).get("payment_url"),
        )

    def fetch_status(self, vendor_transaction_id):
        self.ensure_configured()
        token = self._access_token()
        response = self._request(
            "GET", f"{API_PREFIX}/paymentstatus/{vendor_transaction_id}", headers=self._headers(token)
        )
        data = _safe_json(response)
        details = data.get("data") or {}
        vendor_status = _text(details.get("status")) or ""
        return StatusCheck(
            status=normalize_status(ORANGE_STATUS_MAP, vendor_status),
            vendor_status=vendor_status,
            reason=_text(details.get("inittxnmessage")) or _text(data.get("message")),
            raw=data,
        )
