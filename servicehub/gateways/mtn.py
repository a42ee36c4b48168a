import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from requests.auth import HTTPBasicAuth

from servicehub.gateways.base import (
    CollectionResult,
    GatewayClient,
    StatusCheck,
    _safe_json,
    format_amount,
    normalize_msisdn,
)
from servicehub.gateways.events import MTN_STATUS_MAP, _text, normalize_status
from servicehub.models.payment import PaymentRail

logger = logging.getLogger(__name__)

# Bookings are priced in XAF; other collection currencies only exist in the sandbox.
BOOKING_CURRENCY = "XAF"


@dataclass(frozen=True)
class MtnConfig:
    base_url: str
    subscription_key: Optional[str]
    api_user: Optional[str]
    api_key: Optional[str]
    target_environment: str = "sandbox"
    currency: str = "EUR"
    timeout: int = 30

    @classmethod
    def from_mapping(cls, config):
        return cls(
            base_url=config.get("MTN_BASE_URL") or "https://sandbox.momodeveloper.mtn.com",
            subscription_key=config.get("MTN_SUBSCRIPTION_KEY"),
            api_user=config.get("MTN_API_USER"),
            api_key=config.get("MTN_API_KEY"),
            target_environment=config.get("MTN_TARGET_ENVIRONMENT") or "sandbox",
            currency=config.get("MTN_CURRENCY") or "EUR",
            timeout=int(config.get("GATEWAY_TIMEOUT_SECONDS") or 30),
        )

    def missing_settings(self):
        required = {
            "MTN_SUBSCRIPTION_KEY": self.subscription_key,
            "MTN_API_USER": self.api_user,
            "MTN_API_KEY": self.api_key,
        }
        return [name for name, value in required.items() if not value]


class MtnMomoClient(GatewayClient):
    """MTN Mobile Money collection API (request-to-pay)."""

    rail = PaymentRail.MTN_MONEY
    display_name = "MTN Mobile Money"

    def _subscription_headers(self):
        return {"Ocp-Apim-Subscription-Key": self.config.subscription_key}

    def _access_token(self):
        return self._token_request(
            "POST",
            "/collection/token/",
            auth=HTTPBasicAuth(self.config.api_user, self.config.api_key),
            headers=self._subscription_headers(),
        )

    def request_collection(self, amount, phone, reference, callback_url, description=None):
        self.ensure_configured()
        token = self._access_token()
        # MTN identifies the request by a UUID we choose; our reference travels as externalId.
        reference_id = str(uuid.uuid4())
        body = {
            "amount": format_amount(amount),
            "currency": self.config.currency,
            "externalId": reference,
            "payer": {"partyIdType": "MSISDN", "partyId": normalize_msisdn(phone)},
            "payerMessage": description or f"Payment {reference}",
            "payeeNote": description or "Service booking payment",
        }
        if self.config.currency != BOOKING_CURRENCY:
            logger.warning(
                "MTN collection %s sent as %s %s without conversion from %s",
                reference,
                body["amount"],
                self.config.currency,
                BOOKING_CURRENCY,
            )
        headers = {
            "Authorization": f"Bearer {token}",
            "X-Reference-Id": reference_id,
            "X-Target-Environment": self.config.target_environment,
            "Content-Type": "application/json",
            **self._subscription_headers(),
        }
        if callback_url:
            headers["X-Callback-Url"] = callback_url

        response = self._request("POST", "/collection/v1_0/requesttopay", json=body, headers=headers)
        logger.info("MTN request-to-pay %s accepted for %s", reference_id, reference)
        return CollectionResult(
            vendor_transaction_id=reference_id,
            raw_response={"status_code": response.status_code, "body": _safe_json(response)},
        )

    def fetch_status(self, vendor_transaction_id):
        self.ensure_configured()
        token = self._access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "X-Target-Environment": self.config.target_environment,
            **self._subscription_headers(),
        }
        response = self._request(
            "GET", f"/collection/v1_0/requesttopay/{vendor_transaction_id}", headers=headers
        )
        data = _safe_json(response)
        vendor_status = _text(data.get("status")) or ""
        return StatusCheck(
            status=normalize_status(MTN_STATUS_MAP, vendor_status),
            vendor_status=vendor_status,
            reason=_text(data.get("reason")),
            raw=data,
        )
