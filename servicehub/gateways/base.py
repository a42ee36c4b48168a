import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Failure talking to a mobile-money rail."""

    retryable = False

    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload


class GatewayConfigurationError(GatewayError):
    """Missing or rejected credentials. Retrying will not help."""


class GatewayTransientError(GatewayError):
    """Network failure, timeout or 5xx from the rail. The caller may retry."""

    retryable = True


class GatewayRejectedError(GatewayError):
    """The rail refused the request (4xx other than auth)."""


@dataclass(frozen=True)
class CollectionResult:
    vendor_transaction_id: str
    raw_response: Dict[str, Any] = field(default_factory=dict)
    payment_url: Optional[str] = None


@dataclass(frozen=True)
class StatusCheck:
    status: str
    vendor_status: str
    reason: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def format_amount(amount):
    """Rails take whole FCFA amounts as strings or integers."""
    value = Decimal(str(amount))
    if value == value.to_integral_value():
        return str(int(value))
    return str(value.quantize(Decimal("0.01")))


def normalize_msisdn(phone, with_country_code=True):
    digits = "".join(ch for ch in (phone or "") if ch.isdigit())
    if digits.startswith("237") and len(digits) == 12:
        digits = digits[3:]
    return f"237{digits}" if with_country_code else digits


class GatewayClient:
    rail = None
    display_name = "Payment rail"

    def __init__(self, config, session=None):
        self.config = config
        self.session = session or requests.Session()

    def request_collection(self, amount, phone, reference, callback_url, description=None):
        raise NotImplementedError

    def fetch_status(self, vendor_transaction_id):
        raise NotImplementedError

    def ensure_configured(self):
        missing = self.config.missing_settings()
        if missing:
            raise GatewayConfigurationError(
                f"{self.display_name} configuration is missing: {', '.join(missing)}"
            )

    def _request(self, method, path, **kwargs):
        url = f"{self.config.base_url.rstrip('/')}{path}"
        logger.debug("%s %s %s", self.rail, method, url)
        try:
            response = self.session.request(method, url, timeout=self.config.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.warning("%s request to %s failed: %s", self.rail, path, exc)
            raise GatewayTransientError(f"{self.display_name} is unreachable: {exc}") from exc

        if response.status_code >= 500:
            raise GatewayTransientError(
                f"{self.display_name} returned {response.status_code}",
                status_code=response.status_code,
                payload=_safe_json(response),
            )
        if response.status_code >= 400:
            body = _safe_json(response)
            detail = body.get("message") or body.get("error_description") or body.get("error") or response.reason
            raise GatewayRejectedError(
                f"{self.display_name} rejected the request: {detail}",
                status_code=response.status_code,
                payload=body,
            )
        return response

    def _token_request(self, method, path, **kwargs):
        try:
            response = self._request(method, path, **kwargs)
        except GatewayRejectedError as exc:
            if exc.status_code in (401, 403):
                raise GatewayConfigurationError(
                    f"{self.display_name} credentials were rejected",
                    status_code=exc.status_code,
                    payload=exc.payload,
                ) from exc
            raise
        token = _safe_json(response).get("access_token")
        if not token:
            raise GatewayTransientError(f"{self.display_name} returned no access token")
        return token


def _safe_json(response):
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {"data": data}
