import logging

from servicehub.gateways.base import (
    CollectionResult,
    GatewayConfigurationError,
    GatewayError,
    GatewayRejectedError,
    GatewayTransientError,
    StatusCheck,
)
from servicehub.gateways.events import MalformedWebhookError, parse_webhook
from servicehub.gateways.mtn import MtnConfig, MtnMomoClient
from servicehub.gateways.orange import OrangeConfig, OrangeMoneyClient
from servicehub.models.payment import PaymentRail

logger = logging.getLogger(__name__)

WEBHOOK_SLUGS = {
    PaymentRail.MTN_MONEY: "mtn",
    PaymentRail.ORANGE_MONEY: "orange",
}


class PaymentGateway:
    """Routes collection requests to the client of the selected rail."""

    def __init__(self, clients, public_base_url=""):
        self._clients = dict(clients)
        self.public_base_url = (public_base_url or "").rstrip("/")

    @classmethod
    def from_config(cls, config, session=None):
        clients = {
            PaymentRail.MTN_MONEY: MtnMomoClient(MtnConfig.from_mapping(config), session=session),
            PaymentRail.ORANGE_MONEY: OrangeMoneyClient(OrangeConfig.from_mapping(config), session=session),
        }
        return cls(clients, public_base_url=config.get("PUBLIC_BASE_URL", ""))

    def client_for(self, rail):
        client = self._clients.get(rail)
        if client is None:
            raise GatewayConfigurationError(f"Unsupported payment provider: {rail}")
        return client

    def callback_url(self, rail):
        return f"{self.public_base_url}/api/v1/payments/webhook/{WEBHOOK_SLUGS[rail]}"

    def request_collection(self, rail, amount, phone, reference, description=None):
        return self.client_for(rail).request_collection(
            amount=amount,
            phone=phone,
            reference=reference,
            callback_url=self.callback_url(rail),
            description=description,
        )

    def fetch_status(self, rail, vendor_transaction_id):
        return self.client_for(rail).fetch_status(vendor_transaction_id)

    def verify_signature(self, rail, body, signature):
        # TODO: check against each rail's published signing scheme once the vendors document one.
        logger.warning("Webhook signature verification not implemented for %s (signature present: %s)", rail, bool(signature))
        return True


__all__ = [
    "CollectionResult",
    "GatewayConfigurationError",
    "GatewayError",
    "GatewayRejectedError",
    "GatewayTransientError",
    "MalformedWebhookError",
    "MtnConfig",
    "MtnMomoClient",
    "OrangeConfig",
    "OrangeMoneyClient",
    "PaymentGateway",
    "StatusCheck",
    "WEBHOOK_SLUGS",
    "parse_webhook",
]
