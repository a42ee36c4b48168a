"""Typed views over vendor payloads.

Each rail posts its own webhook shape and keeps its own identifiers. The
classes here turn those raw dicts into one of two known variants, keyed by
``rail``, so reconciliation code never reaches into an untyped map.
"""

from dataclasses import asdict, dataclass, field, fields
from typing import Any, ClassVar, Dict, Optional

from servicehub.models.payment import PaymentRail, PaymentStatus

MTN_STATUS_MAP = {
    "SUCCESSFUL": PaymentStatus.SUCCESSFUL,
    "FAILED": PaymentStatus.FAILED,
    "PENDING": PaymentStatus.PROCESSING,
}

ORANGE_STATUS_MAP = {
    "SUCCESS": PaymentStatus.SUCCESSFUL,
    "SUCCESSFUL": PaymentStatus.SUCCESSFUL,
    # Spelling used by the Orange status endpoint.
    "SUCCESSFULL": PaymentStatus.SUCCESSFUL,
    "FAILED": PaymentStatus.FAILED,
    "FAILURE": PaymentStatus.FAILED,
    "PENDING": PaymentStatus.PROCESSING,
    "INITIATED": PaymentStatus.PROCESSING,
    "CANCELLED": PaymentStatus.CANCELLED,
}


def normalize_status(status_map, vendor_status):
    return status_map.get(str(vendor_status or "").strip().upper(), PaymentStatus.FAILED)


def _text(value):
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("message") or value.get("code")
    value = str(value).strip()
    return value or None


class MalformedWebhookError(ValueError):
    pass


@dataclass(frozen=True)
class MtnWebhook:
    rail: ClassVar[str] = PaymentRail.MTN_MONEY

    reference: Optional[str]
    vendor_transaction_id: Optional[str]
    vendor_status: str
    reason: Optional[str]
    financial_transaction_id: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload):
        if not isinstance(payload, dict):
            raise MalformedWebhookError("MTN webhook payload must be a JSON object")
        return cls(
            reference=_text(payload.get("externalId")),
            vendor_transaction_id=_text(payload.get("referenceId")),
            vendor_status=_text(payload.get("status")) or "",
            reason=_text(payload.get("reason")) or _text(payload.get("message")),
            financial_transaction_id=_text(payload.get("financialTransactionId")),
            raw=payload,
        )

    @property
    def status(self):
        return normalize_status(MTN_STATUS_MAP, self.vendor_status)


@dataclass(frozen=True)
class OrangeWebhook:
    rail: ClassVar[str] = PaymentRail.ORANGE_MONEY

    reference: Optional[str]
    vendor_transaction_id: Optional[str]
    vendor_status: str
    reason: Optional[str]
    txn_id: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload):
        if not isinstance(payload, dict):
            raise MalformedWebhookError("Orange webhook payload must be a JSON object")
        return cls(
            reference=_text(payload.get("order_id")) or _text(payload.get("orderId")),
            vendor_transaction_id=_text(payload.get("pay_token")) or _text(payload.get("payToken")),
            vendor_status=_text(payload.get("status")) or "",
            reason=_text(payload.get("reason")) or _text(payload.get("message")),
            txn_id=_text(payload.get("transaction_id")) or _text(payload.get("txnid")),
            raw=payload,
        )

    @property
    def status(self):
        return normalize_status(ORANGE_STATUS_MAP, self.vendor_status)


WEBHOOK_EVENTS = {
    PaymentRail.MTN_MONEY: MtnWebhook,
    PaymentRail.ORANGE_MONEY: OrangeWebhook,
}


def parse_webhook(rail, payload):
    try:
        event_cls = WEBHOOK_EVENTS[rail]
    except KeyError as exc:
        raise MalformedWebhookError(f"Unsupported payment rail: {rail}") from exc
    return event_cls.from_payload(payload)


@dataclass
class MtnMetadata:
    rail: ClassVar[str] = PaymentRail.MTN_MONEY

    reference_id: Optional[str] = None
    financial_transaction_id: Optional[str] = None
    callback_url: Optional[str] = None
    api_response: Optional[Dict[str, Any]] = None
    webhook_data: Optional[Dict[str, Any]] = None

    def record_event(self, event):
        self.webhook_data = event.raw
        if event.financial_transaction_id:
            self.financial_transaction_id = event.financial_transaction_id


@dataclass
class OrangeMetadata:
    rail: ClassVar[str] = PaymentRail.ORANGE_MONEY

    pay_token: Optional[str] = None
    txn_id: Optional[str] = None
    payment_url: Optional[str] = None
    callback_url: Optional[str] = None
    api_response: Optional[Dict[str, Any]] = None
    webhook_data: Optional[Dict[str, Any]] = None

    def record_event(self, event):
        self.webhook_data = event.raw
        if event.txn_id:
            self.txn_id = event.txn_id


METADATA_TYPES = {
    PaymentRail.MTN_MONEY: MtnMetadata,
    PaymentRail.ORANGE_MONEY: OrangeMetadata,
}


def load_metadata(rail, data):
    meta_cls = METADATA_TYPES[rail]
    known = {f.name for f in fields(meta_cls)}
    return meta_cls(**{key: value for key, value in (data or {}).items() if key in known})


def dump_metadata(metadata):
    data = asdict(metadata)
    data["rail"] = metadata.rail
    return data
