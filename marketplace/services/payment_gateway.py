# marketplace/services/payment_gateway.py
"""
Payment gateway port and adapters.

Only the gateway's public order / verify / refund API is used. The amount
sent is always the server-computed total in minor units. Notes attached to
a gateway order are size-limited, so they carry the internal draft id and
never the cart payload.
"""
import hashlib
import hmac
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from uuid import uuid4

import requests

from marketplace.utils.errors import GatewayUnavailableError, ValidationError
from marketplace.utils.logging import get_logger
from marketplace.utils.retry import gateway_retry
from marketplace.utils.settings import (
    PAYMENT_GATEWAY,
    RAZORPAY_API_URL,
    RAZORPAY_KEY_ID,
    RAZORPAY_KEY_SECRET,
    RAZORPAY_WEBHOOK_SECRET,
    GATEWAY_TIMEOUT_SECONDS,
    GATEWAY_NOTES_MAX_CHARS,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class GatewayOrder:
    id: str
    amount: int
    currency: str


@dataclass(frozen=True)
class RefundResult:
    success: bool
    gateway_refund_id: str | None = None
    failure_reason: str | None = None


def hmac_sha256(secret: str, message: str) -> str:
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def check_notes_budget(notes: dict) -> dict:
    notes = {k: str(v) for k, v in (notes or {}).items()}
    if len(json.dumps(notes, separators=(",", ":"))) > GATEWAY_NOTES_MAX_CHARS:
        raise ValidationError("Gateway order notes are too large.", notes_keys=sorted(notes))
    return notes


def parse_webhook(body: dict) -> dict:
    """
    Normalizes a gateway webhook to gateway_order_id, payment_id, status.
    Accepts the Razorpay envelope (payload.payment.entity) and the flat form.
    """
    entity = body.get("payload", {}).get("payment", {}).get("entity") if "payload" in body else body
    return {
        "gateway_order_id": str(entity.get("order_id") or entity["gateway_order_id"]),
        "payment_id": str(entity.get("id") or entity["payment_id"]),
        "status": str(entity["status"]).lower(),
    }


class PaymentGateway(ABC):
    """Contract every gateway adapter implements."""

    @abstractmethod
    def open_order(self, amount_minor: int, currency: str, receipt: str, notes: dict) -> GatewayOrder:
        ...

    @abstractmethod
    def verify_signature(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        ...

    @abstractmethod
    def verify_webhook(self, payload: bytes, signature: str) -> bool:
        ...

    @abstractmethod
    def refund(self, payment_id: str, amount_minor: int | None = None, notes: dict | None = None) -> RefundResult:
        ...


class RazorpayGateway(PaymentGateway):
    def __init__(
        self,
        key_id: str = RAZORPAY_KEY_ID,
        key_secret: str = RAZORPAY_KEY_SECRET,
        webhook_secret: str = RAZORPAY_WEBHOOK_SECRET,
        base_url: str = RAZORPAY_API_URL,
        timeout: float = GATEWAY_TIMEOUT_SECONDS,
    ):
        if not key_id or not key_secret:
            logger.error("RAZORPAY_KEY_ID or RAZORPAY_KEY_SECRET is not set, gateway calls will fail")
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @gateway_retry()
    def _post(self, path: str, body: dict) -> dict:
        url = f"{self.base_url}{path}"
        logger.info(f"Gateway POST {url}")
        resp = requests.post(url, json=body, auth=(self.key_id, self.key_secret), timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def open_order(self, amount_minor: int, currency: str, receipt: str, notes: dict) -> GatewayOrder:
        body = {
            "amount": int(amount_minor),
            "currency": currency,
            "receipt": receipt,
            "notes": check_notes_budget(notes),
        }
        try:
            data = self._post("/orders", body)
        except requests.RequestException as e:
            logger.error(f"Gateway order creation failed for receipt {receipt}: {e}")
            raise GatewayUnavailableError(receipt=receipt) from e
        return GatewayOrder(id=data["id"], amount=int(data["amount"]), currency=data["currency"])

    def verify_signature(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        if not self.key_secret:
            logger.error(f"RAZORPAY_KEY_SECRET is missing for verification of {gateway_order_id}")
            return False
        expected = hmac_sha256(self.key_secret, f"{gateway_order_id}|{payment_id}")
        return hmac.compare_digest(expected, signature or "")

    def verify_webhook(self, payload: bytes, signature: str) -> bool:
        if not self.webhook_secret:
            logger.error("RAZORPAY_WEBHOOK_SECRET is missing, rejecting webhook")
            return False
        expected = hmac.new(self.webhook_secret.encode(), payload, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature or "")

    def refund(self, payment_id: str, amount_minor: int | None = None, notes: dict | None = None) -> RefundResult:
        body = {"notes": check_notes_budget(notes or {})}
        if amount_minor:
            body["amount"] = int(amount_minor)
        try:
            data = self._post(f"/payments/{payment_id}/refund", body)
        except requests.RequestException as e:
            logger.error(f"Refund failed for payment {payment_id}: {e}")
            return RefundResult(success=False, failure_reason=str(e))
        return RefundResult(success=True, gateway_refund_id=data.get("id"))


class FakeGateway(PaymentGateway):
    """
    In-process gateway for development and tests. Signatures use the same
    HMAC scheme as Razorpay, with a local secret.
    """

    def __init__(self, secret: str = "fake_secret", webhook_secret: str = "fake_webhook_secret"):
        self.secret = secret
        self.webhook_secret = webhook_secret
        self.should_succeed = True
        self.refunds_succeed = True
        self.failure_reason = "Gateway unreachable"
        self.calls: list[dict] = []
        self.orders: dict[str, GatewayOrder] = {}

    def configure(self, should_succeed: bool = True, refunds_succeed: bool = True, failure_reason: str = "Gateway unreachable") -> None:
        self.should_succeed = should_succeed
        self.refunds_succeed = refunds_succeed
        self.failure_reason = failure_reason

    def open_order(self, amount_minor: int, currency: str, receipt: str, notes: dict) -> GatewayOrder:
        notes = check_notes_budget(notes)
        self.calls.append({"method": "open_order", "amount": amount_minor, "currency": currency, "receipt": receipt, "notes": notes})
        if not self.should_succeed:
            raise GatewayUnavailableError(receipt=receipt)

        order = GatewayOrder(id=f"order_{uuid4().hex[:14]}", amount=int(amount_minor), currency=currency)
        self.orders[order.id] = order
        return order

    def sign(self, gateway_order_id: str, payment_id: str) -> str:
        return hmac_sha256(self.secret, f"{gateway_order_id}|{payment_id}")

    def sign_webhook(self, payload: bytes) -> str:
        return hmac.new(self.webhook_secret.encode(), payload, hashlib.sha256).hexdigest()

    def verify_signature(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        self.calls.append({"method": "verify_signature", "gateway_order_id": gateway_order_id, "payment_id": payment_id})
        return hmac.compare_digest(self.sign(gateway_order_id, payment_id), signature or "")

    def verify_webhook(self, payload: bytes, signature: str) -> bool:
        return hmac.compare_digest(self.sign_webhook(payload), signature or "")

    def refund(self, payment_id: str, amount_minor: int | None = None, notes: dict | None = None) -> RefundResult:
        self.calls.append({"method": "refund", "payment_id": payment_id, "amount": amount_minor})
        if not self.refunds_succeed:
            return RefundResult(success=False, failure_reason=self.failure_reason)
        return RefundResult(success=True, gateway_refund_id=f"rfnd_{uuid4().hex[:12]}")

    def refund_calls(self) -> list[dict]:
        return [c for c in self.calls if c["method"] == "refund"]


_default_gateway: PaymentGateway | None = None


def build_gateway() -> PaymentGateway:
    global _default_gateway
    if _default_gateway is None:
        _default_gateway = FakeGateway() if PAYMENT_GATEWAY == "fake" else RazorpayGateway()
    return _default_gateway
