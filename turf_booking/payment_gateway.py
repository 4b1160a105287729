"""
Payment gateway adapter.

The orchestrator only depends on the small ``PaymentGateway`` protocol. The
Razorpay implementation is built once at startup from settings and injected,
tests substitute a fake.
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

import razorpay

from .config import Settings
from .errors import PaymentGatewayError

logger = logging.getLogger("turf_booking")


@dataclass
class GatewayOrder:
    order_id: str
    amount: Decimal
    currency: str
    key_id: Optional[str] = None


def to_minor_units(amount: Decimal) -> int:
    # Rupees to paise
    return int((Decimal(amount) * 100).to_integral_value())


def compute_signature(secret: str, order_id: str, payment_id: str) -> str:
    """HMAC-SHA256 over ``"<order_id>|<payment_id>"``, hex encoded."""
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class PaymentGateway(Protocol):
    def create_order(self, amount: Decimal, currency: str, receipt_ref: str) -> GatewayOrder:
        ...

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        ...

    def refund(self, external_payment_id: str, amount: Decimal) -> Optional[str]:
        """Returns the gateway's refund id."""
        ...


class RazorpayGateway:
    def __init__(self, key_id: str, key_secret: str, client: Optional[razorpay.Client] = None):
        self.key_id = key_id
        self._key_secret = key_secret
        self.client = client or razorpay.Client(auth=(key_id, key_secret))

    def create_order(self, amount: Decimal, currency: str, receipt_ref: str) -> GatewayOrder:
        try:
            order = self.client.order.create(
                {
                    "amount": to_minor_units(amount),
                    "currency": currency,
                    "receipt": receipt_ref,
                    "payment_capture": 1,
                }
            )
        except Exception as e:
            logger.error(f"Razorpay order creation failed for receipt {receipt_ref}: {e}")
            raise PaymentGatewayError(f"Payment order failed: {e}") from e
        return GatewayOrder(order_id=order["id"], amount=Decimal(amount), currency=currency, key_id=self.key_id)

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        expected = compute_signature(self._key_secret, order_id, payment_id)
        return hmac.compare_digest(expected, signature)

    def refund(self, external_payment_id: str, amount: Decimal) -> Optional[str]:
        try:
            refund = self.client.payment.refund(external_payment_id, {"amount": to_minor_units(amount)})
        except Exception as e:
            raise PaymentGatewayError(f"Refund failed: {e}") from e
        return refund.get("id")


def build_payment_gateway(settings: Settings) -> Optional[PaymentGateway]:
    """Returns None when Razorpay credentials are not configured."""
    if not (settings.RAZORPAY_KEY_ID and settings.RAZORPAY_KEY_SECRET):
        logger.warning("Razorpay credentials missing. Payments are disabled.")
        return None
    return RazorpayGateway(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET)
