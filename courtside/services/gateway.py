"""Payment gateway adapter (Razorpay).

Outbound: order and refund creation. Inbound: webhook and checkout
signature verification. Amounts cross this boundary as Decimal rupees and
leave it as integer paise.
"""

from decimal import Decimal
from typing import Optional

import razorpay
import requests
from razorpay.errors import (
    BadRequestError, GatewayError as RazorpayGatewayError, ServerError,
    SignatureVerificationError,
)

from courtside.core.exceptions import GatewayError, GatewayVerificationError
from courtside.core.logging_config import get_logger
from courtside.utils.pricing import to_paise

logger = get_logger()

OUTBOUND_ERRORS = (BadRequestError, RazorpayGatewayError, ServerError, requests.RequestException)


class RazorpayGateway:
    def __init__(
        self,
        key_id: Optional[str],
        key_secret: Optional[str],
        webhook_secret: Optional[str],
        currency: str = "INR",
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.client = razorpay.Client(auth=(key_id or "", key_secret or ""))

    @classmethod
    def from_settings(cls, settings) -> "RazorpayGateway":
        return cls(
            settings.razorpay_key_id,
            settings.razorpay_key_secret,
            settings.razorpay_webhook_secret,
            currency=settings.currency,
        )

    # ------------------------------------------------------------------
    # OUTBOUND
    # ------------------------------------------------------------------
    def create_order(self, receipt: str, amount: Decimal, notes: Optional[dict] = None) -> dict:
        try:
            return self.client.order.create({
                "amount": to_paise(amount),
                "currency": self.currency,
                "receipt": receipt,
                "notes": notes or {},
            })
        except OUTBOUND_ERRORS as e:
            logger.bind(log_type="payment").error(f"Order creation failed | receipt={receipt} | {e}")
            raise GatewayError(f"order creation failed: {e}") from e

    def create_refund(self, gateway_payment_id: str, amount: Decimal, notes: Optional[dict] = None) -> dict:
        try:
            return self.client.payment.refund(gateway_payment_id, {
                "amount": to_paise(amount),
                "notes": notes or {},
            })
        except OUTBOUND_ERRORS as e:
            logger.bind(log_type="payment").error(
                f"Refund creation failed | payment={gateway_payment_id} | {e}"
            )
            raise GatewayError(f"refund creation failed: {e}") from e

    # ------------------------------------------------------------------
    # INBOUND
    # ------------------------------------------------------------------
    def verify_webhook(self, raw_body: bytes, signature: Optional[str]) -> None:
        """HMAC-SHA256 of the exact raw body against the signature header.

        Raises GatewayVerificationError on any problem; nothing may be read
        or written before this returns.
        """
        if not self.webhook_secret:
            raise GatewayVerificationError("webhook secret not configured")
        if not signature:
            raise GatewayVerificationError("missing signature")

        try:
            body = raw_body.decode("utf-8")
        except UnicodeDecodeError:
            raise GatewayVerificationError("body is not valid UTF-8")

        try:
            self.client.utility.verify_webhook_signature(body, signature, self.webhook_secret)
        except SignatureVerificationError:
            raise GatewayVerificationError("signature mismatch")

    def verify_checkout(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Client-side checkout handshake: HMAC of "order_id|payment_id"."""
        if not self.key_secret:
            return False
        try:
            self.client.utility.verify_payment_signature({
                "razorpay_order_id": order_id,
                "razorpay_payment_id": payment_id,
                "razorpay_signature": signature,
            })
            return True
        except SignatureVerificationError:
            return False
