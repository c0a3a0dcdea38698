# Razorpay Payment Service for India
import hmac
import hashlib
import requests
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Dict, Any
import logging

from config.app_config import (
    RAZORPAY_BASE_URL, RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET,
    RAZORPAY_WEBHOOK_SECRET, GATEWAY_TIMEOUT_SECONDS, DEFAULT_CURRENCY
)
from services.errors import IntegrationFailure

logger = logging.getLogger(__name__)


class RazorpayConfig:
    """Razorpay configuration"""
    BASE_URL = RAZORPAY_BASE_URL
    KEY_ID = RAZORPAY_KEY_ID
    KEY_SECRET = RAZORPAY_KEY_SECRET
    WEBHOOK_SECRET = RAZORPAY_WEBHOOK_SECRET
    CURRENCY = DEFAULT_CURRENCY
    TIMEOUT = GATEWAY_TIMEOUT_SECONDS


def to_minor_units(amount: Decimal) -> int:
    """Rupees to paise"""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    """Paise to rupees"""
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


class RazorpayService:
    """Service for creating and verifying Razorpay orders"""

    def __init__(self, key_id: Optional[str] = None, key_secret: Optional[str] = None,
                 base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = base_url or RazorpayConfig.BASE_URL
        self.key_id = key_id if key_id is not None else RazorpayConfig.KEY_ID
        self.key_secret = key_secret if key_secret is not None else RazorpayConfig.KEY_SECRET
        self.timeout = timeout or RazorpayConfig.TIMEOUT
        self.headers = {"Content-Type": "application/json"}

    def _make_request(self, method: str, endpoint: str, data: Optional[Dict] = None) -> Dict[str, Any]:
        """Make a request to Razorpay API"""
        url = f"{self.base_url}{endpoint}"
        auth = (self.key_id, self.key_secret)
        try:
            if method == "GET":
                response = requests.get(url, headers=self.headers, auth=auth, timeout=self.timeout)
            elif method == "POST":
                response = requests.post(url, headers=self.headers, auth=auth, json=data, timeout=self.timeout)
            else:
                raise ValueError(f"Unsupported method: {method}")

            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Razorpay API error: {e}")
            raise IntegrationFailure(f"Payment gateway error: {str(e)}")

    def create_order(
        self,
        amount: Decimal,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        """
        Create a Razorpay order

        Args:
            amount: Amount in rupees (converted to paise for the API)
            currency: ISO currency code
            receipt: Our payment id, echoed back by the gateway
            notes: Free-form key/value pairs attached to the order

        Returns:
            Order response; "id" is the gateway order id
        """
        data = {
            "amount": to_minor_units(amount),
            "currency": currency or RazorpayConfig.CURRENCY,
            "receipt": receipt,
            "notes": notes or {},
        }
        order = self._make_request("POST", "/orders", data)
        if not order.get("id"):
            raise IntegrationFailure("Payment gateway returned an order without an id")
        return order

    def fetch_payment(self, gateway_payment_id: str) -> Dict[str, Any]:
        return self._make_request("GET", f"/payments/{gateway_payment_id}")

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """
        Verify the signature returned to the client after checkout:
        HMAC-SHA256 of "order_id|payment_id" keyed with the key secret.
        """
        if not (order_id and payment_id and signature and self.key_secret):
            return False
        expected = hmac.new(
            self.key_secret.encode("utf-8"),
            f"{order_id}|{payment_id}".encode("utf-8"),
            hashlib.sha256
        ).hexdigest()
        return hmac.compare_digest(expected, signature)


# Webhook handler for Razorpay events
class RazorpayWebhookHandler:
    """Handle Razorpay webhook events"""

    SUPPORTED_EVENTS = [
        "payment.captured",
        "payment.failed",
    ]

    @staticmethod
    def verify_webhook(payload: bytes, signature: str, secret: str) -> bool:
        """
        Verify webhook signature

        Args:
            payload: Raw request body
            signature: Signature header value
            secret: Webhook secret configured on the Razorpay dashboard

        Returns:
            True if signature is valid
        """
        if not signature or not secret:
            return False
        computed_signature = hmac.new(
            secret.encode("utf-8"),
            payload,
            hashlib.sha256
        ).hexdigest()
        return hmac.compare_digest(computed_signature, signature)

    @staticmethod
    def parse_payment_event(event: Dict[str, Any]) -> Dict[str, Any]:
        """Flatten a payment.* event into the fields reconciliation needs"""
        entity = (event.get("payload") or {}).get("payment", {}).get("entity", {}) or {}
        amount = entity.get("amount")
        return {
            "event": event.get("event"),
            "gateway_payment_id": entity.get("id"),
            "gateway_order_id": entity.get("order_id"),
            "amount": from_minor_units(amount) if amount is not None else None,
            "method": entity.get("method"),
            "error_code": entity.get("error_code"),
            "error_description": entity.get("error_description"),
            "raw": entity,
        }
