"""
Paystack API client.
Wraps the transaction endpoints the billing engine needs and webhook
signature verification (HMAC-SHA512 of the raw body keyed by the secret key).
"""
from typing import Optional, Dict, Any
import hashlib
import hmac
import logging
import httpx
from app.core.config import settings
from app.core.exceptions import ExternalServiceError
from app.schemas.paystack import PaymentInitiation, ProviderTransaction

logger = logging.getLogger(__name__)


class PaystackClient:
    def __init__(
        self,
        secret_key: Optional[str] = None,
        public_key: Optional[str] = None,
        base_url: Optional[str] = None,
        currency: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.secret_key = secret_key if secret_key is not None else (settings.PAYSTACK_SECRET_KEY or "")
        self.public_key = public_key if public_key is not None else (settings.PAYSTACK_PUBLIC_KEY or "")
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self.currency = currency or settings.PAYSTACK_CURRENCY
        self._client = http_client

        if not self.secret_key:
            logger.warning("[PAYSTACK] PAYSTACK_SECRET_KEY not configured")

    def _request(self, method: str, path: str, fallback_message: str, payload: Optional[dict] = None) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                response = self._client.request(method, url, headers=headers, json=payload,
                                                timeout=settings.PAYSTACK_TIMEOUT_SECONDS)
            else:
                response = httpx.request(method, url, headers=headers, json=payload,
                                         timeout=settings.PAYSTACK_TIMEOUT_SECONDS)
        except httpx.RequestError as e:
            logger.error(f"[PAYSTACK] {method} {path} request error: {str(e)}")
            raise ExternalServiceError(fallback_message)

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.status_code >= 400 or not body.get("status"):
            message = body.get("message") or fallback_message
            logger.error(f"[PAYSTACK] {method} {path} failed ({response.status_code}): {message}")
            raise ExternalServiceError(message)

        return body.get("data") or {}

    def initialize_transaction(
        self,
        email: str,
        amount: int,
        reference: str,
        metadata: Optional[Dict[str, Any]] = None,
        callback_url: Optional[str] = None,
        plan_code: Optional[str] = None,
    ) -> PaymentInitiation:
        """Start a checkout. amount is in minor units (kobo)."""
        payload = {
            "email": email,
            "amount": amount,
            "reference": reference,
            "currency": self.currency,
            "metadata": metadata or {},
        }
        if callback_url:
            payload["callback_url"] = callback_url
        if plan_code:
            payload["plan"] = plan_code

        data = self._request("POST", "/transaction/initialize", "Failed to initialize payment", payload)
        return PaymentInitiation(
            authorization_url=data.get("authorization_url") or "",
            access_code=data.get("access_code"),
            reference=data.get("reference") or reference,
        )

    def verify_transaction(self, reference: str) -> ProviderTransaction:
        data = self._request("GET", f"/transaction/verify/{reference}", "Failed to verify payment")
        transaction = ProviderTransaction.from_paystack(data)
        if not transaction.reference:
            transaction.reference = reference
        return transaction

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        if not self.secret_key or not signature:
            return False
        if isinstance(raw_body, str):
            raw_body = raw_body.encode("utf-8")
        expected = hmac.new(self.secret_key.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature)

    def get_public_key(self) -> str:
        return self.public_key


def get_paystack_client() -> PaystackClient:
    """FastAPI dependency; overridden in tests."""
    return PaystackClient()
