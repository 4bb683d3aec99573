"""
Stripe Payment Gateway
Creates and manages manual-capture PaymentIntents (card holds) over the REST API
"""

import asyncio
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

import httpx

from ...config import (
    PAYMENT_BACKOFF_SECONDS,
    PAYMENT_MAX_ATTEMPTS,
    PAYMENT_TIMEOUT_SECONDS,
    STRIPE_API_URL,
    STRIPE_SECRET_KEY,
)
from ...errors import ConflictError, PaymentDeclined, TransientProviderError, ValidationError

logger = logging.getLogger(__name__)

# PaymentIntent statuses that mean the customer still has to act
DECLINED_INTENT_STATUSES = ("requires_payment_method", "requires_action", "requires_confirmation")

# Error code returned when the card network does not support raising a hold
INCREMENT_NOT_ALLOWED = "payment_intent_increment_authorization_not_allowed"


def to_minor_units(amount: Decimal) -> int:
    """Dollars to cents"""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


class StripeGateway:
    """Thin async client for the PaymentIntents endpoints the booking flow needs"""

    def __init__(
        self,
        secret_key: Optional[str] = STRIPE_SECRET_KEY,
        api_url: str = STRIPE_API_URL,
        max_attempts: int = PAYMENT_MAX_ATTEMPTS,
        backoff_seconds: float = PAYMENT_BACKOFF_SECONDS,
        timeout: float = PAYMENT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key
        self.api_url = api_url.rstrip("/")
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.timeout = timeout
        self.transport = transport

        if not self.secret_key:
            logger.warning("⚠️ STRIPE_SECRET_KEY not set - payment calls will fail")

    async def _request(
        self,
        method: str,
        path: str,
        data: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Call the API with bounded exponential backoff.

        Timeouts, connection errors, 429 and 5xx are retried up to max_attempts
        and then surfaced as TransientProviderError. Every other error is
        mapped to the taxonomy immediately and never retried.
        """
        if not self.secret_key:
            raise TransientProviderError("Payment processor is not configured", configured=False)

        headers = {"Authorization": f"Bearer {self.secret_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                    response = await client.request(
                        method, f"{self.api_url}{path}", data=data, headers=headers
                    )
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(f"⚠️ Stripe {method} {path} attempt {attempt} failed: {last_error}")
            else:
                if response.status_code < 400:
                    return response.json()
                if response.status_code == 429 or response.status_code >= 500:
                    last_error = f"HTTP {response.status_code}"
                    logger.warning(
                        f"⚠️ Stripe {method} {path} attempt {attempt} returned {response.status_code}"
                    )
                else:
                    self._raise_for_error(response)

            if attempt < self.max_attempts:
                await asyncio.sleep(self.backoff_seconds * (2 ** (attempt - 1)))

        logger.error(f"❌ Stripe {method} {path} failed after {self.max_attempts} attempts: {last_error}")
        raise TransientProviderError(
            "Payment processor is unavailable, please try again",
            attempts=self.max_attempts,
            last_error=last_error,
        )

    @staticmethod
    def _raise_for_error(response: httpx.Response):
        try:
            error = response.json().get("error", {})
        except ValueError:
            error = {}

        message = error.get("message") or f"Payment processor error (HTTP {response.status_code})"
        error_type = error.get("type")
        code = error.get("code")

        if response.status_code == 402 or error_type == "card_error":
            raise PaymentDeclined(message, decline_code=error.get("decline_code") or code)
        if error_type == "idempotency_error":
            raise ConflictError(message, code=code)
        raise ValidationError(message, code=code, status_code=response.status_code)

    async def create_authorization(
        self,
        amount: Decimal,
        currency: str,
        payment_method_id: str,
        idempotency_key: str,
        customer_id: Optional[str] = None,
        receipt_email: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Create and confirm a manual-capture PaymentIntent (a hold, not a charge)"""
        data = {
            "amount": to_minor_units(amount),
            "currency": currency.lower(),
            "payment_method": payment_method_id,
            "capture_method": "manual",
            "confirm": "true",
            "automatic_payment_methods[enabled]": "true",
            "automatic_payment_methods[allow_redirects]": "never",
            "payment_method_options[card][request_incremental_authorization_support]": "true",
        }
        if customer_id:
            data["customer"] = customer_id
        if receipt_email:
            data["receipt_email"] = receipt_email
        for key, value in (metadata or {}).items():
            data[f"metadata[{key}]"] = value

        intent = await self._request("POST", "/payment_intents", data=data, idempotency_key=idempotency_key)

        if intent.get("status") in DECLINED_INTENT_STATUSES:
            last_error = intent.get("last_payment_error") or {}
            message = last_error.get("message") or "Additional authentication is required for this card"
            raise PaymentDeclined(
                message,
                decline_code=last_error.get("decline_code") or intent.get("status"),
                authorization_id=intent.get("id"),
            )

        logger.info(f"💳 PaymentIntent {intent.get('id')} created with status {intent.get('status')}")
        return intent

    async def retrieve(self, authorization_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/payment_intents/{authorization_id}")

    async def update_amount(
        self, authorization_id: str, amount: Decimal, idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Raise the held amount on an uncaptured intent.

        Cards that do not support incremental authorization fail with a
        ValidationError whose code is INCREMENT_NOT_ALLOWED.
        """
        intent = await self._request(
            "POST",
            f"/payment_intents/{authorization_id}/increment_authorization",
            data={"amount": to_minor_units(amount)},
            idempotency_key=idempotency_key,
        )
        logger.info(f"💳 PaymentIntent {authorization_id} hold raised to {amount}")
        return intent

    async def cancel(self, authorization_id: str, reason: str = "abandoned") -> Dict[str, Any]:
        """Void the hold"""
        intent = await self._request(
            "POST",
            f"/payment_intents/{authorization_id}/cancel",
            data={"cancellation_reason": reason},
            idempotency_key=f"cancel-{authorization_id}",
        )
        logger.info(f"🔓 PaymentIntent {authorization_id} canceled ({reason})")
        return intent

    async def capture(self, authorization_id: str, amount: Optional[Decimal] = None) -> Dict[str, Any]:
        data = {}
        if amount is not None:
            data["amount_to_capture"] = to_minor_units(amount)
        intent = await self._request(
            "POST",
            f"/payment_intents/{authorization_id}/capture",
            data=data,
            idempotency_key=f"capture-{authorization_id}",
        )
        logger.info(f"💰 PaymentIntent {authorization_id} captured")
        return intent
