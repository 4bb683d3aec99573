"""Payment Authorizer - places card holds before any booking exists"""

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...errors import BookingError, ConflictError, PaymentDeclined, TransientProviderError, ValidationError
from ...models import PaymentAuthorization
from ...schemas import AuthorizationResult, PayerInfo, StageError
from .gateway import StripeGateway, from_minor_units
from .repository import PaymentRepository

logger = logging.getLogger(__name__)

# Mirror statuses that already hold (or held) money for the key
HELD_STATUSES = ("requires_capture", "succeeded")


def _money(amount) -> Decimal:
    try:
        value = Decimal(str(amount)).quantize(Decimal("0.01"))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("amount must be a decimal number", amount=str(amount))
    if value <= 0:
        raise ValidationError("amount must be greater than zero", amount=str(value))
    return value


class PaymentAuthorizer:
    """
    Creates payment holds keyed by a caller-generated idempotency key.

    The key is claimed in payment_authorizations before the processor is
    called, and the same key is sent as the processor's Idempotency-Key, so a
    retried request can never place a second hold. A repeat call for a key
    that already holds money is answered from the mirror row without touching
    the processor.
    """

    def __init__(self, db: Session, gateway: Optional[StripeGateway] = None):
        self.db = db
        self.repo = PaymentRepository()
        self.gateway = gateway or StripeGateway()

    async def authorize(
        self,
        amount,
        currency: str,
        payer: PayerInfo,
        idempotency_key: str,
    ) -> AuthorizationResult:
        try:
            record = await self._authorize(amount, currency, payer, idempotency_key)
        except BookingError as e:
            logger.warning(f"⚠️ Authorization failed for key {idempotency_key}: {e.kind} - {e.message}")
            return AuthorizationResult(success=False, error=StageError.from_exception(e))
        return self._result(record)

    async def _authorize(
        self, amount, currency: str, payer: PayerInfo, idempotency_key: str
    ) -> PaymentAuthorization:
        if not idempotency_key or not idempotency_key.strip():
            raise ValidationError("idempotency_key is required")
        if not currency or not re.fullmatch(r"[A-Za-z]{3}", currency):
            raise ValidationError("currency must be a 3-letter ISO code", currency=currency)
        amount = _money(amount)
        currency = currency.lower()

        record = self.repo.get_by_idempotency_key(self.db, idempotency_key)
        if record is None:
            try:
                record = self.repo.create_pending(
                    self.db, idempotency_key, amount, currency, customer_email=payer.email
                )
            except IntegrityError:
                # A concurrent call claimed the key first
                self.db.rollback()
                record = self.repo.get_by_idempotency_key(self.db, idempotency_key)
                if record is None:
                    raise ConflictError("Could not claim idempotency key", idempotency_key=idempotency_key)

        self._check_reuse(record, amount, currency)

        if record.status in HELD_STATUSES and record.authorization_id:
            logger.info(f"♻️ Reusing authorization {record.authorization_id} for key {idempotency_key}")
            return record
        if record.status == "failed":
            raise PaymentDeclined(record.last_error or "Payment was declined")
        if record.status == "canceled":
            raise ConflictError(
                "This checkout attempt was canceled; start a new one",
                authorization_id=record.authorization_id,
            )

        # pending: first call, or a retry of a call that never recorded its outcome
        logger.info(f"💳 Authorizing {amount} {currency} for key {idempotency_key}")
        try:
            intent = await self.gateway.create_authorization(
                amount=amount,
                currency=currency,
                payment_method_id=payer.payment_method_id,
                idempotency_key=idempotency_key,
                customer_id=payer.processor_customer_id,
                receipt_email=payer.email,
                metadata={"idempotency_key": idempotency_key},
            )
        except PaymentDeclined as e:
            record.status = "failed"
            record.last_error = e.message
            record.authorization_id = e.details.get("authorization_id") or record.authorization_id
            self.db.commit()
            raise
        except TransientProviderError as e:
            record.last_error = e.message
            self.db.commit()
            raise

        record.authorization_id = intent["id"]
        record.client_secret = intent.get("client_secret")
        record.status = intent.get("status", "requires_capture")
        if intent.get("amount") is not None:
            record.amount = from_minor_units(intent["amount"])
        record.last_error = None
        self.db.commit()
        self.db.refresh(record)

        logger.info(f"✅ Authorization {record.authorization_id} is {record.status}")
        return record

    @staticmethod
    def _check_reuse(record: PaymentAuthorization, amount: Decimal, currency: str):
        if Decimal(record.amount).quantize(Decimal("0.01")) != amount or record.currency != currency:
            raise ConflictError(
                "Idempotency key was already used with a different amount",
                idempotency_key=record.idempotency_key,
                original_amount=str(record.amount),
                requested_amount=str(amount),
            )

    @staticmethod
    def _result(record: PaymentAuthorization) -> AuthorizationResult:
        return AuthorizationResult(
            success=True,
            authorization_id=record.authorization_id,
            client_secret=record.client_secret,
            status=record.status,
            amount=record.amount,
            currency=record.currency,
        )
