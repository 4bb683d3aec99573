"""Payment repository - Local mirror of processor-side authorizations"""

from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ...models import PaymentAuthorization


class PaymentRepository:
    """Repository for payment authorization mirror rows"""

    @staticmethod
    def get_by_idempotency_key(db: Session, idempotency_key: str) -> Optional[PaymentAuthorization]:
        return (
            db.query(PaymentAuthorization)
            .filter(PaymentAuthorization.idempotency_key == idempotency_key)
            .first()
        )

    @staticmethod
    def get_by_authorization_id(db: Session, authorization_id: str) -> Optional[PaymentAuthorization]:
        return (
            db.query(PaymentAuthorization)
            .filter(PaymentAuthorization.authorization_id == authorization_id)
            .first()
        )

    @staticmethod
    def create_pending(
        db: Session,
        idempotency_key: str,
        amount: Decimal,
        currency: str,
        customer_email: Optional[str] = None,
    ) -> PaymentAuthorization:
        """Claim the idempotency key locally; raises IntegrityError if another call holds it"""
        record = PaymentAuthorization(
            idempotency_key=idempotency_key,
            amount=amount,
            currency=currency,
            status="pending",
            customer_email=customer_email,
        )
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    @staticmethod
    def mark_status(db: Session, authorization_id: str, status: str, error: Optional[str] = None):
        """Update the mirror status for an authorization, if we have a mirror row"""
        record = PaymentRepository.get_by_authorization_id(db, authorization_id)
        if record:
            record.status = status
            if error:
                record.last_error = error
            db.commit()
        return record

    @staticmethod
    def record_authorization(
        db: Session,
        idempotency_key: str,
        authorization_id: str,
        amount: Decimal,
        currency: str,
        status: str,
        client_secret: Optional[str] = None,
    ) -> PaymentAuthorization:
        """Mirror a hold placed outside the checkout flow, reusing the row for a repeated key"""
        record = PaymentRepository.get_by_idempotency_key(db, idempotency_key)
        if record is None:
            record = PaymentAuthorization(idempotency_key=idempotency_key)
            db.add(record)
        record.authorization_id = authorization_id
        record.amount = amount
        record.currency = currency
        record.status = status
        record.client_secret = client_secret
        record.last_error = None
        db.commit()
        db.refresh(record)
        return record
