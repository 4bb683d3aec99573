"""
Checkout orchestration: authorize -> create booking -> assign.

Each stage consumes the previous stage's result (the authorization id, then
the booking id). This is where stage errors become customer-facing messages.
"""

import logging
from typing import Awaitable, Callable, Optional

from sqlalchemy.orm import Session

from ...cache import Cache
from ...config import DEFAULT_CURRENCY, SUPPORT_EMAIL
from ...errors import NotificationError
from ...models import ASSIGNMENT_ASSIGNING
from ...schemas import AssignmentResult, BookingPayload, CheckoutOutcome, PayerInfo, StageError
from ...worker import enqueue_assignment_retry
from ..assignment.service import AssignmentEngine
from ..notifications.dispatcher import NotificationDispatcher
from ..notifications.providers import EmailProvider
from ..payments.gateway import StripeGateway
from ..payments.service import PaymentAuthorizer
from .service import BookingCreator

logger = logging.getLogger(__name__)

AUTHORIZATION_MESSAGES = {
    "payment_declined": "Your payment was declined: {message}",
    "transient_provider_error": "We couldn't reach the payment processor. Please try again in a moment.",
    "conflict": "This checkout was already submitted. Please refresh and start again.",
    "validation_error": "{message}",
}

BOOKING_INCOMPLETE_MESSAGE = (
    "Your payment was authorized but the booking could not be completed. "
    "Support has been notified and will contact you shortly."
)


class CheckoutService:
    """Runs the payment-first booking pipeline for one checkout attempt"""

    def __init__(
        self,
        db: Session,
        gateway: Optional[StripeGateway] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        cache: Optional[Cache] = None,
        support_email_provider: Optional[EmailProvider] = None,
        enqueue_assignment: Callable[[int], Awaitable[Optional[str]]] = enqueue_assignment_retry,
    ):
        self.db = db
        gateway = gateway or StripeGateway()
        self.authorizer = PaymentAuthorizer(db, gateway=gateway)
        self.creator = BookingCreator(db, gateway=gateway, cache=cache)
        self.engine = AssignmentEngine(db, dispatcher=dispatcher, cache=cache)
        self.support_email_provider = support_email_provider
        self.enqueue_assignment = enqueue_assignment

    async def checkout(self, payload: BookingPayload, payer: PayerInfo, idempotency_key: str) -> CheckoutOutcome:
        auth = await self.authorizer.authorize(payload.total_price, DEFAULT_CURRENCY, payer, idempotency_key)
        if not auth.success:
            template = AUTHORIZATION_MESSAGES.get(auth.error.kind, "{message}")
            return CheckoutOutcome(
                success=False,
                stage="authorization",
                user_message=template.format(message=auth.error.message),
                error=auth.error,
            )

        created = await self.creator.create_after_authorization(auth.authorization_id, payload)
        if not created.success:
            return await self._booking_failed(auth.authorization_id, created.error)

        assignment = await self.engine.assign(created.booking_id)
        if self._was_interrupted(assignment):
            await self.enqueue_assignment(created.booking_id)

        if assignment.success:
            message = "Your booking is confirmed and a technician has been assigned."
            stage = "complete"
        else:
            message = "Your booking is confirmed. We'll assign a technician shortly."
            stage = "assignment"

        return CheckoutOutcome(
            success=True,
            stage=stage,
            user_message=message,
            authorization_id=auth.authorization_id,
            booking_id=created.booking_id,
            assignment_status=assignment.assignment_status,
            worker_id=assignment.worker_id,
            error=assignment.error,
        )

    @staticmethod
    def _was_interrupted(assignment: AssignmentResult) -> bool:
        """The engine gave up mid-assignment and left its claim in place"""
        return (
            not assignment.success
            and assignment.error is not None
            and assignment.error.kind == "assignment_failed"
            and assignment.assignment_status == ASSIGNMENT_ASSIGNING
        )

    async def _booking_failed(self, authorization_id: str, error: StageError) -> CheckoutOutcome:
        if error.kind == "booking_creation_failed":
            await self._alert_support(authorization_id, error)
            message = BOOKING_INCOMPLETE_MESSAGE
        elif error.kind == "transient_provider_error":
            message = "We couldn't confirm your booking yet. Please retry; you will not be charged twice."
        else:
            message = error.message

        return CheckoutOutcome(
            success=False,
            stage="booking",
            user_message=message,
            authorization_id=authorization_id,
            error=error,
        )

    async def _alert_support(self, authorization_id: str, error: StageError):
        if self.support_email_provider is None:
            self.support_email_provider = EmailProvider()

        body = "\n".join(
            [
                "A booking could not be created after the customer's card was authorized.",
                "",
                f"Authorization: {authorization_id}",
                f"Authorization status: {error.details.get('authorization_status')}",
                f"Reason: {error.details.get('reason', error.message)}",
            ]
        )
        try:
            await self.support_email_provider.send(
                SUPPORT_EMAIL, f"Booking failed after authorization {authorization_id}", body
            )
        except NotificationError as e:
            logger.critical(f"🚨 Support alert for authorization {authorization_id} not delivered: {e.message}")
