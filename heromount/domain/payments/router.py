"""Payments router - card holds ahead of booking creation"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...database import get_db
from ...dependencies import get_payment_gateway
from ...schemas import AuthorizationResult, AuthorizeRequest
from ...shared.http import raise_for_stage_error
from .gateway import StripeGateway
from .service import PaymentAuthorizer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def get_payment_authorizer(
    db: Session = Depends(get_db), gateway: StripeGateway = Depends(get_payment_gateway)
) -> PaymentAuthorizer:
    """Dependency injection for PaymentAuthorizer"""
    return PaymentAuthorizer(db, gateway=gateway)


@router.post("/authorize", response_model=AuthorizationResult)
async def authorize_payment(
    data: AuthorizeRequest,
    authorizer: PaymentAuthorizer = Depends(get_payment_authorizer),
):
    """Place a hold; retries with the same idempotency_key return the same authorization"""
    result = await authorizer.authorize(data.amount, data.currency, data.payer, data.idempotency_key)
    raise_for_stage_error(result.error)
    return result
