"""Shared FastAPI dependencies for process-wide components"""

from fastapi import Request

from .cache import Cache, build_cache
from .domain.notifications.providers import EmailProvider, SmsProvider
from .domain.payments.gateway import StripeGateway


def get_cache(request: Request) -> Cache:
    """The availability cache built at start-up (see main.lifespan)"""
    cache = getattr(request.app.state, "cache", None)
    if cache is None:
        cache = build_cache()
        request.app.state.cache = cache
    return cache


def get_payment_gateway() -> StripeGateway:
    return StripeGateway()


def get_email_provider() -> EmailProvider:
    return EmailProvider()


def get_sms_provider() -> SmsProvider:
    return SmsProvider()
