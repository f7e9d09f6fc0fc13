"""
Payment Service Factory

Usage:
    from hidasushi.services.payment import get_payment_service

    payment_service = get_payment_service()
    result = await payment_service.process_payment(Decimal("25.97"), payment_token="pm_...")

Environment Switching:
    - ENV_MODE=development → MockPaymentService (no API calls)
    - ENV_MODE=staging     → StripePaymentService (test keys)
    - ENV_MODE=production  → StripePaymentService (live keys)
"""

import logging
from functools import lru_cache

from hidasushi.core.config import get_settings
from hidasushi.services.payment.base import BasePaymentService, PaymentResult
from hidasushi.services.payment.mock import MockPaymentService
from hidasushi.services.payment.stripe import StripePaymentService

logger = logging.getLogger(__name__)


@lru_cache()
def get_payment_service() -> BasePaymentService:
    """
    Get the configured payment service instance (cached per process).

    Raises:
        ValueError: Outside development mode without a Stripe key
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Payment Service: Using MockPaymentService (development mode)")
        return MockPaymentService(
            failure_rate=settings.mock_payment_failure_rate,
            currency=settings.stripe_currency,
        )

    logger.info(f"Payment Service: Using StripePaymentService ({settings.env_mode.value} mode)")
    return StripePaymentService(settings)


def reset_payment_service() -> None:
    get_payment_service.cache_clear()


__all__ = [
    "get_payment_service",
    "reset_payment_service",
    "BasePaymentService",
    "PaymentResult",
    "MockPaymentService",
    "StripePaymentService",
]
