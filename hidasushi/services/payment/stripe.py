"""
Stripe Payment Service

Used when ENV_MODE is staging (test keys) or production (live keys).

Requirements:
    - STRIPE_SECRET_KEY
    - STRIPE_WEBHOOK_SECRET for webhook verification

The Stripe SDK is synchronous; calls run in a worker thread so the event
loop keeps serving other requests.
"""

import asyncio
import json
import logging
import time
from decimal import Decimal
from typing import Optional

import stripe

from hidasushi.core.config import Settings, get_settings
from hidasushi.services.payment.base import (
    BasePaymentService,
    PaymentResult,
    from_cents,
    to_cents,
)

logger = logging.getLogger(__name__)


class StripePaymentService(BasePaymentService):
    """Card payments through Stripe PaymentIntents."""

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()

        if not settings.stripe_secret_key:
            raise ValueError(
                "STRIPE_SECRET_KEY is required outside development mode. "
                "Set it in your .env file or environment variables."
            )

        stripe.api_key = settings.stripe_secret_key
        self._webhook_secret = settings.stripe_webhook_secret
        self._currency = settings.stripe_currency

        logger.info(f"StripePaymentService initialized (currency={self._currency})")

    @property
    def provider_name(self) -> str:
        return "stripe"

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return (time.perf_counter() - start) * 1000

    def _failure(self, start: float, e: stripe.StripeError) -> PaymentResult:
        if isinstance(e, stripe.CardError):
            logger.warning(f"Stripe: Card declined - {e.code}: {e.user_message}")
            return PaymentResult(
                success=False,
                error_message=e.user_message,
                error_code=e.code,
                response_time_ms=self._elapsed_ms(start),
            )
        if isinstance(e, stripe.AuthenticationError):
            logger.critical(f"Stripe: Authentication failed - {e}")
            message, code = "Payment service configuration error", "authentication_error"
        elif isinstance(e, stripe.APIConnectionError):
            logger.error(f"Stripe: Connection error - {e}")
            message, code = "Payment service temporarily unavailable", "connection_error"
        elif isinstance(e, stripe.InvalidRequestError):
            logger.error(f"Stripe: Invalid request - {e}")
            message, code = str(e), "invalid_request"
        else:
            logger.error(f"Stripe: Error - {e}")
            message, code = "Payment processing error", "stripe_error"
        return PaymentResult(
            success=False,
            error_message=message,
            error_code=code,
            response_time_ms=self._elapsed_ms(start),
        )

    async def process_payment(
        self,
        amount: Decimal,
        currency: Optional[str] = None,
        payment_token: Optional[str] = None,
        customer_email: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        """Create and confirm a PaymentIntent with the given payment method."""
        if amount <= 0:
            return PaymentResult(
                success=False,
                error_message="Amount must be greater than 0",
                error_code="invalid_amount",
            )
        if not payment_token:
            return PaymentResult(
                success=False,
                error_message="A payment method token is required for card payments",
                error_code="missing_payment_method",
            )

        start = time.perf_counter()
        logger.info(f"Stripe: Processing payment of €{amount}")
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                amount=to_cents(amount),
                currency=currency or self._currency,
                payment_method=payment_token,
                confirm=True,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                description=description or "HidaSushi order",
                receipt_email=customer_email,
                metadata={str(k): str(v) for k, v in (metadata or {}).items()},
            )
        except stripe.StripeError as e:
            return self._failure(start, e)

        logger.info(f"Stripe: PaymentIntent {intent.id} - status={intent.status}")
        return PaymentResult(
            success=intent.status == "succeeded",
            payment_intent_id=intent.id,
            amount=from_cents(intent.amount),
            currency=intent.currency,
            status=intent.status,
            error_message=None if intent.status == "succeeded" else f"Payment {intent.status}",
            response_time_ms=self._elapsed_ms(start),
        )

    async def create_payment_intent(
        self,
        amount: Decimal,
        currency: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        start = time.perf_counter()
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                amount=to_cents(amount),
                currency=currency or self._currency,
                metadata={str(k): str(v) for k, v in (metadata or {}).items()},
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            return self._failure(start, e)

        logger.debug(f"Stripe: PaymentIntent created - {intent.id}")
        return PaymentResult(
            success=True,
            payment_intent_id=intent.id,
            client_secret=intent.client_secret,
            amount=from_cents(intent.amount),
            currency=intent.currency,
            status=intent.status,
            response_time_ms=self._elapsed_ms(start),
        )

    async def verify_webhook(self, payload: bytes, signature: Optional[str]) -> Optional[dict]:
        """
        Verify the Stripe-Signature header and parse the event.

        Returns None for unsigned or tampered payloads.
        """
        if not self._webhook_secret:
            logger.error("Stripe: STRIPE_WEBHOOK_SECRET not configured, rejecting webhook")
            return None
        if not signature:
            logger.warning("Stripe: Webhook without signature header")
            return None

        try:
            stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Stripe: Webhook signature invalid - {e}")
            return None
        except ValueError as e:
            logger.warning(f"Stripe: Webhook payload invalid - {e}")
            return None

        event = json.loads(payload)
        logger.debug(f"Stripe: Webhook verified - {event.get('type')}")
        return event

    async def health_check(self) -> bool:
        try:
            await asyncio.to_thread(stripe.Account.retrieve)
            return True
        except stripe.StripeError as e:
            logger.error(f"Stripe: Health check failed - {e}")
            return False
