"""
Mock Payment Service

Stands in for Stripe in development mode (ENV_MODE=development):
    - Simulated latency
    - A configurable share of declines with Stripe decline codes
    - Stripe-like ids (pi_mock_...)
"""

import asyncio
import json
import logging
import random
import uuid
from decimal import Decimal
from typing import Optional

from hidasushi.services.payment.base import BasePaymentService, PaymentResult

logger = logging.getLogger(__name__)


class MockPaymentService(BasePaymentService):
    """
    Simulated card processor.

    Example:
        >>> service = MockPaymentService(failure_rate=0.0, min_latency=0, max_latency=0)
        >>> result = await service.process_payment(Decimal("25.97"))
        >>> result.success
        True
    """

    DECLINE_REASONS = [
        ("card_declined", "Your card was declined."),
        ("insufficient_funds", "Your card has insufficient funds."),
        ("expired_card", "Your card has expired."),
        ("incorrect_cvc", "Your card's security code is incorrect."),
    ]

    def __init__(
        self,
        failure_rate: float = 0.10,
        min_latency: float = 0.2,
        max_latency: float = 0.8,
        currency: str = "eur",
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.currency = currency

        logger.info(
            f"MockPaymentService initialized "
            f"(failure_rate={failure_rate:.0%}, latency={min_latency}-{max_latency}s)"
        )

    @property
    def provider_name(self) -> str:
        return "mock"

    @staticmethod
    def _new_intent_id() -> str:
        return f"pi_mock_{uuid.uuid4().hex[:24]}"

    async def _simulate_latency(self) -> float:
        latency = random.uniform(self.min_latency, self.max_latency)
        if latency > 0:
            await asyncio.sleep(latency)
        return latency * 1000

    async def process_payment(
        self,
        amount: Decimal,
        currency: Optional[str] = None,
        payment_token: Optional[str] = None,
        customer_email: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        currency = currency or self.currency
        if amount <= 0:
            return PaymentResult(
                success=False,
                error_message="Amount must be greater than 0",
                error_code="invalid_amount",
            )

        latency_ms = await self._simulate_latency()

        if random.random() < self.failure_rate:
            error_code, error_message = random.choice(self.DECLINE_REASONS)
            logger.info(f"Mock: Payment of €{amount} declined - {error_code}")
            return PaymentResult(
                success=False,
                amount=amount,
                currency=currency,
                status="requires_payment_method",
                error_message=error_message,
                error_code=error_code,
                response_time_ms=latency_ms,
            )

        payment_intent_id = self._new_intent_id()
        logger.info(f"Mock: Payment successful - {payment_intent_id} - €{amount}")
        return PaymentResult(
            success=True,
            payment_intent_id=payment_intent_id,
            amount=amount,
            currency=currency,
            status="succeeded",
            response_time_ms=latency_ms,
            metadata={"mock": True, "customer_email": customer_email, **(metadata or {})},
        )

    async def create_payment_intent(
        self,
        amount: Decimal,
        currency: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        if amount <= 0:
            return PaymentResult(
                success=False,
                error_message="Amount must be greater than 0",
                error_code="invalid_amount",
            )

        latency_ms = await self._simulate_latency()
        payment_intent_id = self._new_intent_id()
        logger.debug(f"Mock: Created payment intent {payment_intent_id}")
        return PaymentResult(
            success=True,
            payment_intent_id=payment_intent_id,
            client_secret=f"{payment_intent_id}_secret_mock",
            amount=amount,
            currency=currency or self.currency,
            status="requires_payment_method",
            response_time_ms=latency_ms,
            metadata=dict(metadata or {}),
        )

    async def verify_webhook(self, payload: bytes, signature: Optional[str]) -> Optional[dict]:
        """No signature check in development; the body is trusted as is."""
        try:
            return json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Mock: Invalid webhook payload")
            return None

    async def health_check(self) -> bool:
        return True
