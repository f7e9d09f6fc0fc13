"""
Payment Service Abstract Base Class

Interface shared by the mock and Stripe payment services. Amounts are
``Decimal`` euros; implementations convert to the provider's smallest unit.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional


@dataclass
class PaymentResult:
    """
    Outcome of a charge or a PaymentIntent creation.

    Attributes:
        success: Whether the provider accepted the request
        payment_intent_id: Provider reference (pi_...)
        client_secret: Secret the frontend confirms a PaymentIntent with
        amount: Amount in euros
        error_message: Human readable failure reason
        error_code: Machine readable failure code (card_declined, ...)
    """
    success: bool
    payment_intent_id: Optional[str] = None
    client_secret: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: str = "eur"
    status: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    response_time_ms: float = 0.0
    metadata: dict = field(default_factory=dict)


class BasePaymentService(ABC):
    """Strategy interface for payment providers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    async def process_payment(
        self,
        amount: Decimal,
        currency: Optional[str] = None,
        payment_token: Optional[str] = None,
        customer_email: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        """
        Charge ``amount`` using the card token from the frontend.

        Failures come back as ``PaymentResult(success=False)``; provider
        errors are never raised to the caller.
        """
        pass

    @abstractmethod
    async def create_payment_intent(
        self,
        amount: Decimal,
        currency: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        """Create a PaymentIntent for client-side confirmation."""
        pass

    @abstractmethod
    async def verify_webhook(self, payload: bytes, signature: Optional[str]) -> Optional[dict]:
        """Parse a provider webhook; ``None`` when it cannot be trusted."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass


def to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).to_integral_value())


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))
