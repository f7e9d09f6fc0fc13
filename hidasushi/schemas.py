"""
Pydantic Schemas for Request/Response Validation
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from hidasushi.models import OrderStatus, OrderType, PaymentMethod, PaymentStatus


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OrderItemCreate(BaseModel):
    """Single line of an order: a signature roll or a custom build."""
    sushi_roll_id: Optional[int] = Field(None, ge=1, examples=[3])
    custom_roll_id: Optional[int] = Field(None, ge=1)
    name: str = Field(..., min_length=1, max_length=100, examples=["Dragon Roll"])
    quantity: int = Field(..., ge=1, le=99, examples=[2])
    unit_price: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2, examples=["12.50"])
    notes: Optional[str] = Field(None, max_length=200)

    @model_validator(mode="after")
    def check_single_reference(self) -> "OrderItemCreate":
        if (self.sushi_roll_id is None) == (self.custom_roll_id is None):
            raise ValueError("Each item must reference exactly one of sushi_roll_id or custom_roll_id")
        return self


class OrderCreate(BaseModel):
    """Request schema for creating a new order."""

    order_type: OrderType = Field(default=OrderType.DELIVERY, examples=["delivery"])

    # Customer Info (customer_id is omitted for guest checkout)
    customer_id: Optional[int] = Field(None, ge=1)
    customer_name: str = Field(..., min_length=2, max_length=100, examples=["Yuki Tanaka"])
    customer_email: Optional[str] = Field(None, examples=["yuki@example.com"])
    customer_phone: Optional[str] = Field(None, max_length=20, examples=["+32 470 12 34 56"])

    # Delivery (required for delivery orders, dropped for pickup)
    delivery_address: Optional[str] = Field(None, max_length=255, examples=["Rue Neuve 1, 1000 Brussels"])
    delivery_instructions: Optional[str] = Field(None, max_length=500)

    items: List[OrderItemCreate] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=500)

    payment_method: PaymentMethod = Field(default=PaymentMethod.STRIPE)

    @field_validator("customer_email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        if not re.match(r'^[\w\.+-]+@[\w\.-]+\.\w+$', v):
            raise ValueError('Invalid email format')
        return v

    @model_validator(mode="after")
    def check_fulfillment(self) -> "OrderCreate":
        if self.order_type == OrderType.DELIVERY:
            if not self.delivery_address or not self.delivery_address.strip():
                raise ValueError("delivery_address is required for delivery orders")
        else:
            self.delivery_address = None
            self.delivery_instructions = None
        return self


class OrderStatusUpdate(BaseModel):
    """Request to move an order to a new status."""
    status: OrderStatus
    actor_id: Optional[int] = Field(None, ge=1, description="Admin user performing the change")
    note: str = Field(default="", max_length=500)


class PaymentRequest(BaseModel):
    """Request to settle an order."""
    order_id: int
    payment_method: PaymentMethod
    payment_token: Optional[str] = Field(None, description="Stripe payment method id for card payments")
    customer_email: Optional[str] = None


class PaymentIntentRequest(BaseModel):
    order_id: int


class SubscriptionCommand(BaseModel):
    """Message sent by a WebSocket client to manage its groups."""
    action: Literal[
        "join_admin",
        "leave_admin",
        "join_customer",
        "leave_customer",
        "join_order",
        "leave_order",
    ]
    customer_id: Optional[int] = Field(None, ge=1)
    order_number: Optional[str] = Field(None, min_length=1, max_length=32)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    sushi_roll_id: Optional[int]
    custom_roll_id: Optional[int]
    name: str
    quantity: int
    unit_price: Decimal
    price: Decimal
    notes: Optional[str]


class OrderResponse(BaseModel):
    """Response schema for a single order."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    customer_id: Optional[int]
    customer_name: str
    customer_email: Optional[str]
    customer_phone: Optional[str]
    order_type: OrderType
    delivery_address: Optional[str]
    delivery_instructions: Optional[str]
    location: str
    notes: Optional[str]
    items: List[OrderItemResponse]
    subtotal: Decimal
    delivery_fee: Decimal
    tax_amount: Decimal
    total: Decimal
    status: OrderStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    payment_intent_id: Optional[str]
    created_at: datetime
    updated_at: datetime
    estimated_ready_time: Optional[datetime]
    accepted_at: Optional[datetime]
    accepted_by: Optional[int]
    preparation_started_at: Optional[datetime]
    preparation_completed_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]


class OrderListResponse(BaseModel):
    """Response for listing multiple orders."""
    total: int
    orders: List[OrderResponse]


class TransitionResponse(BaseModel):
    """Outcome of a status update request."""
    success: bool = True
    changed: bool
    message: str
    order: OrderResponse
    transition: Optional[dict[str, Any]] = None


class StatusHistoryResponse(BaseModel):
    order_number: str
    status: OrderStatus
    consistent: bool
    history: List[dict[str, Any]]


class PaymentResponse(BaseModel):
    success: bool
    order_id: int
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    transaction_id: Optional[str] = None
    message: Optional[str] = None
    error_message: Optional[str] = None


class PaymentIntentResponse(BaseModel):
    success: bool
    order_id: int
    payment_intent_id: Optional[str] = None
    client_secret: Optional[str] = None
    error_message: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    payment_service: str
    realtime_connections: int
    timestamp: datetime
