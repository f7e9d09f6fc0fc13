"""
SQLAlchemy Database Models

Orders, their line items and the append-only status history.

Catalog rolls and custom builds live in the menu service; line items only
keep their ids plus a snapshot of name and price taken at order time, so
later menu edits never change historical orders.
"""

import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Text, Enum, ForeignKey
from sqlalchemy.orm import relationship

from hidasushi.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    RECEIVED = "received"
    ACCEPTED = "accepted"
    IN_PREPARATION = "in_preparation"
    READY = "ready"
    OUT_FOR_DELIVERY = "out_for_delivery"
    READY_FOR_PICKUP = "ready_for_pickup"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderType(str, enum.Enum):
    """Order type - Pickup or Delivery."""
    PICKUP = "pickup"
    DELIVERY = "delivery"


class PaymentMethod(str, enum.Enum):
    STRIPE = "stripe"
    CASH_ON_DELIVERY = "cash_on_delivery"
    GODPAY = "godpay"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


# Shared so PostgreSQL creates the enum type once for both tables
order_status_enum = Enum(OrderStatus, name="order_status")

MONEY = Numeric(10, 2)


class Order(Base):
    """
    Main Order table.

    ``status`` is the single source of truth for the lifecycle and is only
    written through the order repository's conditional update.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_number = Column(String(32), nullable=False, unique=True, index=True)

    # =========================================================================
    # CUSTOMER INFORMATION (customer_id is null for guest orders)
    # =========================================================================
    customer_id = Column(Integer, nullable=True, index=True)
    customer_name = Column(String(100), nullable=False)
    customer_email = Column(String(200), nullable=True)
    customer_phone = Column(String(20), nullable=True)

    # =========================================================================
    # FULFILLMENT
    # =========================================================================
    order_type = Column(
        Enum(OrderType, name="order_type"),
        default=OrderType.DELIVERY,
        nullable=False,
        index=True
    )
    delivery_address = Column(String(255), nullable=True)
    delivery_instructions = Column(Text, nullable=True)
    location = Column(String(50), nullable=False, default="Brussels")
    notes = Column(Text, nullable=True)

    # =========================================================================
    # PRICING (total = subtotal + delivery_fee + tax_amount)
    # =========================================================================
    subtotal = Column(MONEY, nullable=False, default=Decimal("0.00"))
    delivery_fee = Column(MONEY, nullable=False, default=Decimal("0.00"))
    tax_amount = Column(MONEY, nullable=False, default=Decimal("0.00"))
    total = Column(MONEY, nullable=False, default=Decimal("0.00"))

    # =========================================================================
    # PAYMENT INFO
    # =========================================================================
    payment_method = Column(
        Enum(PaymentMethod, name="payment_method"),
        default=PaymentMethod.STRIPE,
        nullable=False
    )
    payment_status = Column(
        Enum(PaymentStatus, name="payment_status"),
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True
    )
    payment_intent_id = Column(String(100), nullable=True)
    payment_reference = Column(String(100), nullable=True)

    # =========================================================================
    # ORDER STATUS
    # =========================================================================
    status = Column(
        order_status_enum,
        default=OrderStatus.RECEIVED,
        nullable=False,
        index=True
    )

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    estimated_ready_time = Column(DateTime(timezone=True), nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    accepted_by = Column(Integer, nullable=True)
    preparation_started_at = Column(DateTime(timezone=True), nullable=True)
    preparation_completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Order {self.order_number} - {self.order_type.value} - {self.status.value}>"


class OrderItem(Base):
    """
    One line of an order.

    Exactly one of ``sushi_roll_id`` (signature roll) or ``custom_roll_id``
    (build-your-own) is set. ``name`` and ``unit_price`` are copies.
    """
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)

    sushi_roll_id = Column(Integer, nullable=True)
    custom_roll_id = Column(Integer, nullable=True)

    name = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(MONEY, nullable=False)
    price = Column(MONEY, nullable=False)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    order = relationship("Order", back_populates="items")

    def __repr__(self):
        return f"<OrderItem {self.quantity}x {self.name}>"


class OrderStatusHistory(Base):
    """
    Append-only audit ledger: one row per status transition.

    ``previous_status`` is null only for the creation record. Rows are never
    updated or deleted.
    """
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    previous_status = Column(order_status_enum, nullable=True)
    new_status = Column(order_status_enum, nullable=False)
    changed_by = Column(Integer, nullable=True)
    notes = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        previous = self.previous_status.value if self.previous_status else None
        return f"<OrderStatusHistory order={self.order_id} {previous} -> {self.new_status.value}>"
