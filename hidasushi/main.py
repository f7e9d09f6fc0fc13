"""
FastAPI Application Entry Point

HidaSushi order service: order intake, the kitchen/fulfillment status
lifecycle, payments and real-time order tracking.

Endpoints:
    - POST /api/orders: Place an order
    - GET  /api/orders: List orders
    - PUT  /api/orders/{order_id}/status: Move an order through its lifecycle
    - GET  /api/orders/track/{order_number}/history: Audited status history
    - POST /api/payments/process: Settle an order
    - POST /api/payments/stripe/webhook: Stripe payment callbacks
    - WS   /ws/orders: Real-time order updates (admin, customer and order groups)
    - GET  /health: System health check
"""

import asyncio
import json
import logging
import sys
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import redis
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from hidasushi.core.config import get_settings, setup_logging
from hidasushi.database import engine, get_db, init_db
from hidasushi.models import Order, OrderStatus, PaymentMethod, PaymentStatus
from hidasushi.orders import (
    TERMINAL_STATUSES,
    ConcurrentModificationError,
    NoOpTransitionError,
    OrderNotFoundError,
    OrderService,
    TransitionError,
)
from hidasushi.realtime import (
    ADMIN_GROUP,
    NotificationDispatcher,
    customer_group,
    get_dispatcher,
    order_group,
)
from hidasushi.realtime.registry import validate_group_key
from hidasushi.schemas import (
    ErrorResponse,
    HealthResponse,
    OrderCreate,
    OrderListResponse,
    OrderResponse,
    OrderStatusUpdate,
    PaymentIntentRequest,
    PaymentIntentResponse,
    PaymentRequest,
    PaymentResponse,
    StatusHistoryResponse,
    SubscriptionCommand,
    TransitionResponse,
)
from hidasushi.services.excel_manager import build_export_payload
from hidasushi.services.payment import BasePaymentService, get_payment_service

settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    await init_db()
    logger.info("✅ Database initialized")

    payment_service = get_payment_service()
    logger.info(f"✅ Payment Service: {payment_service.provider_name}")
    logger.info(f"✅ Real-time transport: {get_dispatcher().transport.provider_name}")

    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("✅ Application ready!")

    yield

    logger.info("Shutting down...")
    await engine.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Order lifecycle service for HidaSushi: validated status transitions "
        "with an audited history and real-time tracking over WebSockets."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

async def get_order_service(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> OrderService:
    return OrderService(db, dispatcher)


async def queue_ledger_export(service: OrderService, order: Order) -> None:
    """Hand a finished order to the Celery export task. Failures are logged only."""
    if not settings.excel_export_enabled:
        return
    try:
        from hidasushi.tasks import export_order_to_excel

        records = await service.repository.history.list_for_order(order.order_number)
        export_order_to_excel.delay(build_export_payload(order, list(records)))
        logger.info(f"Queued ledger export for order {order.order_number}")
    except Exception as e:
        logger.error(f"Could not queue ledger export for order {order.order_number}: {e}")


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    return {
        "message": f"🍣 Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
        "websocket": "/ws/orders",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db),
    payment_service: BasePaymentService = Depends(get_payment_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> HealthResponse:
    """Verify all system components are operational."""

    db_status = "healthy"
    try:
        await db.execute(select(func.count(Order.id)))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    redis_status = "healthy"
    try:
        r = redis.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
        r.close()
    except Exception as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    payment_status = "healthy" if await payment_service.health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, redis_status, payment_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        payment_service=payment_status,
        realtime_connections=dispatcher.transport.connection_count(),
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# ORDER API ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderResponse,
    status_code=201,
    responses={422: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="Place Order",
)
async def create_order(
    order_data: OrderCreate,
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    """
    Place a new order.

    The order starts in ``received`` with its creation recorded in the status
    history, and is announced to the admin group.
    """
    order = await service.create_order(order_data)
    return OrderResponse.model_validate(order)


@app.get(
    "/api/orders",
    response_model=OrderListResponse,
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    status: Optional[OrderStatus] = Query(None),
    from_date: Optional[datetime] = Query(None, description="Only orders created at or after this time"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    service: OrderService = Depends(get_order_service),
) -> OrderListResponse:
    total, orders = await service.list_orders(status=status, from_date=from_date, skip=skip, limit=limit)
    return OrderListResponse(
        total=total,
        orders=[OrderResponse.model_validate(order) for order in orders],
    )


@app.get(
    "/api/orders/pending",
    response_model=OrderListResponse,
    tags=["Orders"],
    summary="Orders Awaiting Acceptance",
)
async def pending_orders(
    service: OrderService = Depends(get_order_service),
) -> OrderListResponse:
    total, orders = await service.list_orders(status=OrderStatus.RECEIVED, limit=100)
    return OrderListResponse(
        total=total,
        orders=[OrderResponse.model_validate(order) for order in orders],
    )


@app.get(
    "/api/orders/track/{order_number}",
    response_model=OrderResponse,
    tags=["Tracking"],
)
async def track_order(
    order_number: str,
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    order = await service.get_order_by_number(order_number)
    return OrderResponse.model_validate(order)


@app.get(
    "/api/orders/track/{order_number}/history",
    response_model=StatusHistoryResponse,
    tags=["Tracking"],
)
async def order_status_history(
    order_number: str,
    service: OrderService = Depends(get_order_service),
) -> StatusHistoryResponse:
    """Status history, oldest first, and whether it replays to the live status."""
    order, records, consistent = await service.get_status_history(order_number)
    return StatusHistoryResponse(
        order_number=order.order_number,
        status=order.status,
        consistent=consistent,
        history=[record.to_dict() for record in records],
    )


@app.get(
    "/api/orders/{order_id}",
    response_model=OrderResponse,
    tags=["Orders"],
)
async def get_order(
    order_id: int,
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    order = await service.get_order(order_id)
    return OrderResponse.model_validate(order)


@app.put(
    "/api/orders/{order_id}/status",
    response_model=TransitionResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="Update Order Status",
)
async def update_order_status(
    order_id: int,
    update: OrderStatusUpdate,
    service: OrderService = Depends(get_order_service),
) -> TransitionResponse:
    """
    Move an order to a new status.

    Requesting the current status is answered with ``changed=false`` and
    writes nothing. Illegal transitions, completion before payment and lost
    races with another update are rejected with 409.
    """
    order = await service.get_order(order_id)

    try:
        record = await service.transition_order(
            order, update.status, actor_id=update.actor_id, note=update.note
        )
    except NoOpTransitionError as e:
        return TransitionResponse(
            changed=False,
            message=str(e),
            order=OrderResponse.model_validate(order),
        )

    if record.new_status in TERMINAL_STATUSES:
        await queue_ledger_export(service, order)

    return TransitionResponse(
        changed=True,
        message=f"Order {order.order_number} is now {record.new_status.value}",
        order=OrderResponse.model_validate(order),
        transition=record.to_dict(),
    )


# =============================================================================
# PAYMENT ENDPOINTS
# =============================================================================

@app.post(
    "/api/payments/process",
    response_model=PaymentResponse,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    tags=["Payments"],
)
async def process_payment(
    request: PaymentRequest,
    service: OrderService = Depends(get_order_service),
    payment_service: BasePaymentService = Depends(get_payment_service),
) -> PaymentResponse:
    """
    Settle an order.

    Cash on delivery only registers the method; the order stays unpaid until
    the cash is collected. Card and GodPay payments mark the order paid.
    """
    order = await service.get_order(request.order_id)

    if order.payment_status == PaymentStatus.PAID:
        raise HTTPException(status_code=409, detail=f"Order {order.order_number} is already paid")
    if order.status == OrderStatus.CANCELLED:
        raise HTTPException(status_code=409, detail=f"Order {order.order_number} is cancelled")

    method = request.payment_method

    if method == PaymentMethod.CASH_ON_DELIVERY:
        transaction_id = f"CASH_{order.order_number}_{int(datetime.now(timezone.utc).timestamp())}"
        await service.update_payment_status(
            order, PaymentStatus.PENDING, transaction_id=transaction_id, payment_method=method
        )
        return PaymentResponse(
            success=True,
            order_id=order.id,
            payment_method=method,
            payment_status=order.payment_status,
            transaction_id=transaction_id,
            message="Cash on delivery registered; pay when your order arrives",
        )

    if method == PaymentMethod.GODPAY:
        transaction_id = f"god_{uuid.uuid4().hex[:24]}"
        await service.update_payment_status(
            order, PaymentStatus.PAID, transaction_id=transaction_id, payment_method=method
        )
        return PaymentResponse(
            success=True,
            order_id=order.id,
            payment_method=method,
            payment_status=order.payment_status,
            transaction_id=transaction_id,
            message="GodPay payment completed",
        )

    result = await payment_service.process_payment(
        amount=Decimal(order.total),
        payment_token=request.payment_token,
        customer_email=request.customer_email or order.customer_email,
        description=f"{settings.restaurant_name} order {order.order_number}",
        metadata={"order_id": order.id, "order_number": order.order_number},
    )

    if not result.success:
        await service.update_payment_status(
            order,
            PaymentStatus.FAILED,
            payment_method=method,
            payment_intent_id=result.payment_intent_id,
        )
        raise HTTPException(status_code=400, detail=result.error_message or "Payment failed")

    await service.update_payment_status(
        order,
        PaymentStatus.PAID,
        transaction_id=result.payment_intent_id,
        payment_method=method,
        payment_intent_id=result.payment_intent_id,
    )
    return PaymentResponse(
        success=True,
        order_id=order.id,
        payment_method=method,
        payment_status=order.payment_status,
        transaction_id=result.payment_intent_id,
        message="Payment completed",
    )


@app.post(
    "/api/payments/stripe/intent",
    response_model=PaymentIntentResponse,
    tags=["Payments"],
)
async def create_stripe_intent(
    request: PaymentIntentRequest,
    service: OrderService = Depends(get_order_service),
    payment_service: BasePaymentService = Depends(get_payment_service),
) -> PaymentIntentResponse:
    """PaymentIntent for the order total, confirmed client-side with Stripe.js."""
    order = await service.get_order(request.order_id)

    if order.payment_status == PaymentStatus.PAID:
        raise HTTPException(status_code=409, detail=f"Order {order.order_number} is already paid")

    result = await payment_service.create_payment_intent(
        amount=Decimal(order.total),
        metadata={"order_id": order.id, "order_number": order.order_number},
    )
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error_message or "Could not create payment")

    await service.set_payment_intent(order, result.payment_intent_id)
    return PaymentIntentResponse(
        success=True,
        order_id=order.id,
        payment_intent_id=result.payment_intent_id,
        client_secret=result.client_secret,
    )


STRIPE_EVENT_STATUS = {
    "payment_intent.succeeded": PaymentStatus.PAID,
    "payment_intent.payment_failed": PaymentStatus.FAILED,
}


@app.post("/api/payments/stripe/webhook", tags=["Payments"])
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
    service: OrderService = Depends(get_order_service),
    payment_service: BasePaymentService = Depends(get_payment_service),
) -> dict[str, Any]:
    """Apply Stripe PaymentIntent outcomes to the matching order."""
    payload = await request.body()
    event = await payment_service.verify_webhook(payload, stripe_signature)
    if event is None:
        raise HTTPException(status_code=400, detail="Invalid webhook")

    event_type = event.get("type")
    logger.info(f"Stripe webhook received: {event_type}")

    payment_status = STRIPE_EVENT_STATUS.get(event_type)
    if payment_status is None:
        return {"received": True, "handled": False}

    intent = event.get("data", {}).get("object", {})
    order_id = (intent.get("metadata") or {}).get("order_id")
    if not order_id:
        logger.warning(f"Stripe webhook {event_type} without order_id metadata")
        return {"received": True, "handled": False}

    try:
        order = await service.get_order(int(order_id))
    except OrderNotFoundError:
        logger.warning(f"Stripe webhook for unknown order #{order_id}")
        return {"received": True, "handled": False}

    if order.payment_status != PaymentStatus.PAID:
        await service.update_payment_status(
            order,
            payment_status,
            transaction_id=intent.get("id"),
            payment_method=PaymentMethod.STRIPE,
            payment_intent_id=intent.get("id"),
        )
    return {"received": True, "handled": True}


# =============================================================================
# DASHBOARD ENDPOINTS
# =============================================================================

@app.get("/api/dashboard-data", tags=["Dashboard"])
async def dashboard_data(
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Aggregated statistics for the admin dashboard."""

    status_rows = await db.execute(
        select(Order.status, func.count(Order.id)).group_by(Order.status)
    )
    counts = {status.value: 0 for status in OrderStatus}
    for status, count in status_rows.all():
        counts[status.value] = count
    total_orders = sum(counts.values())

    today_start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    revenue_result = await db.execute(
        select(func.sum(Order.total)).where(
            Order.created_at >= today_start,
            Order.status != OrderStatus.CANCELLED,
        )
    )
    today_revenue = revenue_result.scalar() or Decimal("0")

    prep_rows = await db.execute(
        select(Order.preparation_started_at, Order.preparation_completed_at).where(
            Order.preparation_started_at.is_not(None),
            Order.preparation_completed_at.is_not(None),
        )
    )
    prep_minutes = [
        (finished - started).total_seconds() / 60 for started, finished in prep_rows.all()
    ]
    avg_preparation_minutes = (
        round(sum(prep_minutes) / len(prep_minutes), 1) if prep_minutes else None
    )

    recent_result = await db.execute(
        select(Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(10)
    )
    recent_orders = recent_result.scalars().all()

    return {
        "total_orders": total_orders,
        "status_counts": counts,
        "active_orders": total_orders - counts["completed"] - counts["cancelled"],
        "today_revenue": str(Decimal(today_revenue).quantize(Decimal("0.01"))),
        "avg_preparation_minutes": avg_preparation_minutes,
        "environment": settings.env_mode.value,
        "recent_orders": [
            {
                "id": o.id,
                "order_number": o.order_number,
                "customer_name": o.customer_name,
                "order_type": o.order_type.value,
                "total": str(o.total),
                "status": o.status.value,
                "payment_status": o.payment_status.value,
                "created_at": o.created_at.isoformat(),
            }
            for o in recent_orders
        ],
    }


# =============================================================================
# REAL-TIME ORDER UPDATES
# =============================================================================

def resolve_group(command: SubscriptionCommand) -> str:
    """Group key a subscription command refers to."""
    if command.action.endswith("_admin"):
        return ADMIN_GROUP
    if command.action.endswith("_customer"):
        if command.customer_id is None:
            raise ValueError("customer_id is required")
        return customer_group(command.customer_id)
    if command.order_number is None:
        raise ValueError("order_number is required")
    return validate_group_key(order_group(command.order_number))


@app.websocket("/ws/orders")
async def orders_websocket(
    websocket: WebSocket,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Real-time order updates.

    Clients send ``{"action": "join_order", "order_number": "HS..."}`` and the
    like; every accepted command is acknowledged with
    ``{"event": "joined" | "left", "group": ...}``. Memberships end with the
    connection.
    """
    connection_id = await dispatcher.transport.connect(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                command = SubscriptionCommand.model_validate(json.loads(raw))
                group = resolve_group(command)
            except ValueError as e:
                await websocket.send_json({"event": "error", "detail": str(e)})
                continue

            if command.action.startswith("join"):
                dispatcher.join(connection_id, group)
                await websocket.send_json({"event": "joined", "group": group})
            else:
                dispatcher.leave(connection_id, group)
                await websocket.send_json({"event": "left", "group": group})
    except WebSocketDisconnect:
        pass
    finally:
        await dispatcher.disconnect(connection_id)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(OrderNotFoundError)
async def order_not_found_handler(request: Request, exc: OrderNotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"success": False, "error": "Order Not Found", "detail": str(exc)},
    )


@app.exception_handler(TransitionError)
async def transition_error_handler(request: Request, exc: TransitionError) -> JSONResponse:
    logger.info(f"Transition rejected: {exc}")
    return JSONResponse(
        status_code=409,
        content={
            "success": False,
            "error": type(exc).__name__,
            "detail": str(exc),
            "current_status": exc.current_status.value,
            "requested_status": exc.requested_status.value,
        },
    )


@app.exception_handler(ConcurrentModificationError)
async def concurrent_modification_handler(request: Request, exc: ConcurrentModificationError) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={"success": False, "error": "ConcurrentModificationError", "detail": str(exc)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "hidasushi.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
