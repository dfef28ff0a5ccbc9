from fastapi import FastAPI, Depends, HTTPException, status, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime
from typing import Optional, List

from streetserve.shared.utils import (
    settings, SuccessResponse, HealthResponse, ForbiddenException, NotFoundException,
    require_role, require_auth
)
from streetserve.shared.logging_config import setup_logging, RequestLoggingMiddleware
from streetserve.shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter
from streetserve.shared.store import create_store, MongoStore

from streetserve.orders.checkout import CheckoutService, build_cart
from streetserve.orders.inventory import InventoryLedger
from streetserve.orders.lifecycle import OrderLifecycle
from streetserve.orders.models import BuyerContact, OrderStatus
from streetserve.orders.schemas import (
    CheckoutRequest, CheckoutResponse, CheckoutPayment, OrderResponse,
    OrderStatusUpdate, StatusUpdateResponse, CancelOrdersRequest, CancellationResponse
)
from streetserve.orders.state_machine import Actor
from streetserve.payments.gateway import get_gateway

# Setup Logging
logger = setup_logging("orders-service", settings.LOG_LEVEL)

app = FastAPI(title="Orders Service")

# Security Setup
setup_rate_limiting(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name="orders-service")

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.store = None
app.gateway = None

@app.on_event("startup")
async def startup_store():
    if app.store is None:
        app.store = create_store()
        if isinstance(app.store, MongoStore):
            await app.store.ensure_indexes()
    if app.gateway is None:
        app.gateway = get_gateway()

@app.on_event("shutdown")
async def shutdown_store():
    await app.store.close()

# --- Dependencies ---
buyer_only = require_role("buyer")
vendor_only = require_role("vendor")

def lifecycle() -> OrderLifecycle:
    return OrderLifecycle(app.store, InventoryLedger(app.store))

# --- Helper ---
def to_response(order: dict) -> OrderResponse:
    return OrderResponse(**order)

# --- Endpoints ---

@app.post("/checkout", response_model=SuccessResponse[CheckoutResponse])
@limiter.limit("20/minute")
async def checkout(body: CheckoutRequest, request: Request, user: dict = Depends(buyer_only)):
    request.state.user_id = user["sub"]
    cart = await build_cart(app.store, [(line.product_id, line.quantity) for line in body.items])

    service = CheckoutService(app.store, app.gateway, settings.PAYMENT_CURRENCY)
    result = await service.checkout(
        cart,
        buyer_id=user["sub"],
        buyer_contact=BuyerContact(
            name=user.get("name"),
            email=user.get("email"),
            phone=body.shipping_info.phone,
        ),
        shipping_info=body.shipping_info,
        payment_method=body.payment_method,
    )

    payment = None
    if result.payment:
        payment = CheckoutPayment(
            gateway_order_id=result.payment.id,
            key_id=app.gateway.key_id,
            amount=result.payment.amount,
            currency=result.payment.currency,
        )
    return SuccessResponse(data=CheckoutResponse(
        orders=[to_response(o) for o in result.orders],
        total_amount=result.total_amount,
        vendor_subtotals=result.vendor_subtotals,
        payment=payment,
    ), message="Order placed successfully")

@app.get("/orders", response_model=SuccessResponse[List[OrderResponse]])
@limiter.limit("60/minute")
async def list_orders(
    request: Request,
    user: dict = Depends(buyer_only),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100)
):
    skip = (page - 1) * limit
    orders = await app.store.find_orders({"buyer_id": user["sub"]}, skip=skip, limit=limit)
    return SuccessResponse(data=[to_response(o) for o in orders])

@app.get("/orders/{order_id}", response_model=SuccessResponse[OrderResponse])
async def get_order(order_id: str, user: dict = Depends(require_auth)):
    order = await app.store.get_order(order_id)
    if not order:
        raise NotFoundException("Order not found")
    if user["sub"] not in (order["buyer_id"], order["vendor_id"]):
        raise ForbiddenException("Not authorized to view this order")
    return SuccessResponse(data=to_response(order))

@app.put("/orders/{order_id}/cancel", response_model=SuccessResponse[StatusUpdateResponse])
async def cancel_order(order_id: str, request: Request, user: dict = Depends(buyer_only)):
    request.state.user_id = user["sub"]
    result = await lifecycle().transition(order_id, user["sub"], Actor.BUYER, OrderStatus.CANCELLED)
    message = "Order cancelled"
    if not result.restoration.complete:
        message = "Order cancelled; some stock could not be restored"
    return SuccessResponse(data=StatusUpdateResponse(
        order=to_response(result.order), restoration=result.restoration
    ), message=message)

@app.post("/orders/cancel", response_model=SuccessResponse[CancellationResponse])
async def cancel_orders(body: CancelOrdersRequest, request: Request, user: dict = Depends(buyer_only)):
    request.state.user_id = user["sub"]
    result = await lifecycle().cancel_many(body.order_ids, user["sub"], Actor.BUYER)
    return SuccessResponse(data=CancellationResponse(
        orders=[to_response(o) for o in result.orders],
        rejected=result.rejected,
        restoration=result.restoration,
    ), message=f"Cancelled {len(result.orders)} of {len(set(body.order_ids))} orders")

# Vendor
@app.get("/vendor/orders", response_model=SuccessResponse[List[OrderResponse]])
@limiter.limit("60/minute")
async def list_vendor_orders(
    request: Request,
    user: dict = Depends(vendor_only),
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100)
):
    query = {"vendor_id": user["sub"]}
    if status_filter:
        query["status"] = status_filter.value
    skip = (page - 1) * limit
    orders = await app.store.find_orders(query, skip=skip, limit=limit)
    return SuccessResponse(data=[to_response(o) for o in orders])

@app.put("/vendor/orders/{order_id}/status", response_model=SuccessResponse[StatusUpdateResponse])
async def update_order_status(
    order_id: str, status_update: OrderStatusUpdate, request: Request, user: dict = Depends(vendor_only)
):
    request.state.user_id = user["sub"]
    result = await lifecycle().transition(
        order_id, user["sub"], Actor.VENDOR, status_update.status, status_update.version
    )
    return SuccessResponse(data=StatusUpdateResponse(
        order=to_response(result.order), restoration=result.restoration
    ), message=f"Order status updated to {result.order['status']}")

@app.get("/health", response_model=HealthResponse)
async def health_check():
    try:
        await app.store.ping()
        db_status = "connected"
    except Exception:
        logger.exception("Database ping failed")
        db_status = "disconnected"

    if db_status != "connected":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service Unhealthy"
        )

    return HealthResponse(
        service="orders-service",
        status="healthy",
        timestamp=datetime.utcnow(),
        version="1.0.0",
        database=db_status,
    )
