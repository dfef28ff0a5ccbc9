from fastapi import FastAPI, Depends, HTTPException, status, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from datetime import datetime
import time

from streetserve.shared.utils import (
    settings, SuccessResponse, HealthResponse, PaymentCreationError, PaymentVerificationError,
    require_role
)
from streetserve.shared.logging_config import setup_logging, RequestLoggingMiddleware
from streetserve.shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter
from streetserve.shared.store import create_store, MongoStore

from streetserve.orders.models import OrderStatus
from streetserve.payments.gateway import GatewayError, GatewayOrder, get_gateway
from streetserve.payments.schemas import (
    CreateGatewayOrderRequest, VerifyPaymentRequest, VerifyPaymentResponse,
    PaymentCancelledRequest, PaymentDetails
)
from streetserve.payments.verification import PaymentVerifier

# Setup Logging
logger = setup_logging("payments-service", settings.LOG_LEVEL)

app = FastAPI(title="Payments Service")

# Security Setup
setup_rate_limiting(app)
app.add_middleware(SecurityHeadersMiddleware, extra_headers={"Cache-Control": "no-store"})

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name="payments-service")

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

def verifier() -> PaymentVerifier:
    return PaymentVerifier(app.store, app.gateway, settings.RAZORPAY_KEY_SECRET)

# --- Endpoints ---

@app.post("/api/create-razorpay-order", response_model=GatewayOrder)
@limiter.limit("10/minute")
async def create_razorpay_order(body: CreateGatewayOrderRequest, request: Request, user: dict = Depends(buyer_only)):
    request.state.user_id = user["sub"]
    try:
        return await app.gateway.create_order(
            body.amount, body.currency, f"receipt_{int(time.time() * 1000)}"
        )
    except GatewayError as e:
        raise PaymentCreationError(str(e)) from e

@app.post("/api/verify-payment", response_model=VerifyPaymentResponse)
@limiter.limit("10/minute")
async def verify_payment(body: VerifyPaymentRequest, request: Request, user: dict = Depends(buyer_only)):
    request.state.user_id = user["sub"]
    try:
        orders = await verifier().verify(body.order_id, body.payment_id, body.signature, user["sub"])
    except PaymentVerificationError as e:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=VerifyPaymentResponse(status="failure", message=e.message).dict(),
        )
    return VerifyPaymentResponse(
        status="success",
        message="Payment verified successfully",
        order_ids=[o["id"] for o in orders if o["status"] != OrderStatus.CANCELLED],
        refund_order_ids=[o["id"] for o in orders if o["status"] == OrderStatus.CANCELLED],
    )

@app.post("/api/payment-cancelled")
async def payment_cancelled(body: PaymentCancelledRequest, request: Request, user: dict = Depends(buyer_only)):
    request.state.user_id = user["sub"]
    await verifier().cancel(body.order_id, user["sub"], body.reason)

@app.get("/payments/orders/{gateway_order_id}", response_model=SuccessResponse[PaymentDetails])
@limiter.limit("30/minute")
async def get_payment_details(gateway_order_id: str, request: Request, user: dict = Depends(buyer_only)):
    details = await verifier().details(gateway_order_id, user["sub"])
    return SuccessResponse(data=details)

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
        service="payments-service",
        status="healthy",
        timestamp=datetime.utcnow(),
        version="1.0.0",
        database=db_status,
        dependencies={"razorpay": settings.RAZORPAY_API_URL}
    )
