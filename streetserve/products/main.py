from fastapi import FastAPI, Depends, HTTPException, status, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime
from typing import Optional

from streetserve.shared.utils import (
    settings, SuccessResponse, HealthResponse, NotFoundException, ForbiddenException,
    require_role
)
from streetserve.shared.logging_config import setup_logging, RequestLoggingMiddleware
from streetserve.shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter
from streetserve.shared.store import create_store, MongoStore, ACTIVE

from streetserve.orders.inventory import InventoryLedger
from streetserve.products.schemas import (
    ProductCreate, ProductUpdate, ProductResponse, ProductListResponse, StockAdjust
)
from streetserve.products.models import ProductDB

# Setup Logging
logger = setup_logging("products-service", settings.LOG_LEVEL)

app = FastAPI(title="Products Service")

# Security Setup
setup_rate_limiting(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name="products-service")

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.store = None

@app.on_event("startup")
async def startup_store():
    if app.store is None:
        app.store = create_store()
        if isinstance(app.store, MongoStore):
            await app.store.ensure_indexes()

@app.on_event("shutdown")
async def shutdown_store():
    await app.store.close()

# --- Dependencies ---
vendor_only = require_role("vendor")

async def owned_product(product_id: str, user: dict) -> dict:
    product = await app.store.get_product(product_id)
    if not product or not product.get("is_active", True):
        raise NotFoundException("Product not found")
    if product["vendor_id"] != user["sub"]:
        raise ForbiddenException("Not authorized to modify this product")
    return product

# --- Endpoints ---

@app.get("/products", response_model=SuccessResponse[ProductListResponse])
@limiter.limit("60/minute")
async def list_products(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: Optional[str] = None,
    vendor_id: Optional[str] = None,
    search: Optional[str] = None
):
    filters = {"is_active": ACTIVE}
    if category:
        filters["category"] = category
    if vendor_id:
        filters["vendor_id"] = vendor_id

    skip = (page - 1) * limit
    docs, total = await app.store.find_products(filters, search=search, skip=skip, limit=limit)
    return SuccessResponse(data=ProductListResponse(
        products=[ProductResponse(**doc) for doc in docs],
        total=total,
        page=page,
        limit=limit
    ))

@app.get("/products/{product_id}", response_model=SuccessResponse[ProductResponse])
@limiter.limit("60/minute")
async def get_product(product_id: str, request: Request):
    product = await app.store.get_product(product_id)
    if not product or not product.get("is_active", True):
        raise NotFoundException("Product not found")
    return SuccessResponse(data=ProductResponse(**product))

@app.post("/products", response_model=SuccessResponse[ProductResponse])
@limiter.limit("60/minute")
async def create_product(product: ProductCreate, request: Request, user: dict = Depends(vendor_only)):
    request.state.user_id = user["sub"]
    product_db = ProductDB(
        vendor_id=user["sub"],
        vendor_name=user.get("name"),
        **product.dict()
    )
    created = await app.store.insert_product(product_db.to_document())
    logger.info("Product created", extra={"product_id": created["id"], "vendor_id": user["sub"]})
    return SuccessResponse(data=ProductResponse(**created), message="Product created successfully")

@app.put("/products/{product_id}", response_model=SuccessResponse[ProductResponse])
async def update_product(product_id: str, product_update: ProductUpdate, user: dict = Depends(vendor_only)):
    await owned_product(product_id, user)

    update_data = {k: v for k, v in product_update.dict().items() if v is not None}
    if "price" in update_data:
        update_data["price"] = float(update_data["price"])

    updated = await app.store.get_product(product_id)
    if update_data:
        update_data["updated_at"] = datetime.utcnow()
        updated = await app.store.update_product(product_id, update_data)
    return SuccessResponse(data=ProductResponse(**updated), message="Product updated successfully")

@app.post("/products/{product_id}/stock", response_model=SuccessResponse[ProductResponse])
async def restock_product(product_id: str, body: StockAdjust, user: dict = Depends(vendor_only)):
    await owned_product(product_id, user)
    product = await InventoryLedger(app.store).restock(product_id, body.quantity)
    return SuccessResponse(data=ProductResponse(**product), message=f"Added {body.quantity} to stock")

@app.delete("/products/{product_id}", response_model=SuccessResponse[dict])
async def delete_product(product_id: str, user: dict = Depends(vendor_only)):
    await owned_product(product_id, user)
    # soft delete, orders keep pointing at the product
    await app.store.update_product(product_id, {"is_active": False, "updated_at": datetime.utcnow()})
    return SuccessResponse(data={"id": product_id}, message="Product deleted successfully")

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
            detail=f"Service Unhealthy: DB={db_status}"
        )

    return HealthResponse(
        service="products-service",
        status="healthy",
        timestamp=datetime.utcnow(),
        version="1.0.0",
        database=db_status,
    )
