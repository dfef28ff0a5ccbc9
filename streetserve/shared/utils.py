from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Generic, TypeVar, Any
from fastapi import HTTPException, status, Header, Depends
from motor.motor_asyncio import AsyncIOMotorClient
from pydantic import BaseModel
from pydantic_settings import BaseSettings
from jose import JWTError, jwt
import uuid

# --- Configuration ---
class Settings(BaseSettings):
    MONGO_URL: str = "mongodb://mongodb:27017/?replicaSet=rs0"
    MONGO_DB: str = "streetserve"
    STORE_BACKEND: str = "mongo"  # mongo, memory
    SECRET_KEY: str = "secret"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15

    RAZORPAY_KEY_ID: str = "rzp_test_key"
    RAZORPAY_KEY_SECRET: str = "rzp_test_secret"
    RAZORPAY_API_URL: str = "https://api.razorpay.com/v1"
    PAYMENT_CURRENCY: str = "INR"
    GATEWAY_TIMEOUT_SECONDS: float = 10.0

    RATE_LIMIT_ENABLED: bool = True
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

settings = Settings()

# --- Database ---
def get_db_client(url: str = settings.MONGO_URL) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(url)

# --- Authentication ---
def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    if "jti" not in to_encode:
        to_encode.update({"jti": str(uuid.uuid4())})

    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt

def verify_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise UnauthorizedException("Could not validate credentials")
    if "sub" not in payload:
        raise UnauthorizedException("Token has no subject")
    return payload

# --- Money ---
def to_decimal(value: Any) -> Decimal:
    # Mongo hands prices back as floats; go through str to keep the printed value
    return Decimal(str(value))

def to_minor_units(amount: Decimal) -> int:
    """Convert a rupee amount to paise, the unit the gateway bills in."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

# --- Response Models ---
T = TypeVar("T")

class SuccessResponse(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None

class HealthResponse(BaseModel):
    service: str
    status: str
    timestamp: datetime
    version: str
    database: Optional[str] = None
    dependencies: Optional[dict] = None


# --- Exceptions ---
class AppException(HTTPException):
    def __init__(
        self,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        detail: Any = "An error occurred",
        headers: Optional[dict] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)

class NotFoundException(AppException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class UnauthorizedException(AppException):
    def __init__(self, detail: str = "Unauthorized"):
         super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"}
        )

class ForbiddenException(AppException):
    def __init__(self, detail: str = "Forbidden"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

class WorkflowError(AppException):
    """Base for checkout/payment/order errors.

    The HTTP detail is a dict with a stable ``error`` code so clients can tell a
    stock problem from a payment problem without parsing messages.
    """
    code = "workflow_error"
    status_code_default = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **context):
        self.message = message
        self.context = context
        detail = {"error": self.code, "message": message}
        detail.update(context)
        super().__init__(status_code=self.status_code_default, detail=detail)

    def __str__(self):
        return self.message

class EmptyCartError(WorkflowError):
    code = "empty_cart"

    def __init__(self):
        super().__init__("Cart is empty")

class InvalidQuantityError(WorkflowError):
    code = "invalid_quantity"

    def __init__(self, product_id: str, quantity: int):
        super().__init__(
            f"Quantity for product {product_id} must be positive, got {quantity}",
            product_id=product_id,
            quantity=quantity,
        )

class ProductNotFoundError(WorkflowError):
    code = "product_not_found"
    status_code_default = status.HTTP_404_NOT_FOUND

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product {product_id} no longer exists", product_id=product_id)

class InsufficientStockError(WorkflowError):
    code = "insufficient_stock"
    status_code_default = status.HTTP_409_CONFLICT

    def __init__(self, product_id: str, available: int, title: Optional[str] = None):
        self.product_id = product_id
        self.available = available
        label = title or product_id
        super().__init__(
            f"Insufficient stock for {label}. Available: {available}",
            product_id=product_id,
            available=available,
        )

class PaymentCreationError(WorkflowError):
    code = "payment_creation_failed"
    status_code_default = status.HTTP_502_BAD_GATEWAY

    def __init__(self, reason: str):
        super().__init__(f"Failed to create payment order: {reason}")

class PaymentVerificationError(WorkflowError):
    code = "payment_verification_failed"

    def __init__(self, gateway_order_id: str, reason: str = "Invalid signature"):
        self.gateway_order_id = gateway_order_id
        super().__init__(reason, gateway_order_id=gateway_order_id)

class PaymentCancelledError(WorkflowError):
    code = "payment_cancelled"
    status_code_default = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(self, gateway_order_id: str):
        self.gateway_order_id = gateway_order_id
        super().__init__(
            "Payment cancelled by user",
            gateway_order_id=gateway_order_id,
            retryable=True,
        )

class InvalidStateTransitionError(WorkflowError):
    code = "invalid_state_transition"
    status_code_default = status.HTTP_409_CONFLICT

    def __init__(self, current: str, target: str, actor: str):
        super().__init__(
            f"{actor} cannot move an order from {current} to {target}",
            current=current,
            target=target,
        )

class ConcurrentUpdateError(WorkflowError):
    code = "concurrent_update"
    status_code_default = status.HTTP_409_CONFLICT

    def __init__(self, order_id: str):
        super().__init__(
            f"Order {order_id} was modified by another request, reload and retry",
            order_id=order_id,
        )

# --- Decorators/Dependencies ---
async def require_auth(authorization: Optional[str] = Header(None)) -> dict:
    scheme, _, param = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not param:
        raise UnauthorizedException(detail="Invalid authentication credentials")
    return verify_token(param)

def require_role(*roles: str):
    async def checker(user: dict = Depends(require_auth)) -> dict:
        if user.get("role") not in roles:
            raise ForbiddenException(f"Requires role: {', '.join(roles)}")
        return user
    return checker
