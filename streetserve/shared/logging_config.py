import logging
import json
import sys
import time
import uuid
import traceback
from datetime import datetime
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

# Sensitive headers to mask
SENSITIVE_HEADERS = {"authorization", "cookie", "x-api-key", "x-razorpay-signature"}

# Attributes every LogRecord has; anything else came in through `extra=`
RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

# Paths polled by orchestrators, logged at DEBUG
QUIET_PATHS = {"/health"}

class JSONFormatter(logging.Formatter):
    """One JSON object per line. Structured context is passed with `extra=`."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.utcnow().isoformat(),
            "service": self.service_name,
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "func": record.funcName,
            "line": record.lineno,
        }
        log_obj.update({k: v for k, v in vars(record).items() if k not in RESERVED_ATTRS})

        if record.exc_info:
            log_obj["exception"] = "".join(traceback.format_exception(*record.exc_info))

        # Decimal amounts, datetimes and ObjectIds end up as strings
        return json.dumps(log_obj, default=str)

def setup_logging(service_name: str, level: str = "INFO"):
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter(service_name))
    root.addHandler(handler)

    # driver and HTTP client chatter
    for noisy in ("pymongo", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logging.getLogger(service_name)

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, service_name: str):
        super().__init__(app)
        self.logger = logging.getLogger(service_name)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Correlation ID, echoed back to the caller
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            self.log_request(request, 500, start, request_id, exc_info=sys.exc_info())
            raise

        self.log_request(request, response.status_code, start, request_id)
        response.headers["X-Request-ID"] = request_id
        return response

    def log_request(self, request: Request, status_code: int, start: float, request_id: str, exc_info=None):
        extra = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": status_code,
            "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            "client_ip": request.client.host if request.client else None,
            "headers": {
                k: "***" if k.lower() in SENSITIVE_HEADERS else v for k, v in request.headers.items()
            },
            # endpoints set this once the bearer token is verified
            "user_id": getattr(request.state, "user_id", None),
        }

        if status_code >= 500:
            self.logger.error("Request Failed", extra=extra, exc_info=exc_info)
        elif status_code >= 400:
            self.logger.warning("Request Error", extra=extra)
        elif request.url.path in QUIET_PATHS:
            self.logger.debug("Request Processed", extra=extra)
        else:
            self.logger.info("Request Processed", extra=extra)
