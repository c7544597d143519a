# storefront/errors.py
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)


class StoreError(Exception):
    status_code = 500
    message = "Server error"

    def __init__(self, message: Optional[str] = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message}


class ValidationError(StoreError):
    status_code = 400
    message = "Validation failed"

    def __init__(self, field: str, message: str):
        self.errors = [{"field": field, "message": message}]
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"errors": self.errors}


class Unauthorized(StoreError):
    status_code = 401
    message = "Authentication required"


class Forbidden(StoreError):
    status_code = 403
    message = "Access denied"


class NotFound(StoreError):
    status_code = 404
    message = "Not found"


class ProductNotFound(NotFound):
    message = "Some products not found"


class Conflict(StoreError):
    status_code = 400
    message = "Request conflicts with current state"


class InsufficientStock(Conflict):
    def __init__(self, product_name: str):
        self.product_name = product_name
        super().__init__(f"Insufficient stock for product: {product_name}")


class SignatureVerificationError(StoreError):
    status_code = 400
    message = "Invalid webhook signature"


class GatewayError(StoreError):
    """Payment gateway unreachable or returned an error; detail is logged only."""
    status_code = 500


# ---------------------------
# Request boundary
# ---------------------------
def _field_name(loc) -> str:
    # drop the "body"/"query"/"path" prefix FastAPI puts in front
    parts = [str(p) for p in loc]
    if len(parts) > 1 and parts[0] in ("body", "query", "path", "header"):
        parts = parts[1:]
    return ".".join(parts)


def validation_errors(exc: RequestValidationError) -> List[Dict[str, str]]:
    return [{"field": _field_name(e.get("loc", ())), "message": e.get("msg", "invalid")} for e in exc.errors()]


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc!r}")
            return JSONResponse(status_code=exc.status_code, content={"message": "Server error"})
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"errors": validation_errors(exc)})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content={"message": "Server error"})
