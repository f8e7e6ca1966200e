"""
Shared error handling for the Inventory Access Service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorDetail(BaseModel):
    """Error body inside the failure envelope."""

    message: str
    code: int
    type: str
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """Standard error response format."""

    success: bool = False
    error: ErrorDetail


class InventoryException(Exception):
    """Base exception for the Inventory Access Service."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, include_details: bool = False) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            error=ErrorDetail(
                message=self.message,
                code=self.status_code,
                type=self.code,
                details=self.details if include_details and self.details else None
            )
        )


class ValidationError(InventoryException):
    """Caller input violates a field constraint."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class DuplicateKeyError(InventoryException):
    """Unique constraint violation (product SKU)."""

    status_code = 400

    def __init__(self, message: str = "Product SKU already exists", details: Optional[Dict[str, Any]] = None):
        super().__init__("DUPLICATE_KEY", message, details)


class NotFoundError(InventoryException):
    """Requested record is absent. Raised by the HTTP boundary only."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class QueryError(InventoryException):
    """Relational operation failed."""

    def __init__(self, message: str, sqlstate: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.sqlstate = sqlstate
        super().__init__("QUERY_ERROR", message, details)


class StoreConnectionError(InventoryException):
    """Backing store unreachable after all connection attempts."""

    def __init__(self, store: str, attempts: int, cause: Optional[BaseException] = None):
        self.store = store
        self.attempts = attempts
        self.cause = cause
        message = f"{store} connection failed after {attempts} attempts"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(
            "CONNECTION_ERROR",
            message,
            {"store": store, "attempts": attempts}
        )


class RateLimitError(InventoryException):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_LIMIT_ERROR", message, details)
