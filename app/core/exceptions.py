"""
Custom Exception Hierarchy

Provides structured exceptions for consistent error handling across the application.
Every error carries a stable code so callers can tell "retry later" apart from "fix your input".
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    ALREADY_EXISTS = "ERR_1003"
    FORBIDDEN = "ERR_1005"

    # Order errors (2xxx)
    ORDER_NOT_FOUND = "ERR_2001"
    INVALID_STATE_TRANSITION = "ERR_2002"
    CONFLICTING_STATE_TRANSITION = "ERR_2003"
    RIDER_ALREADY_ASSIGNED = "ERR_2004"
    INSUFFICIENT_STOCK = "ERR_2005"
    INVALID_VOUCHER = "ERR_2006"
    ALREADY_RATED = "ERR_2007"

    # Party errors (3xxx)
    RESTAURANT_NOT_FOUND = "ERR_3001"
    RESTAURANT_NOT_APPROVED = "ERR_3002"
    RIDER_NOT_FOUND = "ERR_3003"
    RIDER_NOT_ELIGIBLE = "ERR_3004"
    PRODUCT_NOT_FOUND = "ERR_3005"

    # Wallet / settlement errors (4xxx)
    WALLET_NOT_FOUND = "ERR_4001"
    INSUFFICIENT_BALANCE = "ERR_4002"
    INVALID_AMOUNT = "ERR_4003"
    SETTLEMENT_FAILED = "ERR_4004"
    PAYOUT_NOT_FOUND = "ERR_4005"

    # Dependency errors (5xxx)
    DEPENDENCY_UNAVAILABLE = "ERR_5001"
    MAINTENANCE_MODE = "ERR_5002"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails, before any mutation"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class OrderNotFoundError(NotFoundException):
    def __init__(self, order_id: int):
        super().__init__("Order", order_id, ErrorCode.ORDER_NOT_FOUND)


class RestaurantNotFoundError(NotFoundException):
    def __init__(self, restaurant_id: int):
        super().__init__("Restaurant", restaurant_id, ErrorCode.RESTAURANT_NOT_FOUND)


class RiderNotFoundError(NotFoundException):
    def __init__(self, rider_id: int):
        super().__init__("Rider", rider_id, ErrorCode.RIDER_NOT_FOUND)


class PayoutNotFoundError(NotFoundException):
    def __init__(self, payout_id: int):
        super().__init__("Payout", payout_id, ErrorCode.PAYOUT_NOT_FOUND)


class InsufficientStockError(ValidationException):
    """Raised when an order asks for more units than a product has in stock"""

    def __init__(self, product_id: int, requested: int, available: int):
        super().__init__(
            message=f"Insufficient stock for product {product_id}",
            field="items",
            details={
                "product_id": product_id,
                "requested": requested,
                "available": available,
            },
            error_code=ErrorCode.INSUFFICIENT_STOCK,
        )


class InsufficientBalanceError(ValidationException):
    """Raised when a payout/refund would take a ledger balance below zero"""

    def __init__(self, entity_type: str, entity_id: int, balance: Any, amount: Any):
        super().__init__(
            message=f"Insufficient balance for {entity_type} {entity_id}",
            field="amount",
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "balance": str(balance),
                "amount": str(amount),
            },
            error_code=ErrorCode.INSUFFICIENT_BALANCE,
        )


class InvalidStateTransitionError(AppException):
    """Business-rule violation; the caller must re-fetch the order before retrying"""

    def __init__(
        self,
        message: str,
        order_id: int | None = None,
        current_status: str | None = None,
        requested_status: str | None = None,
        error_code: ErrorCode = ErrorCode.INVALID_STATE_TRANSITION,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=409,
            details=details
        )
        if order_id is not None:
            self.details["order_id"] = order_id
        if current_status is not None:
            self.details["current_status"] = current_status
        if requested_status is not None:
            self.details["requested_status"] = requested_status


class RiderNotEligibleError(InvalidStateTransitionError):
    """Raised when a rider may not take an order (overdue COD, blocked, busy, inactive)"""

    def __init__(self, rider_id: int, reason: str, order_id: int | None = None):
        super().__init__(
            message=f"Rider {rider_id} cannot be assigned: {reason}",
            order_id=order_id,
            error_code=ErrorCode.RIDER_NOT_ELIGIBLE,
            details={"rider_id": rider_id, "reason": reason},
        )


class ConflictingStateTransitionError(AppException):
    """Lost an optimistic-concurrency race against another writer of the same order"""

    def __init__(self, order_id: int, requested_status: str | None = None):
        super().__init__(
            message=f"Order {order_id} was modified concurrently, re-fetch and retry",
            error_code=ErrorCode.CONFLICTING_STATE_TRANSITION,
            status_code=409,
            details={"order_id": order_id}
        )
        if requested_status is not None:
            self.details["requested_status"] = requested_status


class SettlementError(AppException):
    """Any failure inside the completion settlement transaction. Safe to retry."""

    def __init__(self, order_id: int, reason: str):
        super().__init__(
            message=f"Settlement failed for order {order_id}: {reason}",
            error_code=ErrorCode.SETTLEMENT_FAILED,
            status_code=500,
            details={"order_id": order_id, "retryable": True}
        )


class DependencyError(AppException):
    """Raised when a collaborator (settings store, cache) is unavailable"""

    def __init__(
        self,
        service: str,
        message: str,
        error_code: ErrorCode = ErrorCode.DEPENDENCY_UNAVAILABLE,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details={"service": service, "retryable": True}
        )


class MaintenanceModeError(DependencyError):
    def __init__(self):
        super().__init__(
            service="platform",
            message="The platform is in maintenance mode, new orders are not accepted",
            error_code=ErrorCode.MAINTENANCE_MODE,
        )
