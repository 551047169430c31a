"""
Stockroom WMS - Custom Exception Hierarchy

Provides structured, typed exceptions with error codes for consistent
error handling across the application.

Usage:
    from app.exceptions import NotFoundError, InvalidStateError

    # In a service
    raise NotFoundError("Sales order", order_id)

    # With allowed states
    raise InvalidStateError(
        "Order cannot be cancelled",
        current_state=order.status,
        allowed_states=["draft", "confirmed"],
    )
"""
from typing import Any, Dict, Optional


class StockroomException(Exception):
    """
    Base exception for all Stockroom errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., "NOT_FOUND", "VALIDATION_ERROR")
        status_code: HTTP status code to return
        details: Additional context for debugging
    """

    error_code: str = "STOCKROOM_ERROR"
    status_code: int = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# ===================
# 400 Bad Request Errors
# ===================


class ValidationError(StockroomException):
    """Raised when input validation fails before any procedure is called."""

    error_code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(
        self,
        message: str = "Validation failed",
        *,
        field: Optional[str] = None,
        value: Any = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details=details)


class InvalidStateError(StockroomException):
    """Raised when an action is not available for the order's current status."""

    error_code = "INVALID_STATE"
    status_code = 400

    def __init__(
        self,
        message: str = "Operation not allowed in current state",
        *,
        current_state: Optional[str] = None,
        allowed_states: Optional[list] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if current_state:
            details["current_state"] = current_state
        if allowed_states:
            details["allowed_states"] = allowed_states
        super().__init__(message, details=details)


# ===================
# 401 Unauthorized Errors
# ===================


class AuthenticationError(StockroomException):
    """Raised when a caller fails the shared-secret check."""

    error_code = "AUTHENTICATION_ERROR"
    status_code = 401

    def __init__(
        self,
        message: str = "Authentication required",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)


# ===================
# 404 Not Found Errors
# ===================


class NotFoundError(StockroomException):
    """Raised when a resource is not found."""

    error_code = "NOT_FOUND"
    status_code = 404

    def __init__(
        self,
        resource: str = "Resource",
        resource_id: Any = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["resource"] = resource
        if resource_id is not None:
            details["resource_id"] = str(resource_id)
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(message, details=details)


# ===================
# 409 Conflict Errors
# ===================


class ConflictError(StockroomException):
    """Raised when there's a resource conflict."""

    error_code = "CONFLICT"
    status_code = 409

    def __init__(
        self,
        message: str = "Resource conflict",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)


class ActionInProgressError(ConflictError):
    """Raised when a mutating action is already running for the same order."""

    error_code = "ACTION_IN_PROGRESS"

    def __init__(
        self,
        order_id: Any,
        *,
        action: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["order_id"] = str(order_id)
        if action:
            details["action"] = action
        super().__init__(
            f"Another action is still processing for order {order_id}",
            details=details,
        )


# ===================
# 422 Unprocessable Entity Errors
# ===================


class BusinessRuleError(StockroomException):
    """Raised when a business rule is violated."""

    error_code = "BUSINESS_RULE_ERROR"
    status_code = 422

    def __init__(
        self,
        message: str = "Business rule violation",
        *,
        rule: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if rule:
            details["rule"] = rule
        super().__init__(message, details=details)


class ReconciliationError(BusinessRuleError):
    """
    Raised when line quantities do not reconcile.

    A negative outstanding quantity or progress segments that add up to more
    than the ordered quantity mean the local snapshot has drifted from the
    inventory ledger. This is reported, never clamped away.
    """

    error_code = "RECONCILIATION_ERROR"

    def __init__(
        self,
        message: str = "Line quantities do not reconcile",
        *,
        line_id: Any = None,
        anomaly: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if line_id is not None:
            details["line_id"] = str(line_id)
        if anomaly:
            details["anomaly"] = anomaly
        super().__init__(message, rule="quantity_reconciliation", details=details)


# ===================
# 502 Procedure Errors
# ===================


class ProcedureError(StockroomException):
    """
    Raised when a stored procedure rejects a call or cannot be reached.

    The message is the procedure's own reason, passed through verbatim.
    """

    error_code = "PROCEDURE_ERROR"
    status_code = 502

    def __init__(
        self,
        procedure: str,
        message: str = "Procedure call failed",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["procedure"] = procedure
        self.procedure = procedure
        super().__init__(message, details=details)


# ===================
# 500 Internal Server Errors
# ===================


class DatabaseError(StockroomException):
    """Raised when a database operation fails."""

    error_code = "DATABASE_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str = "Database operation failed",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)
