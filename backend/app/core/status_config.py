"""Status Configuration and Action Gating

This module defines the sales order and fulfillment status vocabularies and
which order-level actions are offered in which status.

The gating table is a local safety net, not the transition table. The
allocation procedures decide the resulting status of confirm and allocate;
this module only refuses actions it already knows are unsafe.
"""
from enum import Enum
from typing import Dict, List, Set

from app.exceptions import InvalidStateError


# =============================================================================
# Sales Order Status
# =============================================================================

class SalesOrderStatus(str, Enum):
    """Valid status values for Sales Orders"""
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    REQUIRES_ITEMS = "requires_items"
    AWAITING_STOCK = "awaiting_stock"
    RESERVED = "reserved"
    PICKING = "picking"
    PACKED = "packed"
    PARTIALLY_SHIPPED = "partially_shipped"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: Set[str] = {
    SalesOrderStatus.COMPLETED,
    SalesOrderStatus.CANCELLED,
}

# Confirmed but nothing handed to the warehouse yet
PRE_ALLOCATION_STATUSES: Set[str] = {
    SalesOrderStatus.CONFIRMED,
    SalesOrderStatus.REQUIRES_ITEMS,
    SalesOrderStatus.AWAITING_STOCK,
}


# =============================================================================
# Fulfillment Status
# =============================================================================

class FulfillmentStatus(str, Enum):
    """Valid status values for Fulfillments (independent of the order)"""
    DRAFT = "draft"
    PICKING = "picking"
    PACKING = "packing"
    PACKED = "packed"
    SHIPPED = "shipped"
    CANCELLED = "cancelled"


# Quantity in these fulfillments counts as "in fulfillment" on the line
OPEN_FULFILLMENT_STATUSES: Set[str] = {
    FulfillmentStatus.DRAFT,
    FulfillmentStatus.PICKING,
    FulfillmentStatus.PACKING,
    FulfillmentStatus.PACKED,
}

FULFILLMENT_ACTION_STATES: Dict[str, Set[str]] = {
    "ship": {
        FulfillmentStatus.DRAFT,
        FulfillmentStatus.PICKING,
        FulfillmentStatus.PACKING,
        FulfillmentStatus.PACKED,
    },
    "cancel": {
        FulfillmentStatus.DRAFT,
        FulfillmentStatus.PICKING,
        FulfillmentStatus.PACKING,
        FulfillmentStatus.PACKED,
    },
    "revert_shipment": {
        FulfillmentStatus.SHIPPED,
    },
}


# =============================================================================
# Order Actions
# =============================================================================

class OrderAction(str, Enum):
    """Mutating actions offered on the order detail"""
    CONFIRM = "confirm"
    REVERT_TO_DRAFT = "revert_to_draft"
    CANCEL = "cancel"
    ALLOCATE = "allocate"
    FULFILL = "fulfill"
    ALLOCATE_LINE = "allocate_line"
    UNALLOCATE_LINE = "unallocate_line"
    EDIT_LINES = "edit_lines"
    ADD_LINE = "add_line"
    DELETE_LINE = "delete_line"


_LINE_ALLOCATION_STATES: Set[str] = {
    s.value for s in SalesOrderStatus
} - {SalesOrderStatus.DRAFT.value} - {s.value for s in TERMINAL_STATUSES}

# action -> statuses the action is offered in
ACTION_ALLOWED_STATES: Dict[str, Set[str]] = {
    OrderAction.CONFIRM: {
        SalesOrderStatus.DRAFT,
    },
    # Also needs: nothing allocated, no fulfillments
    OrderAction.REVERT_TO_DRAFT: set(PRE_ALLOCATION_STATUSES),
    # Also needs: nothing allocated, no fulfillments
    OrderAction.CANCEL: {SalesOrderStatus.DRAFT} | PRE_ALLOCATION_STATUSES,
    OrderAction.ALLOCATE: set(PRE_ALLOCATION_STATUSES),
    OrderAction.FULFILL: {
        SalesOrderStatus.RESERVED,
        SalesOrderStatus.AWAITING_STOCK,
        SalesOrderStatus.PARTIALLY_SHIPPED,
        SalesOrderStatus.PICKING,
        SalesOrderStatus.CONFIRMED,
        SalesOrderStatus.REQUIRES_ITEMS,
    },
    OrderAction.ALLOCATE_LINE: _LINE_ALLOCATION_STATES,
    OrderAction.UNALLOCATE_LINE: _LINE_ALLOCATION_STATES,
    # Quantity and price edits; line guards still apply
    OrderAction.EDIT_LINES: {SalesOrderStatus.DRAFT} | _LINE_ALLOCATION_STATES,
    OrderAction.ADD_LINE: {SalesOrderStatus.DRAFT},
    OrderAction.DELETE_LINE: {SalesOrderStatus.DRAFT},
}


def _value(status) -> str:
    return status.value if isinstance(status, Enum) else str(status)


def _allowed(action) -> Set[str]:
    for key, states in ACTION_ALLOWED_STATES.items():
        if _value(key) == _value(action):
            return {_value(s) for s in states}
    return set()


def get_allowed_states(action: str) -> List[str]:
    """Statuses in which an action is offered, sorted for stable output"""
    return sorted(_allowed(action))


def is_action_allowed(current_status: str, action: str) -> bool:
    """Check if an action is offered for the current order status"""
    return _value(current_status) in _allowed(action)


def get_available_actions(current_status: str) -> List[str]:
    """Actions offered for a status, before any quantity guard"""
    return [
        action.value for action in OrderAction
        if is_action_allowed(current_status, action)
    ]


def is_terminal(current_status: str) -> bool:
    return _value(current_status) in {_value(s) for s in TERMINAL_STATUSES}


def validate_action(current_status: str, action: str, message: str = None) -> None:
    """Raise InvalidStateError if the action is not offered in this status"""
    if is_action_allowed(current_status, action):
        return
    action_name = _value(action)
    raise InvalidStateError(
        message or f"Cannot {action_name.replace('_', ' ')} an order in status '{_value(current_status)}'",
        current_state=_value(current_status),
        allowed_states=get_allowed_states(action),
        details={"action": action_name},
    )


def is_fulfillment_action_allowed(current_status: str, action: str) -> bool:
    states = FULFILLMENT_ACTION_STATES.get(_value(action), set())
    return _value(current_status) in {_value(s) for s in states}


# =============================================================================
# Status Severity (tag colours)
# =============================================================================

_SEVERITY: Dict[str, str] = {
    "shipped": "success",
    "completed": "success",
    "received": "success",
    "active": "success",
    "partially_shipped": "success",
    "placed": "success",
    "po_received": "success",
    "purchase": "success",
    "new": "info",
    "confirmed": "primary",
    "picking": "primary",
    "packed": "primary",
    "reserved": "warn",
    "requires_items": "warn",
    "clearance": "warn",
    "adjustment": "warn",
    "awaiting_stock": "warn",
    "draft": "secondary",
    "inactive": "secondary",
    "cancelled": "danger",
    "archived": "danger",
    "sale": "danger",
}


def get_status_severity(status) -> str:
    """Tag severity for a status; unknown or empty statuses are 'info'"""
    if not status:
        return "info"
    return _SEVERITY.get(_value(status).lower(), "info")
