"""
Realtime merge for the sales order list.

Row-level change events arrive as

    {"eventType": "INSERT" | "UPDATE" | "DELETE", "table": ..., "new": {...}, "old": {...}}

and are merged into a SalesOrderStore with one rule: replace by id.
INSERT and UPDATE replace the whole record (new records go to the front),
DELETE removes it. There is no ordering guarantee between events, so the
last message applied wins.
"""
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from app.core.status_config import SalesOrderStatus
from app.logging_config import get_logger
from app.schemas.sales_order import SalesOrderFilters, SalesStats

logger = get_logger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"
ALL_EVENTS = "*"

SALES_ORDERS_TABLE = "sales_orders"

# Statuses counted as booked revenue
REVENUE_STATUSES = {
    SalesOrderStatus.CONFIRMED.value,
    SalesOrderStatus.REQUIRES_ITEMS.value,
    SalesOrderStatus.AWAITING_STOCK.value,
    SalesOrderStatus.RESERVED.value,
    SalesOrderStatus.PICKING.value,
    SalesOrderStatus.PACKED.value,
    SalesOrderStatus.PARTIALLY_SHIPPED.value,
    SalesOrderStatus.SHIPPED.value,
    SalesOrderStatus.COMPLETED.value,
}
FULFILLED_STATUSES = {SalesOrderStatus.SHIPPED.value, SalesOrderStatus.COMPLETED.value}
PENDING_FULFILLMENT_STATUSES = REVENUE_STATUSES - FULFILLED_STATUSES


@dataclass
class ChangeEvent:
    event_type: str
    table: str
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ChangeEvent":
        event_type = (payload.get("eventType") or payload.get("type") or "").upper()
        if event_type not in (INSERT, UPDATE, DELETE):
            raise ValueError(f"Unknown change event type: {event_type!r}")
        return cls(
            event_type=event_type,
            table=payload.get("table") or SALES_ORDERS_TABLE,
            new=payload.get("new") or payload.get("record") or None,
            old=payload.get("old") or payload.get("old_record") or None,
        )


def _created_at(record: Dict[str, Any]) -> Optional[datetime]:
    value = record.get("created_at")
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if isinstance(value, datetime) and value.tzinfo is not None:
        value = value.replace(tzinfo=None)
    return value


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.replace(tzinfo=None)
    return value


class SalesOrderStore:
    """
    In-memory list of sales order rows plus the order currently open in the
    detail view. Records are plain dicts as they come off the wire.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self.orders: List[Dict[str, Any]] = []
        self.current_order: Optional[Dict[str, Any]] = None
        self.filters = SalesOrderFilters()
        self.realtime_enabled = False
        self._subscription: Optional[str] = None

    # ------------------------------------------------------------------
    # Setters
    # ------------------------------------------------------------------

    def set_orders(self, orders: List[Dict[str, Any]]) -> None:
        with self._lock:
            self.orders = [dict(o) for o in orders]

    def set_current_order(self, order: Optional[Dict[str, Any]]) -> None:
        with self._lock:
            self.current_order = dict(order) if order else None

    def set_filters(self, filters: SalesOrderFilters) -> None:
        with self._lock:
            self.filters = filters

    def clear_filters(self) -> None:
        self.set_filters(SalesOrderFilters())

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def _index(self, order_id: str) -> int:
        for i, order in enumerate(self.orders):
            if order.get("id") == order_id:
                return i
        return -1

    def replace_order(self, record: Dict[str, Any]) -> None:
        """Upsert by id: swap the whole record, or put a new one first"""
        order_id = record.get("id")
        if not order_id:
            raise ValueError("Change record has no id")
        with self._lock:
            index = self._index(order_id)
            if index == -1:
                self.orders.insert(0, dict(record))
            else:
                self.orders[index] = dict(record)
            if self.current_order and self.current_order.get("id") == order_id:
                self.current_order = dict(record)

    add_order = replace_order

    def update_order(self, order_id: str, updates: Dict[str, Any]) -> None:
        """Merge a partial update into an existing record; unknown ids are ignored"""
        with self._lock:
            index = self._index(order_id)
            if index != -1:
                self.orders[index] = {**self.orders[index], **updates}
            if self.current_order and self.current_order.get("id") == order_id:
                self.current_order = {**self.current_order, **updates}

    def remove_order(self, order_id: str) -> None:
        with self._lock:
            self.orders = [o for o in self.orders if o.get("id") != order_id]
            if self.current_order and self.current_order.get("id") == order_id:
                self.current_order = None

    def apply_change(self, event: ChangeEvent) -> None:
        if event.table and event.table != SALES_ORDERS_TABLE:
            return
        if event.event_type in (INSERT, UPDATE):
            if not event.new:
                raise ValueError(f"{event.event_type} event without a new record")
            self.replace_order(event.new)
        elif event.event_type == DELETE:
            old_id = (event.old or {}).get("id")
            if not old_id:
                raise ValueError("DELETE event without an old id")
            self.remove_order(old_id)
        logger.debug(
            f"Applied {event.event_type} on {event.table or SALES_ORDERS_TABLE}",
            extra={"order_id": (event.new or event.old or {}).get("id")},
        )

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def filtered_orders(self, filters: Optional[SalesOrderFilters] = None) -> List[Dict[str, Any]]:
        filters = filters or self.filters
        with self._lock:
            result = list(self.orders)

        statuses = filters.statuses()
        if statuses:
            result = [o for o in result if o.get("status") in statuses]
        if filters.customer:
            result = [o for o in result if o.get("customer_id") == filters.customer]
        if filters.search:
            search = filters.search.lower()
            result = [
                o for o in result
                if search in (o.get("order_number") or "").lower()
                or search in (o.get("customer_name") or "").lower()
            ]
        date_from = _naive(filters.date_from)
        if date_from:
            result = [o for o in result if _created_at(o) and _created_at(o) >= date_from]
        date_to = _naive(filters.date_to)
        if date_to:
            result = [o for o in result if _created_at(o) and _created_at(o) <= date_to]
        return result

    def stats(self) -> SalesStats:
        with self._lock:
            orders = list(self.orders)
        return compute_stats(orders)

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def enable_realtime(self, feed: "ChangeFeed") -> None:
        if self.realtime_enabled:
            return
        self._subscription = feed.subscribe(SALES_ORDERS_TABLE, self.apply_change)
        self.realtime_enabled = True

    def disable_realtime(self, feed: "ChangeFeed") -> None:
        if not self.realtime_enabled:
            return
        feed.unsubscribe(self._subscription)
        self._subscription = None
        self.realtime_enabled = False


def compute_stats(orders: List[Dict[str, Any]]) -> SalesStats:
    def count(statuses):
        return sum(1 for o in orders if o.get("status") in statuses)

    revenue = sum(
        (Decimal(str(o.get("total_amount") or 0)) for o in orders if o.get("status") in REVENUE_STATUSES),
        Decimal("0"),
    )
    return SalesStats(
        total_orders=len(orders),
        draft_orders=count({SalesOrderStatus.DRAFT.value}),
        confirmed_orders=count({SalesOrderStatus.CONFIRMED.value}),
        fulfilled_orders=count(FULFILLED_STATUSES),
        cancelled_orders=count({SalesOrderStatus.CANCELLED.value}),
        total_revenue=revenue,
        pending_fulfillments=count(PENDING_FULFILLMENT_STATUSES),
    )


@dataclass
class _Subscription:
    table: str
    event: str
    callback: Callable[[ChangeEvent], None]


@dataclass
class ChangeFeed:
    """Fans change events out to subscribers by table and event type"""
    _subscriptions: Dict[str, _Subscription] = field(default_factory=dict)

    def subscribe(self, table: str, callback: Callable[[ChangeEvent], None], event: str = ALL_EVENTS) -> str:
        subscription_id = str(uuid.uuid4())
        self._subscriptions[subscription_id] = _Subscription(table, event.upper(), callback)
        return subscription_id

    def unsubscribe(self, subscription_id: Optional[str]) -> None:
        self._subscriptions.pop(subscription_id, None)

    def dispatch(self, event: ChangeEvent) -> int:
        """Deliver to matching subscribers; returns how many received it"""
        delivered = 0
        for subscription in list(self._subscriptions.values()):
            if subscription.table != event.table:
                continue
            if subscription.event not in (ALL_EVENTS, event.event_type):
                continue
            subscription.callback(event)
            delivered += 1
        return delivered
