"""
Quantity Reconciliation Service

Turns the counters of a sales order line into the numbers the order detail
shows: outstanding demand, progress bar segments, stock coverage and the
quantity that can ship right now.

Counters per line:
    ordered         quantity_ordered
    allocated       stock reserved for the line, including stock already
                    moved into an open fulfillment
    shipped         quantity_fulfilled
    in_fulfillment  quantity inside fulfillments that have not shipped yet
    available_now   unreserved stock of the product (stock snapshot)

Everything here is pure. The counters are a stale snapshot; callers refetch
before acting on them.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, List, Optional

from app.core.status_config import SalesOrderStatus, is_terminal
from app.exceptions import ReconciliationError
from app.logging_config import get_logger

logger = get_logger(__name__)

NEGATIVE_OUTSTANDING = "negative_outstanding"
SEGMENT_OVERFLOW = "segment_overflow"
NEGATIVE_COUNTER = "negative_counter"


@dataclass
class LineQuantities:
    """Counters for one order line"""
    ordered: int
    allocated: int = 0
    shipped: int = 0
    in_fulfillment: int = 0
    available_now: int = 0
    unit_price: Decimal = Decimal("0")
    line_id: Any = None


@dataclass(frozen=True)
class ProgressSegments:
    """Fractions of the ordered quantity, in display order left to right."""
    shipped: float
    in_fulfillment: float
    allocated_not_picked: float

    @property
    def total(self) -> float:
        return self.shipped + self.in_fulfillment + self.allocated_not_picked

    def as_percentages(self) -> dict:
        return {
            "shipped": round(self.shipped * 100, 1),
            "in_fulfillment": round(self.in_fulfillment * 100, 1),
            "allocated_not_picked": round(self.allocated_not_picked * 100, 1),
        }


def raw_outstanding(line: LineQuantities) -> int:
    """ordered - allocated - shipped, without clamping"""
    return line.ordered - line.allocated - line.shipped


def allocated_not_picked(line: LineQuantities) -> int:
    return max(0, line.allocated - line.in_fulfillment)


def outstanding(line: LineQuantities, strict: bool = False) -> int:
    """
    Outstanding demand for display.

    A negative true value means more was allocated or shipped than ordered.
    In strict mode that raises ReconciliationError; otherwise it is logged
    and displayed as 0.
    """
    value = raw_outstanding(line)
    if value < 0:
        if strict:
            raise ReconciliationError(
                f"Line is over-allocated or over-shipped by {-value}",
                line_id=line.line_id,
                anomaly=NEGATIVE_OUTSTANDING,
                details={"outstanding": value},
            )
        logger.warning(
            "Negative outstanding quantity",
            extra={"line_id": line.line_id, "outstanding": value},
        )
        return 0
    return value


def progress_segments(line: LineQuantities, strict: bool = False) -> ProgressSegments:
    """
    Shipped, in-fulfillment and allocated-not-picked as fractions of ordered.

    The segments are computed independently. If they add up to more than the
    ordered quantity the counters disagree with each other; strict mode
    raises, otherwise the overflow is logged and the raw fractions returned.
    """
    if line.ordered <= 0:
        return ProgressSegments(0.0, 0.0, 0.0)

    ordered = float(line.ordered)
    segments = ProgressSegments(
        shipped=line.shipped / ordered,
        in_fulfillment=line.in_fulfillment / ordered,
        allocated_not_picked=allocated_not_picked(line) / ordered,
    )

    committed = line.shipped + line.in_fulfillment + allocated_not_picked(line)
    if committed > line.ordered:
        if strict:
            raise ReconciliationError(
                f"Progress segments exceed ordered quantity ({committed} > {line.ordered})",
                line_id=line.line_id,
                anomaly=SEGMENT_OVERFLOW,
                details={"committed": committed, "ordered": line.ordered},
            )
        logger.warning(
            "Progress segments overflow ordered quantity",
            extra={"line_id": line.line_id, "committed": committed, "ordered": line.ordered},
        )
    return segments


def find_anomalies(line: LineQuantities) -> List[str]:
    """Names of every reconciliation anomaly present on the line"""
    anomalies = []
    if min(line.ordered, line.allocated, line.shipped, line.in_fulfillment) < 0:
        anomalies.append(NEGATIVE_COUNTER)
    if raw_outstanding(line) < 0:
        anomalies.append(NEGATIVE_OUTSTANDING)
    if line.ordered > 0 and line.shipped + line.in_fulfillment + allocated_not_picked(line) > line.ordered:
        anomalies.append(SEGMENT_OVERFLOW)
    return anomalies


def check_line(line: LineQuantities) -> None:
    """Raise ReconciliationError for the first anomaly found"""
    anomalies = find_anomalies(line)
    if anomalies:
        raise ReconciliationError(
            f"Line quantities do not reconcile: {', '.join(anomalies)}",
            line_id=line.line_id,
            anomaly=anomalies[0],
            details={
                "ordered": line.ordered,
                "allocated": line.allocated,
                "shipped": line.shipped,
                "in_fulfillment": line.in_fulfillment,
            },
        )


# =============================================================================
# Coverage
# =============================================================================

def is_coverable_now(line: LineQuantities) -> bool:
    """True when unreserved stock covers the outstanding demand"""
    return line.available_now >= outstanding(line)


def stock_severity(line: LineQuantities) -> str:
    """
    Tag severity for the stock column.

    success: nothing outstanding or fully coverable now
    warn:    some stock available, not enough
    danger:  no stock available
    """
    if is_coverable_now(line):
        return "success"
    if line.available_now > 0:
        return "warn"
    return "danger"


def shippable_quantity(line: LineQuantities) -> int:
    """
    Quantity a fulfillment may take now.

    Demand not yet shipped or picked, capped by the line's own reservation
    (less what is already in a fulfillment) plus free stock. The reservation
    moves into the fulfillment first, then free stock tops it up.
    """
    unfulfilled = line.ordered - line.shipped - line.in_fulfillment
    reserved = max(0, line.allocated - line.in_fulfillment)
    return max(0, min(unfulfilled, reserved + max(0, line.available_now)))


# =============================================================================
# Line allocation helpers
# =============================================================================

def can_unallocate_line(line: LineQuantities) -> bool:
    """Only stock reserved but not yet in a fulfillment can be released"""
    return line.allocated - line.in_fulfillment > 0


def can_allocate_line(line: LineQuantities, order_status: Optional[str]) -> bool:
    """More stock can be reserved when demand remains and stock is available"""
    if not order_status or order_status == SalesOrderStatus.DRAFT.value or is_terminal(order_status):
        return False
    remaining = line.ordered - line.shipped - line.in_fulfillment - line.allocated
    return remaining > 0 and line.available_now > 0


# =============================================================================
# Order-level aggregates
# =============================================================================

def has_allocated_items(lines: Iterable[LineQuantities]) -> bool:
    return any(line.allocated > 0 for line in lines)


def has_allocatable_stock(lines: Iterable[LineQuantities]) -> bool:
    return any(
        raw_outstanding(line) > 0 and line.available_now > 0
        for line in lines
    )


def is_fully_allocated(lines: Iterable[LineQuantities]) -> bool:
    """
    Every line has allocated >= ordered - shipped.

    Allocated already includes in-fulfillment quantity. An order with no
    lines is never fully allocated.
    """
    lines = list(lines)
    if not lines:
        return False
    return all(line.allocated >= line.ordered - line.shipped for line in lines)


def calculated_total(lines: Iterable[LineQuantities]) -> Decimal:
    """Sum of ordered quantity times unit price"""
    return sum(
        (Decimal(line.ordered) * Decimal(str(line.unit_price or 0)) for line in lines),
        Decimal("0"),
    )
