"""
Allocation Gateway

The only code that calls the allocation and fulfillment stored procedures.
Their bodies live in the database; this module sends the call, attaches a
fresh idempotency key to every mutating attempt and folds the different
result shapes into one outcome type:

    Ok(value)      the procedure accepted the call; refetch the order
    Err(reason)    rejected (success: false), malformed result, or the call
                   itself failed. All three look the same to callers.

Nothing here retries. A retry is a new user action with a new key.
"""
import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Optional, Protocol, Tuple, TypeVar, Union

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.exceptions import ProcedureError
from app.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


# =============================================================================
# Outcome types
# =============================================================================

@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T = None
    refetch_needed: bool = True

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    reason: str
    procedure: Optional[str] = None

    @property
    def ok(self) -> bool:
        return False


Outcome = Union[Ok, Err]


def unwrap(outcome: Outcome):
    """Return the Ok value or raise ProcedureError with the verbatim reason"""
    if isinstance(outcome, Err):
        raise ProcedureError(outcome.procedure or "unknown", outcome.reason)
    return outcome.value


# =============================================================================
# Procedure definitions
# =============================================================================

@dataclass(frozen=True)
class ProcedureSpec:
    """Name and typed parameters of a stored procedure"""
    name: str
    params: Tuple[Tuple[str, str], ...]  # (parameter, postgres type)
    returns_set: bool = False
    mutating: bool = True


ALLOCATE_AND_CONFIRM = ProcedureSpec(
    "allocate_inventory_and_confirm_order",
    (("p_order_id", "uuid"), ("p_new_status", "text"), ("p_idempotency_key", "uuid")),
)
ALLOCATE_LINE_ITEM = ProcedureSpec(
    "allocate_line_item",
    (("p_line_id", "uuid"), ("p_idempotency_key", "uuid")),
)
REVERT_LINE_ALLOCATION = ProcedureSpec(
    "revert_line_allocation",
    (("p_line_id", "uuid"), ("p_idempotency_key", "uuid")),
)
CREATE_FULFILLMENT = ProcedureSpec(
    "create_fulfillment_and_reallocate",
    (("p_order_id", "uuid"), ("p_items", "jsonb"), ("p_idempotency_key", "uuid")),
)
GET_LINE_FULFILLMENT_QTY = ProcedureSpec(
    "get_line_fulfillment_qty",
    (("p_order_id", "uuid"),),
    returns_set=True,
    mutating=False,
)
PROCESS_FULFILLMENT_SHIPMENT = ProcedureSpec(
    "process_fulfillment_shipment",
    (("p_fulfillment_id", "uuid"), ("p_idempotency_key", "uuid")),
)
CANCEL_FULFILLMENT = ProcedureSpec(
    "cancel_fulfillment_and_return_stock",
    (("p_fulfillment_id", "uuid"), ("p_idempotency_key", "uuid")),
)
REVERT_FULFILLMENT_SHIPMENT = ProcedureSpec(
    "revert_fulfillment_shipment",
    (("p_fulfillment_id", "uuid"), ("p_idempotency_key", "uuid")),
)


class ProcedureCaller(Protocol):
    """Executes one stored procedure and returns its raw result"""

    def call(self, procedure: ProcedureSpec, params: Dict[str, Any]) -> Any:
        ...


class SqlProcedureCaller:
    """
    Calls procedures with ``SELECT`` over a SQLAlchemy session.

    Each mutating call is committed on its own, like an RPC round-trip. On
    failure the session is rolled back so nothing from the failed call is
    visible to the refetch that follows.
    """

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def build_sql(procedure: ProcedureSpec) -> str:
        args = ", ".join(
            f"CAST(:{name} AS {pg_type})" for name, pg_type in procedure.params
        )
        if procedure.returns_set:
            return f"SELECT * FROM {procedure.name}({args})"
        return f"SELECT {procedure.name}({args}) AS result"

    def call(self, procedure: ProcedureSpec, params: Dict[str, Any]) -> Any:
        bound = {
            name: json.dumps(params.get(name)) if pg_type in ("json", "jsonb") else params.get(name)
            for name, pg_type in procedure.params
        }
        try:
            result = self.db.execute(text(self.build_sql(procedure)), bound)
            if procedure.returns_set:
                value = [dict(row) for row in result.mappings().all()]
            else:
                value = result.scalar()
            if procedure.mutating:
                self.db.commit()
            return value
        except SQLAlchemyError:
            self.db.rollback()
            raise


# =============================================================================
# Result shapes
# =============================================================================

@dataclass(frozen=True)
class LineFulfillmentQty:
    line_id: str
    qty_in_fulfillment: int = 0
    qty_shipped: int = 0


@dataclass(frozen=True)
class FulfillmentItem:
    line_id: str
    quantity: int

    def to_payload(self) -> Dict[str, Any]:
        return {"sales_order_line_id": str(self.line_id), "quantity": int(self.quantity)}


def new_idempotency_key() -> str:
    return str(uuid.uuid4())


def _error_reason(exc: Exception) -> str:
    """First line of the database error, which is the procedure's own message"""
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        message = str(exc.orig)
    else:
        message = str(exc)
    message = message.strip().splitlines()[0] if message.strip() else ""
    return message or exc.__class__.__name__


def _as_json(raw: Any) -> Any:
    if isinstance(raw, (str, bytes)):
        try:
            return json.loads(raw)
        except ValueError:
            return raw
    return raw


# =============================================================================
# Gateway
# =============================================================================

@dataclass
class AllocationGateway:
    """
    Typed front for the allocation procedures.

    ``key_factory`` produces one idempotency key per mutating call.
    """
    caller: ProcedureCaller
    key_factory: Callable[[], str] = field(default=new_idempotency_key)

    def _invoke(self, procedure: ProcedureSpec, params: Dict[str, Any]) -> Tuple[Any, Optional[Err]]:
        if procedure.mutating:
            params = dict(params, p_idempotency_key=self.key_factory())
        log_extra = {
            "procedure": procedure.name,
            "idempotency_key": params.get("p_idempotency_key"),
        }
        try:
            raw = self.caller.call(procedure, params)
        except Exception as exc:  # transport and database failures alike
            reason = _error_reason(exc)
            logger.warning(
                f"Procedure {procedure.name} failed: {reason}",
                extra=log_extra,
                exc_info=True,
            )
            return None, Err(reason, procedure.name)
        logger.info(f"Procedure {procedure.name} returned", extra=log_extra)
        return _as_json(raw), None

    def _ack(self, procedure: ProcedureSpec, raw: Any, strict: bool) -> Outcome:
        """
        Normalize a ``{success, message}`` acknowledgement.

        strict: the result must be an object with a ``success`` flag.
        """
        if isinstance(raw, dict):
            if raw.get("success") is False:
                return Err(raw.get("message") or f"{procedure.name} was rejected", procedure.name)
            if "success" in raw or not strict:
                return Ok(raw.get("message"))
        elif not strict:
            return Ok(None)
        return Err(f"Unexpected response from {procedure.name}", procedure.name)

    # ---------------------------------------------------------------------
    # Order level
    # ---------------------------------------------------------------------

    def allocate_and_confirm(self, order_id: str, new_status: str) -> Outcome:
        """Allocate what stock allows; Ok carries the status the procedure set"""
        raw, err = self._invoke(
            ALLOCATE_AND_CONFIRM,
            {"p_order_id": str(order_id), "p_new_status": new_status},
        )
        if err:
            return err
        if isinstance(raw, dict):
            if raw.get("success") is False:
                return Err(raw.get("message") or "Allocation was rejected", ALLOCATE_AND_CONFIRM.name)
            status = raw.get("status")
            if isinstance(status, str) and status:
                return Ok(status)
        return Err(
            f"Unexpected response from {ALLOCATE_AND_CONFIRM.name}: missing status",
            ALLOCATE_AND_CONFIRM.name,
        )

    def create_fulfillment(self, order_id: str, items: List[FulfillmentItem]) -> Outcome:
        """Create a fulfillment for the given items; Ok carries the fulfillment id"""
        if not items:
            return Err("No items to fulfill", CREATE_FULFILLMENT.name)
        raw, err = self._invoke(
            CREATE_FULFILLMENT,
            {"p_order_id": str(order_id), "p_items": [item.to_payload() for item in items]},
        )
        if err:
            return err
        if isinstance(raw, dict):
            if raw.get("success") is False:
                return Err(raw.get("message") or "Fulfillment was rejected", CREATE_FULFILLMENT.name)
            raw = raw.get("fulfillment_id") or raw.get("id")
        if raw:
            return Ok(str(raw))
        return Err(
            f"Unexpected response from {CREATE_FULFILLMENT.name}: missing fulfillment id",
            CREATE_FULFILLMENT.name,
        )

    # ---------------------------------------------------------------------
    # Line level
    # ---------------------------------------------------------------------

    def allocate_line(self, line_id: str) -> Outcome:
        raw, err = self._invoke(ALLOCATE_LINE_ITEM, {"p_line_id": str(line_id)})
        return err or self._ack(ALLOCATE_LINE_ITEM, raw, strict=True)

    def revert_line_allocation(self, line_id: str) -> Outcome:
        raw, err = self._invoke(REVERT_LINE_ALLOCATION, {"p_line_id": str(line_id)})
        return err or self._ack(REVERT_LINE_ALLOCATION, raw, strict=True)

    # ---------------------------------------------------------------------
    # Fulfillment level
    # ---------------------------------------------------------------------

    def ship_fulfillment(self, fulfillment_id: str) -> Outcome:
        raw, err = self._invoke(PROCESS_FULFILLMENT_SHIPMENT, {"p_fulfillment_id": str(fulfillment_id)})
        return err or self._ack(PROCESS_FULFILLMENT_SHIPMENT, raw, strict=False)

    def cancel_fulfillment(self, fulfillment_id: str) -> Outcome:
        raw, err = self._invoke(CANCEL_FULFILLMENT, {"p_fulfillment_id": str(fulfillment_id)})
        return err or self._ack(CANCEL_FULFILLMENT, raw, strict=False)

    def revert_fulfillment_shipment(self, fulfillment_id: str) -> Outcome:
        raw, err = self._invoke(REVERT_FULFILLMENT_SHIPMENT, {"p_fulfillment_id": str(fulfillment_id)})
        return err or self._ack(REVERT_FULFILLMENT_SHIPMENT, raw, strict=False)

    # ---------------------------------------------------------------------
    # Read side
    # ---------------------------------------------------------------------

    def get_line_fulfillment_qty(self, order_id: str) -> Outcome:
        """Ok carries {line_id: LineFulfillmentQty}"""
        raw, err = self._invoke(GET_LINE_FULFILLMENT_QTY, {"p_order_id": str(order_id)})
        if err:
            return err
        if raw is None:
            return Ok({}, refetch_needed=False)
        if not isinstance(raw, list):
            return Err(
                f"Unexpected response from {GET_LINE_FULFILLMENT_QTY.name}",
                GET_LINE_FULFILLMENT_QTY.name,
            )
        quantities = {}
        for row in raw:
            if not isinstance(row, dict) or not row.get("line_id"):
                return Err(
                    f"Unexpected row from {GET_LINE_FULFILLMENT_QTY.name}",
                    GET_LINE_FULFILLMENT_QTY.name,
                )
            line_id = str(row["line_id"])
            quantities[line_id] = LineFulfillmentQty(
                line_id=line_id,
                qty_in_fulfillment=int(row.get("qty_in_fulfillment") or 0),
                qty_shipped=int(row.get("qty_shipped") or 0),
            )
        return Ok(quantities, refetch_needed=False)
