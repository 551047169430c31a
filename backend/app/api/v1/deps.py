"""
API Dependencies

Wiring for the database session, the procedure gateway and the shared
in-process state (order store, change feed, in-flight registry). Tests swap
any of these through ``app.dependency_overrides``.
"""
import hmac

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.exceptions import AuthenticationError
from app.services.allocation_gateway import AllocationGateway, ProcedureCaller, SqlProcedureCaller
from app.services.order_actions import InFlightRegistry, OrderActionService
from app.services.realtime import ChangeFeed, SalesOrderStore


def get_procedure_caller(db: Session = Depends(get_db)) -> ProcedureCaller:
    return SqlProcedureCaller(db)


def get_gateway(caller: ProcedureCaller = Depends(get_procedure_caller)) -> AllocationGateway:
    return AllocationGateway(caller)


def get_sales_store(request: Request) -> SalesOrderStore:
    return request.app.state.sales_store


def get_change_feed(request: Request) -> ChangeFeed:
    return request.app.state.change_feed


def get_in_flight(request: Request) -> InFlightRegistry:
    return request.app.state.in_flight


def get_order_actions(
    db: Session = Depends(get_db),
    gateway: AllocationGateway = Depends(get_gateway),
    in_flight: InFlightRegistry = Depends(get_in_flight),
) -> OrderActionService:
    return OrderActionService(db, gateway, in_flight, settings)


def verify_webhook_secret(x_webhook_secret: str = Header(None)) -> None:
    """Change events are only accepted with the shared secret, when one is set"""
    expected = settings.REALTIME_WEBHOOK_SECRET
    if expected and not hmac.compare_digest((x_webhook_secret or "").encode("utf-8"), expected.encode("utf-8")):
        raise AuthenticationError("Invalid or missing webhook secret")
