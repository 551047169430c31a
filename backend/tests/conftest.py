"""
Shared test fixtures for Stockroom tests

Provides database setup, a fake stored-procedure caller and client creation
"""
import pytest
from typing import Any, Dict, List, Tuple
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.db.base import Base
from app.db.session import get_db
from app.api.v1.deps import get_procedure_caller
from app.services.allocation_gateway import AllocationGateway, ProcedureSpec
from app.services.realtime import ChangeFeed, SalesOrderStore


# Create in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_tables(engine):
    """
    Create all tables for testing.

    The inventory view is created as a plain table so tests can write
    stock positions.
    """
    import app.models  # noqa: F401
    Base.metadata.create_all(bind=engine)


def drop_tables(engine):
    Base.metadata.drop_all(bind=engine)


class FakeProcedureCaller:
    """
    Stands in for the stored procedures.

    ``responses`` maps a procedure name to a value, an exception to raise, or
    a callable taking the params. Every call is recorded in ``calls``.
    """

    def __init__(self):
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.responses: Dict[str, Any] = {
            "get_line_fulfillment_qty": [],
        }

    def respond(self, procedure: str, response: Any) -> None:
        self.responses[procedure] = response

    def call(self, procedure: ProcedureSpec, params: Dict[str, Any]) -> Any:
        self.calls.append((procedure.name, dict(params)))
        response = self.responses.get(procedure.name)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(params)
        return response

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def mutating_calls(self) -> List[Tuple[str, Dict[str, Any]]]:
        return [(name, params) for name, params in self.calls if name != "get_line_fulfillment_qty"]


@pytest.fixture
def db_session():
    """Create a fresh database session for each test"""
    create_tables(engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        drop_tables(engine)


@pytest.fixture
def fake_procedures():
    return FakeProcedureCaller()


@pytest.fixture
def gateway(fake_procedures):
    return AllocationGateway(fake_procedures)


@pytest.fixture
def client(db_session, fake_procedures):
    """Create a test client with database and procedure overrides"""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_procedure_caller] = lambda: fake_procedures

    # Fresh in-process state per test
    app.state.sales_store = SalesOrderStore()
    app.state.change_feed = ChangeFeed()
    app.state.sales_store.enable_realtime(app.state.change_feed)

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
