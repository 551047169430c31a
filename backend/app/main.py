"""
Stockroom - Main FastAPI Application
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime

from app.api.v1 import router as api_v1_router
from app.core.config import settings
from app.exceptions import DatabaseError, StockroomException
from app.logging_config import setup_logging, get_logger
from app.services.order_actions import InFlightRegistry
from app.services.realtime import ChangeFeed, SalesOrderStore

# Setup structured logging
setup_logging()
logger = get_logger(__name__)


# ===================
# Security Headers Middleware
# ===================

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


def init_database():
    """Create missing tables when DB_CREATE_TABLES is set. Views are never created."""
    if not settings.DB_CREATE_TABLES:
        return
    try:
        from app.db.session import engine
        from app.db.base import Base, table_models
        import app.models  # noqa: F401
        logger.info("Checking database tables...")
        Base.metadata.create_all(bind=engine, tables=table_models())
        logger.info("Database tables ready")
    except SQLAlchemyError as e:
        logger.error(f"Database initialization failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info(
        "Starting Stockroom API",
        extra={
            "version": settings.VERSION,
            "environment": settings.ENVIRONMENT,
            "debug": settings.DEBUG,
        }
    )
    init_database()
    yield
    app.state.sales_store.disable_realtime(app.state.change_feed)
    logger.info("Shutting down Stockroom API")


# Create FastAPI app
app = FastAPI(
    title="Stockroom API",
    description="Sales order allocation and fulfillment",
    version=settings.VERSION,
    lifespan=lifespan,
)

# Shared in-process state
app.state.sales_store = SalesOrderStore()
app.state.change_feed = ChangeFeed()
app.state.in_flight = InFlightRegistry()
app.state.sales_store.enable_realtime(app.state.change_feed)

# Security headers middleware (outermost)
app.add_middleware(SecurityHeadersMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "Origin", "X-Requested-With", "X-Webhook-Secret"],
)


# ===================
# Exception Handlers
# ===================

@app.exception_handler(StockroomException)
async def stockroom_exception_handler(request: Request, exc: StockroomException):
    logger.warning(
        f"Stockroom Exception: {exc.error_code} - {exc.message}",
        extra={"error_code": exc.error_code, "details": exc.details, "path": request.url.path}
    )
    error_dict = exc.to_dict()
    error_dict["timestamp"] = datetime.utcnow().isoformat() + "Z"
    return JSONResponse(status_code=exc.status_code, content=error_dict)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        errors.append({"field": field, "message": error["msg"], "type": error["type"]})
    logger.warning("Validation error on %s", request.url.path, extra={"errors": errors})
    return JSONResponse(
        status_code=422,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": {"errors": errors},
            "timestamp": datetime.utcnow().isoformat() + "Z"
        },
    )


@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.url.path}: {str(exc)}", exc_info=True)
    error = DatabaseError("A database error occurred. Please try again.")
    error_dict = error.to_dict()
    error_dict["timestamp"] = datetime.utcnow().isoformat() + "Z"
    return JSONResponse(status_code=error.status_code, content=error_dict)


# Include API routes
app.include_router(api_v1_router, prefix=settings.API_V1_STR)


@app.get("/")
async def root():
    return {"message": "Stockroom API", "version": settings.VERSION, "status": "online"}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
